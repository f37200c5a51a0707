"""
Mutation Kernel — Event Definitions

Events are **pure data**. They carry intent and payload only.
They contain ZERO transition logic.

event_type is an EventType member. Stored / transmitted strings are
decoded once, at the boundary, by reconstruct_event.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict


class EventType(str, enum.Enum):
    INITIALIZE_CONSTANTS = "initialize_constants"
    SELECT_MUTATION_ITEM = "select_mutation_item"
    BEGIN_EDITING = "begin_editing"
    COMMIT_EDITING_VALUE = "commit_editing_value"
    CANCEL_EDITING = "cancel_editing"
    CLEAR_MUTATION = "clear_mutation"
    REPLACE_ITEM = "replace_item"


@dataclass
class BaseEvent:
    """Base for all editing events — pure data container."""

    event_type: EventType = EventType.INITIALIZE_CONSTANTS
    timestamp: str = ""
    sequence: int = 0
    event_uuid: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "payload": dict(self.payload),
        }
        if self.event_uuid:
            d["event_uuid"] = self.event_uuid
        return d


@dataclass
class InitializeConstantsEvent(BaseEvent):
    """Inject editing constants. MUST be the first event in any stream."""

    event_type: EventType = EventType.INITIALIZE_CONSTANTS
    # payload keys: debounce_delay_ms, quantity_min, quantity_max,
    #   default_max_active, display_fraction_digits, and optionally the
    #   host identity (entity_kind, item_type_id)


@dataclass
class SelectMutationItemEvent(BaseEvent):
    """Choose a mutation item; its attribute ranges replace the session's."""

    event_type: EventType = EventType.SELECT_MUTATION_ITEM
    # payload keys: mutation_item_id, ranges (list of dicts with
    #   attribute_id, display_name, min_multiplier, max_multiplier,
    #   icon_file_name, high_is_good)


@dataclass
class BeginEditingEvent(BaseEvent):
    """Open one attribute for editing."""

    event_type: EventType = EventType.BEGIN_EDITING
    # payload keys: attribute_id


@dataclass
class CommitEditingValueEvent(BaseEvent):
    """Store a multiplier on the attribute being edited."""

    event_type: EventType = EventType.COMMIT_EDITING_VALUE
    # payload keys: multiplier


@dataclass
class CancelEditingEvent(BaseEvent):
    """Close the edit without changing any value."""

    event_type: EventType = EventType.CANCEL_EDITING


@dataclass
class ClearMutationEvent(BaseEvent):
    """Remove the mutation entirely."""

    event_type: EventType = EventType.CLEAR_MUTATION


@dataclass
class ReplaceItemEvent(BaseEvent):
    """Swap the host item for a variation. The mutation does not carry over."""

    event_type: EventType = EventType.REPLACE_ITEM
    # payload keys: item_type_id


_EVENT_CLASS_MAP = {
    EventType.INITIALIZE_CONSTANTS: InitializeConstantsEvent,
    EventType.SELECT_MUTATION_ITEM: SelectMutationItemEvent,
    EventType.BEGIN_EDITING: BeginEditingEvent,
    EventType.COMMIT_EDITING_VALUE: CommitEditingValueEvent,
    EventType.CANCEL_EDITING: CancelEditingEvent,
    EventType.CLEAR_MUTATION: ClearMutationEvent,
    EventType.REPLACE_ITEM: ReplaceItemEvent,
}


def decode_event_type(raw: str) -> EventType:
    """Decode a stored event_type string. Raises ValueError for unknown types."""
    try:
        return EventType(raw)
    except ValueError:
        raise ValueError(
            f"Unknown event_type {raw!r}. "
            f"Known types: {sorted(t.value for t in EventType)}"
        ) from None


def reconstruct_event(event_dict: dict) -> BaseEvent:
    """
    Reconstruct a typed event instance from a stored dict.

    Dispatches on event_type to the correct subclass.
    Never falls back to a generic BaseEvent.
    """
    etype = decode_event_type(event_dict["event_type"])
    cls = _EVENT_CLASS_MAP[etype]
    return cls(
        timestamp=event_dict.get("timestamp", ""),
        sequence=event_dict.get("sequence", 0),
        event_uuid=event_dict.get("event_uuid", ""),
        payload=event_dict.get("payload", {}),
    )
