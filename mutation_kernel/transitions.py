"""
Mutation Kernel — Centralized Transition Logic

ALL session-mutation logic lives here.
Constants read from state.constants (MutationConstants).
"""

from __future__ import annotations

import math
from typing import List, Tuple

from .domain_types import (
    AttributeRange, EntityKind, MutatedAttributeValue, MutationConstants,
    MutationState, TransitionResult,
)
from .events import BaseEvent, EventType
from .validator import OutOfRangeError


class EditingMisuseError(Exception):
    """Caller misuse of the editing session. State is never changed."""


class UnknownAttributeError(EditingMisuseError):
    """begin_editing on an attribute the session does not hold."""

    def __init__(self, attribute_id: int) -> None:
        self.attribute_id = attribute_id
        super().__init__(f"Attribute {attribute_id!r} is not part of the session")


class NoActiveEditError(EditingMisuseError):
    """Commit attempted while no attribute is open for editing."""

    def __init__(self) -> None:
        super().__init__("No attribute is being edited")


# ---------------------------------------------------------------------------
# Public dispatcher
# ---------------------------------------------------------------------------

def apply_event(
    state: MutationState, event: BaseEvent,
) -> Tuple[MutationState, TransitionResult]:
    """
    Apply *event* to *state* and return ``(new_state, result)``.
    The original state is never mutated — a deep copy is made first.
    """
    new_state = state.copy()

    handler = _HANDLERS.get(event.event_type)
    if handler is None:
        raise ValueError(f"Unknown event type: {event.event_type!r}")
    result = handler(new_state, event)

    new_state.event_history.append(event.to_dict())

    return new_state, result


def build_ranges(raw_ranges: List[dict]) -> List[AttributeRange]:
    """Build AttributeRange objects from payload dicts. Rejects duplicate ids."""
    ranges: List[AttributeRange] = []
    seen: set[int] = set()
    for raw in raw_ranges:
        attribute_range = AttributeRange(
            attribute_id=int(raw["attribute_id"]),
            display_name=raw.get("display_name", ""),
            min_multiplier=float(raw["min_multiplier"]),
            max_multiplier=float(raw["max_multiplier"]),
            icon_file_name=raw.get("icon_file_name"),
            high_is_good=bool(raw.get("high_is_good", True)),
        )
        if attribute_range.attribute_id in seen:
            raise ValueError(
                f"Duplicate attribute_id {attribute_range.attribute_id} in ranges"
            )
        seen.add(attribute_range.attribute_id)
        ranges.append(attribute_range)
    return ranges


def range_to_payload(attribute_range: AttributeRange) -> dict:
    return {
        "attribute_id": attribute_range.attribute_id,
        "display_name": attribute_range.display_name,
        "min_multiplier": attribute_range.min_multiplier,
        "max_multiplier": attribute_range.max_multiplier,
        "icon_file_name": attribute_range.icon_file_name,
        "high_is_good": attribute_range.high_is_good,
    }


# ---------------------------------------------------------------------------
# Individual transition handlers (private)
# ---------------------------------------------------------------------------

def _apply_initialize_constants(
    state: MutationState, event: BaseEvent,
) -> TransitionResult:
    p = event.payload
    c = state.constants
    state.constants = MutationConstants(
        debounce_delay_ms=p.get("debounce_delay_ms", c.debounce_delay_ms),
        quantity_min=p.get("quantity_min", c.quantity_min),
        quantity_max=p.get("quantity_max", c.quantity_max),
        default_max_active=p.get("default_max_active", c.default_max_active),
        display_fraction_digits=p.get(
            "display_fraction_digits", c.display_fraction_digits,
        ),
    )
    if "entity_kind" in p:
        state.entity_kind = EntityKind(p["entity_kind"])
    if "item_type_id" in p:
        state.item_type_id = int(p["item_type_id"])
    return TransitionResult(event_type=EventType.INITIALIZE_CONSTANTS)


def _apply_select_mutation_item(
    state: MutationState, event: BaseEvent,
) -> TransitionResult:
    """Attributes are replaced wholesale; every value starts absent."""
    p = event.payload
    ranges = build_ranges(p.get("ranges", []))
    state.selected_mutation_item_id = int(p["mutation_item_id"])
    state.attributes = [MutatedAttributeValue(range=r) for r in ranges]
    state.editing_attribute_id = None
    return TransitionResult(
        event_type=EventType.SELECT_MUTATION_ITEM, mutation_changed=True,
    )


def _apply_begin_editing(
    state: MutationState, event: BaseEvent,
) -> TransitionResult:
    attribute_id = int(event.payload["attribute_id"])
    if state.find(attribute_id) is None:
        raise UnknownAttributeError(attribute_id)
    state.editing_attribute_id = attribute_id
    return TransitionResult(
        event_type=EventType.BEGIN_EDITING, attribute_id=attribute_id,
    )


def _apply_commit_editing_value(
    state: MutationState, event: BaseEvent,
) -> TransitionResult:
    """
    The multiplier is re-checked against the range here; a value that
    passed validation earlier is not trusted.
    """
    target = state.editing_value
    if target is None:
        raise NoActiveEditError()

    multiplier = float(event.payload["multiplier"])
    if not math.isfinite(multiplier) or not target.range.contains(multiplier):
        raise OutOfRangeError(
            target.range.min_multiplier, target.range.max_multiplier,
        )

    target.current_multiplier = multiplier
    state.editing_attribute_id = None
    return TransitionResult(
        event_type=EventType.COMMIT_EDITING_VALUE,
        attribute_id=target.attribute_id,
        multiplier=multiplier,
        mutation_changed=True,
    )


def _apply_cancel_editing(
    state: MutationState, event: BaseEvent,
) -> TransitionResult:
    state.editing_attribute_id = None
    return TransitionResult(event_type=EventType.CANCEL_EDITING)


def _apply_clear_mutation(
    state: MutationState, event: BaseEvent,
) -> TransitionResult:
    changed = state.selected_mutation_item_id is not None or bool(state.attributes)
    state.selected_mutation_item_id = None
    state.attributes = []
    state.editing_attribute_id = None
    return TransitionResult(
        event_type=EventType.CLEAR_MUTATION, mutation_changed=changed,
    )


def _apply_replace_item(
    state: MutationState, event: BaseEvent,
) -> TransitionResult:
    new_type_id = int(event.payload["item_type_id"])
    if new_type_id == state.item_type_id:
        return TransitionResult(event_type=EventType.REPLACE_ITEM)
    result = _apply_clear_mutation(state, event)
    state.item_type_id = new_type_id
    return TransitionResult(
        event_type=EventType.REPLACE_ITEM,
        mutation_changed=result.mutation_changed,
    )


_HANDLERS = {
    EventType.INITIALIZE_CONSTANTS: _apply_initialize_constants,
    EventType.SELECT_MUTATION_ITEM: _apply_select_mutation_item,
    EventType.BEGIN_EDITING: _apply_begin_editing,
    EventType.COMMIT_EDITING_VALUE: _apply_commit_editing_value,
    EventType.CANCEL_EDITING: _apply_cancel_editing,
    EventType.CLEAR_MUTATION: _apply_clear_mutation,
    EventType.REPLACE_ITEM: _apply_replace_item,
}
