"""
Mutation Kernel — Core Domain Types

Pure data. No behaviour beyond lookups and serialisation.
Multipliers are floats (1.0 = unchanged attribute).

────────────────────────────────────────────────
DOMAIN GLOSSARY
────────────────────────────────────────────────

Mutaplasmid / mutation item:
    An item that, when applied to a host item, allows a bounded
    adjustment of one or more of its attributes.

Multiplier:
    Strength factor applied to a base attribute value.
    Percentage display = (multiplier - 1) * 100.

Active count:
    The subset of a multi-unit entity's total quantity currently
    contributing to simulated output.

────────────────────────────────────────────────
"""

from __future__ import annotations

import copy
import enum
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .constants import (
    DEBOUNCE_DELAY_MS, DEFAULT_MAX_ACTIVE, DISPLAY_FRACTION_DIGITS,
    QUANTITY_MAX, QUANTITY_MIN,
)


class EntityKind(str, enum.Enum):
    """Host item kind. Decides when a mutation counts as applied."""

    DRONE = "drone"
    MODULE = "module"


# ── Core Domain Types ─────────────────────────────────────────

@dataclass(frozen=True)
class AttributeRange:
    """Immutable description of one mutable attribute."""

    attribute_id: int
    display_name: str
    min_multiplier: float
    max_multiplier: float
    icon_file_name: Optional[str] = None
    high_is_good: bool = True

    def __post_init__(self) -> None:
        for bound in (self.min_multiplier, self.max_multiplier):
            if not math.isfinite(bound) or bound <= 0:
                raise ValueError(
                    f"Attribute {self.attribute_id}: multiplier bounds must be "
                    f"finite and strictly positive, got {bound!r}"
                )
        if self.min_multiplier > self.max_multiplier:
            raise ValueError(
                f"Attribute {self.attribute_id}: min_multiplier "
                f"{self.min_multiplier} exceeds max_multiplier {self.max_multiplier}"
            )

    def contains(self, multiplier: float) -> bool:
        return self.min_multiplier <= multiplier <= self.max_multiplier


@dataclass
class MutatedAttributeValue:
    """An attribute range paired with the value the user committed, if any."""

    range: AttributeRange
    current_multiplier: Optional[float] = None

    @property
    def attribute_id(self) -> int:
        return self.range.attribute_id


@dataclass(frozen=True)
class MutationConstants:
    """
    Editing thresholds — injected via InitializeConstants event.
    Must be the first event in any stream.
    """

    debounce_delay_ms: int = DEBOUNCE_DELAY_MS
    quantity_min: int = QUANTITY_MIN
    quantity_max: int = QUANTITY_MAX
    default_max_active: int = DEFAULT_MAX_ACTIVE
    display_fraction_digits: int = DISPLAY_FRACTION_DIGITS

    @property
    def debounce_delay_seconds(self) -> float:
        return self.debounce_delay_ms / 1000.0


@dataclass(frozen=True)
class TransitionResult:
    """
    Structured, immutable outcome of a session transition.

    Caller misuse (unknown attribute, commit without an open edit,
    out-of-range commit) yields success=False with the state untouched.
    """

    event_type: str = ""
    success: bool = True
    reason: str = ""
    attribute_id: Optional[int] = None
    multiplier: Optional[float] = None
    mutation_changed: bool = False


@dataclass
class MutationState:
    """
    Complete editing state of one entity's mutation.

    attributes keep the order supplied by the metadata provider.
    """

    entity_id: str = ""
    entity_kind: EntityKind = EntityKind.DRONE
    item_type_id: int = 0
    selected_mutation_item_id: Optional[int] = None
    attributes: List[MutatedAttributeValue] = field(default_factory=list)
    editing_attribute_id: Optional[int] = None
    constants: MutationConstants = field(default_factory=MutationConstants)
    event_history: List[dict] = field(default_factory=list)

    def copy(self) -> "MutationState":
        """Deep-copy the entire state for immutable transitions."""
        return copy.deepcopy(self)

    def find(self, attribute_id: int) -> Optional[MutatedAttributeValue]:
        for value in self.attributes:
            if value.attribute_id == attribute_id:
                return value
        return None

    @property
    def editing_value(self) -> Optional[MutatedAttributeValue]:
        if self.editing_attribute_id is None:
            return None
        return self.find(self.editing_attribute_id)

    def export_mutated_values(self) -> Dict[int, float]:
        """attribute_id -> multiplier for every attribute with a committed value."""
        return {
            v.attribute_id: v.current_multiplier
            for v in self.attributes
            if v.current_multiplier is not None
        }

    @property
    def has_applied_mutation(self) -> bool:
        return bool(self.export_mutated_values())

    @property
    def has_temporary_selection(self) -> bool:
        """A mutation item is chosen but no value has been committed yet."""
        return (
            self.selected_mutation_item_id is not None
            and not self.has_applied_mutation
        )

    def to_dict(self) -> dict:
        """Serialise state to a plain dict (for API responses / logging)."""
        return {
            "entity_id": self.entity_id,
            "entity_kind": self.entity_kind.value,
            "item_type_id": self.item_type_id,
            "selected_mutation_item_id": self.selected_mutation_item_id,
            "attributes": [
                {
                    "attribute_id": v.attribute_id,
                    "display_name": v.range.display_name,
                    "min_multiplier": v.range.min_multiplier,
                    "max_multiplier": v.range.max_multiplier,
                    "icon_file_name": v.range.icon_file_name,
                    "high_is_good": v.range.high_is_good,
                    "current_multiplier": v.current_multiplier,
                }
                for v in self.attributes
            ],
            "editing_attribute_id": self.editing_attribute_id,
            "event_count": len(self.event_history),
        }


@dataclass(frozen=True)
class CountPair:
    """Total / active quantity of a multi-unit entity."""

    total: int
    active: int
