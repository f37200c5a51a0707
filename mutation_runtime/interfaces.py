"""
External collaborators of the editing surface.

MetadataProvider  — read-only attribute ranges per mutation item, and
                    which mutation items apply to a host item type.
FittingPipeline   — persists mutation / quantity state per fitted entity
                    and owns the ship-attribute recomputation the
                    surface triggers.

The in-memory implementations back the HTTP surface and the tests.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Tuple

from mutation_kernel.constants import DEFAULT_MAX_ACTIVE, MAX_ACTIVE_DRONES_ATTRIBUTE_ID
from mutation_kernel.domain_types import AttributeRange
from mutation_kernel.transitions import build_ranges


class UnknownMutationItemError(LookupError):
    """The metadata provider has no ranges for this mutation item."""

    def __init__(self, mutation_item_id: int) -> None:
        self.mutation_item_id = mutation_item_id
        super().__init__(f"Unknown mutation item {mutation_item_id!r}")


class MutationItemNotApplicableError(ValueError):
    """The mutation item exists but cannot be applied to the host item."""

    def __init__(self, mutation_item_id: int, item_type_id: int) -> None:
        self.mutation_item_id = mutation_item_id
        self.item_type_id = item_type_id
        super().__init__(
            f"Mutation item {mutation_item_id!r} does not apply to item type "
            f"{item_type_id!r}"
        )


class MetadataProvider(Protocol):
    def attribute_ranges(self, mutation_item_id: int) -> List[AttributeRange]:
        ...

    def mutation_items_for(self, item_type_id: int) -> List[int]:
        ...


class FittingPipeline(Protocol):
    def persist_mutation(
        self,
        entity_id: str,
        mutation_item_id: Optional[int],
        values: Dict[int, float],
    ) -> None:
        ...

    def update_quantity(self, entity_id: str, total: int, active: int) -> None:
        ...

    def replace_item(self, entity_id: str, new_item_type_id: int) -> None:
        ...

    def max_active(self) -> int:
        ...

    def recompute(self) -> None:
        ...


class StaticMetadataProvider:
    """Dict-backed metadata provider."""

    def __init__(
        self,
        ranges: Dict[int, List[AttributeRange]],
        applicable: Optional[Dict[int, List[int]]] = None,
    ) -> None:
        self._ranges = {k: list(v) for k, v in ranges.items()}
        self._applicable = {k: list(v) for k, v in (applicable or {}).items()}

    @classmethod
    def from_dict(cls, data: dict) -> "StaticMetadataProvider":
        """
        Build from {"mutation_items": {id: {"ranges": [...], "applicable_types": [...]}}}.
        Range dicts use the same keys as SelectMutationItem payloads.
        """
        ranges: Dict[int, List[AttributeRange]] = {}
        applicable: Dict[int, List[int]] = {}
        for raw_id, item in data.get("mutation_items", {}).items():
            mutation_item_id = int(raw_id)
            ranges[mutation_item_id] = build_ranges(item.get("ranges", []))
            for type_id in item.get("applicable_types", []):
                applicable.setdefault(int(type_id), []).append(mutation_item_id)
        return cls(ranges, applicable)

    def attribute_ranges(self, mutation_item_id: int) -> List[AttributeRange]:
        try:
            return list(self._ranges[mutation_item_id])
        except KeyError:
            raise UnknownMutationItemError(mutation_item_id) from None

    def mutation_items_for(self, item_type_id: int) -> List[int]:
        return sorted(self._applicable.get(item_type_id, []))


class RecordingPipeline:
    """
    In-memory pipeline that keeps the latest persisted state per entity and
    counts recomputations.

    The active-drone cap is read from the character attribute
    MAX_ACTIVE_DRONES_ATTRIBUTE_ID on every call, so skill changes made
    while a surface is open are picked up.
    """

    def __init__(self, character_attributes: Optional[Dict[int, float]] = None) -> None:
        self.character_attributes: Dict[int, float] = dict(character_attributes or {})
        self.mutations: Dict[str, Tuple[Optional[int], Dict[int, float]]] = {}
        self.quantities: Dict[str, Tuple[int, int]] = {}
        self.replacements: List[Tuple[str, int]] = []
        self.recompute_count = 0

    def persist_mutation(
        self,
        entity_id: str,
        mutation_item_id: Optional[int],
        values: Dict[int, float],
    ) -> None:
        self.mutations[entity_id] = (mutation_item_id, dict(values))

    def update_quantity(self, entity_id: str, total: int, active: int) -> None:
        self.quantities[entity_id] = (total, active)

    def replace_item(self, entity_id: str, new_item_type_id: int) -> None:
        self.replacements.append((entity_id, new_item_type_id))
        self.mutations.pop(entity_id, None)

    def max_active(self) -> int:
        value = self.character_attributes.get(MAX_ACTIVE_DRONES_ATTRIBUTE_ID)
        return DEFAULT_MAX_ACTIVE if value is None else int(value)

    def recompute(self) -> None:
        self.recompute_count += 1
