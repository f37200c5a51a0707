"""
Mutation Kernel — State Construction
"""

from .domain_types import EntityKind, MutationConstants, MutationState


def create_initial_state(
    entity_id: str = "",
    entity_kind: EntityKind = EntityKind.DRONE,
    item_type_id: int = 0,
    constants: MutationConstants | None = None,
) -> MutationState:
    """Create a fresh state with no mutation selected."""
    return MutationState(
        entity_id=entity_id,
        entity_kind=entity_kind,
        item_type_id=item_type_id,
        selected_mutation_item_id=None,
        attributes=[],
        editing_attribute_id=None,
        constants=constants or MutationConstants(),
        event_history=[],
    )
