"""
Mutation Kernel — Diagnostics

Display-oriented read model of a mutation session: how each committed
value compares with the attribute's preference and where it sits in
its range.
"""

from __future__ import annotations

import enum

from .codec import format_value
from .domain_types import AttributeRange, MutationState


class ValueQuality(str, enum.Enum):
    BENEFICIAL = "beneficial"
    DETRIMENTAL = "detrimental"
    NEUTRAL = "neutral"


def describe_value(attribute_range: AttributeRange, multiplier: float) -> ValueQuality:
    """An increase is good when the attribute is high-is-good, bad otherwise."""
    if multiplier == 1.0:
        return ValueQuality.NEUTRAL
    increased = multiplier > 1.0
    if increased == attribute_range.high_is_good:
        return ValueQuality.BENEFICIAL
    return ValueQuality.DETRIMENTAL


def range_position(attribute_range: AttributeRange, multiplier: float) -> float:
    """Fraction in [0, 1] of where multiplier lies between min and max."""
    span = attribute_range.max_multiplier - attribute_range.min_multiplier
    if span <= 0:
        return 1.0
    fraction = (multiplier - attribute_range.min_multiplier) / span
    return max(0.0, min(fraction, 1.0))


def compute_diagnostics(state: MutationState) -> dict:
    """Return a summary of the session for display and logging."""
    digits = state.constants.display_fraction_digits
    attributes = []
    for value in state.attributes:
        m = value.current_multiplier
        entry = {
            "attribute_id": value.attribute_id,
            "display_name": value.range.display_name,
            "edited": m is not None,
            "display_value": None,
            "quality": None,
            "range_position": None,
        }
        if m is not None:
            entry["display_value"] = format_value(m, digits)
            entry["quality"] = describe_value(value.range, m).value
            entry["range_position"] = round(range_position(value.range, m), 4)
        attributes.append(entry)

    return {
        "selected_mutation_item_id": state.selected_mutation_item_id,
        "attribute_count": len(state.attributes),
        "mutated_count": len(state.export_mutated_values()),
        "has_applied_mutation": state.has_applied_mutation,
        "has_temporary_selection": state.has_temporary_selection,
        "editing_attribute_id": state.editing_attribute_id,
        "attributes": attributes,
    }
