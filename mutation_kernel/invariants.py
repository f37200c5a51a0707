"""
Mutation Kernel — Invariant Checks

Hard-fail validation. Every check raises InvariantViolationError on failure.
"""

from __future__ import annotations

import math

from .domain_types import CountPair, MutationState


class InvariantViolationError(Exception):
    """Raised when a mutation-session invariant is violated."""

    def __init__(self, rule: str, detail: str) -> None:
        self.rule = rule
        self.detail = detail
        super().__init__(f"[INVARIANT:{rule}] {detail}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_invariants(state: MutationState) -> None:
    """
    Run all session checks. Raises InvariantViolationError on the
    first failure.
    """
    _check_duplicate_attribute_ids(state)
    _check_values_within_range(state)
    _check_editing_reference(state)
    _check_selection_consistency(state)


def validate_count_pair(pair: CountPair, active_cap: int) -> None:
    """0 <= active <= min(total, cap), total >= 1."""
    if pair.total < 1:
        raise InvariantViolationError(
            "count_total", f"Total quantity {pair.total} is below 1"
        )
    upper = min(pair.total, max(active_cap, 0))
    if not 0 <= pair.active <= upper:
        raise InvariantViolationError(
            "count_active",
            f"Active count {pair.active} outside [0, {upper}] "
            f"(total={pair.total}, cap={active_cap})"
        )


# ---------------------------------------------------------------------------
# Individual checks (private)
# ---------------------------------------------------------------------------

def _check_duplicate_attribute_ids(state: MutationState) -> None:
    ids = [v.attribute_id for v in state.attributes]
    if len(ids) != len(set(ids)):
        raise InvariantViolationError(
            "duplicate_attribute_ids", "Duplicate attribute IDs detected"
        )


def _check_values_within_range(state: MutationState) -> None:
    """A committed multiplier always lies inside its attribute's range."""
    for value in state.attributes:
        m = value.current_multiplier
        if m is None:
            continue
        if not math.isfinite(m) or not value.range.contains(m):
            raise InvariantViolationError(
                "value_out_of_range",
                f"Attribute {value.attribute_id} holds {m!r}, outside "
                f"[{value.range.min_multiplier}, {value.range.max_multiplier}]"
            )


def _check_editing_reference(state: MutationState) -> None:
    if state.editing_attribute_id is None:
        return
    if state.find(state.editing_attribute_id) is None:
        raise InvariantViolationError(
            "editing_reference",
            f"Editing attribute {state.editing_attribute_id!r} is not in the session"
        )


def _check_selection_consistency(state: MutationState) -> None:
    """Without a selected mutation item there are no attributes."""
    if state.selected_mutation_item_id is None and state.attributes:
        raise InvariantViolationError(
            "selection_consistency",
            "Attributes present without a selected mutation item"
        )
