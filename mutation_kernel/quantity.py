"""
Mutation Kernel — Quantity Synchronizer

State machine over CountPair (total / active) for a multi-unit entity.

    0 <= active <= min(total, active_cap)
    quantity_min <= total <= quantity_max

active_cap comes from the surrounding simulation and may change
between edits, so it is read on every operation.

Recomputation of the fit is deferred to teardown: the caller
recomputes iff total_changed or active_changed_from_baseline.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

from .domain_types import CountPair, MutationConstants
from .invariants import validate_count_pair


@dataclass(frozen=True)
class TeardownReport:
    """Change flags handed to the caller when the editing surface closes."""

    total_changed: bool
    active_changed_from_baseline: bool

    @property
    def requires_recompute(self) -> bool:
        return self.total_changed or self.active_changed_from_baseline


class QuantitySynchronizer:
    """
    Sole mutation path for one entity's CountPair.

    active_cap may be a plain int or a zero-argument callable queried
    on every operation.
    """

    def __init__(
        self,
        total: int,
        active: int,
        active_cap: Union[int, Callable[[], int], None] = None,
        constants: Optional[MutationConstants] = None,
    ) -> None:
        self._constants = constants or MutationConstants()
        self._cap_source = active_cap
        self._baseline_active = active
        self._total_changed = False
        total = self._clamp_total(total)
        self._pair = CountPair(total=total, active=self._clamp_active(active, total))
        validate_count_pair(self._pair, self.active_cap)

    # -- State access -------------------------------------------------------

    @property
    def pair(self) -> CountPair:
        return self._pair

    @property
    def total(self) -> int:
        return self._pair.total

    @property
    def active(self) -> int:
        return self._pair.active

    @property
    def baseline_active(self) -> int:
        return self._baseline_active

    @property
    def active_cap(self) -> int:
        source = self._cap_source
        if source is None:
            return self._constants.default_max_active
        cap = source() if callable(source) else source
        return max(int(cap), 0)

    @property
    def total_changed(self) -> bool:
        return self._total_changed

    @property
    def active_changed_from_baseline(self) -> bool:
        return self._pair.active != self._baseline_active

    # -- Operations ---------------------------------------------------------

    def set_total(self, new_total: int) -> CountPair:
        """Active follows the total down, never up. Always marks total_changed."""
        total = self._clamp_total(new_total)
        active = self._clamp_active(min(self._pair.active, total), total)
        self._commit(CountPair(total=total, active=active))
        self._total_changed = True
        return self._pair

    def set_active(self, new_active: int) -> CountPair:
        """Clamp into [0, min(total, active_cap)]."""
        active = self._clamp_active(new_active, self._pair.total)
        self._commit(CountPair(total=self._pair.total, active=active))
        return self._pair

    def refresh_cap(self) -> CountPair:
        """Re-apply the current active cap after the simulation changed it."""
        return self.set_active(self._pair.active)

    def teardown(self) -> TeardownReport:
        return TeardownReport(
            total_changed=self._total_changed,
            active_changed_from_baseline=self.active_changed_from_baseline,
        )

    # -- Internal -----------------------------------------------------------

    def _clamp_total(self, total: int) -> int:
        c = self._constants
        return max(c.quantity_min, min(int(total), c.quantity_max))

    def _clamp_active(self, active: int, total: int) -> int:
        upper = min(total, self.active_cap)
        return max(0, min(int(active), upper))

    def _commit(self, pair: CountPair) -> None:
        validate_count_pair(pair, self.active_cap)
        self._pair = pair
