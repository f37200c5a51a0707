"""
Observability — In-process metrics collection.

No external dependencies. Uses compute_diagnostics + timing.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mutation_kernel.hashing import canonical_hash

if TYPE_CHECKING:
    from .session import MutationEditingSession


@dataclass(frozen=True)
class SessionMetrics:
    """Snapshot of observable session metrics."""

    replay_latency_ms: float
    event_count: int
    submitted_validations: int
    published_verdicts: int
    cancelled_validations: int
    mutated_count: int
    last_state_hash: str


def collect_metrics(session: "MutationEditingSession") -> SessionMetrics:
    """
    Collect metrics from a live session.

    Performs a full replay to measure latency.
    """
    start = time.perf_counter()
    session.replay_full()
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    diagnostics = session.get_diagnostics()
    debounce = session.debounce

    return SessionMetrics(
        replay_latency_ms=round(elapsed_ms, 2),
        event_count=session.current_sequence,
        submitted_validations=debounce.submitted_count,
        published_verdicts=debounce.published_count,
        cancelled_validations=debounce.cancelled_count,
        mutated_count=diagnostics["mutated_count"],
        last_state_hash=canonical_hash(session.state),
    )
