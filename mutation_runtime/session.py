"""
Mutation Editing Session — orchestrates engine, debounce, quantity and
persistence for one fitted entity.

Apply-before-persist order:
  1. engine applies the event      — misuse returns a failed result
  2. event_repo.append_event(...)  — only if step 1 succeeded; a stream
                                     that moved on raises
                                     SequenceConflictError
  3. update metadata hash          — only if step 2 succeeded
  4. forward the mutation mapping  — only for committed / removed mutations

Drones persist a selection immediately (with no values). A module
selection stays temporary until its first committed value.

Fit recomputation is deferred to close(): the pipeline recomputes iff the
total changed or the active count differs from the value at open.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, List, Optional

from mutation_kernel.codec import MutationValueError, format_for_input
from mutation_kernel.diagnostics import compute_diagnostics
from mutation_kernel.domain_types import (
    AttributeRange, CountPair, EntityKind, MutationConstants, MutationState,
    TransitionResult,
)
from mutation_kernel.engine import MutationEngine
from mutation_kernel.events import BaseEvent, EventType
from mutation_kernel.hashing import canonical_hash
from mutation_kernel.invariants import InvariantViolationError
from mutation_kernel.quantity import QuantitySynchronizer, TeardownReport
from mutation_kernel.transitions import EditingMisuseError, NoActiveEditError
from mutation_kernel.validator import EMPTY_VERDICT, Verdict, VerdictKind, validate

from .debounce import DebounceController, PublishedVerdict
from .event_repository import EventRepository, SequenceConflictError
from .interfaces import (
    FittingPipeline, MetadataProvider, MutationItemNotApplicableError,
)

logger = logging.getLogger(__name__)


class DeterminismError(Exception):
    """Raised when replay produces a different hash than the stored one."""

    def __init__(self, entity_id: str, expected: str, actual: str):
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Determinism failure for entity {entity_id!r}: "
            f"stored hash={expected!r}, replayed hash={actual!r}"
        )


class StreamCorruptedError(Exception):
    """A stored event cannot be replayed; the stream is unusable as is."""

    def __init__(self, entity_id: str, sequence: int, reason: str):
        self.entity_id = entity_id
        self.sequence = sequence
        self.reason = reason
        super().__init__(
            f"Stream {entity_id!r} cannot be replayed at sequence {sequence}: {reason}"
        )


class MutationEditingSession:
    """
    One editing surface: a mutation session plus the quantity counters
    of the same entity.

    Call open() before any other operation. Synchronous operations on
    this object are serialized by a re-entrant lock; input_changed() must
    be called from a running event loop.

    The lock does not cover other sessions replaying the same stream.
    Their appends are rejected by the store with SequenceConflictError;
    the losing session re-reads the stream before the error propagates.
    """

    def __init__(
        self,
        entity_id: str,
        item_type_id: int,
        metadata: MetadataProvider,
        pipeline: FittingPipeline,
        entity_kind: EntityKind = EntityKind.DRONE,
        event_repo: Optional[EventRepository] = None,
        total: int = 1,
        active: int = 0,
        constants: Optional[MutationConstants] = None,
        strict: bool = False,
    ) -> None:
        self._entity_id = entity_id
        self._item_type_id = item_type_id
        self._entity_kind = EntityKind(entity_kind)
        self._metadata = metadata
        self._pipeline = pipeline
        self._event_repo = event_repo
        self._constants = constants or MutationConstants()
        self._strict = strict
        self._lock = threading.RLock()
        self._opened = False
        self._closed_report: Optional[TeardownReport] = None
        self._input_text = ""

        self._engine = MutationEngine(strict=strict, on_applied=self._persist_event)
        self._quantity = QuantitySynchronizer(
            total, active, active_cap=pipeline.max_active, constants=self._constants,
        )
        self._debounce = DebounceController(
            range_provider=self._editing_range,
            on_publish=self._on_verdict,
            delay=self._constants.debounce_delay_seconds,
        )

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def open(
        self,
        stored_mutation_item_id: Optional[int] = None,
        stored_values: Optional[Dict[int, float]] = None,
    ) -> List[TransitionResult]:
        """
        Rebuild the session.

        A persisted event stream wins: it is replayed from scratch.
        Otherwise a fresh stream is started and the stored mutation (as
        the pipeline knows it) is restored through the normal edit path.
        Returns the stored values that were rejected.

        Raises StreamCorruptedError when a persisted event no longer
        applies, and MutationItemNotApplicableError when the stored
        mutation item does not fit the host item.
        """
        with self._lock:
            events = self._load_events()
            if events:
                self._replay(self._engine, events)
                self._item_type_id = self._engine.state.item_type_id
                self._entity_kind = self._engine.state.entity_kind
                self._opened = True
                logger.info(
                    "Replayed %d events for %s", len(events), self._entity_id,
                )
                return []

            ranges: List[AttributeRange] = []
            if stored_mutation_item_id is not None:
                ranges = self._applicable_ranges(stored_mutation_item_id)

            self._engine.initialize_state(
                entity_id=self._entity_id,
                entity_kind=self._entity_kind,
                item_type_id=self._item_type_id,
            )
            self._engine.initialize_constants(self._constants)
            self._opened = True
            if stored_mutation_item_id is None:
                return []

            rejected = self._engine.restore(
                stored_mutation_item_id, ranges, dict(stored_values or {}),
            )
            for result in rejected:
                logger.warning(
                    "Dropped stored value %r for attribute %s: %s",
                    result.multiplier, result.attribute_id, result.reason,
                )
            return rejected

    # ------------------------------------------------------------------
    # Mutation operations
    # ------------------------------------------------------------------

    def available_mutation_items(self) -> List[int]:
        """Mutation items that can be applied to the current host item."""
        return self._metadata.mutation_items_for(self._opened_state().item_type_id)

    def select_mutation_item(self, mutation_item_id: int) -> TransitionResult:
        """
        Raises UnknownMutationItemError when the metadata provider does not
        know the item, MutationItemNotApplicableError when it does not fit
        the host item.
        """
        with self._lock:
            self._opened_state()
            ranges = self._applicable_ranges(mutation_item_id)
            was_persisted = self._mutation_persisted()
            self._reset_input()
            result = self._engine.select_mutation_item(mutation_item_id, ranges)
            if not result.success:
                return result
            if self._entity_kind is EntityKind.DRONE:
                self._pipeline.persist_mutation(self._entity_id, mutation_item_id, {})
            elif was_persisted:
                self._pipeline.persist_mutation(self._entity_id, None, {})
            logger.info(
                "Selected mutation item %s for %s", mutation_item_id, self._entity_id,
            )
            return result

    def begin_editing(self, attribute_id: int) -> TransitionResult:
        with self._lock:
            result = self._engine.begin_editing(attribute_id)
            if not result.success:
                logger.warning("begin_editing(%s) rejected: %s", attribute_id, result.reason)
                return result
            self._debounce.reset()
            current = self._engine.state.editing_value.current_multiplier
            self._input_text = "" if current is None else format_for_input(current)
            return result

    def input_changed(self, text: str) -> asyncio.Task:
        """Record the edit field's text and schedule its debounced validation."""
        with self._lock:
            self._input_text = text
            return self._debounce.submit(text)

    def check_input(self, text: str) -> Verdict:
        """Validate *text* against the attribute being edited, immediately."""
        attribute_range = self._editing_range()
        if attribute_range is None:
            return EMPTY_VERDICT
        return validate(text, attribute_range)

    def confirm(self, text: Optional[str] = None) -> TransitionResult:
        """
        Commit the edit field's value.

        The text is validated again at confirm time; only a VALID verdict
        reaches the engine. Any pending debounced validation is cancelled.
        """
        with self._lock:
            if text is not None:
                self._input_text = text
            editing = self._opened_state().editing_value
            if editing is None:
                if self._strict:
                    raise NoActiveEditError()
                logger.warning("confirm() with no attribute being edited")
                return TransitionResult(
                    event_type=EventType.COMMIT_EDITING_VALUE,
                    success=False,
                    reason=str(NoActiveEditError()),
                )

            verdict = validate(self._input_text, editing.range)
            if verdict.kind is not VerdictKind.VALID:
                reason = verdict.message or "Nothing to confirm"
                logger.warning(
                    "Confirm of %r refused for attribute %s: %s",
                    self._input_text, editing.attribute_id, reason,
                )
                return TransitionResult(
                    event_type=EventType.COMMIT_EDITING_VALUE,
                    success=False,
                    reason=reason,
                    attribute_id=editing.attribute_id,
                )

            result = self._engine.commit_editing_value(verdict.multiplier)
            if not result.success:
                return result
            self._reset_input()
            state = self._engine.state
            self._pipeline.persist_mutation(
                self._entity_id,
                state.selected_mutation_item_id,
                state.export_mutated_values(),
            )
            logger.info(
                "Committed multiplier %r on attribute %s of %s",
                result.multiplier, result.attribute_id, self._entity_id,
            )
            return result

    def cancel_editing(self) -> TransitionResult:
        with self._lock:
            self._reset_input()
            return self._engine.cancel_editing()

    def clear_mutation(self) -> TransitionResult:
        with self._lock:
            was_persisted = self._mutation_persisted()
            self._reset_input()
            result = self._engine.clear_mutation()
            if result.success and result.mutation_changed and was_persisted:
                self._pipeline.persist_mutation(self._entity_id, None, {})
                logger.info("Removed mutation of %s", self._entity_id)
            return result

    def replace_item(self, new_item_type_id: int) -> TransitionResult:
        """
        Swap the host item for a variation. The total is kept, the active
        count is re-clamped and the mutation is cleared.
        """
        with self._lock:
            old_item_type_id = self._item_type_id
            self._reset_input()
            result = self._engine.replace_item(new_item_type_id)
            if not result.success or new_item_type_id == old_item_type_id:
                return result
            self._item_type_id = new_item_type_id
            self._pipeline.replace_item(self._entity_id, new_item_type_id)
            pair = self._quantity.refresh_cap()
            self._pipeline.update_quantity(self._entity_id, pair.total, pair.active)
            logger.info(
                "Replaced item %s with %s on %s",
                old_item_type_id, new_item_type_id, self._entity_id,
            )
            return result

    # ------------------------------------------------------------------
    # Quantity operations
    # ------------------------------------------------------------------

    def set_total(self, new_total: int) -> CountPair:
        with self._lock:
            pair = self._quantity.set_total(new_total)
            self._pipeline.update_quantity(self._entity_id, pair.total, pair.active)
            return pair

    def set_active(self, new_active: int) -> CountPair:
        with self._lock:
            pair = self._quantity.set_active(new_active)
            self._pipeline.update_quantity(self._entity_id, pair.total, pair.active)
            return pair

    def close(self) -> TeardownReport:
        """
        Tear the surface down. Pending validation is cancelled; the fit is
        recomputed only when a counter changed. Repeated calls are no-ops.
        """
        with self._lock:
            if self._closed_report is not None:
                return self._closed_report
            self._debounce.cancel()
            report = self._quantity.teardown()
            if report.requires_recompute:
                logger.info(
                    "Recomputing fit after quantity change on %s (total_changed=%s, "
                    "active_changed=%s)",
                    self._entity_id, report.total_changed,
                    report.active_changed_from_baseline,
                )
                self._pipeline.recompute()
            self._closed_report = report
            return report

    # ------------------------------------------------------------------
    # Determinism verification
    # ------------------------------------------------------------------

    def verify_determinism(self) -> bool:
        """
        Replay from scratch and compare hash against stored metadata.

        Raises DeterminismError if mismatch, StreamCorruptedError if the
        stream no longer replays.
        Returns True if consistent (or no metadata exists yet).
        """
        if self._event_repo is None:
            return True
        metadata = self._event_repo.load_metadata(self._entity_id)
        if metadata is None:
            return True

        _, stored_hash = metadata
        temp_engine = MutationEngine()
        self._replay(temp_engine, self._load_events())
        replayed_hash = canonical_hash(temp_engine.state)

        if replayed_hash != stored_hash:
            raise DeterminismError(self._entity_id, stored_hash, replayed_hash)
        return True

    def replay_full(self) -> dict:
        """Reset the engine and replay every persisted event."""
        with self._lock:
            events = self._load_events()
            if events:
                self._replay(self._engine, events)
            return self._engine.state.to_dict()

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_metrics(self) -> "SessionMetrics":
        """Collect metrics from the current session."""
        from .observability import collect_metrics
        return collect_metrics(self)

    # ------------------------------------------------------------------
    # Delegates
    # ------------------------------------------------------------------

    @property
    def entity_id(self) -> str:
        return self._entity_id

    @property
    def state(self) -> MutationState:
        return self._opened_state()

    @property
    def current_sequence(self) -> int:
        return self._engine.last_sequence

    @property
    def input_text(self) -> str:
        return self._input_text

    @property
    def pair(self) -> CountPair:
        return self._quantity.pair

    @property
    def debounce(self) -> DebounceController:
        return self._debounce

    @property
    def latest_verdict(self) -> Optional[PublishedVerdict]:
        return self._debounce.latest

    @property
    def is_confirmable(self) -> bool:
        return self._editing_range() is not None and self._debounce.is_confirmable

    def get_state(self) -> dict:
        d = self._opened_state().to_dict()
        d["total"] = self._quantity.total
        d["active"] = self._quantity.active
        d["active_cap"] = self._quantity.active_cap
        d["input_text"] = self._input_text
        return d

    def get_diagnostics(self) -> dict:
        return compute_diagnostics(self._opened_state())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _opened_state(self) -> MutationState:
        if not self._opened:
            raise RuntimeError("Session not opened — call open() first")
        return self._engine.state

    def _editing_range(self) -> Optional[AttributeRange]:
        if not self._opened:
            return None
        editing = self._engine.state.editing_value
        return None if editing is None else editing.range

    def _mutation_persisted(self) -> bool:
        state = self._opened_state()
        if state.selected_mutation_item_id is None:
            return False
        return self._entity_kind is EntityKind.DRONE or state.has_applied_mutation

    def _reset_input(self) -> None:
        self._debounce.reset()
        self._input_text = ""

    def _load_events(self) -> List[BaseEvent]:
        if self._event_repo is None:
            return []
        return self._event_repo.load_events(self._entity_id)

    def _applicable_ranges(self, mutation_item_id: int) -> List[AttributeRange]:
        ranges = self._metadata.attribute_ranges(mutation_item_id)
        if mutation_item_id not in self._metadata.mutation_items_for(self._item_type_id):
            raise MutationItemNotApplicableError(mutation_item_id, self._item_type_id)
        return ranges

    def _replay(self, engine: MutationEngine, events: List[BaseEvent]) -> None:
        try:
            engine.replay(events, entity_id=self._entity_id)
        except (
            EditingMisuseError, MutationValueError, InvariantViolationError, ValueError,
        ) as exc:
            sequence = engine.last_sequence + 1
            logger.error(
                "Stream %s does not replay at sequence %d: %s",
                self._entity_id, sequence, exc,
            )
            raise StreamCorruptedError(self._entity_id, sequence, str(exc)) from exc

    def _persist_event(self, event: BaseEvent, state: MutationState) -> None:
        if self._event_repo is None:
            return
        try:
            seq = self._event_repo.append_event(self._entity_id, event)
        except SequenceConflictError:
            # the engine already holds the rejected event; fall back to the store
            self._reset_input()
            self._replay(self._engine, self._load_events())
            self._item_type_id = self._engine.state.item_type_id
            raise
        self._event_repo.update_metadata(self._entity_id, seq, canonical_hash(state))

    def _on_verdict(self, published: PublishedVerdict) -> None:
        logger.debug(
            "Verdict for %s: %s", self._entity_id, published.verdict.kind.value,
        )
