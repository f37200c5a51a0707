"""
Mutation Kernel — Engine

Top-level orchestrator. Delegates mutation to transitions.py,
validates via invariants.py.

Sequence numbers are strictly increasing; the first event must be
initialize_constants. Caller misuse (unknown attribute, commit with no
open edit, out-of-range commit) leaves state and sequence untouched and
is reported through TransitionResult(success=False). An engine built
with strict=True raises instead.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .codec import MutationValueError
from .domain_types import (
    AttributeRange, EntityKind, MutationConstants, MutationState,
    TransitionResult,
)
from .events import (
    BaseEvent,
    BeginEditingEvent,
    CancelEditingEvent,
    ClearMutationEvent,
    CommitEditingValueEvent,
    EventType,
    InitializeConstantsEvent,
    ReplaceItemEvent,
    SelectMutationItemEvent,
)
from .invariants import validate_invariants
from .state import create_initial_state
from .transitions import EditingMisuseError, apply_event as _transition_apply
from .transitions import range_to_payload


class MutationEngine:
    """
    Stateful engine that wraps the pure functional transition layer.

    on_applied is called with every event submitted through the session
    operations once it has been applied successfully. Replayed events
    are not reported.
    """

    def __init__(
        self,
        strict: bool = False,
        on_applied: Optional[Callable[[BaseEvent, MutationState], None]] = None,
    ) -> None:
        self._state: MutationState | None = None
        self._last_sequence: int = 0
        self._constants_initialized: bool = False
        self._strict = strict
        self._on_applied = on_applied

    # -- State access -------------------------------------------------------

    @property
    def state(self) -> MutationState:
        if self._state is None:
            raise RuntimeError("Engine not initialised — call initialize_state() first")
        return self._state

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    # -- Public API ---------------------------------------------------------

    def initialize_state(self, **kwargs) -> MutationState:
        """Create a fresh initial state and store it."""
        self._state = create_initial_state(**kwargs)
        self._last_sequence = 0
        self._constants_initialized = False
        return self._state

    def apply_event(
        self, event: BaseEvent, strict: Optional[bool] = None,
    ) -> Tuple[MutationState, TransitionResult]:
        """
        Apply a single event:
          1. Validate sequence (strictly increasing, no gaps)
          2. Validate constants-first rule
          3. Delegate to transitions.apply_event
          4. Validate invariants on new state
          5. Store and return

        strict overrides the engine default for this one event.
        """
        expected = self._last_sequence + 1
        if event.sequence != expected:
            raise ValueError(
                f"Sequence violation: expected {expected}, "
                f"got {event.sequence}"
            )

        is_init = event.event_type is EventType.INITIALIZE_CONSTANTS
        if not self._constants_initialized and not is_init:
            raise ValueError(
                "First event MUST be initialize_constants, "
                f"got {event.event_type.value!r}"
            )
        if self._constants_initialized and is_init:
            raise ValueError("initialize_constants can only be the first event")

        if strict is None:
            strict = self._strict
        try:
            new_state, result = _transition_apply(self.state, event)
        except (EditingMisuseError, MutationValueError) as exc:
            if strict:
                raise
            return self.state, TransitionResult(
                event_type=event.event_type, success=False, reason=str(exc),
            )

        validate_invariants(new_state)
        self._state = new_state
        self._last_sequence = event.sequence
        self._constants_initialized = True
        return new_state, result

    def apply_sequence(self, events: List[BaseEvent]) -> MutationState:
        """Apply an ordered sequence of events. Returns the final state."""
        for event in events:
            self.apply_event(event)
        return self.state

    def replay(self, events: List[BaseEvent], **kwargs) -> MutationState:
        """
        Event-sourced reconstruction: reset to a fresh initial state,
        then replay every event from scratch.

        Stored events were accepted when they were written, so replay is
        always strict: a misuse error means the stream is corrupt and is
        raised, never skipped.
        """
        self.initialize_state(**kwargs)
        for event in events:
            self.apply_event(event, strict=True)
        return self.state

    # -- Session operations -------------------------------------------------

    def initialize_constants(
        self, constants: MutationConstants | None = None,
    ) -> TransitionResult:
        c = constants or MutationConstants()
        return self._submit(InitializeConstantsEvent(payload={
            "debounce_delay_ms": c.debounce_delay_ms,
            "quantity_min": c.quantity_min,
            "quantity_max": c.quantity_max,
            "default_max_active": c.default_max_active,
            "display_fraction_digits": c.display_fraction_digits,
            "entity_kind": self.state.entity_kind.value,
            "item_type_id": self.state.item_type_id,
        }))

    def select_mutation_item(
        self, mutation_item_id: int, ranges: Iterable[AttributeRange],
    ) -> TransitionResult:
        return self._submit(SelectMutationItemEvent(payload={
            "mutation_item_id": mutation_item_id,
            "ranges": [range_to_payload(r) for r in ranges],
        }))

    def begin_editing(self, attribute_id: int) -> TransitionResult:
        return self._submit(BeginEditingEvent(payload={"attribute_id": attribute_id}))

    def commit_editing_value(self, multiplier: float) -> TransitionResult:
        return self._submit(CommitEditingValueEvent(payload={"multiplier": multiplier}))

    def cancel_editing(self) -> TransitionResult:
        return self._submit(CancelEditingEvent())

    def clear_mutation(self) -> TransitionResult:
        return self._submit(ClearMutationEvent())

    def replace_item(self, item_type_id: int) -> TransitionResult:
        return self._submit(ReplaceItemEvent(payload={"item_type_id": item_type_id}))

    def export_mutated_values(self) -> Dict[int, float]:
        return self.state.export_mutated_values()

    def restore(
        self,
        mutation_item_id: int,
        ranges: Iterable[AttributeRange],
        stored_values: Dict[int, float],
    ) -> List[TransitionResult]:
        """
        Rebuild a session a user left behind: select the mutation item,
        then apply every stored value through the normal edit path.
        Returns the failed results (stored values that were rejected).
        """
        rejected: List[TransitionResult] = []
        self.select_mutation_item(mutation_item_id, ranges)
        for attribute_id, multiplier in stored_values.items():
            result = self.begin_editing(attribute_id)
            if result.success:
                result = self.commit_editing_value(multiplier)
                if not result.success:
                    self.cancel_editing()
            if not result.success:
                rejected.append(TransitionResult(
                    event_type=result.event_type,
                    success=False,
                    reason=result.reason,
                    attribute_id=attribute_id,
                    multiplier=multiplier,
                ))
        return rejected

    # -- Internal -----------------------------------------------------------

    def _submit(self, event: BaseEvent) -> TransitionResult:
        event.sequence = self._last_sequence + 1
        new_state, result = self.apply_event(event)
        if result.success and self._on_applied is not None:
            self._on_applied(event, new_state)
        return result


def new_engine(
    entity_id: str,
    entity_kind: EntityKind = EntityKind.DRONE,
    item_type_id: int = 0,
    constants: Optional[MutationConstants] = None,
    strict: bool = False,
    on_applied: Optional[Callable[[BaseEvent, MutationState], None]] = None,
) -> MutationEngine:
    """Engine with an initialised state and constants already injected."""
    engine = MutationEngine(strict=strict, on_applied=on_applied)
    engine.initialize_state(
        entity_id=entity_id, entity_kind=entity_kind, item_type_id=item_type_id,
    )
    engine.initialize_constants(constants)
    return engine
