"""
Mutation Runtime -- Integration Test

Scenarios:
  1. Debounce: rapid input publishes one verdict, for the latest text
  2. Debounce: cancellation publishes nothing
  3. Drone vs module persistence of selections and commits
  4. Confirm re-validates the edit field
  5. Persistence: replay from the event store, determinism verification
  6. Teardown recompute decision
  7. Item replacement keeps quantities and clears the mutation
  8. Two sessions on one stream: the stale writer is rejected
  9. Mutation items are limited to those applicable to the host

Run:  py -3 -m mutation_runtime.test_runtime
"""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mutation_kernel.constants import DEFAULT_MAX_ACTIVE, MAX_ACTIVE_DRONES_ATTRIBUTE_ID
from mutation_kernel.domain_types import (
    AttributeRange, CountPair, EntityKind, MutationConstants,
)
from mutation_kernel.events import CommitEditingValueEvent, InitializeConstantsEvent
from mutation_kernel.hashing import canonical_hash
from mutation_kernel.codec import FormatError
from mutation_kernel.validator import OutOfRangeError, VerdictKind

from mutation_runtime.debounce import DebounceController
from mutation_runtime.event_repository import EventRepository, SequenceConflictError
from mutation_runtime.interfaces import (
    MutationItemNotApplicableError, RecordingPipeline, StaticMetadataProvider,
    UnknownMutationItemError,
)
from mutation_runtime.session import (
    DeterminismError, MutationEditingSession, StreamCorruptedError,
)


ATTR_A = 64
ATTR_B = 51
MUTATION_ITEM = 500
DRONE_TYPE = 2488
OTHER_TYPE = 31000
OTHER_ITEM = 501
ENTITY = "fit:1:drone:0"

RANGES = [
    AttributeRange(ATTR_A, "Damage Modifier", 0.90, 1.20, "damage.png", True),
    AttributeRange(ATTR_B, "Rate of Fire", 0.85, 1.10, "rof.png", False),
]
FAST = MutationConstants(debounce_delay_ms=10)


def _metadata() -> StaticMetadataProvider:
    return StaticMetadataProvider(
        {MUTATION_ITEM: RANGES, OTHER_ITEM: RANGES[:1]},
        {DRONE_TYPE: [MUTATION_ITEM], OTHER_TYPE: [OTHER_ITEM]},
    )


def _session(
    pipeline: RecordingPipeline | None = None,
    entity_kind: EntityKind = EntityKind.DRONE,
    repo: EventRepository | None = None,
    total: int = 1,
    active: int = 0,
    item_type_id: int = DRONE_TYPE,
) -> MutationEditingSession:
    return MutationEditingSession(
        entity_id=ENTITY,
        item_type_id=item_type_id,
        metadata=_metadata(),
        pipeline=pipeline if pipeline is not None else RecordingPipeline(),
        entity_kind=entity_kind,
        event_repo=repo,
        total=total,
        active=active,
        constants=FAST,
    )


# ───────────────────────────────────────────────────────────────
# Debounce
# ───────────────────────────────────────────────────────────────

def test_01_rapid_input_publishes_latest_only() -> None:
    published = []

    async def scenario() -> None:
        ctrl = DebounceController(lambda: RANGES[0], published.append, delay=0.01)
        ctrl.submit("1")
        ctrl.submit("15")
        await ctrl.wait()
        assert ctrl.submitted_count == 2
        assert ctrl.cancelled_count == 1

    asyncio.run(scenario())
    assert len(published) == 1
    assert published[0].text == "15"
    assert published[0].verdict.kind is VerdictKind.VALID
    assert published[0].verdict.multiplier == 1.15


def test_02_cancel_publishes_nothing() -> None:
    published = []

    async def scenario() -> None:
        ctrl = DebounceController(lambda: RANGES[0], published.append, delay=0.01)
        ctrl.submit("15")
        ctrl.cancel()
        ctrl.cancel()
        await asyncio.sleep(0.05)
        assert not ctrl.pending
        assert ctrl.latest is None

    asyncio.run(scenario())
    assert published == []


def test_03_invalid_verdicts_carry_errors() -> None:
    async def scenario() -> list:
        ctrl = DebounceController(lambda: RANGES[0], delay=0.0)
        results = []
        for text in ("abc", "50", "   "):
            ctrl.submit(text)
            results.append(await ctrl.wait())
        return results

    bad_format, out_of_range, empty = asyncio.run(scenario())
    assert isinstance(bad_format.verdict.error, FormatError)
    assert isinstance(out_of_range.verdict.error, OutOfRangeError)
    assert out_of_range.verdict.message == "Value must be between -10% and +20%"
    assert empty.verdict.kind is VerdictKind.EMPTY
    assert empty.verdict.message is None
    assert not empty.is_confirmable


def test_04_no_publish_once_editing_closed() -> None:
    published = []

    async def scenario() -> None:
        ctrl = DebounceController(lambda: None, published.append, delay=0.0)
        ctrl.submit("10")
        await ctrl.wait()

    asyncio.run(scenario())
    assert published == []


# ───────────────────────────────────────────────────────────────
# Session
# ───────────────────────────────────────────────────────────────

def test_05_drone_flow_persists_every_step() -> None:
    pipeline = RecordingPipeline()
    session = _session(pipeline)
    session.open()

    session.select_mutation_item(MUTATION_ITEM)
    assert pipeline.mutations[ENTITY] == (MUTATION_ITEM, {})

    assert session.begin_editing(ATTR_A).success
    assert session.input_text == ""
    result = session.confirm("15")
    assert result.success and result.multiplier == 1.15
    assert pipeline.mutations[ENTITY] == (MUTATION_ITEM, {ATTR_A: 1.15})
    assert session.state.editing_attribute_id is None

    session.begin_editing(ATTR_A)
    assert session.input_text == "15"
    session.cancel_editing()
    assert session.state.export_mutated_values() == {ATTR_A: 1.15}

    session.clear_mutation()
    assert pipeline.mutations[ENTITY] == (None, {})
    assert session.state.attributes == []


def test_06_module_selection_is_temporary() -> None:
    pipeline = RecordingPipeline()
    session = _session(pipeline, entity_kind=EntityKind.MODULE)
    session.open()

    session.select_mutation_item(MUTATION_ITEM)
    assert ENTITY not in pipeline.mutations
    assert session.state.has_temporary_selection
    session.clear_mutation()
    assert ENTITY not in pipeline.mutations

    session.select_mutation_item(MUTATION_ITEM)
    session.begin_editing(ATTR_A)
    assert session.confirm("-5").success
    assert pipeline.mutations[ENTITY] == (MUTATION_ITEM, {ATTR_A: 0.95})
    session.clear_mutation()
    assert pipeline.mutations[ENTITY] == (None, {})


def test_07_confirm_revalidates_text() -> None:
    pipeline = RecordingPipeline()
    session = _session(pipeline)
    session.open()

    no_edit = session.confirm("10")
    assert not no_edit.success

    session.select_mutation_item(MUTATION_ITEM)
    session.begin_editing(ATTR_B)
    for text in ("abc", "11", "", " 5"):
        result = session.confirm(text)
        assert not result.success, text
        assert result.attribute_id == ATTR_B
    assert session.state.editing_attribute_id == ATTR_B
    assert pipeline.mutations[ENTITY] == (MUTATION_ITEM, {})

    unknown = session.begin_editing(999)
    assert not unknown.success
    assert session.state.editing_attribute_id == ATTR_B


def test_08_async_input_then_confirm() -> None:
    session = _session()
    session.open()
    session.select_mutation_item(MUTATION_ITEM)
    session.begin_editing(ATTR_A)

    async def scenario() -> None:
        session.input_changed("1")
        session.input_changed("10")
        assert not session.is_confirmable
        await session.debounce.wait()
        assert session.is_confirmable
        assert session.latest_verdict.text == "10"

    asyncio.run(scenario())
    result = session.confirm()
    assert result.success and result.multiplier == 1.1
    assert session.latest_verdict is None
    metrics = session.get_metrics()
    assert metrics.submitted_validations == 2
    assert metrics.published_verdicts == 1
    assert metrics.mutated_count == 1


def test_09_restore_from_pipeline_values() -> None:
    session = _session()
    rejected = session.open(MUTATION_ITEM, {ATTR_A: 1.05, ATTR_B: 2.0})
    assert [r.attribute_id for r in rejected] == [ATTR_B]
    assert session.state.export_mutated_values() == {ATTR_A: 1.05}
    assert session.state.editing_attribute_id is None


def test_10_unknown_mutation_item() -> None:
    session = _session()
    session.open()
    try:
        session.select_mutation_item(12345)
    except UnknownMutationItemError as exc:
        assert exc.mutation_item_id == 12345
    else:
        raise AssertionError("Expected UnknownMutationItemError")
    assert session.state.selected_mutation_item_id is None


# ───────────────────────────────────────────────────────────────
# Persistence
# ───────────────────────────────────────────────────────────────

def test_11_replay_from_event_store() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        repo = EventRepository(os.path.join(tmp, "events.db"))
        try:
            first = _session(repo=repo)
            first.open()
            first.select_mutation_item(MUTATION_ITEM)
            first.begin_editing(ATTR_A)
            first.confirm("15")
            first.begin_editing(ATTR_B)
            expected_hash = canonical_hash(first.state)

            assert repo.get_last_sequence(first.entity_id) == 5
            assert first.current_sequence == 5

            second = _session(repo=repo, item_type_id=1)
            assert second.open() == []
            assert canonical_hash(second.state) == expected_hash
            assert second.state.item_type_id == DRONE_TYPE
            assert second.state.editing_attribute_id == ATTR_B
            assert second.verify_determinism()

            metrics = second.get_metrics()
            assert metrics.event_count == 5
            assert metrics.last_state_hash == expected_hash
        finally:
            repo.close()


def test_12_failed_operations_are_not_persisted() -> None:
    repo = EventRepository(":memory:")
    session = _session(repo=repo)
    session.open()
    session.select_mutation_item(MUTATION_ITEM)
    session.begin_editing(999)
    session.confirm("10")
    assert repo.get_last_sequence(session.entity_id) == 2
    repo.close()


def test_13_tampered_hash_is_detected() -> None:
    repo = EventRepository(":memory:")
    session = _session(repo=repo)
    session.open()
    session.select_mutation_item(MUTATION_ITEM)
    repo.update_metadata(session.entity_id, 2, "0" * 64)
    try:
        session.verify_determinism()
    except DeterminismError as exc:
        assert exc.expected == "0" * 64
    else:
        raise AssertionError("Expected DeterminismError")
    finally:
        repo.close()


def test_14_idempotent_append() -> None:
    repo = EventRepository(":memory:")
    event = InitializeConstantsEvent(sequence=1, event_uuid="init-1")
    assert repo.append_event("e", event) == 1
    assert repo.append_event("e", event) == 1
    assert len(repo.load_events("e")) == 1
    repo.close()


# ───────────────────────────────────────────────────────────────
# Quantity and teardown
# ───────────────────────────────────────────────────────────────

def test_15_teardown_recomputes_after_total_change() -> None:
    pipeline = RecordingPipeline()
    session = _session(pipeline, total=2, active=1)
    session.open()
    assert session.set_total(3) == CountPair(3, 1)
    assert pipeline.quantities[ENTITY] == (3, 1)
    report = session.close()
    assert report.total_changed and report.requires_recompute
    assert pipeline.recompute_count == 1
    session.close()
    assert pipeline.recompute_count == 1


def test_16_teardown_skips_recompute_when_active_restored() -> None:
    pipeline = RecordingPipeline()
    session = _session(pipeline, total=3, active=1)
    session.open()
    session.set_active(2)
    session.set_active(1)
    report = session.close()
    assert not report.requires_recompute
    assert pipeline.recompute_count == 0


def test_17_active_follows_external_cap() -> None:
    pipeline = RecordingPipeline({MAX_ACTIVE_DRONES_ATTRIBUTE_ID: 5})
    session = _session(pipeline, total=10, active=5)
    session.open()
    assert session.set_active(8) == CountPair(10, 5)
    pipeline.character_attributes[MAX_ACTIVE_DRONES_ATTRIBUTE_ID] = 2
    assert session.set_active(5) == CountPair(10, 2)
    assert session.set_total(1) == CountPair(1, 1)
    assert session.set_total(900) == CountPair(500, 1)


def test_18_replace_item_keeps_quantities() -> None:
    pipeline = RecordingPipeline()
    session = _session(pipeline, total=4, active=3)
    session.open()
    session.select_mutation_item(MUTATION_ITEM)
    session.begin_editing(ATTR_A)
    session.confirm("10")

    result = session.replace_item(2489)
    assert result.success and result.mutation_changed
    assert session.state.item_type_id == 2489
    assert session.state.selected_mutation_item_id is None
    assert session.pair == CountPair(4, 3)
    assert pipeline.replacements == [(ENTITY, 2489)]
    assert pipeline.quantities[ENTITY] == (4, 3)
    assert ENTITY not in pipeline.mutations

    same = session.replace_item(2489)
    assert same.success and not same.mutation_changed
    assert len(pipeline.replacements) == 1


# ───────────────────────────────────────────────────────────────
# Shared streams and applicability
# ───────────────────────────────────────────────────────────────

def test_19_stale_session_cannot_overwrite_stream() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        repo = EventRepository(os.path.join(tmp, "events.db"))
        try:
            pipeline = RecordingPipeline()
            editor = _session(pipeline, repo=repo)
            editor.open()
            editor.select_mutation_item(MUTATION_ITEM)
            editor.begin_editing(ATTR_A)

            first = _session(pipeline, repo=repo)
            second = _session(pipeline, repo=repo)
            first.open()
            second.open()

            assert first.confirm("10").success
            try:
                second.confirm("15")
            except SequenceConflictError as exc:
                assert exc.sequence == 4 and exc.stored_sequence == 4
            else:
                raise AssertionError("Expected SequenceConflictError")

            assert pipeline.mutations[ENTITY] == (MUTATION_ITEM, {ATTR_A: 1.1})
            assert repo.get_last_sequence(ENTITY) == 4
            # the loser was brought back in line with the store
            assert second.current_sequence == 4
            assert second.state.export_mutated_values() == {ATTR_A: 1.1}
            assert second.input_text == ""

            assert second.cancel_editing().success
            assert repo.get_last_sequence(ENTITY) == 5

            reopened = _session(pipeline, repo=repo)
            reopened.open()
            assert reopened.state.export_mutated_values() == {ATTR_A: 1.1}
            assert reopened.current_sequence == 5
            assert reopened.verify_determinism()
        finally:
            repo.close()


def test_20_unreplayable_stream_is_reported() -> None:
    repo = EventRepository(":memory:")
    try:
        repo.append_event(ENTITY, InitializeConstantsEvent(
            sequence=1, payload={"item_type_id": DRONE_TYPE},
        ))
        repo.append_event(ENTITY, CommitEditingValueEvent(
            sequence=2, payload={"multiplier": 1.1},
        ))
        session = _session(repo=repo)
        try:
            session.open()
        except StreamCorruptedError as exc:
            assert exc.entity_id == ENTITY
            assert exc.sequence == 2
            assert "No attribute is being edited" in exc.reason
        else:
            raise AssertionError("Expected StreamCorruptedError")
    finally:
        repo.close()


def test_21_store_rejects_stale_and_gapped_appends() -> None:
    repo = EventRepository(":memory:")
    try:
        assert repo.append_event("e", InitializeConstantsEvent(sequence=1)) == 1
        for sequence in (1, 3):
            try:
                repo.append_event("e", CommitEditingValueEvent(
                    sequence=sequence, payload={"multiplier": 1.0},
                ))
            except SequenceConflictError as exc:
                assert exc.stored_sequence == 1
            else:
                raise AssertionError(f"Expected a conflict for sequence {sequence}")
        assert repo.get_last_sequence("e") == 1
        assert [e.sequence for e in repo.load_events("e")] == [1]
    finally:
        repo.close()


def test_22_mutation_items_follow_the_host() -> None:
    pipeline = RecordingPipeline()
    session = _session(pipeline)
    session.open()
    assert session.available_mutation_items() == [MUTATION_ITEM]

    try:
        session.select_mutation_item(OTHER_ITEM)
    except MutationItemNotApplicableError as exc:
        assert (exc.mutation_item_id, exc.item_type_id) == (OTHER_ITEM, DRONE_TYPE)
    else:
        raise AssertionError("Expected MutationItemNotApplicableError")
    assert session.state.selected_mutation_item_id is None
    assert ENTITY not in pipeline.mutations

    session.replace_item(OTHER_TYPE)
    assert session.available_mutation_items() == [OTHER_ITEM]
    assert session.select_mutation_item(OTHER_ITEM).success

    stale = _session()
    try:
        stale.open(OTHER_ITEM, {ATTR_A: 1.0})
    except MutationItemNotApplicableError:
        pass
    else:
        raise AssertionError("Expected MutationItemNotApplicableError")


def test_23_active_cap_comes_from_character_attribute() -> None:
    assert RecordingPipeline().max_active() == DEFAULT_MAX_ACTIVE
    pipeline = RecordingPipeline({MAX_ACTIVE_DRONES_ATTRIBUTE_ID: 3.0})
    assert pipeline.max_active() == 3
    session = _session(pipeline, total=10, active=2)
    session.open()
    assert session.set_active(9) == CountPair(10, 3)
    assert session.get_state()["active_cap"] == 3


_TESTS = [
    test_01_rapid_input_publishes_latest_only,
    test_02_cancel_publishes_nothing,
    test_03_invalid_verdicts_carry_errors,
    test_04_no_publish_once_editing_closed,
    test_05_drone_flow_persists_every_step,
    test_06_module_selection_is_temporary,
    test_07_confirm_revalidates_text,
    test_08_async_input_then_confirm,
    test_09_restore_from_pipeline_values,
    test_10_unknown_mutation_item,
    test_11_replay_from_event_store,
    test_12_failed_operations_are_not_persisted,
    test_13_tampered_hash_is_detected,
    test_14_idempotent_append,
    test_15_teardown_recomputes_after_total_change,
    test_16_teardown_skips_recompute_when_active_restored,
    test_17_active_follows_external_cap,
    test_18_replace_item_keeps_quantities,
    test_19_stale_session_cannot_overwrite_stream,
    test_20_unreplayable_stream_is_reported,
    test_21_store_rejects_stale_and_gapped_appends,
    test_22_mutation_items_follow_the_host,
    test_23_active_cap_comes_from_character_attribute,
]


def main() -> None:
    passed = 0
    failed = 0
    for fn in _TESTS:
        try:
            fn()
            print(f"  [PASS] {fn.__name__}")
            passed += 1
        except Exception as exc:
            print(f"  [FAIL] {fn.__name__}: {exc!r}")
            failed += 1
    print(f"\n{passed} passed, {failed} failed")
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
