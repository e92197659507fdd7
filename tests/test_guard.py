"""
Tests for the TransitionGuard two-phase moves.
"""
from datetime import date

import pytest

from lifeboard.errors import (
    InvalidReference,
    MissingRequiredField,
    PersistenceFailure,
    TransitionPending,
    UnknownEntity,
)
from lifeboard.guard import GuardState, PendingTransition, TransitionGuard, required_capture
from lifeboard.schema import Capture
from lifeboard.store import BoardStore


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Requirement table
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("source,dest,expected", [
    ("active", "backend", None),
    ("active", "churned", Capture.CHURN),
    ("active", "paused", Capture.PAUSE),
    ("paused", "active", Capture.RESUME),
    ("paused", "churned", Capture.CHURN),
    ("paused", "paused", None),
    ("churned", "active", None),
])
def test_required_capture(source, dest, expected):
    assert required_capture(source, dest) is expected


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# State machine
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestPropose:

    def test_plain_move_commits_immediately(self, guard, store):
        result = guard.propose("s1", "active", "backend", 0, 0)
        assert not isinstance(result, PendingTransition)
        assert store.snapshot.locate("s1") == ("backend", 0)
        assert guard.state is GuardState.IDLE

    def test_churn_move_parks(self, guard, store):
        pending = guard.propose("s1", "active", "churned", 0, 0)
        assert isinstance(pending, PendingTransition)
        assert guard.state is GuardState.AWAITING_CHURN_DATE
        assert store.snapshot.locate("s1") == ("active", 0)

    def test_pause_and_resume_states(self, guard, store):
        guard.propose("s1", "active", "paused", 0, 0)
        assert guard.state is GuardState.AWAITING_PAUSE_DATE
        guard.confirm("2024-02-01", "medical")
        guard.propose("s1", "paused", "active", 0, 0)
        assert guard.state is GuardState.AWAITING_RESUME_DATE

    def test_second_proposal_rejected(self, guard):
        guard.propose("s1", "active", "churned", 0, 0)
        with pytest.raises(TransitionPending):
            guard.propose("s2", "active", "backend", 1, 0)
        assert guard.pending.entity_id == "s1"

    def test_stale_guarded_proposal_rejected(self, guard):
        with pytest.raises(InvalidReference):
            guard.propose("s1", "active", "churned", 2, 0)
        assert guard.state is GuardState.IDLE

    def test_unknown_entity(self, guard):
        with pytest.raises(UnknownEntity):
            guard.propose("ghost", "active", "churned", 0, 0)

    def test_pending_to_dict(self, guard):
        data = guard.propose("s1", "active", "churned", 0, 0).to_dict()
        assert data["requires"] == "churn"
        assert data["entityId"] == "s1"


class TestConfirm:

    def test_confirm_churn_records_and_moves(self, guard, store):
        guard.propose("s1", "active", "churned", 0, 0)
        snap = guard.confirm(date(2024, 3, 1))
        assert snap.locate("s1") == ("churned", 0)
        assert snap.entities["s1"].churn_date == date(2024, 3, 1)
        assert guard.state is GuardState.IDLE

    def test_confirm_without_date_stays_awaiting(self, guard, store):
        guard.propose("s1", "active", "churned", 0, 0)
        with pytest.raises(MissingRequiredField):
            guard.confirm(None)
        assert guard.state is GuardState.AWAITING_CHURN_DATE
        assert store.snapshot.locate("s1") == ("active", 0)

    def test_confirm_with_unparseable_date_stays_awaiting(self, guard, store):
        guard.propose("s1", "active", "churned", 0, 0)
        with pytest.raises(MissingRequiredField):
            guard.confirm("soon")
        assert guard.state is GuardState.AWAITING_CHURN_DATE
        assert store.snapshot.entities["s1"].churn_date is None

    def test_pause_requires_reason(self, guard):
        guard.propose("s2", "active", "paused", 1, 0)
        with pytest.raises(MissingRequiredField) as exc:
            guard.confirm("2024-03-01")
        assert exc.value.field_name == "pause_reason"
        snap = guard.confirm("2024-03-01", "family leave")
        assert snap.locate("s2") == ("paused", 0)
        assert snap.entities["s2"].pause_reason == "family leave"

    def test_resume_from_paused(self, guard):
        guard.propose("s2", "active", "paused", 1, 0)
        guard.confirm("2024-03-01", "exams")
        guard.propose("s2", "paused", "backend", 0, 2)
        snap = guard.confirm("2024-04-15")
        assert snap.locate("s2") == ("backend", 2)
        assert snap.entities["s2"].resume_date == date(2024, 4, 15)

    def test_confirm_with_nothing_pending(self, guard):
        with pytest.raises(InvalidReference):
            guard.confirm("2024-01-01")

    def test_confirm_is_atomic_single_write(self, failing_adapter):
        store = BoardStore(failing_adapter)
        store.load()
        guard = TransitionGuard(store)
        guard.propose("s1", "active", "churned", 0, 0)
        failing_adapter.writes.clear()
        guard.confirm("2024-03-01")
        assert failing_adapter.writes == ["kanbanBoard"]

    def test_stale_confirm_resets_to_idle(self, guard, store):
        guard.propose("s1", "active", "churned", 0, 0)
        # another edit shifts s1 before the date is entered
        store.move_entity("s3", "active", "active", 2, 0)
        with pytest.raises(InvalidReference):
            guard.confirm("2024-03-01")
        assert guard.state is GuardState.IDLE
        assert store.snapshot.entities["s1"].churn_date is None
        assert store.snapshot.locate("s1") == ("active", 1)

    def test_persistence_failure_keeps_move_in_memory(self, failing_adapter):
        store = BoardStore(failing_adapter)
        store.load()
        guard = TransitionGuard(store)
        guard.propose("s1", "active", "churned", 0, 0)
        failing_adapter.fail_writes = True
        with pytest.raises(PersistenceFailure):
            guard.confirm("2024-03-01")
        assert store.snapshot.locate("s1") == ("churned", 0)
        assert guard.state is GuardState.IDLE


def test_cancel_leaves_board_untouched(guard, store):
    before = store.snapshot
    guard.propose("s1", "active", "churned", 0, 0)
    dropped = guard.cancel()
    assert dropped.entity_id == "s1"
    assert guard.state is GuardState.IDLE
    assert store.snapshot is before
    assert guard.cancel() is None


def test_non_string_pause_reason_stays_awaiting(guard, store):
    guard.propose("s1", "active", "paused", 0, 0)
    with pytest.raises(MissingRequiredField) as exc:
        guard.confirm("2024-01-01", 5)
    assert exc.value.field_name == "pause_reason"
    assert guard.state is GuardState.AWAITING_PAUSE_DATE
    with pytest.raises(MissingRequiredField):
        store.record_pause("s1", "2024-01-01", ["not", "text"])
