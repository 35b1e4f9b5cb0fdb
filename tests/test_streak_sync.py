"""
Tests for StreakSyncService against a real session.

Covered:
  - full / ember / none classification of today and the disjoint day sets
  - idempotence (second sync writes nothing)
  - rest-day neutrality
  - milestone award gating and reset on break
  - freeze recovery, insufficient freezes, nothing to recover
  - admin mutations and their validation
  - optimistic-concurrency retries against a second live session
  - per-user locks and ledger toggles racing another writer

"Today" starts at 2024-01-10 (a Wednesday) and is moved with anchor.set_today.
"""
from __future__ import annotations

import json
import threading
from datetime import date, timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    InsufficientCurrencyError,
    NoRecoveryAvailableError,
    NotFoundError,
    StreakWriteConflictError,
    ValidationError,
)
from app.models.habit import Habit, HabitCompletion
from app.models.streak import StreakRecord
from app.services import habits as habit_service
from app.services.streak_state import StreakStatus, load_state
from app.services.streak_sync import StreakSyncService, UserLockRegistry
from app.services.users import create_user

TODAY = date(2024, 1, 10)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _user(db, name="asha"):
    return create_user(db, name)


def _habit(db, user_id, active_days=(1, 2, 3, 4, 5, 6, 7), duration_target=None, done=()):
    habit = Habit(
        user_id=user_id,
        name="Read",
        active_days=json.dumps(list(active_days)),
        duration_target=duration_target,
    )
    habit.completions = [HabitCompletion(day=d) for d in done]
    db.add(habit)
    db.commit()
    return habit


def _record(db, user_id) -> StreakRecord:
    db.expire_all()
    return db.query(StreakRecord).filter(StreakRecord.user_id == user_id).one()


def _complete_days(db, sync, anchor, habit_id, start: date, n: int):
    """Toggle the habit on for n consecutive days starting at `start`, syncing each day."""
    snap = None
    for i in range(n):
        anchor.set_today(start + timedelta(days=i))
        _, completed, snap = habit_service.toggle_completion(db, sync, habit_id)
        assert completed
    return snap


# ---------------------------------------------------------------------------
# Classification of today
# ---------------------------------------------------------------------------

class TestTodayClassification:
    def test_full_day_enters_history(self, db, sync):
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        snap = sync.sync(db, user.id)
        assert snap.streak == 1
        assert snap.history == [TODAY]
        assert snap.ember_days == []
        assert snap.streak_state is StreakStatus.active
        assert snap.completion_percentage == 100
        assert snap.last_completed_date_ist == TODAY
        assert (snap.completed_habits, snap.total_habits) == (1, 1)
        assert snap.streak_updated

    def test_partial_day_is_ember(self, db, sync):
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        _habit(db, user.id)
        snap = sync.sync(db, user.id)
        assert snap.ember_days == [TODAY]
        assert snap.history == []
        assert snap.streak == 0
        assert snap.streak_state is StreakStatus.frozen
        assert snap.completion_percentage == 50
        assert snap.last_completed_date_ist == TODAY

    def test_partial_then_full_moves_day(self, db, sync):
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        second = _habit(db, user.id)
        sync.sync(db, user.id)
        _, _, snap = habit_service.toggle_completion(db, sync, second.id)
        assert snap.history == [TODAY]
        assert snap.ember_days == []
        assert snap.streak == 1

    def test_untoggling_falls_back_to_latest_history_day(self, db, sync):
        user = _user(db)
        yesterday = TODAY - timedelta(days=1)
        habit = _habit(db, user.id, done=[yesterday, TODAY])
        sync.add_history_days(db, user.id, [str(yesterday)])
        sync.sync(db, user.id)

        _, completed, snap = habit_service.toggle_completion(db, sync, habit.id)
        assert not completed
        assert TODAY not in snap.history
        assert snap.streak == 1
        assert snap.streak_state is StreakStatus.extinguished
        assert snap.completion_percentage == 0
        assert snap.last_completed_date_ist == yesterday

    def test_untoggling_only_day_clears_last_completed(self, db, sync):
        user = _user(db)
        habit = _habit(db, user.id, done=[TODAY])
        sync.sync(db, user.id)
        _, _, snap = habit_service.toggle_completion(db, sync, habit.id)
        assert snap.last_completed_date_ist is None
        assert snap.last_completed_date is None
        assert snap.streak == 0

    def test_history_and_embers_stay_disjoint(self, db, sync):
        user = _user(db)
        a = _habit(db, user.id)
        b = _habit(db, user.id)
        for habit_id in (a.id, b.id, a.id, b.id, a.id):
            habit_service.toggle_completion(db, sync, habit_id)
            _, state = load_state(db, user.id)
            assert not (state.history & state.ember_days)

    def test_unknown_user(self, db, sync):
        with pytest.raises(NotFoundError):
            sync.sync(db, 999)


# ---------------------------------------------------------------------------
# Idempotence and rest days
# ---------------------------------------------------------------------------

class TestIdempotence:
    def test_second_sync_writes_nothing(self, db, sync):
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        first = sync.sync(db, user.id)
        version = _record(db, user.id).version

        second = sync.sync(db, user.id)
        assert not second.streak_updated
        assert second.streak == first.streak
        assert second.history == first.history
        assert _record(db, user.id).version == version

    def test_rest_day_leaves_state_untouched(self, db, sync):
        user = _user(db)
        _habit(db, user.id, active_days=[1])  # Mondays only; today is Wednesday
        sync.add_history_days(db, user.id, ["2024-01-08", "2024-01-09"])
        before = _record(db, user.id)
        before_doc = (before.history, before.ember_days, before.streak_count, before.awarded_milestones)
        version = before.version

        snap = sync.sync(db, user.id)
        after = _record(db, user.id)
        assert not snap.streak_updated
        assert (after.history, after.ember_days, after.streak_count, after.awarded_milestones) == before_doc
        assert after.version == version

    def test_no_habits_does_not_create_state(self, db, sync):
        user = _user(db)
        snap = sync.sync(db, user.id)
        assert snap.streak == 0
        assert snap.streak_state is StreakStatus.extinguished
        assert db.query(StreakRecord).count() == 0

    def test_finished_habit_makes_rest_day(self, db, sync):
        user = _user(db)
        _habit(db, user.id, duration_target=1, done=[TODAY - timedelta(days=1)])
        snap = sync.sync(db, user.id)
        assert not snap.streak_updated
        assert snap.total_habits == 0


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------

class TestMilestones:
    def test_seventh_day_awards_one_freeze(self, db, sync, anchor):
        user = _user(db)
        habit = _habit(db, user.id)
        start = date(2024, 1, 1)

        snap = _complete_days(db, sync, anchor, habit.id, start, 6)
        assert snap.streak == 6
        assert snap.streak_freezes == 0

        snap = _complete_days(db, sync, anchor, habit.id, start + timedelta(days=6), 1)
        assert snap.streak == 7
        assert snap.streak_freezes == 1
        _, state = load_state(db, user.id)
        assert state.awarded_milestones == {1}

        # idempotent re-sync at 7
        snap = sync.sync(db, user.id)
        assert snap.streak_freezes == 1

    def test_toggle_off_and_on_does_not_pay_twice(self, db, sync, anchor):
        user = _user(db)
        habit = _habit(db, user.id)
        _complete_days(db, sync, anchor, habit.id, date(2024, 1, 1), 7)

        _, completed, snap = habit_service.toggle_completion(db, sync, habit.id)
        assert not completed
        assert snap.streak == 6
        _, completed, snap = habit_service.toggle_completion(db, sync, habit.id)
        assert completed
        assert snap.streak == 7
        assert snap.streak_freezes == 1

    def test_break_resets_milestones_and_climb_re_awards(self, db, sync, anchor):
        user = _user(db)
        habit = _habit(db, user.id)
        _complete_days(db, sync, anchor, habit.id, date(2024, 1, 1), 7)

        # Jan 8 skipped; on Jan 9 the streak is gone
        anchor.set_today(date(2024, 1, 9))
        snap = sync.sync(db, user.id)
        assert snap.streak == 0
        _, state = load_state(db, user.id)
        assert state.awarded_milestones == set()
        assert state.streak_freezes == 1

        snap = _complete_days(db, sync, anchor, habit.id, date(2024, 1, 9), 7)
        assert snap.streak == 7
        assert snap.streak_freezes == 2
        _, state = load_state(db, user.id)
        assert state.awarded_milestones == {1}

    def test_no_award_without_history_change(self, db, sync, anchor):
        # Count rises from a freeze spend, not from a new full day.
        user = _user(db)
        sync.apply_preset(db, user.id, "test-recovery")
        _, state = load_state(db, user.id)
        freezes_before = state.streak_freezes
        snap, _ = sync.apply_freeze(db, user.id)
        assert snap.streak == 6
        assert snap.streak_freezes == freezes_before - 1
        _, state = load_state(db, user.id)
        assert state.awarded_milestones == set()


# ---------------------------------------------------------------------------
# Freeze recovery
# ---------------------------------------------------------------------------

class TestFreezeRecovery:
    def test_apply_freeze_fills_gap(self, db, sync):
        user = _user(db)
        sync.apply_preset(db, user.id, "test-recovery")
        plan = sync.recovery_plan(db, user.id)
        assert plan.recoverable
        assert plan.missing_dates == [TODAY - timedelta(days=1)]

        snap, applied = sync.apply_freeze(db, user.id)
        assert applied.days_needed == 1
        assert snap.frozen_days == [TODAY - timedelta(days=1)]
        assert snap.streak_freezes == 0
        assert snap.streak == 6
        assert sync.recount(db, user.id) == 6

    def test_insufficient_freezes_leaves_state_unchanged(self, db, sync):
        user = _user(db)
        sync.add_history_days(db, user.id, ["2024-01-05", "2024-01-09"])
        version = _record(db, user.id).version

        with pytest.raises(InsufficientCurrencyError) as exc:
            sync.apply_freeze(db, user.id)
        assert exc.value.details == {"available": 0, "required": 3}
        record = _record(db, user.id)
        assert record.version == version
        assert record.frozen_days == "[]"

    def test_nothing_to_recover(self, db, sync):
        user = _user(db)
        with pytest.raises(NoRecoveryAvailableError):
            sync.apply_freeze(db, user.id)

    def test_frozen_days_survive_sync(self, db, sync):
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        sync.apply_preset(db, user.id, "test-recovery")
        sync.apply_freeze(db, user.id)
        snap = sync.sync(db, user.id)
        assert snap.streak == 7
        assert snap.frozen_days == [TODAY - timedelta(days=1)]


# ---------------------------------------------------------------------------
# Admin mutations
# ---------------------------------------------------------------------------

class TestAdmin:
    @pytest.mark.parametrize("bad", [-1, 11, True, "3"])
    def test_set_freezes_rejects_out_of_range(self, db, sync, bad):
        user = _user(db)
        with pytest.raises(ValidationError):
            sync.set_freezes(db, user.id, bad)

    def test_set_freezes(self, db, sync):
        user = _user(db)
        snap = sync.set_freezes(db, user.id, 4)
        assert snap.streak_freezes == 4

    def test_add_history_recounts(self, db, sync):
        user = _user(db)
        snap = sync.add_history_days(db, user.id, ["2024-01-08", "2024-01-09"])
        assert snap.streak == 2
        assert snap.last_completed_date_ist == date(2024, 1, 9)

    def test_add_history_moves_ember_day(self, db, sync):
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        _habit(db, user.id)
        sync.sync(db, user.id)
        snap = sync.add_history_days(db, user.id, [str(TODAY)])
        assert snap.history == [TODAY]
        assert snap.ember_days == []

    @pytest.mark.parametrize("bad", [[], ["2024-1-9"], ["not-a-date"], ["2024-01-11"]])
    def test_add_history_validation(self, db, sync, bad):
        user = _user(db)
        with pytest.raises(ValidationError):
            sync.add_history_days(db, user.id, bad)

    def test_reset(self, db, sync):
        user = _user(db)
        sync.apply_preset(db, user.id, "test-long-streak")
        snap = sync.reset(db, user.id)
        assert snap.streak == 0
        assert snap.history == []
        _, state = load_state(db, user.id)
        assert state.awarded_milestones == set()

    def test_presets(self, db, sync):
        user = _user(db)
        snap = sync.apply_preset(db, user.id, "test-freeze")
        assert (snap.streak, snap.streak_freezes) == (7, 2)
        snap = sync.apply_preset(db, user.id, "test-long-streak")
        assert (snap.streak, snap.streak_freezes) == (30, 0)
        snap = sync.apply_preset(db, user.id, "test-recovery")
        assert (snap.streak, snap.streak_freezes) == (0, 1)
        assert snap.streak_state is StreakStatus.extinguished

    def test_unknown_preset(self, db, sync):
        user = _user(db)
        with pytest.raises(ValidationError):
            sync.apply_preset(db, user.id, "test-nope")


# ---------------------------------------------------------------------------
# Isolation and concurrency
# ---------------------------------------------------------------------------

class TestIsolation:
    def test_users_do_not_share_state(self, db, sync):
        a = _user(db, "a")
        b = _user(db, "b")
        _habit(db, a.id, done=[TODAY])
        sync.set_freezes(db, b.id, 3)
        sync.sync(db, a.id)
        _, state_b = load_state(db, b.id)
        assert state_b.history == set()
        assert state_b.streak_freezes == 3
        _, state_a = load_state(db, a.id)
        assert state_a.streak_freezes == 0


class TestUserLocks:
    def test_entry_dropped_after_release(self):
        locks = UserLockRegistry()
        with locks.hold(1):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_same_user_waits_for_holder(self):
        locks = UserLockRegistry()
        entered = threading.Event()

        def second_caller():
            with locks.hold(1):
                entered.set()

        with locks.hold(1):
            worker = threading.Thread(target=second_caller)
            worker.start()
            assert not entered.wait(0.2)
            assert len(locks) == 1
        worker.join(timeout=5)
        assert entered.is_set()
        assert len(locks) == 0

    def test_other_user_does_not_wait(self):
        locks = UserLockRegistry()
        entered = threading.Event()

        def other_user():
            with locks.hold(2):
                entered.set()

        with locks.hold(1):
            worker = threading.Thread(target=other_user)
            worker.start()
            worker.join(timeout=5)
            assert entered.is_set()
            assert len(locks) == 1
        assert len(locks) == 0

    def test_registry_empty_after_many_users_sync(self, db, sync):
        for name in ("a", "b", "c"):
            user = _user(db, name)
            _habit(db, user.id, done=[TODAY])
            sync.sync(db, user.id)
        assert len(sync.locks) == 0


class TestRetries:
    def test_stale_write_is_retried(self, db, anchor, monkeypatch):
        service = StreakSyncService(anchor, max_retries=3)
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        real = service._sync_once
        calls = {"n": 0}

        def flaky(db, user_id):
            calls["n"] += 1
            if calls["n"] < 3:
                raise StaleDataError("row changed")
            return real(db, user_id)

        monkeypatch.setattr(service, "_sync_once", flaky)
        snap = service.sync(db, user.id)
        assert calls["n"] == 3
        assert snap.streak == 1

    def test_gives_up_after_max_retries(self, db, anchor, monkeypatch):
        service = StreakSyncService(anchor, max_retries=2)
        user = _user(db)

        def always_stale(db, user_id):
            raise StaleDataError("row changed")

        monkeypatch.setattr(service, "_sync_once", always_stale)
        with pytest.raises(StreakWriteConflictError) as exc:
            service.sync(db, user.id)
        assert exc.value.details["attempts"] == 2


def _before_flush_once(db, action):
    """Run `action` once, just before `db` writes: another worker commits in between."""
    def hook(session, flush_context, instances):
        action()

    event.listen(db, "before_flush", hook, once=True)


class TestConcurrentWriters:
    """Two sessions with separate lock registries stand in for two worker processes."""

    def test_sync_rereads_after_freezes_changed(self, db, other_db, sync, anchor):
        user = _user(db)
        sync.add_history_days(db, user.id, ["2024-01-09"])
        _habit(db, user.id, done=[TODAY])
        version = _record(db, user.id).version
        other = StreakSyncService(anchor)

        _before_flush_once(db, lambda: other.set_freezes(other_db, user.id, 4))
        snap = sync.sync(db, user.id)

        assert snap.streak == 2
        assert snap.streak_freezes == 4
        db.expire_all()
        _, state = load_state(db, user.id)
        assert state.streak_freezes == 4
        assert state.history == {date(2024, 1, 9), TODAY}
        assert _record(db, user.id).version == version + 2

    def test_set_freezes_keeps_history_added_meanwhile(self, db, other_db, sync, anchor):
        user = _user(db)
        sync.add_history_days(db, user.id, ["2024-01-09"])
        other = StreakSyncService(anchor)

        _before_flush_once(db, lambda: other.add_history_days(other_db, user.id, ["2024-01-08"]))
        sync.set_freezes(db, user.id, 5)

        db.expire_all()
        _, state = load_state(db, user.id)
        assert state.history == {date(2024, 1, 8), date(2024, 1, 9)}
        assert state.streak_freezes == 5
        assert state.streak_count == 2

    def test_apply_freeze_spends_from_fresh_balance(self, db, other_db, sync, anchor):
        user = _user(db)
        sync.apply_preset(db, user.id, "test-recovery")
        other = StreakSyncService(anchor)

        _before_flush_once(db, lambda: other.set_freezes(other_db, user.id, 3))
        snap, plan = sync.apply_freeze(db, user.id)

        assert plan.days_needed == 1
        assert snap.streak_freezes == 2
        assert snap.frozen_days == [date(2024, 1, 9)]
        assert snap.streak == 6
        db.expire_all()
        _, state = load_state(db, user.id)
        assert state.streak_freezes == 2
        assert state.frozen_days == {date(2024, 1, 9)}

    def test_first_row_created_by_other_writer(self, db, other_db, sync, anchor):
        user = _user(db)
        _habit(db, user.id, done=[TODAY])
        other = StreakSyncService(anchor)

        _before_flush_once(db, lambda: other.set_freezes(other_db, user.id, 3))
        snap = sync.sync(db, user.id)

        assert snap.streak == 1
        db.expire_all()
        _, state = load_state(db, user.id)
        assert state.streak_freezes == 3
        assert state.history == {TODAY}
        assert db.query(StreakRecord).filter(StreakRecord.user_id == user.id).count() == 1


class TestConstraintViolations:
    """A CHECK failure is a bug in the write, not a race: no retry, no 409."""

    @staticmethod
    def _negative_freezes(sync, calls):
        def op(db, user_id):
            calls.append(user_id)
            record, state = load_state(db, user_id)
            state.streak_freezes = -1
            sync._persist(db, record, state)

        return op

    def test_insert_violation_propagates(self, db, sync):
        user = _user(db)
        calls = []
        with pytest.raises(IntegrityError):
            sync._run(db, user.id, self._negative_freezes(sync, calls))
        assert calls == [user.id]
        assert db.query(StreakRecord).count() == 0

    def test_update_violation_propagates(self, db, sync):
        user = _user(db)
        sync.set_freezes(db, user.id, 2)
        calls = []
        with pytest.raises(IntegrityError):
            sync._run(db, user.id, self._negative_freezes(sync, calls))
        assert calls == [user.id]
        assert _record(db, user.id).streak_freezes == 2
        assert len(sync.locks) == 0


# ---------------------------------------------------------------------------
# Completion ledger edits
# ---------------------------------------------------------------------------

class TestLedgerEdits:
    def _ledger(self, db, habit_id):
        db.expire_all()
        rows = db.query(HabitCompletion).filter(HabitCompletion.habit_id == habit_id).all()
        return sorted(c.day for c in rows)

    def test_update_rejects_future_completions(self, db, sync):
        user = _user(db)
        habit = _habit(db, user.id, duration_target=2)
        habit_id = habit.id

        with pytest.raises(ValidationError) as exc:
            habit_service.update_habit(
                db,
                sync,
                habit_id,
                name="Renamed",
                completions=[date(2024, 1, 11), date(2024, 1, 12)],
            )
        assert exc.value.details == {"field": "completions", "value": ["2024-01-11", "2024-01-12"]}
        assert self._ledger(db, habit_id) == []
        assert db.get(Habit, habit_id).name == "Read"

    def test_update_accepts_today_and_past(self, db, sync):
        user = _user(db)
        habit = _habit(db, user.id)
        h, snap = habit_service.update_habit(db, sync, habit.id, completions=[date(2024, 1, 9), TODAY])
        assert self._ledger(db, h.id) == [date(2024, 1, 9), TODAY]
        assert snap.history == [TODAY]

    def test_toggle_reads_ledger_fresh(self, db, other_db, sync):
        user = _user(db)
        habit_id = _habit(db, user.id).id
        stale = other_db.get(Habit, habit_id)
        assert stale.completions == []

        _, completed, _ = habit_service.toggle_completion(db, sync, habit_id)
        assert completed is True

        # other_db still holds the empty collection loaded above
        _, completed, snap = habit_service.toggle_completion(other_db, sync, habit_id)
        assert completed is False
        assert snap.history == []
        assert self._ledger(db, habit_id) == []

    def test_toggle_after_concurrent_insert_of_same_day(self, db, other_db, sync):
        user = _user(db)
        habit_id = _habit(db, user.id).id

        def insert_same_day():
            other_db.add(HabitCompletion(habit_id=habit_id, day=TODAY))
            other_db.commit()

        _before_flush_once(db, insert_same_day)
        _, completed, snap = habit_service.toggle_completion(db, sync, habit_id)

        assert completed is False
        assert snap.history == []
        assert self._ledger(db, habit_id) == []
