"""
Tests for the account lockout tracker.

A mutable clock drives every test so lock windows can be crossed without
sleeping.
"""
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.rbac.exceptions import NotFound
from apps.rbac.lockout import AccountLockoutTracker, LockStatus


class FakeClock:

    def __init__(self):
        self.now = timezone.now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return AccountLockoutTracker(threshold=5, lock_minutes=15, manual_lock_hours=24, clock=clock)


@pytest.mark.django_db
class TestFailedAttempts:

    def test_failures_below_threshold_stay_open(self, tracker, user):
        for expected in range(1, 5):
            state = tracker.record_failed(user.pk)
            assert state.status == LockStatus.OPEN
            assert state.failed_attempts == expected

    def test_threshold_locks_for_window(self, tracker, user, clock):
        for _ in range(4):
            tracker.record_failed(user.pk)

        state = tracker.record_failed(user.pk)

        assert state.is_locked
        assert state.failed_attempts == 5
        assert state.locked_until == clock.now + timedelta(minutes=15)
        assert state.retry_after == 15 * 60

        user.refresh_from_db()
        assert user.locked_until == clock.now + timedelta(minutes=15)

    def test_retry_after_counts_down(self, tracker, user, clock):
        for _ in range(5):
            tracker.record_failed(user.pk)
        clock.advance(minutes=10, seconds=30)

        state = tracker.check(user.pk)

        assert state.is_locked
        assert state.retry_after == 4 * 60 + 30

    def test_lock_expires(self, tracker, user, clock):
        for _ in range(5):
            tracker.record_failed(user.pk)
        clock.advance(minutes=15, seconds=1)

        assert tracker.check(user.pk).status == LockStatus.OPEN

    def test_failure_after_expired_lock_relocks(self, tracker, user, clock):
        """The counter survives lock expiry, so one more failure locks again."""
        for _ in range(5):
            tracker.record_failed(user.pk)
        clock.advance(minutes=16)

        state = tracker.record_failed(user.pk)

        assert state.is_locked
        assert state.failed_attempts == 6
        assert state.locked_until == clock.now + timedelta(minutes=15)

    def test_success_resets(self, tracker, user):
        for _ in range(3):
            tracker.record_failed(user.pk)

        state = tracker.record_successful(user.pk)

        assert state.status == LockStatus.OPEN
        assert state.failed_attempts == 0
        user.refresh_from_db()
        assert user.failed_login_attempts == 0
        assert user.locked_until is None

    def test_unknown_principal_is_open(self, tracker):
        assert tracker.check(uuid.uuid4()).status == LockStatus.OPEN
        assert tracker.record_failed(uuid.uuid4()).status == LockStatus.OPEN

    def test_settings_defaults(self, settings):
        settings.RBAC_LOCKOUT_THRESHOLD = 3
        settings.RBAC_LOCKOUT_MINUTES = 30

        tracker = AccountLockoutTracker()

        assert tracker.threshold == 3
        assert tracker.lock_minutes == 30


@pytest.mark.django_db
class TestAdministrativeLock:

    def test_manual_lock(self, tracker, user, clock):
        state = tracker.lock(user.pk)

        assert state.is_locked
        assert state.locked_until == clock.now + timedelta(hours=24)
        assert state.failed_attempts == 5

    def test_manual_lock_custom_hours(self, tracker, user, clock):
        assert tracker.lock(user.pk, hours=2).locked_until == clock.now + timedelta(hours=2)

    def test_lock_is_idempotent(self, tracker, user):
        first = tracker.lock(user.pk)
        second = tracker.lock(user.pk)

        assert first == second

    def test_unlock_clears_lock_and_counter(self, tracker, user):
        tracker.lock(user.pk)

        state = tracker.unlock(user.pk)

        assert state.status == LockStatus.OPEN
        user.refresh_from_db()
        assert user.failed_login_attempts == 0
        assert user.locked_until is None

    def test_unlock_open_account(self, tracker, user):
        assert tracker.unlock(user.pk).status == LockStatus.OPEN

    def test_lock_unknown_user(self, tracker):
        with pytest.raises(NotFound):
            tracker.lock(uuid.uuid4())
        with pytest.raises(NotFound):
            tracker.unlock(uuid.uuid4())


@pytest.mark.django_db
class TestLockedAccounts:

    def test_lists_locked_and_warned(self, tracker, make_user):
        locked, warned, fine = make_user(), make_user(), make_user()
        tracker.lock(locked.pk)
        for _ in range(3):
            tracker.record_failed(warned.pk)
        tracker.record_failed(fine.pk)

        accounts = list(tracker.locked_accounts())

        assert accounts == [locked, warned]

    def test_state_as_dict(self, tracker, user, clock):
        state = tracker.lock(user.pk, hours=1)

        assert state.as_dict() == {
            'status': 'LOCKED',
            'failed_attempts': 5,
            'locked_until': (clock.now + timedelta(hours=1)).isoformat(),
            'retry_after': 3600,
        }
