"""
Account lockout tracker.

Two states per account:

    OPEN    locked_until is null or in the past
    LOCKED  locked_until is in the future

Each failed credential check increments failed_login_attempts. Reaching the
threshold (RBAC_LOCKOUT_THRESHOLD, 5) sets locked_until to now plus
RBAC_LOCKOUT_MINUTES (15). A successful check resets both fields. The
counter is not reset when a lock window expires, so the next failure after
an expired lock locks the account again immediately.

Counters use a plain read-modify-write. Two concurrent failures can both
read the same count and one increment is lost; the lock then triggers one
attempt late. This bounded relaxation is accepted.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from django.conf import settings
from django.db.models import F, Q
from django.utils import timezone

from apps.rbac.exceptions import NotFound
from apps.rbac.models import User
from apps.rbac.store import PolicyStore

logger = logging.getLogger(__name__)


class LockStatus(str, Enum):
    OPEN = 'OPEN'
    LOCKED = 'LOCKED'


@dataclass(frozen=True)
class LockState:
    """Lock status of an account at one instant."""

    status: LockStatus
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    retry_after: int = 0

    @property
    def is_locked(self) -> bool:
        return self.status == LockStatus.LOCKED

    @classmethod
    def open(cls, failed_attempts=0):
        return cls(status=LockStatus.OPEN, failed_attempts=failed_attempts)

    def as_dict(self):
        return {
            'status': self.status.value,
            'failed_attempts': self.failed_attempts,
            'locked_until': self.locked_until.isoformat() if self.locked_until else None,
            'retry_after': self.retry_after,
        }


class AccountLockoutTracker:
    """
    Failed-authentication counters and lock windows, stored on User.

    Args:
        threshold: Failures that trigger a lock
        lock_minutes: Automatic lock duration
        manual_lock_hours: Administrative lock duration
        clock: Callable returning the current aware datetime
        store: PolicyStore used to load users
    """

    def __init__(self, threshold: Optional[int] = None, lock_minutes: Optional[int] = None,
                 manual_lock_hours: Optional[int] = None, clock=None,
                 store: Optional[PolicyStore] = None):
        self.threshold = threshold or getattr(settings, 'RBAC_LOCKOUT_THRESHOLD', 5)
        self.lock_minutes = lock_minutes or getattr(settings, 'RBAC_LOCKOUT_MINUTES', 15)
        self.manual_lock_hours = manual_lock_hours or getattr(settings, 'RBAC_MANUAL_LOCK_HOURS', 24)
        self.clock = clock or timezone.now
        self.store = store or PolicyStore()

    def state_of(self, user: User, now: Optional[datetime] = None) -> LockState:
        """Lock state of a loaded user."""
        now = now or self.clock()
        if user.locked_until is not None and user.locked_until > now:
            return LockState(
                status=LockStatus.LOCKED,
                failed_attempts=user.failed_login_attempts,
                locked_until=user.locked_until,
                retry_after=math.ceil((user.locked_until - now).total_seconds()),
            )
        return LockState.open(user.failed_login_attempts)

    def _get_user(self, principal_id) -> Optional[User]:
        if isinstance(principal_id, User):
            return principal_id
        return self.store.get_user(principal_id)

    def _require_user(self, principal_id) -> User:
        user = self._get_user(principal_id)
        if user is None:
            raise NotFound("User not found", details={'user_id': str(principal_id)})
        return user

    def check(self, principal_id) -> LockState:
        """
        Current lock state. Unknown principals are reported OPEN; credential
        verification rejects them on its own.
        """
        user = self._get_user(principal_id)
        if user is None:
            return LockState.open()
        return self.state_of(user)

    def record_failed(self, principal_id) -> LockState:
        """
        Count a failed credential check, locking at the threshold.

        Returns:
            State after this failure
        """
        user = self._get_user(principal_id)
        if user is None:
            return LockState.open()

        now = self.clock()
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        update_fields = ['failed_login_attempts', 'updated_at']
        if user.failed_login_attempts >= self.threshold:
            user.locked_until = now + timedelta(minutes=self.lock_minutes)
            update_fields.append('locked_until')
            logger.warning(
                f"Account locked after {user.failed_login_attempts} failed attempts",
                extra={'user_id': str(user.id), 'locked_until': user.locked_until.isoformat()}
            )
        user.save(update_fields=update_fields)
        return self.state_of(user, now)

    def record_successful(self, principal_id) -> LockState:
        """Reset the counter and clear any lock."""
        user = self._get_user(principal_id)
        if user is None:
            return LockState.open()
        if user.failed_login_attempts or user.locked_until:
            user.failed_login_attempts = 0
            user.locked_until = None
            user.save(update_fields=['failed_login_attempts', 'locked_until', 'updated_at'])
        return LockState.open()

    def lock(self, principal_id, hours: Optional[int] = None) -> LockState:
        """
        Administrative lock for `hours` (default RBAC_MANUAL_LOCK_HOURS).

        Idempotent: locking a locked account sets the same fields again.

        Raises:
            NotFound: If the user does not exist
        """
        user = self._require_user(principal_id)
        now = self.clock()
        user.locked_until = now + timedelta(hours=hours or self.manual_lock_hours)
        user.failed_login_attempts = max(user.failed_login_attempts or 0, self.threshold)
        user.save(update_fields=['locked_until', 'failed_login_attempts', 'updated_at'])
        return self.state_of(user, now)

    def unlock(self, principal_id) -> LockState:
        """
        Administrative unlock. Idempotent.

        Raises:
            NotFound: If the user does not exist
        """
        user = self._require_user(principal_id)
        user.failed_login_attempts = 0
        user.locked_until = None
        user.save(update_fields=['locked_until', 'failed_login_attempts', 'updated_at'])
        return LockState.open()

    def locked_accounts(self, warning_threshold: int = 3):
        """
        Users currently locked or at/over `warning_threshold` failures.

        Ordered by lock expiry, then failure count, most severe first.
        """
        now = self.clock()
        return (
            User.objects
            .filter(Q(locked_until__gt=now) | Q(failed_login_attempts__gte=warning_threshold))
            .order_by(F('locked_until').desc(nulls_last=True), '-failed_login_attempts')
        )
