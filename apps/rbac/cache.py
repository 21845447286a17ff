"""
Policy version counter and optional effective-permission cache.

Every administrative write bumps the policy version. Cached effective
permission sets are keyed by the version they were computed under, so a
bump makes every older entry unreachable without having to find and delete
it. Entries also never outlive the earliest expiry of the rows that
produced them.

The cache is off by default (RBAC_EFFECTIVE_CACHE_ENABLED) and permissions
are recomputed on every request.
"""
import logging
import time
from datetime import datetime
from typing import Optional

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

POLICY_VERSION_KEY = 'rbac:policy_version'
EFFECTIVE_KEY_PREFIX = 'rbac:effective'


def _seed_version() -> int:
    # Millisecond clock seed: a counter lost to eviction restarts above old values
    return int(time.time() * 1000)


def get_policy_version() -> int:
    """Current policy version, initialized on first use."""
    version = cache.get(POLICY_VERSION_KEY)
    if version is None:
        cache.add(POLICY_VERSION_KEY, _seed_version(), timeout=None)
        version = cache.get(POLICY_VERSION_KEY, 0)
    return version


def bump_policy_version() -> int:
    """
    Advance the policy version.

    Called after every administrative write that can change an effective
    permission set.

    Returns:
        New version
    """
    try:
        version = cache.incr(POLICY_VERSION_KEY)
    except ValueError:
        # Key missing (first write or evicted)
        version = _seed_version()
        cache.set(POLICY_VERSION_KEY, version, timeout=None)
    logger.debug(f"Policy version bumped to {version}")
    return version


class EffectivePermissionCache:
    """
    Version-keyed cache of EffectivePermissions.

    Usage:
        >>> effective_cache = EffectivePermissionCache()
        >>> version = effective_cache.current_version()
        >>> effective_cache.get(user_id, now, version) or calculator.compute(user_id)
    """

    def __init__(self, enabled: Optional[bool] = None, ttl: Optional[int] = None):
        self.enabled = (
            getattr(settings, 'RBAC_EFFECTIVE_CACHE_ENABLED', False) if enabled is None else enabled
        )
        self.ttl = getattr(settings, 'RBAC_EFFECTIVE_CACHE_TTL', 300) if ttl is None else ttl

    def _key(self, principal_id, version):
        return f"{EFFECTIVE_KEY_PREFIX}:{version}:{principal_id}"

    def current_version(self) -> Optional[int]:
        """Policy version to compute under, None when the cache is disabled."""
        if not self.enabled:
            return None
        return get_policy_version()

    def get(self, principal_id, now: datetime, version: Optional[int]):
        """Cached set for `version`, or None."""
        if not self.enabled or version is None:
            return None
        effective = cache.get(self._key(principal_id, version))
        if effective is None:
            return None
        if effective.valid_until is not None and effective.valid_until < now:
            return None
        return effective

    def set(self, effective, now: datetime, version: Optional[int]):
        """
        Store a computed set under the version read before computing it.

        A write that bumps the version while the set is being computed makes
        the stored entry unreachable, never stale.
        """
        if not self.enabled or version is None or effective.principal_id is None:
            return
        timeout = self.ttl
        if effective.valid_until is not None:
            remaining = int((effective.valid_until - now).total_seconds())
            if remaining <= 0:
                return
            timeout = min(timeout, remaining)
        cache.set(self._key(effective.principal_id, version), effective, timeout=timeout)
