"""
Effective-permission calculator.

Resolves the authoritative set of permission keys a principal holds at the
current instant:

1. Valid role assignments (active, unexpired, role active and not deleted)
2. Active permissions of those roles through active links
3. Valid per-user overrides: all grants are added, then all denies removed

Deny always wins, whatever the row order. A missing or inactive principal
resolves to the empty set. Storage failures propagate as
EvaluationUnavailable; they never degrade into an empty set.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, FrozenSet, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from apps.rbac.cache import EffectivePermissionCache
from apps.rbac.keys import PermissionKey, RiskLevel
from apps.rbac.store import PolicyStore, as_principal_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectivePermissions:
    """
    Permissions a principal holds at one instant.

    Lives for a single evaluation. `valid_until` is the earliest expiry of
    the assignments and overrides that produced the set (None if nothing
    expires).
    """

    principal_id: Optional[str]
    keys: FrozenSet[PermissionKey] = field(default_factory=frozenset)
    critical_keys: FrozenSet[PermissionKey] = field(default_factory=frozenset)
    roles: Tuple[str, ...] = ()
    highest_level: Optional[int] = None
    is_super: bool = False
    computed_at: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    def __contains__(self, key):
        return PermissionKey.parse(key) in self.keys

    def __iter__(self):
        return iter(self.keys)

    def __len__(self):
        return len(self.keys)

    def has(self, key) -> bool:
        return key in self

    def names(self):
        """Sorted display names of the held keys."""
        return sorted(str(key) for key in self.keys)

    @classmethod
    def empty(cls, principal_id=None, at: Optional[datetime] = None):
        return cls(principal_id=str(principal_id) if principal_id else None, computed_at=at)


def _earliest(*candidates):
    values = [value for value in candidates if value is not None]
    return min(values) if values else None


class EffectivePermissionCalculator:
    """
    Compute EffectivePermissions from the policy store.

    Args:
        store: PolicyStore to read from
        clock: Callable returning the current aware datetime
        super_role_name: Role name that bypasses permission checks
        effective_cache: Optional version-keyed cache (disabled by default)
    """

    def __init__(self, store: Optional[PolicyStore] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 super_role_name: Optional[str] = None,
                 effective_cache: Optional[EffectivePermissionCache] = None):
        self.store = store or PolicyStore()
        self.clock = clock or timezone.now
        self.super_role_name = super_role_name or getattr(settings, 'RBAC_SUPER_ROLE_NAME', 'SuperAdmin')
        self.effective_cache = effective_cache or EffectivePermissionCache()

    def compute(self, principal_id, at: Optional[datetime] = None) -> EffectivePermissions:
        """
        Resolve the effective permission set of a principal.

        Args:
            principal_id: User id (UUID, string or User instance)
            at: Instant to evaluate at (default: now)

        Returns:
            EffectivePermissions

        Raises:
            EvaluationUnavailable: If the policy store cannot be read
        """
        now = at or self.clock()
        pid = as_principal_id(principal_id)
        if pid is None:
            return EffectivePermissions.empty(at=now)

        version = self.effective_cache.current_version() if at is None else None
        cached = self.effective_cache.get(pid, now, version)
        if cached is not None:
            return cached

        effective = self._compute(pid, now)
        self.effective_cache.set(effective, now, version)
        return effective

    def _compute(self, pid, now: datetime) -> EffectivePermissions:
        if not self.store.principal_exists(pid):
            logger.debug(f"Unknown or inactive principal {pid}, resolving to empty set")
            return EffectivePermissions.empty(pid, at=now)

        assignments = self.store.role_assignments(pid, now)
        grants = self.store.role_grants(assignment.role_id for assignment in assignments)
        overrides = self.store.user_overrides(pid, now)

        keys = set()
        critical = set()
        for grant in grants:
            keys.add(grant.key)
            if grant.risk_level == RiskLevel.CRITICAL:
                critical.add(grant.key)

        # Additive overrides first, then denies: deny wins regardless of row order
        for override in overrides:
            if not override.is_denied:
                keys.add(override.key)
                if override.risk_level == RiskLevel.CRITICAL:
                    critical.add(override.key)
        for override in overrides:
            if override.is_denied:
                keys.discard(override.key)

        role_names = tuple(sorted({assignment.role_name for assignment in assignments}))
        levels = [assignment.level for assignment in assignments]

        return EffectivePermissions(
            principal_id=str(pid),
            keys=frozenset(keys),
            critical_keys=frozenset(critical & keys),
            roles=role_names,
            highest_level=max(levels) if levels else None,
            is_super=self.super_role_name in role_names,
            computed_at=now,
            valid_until=_earliest(
                *(assignment.expires_at for assignment in assignments),
                *(override.expires_at for override in overrides),
            ),
        )
