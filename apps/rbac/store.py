"""
Policy store: read-only view over the RBAC tables.

Every query the evaluation path needs lives here, so that database failures
are converted to EvaluationUnavailable in one place. Callers never see a
DatabaseError from this module.
"""
import functools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from django.db import DatabaseError

from apps.rbac.exceptions import EvaluationUnavailable
from apps.rbac.keys import PermissionKey, RiskLevel
from apps.rbac.models import Role, RolePermission, User, UserPermission, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleAssignment:
    """A valid role assignment of a principal."""
    role_id: uuid.UUID
    role_name: str
    level: int
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class RoleGrant:
    """A permission granted through an active role link."""
    role_id: uuid.UUID
    key: PermissionKey
    risk_level: str = RiskLevel.LOW


@dataclass(frozen=True)
class Override:
    """A valid per-user grant or deny."""
    key: PermissionKey
    is_denied: bool
    risk_level: str = RiskLevel.LOW
    expires_at: Optional[datetime] = None


def _unavailable_on_db_error(method):
    """Convert DatabaseError (including statement timeouts) into EvaluationUnavailable."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except DatabaseError as e:
            logger.error(
                f"Policy store query failed: {method.__name__}",
                extra={'error': str(e)},
                exc_info=True
            )
            raise EvaluationUnavailable(
                "Permission data is temporarily unavailable",
                details={'operation': method.__name__}
            ) from e

    return wrapper


def as_principal_id(value) -> Optional[uuid.UUID]:
    """
    Normalize a principal id.

    Returns None for values that cannot be a principal id, which callers
    treat as a missing principal.
    """
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    if hasattr(value, 'pk'):
        return as_principal_id(value.pk)
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class PolicyStore:
    """
    Read-only queries over Permissions, Roles, RolePermission links,
    UserRole assignments and UserPermission overrides.

    All "valid at" filtering (active flags, expiry, soft delete) is applied
    here so the calculator only combines rows.
    """

    def __init__(self, using: Optional[str] = None):
        self.using = using

    def _manager(self, manager):
        return manager.db_manager(self.using) if self.using else manager

    @_unavailable_on_db_error
    def principal_exists(self, principal_id) -> bool:
        """True if the principal is a known, active user."""
        pid = as_principal_id(principal_id)
        if pid is None:
            return False
        return self._manager(User.objects).filter(id=pid, is_active=True).exists()

    @_unavailable_on_db_error
    def role_assignments(self, principal_id, at: datetime) -> List[RoleAssignment]:
        """
        Valid role assignments of a principal at `at`.

        Valid means: assignment active and unexpired, role active and not
        soft deleted.
        """
        pid = as_principal_id(principal_id)
        if pid is None:
            return []
        rows = (
            self._manager(UserRole.objects)
            .valid_for_user(pid, at)
            .values_list('role_id', 'role__name', 'role__level', 'expires_at')
        )
        return [
            RoleAssignment(role_id=role_id, role_name=name, level=level, expires_at=expires_at)
            for role_id, name, level, expires_at in rows
        ]

    @_unavailable_on_db_error
    def role_grants(self, role_ids: Iterable) -> List[RoleGrant]:
        """Active links of the given roles whose permission is active."""
        role_ids = list(role_ids)
        if not role_ids:
            return []
        rows = (
            self._manager(RolePermission.objects)
            .filter(role_id__in=role_ids, is_active=True, permission__is_active=True)
            .values_list(
                'role_id',
                'permission__resource',
                'permission__action',
                'permission__scope',
                'permission__risk_level',
            )
        )
        return [
            RoleGrant(role_id=role_id, key=PermissionKey(resource, action, scope), risk_level=risk)
            for role_id, resource, action, scope, risk in rows
        ]

    @_unavailable_on_db_error
    def user_overrides(self, principal_id, at: datetime) -> List[Override]:
        """Valid per-user overrides of a principal at `at`."""
        pid = as_principal_id(principal_id)
        if pid is None:
            return []
        rows = (
            self._manager(UserPermission.objects)
            .valid_for_user(pid, at)
            .values_list(
                'permission__resource',
                'permission__action',
                'permission__scope',
                'permission__risk_level',
                'is_denied',
                'expires_at',
            )
        )
        return [
            Override(
                key=PermissionKey(resource, action, scope),
                is_denied=is_denied,
                risk_level=risk,
                expires_at=expires_at,
            )
            for resource, action, scope, risk, is_denied, expires_at in rows
        ]

    @_unavailable_on_db_error
    def get_role(self, role_id) -> Optional[Role]:
        """Non-deleted role by id, or None."""
        rid = as_principal_id(role_id)
        if rid is None:
            return None
        return self._manager(Role.objects).filter(id=rid).first()

    @_unavailable_on_db_error
    def get_user(self, principal_id) -> Optional[User]:
        """User by id (active or not), or None."""
        pid = as_principal_id(principal_id)
        if pid is None:
            return None
        return self._manager(User.objects).filter(id=pid).first()
