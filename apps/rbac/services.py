"""
RBAC and Authentication services.

Implements:
- AccessControlService: the enforcement boundary (evaluate, decide,
  hierarchy checks, lockout)
- RBACService: administrative role/permission/assignment management
- AuthService: JWT issuance and lockout-aware login
"""
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Dict, Iterable, List, Optional

import jwt
from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from apps.core.logging import SecurityLogger
from apps.rbac import audit
from apps.rbac.cache import bump_policy_version
from apps.rbac.calculator import EffectivePermissionCalculator, EffectivePermissions
from apps.rbac.exceptions import (
    AccountLocked, Conflict, EvaluationUnavailable, InvalidPermissionKey, NotFound, SystemRoleProtected
)
from apps.rbac.guard import AccessDecisionEngine, Decision, Reason, as_requirement
from apps.rbac.hierarchy import RoleHierarchyAuthority
from apps.rbac.keys import PermissionKey, RiskLevel, Scope
from apps.rbac.lockout import AccountLockoutTracker, LockState
from apps.rbac.models import AuditLog, Permission, Role, RolePermission, User, UserPermission, UserRole
from apps.rbac.store import PolicyStore, as_principal_id

logger = logging.getLogger(__name__)


def _principal_id(value):
    return getattr(value, 'pk', value)


class AccessControlService:
    """
    Enforcement boundary used on every authenticated request.

    Evaluation never raises for a denial: decisions are values. Policy
    store failures during authorize() resolve to a deny with reason
    'unavailable'.
    """

    def __init__(self, store: Optional[PolicyStore] = None, clock=None):
        self.store = store or PolicyStore()
        self.clock = clock or timezone.now
        self.calculator = EffectivePermissionCalculator(store=self.store, clock=self.clock)
        self.engine = AccessDecisionEngine()
        self.hierarchy = RoleHierarchyAuthority(store=self.store, clock=self.clock)
        self.lockout = AccountLockoutTracker(store=self.store, clock=self.clock)

    def evaluate(self, principal_id) -> EffectivePermissions:
        """
        Effective permissions of a principal right now.

        Raises:
            EvaluationUnavailable: If the policy store cannot be read
        """
        return self.calculator.compute(_principal_id(principal_id))

    def decide(self, effective: EffectivePermissions, requirement) -> Decision:
        """Pure decision of a requirement against computed permissions."""
        return self.engine.decide(effective, requirement)

    def authorize(self, principal_id, requirement, request=None) -> Decision:
        """
        Full access check for one request.

        1. Lock gate: a locked account never reaches evaluation
        2. Evaluate effective permissions (unavailable -> deny)
        3. Decide, then announce denials and exercised CRITICAL permissions

        Args:
            principal_id: Authenticated user id
            requirement: Requirement, key, list of keys, or None
            request: Current request, passed to audit receivers

        Returns:
            Decision

        Raises:
            AccountLocked: If the account is locked
        """
        principal_id = _principal_id(principal_id)
        requirement = as_requirement(requirement)

        try:
            self.ensure_not_locked(principal_id, request=request)
            effective = self.evaluate(principal_id)
        except EvaluationUnavailable as e:
            SecurityLogger.log_evaluation_unavailable(user_id=str(principal_id), error=e.message)
            decision = Decision.unavailable(requirement)
            audit.access_denied.send_robust(
                sender=self.__class__, principal_id=principal_id, requirement=requirement,
                decision=decision, request=request,
            )
            return decision

        decision = self.decide(effective, requirement)

        if not decision.allow:
            SecurityLogger.log_permission_denied(
                user_id=str(principal_id),
                missing=decision.missing_names(),
                reason=decision.reason,
                path=getattr(request, 'path', None),
            )
            audit.access_denied.send_robust(
                sender=self.__class__, principal_id=principal_id, requirement=requirement,
                decision=decision, request=request,
            )
            return decision

        if decision.reason == Reason.SUPER_ROLE:
            logger.info(
                "Access granted by super role",
                extra={'user_id': str(principal_id), 'required': requirement.names()}
            )

        critical = [key for key in decision.matched if key in effective.critical_keys]
        if critical:
            audit.critical_permission_exercised.send_robust(
                sender=self.__class__, principal_id=principal_id, keys=critical,
                decision=decision, request=request,
            )

        return decision

    def can_manage_role(self, principal_id, role_id) -> bool:
        """
        Whether the principal may administer the role.

        Raises:
            NotFound: If the role does not exist
        """
        return self.hierarchy.can_manage(_principal_id(principal_id), role_id)

    def check_lock(self, principal_id) -> LockState:
        return self.lockout.check(principal_id)

    def ensure_not_locked(self, principal_id, request=None) -> LockState:
        """Raise AccountLocked if the account is locked; return its state otherwise."""
        state = self.check_lock(principal_id)
        if state.is_locked:
            SecurityLogger.log_locked_login_rejected(
                user_id=str(_principal_id(principal_id)),
                retry_after=state.retry_after,
                ip_address=AuditLog._get_client_ip(request) if request is not None else None,
            )
            minutes = max(1, -(-state.retry_after // 60))
            raise AccountLocked(
                f"Account is temporarily locked. Try again in {minutes} minute(s).",
                locked_until=state.locked_until,
                retry_after=state.retry_after,
            )
        return state

    def record_failed_auth(self, principal_id, request=None) -> LockState:
        """
        Count a failed credential check.

        Callers run the lock gate first, so a LOCKED result here is always a
        transition and is announced.
        """
        state = self.lockout.record_failed(principal_id)
        if state.is_locked:
            self._announce_lock(principal_id, state, manual=False, actor=None, request=request)
        return state

    def record_successful_auth(self, principal_id) -> LockState:
        return self.lockout.record_successful(principal_id)

    def lock(self, principal_id, actor=None, hours: Optional[int] = None, request=None) -> LockState:
        """Administrative lock (default RBAC_MANUAL_LOCK_HOURS)."""
        state = self.lockout.lock(principal_id, hours=hours)
        self._announce_lock(principal_id, state, manual=True, actor=actor, request=request)
        return state

    def unlock(self, principal_id, actor=None, request=None) -> LockState:
        """Administrative unlock: clears the lock and the failure counter."""
        state = self.lockout.unlock(principal_id)
        audit.account_unlocked.send_robust(
            sender=self.__class__, principal_id=_principal_id(principal_id), actor=actor, request=request,
        )
        return state

    def _announce_lock(self, principal_id, state, manual, actor, request):
        audit.account_locked.send_robust(
            sender=self.__class__, principal_id=_principal_id(principal_id), state=state,
            manual=manual, actor=actor, request=request,
        )


access_control = AccessControlService()


def _policy_changed(action: str, actor=None, target_type: str = '', target_id=None,
                    diff: Optional[Dict] = None, metadata: Optional[Dict] = None, request=None):
    """Bump the policy version and announce an administrative change."""
    bump_policy_version()
    # Bump again on commit: a set computed from pre-commit rows must not survive it
    transaction.on_commit(bump_policy_version)
    audit.policy_changed.send_robust(
        sender=RBACService,
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id else None,
        diff=diff or {},
        metadata=metadata or {},
        request=request,
    )


class RBACService:
    """
    Service for RBAC administration: roles, role permissions, assignments,
    per-user overrides and the permission catalog.

    Every write bumps the policy version and fires policy_changed. When an
    acting user is given, role operations pass through the hierarchy gate.
    """

    hierarchy = access_control.hierarchy

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @classmethod
    def get_user(cls, user) -> User:
        if isinstance(user, User):
            return user
        pid = as_principal_id(user)
        found = User.objects.filter(id=pid).first() if pid else None
        if found is None:
            raise NotFound("User not found", details={'user_id': str(user)})
        return found

    @classmethod
    def get_role(cls, role) -> Role:
        if isinstance(role, Role):
            return role
        rid = as_principal_id(role)
        found = Role.objects.filter(id=rid).first() if rid else None
        if found is None:
            raise NotFound("Role not found", details={'role_id': str(role)})
        return found

    @classmethod
    def get_permission(cls, permission) -> Permission:
        """
        Resolve a permission by instance, id, or key string.

        Raises:
            NotFound: If no such permission exists
        """
        if isinstance(permission, Permission):
            return permission
        pid = as_principal_id(permission)
        if pid is not None:
            found = Permission.objects.filter(id=pid).first()
        else:
            found = Permission.objects.by_key(permission)
        if found is None:
            raise NotFound("Permission not found", details={'permission': str(permission)})
        return found

    @classmethod
    def _resolve_permissions(cls, permissions: Iterable) -> List[Permission]:
        return [cls.get_permission(permission) for permission in permissions]

    @classmethod
    def record_admin_change(cls, action: str, obj, actor: Optional[User] = None, request=None):
        """Announce a policy row written outside this service (the Django admin)."""
        _policy_changed(action, actor=actor, target_type=obj.__class__.__name__, target_id=obj.pk,
                        diff={'object': str(obj), 'is_active': getattr(obj, 'is_active', None)},
                        request=request)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @classmethod
    def list_roles(cls, include_inactive: bool = False):
        """Roles with counts of active permissions and active assignments."""
        qs = Role.objects.all() if include_inactive else Role.objects.active()
        return qs.annotate(
            permission_count=Count(
                'role_permissions',
                filter=Q(role_permissions__is_active=True, role_permissions__permission__is_active=True),
                distinct=True,
            ),
            user_count=Count('user_roles', filter=Q(user_roles__is_active=True), distinct=True),
        ).order_by('-level', '-priority', 'name')

    @classmethod
    def role_hierarchy(cls):
        """Active roles from highest to lowest level."""
        return Role.objects.hierarchy()

    @classmethod
    @transaction.atomic
    def create_role(cls, name: str, display_name: str = '', description: str = '',
                    color: str = '', level: Optional[int] = None, priority: int = 0,
                    permissions: Optional[Iterable] = None, actor: Optional[User] = None,
                    request=None) -> Role:
        """
        Create a custom role.

        Args:
            name: Unique role name
            level: Hierarchy level (default: highest existing level + 10)
            permissions: Permission instances, ids or key strings to grant
            actor: Acting user; the new level must be below the actor's own

        Raises:
            Conflict: If a role with this name exists (including deleted roles)
            HierarchyViolation: If the actor could not manage a role at this level
        """
        if Role.objects_with_deleted.filter(name=name).exists():
            raise Conflict(f"Role '{name}' already exists", details={'name': name})

        if level is None:
            level = Role.objects.next_level()
        if actor is not None:
            cls.hierarchy.ensure_level_below_actor(actor.pk, level, 'create_role')

        resolved = cls._resolve_permissions(permissions or [])

        role = Role.objects.create(
            name=name,
            display_name=display_name or name,
            description=description,
            color=color,
            level=level,
            priority=priority,
            is_system=False,
            is_active=True,
        )
        for permission in resolved:
            RolePermission.objects.grant_permission(role, permission, granted_by=actor)

        _policy_changed(
            'role_created', actor=actor, target_type='Role', target_id=role.id,
            diff={'name': name, 'level': level, 'permissions': [p.name for p in resolved]},
            request=request,
        )
        return role

    @classmethod
    @transaction.atomic
    def update_role(cls, role, actor: Optional[User] = None, request=None,
                    permissions: Optional[Iterable] = None, **changes) -> Role:
        """
        Update a role.

        System roles only accept permission changes. Changing the level is
        gated the same way as creating a role at that level.

        Args:
            role: Role instance or id
            actor: Acting user (hierarchy gate applied when given)
            permissions: New full permission list (replaces current links)
            **changes: display_name, description, color, level, priority, is_active, name

        Raises:
            SystemRoleProtected: If a system role field other than permissions changes
            Conflict: If renaming onto an existing role name
            HierarchyViolation: If the actor cannot manage the role
        """
        role = cls.get_role(role)
        allowed = {'name', 'display_name', 'description', 'color', 'level', 'priority', 'is_active'}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown role fields: {', '.join(sorted(unknown))}")

        changed = {field: value for field, value in changes.items() if getattr(role, field) != value}
        if role.is_system and changed:
            raise SystemRoleProtected(
                f"System role '{role.name}' only allows permission changes",
                details={'role': role.name, 'fields': sorted(changed)}
            )

        if actor is not None:
            cls.hierarchy.ensure_can_manage(actor.pk, role, 'update_role')
            if 'level' in changed:
                cls.hierarchy.ensure_level_below_actor(actor.pk, changed['level'], 'update_role')

        if 'name' in changed and Role.objects_with_deleted.filter(name=changed['name']).exclude(id=role.id).exists():
            raise Conflict(f"Role '{changed['name']}' already exists", details={'name': changed['name']})

        diff = {field: {'old': getattr(role, field), 'new': value} for field, value in changed.items()}
        for field, value in changed.items():
            setattr(role, field, value)
        if changed:
            role.save(update_fields=list(changed) + ['updated_at'])

        if permissions is not None:
            before = sorted(p.name for p in role.active_permissions())
            cls.sync_role_permissions(role, permissions, actor=actor, announce=False)
            after = sorted(p.name for p in role.active_permissions())
            if before != after:
                diff['permissions'] = {'old': before, 'new': after}

        if diff:
            _policy_changed('role_updated', actor=actor, target_type='Role', target_id=role.id,
                            diff=diff, request=request)
        return role

    @classmethod
    def delete_role(cls, role, actor: Optional[User] = None, request=None) -> Dict[str, int]:
        """
        Soft delete a custom role, deactivating its links and assignments.

        Raises:
            SystemRoleProtected: For system roles
            HierarchyViolation: If the actor cannot manage the role
        """
        role = cls.get_role(role)
        if actor is not None and not role.is_system:
            cls.hierarchy.ensure_can_manage(actor.pk, role, 'delete_role')
        with transaction.atomic():
            result = cls.hierarchy.delete_role(role)
            _policy_changed('role_deleted', actor=actor, target_type='Role', target_id=role.id,
                            diff={'name': role.name}, metadata=result, request=request)
        return result

    @classmethod
    @transaction.atomic
    def clone_role(cls, role, name: str, display_name: Optional[str] = None,
                   description: Optional[str] = None, actor: Optional[User] = None,
                   request=None) -> Role:
        """Deep copy a role's active permission links onto a new custom role."""
        source = cls.get_role(role)
        if actor is not None:
            cls.hierarchy.ensure_can_manage(actor.pk, source, 'clone_role')
        clone = cls.hierarchy.clone_role(
            source, name=name, display_name=display_name, description=description, granted_by=actor
        )
        _policy_changed('role_cloned', actor=actor, target_type='Role', target_id=clone.id,
                        diff={'source': source.name, 'name': clone.name}, request=request)
        return clone

    @classmethod
    @transaction.atomic
    def reorder_roles(cls, role_ids: List, actor: Optional[User] = None, request=None) -> List[Role]:
        """
        Set display priority from list order: first gets len(role_ids).

        Raises:
            NotFound: If any id does not match a role
        """
        roles = [cls.get_role(role_id) for role_id in role_ids]
        total = len(roles)
        for index, role in enumerate(roles):
            role.priority = total - index
            role.save(update_fields=['priority', 'updated_at'])

        _policy_changed('roles_reordered', actor=actor, target_type='Role',
                        diff={'order': [role.name for role in roles]}, request=request)
        return roles

    @classmethod
    @transaction.atomic
    def sync_role_permissions(cls, role, permissions: Iterable, actor: Optional[User] = None,
                              request=None, announce: bool = True) -> int:
        """
        Replace a role's permission set.

        Deactivates every link of the role, then upserts an active link for
        each given permission.

        Returns:
            Number of active links after the sync
        """
        role = cls.get_role(role)
        resolved = cls._resolve_permissions(permissions)
        RolePermission.objects.filter(role=role).update(is_active=False, updated_at=timezone.now())
        for permission in resolved:
            RolePermission.objects.grant_permission(role, permission, granted_by=actor)

        if announce:
            _policy_changed('role_permissions_synced', actor=actor, target_type='Role', target_id=role.id,
                            diff={'permissions': sorted(p.name for p in resolved)}, request=request)
        return len({p.id for p in resolved})

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    @classmethod
    def user_roles(cls, user, include_inactive: bool = False):
        user = cls.get_user(user)
        qs = UserRole.objects.filter(user=user).select_related('role', 'assigned_by')
        if not include_inactive:
            qs = qs.filter(is_active=True, role__deleted_at__isnull=True)
        return qs

    @classmethod
    @transaction.atomic
    def assign_role(cls, user, role, actor: Optional[User] = None, expires_at: Optional[datetime] = None,
                    is_primary: bool = False, reason: str = '', request=None) -> UserRole:
        """
        Assign a role to a user.

        Args:
            user: User instance or id
            role: Role instance or id (must be active)
            actor: Acting user (hierarchy gate applied when given)
            expires_at: Optional expiry; the assignment grants nothing after it
            is_primary: Mark as primary; other assignments lose the flag

        Raises:
            NotFound: If the user or an active role does not exist
            Conflict: If the user already holds the role
            HierarchyViolation: If the actor cannot manage the role
        """
        user = cls.get_user(user)
        role = cls.get_role(role)
        if not role.is_active:
            raise NotFound(f"Role '{role.name}' is not active", details={'role_id': str(role.id)})

        if actor is not None:
            cls.hierarchy.ensure_can_manage(actor.pk, role, 'assign_role')

        existing = UserRole.objects.filter(user=user, role=role).first()
        if existing is not None and existing.is_active:
            raise Conflict(
                f"User already has role '{role.name}'",
                details={'user_id': str(user.id), 'role': role.name}
            )

        if is_primary:
            UserRole.objects.filter(user=user, is_primary=True).update(is_primary=False, updated_at=timezone.now())

        if existing is None:
            assignment = UserRole.objects.create(
                user=user, role=role, is_active=True, expires_at=expires_at,
                is_primary=is_primary, assigned_by=actor, reason=reason,
            )
        else:
            assignment = existing
            assignment.is_active = True
            assignment.expires_at = expires_at
            assignment.is_primary = is_primary
            assignment.assigned_by = actor
            assignment.reason = reason
            assignment.save()

        _policy_changed(
            'role_assigned', actor=actor, target_type='UserRole', target_id=assignment.id,
            diff={'role': role.name, 'action': 'assigned'},
            metadata={
                'target_user_id': str(user.id),
                'role_name': role.name,
                'expires_at': expires_at.isoformat() if expires_at else None,
                'reason': reason,
            },
            request=request,
        )
        return assignment

    @classmethod
    @transaction.atomic
    def remove_role(cls, user, role, actor: Optional[User] = None, request=None) -> UserRole:
        """
        Deactivate a user's role assignment.

        Raises:
            NotFound: If the user has no active assignment of the role
            HierarchyViolation: If the actor cannot manage the role
        """
        user = cls.get_user(user)
        role = cls.get_role(role)
        if actor is not None:
            cls.hierarchy.ensure_can_manage(actor.pk, role, 'remove_role')

        assignment = UserRole.objects.filter(user=user, role=role, is_active=True).first()
        if assignment is None:
            raise NotFound(
                f"User does not have role '{role.name}'",
                details={'user_id': str(user.id), 'role': role.name}
            )

        assignment.is_active = False
        assignment.is_primary = False
        assignment.save(update_fields=['is_active', 'is_primary', 'updated_at'])

        _policy_changed(
            'role_removed', actor=actor, target_type='UserRole', target_id=assignment.id,
            diff={'role': role.name, 'action': 'removed'},
            metadata={'target_user_id': str(user.id), 'role_name': role.name},
            request=request,
        )
        return assignment

    # ------------------------------------------------------------------
    # Per-user overrides
    # ------------------------------------------------------------------

    @classmethod
    def user_overrides(cls, user, include_inactive: bool = False):
        user = cls.get_user(user)
        qs = UserPermission.objects.filter(user=user).select_related('permission', 'granted_by')
        if not include_inactive:
            qs = qs.filter(is_active=True)
        return qs

    @classmethod
    @transaction.atomic
    def set_permission_override(cls, user, permission, is_denied: bool, actor: Optional[User] = None,
                                reason: str = '', expires_at: Optional[datetime] = None,
                                request=None) -> UserPermission:
        """
        Grant or deny a permission directly to a user (upsert).

        A deny removes the key even when a role grants it.

        Raises:
            NotFound: If the user or permission does not exist
            HierarchyViolation: If the actor does not outrank the user
        """
        user = cls.get_user(user)
        permission = cls.get_permission(permission)
        operation = 'deny_permission' if is_denied else 'grant_permission'
        if actor is not None:
            cls.hierarchy.ensure_can_manage_user(actor.pk, user.pk, operation)

        override, created = UserPermission.objects.set_override(
            user=user, permission=permission, is_denied=is_denied, reason=reason,
            granted_by=actor, expires_at=expires_at,
        )

        _policy_changed(
            'permission_denied' if is_denied else 'permission_granted',
            actor=actor, target_type='UserPermission', target_id=override.id,
            diff={'permission': permission.name, 'granted': not is_denied},
            metadata={
                'target_user_id': str(user.id),
                'permission': permission.name,
                'reason': reason,
                'expires_at': expires_at.isoformat() if expires_at else None,
            },
            request=request,
        )
        return override

    @classmethod
    def grant_permission(cls, user, permission, **kwargs) -> UserPermission:
        return cls.set_permission_override(user, permission, is_denied=False, **kwargs)

    @classmethod
    def deny_permission(cls, user, permission, **kwargs) -> UserPermission:
        return cls.set_permission_override(user, permission, is_denied=True, **kwargs)

    @classmethod
    @transaction.atomic
    def revoke_permission_override(cls, user, permission, actor: Optional[User] = None,
                                   request=None) -> UserPermission:
        """
        Deactivate a user's override of a permission.

        Raises:
            NotFound: If there is no active override
        """
        user = cls.get_user(user)
        permission = cls.get_permission(permission)
        if actor is not None:
            cls.hierarchy.ensure_can_manage_user(actor.pk, user.pk, 'revoke_permission_override')

        override = UserPermission.objects.filter(user=user, permission=permission, is_active=True).first()
        if override is None:
            raise NotFound(
                f"No active override of '{permission.name}' for this user",
                details={'user_id': str(user.id), 'permission': permission.name}
            )
        override.is_active = False
        override.save(update_fields=['is_active', 'updated_at'])

        _policy_changed(
            'permission_override_revoked', actor=actor, target_type='UserPermission', target_id=override.id,
            diff={'permission': permission.name, 'was_denied': override.is_denied},
            metadata={'target_user_id': str(user.id)},
            request=request,
        )
        return override

    # ------------------------------------------------------------------
    # Permission catalog
    # ------------------------------------------------------------------

    @classmethod
    @transaction.atomic
    def create_permission(cls, resource: str, action: str, scope=Scope.ALL, risk_level=RiskLevel.LOW,
                          display_name: str = '', description: str = '', category: str = '',
                          is_system: bool = False, actor: Optional[User] = None,
                          request=None) -> Permission:
        """
        Add a permission to the catalog.

        requires_mfa and audit_required are derived from risk_level.

        Raises:
            InvalidPermissionKey: If resource, action or scope is invalid
            Conflict: If (resource, action, scope) already exists
        """
        key = PermissionKey(resource, action, scope)
        if risk_level not in RiskLevel.values:
            raise InvalidPermissionKey(
                f"Unknown risk level '{risk_level}'", details={'risk_level': risk_level}
            )
        if Permission.objects.filter(resource=key.resource, action=key.action, scope=key.scope).exists():
            raise Conflict(f"Permission '{key}' already exists", details={'permission': str(key)})

        permission = Permission.objects.create(
            resource=key.resource,
            action=key.action,
            scope=key.scope,
            risk_level=risk_level,
            display_name=display_name or str(key),
            description=description,
            category=category or key.resource,
            is_system=is_system,
            is_active=True,
        )
        _policy_changed('permission_created', actor=actor, target_type='Permission', target_id=permission.id,
                        diff={'name': permission.name, 'risk_level': risk_level}, request=request)
        return permission

    @classmethod
    @transaction.atomic
    def set_permission_active(cls, permission, is_active: bool, actor: Optional[User] = None,
                              request=None) -> Permission:
        """Activate or deactivate a permission. Deactivated permissions grant nothing."""
        permission = cls.get_permission(permission)
        if permission.is_active != is_active:
            permission.is_active = is_active
            permission.save(update_fields=['is_active', 'updated_at'])
            _policy_changed(
                'permission_activated' if is_active else 'permission_deactivated',
                actor=actor, target_type='Permission', target_id=permission.id,
                diff={'name': permission.name, 'is_active': is_active}, request=request,
            )
        return permission

    @classmethod
    def permissions_by_category(cls, include_inactive: bool = False) -> 'OrderedDict[str, List[Permission]]':
        """Catalog grouped by category, categories in alphabetical order."""
        qs = Permission.objects.all() if include_inactive else Permission.objects.active()
        grouped = OrderedDict()
        for permission in qs.order_by('category', 'name'):
            grouped.setdefault(permission.category, []).append(permission)
        return grouped

    @classmethod
    def users_with_permission(cls, key) -> List[User]:
        """Active users whose effective permissions include `key` (e.g. assignable technicians)."""
        key = PermissionKey.parse(key)
        permission = Permission.objects.by_key(key)
        if permission is None or not permission.is_active:
            return []

        candidate_ids = set(
            UserRole.objects.valid()
            .filter(role__role_permissions__permission=permission, role__role_permissions__is_active=True)
            .values_list('user_id', flat=True)
        )
        candidate_ids |= set(
            UserPermission.objects.filter(permission=permission, is_active=True, is_denied=False)
            .values_list('user_id', flat=True)
        )
        users = User.objects.active().filter(id__in=candidate_ids).order_by('first_name', 'last_name', 'email')
        return [user for user in users if key in access_control.evaluate(user.pk)]

    @classmethod
    def locked_accounts(cls):
        return access_control.lockout.locked_accounts()


class AuthService:
    """
    Service for authentication: JWT issuance/validation and lockout-aware login.

    Tokens carry the user id only. Roles and permissions are recomputed on
    every request.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        """
        Generate JWT token for a user.

        Args:
            user: User instance

        Returns:
            JWT token string
        """
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.id),
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 8)),
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Args:
            token: JWT token string

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        """
        Extract and return the active user from a JWT token.

        Args:
            token: JWT token string

        Returns:
            User instance or None if invalid
        """
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        user_id = as_principal_id(payload.get('user_id'))
        if user_id is None:
            return None

        return User.objects.filter(id=user_id, is_active=True).first()

    @classmethod
    def login(cls, identifier: str, password: str, request=None) -> Optional[Dict[str, Any]]:
        """
        Authenticate by email or username and return a JWT token.

        The lock gate runs before the password is checked: a locked account
        is rejected without touching its counters.

        Args:
            identifier: Email or username
            password: Plain text password
            request: Current request (for logging context)

        Returns:
            Dict with user, token and expires_in, or None if the
            credentials are invalid

        Raises:
            AccountLocked: If the account is locked
        """
        ip_address = AuditLog._get_client_ip(request) if request is not None else None
        user_agent = request.META.get('HTTP_USER_AGENT', '') if request is not None else None

        user = User.objects.by_login(identifier)
        if user is None or not user.is_active:
            # Same hashing cost as a real check
            User().set_password(password)
            SecurityLogger.log_failed_login(
                identifier=identifier, ip_address=ip_address, user_agent=user_agent,
                reason='unknown_or_inactive_user',
            )
            return None

        access_control.ensure_not_locked(user, request=request)

        if not user.check_password(password):
            state = access_control.record_failed_auth(user, request=request)
            SecurityLogger.log_failed_login(
                identifier=identifier, ip_address=ip_address, user_agent=user_agent,
                reason='invalid_password', failed_attempts=state.failed_attempts,
            )
            return None

        access_control.record_successful_auth(user)
        user.last_login_at = timezone.now()
        user.save(update_fields=['last_login_at', 'updated_at'])

        token = cls.generate_jwt(user)

        AuditLog.log_action(
            action='user_login',
            user=user,
            target_type='User',
            target_id=user.id,
            request=request,
        )

        return {
            'user': user,
            'token': token,
            'expires_in': getattr(settings, 'JWT_EXPIRATION_HOURS', 8) * 3600,
        }
