"""
Role hierarchy authority.

Roles are flat; `level` alone orders them. An acting principal may
administer a role only if its highest valid role level is strictly greater
than the target role's level, or if it holds the super role. This check is
a second gate on top of permission checks: holding `roles:update:all` does
not let a Manager edit the Admin role.
"""
import logging
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.logging import SecurityLogger
from apps.rbac.exceptions import Conflict, HierarchyViolation, NotFound, SystemRoleProtected
from apps.rbac.models import Role, RolePermission, UserRole
from apps.rbac.store import PolicyStore

logger = logging.getLogger(__name__)


class RoleHierarchyAuthority:
    """Level comparisons, protected deletion and cloning of roles."""

    def __init__(self, store: Optional[PolicyStore] = None, clock=None, super_role_name: Optional[str] = None):
        self.store = store or PolicyStore()
        self.clock = clock or timezone.now
        self.super_role_name = super_role_name or getattr(settings, 'RBAC_SUPER_ROLE_NAME', 'SuperAdmin')

    def highest_level(self, principal_id) -> Optional[int]:
        """Highest level among the principal's valid role assignments, None if it has none."""
        levels = [assignment.level for assignment in self.store.role_assignments(principal_id, self.clock())]
        return max(levels) if levels else None

    def is_super(self, principal_id) -> bool:
        assignments = self.store.role_assignments(principal_id, self.clock())
        return any(assignment.role_name == self.super_role_name for assignment in assignments)

    def _resolve_role(self, role) -> Role:
        if isinstance(role, Role):
            return role
        resolved = self.store.get_role(role)
        if resolved is None:
            raise NotFound("Role not found", details={'role_id': str(role)})
        return resolved

    def can_manage(self, acting_principal_id, target_role) -> bool:
        """
        Whether the acting principal may administer the target role.

        Args:
            acting_principal_id: User id of the actor
            target_role: Role instance or role id

        Returns:
            True if the actor holds the super role or its highest level is
            strictly greater than the target role's level

        Raises:
            NotFound: If the target role does not exist
        """
        role = self._resolve_role(target_role)
        assignments = self.store.role_assignments(acting_principal_id, self.clock())
        if any(assignment.role_name == self.super_role_name for assignment in assignments):
            return True
        if not assignments:
            return False
        return max(assignment.level for assignment in assignments) > role.level

    def ensure_can_manage(self, acting_principal_id, target_role, operation: str) -> Role:
        """
        Raise HierarchyViolation unless the actor may administer the role.

        Refusals are logged as privilege-escalation attempts.

        Returns:
            The resolved Role
        """
        role = self._resolve_role(target_role)
        if self.can_manage(acting_principal_id, role):
            return role

        actor_level = self.highest_level(acting_principal_id)
        SecurityLogger.log_privilege_escalation_attempt(
            actor_id=str(acting_principal_id),
            target_role=role.name,
            target_level=role.level,
            actor_level=actor_level,
            operation=operation,
        )
        raise HierarchyViolation(
            f"Insufficient role level to manage role '{role.name}'",
            details={
                'role': role.name,
                'role_level': role.level,
                'actor_level': actor_level,
                'operation': operation,
            }
        )

    def can_manage_user(self, acting_principal_id, target_principal_id) -> bool:
        """
        Whether the actor outranks a user (for direct permission overrides).

        The actor's highest level must be strictly greater than the target
        user's highest level. A user without roles is outranked by anyone
        holding a role. Nobody manages their own overrides except the super role.
        """
        now = self.clock()
        actor = self.store.role_assignments(acting_principal_id, now)
        if any(assignment.role_name == self.super_role_name for assignment in actor):
            return True
        if not actor or str(acting_principal_id) == str(target_principal_id):
            return False
        target = self.store.role_assignments(target_principal_id, now)
        if not target:
            return True
        return max(a.level for a in actor) > max(a.level for a in target)

    def ensure_can_manage_user(self, acting_principal_id, target_principal_id, operation: str):
        """Raise HierarchyViolation unless the actor outranks the target user."""
        if self.can_manage_user(acting_principal_id, target_principal_id):
            return
        actor_level = self.highest_level(acting_principal_id)
        target_level = self.highest_level(target_principal_id)
        SecurityLogger.log_privilege_escalation_attempt(
            actor_id=str(acting_principal_id),
            target_role='',
            target_level=target_level,
            actor_level=actor_level,
            operation=operation,
        )
        raise HierarchyViolation(
            "Insufficient role level to manage this user",
            details={
                'user_id': str(target_principal_id),
                'user_level': target_level,
                'actor_level': actor_level,
                'operation': operation,
            }
        )

    def ensure_level_below_actor(self, acting_principal_id, level: int, operation: str):
        """Refuse creating or moving a role to a level the actor could not manage."""
        if self.is_super(acting_principal_id):
            return
        actor_level = self.highest_level(acting_principal_id)
        if actor_level is None or level >= actor_level:
            SecurityLogger.log_privilege_escalation_attempt(
                actor_id=str(acting_principal_id),
                target_role='',
                target_level=level,
                actor_level=actor_level,
                operation=operation,
            )
            raise HierarchyViolation(
                "Role level must be lower than your own highest role level",
                details={'level': level, 'actor_level': actor_level, 'operation': operation}
            )

    @transaction.atomic
    def delete_role(self, role: Role) -> dict:
        """
        Soft delete a non-system role.

        The role gets a deletion timestamp and is deactivated; all of its
        permission links and user assignments are deactivated in the same
        transaction. Rows are kept for audit.

        Returns:
            Dict with the number of deactivated links and assignments

        Raises:
            SystemRoleProtected: If the role is a system role
        """
        if role.is_system:
            raise SystemRoleProtected(
                f"System role '{role.name}' cannot be deleted",
                details={'role': role.name}
            )

        now = self.clock()
        links = RolePermission.objects.filter(role=role, is_active=True).update(is_active=False, updated_at=now)
        assignments = UserRole.objects.filter(role=role, is_active=True).update(is_active=False, updated_at=now)

        role.is_active = False
        role.deleted_at = now
        role.save(update_fields=['is_active', 'deleted_at', 'updated_at'])

        logger.info(
            f"Role '{role.name}' deleted",
            extra={'role_id': str(role.id), 'links': links, 'assignments': assignments}
        )
        return {'deactivated_permissions': links, 'deactivated_assignments': assignments}

    @transaction.atomic
    def clone_role(self, source: Role, name: str, display_name: Optional[str] = None,
                   description: Optional[str] = None, level: Optional[int] = None,
                   granted_by=None) -> Role:
        """
        Create a new role with copies of the source's active permission links.

        Later changes to either role do not affect the other.

        Args:
            source: Role to copy
            name: Name of the new role
            display_name: Display name (default: source display name + ' (Copy)')
            description: Description (default: source description)
            level: Level of the new role (default: source level)
            granted_by: User recorded on the copied links

        Raises:
            Conflict: If a role with this name already exists
        """
        if Role.objects_with_deleted.filter(name=name).exists():
            raise Conflict(f"Role '{name}' already exists", details={'name': name})

        clone = Role.objects.create(
            name=name,
            display_name=display_name or f"{source.display_name or source.name} (Copy)",
            description=source.description if description is None else description,
            color=source.color,
            level=source.level if level is None else level,
            priority=source.priority,
            is_system=False,
            is_active=True,
        )

        links = RolePermission.objects.filter(role=source, is_active=True).select_related('permission')
        RolePermission.objects.bulk_create([
            RolePermission(role=clone, permission=link.permission, is_active=True, granted_by=granted_by)
            for link in links
        ])
        return clone
