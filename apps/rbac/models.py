"""
RBAC models for ITDesk access control.

Implements:
- User (the principal permissions are evaluated for, with lockout counters)
- Permission (global catalog, identified by resource/action/scope)
- Role (flat roles ranked by level)
- RolePermission (maps permissions to roles, with its own activation flag)
- UserRole (role assignments with optional expiry)
- UserPermission (per-user grant or deny overrides, deny wins)
- AuditLog (audit trail for access decisions and policy changes)

Rows are never removed: permissions are deactivated, roles are soft deleted,
and join rows are deactivated so that history stays auditable.
"""
import logging
from django.db import models, transaction, DatabaseError
from django.db.models import Max, Q
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone

from apps.core.models import BaseModel, DeactivatableModel, DeactivatingQuerySet
from apps.rbac.cache import bump_policy_version
from apps.rbac.keys import PermissionKey, RiskLevel, Scope

logger = logging.getLogger(__name__)


def invalidate_policy():
    """Expire cached effective sets now and again once the transaction commits."""
    bump_policy_version()
    transaction.on_commit(bump_policy_version)


class PolicyQuerySet(DeactivatingQuerySet):
    """Deactivating queryset for tables that feed access decisions."""

    def delete(self):
        count, per_model = super().delete()
        if count:
            invalidate_policy()
        return count, per_model

    delete.queryset_only = True


class PolicyModel(DeactivatableModel):
    """Deactivatable row that feeds access decisions."""

    objects = PolicyQuerySet.as_manager()

    class Meta(DeactivatableModel.Meta):
        abstract = True

    def delete(self, using=None, keep_parents=False):
        count, per_model = super().delete(using=using, keep_parents=keep_parents)
        if count:
            invalidate_policy()
        return count, per_model


class UserManager(models.Manager.from_queryset(PolicyQuerySet)):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def by_login(self, identifier):
        """Find user by email or username."""
        if not identifier:
            return None
        if '@' in identifier:
            return self.by_email(identifier)
        return self.filter(username=identifier).first()

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.

        This method is compatible with Django's authentication system.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)
        extra_fields.setdefault('username', email.split('@')[0])

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a superuser with Django admin access.

        Django admin access is separate from RBAC: the SuperAdmin role is
        what bypasses permission checks in the API.
        """
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """
        Normalize the email address by lowercasing the domain part.
        """
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        """
        Get user by natural key (email).

        This method is required for Django's authentication system.
        """
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(PolicyModel):
    """
    ITDesk user identity.

    Authentication happens at the User level; authorization is resolved
    from UserRole and UserPermission rows on every request.

    This is the AUTH_USER_MODEL for the entire application, including Django admin.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address"
    )
    username = models.CharField(
        max_length=150,
        unique=True,
        db_index=True,
        help_text="Login name"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )

    # Status
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Django admin access (independent of RBAC roles)"
    )

    # Django admin compatibility
    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    # Profile
    first_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User last name"
    )

    # Activity Tracking
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last successful login timestamp"
    )

    # Account Lockout
    failed_login_attempts = models.PositiveIntegerField(
        default=0,
        help_text="Consecutive failed credential checks"
    )
    locked_until = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Account is locked until this time"
    )

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
            models.Index(fields=['locked_until', 'failed_login_attempts']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """
        Alias for password_hash to maintain Django admin compatibility.
        """
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or username if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.username or self.email

    def get_username(self):
        return getattr(self, self.USERNAME_FIELD)

    @property
    def is_authenticated(self):
        """Always True for User instances (Django authentication compatibility)."""
        return True

    @property
    def is_anonymous(self):
        """Always False for User instances (Django authentication compatibility)."""
        return False

    @property
    def is_staff(self):
        """Django admin access is limited to superusers."""
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        """Django admin permission check. API permissions go through RBAC."""
        return self.is_active and self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_active and self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_active and self.is_superuser

    def natural_key(self):
        return (self.email,)


class PermissionManager(models.Manager.from_queryset(PolicyQuerySet)):
    """Manager for Permission queries."""

    def active(self):
        """Return only active permissions."""
        return self.filter(is_active=True)

    def by_name(self, name):
        """Find permission by display name (e.g., 'tickets:view:own')."""
        return self.filter(name=name).first()

    def by_key(self, key):
        """Find permission by structural key (PermissionKey or key string)."""
        key = PermissionKey.parse(key)
        return self.filter(resource=key.resource, action=key.action, scope=key.scope).first()

    def by_category(self, category):
        """Get all permissions in a category."""
        return self.filter(category=category)


class Permission(PolicyModel):
    """
    Global permission catalog entry.

    Identified by (resource, action, scope). `name` is the display form
    'resource:action:scope'. Permissions are never deleted, only
    deactivated; requires_mfa and audit_required are derived from the
    risk level on every save.
    """

    name = models.CharField(
        max_length=150,
        unique=True,
        db_index=True,
        help_text="Display key 'resource:action:scope' (e.g., 'tickets:update:all')"
    )
    display_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Human-readable label"
    )
    description = models.TextField(
        blank=True,
        help_text="What this permission grants"
    )
    category = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Permission category (e.g., 'tickets', 'equipment')"
    )
    resource = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Resource the action applies to"
    )
    action = models.CharField(
        max_length=100,
        help_text="Action on the resource (may contain ':')"
    )
    scope = models.CharField(
        max_length=10,
        choices=Scope.choices,
        default=Scope.ALL,
        help_text="Which records the action applies to"
    )
    risk_level = models.CharField(
        max_length=10,
        choices=RiskLevel.choices,
        default=RiskLevel.LOW,
        db_index=True,
        help_text="Risk classification"
    )
    requires_mfa = models.BooleanField(
        default=False,
        help_text="Derived: true for CRITICAL permissions"
    )
    audit_required = models.BooleanField(
        default=False,
        help_text="Derived: true for HIGH and CRITICAL permissions"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive permissions grant nothing"
    )
    is_system = models.BooleanField(
        default=False,
        help_text="Seeded by the system catalog"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'name']
        unique_together = [('resource', 'action', 'scope')]
        indexes = [
            models.Index(fields=['category', 'is_active']),
            models.Index(fields=['resource', 'action']),
        ]

    def __str__(self):
        return self.name

    @property
    def key(self) -> PermissionKey:
        """Structural key of this permission."""
        return PermissionKey(self.resource, self.action, self.scope)

    def save(self, *args, **kwargs):
        self.scope = Scope.coerce(self.scope or Scope.ALL)
        self.name = self.key.name
        self.requires_mfa = RiskLevel.requires_mfa(self.risk_level)
        self.audit_required = RiskLevel.audit_required(self.risk_level)
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'risk_level' in update_fields:
            kwargs['update_fields'] = set(update_fields) | {'requires_mfa', 'audit_required'}
        super().save(*args, **kwargs)


class RoleQuerySet(PolicyQuerySet):

    def delete(self):
        """Soft delete each role through Role.delete (system roles refuse)."""
        with transaction.atomic():
            roles = [role for role in self if role.deleted_at is None]
            for role in roles:
                role.delete()
        return len(roles), {self.model._meta.label: len(roles)}

    delete.queryset_only = True


class RoleManager(models.Manager.from_queryset(RoleQuerySet)):
    """Manager for Role queries. Soft-deleted roles are excluded."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def active(self):
        """Active, non-deleted roles."""
        return self.filter(is_active=True)

    def system_roles(self):
        return self.filter(is_system=True)

    def custom_roles(self):
        return self.filter(is_system=False)

    def by_name(self, name):
        """Find role by name."""
        return self.filter(name=name).first()

    def hierarchy(self):
        """Active roles from highest to lowest level."""
        return self.active().order_by('-level', '-priority', 'name')

    def next_level(self, step=10):
        """Level for a new role: current highest level plus step."""
        highest = self.model.objects_with_deleted.aggregate(highest=Max('level'))['highest']
        return (highest or 0) + step


class Role(PolicyModel):
    """
    Role definition.

    Roles are flat; `level` alone encodes the management hierarchy (higher
    level = more authority). System roles cannot be deleted and only their
    permissions may change.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Role name (e.g., 'Technician')"
    )
    display_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Human-readable name"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    color = models.CharField(
        max_length=20,
        blank=True,
        help_text="UI color (hex)"
    )
    level = models.IntegerField(
        default=0,
        db_index=True,
        help_text="Hierarchy level, higher = more authority"
    )
    priority = models.IntegerField(
        default=0,
        help_text="Display ordering"
    )
    is_system = models.BooleanField(
        default=False,
        db_index=True,
        help_text="System roles cannot be deleted"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive roles grant nothing"
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Set when the role was deleted"
    )

    # Default manager excludes deleted roles
    objects = RoleManager()

    # Includes deleted roles (name uniqueness, seeding)
    objects_with_deleted = models.Manager.from_queryset(RoleQuerySet)()

    class Meta:
        db_table = 'roles'
        ordering = ['-level', 'name']
        indexes = [
            models.Index(fields=['is_active', 'level']),
        ]

    def __str__(self):
        return f"{self.name} ({self.level})"

    def delete(self, using=None, keep_parents=False):
        """
        Soft delete with cascade, through the hierarchy authority.

        Raises:
            SystemRoleProtected: If this is a system role
        """
        from apps.rbac.hierarchy import RoleHierarchyAuthority

        if self.deleted_at is not None:
            return 0, {self._meta.label: 0}
        result = RoleHierarchyAuthority().delete_role(self)
        invalidate_policy()
        return 1 + sum(result.values()), {self._meta.label: 1, **result}

    def active_permissions(self):
        """Active permissions granted through active links of this role."""
        return Permission.objects.filter(
            role_permissions__role=self,
            role_permissions__is_active=True,
            is_active=True,
        ).distinct()

    def has_permission(self, key):
        """Check if role grants a permission key."""
        key = PermissionKey.parse(key)
        return self.active_permissions().filter(
            resource=key.resource, action=key.action, scope=key.scope
        ).exists()


class RolePermissionManager(models.Manager.from_queryset(PolicyQuerySet)):
    """Manager for RolePermission queries."""

    def active_for_role(self, role):
        """Active links of a role whose permission is active."""
        return self.filter(role=role, is_active=True, permission__is_active=True)

    def grant_permission(self, role, permission, granted_by=None):
        """Grant permission to role (idempotent upsert, reactivates a disabled link)."""
        return self.update_or_create(
            role=role,
            permission=permission,
            defaults={'is_active': True, 'granted_by': granted_by},
        )

    def revoke_permission(self, role, permission):
        """Disable the link without deleting it."""
        return self.filter(role=role, permission=permission).update(is_active=False, updated_at=timezone.now())


class RolePermission(PolicyModel):
    """
    Maps permissions to roles.

    The link has its own is_active flag so a grant can be disabled
    temporarily without losing it.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Permission being granted"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive links grant nothing"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_permission_grants',
        help_text="User who linked the permission"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']
        indexes = [
            models.Index(fields=['role', 'is_active']),
        ]

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"


class UserRoleManager(models.Manager.from_queryset(PolicyQuerySet)):
    """Manager for UserRole queries."""

    def valid(self, at=None):
        """
        Assignments that grant something at `at` (default: now).

        The assignment is active and unexpired, and its role is active and
        not soft deleted.
        """
        at = at or timezone.now()
        return self.filter(
            Q(expires_at__isnull=True) | Q(expires_at__gte=at),
            is_active=True,
            role__is_active=True,
            role__deleted_at__isnull=True,
        )

    def valid_for_user(self, user_id, at=None):
        return self.valid(at).filter(user_id=user_id)


class UserRole(PolicyModel):
    """
    Role assignment.

    Expired (`expires_at` in the past) or inactive assignments contribute
    nothing. `is_primary` is informational only.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles',
        help_text="User who has this role"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_roles',
        help_text="Role assigned to the user"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive assignments grant nothing"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Assignment expires at this time (null = never)"
    )
    is_primary = models.BooleanField(
        default=False,
        help_text="Primary role (informational)"
    )

    # Audit fields
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="User who assigned this role"
    )
    reason = models.TextField(
        blank=True,
        help_text="Reason for this assignment"
    )

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]
        ordering = ['user', '-is_primary', 'role']
        indexes = [
            models.Index(fields=['user', 'is_active']),
            models.Index(fields=['role', 'is_active']),
        ]

    def __str__(self):
        return f"{self.user.email} -> {self.role.name}"

    @property
    def is_temporary(self):
        return self.expires_at is not None


class UserPermissionManager(models.Manager.from_queryset(PolicyQuerySet)):
    """Manager for UserPermission queries."""

    def valid_for_user(self, user_id, at=None):
        """Active, unexpired overrides of a user whose permission is active."""
        at = at or timezone.now()
        return self.filter(
            Q(expires_at__isnull=True) | Q(expires_at__gte=at),
            user_id=user_id,
            is_active=True,
            permission__is_active=True,
        )

    def grants(self, user):
        return self.filter(user=user, is_denied=False, is_active=True)

    def denies(self, user):
        return self.filter(user=user, is_denied=True, is_active=True)

    def set_override(self, user, permission, is_denied, reason='', granted_by=None, expires_at=None):
        """Grant or deny a permission to a user (idempotent upsert)."""
        return self.update_or_create(
            user=user,
            permission=permission,
            defaults={
                'is_denied': is_denied,
                'is_active': True,
                'reason': reason,
                'granted_by': granted_by,
                'expires_at': expires_at,
            }
        )


class UserPermission(PolicyModel):
    """
    Per-user permission override (grant or deny).

    A deny removes the key from the effective set even when a role grants
    it. Used for exceptions that do not warrant a new role.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_overrides',
        help_text="User this override applies to"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='user_overrides',
        help_text="Permission being granted or denied"
    )
    is_denied = models.BooleanField(
        default=False,
        help_text="True = deny (wins over every grant), False = grant"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive overrides have no effect"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Override expires at this time (null = never)"
    )

    # Audit fields
    reason = models.TextField(
        blank=True,
        help_text="Reason for this override"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_overrides_made',
        help_text="User who created this override"
    )

    objects = UserPermissionManager()

    class Meta:
        db_table = 'user_permissions'
        unique_together = [('user', 'permission')]
        ordering = ['user', 'permission']
        indexes = [
            models.Index(fields=['user', 'is_active', 'is_denied']),
        ]

    def __str__(self):
        action = "DENY" if self.is_denied else "GRANT"
        return f"{action} {self.permission.name} to {self.user.email}"


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_user(self, user):
        """Audit logs for actions performed by a user."""
        return self.filter(user=user)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        """Audit logs for a target type and optionally a target id."""
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=str(target_id))
        return qs

    def by_request(self, request_id):
        return self.filter(request_id=request_id)


class AuditLog(BaseModel):
    """
    Audit trail for access decisions and policy changes.

    Written by the audit signal receivers: access denials, exercise of
    CRITICAL permissions, role/permission administrative changes and
    account lock events.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )

    # Action Details
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action (e.g., 'role_assigned', 'access_denied')"
    )
    target_type = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
        help_text="Type of target entity (e.g., 'Role', 'User')"
    )
    target_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of target entity"
    )

    # Change Tracking
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes"
    )

    # Request Context
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address of the request"
    )
    user_agent = models.TextField(
        blank=True,
        help_text="User agent string"
    )
    request_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Request ID for tracing"
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context metadata"
    )

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        return f"{user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, target_type='', target_id=None,
                   diff=None, metadata=None, request=None):
        """
        Convenience method to create audit log entry.

        Args:
            action: Action being performed
            user: User performing the action
            target_type: Type of target entity
            target_id: ID of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP, user agent, request ID)

        Returns:
            AuditLog instance, or None if the row could not be written
        """
        if user is not None and not getattr(user, 'is_authenticated', False):
            user = None

        log_data = {
            'action': action,
            'user': user,
            'target_type': target_type or '',
            'target_id': str(target_id) if target_id else None,
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', None)

        try:
            return cls.objects.create(**log_data)
        except (DatabaseError, ValueError, TypeError) as e:
            # Audit logging must not break the main operation
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        """Extract client IP from request."""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            ip = x_forwarded_for.split(',')[0].strip()
        else:
            ip = request.META.get('REMOTE_ADDR')
        return ip or None
