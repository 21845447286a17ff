"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login)
- Users and lock state
- Roles and role assignments
- Permissions and permission overrides
- Access checks
- Audit logs
"""
from django.utils import timezone
from rest_framework import serializers

from apps.rbac.exceptions import InvalidPermissionKey
from apps.rbac.keys import PermissionKey, RiskLevel, Scope
from apps.rbac.models import AuditLog, Permission, Role, User, UserPermission, UserRole


# ===== AUTHENTICATION SERIALIZERS =====

class LoginSerializer(serializers.Serializer):
    """Serializer for user login (email or username)."""

    identifier = serializers.CharField(required=True, max_length=254)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_identifier(self, value):
        """Normalize the login identifier."""
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Email or username is required.")
        return value.lower() if '@' in value else value


# ===== USER SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'username', 'first_name', 'last_name', 'full_name',
            'is_active', 'last_login_at', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class LockedAccountSerializer(serializers.ModelSerializer):
    """Serializer for accounts that are locked or accumulating failures."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)
    is_locked = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'username', 'full_name', 'is_active',
            'failed_login_attempts', 'locked_until', 'is_locked', 'last_login_at'
        ]
        read_only_fields = fields

    def get_is_locked(self, obj):
        now = self.context.get('now')
        return obj.locked_until is not None and now is not None and obj.locked_until > now


class LockAccountSerializer(serializers.Serializer):
    """Serializer for an administrative lock."""

    hours = serializers.IntegerField(required=False, min_value=1, max_value=24 * 30)


# ===== PERMISSION SERIALIZERS =====

class ScopeField(serializers.ChoiceField):
    """Scope choice field accepting any letter case."""

    def __init__(self, **kwargs):
        kwargs.setdefault('default', Scope.ALL)
        super().__init__(choices=Scope.choices, **kwargs)

    def to_internal_value(self, data):
        if isinstance(data, str):
            data = data.strip().lower()
        return super().to_internal_value(data)


class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    class Meta:
        model = Permission
        fields = [
            'id', 'name', 'display_name', 'description', 'category',
            'resource', 'action', 'scope', 'risk_level',
            'requires_mfa', 'audit_required', 'is_active', 'is_system',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class PermissionCreateSerializer(serializers.Serializer):
    """Serializer for adding a permission to the catalog."""

    resource = serializers.CharField(max_length=100)
    action = serializers.CharField(max_length=100)
    scope = ScopeField(required=False)
    risk_level = serializers.ChoiceField(choices=RiskLevel.choices, default=RiskLevel.LOW)
    display_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    category = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')

    def validate(self, attrs):
        """Validate the key parts together (e.g. no empty segments)."""
        try:
            PermissionKey(attrs['resource'].strip(), attrs['action'].strip(), attrs.get('scope', Scope.ALL))
        except InvalidPermissionKey as e:
            raise serializers.ValidationError(e.message)
        attrs['resource'] = attrs['resource'].strip()
        attrs['action'] = attrs['action'].strip()
        return attrs


class PermissionActivationSerializer(serializers.Serializer):
    is_active = serializers.BooleanField()


class PermissionKeyField(serializers.CharField):
    """'resource:action:scope' string parsed into a PermissionKey."""

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        try:
            return PermissionKey.parse(value)
        except InvalidPermissionKey as e:
            raise serializers.ValidationError(e.message)


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    permission_count = serializers.SerializerMethodField()
    user_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'display_name', 'description', 'color',
            'level', 'priority', 'is_system', 'is_active',
            'permission_count', 'user_count',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_permission_count(self, obj):
        """Active permission links (annotated by list queries when available)."""
        if hasattr(obj, 'permission_count'):
            return obj.permission_count
        return obj.active_permissions().count()

    def get_user_count(self, obj):
        if hasattr(obj, 'user_count'):
            return obj.user_count
        return obj.user_roles.filter(is_active=True).count()


class RoleDetailSerializer(RoleSerializer):
    """Detailed serializer for Role with its active permissions."""

    permissions = serializers.SerializerMethodField()

    class Meta(RoleSerializer.Meta):
        fields = RoleSerializer.Meta.fields + ['permissions']
        read_only_fields = fields

    def get_permissions(self, obj):
        return PermissionSerializer(obj.active_permissions().order_by('category', 'name'), many=True).data


class RoleCreateSerializer(serializers.Serializer):
    """Serializer for creating roles."""

    name = serializers.CharField(max_length=100)
    display_name = serializers.CharField(max_length=150, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    color = serializers.CharField(max_length=20, required=False, allow_blank=True, default='')
    level = serializers.IntegerField(required=False, min_value=0)
    priority = serializers.IntegerField(required=False, default=0)
    permissions = serializers.ListField(child=serializers.CharField(), required=False, default=list)

    def validate_name(self, value):
        """Validate role name is not blank. Uniqueness is a 409 from the service."""
        if not value.strip():
            raise serializers.ValidationError("Role name cannot be empty.")
        return value.strip()


class RoleUpdateSerializer(serializers.Serializer):
    """Serializer for partial role updates."""

    name = serializers.CharField(max_length=100, required=False)
    display_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    color = serializers.CharField(max_length=20, required=False, allow_blank=True)
    level = serializers.IntegerField(required=False, min_value=0)
    priority = serializers.IntegerField(required=False)
    is_active = serializers.BooleanField(required=False)
    permissions = serializers.ListField(child=serializers.CharField(), required=False)


class RoleCloneSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    display_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)


class RoleReorderSerializer(serializers.Serializer):
    """Role ids in the desired display order (first = highest priority)."""

    role_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)

    def validate_role_ids(self, value):
        if len(set(value)) != len(value):
            raise serializers.ValidationError("Duplicate role ids are not allowed.")
        return value


# ===== ASSIGNMENT SERIALIZERS =====

class UserRoleSerializer(serializers.ModelSerializer):
    """Serializer for UserRole (role assignments)."""

    role = RoleSerializer(read_only=True)
    assigned_by_email = serializers.EmailField(source='assigned_by.email', read_only=True, default=None)
    is_temporary = serializers.BooleanField(read_only=True)

    class Meta:
        model = UserRole
        fields = [
            'id', 'role', 'is_active', 'is_primary', 'is_temporary',
            'expires_at', 'reason', 'assigned_by_email', 'created_at'
        ]
        read_only_fields = fields


class AssignRoleSerializer(serializers.Serializer):
    """Serializer for assigning a role to a user."""

    role_id = serializers.UUIDField()
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)
    is_primary = serializers.BooleanField(required=False, default=False)
    reason = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_expires_at(self, value):
        """Expiry must be in the future."""
        if value is not None and value <= timezone.now():
            raise serializers.ValidationError("Expiry must be in the future.")
        return value


class UserPermissionSerializer(serializers.ModelSerializer):
    """Serializer for UserPermission (permission overrides)."""

    permission = PermissionSerializer(read_only=True)
    granted_by_email = serializers.EmailField(source='granted_by.email', read_only=True, default=None)

    class Meta:
        model = UserPermission
        fields = [
            'id', 'permission', 'is_denied', 'is_active', 'expires_at',
            'reason', 'granted_by_email', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class UserPermissionCreateSerializer(serializers.Serializer):
    """Serializer for granting or denying a permission to a user."""

    permission = PermissionKeyField()
    is_denied = serializers.BooleanField(default=False)
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate_permission(self, value):
        """Permission must exist in the catalog."""
        if Permission.objects.by_key(value) is None:
            raise serializers.ValidationError(f"Permission '{value}' does not exist")
        return value


# ===== ACCESS CHECK SERIALIZERS =====

class CheckPermissionSerializer(serializers.Serializer):
    """Serializer for checking a requirement against a user's permissions."""

    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    permissions = serializers.ListField(child=PermissionKeyField(), allow_empty=False)
    combinator = serializers.ChoiceField(choices=['ALL', 'ANY'], default='ALL')


# ===== AUDIT LOG SERIALIZERS =====

class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'action', 'user_email', 'target_type', 'target_id',
            'diff', 'metadata', 'ip_address', 'user_agent', 'request_id',
            'created_at'
        ]
        read_only_fields = fields
