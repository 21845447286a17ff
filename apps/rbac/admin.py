"""
Django admin configuration for RBAC app.

The admin writes policy rows directly, so every save and delete is
announced through RBACService.record_admin_change (policy version bump and
audit row). Deleting a row deactivates it; system roles cannot be deleted.
"""
from django.contrib import admin, messages
from django.db import transaction

from .services import RBACService
from .models import (
    User,
    Permission,
    Role,
    RolePermission,
    UserRole,
    UserPermission,
    AuditLog,
)


class PolicyModelAdmin(admin.ModelAdmin):
    """ModelAdmin for tables that affect access decisions."""

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        action = 'admin_updated' if change else 'admin_created'
        RBACService.record_admin_change(action, obj, actor=request.user, request=request)

    def delete_model(self, request, obj):
        with transaction.atomic():
            obj.delete()
            RBACService.record_admin_change('admin_deleted', obj, actor=request.user, request=request)

    def delete_queryset(self, request, queryset):
        with transaction.atomic():
            objs = list(queryset)
            queryset.delete()
            for obj in objs:
                RBACService.record_admin_change('admin_deleted', obj, actor=request.user, request=request)


@admin.register(User)
class UserAdmin(PolicyModelAdmin):
    """
    Admin for our User model.

    Passwords are stored as hashes and are never edited here.
    """
    list_display = ['email', 'username', 'first_name', 'last_name', 'is_active', 'is_superuser',
                    'failed_login_attempts', 'locked_until', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'created_at']
    search_fields = ['email', 'username', 'first_name', 'last_name']
    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('email', 'username')
        }),
        ('Personal Info', {
            'fields': ('first_name', 'last_name')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_superuser')
        }),
        ('Lockout', {
            'fields': ('failed_login_attempts', 'locked_until')
        }),
        ('Activity', {
            'fields': ('last_login_at', 'created_at', 'updated_at')
        }),
    )

    readonly_fields = ['created_at', 'updated_at', 'last_login_at']


@admin.register(Permission)
class PermissionAdmin(PolicyModelAdmin):
    list_display = ['name', 'category', 'risk_level', 'requires_mfa', 'audit_required', 'is_active', 'is_system']
    list_filter = ['category', 'risk_level', 'scope', 'is_active', 'is_system']
    search_fields = ['name', 'display_name', 'resource', 'action']
    readonly_fields = ['name', 'requires_mfa', 'audit_required', 'created_at', 'updated_at']


@admin.register(Role)
class RoleAdmin(PolicyModelAdmin):
    list_display = ['name', 'display_name', 'level', 'priority', 'is_system', 'is_active']
    list_filter = ['is_system', 'is_active']
    search_fields = ['name', 'display_name']
    ordering = ['-level', '-priority', 'name']

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.is_system:
            return False
        return super().has_delete_permission(request, obj)

    def delete_queryset(self, request, queryset):
        protected = list(queryset.filter(is_system=True).values_list('name', flat=True))
        if protected:
            self.message_user(
                request,
                f"System roles cannot be deleted: {', '.join(protected)}",
                messages.WARNING
            )
        super().delete_queryset(request, queryset.filter(is_system=False))


@admin.register(RolePermission)
class RolePermissionAdmin(PolicyModelAdmin):
    list_display = ['role', 'permission', 'is_active', 'granted_by', 'created_at']
    list_filter = ['is_active', 'role']
    search_fields = ['role__name', 'permission__name']


@admin.register(UserRole)
class UserRoleAdmin(PolicyModelAdmin):
    list_display = ['user', 'role', 'is_active', 'is_primary', 'expires_at', 'assigned_by', 'created_at']
    list_filter = ['is_active', 'is_primary', 'role']
    search_fields = ['user__email', 'role__name']


@admin.register(UserPermission)
class UserPermissionAdmin(PolicyModelAdmin):
    list_display = ['user', 'permission', 'is_denied', 'is_active', 'expires_at', 'granted_by']
    list_filter = ['is_denied', 'is_active']
    search_fields = ['user__email', 'permission__name']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Audit rows are read-only."""
    list_display = ['action', 'user', 'target_type', 'target_id', 'ip_address', 'created_at']
    list_filter = ['action', 'target_type']
    search_fields = ['action', 'user__email', 'target_id', 'request_id']
    readonly_fields = ['user', 'action', 'target_type', 'target_id', 'diff', 'ip_address',
                       'user_agent', 'request_id', 'metadata', 'created_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
