"""
RBAC API URLs.

Provides endpoints for:
- Role management (CRUD, clone, reorder, hierarchy)
- Permission catalog (list, create, activation)
- User role assignments, permission overrides and access checks
- Account lockout administration
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    RoleListView,
    RoleHierarchyView,
    RoleReorderView,
    RoleDetailView,
    RoleCloneView,
    PermissionListView,
    PermissionActivationView,
    UserRoleListView,
    UserRoleDetailView,
    UserPermissionListView,
    UserPermissionDetailView,
    CanManageRoleView,
    CheckPermissionView,
    AssignableTechnicianListView,
    LockedAccountListView,
    AccountLockView,
    AccountUnlockView,
    AuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/hierarchy', RoleHierarchyView.as_view(), name='role-hierarchy'),
    path('roles/reorder', RoleReorderView.as_view(), name='role-reorder'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/clone', RoleCloneView.as_view(), name='role-clone'),

    # Permission catalog endpoints
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('permissions/<uuid:permission_id>/activation', PermissionActivationView.as_view(), name='permission-activation'),

    # User lists (before the per-user routes)
    path('users/assignable-technicians', AssignableTechnicianListView.as_view(), name='assignable-technicians'),
    path('users/locked', LockedAccountListView.as_view(), name='locked-accounts'),

    # User role assignment endpoints
    path('users/<uuid:user_id>/roles', UserRoleListView.as_view(), name='user-roles'),
    path('users/<uuid:user_id>/roles/<uuid:role_id>', UserRoleDetailView.as_view(), name='user-role-detail'),

    # User permission endpoints
    path('users/<uuid:user_id>/permissions', UserPermissionListView.as_view(), name='user-permissions'),
    path('users/<uuid:user_id>/permissions/<uuid:permission_id>', UserPermissionDetailView.as_view(), name='user-permission-detail'),
    path('users/<uuid:user_id>/can-manage-role/<uuid:role_id>', CanManageRoleView.as_view(), name='can-manage-role'),
    path('check-permission', CheckPermissionView.as_view(), name='check-permission'),

    # Lockout endpoints
    path('users/<uuid:user_id>/lock', AccountLockView.as_view(), name='account-lock'),
    path('users/<uuid:user_id>/unlock', AccountUnlockView.as_view(), name='account-unlock'),

    # Audit log endpoint
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
