# Export RBAC permission classes and decorators for easy importing
from apps.core.permissions import HasPermissions, requires_any_permission, requires_permissions

__all__ = ['HasPermissions', 'requires_permissions', 'requires_any_permission']
