"""
RBAC REST API views.

Implements endpoints for:
- Role management (CRUD, clone, reorder, hierarchy)
- Permission catalog (grouped list, create, activation)
- User role assignments and per-user permission overrides
- Effective permissions and access checks
- Account lockout administration
- Audit log viewing
"""
from django.utils import timezone
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.permissions import HasPermissions, requires_permissions
from apps.rbac.guard import Requirement
from apps.rbac.models import AuditLog
from apps.rbac.serializers import (
    AssignRoleSerializer, AuditLogSerializer, CheckPermissionSerializer,
    LockAccountSerializer, LockedAccountSerializer, PermissionActivationSerializer,
    PermissionCreateSerializer, PermissionSerializer, RoleCloneSerializer,
    RoleCreateSerializer, RoleDetailSerializer, RoleReorderSerializer,
    RoleSerializer, RoleUpdateSerializer, UserPermissionCreateSerializer,
    UserPermissionSerializer, UserRoleSerializer, UserSerializer
)
from apps.rbac.services import RBACService, access_control
from apps.rbac.store import as_principal_id


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def validation_error(serializer):
    return Response(
        {
            'error': 'Validation error',
            'details': serializer.errors
        },
        status=status.HTTP_400_BAD_REQUEST
    )


def ensure_allowed(view, request, requirement):
    """Second access check inside a handler. Raises 403 on deny."""
    checker = HasPermissions()
    if not checker.check_requirement(request, requirement, view):
        view.permission_denied(request, message=checker.message)


def effective_permissions_payload(effective):
    """Response body for an EffectivePermissions value."""
    return {
        'user_id': effective.principal_id,
        'roles': list(effective.roles),
        'highest_level': effective.highest_level,
        'is_super': effective.is_super,
        'permissions': effective.names(),
        'critical_permissions': sorted(str(key) for key in effective.critical_keys),
        'computed_at': effective.computed_at.isoformat() if effective.computed_at else None,
        'valid_until': effective.valid_until.isoformat() if effective.valid_until else None,
    }


# ===== ROLES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
List roles ordered from the highest hierarchy level to the lowest.

Each role includes the number of active permissions and active assignments.
Pass `include_inactive=true` to include deactivated roles.

**Required permission:** `roles:view:all`
        ''',
        parameters=[
            OpenApiParameter(
                name='include_inactive',
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                description='Include deactivated roles',
                required=False
            ),
        ],
        responses={
            200: RoleSerializer(many=True),
            403: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Success Response',
                value={
                    'count': 1,
                    'roles': [
                        {
                            'id': '123e4567-e89b-12d3-a456-426614174000',
                            'name': 'Technician',
                            'display_name': 'Technician',
                            'level': 30,
                            'priority': 0,
                            'is_system': True,
                            'is_active': True,
                            'permission_count': 24,
                            'user_count': 6
                        }
                    ]
                },
                response_only=True
            )
        ]
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='''
Create a custom role, optionally with an initial permission list.

When `level` is omitted the role is placed 10 above the highest existing
level. The acting user can only create roles below their own highest level.

**Required permission:** `roles:create:all`
        ''',
        request=RoleCreateSerializer,
        responses={
            201: RoleDetailSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Create Request',
                value={
                    'name': 'Printer Support',
                    'description': 'Handles printers and consumables',
                    'level': 25,
                    'permissions': ['printers:view:all', 'printers:update:all', 'consumables:view:all']
                },
                request_only=True
            )
        ]
    )
)
class RoleListView(APIView):
    """
    GET /v1/roles
    POST /v1/roles

    List roles or create a custom role.
    """

    permission_classes = [HasPermissions]

    @requires_permissions('roles:view:all')
    def get(self, request):
        """List roles."""
        include_inactive = request.query_params.get('include_inactive', '').lower() == 'true'
        roles = RBACService.list_roles(include_inactive=include_inactive)
        serializer = RoleSerializer(roles, many=True)

        return Response({
            'count': len(serializer.data),
            'roles': serializer.data
        })

    @requires_permissions('roles:create:all')
    def post(self, request):
        """Create a role."""
        serializer = RoleCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        role = RBACService.create_role(
            actor=request.user,
            request=request,
            **serializer.validated_data
        )

        return Response(RoleDetailSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Role hierarchy',
    description='''
Active roles from the highest level to the lowest, with a flag telling
whether the authenticated user may administer each one.

A user may administer a role only when their highest role level is strictly
greater than the role's level. Holders of the super role may administer
every role.

**Required permission:** `roles:view:all`
    ''',
    responses={200: OpenApiTypes.OBJECT}
)
class RoleHierarchyView(APIView):
    """
    GET /v1/roles/hierarchy

    Role hierarchy with manageability for the current user.
    """

    permission_classes = [HasPermissions]

    @requires_permissions('roles:view:all')
    def get(self, request):
        roles = list(RBACService.role_hierarchy())
        actor_level = access_control.hierarchy.highest_level(request.user.pk)
        is_super = access_control.hierarchy.is_super(request.user.pk)

        hierarchy = []
        for role in roles:
            data = RoleSerializer(role).data
            data['can_manage'] = is_super or (actor_level is not None and actor_level > role.level)
            hierarchy.append(data)

        return Response({
            'count': len(hierarchy),
            'highest_level': actor_level,
            'roles': hierarchy
        })


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Reorder roles',
    description='''
Set role display priority from list order. The first role receives the
highest priority. Hierarchy levels are not changed.

**Required permission:** `roles:update:all`
    ''',
    request=RoleReorderSerializer,
    responses={
        200: RoleSerializer(many=True),
        400: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
    }
)
class RoleReorderView(APIView):
    """
    POST /v1/roles/reorder
    """

    permission_classes = [HasPermissions]

    @requires_permissions('roles:update:all')
    def post(self, request):
        serializer = RoleReorderSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        roles = RBACService.reorder_roles(
            serializer.validated_data['role_ids'],
            actor=request.user,
            request=request
        )

        return Response({
            'count': len(roles),
            'roles': RoleSerializer(roles, many=True).data
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role details',
        description='''
Get a role with its active permissions.

**Required permission:** `roles:view:all`
        ''',
        responses={
            200: RoleDetailSerializer,
            404: OpenApiTypes.OBJECT,
        }
    ),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Update role',
        description='''
Partially update a role. When `permissions` is given it replaces the role's
permission set.

System roles only accept `permissions`; any other change is rejected with
`SYSTEM_ROLE_PROTECTED`. The acting user must outrank the role, and a new
`level` must stay below the acting user's own level.

**Required permission:** `roles:update:all`
        ''',
        request=RoleUpdateSerializer,
        responses={
            200: RoleDetailSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Replace Permissions',
                value={
                    'permissions': ['tickets:view:all', 'tickets:update:all', 'tickets:assign:all']
                },
                request_only=True
            ),
            OpenApiExample(
                'System Role Protected',
                value={
                    'error': "System role 'Admin' only allows permission changes",
                    'code': 'SYSTEM_ROLE_PROTECTED',
                    'details': {'role': 'Admin', 'fields': ['level']},
                    'request_id': '6f1c2d9e-0b7a-4c1e-9d55-1f1f5bde2a77'
                },
                response_only=True,
                status_codes=['400']
            )
        ]
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='''
Soft delete a custom role. Its permission links and user assignments are
deactivated in the same transaction. System roles cannot be deleted.

**Required permission:** `roles:delete:all`
        ''',
        responses={
            204: None,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
class RoleDetailView(APIView):
    """
    GET /v1/roles/{role_id}
    PATCH /v1/roles/{role_id}
    DELETE /v1/roles/{role_id}
    """

    permission_classes = [HasPermissions]

    @requires_permissions('roles:view:all')
    def get(self, request, role_id):
        role = RBACService.get_role(role_id)
        return Response(RoleDetailSerializer(role).data)

    @requires_permissions('roles:update:all')
    def patch(self, request, role_id):
        role = RBACService.get_role(role_id)

        serializer = RoleUpdateSerializer(data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error(serializer)

        changes = dict(serializer.validated_data)
        permissions = changes.pop('permissions', None)

        role = RBACService.update_role(
            role,
            actor=request.user,
            request=request,
            permissions=permissions,
            **changes
        )

        return Response(RoleDetailSerializer(role).data)

    @requires_permissions('roles:delete:all')
    def delete(self, request, role_id):
        RBACService.delete_role(role_id, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Clone role',
    description='''
Create a custom role that copies the active permissions of an existing
role. The clone keeps the source level; the display name defaults to
"<source> (Copy)".

**Required permission:** `roles:create:all`
    ''',
    request=RoleCloneSerializer,
    responses={
        201: RoleDetailSerializer,
        400: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
        409: OpenApiTypes.OBJECT,
    }
)
class RoleCloneView(APIView):
    """
    POST /v1/roles/{role_id}/clone
    """

    permission_classes = [HasPermissions]

    @requires_permissions('roles:create:all')
    def post(self, request, role_id):
        serializer = RoleCloneSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        clone = RBACService.clone_role(
            role_id,
            actor=request.user,
            request=request,
            **serializer.validated_data
        )

        return Response(RoleDetailSerializer(clone).data, status=status.HTTP_201_CREATED)


# ===== PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permissions by category',
        description='''
List the permission catalog grouped by category.

Each permission carries its key parts (`resource`, `action`, `scope`), its
risk level and the derived `requires_mfa` / `audit_required` flags.

**Required permission:** `permissions:view:all`
        ''',
        responses={200: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Success Response',
                value={
                    'count': 2,
                    'categories': {
                        'tickets': [
                            {
                                'name': 'tickets:view:own',
                                'resource': 'tickets',
                                'action': 'view',
                                'scope': 'own',
                                'risk_level': 'LOW',
                                'requires_mfa': False,
                                'audit_required': False
                            },
                            {
                                'name': 'tickets:delete:all',
                                'resource': 'tickets',
                                'action': 'delete',
                                'scope': 'all',
                                'risk_level': 'HIGH',
                                'requires_mfa': False,
                                'audit_required': True
                            }
                        ]
                    }
                },
                response_only=True
            )
        ]
    ),
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Create permission',
        description='''
Add a permission to the catalog. `(resource, action, scope)` must be unique.

**Required permission:** `permissions:create:all`
        ''',
        request=PermissionCreateSerializer,
        responses={
            201: PermissionSerializer,
            400: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    )
)
class PermissionListView(APIView):
    """
    GET /v1/permissions
    POST /v1/permissions
    """

    permission_classes = [HasPermissions]

    @requires_permissions('permissions:view:all')
    def get(self, request):
        grouped = RBACService.permissions_by_category()
        categories = {
            category: PermissionSerializer(permissions, many=True).data
            for category, permissions in grouped.items()
        }

        return Response({
            'count': sum(len(permissions) for permissions in grouped.values()),
            'categories': categories
        })

    @requires_permissions('permissions:create:all')
    def post(self, request):
        serializer = PermissionCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        permission = RBACService.create_permission(
            actor=request.user,
            request=request,
            **serializer.validated_data
        )

        return Response(PermissionSerializer(permission).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='Activate or deactivate permission',
    description='''
A deactivated permission grants nothing, whichever roles or overrides
reference it.

**Required permission:** `permissions:create:all`
    ''',
    request=PermissionActivationSerializer,
    responses={
        200: PermissionSerializer,
        404: OpenApiTypes.OBJECT,
    }
)
class PermissionActivationView(APIView):
    """
    PATCH /v1/permissions/{permission_id}/activation
    """

    permission_classes = [HasPermissions]

    @requires_permissions('permissions:create:all')
    def patch(self, request, permission_id):
        serializer = PermissionActivationSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        permission = RBACService.set_permission_active(
            permission_id,
            serializer.validated_data['is_active'],
            actor=request.user,
            request=request
        )

        return Response(PermissionSerializer(permission).data)


# ===== USER ROLES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='List user roles',
        description='''
List a user's active role assignments, including temporary ones.

**Required permission:** `roles:view:all`
        ''',
        responses={
            200: UserRoleSerializer(many=True),
            404: OpenApiTypes.OBJECT,
        }
    ),
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Assign role to user',
        description='''
Assign a role to a user. An optional `expires_at` makes the assignment
temporary: it grants nothing once expired.

Marking the assignment primary clears the flag on the user's other
assignments. The acting user must outrank the role.

**Required permission:** `roles:assign:all`
        ''',
        request=AssignRoleSerializer,
        responses={
            201: UserRoleSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Temporary Assignment',
                value={
                    'role_id': '123e4567-e89b-12d3-a456-426614174000',
                    'expires_at': '2026-12-31T23:59:59Z',
                    'reason': 'Covering for the on-call technician'
                },
                request_only=True
            ),
            OpenApiExample(
                'Hierarchy Violation',
                value={
                    'error': "Cannot manage role 'Admin' (level 80) from level 50",
                    'code': 'HIERARCHY_VIOLATION',
                    'details': {'operation': 'assign_role', 'role': 'Admin'},
                    'request_id': '6f1c2d9e-0b7a-4c1e-9d55-1f1f5bde2a77'
                },
                response_only=True,
                status_codes=['403']
            )
        ]
    )
)
class UserRoleListView(APIView):
    """
    GET /v1/users/{user_id}/roles
    POST /v1/users/{user_id}/roles
    """

    permission_classes = [HasPermissions]

    @requires_permissions('roles:view:all')
    def get(self, request, user_id):
        assignments = RBACService.user_roles(user_id)
        serializer = UserRoleSerializer(assignments, many=True)

        return Response({
            'count': len(serializer.data),
            'roles': serializer.data
        })

    @requires_permissions('roles:assign:all')
    def post(self, request, user_id):
        serializer = AssignRoleSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        data = serializer.validated_data
        assignment = RBACService.assign_role(
            user_id,
            data['role_id'],
            actor=request.user,
            expires_at=data['expires_at'],
            is_primary=data['is_primary'],
            reason=data['reason'],
            request=request
        )

        return Response(UserRoleSerializer(assignment).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Users'],
    summary='Remove role from user',
    description='''
Deactivate a user's assignment of a role.

**Required permission:** `roles:assign:all`
    ''',
    responses={
        204: None,
        403: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
    }
)
class UserRoleDetailView(APIView):
    """
    DELETE /v1/users/{user_id}/roles/{role_id}
    """

    permission_classes = [HasPermissions]

    @requires_permissions('roles:assign:all')
    def delete(self, request, user_id, role_id):
        RBACService.remove_role(user_id, role_id, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== USER PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='Get user permissions',
        description='''
Get a user's effective permissions together with their direct overrides.

Effective permissions are computed from valid role assignments, then
direct grants are added and direct denies removed. A deny always wins.

**Required permission:** `permissions:view:all`
        ''',
        responses={
            200: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            503: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Success Response',
                value={
                    'effective': {
                        'user_id': '123e4567-e89b-12d3-a456-426614174002',
                        'roles': ['Technician'],
                        'highest_level': 30,
                        'is_super': False,
                        'permissions': ['equipment:view:all', 'tickets:view:all'],
                        'critical_permissions': [],
                        'computed_at': '2026-01-15T09:30:00+00:00',
                        'valid_until': None
                    },
                    'overrides': []
                },
                response_only=True
            )
        ]
    ),
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Grant or deny permission to user',
        description='''
Create or replace a direct override of one permission for a user.

`is_denied=true` removes the permission even when one of the user's roles
grants it. The acting user must outrank the target user.

**Required permission:** `users:update:all`
        ''',
        request=UserPermissionCreateSerializer,
        responses={
            201: UserPermissionSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Deny Request',
                value={
                    'permission': 'employees:view-passwords:all',
                    'is_denied': True,
                    'reason': 'Under review'
                },
                request_only=True
            )
        ]
    )
)
class UserPermissionListView(APIView):
    """
    GET /v1/users/{user_id}/permissions
    POST /v1/users/{user_id}/permissions
    """

    permission_classes = [HasPermissions]

    @requires_permissions('permissions:view:all')
    def get(self, request, user_id):
        user = RBACService.get_user(user_id)
        effective = access_control.evaluate(user.pk)
        overrides = RBACService.user_overrides(user)

        return Response({
            'effective': effective_permissions_payload(effective),
            'overrides': UserPermissionSerializer(overrides, many=True).data
        })

    @requires_permissions('users:update:all')
    def post(self, request, user_id):
        serializer = UserPermissionCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        data = serializer.validated_data
        override = RBACService.set_permission_override(
            user_id,
            data['permission'],
            is_denied=data['is_denied'],
            actor=request.user,
            reason=data['reason'],
            expires_at=data['expires_at'],
            request=request
        )

        return Response(UserPermissionSerializer(override).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Users'],
    summary='Revoke permission override',
    description='''
Remove a user's direct grant or deny of a permission. The user falls back
to whatever their roles grant.

**Required permission:** `users:update:all`
    ''',
    responses={
        204: None,
        404: OpenApiTypes.OBJECT,
    }
)
class UserPermissionDetailView(APIView):
    """
    DELETE /v1/users/{user_id}/permissions/{permission_id}
    """

    permission_classes = [HasPermissions]

    @requires_permissions('users:update:all')
    def delete(self, request, user_id, permission_id):
        RBACService.revoke_permission_override(user_id, permission_id, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    tags=['RBAC - Users'],
    summary='Check whether a user can manage a role',
    description='''
True when the user's highest role level is strictly greater than the
target role's level, or when the user holds the super role.

Asking about another user requires `roles:view:all`.
    ''',
    responses={
        200: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
    }
)
class CanManageRoleView(APIView):
    """
    GET /v1/users/{user_id}/can-manage-role/{role_id}
    """

    permission_classes = [HasPermissions]

    def get(self, request, user_id, role_id):
        if user_id != request.user.pk:
            ensure_allowed(self, request, Requirement.all_of('roles:view:all'))
        user = RBACService.get_user(user_id)

        return Response({
            'user_id': str(user.pk),
            'role_id': str(role_id),
            'can_manage': access_control.can_manage_role(user.pk, role_id)
        })


@extend_schema(
    tags=['RBAC - Users'],
    summary='Check permissions',
    description='''
Evaluate a requirement against a user's effective permissions.

`combinator` is `ALL` (every key required) or `ANY` (one key suffices).
Keys without a scope mean the `all` scope. When `user_id` is omitted the
authenticated user is checked; checking another user requires
`permissions:view:all`.
    ''',
    request=CheckPermissionSerializer,
    responses={200: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Check Request',
            value={
                'permissions': ['tickets:update:all', 'tickets:update:own'],
                'combinator': 'ANY'
            },
            request_only=True
        ),
        OpenApiExample(
            'Check Response',
            value={
                'user_id': '123e4567-e89b-12d3-a456-426614174002',
                'allowed': True,
                'reason': 'granted',
                'missing_permissions': [],
                'permissions': {
                    'tickets:update:all': False,
                    'tickets:update:own': True
                }
            },
            response_only=True
        )
    ]
)
class CheckPermissionView(APIView):
    """
    POST /v1/check-permission
    """

    permission_classes = [HasPermissions]

    def post(self, request):
        serializer = CheckPermissionSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        user_id = serializer.validated_data.get('user_id')
        if user_id and user_id != request.user.pk:
            ensure_allowed(self, request, Requirement.all_of('permissions:view:all'))
        user = RBACService.get_user(user_id) if user_id else request.user

        requirement = Requirement(
            keys=tuple(serializer.validated_data['permissions']),
            combinator=serializer.validated_data['combinator']
        )
        effective = access_control.evaluate(user.pk)
        decision = access_control.decide(effective, requirement)

        result = decision.as_dict()
        result['user_id'] = str(user.pk)
        result['permissions'] = {
            name: item.allow
            for name, item in access_control.engine.decide_many(effective, requirement.keys).items()
        }
        return Response(result)


# ===== TECHNICIANS =====

@extend_schema(
    tags=['RBAC - Users'],
    summary='List assignable technicians',
    description='''
Active users whose effective permissions include
`technician:assignable:all`. Used to fill ticket assignment pickers.

**Required permission:** `tickets:view:all`
    ''',
    responses={200: UserSerializer(many=True)}
)
class AssignableTechnicianListView(APIView):
    """
    GET /v1/users/assignable-technicians
    """

    permission_classes = [HasPermissions]

    @requires_permissions('tickets:view:all')
    def get(self, request):
        users = RBACService.users_with_permission('technician:assignable:all')
        serializer = UserSerializer(users, many=True)

        return Response({
            'count': len(serializer.data),
            'users': serializer.data
        })


# ===== LOCKOUT =====

@extend_schema(
    tags=['RBAC - Lockout'],
    summary='List locked accounts',
    description='''
Accounts that are locked right now or have accumulated at least three
consecutive failed logins. Most recently locked first.

**Required permission:** `users:view:all`
    ''',
    responses={200: LockedAccountSerializer(many=True)}
)
class LockedAccountListView(APIView):
    """
    GET /v1/users/locked
    """

    permission_classes = [HasPermissions]

    @requires_permissions('users:view:all')
    def get(self, request):
        accounts = RBACService.locked_accounts()
        serializer = LockedAccountSerializer(accounts, many=True, context={'now': timezone.now()})

        return Response({
            'count': len(serializer.data),
            'users': serializer.data
        })


@extend_schema(
    tags=['RBAC - Lockout'],
    summary='Lock account',
    description='''
Lock an account administratively. `hours` defaults to
`RBAC_MANUAL_LOCK_HOURS`. The acting user must outrank the target user.

**Required permission:** `users:update:all`
    ''',
    request=LockAccountSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        403: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Lock Response',
            value={
                'user_id': '123e4567-e89b-12d3-a456-426614174002',
                'status': 'LOCKED',
                'failed_attempts': 5,
                'locked_until': '2026-01-16T09:30:00+00:00',
                'retry_after': 86400
            },
            response_only=True
        )
    ]
)
class AccountLockView(APIView):
    """
    POST /v1/users/{user_id}/lock
    """

    permission_classes = [HasPermissions]

    @requires_permissions('users:update:all')
    def post(self, request, user_id):
        serializer = LockAccountSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        user = RBACService.get_user(user_id)
        access_control.hierarchy.ensure_can_manage_user(request.user.pk, user.pk, 'lock_account')
        state = access_control.lock(
            user.pk,
            actor=request.user,
            hours=serializer.validated_data.get('hours'),
            request=request
        )

        return Response({'user_id': str(user.pk), **state.as_dict()})


@extend_schema(
    tags=['RBAC - Lockout'],
    summary='Unlock account',
    description='''
Clear an account's lock and its failed login counter.

**Required permission:** `users:update:all`
    ''',
    request=None,
    responses={
        200: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
    }
)
class AccountUnlockView(APIView):
    """
    POST /v1/users/{user_id}/unlock
    """

    permission_classes = [HasPermissions]

    @requires_permissions('users:update:all')
    def post(self, request, user_id):
        user = RBACService.get_user(user_id)
        access_control.hierarchy.ensure_can_manage_user(request.user.pk, user.pk, 'unlock_account')
        state = access_control.unlock(user.pk, actor=request.user, request=request)

        return Response({'user_id': str(user.pk), **state.as_dict()})


# ===== AUDIT LOGS =====

@extend_schema(
    tags=['RBAC - Audit'],
    summary='List audit logs',
    description='''
List audit log entries, newest first, with pagination.

Entries cover policy changes, access denials, use of CRITICAL permissions,
logins and account locks.

**Required permission:** `admin:view:all`
    ''',
    parameters=[
        OpenApiParameter(
            name='action',
            type=OpenApiTypes.STR,
            location=OpenApiParameter.QUERY,
            description='Filter by action (e.g. role_assigned, access_denied)',
            required=False
        ),
        OpenApiParameter(
            name='user_id',
            type=OpenApiTypes.UUID,
            location=OpenApiParameter.QUERY,
            description='Filter by acting user',
            required=False
        ),
        OpenApiParameter(
            name='target_type',
            type=OpenApiTypes.STR,
            location=OpenApiParameter.QUERY,
            description='Filter by target type (Role, UserRole, UserPermission, Permission, User)',
            required=False
        ),
        OpenApiParameter(
            name='target_id',
            type=OpenApiTypes.STR,
            location=OpenApiParameter.QUERY,
            description='Filter by target id',
            required=False
        ),
        OpenApiParameter(
            name='page',
            type=OpenApiTypes.INT,
            location=OpenApiParameter.QUERY,
            description='Page number',
            required=False
        ),
        OpenApiParameter(
            name='page_size',
            type=OpenApiTypes.INT,
            location=OpenApiParameter.QUERY,
            description='Items per page (max 100)',
            required=False
        ),
    ],
    responses={200: AuditLogSerializer(many=True)}
)
class AuditLogListView(APIView):
    """
    GET /v1/audit-logs
    """

    permission_classes = [HasPermissions]

    @requires_permissions('admin:view:all')
    def get(self, request):
        logs = AuditLog.objects.select_related('user').order_by('-created_at')

        action = request.query_params.get('action')
        if action:
            logs = logs.filter(action=action)

        user_id = request.query_params.get('user_id')
        if user_id:
            principal_id = as_principal_id(user_id)
            logs = logs.filter(user_id=principal_id) if principal_id else logs.none()

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.filter(target_type=target_type)

        target_id = request.query_params.get('target_id')
        if target_id:
            logs = logs.filter(target_id=target_id)

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(logs, request)
        serializer = AuditLogSerializer(page, many=True)

        return paginator.get_paginated_response(serializer.data)
