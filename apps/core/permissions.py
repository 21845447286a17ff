"""
DRF permission classes and decorators for RBAC permission enforcement.

This module provides:
- HasPermissions: DRF permission class that runs the access check
- @requires_permissions: Declare keys that are ALL required
- @requires_any_permission: Declare keys of which ANY one suffices
"""
import logging
from functools import wraps

from rest_framework.permissions import BasePermission

from apps.rbac.exceptions import EvaluationUnavailable
from apps.rbac.guard import Combinator, Reason, Requirement

logger = logging.getLogger(__name__)


class HasPermissions(BasePermission):
    """
    DRF permission class that enforces permission requirements on API endpoints.

    This permission class:
    1. Finds the Requirement of the handler method, falling back to the view class
    2. Runs the lock gate, evaluates the user's effective permissions and decides
    3. Stores the Decision on request.access_decision
    4. Returns 403 with the missing keys on deny, 503 if permission data is
       unavailable, 423 if the account is locked

    Usage in views:
        class RoleListView(APIView):
            permission_classes = [HasPermissions]
            required_permissions = Requirement.all_of('roles:view:all')

    Or use with decorators:
        @requires_permissions('roles:view:all')
        class RoleListView(APIView):
            def get(self, request):
                pass

        class RoleListView(APIView):
            permission_classes = [HasPermissions]

            @requires_permissions('roles:view:all')
            def get(self, request):
                pass

            @requires_any_permission('roles:create:all', 'roles:manage:all')
            def post(self, request):
                pass
    """

    message = 'You do not have permission to perform this action.'

    @staticmethod
    def get_requirement(request, view):
        """Requirement of the handler for this request method, else of the view."""
        handler = getattr(view, request.method.lower(), None)
        requirement = getattr(handler, 'required_permissions', None)
        if requirement is None:
            requirement = getattr(view, 'required_permissions', None)
        return requirement

    def has_permission(self, request, view):
        """
        Check whether the authenticated user satisfies the view's requirement.

        Args:
            request: DRF request object
            view: DRF view instance

        Returns:
            bool: True if access is allowed, False otherwise
        """
        user = getattr(request, 'user', None)
        if user is None or not getattr(user, 'is_authenticated', False):
            return False

        return self.check_requirement(request, self.get_requirement(request, view), view)

    def check_requirement(self, request, requirement, view=None):
        """
        Authorize the request's user against a requirement.

        Also used by handlers that need a second check beyond the route's
        own requirement (e.g. acting on another user's data).

        Raises:
            EvaluationUnavailable: If permission data cannot be loaded
            AccountLocked: If the user's account is locked
        """
        from apps.rbac.services import access_control

        user = request.user
        view_name = view.__class__.__name__ if view is not None else None
        decision = access_control.authorize(user.pk, requirement, request=request)
        request.access_decision = decision

        if decision.allow:
            logger.debug(
                f"Permission granted ({decision.reason})",
                extra={'view': view_name, 'method': request.method}
            )
            return True

        if decision.reason == Reason.UNAVAILABLE:
            raise EvaluationUnavailable(
                "Permission data is temporarily unavailable",
                details={'missing_permissions': decision.missing_names()}
            )

        logger.warning(
            f"Permission denied: User {user.pk} missing {decision.missing_names()}",
            extra={
                'missing_permissions': decision.missing_names(),
                'view': view_name,
                'method': request.method,
                'path': request.path,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        self.message = {
            'error': 'You do not have permission to perform this action.',
            'code': 'FORBIDDEN',
            'missing_permissions': decision.missing_names(),
            'reason': decision.reason,
        }
        return False


def _declare(requirement):
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            # Decorating a class
            view_or_method.required_permissions = requirement
            permission_classes = list(getattr(view_or_method, 'permission_classes', []))
            if HasPermissions not in permission_classes:
                view_or_method.permission_classes = permission_classes + [HasPermissions]
            return view_or_method

        # Decorating a method: HasPermissions reads the attribute from the handler
        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_permissions = requirement
        return wrapped

    return decorator


def requires_permissions(*keys):
    """
    Decorator declaring permission keys that are ALL required.

    Keys are 'resource:action:scope' strings or PermissionKey values; a key
    without scope requires the 'all' scope.

    Args:
        *keys: Required permission keys

    Returns:
        Decorator that sets required_permissions on the view or handler
    """
    return _declare(Requirement(keys=keys, combinator=Combinator.ALL))


def requires_any_permission(*keys):
    """Decorator declaring permission keys of which ANY one is sufficient."""
    return _declare(Requirement(keys=keys, combinator=Combinator.ANY))
