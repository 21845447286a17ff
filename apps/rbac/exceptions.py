"""
Access control exceptions.

Administrative operations raise these and let them propagate to the caller.
The evaluation path never lets them escape: an access decision is always a
Decision value, and policy store failures resolve to a deny with reason
'unavailable'.

apps.core.exceptions.custom_exception_handler maps each class to its HTTP
status and error code.
"""


class AccessControlError(Exception):
    """Base exception for access control errors."""

    status_code = 400
    code = 'ACCESS_CONTROL_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(AccessControlError):
    """Raised when a principal, role or permission referenced by an administrative call does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class Conflict(AccessControlError):
    """Raised on duplicate role names, duplicate permissions or duplicate active assignments."""
    status_code = 409
    code = 'CONFLICT'


class HierarchyViolation(AccessControlError):
    """
    Raised when an administrative call is refused by the role hierarchy.

    The acting principal's highest role level is not strictly greater than
    the level of the role being administered.
    """
    status_code = 403
    code = 'HIERARCHY_VIOLATION'


class SystemRoleProtected(AccessControlError):
    """Raised when deleting a system role or changing anything but its permissions."""
    status_code = 400
    code = 'SYSTEM_ROLE_PROTECTED'


class InvalidPermissionKey(AccessControlError):
    """Raised when a permission key string or scope value cannot be parsed."""
    status_code = 400
    code = 'INVALID_PERMISSION_KEY'


class AccountLocked(AccessControlError):
    """
    Raised when a locked account attempts to authenticate.

    Distinct from a Forbidden decision: it carries the lock expiry and the
    number of seconds until the account may retry.
    """
    status_code = 423
    code = 'ACCOUNT_LOCKED'

    def __init__(self, message, locked_until=None, retry_after=0, details=None):
        self.locked_until = locked_until
        self.retry_after = retry_after
        details = dict(details or {})
        details.setdefault('locked_until', locked_until.isoformat() if locked_until else None)
        details.setdefault('retry_after', retry_after)
        super().__init__(message, details)


class EvaluationUnavailable(AccessControlError):
    """
    Raised by the policy store when it cannot be reached or queried in time.

    Evaluation callers convert this into a deny; it must never be treated
    as "no permissions" silently nor as a grant.
    """
    status_code = 503
    code = 'EVALUATION_UNAVAILABLE'
