"""
Permission key value types.

A permission is identified by (resource, action, scope). PermissionKey keeps
the three parts separate so that comparisons are structural: an action that
itself contains a colon (e.g. 'dashboard:view') can never collide with a
different resource/action split. The 'resource:action:scope' string is only a
display and parsing format.
"""
from dataclasses import dataclass
from typing import Iterable, List, Union

from django.db import models

from apps.rbac.exceptions import InvalidPermissionKey


SEPARATOR = ':'


class Scope(models.TextChoices):
    """Which records an action applies to."""
    OWN = 'own', 'Own'
    TEAM = 'team', 'Team'
    ALL = 'all', 'All'

    @classmethod
    def coerce(cls, value: Union['Scope', str]) -> 'Scope':
        """
        Validate a scope value.

        Args:
            value: Scope member or its string value (case-insensitive)

        Returns:
            Scope member

        Raises:
            InvalidPermissionKey: If the value is empty or not a known scope
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value:
            raise InvalidPermissionKey(
                f"Scope must be one of {', '.join(cls.values)}",
                details={'scope': value}
            )
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidPermissionKey(
                f"Unknown scope '{value}'. Expected one of {', '.join(cls.values)}",
                details={'scope': value}
            )


class RiskLevel(models.TextChoices):
    """Risk classification of a permission."""
    LOW = 'LOW', 'Low'
    MEDIUM = 'MEDIUM', 'Medium'
    HIGH = 'HIGH', 'High'
    CRITICAL = 'CRITICAL', 'Critical'

    @classmethod
    def requires_mfa(cls, level) -> bool:
        """CRITICAL permissions require MFA."""
        return level == cls.CRITICAL

    @classmethod
    def audit_required(cls, level) -> bool:
        """HIGH and CRITICAL permissions are audited."""
        return level in (cls.HIGH, cls.CRITICAL)


@dataclass(frozen=True, order=True)
class PermissionKey:
    """
    Structural identity of a permission.

    Equality and hashing use the three fields, never the display string.

    Example:
        >>> PermissionKey('tickets', 'update') == PermissionKey.parse('tickets:update:all')
        True
        >>> PermissionKey.parse('admin:dashboard:view:all').action
        'dashboard:view'
    """

    resource: str
    action: str
    scope: Scope = Scope.ALL

    def __post_init__(self):
        if not self.resource or not isinstance(self.resource, str):
            raise InvalidPermissionKey("Permission resource is required", details={'resource': self.resource})
        if not self.action or not isinstance(self.action, str):
            raise InvalidPermissionKey("Permission action is required", details={'action': self.action})
        object.__setattr__(self, 'scope', Scope.coerce(self.scope))

    def __str__(self):
        return SEPARATOR.join((self.resource, self.action, self.scope.value))

    @property
    def name(self) -> str:
        """Display name, as stored in Permission.name."""
        return str(self)

    @classmethod
    def parse(cls, value: str) -> 'PermissionKey':
        """
        Parse a 'resource:action[:scope]' string.

        The resource is the first segment. When the last segment is a known
        scope it is the scope and everything in between is the action;
        otherwise the scope is 'all' and everything after the resource is
        the action.

        Args:
            value: Key string, e.g. 'tickets:view:own' or 'admin:dashboard:view:all'

        Returns:
            PermissionKey

        Raises:
            InvalidPermissionKey: If the string has fewer than two segments
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidPermissionKey("Permission key must be a string", details={'key': repr(value)})

        parts = value.strip().split(SEPARATOR)
        if len(parts) < 2 or not all(parts):
            raise InvalidPermissionKey(
                f"Invalid permission key '{value}'. Expected 'resource:action:scope'",
                details={'key': value}
            )

        if len(parts) >= 3 and parts[-1].lower() in Scope.values:
            return cls(parts[0], SEPARATOR.join(parts[1:-1]), parts[-1])

        return cls(parts[0], SEPARATOR.join(parts[1:]), Scope.ALL)


def parse_keys(values: Iterable[Union[str, PermissionKey]]) -> List[PermissionKey]:
    """Parse several keys, preserving order."""
    return [PermissionKey.parse(value) for value in values]
