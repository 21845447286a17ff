"""
Access decision engine.

Compares a route's Requirement against a principal's EffectivePermissions
and returns a Decision value. Denial is never an exception here: the HTTP
edge turns a denied Decision into a 403.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from apps.rbac.keys import PermissionKey


class Combinator(str, Enum):
    """How the keys of a Requirement combine."""
    ALL = 'ALL'
    ANY = 'ANY'


class Reason:
    """Decision reason codes."""
    GRANTED = 'granted'
    SUPER_ROLE = 'super_role'
    NO_REQUIREMENT = 'no_requirement'
    MISSING_PERMISSIONS = 'missing_permissions'
    UNAVAILABLE = 'unavailable'


@dataclass(frozen=True)
class Requirement:
    """
    Permissions a route requires.

    A key given without scope only matches the 'all' scope; scopes are
    compared exactly.

    Example:
        >>> Requirement.any_of('equipment:delete:all', 'equipment:update:all')
    """

    keys: Tuple[PermissionKey, ...] = ()
    combinator: Combinator = Combinator.ALL

    def __post_init__(self):
        object.__setattr__(self, 'keys', tuple(PermissionKey.parse(key) for key in self.keys))
        object.__setattr__(self, 'combinator', Combinator(self.combinator))

    @classmethod
    def all_of(cls, *keys) -> 'Requirement':
        return cls(keys=tuple(keys), combinator=Combinator.ALL)

    @classmethod
    def any_of(cls, *keys) -> 'Requirement':
        return cls(keys=tuple(keys), combinator=Combinator.ANY)

    @property
    def is_empty(self) -> bool:
        return not self.keys

    def names(self) -> List[str]:
        return [str(key) for key in self.keys]


@dataclass(frozen=True)
class Decision:
    """
    Outcome of an access check.

    `missing` lists the unsatisfied keys on deny. `matched` lists the keys
    the principal exercised on allow.
    """

    allow: bool
    reason: str
    missing: Tuple[PermissionKey, ...] = ()
    matched: Tuple[PermissionKey, ...] = ()

    def __bool__(self):
        return self.allow

    def missing_names(self) -> List[str]:
        return [str(key) for key in self.missing]

    def as_dict(self):
        return {
            'allowed': self.allow,
            'reason': self.reason,
            'missing_permissions': self.missing_names(),
        }

    @classmethod
    def unavailable(cls, requirement: Optional[Requirement] = None) -> 'Decision':
        """Deny because permission data could not be loaded."""
        missing = requirement.keys if requirement is not None else ()
        return cls(allow=False, reason=Reason.UNAVAILABLE, missing=missing)


def as_requirement(value, combinator=Combinator.ALL) -> Optional[Requirement]:
    """Build a Requirement from a Requirement, a key, or an iterable of keys."""
    if value is None or isinstance(value, Requirement):
        return value
    if isinstance(value, (str, PermissionKey)):
        value = [value]
    return Requirement(keys=tuple(value), combinator=combinator)


class AccessDecisionEngine:
    """
    Pure decision function over already-computed permissions.

    Rules, in order:
    1. No requirement: allow (reason 'no_requirement')
    2. Super role held: allow (reason 'super_role'), recorded as such
    3. ALL: every key must be held; ANY: at least one key must be held
    """

    def decide(self, effective, requirement) -> Decision:
        """
        Decide whether `effective` satisfies `requirement`.

        Args:
            effective: EffectivePermissions of the principal
            requirement: Requirement, key, list of keys, or None

        Returns:
            Decision
        """
        requirement = as_requirement(requirement)
        if requirement is None or requirement.is_empty:
            return Decision(allow=True, reason=Reason.NO_REQUIREMENT)

        if effective.is_super:
            return Decision(allow=True, reason=Reason.SUPER_ROLE, matched=requirement.keys)

        held = tuple(key for key in requirement.keys if key in effective.keys)
        missing = tuple(key for key in requirement.keys if key not in effective.keys)

        if requirement.combinator == Combinator.ANY:
            if held:
                return Decision(allow=True, reason=Reason.GRANTED, matched=held)
            return Decision(allow=False, reason=Reason.MISSING_PERMISSIONS, missing=missing)

        if missing:
            return Decision(allow=False, reason=Reason.MISSING_PERMISSIONS, missing=missing)
        return Decision(allow=True, reason=Reason.GRANTED, matched=held)

    def decide_many(self, effective, keys: Iterable) -> dict:
        """Decide each key on its own. Returns {key string: Decision}."""
        return {str(PermissionKey.parse(key)): self.decide(effective, key) for key in keys}
