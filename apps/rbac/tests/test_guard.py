"""
Tests for the access decision engine.
"""
import pytest

from apps.rbac.calculator import EffectivePermissions
from apps.rbac.exceptions import InvalidPermissionKey
from apps.rbac.guard import (
    AccessDecisionEngine, Combinator, Decision, Reason, Requirement, as_requirement
)
from apps.rbac.keys import PermissionKey


def effective_with(*names, is_super=False):
    return EffectivePermissions(
        principal_id='p1',
        keys=frozenset(PermissionKey.parse(name) for name in names),
        is_super=is_super,
    )


@pytest.fixture
def engine():
    return AccessDecisionEngine()


class TestRequirement:

    def test_keys_parsed(self):
        requirement = Requirement.all_of('tickets:view', 'tickets:update:own')

        assert requirement.names() == ['tickets:view:all', 'tickets:update:own']
        assert requirement.combinator == Combinator.ALL

    def test_invalid_key_rejected(self):
        with pytest.raises(InvalidPermissionKey):
            Requirement.any_of('tickets')

    @pytest.mark.parametrize('value,expected', [
        ('tickets:view:all', ['tickets:view:all']),
        (['a:b:all', 'c:d:own'], ['a:b:all', 'c:d:own']),
        (PermissionKey('tickets', 'view'), ['tickets:view:all']),
    ])
    def test_as_requirement(self, value, expected):
        assert as_requirement(value).names() == expected

    def test_as_requirement_passes_through(self):
        requirement = Requirement.any_of('tickets:view:all')

        assert as_requirement(requirement) is requirement
        assert as_requirement(None) is None


class TestDecide:

    def test_no_requirement_allows(self, engine):
        for requirement in (None, [], Requirement()):
            decision = engine.decide(effective_with(), requirement)
            assert decision.allow
            assert decision.reason == Reason.NO_REQUIREMENT

    def test_all_of_satisfied(self, engine):
        decision = engine.decide(
            effective_with('tickets:view:all', 'tickets:update:all'),
            Requirement.all_of('tickets:view:all', 'tickets:update:all'),
        )

        assert decision.allow
        assert decision.reason == Reason.GRANTED
        assert [str(key) for key in decision.matched] == ['tickets:view:all', 'tickets:update:all']

    def test_all_of_reports_every_missing_key(self, engine):
        decision = engine.decide(
            effective_with('tickets:view:all'),
            Requirement.all_of('tickets:view:all', 'tickets:update:all', 'tickets:delete:all'),
        )

        assert not decision
        assert decision.reason == Reason.MISSING_PERMISSIONS
        assert decision.missing_names() == ['tickets:update:all', 'tickets:delete:all']

    def test_any_of_needs_one(self, engine):
        decision = engine.decide(
            effective_with('equipment:update:all'),
            Requirement.any_of('equipment:delete:all', 'equipment:update:all'),
        )

        assert decision.allow
        assert decision.missing == ()

    def test_any_of_none_held(self, engine):
        decision = engine.decide(
            effective_with('tickets:view:all'),
            Requirement.any_of('equipment:delete:all', 'equipment:update:all'),
        )

        assert not decision.allow
        assert decision.missing_names() == ['equipment:delete:all', 'equipment:update:all']

    def test_scope_compared_exactly(self, engine):
        """Holding 'own' does not satisfy 'all', and the reverse."""
        assert not engine.decide(effective_with('tickets:view:own'), 'tickets:view:all')
        assert not engine.decide(effective_with('tickets:view:all'), 'tickets:view:own')

    def test_super_role_bypasses(self, engine):
        decision = engine.decide(effective_with(is_super=True), Requirement.all_of('superadmin:manage:all'))

        assert decision.allow
        assert decision.reason == Reason.SUPER_ROLE

    def test_decide_many(self, engine):
        results = engine.decide_many(effective_with('tickets:view:all'), ['tickets:view:all', 'tickets:delete'])

        assert results['tickets:view:all'].allow
        assert not results['tickets:delete:all'].allow


class TestDecision:

    def test_as_dict(self):
        decision = Decision(
            allow=False,
            reason=Reason.MISSING_PERMISSIONS,
            missing=(PermissionKey.parse('tickets:delete:all'),),
        )

        assert decision.as_dict() == {
            'allowed': False,
            'reason': 'missing_permissions',
            'missing_permissions': ['tickets:delete:all'],
        }

    def test_unavailable_denies_with_required_keys(self):
        decision = Decision.unavailable(Requirement.all_of('tickets:view:all'))

        assert not decision.allow
        assert decision.reason == Reason.UNAVAILABLE
        assert decision.missing_names() == ['tickets:view:all']
