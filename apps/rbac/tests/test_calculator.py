"""
Tests for the effective-permission calculator.

Covers role aggregation, per-user overrides (deny wins), validity windows,
inactive rows, unknown principals and storage failures.
"""
import uuid
from datetime import timedelta

import pytest
from django.db import OperationalError
from django.utils import timezone
from hypothesis import given, settings as hypothesis_settings, strategies as st

from apps.rbac.cache import EffectivePermissionCache, bump_policy_version
from apps.rbac.calculator import EffectivePermissionCalculator
from apps.rbac.exceptions import EvaluationUnavailable
from apps.rbac.keys import PermissionKey, RiskLevel
from apps.rbac.models import RolePermission, UserPermission
from apps.rbac.store import Override, PolicyStore, RoleAssignment, RoleGrant


@pytest.fixture
def calculator():
    return EffectivePermissionCalculator(effective_cache=EffectivePermissionCache(enabled=False))


@pytest.mark.django_db
class TestRoleAggregation:
    """Permissions granted through role assignments."""

    def test_single_role(self, calculator, user, make_role, assign_role):
        role = make_role('Technician', level=30, permissions=['tickets:view:all', 'tickets:update:all'])
        assign_role(user, role)

        effective = calculator.compute(user.pk)

        assert effective.names() == ['tickets:update:all', 'tickets:view:all']
        assert effective.roles == ('Technician',)
        assert effective.highest_level == 30
        assert effective.is_super is False

    def test_union_of_roles(self, calculator, user, make_role, assign_role):
        assign_role(user, make_role('Viewer', level=10, permissions=['tickets:view:own']))
        assign_role(user, make_role('Stock', level=20, permissions=['consumables:manage-stock:all', 'tickets:view:own']))

        effective = calculator.compute(user.pk)

        assert effective.names() == ['consumables:manage-stock:all', 'tickets:view:own']
        assert effective.highest_level == 20

    def test_scopes_kept_apart(self, calculator, user, make_role, assign_role):
        assign_role(user, make_role('User', permissions=['tickets:view:own']))

        effective = calculator.compute(user.pk)

        assert 'tickets:view:own' in effective
        assert 'tickets:view:all' not in effective

    def test_super_role_flag(self, calculator, super_user):
        effective = calculator.compute(super_user.pk)

        assert effective.is_super is True
        assert effective.highest_level == 100

    def test_critical_keys_tracked(self, calculator, user, make_role, make_permission, assign_role):
        make_permission('employees:view-passwords:all', risk_level=RiskLevel.CRITICAL)
        assign_role(user, make_role('Manager', level=50, permissions=['employees:view-passwords:all', 'employees:view:all']))

        effective = calculator.compute(user.pk)

        assert effective.critical_keys == frozenset({PermissionKey.parse('employees:view-passwords:all')})

    def test_no_roles_is_empty(self, calculator, user):
        effective = calculator.compute(user.pk)

        assert len(effective) == 0
        assert effective.highest_level is None
        assert effective.principal_id == str(user.pk)


@pytest.mark.django_db
class TestInactiveAndExpiredRows:
    """Rows that exist but grant nothing."""

    def test_expired_assignment_ignored(self, calculator, user, make_role, assign_role):
        role = make_role('Temp', permissions=['tickets:view:all'])
        assign_role(user, role, expires_at=timezone.now() - timedelta(minutes=1))

        assert 'tickets:view:all' not in calculator.compute(user.pk)

    def test_assignment_valid_until_it_expires(self, calculator, user, make_role, assign_role):
        expires_at = timezone.now() + timedelta(hours=1)
        role = make_role('Temp', permissions=['tickets:view:all'])
        assign_role(user, role, expires_at=expires_at)

        assert 'tickets:view:all' in calculator.compute(user.pk)
        assert 'tickets:view:all' not in calculator.compute(user.pk, at=expires_at + timedelta(seconds=1))

    def test_inactive_assignment_ignored(self, calculator, user, make_role, assign_role):
        assign_role(user, make_role('Off', permissions=['tickets:view:all']), is_active=False)

        assert len(calculator.compute(user.pk)) == 0

    def test_inactive_role_ignored(self, calculator, user, make_role, assign_role):
        assign_role(user, make_role('Dormant', permissions=['tickets:view:all'], is_active=False))

        effective = calculator.compute(user.pk)

        assert len(effective) == 0
        assert effective.roles == ()

    def test_deleted_role_ignored(self, calculator, user, make_role, assign_role):
        assign_role(user, make_role('Gone', permissions=['tickets:view:all'], deleted_at=timezone.now()))

        assert len(calculator.compute(user.pk)) == 0

    def test_inactive_permission_ignored(self, calculator, user, make_role, make_permission, assign_role):
        role = make_role('Tech', permissions=['tickets:view:all', 'printers:view:all'])
        permission = make_permission('printers:view:all')
        permission.is_active = False
        permission.save()
        assign_role(user, role)

        assert calculator.compute(user.pk).names() == ['tickets:view:all']

    def test_inactive_link_ignored(self, calculator, user, make_role, assign_role):
        role = make_role('Tech', permissions=['tickets:view:all', 'printers:view:all'])
        RolePermission.objects.filter(role=role, permission__resource='printers').update(is_active=False)
        assign_role(user, role)

        assert calculator.compute(user.pk).names() == ['tickets:view:all']

    def test_valid_until_is_earliest_expiry(self, calculator, user, make_role, make_permission, assign_role):
        soon = timezone.now() + timedelta(minutes=10)
        later = timezone.now() + timedelta(days=1)
        assign_role(user, make_role('Temp', permissions=['tickets:view:all']), expires_at=later)
        UserPermission.objects.set_override(user, make_permission('reports:view:all'), is_denied=False, expires_at=soon)

        assert calculator.compute(user.pk).valid_until == soon


@pytest.mark.django_db
class TestOverrides:
    """Per-user grants and denies."""

    def test_grant_adds_key(self, calculator, user, make_role, make_permission, assign_role):
        assign_role(user, make_role('User', permissions=['tickets:view:own']))
        UserPermission.objects.set_override(user, make_permission('reports:export:all'), is_denied=False)

        assert calculator.compute(user.pk).names() == ['reports:export:all', 'tickets:view:own']

    def test_grant_without_roles(self, calculator, user, make_permission):
        UserPermission.objects.set_override(user, make_permission('reports:view:all'), is_denied=False)

        assert calculator.compute(user.pk).names() == ['reports:view:all']

    def test_deny_removes_role_grant(self, calculator, user, make_role, make_permission, assign_role):
        assign_role(user, make_role('Tech', permissions=['tickets:view:all', 'tickets:delete:all']))
        UserPermission.objects.set_override(user, make_permission('tickets:delete:all'), is_denied=True)

        effective = calculator.compute(user.pk)

        assert 'tickets:delete:all' not in effective
        assert 'tickets:view:all' in effective

    def test_deny_beats_grant_from_several_roles(self, calculator, user, make_role, make_permission, assign_role):
        assign_role(user, make_role('A', permissions=['equipment:delete:all']))
        assign_role(user, make_role('B', permissions=['equipment:delete:all']))
        UserPermission.objects.set_override(user, make_permission('equipment:delete:all'), is_denied=True)

        assert 'equipment:delete:all' not in calculator.compute(user.pk)

    def test_expired_deny_restores_role_grant(self, calculator, user, make_role, make_permission, assign_role):
        assign_role(user, make_role('Tech', permissions=['tickets:delete:all']))
        UserPermission.objects.set_override(
            user, make_permission('tickets:delete:all'), is_denied=True,
            expires_at=timezone.now() - timedelta(seconds=1),
        )

        assert 'tickets:delete:all' in calculator.compute(user.pk)

    def test_inactive_override_ignored(self, calculator, user, make_permission):
        override, _ = UserPermission.objects.set_override(user, make_permission('reports:view:all'), is_denied=False)
        override.is_active = False
        override.save()

        assert len(calculator.compute(user.pk)) == 0

    def test_denied_critical_key_not_reported_critical(self, calculator, user, make_role, make_permission, assign_role):
        permission = make_permission('superadmin:manage:all', risk_level=RiskLevel.CRITICAL)
        assign_role(user, make_role('Boss', level=90, permissions=['superadmin:manage:all']))
        UserPermission.objects.set_override(user, permission, is_denied=True)

        assert calculator.compute(user.pk).critical_keys == frozenset()


@pytest.mark.django_db
class TestPrincipalResolution:

    def test_unknown_principal_is_empty(self, calculator):
        effective = calculator.compute(uuid.uuid4())

        assert len(effective) == 0
        assert effective.is_super is False

    def test_inactive_user_is_empty(self, calculator, make_user, make_role, assign_role):
        member = make_user(is_active=False)
        assign_role(member, make_role('Tech', permissions=['tickets:view:all']))

        assert len(calculator.compute(member.pk)) == 0

    @pytest.mark.parametrize('value', [None, '', 'not-a-uuid'])
    def test_unparseable_principal_is_empty(self, calculator, value):
        assert len(calculator.compute(value)) == 0

    def test_accepts_user_instance_and_string(self, calculator, user, make_role, assign_role):
        assign_role(user, make_role('Tech', permissions=['tickets:view:all']))

        assert calculator.compute(user).keys == calculator.compute(str(user.pk)).keys


@pytest.mark.django_db
class TestStorageFailure:

    def test_database_error_raises_unavailable(self, calculator, user, monkeypatch):
        def broken(self, manager):
            raise OperationalError('canceling statement due to statement timeout')

        monkeypatch.setattr(PolicyStore, '_manager', broken)

        with pytest.raises(EvaluationUnavailable):
            calculator.compute(user.pk)


@pytest.mark.django_db
class TestEffectivePermissionCache:

    def test_cached_until_policy_changes(self, user, make_role, make_permission, assign_role):
        calculator = EffectivePermissionCalculator(effective_cache=EffectivePermissionCache(enabled=True, ttl=60))
        role = make_role('Tech', permissions=['tickets:view:all'])
        assign_role(user, role)
        assert calculator.compute(user.pk).names() == ['tickets:view:all']

        RolePermission.objects.grant_permission(role, make_permission('printers:view:all'))
        assert calculator.compute(user.pk).names() == ['tickets:view:all']

        bump_policy_version()
        assert calculator.compute(user.pk).names() == ['printers:view:all', 'tickets:view:all']

    def test_disabled_cache_always_recomputes(self, calculator, user, make_role, make_permission, assign_role):
        role = make_role('Tech', permissions=['tickets:view:all'])
        assign_role(user, role)
        calculator.compute(user.pk)

        RolePermission.objects.grant_permission(role, make_permission('printers:view:all'))

        assert 'printers:view:all' in calculator.compute(user.pk)


class InMemoryStore:
    """Policy store over plain lists, for property tests."""

    def __init__(self, grants, overrides):
        self.grants = grants
        self.overrides = overrides

    def principal_exists(self, principal_id):
        return True

    def role_assignments(self, principal_id, at):
        return [RoleAssignment(role_id=uuid.UUID(int=1), role_name='Role', level=10)]

    def role_grants(self, role_ids):
        return list(self.grants)

    def user_overrides(self, principal_id, at):
        return list(self.overrides)


KEYS = [PermissionKey.parse(name) for name in (
    'tickets:view:all', 'tickets:view:own', 'tickets:delete:all', 'reports:export:all', 'equipment:update:all',
)]

override_lists = st.lists(
    st.builds(Override, key=st.sampled_from(KEYS), is_denied=st.booleans()),
    max_size=8,
)


def compute_with(grants, overrides):
    calculator = EffectivePermissionCalculator(
        store=InMemoryStore(grants, overrides),
        super_role_name='SuperAdmin',
        effective_cache=EffectivePermissionCache(enabled=False),
    )
    return calculator.compute(uuid.uuid4(), at=timezone.now())


class TestOverridePrecedenceProperties:
    """Deny wins whatever the order rows come back in."""

    @hypothesis_settings(max_examples=50, deadline=None)
    @given(
        grants=st.lists(st.sampled_from(KEYS), max_size=5),
        data=st.data(),
    )
    def test_result_independent_of_override_order(self, grants, data):
        overrides = data.draw(override_lists)
        shuffled = data.draw(st.permutations(overrides))
        role_grants = [RoleGrant(role_id=uuid.UUID(int=1), key=key) for key in grants]

        assert compute_with(role_grants, overrides).keys == compute_with(role_grants, shuffled).keys

    @hypothesis_settings(max_examples=50, deadline=None)
    @given(grants=st.lists(st.sampled_from(KEYS), max_size=5), overrides=override_lists)
    def test_denied_keys_never_held(self, grants, overrides):
        role_grants = [RoleGrant(role_id=uuid.UUID(int=1), key=key) for key in grants]

        effective = compute_with(role_grants, overrides)

        denied = {override.key for override in overrides if override.is_denied}
        granted = {override.key for override in overrides if not override.is_denied}
        assert effective.keys == (set(grants) | granted) - denied
