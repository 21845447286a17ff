"""
Tests for role hierarchy checks, protected deletion and cloning.
"""
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.rbac.exceptions import Conflict, HierarchyViolation, NotFound, SystemRoleProtected
from apps.rbac.hierarchy import RoleHierarchyAuthority
from apps.rbac.models import Role, RolePermission, UserRole


@pytest.fixture
def authority():
    return RoleHierarchyAuthority()


@pytest.fixture
def ladder(make_role):
    """Admin(80) > Manager(50) > Technician(30) > User(10)."""
    return {
        'Admin': make_role('Admin', level=80),
        'Manager': make_role('Manager', level=50),
        'Technician': make_role('Technician', level=30, permissions=['tickets:view:all', 'tickets:update:all']),
        'User': make_role('User', level=10),
    }


@pytest.mark.django_db
class TestCanManage:

    def test_higher_level_manages_lower(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['Manager'])

        assert authority.can_manage(user.pk, ladder['Technician'])
        assert authority.can_manage(user.pk, ladder['User'].id)

    def test_equal_level_cannot_manage(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['Manager'])

        assert not authority.can_manage(user.pk, ladder['Manager'])

    def test_lower_level_cannot_manage_higher(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['Manager'])

        assert not authority.can_manage(user.pk, ladder['Admin'])

    def test_highest_of_several_roles_counts(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['User'])
        assign_role(user, ladder['Admin'])

        assert authority.highest_level(user.pk) == 80
        assert authority.can_manage(user.pk, ladder['Manager'])

    def test_expired_assignment_does_not_count(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['Admin'], expires_at=timezone.now() - timedelta(minutes=5))
        assign_role(user, ladder['Technician'])

        assert authority.highest_level(user.pk) == 30
        assert not authority.can_manage(user.pk, ladder['Manager'])

    def test_no_roles_manages_nothing(self, authority, user, ladder):
        assert authority.highest_level(user.pk) is None
        assert not authority.can_manage(user.pk, ladder['User'])

    def test_super_role_manages_everything(self, authority, super_user, super_role):
        assert authority.can_manage(super_user.pk, super_role)

    def test_missing_role_raises(self, authority, user):
        with pytest.raises(NotFound):
            authority.can_manage(user.pk, uuid.uuid4())

    def test_ensure_can_manage_raises_with_details(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['Technician'])

        with pytest.raises(HierarchyViolation) as exc_info:
            authority.ensure_can_manage(user.pk, ladder['Manager'], 'update_role')

        assert exc_info.value.details == {
            'role': 'Manager',
            'role_level': 50,
            'actor_level': 30,
            'operation': 'update_role',
        }


@pytest.mark.django_db
class TestCanManageUser:

    def test_outranking_user(self, authority, make_user, ladder, assign_role):
        manager, technician = make_user(), make_user()
        assign_role(manager, ladder['Manager'])
        assign_role(technician, ladder['Technician'])

        assert authority.can_manage_user(manager.pk, technician.pk)
        assert not authority.can_manage_user(technician.pk, manager.pk)

    def test_user_without_roles_is_outranked(self, authority, make_user, ladder, assign_role):
        technician, newcomer = make_user(), make_user()
        assign_role(technician, ladder['Technician'])

        assert authority.can_manage_user(technician.pk, newcomer.pk)

    def test_cannot_manage_self(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['Admin'])

        assert not authority.can_manage_user(user.pk, user.pk)

    def test_super_role_manages_self(self, authority, super_user):
        assert authority.can_manage_user(super_user.pk, super_user.pk)

    def test_ensure_can_manage_user_raises(self, authority, make_user, ladder, assign_role):
        first, second = make_user(), make_user()
        assign_role(first, ladder['Manager'])
        assign_role(second, ladder['Manager'])

        with pytest.raises(HierarchyViolation):
            authority.ensure_can_manage_user(first.pk, second.pk, 'lock_account')


@pytest.mark.django_db
class TestLevelGate:

    def test_level_below_actor_allowed(self, authority, user, ladder, assign_role):
        assign_role(user, ladder['Manager'])

        authority.ensure_level_below_actor(user.pk, 40, 'create_role')

    @pytest.mark.parametrize('level', [50, 90])
    def test_level_at_or_above_actor_refused(self, authority, user, ladder, assign_role, level):
        assign_role(user, ladder['Manager'])

        with pytest.raises(HierarchyViolation):
            authority.ensure_level_below_actor(user.pk, level, 'create_role')

    def test_super_role_any_level(self, authority, super_user):
        authority.ensure_level_below_actor(super_user.pk, 1000, 'create_role')


@pytest.mark.django_db
class TestDeleteRole:

    def test_soft_delete_deactivates_links_and_assignments(self, authority, user, ladder, assign_role):
        role = ladder['Technician']
        assign_role(user, role)

        result = authority.delete_role(role)

        assert result == {'deactivated_permissions': 2, 'deactivated_assignments': 1}
        role = Role.objects_with_deleted.get(id=role.id)
        assert role.deleted_at is not None
        assert role.is_active is False
        assert not Role.objects.filter(id=role.id).exists()
        assert not RolePermission.objects.filter(role=role, is_active=True).exists()
        assert not UserRole.objects.filter(role=role, is_active=True).exists()
        # Rows are kept
        assert RolePermission.objects.filter(role=role).count() == 2

    def test_system_role_protected(self, authority, super_role):
        with pytest.raises(SystemRoleProtected):
            authority.delete_role(super_role)

        super_role.refresh_from_db()
        assert super_role.deleted_at is None


@pytest.mark.django_db
class TestCloneRole:

    def test_clone_copies_active_links(self, authority, ladder, make_permission):
        source = ladder['Technician']
        RolePermission.objects.grant_permission(source, make_permission('printers:view:all'))
        RolePermission.objects.revoke_permission(source, make_permission('printers:view:all'))

        clone = authority.clone_role(source, 'Senior Technician')

        assert clone.level == source.level
        assert clone.is_system is False
        assert clone.display_name == 'Technician (Copy)'
        assert sorted(p.name for p in clone.active_permissions()) == ['tickets:update:all', 'tickets:view:all']

    def test_clone_is_independent(self, authority, ladder, make_permission):
        source = ladder['Technician']
        clone = authority.clone_role(source, 'Night Shift')

        RolePermission.objects.grant_permission(source, make_permission('zones:view:all'))
        RolePermission.objects.revoke_permission(clone, make_permission('tickets:view:all'))

        assert [p.name for p in clone.active_permissions()] == ['tickets:update:all']
        assert 'zones:view:all' in [p.name for p in source.active_permissions()]

    def test_clone_of_system_role_is_custom(self, authority, super_role):
        clone = authority.clone_role(super_role, 'Deputy', level=90)

        assert clone.is_system is False
        assert clone.level == 90

    def test_duplicate_name_conflicts(self, authority, ladder):
        with pytest.raises(Conflict):
            authority.clone_role(ladder['Technician'], 'Manager')
