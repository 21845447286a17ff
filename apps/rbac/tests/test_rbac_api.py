"""
API tests for RBAC endpoints.

Runs against the seeded catalog and system roles:
SuperAdmin(100), Admin(80, everything but CRITICAL), Manager(50),
Technician(30), User(10).
"""
import uuid

import pytest
from django.db import OperationalError

from apps.rbac.models import AuditLog, Permission, Role, UserPermission, UserRole
from apps.rbac.services import RBACService, access_control
from apps.rbac.store import PolicyStore


def role_id(name):
    return str(Role.objects.get(name=name).id)


@pytest.fixture
def admin(seeded_user):
    return seeded_user('Admin', email='admin@itdesk.local')


@pytest.fixture
def superadmin(seeded_user):
    return seeded_user('SuperAdmin', email='root@itdesk.local')


@pytest.fixture
def technician(seeded_user):
    return seeded_user('Technician', email='tech@itdesk.local')


@pytest.fixture
def manager(seeded_user):
    return seeded_user('Manager', email='manager@itdesk.local')


@pytest.mark.django_db
class TestEnforcement:
    """HasPermissions at the HTTP edge."""

    def test_unauthenticated(self, api_client, seeded):
        response = api_client.get('/v1/roles')

        assert response.status_code == 401

    def test_missing_permission_is_403_with_keys(self, auth_client, technician):
        response = auth_client(technician).get('/v1/roles')

        assert response.status_code == 403
        assert response.data['code'] == 'FORBIDDEN'
        assert response.data['missing_permissions'] == ['roles:view:all']
        assert AuditLog.objects.filter(action='access_denied', user=technician).exists()

    def test_locked_account_is_423(self, auth_client, admin):
        client = auth_client(admin)
        access_control.lock(admin.pk)

        response = client.get('/v1/roles')

        assert response.status_code == 423
        assert response.data['code'] == 'ACCOUNT_LOCKED'
        assert int(response['Retry-After']) > 0

    def test_unavailable_store_is_503(self, auth_client, admin, monkeypatch):
        client = auth_client(admin)

        def broken(self, manager):
            raise OperationalError('statement timeout')

        monkeypatch.setattr(PolicyStore, '_manager', broken)

        response = client.get('/v1/roles')

        assert response.status_code == 503
        assert response.data['code'] == 'EVALUATION_UNAVAILABLE'

    def test_revocation_applies_to_next_request(self, auth_client, admin):
        client = auth_client(admin)
        assert client.get('/v1/roles').status_code == 200

        RBACService.deny_permission(admin, 'roles:view:all')

        assert client.get('/v1/roles').status_code == 403

    def test_super_role_bypasses(self, auth_client, superadmin):
        # permissions:create:all is CRITICAL and held by the super role only
        response = auth_client(superadmin).post('/v1/permissions', {
            'resource': 'licenses',
            'action': 'view',
            'scope': 'all',
        }, format='json')

        assert response.status_code == 201
        assert response.data['name'] == 'licenses:view:all'


@pytest.mark.django_db
class TestRoleEndpoints:

    def test_list_roles(self, auth_client, admin):
        response = auth_client(admin).get('/v1/roles')

        assert response.status_code == 200
        assert response.data['count'] == 5
        assert [role['name'] for role in response.data['roles']] == [
            'SuperAdmin', 'Admin', 'Manager', 'Technician', 'User'
        ]

    def test_hierarchy_flags(self, auth_client, admin):
        response = auth_client(admin).get('/v1/roles/hierarchy')

        assert response.status_code == 200
        assert response.data['highest_level'] == 80
        flags = {role['name']: role['can_manage'] for role in response.data['roles']}
        assert flags == {
            'SuperAdmin': False, 'Admin': False, 'Manager': True, 'Technician': True, 'User': True
        }

    def test_create_role(self, auth_client, admin):
        response = auth_client(admin).post('/v1/roles', {
            'name': 'Auditor',
            'level': 40,
            'permissions': ['reports:view:all', 'tickets:view:all'],
        }, format='json')

        assert response.status_code == 201
        assert response.data['is_system'] is False
        assert sorted(p['name'] for p in response.data['permissions']) == ['reports:view:all', 'tickets:view:all']

    def test_create_role_above_own_level(self, auth_client, admin):
        response = auth_client(admin).post('/v1/roles', {'name': 'Overlord', 'level': 90}, format='json')

        assert response.status_code == 403
        assert response.data['code'] == 'HIERARCHY_VIOLATION'

    def test_create_duplicate_role(self, auth_client, admin):
        response = auth_client(admin).post('/v1/roles', {'name': 'Manager', 'level': 20}, format='json')

        assert response.status_code == 409
        assert response.data['code'] == 'CONFLICT'

    def test_create_role_invalid(self, auth_client, admin):
        response = auth_client(admin).post('/v1/roles', {'level': -1}, format='json')

        assert response.status_code == 400
        assert response.data['error'] == 'Validation error'

    def test_update_system_role_permissions(self, auth_client, admin):
        response = auth_client(admin).patch(
            f'/v1/roles/{role_id("Technician")}',
            {'permissions': ['tickets:view:all']},
            format='json'
        )

        assert response.status_code == 200
        assert [p['name'] for p in response.data['permissions']] == ['tickets:view:all']

    def test_update_system_role_fields_refused(self, auth_client, admin):
        response = auth_client(admin).patch(
            f'/v1/roles/{role_id("Technician")}', {'display_name': 'Tech'}, format='json'
        )

        assert response.status_code == 400
        assert response.data['code'] == 'SYSTEM_ROLE_PROTECTED'

    def test_update_higher_role_refused(self, auth_client, admin):
        response = auth_client(admin).patch(
            f'/v1/roles/{role_id("SuperAdmin")}', {'permissions': []}, format='json'
        )

        assert response.status_code == 403
        assert response.data['code'] == 'HIERARCHY_VIOLATION'

    def test_admin_cannot_delete_roles(self, auth_client, admin):
        """roles:delete:all is CRITICAL, so Admin does not hold it."""
        custom = RBACService.create_role('Temp', level=20)

        response = auth_client(admin).delete(f'/v1/roles/{custom.id}')

        assert response.status_code == 403
        assert response.data['missing_permissions'] == ['roles:delete:all']

    def test_delete_custom_role(self, auth_client, superadmin):
        custom = RBACService.create_role('Temp', level=20)

        response = auth_client(superadmin).delete(f'/v1/roles/{custom.id}')

        assert response.status_code == 204
        assert Role.objects_with_deleted.get(id=custom.id).deleted_at is not None

    def test_delete_system_role_refused(self, auth_client, superadmin):
        response = auth_client(superadmin).delete(f'/v1/roles/{role_id("User")}')

        assert response.status_code == 400
        assert response.data['code'] == 'SYSTEM_ROLE_PROTECTED'

    def test_get_missing_role(self, auth_client, admin):
        response = auth_client(admin).get(f'/v1/roles/{uuid.uuid4()}')

        assert response.status_code == 404
        assert response.data['code'] == 'NOT_FOUND'

    def test_clone_role(self, auth_client, admin):
        response = auth_client(admin).post(
            f'/v1/roles/{role_id("Technician")}/clone', {'name': 'Night Technician'}, format='json'
        )

        assert response.status_code == 201
        assert response.data['level'] == 30
        assert response.data['display_name'] == 'Technician (Copy)'
        assert response.data['permission_count'] == Role.objects.get(name='Technician').active_permissions().count()

    def test_reorder(self, auth_client, admin):
        ids = [role_id('User'), role_id('Technician')]

        response = auth_client(admin).post('/v1/roles/reorder', {'role_ids': ids}, format='json')

        assert response.status_code == 200
        assert Role.objects.get(name='User').priority == 2


@pytest.mark.django_db
class TestPermissionEndpoints:

    def test_list_grouped_by_category(self, auth_client, admin):
        response = auth_client(admin).get('/v1/permissions')

        assert response.status_code == 200
        assert response.data['count'] == Permission.objects.active().count()
        assert 'tickets:view:own' in [p['name'] for p in response.data['categories']['tickets']]

    def test_admin_cannot_create_permissions(self, auth_client, admin):
        response = auth_client(admin).post('/v1/permissions', {'resource': 'x', 'action': 'y'}, format='json')

        assert response.status_code == 403

    def test_deactivate(self, auth_client, superadmin, technician):
        permission = Permission.objects.by_key('tickets:view:all')

        response = auth_client(superadmin).patch(
            f'/v1/permissions/{permission.id}/activation', {'is_active': False}, format='json'
        )

        assert response.status_code == 200
        assert response.data['is_active'] is False
        assert 'tickets:view:all' not in access_control.evaluate(technician.pk)


@pytest.mark.django_db
class TestUserRoleEndpoints:

    def test_assign_and_remove(self, auth_client, admin, make_user):
        member = make_user()
        client = auth_client(admin)

        response = client.post(f'/v1/users/{member.id}/roles', {'role_id': role_id('Technician')}, format='json')
        assert response.status_code == 201
        assert response.data['role']['name'] == 'Technician'

        response = client.get(f'/v1/users/{member.id}/roles')
        assert response.data['count'] == 1

        response = client.delete(f'/v1/users/{member.id}/roles/{role_id("Technician")}')
        assert response.status_code == 204
        assert not UserRole.objects.filter(user=member, is_active=True).exists()

    def test_assign_higher_role_refused(self, auth_client, admin, make_user):
        member = make_user()

        response = auth_client(admin).post(
            f'/v1/users/{member.id}/roles', {'role_id': role_id('SuperAdmin')}, format='json'
        )

        assert response.status_code == 403
        assert response.data['code'] == 'HIERARCHY_VIOLATION'

    def test_duplicate_assignment(self, auth_client, admin, technician):
        response = auth_client(admin).post(
            f'/v1/users/{technician.id}/roles', {'role_id': role_id('Technician')}, format='json'
        )

        assert response.status_code == 409

    def test_assign_to_missing_user(self, auth_client, admin):
        response = auth_client(admin).post(
            f'/v1/users/{uuid.uuid4()}/roles', {'role_id': role_id('User')}, format='json'
        )

        assert response.status_code == 404


@pytest.mark.django_db
class TestUserPermissionEndpoints:

    def test_deny_override_then_revoke(self, auth_client, admin, technician):
        client = auth_client(admin)

        response = client.post(
            f'/v1/users/{technician.id}/permissions',
            {'permission': 'tickets:delete:own', 'is_denied': True, 'reason': 'Audit'},
            format='json'
        )
        assert response.status_code == 201

        response = client.get(f'/v1/users/{technician.id}/permissions')
        assert response.status_code == 200
        assert 'tickets:delete:own' not in response.data['effective']['permissions']
        assert response.data['overrides'][0]['is_denied'] is True

        permission = Permission.objects.by_key('tickets:delete:own')
        response = client.delete(f'/v1/users/{technician.id}/permissions/{permission.id}')
        assert response.status_code == 204
        assert 'tickets:delete:own' in access_control.evaluate(technician.pk)

    def test_unknown_permission_rejected(self, auth_client, admin, technician):
        response = auth_client(admin).post(
            f'/v1/users/{technician.id}/permissions', {'permission': 'nope:nothing:all'}, format='json'
        )

        assert response.status_code == 400

    def test_override_on_peer_refused(self, auth_client, admin, seeded_user):
        other_admin = seeded_user('Admin')

        response = auth_client(admin).post(
            f'/v1/users/{other_admin.id}/permissions', {'permission': 'reports:view:all'}, format='json'
        )

        assert response.status_code == 403
        assert not UserPermission.objects.filter(user=other_admin).exists()


@pytest.mark.django_db
class TestAccessChecks:

    def test_check_own_permissions(self, auth_client, technician):
        response = auth_client(technician).post('/v1/check-permission', {
            'permissions': ['tickets:delete:all', 'tickets:delete:own'],
            'combinator': 'ANY',
        }, format='json')

        assert response.status_code == 200
        assert response.data['allowed'] is True
        assert response.data['user_id'] == str(technician.id)
        assert response.data['permissions'] == {'tickets:delete:all': False, 'tickets:delete:own': True}

    def test_check_all_reports_missing(self, auth_client, technician):
        response = auth_client(technician).post('/v1/check-permission', {
            'permissions': ['tickets:view:all', 'roles:delete:all'],
        }, format='json')

        assert response.data['allowed'] is False
        assert response.data['missing_permissions'] == ['roles:delete:all']

    def test_check_other_user_needs_permission(self, auth_client, technician, manager):
        response = auth_client(technician).post('/v1/check-permission', {
            'user_id': str(manager.id),
            'permissions': ['tickets:view:all'],
        }, format='json')

        assert response.status_code == 403
        assert response.data['missing_permissions'] == ['permissions:view:all']

    def test_admin_checks_other_user(self, auth_client, admin, technician):
        response = auth_client(admin).post('/v1/check-permission', {
            'user_id': str(technician.id),
            'permissions': ['roles:view:all'],
        }, format='json')

        assert response.status_code == 200
        assert response.data['allowed'] is False

    def test_invalid_key(self, auth_client, technician):
        response = auth_client(technician).post('/v1/check-permission', {'permissions': ['tickets']}, format='json')

        assert response.status_code == 400

    def test_can_manage_role_self(self, auth_client, manager):
        client = auth_client(manager)

        assert client.get(f'/v1/users/{manager.id}/can-manage-role/{role_id("Technician")}').data['can_manage'] is True
        assert client.get(f'/v1/users/{manager.id}/can-manage-role/{role_id("Manager")}').data['can_manage'] is False

    def test_can_manage_role_other_user(self, auth_client, technician, manager):
        response = auth_client(technician).get(f'/v1/users/{manager.id}/can-manage-role/{role_id("User")}')

        assert response.status_code == 403

    def test_unknown_user_is_forbidden_without_permission(self, auth_client, technician):
        client = auth_client(technician)
        unknown = uuid.uuid4()

        check = client.post('/v1/check-permission', {
            'user_id': str(unknown),
            'permissions': ['tickets:view:all'],
        }, format='json')
        can_manage = client.get(f'/v1/users/{unknown}/can-manage-role/{role_id("User")}')

        assert check.status_code == 403
        assert can_manage.status_code == 403

    def test_unknown_user_is_not_found_with_permission(self, auth_client, admin):
        client = auth_client(admin)
        unknown = uuid.uuid4()

        check = client.post('/v1/check-permission', {
            'user_id': str(unknown),
            'permissions': ['tickets:view:all'],
        }, format='json')
        can_manage = client.get(f'/v1/users/{unknown}/can-manage-role/{role_id("User")}')

        assert check.status_code == 404
        assert can_manage.status_code == 404

    def test_can_manage_missing_role(self, auth_client, manager):
        response = auth_client(manager).get(f'/v1/users/{manager.id}/can-manage-role/{uuid.uuid4()}')

        assert response.status_code == 404

    def test_assignable_technicians(self, auth_client, manager, technician):
        response = auth_client(manager).get('/v1/users/assignable-technicians')

        assert response.status_code == 200
        assert [user['email'] for user in response.data['users']] == ['tech@itdesk.local']


@pytest.mark.django_db
class TestLockoutEndpoints:

    def test_lock_and_unlock(self, auth_client, admin, technician):
        client = auth_client(admin)

        response = client.post(f'/v1/users/{technician.id}/lock', {'hours': 2}, format='json')
        assert response.status_code == 200
        assert response.data['status'] == 'LOCKED'
        assert response.data['retry_after'] == 2 * 3600

        response = client.get('/v1/users/locked')
        assert response.data['count'] == 1
        assert response.data['users'][0]['email'] == 'tech@itdesk.local'

        response = client.post(f'/v1/users/{technician.id}/unlock')
        assert response.status_code == 200
        assert response.data['status'] == 'OPEN'
        assert not access_control.check_lock(technician.pk).is_locked

    def test_lock_peer_refused(self, auth_client, manager, seeded_user, make_user):
        # Managers lack users:update:all; an Admin locking another Admin is refused by level
        response = auth_client(manager).post(f'/v1/users/{make_user().id}/lock', {}, format='json')
        assert response.status_code == 403

        first, second = seeded_user('Admin'), seeded_user('Admin')
        response = auth_client(first).post(f'/v1/users/{second.id}/lock', {}, format='json')
        assert response.status_code == 403
        assert response.data['code'] == 'HIERARCHY_VIOLATION'


@pytest.mark.django_db
class TestAuditLogEndpoint:

    def test_list_and_filter(self, auth_client, admin, make_user):
        member = make_user()
        RBACService.assign_role(member, Role.objects.get(name='User'), actor=admin)
        client = auth_client(admin)

        response = client.get('/v1/audit-logs', {'action': 'role_assigned'})

        assert response.status_code == 200
        assert response.data['count'] == 1
        assert response.data['results'][0]['user_email'] == 'admin@itdesk.local'

    def test_bad_user_filter_is_empty(self, auth_client, admin):
        response = auth_client(admin).get('/v1/audit-logs', {'user_id': 'not-a-uuid'})

        assert response.data['count'] == 0

    def test_requires_admin_view(self, auth_client, manager):
        assert auth_client(manager).get('/v1/audit-logs').status_code == 403
