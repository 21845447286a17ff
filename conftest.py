"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.cache import cache
from django.core.management import call_command
from io import StringIO


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database (the apps ship no migrations)."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Rate limit counters and the policy version live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory for users. Passwords default to 'SecurePass123!'."""
    from apps.rbac.models import User

    counter = {'n': 0}

    def _make_user(email=None, password='SecurePass123!', **extra):
        counter['n'] += 1
        email = email or f'user{counter["n"]}@itdesk.local'
        return User.objects.create_user(email=email, password=password, **extra)

    return _make_user


@pytest.fixture
def user(make_user):
    """Create a test user."""
    return make_user(email='test@itdesk.local', first_name='Test', last_name='User')


@pytest.fixture
def make_permission(db):
    """Factory for catalog permissions, get-or-create by key."""
    from apps.rbac.keys import PermissionKey
    from apps.rbac.models import Permission

    def _make_permission(key, risk_level='LOW', **extra):
        key = PermissionKey.parse(key)
        permission = Permission.objects.filter(
            resource=key.resource, action=key.action, scope=key.scope
        ).first()
        if permission is not None:
            return permission
        return Permission.objects.create(
            resource=key.resource,
            action=key.action,
            scope=key.scope,
            risk_level=risk_level,
            category=extra.pop('category', key.resource),
            **extra
        )

    return _make_permission


@pytest.fixture
def make_role(db, make_permission):
    """Factory for roles with a list of permission keys."""
    from apps.rbac.models import Role, RolePermission

    def _make_role(name, level=10, permissions=(), **extra):
        role = Role.objects.create(name=name, display_name=name, level=level, **extra)
        for key in permissions:
            RolePermission.objects.grant_permission(role, make_permission(key))
        return role

    return _make_role


@pytest.fixture
def assign_role(db):
    """Assign a role to a user directly, bypassing the service layer."""
    from apps.rbac.models import UserRole

    def _assign_role(user, role, **extra):
        return UserRole.objects.create(user=user, role=role, **extra)

    return _assign_role


@pytest.fixture
def super_role(make_role):
    """The super role (bypasses every requirement)."""
    return make_role(settings.RBAC_SUPER_ROLE_NAME, level=100, is_system=True)


@pytest.fixture
def super_user(make_user, super_role, assign_role):
    """User holding the super role."""
    admin = make_user(email='root@itdesk.local', first_name='Root')
    assign_role(admin, super_role)
    return admin


@pytest.fixture
def seeded(db):
    """Run the permission and role seed commands."""
    call_command('seed_permissions', '--quiet-summary', stdout=StringIO())
    call_command('seed_roles', stdout=StringIO())


@pytest.fixture
def seeded_user(make_user, assign_role, seeded):
    """Factory for users holding one of the seeded roles."""
    from apps.rbac.models import Role

    def _seeded_user(role_name, email=None):
        member = make_user(email=email)
        assign_role(member, Role.objects.get(name=role_name))
        return member

    return _seeded_user


@pytest.fixture
def auth_client():
    """Factory for API clients authenticated as a user with a JWT."""
    from rest_framework.test import APIClient
    from apps.rbac.services import AuthService

    def _auth_client(user):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {AuthService.generate_jwt(user)}')
        return client

    return _auth_client
