"""
Tests for the email authentication backend used by the admin site.
"""
import pytest

from apps.rbac.backends import EmailAuthBackend
from apps.rbac.services import access_control


@pytest.mark.django_db
class TestEmailAuthBackend:

    def test_valid_credentials(self, user):
        assert EmailAuthBackend().authenticate(None, username='test@itdesk.local', password='SecurePass123!') == user

    def test_wrong_password_counts(self, user):
        assert EmailAuthBackend().authenticate(None, username='test@itdesk.local', password='wrong') is None

        user.refresh_from_db()
        assert user.failed_login_attempts == 1

    def test_inactive_user_not_counted(self, user):
        user.is_active = False
        user.save(update_fields=['is_active'])

        assert EmailAuthBackend().authenticate(None, username='test@itdesk.local', password='wrong') is None
        assert EmailAuthBackend().authenticate(None, username='test@itdesk.local', password='SecurePass123!') is None

        user.refresh_from_db()
        assert user.failed_login_attempts == 0

    def test_unknown_email(self, db):
        assert EmailAuthBackend().authenticate(None, username='ghost@itdesk.local', password='x') is None

    def test_missing_password(self, user):
        assert EmailAuthBackend().authenticate(None, username='test@itdesk.local') is None

    def test_locked_account_refused(self, user):
        access_control.lock(user.pk)

        assert EmailAuthBackend().authenticate(None, username='test@itdesk.local', password='SecurePass123!') is None
        user.refresh_from_db()
        assert user.failed_login_attempts == 5

    def test_get_user(self, user):
        backend = EmailAuthBackend()

        assert backend.get_user(user.pk) == user
        assert backend.get_user('not-a-uuid') is None
