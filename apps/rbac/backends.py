"""
Custom authentication backend for ITDesk.

Provides email-based authentication compatible with Django admin, with the
same account lockout rules as the API login.
"""
from django.contrib.auth.backends import BaseBackend
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError

from apps.core.logging import SecurityLogger

User = get_user_model()


class EmailAuthBackend(BaseBackend):
    """
    Authenticate using email address instead of username.

    Locked accounts are refused before the password is checked; failed
    checks count towards the lockout threshold.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        """
        Authenticate user by email and password.

        Args:
            request: HTTP request object
            username: Email address (Django admin passes email as 'username')
            password: Plain text password

        Returns:
            User instance if authentication succeeds, None otherwise
        """
        from apps.rbac.services import access_control

        email = username or kwargs.get('email')

        if not email or not password:
            return None

        user = User.objects.by_email(email)
        if user is None or not user.is_active:
            # Run the default password hasher once to reduce timing
            # difference between existing and non-existing users
            User().set_password(password)
            return None

        state = access_control.check_lock(user)
        if state.is_locked:
            SecurityLogger.log_locked_login_rejected(
                user_id=str(user.id),
                retry_after=state.retry_after,
            )
            return None

        if not user.check_password(password):
            access_control.record_failed_auth(user, request=request)
            return None

        access_control.record_successful_auth(user)
        return user

    def get_user(self, user_id):
        """
        Get user by ID.

        Args:
            user_id: User primary key

        Returns:
            User instance if found, None otherwise
        """
        try:
            return User.objects.get(pk=user_id)
        except (User.DoesNotExist, ValueError, ValidationError):
            return None
