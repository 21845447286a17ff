"""
Custom DRF authentication classes.
"""
import threading

from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed


class JWTAuthentication(BaseAuthentication):
    """
    DRF authentication class for 'Authorization: Bearer <token>' headers.

    The token only identifies the user. Roles and permissions are never read
    from it; they are recomputed by the access-control service on every
    request.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        """
        Return the user identified by the bearer token.

        Returns:
            tuple: (user, token) if a valid token is present, None if no
            token was sent

        Raises:
            AuthenticationFailed: If a token was sent but is invalid or expired
        """
        from apps.rbac.services import AuthService

        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None

        if len(auth) != 2:
            raise AuthenticationFailed('Invalid Authorization header. Expected "Bearer <token>".')

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise AuthenticationFailed('Invalid token encoding.')

        user = AuthService.get_user_from_jwt(token)
        if user is None:
            raise AuthenticationFailed('Invalid or expired token.')

        threading.current_thread().principal_id = str(user.id)
        return (user, token)

    def authenticate_header(self, request):
        """Makes unauthenticated requests return 401 instead of 403."""
        return self.keyword
