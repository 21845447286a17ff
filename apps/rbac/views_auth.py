"""
Authentication REST API views.

Implements endpoints for:
- Login (email or username, lockout aware)
- Current user profile
- Current user's effective permissions
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from django_ratelimit.decorators import ratelimit
from django.utils.decorators import method_decorator
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.logging import SecurityLogger
from apps.core.permissions import HasPermissions
from apps.rbac.models import AuditLog
from apps.rbac.services import AuthService, access_control
from apps.rbac.serializers import LoginSerializer, UserSerializer
from apps.rbac.views import effective_permissions_payload, validation_error


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email or username and password, and receive a JWT token.

The token carries the user id only. Roles and permissions are evaluated
on every request, so changes take effect immediately.

**Account lockout**: after `RBAC_LOCKOUT_THRESHOLD` consecutive failed
attempts the account is locked for `RBAC_LOCKOUT_MINUTES`. While locked,
login returns 423 with a `Retry-After` header, even with the right
password. A successful login resets the counter.

**No authentication required** - this is a public endpoint.

**Rate limit**: 5 requests/minute per IP address
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        423: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Login Request',
            value={
                'identifier': 'tech@itdesk.local',
                'password': 'SecurePass123!'
            },
            request_only=True
        ),
        OpenApiExample(
            'Success Response',
            value={
                'user': {
                    'id': '123e4567-e89b-12d3-a456-426614174000',
                    'email': 'tech@itdesk.local',
                    'username': 'tech',
                    'first_name': 'Ana',
                    'last_name': 'Ruiz',
                    'full_name': 'Ana Ruiz',
                    'is_active': True
                },
                'token': 'eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...',
                'expires_in': 28800,
                'message': 'Login successful'
            },
            response_only=True
        ),
        OpenApiExample(
            'Invalid Credentials',
            value={
                'error': 'Invalid credentials'
            },
            response_only=True,
            status_codes=['401']
        ),
        OpenApiExample(
            'Account Locked',
            value={
                'error': 'Account is temporarily locked. Try again in 15 minute(s).',
                'code': 'ACCOUNT_LOCKED',
                'details': {
                    'locked_until': '2026-01-15T10:00:00+00:00',
                    'retry_after': 900
                },
                'request_id': '6f1c2d9e-0b7a-4c1e-9d55-1f1f5bde2a77'
            },
            response_only=True,
            status_codes=['423']
        ),
        OpenApiExample(
            'Rate Limit Exceeded',
            value={
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED'
            },
            response_only=True,
            status_codes=['429']
        )
    ]
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """
    POST /v1/auth/login

    Authenticate user and return JWT token.

    No authentication required.
    Rate limited to 5 requests per minute per IP address.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        """Login user."""
        # Check if rate limited
        if getattr(request, 'limited', False):
            identifier = request.data.get('identifier') if hasattr(request, 'data') else None

            SecurityLogger.log_rate_limit_exceeded(
                endpoint='/v1/auth/login',
                ip_address=AuditLog._get_client_ip(request),
                identifier=identifier,
                limit='5/min per IP'
            )

            retry_after = 60  # 1 minute
            response = Response(
                {
                    'error': 'Rate limit exceeded. Please try again later.',
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'retry_after': retry_after
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS
            )
            response['Retry-After'] = str(retry_after)
            return response

        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        # AccountLocked propagates to the exception handler as 423
        result = AuthService.login(
            identifier=serializer.validated_data['identifier'],
            password=serializer.validated_data['password'],
            request=request
        )

        if not result:
            return Response(
                {
                    'error': 'Invalid credentials'
                },
                status=status.HTTP_401_UNAUTHORIZED
            )

        return Response(
            {
                'user': UserSerializer(result['user']).data,
                'token': result['token'],
                'expires_in': result['expires_in'],
                'message': 'Login successful'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Get current user profile',
    responses={
        200: UserSerializer,
        401: OpenApiTypes.OBJECT,
    }
)
class UserProfileView(APIView):
    """
    GET /v1/auth/me

    Requires JWT authentication.
    """

    def get(self, request):
        serializer = UserSerializer(request.user)
        return Response(serializer.data, status=status.HTTP_200_OK)


@extend_schema(
    tags=['Authentication'],
    summary='Get current user permissions',
    description='''
Effective permissions of the authenticated user, computed at request time,
together with the account's lock state.

Clients use this to show or hide actions. The server enforces permissions
on every endpoint regardless.
    ''',
    responses={
        200: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        423: OpenApiTypes.OBJECT,
        503: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Success Response',
            value={
                'user_id': '123e4567-e89b-12d3-a456-426614174000',
                'roles': ['Technician'],
                'highest_level': 30,
                'is_super': False,
                'permissions': ['equipment:view:all', 'tickets:update:own', 'tickets:view:all'],
                'critical_permissions': [],
                'computed_at': '2026-01-15T09:30:00+00:00',
                'valid_until': None,
                'lock': {
                    'status': 'OPEN',
                    'failed_attempts': 0,
                    'locked_until': None,
                    'retry_after': 0
                }
            },
            response_only=True
        )
    ]
)
class MePermissionsView(APIView):
    """
    GET /v1/auth/me/permissions
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        effective = access_control.evaluate(request.user.pk)
        payload = effective_permissions_payload(effective)
        payload['lock'] = access_control.check_lock(request.user.pk).as_dict()
        return Response(payload)
