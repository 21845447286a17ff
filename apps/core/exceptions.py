"""
Custom exception handlers for DRF.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

from apps.rbac.exceptions import AccessControlError, AccountLocked, EvaluationUnavailable

logger = logging.getLogger(__name__)

# Login is the only rate limited endpoint
RATE_LIMIT_RETRY_AFTER = 60


def _client_ip(request):
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def ratelimit_view(request, exception):
    """
    Custom view for django-ratelimit to return 429 instead of 403.

    This is called when rate limit is exceeded with block=True.
    Returns 429 with Retry-After header indicating when to retry.
    """
    from apps.core.logging import SecurityLogger

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=_client_ip(request),
        limit='Rate limit exceeded'
    )

    response = JsonResponse(
        {
            'error': 'Rate limit exceeded. Please try again later.',
            'code': 'RATE_LIMIT_EXCEEDED',
            'retry_after': RATE_LIMIT_RETRY_AFTER,
        },
        status=429
    )
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def _access_control_response(exc, request_id):
    """Build the error response for an AccessControlError."""
    response = Response(
        {
            'error': exc.message,
            'code': exc.code,
            'details': exc.details,
            'request_id': request_id,
        },
        status=exc.status_code
    )

    if isinstance(exc, AccountLocked):
        response['Retry-After'] = str(max(int(exc.retry_after), 0))

    return response


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.

    AccessControlError subclasses are mapped to their own status codes:
    NotFound 404, Conflict 409, HierarchyViolation 403, AccountLocked 423
    (with Retry-After), SystemRoleProtected 400, EvaluationUnavailable 503.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=_client_ip(request) if request else 'unknown',
            limit='Rate limit exceeded'
        )

        response = Response(
            {
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'request_id': request_id,
                'retry_after': RATE_LIMIT_RETRY_AFTER,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, AccessControlError):
        log_method = logger.error if isinstance(exc, EvaluationUnavailable) else logger.info
        log_method(
            f"Access control error: {exc.__class__.__name__}",
            extra={
                'code': exc.code,
                'error_message': exc.message,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        return _access_control_response(exc, request_id)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'detail': 'An unexpected error occurred',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.warning(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'status_code': response.status_code,
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        }
    )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
