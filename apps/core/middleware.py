"""
Core middleware for request processing.
"""
import logging
import threading
import uuid
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.

    The request_id is attached to the request object, stored on the current
    thread for log records, and echoed back in the X-Request-ID header.
    Audit log rows reference the same id.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        threading.current_thread().request_id = request_id

    def process_response(self, request, response):
        """Add request_id to response headers and clear the thread context."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        thread = threading.current_thread()
        if hasattr(thread, 'request_id'):
            del thread.request_id
        if hasattr(thread, 'principal_id'):
            del thread.principal_id

        return response


class LoggingFilter(logging.Filter):
    """
    Add request_id and principal_id to log records from thread-local storage.
    """

    def filter(self, record):
        thread = threading.current_thread()

        if hasattr(thread, 'request_id'):
            record.request_id = thread.request_id
        else:
            record.request_id = '-'

        if hasattr(thread, 'principal_id'):
            record.principal_id = thread.principal_id

        return True
