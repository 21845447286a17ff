"""
Structured logging for ITDesk.

Provides:
- PIIMasker: masks emails, credentials and tokens before they reach a log sink
- JSONFormatter: one JSON object per log line, with request_id when available
- SecurityLogger: security events on the 'security' logger, critical ones
  forwarded to Sentry
"""
import json
import logging
import re
import traceback
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9\-_.]+', re.IGNORECASE)

    # Field names whose values are never logged
    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd', 'new_password',
        'token', 'access_token', 'refresh_token', 'bearer_token',
        'secret', 'secret_key', 'jwt_secret_key',
        'authorization',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text, keeping the first character and domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask passwords, tokens and bearer credentials in text."""
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub('Bearer ********', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)

        return masked


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.

    Includes request_id from the LoggingFilter when available and masks
    sensitive values in the message and in extra fields.
    """

    RESERVED_ATTRS = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName', 'request_id',
    }

    def format(self, record):
        log_data = {
            'timestamp': timezone.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif key.lower() in PIIMasker.SENSITIVE_FIELDS:
                value = '********'
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for security events.

    Every event is written to the 'security' logger with structured data.
    Events in CRITICAL_EVENTS are also sent to Sentry for alerting:
    an escalation attempt is an attack signal and an unavailable policy
    store is an operational incident that denies everyone.
    """

    CRITICAL_EVENTS = {
        'privilege_escalation_attempt',
        'evaluation_unavailable',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'failed_login', 'account_locked')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, ip_address, ...)

        Example:
            >>> SecurityLogger.log_event(
            ...     'account_locked',
            ...     user_id='2b1f...',
            ...     locked_until='2024-05-01T10:15:00Z'
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_failed_login(identifier: str, ip_address: str = None, user_agent: str = None,
                         reason: str = None, failed_attempts: int = None):
        """
        Log a failed login attempt.

        Args:
            identifier: Email or username used in the attempt
            ip_address: IP address of the request
            user_agent: User agent string (optional)
            reason: Reason for failure (optional)
            failed_attempts: Consecutive failures after this attempt (optional)
        """
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=reason,
            failed_attempts=failed_attempts,
        )

    @staticmethod
    def log_account_locked(user_id: str, locked_until: str, manual: bool = False, ip_address: str = None):
        """Log an account entering the LOCKED state."""
        SecurityLogger.log_event(
            'account_locked',
            level='warning',
            user_id=user_id,
            locked_until=locked_until,
            manual=manual,
            ip_address=ip_address,
        )

    @staticmethod
    def log_locked_login_rejected(user_id: str, retry_after: int, ip_address: str = None):
        """Log a credential attempt rejected because the account is locked."""
        SecurityLogger.log_event(
            'locked_login_rejected',
            level='info',
            user_id=user_id,
            retry_after=retry_after,
            ip_address=ip_address,
        )

    @staticmethod
    def log_permission_denied(user_id: str, missing: list, reason: str,
                              path: str = None, ip_address: str = None):
        """
        Log an access denial.

        Args:
            user_id: Principal that was denied
            missing: Unsatisfied permission keys, as display strings
            reason: Decision reason code
            path: Request path (optional)
            ip_address: IP address of the request (optional)
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=user_id,
            missing_permissions=list(missing),
            reason=reason,
            path=path,
            ip_address=ip_address,
        )

    @staticmethod
    def log_evaluation_unavailable(user_id: str, error: str):
        """
        Log a policy store failure during permission evaluation.

        The request is denied; this is an incident, not a Forbidden.
        """
        SecurityLogger.log_event(
            'evaluation_unavailable',
            level='error',
            user_id=user_id,
            error=error,
        )

    @staticmethod
    def log_privilege_escalation_attempt(actor_id: str, target_role: str, target_level: int,
                                         actor_level: int, operation: str):
        """
        Log an administrative action refused by the role hierarchy.

        Args:
            actor_id: Principal attempting the operation
            target_role: Name of the role being administered
            target_level: Level of that role
            actor_level: Highest active role level of the actor
            operation: Operation attempted (e.g., 'assign_role')
        """
        SecurityLogger.log_event(
            'privilege_escalation_attempt',
            level='error',
            actor_id=actor_id,
            target_role=target_role,
            target_level=target_level,
            actor_level=actor_level,
            operation=operation,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, identifier: str = None, limit: str = None):
        """
        Log a rate limit violation.

        Args:
            endpoint: API endpoint that was rate limited
            ip_address: IP address of the request
            identifier: Email or username submitted (if any)
            limit: Rate limit that was exceeded (e.g., '5/m')
        """
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            identifier=identifier,
            limit=limit,
        )
