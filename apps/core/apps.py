from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        This ensures access-control and security configuration is sane
        before the application starts accepting requests.
        """
        # Only run validation once (not in every worker/thread)
        import sys
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            # Skip validation for management commands (except runserver)
            if len(sys.argv) > 1 and sys.argv[1] not in ['runserver', 'test']:
                return

        self._validate_access_control_settings()
        self._validate_security_settings()

        logger.info("✓ All startup validations passed")

    def _validate_access_control_settings(self):
        """Validate RBAC and lockout settings."""
        if not getattr(settings, 'RBAC_SUPER_ROLE_NAME', None):
            raise ImproperlyConfigured("RBAC_SUPER_ROLE_NAME must be a non-empty role name.")

        for name in ('RBAC_LOCKOUT_THRESHOLD', 'RBAC_LOCKOUT_MINUTES', 'RBAC_MANUAL_LOCK_HOURS'):
            value = getattr(settings, name, None)
            if not isinstance(value, int) or value <= 0:
                raise ImproperlyConfigured(f"{name} must be a positive integer (got {value!r}).")

        if getattr(settings, 'RBAC_EFFECTIVE_CACHE_ENABLED', False):
            logger.warning(
                "⚠ RBAC_EFFECTIVE_CACHE_ENABLED is on. Effective permissions are cached "
                f"for up to {settings.RBAC_EFFECTIVE_CACHE_TTL}s per policy version."
            )

        logger.info("✓ Access control settings validated")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        # SECRET_KEY must be set
        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                "Generate with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        # Refuse default/weak keys in production
        if not debug:
            weak_patterns = [
                'your-secret-key',
                'change-me',
                'insecure',
                '12345',
                'password',
            ]

            secret_lower = secret_key.lower()
            for pattern in weak_patterns:
                if pattern in secret_lower:
                    raise ImproperlyConfigured(
                        f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                        f"Generate a strong key with: "
                        f"python -c \"import secrets; print(secrets.token_urlsafe(50))\""
                    )

            if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
                logger.warning(
                    "⚠ SECURE_SSL_REDIRECT is not enabled in production. "
                    "HTTPS should be enforced for security."
                )

        logger.info("✓ Security settings validated")
