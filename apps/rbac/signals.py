"""
Default receivers for the audit hooks.

Each receiver writes an AuditLog row (AuditLog.log_action never raises) and,
for security-relevant events, a SecurityLogger event. Signals are sent with
send_robust, so an exception here is logged by Django and never reaches the
access decision or the administrative operation.
"""
import logging

from django.dispatch import receiver

from apps.core.logging import SecurityLogger
from apps.rbac import audit
from apps.rbac.models import AuditLog, User

logger = logging.getLogger(__name__)


def _user_ref(principal_id):
    """User instance for the audit row's actor column, or None."""
    if principal_id is None:
        return None
    if isinstance(principal_id, User):
        return principal_id
    return User.objects.filter(id=principal_id).first()


def _client_ip(request):
    return AuditLog._get_client_ip(request) if request is not None else None


@receiver(audit.access_denied)
def record_access_denied(sender, principal_id, requirement, decision, request=None, **kwargs):
    """Persist a denied access decision."""
    AuditLog.log_action(
        action='access_denied',
        user=_user_ref(principal_id),
        target_type='Route',
        target_id=getattr(request, 'path', None),
        metadata={
            'reason': decision.reason,
            'missing_permissions': decision.missing_names(),
            'required': requirement.names() if requirement is not None else [],
            'combinator': requirement.combinator.value if requirement is not None else None,
            'method': getattr(request, 'method', None),
        },
        request=request,
    )


@receiver(audit.critical_permission_exercised)
def record_critical_permission_exercised(sender, principal_id, keys, decision, request=None, **kwargs):
    """Persist use of a CRITICAL permission."""
    names = [str(key) for key in keys]
    AuditLog.log_action(
        action='critical_permission_exercised',
        user=_user_ref(principal_id),
        target_type='Route',
        target_id=getattr(request, 'path', None),
        metadata={
            'permissions': names,
            'reason': decision.reason,
            'method': getattr(request, 'method', None),
        },
        request=request,
    )
    SecurityLogger.log_event(
        'critical_permission_exercised',
        level='info',
        user_id=str(principal_id),
        permissions=names,
        path=getattr(request, 'path', None),
    )


@receiver(audit.policy_changed)
def record_policy_changed(sender, actor, action, target_type='', target_id=None, diff=None,
                          metadata=None, request=None, **kwargs):
    """Persist an administrative role/permission change."""
    AuditLog.log_action(
        action=action,
        user=actor,
        target_type=target_type,
        target_id=target_id,
        diff=diff,
        metadata=metadata,
        request=request,
    )
    logger.info(
        f"Policy changed: {action}",
        extra={'target_type': target_type, 'target_id': target_id}
    )


@receiver(audit.account_locked)
def record_account_locked(sender, principal_id, state, manual=False, actor=None, request=None, **kwargs):
    """Persist an account lock (automatic or administrative)."""
    locked_until = state.locked_until.isoformat() if state.locked_until else None
    AuditLog.log_action(
        action='account_locked',
        user=actor,
        target_type='User',
        target_id=principal_id,
        metadata={
            'manual': manual,
            'locked_until': locked_until,
            'failed_attempts': state.failed_attempts,
        },
        request=request,
    )
    SecurityLogger.log_account_locked(
        user_id=str(principal_id),
        locked_until=locked_until,
        manual=manual,
        ip_address=_client_ip(request),
    )


@receiver(audit.account_unlocked)
def record_account_unlocked(sender, principal_id, actor=None, request=None, **kwargs):
    """Persist an administrative unlock."""
    AuditLog.log_action(
        action='account_unlocked',
        user=actor,
        target_type='User',
        target_id=principal_id,
        request=request,
    )
    SecurityLogger.log_event(
        'account_unlocked',
        level='info',
        user_id=str(principal_id),
        actor_id=str(actor.pk) if actor is not None else None,
    )
