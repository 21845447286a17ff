"""
Audit hooks.

The access-control core announces auditable events through Django signals;
it does not write audit rows itself. Signals are sent with send_robust so a
failing receiver never breaks the operation. Default receivers in
apps.rbac.signals persist AuditLog rows and security log events.

Signals:
    access_denied                 principal_id, requirement, decision, request
    critical_permission_exercised principal_id, keys, decision, request
    policy_changed                actor, action, target_type, target_id, diff, metadata, request
    account_locked                principal_id, state, manual, actor, request
    account_unlocked              principal_id, actor, request
"""
from django.dispatch import Signal

access_denied = Signal()
critical_permission_exercised = Signal()
policy_changed = Signal()
account_locked = Signal()
account_unlocked = Signal()
