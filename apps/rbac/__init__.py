"""
RBAC (Role-Based Access Control) application.

Resolves and enforces permissions for ITDesk:
- Effective permissions recomputed per request from roles and overrides
- Deny overrides win over every grant
- Expiring role assignments and overrides
- Role hierarchy by level, preventing privilege escalation
- Account lockout after repeated failed logins
- Audit hooks for denials, CRITICAL permissions and policy changes
"""
