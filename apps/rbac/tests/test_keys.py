"""
Tests for permission key parsing and structural comparison.
"""
import pytest

from apps.rbac.exceptions import InvalidPermissionKey
from apps.rbac.keys import PermissionKey, RiskLevel, Scope, parse_keys


class TestPermissionKeyParsing:
    """Test 'resource:action[:scope]' parsing."""

    def test_parse_three_segments(self):
        key = PermissionKey.parse('tickets:view:own')

        assert key.resource == 'tickets'
        assert key.action == 'view'
        assert key.scope == Scope.OWN

    def test_parse_without_scope_defaults_to_all(self):
        key = PermissionKey.parse('tickets:update')

        assert key.scope == Scope.ALL
        assert str(key) == 'tickets:update:all'

    def test_action_containing_separator(self):
        """The last segment is the scope, everything in between is the action."""
        key = PermissionKey.parse('admin:dashboard:view:all')

        assert key.resource == 'admin'
        assert key.action == 'dashboard:view'
        assert key.scope == Scope.ALL

    def test_unknown_trailing_segment_is_part_of_action(self):
        key = PermissionKey.parse('employees:view:passwords')

        assert key.action == 'view:passwords'
        assert key.scope == Scope.ALL

    def test_scope_is_case_insensitive(self):
        assert PermissionKey.parse('tickets:view:OWN').scope == Scope.OWN

    @pytest.mark.parametrize('value', ['', 'tickets', 'tickets::all', ':view:all', None, 42])
    def test_invalid_keys_rejected(self, value):
        with pytest.raises(InvalidPermissionKey):
            PermissionKey.parse(value)

    def test_invalid_scope_rejected(self):
        with pytest.raises(InvalidPermissionKey) as exc_info:
            PermissionKey('tickets', 'view', 'everyone')

        assert exc_info.value.details == {'scope': 'everyone'}

    def test_parse_is_idempotent_for_keys(self):
        key = PermissionKey('tickets', 'view', Scope.TEAM)

        assert PermissionKey.parse(key) is key

    def test_parse_keys_preserves_order(self):
        keys = parse_keys(['zones:view:all', 'areas:view', PermissionKey('tickets', 'view')])

        assert [str(key) for key in keys] == ['zones:view:all', 'areas:view:all', 'tickets:view:all']


class TestPermissionKeyIdentity:
    """Equality is structural, never by display string."""

    def test_equal_keys_hash_equal(self):
        assert PermissionKey('tickets', 'update') == PermissionKey.parse('tickets:update:all')
        assert len({PermissionKey('tickets', 'update'), PermissionKey.parse('tickets:update:all')}) == 1

    def test_scopes_are_distinct(self):
        assert PermissionKey('tickets', 'view', 'own') != PermissionKey('tickets', 'view', 'all')

    def test_split_points_are_distinct(self):
        """'a:b:c' as resource/action differs from the same characters split elsewhere."""
        first = PermissionKey('admin', 'dashboard:view')
        second = PermissionKey('admin:dashboard', 'view')

        assert first != second
        assert first.name == second.name


class TestRiskLevel:

    def test_only_critical_requires_mfa(self):
        assert RiskLevel.requires_mfa(RiskLevel.CRITICAL)
        assert not RiskLevel.requires_mfa(RiskLevel.HIGH)

    @pytest.mark.parametrize('level,expected', [
        (RiskLevel.LOW, False),
        (RiskLevel.MEDIUM, False),
        (RiskLevel.HIGH, True),
        (RiskLevel.CRITICAL, True),
    ])
    def test_audit_required(self, level, expected):
        assert RiskLevel.audit_required(level) is expected
