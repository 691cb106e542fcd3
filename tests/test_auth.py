"""Tests for roles and password hashing."""

import pytest

from utils.auth import AuthManager, role_has_capability


class TestCapabilities:

    @pytest.mark.parametrize("role, capability, expected", [
        ('admin', 'manage_commissions', True),
        ('client_admin', 'manage_commissions', False),
        ('client_admin', 'manage_team', True),
        ('member', 'view_dashboard', True),
        ('member', 'manage_metrics', False),
        ('sales_rep', 'submit_pcf', True),
        ('sales_rep', 'view_dashboard', False),
        (None, 'view_dashboard', False),
        ('stranger', 'submit_pcf', False),
    ])
    def test_role_has_capability(self, role, capability, expected):
        assert role_has_capability(role, capability) is expected


class TestPasswords:

    def test_round_trip(self):
        auth = AuthManager()
        pwd_hash, salt = auth.hash_password('s3cret')
        assert len(salt) == 64
        assert auth.verify_password('s3cret', pwd_hash, salt)
        assert not auth.verify_password('wrong', pwd_hash, salt)
        assert not auth.verify_password('s3cret', None, salt)
