"""Tests for outbound notifications."""

from unittest.mock import MagicMock, patch

import pytest

from utils.sales_ops.functions_client import FunctionInvocationError
from utils.sales_ops.notifications import NotificationService, mask_email


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def service(client):
    return NotificationService(functions_client=client)


class TestMaskEmail:

    def test_mask(self):
        assert mask_email('jane@example.com') == 'jan***@example.com'
        assert mask_email(None) == 'unknown'


class TestCommissionLinkEmail:

    def test_invokes_function(self, service, client):
        ok, msg = service.send_commission_link(
            'rep@acme.com', 'Jane Doe', 'https://portal/my-commissions?token=abc', 'Acme'
        )
        assert ok
        client.invoke.assert_called_once_with('send-commission-link', {
            'email': 'rep@acme.com',
            'repName': 'Jane Doe',
            'commissionLink': 'https://portal/my-commissions?token=abc',
            'organizationName': 'Acme',
        })

    def test_missing_fields(self, service, client):
        assert service.send_commission_link('', 'Jane', 'https://x') == (False, "Missing required fields")
        client.invoke.assert_not_called()

    def test_function_error_is_made_safe(self, service, client):
        client.invoke.side_effect = FunctionInvocationError('send-commission-link', 'JWT expired')
        ok, msg = service.send_commission_link('rep@acme.com', 'Jane', 'https://x')
        assert not ok
        assert 'JWT' not in msg


class TestInviteEmail:

    def test_payload(self, service, client):
        ok, _ = service.send_invite_email(
            'new@acme.com', 'tok', 'organization', role='admin',
            organization_id='org-1', organization_name='Acme', inviter_name='Pat',
        )
        assert ok
        name, payload = client.invoke.call_args[0]
        assert name == 'send-invite-email'
        assert payload['inviteType'] == 'organization'
        assert payload['role'] == 'admin'
        assert payload['token'] == 'tok'

    def test_missing_token(self, service):
        assert service.send_invite_email('new@acme.com', '', 'organization')[0] is False


class TestCrmSync:

    @patch('utils.sales_ops.notifications.config')
    def test_disabled(self, mock_config, service, client):
        mock_config.is_feature_enabled.return_value = False
        assert service.sync_crm_notes('org-1', 'e1', notes='hi') == (False, "CRM sync is disabled")
        client.invoke.assert_not_called()

    @patch('utils.sales_ops.notifications.config')
    def test_nothing_to_sync(self, mock_config, service, client):
        mock_config.is_feature_enabled.return_value = True
        assert service.sync_crm_notes('org-1', 'e1') == (True, "Nothing to sync")
        client.invoke.assert_not_called()

    @patch('utils.sales_ops.notifications.config')
    def test_payload_leaves_out_empty_parts(self, mock_config, service, client):
        mock_config.is_feature_enabled.return_value = True
        ok, _ = service.sync_crm_notes('org-1', 'e1', notes='Follow up Friday')
        assert ok
        client.invoke.assert_called_once_with('sync-crm-notes', {
            'organization_id': 'org-1', 'event_id': 'e1', 'notes': 'Follow up Friday',
        })


class TestSmtpFallback:

    def test_without_credentials(self):
        service = NotificationService()
        service.sender_email = None
        with patch.object(NotificationService, '_functions_available', return_value=False):
            assert service.send_commission_link('rep@acme.com', 'Jane', 'https://x') == \
                (False, "Email configuration missing")

    @patch('utils.sales_ops.notifications.smtplib.SMTP')
    def test_sends_html(self, mock_smtp):
        service = NotificationService()
        service.sender_email = 'ops@acme.com'
        service.sender_password = 'secret'
        server = mock_smtp.return_value.__enter__.return_value

        with patch.object(NotificationService, '_functions_available', return_value=False):
            ok, _ = service.send_commission_link('rep@acme.com', 'Jane <b>', 'https://x', 'Acme')

        assert ok
        server.login.assert_called_once_with('ops@acme.com', 'secret')
        sent = server.sendmail.call_args[0][2]
        assert 'Jane &lt;b&gt;' in sent
