"""Tests for commission links and payouts."""

from datetime import date
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from utils.sales_ops.commissions import (
    CommissionLinkService, build_commission_link, build_rep_list, calculate_rep_commission,
    default_commission_period, generate_link_token, is_universal_link, link_status,
    parse_portal_params, reps_without_links, resolve_access_token,
)


@pytest.fixture
def details():
    return pd.DataFrame([
        {'id': 'd1', 'closer_name': 'Sam', 'setter_name': 'Jane Doe', 'amount': 3000.0,
         'refund_amount': 500.0, 'payment_date': '2024-04-10T15:00:00Z'},
        {'id': 'd2', 'closer_name': 'jane doe', 'setter_name': 'Mark', 'amount': 1000.0,
         'refund_amount': None, 'payment_date': '2024-04-30T23:30:00Z'},
        {'id': 'd3', 'closer_name': 'Sam', 'setter_name': None, 'amount': 2000.0,
         'refund_amount': 0.0, 'payment_date': '2024-05-01T03:00:00Z'},
        {'id': 'd4', 'closer_name': 'Sam', 'setter_name': None, 'amount': 800.0,
         'refund_amount': 0.0, 'payment_date': '2024-05-01T05:00:00Z'},
    ])


class TestLinks:

    def test_full_link(self):
        url = build_commission_link(
            'https://portal.example.com/', 'abc', date(2024, 4, 1), date(2024, 4, 30), 10.0, 7.5
        )
        assert url == (
            'https://portal.example.com/my-commissions?token=abc'
            '&from=2024-04-01&to=2024-04-30&closerPct=10&setterPct=7.5'
        )

    def test_bare_link(self):
        assert build_commission_link('https://p', 'abc') == 'https://p/my-commissions?token=abc'

    def test_token(self):
        token = generate_link_token()
        assert len(token) == 64
        assert token != generate_link_token()

    def test_default_period_is_previous_month(self):
        assert default_commission_period(date(2024, 3, 15)) == (date(2024, 2, 1), date(2024, 2, 29))
        assert default_commission_period(date(2024, 1, 1)) == (date(2023, 12, 1), date(2023, 12, 31))

    def test_status(self, now):
        assert link_status({'is_active': False}, now) == 'disabled'
        assert link_status({'is_active': True, 'expires_at': '2024-05-01T00:00:00Z'}, now) == 'expired'
        assert link_status({'is_active': True, 'expires_at': '2024-08-01T00:00:00Z'}, now) == 'active'
        assert link_status({'is_active': True, 'expires_at': None}, now) == 'active'


class TestRepList:

    def test_closers_win_on_duplicate_names(self):
        closers = [{'id': 'c1', 'name': 'Sam', 'email': ' sam@acme.com '}, {'id': 'c2', 'name': 'Old', 'is_active': False}]
        setters = [{'id': 's1', 'name': 'sam'}, {'id': 's2', 'name': 'Jane Doe'}]
        reps = build_rep_list(closers, setters)

        assert [(r['name'], r['type']) for r in reps] == [('Jane Doe', 'setter'), ('Sam', 'closer')]
        assert reps[1]['email'] == 'sam@acme.com'

    def test_without_links(self):
        reps = [{'name': 'Sam'}, {'name': 'Jane Doe'}]
        assert reps_without_links(reps, [{'closer_name': 'Sam'}]) == [{'name': 'Jane Doe'}]

    def test_without_links_ignores_case(self):
        reps = [{'name': 'Sam'}, {'name': 'Jane Doe'}]
        links = [{'closer_name': ' sam '}, {'closer_name': None}]
        assert reps_without_links(reps, links) == [{'name': 'Jane Doe'}]


class TestPayout:

    def test_both_sides(self, details):
        result = calculate_rep_commission(details, 'JANE DOE', closer_pct=10, setter_pct=5)

        assert result['closer_deals'] == 1
        assert result['closer_net'] == 1000.0
        assert result['closer_payout'] == 100.0
        assert result['setter_deals'] == 1
        assert result['setter_refunds'] == 500.0
        assert result['setter_payout'] == 125.0
        assert result['total_payout'] == 225.0
        assert result['all_deals']['id'].tolist() == ['d2', 'd1']

    def test_period_uses_eastern_dates(self, details):
        # d3 lands on April 30 in New York; d4 on May 1
        result = calculate_rep_commission(details, 'Sam', date(2024, 4, 1), date(2024, 4, 30))
        assert result['closer_deals'] == 2
        assert result['closer_amount'] == 5000.0
        assert result['closer_net'] == 4500.0
        assert result['closer_payout'] == 450.0

    def test_unknown_rep(self, details):
        result = calculate_rep_commission(details, 'Nobody')
        assert result['total_payout'] == 0
        assert result['all_deals'].empty


class TestCommissionLinkService:

    @patch('utils.sales_ops.commissions.execute_returning')
    def test_create_upserts(self, mock_returning, now):
        mock_returning.return_value = {'id': 'l1', 'closer_name': 'Sam', 'token': 't'}

        ok, msg, row = CommissionLinkService('org-1').create_link(' Sam ', created_by='u1', now=now)

        assert ok
        assert row['id'] == 'l1'
        sql, params = mock_returning.call_args[0]
        assert 'ON CONFLICT (closer_name, organization_id)' in sql
        assert params['closer_name'] == 'Sam'
        assert params['organization_id'] == 'org-1'
        assert params['expires_at'].isoformat() == '2024-08-13T16:00:00+00:00'

    @patch('utils.sales_ops.commissions.execute_returning')
    def test_create_rejects_reserved_and_blank(self, mock_returning):
        service = CommissionLinkService('org-1')
        assert service.create_link('__UNIVERSAL__') == (False, "Reserved name", None)
        assert service.create_link('  ') == (False, "Rep name is required", None)
        mock_returning.assert_not_called()

    @patch('utils.sales_ops.commissions.execute_returning')
    def test_create_error_is_made_safe(self, mock_returning):
        mock_returning.side_effect = RuntimeError('duplicate key value violates unique constraint')
        ok, msg, row = CommissionLinkService('org-1').create_link('Sam')
        assert not ok
        assert row is None
        assert 'duplicate' not in msg

    @patch('utils.sales_ops.commissions.execute_update')
    def test_delete(self, mock_update):
        mock_update.return_value = 1
        assert CommissionLinkService('org-1').delete_link('l1') == (True, "Link deleted")
        assert mock_update.call_args[0][1]['universal'] == '__UNIVERSAL__'

        mock_update.return_value = 0
        assert CommissionLinkService('org-1').delete_link('l1') == (False, "Link not found")

    def test_send_email_goes_through_notifications(self):
        notifications = MagicMock()
        notifications.send_commission_link.return_value = (True, "Sent successfully")
        service = CommissionLinkService('org-1', notifications)

        assert service.send_link_email('sam@acme.com', 'Sam', 'https://p/x', 'Acme') == (True, "Sent successfully")
        notifications.send_commission_link.assert_called_once_with('sam@acme.com', 'Sam', 'https://p/x', 'Acme')

    @patch('utils.sales_ops.commissions.execute_update')
    def test_remove_rep(self, mock_update):
        mock_update.return_value = 1
        assert CommissionLinkService('org-1').remove_rep('s1', 'setter') == (True, "Rep removed")
        assert 'UPDATE setters' in mock_update.call_args[0][0]
        assert CommissionLinkService('org-1').remove_rep('s1', 'boss')[0] is False


class TestAddRep:

    @pytest.fixture
    def conn(self):
        conn = MagicMock()
        transaction = MagicMock()
        transaction.__enter__.return_value = conn
        with patch('utils.sales_ops.commissions.get_transaction', return_value=transaction):
            yield conn

    def test_new_rep(self, conn):
        conn.execute.return_value.fetchone.return_value = None
        assert CommissionLinkService('org-1').add_rep('Jane Doe', 'setter') == (True, "Rep added successfully")
        insert_sql = str(conn.execute.call_args_list[1][0][0])
        assert 'INSERT INTO setters' in insert_sql

    def test_reactivates_inactive_rep(self, conn):
        existing = MagicMock(id='c9', is_active=False)
        conn.execute.return_value.fetchone.return_value = existing
        assert CommissionLinkService('org-1').add_rep('Sam')[0] is True
        assert conn.execute.call_args_list[1][0][1] == {'id': 'c9'}

    def test_active_duplicate(self, conn):
        conn.execute.return_value.fetchone.return_value = MagicMock(id='c1', is_active=True)
        assert CommissionLinkService('org-1').add_rep('sam') == (False, "sam already exists")


class TestRepPortal:

    def test_params_from_link(self):
        params = parse_portal_params({
            'token': ' abc ', 'from': '2024-04-01', 'to': '2024-04-30', 'closerPct': '12.5', 'setterPct': '4',
        })
        assert params == {
            'token': 'abc',
            'start_date': date(2024, 4, 1),
            'end_date': date(2024, 4, 30),
            'closer_pct': 12.5,
            'setter_pct': 4.0,
        }

    def test_params_default_to_last_month(self):
        params = parse_portal_params({'from': 'yesterday', 'closerPct': '250', 'setterPct': 'x'}, today=date(2024, 5, 15))
        assert params['token'] is None
        assert (params['start_date'], params['end_date']) == (date(2024, 4, 1), date(2024, 4, 30))
        assert params['closer_pct'] == 10.0
        assert params['setter_pct'] == 5.0

    def test_reversed_range_falls_back(self):
        params = parse_portal_params({'from': '2024-04-30', 'to': '2024-04-01'}, today=date(2024, 5, 15))
        assert (params['start_date'], params['end_date']) == (date(2024, 4, 1), date(2024, 4, 30))

    def test_universal_link(self):
        assert is_universal_link({'closer_name': '__UNIVERSAL__'})
        assert not is_universal_link({'closer_name': 'Sam'})

    @patch('utils.sales_ops.commissions.execute_query')
    def test_missing_token_skips_the_database(self, mock_query):
        assert resolve_access_token('  ') == (None, "This page needs a commission link")
        mock_query.assert_not_called()

    @patch('utils.sales_ops.commissions.execute_query')
    def test_unknown_token(self, mock_query):
        mock_query.return_value = []
        assert resolve_access_token('nope') == (None, "This link is not valid")
        assert mock_query.call_args[0][1] == {'token': 'nope'}

    @patch('utils.sales_ops.commissions.execute_update')
    @patch('utils.sales_ops.commissions.execute_query')
    def test_disabled_and_expired(self, mock_query, mock_update, now):
        mock_query.return_value = [{'id': 'l1', 'closer_name': 'Sam', 'is_active': False}]
        assert resolve_access_token('t', now) == (None, "This link has been disabled")

        mock_query.return_value = [{'id': 'l1', 'closer_name': 'Sam', 'is_active': True,
                                    'expires_at': '2024-05-01T00:00:00Z'}]
        assert resolve_access_token('t', now) == (None, "This link has expired. Ask your manager for a new one.")
        mock_update.assert_not_called()

    @patch('utils.sales_ops.commissions.execute_update')
    @patch('utils.sales_ops.commissions.execute_query')
    def test_active_link_records_use(self, mock_query, mock_update, now):
        row = {'id': 'l1', 'closer_name': 'Sam', 'organization_id': 'org-1', 'is_active': True, 'expires_at': None}
        mock_query.return_value = [row]

        assert resolve_access_token('t', now) == (row, None)
        sql, params = mock_update.call_args[0]
        assert 'last_used_at' in sql
        assert params['id'] == 'l1'
        assert params['used_at'].isoformat() == '2024-05-15T16:00:00+00:00'

    @patch('utils.sales_ops.commissions.execute_update')
    @patch('utils.sales_ops.commissions.execute_query')
    def test_failed_usage_update_still_opens_the_page(self, mock_query, mock_update, now):
        row = {'id': 'l1', 'closer_name': 'Sam', 'organization_id': 'org-1', 'is_active': True, 'expires_at': None}
        mock_query.return_value = [row]
        mock_update.side_effect = RuntimeError('connection reset')
        assert resolve_access_token('t', now) == (row, None)

    @patch('utils.sales_ops.commissions.execute_query')
    def test_lookup_error_is_made_safe(self, mock_query):
        mock_query.side_effect = RuntimeError('relation "closer_access_tokens" does not exist')
        link, error = resolve_access_token('t')
        assert link is None
        assert 'closer_access_tokens' not in error
