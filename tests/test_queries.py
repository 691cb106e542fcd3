"""Tests for the organization-scoped loaders."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from utils.sales_ops.queries import SalesOpsQueries, _day_bounds


@pytest.fixture
def queries():
    q = SalesOpsQueries('org-1')
    q._engine = MagicMock()
    return q


@pytest.fixture
def read_sql():
    with patch('utils.sales_ops.queries.pd.read_sql') as mock_read:
        mock_read.return_value = pd.DataFrame()
        yield mock_read


def sql_of(mock_read) -> str:
    return str(mock_read.call_args[0][0])


class TestDayBounds:

    def test_eastern_days(self):
        start, end = _day_bounds(date(2024, 5, 1), date(2024, 5, 31))
        assert start == datetime(2024, 5, 1, 4, 0, tzinfo=timezone.utc)
        assert end == datetime(2024, 6, 1, 4, 0, tzinfo=timezone.utc)

    def test_winter_offset(self):
        start, _ = _day_bounds(date(2024, 1, 15), date(2024, 1, 15))
        assert start == datetime(2024, 1, 15, 5, 0, tzinfo=timezone.utc)


class TestEvents:

    def test_scoped_by_org_and_window(self, queries, read_sql):
        queries.get_events(date(2024, 5, 1), date(2024, 5, 31), closer_name='Sam')

        params = read_sql.call_args[1]['params']
        assert params['organization_id'] == 'org-1'
        assert params['closer_name'] == 'Sam'
        assert params['limit'] == 5000
        sql = sql_of(read_sql)
        assert 'LOWER(closer_name) = LOWER(:closer_name)' in sql
        assert 'booking_platform = :booking_platform' not in sql

    def test_json_columns_are_decoded(self, queries, read_sql):
        read_sql.return_value = pd.DataFrame([
            {'id': 'e1', 'booking_metadata': '{"utm_platform": "ig"}', 'booking_responses': None},
        ])
        df = queries.get_events(date(2024, 5, 1), date(2024, 5, 31))
        assert df.iloc[0]['booking_metadata'] == {'utm_platform': 'ig'}
        assert pd.isna(df.iloc[0]['booking_responses'])

    def test_errors_give_an_empty_frame(self, queries, read_sql):
        read_sql.side_effect = RuntimeError('connection refused')
        assert queries.get_events(date(2024, 5, 1), date(2024, 5, 31)).empty

    def test_single_event(self, queries, read_sql):
        assert queries.get_event('missing') is None
        read_sql.return_value = pd.DataFrame([{'id': 'e1', 'lead_name': 'Jane Roe'}])
        assert queries.get_event('e1')['lead_name'] == 'Jane Roe'


class TestPaymentsAndForms:

    def test_no_ids_skip_the_database(self, queries, read_sql):
        assert queries.get_payments([]).empty
        assert queries.get_post_call_forms([]).empty
        assert queries.get_pcf_field_values([]) == {}
        read_sql.assert_not_called()

    def test_payments_use_expanding_ids(self, queries, read_sql):
        queries.get_payments(('e1', 'e2'))
        assert read_sql.call_args[1]['params']['event_ids'] == ('e1', 'e2')

    def test_pcf_field_values_grouped(self, queries, read_sql):
        read_sql.return_value = pd.DataFrame([
            {'field_definition_id': 'f1', 'value': '{"response": true}'},
            {'field_definition_id': 'f1', 'value': {'response': False}},
        ])
        assert queries.get_pcf_field_values(['f1', 'f2']) == {
            'f1': [{'response': True}, {'response': False}],
            'f2': [],
        }

    def test_form_config_fields_list(self, queries, read_sql):
        read_sql.return_value = pd.DataFrame([
            {'id': 'fc1', 'name': 'Default', 'fields': '[{"id": "notes", "type": "textarea"}]'},
        ])
        config = queries.get_pcf_form_config()
        assert config['fields'] == [{'id': 'notes', 'type': 'textarea'}]

    def test_submitted_events_for_editing(self, queries, read_sql):
        queries.get_submitted_pcf_events(closer_name='Sam')
        params = read_sql.call_args[1]['params']
        assert params['submitted'] is True
        assert params['closer_name'] == 'Sam'
        assert 'scheduled_at < NOW()' not in sql_of(read_sql)

    def test_pending_events_are_past_and_not_canceled(self, queries, read_sql):
        queries.get_pending_pcf_events()
        assert read_sql.call_args[1]['params']['submitted'] is False
        assert 'scheduled_at < NOW()' in sql_of(read_sql)

    def test_pcf_answers_for_prefill(self, queries, read_sql):
        read_sql.return_value = pd.DataFrame([
            {'field_definition_id': 'budget_ok', 'value': '{"response": true}'},
            {'field_definition_id': 'objection', 'value': {'response': 'price'}},
        ])
        assert queries.get_pcf_answers('pcf-1') == {'budget_ok': True, 'objection': 'price'}
        assert read_sql.call_args[1]['params']['pcf_id'] == 'pcf-1'


class TestLookups:

    def test_inactive_closers_filtered(self, queries, read_sql):
        queries.get_closers()
        assert 'COALESCE(is_active, TRUE) = TRUE' in sql_of(read_sql)
        queries.get_closers(active_only=False)
        assert 'COALESCE(is_active, TRUE)' not in sql_of(read_sql)

    def test_commission_links_hide_admin_token(self, queries, read_sql):
        queries.get_commission_links()
        assert read_sql.call_args[1]['params']['universal'] == '__UNIVERSAL__'

    def test_invitations_by_type(self, queries, read_sql):
        queries.get_invitations('sales_rep')
        assert read_sql.call_args[1]['params']['invite_type'] == 'sales_rep'
