"""Tests for the pure event filters."""

from datetime import date

import pandas as pd
import pytest

from utils.sales_ops.filters import (
    EventFilters, apply_close_field_filters, apply_event_filters, current_month_range,
    matches_close_field_filters, matches_event_name_keywords, normalize_close_filter_value,
)


def ids(df):
    return df['id'].tolist()


class TestApplyEventFilters:

    def test_no_filters(self, events_df):
        assert len(apply_event_filters(events_df, EventFilters())) == 5

    def test_closer_matches_id_or_name(self, events_df):
        assert ids(apply_event_filters(events_df, EventFilters(closer_id='c1'))) == ['e1', 'e5']
        assert ids(apply_event_filters(events_df, EventFilters(closer_id='c1', closer_name=' SAM '))) == \
            ['e1', 'e2', 'e5']

    def test_status_and_event_type(self, events_df):
        assert ids(apply_event_filters(events_df, EventFilters(status='canceled'))) == ['e4']
        assert ids(apply_event_filters(events_df, EventFilters(event_type='Discovery Call'))) == ['e2']
        assert len(apply_event_filters(events_df, EventFilters(event_type='all'))) == 5

    def test_setter_uses_aliases(self, events_df, alias_map):
        result = apply_event_filters(events_df, EventFilters(setter='jane doe'), alias_map)
        assert ids(result) == ['e1', 'e2', 'e5']

    def test_traffic_sources(self, events_df):
        assert ids(apply_event_filters(events_df, EventFilters(traffic_sources=['Instagram']))) == ['e1']

    @pytest.mark.parametrize("bucket, expected", [
        ('showed', ['e1', 'e2']),
        ('no_show', ['e3']),
        ('closed', ['e1']),
        ('unknown', ['e1', 'e2', 'e3', 'e4', 'e5']),
    ])
    def test_outcome_buckets(self, events_df, bucket, expected):
        assert ids(apply_event_filters(events_df, EventFilters(outcome=bucket))) == expected

    def test_close_fields(self, events_df):
        result = apply_event_filters(events_df, EventFilters(close_fields={'lead_type': 'vip'}))
        assert ids(result) == ['e3']

    def test_missing_column_is_ignored(self, events_df):
        result = apply_event_filters(events_df, EventFilters(traffic_type_id='t1'))
        assert len(result) == 5


class TestActiveCount:

    def test_counts_only_real_values(self):
        filters = EventFilters(
            closer_name='Sam', setter='all', outcome='closed',
            close_fields={'lead_type': 'vip', 'stage': None},
        )
        assert filters.active_count() == 3
        assert EventFilters().active_count() == 0


class TestCloseFieldFilters:

    def test_normalize(self):
        assert normalize_close_filter_value(' vip ') == 'vip'
        assert normalize_close_filter_value('   ') is None
        assert normalize_close_filter_value(5) is None

    def test_missing_values_never_match(self):
        assert matches_close_field_filters('{"lead_type": "vip"}', {'lead_type': 'vip'})
        assert not matches_close_field_filters({}, {'lead_type': 'vip'})
        assert matches_close_field_filters({}, {'lead_type': None})
        assert matches_close_field_filters(None, None)

    def test_without_column_nothing_matches(self):
        df = pd.DataFrame({'id': ['a', 'b']})
        assert apply_close_field_filters(df, {'lead_type': 'vip'}).empty
        assert len(apply_close_field_filters(df, {'lead_type': None})) == 2


class TestEventNameKeywords:

    def test_loose_matching(self):
        assert matches_event_name_keywords("Strategy-Call (30 min)", ["strategy call"])
        assert matches_event_name_keywords("strategy_call", ["Strategy Call"])
        assert not matches_event_name_keywords("Discovery Call", ["strategy"])
        assert not matches_event_name_keywords(None, ["strategy"])
        assert matches_event_name_keywords(None, [])


class TestCurrentMonthRange:

    def test_leap_february(self):
        assert current_month_range(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_december(self):
        assert current_month_range(date(2024, 12, 31)) == (date(2024, 12, 1), date(2024, 12, 31))
