"""Tests for call KPIs, closer table, leaderboards and the calls report."""

from datetime import date

import pandas as pd
import pytest

from utils.sales_ops.filters import EventFilters
from utils.sales_ops.metrics import (
    CallMetrics, net_revenue_by_event, paginate, search_records, sort_records, start_of_today,
)


@pytest.fixture
def metrics(events_df, payments_df, pcfs_df, now):
    return CallMetrics(events_df, payments_df, pcfs_df, now=now)


class TestHelpers:

    def test_net_revenue_skips_unlinked_payments(self, payments_df):
        assert net_revenue_by_event(payments_df) == {'e1': 2500.0, 'e2': 1000.0}

    def test_start_of_today_is_local_midnight(self, now):
        assert start_of_today(now) == pd.Timestamp('2024-05-15 04:00', tz='UTC')


class TestDashboardMetrics:

    def test_counts_and_rates(self, metrics):
        kpis = metrics.calculate_dashboard_metrics()

        assert kpis['total_calls'] == 5
        assert kpis['booked_calls'] == 4
        assert kpis['scheduled_calls'] == 1
        assert kpis['canceled'] == 1
        assert kpis['showed'] == 2
        assert kpis['no_shows'] == 1
        assert kpis['offers_made'] == 2
        assert kpis['closed'] == 1
        assert kpis['show_rate'] == 66.7
        assert kpis['offer_rate'] == 100.0
        assert kpis['close_rate'] == 50.0
        assert kpis['revenue'] == 3500.0
        assert kpis['pending_pcfs'] == 1

    def test_empty(self, now):
        kpis = CallMetrics(pd.DataFrame(), now=now).calculate_dashboard_metrics()
        assert kpis['total_calls'] == 0
        assert kpis['show_rate'] == 0.0
        assert kpis['revenue'] == 0


class TestCloserMetrics:

    def test_closers_from_events(self, metrics):
        df = metrics.calculate_closer_metrics()

        assert df['name'].tolist() == ['Alex', 'Sam']
        sam = df.iloc[1]
        assert sam['booked'] == 3
        assert sam['showed'] == 2
        assert sam['closed'] == 1
        assert sam['close_rate'] == 50.0
        # PCF cash (4000) beats payment revenue (3500)
        assert sam['cash_collected'] == 4000.0
        assert sam['cash_per_booked_call'] == pytest.approx(4000.0 / 3)

        alex = df.iloc[0]
        assert alex['booked'] == 1
        assert alex['no_shows'] == 1
        assert alex['show_rate'] == 0.0

    def test_event_name_keywords(self, metrics):
        df = metrics.calculate_closer_metrics(event_name_keywords=['strategy-call'])
        assert df.set_index('name')['booked'].to_dict() == {'Alex': 1, 'Sam': 2}

    def test_given_closers_only(self, metrics):
        closers = pd.DataFrame([
            {'name': 'Sam', 'email': 'SAM@acme.com'},
            {'name': 'Pat', 'email': 'pat@acme.com'},
        ])
        df = metrics.calculate_closer_metrics(closers)

        assert df['name'].tolist() == ['Pat', 'Sam']
        pat = df.iloc[0]
        assert pat['booked'] == 0
        assert pat['cash_per_booked_call'] == 0.0


class TestLeaderboards:

    @pytest.fixture
    def closers_df(self):
        return pd.DataFrame([
            {'id': 'c2', 'name': 'Alex', 'email': None},
            {'id': 'c1', 'name': 'Sam', 'email': 'sam@acme.com'},
        ])

    def test_rep_leaderboard_by_revenue(self, metrics, closers_df):
        df = metrics.calculate_rep_leaderboard(closers_df, 'revenue')

        assert df['name'].tolist() == ['Sam', 'Alex']
        sam = df.iloc[0]
        assert sam['total_calls'] == 3
        assert sam['completed_calls'] == 2
        assert sam['deals_closed'] == 1
        assert sam['show_rate'] == 100.0
        assert sam['revenue'] == 3500.0
        assert sam['avg_deal_size'] == 3500

        alex = df.iloc[1]
        assert alex['no_shows'] == 1
        assert alex['avg_deal_size'] == 0

    def test_rep_leaderboard_past_only(self, metrics, closers_df):
        df = metrics.calculate_rep_leaderboard(closers_df, 'completed_calls', has_date_range=False)
        assert df.set_index('name')['total_calls'].to_dict() == {'Sam': 2, 'Alex': 2}

    def test_unknown_sort_uses_revenue(self, metrics, closers_df):
        df = metrics.calculate_rep_leaderboard(closers_df, 'bogus')
        assert df['name'].iloc[0] == 'Sam'

    def test_setter_leaderboard(self, metrics, alias_map):
        setters = pd.DataFrame([
            {'name': 'Jane Doe', 'is_active': True},
            {'name': 'Mark', 'is_active': False},
        ])
        df = metrics.calculate_setter_leaderboard(setters, alias_map)

        assert df['name'].tolist() == ['Jane Doe']
        jane = df.iloc[0]
        assert jane['calls_set'] == 3
        assert jane['showed'] == 2
        assert jane['closed'] == 1
        assert jane['show_rate'] == 100
        assert jane['close_rate'] == 50
        assert jane['attribution_source'] == 'mixed'

    def test_setter_leaderboard_without_active_setters(self, metrics):
        assert metrics.calculate_setter_leaderboard(pd.DataFrame()).empty


class TestCallsReport:

    def test_filtered_report(self, metrics, alias_map):
        report = metrics.build_calls_report(EventFilters(closer_name='alex'), alias_map)

        assert report['events']['id'].tolist() == ['e4', 'e3']
        assert report['summary']['total_calls'] == 2
        assert report['summary']['no_shows'] == 1
        assert report['summary']['show_rate'] == 0.0
        # Options always come from the unfiltered events
        assert report['available_closers'] == ['Alex', 'Sam']
        assert report['available_sources'] == ['Instagram']
        assert {'Jane Doe', 'Mark'} <= set(report['available_setters'])
        assert report['available_event_types'] == [
            'Discovery Call', 'Strategy Call', 'Strategy Call (30 min)',
        ]

    def test_source_breakdown(self, metrics):
        df = metrics.source_breakdown()

        assert df['source'].tolist() == ['Unknown', 'Instagram']
        instagram = df.iloc[1]
        assert instagram['scheduled_count'] == 1
        assert instagram['booked_count'] == 1
        assert instagram['close_rate'] == 100.0
        assert instagram['revenue'] == 2500.0

        unknown = df.iloc[0]
        assert unknown['scheduled_count'] == 4
        assert unknown['showed'] == 1
        assert unknown['no_shows'] == 1
        assert unknown['show_rate'] == 50.0


class TestOverduePCFs:

    def test_before_today(self, metrics):
        overdue, by_closer = metrics.calculate_overdue_pcfs()
        assert overdue['id'].tolist() == ['e3']
        assert by_closer.values.tolist() == [['Alex', 1]]

    def test_end_date_caps_the_cutoff(self, metrics):
        overdue, by_closer = metrics.calculate_overdue_pcfs(end_date=date(2024, 5, 11))
        assert overdue.empty
        assert by_closer.empty
        assert list(by_closer.columns) == ['name', 'count']

    def test_start_date(self, metrics):
        overdue, _ = metrics.calculate_overdue_pcfs(start_date=date(2024, 5, 13))
        assert overdue.empty

    def test_close_field_filters(self, metrics):
        overdue, _ = metrics.calculate_overdue_pcfs(close_filters={'lead_type': 'vip'})
        assert len(overdue) == 1
        overdue, _ = metrics.calculate_overdue_pcfs(close_filters={'lead_type': 'other'})
        assert overdue.empty


class TestTableHelpers:

    def test_sort_is_case_insensitive_with_missing_last(self):
        df = pd.DataFrame({'name': ['bob', None, 'Alice', 'carl']})
        assert sort_records(df, 'name')['name'].tolist()[:3] == ['Alice', 'bob', 'carl']
        assert sort_records(df, 'name')['name'].isna().tolist()[-1]
        assert sort_records(df, 'missing') is df

    def test_paginate_clamps(self):
        df = pd.DataFrame({'n': range(30)})
        page, total = paginate(df, page=5, page_size=25)
        assert total == 2
        assert page['n'].tolist() == list(range(25, 30))

        _, total = paginate(pd.DataFrame(), page=1)
        assert total == 1

    def test_search(self):
        df = pd.DataFrame({'lead_name': ['Jane Roe', None, 'Bob'], 'closer_name': ['Sam', 'Jane', 'Alex']})
        assert len(search_records(df, ' jane ', ['lead_name', 'closer_name'])) == 2
        assert len(search_records(df, '', ['lead_name'])) == 3
