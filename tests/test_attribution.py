"""Tests for the source attribution drill-down."""

from utils.sales_ops.attribution import (
    AttributionFilters, build_attribution_tree, flatten_tree, get_attribution_options,
    get_attribution_platform, get_attribution_setter, get_capital_tier, summarize_attribution,
)
from utils.sales_ops.constants import NO_ATTRIBUTION, QUIZ_FUNNEL, UNATTRIBUTED_SETTER


class TestPerEventAttribution:

    def test_platform_priority(self):
        assert get_attribution_platform({
            'booking_metadata': {'utm_platform': 'yt'},
            'booking_responses': {'quiz_email': 'a@b.com'},
        }) == ('YouTube', 'utm')
        assert get_attribution_platform({
            'booking_responses': {'quiz_email': 'a@b.com'},
            'close_custom_fields': {'platform': 'fb'},
        }) == (QUIZ_FUNNEL, 'quiz')
        assert get_attribution_platform({'close_custom_fields': '{"platform": "fb"}'}) == ('Facebook', 'crm')
        assert get_attribution_platform({}) == (NO_ATTRIBUTION, 'none')

    def test_setter_priority(self):
        alias_map = {'jd': 'Jane Doe'}
        ig_map = {'mark.sets': 'Mark'}
        assert get_attribution_setter({'booking_metadata': {'utm_setter': 'Jane'}}, alias_map) == ('Jane', 'utm')
        assert get_attribution_setter({'setter_name': 'Bob'}, alias_map) == ('Bob', 'crm')
        assert get_attribution_setter(
            {'setter_name': 'user_123', 'booking_responses': {'IGHANDLE': '@mark.sets'}}, alias_map, ig_map
        ) == ('Mark', 'ighandle')
        assert get_attribution_setter({}, alias_map, ig_map) == (UNATTRIBUTED_SETTER, 'none')

    def test_capital_tier(self):
        assert get_capital_tier({'booking_responses': {'Long capital question': '$5k-$10k'}}) == '$5k-$10k'
        assert get_capital_tier({}) == '(unknown)'


class TestAttributionTree:

    def test_tree_shape(self, events_df, alias_map):
        tree = build_attribution_tree(events_df, alias_map)

        # Equal totals: Quiz Funnel first, No Attribution always last
        assert [n.name for n in tree] == [QUIZ_FUNNEL, 'Instagram', NO_ATTRIBUTION]

        instagram = tree[1]
        assert instagram.attribution_source == 'utm'
        assert (instagram.total, instagram.showed, instagram.closed) == (1, 1, 1)
        assert (instagram.show_rate, instagram.close_rate) == (100, 100)
        assert instagram.children[0].name == 'stories'
        assert instagram.children[0].children[0].name == 'Jane Doe'
        assert instagram.children[0].children[0].children == []

        unattributed = tree[2]
        assert unattributed.total == 2
        assert unattributed.show_rate == 0
        assert sorted(s.name for s in unattributed.children[0].children) == ['Jane Doe', 'Mark']

    def test_canceled_calls_are_left_out(self, events_df):
        tree = build_attribution_tree(events_df)
        assert sum(n.total for n in tree) == 4

    def test_setter_filter(self, events_df, alias_map):
        tree = build_attribution_tree(events_df, alias_map, filters=AttributionFilters(setter='Jane Doe'))
        assert [n.total for n in tree] == [1, 1, 1]

    def test_capital_tier_filter_without_tier_level(self, events_df, alias_map):
        tree = build_attribution_tree(
            events_df, alias_map, filters=AttributionFilters(capital_tier='$10k+')
        )
        assert [n.name for n in tree] == ['Instagram']
        assert tree[0].children[0].children[0].children == []

    def test_tier_level(self, events_df, alias_map):
        tree = build_attribution_tree(events_df, alias_map, filters=AttributionFilters(show_capital_tiers=True))
        setter = tree[1].children[0].children[0]
        assert [t.name for t in setter.children] == ['$10k+']
        assert setter.children[0].level == 'capital_tier'

    def test_ig_handle_marks_platform_source(self):
        events = [{'booking_responses': {'ig_handle': '@mark.sets'}, 'event_outcome': 'no_show'}]
        tree = build_attribution_tree(events, ig_alias_map={'mark.sets': 'Mark'})
        assert tree[0].name == NO_ATTRIBUTION
        assert tree[0].attribution_source == 'ighandle'

    def test_junk_setter_keeps_platform_source_none(self):
        events = [{
            'booking_metadata': {'utm_setter': 'utm_source'},
            'setter_name': '12345',
            'booking_responses': {'ig_handle': '@mark.sets'},
            'event_outcome': 'no_show',
        }]
        tree = build_attribution_tree(events, ig_alias_map={'mark.sets': 'Mark'})
        assert tree[0].name == NO_ATTRIBUTION
        assert tree[0].attribution_source == 'none'


class TestOptionsAndSummary:

    def test_options_leave_out_placeholders(self, events_df, alias_map):
        options = get_attribution_options(events_df, alias_map)
        assert options == {
            'platforms': ['Instagram', QUIZ_FUNNEL],
            'channels': ['stories'],
            'setters': ['Jane Doe', 'Mark'],
            'capital_tiers': ['$10k+'],
        }

    def test_summary(self, events_df):
        assert summarize_attribution(events_df) == {
            'with_attribution': 2,
            'without_attribution': 2,
            'coverage_percent': 50,
            'total': 4,
        }

    def test_flatten(self, events_df, alias_map):
        df = flatten_tree(build_attribution_tree(events_df, alias_map))
        assert len(df) == 10
        assert 'Instagram › stories › Jane Doe' in df['path'].tolist()
        assert df['depth'].max() == 2
