# utils/sales_ops/charts.py
"""
Altair Chart Builders for Sales Ops

All visualization components using Altair:
- KPI summary cards (using st.metric)
- Outcome distribution (donut)
- Traffic source breakdown (grouped bars)
- Leaderboard bars (closers / setters)
- Daily call volume trend
- Attribution platform bars
"""

import logging
from typing import Dict, Optional

import altair as alt
import pandas as pd
import streamlit as st

from .constants import (
    COLORS, OUTCOME_COLORS, OUTCOME_LABELS, CHART_WIDTH, CHART_HEIGHT, DEFAULT_TIMEZONE,
)
from .export import format_currency

logger = logging.getLogger(__name__)


class SalesOpsCharts:
    """
    Chart builders for the sales ops dashboard.

    All methods are static - can be called without instantiation.

    Usage:
        SalesOpsCharts.render_kpi_cards(metrics)
        chart = SalesOpsCharts.build_outcome_chart(events_df)
        st.altair_chart(chart, use_container_width=True)
    """

    # =========================================================================
    # KPI CARDS (Using st.metric)
    # =========================================================================

    @staticmethod
    def render_kpi_cards(metrics: Dict, show_pending: bool = True):
        """
        Render KPI summary cards.

        Layout:
        - 📞 CALLS: Booked, Showed, No Shows, Canceled
        - 💰 RESULTS: Show Rate, Close Rate, Closed, Revenue
        """
        with st.container(border=True):
            st.markdown("**📞 CALLS**")
            col1, col2, col3, col4 = st.columns(4)
            with col1:
                st.metric(
                    label="Booked Calls",
                    value=f"{metrics.get('booked_calls', 0):,}",
                    help="Events in range that were not canceled or rescheduled"
                )
            with col2:
                st.metric(label="Showed", value=f"{metrics.get('showed', 0):,}")
            with col3:
                st.metric(label="No Shows", value=f"{metrics.get('no_shows', 0):,}")
            with col4:
                st.metric(
                    label="Canceled / Rescheduled",
                    value=f"{metrics.get('canceled', 0):,} / {metrics.get('rescheduled', 0):,}"
                )

        with st.container(border=True):
            st.markdown("**💰 RESULTS**")
            col1, col2, col3, col4 = st.columns(4)
            with col1:
                st.metric(
                    label="Show Rate",
                    value=f"{metrics.get('show_rate', 0):.1f}%",
                    help="Showed / (Showed + No Shows), past calls only"
                )
            with col2:
                st.metric(
                    label="Close Rate",
                    value=f"{metrics.get('close_rate', 0):.1f}%",
                    help="Closed / Showed"
                )
            with col3:
                st.metric(label="Closed Deals", value=f"{metrics.get('closed', 0):,}")
            with col4:
                st.metric(label="Revenue", value=format_currency(metrics.get('revenue', 0)))

        if show_pending and metrics.get('pending_pcfs'):
            st.warning(f"📝 {metrics['pending_pcfs']} past calls are still waiting for a post-call form")

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    @staticmethod
    def build_outcome_chart(events_df: pd.DataFrame, height: int = CHART_HEIGHT) -> alt.Chart:
        """Donut of event_outcome counts (events without an outcome left out)."""
        if events_df.empty or 'event_outcome' not in events_df.columns:
            return SalesOpsCharts._empty_chart("No outcomes yet")

        counts = (
            events_df['event_outcome'].dropna()
            .value_counts()
            .rename_axis('outcome')
            .reset_index(name='count')
        )
        if counts.empty:
            return SalesOpsCharts._empty_chart("No outcomes yet")

        counts['label'] = counts['outcome'].map(lambda o: OUTCOME_LABELS.get(o, o))
        domain = counts['label'].tolist()
        colors = [OUTCOME_COLORS.get(o, COLORS['text_light']) for o in counts['outcome']]

        return alt.Chart(counts).mark_arc(innerRadius=60).encode(
            theta=alt.Theta('count:Q'),
            color=alt.Color('label:N', scale=alt.Scale(domain=domain, range=colors),
                            legend=alt.Legend(title='Outcome', orient='right')),
            tooltip=[
                alt.Tooltip('label:N', title='Outcome'),
                alt.Tooltip('count:Q', title='Calls', format=',')
            ]
        ).properties(height=height, title='Call Outcomes')

    # =========================================================================
    # SOURCES
    # =========================================================================

    @staticmethod
    def build_source_chart(source_df: pd.DataFrame, top_n: int = 10) -> alt.Chart:
        """Scheduled / showed / closed per traffic source."""
        if source_df.empty:
            return SalesOpsCharts._empty_chart("No traffic sources")

        top = source_df.head(top_n)
        long_df = top.melt(
            id_vars=['source'],
            value_vars=['scheduled_count', 'showed', 'closed'],
            var_name='metric', value_name='calls'
        )
        long_df['metric'] = long_df['metric'].map({
            'scheduled_count': 'Scheduled', 'showed': 'Showed', 'closed': 'Closed'
        })

        return alt.Chart(long_df).mark_bar().encode(
            y=alt.Y('source:N', sort=top['source'].tolist(), title=None),
            x=alt.X('calls:Q', title='Calls'),
            yOffset='metric:N',
            color=alt.Color('metric:N', scale=alt.Scale(
                domain=['Scheduled', 'Showed', 'Closed'],
                range=[COLORS['text_light'], COLORS['showed'], COLORS['closed']]
            ), legend=alt.Legend(orient='bottom', title=None)),
            tooltip=[
                alt.Tooltip('source:N', title='Source'),
                alt.Tooltip('metric:N', title='Metric'),
                alt.Tooltip('calls:Q', title='Calls', format=',')
            ]
        ).properties(width=CHART_WIDTH, height=max(CHART_HEIGHT, 40 * len(top)), title='By Traffic Source')

    # =========================================================================
    # LEADERBOARDS
    # =========================================================================

    @staticmethod
    def build_leaderboard_chart(
        df: pd.DataFrame,
        value_col: str,
        value_title: str,
        name_col: str = 'name',
        top_n: int = 15,
        currency: bool = False
    ) -> alt.Chart:
        """Horizontal bars, largest first."""
        if df.empty or value_col not in df.columns:
            return SalesOpsCharts._empty_chart("No data")

        top = df.nlargest(top_n, value_col)[[name_col, value_col]]
        value_format = '$,.0f' if currency else ',.1f'

        bars = alt.Chart(top).mark_bar(color=COLORS['closed']).encode(
            y=alt.Y(f'{name_col}:N', sort='-x', title=None),
            x=alt.X(f'{value_col}:Q', title=value_title),
            tooltip=[
                alt.Tooltip(f'{name_col}:N', title='Name'),
                alt.Tooltip(f'{value_col}:Q', title=value_title, format=value_format)
            ]
        )
        text = bars.mark_text(align='left', dx=3, fontSize=11).encode(
            text=alt.Text(f'{value_col}:Q', format=value_format),
            color=alt.value(COLORS['text_dark'])
        )
        return (bars + text).properties(width=CHART_WIDTH, height=max(200, 28 * len(top)))

    # =========================================================================
    # TREND
    # =========================================================================

    @staticmethod
    def build_daily_calls_chart(events_df: pd.DataFrame) -> alt.Chart:
        """Calls per local day, stacked by show / no-show / other."""
        if events_df.empty or 'scheduled_at' not in events_df.columns:
            return SalesOpsCharts._empty_chart("No calls in range")

        df = events_df[['scheduled_at', 'event_outcome']].copy()
        df['day'] = (
            pd.to_datetime(df['scheduled_at'], utc=True)
            .dt.tz_convert(DEFAULT_TIMEZONE)
            .dt.strftime('%Y-%m-%d')
        )
        df['bucket'] = df['event_outcome'].map(
            lambda o: 'No Show' if o == 'no_show' else ('Pending' if pd.isna(o) else 'Showed/Other')
        )
        daily = df.groupby(['day', 'bucket']).size().reset_index(name='calls')

        return alt.Chart(daily).mark_bar().encode(
            x=alt.X('day:T', title='Day'),
            y=alt.Y('calls:Q', title='Calls', stack=True),
            color=alt.Color('bucket:N', scale=alt.Scale(
                domain=['Showed/Other', 'No Show', 'Pending'],
                range=[COLORS['showed'], COLORS['no_show'], COLORS['pending']]
            ), legend=alt.Legend(orient='bottom', title=None)),
            tooltip=[
                alt.Tooltip('day:T', title='Day'),
                alt.Tooltip('bucket:N', title='Status'),
                alt.Tooltip('calls:Q', title='Calls')
            ]
        ).properties(width=CHART_WIDTH, height=CHART_HEIGHT, title='Daily Call Volume')

    # =========================================================================
    # ATTRIBUTION
    # =========================================================================

    @staticmethod
    def build_attribution_chart(tree_df: pd.DataFrame) -> alt.Chart:
        """Platform-level totals with show and close rates in the tooltip."""
        if tree_df.empty:
            return SalesOpsCharts._empty_chart("No attribution data")

        platforms = tree_df[tree_df['level'] == 'platform'].copy()
        platforms['name'] = platforms['name'].str.strip()

        return alt.Chart(platforms).mark_bar(color=COLORS['revenue']).encode(
            y=alt.Y('name:N', sort='-x', title=None),
            x=alt.X('total:Q', title='Booked Calls'),
            tooltip=[
                alt.Tooltip('name:N', title='Platform'),
                alt.Tooltip('total:Q', title='Booked'),
                alt.Tooltip('showed:Q', title='Showed'),
                alt.Tooltip('closed:Q', title='Closed'),
                alt.Tooltip('show_rate:Q', title='Show %'),
                alt.Tooltip('close_rate:Q', title='Close %'),
            ]
        ).properties(width=CHART_WIDTH, height=max(200, 32 * len(platforms)), title='Booked Calls by Platform')

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _empty_chart(message: str = "No data available") -> alt.Chart:
        """Placeholder chart with a centered message."""
        return alt.Chart(pd.DataFrame({'text': [message]})).mark_text(
            size=14, color=COLORS['text_light']
        ).encode(
            text='text:N'
        ).properties(width=CHART_WIDTH, height=120)
