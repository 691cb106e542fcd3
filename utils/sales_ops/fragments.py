# utils/sales_ops/fragments.py
"""
Streamlit Fragments for Sales Ops

Uses @st.fragment to enable partial reruns for table-heavy sections.
Each fragment only reruns when its internal widgets change (search box,
sort, page), NOT when sidebar filters or other sections change.

Fragments:
- calls_table_fragment: calls report with search / sort / pagination + exports
- closer_table_fragment: closer performance table + CSV
- rep_leaderboard_fragment / setter_leaderboard_fragment: sortable leaderboards
- overdue_pcf_fragment: events still waiting for a PCF
"""

from datetime import datetime
from typing import Dict, Mapping, Optional

import pandas as pd
import streamlit as st

from .charts import SalesOpsCharts
from .constants import (
    DEFAULT_PAGE_SIZE, OUTCOME_LABELS, REP_LEADERBOARD_SORTS, SETTER_LEADERBOARD_SORTS,
)
from .export import (
    CsvColumn, SalesOpsExport, export_filename, format_currency_for_export,
    format_date_for_export, format_percent_for_export, to_csv,
)
from .metrics import CallMetrics, paginate, search_records, sort_records

CALL_CSV_COLUMNS = [
    CsvColumn('scheduled_at', 'Scheduled', lambda v, row: format_date_for_export(v)),
    CsvColumn('lead_name', 'Lead Name'),
    CsvColumn('lead_email', 'Lead Email'),
    CsvColumn('closer_name', 'Closer'),
    CsvColumn('setter', 'Setter'),
    CsvColumn('traffic_source', 'Traffic Source'),
    CsvColumn('utm_campaign', 'Campaign'),
    CsvColumn('event_name', 'Event Type'),
    CsvColumn('call_status', 'Status'),
    CsvColumn('event_outcome', 'Outcome', lambda v, row: OUTCOME_LABELS.get(v, v)),
    CsvColumn('pcf_submitted', 'PCF Submitted'),
    CsvColumn('revenue', 'Cash Collected', lambda v, row: format_currency_for_export(v)),
]

CLOSER_CSV_COLUMNS = [
    CsvColumn('name', 'Closer'),
    CsvColumn('email', 'Email'),
    CsvColumn('booked', 'Booked'),
    CsvColumn('showed', 'Showed'),
    CsvColumn('no_shows', 'No Shows'),
    CsvColumn('show_rate', 'Show Rate', lambda v, row: format_percent_for_export(v)),
    CsvColumn('offers_made', 'Offers Made'),
    CsvColumn('offer_rate', 'Offer Rate', lambda v, row: format_percent_for_export(v)),
    CsvColumn('closed', 'Closed'),
    CsvColumn('close_rate', 'Close Rate', lambda v, row: format_percent_for_export(v)),
    CsvColumn('cash_collected', 'Cash Collected', lambda v, row: format_currency_for_export(v)),
    CsvColumn('cash_per_booked_call', 'Cash / Booked Call', lambda v, row: format_currency_for_export(v)),
]

CALL_SEARCH_COLUMNS = ['lead_name', 'lead_email', 'closer_name', 'setter', 'event_name', 'traffic_source']

CALL_SORTS = {
    'scheduled_at': 'Scheduled',
    'lead_name': 'Lead',
    'closer_name': 'Closer',
    'traffic_source': 'Source',
    'event_outcome': 'Outcome',
    'revenue': 'Cash',
}


def _timestamp() -> str:
    return datetime.now().strftime('%Y%m%d_%H%M')


# =============================================================================
# FRAGMENT: CALLS TABLE
# =============================================================================

@st.fragment
def calls_table_fragment(
    events_df: pd.DataFrame,
    summary: Dict,
    filter_values: Dict,
    source_df: pd.DataFrame = None,
    closers_df: pd.DataFrame = None,
    fragment_key: str = "calls"
):
    """Searchable, sortable, paginated calls table with CSV and Excel export."""
    if events_df.empty:
        st.info("📭 No calls match the selected filters")
        return

    col_search, col_sort, col_dir = st.columns([3, 2, 1])
    with col_search:
        term = st.text_input(
            "🔍 Search",
            key=f"{fragment_key}_search",
            placeholder="Lead, email, closer, setter...",
        )
    with col_sort:
        sort_by = st.selectbox(
            "Sort by",
            options=list(CALL_SORTS.keys()),
            format_func=lambda k: CALL_SORTS[k],
            key=f"{fragment_key}_sort",
        )
    with col_dir:
        descending = st.toggle("Desc", value=True, key=f"{fragment_key}_desc")

    filtered = search_records(events_df, term, CALL_SEARCH_COLUMNS)
    filtered = sort_records(filtered, sort_by, ascending=not descending)

    page_size = st.session_state.get(f"{fragment_key}_page_size", DEFAULT_PAGE_SIZE)
    _, total_pages = paginate(filtered, 1, page_size)
    page = st.number_input(
        f"Page (of {total_pages})",
        min_value=1, max_value=total_pages, value=1, step=1,
        key=f"{fragment_key}_page",
    )
    page_df, _ = paginate(filtered, page, page_size)

    display = page_df.copy()
    if 'scheduled_at' in display.columns:
        display['scheduled_at'] = display['scheduled_at'].map(format_date_for_export)
    if 'event_outcome' in display.columns:
        display['event_outcome'] = display['event_outcome'].map(lambda v: OUTCOME_LABELS.get(v, v))

    visible = [c for c in [
        'scheduled_at', 'lead_name', 'lead_email', 'closer_name', 'setter',
        'traffic_source', 'event_name', 'call_status', 'event_outcome', 'revenue'
    ] if c in display.columns]

    st.dataframe(
        display[visible],
        column_config={
            'scheduled_at': st.column_config.TextColumn("Scheduled (ET)"),
            'lead_name': st.column_config.TextColumn("Lead"),
            'lead_email': st.column_config.TextColumn("Email"),
            'closer_name': st.column_config.TextColumn("Closer"),
            'setter': st.column_config.TextColumn("Setter"),
            'traffic_source': st.column_config.TextColumn("Source"),
            'event_name': st.column_config.TextColumn("Event Type"),
            'call_status': st.column_config.TextColumn("Status"),
            'event_outcome': st.column_config.TextColumn("Outcome"),
            'revenue': st.column_config.NumberColumn("Cash", format="$%.0f"),
        },
        use_container_width=True,
        hide_index=True,
    )
    st.caption(f"Showing {len(page_df):,} of {len(filtered):,} calls")

    col_csv, col_xlsx = st.columns(2)
    with col_csv:
        st.download_button(
            label="⬇️ Download CSV",
            data=to_csv(filtered, CALL_CSV_COLUMNS),
            file_name=export_filename(f"calls_report_{_timestamp()}"),
            mime="text/csv",
            key=f"{fragment_key}_csv",
            use_container_width=True,
        )
    with col_xlsx:
        if st.button("📥 Export to Excel", key=f"{fragment_key}_export", use_container_width=True):
            exporter = SalesOpsExport()
            excel_bytes = exporter.create_report(
                summary=summary,
                filters=filter_values,
                calls_df=filtered,
                closers_df=closers_df,
                sources_df=source_df,
            )
            st.download_button(
                label="⬇️ Download",
                data=excel_bytes,
                file_name=f"sales_ops_report_{_timestamp()}.xlsx",
                mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                key=f"{fragment_key}_xlsx",
            )


# =============================================================================
# FRAGMENT: CLOSER TABLE
# =============================================================================

@st.fragment
def closer_table_fragment(closer_df: pd.DataFrame, fragment_key: str = "closers"):
    if closer_df.empty:
        st.info("📭 No closer activity in this range")
        return

    term = st.text_input("🔍 Search closers", key=f"{fragment_key}_search")
    display = search_records(closer_df, term, ['name', 'email'])

    st.dataframe(
        display.drop(columns=['closer_key'], errors='ignore'),
        column_config={
            'name': st.column_config.TextColumn("Closer"),
            'email': st.column_config.TextColumn("Email"),
            'booked': st.column_config.NumberColumn("Booked"),
            'showed': st.column_config.NumberColumn("Showed"),
            'no_shows': st.column_config.NumberColumn("No Shows"),
            'show_rate': st.column_config.NumberColumn("Show %", format="%.1f%%"),
            'offers_made': st.column_config.NumberColumn("Offers"),
            'offer_rate': st.column_config.NumberColumn("Offer %", format="%.1f%%"),
            'closed': st.column_config.NumberColumn("Closed"),
            'close_rate': st.column_config.NumberColumn("Close %", format="%.1f%%"),
            'cash_collected': st.column_config.NumberColumn(
                "Cash Collected", format="$%.0f",
                help="Larger of linked payments and cash entered on PCFs"
            ),
            'cash_per_booked_call': st.column_config.NumberColumn("Cash / Booked", format="$%.0f"),
        },
        use_container_width=True,
        hide_index=True,
    )

    st.download_button(
        label="⬇️ Download CSV",
        data=to_csv(display, CLOSER_CSV_COLUMNS),
        file_name=export_filename(f"closer_performance_{_timestamp()}"),
        mime="text/csv",
        key=f"{fragment_key}_csv",
    )


# =============================================================================
# FRAGMENT: LEADERBOARDS
# =============================================================================

@st.fragment
def rep_leaderboard_fragment(
    metrics: CallMetrics,
    closers_df: pd.DataFrame,
    has_date_range: bool = True,
    fragment_key: str = "rep_lb"
):
    sort_by = st.radio(
        "Rank by",
        options=list(REP_LEADERBOARD_SORTS.keys()),
        format_func=lambda k: REP_LEADERBOARD_SORTS[k],
        horizontal=True,
        key=f"{fragment_key}_sort",
    )
    board = metrics.calculate_rep_leaderboard(closers_df, sort_by, has_date_range)
    if board.empty:
        st.info("📭 No closers configured")
        return

    chart = SalesOpsCharts.build_leaderboard_chart(
        board, sort_by, REP_LEADERBOARD_SORTS[sort_by], currency=(sort_by == 'revenue')
    )
    st.altair_chart(chart, use_container_width=True)

    board = board.reset_index(drop=True)
    board.insert(0, 'rank', board.index + 1)
    st.dataframe(
        board.drop(columns=['closer_id'], errors='ignore'),
        column_config={
            'rank': st.column_config.NumberColumn("#", width="small"),
            'show_rate': st.column_config.NumberColumn("Show %", format="%.1f%%"),
            'offer_rate': st.column_config.NumberColumn("Offer %", format="%.1f%%"),
            'close_rate': st.column_config.NumberColumn("Close %", format="%.1f%%"),
            'revenue': st.column_config.NumberColumn("Revenue", format="$%.0f"),
            'avg_deal_size': st.column_config.NumberColumn("Avg Deal", format="$%d"),
        },
        use_container_width=True,
        hide_index=True,
    )


@st.fragment
def setter_leaderboard_fragment(
    metrics: CallMetrics,
    setters_df: pd.DataFrame,
    alias_map: Optional[Mapping[str, str]] = None,
    fragment_key: str = "setter_lb"
):
    sort_by = st.radio(
        "Rank by",
        options=list(SETTER_LEADERBOARD_SORTS.keys()),
        format_func=lambda k: SETTER_LEADERBOARD_SORTS[k],
        horizontal=True,
        key=f"{fragment_key}_sort",
    )
    board = metrics.calculate_setter_leaderboard(setters_df, alias_map, sort_by)
    if board.empty:
        st.info("📭 No setter activity for active setters")
        return

    st.altair_chart(
        SalesOpsCharts.build_leaderboard_chart(board, sort_by, SETTER_LEADERBOARD_SORTS[sort_by]),
        use_container_width=True
    )
    st.dataframe(
        board,
        column_config={
            'name': st.column_config.TextColumn("Setter"),
            'attribution_source': st.column_config.TextColumn(
                "Source", help="Where the setter came from: crm, utm or mixed"
            ),
            'show_rate': st.column_config.NumberColumn("Show %", format="%d%%"),
            'close_rate': st.column_config.NumberColumn("Close %", format="%d%%"),
        },
        use_container_width=True,
        hide_index=True,
    )


# =============================================================================
# FRAGMENT: OVERDUE PCFs
# =============================================================================

@st.fragment
def overdue_pcf_fragment(overdue_df: pd.DataFrame, by_closer_df: pd.DataFrame, fragment_key: str = "overdue"):
    if overdue_df.empty:
        st.success("✅ Every past call has a post-call form")
        return

    st.warning(f"⏰ {len(overdue_df):,} calls are missing a post-call form")

    col_left, col_right = st.columns([1, 2])
    with col_left:
        st.dataframe(
            by_closer_df,
            column_config={
                'name': st.column_config.TextColumn("Closer"),
                'count': st.column_config.NumberColumn("Overdue"),
            },
            use_container_width=True,
            hide_index=True,
        )
    with col_right:
        closer = st.selectbox(
            "Closer",
            options=['All'] + by_closer_df['name'].tolist(),
            key=f"{fragment_key}_closer",
        )
        display = overdue_df if closer == 'All' else overdue_df[overdue_df['closer_name'] == closer]
        display = display.copy()
        display['scheduled_at'] = display['scheduled_at'].map(format_date_for_export)
        st.dataframe(
            display[[c for c in ['scheduled_at', 'lead_name', 'closer_name', 'event_name'] if c in display.columns]],
            use_container_width=True,
            hide_index=True,
        )
