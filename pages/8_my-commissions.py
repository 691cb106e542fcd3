# pages/8_my-commissions.py
"""
💰 My Commissions (public, token-gated)

Opened from an emailed commission link:
    /my-commissions?token=...&from=YYYY-MM-DD&to=YYYY-MM-DD&closerPct=10&setterPct=5

No login. The token must belong to an active, unexpired link; it decides
which rep (and organization) is shown. The universal admin token lets the
viewer pick a rep.

Version: 1.0.0
"""

import logging

import streamlit as st

from utils.db import check_db_connection

from utils.sales_ops.commissions import (
    build_rep_list, calculate_rep_commission, is_universal_link, parse_portal_params,
    resolve_access_token,
)
from utils.sales_ops.export import (
    CsvColumn, export_filename, format_currency, format_currency_for_export,
    format_date_for_export, to_csv,
)
from utils.sales_ops.queries import SalesOpsQueries

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEAL_CSV_COLUMNS = [
    CsvColumn('payment_date', 'Payment Date', lambda v, row: format_date_for_export(v)),
    CsvColumn('customer_name', 'Customer'),
    CsvColumn('closer_name', 'Closer'),
    CsvColumn('setter_name', 'Setter'),
    CsvColumn('amount', 'Amount', lambda v, row: format_currency_for_export(v)),
    CsvColumn('refund_amount', 'Refunds', lambda v, row: format_currency_for_export(v)),
    CsvColumn('net_amount', 'Net', lambda v, row: format_currency_for_export(v)),
]

# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title="My Commissions",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="collapsed"
)

db_connected, db_error = check_db_connection()
if not db_connected:
    st.error(f"❌ Database connection failed: {db_error}")
    st.stop()

params = parse_portal_params(st.query_params.to_dict())

if 'portal_link' not in st.session_state or st.session_state.get('portal_token') != params['token']:
    link, error = resolve_access_token(params['token'])
    if link is None:
        st.title("🔒 Access denied")
        st.error(error)
        st.stop()
    st.session_state['portal_link'] = link
    st.session_state['portal_token'] = params['token']

link = st.session_state['portal_link']
queries = SalesOpsQueries(link['organization_id'])

# =============================================================================
# REP & PERIOD
# =============================================================================

if is_universal_link(link):
    reps = build_rep_list(queries.get_closers(), queries.get_setters())
    rep_name = st.selectbox(
        "Rep",
        options=[r['name'] for r in reps],
        index=None,
        placeholder="Select a rep...",
        key="portal_rep",
    )
    if not rep_name:
        st.info("👆 Pick a rep to see their commissions")
        st.stop()
else:
    rep_name = link['closer_name']

st.title(f"💰 Commissions: {rep_name}")

col1, col2 = st.columns(2)
start_date = col1.date_input("From", value=params['start_date'], key="portal_from")
end_date = col2.date_input("To", value=params['end_date'], key="portal_to")
if start_date > end_date:
    st.error("⚠️ Start date must be before end date")
    st.stop()

st.caption(f"Closer rate {params['closer_pct']:g}% · setter rate {params['setter_pct']:g}% · dates in Eastern time")

# =============================================================================
# PAYOUT
# =============================================================================

details_df = queries.get_payout_details(start_date, end_date)
stats = calculate_rep_commission(
    details_df, rep_name, start_date, end_date, params['closer_pct'], params['setter_pct']
)

col1, col2, col3 = st.columns(3)
col1.metric(
    "Closer Payout", format_currency(stats['closer_payout'], decimals=2),
    help=f"{stats['closer_deals']} deals, {format_currency(stats['closer_net'])} net"
)
col2.metric(
    "Setter Payout", format_currency(stats['setter_payout'], decimals=2),
    help=f"{stats['setter_deals']} deals, {format_currency(stats['setter_net'])} net"
)
col3.metric("Total Payout", format_currency(stats['total_payout'], decimals=2))

deals = stats['all_deals']
if deals.empty:
    st.info("📭 No deals in this period")
else:
    display = deals.copy()
    display['payment_date'] = display['payment_date'].map(format_date_for_export)
    st.dataframe(
        display[[c for c in ['payment_date', 'customer_name', 'closer_name', 'setter_name',
                             'amount', 'refund_amount', 'net_amount'] if c in display.columns]],
        use_container_width=True,
        hide_index=True,
    )
    st.download_button(
        "📥 Download CSV",
        data=to_csv(deals, DEAL_CSV_COLUMNS),
        file_name=export_filename(f"commissions_{rep_name}_{start_date}_{end_date}"),
        mime="text/csv",
    )
