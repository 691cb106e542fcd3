# utils/sales_ops/queries.py
"""
SQL Queries and Data Loading for Sales Ops

Handles all database reads for one organization:
- Events in a date range (optionally one closer / booking platform)
- Payments, post-call forms, PCF yes/no answers
- Closers, setters, setter aliases, sources, pipeline statuses
- Metric definitions and calculated fields
- Payout snapshot details (commissions)
- Commission links and invitations

Every query is scoped by organization_id. JSON columns come back as dicts.
Errors are logged and an empty DataFrame is returned so pages can render
an empty state instead of crashing.

Uses @st.cache_data for performance; mutations call clear_query_cache().
"""

import json
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import streamlit as st
from sqlalchemy import bindparam, text

from utils.db import encode_params, get_db_engine
from .constants import CACHE_TTL_SECONDS, DEFAULT_TIMEZONE, UNIVERSAL_TOKEN_NAME
from .fields import as_dict

logger = logging.getLogger(__name__)

JSON_COLUMNS = [
    'booking_metadata', 'booking_responses', 'close_custom_fields',
    'numerator_conditions', 'denominator_conditions', 'fields', 'value',
]


def _day_bounds(start_date: date, end_date: date, tz: str = DEFAULT_TIMEZONE):
    """Local-day window [start 00:00, end+1 00:00) as UTC timestamps."""
    start = pd.Timestamp(datetime.combine(start_date, time.min)).tz_localize(tz).tz_convert('UTC')
    end = pd.Timestamp(datetime.combine(end_date + timedelta(days=1), time.min)).tz_localize(tz).tz_convert('UTC')
    return start.to_pydatetime(), end.to_pydatetime()


class SalesOpsQueries:
    """
    Data loading class for the sales ops pages.

    Usage:
        queries = SalesOpsQueries(organization_id)

        events_df = queries.get_events(start_date, end_date)
        payments_df = queries.get_payments(events_df['id'].tolist())
    """

    def __init__(self, organization_id: str):
        """
        Args:
            organization_id: Current organization (from the session)
        """
        self.organization_id = organization_id
        self._engine = None

    @property
    def engine(self):
        """Lazy load database engine."""
        if self._engine is None:
            self._engine = get_db_engine()
        return self._engine

    # =========================================================================
    # EVENTS
    # =========================================================================

    def get_events(
        self,
        start_date: date,
        end_date: date,
        closer_name: str = None,
        booking_platform: str = None,
        limit: int = 5000
    ) -> pd.DataFrame:
        """
        Load events scheduled in the date range (local days, inclusive).

        Returns:
            DataFrame, newest first
        """
        start, end = _day_bounds(start_date, end_date)
        query = """
            SELECT
                id, organization_id, lead_name, lead_email, lead_phone,
                scheduled_at, booked_at, event_name, call_status, event_outcome,
                closer_id, closer_name, closer_email, setter_id, setter_name,
                source_id, traffic_type_id, call_type_id, booking_platform,
                booking_metadata, booking_responses, close_custom_fields,
                pcf_submitted, pcf_submitted_at, pcf_outcome_label,
                no_show_guest, meeting_started_at, notes
            FROM events
            WHERE organization_id = :organization_id
              AND scheduled_at >= :start_at
              AND scheduled_at < :end_at
        """
        params = {'organization_id': self.organization_id, 'start_at': start, 'end_at': end}

        if closer_name:
            query += " AND LOWER(closer_name) = LOWER(:closer_name)"
            params['closer_name'] = closer_name
        if booking_platform:
            query += " AND booking_platform = :booking_platform"
            params['booking_platform'] = booking_platform

        query += " ORDER BY scheduled_at DESC LIMIT :limit"
        params['limit'] = limit

        return self._execute_query(query, params, "get_events")

    def get_event(self, event_id: str) -> Optional[Dict]:
        query = """
            SELECT *
            FROM events
            WHERE organization_id = :organization_id
              AND id = :event_id
        """
        df = self._execute_query(query, {'organization_id': self.organization_id, 'event_id': event_id}, "get_event")
        return None if df.empty else df.iloc[0].to_dict()

    def get_pending_pcf_events(self, closer_name: str = None, limit: int = 200) -> pd.DataFrame:
        """Past events with no PCF yet, for the PCF page picker."""
        return self._pcf_events(False, closer_name, limit, "get_pending_pcf_events")

    def get_submitted_pcf_events(self, closer_name: str = None, limit: int = 200) -> pd.DataFrame:
        """Events that already have a PCF, newest first, for editing."""
        return self._pcf_events(True, closer_name, limit, "get_submitted_pcf_events")

    def _pcf_events(self, submitted: bool, closer_name: Optional[str], limit: int, query_name: str) -> pd.DataFrame:
        query = """
            SELECT id, lead_name, lead_email, scheduled_at, event_name,
                   closer_id, closer_name, call_status, close_custom_fields
            FROM events
            WHERE organization_id = :organization_id
              AND pcf_submitted = :submitted
        """
        if not submitted:
            query += """
              AND scheduled_at < NOW()
              AND call_status NOT IN ('canceled', 'cancelled', 'rescheduled')
            """
        params = {'organization_id': self.organization_id, 'submitted': submitted}
        if closer_name:
            query += " AND LOWER(closer_name) = LOWER(:closer_name)"
            params['closer_name'] = closer_name
        query += " ORDER BY scheduled_at DESC LIMIT :limit"
        params['limit'] = limit
        return self._execute_query(query, params, query_name)

    # =========================================================================
    # PAYMENTS & PCFs
    # =========================================================================

    def get_payments(self, event_ids: Sequence[str]) -> pd.DataFrame:
        """Payments linked to the given events."""
        if not event_ids:
            return pd.DataFrame()
        query = text("""
            SELECT id, event_id, amount, refund_amount, net_revenue,
                   payment_date, payment_type, closer_id, setter_id, source_id
            FROM payments
            WHERE organization_id = :organization_id
              AND event_id IN :event_ids
        """).bindparams(bindparam('event_ids', expanding=True))
        params = {'organization_id': self.organization_id, 'event_ids': tuple(event_ids)}
        return self._execute_query(query, params, "get_payments")

    def get_payments_in_range(self, start_date: date, end_date: date) -> pd.DataFrame:
        """Payments by payment_date, for payment-based custom metrics."""
        start, end = _day_bounds(start_date, end_date)
        query = """
            SELECT id, event_id, amount, refund_amount, net_revenue,
                   payment_date, payment_type, closer_id, setter_id, source_id
            FROM payments
            WHERE organization_id = :organization_id
              AND payment_date >= :start_at
              AND payment_date < :end_at
        """
        params = {'organization_id': self.organization_id, 'start_at': start, 'end_at': end}
        return self._execute_query(query, params, "get_payments_in_range")

    def get_post_call_forms(self, event_ids: Sequence[str]) -> pd.DataFrame:
        if not event_ids:
            return pd.DataFrame()
        query = text("""
            SELECT id, event_id, closer_id, closer_name, lead_showed, offer_made,
                   deal_closed, call_occurred, cash_collected, payment_type,
                   notes, opportunity_status_id, close_date, submitted_at
            FROM post_call_forms
            WHERE organization_id = :organization_id
              AND event_id IN :event_ids
            ORDER BY submitted_at DESC
        """).bindparams(bindparam('event_ids', expanding=True))
        params = {'organization_id': self.organization_id, 'event_ids': tuple(event_ids)}
        return self._execute_query(query, params, "get_post_call_forms")

    def get_pcf_field_values(self, field_ids: Sequence[str]) -> Dict[str, List]:
        """
        Yes/no answers for PCF questions.

        Returns:
            {field_definition_id: [value, ...]}
        """
        if not field_ids:
            return {}
        query = text("""
            SELECT field_definition_id, value
            FROM custom_field_values
            WHERE organization_id = :organization_id
              AND record_type = 'post_call_forms'
              AND field_definition_id IN :field_ids
        """).bindparams(bindparam('field_ids', expanding=True))
        params = {'organization_id': self.organization_id, 'field_ids': tuple(field_ids)}
        df = self._execute_query(query, params, "get_pcf_field_values")

        values: Dict[str, List] = {fid: [] for fid in field_ids}
        for row in df.to_dict('records'):
            values.setdefault(row['field_definition_id'], []).append(row['value'])
        return values

    def get_pcf_answers(self, pcf_id: str) -> Dict[str, Any]:
        """{field_definition_id: answer} stored for one PCF, to prefill an edit."""
        query = """
            SELECT field_definition_id, value
            FROM custom_field_values
            WHERE organization_id = :organization_id
              AND record_type = 'post_call_forms'
              AND record_id = :pcf_id
        """
        params = {'organization_id': self.organization_id, 'pcf_id': pcf_id}
        df = self._execute_query(query, params, "get_pcf_answers")
        return {
            row['field_definition_id']: as_dict(row['value']).get('response')
            for row in df.to_dict('records')
        }

    def get_pcf_form_config(self) -> Optional[Dict]:
        """Active post-call form config (its `fields` list drives the form)."""
        query = """
            SELECT id, name, fields
            FROM form_configs
            WHERE organization_id = :organization_id
              AND form_type = 'post_call_form'
              AND is_active = TRUE
            ORDER BY is_default DESC, updated_at DESC
            LIMIT 1
        """
        df = self._execute_query(query, {'organization_id': self.organization_id}, "get_pcf_form_config")
        return None if df.empty else df.iloc[0].to_dict()

    # =========================================================================
    # TEAM LOOKUPS
    # =========================================================================

    def get_closers(self, active_only: bool = True) -> pd.DataFrame:
        query = """
            SELECT id, name, display_name, email, profile_id, is_active
            FROM closers
            WHERE organization_id = :organization_id
        """
        if active_only:
            query += " AND COALESCE(is_active, TRUE) = TRUE"
        query += " ORDER BY name"
        return self._execute_query(query, {'organization_id': self.organization_id}, "get_closers")

    def get_setters(self, active_only: bool = True) -> pd.DataFrame:
        query = """
            SELECT id, name, email, is_active
            FROM setters
            WHERE organization_id = :organization_id
        """
        if active_only:
            query += " AND COALESCE(is_active, TRUE) = TRUE"
        query += " ORDER BY name"
        return self._execute_query(query, {'organization_id': self.organization_id}, "get_setters")

    def get_setter_aliases(self) -> pd.DataFrame:
        query = """
            SELECT id, alias_name, canonical_name, ig_handle
            FROM setter_aliases
            WHERE organization_id = :organization_id
        """
        return self._execute_query(query, {'organization_id': self.organization_id}, "get_setter_aliases")

    def get_sources(self) -> pd.DataFrame:
        query = """
            SELECT id, name
            FROM sources
            WHERE organization_id = :organization_id
            ORDER BY name
        """
        return self._execute_query(query, {'organization_id': self.organization_id}, "get_sources")

    def get_opportunity_statuses(self) -> pd.DataFrame:
        query = """
            SELECT id, name, color, sort_order
            FROM opportunity_statuses
            WHERE organization_id = :organization_id
              AND COALESCE(is_active, TRUE) = TRUE
            ORDER BY sort_order, name
        """
        return self._execute_query(query, {'organization_id': self.organization_id}, "get_opportunity_statuses")

    # =========================================================================
    # METRICS CONFIG
    # =========================================================================

    def get_metric_definitions(self, active_only: bool = True) -> pd.DataFrame:
        query = """
            SELECT id, name, display_name, description, formula_type, data_source,
                   numerator_field, denominator_field, numerator_conditions,
                   denominator_conditions, include_cancels, include_reschedules,
                   include_no_shows, exclude_overdue_pcf, date_field, pcf_field_id,
                   sort_order, is_active
            FROM metric_definitions
            WHERE organization_id = :organization_id
        """
        if active_only:
            query += " AND COALESCE(is_active, TRUE) = TRUE"
        query += " ORDER BY sort_order, display_name"
        return self._execute_query(query, {'organization_id': self.organization_id}, "get_metric_definitions")

    def get_calculated_fields(self, dataset_id: str = None) -> pd.DataFrame:
        query = """
            SELECT id, dataset_id, field_slug, display_name, formula, formula_type,
                   time_scope, is_active
            FROM dataset_calculated_fields
            WHERE organization_id = :organization_id
        """
        params = {'organization_id': self.organization_id}
        if dataset_id:
            query += " AND dataset_id = :dataset_id"
            params['dataset_id'] = dataset_id
        query += " ORDER BY display_name"
        return self._execute_query(query, params, "get_calculated_fields")

    # =========================================================================
    # COMMISSIONS
    # =========================================================================

    def get_payout_details(self, start_date: date, end_date: date) -> pd.DataFrame:
        """Payment lines with closer/setter names, for commission totals."""
        start, end = _day_bounds(start_date, end_date)
        query = """
            SELECT d.id, d.payment_id, d.payment_date, d.customer_name, d.customer_email,
                   d.closer_name, d.setter_name, d.source_name,
                   d.amount, d.refund_amount, d.net_amount
            FROM payout_snapshot_details d
            WHERE d.organization_id = :organization_id
              AND d.payment_date >= :start_at
              AND d.payment_date < :end_at
            ORDER BY d.payment_date
        """
        params = {'organization_id': self.organization_id, 'start_at': start, 'end_at': end}
        return self._execute_query(query, params, "get_payout_details")

    def get_commission_links(self) -> pd.DataFrame:
        query = """
            SELECT id, closer_name, token, is_active, created_at, expires_at, last_used_at
            FROM closer_access_tokens
            WHERE organization_id = :organization_id
              AND closer_name <> :universal
            ORDER BY closer_name
        """
        params = {'organization_id': self.organization_id, 'universal': UNIVERSAL_TOKEN_NAME}
        return self._execute_query(query, params, "get_commission_links")

    # =========================================================================
    # TEAM & INVITES
    # =========================================================================

    def get_invitations(self, invite_type: str = None) -> pd.DataFrame:
        query = """
            SELECT id, email, invite_type, role, status, token, closer_name,
                   invited_by, created_at, expires_at, accepted_at
            FROM invitations
            WHERE organization_id = :organization_id
        """
        params = {'organization_id': self.organization_id}
        if invite_type:
            query += " AND invite_type = :invite_type"
            params['invite_type'] = invite_type
        query += " ORDER BY created_at DESC"
        return self._execute_query(query, params, "get_invitations")

    def get_members(self) -> pd.DataFrame:
        query = """
            SELECT m.user_id, m.role, p.full_name AS name, p.email, p.is_active, m.created_at
            FROM organization_members m
            LEFT JOIN profiles p ON p.id = m.user_id
            WHERE m.organization_id = :organization_id
            ORDER BY p.full_name
        """
        return self._execute_query(query, {'organization_id': self.organization_id}, "get_members")

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _execute_query(
        self,
        query,
        params: dict,
        query_name: str = "query"
    ) -> pd.DataFrame:
        """
        Execute SQL query and return DataFrame.

        Args:
            query: SQL string or TextClause
            params: Query parameters
            query_name: Name for logging

        Returns:
            DataFrame with results (empty on error)
        """
        try:
            logger.debug(f"Executing {query_name}")
            statement = text(query) if isinstance(query, str) else query
            df = pd.read_sql(statement, self.engine, params=encode_params(params))
            for column in JSON_COLUMNS:
                if column in df.columns:
                    df[column] = df[column].apply(_decode_json)
            logger.debug(f"{query_name} returned {len(df)} rows")
            return df
        except Exception as e:
            logger.error(f"Error executing {query_name}: {e}")
            return pd.DataFrame()


def _decode_json(value):
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str) and value.strip().startswith('['):
        try:
            return json.loads(value)
        except ValueError:
            return []
    return as_dict(value) if value is not None else None


# =============================================================================
# CACHED QUERY FUNCTIONS (Module-level for st.cache_data)
# =============================================================================

@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_events(organization_id: str, start_date: date, end_date: date, booking_platform: str = None) -> pd.DataFrame:
    return SalesOpsQueries(organization_id).get_events(start_date, end_date, booking_platform=booking_platform)


@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_payments(organization_id: str, event_ids: tuple) -> pd.DataFrame:
    """Note: Uses tuple for cache key compatibility."""
    return SalesOpsQueries(organization_id).get_payments(list(event_ids))


@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_post_call_forms(organization_id: str, event_ids: tuple) -> pd.DataFrame:
    return SalesOpsQueries(organization_id).get_post_call_forms(list(event_ids))


@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_closers(organization_id: str, active_only: bool = True) -> pd.DataFrame:
    return SalesOpsQueries(organization_id).get_closers(active_only)


@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_setters(organization_id: str, active_only: bool = True) -> pd.DataFrame:
    return SalesOpsQueries(organization_id).get_setters(active_only)


@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_setter_aliases(organization_id: str) -> pd.DataFrame:
    return SalesOpsQueries(organization_id).get_setter_aliases()


@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_sources(organization_id: str) -> pd.DataFrame:
    return SalesOpsQueries(organization_id).get_sources()


@st.cache_data(ttl=CACHE_TTL_SECONDS)
def load_metric_definitions(organization_id: str) -> pd.DataFrame:
    return SalesOpsQueries(organization_id).get_metric_definitions()


def clear_query_cache():
    """Drop cached loaders after a write."""
    st.cache_data.clear()
    logger.info("🔄 Query cache cleared")
