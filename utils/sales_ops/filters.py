# utils/sales_ops/filters.py
"""
Event Filters for Sales Ops

Pure DataFrame filters (tested without Streamlit):
- apply_event_filters(): closer / source / type / platform / setter /
  traffic source / event type / outcome bucket
- apply_close_field_filters(): exact match on CRM custom fields
- matches_event_name_keywords(): loose event-type name matching

Sidebar widgets:
- render_date_range_filter(): defaults to the current month
- render_multiselect_filter(): multiselect with "Excl" checkbox
- render_event_filters(): full sidebar form

The closer filter matches on closer_id OR closer_name because closer_id is
often null on events imported from the booking platform.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
import streamlit as st

from .constants import OUTCOME_FILTERS, OUTCOME_CLOSED, OUTCOME_LABELS
from .fields import as_dict, clean_str
from .outcomes import is_no_show, is_show
from .sources import extract_setter, extract_traffic_source, resolve_event_setter

logger = logging.getLogger(__name__)

ALL = 'all'


# =============================================================================
# FILTER VALUES
# =============================================================================

@dataclass
class FilterResult:
    """
    Result from a multiselect filter with excluded option.

    Attributes:
        selected: Selected values (empty when nothing is picked)
        excluded: True if "Excl" checkbox is ticked
        is_active: True if the filter should be applied
    """
    selected: List[Any]
    excluded: bool
    is_active: bool

    def __repr__(self) -> str:
        mode = "EXCLUDE" if self.excluded else "INCLUDE"
        return f"FilterResult({len(self.selected)} items, {mode}, active={self.is_active})"


@dataclass
class EventFilters:
    """Filter values for the events table. None / 'all' / [] mean no filter."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[str] = None
    closer_id: Optional[str] = None
    closer_name: Optional[str] = None
    source_id: Optional[str] = None
    source_ids: List[str] = field(default_factory=list)
    traffic_type_id: Optional[str] = None
    call_type_id: Optional[str] = None
    booking_platform: Optional[str] = None
    setter: Optional[str] = None
    traffic_sources: List[str] = field(default_factory=list)
    event_type: Optional[str] = None
    outcome: str = ALL
    close_fields: Dict[str, Optional[str]] = field(default_factory=dict)

    def active_count(self) -> int:
        checks = [
            self.status, self.closer_id or self.closer_name,
            self.source_ids or _is_set(self.source_id),
            _is_set(self.traffic_type_id), _is_set(self.call_type_id),
            _is_set(self.booking_platform), _is_set(self.setter),
            self.traffic_sources, _is_set(self.event_type),
            _is_set(self.outcome),
        ]
        checks.extend(v for v in self.close_fields.values())
        return sum(1 for c in checks if c)


def _is_set(value: Optional[str]) -> bool:
    return bool(value) and value != ALL


# =============================================================================
# PURE FILTERS
# =============================================================================

def _eq_column(df: pd.DataFrame, column: str, value: Any) -> pd.DataFrame:
    if column not in df.columns:
        logger.warning(f"Column '{column}' not found in DataFrame")
        return df
    return df[df[column] == value]


def _closer_mask(df: pd.DataFrame, closer_id: Optional[str], closer_name: Optional[str]) -> pd.Series:
    mask = pd.Series(False, index=df.index)
    if closer_id and 'closer_id' in df.columns:
        mask |= df['closer_id'].astype(str) == str(closer_id)
    if closer_name and 'closer_name' in df.columns:
        mask |= df['closer_name'].fillna('').astype(str).str.lower() == closer_name.strip().lower()
    return mask


def _outcome_mask(df: pd.DataFrame, bucket: str) -> pd.Series:
    records = df.to_dict('records')
    if bucket == 'showed':
        values = [is_show(r) for r in records]
    elif bucket == 'no_show':
        values = [is_no_show(r) for r in records]
    elif bucket == 'closed':
        values = [clean_str(r.get('event_outcome')) == OUTCOME_CLOSED for r in records]
    else:
        values = [True] * len(records)
    return pd.Series(values, index=df.index, dtype=bool)


def apply_event_filters(
    df: pd.DataFrame,
    filters: EventFilters,
    alias_map: Optional[Mapping[str, str]] = None
) -> pd.DataFrame:
    """
    Apply the event filters to an events DataFrame.

    Date range is applied by the query layer, everything else here.

    Args:
        df: Events (one row per scheduled call)
        filters: EventFilters values
        alias_map: Setter alias map used to match the setter filter

    Returns:
        Filtered DataFrame (same columns)
    """
    if df.empty:
        return df

    result = df

    if filters.status:
        result = _eq_column(result, 'call_status', filters.status)

    if filters.closer_id or filters.closer_name:
        result = result[_closer_mask(result, filters.closer_id, filters.closer_name)]

    if filters.source_ids:
        if 'source_id' in result.columns:
            result = result[result['source_id'].isin(filters.source_ids)]
    elif _is_set(filters.source_id):
        result = _eq_column(result, 'source_id', filters.source_id)

    if _is_set(filters.traffic_type_id):
        result = _eq_column(result, 'traffic_type_id', filters.traffic_type_id)

    if _is_set(filters.call_type_id):
        result = _eq_column(result, 'call_type_id', filters.call_type_id)

    if _is_set(filters.booking_platform):
        result = _eq_column(result, 'booking_platform', filters.booking_platform)

    if _is_set(filters.event_type) and 'event_name' in result.columns:
        result = result[result['event_name'] == filters.event_type]

    if _is_set(filters.setter) and not result.empty:
        wanted = filters.setter.strip().lower()
        mask = []
        for record in result.to_dict('records'):
            candidates = (extract_setter(record), resolve_event_setter(record, alias_map)[0])
            mask.append(any(c and c.lower() == wanted for c in candidates))
        result = result[pd.Series(mask, index=result.index, dtype=bool)]

    if filters.traffic_sources and not result.empty:
        wanted_sources = set(filters.traffic_sources)
        sources = [extract_traffic_source(r) for r in result.to_dict('records')]
        mask = [s in wanted_sources for s in sources]
        result = result[pd.Series(mask, index=result.index, dtype=bool)]

    if _is_set(filters.outcome) and not result.empty:
        if filters.outcome not in OUTCOME_FILTERS:
            logger.warning(f"Unknown outcome filter: {filters.outcome}")
        else:
            result = result[_outcome_mask(result, filters.outcome)]

    if filters.close_fields:
        result = apply_close_field_filters(result, filters.close_fields)

    return result


def normalize_close_filter_value(value: Any) -> Optional[str]:
    """Trimmed non-empty string, else None."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def matches_close_field_filters(close_fields: Any, filters: Optional[Mapping[str, Optional[str]]]) -> bool:
    """
    Events with a missing/empty value for a filtered field never match.
    """
    if not filters:
        return True
    active = {k: v for k, v in filters.items() if v is not None}
    if not active:
        return True
    custom = as_dict(close_fields)
    return all(normalize_close_filter_value(custom.get(k)) == v for k, v in active.items())


def apply_close_field_filters(df: pd.DataFrame, filters: Optional[Mapping[str, Optional[str]]]) -> pd.DataFrame:
    if df.empty or not filters or all(v is None for v in filters.values()):
        return df
    if 'close_custom_fields' not in df.columns:
        return df.iloc[0:0]
    mask = df['close_custom_fields'].apply(lambda cf: matches_close_field_filters(cf, filters))
    return df[mask.astype(bool)]


_NAME_NOISE = re.compile(r'[-_\s]')


def matches_event_name_keywords(event_name: Optional[str], keywords: Optional[Sequence[str]]) -> bool:
    """
    "Strategy-Call (30 min)" matches keyword "strategy call".

    No keywords means everything matches.
    """
    if not keywords:
        return True
    name = clean_str(event_name)
    if not name:
        return False
    normalized = _NAME_NOISE.sub('', name.lower())
    for keyword in keywords:
        key = _NAME_NOISE.sub('', (keyword or '').lower())
        if key and key in normalized:
            return True
    return False


# =============================================================================
# DATE DEFAULTS
# =============================================================================

def current_month_range(today: Optional[date] = None) -> Tuple[date, date]:
    """First and last day of the month containing `today`."""
    today = today or date.today()
    start = today.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


# =============================================================================
# STREAMLIT WIDGETS
# =============================================================================

def render_date_range_filter(key: str = "date_range", container=None) -> Tuple[date, date]:
    """Start/end pickers side by side, current month by default."""
    ctx = container if container else st
    default_start, default_end = current_month_range()

    col1, col2 = ctx.columns(2)
    with col1:
        start_date = st.date_input("Start", value=default_start, key=f"{key}_start")
    with col2:
        end_date = st.date_input("End", value=default_end, key=f"{key}_end")

    if start_date > end_date:
        ctx.error("⚠️ Start date must be before end date")
        end_date = start_date

    return start_date, end_date


def render_multiselect_filter(
    label: str,
    options: List[Any],
    key: str,
    default_excluded: bool = False,
    placeholder: str = "Select...",
    help_text: str = None,
    container=None
) -> FilterResult:
    """
    Render a multiselect filter with an "Excl" (Excluded) checkbox.

    Example:
        >>> result = render_multiselect_filter("Closer", closers, "closer_filter")
        >>> df = apply_multiselect_filter(df, 'closer_name', result)
    """
    ctx = container if container else st

    col_label, col_excl = ctx.columns([4, 1])
    with col_label:
        st.markdown(f"**{label}**")
    with col_excl:
        excluded = st.checkbox(
            "Excl",
            value=default_excluded,
            key=f"{key}_excl",
            help="Tick to EXCLUDE selected items instead of filtering to them"
        )

    selected = ctx.multiselect(
        label=label,
        options=options,
        default=[],
        key=f"{key}_select",
        placeholder=placeholder,
        help=help_text,
        label_visibility="collapsed"
    )

    return FilterResult(selected=selected, excluded=excluded, is_active=len(selected) > 0)


def apply_multiselect_filter(df: pd.DataFrame, column: str, filter_result: FilterResult) -> pd.DataFrame:
    if df.empty or not filter_result.is_active:
        return df

    if column not in df.columns:
        logger.warning(f"Column '{column}' not found in DataFrame")
        return df

    if filter_result.excluded:
        return df[~df[column].isin(filter_result.selected)]
    return df[df[column].isin(filter_result.selected)]


def _select_with_all(label: str, options: Sequence[str], key: str) -> str:
    choice = st.selectbox(label, options=['All'] + list(options), key=key)
    return ALL if choice == 'All' else choice


def render_event_filters(
    closers: Sequence[Mapping],
    sources: Sequence[Mapping],
    setters: Sequence[str],
    traffic_sources: Sequence[str],
    event_types: Sequence[str],
    booking_platforms: Sequence[str] = (),
    key: str = "event_filters"
) -> Tuple[EventFilters, bool]:
    """
    Render the sidebar filter form. Values apply only on submit.

    Args:
        closers: Rows with id / name
        sources: Rows with id / name
        setters, traffic_sources, event_types, booking_platforms: option lists

    Returns:
        (EventFilters, submitted)
    """
    closer_by_name = {c.get('name'): c for c in closers if c.get('name')}
    source_by_name = {s.get('name'): s.get('id') for s in sources if s.get('name')}

    with st.sidebar:
        st.header("🎛️ Filters")

        with st.form(f"{key}_form", border=False):
            st.markdown("**📅 Date Range**")
            start_date, end_date = render_date_range_filter(key=f"{key}_dates")

            st.divider()

            closer_choice = _select_with_all("👤 Closer", sorted(closer_by_name), f"{key}_closer")

            source_names = st.multiselect(
                "🏷️ Sources",
                options=sorted(source_by_name),
                default=[],
                key=f"{key}_sources",
            )

            setter = _select_with_all("📞 Setter", list(setters), f"{key}_setter")
            selected_traffic = st.multiselect(
                "📣 Traffic Source",
                options=list(traffic_sources),
                default=[],
                key=f"{key}_traffic",
            )
            event_type = _select_with_all("📋 Event Type", list(event_types), f"{key}_event_type")

            booking_platform = ALL
            if booking_platforms:
                booking_platform = _select_with_all(
                    "🗓️ Booking Platform", list(booking_platforms), f"{key}_platform"
                )

            outcome = st.selectbox(
                "🎯 Outcome",
                options=OUTCOME_FILTERS,
                format_func=lambda v: 'All' if v == ALL else OUTCOME_LABELS.get(v, v.replace('_', ' ').title()),
                key=f"{key}_outcome",
            )

            st.divider()

            submitted = st.form_submit_button(
                "🔍 Apply Filters",
                use_container_width=True,
                type="primary"
            )

    closer = closer_by_name.get(closer_choice) if closer_choice != ALL else None

    filters = EventFilters(
        start_date=start_date,
        end_date=end_date,
        closer_id=str(closer['id']) if closer and closer.get('id') is not None else None,
        closer_name=closer_choice if closer else None,
        source_ids=[source_by_name[n] for n in source_names if n in source_by_name],
        booking_platform=booking_platform,
        setter=setter,
        traffic_sources=list(selected_traffic),
        event_type=event_type,
        outcome=outcome,
    )
    return filters, submitted
