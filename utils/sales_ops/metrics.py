# utils/sales_ops/metrics.py
"""
Call Metrics for Sales Ops

Handles all metric calculations over an already-loaded set of events:
- Dashboard KPIs (booked, show/offer/close rates, revenue, pending PCFs)
- Closer table (per closer booked / showed / offers / closed / cash)
- Rep and setter leaderboards
- Calls report (enriched events, summary, source breakdown, filter options)
- Overdue PCFs by closer
- Table helpers: sort, paginate, search

Rate rules shared by every calculation:
- Only PAST events (scheduled_at < now) feed showed / no-show / offer /
  closed counts; future calls have no outcome yet
- Show rate = showed / (showed + no_shows)
- Offer and close rates are over showed
- Canceled and rescheduled calls are not booked calls
"""

import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .constants import (
    OUTCOME_NO_SHOW, OUTCOME_CLOSED, OFFER_OUTCOMES,
    STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_NO_SHOW,
    STATUS_RESCHEDULED,
    CANCELED_STATUSES, EXCLUDED_BOOKING_STATUSES,
    REP_LEADERBOARD_SORTS, SETTER_LEADERBOARD_SORTS,
    UNKNOWN_SOURCE, DEFAULT_PAGE_SIZE, DEFAULT_TIMEZONE,
)
from .fields import as_bool, as_dict, clean_str, is_missing, to_float, to_records, to_timestamp, utc_now
from .filters import EventFilters, apply_event_filters, matches_close_field_filters, matches_event_name_keywords
from .outcomes import is_booked, is_no_show, is_show
from .sources import (
    extract_campaign, extract_setter, extract_traffic_source, resolve_setter_name,
)

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _rate(numerator: float, denominator: float) -> float:
    """Percentage, 1 dp; 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return _round_half_up(numerator / denominator * 100, 1)


def _int_rate(numerator: float, denominator: float) -> int:
    if not denominator:
        return 0
    return int(_round_half_up(numerator / denominator * 100))


def net_revenue_by_event(payments) -> Dict[str, float]:
    """event_id -> sum(amount - refund_amount)."""
    revenue: Dict[str, float] = {}
    for payment in to_records(payments):
        event_id = payment.get('event_id')
        if event_id is None or (isinstance(event_id, float) and math.isnan(event_id)):
            continue
        net = to_float(payment.get('amount')) - to_float(payment.get('refund_amount'))
        revenue[event_id] = revenue.get(event_id, 0.0) + net
    return revenue


def _status(event: Mapping) -> str:
    return (clean_str(event.get('call_status')) or '').lower()


def _outcome(event: Mapping) -> Optional[str]:
    return clean_str(event.get('event_outcome'))


def _outcome_showed(event: Mapping) -> bool:
    outcome = _outcome(event)
    return bool(outcome) and outcome != OUTCOME_NO_SHOW


def _outcome_no_show(event: Mapping) -> bool:
    return _status(event) == STATUS_NO_SHOW or _outcome(event) == OUTCOME_NO_SHOW


def _closer_key(email, name) -> Optional[str]:
    email = clean_str(email)
    if email:
        return email.lower()
    name = clean_str(name)
    return name.lower() if name else None


def start_of_today(now=None, tz: str = DEFAULT_TIMEZONE) -> pd.Timestamp:
    """Local midnight of the current day, as UTC."""
    return utc_now(now).tz_convert(tz).normalize().tz_convert('UTC')


def _local_day_start(day: date, tz: str = DEFAULT_TIMEZONE) -> pd.Timestamp:
    return pd.Timestamp(datetime.combine(day, time.min)).tz_localize(tz).tz_convert('UTC')


def _as_bound(value, end: bool = False, tz: str = DEFAULT_TIMEZONE) -> Optional[pd.Timestamp]:
    """
    Date bounds are whole local days: a start date is its midnight, an end
    date is the following midnight (exclusive). Datetimes pass through.
    """
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return _local_day_start(value + timedelta(days=1) if end else value, tz)
    return to_timestamp(value)


# =============================================================================
# CALL METRICS
# =============================================================================

class CallMetrics:
    """
    KPI calculations over one organization's events.

    Usage:
        metrics = CallMetrics(events_df, payments_df)

        kpis = metrics.calculate_dashboard_metrics()
        closers = metrics.calculate_closer_metrics()
        leaderboard = metrics.calculate_rep_leaderboard(closers_df, 'revenue')
        report = metrics.build_calls_report(filters)
    """

    def __init__(
        self,
        events_df: pd.DataFrame,
        payments_df: pd.DataFrame = None,
        pcfs_df: pd.DataFrame = None,
        now: datetime = None
    ):
        """
        Initialize with data.

        Args:
            events_df: Events already limited to the selected date range
            payments_df: Payments (filtered to these events where relevant)
            pcfs_df: Post-call forms, used for cash collected on the closer table
            now: Override of the current time, for tests
        """
        self.events = to_records(events_df)
        self.payments_df = payments_df if payments_df is not None else pd.DataFrame()
        self.pcfs_df = pcfs_df if pcfs_df is not None else pd.DataFrame()
        self.now = utc_now(now)
        self._revenue = net_revenue_by_event(self.payments_df)

    def _is_past(self, event: Mapping) -> bool:
        scheduled = to_timestamp(event.get('scheduled_at'))
        return scheduled is not None and scheduled < self.now

    def _past(self, events: Sequence[Mapping]) -> List[Mapping]:
        return [e for e in events if self._is_past(e)]

    def _revenue_for(self, events: Sequence[Mapping]) -> float:
        return sum(self._revenue.get(e.get('id'), 0.0) for e in events)

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    def calculate_dashboard_metrics(self) -> Dict:
        """
        Calculate KPI cards for the dashboard.

        Returns:
            Dict with counts, rates (1 dp) and revenue
        """
        events = self.events
        past = self._past(events)

        showed = sum(1 for e in past if is_show(e))
        no_shows = sum(1 for e in past if is_no_show(e))
        offers = sum(1 for e in past if _outcome(e) in OFFER_OUTCOMES)
        closed = sum(1 for e in past if _outcome(e) == OUTCOME_CLOSED)

        pending_pcfs = sum(
            1 for e in past
            if not as_bool(e.get('pcf_submitted')) and _status(e) not in CANCELED_STATUSES
        )

        event_ids = {e.get('id') for e in events}
        revenue = sum(v for k, v in self._revenue.items() if k in event_ids)

        metrics = {
            'total_calls': len(events),
            'scheduled_calls': sum(1 for e in events if _status(e) == STATUS_SCHEDULED),
            'booked_calls': sum(1 for e in events if is_booked(e)),
            'completed_calls': sum(1 for e in events if _status(e) == STATUS_COMPLETED),
            'no_show_calls': sum(1 for e in events if _status(e) == STATUS_NO_SHOW),
            'canceled': sum(1 for e in events if _status(e) in CANCELED_STATUSES),
            'rescheduled': sum(1 for e in events if _status(e) == STATUS_RESCHEDULED),
            'showed': showed,
            'no_shows': no_shows,
            'offers_made': offers,
            'closed': closed,
            'show_rate': _rate(showed, showed + no_shows),
            'offer_rate': _rate(offers, showed),
            'close_rate': _rate(closed, showed),
            'revenue': revenue,
            'pending_pcfs': pending_pcfs,
        }

        logger.debug(f"Dashboard metrics over {len(events)} events: {metrics}")
        return metrics

    # =========================================================================
    # CLOSER TABLE
    # =========================================================================

    def get_event_closers(self) -> List[Dict]:
        """Closers seen on events, deduped by email (else name), sorted by name."""
        closers: Dict[str, Dict] = {}
        for event in self.events:
            name = clean_str(event.get('closer_name'))
            if not name:
                continue
            key = _closer_key(event.get('closer_email'), name)
            if key not in closers:
                closers[key] = {'name': name, 'email': clean_str(event.get('closer_email'))}
        return sorted(closers.values(), key=lambda c: c['name'].lower())

    def calculate_closer_metrics(
        self,
        closers_df: pd.DataFrame = None,
        event_name_keywords: Optional[Sequence[str]] = None
    ) -> pd.DataFrame:
        """
        One row per closer for the closer performance table.

        Cash collected is the larger of payment revenue and the PCF
        cash_collected total, since either can lag the other.

        Args:
            closers_df: Closer rows (name, email); defaults to the closers on events
            event_name_keywords: Keep only events whose name matches a keyword

        Returns:
            DataFrame sorted by name
        """
        if closers_df is not None and not closers_df.empty:
            closer_rows = to_records(closers_df)
        else:
            closer_rows = self.get_event_closers()

        groups: Dict[str, Dict] = {}
        for closer in closer_rows:
            key = _closer_key(closer.get('email'), closer.get('name'))
            if key and key not in groups:
                groups[key] = {'closer': closer, 'events': []}

        name_keys = {}
        for key, group in groups.items():
            name = clean_str(group['closer'].get('name'))
            if name:
                name_keys.setdefault(name.lower(), key)

        events = [
            e for e in self.events
            if matches_event_name_keywords(e.get('event_name'), event_name_keywords)
        ]
        event_keys = {}
        for event in events:
            key = _closer_key(event.get('closer_email'), event.get('closer_name'))
            if key not in groups:
                name = clean_str(event.get('closer_name'))
                key = name_keys.get(name.lower()) if name else None
            if key:
                groups[key]['events'].append(event)
                event_keys[event.get('id')] = key

        pcf_cash: Dict[str, float] = {}
        for pcf in to_records(self.pcfs_df):
            key = event_keys.get(pcf.get('event_id'))
            if key is None:
                name = clean_str(pcf.get('closer_name'))
                key = name_keys.get(name.lower()) if name else None
            if key:
                pcf_cash[key] = pcf_cash.get(key, 0.0) + to_float(pcf.get('cash_collected'))

        rows = []
        for key, group in groups.items():
            closer_events = group['events']
            active = [e for e in closer_events if is_booked(e)]
            past = self._past(active)

            showed = sum(1 for e in past if _outcome_showed(e))
            no_shows = sum(1 for e in past if _outcome(e) == OUTCOME_NO_SHOW)
            offers = sum(1 for e in past if _outcome(e) in OFFER_OUTCOMES)
            closed = sum(1 for e in past if _outcome(e) == OUTCOME_CLOSED)
            booked = len(active)

            cash = max(self._revenue_for(closer_events), pcf_cash.get(key, 0.0))

            rows.append({
                'closer_key': key,
                'name': clean_str(group['closer'].get('name')) or key,
                'email': clean_str(group['closer'].get('email')) or '',
                'booked': booked,
                'showed': showed,
                'no_shows': no_shows,
                'offers_made': offers,
                'closed': closed,
                'show_rate': _rate(showed, showed + no_shows),
                'offer_rate': _rate(offers, showed),
                'close_rate': _rate(closed, showed),
                'cash_collected': cash,
                'cash_per_booked_call': cash / booked if booked else 0.0,
            })

        df = pd.DataFrame(rows)
        if df.empty:
            return df
        return df.sort_values('name', key=lambda s: s.str.lower()).reset_index(drop=True)

    # =========================================================================
    # LEADERBOARDS
    # =========================================================================

    def calculate_rep_leaderboard(
        self,
        closers_df: pd.DataFrame,
        sort_by: str = 'revenue',
        has_date_range: bool = True
    ) -> pd.DataFrame:
        """
        Per-closer leaderboard.

        Events match a closer by closer_id (id or user_id) or by
        case-insensitive closer_name.

        Args:
            closers_df: Closer rows (id, name, email, optional user_id)
            sort_by: One of REP_LEADERBOARD_SORTS
            has_date_range: When False only past events are counted

        Returns:
            DataFrame sorted descending by `sort_by`
        """
        if sort_by not in REP_LEADERBOARD_SORTS:
            logger.warning(f"Unknown leaderboard sort '{sort_by}', using revenue")
            sort_by = 'revenue'

        events = self.events if has_date_range else self._past(self.events)

        rows = []
        for closer in to_records(closers_df):
            ids = {str(v) for v in (closer.get('id'), closer.get('user_id')) if clean_str(v)}
            name = (clean_str(closer.get('name')) or '').lower()

            rep_events = [
                e for e in events
                if (clean_str(e.get('closer_id')) and str(e.get('closer_id')) in ids)
                or (name and (clean_str(e.get('closer_name')) or '').lower() == name)
            ]
            past = self._past(rep_events)

            completed = sum(1 for e in rep_events if _status(e) == STATUS_COMPLETED)
            no_shows = sum(1 for e in rep_events if _status(e) == STATUS_NO_SHOW)
            showed = sum(1 for e in past if _outcome_showed(e))
            offers = sum(1 for e in past if _outcome(e) in OFFER_OUTCOMES)
            deals = sum(1 for e in past if _outcome(e) == OUTCOME_CLOSED)
            past_no_shows = sum(1 for e in past if _status(e) == STATUS_NO_SHOW)
            revenue = self._revenue_for(rep_events)

            rows.append({
                'closer_id': closer.get('id'),
                'name': clean_str(closer.get('name')) or 'Unknown',
                'email': clean_str(closer.get('email')) or '',
                'total_calls': len(rep_events),
                'completed_calls': completed,
                'no_shows': no_shows,
                'showed': showed,
                'offers_made': offers,
                'deals_closed': deals,
                'show_rate': _rate(showed, showed + past_no_shows),
                'offer_rate': _rate(offers, showed),
                'close_rate': _rate(deals, showed),
                'revenue': revenue,
                'avg_deal_size': int(_round_half_up(revenue / deals)) if deals else 0,
            })

        df = pd.DataFrame(rows)
        if df.empty:
            return df
        return df.sort_values(sort_by, ascending=False, kind='stable').reset_index(drop=True)

    def calculate_setter_leaderboard(
        self,
        setters_df: pd.DataFrame,
        alias_map: Optional[Mapping[str, str]] = None,
        sort_by: str = 'calls_set'
    ) -> pd.DataFrame:
        """
        Per-setter leaderboard over active setters.

        The raw setter is the CRM setter_name, else the UTM utm_setter, run
        through the alias map. Events whose setter is not an active setter
        are ignored. Rates are whole percentages.
        """
        if sort_by not in SETTER_LEADERBOARD_SORTS:
            sort_by = 'calls_set'

        active = [
            s for s in to_records(setters_df)
            if clean_str(s.get('name')) and as_bool(s.get('is_active', True))
        ]
        if not active:
            return pd.DataFrame()

        valid_names = {clean_str(s.get('name')).lower() for s in active}
        stats: Dict[str, Dict] = {}

        for event in self.events:
            crm_setter = clean_str(event.get('setter_name'))
            utm_setter = clean_str(as_dict(event.get('booking_metadata')).get('utm_setter'))
            setter = resolve_setter_name(crm_setter or utm_setter, alias_map)
            if not setter or setter.lower() not in valid_names:
                continue

            entry = stats.setdefault(setter, {
                'calls_set': 0, 'showed': 0, 'no_shows': 0, 'closed': 0,
                'has_crm': False, 'has_utm': False,
            })
            entry['has_crm'] |= bool(crm_setter)
            entry['has_utm'] |= bool(utm_setter)
            entry['calls_set'] += 1

            if not self._is_past(event):
                continue
            if _outcome_showed(event):
                entry['showed'] += 1
            if _outcome(event) == OUTCOME_NO_SHOW:
                entry['no_shows'] += 1
            if _outcome(event) == OUTCOME_CLOSED:
                entry['closed'] += 1

        rows = []
        for name, data in stats.items():
            if data['has_crm'] and data['has_utm']:
                source = 'mixed'
            elif data['has_utm']:
                source = 'utm'
            else:
                source = 'crm'
            rows.append({
                'name': name,
                'attribution_source': source,
                'calls_set': data['calls_set'],
                'showed': data['showed'],
                'no_shows': data['no_shows'],
                'closed': data['closed'],
                'show_rate': _int_rate(data['showed'], data['showed'] + data['no_shows']),
                'close_rate': _int_rate(data['closed'], data['showed']),
            })

        df = pd.DataFrame(rows)
        if df.empty:
            return df
        return df.sort_values(sort_by, ascending=False, kind='stable').reset_index(drop=True)

    # =========================================================================
    # CALLS REPORT
    # =========================================================================

    def enrich_events(self) -> List[Dict]:
        """Add traffic_source, setter, campaign and revenue to each event."""
        enriched = []
        for event in self.events:
            row = dict(event)
            row['traffic_source'] = extract_traffic_source(event)
            row['setter'] = extract_setter(event)
            row['utm_campaign'] = extract_campaign(event)
            row['revenue'] = self._revenue.get(event.get('id'), 0.0)
            enriched.append(row)
        return enriched

    def build_calls_report(
        self,
        filters: EventFilters = None,
        alias_map: Optional[Mapping[str, str]] = None
    ) -> Dict:
        """
        Build the calls report.

        Filter options come from the unfiltered events so a selection can
        always be undone.

        Returns:
            Dict with events (DataFrame), summary, source_breakdown (DataFrame)
            and available_sources / closers / setters / event_types lists
        """
        enriched = self.enrich_events()
        events_df = pd.DataFrame(enriched)

        if filters is not None and not events_df.empty:
            events_df = apply_event_filters(events_df, filters, alias_map)

        rows = to_records(events_df)
        if not events_df.empty and 'scheduled_at' in events_df.columns:
            events_df = events_df.sort_values('scheduled_at', ascending=False).reset_index(drop=True)

        return {
            'events': events_df,
            'summary': self._report_summary(rows),
            'source_breakdown': self.source_breakdown(rows),
            'available_sources': _unique_sorted(e.get('traffic_source') for e in enriched),
            'available_closers': _unique_sorted(e.get('closer_name') for e in enriched),
            'available_setters': _unique_sorted(e.get('setter') for e in enriched),
            'available_event_types': _unique_sorted(e.get('event_name') for e in enriched),
        }

    def _report_summary(self, rows: Sequence[Mapping]) -> Dict:
        past = self._past(rows)
        showed = sum(1 for e in past if _outcome_showed(e))
        no_shows = sum(1 for e in past if _outcome_no_show(e))
        closed = sum(1 for e in past if _outcome(e) == OUTCOME_CLOSED)
        return {
            'total_calls': len(rows),
            'showed': showed,
            'no_shows': no_shows,
            'show_rate': _rate(showed, showed + no_shows),
            'closed': closed,
            'close_rate': _rate(closed, showed),
            'revenue': sum(to_float(r.get('revenue')) for r in rows),
        }

    def source_breakdown(self, rows: Optional[Sequence[Mapping]] = None) -> pd.DataFrame:
        """
        Per traffic source: scheduled, booked (has booked_at), past showed /
        no-shows / closed, revenue and rates. Sorted by scheduled count.
        """
        if rows is None:
            rows = self.enrich_events()

        breakdown: Dict[str, Dict] = {}
        for event in rows:
            source = clean_str(event.get('traffic_source')) or UNKNOWN_SOURCE
            item = breakdown.setdefault(source, {
                'source': source, 'scheduled_count': 0, 'booked_count': 0,
                'showed': 0, 'no_shows': 0, 'closed': 0, 'revenue': 0.0,
            })
            item['scheduled_count'] += 1
            if not is_missing(event.get('booked_at')):
                item['booked_count'] += 1
            if self._is_past(event):
                if _outcome_showed(event):
                    item['showed'] += 1
                if _outcome_no_show(event):
                    item['no_shows'] += 1
                if _outcome(event) == OUTCOME_CLOSED:
                    item['closed'] += 1
            item['revenue'] += to_float(event.get('revenue'))

        items = []
        for item in breakdown.values():
            item['show_rate'] = _rate(item['showed'], item['showed'] + item['no_shows'])
            item['close_rate'] = _rate(item['closed'], item['showed'])
            items.append(item)

        df = pd.DataFrame(items)
        if df.empty:
            return df
        return df.sort_values('scheduled_count', ascending=False, kind='stable').reset_index(drop=True)

    # =========================================================================
    # OVERDUE PCFs
    # =========================================================================

    def calculate_overdue_pcfs(
        self,
        end_date=None,
        start_date=None,
        close_filters: Optional[Mapping[str, Optional[str]]] = None
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Events still waiting for a PCF.

        Overdue means not submitted, scheduled before min(end_date, start of
        today in local time) and not canceled / rescheduled.

        Returns:
            (overdue events sorted newest first, counts by closer sorted desc)
        """
        cutoff = start_of_today(self.now)
        end_bound = _as_bound(end_date, end=True)
        if end_bound is not None and end_bound < cutoff:
            cutoff = end_bound
        start_bound = _as_bound(start_date)

        overdue = []
        for event in self.events:
            if as_bool(event.get('pcf_submitted')):
                continue
            if _status(event) in EXCLUDED_BOOKING_STATUSES:
                continue
            scheduled = to_timestamp(event.get('scheduled_at'))
            if scheduled is None or scheduled >= cutoff:
                continue
            if start_bound is not None and scheduled < start_bound:
                continue
            if not matches_close_field_filters(event.get('close_custom_fields'), close_filters):
                continue
            overdue.append(event)

        overdue_df = pd.DataFrame(overdue)
        if not overdue_df.empty:
            overdue_df = overdue_df.sort_values('scheduled_at', ascending=False).reset_index(drop=True)

        counts: Dict[str, int] = {}
        for event in overdue:
            name = clean_str(event.get('closer_name')) or 'Unknown'
            counts[name] = counts.get(name, 0) + 1
        by_closer = pd.DataFrame(
            sorted(counts.items(), key=lambda kv: kv[1], reverse=True),
            columns=['name', 'count']
        )

        logger.info(f"⏰ {len(overdue)} overdue PCFs")
        return overdue_df, by_closer


def _unique_sorted(values) -> List[str]:
    return sorted({v for v in (clean_str(x) for x in values) if v})


# =============================================================================
# TABLE HELPERS
# =============================================================================

def sort_records(df: pd.DataFrame, column: str, ascending: bool = True) -> pd.DataFrame:
    """Stable sort with missing values last; text sorts case-insensitively."""
    if df.empty or column not in df.columns:
        return df
    key = None
    if df[column].dtype == object:
        key = lambda s: s.map(lambda v: v.lower() if isinstance(v, str) else v)
    return df.sort_values(
        column, ascending=ascending, na_position='last', kind='stable', key=key
    ).reset_index(drop=True)


def paginate(df: pd.DataFrame, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[pd.DataFrame, int]:
    """
    Slice one page (1-based). Out-of-range pages clamp to the last page.

    Returns:
        (page DataFrame, total pages), total pages is at least 1
    """
    page_size = max(1, int(page_size))
    total_pages = max(1, math.ceil(len(df) / page_size))
    page = min(max(1, int(page)), total_pages)
    start = (page - 1) * page_size
    return df.iloc[start:start + page_size], total_pages


def search_records(df: pd.DataFrame, term: Optional[str], columns: Sequence[str]) -> pd.DataFrame:
    """Case-insensitive substring match on any of the given columns."""
    needle = (term or '').strip().lower()
    if not needle or df.empty:
        return df
    mask = pd.Series(False, index=df.index)
    for column in columns:
        if column in df.columns:
            mask |= df[column].fillna('').astype(str).str.lower().str.contains(needle, regex=False)
    return df[mask]
