# utils/sales_ops/custom_metrics.py
"""
Custom Metric Evaluation

Admin-defined dashboard metrics stored in `metric_definitions`:
- count:      number of records matching the numerator conditions
- sum:        sum of `numerator_field` over matching records
- average:    mean of `numerator_field` over matching records
- percentage: matching numerator records / matching denominator records

Data sources are events (with flattened PCF answers), payments, or a yes/no
PCF form field (`pcf_fields`, answered as {"response": true|false}).

Usage:
    definitions = [MetricDefinition.from_row(r) for r in rows]
    events = enrich_events(events_df, pcf_df)
    results = calculate_metrics(definitions, events, payments_df,
                                start=start, end=end)
    results[metric_id].formatted  # "42%"
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .constants import (
    OUTCOME_NO_SHOW, STATUS_CANCELED, STATUS_RESCHEDULED,
)
from .fields import (
    as_bool, as_dict, clean_str, is_missing, to_float, to_records,
    to_timestamp, utc_now,
)
from .outcomes import derive_event_outcome

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

METRIC_FORMULA_TYPES = ['count', 'sum', 'average', 'percentage']
METRIC_DATA_SOURCES = ['events', 'payments', 'pcf_fields']
METRIC_DATE_FIELDS = ['scheduled_at', 'booked_at', 'payment_date', 'created_at']
CONDITION_OPERATORS = ['equals', 'not_equals', 'in']

BOOLEAN_FIELDS = {'pcf_submitted', 'lead_showed', 'offer_made', 'deal_closed'}
CURRENCY_FIELDS = {'amount', 'net_revenue'}

# Fields offered in the metric builder, per data source
DATA_SOURCE_FIELDS = {
    'events': [
        ('event_outcome', 'Call Outcome'),
        ('call_status', 'Call Status'),
        ('pcf_submitted', 'PCF Submitted'),
        ('lead_showed', 'Lead Showed (PCF)'),
        ('offer_made', 'Offer Made (PCF)'),
        ('deal_closed', 'Deal Closed (PCF)'),
        ('booking_platform', 'Booking Platform'),
        ('closer_name', 'Closer'),
        ('setter_name', 'Setter'),
    ],
    'payments': [
        ('amount', 'Amount'),
        ('net_revenue', 'Net Revenue'),
        ('refund_amount', 'Refund Amount'),
        ('payment_type', 'Payment Type'),
    ],
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class FilterCondition:
    field: str
    operator: str = 'equals'
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping) -> 'FilterCondition':
        return cls(
            field=data.get('field', ''),
            operator=data.get('operator', 'equals'),
            value=data.get('value'),
        )


@dataclass
class MetricDefinition:
    id: str
    name: str
    formula_type: str = 'count'
    data_source: str = 'events'
    numerator_field: Optional[str] = None
    numerator_conditions: List[FilterCondition] = field(default_factory=list)
    denominator_conditions: List[FilterCondition] = field(default_factory=list)
    include_no_shows: bool = False
    include_cancels: bool = False
    include_reschedules: bool = False
    exclude_overdue_pcf: bool = False
    date_field: Optional[str] = None
    pcf_field_id: Optional[str] = None
    display_name: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0

    @classmethod
    def from_row(cls, row: Mapping) -> 'MetricDefinition':
        """Build from a `metric_definitions` row (JSON condition columns decoded)."""
        return cls(
            id=str(row['id']),
            name=row.get('name') or '',
            display_name=row.get('display_name'),
            formula_type=row.get('formula_type') or 'count',
            data_source=row.get('data_source') or 'events',
            numerator_field=clean_str(row.get('numerator_field')),
            numerator_conditions=_parse_conditions(row.get('numerator_conditions')),
            denominator_conditions=_parse_conditions(row.get('denominator_conditions')),
            include_no_shows=as_bool(row.get('include_no_shows')),
            include_cancels=as_bool(row.get('include_cancels')),
            include_reschedules=as_bool(row.get('include_reschedules')),
            exclude_overdue_pcf=as_bool(row.get('exclude_overdue_pcf')),
            date_field=clean_str(row.get('date_field')),
            pcf_field_id=clean_str(row.get('pcf_field_id')),
            is_active=as_bool(row.get('is_active', True)),
            sort_order=int(to_float(row.get('sort_order'))),
        )

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def effective_date_field(self) -> str:
        if self.date_field:
            return self.date_field
        return 'payment_date' if self.data_source == 'payments' else 'scheduled_at'


@dataclass
class MetricResult:
    metric_id: str
    value: float
    formatted: str
    numerator: float = 0
    denominator: Optional[int] = None


def _parse_conditions(raw) -> List[FilterCondition]:
    """Conditions column may hold a list, JSON text, an empty object or nothing."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed metric conditions: {raw[:80]}")
            return []
    if not isinstance(raw, list):
        return []
    return [FilterCondition.from_dict(c) for c in raw if isinstance(c, Mapping)]


# =============================================================================
# CONDITIONS
# =============================================================================

def _condition_matches(record: Mapping, condition: FilterCondition) -> bool:
    value = record.get(condition.field)
    if is_missing(value):
        return False

    if condition.field in BOOLEAN_FIELDS and isinstance(condition.value, str):
        expected = condition.value.strip().lower() == 'true'
        actual = as_bool(value)
        if condition.operator == 'equals':
            return actual == expected
        if condition.operator == 'not_equals':
            return actual != expected

    if condition.operator == 'equals':
        return value == condition.value
    if condition.operator == 'not_equals':
        return value != condition.value
    if condition.operator == 'in':
        return isinstance(condition.value, (list, tuple)) and value in condition.value
    return True


def matches_conditions(record: Mapping, conditions: Sequence[FilterCondition]) -> bool:
    """All conditions must hold. Missing values never match, even for not_equals."""
    return all(_condition_matches(record, c) for c in conditions or [])


def apply_conditions(records: Sequence[Mapping], conditions: Sequence[FilterCondition]) -> List[Mapping]:
    if not conditions:
        return list(records)
    return [r for r in records if matches_conditions(r, conditions)]


# =============================================================================
# EVENT ENRICHMENT
# =============================================================================

def enrich_events(events, pcfs=None) -> List[Dict]:
    """
    Flatten PCF answers onto events and settle the outcome used by metrics.

    Outcome precedence: PCF-derived, then booking-platform signals (only when
    no outcome is stored), then the stored event_outcome.
    """
    pcf_by_event = {}
    for pcf in to_records(pcfs):
        event_id = pcf.get('event_id')
        if event_id is not None and event_id not in pcf_by_event:
            pcf_by_event[event_id] = pcf

    enriched = []
    for event in to_records(events):
        pcf = pcf_by_event.get(event.get('id'))
        stored = clean_str(event.get('event_outcome'))

        derived = derive_event_outcome(pcf)
        if derived is None and stored is None:
            derived = derive_event_outcome(None, event)

        row = dict(event)
        row['event_outcome'] = derived or stored
        row['has_pcf'] = pcf is not None
        row['pcf_submitted'] = as_bool(event.get('pcf_submitted'))
        if pcf is not None:
            row['lead_showed'] = as_bool(pcf.get('lead_showed'))
            row['offer_made'] = as_bool(pcf.get('offer_made'))
            row['deal_closed'] = as_bool(pcf.get('deal_closed'))
        else:
            row['lead_showed'] = not is_missing(event.get('meeting_started_at'))
            row['offer_made'] = False
            row['deal_closed'] = False
        enriched.append(row)
    return enriched


def filter_by_date_field(
    records: Sequence[Mapping],
    date_field: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> List[Mapping]:
    """Inclusive date window; undated records drop out once a window is set."""
    if start is None and end is None:
        return list(records)

    start_ts = to_timestamp(start)
    end_ts = to_timestamp(end)
    kept = []
    for record in records:
        ts = to_timestamp(record.get(date_field))
        if ts is None:
            continue
        if start_ts is not None and ts < start_ts:
            continue
        if end_ts is not None and ts > end_ts:
            continue
        kept.append(record)
    return kept


# =============================================================================
# CALCULATION
# =============================================================================

def _is_empty_conditions(conditions) -> bool:
    return not conditions


def _apply_event_toggles(records: List[Mapping], metric: MetricDefinition, now) -> List[Mapping]:
    filtered = records
    if not metric.include_cancels:
        filtered = [e for e in filtered if e.get('call_status') != STATUS_CANCELED]
    if not metric.include_reschedules:
        filtered = [e for e in filtered if e.get('call_status') != STATUS_RESCHEDULED]
    if metric.exclude_overdue_pcf:
        def is_overdue(e):
            scheduled = to_timestamp(e.get('scheduled_at'))
            return scheduled is not None and scheduled < now and not as_bool(e.get('pcf_submitted'))
        filtered = [e for e in filtered if not is_overdue(e)]
    return filtered


def _percentage_pools(metric: MetricDefinition, source: List[Mapping], filtered: List[Mapping]):
    numerator_conditions = metric.numerator_conditions
    denominator_conditions = metric.denominator_conditions

    uses_call_status = any(c.field == 'call_status' for c in numerator_conditions)
    if uses_call_status:
        # Cancel / reschedule rates need the canceled and rescheduled rows back
        return list(source), list(source)

    numerator_pool = filtered
    denominator_pool = filtered
    with_outcome = [e for e in filtered if not is_missing(e.get('event_outcome'))]

    numerator_uses_outcome = any(c.field == 'event_outcome' for c in numerator_conditions)
    if numerator_uses_outcome or _is_empty_conditions(numerator_conditions):
        numerator_pool = with_outcome
        if not metric.include_no_shows:
            numerator_pool = [e for e in numerator_pool if e.get('event_outcome') != OUTCOME_NO_SHOW]

    denominator_empty = _is_empty_conditions(denominator_conditions)
    denominator_uses_outcome = any(c.field == 'event_outcome' for c in denominator_conditions)
    if denominator_uses_outcome or denominator_empty:
        denominator_pool = with_outcome
        if not metric.include_no_shows and not denominator_empty:
            denominator_pool = [e for e in denominator_pool if e.get('event_outcome') != OUTCOME_NO_SHOW]

    return numerator_pool, denominator_pool


def calculate_metric_value(
    metric: MetricDefinition,
    events: Sequence[Mapping],
    payments: Sequence[Mapping],
    now: Optional[datetime] = None
) -> MetricResult:
    """
    Evaluate one metric over already date-filtered events / payments.
    """
    now_ts = utc_now(now)
    is_payment_metric = metric.data_source == 'payments'
    source = list(payments if is_payment_metric else events)

    filtered = source if is_payment_metric else _apply_event_toggles(source, metric, now_ts)

    value = 0.0
    numerator = 0.0
    denominator = None

    if metric.formula_type == 'count':
        value = float(len(apply_conditions(filtered, metric.numerator_conditions)))
        numerator = value

    elif metric.formula_type in ('sum', 'average'):
        matched = apply_conditions(filtered, metric.numerator_conditions)
        if metric.numerator_field:
            values = [to_float(r.get(metric.numerator_field)) for r in matched]
            total = sum(values)
            if metric.formula_type == 'average':
                value = total / len(values) if values else 0.0
            else:
                value = total
        value = round(value, 2)
        numerator = value

    elif metric.formula_type == 'percentage':
        numerator_pool, denominator_pool = _percentage_pools(metric, source, filtered)
        numerator_rows = apply_conditions(numerator_pool, metric.numerator_conditions)
        denominator_rows = apply_conditions(denominator_pool, metric.denominator_conditions)
        numerator = float(len(numerator_rows))
        denominator = len(denominator_rows)
        value = numerator / denominator * 100 if denominator > 0 else 0.0

    else:
        logger.warning(f"Unknown formula type '{metric.formula_type}' for metric {metric.id}")

    rounded = round(value, 2)
    return MetricResult(
        metric_id=metric.id,
        value=rounded,
        formatted=format_metric_value(rounded, metric.formula_type, metric.numerator_field),
        numerator=round(numerator),
        denominator=denominator,
    )


def calculate_pcf_field_metric(metric: MetricDefinition, responses: Sequence[Any]) -> MetricResult:
    """Yes-rate of a yes/no PCF question: responses are {"response": bool} values."""
    total = len(responses)
    yes = sum(1 for r in responses if as_dict(r).get('response') is True)
    rate = yes / total * 100 if total > 0 else 0.0
    return MetricResult(
        metric_id=metric.id,
        value=rate,
        formatted=f"{_round_half_up(rate)}%",
        numerator=yes,
        denominator=total,
    )


def calculate_metrics(
    metrics: Sequence[MetricDefinition],
    events,
    payments=None,
    pcf_field_values=None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> Dict[str, MetricResult]:
    """
    Evaluate every metric, each filtered on its own date field.

    Args:
        metrics: Metric definitions
        events: Enriched events (see enrich_events)
        payments: Payment rows
        pcf_field_values: {field_definition_id: [value, ...]} for pcf_fields metrics
        start, end: Dashboard date window

    Returns:
        {metric_id: MetricResult}
    """
    event_rows = to_records(events)
    payment_rows = to_records(payments)
    pcf_field_values = pcf_field_values or {}
    results = {}

    for metric in metrics:
        if metric.data_source == 'pcf_fields':
            if not metric.pcf_field_id:
                continue
            results[metric.id] = calculate_pcf_field_metric(
                metric, pcf_field_values.get(metric.pcf_field_id, [])
            )
            continue

        date_field = metric.effective_date_field
        scoped_events = filter_by_date_field(event_rows, date_field, start, end)
        scoped_payments = filter_by_date_field(payment_rows, date_field, start, end)
        results[metric.id] = calculate_metric_value(metric, scoped_events, scoped_payments, now)

    return results


# =============================================================================
# FORMATTING
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_metric_value(value: float, formula_type: str, numerator_field: Optional[str] = None) -> str:
    """
    Display string for a metric value.

    Examples:
        sum of amount     -> "$1,235"
        sum of other      -> "1,234.57"
        percentage        -> "43%"
        count             -> "1,234"
    """
    if formula_type in ('sum', 'average'):
        if numerator_field in CURRENCY_FIELDS:
            return f"${_round_half_up(value):,}"
        text = f"{value:,.2f}".rstrip('0').rstrip('.')
        return text
    if formula_type == 'percentage':
        return f"{_round_half_up(value)}%"
    return f"{_round_half_up(value):,}"
