# utils/sales_ops/outcomes.py
"""
Call Outcome Classification

Maps CRM pipeline statuses and post-call form answers onto the fixed
outcome set:

    no_show / rescheduled / canceled / not_qualified / lost /
    closed / showed_offer_no_close / showed_no_offer

Two entry points exist because two forms feed outcomes:
- classify_pipeline_status(): the dashboard PCF, where the closer picks a
  CRM opportunity status from a list
- classify_outcome_label(): the rep portal, where the outcome is a
  free-text label

derive_event_outcome() rebuilds an outcome from a stored PCF row, falling
back to booking-platform signals (no_show_guest, meeting_started_at).
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from .constants import (
    OUTCOME_NO_SHOW, OUTCOME_RESCHEDULED, OUTCOME_CANCELED,
    OUTCOME_NOT_QUALIFIED, OUTCOME_LOST, OUTCOME_CLOSED,
    OUTCOME_OFFER_NO_CLOSE, OUTCOME_NO_OFFER,
    STATUS_COMPLETED, STATUS_NO_SHOW, STATUS_CANCELED, STATUS_RESCHEDULED,
    EXCLUDED_BOOKING_STATUSES,
    CLOSED_STATUSES, NOT_QUALIFIED_STATUSES, LOST_STATUSES,
    RESCHEDULED_STATUSES, CANCELED_PIPELINE_STATUSES, NO_SHOW_STATUSES,
    LABEL_CLOSED_KEYWORDS, LABEL_NOT_QUALIFIED_KEYWORDS, LABEL_LOST_KEYWORDS,
    LABEL_NO_SHOW_KEYWORDS, LABEL_RESCHEDULE_KEYWORDS, LABEL_CANCEL_KEYWORDS,
)
from .fields import as_bool, clean_str, is_missing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutcomeResult:
    """Result of classifying one call"""
    event_outcome: str
    call_status: str
    deal_closed: bool = False


# =============================================================================
# MATCHING HELPERS
# =============================================================================

def _matches_any(status: str, keywords: Iterable[str]) -> bool:
    """Case-insensitive equality or substring match."""
    lowered = status.lower()
    return any(lowered == k.lower() or k.lower() in lowered for k in keywords)


def _equals_any(status: str, keywords: Iterable[str]) -> bool:
    lowered = status.lower()
    return any(lowered == k.lower() for k in keywords)


def _contains_any(label: str, keywords: Iterable[str]) -> bool:
    return any(k in label for k in keywords)


def is_closed_status(status_name: Optional[str]) -> bool:
    """A deal only counts as closed on an exact closed-won status ("won" is not "Won")."""
    status = clean_str(status_name)
    return bool(status) and status in CLOSED_STATUSES


# =============================================================================
# CLASSIFIERS
# =============================================================================

def classify_pipeline_status(
    status_name: Optional[str],
    lead_showed: bool,
    offer_made: bool,
    was_canceled: bool = False,
    was_rescheduled: bool = False
) -> OutcomeResult:
    """
    Classify a PCF submission from the selected CRM pipeline status.

    Rules are checked top to bottom, first match wins. "Lost" must match
    exactly since it is a substring of unrelated statuses.

    Args:
        status_name: CRM opportunity status name (may be empty)
        lead_showed: Closer answered "lead showed"
        offer_made: Closer answered "offer made"
        was_canceled: Closer marked the call canceled
        was_rescheduled: Closer marked the call rescheduled

    Returns:
        OutcomeResult with event_outcome, call_status and deal_closed
    """
    status = clean_str(status_name) or ''
    deal_closed = is_closed_status(status)

    if status and _matches_any(status, NO_SHOW_STATUSES):
        return OutcomeResult(OUTCOME_NO_SHOW, STATUS_NO_SHOW, deal_closed)

    if was_canceled or (status and _matches_any(status, CANCELED_PIPELINE_STATUSES)):
        return OutcomeResult(OUTCOME_CANCELED, STATUS_CANCELED, deal_closed)

    if was_rescheduled or (status and _matches_any(status, RESCHEDULED_STATUSES)):
        return OutcomeResult(OUTCOME_RESCHEDULED, STATUS_RESCHEDULED, deal_closed)

    if status and _matches_any(status, NOT_QUALIFIED_STATUSES):
        return OutcomeResult(OUTCOME_NOT_QUALIFIED, STATUS_COMPLETED, deal_closed)

    if status and _equals_any(status, LOST_STATUSES):
        return OutcomeResult(OUTCOME_LOST, STATUS_COMPLETED, deal_closed)

    if not lead_showed:
        return OutcomeResult(OUTCOME_NO_SHOW, STATUS_NO_SHOW, deal_closed)

    if deal_closed:
        return OutcomeResult(OUTCOME_CLOSED, STATUS_COMPLETED, True)

    if offer_made:
        return OutcomeResult(OUTCOME_OFFER_NO_CLOSE, STATUS_COMPLETED, deal_closed)

    return OutcomeResult(OUTCOME_NO_OFFER, STATUS_COMPLETED, deal_closed)


def classify_outcome_label(
    label: Optional[str],
    lead_showed: bool,
    offer_made: bool
) -> OutcomeResult:
    """
    Classify a rep portal submission from its free-text outcome label.
    """
    text = (clean_str(label) or '').lower()

    if not text:
        if not lead_showed:
            return OutcomeResult(OUTCOME_NO_SHOW, STATUS_NO_SHOW)
        if offer_made:
            return OutcomeResult(OUTCOME_OFFER_NO_CLOSE, STATUS_COMPLETED)
        return OutcomeResult(OUTCOME_NO_OFFER, STATUS_COMPLETED)

    if _contains_any(text, LABEL_CLOSED_KEYWORDS):
        return OutcomeResult(OUTCOME_CLOSED, STATUS_COMPLETED, True)
    if _contains_any(text, LABEL_NOT_QUALIFIED_KEYWORDS):
        return OutcomeResult(OUTCOME_NOT_QUALIFIED, STATUS_COMPLETED)
    if _contains_any(text, LABEL_LOST_KEYWORDS):
        return OutcomeResult(OUTCOME_LOST, STATUS_COMPLETED)
    if _contains_any(text, LABEL_NO_SHOW_KEYWORDS):
        return OutcomeResult(OUTCOME_NO_SHOW, STATUS_NO_SHOW)
    if _contains_any(text, LABEL_RESCHEDULE_KEYWORDS):
        return OutcomeResult(OUTCOME_RESCHEDULED, STATUS_RESCHEDULED)
    if _contains_any(text, LABEL_CANCEL_KEYWORDS):
        return OutcomeResult(OUTCOME_CANCELED, STATUS_CANCELED)
    if offer_made:
        return OutcomeResult(OUTCOME_OFFER_NO_CLOSE, STATUS_COMPLETED)
    return OutcomeResult(OUTCOME_NO_OFFER, STATUS_COMPLETED)


def derive_event_outcome(pcf: Optional[Mapping], event: Optional[Mapping] = None) -> Optional[str]:
    """
    Outcome for an event from its stored PCF.

    Without a PCF, booking-platform signals are used: a guest no-show flag
    means no_show, a started meeting means the lead at least showed.
    """
    if not pcf:
        if event:
            if as_bool(event.get('no_show_guest')):
                return OUTCOME_NO_SHOW
            if not is_missing(event.get('meeting_started_at')):
                return OUTCOME_NO_OFFER
        return None

    if not as_bool(pcf.get('lead_showed')):
        return OUTCOME_NO_SHOW
    if as_bool(pcf.get('deal_closed')):
        return OUTCOME_CLOSED
    if as_bool(pcf.get('offer_made')):
        return OUTCOME_OFFER_NO_CLOSE
    return OUTCOME_NO_OFFER


# =============================================================================
# EVENT PREDICATES
# =============================================================================

def is_no_show(event: Mapping) -> bool:
    return (
        clean_str(event.get('event_outcome')) == OUTCOME_NO_SHOW
        or clean_str(event.get('call_status')) == STATUS_NO_SHOW
        or as_bool(event.get('no_show_guest'))
    )


def is_show(event: Mapping) -> bool:
    outcome = clean_str(event.get('event_outcome'))
    if outcome and outcome != OUTCOME_NO_SHOW:
        return True
    return not is_missing(event.get('meeting_started_at'))


def is_booked(event: Mapping) -> bool:
    status = (clean_str(event.get('call_status')) or '').lower()
    return status not in EXCLUDED_BOOKING_STATUSES
