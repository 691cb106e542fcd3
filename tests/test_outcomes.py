"""Tests for call outcome classification."""

import pytest

from utils.sales_ops.constants import (
    OUTCOME_CANCELED, OUTCOME_CLOSED, OUTCOME_LOST, OUTCOME_NO_OFFER, OUTCOME_NO_SHOW,
    OUTCOME_NOT_QUALIFIED, OUTCOME_OFFER_NO_CLOSE, OUTCOME_RESCHEDULED,
    STATUS_CANCELED, STATUS_COMPLETED, STATUS_NO_SHOW, STATUS_RESCHEDULED,
)
from utils.sales_ops.outcomes import (
    classify_outcome_label, classify_pipeline_status, derive_event_outcome,
    is_booked, is_closed_status, is_no_show, is_show,
)


class TestClassifyPipelineStatus:

    def test_closed_won_is_closed(self):
        result = classify_pipeline_status("Closed Won", lead_showed=True, offer_made=True)
        assert result.event_outcome == OUTCOME_CLOSED
        assert result.call_status == STATUS_COMPLETED
        assert result.deal_closed is True

    def test_closed_match_is_exact(self):
        assert is_closed_status("Closed Won")
        assert is_closed_status(" Won ")
        assert not is_closed_status("won")
        assert not is_closed_status("closed won")
        assert not is_closed_status("Closed Won - Pending Contract")
        assert not is_closed_status(None)

    def test_lowercase_won_is_not_closed(self):
        result = classify_pipeline_status("won", lead_showed=True, offer_made=True)
        assert result.deal_closed is False

    def test_no_show_status_wins_over_answers(self):
        result = classify_pipeline_status("No-Show", lead_showed=True, offer_made=True)
        assert result.event_outcome == OUTCOME_NO_SHOW
        assert result.call_status == STATUS_NO_SHOW

    def test_canceled_flag_without_status(self):
        result = classify_pipeline_status(None, lead_showed=False, offer_made=False, was_canceled=True)
        assert result.event_outcome == OUTCOME_CANCELED
        assert result.call_status == STATUS_CANCELED

    def test_reschedule_status_substring(self):
        result = classify_pipeline_status("Needs Reschedule", lead_showed=True, offer_made=False)
        assert result.event_outcome == OUTCOME_RESCHEDULED
        assert result.call_status == STATUS_RESCHEDULED

    def test_disqualified_is_not_qualified(self):
        result = classify_pipeline_status("Disqualified", lead_showed=True, offer_made=False)
        assert result.event_outcome == OUTCOME_NOT_QUALIFIED
        assert result.call_status == STATUS_COMPLETED

    def test_lost_requires_exact_match(self):
        assert classify_pipeline_status("Lost", True, True).event_outcome == OUTCOME_LOST
        assert classify_pipeline_status("Lost Cause", True, True).event_outcome == OUTCOME_OFFER_NO_CLOSE

    @pytest.mark.parametrize("showed, offer, expected", [
        (False, False, OUTCOME_NO_SHOW),
        (True, True, OUTCOME_OFFER_NO_CLOSE),
        (True, False, OUTCOME_NO_OFFER),
    ])
    def test_falls_back_to_answers(self, showed, offer, expected):
        assert classify_pipeline_status("", showed, offer).event_outcome == expected


class TestClassifyOutcomeLabel:

    def test_paid_label_closes(self):
        result = classify_outcome_label("Closed - Paid", lead_showed=True, offer_made=True)
        assert result.event_outcome == OUTCOME_CLOSED
        assert result.deal_closed is True

    def test_not_qualified_label(self):
        assert classify_outcome_label("Not Qualified", True, False).event_outcome == OUTCOME_NOT_QUALIFIED

    def test_no_show_label(self):
        result = classify_outcome_label("No Show", True, False)
        assert result.event_outcome == OUTCOME_NO_SHOW
        assert result.call_status == STATUS_NO_SHOW

    def test_empty_label_uses_answers(self):
        assert classify_outcome_label(None, False, False).event_outcome == OUTCOME_NO_SHOW
        assert classify_outcome_label("", True, True).event_outcome == OUTCOME_OFFER_NO_CLOSE

    def test_unmatched_label_uses_offer(self):
        assert classify_outcome_label("Follow up next week", True, True).event_outcome == OUTCOME_OFFER_NO_CLOSE
        assert classify_outcome_label("Follow up next week", True, False).event_outcome == OUTCOME_NO_OFFER


class TestDeriveEventOutcome:

    def test_from_pcf(self):
        assert derive_event_outcome({'lead_showed': True, 'deal_closed': True}) == OUTCOME_CLOSED
        assert derive_event_outcome({'lead_showed': True, 'offer_made': 't'}) == OUTCOME_OFFER_NO_CLOSE
        assert derive_event_outcome({'lead_showed': False, 'deal_closed': True}) == OUTCOME_NO_SHOW

    def test_booking_platform_signals(self):
        assert derive_event_outcome(None, {'no_show_guest': True}) == OUTCOME_NO_SHOW
        assert derive_event_outcome(None, {'meeting_started_at': '2024-05-01T15:00:00Z'}) == OUTCOME_NO_OFFER
        assert derive_event_outcome(None, {}) is None
        assert derive_event_outcome(None) is None


class TestEventPredicates:

    def test_is_show(self):
        assert is_show({'event_outcome': OUTCOME_CLOSED})
        assert not is_show({'event_outcome': OUTCOME_NO_SHOW})
        assert is_show({'meeting_started_at': '2024-05-01T15:00:00Z'})
        assert not is_show({})

    def test_is_no_show(self):
        assert is_no_show({'call_status': STATUS_NO_SHOW})
        assert is_no_show({'no_show_guest': 'true'})
        assert not is_no_show({'event_outcome': OUTCOME_NO_OFFER})

    def test_is_booked_excludes_cancels_and_reschedules(self):
        assert is_booked({'call_status': 'scheduled'})
        assert is_booked({})
        assert not is_booked({'call_status': 'Cancelled'})
        assert not is_booked({'call_status': 'rescheduled'})
