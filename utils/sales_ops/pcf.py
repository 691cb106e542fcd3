# utils/sales_ops/pcf.py
"""
Post-Call Form (PCF) Submission

Record builders are pure functions so they can be tested without a
database. PCFService.submit() writes everything in one transaction:

    1. INSERT/UPDATE post_call_forms (one form per event)
    2. UPDATE events (status, outcome, pcf_submitted flags)
    3. UPSERT payments by event_id (closed deals with cash only)
    4. UPSERT custom_field_values for yes/no questions

CRM sync runs after the commit. A failed sync is logged and reported
back but never rolls the submission back.

Editing a submitted form passes its id (PCFSubmission.pcf_id); the same
flow then updates that form in place.

Form config (form_configs.fields) is a list of field dicts:
    {id, type, label, required, options: [{label, value}],
     conditionalOn, conditionalValue,
     crmSync: {syncType: 'notes' | 'pipeline_stage' | 'none', pipelineId}}

CHANGELOG:
- Dynamic form fields with conditional visibility
- Yes/no answers stored per field for pcf_fields metrics
- Pipeline stage pushed to the CRM along with the note
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import text

from utils.db import encode_params, get_transaction
from .errors import get_safe_error_message
from .fields import as_dict, clean_str, is_missing, to_float, utc_now
from .notifications import NotificationService
from .outcomes import OutcomeResult, classify_pipeline_status

logger = logging.getLogger(__name__)

CRM_NOTE_HEADER = "📞 Post-Call Form Submitted"
PCF_RECORD_TYPE = 'post_call_forms'

FIELD_TYPE_YES_NO = 'yes_no'
FIELD_TYPE_PIPELINE = 'pipeline_status'
SYNC_NOTES = 'notes'
SYNC_PIPELINE_STAGE = 'pipeline_stage'


@dataclass
class PCFSubmission:
    """What the closer entered for one call"""
    event_id: str
    closer_id: Optional[str] = None
    closer_name: Optional[str] = None
    lead_showed: bool = False
    offer_made: bool = False
    cash_collected: float = 0.0
    payment_type: Optional[str] = None
    notes: Optional[str] = None
    opportunity_status_id: Optional[str] = None
    opportunity_status_name: Optional[str] = None
    close_date: Optional[date] = None
    was_canceled: bool = False
    was_rescheduled: bool = False
    custom_fields: Dict[str, Any] = field(default_factory=dict)
    pcf_id: Optional[str] = None  # set when editing a submitted form

    def classify(self) -> OutcomeResult:
        return classify_pipeline_status(
            self.opportunity_status_name,
            self.lead_showed,
            self.offer_made,
            was_canceled=self.was_canceled,
            was_rescheduled=self.was_rescheduled,
        )


def resolve_pcf_closer(event: Mapping, user: Mapping) -> Tuple[Optional[str], Optional[str]]:
    """
    (closer_id, closer_name) recorded on the form.

    The event's closer when the booking has one, otherwise whoever is
    submitting the form.
    """
    closer_name = clean_str(event.get('closer_name'))
    closer_id = event.get('closer_id')
    if is_missing(closer_id):
        closer_id = None
    if closer_id or closer_name:
        return closer_id, closer_name
    return user.get('id'), clean_str(user.get('fullname')) or clean_str(user.get('email'))


def pcf_form_defaults(
    pcf: Optional[Mapping] = None,
    event: Optional[Mapping] = None,
    answers: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Initial form values: blank for a new form, the saved answers when
    editing one.
    """
    pcf = pcf or {}
    event = event or {}
    status = clean_str(event.get('call_status'))
    close_date = pcf.get('close_date')
    if is_missing(close_date):
        close_date = None
    elif isinstance(close_date, datetime):
        close_date = close_date.date()
    elif isinstance(close_date, str):
        close_date = date.fromisoformat(close_date[:10])

    return {
        'pcf_id': pcf.get('id'),
        'lead_showed': bool(pcf.get('lead_showed')) if not is_missing(pcf.get('lead_showed')) else False,
        'offer_made': bool(pcf.get('offer_made')) if not is_missing(pcf.get('offer_made')) else False,
        'was_canceled': bool(pcf) and status in ('canceled', 'cancelled'),
        'was_rescheduled': bool(pcf) and status == 'rescheduled',
        'cash_collected': to_float(pcf.get('cash_collected')),
        'payment_type': clean_str(pcf.get('payment_type')),
        'notes': clean_str(pcf.get('notes')) or '',
        'opportunity_status_id': clean_str(pcf.get('opportunity_status_id')),
        'close_date': close_date,
        'custom_fields': dict(answers or {}),
    }


# =============================================================================
# VALIDATION
# =============================================================================

def is_field_visible(form_field: Mapping, values: Mapping[str, Any]) -> bool:
    """Fields with conditionalOn only show when the parent has that value."""
    parent = form_field.get('conditionalOn')
    if not parent:
        return True
    wanted = form_field.get('conditionalValue')
    current = values.get(parent)
    if isinstance(current, bool):
        current = 'yes' if current else 'no'
    return str(current) == str(wanted)


def validate_submission(
    submission: PCFSubmission,
    form_fields: Sequence[Mapping] = ()
) -> List[str]:
    """
    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    if not submission.event_id:
        errors.append("Event is required")
    if not submission.closer_id and not clean_str(submission.closer_name):
        errors.append("Closer is required")
    if to_float(submission.cash_collected) < 0:
        errors.append("Cash collected cannot be negative")
    if submission.was_canceled and submission.was_rescheduled:
        errors.append("A call cannot be both canceled and rescheduled")

    for form_field in form_fields:
        if not form_field.get('required') or not is_field_visible(form_field, submission.custom_fields):
            continue
        value = submission.custom_fields.get(form_field.get('id'))
        if value is None or value == '' or (isinstance(value, float) and is_missing(value)):
            errors.append(f"{form_field.get('label') or form_field.get('id')} is required")

    return errors


# =============================================================================
# RECORD BUILDERS
# =============================================================================

def build_pcf_record(
    submission: PCFSubmission,
    organization_id: str,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Row for post_call_forms."""
    outcome = submission.classify()
    call_occurred = (
        submission.lead_showed
        and not submission.was_canceled
        and not submission.was_rescheduled
    )
    return {
        'event_id': submission.event_id,
        'organization_id': organization_id,
        'closer_id': submission.closer_id,
        'closer_name': clean_str(submission.closer_name),
        'call_occurred': bool(call_occurred),
        'lead_showed': bool(submission.lead_showed),
        'offer_made': bool(submission.offer_made),
        'deal_closed': outcome.deal_closed,
        'cash_collected': to_float(submission.cash_collected),
        'payment_type': submission.payment_type,
        'notes': clean_str(submission.notes),
        'opportunity_status_id': submission.opportunity_status_id,
        'close_date': submission.close_date,
        'submitted_at': utc_now(now).to_pydatetime(),
    }


def build_event_update(
    outcome: OutcomeResult,
    label: Optional[str] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Columns to set on events after a PCF."""
    return {
        'call_status': outcome.call_status,
        'event_outcome': outcome.event_outcome,
        'pcf_submitted': True,
        'pcf_submitted_at': utc_now(now).to_pydatetime(),
        'pcf_outcome_label': clean_str(label),
    }


def build_payment_record(
    submission: PCFSubmission,
    organization_id: str,
    deal_closed: bool,
    pcf_id: Optional[str] = None,
    event: Optional[Mapping] = None,
    now: Optional[datetime] = None
) -> Optional[Dict[str, Any]]:
    """
    Payment row for a closed deal, or None.

    payment_date is the close date when given, otherwise now.
    """
    amount = to_float(submission.cash_collected)
    if not deal_closed or amount <= 0:
        return None

    if submission.close_date:
        payment_date = submission.close_date
    else:
        payment_date = utc_now(now).to_pydatetime()

    event = event or {}
    return {
        'event_id': submission.event_id,
        'organization_id': organization_id,
        'amount': amount,
        'payment_type': submission.payment_type,
        'payment_date': payment_date,
        'closer_id': submission.closer_id or event.get('closer_id'),
        'setter_id': event.get('setter_id'),
        'source_id': event.get('source_id'),
        'pcf_id': pcf_id,
    }


def _display_value(form_field: Mapping, value: Any) -> str:
    for option in form_field.get('options') or []:
        if str(option.get('value')) == str(value):
            return str(option.get('label'))
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    return str(value)


def _has_value(value: Any) -> bool:
    return value is not None and value != ''


def build_crm_note(form_fields: Sequence[Mapping], values: Mapping[str, Any]) -> Optional[str]:
    """
    Note text for the CRM, or None when no field syncs as a note.

    Lines are `Label: value` with option labels in place of raw values. A
    free-text "Notes" field is appended once even without crmSync.
    """
    lines = []
    for form_field in form_fields:
        sync = as_dict(form_field.get('crmSync'))
        value = values.get(form_field.get('id'))
        if sync.get('syncType') != SYNC_NOTES or not _has_value(value):
            continue
        lines.append(f"{form_field.get('label')}: {_display_value(form_field, value)}")

    notes_field = next(
        (f for f in form_fields
         if f.get('type') == 'textarea'
         and (f.get('id') == 'notes' or str(f.get('label', '')).lower() == 'notes')),
        None
    )
    if notes_field and _has_value(values.get(notes_field.get('id'))):
        prefix = f"{notes_field.get('label')}:"
        if not any(line.startswith(prefix) for line in lines):
            lines.append(f"{prefix} {values.get(notes_field.get('id'))}")

    if not lines:
        return None
    return CRM_NOTE_HEADER + "\n" + "\n".join(lines)


def build_pipeline_stage(form_fields: Sequence[Mapping], values: Mapping[str, Any]) -> Optional[Dict[str, str]]:
    """{pipeline_id, stage_id} from the pipeline-stage field, if configured."""
    for form_field in form_fields:
        sync = as_dict(form_field.get('crmSync'))
        if sync.get('syncType') != SYNC_PIPELINE_STAGE:
            continue
        value = values.get(form_field.get('id'))
        pipeline_id = clean_str(sync.get('pipelineId'))
        if _has_value(value) and pipeline_id:
            return {'pipeline_id': pipeline_id, 'stage_id': str(value)}
    return None


def build_field_value_records(
    form_fields: Sequence[Mapping],
    values: Mapping[str, Any],
    pcf_id: str,
    organization_id: str
) -> List[Dict[str, Any]]:
    """custom_field_values rows for answered yes/no questions."""
    records = []
    for form_field in form_fields:
        if form_field.get('type') != FIELD_TYPE_YES_NO:
            continue
        value = values.get(form_field.get('id'))
        if value is None or value == '':
            continue
        if isinstance(value, str):
            value = value.strip().lower() in ('yes', 'true', '1')
        records.append({
            'field_definition_id': form_field.get('id'),
            'record_id': pcf_id,
            'record_type': PCF_RECORD_TYPE,
            'organization_id': organization_id,
            'value': {'response': bool(value)},
        })
    return records


# =============================================================================
# SERVICE
# =============================================================================

class PCFService:
    """
    Writes post-call forms.

    Usage:
        service = PCFService()
        result = service.submit(submission, organization_id, form_fields)
        if result['success']:
            st.cache_data.clear()
    """

    def __init__(self, notification_service: NotificationService = None):
        self._notifications = notification_service

    @property
    def notifications(self) -> NotificationService:
        if self._notifications is None:
            self._notifications = NotificationService()
        return self._notifications

    def submit(
        self,
        submission: PCFSubmission,
        organization_id: str,
        form_fields: Sequence[Mapping] = (),
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Save a PCF and everything it implies.

        Returns:
            {'success', 'pcf_id', 'event_outcome', 'deal_closed',
             'crm_synced', 'crm_message'} or {'success': False, 'error'}
        """
        errors = validate_submission(submission, form_fields)
        if errors:
            return {'success': False, 'error': "; ".join(errors)}

        outcome = submission.classify()
        label = submission.opportunity_status_name

        try:
            with get_transaction() as conn:
                event = self._get_event(conn, submission.event_id, organization_id)
                if event is None:
                    return {'success': False, 'error': "Event not found"}

                pcf_id = self._save_pcf(
                    conn, build_pcf_record(submission, organization_id, now), submission.pcf_id
                )
                if pcf_id is None:
                    return {'success': False, 'error': "Post-call form not found"}

                event_update = build_event_update(outcome, label, now)
                conn.execute(text("""
                    UPDATE events
                    SET call_status = :call_status,
                        event_outcome = :event_outcome,
                        pcf_submitted = :pcf_submitted,
                        pcf_submitted_at = :pcf_submitted_at,
                        pcf_outcome_label = :pcf_outcome_label
                    WHERE id = :event_id
                      AND organization_id = :organization_id
                """), {**event_update, 'event_id': submission.event_id, 'organization_id': organization_id})

                payment = build_payment_record(
                    submission, organization_id, outcome.deal_closed, pcf_id, event, now
                )
                if payment:
                    self._upsert_payment(conn, payment)

                for record in build_field_value_records(form_fields, submission.custom_fields, pcf_id, organization_id):
                    conn.execute(text("""
                        INSERT INTO custom_field_values
                            (field_definition_id, record_id, record_type, organization_id, value)
                        VALUES (:field_definition_id, :record_id, :record_type, :organization_id, CAST(:value AS jsonb))
                        ON CONFLICT (field_definition_id, record_id, record_type)
                        DO UPDATE SET value = EXCLUDED.value
                    """), encode_params(record))

        except Exception as e:
            logger.error(f"❌ Error submitting PCF for event {submission.event_id}: {e}", exc_info=True)
            return {'success': False, 'error': get_safe_error_message(e)}

        logger.info(
            f"✅ PCF saved for event {submission.event_id}: "
            f"{outcome.event_outcome} (closed={outcome.deal_closed})"
        )

        crm_synced, crm_message = self._sync_crm(
            organization_id, submission.event_id, form_fields, submission.custom_fields
        )

        return {
            'success': True,
            'pcf_id': pcf_id,
            'event_outcome': outcome.event_outcome,
            'call_status': outcome.call_status,
            'deal_closed': outcome.deal_closed,
            'crm_synced': crm_synced,
            'crm_message': crm_message,
        }

    # ==================== HELPERS ====================

    def _get_event(self, conn, event_id: str, organization_id: str) -> Optional[Dict]:
        row = conn.execute(text("""
            SELECT id, closer_id, setter_id, source_id, call_status
            FROM events
            WHERE id = :event_id
              AND organization_id = :organization_id
            FOR UPDATE
        """), {'event_id': event_id, 'organization_id': organization_id}).fetchone()
        return dict(row._mapping) if row is not None else None

    def _save_pcf(self, conn, record: Dict[str, Any], pcf_id: Optional[str] = None) -> Optional[str]:
        """Update the event's form (the given one when editing) or insert it; None if pcf_id is unknown."""
        existing = conn.execute(text("""
            SELECT id FROM post_call_forms
            WHERE event_id = :event_id
              AND organization_id = :organization_id
        """ + (" AND id = :pcf_id" if pcf_id else "")), {**record, 'pcf_id': pcf_id}).fetchone()

        if existing is None and pcf_id:
            return None

        if existing is not None:
            conn.execute(text("""
                UPDATE post_call_forms
                SET closer_id = :closer_id, closer_name = :closer_name,
                    call_occurred = :call_occurred, lead_showed = :lead_showed,
                    offer_made = :offer_made, deal_closed = :deal_closed,
                    cash_collected = :cash_collected, payment_type = :payment_type,
                    notes = :notes, opportunity_status_id = :opportunity_status_id,
                    close_date = :close_date, submitted_at = :submitted_at
                WHERE id = :id
            """), {**record, 'id': existing.id})
            return existing.id

        row = conn.execute(text("""
            INSERT INTO post_call_forms
                (event_id, organization_id, closer_id, closer_name, call_occurred,
                 lead_showed, offer_made, deal_closed, cash_collected, payment_type,
                 notes, opportunity_status_id, close_date, submitted_at)
            VALUES
                (:event_id, :organization_id, :closer_id, :closer_name, :call_occurred,
                 :lead_showed, :offer_made, :deal_closed, :cash_collected, :payment_type,
                 :notes, :opportunity_status_id, :close_date, :submitted_at)
            RETURNING id
        """), record).fetchone()
        return row.id

    def _upsert_payment(self, conn, payment: Dict[str, Any]):
        existing = conn.execute(text("""
            SELECT id FROM payments
            WHERE event_id = :event_id
              AND organization_id = :organization_id
        """), payment).fetchone()

        if existing is not None:
            conn.execute(text("""
                UPDATE payments
                SET amount = :amount, payment_type = :payment_type,
                    payment_date = :payment_date, pcf_id = :pcf_id
                WHERE id = :id
            """), {**payment, 'id': existing.id})
            logger.debug(f"Updated payment {existing.id} for event {payment['event_id']}")
        else:
            conn.execute(text("""
                INSERT INTO payments
                    (event_id, organization_id, amount, payment_type, payment_date,
                     closer_id, setter_id, source_id, pcf_id)
                VALUES
                    (:event_id, :organization_id, :amount, :payment_type, :payment_date,
                     :closer_id, :setter_id, :source_id, :pcf_id)
            """), payment)
            logger.debug(f"Created payment for event {payment['event_id']}")

    def _sync_crm(
        self,
        organization_id: str,
        event_id: str,
        form_fields: Sequence[Mapping],
        values: Mapping[str, Any]
    ) -> Tuple[bool, str]:
        notes = build_crm_note(form_fields, values)
        pipeline_stage = build_pipeline_stage(form_fields, values)
        if not notes and not pipeline_stage:
            return False, "Nothing to sync"

        try:
            synced, message = self.notifications.sync_crm_notes(
                organization_id, event_id, notes=notes, pipeline_stage=pipeline_stage
            )
        except Exception as e:
            logger.warning(f"⚠️ CRM sync failed for event {event_id}: {e}")
            return False, get_safe_error_message(e)

        if not synced:
            logger.warning(f"⚠️ CRM sync skipped for event {event_id}: {message}")
        return synced, message

