# utils/sales_ops/commissions.py
"""
Commission Links

A commission link is a personal, tokenized URL a rep opens to see their
own payouts for a period:

    {base}/my-commissions?token=<hex>&from=YYYY-MM-DD&to=YYYY-MM-DD
        &closerPct=10&setterPct=5

Payout for a rep = net of their closer deals * closerPct / 100
                 + net of their setter deals * setterPct / 100
where deals are matched on payout_snapshot_details by name, ignoring case.

Tokens live in closer_access_tokens, one per (closer_name, organization).
The __UNIVERSAL__ row is an admin token and never listed; opening the
page with it lets the viewer pick any rep.
"""

import logging
import secrets
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy import text

from utils.db import execute_query, execute_returning, execute_update, get_transaction
from .constants import (
    DEFAULT_TIMEZONE, REP_COMMISSIONS_PATH, REP_TYPE_CLOSER, REP_TYPE_SETTER, UNIVERSAL_TOKEN_NAME,
)
from .errors import get_safe_error_message
from .fields import clean_str, to_float, to_records, to_timestamp, utc_now
from .notifications import NotificationService

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
LINK_VALID_DAYS = 90
DEFAULT_CLOSER_PCT = 10.0
DEFAULT_SETTER_PCT = 5.0


def _format_pct(value) -> str:
    number = to_float(value)
    return str(int(number)) if number == int(number) else str(number)


def build_commission_link(
    base_url: str,
    token: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    closer_pct: Optional[float] = None,
    setter_pct: Optional[float] = None
) -> str:
    """Full URL for a rep's commission page. Empty parts are left off."""
    url = f"{(base_url or '').rstrip('/')}/{REP_COMMISSIONS_PATH}?token={token}"
    if start_date:
        url += f"&from={start_date.strftime('%Y-%m-%d')}"
    if end_date:
        url += f"&to={end_date.strftime('%Y-%m-%d')}"
    if closer_pct:
        url += f"&closerPct={_format_pct(closer_pct)}"
    if setter_pct:
        url += f"&setterPct={_format_pct(setter_pct)}"
    return url


def default_commission_period(today: Optional[date] = None) -> Tuple[date, date]:
    """First and last day of the previous calendar month."""
    today = today or date.today()
    first_of_this_month = today.replace(day=1)
    last_of_previous = first_of_this_month - timedelta(days=1)
    return last_of_previous.replace(day=1), last_of_previous


def generate_link_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def build_rep_list(closers, setters) -> List[Dict[str, Any]]:
    """
    Active closers then active setters, one entry per name (case-insensitive),
    sorted by name.
    """
    reps = []
    seen = set()
    for rep_type, rows in ((REP_TYPE_CLOSER, closers), (REP_TYPE_SETTER, setters)):
        for row in to_records(rows):
            name = clean_str(row.get('name'))
            if not name or row.get('is_active') is False or name.lower() in seen:
                continue
            seen.add(name.lower())
            reps.append({
                'id': row.get('id'),
                'name': name,
                'type': rep_type,
                'email': clean_str(row.get('email')),
            })
    return sorted(reps, key=lambda r: r['name'].lower())


def _in_period(payment_date, start_date: Optional[date], end_date: Optional[date]) -> bool:
    ts = to_timestamp(payment_date)
    if ts is None or not start_date or not end_date:
        return True
    local_day = ts.tz_convert(DEFAULT_TIMEZONE).date()
    return start_date <= local_day <= end_date


def calculate_rep_commission(
    details,
    rep_name: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    closer_pct: float = DEFAULT_CLOSER_PCT,
    setter_pct: float = DEFAULT_SETTER_PCT
) -> Dict[str, Any]:
    """
    Commission totals for one rep.

    A deal can count on both sides when the rep is closer and setter.

    Returns:
        Dict with closer_/setter_ deals, amount, refunds, net, payout,
        total_payout and all_deals (DataFrame, newest first)
    """
    wanted = (rep_name or '').strip().lower()
    rows = [d for d in to_records(details) if _in_period(d.get('payment_date'), start_date, end_date)]

    closer_deals = [d for d in rows if (clean_str(d.get('closer_name')) or '').lower() == wanted]
    setter_deals = [d for d in rows if (clean_str(d.get('setter_name')) or '').lower() == wanted]

    def totals(deals: Sequence[Dict], pct: float) -> Dict[str, float]:
        amount = sum(to_float(d.get('amount')) for d in deals)
        refunds = sum(to_float(d.get('refund_amount')) for d in deals)
        net = amount - refunds
        return {'amount': amount, 'refunds': refunds, 'net': net, 'payout': net * to_float(pct) / 100}

    closer = totals(closer_deals, closer_pct)
    setter = totals(setter_deals, setter_pct)

    deal_ids = {d.get('id') for d in closer_deals} | {d.get('id') for d in setter_deals}
    all_deals = pd.DataFrame([d for d in rows if d.get('id') in deal_ids])
    if not all_deals.empty and 'payment_date' in all_deals.columns:
        all_deals = all_deals.sort_values('payment_date', ascending=False).reset_index(drop=True)

    return {
        'closer_deals': len(closer_deals),
        'closer_amount': closer['amount'],
        'closer_refunds': closer['refunds'],
        'closer_net': closer['net'],
        'closer_payout': closer['payout'],
        'setter_deals': len(setter_deals),
        'setter_amount': setter['amount'],
        'setter_refunds': setter['refunds'],
        'setter_net': setter['net'],
        'setter_payout': setter['payout'],
        'total_payout': closer['payout'] + setter['payout'],
        'all_deals': all_deals,
    }


def link_status(link, now: Optional[datetime] = None) -> str:
    """'active', 'expired' or 'disabled' for display."""
    if link.get('is_active') is False:
        return 'disabled'
    expires_at = to_timestamp(link.get('expires_at'))
    if expires_at is not None and expires_at <= utc_now(now):
        return 'expired'
    return 'active'


# =============================================================================
# SERVICE
# =============================================================================

class CommissionLinkService:
    """
    Manage commission links and the rep roster behind them.

    Methods return (success, message) tuples for the page to show.
    """

    def __init__(self, organization_id: str, notification_service: NotificationService = None):
        self.organization_id = organization_id
        self._notifications = notification_service

    @property
    def notifications(self) -> NotificationService:
        if self._notifications is None:
            self._notifications = NotificationService()
        return self._notifications

    # ============== LINKS ==============

    def create_link(
        self,
        closer_name: str,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[bool, str, Optional[Dict]]:
        """
        Create the rep's link, or refresh token and expiry if one exists.

        Returns:
            (success, message, link row)
        """
        name = clean_str(closer_name)
        if not name:
            return False, "Rep name is required", None
        if name == UNIVERSAL_TOKEN_NAME:
            return False, "Reserved name", None

        expires_at = (utc_now(now) + pd.Timedelta(days=LINK_VALID_DAYS)).to_pydatetime()
        try:
            row = execute_returning("""
                INSERT INTO closer_access_tokens
                    (closer_name, organization_id, token, is_active, created_by, created_at, expires_at)
                VALUES
                    (:closer_name, :organization_id, :token, TRUE, :created_by, NOW(), :expires_at)
                ON CONFLICT (closer_name, organization_id)
                DO UPDATE SET token = EXCLUDED.token,
                              is_active = TRUE,
                              expires_at = EXCLUDED.expires_at
                RETURNING id, closer_name, token, is_active, created_at, expires_at
            """, {
                'closer_name': name,
                'organization_id': self.organization_id,
                'token': generate_link_token(),
                'created_by': created_by,
                'expires_at': expires_at,
            })
        except Exception as e:
            logger.error(f"❌ Error creating commission link for {name}: {e}")
            return False, get_safe_error_message(e), None

        logger.info(f"🔗 Commission link ready for {name}")
        return True, "Commission link created", row

    def send_link_email(
        self,
        email: str,
        rep_name: str,
        link_url: str,
        organization_name: Optional[str] = None
    ) -> Tuple[bool, str]:
        return self.notifications.send_commission_link(email, rep_name, link_url, organization_name)

    def delete_link(self, link_id: str) -> Tuple[bool, str]:
        try:
            deleted = execute_update("""
                DELETE FROM closer_access_tokens
                WHERE id = :id
                  AND organization_id = :organization_id
                  AND closer_name <> :universal
            """, {'id': link_id, 'organization_id': self.organization_id, 'universal': UNIVERSAL_TOKEN_NAME})
        except Exception as e:
            logger.error(f"❌ Error deleting commission link {link_id}: {e}")
            return False, get_safe_error_message(e)

        if not deleted:
            return False, "Link not found"
        logger.info(f"🗑️ Deleted commission link {link_id}")
        return True, "Link deleted"

    # ============== REPS ==============

    def add_rep(self, name: str, rep_type: str = REP_TYPE_CLOSER) -> Tuple[bool, str]:
        name = clean_str(name)
        if not name:
            return False, "Rep name is required"
        if rep_type not in (REP_TYPE_CLOSER, REP_TYPE_SETTER):
            return False, f"Unknown rep type: {rep_type}"

        table = 'closers' if rep_type == REP_TYPE_CLOSER else 'setters'
        try:
            with get_transaction() as conn:
                existing = conn.execute(text(f"""
                    SELECT id, is_active FROM {table}
                    WHERE organization_id = :organization_id
                      AND LOWER(name) = LOWER(:name)
                """), {'organization_id': self.organization_id, 'name': name}).fetchone()

                if existing is not None and existing.is_active:
                    return False, f"{name} already exists"
                if existing is not None:
                    conn.execute(text(f"UPDATE {table} SET is_active = TRUE WHERE id = :id"), {'id': existing.id})
                else:
                    conn.execute(text(f"""
                        INSERT INTO {table} (name, organization_id, is_active)
                        VALUES (:name, :organization_id, TRUE)
                    """), {'name': name, 'organization_id': self.organization_id})
        except Exception as e:
            logger.error(f"❌ Error adding {rep_type} {name}: {e}")
            return False, get_safe_error_message(e)

        logger.info(f"➕ Added {rep_type} {name}")
        return True, "Rep added successfully"

    def remove_rep(self, rep_id: str, rep_type: str = REP_TYPE_CLOSER) -> Tuple[bool, str]:
        """Deactivate; history keeps pointing at the row."""
        if rep_type not in (REP_TYPE_CLOSER, REP_TYPE_SETTER):
            return False, f"Unknown rep type: {rep_type}"

        table = 'closers' if rep_type == REP_TYPE_CLOSER else 'setters'
        try:
            updated = execute_update(f"""
                UPDATE {table} SET is_active = FALSE
                WHERE id = :id AND organization_id = :organization_id
            """, {'id': rep_id, 'organization_id': self.organization_id})
        except Exception as e:
            logger.error(f"❌ Error removing {rep_type} {rep_id}: {e}")
            return False, get_safe_error_message(e)

        if not updated:
            return False, "Rep not found"
        return True, "Rep removed"


def reps_without_links(reps: Sequence[Dict], links) -> List[Dict]:
    """Reps that don't have a link yet (names compared ignoring case)."""
    linked = {(clean_str(row.get('closer_name')) or '').lower() for row in to_records(links)}
    return [r for r in reps if r['name'].lower() not in linked]


# =============================================================================
# REP PORTAL (public my-commissions page)
# =============================================================================

def _parse_day(value) -> Optional[date]:
    text_value = clean_str(value)
    if not text_value:
        return None
    try:
        return date.fromisoformat(text_value[:10])
    except ValueError:
        return None


def _parse_pct(value, default: float) -> float:
    try:
        pct = float(value)
    except (TypeError, ValueError):
        return default
    return pct if 0 <= pct <= 100 else default


def parse_portal_params(params: Mapping[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """
    Read token, from, to, closerPct and setterPct from a commission link.

    Missing or malformed dates fall back to last month, rates to the defaults.
    """
    default_start, default_end = default_commission_period(today)
    start_date = _parse_day(params.get('from')) or default_start
    end_date = _parse_day(params.get('to')) or default_end
    if start_date > end_date:
        start_date, end_date = default_start, default_end

    return {
        'token': clean_str(params.get('token')),
        'start_date': start_date,
        'end_date': end_date,
        'closer_pct': _parse_pct(params.get('closerPct'), DEFAULT_CLOSER_PCT),
        'setter_pct': _parse_pct(params.get('setterPct'), DEFAULT_SETTER_PCT),
    }


def is_universal_link(link: Mapping) -> bool:
    return link.get('closer_name') == UNIVERSAL_TOKEN_NAME


def resolve_access_token(token: Optional[str], now: Optional[datetime] = None) -> Tuple[Optional[Dict], Optional[str]]:
    """
    Look up a commission link by token and record that it was used.

    Returns:
        (link row, None) when the link is active, else (None, reason)
    """
    token = clean_str(token)
    if not token:
        return None, "This page needs a commission link"

    try:
        rows = execute_query("""
            SELECT id, closer_name, organization_id, is_active, expires_at
            FROM closer_access_tokens
            WHERE token = :token
        """, {'token': token})
    except Exception as e:
        logger.error(f"❌ Error checking commission link: {e}")
        return None, get_safe_error_message(e)

    if not rows:
        logger.warning("🔒 Unknown commission link token")
        return None, "This link is not valid"

    link = rows[0]
    status = link_status(link, now)
    if status == 'disabled':
        return None, "This link has been disabled"
    if status == 'expired':
        return None, "This link has expired. Ask your manager for a new one."

    try:
        execute_update(
            "UPDATE closer_access_tokens SET last_used_at = :used_at WHERE id = :id",
            {'id': link['id'], 'used_at': utc_now(now).to_pydatetime()}
        )
    except Exception as e:
        logger.warning(f"⚠️ Could not record use of commission link {link['id']}: {e}")

    return link, None
