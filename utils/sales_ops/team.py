# utils/sales_ops/team.py
"""
Team & Invitations

Invitation lifecycle:
    pending --(accepted by invitee)--> accepted
    pending --(expires_at passes)----> expired   (derived, not stored)
    resend: expires_at = now + 7 days, status back to pending

Every write is scoped by organization_id. Accepting an invite (public
accept-invite page) creates the profile and organization membership.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional, Tuple

import pandas as pd
from sqlalchemy import text

from utils.auth import AuthManager
from utils.db import execute_query, execute_returning, execute_update, get_transaction
from .constants import ACCEPT_INVITE_PATH, INVITE_ROLES, INVITE_TYPES
from .errors import get_safe_error_message
from .fields import clean_str, to_timestamp, utc_now
from .notifications import NotificationService, mask_email

logger = logging.getLogger(__name__)

INVITE_VALID_DAYS = 7
TOKEN_BYTES = 32
DEFAULT_ROLE = 'member'

STATUS_PENDING = 'pending'
STATUS_ACCEPTED = 'accepted'
STATUS_EXPIRED = 'expired'

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def generate_invite_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def invite_expiry(now: Optional[datetime] = None) -> datetime:
    return (utc_now(now) + timedelta(days=INVITE_VALID_DAYS)).to_pydatetime()


def effective_invite_status(invitation: Mapping, now: Optional[datetime] = None) -> str:
    """Stored status, except a pending invite past its expiry reads 'expired'."""
    status = clean_str(invitation.get('status')) or STATUS_PENDING
    if status != STATUS_PENDING:
        return status
    expires_at = to_timestamp(invitation.get('expires_at'))
    if expires_at is not None and expires_at < utc_now(now):
        return STATUS_EXPIRED
    return status


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email.strip()))


def build_invite_link(base_url: str, token: str) -> str:
    return f"{(base_url or '').rstrip('/')}/{ACCEPT_INVITE_PATH}?token={token}"


def with_effective_status(invitations: pd.DataFrame, now: Optional[datetime] = None) -> pd.DataFrame:
    """Copy of the invitations frame with status replaced by the effective one."""
    if invitations.empty:
        return invitations
    df = invitations.copy()
    df['status'] = [effective_invite_status(row, now) for row in df.to_dict('records')]
    return df


class InvitationService:
    """
    Create and manage invitations for one organization.

    Usage:
        service = InvitationService(org_id, org_name)
        ok, message, invite = service.create('rep@acme.com', 'sales_rep', invited_by=user_id)
    """

    def __init__(
        self,
        organization_id: str,
        organization_name: Optional[str] = None,
        notification_service: NotificationService = None
    ):
        self.organization_id = organization_id
        self.organization_name = organization_name
        self._notifications = notification_service

    @property
    def notifications(self) -> NotificationService:
        if self._notifications is None:
            self._notifications = NotificationService()
        return self._notifications

    def create(
        self,
        email: str,
        invite_type: str,
        role: str = DEFAULT_ROLE,
        invited_by: Optional[str] = None,
        inviter_name: Optional[str] = None,
        closer_name: Optional[str] = None,
        send_email: bool = True,
        now: Optional[datetime] = None
    ) -> Tuple[bool, str, Optional[Dict]]:
        """
        Insert a pending invitation and email it.

        Returns:
            (success, message, invitation row). The invitation stays even
            when the email fails; the message says so.
        """
        email = (email or '').strip().lower()
        if not is_valid_email(email):
            return False, "Please enter a valid email address", None
        if invite_type not in INVITE_TYPES:
            return False, f"Unknown invite type: {invite_type}", None
        role = role or DEFAULT_ROLE
        if role not in INVITE_ROLES:
            return False, f"Unknown role: {role}", None

        try:
            invitation = execute_returning("""
                INSERT INTO invitations
                    (email, invite_type, role, status, token, organization_id,
                     invited_by, closer_name, created_at, expires_at)
                VALUES
                    (:email, :invite_type, :role, :status, :token, :organization_id,
                     :invited_by, :closer_name, :created_at, :expires_at)
                RETURNING id, email, invite_type, role, status, token, closer_name,
                          created_at, expires_at
            """, {
                'email': email,
                'invite_type': invite_type,
                'role': role,
                'status': STATUS_PENDING,
                'token': generate_invite_token(),
                'organization_id': self.organization_id,
                'invited_by': invited_by,
                'closer_name': clean_str(closer_name),
                'created_at': utc_now(now).to_pydatetime(),
                'expires_at': invite_expiry(now),
            })
        except Exception as e:
            logger.error(f"❌ Error creating invitation: {e}")
            return False, get_safe_error_message(e), None

        logger.info(f"✉️ Invitation {invitation['id']} created ({invite_type}/{role})")

        if not send_email:
            return True, "Invitation created", invitation

        sent, message = self._send(invitation, inviter_name)
        if not sent:
            return True, f"Invitation created but email failed: {message}", invitation
        return True, "Invitation sent", invitation

    def delete(self, invitation_id: str) -> Tuple[bool, str]:
        try:
            deleted = execute_update("""
                DELETE FROM invitations
                WHERE id = :id
                  AND organization_id = :organization_id
            """, {'id': invitation_id, 'organization_id': self.organization_id})
        except Exception as e:
            logger.error(f"❌ Error deleting invitation {invitation_id}: {e}")
            return False, get_safe_error_message(e)

        if not deleted:
            return False, "Invitation not found"
        return True, "Invitation deleted"

    def resend(
        self,
        invitation_id: str,
        inviter_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[bool, str]:
        """Extend the expiry, reset to pending and email again."""
        try:
            invitation = execute_returning("""
                UPDATE invitations
                SET expires_at = :expires_at, status = :status
                WHERE id = :id
                  AND organization_id = :organization_id
                RETURNING id, email, invite_type, role, status, token, expires_at
            """, {
                'id': invitation_id,
                'organization_id': self.organization_id,
                'expires_at': invite_expiry(now),
                'status': STATUS_PENDING,
            })
        except Exception as e:
            logger.error(f"❌ Error resending invitation {invitation_id}: {e}")
            return False, get_safe_error_message(e)

        if invitation is None:
            return False, "Invitation not found"

        sent, message = self._send(invitation, inviter_name)
        if not sent:
            return False, f"Invitation renewed but email failed: {message}"
        return True, "Invitation resent"

    def update_role(self, invitation_id: str, role: str) -> Tuple[bool, str]:
        if role not in INVITE_ROLES:
            return False, f"Unknown role: {role}"
        try:
            updated = execute_update("""
                UPDATE invitations SET role = :role
                WHERE id = :id
                  AND organization_id = :organization_id
            """, {'id': invitation_id, 'organization_id': self.organization_id, 'role': role})
        except Exception as e:
            logger.error(f"❌ Error updating invitation {invitation_id}: {e}")
            return False, get_safe_error_message(e)

        if not updated:
            return False, "Invitation not found"
        return True, "Role updated"

    def _send(self, invitation: Mapping, inviter_name: Optional[str]) -> Tuple[bool, str]:
        return self.notifications.send_invite_email(
            email=invitation['email'],
            token=invitation['token'],
            invite_type=invitation['invite_type'],
            role=invitation.get('role') or DEFAULT_ROLE,
            organization_id=self.organization_id,
            organization_name=self.organization_name,
            inviter_name=inviter_name,
        )


# =============================================================================
# ACCEPTING AN INVITE
# =============================================================================

MIN_PASSWORD_LENGTH = 8


def membership_role(invitation: Mapping) -> str:
    """organization_members.role granted by an invite."""
    invite_type = invitation.get('invite_type')
    if invite_type == 'client_admin':
        return 'client_admin'
    if invite_type == 'admin' or invitation.get('role') == 'admin':
        return 'admin'
    if invite_type == 'sales_rep':
        return 'sales_rep'
    return DEFAULT_ROLE


def resolve_invitation(token: Optional[str], now: Optional[datetime] = None) -> Tuple[Optional[Dict], Optional[str]]:
    """
    Look up an invitation by its emailed token.

    Returns:
        (invitation, None) while it can still be accepted, else (None, reason)
    """
    token = clean_str(token)
    if not token:
        return None, "This page needs an invitation link"

    try:
        rows = execute_query("""
            SELECT i.id, i.email, i.invite_type, i.role, i.status, i.closer_name,
                   i.organization_id, i.expires_at, o.name AS organization_name
            FROM invitations i
            LEFT JOIN organizations o ON o.id = i.organization_id
            WHERE i.token = :token
        """, {'token': token})
    except Exception as e:
        logger.error(f"❌ Error looking up invitation: {e}")
        return None, get_safe_error_message(e)

    if not rows:
        return None, "This invitation link is not valid"

    invitation = rows[0]
    status = effective_invite_status(invitation, now)
    if status == STATUS_ACCEPTED:
        return None, "This invitation has already been accepted. Please sign in."
    if status == STATUS_EXPIRED:
        return None, "This invitation has expired. Ask your admin to resend it."
    return invitation, None


def accept_invitation(
    invitation: Mapping,
    full_name: str,
    password: str,
    now: Optional[datetime] = None
) -> Tuple[bool, str]:
    """
    Create the invitee's account and membership, then mark the invite accepted.

    All writes share one transaction; a closer invite also links the
    closers row with the same name to the new profile.
    """
    full_name = clean_str(full_name)
    if not full_name:
        return False, "Please enter your name"
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    email = (invitation.get('email') or '').strip().lower()
    password_hash, salt = AuthManager().hash_password(password)
    accepted_at = utc_now(now).to_pydatetime()

    try:
        with get_transaction() as conn:
            claimed = conn.execute(text("""
                UPDATE invitations
                SET status = :accepted, accepted_at = :accepted_at
                WHERE id = :id AND status = :pending
            """), {
                'id': invitation['id'],
                'accepted': STATUS_ACCEPTED,
                'pending': STATUS_PENDING,
                'accepted_at': accepted_at,
            })
            if not claimed.rowcount:
                return False, "This invitation has already been accepted. Please sign in."

            existing = conn.execute(text("""
                SELECT id FROM profiles WHERE LOWER(email) = LOWER(:email)
            """), {'email': email}).fetchone()
            if existing is not None:
                raise ValueError("User already registered")

            profile = conn.execute(text("""
                INSERT INTO profiles (email, full_name, password_hash, password_salt, is_active, created_at)
                VALUES (:email, :full_name, :password_hash, :password_salt, TRUE, :created_at)
                RETURNING id
            """), {
                'email': email,
                'full_name': full_name,
                'password_hash': password_hash,
                'password_salt': salt,
                'created_at': accepted_at,
            }).fetchone()

            conn.execute(text("""
                INSERT INTO organization_members (user_id, organization_id, role, created_at)
                VALUES (:user_id, :organization_id, :role, :created_at)
            """), {
                'user_id': profile.id,
                'organization_id': invitation['organization_id'],
                'role': membership_role(invitation),
                'created_at': accepted_at,
            })

            closer_name = clean_str(invitation.get('closer_name'))
            if invitation.get('invite_type') == 'sales_rep' and closer_name:
                conn.execute(text("""
                    UPDATE closers SET profile_id = :user_id
                    WHERE organization_id = :organization_id
                      AND LOWER(name) = LOWER(:closer_name)
                """), {
                    'user_id': profile.id,
                    'organization_id': invitation['organization_id'],
                    'closer_name': closer_name,
                })
    except Exception as e:
        logger.error(f"❌ Error accepting invitation {invitation.get('id')}: {e}")
        return False, get_safe_error_message(e)

    logger.info(f"✅ Invitation {invitation['id']} accepted by {mask_email(email)}")
    return True, "Your account is ready. Please sign in."
