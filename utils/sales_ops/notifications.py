# utils/sales_ops/notifications.py
"""
Outbound notifications: commission-link emails, team invites, CRM note sync.

Emails go through the hosted functions when FUNCTIONS_BASE_URL is set;
otherwise they fall back to plain SMTP with the EMAIL_* settings. CRM sync
has no fallback since it needs the CRM credentials stored server-side.

Every public method returns (success, message) so callers can show a
toast without try/except.

USAGE:
    service = NotificationService()
    ok, msg = service.send_commission_link(
        email='rep@example.com',
        rep_name='Jane Doe',
        commission_link='https://portal/my-commissions?token=...',
        organization_name='Acme',
    )
"""

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional, Tuple

from utils.config import config

from .constants import ACCEPT_INVITE_PATH
from .errors import get_safe_error_message
from .functions_client import (
    FunctionInvocationError,
    FunctionsNotConfiguredError,
    get_functions_client,
    SEND_COMMISSION_LINK,
    SEND_INVITE_EMAIL,
    SYNC_CRM_NOTES,
)

logger = logging.getLogger(__name__)


def mask_email(email: Optional[str]) -> str:
    """jane@example.com -> jan***@example.com, for logs."""
    if not email:
        return 'unknown'
    local, _, domain = email.partition('@')
    return f"{local[:3]}***@{domain or '***'}"


class NotificationService:

    def __init__(self, functions_client=None):
        self._functions_client = functions_client
        email_config = config.get_email_config()
        self.smtp_host = email_config.get("host", "smtp.gmail.com")
        self.smtp_port = int(email_config.get("port", 587))
        self.sender_email = email_config.get("sender")
        self.sender_password = email_config.get("password")

    # ============== HELPER METHODS ==============

    @property
    def functions_client(self):
        if self._functions_client is None:
            self._functions_client = get_functions_client()
        return self._functions_client

    def _functions_available(self) -> bool:
        if self._functions_client is not None:
            return True
        return config.get_functions_config().is_configured()

    def _invoke(self, name: str, payload: Dict) -> Tuple[bool, str]:
        try:
            self.functions_client.invoke(name, payload)
            return True, "Sent successfully"
        except FunctionsNotConfiguredError:
            return False, "Notification service is not configured"
        except FunctionInvocationError as e:
            return False, get_safe_error_message(e)

    def _send_smtp(self, to_email: str, subject: str, html_content: str) -> Tuple[bool, str]:
        """Send email using SMTP"""
        if not self.sender_email or not self.sender_password:
            return False, "Email configuration missing"

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = self.sender_email
            msg['To'] = to_email
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.sender_email, self.sender_password)
                server.sendmail(self.sender_email, [to_email], msg.as_string())

            logger.info(f"📧 Email sent to {mask_email(to_email)}")
            return True, "Email sent successfully"

        except smtplib.SMTPAuthenticationError:
            logger.error("❌ SMTP authentication failed")
            return False, "Email authentication failed"
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"❌ Error sending email: {e}")
            return False, "Could not send email. Please try again."

    # ============== PUBLIC METHODS ==============

    def send_commission_link(
        self,
        email: str,
        rep_name: str,
        commission_link: str,
        organization_name: Optional[str] = None
    ) -> Tuple[bool, str]:
        if not email or not rep_name or not commission_link:
            return False, "Missing required fields"

        logger.info(f"Sending commission link email to {mask_email(email)}")

        if self._functions_available():
            return self._invoke(SEND_COMMISSION_LINK, {
                'email': email,
                'repName': rep_name,
                'commissionLink': commission_link,
                'organizationName': organization_name,
            })

        org = html.escape(organization_name or 'Sales Team')
        body = f"""
        <h2>Hi {html.escape(rep_name)},</h2>
        <p>Your commission report from <strong>{org}</strong> is ready.</p>
        <p><a href="{html.escape(commission_link, quote=True)}">View my commissions</a></p>
        <p style="color:#666;font-size:12px;">This link is personal. Please don't share it.</p>
        """
        return self._send_smtp(email, f"Your commission report - {organization_name or 'Sales Team'}", body)

    def send_invite_email(
        self,
        email: str,
        token: str,
        invite_type: str,
        role: str = 'member',
        organization_id: Optional[str] = None,
        organization_name: Optional[str] = None,
        inviter_name: Optional[str] = None,
        base_url: Optional[str] = None
    ) -> Tuple[bool, str]:
        if not email or not token:
            return False, "Missing required fields"

        logger.info(f"Sending invite email to {mask_email(email)} for {invite_type}")

        if self._functions_available():
            return self._invoke(SEND_INVITE_EMAIL, {
                'email': email,
                'token': token,
                'inviteType': invite_type,
                'role': role,
                'organizationId': organization_id,
                'organizationName': organization_name,
                'inviterName': inviter_name,
                'baseUrl': base_url,
            })

        base = (base_url or config.get_app_setting("PORTAL_BASE_URL", "")).rstrip('/')
        link = f"{base}/{ACCEPT_INVITE_PATH}?token={token}"
        org = html.escape(organization_name or 'the team')
        body = f"""
        <h2>You're invited</h2>
        <p>{html.escape(inviter_name or 'An admin')} invited you to join <strong>{org}</strong>.</p>
        <p><a href="{html.escape(link, quote=True)}">Accept invitation</a></p>
        <p style="color:#666;font-size:12px;">This invitation expires in 7 days.</p>
        """
        return self._send_smtp(email, f"Invitation to join {organization_name or 'the team'}", body)

    def sync_crm_notes(
        self,
        organization_id: str,
        event_id: str,
        notes: Optional[str] = None,
        pipeline_stage: Optional[Dict] = None
    ) -> Tuple[bool, str]:
        """Push PCF notes (and optionally a pipeline stage) to the org's CRM."""
        if not config.is_feature_enabled("CRM_SYNC"):
            return False, "CRM sync is disabled"
        if not notes and not pipeline_stage:
            return True, "Nothing to sync"

        payload = {'organization_id': organization_id, 'event_id': event_id}
        if notes:
            payload['notes'] = notes
        if pipeline_stage:
            payload['pipeline_stage'] = pipeline_stage
        return self._invoke(SYNC_CRM_NOTES, payload)
