"""Email delivery for daily briefings.

``EmailNotifier`` sends multipart messages over SMTP with STARTTLS.
``BriefingMailer`` wraps it with the per-user send log so a briefing is
delivered at most once per user and day.
"""

import logging
import smtplib
from datetime import date, datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from time import perf_counter
from typing import Any, Dict, List, Optional

from ..contracts.schemas import GeneratedBriefing
from ..observability.provider_metrics import ProviderMetrics

logger = logging.getLogger(__name__)

EMAIL_TYPE = 'daily_briefing'
ELIGIBLE_SUBSCRIPTION_STATUSES = ('active', 'trialing')


class EmailError(RuntimeError):
    """Raised when a message could not be handed to the SMTP server."""


class EmailNotifier:
    """Send briefing emails via SMTP (Gmail by default)."""

    def __init__(self, settings, metrics: Optional[ProviderMetrics] = None):
        self.smtp_server = settings.smtp_server
        self.smtp_port = settings.smtp_port
        self.sender_email = settings.email_sender
        self.sender_password = settings.email_password
        self.from_name = settings.email_from_name
        self.metrics = metrics or ProviderMetrics()

        self.enabled = bool(self.sender_email and self.sender_password)
        if not self.enabled:
            logger.warning("Email notifications disabled - EMAIL_SENDER or EMAIL_PASSWORD not set")

    def _build_message(self, to: str, subject: str, text: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = formataddr((self.from_name, self.sender_email))
        msg['To'] = to
        msg['Message-ID'] = make_msgid(domain=self.sender_email.split('@')[-1])
        msg.attach(MIMEText(text, 'plain', 'utf-8'))
        msg.attach(MIMEText(html, 'html', 'utf-8'))
        return msg

    def send_email(self, to: str, subject: str, text: str, html: str) -> str:
        """Send one message and return its Message-ID.

        Raises:
            EmailError: when email is disabled or the SMTP exchange fails.
        """
        if not self.enabled:
            raise EmailError("Email not configured (EMAIL_SENDER / EMAIL_PASSWORD missing)")

        msg = self._build_message(to, subject, text, html)
        started = perf_counter()
        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self.sender_email, self.sender_password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            self.metrics.timed_call("smtp", False, started, error=str(e))
            logger.error("SMTP authentication failed. Check EMAIL_SENDER and EMAIL_PASSWORD in .env")
            raise EmailError(f"SMTP authentication failed: {e}") from e
        except (smtplib.SMTPException, OSError) as e:
            self.metrics.timed_call("smtp", False, started, error=str(e))
            logger.error(f"Failed to send email to {to}: {e}")
            raise EmailError(str(e)) from e

        self.metrics.timed_call("smtp", True, started)
        logger.info(f"Email sent to {to}: {subject}")
        return msg['Message-ID']

    def send_test_email(self, to: Optional[str] = None) -> bool:
        """Send a short message to verify SMTP settings."""
        to = to or self.sender_email
        try:
            self.send_email(
                to,
                "Market briefing test email",
                "If you can read this, email delivery is configured correctly.",
                "<p>If you can read this, email delivery is configured correctly.</p>",
            )
            return True
        except EmailError as e:
            logger.warning(f"Test email failed: {e}")
            return False


def briefing_subject(briefing_date: date) -> str:
    return f"Daily Market Briefing - {briefing_date.isoformat()}"


def _wrap_html(body_html: str, app_url: Optional[str]) -> str:
    footer = ''
    if app_url:
        footer = (
            '<p style="color:#888;font-size:12px;margin-top:32px;">'
            f'<a href="{app_url.rstrip("/")}/dashboard">Open your dashboard</a></p>'
        )
    return (
        '<html><body style="font-family:Arial,sans-serif;line-height:1.5;color:#222;">'
        f'{body_html}{footer}</body></html>'
    )


class BriefingMailer:
    """Deliver stored briefings once per user and briefing date."""

    def __init__(self, db, notifier: EmailNotifier, app_url: Optional[str] = None):
        self.db = db
        self.notifier = notifier
        self.app_url = app_url

    def send_briefing_email(
        self,
        user: Dict[str, Any],
        briefing_date: date,
        briefing: GeneratedBriefing,
        news_item_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send ``briefing`` to ``user`` unless it already went out.

        Returns a dict with ``success``, ``message_id`` and ``error``; an
        earlier successful send is reported as success without sending again.
        """
        user_id = user['id']
        existing = self.sent_log(user_id, briefing_date)
        if existing:
            logger.info(f"Briefing for user {user_id} on {briefing_date} already sent, skipping")
            return {'success': True, 'message_id': existing.get('message_id'), 'error': None, 'skipped': True}

        if news_item_count is None:
            news_item_count = sum(s.news_count or 0 for s in briefing.asset_summaries)

        subject = briefing_subject(briefing_date)
        log_id = self.db.upsert_send_log(
            user_id, briefing_date, 'pending',
            subject=subject, news_item_count=news_item_count, email_type=EMAIL_TYPE,
        )

        try:
            message_id = self.notifier.send_email(
                user['email'],
                subject,
                briefing.full_briefing_text,
                _wrap_html(briefing.full_briefing_html, self.app_url),
            )
        except EmailError as e:
            retry_count = (existing['retry_count'] if existing else 0) + 1
            self.db.update_send_log(log_id, status='failed', error_message=str(e), retry_count=retry_count)
            logger.error(f"Briefing email to user {user_id} failed (attempt {retry_count}): {e}")
            return {'success': False, 'message_id': None, 'error': str(e), 'skipped': False}

        self.db.update_send_log(
            log_id,
            status='sent',
            sent_at=datetime.now(timezone.utc).replace(tzinfo=None),
            message_id=message_id,
            error_message=None,
        )
        return {'success': True, 'message_id': message_id, 'error': None, 'skipped': False}

    def sent_log(self, user_id: int, briefing_date: date) -> Optional[Dict[str, Any]]:
        """The send-log row for this briefing if it was already delivered."""
        existing = self.db.get_send_log(user_id, briefing_date, EMAIL_TYPE)
        if existing and existing['status'] == 'sent':
            return existing
        return None

    def get_users_due_for_email(self, hour_utc: int, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """Users whose daily email is due this hour and not yet sent today."""
        today = today or datetime.now(timezone.utc).date()
        sent = self.db.users_sent_on(today, EMAIL_TYPE)

        due = []
        for user in self.db.list_users():
            if not user.get('email_enabled'):
                continue
            if (user.get('email_frequency') or 'daily') != 'daily':
                continue
            if user.get('preferred_send_hour') != hour_utc:
                continue
            if not (user.get('is_free_account') or user.get('subscription_status') in ELIGIBLE_SUBSCRIPTION_STATUSES):
                continue
            if user['id'] in sent:
                continue
            due.append(user)
        return due
