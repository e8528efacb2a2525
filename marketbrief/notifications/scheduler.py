"""Hourly job: generate and email briefings for users due this hour."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .email_notifier import BriefingMailer

logger = logging.getLogger(__name__)


class BriefingScheduler:
    """Runs the daily-briefing email job.

    Meant to be triggered once per hour (cron, systemd timer, CI schedule).
    Each user is handled independently; a failure for one user is logged and
    counted and the run moves on.

    Example:
        >>> scheduler = BriefingScheduler(db, briefing_service, mailer)
        >>> scheduler.run_hourly()
    """

    def __init__(self, db, briefing_service, mailer: BriefingMailer) -> None:
        self.db = db
        self.briefing_service = briefing_service
        self.mailer = mailer

    def run_hourly(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        now = now.astimezone(timezone.utc)

        logger.info("=" * 60)
        logger.info("DAILY BRIEFING EMAILS - HOURLY RUN")
        logger.info("=" * 60)
        logger.info(f"Time: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC")

        results: Dict[str, Any] = {
            'users_processed': 0,
            'emails_sent': 0,
            'emails_failed': 0,
            'emails_skipped': 0,
            'errors': [],
        }

        due_users = self.mailer.get_users_due_for_email(now.hour, now.date())
        logger.info(f"Users due for email at {now.hour:02d}:00 UTC: {len(due_users)}")

        for user in due_users:
            results['users_processed'] += 1
            try:
                briefing_date = self.briefing_service.briefing_date_for_user(user, now=now).date()
                if self.mailer.sent_log(user['id'], briefing_date):
                    results['emails_skipped'] += 1
                    logger.info(f"Briefing for {user['email']} on {briefing_date} already sent")
                    continue

                briefing, briefing_input = self.briefing_service.generate_for_user(user['id'], now=now)
                outcome = self.mailer.send_briefing_email(
                    user,
                    briefing_input.briefing_date.date(),
                    briefing,
                    news_item_count=briefing_input.total_news,
                )
            except Exception as e:
                results['emails_failed'] += 1
                results['errors'].append(f"{user['email']}: {e}")
                logger.error(f"✗ Briefing run failed for {user['email']}: {e}")
                continue

            if outcome.get('skipped'):
                results['emails_skipped'] += 1
            elif outcome['success']:
                results['emails_sent'] += 1
                logger.info(f"✓ Briefing emailed to {user['email']}")
            else:
                results['emails_failed'] += 1
                results['errors'].append(f"{user['email']}: {outcome['error']}")

        logger.info(
            f"Hourly run complete. Sent: {results['emails_sent']}, "
            f"Failed: {results['emails_failed']}, Skipped: {results['emails_skipped']}, Processed: {results['users_processed']}"
        )
        return results
