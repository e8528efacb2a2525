"""Notification delivery for daily briefings."""

from .email_notifier import BriefingMailer, EmailError, EmailNotifier
from .scheduler import BriefingScheduler

__all__ = ["BriefingMailer", "BriefingScheduler", "EmailError", "EmailNotifier"]
