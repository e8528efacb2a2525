#!/usr/bin/env python3
"""Hourly briefing job.

Refreshes stale market data, matches new articles to tracked assets, then
generates and emails briefings for users whose send hour is now.

Usage:
    python run_daily_briefing.py
    python run_daily_briefing.py --skip-sync   # Skip yfinance refresh
"""

import argparse
import logging

from marketbrief.ai.llm_client import LLMClient
from marketbrief.briefing.generator import BriefingGenerator
from marketbrief.briefing.service import BriefingService
from marketbrief.config import get_settings
from marketbrief.data.price_service import PriceService, PriceSync
from marketbrief.database.storage import BriefingDatabase
from marketbrief.notifications.email_notifier import BriefingMailer, EmailNotifier
from marketbrief.notifications.scheduler import BriefingScheduler
from marketbrief.observability.provider_metrics import ProviderMetrics
from marketbrief.relevance.filter import RelevanceEngine

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description='Hourly daily-briefing job')
    parser.add_argument('--skip-sync', action='store_true', help='Do not refresh market data first')
    parser.add_argument('--config', type=str, help='YAML config file')
    args = parser.parse_args()

    settings = get_settings(args.config)
    db = BriefingDatabase(settings.database_url)
    metrics = ProviderMetrics()
    relevance = RelevanceEngine(db)

    if not args.skip_sync:
        sync = PriceSync(db, PriceService(metrics))
        sync.ensure_market_indices()
        counts = sync.sync_assets(db.get_active_assets())
        logger.info(f"Market data sync: {counts}")

    matched = relevance.process_all_unprocessed()
    logger.info(f"Relevance: {matched.to_dict()}")

    scheduler = BriefingScheduler(
        db,
        BriefingService(db, relevance, BriefingGenerator(LLMClient(settings, metrics=metrics)), settings),
        BriefingMailer(db, EmailNotifier(settings, metrics), app_url=settings.app_url),
    )
    results = scheduler.run_hourly()

    metrics.log_summary()

    return 0 if results['emails_failed'] == 0 else 1


if __name__ == '__main__':
    raise SystemExit(main())
