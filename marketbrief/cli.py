"""Command-line entry point: ``marketbrief <command>``.

Commands:
    init-db       create tables
    add-user      register a user
    track         add a ticker to a user's watch list / portfolio
    ingest FILE   normalize and store a saved vendor news payload (JSON)
    match         score unprocessed news against tracked assets
    sync-prices   refresh prices, history and fundamentals from yfinance
    generate      build (and optionally email) one user's daily briefing
    headlines     print the market-wide top headlines
    send-due      hourly job: generate and email briefings due this hour
"""

import argparse
import json
import logging
from typing import List, Optional

from .ai.llm_client import LLMClient
from .briefing.generator import BriefingGenerator
from .briefing.service import BriefingService
from .config import get_settings
from .contracts.schemas import IMPORTANCE_LEVELS
from .data.price_service import PriceService, PriceSync
from .database.storage import BriefingDatabase
from .headlines.selector import HeadlineSelector, MarketHeadlinesService
from .ingestion.pipeline import IngestionPipeline, load_payload_file
from .notifications.email_notifier import BriefingMailer, EmailNotifier
from .notifications.scheduler import BriefingScheduler
from .observability.provider_metrics import ProviderMetrics
from .relevance.filter import RelevanceEngine

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='marketbrief', description='Daily portfolio market briefings')
    parser.add_argument('--config', type=str, help='YAML config file (default: config.yaml)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command')

    sub.add_parser('init-db', help='Create database tables')

    p = sub.add_parser('add-user', help='Register a user')
    p.add_argument('email')
    p.add_argument('--name', dest='full_name')
    p.add_argument('--timezone', default='America/New_York')
    p.add_argument('--send-hour', type=int, default=7, help='UTC hour for the daily email (default: 7)')
    p.add_argument('--free', action='store_true', help='Free account (no subscription needed)')
    p.add_argument('--subscription', dest='subscription_status', choices=['active', 'trialing', 'canceled', 'past_due'])

    p = sub.add_parser('track', help='Track a ticker for a user')
    p.add_argument('--user', type=int, required=True, dest='user_id')
    p.add_argument('symbol')
    p.add_argument('--name', help='Display name (default: symbol)')
    p.add_argument('--type', dest='asset_type', choices=['stock', 'etf', 'mutual_fund', 'crypto', 'index'])
    p.add_argument('--portfolio', help='Portfolio name (created if missing)')
    p.add_argument('--percent', type=float, default=0.0, help='Portfolio allocation percentage')
    p.add_argument('--importance', default='normal', choices=list(IMPORTANCE_LEVELS))

    p = sub.add_parser('ingest', help='Store articles from a saved vendor payload')
    p.add_argument('file', nargs='+', help='JSON file(s) with {"provider", "items"}')
    p.add_argument('--no-match', action='store_true', help='Skip relevance matching after ingest')

    p = sub.add_parser('match', help='Match unprocessed news to assets')
    p.add_argument('--hours', type=int, default=48)
    p.add_argument('--limit', type=int, default=500)

    p = sub.add_parser('sync-prices', help='Refresh stale market data')
    p.add_argument('--force', action='store_true', help='Refresh even if data is fresh')

    p = sub.add_parser('generate', help="Generate a user's daily briefing")
    p.add_argument('--user', type=int, required=True, dest='user_id')
    p.add_argument('--portfolio', type=int, dest='portfolio_id')
    p.add_argument('--email', action='store_true', help='Email the briefing after generating it')
    p.add_argument('--html', action='store_true', help='Print HTML instead of plain text')

    p = sub.add_parser('headlines', help='Print top market headlines')
    p.add_argument('--json', action='store_true', help='Print raw JSON')

    sub.add_parser('send-due', help='Send briefings due this hour')

    return parser


def _briefing_service(db, settings, metrics) -> BriefingService:
    llm = LLMClient(settings, metrics=metrics)
    return BriefingService(db, RelevanceEngine(db), BriefingGenerator(llm), settings)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    settings = get_settings(args.config)
    db = BriefingDatabase(settings.database_url)
    metrics = ProviderMetrics()

    try:
        if args.command == 'init-db':
            print("✓ Database ready")

        elif args.command == 'add-user':
            user_id = db.add_user(
                args.email,
                full_name=args.full_name,
                timezone=args.timezone,
                preferred_send_hour=args.send_hour,
                is_free_account=args.free,
                subscription_status=args.subscription_status,
            )
            print(f"✓ User {args.email} (id={user_id})")

        elif args.command == 'track':
            if db.get_user(args.user_id) is None:
                print(f"✗ Unknown user id {args.user_id}")
                return 1
            portfolio_id = db.add_portfolio(args.user_id, args.portfolio) if args.portfolio else None
            asset_id = db.track_asset(
                args.user_id,
                args.symbol,
                args.name or args.symbol.upper(),
                asset_type=args.asset_type,
                portfolio_id=portfolio_id,
                importance_level=args.importance,
                portfolio_percentage=args.percent,
            )
            print(f"✓ Tracking {args.symbol.upper()} (asset id={asset_id})")

        elif args.command == 'ingest':
            batches = [load_payload_file(path) for path in args.file]
            engine = None if args.no_match else RelevanceEngine(db)
            summary = IngestionPipeline(db, engine).run(batches, run_type='manual')
            for result in summary['results']:
                print(
                    f"{result['source_name']}: {result['items_new']} new, "
                    f"{result['items_duplicate']} duplicate, {result['items_failed']} failed"
                )
            if summary['relevance']:
                rel = summary['relevance']
                print(f"Relevance: {rel['processed']} processed, {rel['matches']} matches")

        elif args.command == 'match':
            result = RelevanceEngine(db).process_all_unprocessed(hours=args.hours, limit=args.limit)
            print(f"✓ {result.processed} processed, {result.matches} matches")

        elif args.command == 'sync-prices':
            sync = PriceSync(db, PriceService(metrics))
            sync.ensure_market_indices()
            counts = sync.sync_assets(db.get_active_assets(), force=args.force)
            print(
                f"✓ {counts['total_assets']} assets: {counts['prices']} prices, "
                f"{counts['history']} history, {counts['fundamentals']} fundamentals"
            )

        elif args.command == 'generate':
            service = _briefing_service(db, settings, metrics)
            briefing, briefing_input = service.generate_for_user(args.user_id, portfolio_id=args.portfolio_id)
            print(briefing.full_briefing_html if args.html else briefing.full_briefing_text)
            if args.email:
                mailer = BriefingMailer(db, EmailNotifier(settings, metrics), app_url=settings.app_url)
                user = db.get_user(args.user_id)
                outcome = mailer.send_briefing_email(
                    user, briefing_input.briefing_date.date(), briefing,
                    news_item_count=briefing_input.total_news,
                )
                if not outcome['success']:
                    print(f"✗ Email failed: {outcome['error']}")
                    return 1
                print(f"✓ Emailed to {user['email']}")

        elif args.command == 'headlines':
            service = MarketHeadlinesService(
                db,
                HeadlineSelector(LLMClient(settings, metrics=metrics)),
                cache_minutes=settings.headline_cache_minutes,
                credibility_overrides=settings.source_credibility,
            )
            payload = service.get_headlines(use_cache=False)
            if args.json:
                print(json.dumps(payload, indent=2, default=str))
            elif not payload['headlines']:
                print(payload.get('message', 'No headlines'))
            else:
                for i, h in enumerate(payload['headlines'], 1):
                    print(f"{i}. {h['title']} ({h['source']})")
                    print(f"   {h['why_it_matters']}")
                    print(f"   {h['url']}")

        elif args.command == 'send-due':
            scheduler = BriefingScheduler(
                db,
                _briefing_service(db, settings, metrics),
                BriefingMailer(db, EmailNotifier(settings, metrics), app_url=settings.app_url),
            )
            results = scheduler.run_hourly()
            print(
                f"✓ Processed {results['users_processed']}: "
                f"{results['emails_sent']} sent, {results['emails_skipped']} skipped, {results['emails_failed']} failed"
            )
            if results['emails_failed']:
                return 1

    except (ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"✗ {e}")
        return 1

    metrics.log_summary(logging.DEBUG)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
