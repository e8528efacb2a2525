"""Per-user briefing assembly: tracked assets, matched news and price context."""

import logging
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Any, Dict, Optional, Tuple

import pytz

from ..contracts.schemas import (
    AssetWithNews,
    BriefingInput,
    GeneratedBriefing,
    MarketOverview,
    PortfolioAllocation,
    RelevantNewsItem,
)
from ..data.price_service import MARKET_INDICES
from .generator import filter_news_window, generate_empty_briefing

logger = logging.getLogger(__name__)


def briefing_date_for(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Calendar day in the user's timezone, anchored at 12:00 UTC.

    Noon UTC keeps the date stable whichever timezone later formats it.
    """
    now = now or datetime.now(timezone.utc)
    try:
        tz = pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{tz_name}', using UTC")
        tz = pytz.utc
    local = now.astimezone(tz)
    return datetime(local.year, local.month, local.day, 12, 0, tzinfo=timezone.utc)


def _news_item(row: Dict[str, Any]) -> RelevantNewsItem:
    return RelevantNewsItem(
        id=row["id"],
        title=row["title"],
        summary=row.get("summary"),
        url=row["url"],
        source_name=row["source_name"],
        published_at=row.get("published_at"),
        relevance_score=row.get("relevance_score") or 0.0,
        match_type=row.get("match_type") or "keyword_match",
        matched_terms=list(row.get("matched_terms") or []),
    )


class BriefingService:
    """Builds briefing inputs from storage and produces stored briefings."""

    def __init__(self, db, relevance_engine, generator, settings):
        self.db = db
        self.relevance_engine = relevance_engine
        self.generator = generator
        self.settings = settings

    def market_overview(self) -> Optional[MarketOverview]:
        """Daily percent moves of the major indices, if they have been synced."""
        changes = {}
        for field_name, symbol in zip(("sp500_change", "nasdaq_change", "dow_change"), MARKET_INDICES):
            stored = self.db.get_asset_by_symbol(symbol)
            changes[field_name] = stored.get("price_change_pct_24h") if stored else None
        if all(value is None for value in changes.values()):
            return None
        return MarketOverview(**changes)

    def timezone_for(self, user: Dict[str, Any]) -> str:
        return user.get("timezone") or self.settings.default_timezone

    def briefing_date_for_user(self, user: Dict[str, Any], now: Optional[datetime] = None) -> datetime:
        return briefing_date_for(self.timezone_for(user), now=now)

    def build_input(
        self,
        user: Dict[str, Any],
        portfolio_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BriefingInput:
        """Assemble every tracked asset with its news, prices and allocations.

        Assets without news are included. Assets are ordered by total
        allocation across all portfolios, then by symbol.
        """
        user_id = user["id"]
        tz_name = self.timezone_for(user)

        assets: Dict[int, AssetWithNews] = {}
        for row in self.db.get_tracked_assets(user_id, portfolio_id=portfolio_id):
            if row["id"] in assets:
                continue
            assets[row["id"]] = AssetWithNews(
                asset_id=row["id"],
                symbol=row["symbol"],
                name=row["name"],
                asset_type=row.get("asset_type") or "stock",
                importance_level=row.get("importance_level") or "normal",
            )

        relevant = self.relevance_engine.get_relevant_news_for_user(
            user_id,
            hours_back=self.settings.news_hours_back,
            limit=self.settings.news_per_asset,
            portfolio_id=portfolio_id,
            now=now,
        )
        for entry in relevant:
            asset = assets.get(entry["asset_id"])
            if asset is None:
                asset = AssetWithNews(
                    asset_id=entry["asset_id"],
                    symbol=entry["asset_symbol"],
                    name=entry["asset_name"],
                )
                assets[entry["asset_id"]] = asset
            seen = {n.id for n in asset.news_items}
            for row in entry["news"]:
                if row["id"] not in seen:
                    asset.news_items.append(_news_item(row))
                    seen.add(row["id"])

        for asset in assets.values():
            stored = self.db.get_asset(asset.asset_id)
            if stored:
                asset.current_price = stored.get("current_price")
                asset.previous_close = stored.get("previous_close")
                asset.price_change_24h = stored.get("price_change_24h")
                asset.price_change_pct_24h = stored.get("price_change_pct_24h")
                asset.week_52_high = stored.get("week_52_high")
                asset.week_52_low = stored.get("week_52_low")
                asset.price_change_month = stored.get("month_change")
                asset.price_change_pct_month = stored.get("month_change_pct")
                asset.price_change_year = stored.get("year_change")
                asset.price_change_pct_year = stored.get("year_change_pct")
                asset.ev_ebitda = stored.get("ev_ebitda")
                asset.next_earnings_date = stored.get("next_earnings_date")

            # Allocations span all portfolios even when one portfolio is requested
            allocations = self.db.get_allocations(user_id, asset.asset_id)
            asset.portfolio_allocations = [
                PortfolioAllocation(
                    portfolio_id=a["portfolio_id"],
                    portfolio_name=a["portfolio_name"],
                    percentage=a["percentage"] or 0.0,
                )
                for a in allocations
            ]
            asset.portfolio_percentage = sum(a.percentage for a in asset.portfolio_allocations)

        ordered = sorted(assets.values(), key=cmp_to_key(_compare_allocation))

        briefing_input = BriefingInput(
            user_id=user_id,
            user_email=user.get("email") or "",
            user_name=user.get("full_name"),
            briefing_date=briefing_date_for(tz_name, now=now),
            timezone=tz_name,
            assets=ordered,
            market_overview=self.market_overview(),
        )
        logger.info(
            f"Briefing input for user {user_id} portfolio={portfolio_id or 'ALL'}: "
            f"{len(ordered)} assets, {briefing_input.total_news} news items"
        )
        return briefing_input

    def generate_for_user(
        self,
        user_id: int,
        portfolio_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[GeneratedBriefing, BriefingInput]:
        user = self.db.get_user(user_id)
        if user is None:
            raise ValueError(f"Unknown user id: {user_id}")

        briefing_input = self.build_input(user, portfolio_id=portfolio_id, now=now)
        window_end = now or datetime.now(timezone.utc)
        briefing_input = filter_news_window(briefing_input, self.settings.news_window_days, end=window_end)

        if briefing_input.total_news == 0:
            briefing = generate_empty_briefing(briefing_input)
        else:
            briefing = self.generator.generate_daily_briefing(
                briefing_input,
                news_window_days=self.settings.news_window_days,
                window_end=window_end,
            )

        self.db.upsert_briefing(
            user_id,
            briefing_input.briefing_date.date(),
            briefing,
            total_news_items=briefing_input.total_news,
            assets_covered=len(briefing_input.assets),
        )
        return briefing, briefing_input


def _compare_allocation(a: AssetWithNews, b: AssetWithNews) -> int:
    diff = (b.portfolio_percentage or 0.0) - (a.portfolio_percentage or 0.0)
    if abs(diff) > 0.001:
        return 1 if diff > 0 else -1
    return (a.symbol > b.symbol) - (a.symbol < b.symbol)
