"""Stable payload schemas shared by ingestion, relevance and briefing code."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

MATCH_TYPES = ("symbol_mention", "keyword_match", "llm_inferred", "manual")
IMPORTANCE_LEVELS = ("low", "normal", "high", "critical")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class NormalizedArticle:
    """Common article shape produced by every provider normalizer."""

    source_name: str
    title: str
    url: str
    published_at: datetime
    external_id: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    mentioned_symbols: List[str] = field(default_factory=list)
    mentioned_entities: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_name": self.source_name,
            "external_id": self.external_id,
            "title": self.title,
            "summary": self.summary,
            "url": self.url,
            "author": self.author,
            "published_at": _iso(self.published_at),
            "category": self.category,
            "tags": self.tags,
            "mentioned_symbols": self.mentioned_symbols,
            "mentioned_entities": self.mentioned_entities,
        }


@dataclass
class RelevanceMatch:
    asset_id: int
    match_type: str
    relevance_score: float
    matched_terms: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "match_type": self.match_type,
            "relevance_score": self.relevance_score,
            "matched_terms": self.matched_terms,
        }


@dataclass
class RelevantNewsItem:
    id: int
    title: str
    url: str
    source_name: str
    published_at: Optional[datetime]
    relevance_score: float
    match_type: str = "keyword_match"
    summary: Optional[str] = None
    matched_terms: List[str] = field(default_factory=list)


@dataclass
class PortfolioAllocation:
    portfolio_id: Optional[int]
    portfolio_name: str
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "portfolio_id": self.portfolio_id,
            "portfolio_name": self.portfolio_name,
            "percentage": self.percentage,
        }


@dataclass
class AssetWithNews:
    """A tracked asset with its price context and matched news."""

    asset_id: int
    symbol: str
    name: str
    asset_type: str = "stock"
    importance_level: str = "normal"
    current_price: Optional[float] = None
    previous_close: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_change_pct_24h: Optional[float] = None
    week_52_high: Optional[float] = None
    week_52_low: Optional[float] = None
    price_change_month: Optional[float] = None
    price_change_pct_month: Optional[float] = None
    price_change_year: Optional[float] = None
    price_change_pct_year: Optional[float] = None
    ev_ebitda: Optional[float] = None
    next_earnings_date: Optional[str] = None
    portfolio_percentage: Optional[float] = None
    portfolio_allocations: List[PortfolioAllocation] = field(default_factory=list)
    news_items: List[RelevantNewsItem] = field(default_factory=list)


@dataclass
class MarketOverview:
    sp500_change: Optional[float] = None
    nasdaq_change: Optional[float] = None
    dow_change: Optional[float] = None


@dataclass
class BriefingInput:
    user_id: int
    user_email: str
    briefing_date: datetime
    timezone: str
    assets: List[AssetWithNews] = field(default_factory=list)
    user_name: Optional[str] = None
    market_overview: Optional[MarketOverview] = None

    @property
    def total_news(self) -> int:
        return sum(len(a.news_items) for a in self.assets)


@dataclass
class AssetSummary:
    asset_id: int
    symbol: str
    summary: str
    news_count: int
    name: Optional[str] = None
    current_price: Optional[float] = None
    price_change: Optional[float] = None
    price_change_percent: Optional[float] = None
    week_52_high: Optional[float] = None
    week_52_low: Optional[float] = None
    price_change_pct_month: Optional[float] = None
    price_change_pct_year: Optional[float] = None
    portfolio_percentage: Optional[float] = None
    ev_ebitda: Optional[float] = None
    next_earnings_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "name": self.name,
            "summary": self.summary,
            "news_count": self.news_count,
            "current_price": self.current_price,
            "price_change": self.price_change,
            "price_change_percent": self.price_change_percent,
            "week_52_high": self.week_52_high,
            "week_52_low": self.week_52_low,
            "price_change_pct_month": self.price_change_pct_month,
            "price_change_pct_year": self.price_change_pct_year,
            "portfolio_percentage": self.portfolio_percentage,
            "ev_ebitda": self.ev_ebitda,
            "next_earnings_date": self.next_earnings_date,
        }


@dataclass
class Headline:
    title: str
    url: str
    source: str
    why_it_matters: Optional[str] = None
    reason: Optional[str] = None
    published_at: Optional[str] = None
    snippet: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "source": self.source,
            "why_it_matters": self.why_it_matters,
            "reason": self.reason,
            "published_at": self.published_at,
            "snippet": self.snippet,
        }


@dataclass
class GeneratedBriefing:
    market_overview: str
    asset_summaries: List[AssetSummary]
    notable_headlines: List[Headline]
    full_briefing_text: str
    full_briefing_html: str
    llm_model: Optional[str] = None
    tokens_used: int = 0
    generation_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_overview": self.market_overview,
            "asset_summaries": [a.to_dict() for a in self.asset_summaries],
            "notable_headlines": [h.to_dict() for h in self.notable_headlines],
            "full_briefing_text": self.full_briefing_text,
            "full_briefing_html": self.full_briefing_html,
            "llm_model": self.llm_model,
            "tokens_used": self.tokens_used,
            "generation_time_ms": self.generation_time_ms,
        }


@dataclass
class IngestionResult:
    source_name: str
    items_fetched: int = 0
    items_new: int = 0
    items_duplicate: int = 0
    items_failed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_name": self.source_name,
            "items_fetched": self.items_fetched,
            "items_new": self.items_new,
            "items_duplicate": self.items_duplicate,
            "items_failed": self.items_failed,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }


@dataclass
class RelevanceRunResult:
    processed: int = 0
    matches: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"processed": self.processed, "matches": self.matches, "errors": self.errors}
