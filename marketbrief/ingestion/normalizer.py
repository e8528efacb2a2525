"""Normalize vendor news payloads into ``NormalizedArticle`` records.

Also holds the validation and de-duplication helpers applied before storage.
"""

import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import pandas as pd

from ..contracts.schemas import NormalizedArticle

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 10
MAX_TITLE_LENGTH = 500
MAX_SUMMARY_LENGTH = 1000
MAX_ARTICLE_AGE_DAYS = 7

DOLLAR_SYMBOL_PATTERN = re.compile(r'\$([A-Z]{1,5})\b')
WELL_KNOWN_TICKER_PATTERN = re.compile(
    r'(?:^|[\s,.(])'
    r'(AAPL|MSFT|GOOGL|GOOG|AMZN|NVDA|META|TSLA|JPM|V|MA|JNJ|UNH|SPY|QQQ|VTI|IWM|DIA)'
    r'(?=[\s,.):]|$)'
)

KNOWN_ENTITIES = [
    'Apple', 'Microsoft', 'Google', 'Alphabet', 'Amazon', 'NVIDIA',
    'Meta', 'Facebook', 'Tesla', 'JPMorgan', 'Visa', 'Mastercard',
    'Johnson & Johnson', 'UnitedHealth', 'Federal Reserve', 'Fed',
    'SEC', 'NYSE', 'NASDAQ', 'S&P', 'Dow Jones', 'Wall Street',
]


def generate_content_hash(title: str, url: str) -> str:
    normalized = f"{title.strip().lower()}|{url.strip().lower()}"
    return hashlib.sha256(normalized.encode('utf-8')).hexdigest()[:32]


def extract_symbols_from_text(text: str) -> List[str]:
    """Extract ``$SYM`` tickers and a conservative set of bare well-known tickers."""
    symbols: List[str] = []
    for match in DOLLAR_SYMBOL_PATTERN.finditer(text):
        symbols.append(match.group(1))
    for match in WELL_KNOWN_TICKER_PATTERN.finditer(text):
        symbols.append(match.group(1))
    return list(dict.fromkeys(symbols))


def extract_entities_from_text(text: str) -> List[str]:
    lowered = text.lower()
    return [entity for entity in KNOWN_ENTITIES if entity.lower() in lowered]


def parse_timestamp(value: Any) -> datetime:
    """Parse ISO-8601, RFC 822 or epoch-seconds values into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return pd.to_datetime(value, utc=True).to_pydatetime()


def _dedupe(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def normalize_newsapi_article(article: Dict[str, Any]) -> NormalizedArticle:
    title = article.get('title') or ''
    description = article.get('description') or ''
    text = f"{title} {description}"
    source = article.get('source') or {}
    return NormalizedArticle(
        source_name=source.get('name') or 'NewsAPI',
        # NewsAPI has no stable article ids
        external_id=article.get('url'),
        title=title,
        summary=description or None,
        content=article.get('content') or None,
        url=article.get('url') or '',
        image_url=article.get('urlToImage') or None,
        author=article.get('author') or None,
        published_at=parse_timestamp(article['publishedAt']),
        mentioned_symbols=extract_symbols_from_text(text),
        mentioned_entities=extract_entities_from_text(text),
    )


def normalize_finnhub_article(article: Dict[str, Any]) -> NormalizedArticle:
    headline = article.get('headline') or ''
    summary = article.get('summary') or ''
    text = f"{headline} {summary}"
    related = [s.strip() for s in (article.get('related') or '').split(',') if s.strip()]
    return NormalizedArticle(
        source_name=article.get('source') or 'Finnhub',
        external_id=str(article['id']) if article.get('id') is not None else None,
        title=headline,
        summary=summary or None,
        url=article.get('url') or '',
        image_url=article.get('image') or None,
        published_at=parse_timestamp(int(article['datetime'])),
        category=article.get('category') or None,
        mentioned_symbols=_dedupe(related + extract_symbols_from_text(text)),
        mentioned_entities=extract_entities_from_text(text),
    )


def normalize_rss_item(item: Dict[str, Any], feed_name: str) -> NormalizedArticle:
    """Normalize an RSS entry.

    Accepts both rss-parser style keys (``isoDate``, ``contentSnippet``,
    ``creator``) and feedparser style keys (``published``, ``summary``,
    ``author``, ``tags``).
    """
    raw_date = item.get('isoDate') or item.get('pubDate') or item.get('published')
    published_at = parse_timestamp(raw_date) if raw_date else datetime.now(timezone.utc)

    title = item.get('title') or 'Untitled'
    content = item.get('content')
    if isinstance(content, list):
        content = content[0].get('value') if content else None
    snippet = item.get('contentSnippet') or item.get('summary') or ''
    summary = snippet or (content[:500] if content else None)

    tags = item.get('categories')
    if tags is None and item.get('tags'):
        tags = [t.get('term') for t in item['tags'] if isinstance(t, dict) and t.get('term')]

    text = f"{title} {snippet}"
    return NormalizedArticle(
        source_name=feed_name,
        external_id=item.get('guid') or item.get('id') or item.get('link'),
        title=title,
        summary=summary,
        content=content or None,
        url=item.get('link') or '',
        author=item.get('creator') or item.get('author') or None,
        published_at=published_at,
        tags=list(tags or []),
        mentioned_symbols=extract_symbols_from_text(text),
        mentioned_entities=extract_entities_from_text(text),
    )


def normalize_tiingo_article(article: Dict[str, Any]) -> NormalizedArticle:
    title = article.get('title') or ''
    description = article.get('description') or ''
    text = f"{title} {description}"
    tickers = [t.upper() for t in article.get('tickers') or []]
    return NormalizedArticle(
        source_name=article.get('source') or 'Tiingo',
        external_id=str(article['id']) if article.get('id') is not None else None,
        title=title,
        summary=description or None,
        url=article.get('url') or '',
        published_at=parse_timestamp(article['publishedDate']),
        tags=list(article.get('tags') or []),
        mentioned_symbols=_dedupe(tickers + extract_symbols_from_text(text)),
        mentioned_entities=extract_entities_from_text(text),
    )


def _is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def validate_article(article: NormalizedArticle, now: Optional[datetime] = None) -> Optional[NormalizedArticle]:
    """Clean an article in place, or return ``None`` if it should be dropped.

    Titles must be 10-500 characters and URLs absolute http(s). Future dates
    are clamped to ``now``; anything older than seven days is rejected.
    """
    if not article.title or not article.url:
        return None

    article.title = article.title.strip()
    if not MIN_TITLE_LENGTH <= len(article.title) <= MAX_TITLE_LENGTH:
        return None

    if not _is_valid_url(article.url.strip()):
        return None

    now = now or datetime.now(timezone.utc)
    if article.published_at > now:
        article.published_at = now
    if article.published_at < now - timedelta(days=MAX_ARTICLE_AGE_DAYS):
        return None

    if article.summary:
        article.summary = article.summary.strip()[:MAX_SUMMARY_LENGTH]

    return article


def _title_words(title: str) -> set:
    return {w for w in title.lower().split() if len(w) > 2}


def calculate_title_similarity(title1: str, title2: str) -> float:
    """Jaccard similarity over lowercased words longer than two characters."""
    words1 = _title_words(title1)
    words2 = _title_words(title2)
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def is_duplicate_article(article: NormalizedArticle, existing_titles: Iterable[str], threshold: float = 0.7) -> bool:
    return any(calculate_title_similarity(article.title, t) >= threshold for t in existing_titles)
