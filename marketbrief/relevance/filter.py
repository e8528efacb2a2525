"""Relevance filtering engine.

Matches news articles to tracked assets with rule-based strategies:

1. Direct symbol mention (``$AAPL``, ``AAPL``, vendor-tagged symbols)
2. Company name and extracted entity matching
3. Keyword matching, scored by specificity and position
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..contracts.schemas import RelevanceMatch, RelevanceRunResult
from .asset_types import strip_corporate_suffix

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
MIN_RELEVANCE_SCORE = 0.3


def clean_company_name(name: str) -> str:
    """Strip one trailing corporate suffix (``Inc.``, ``Corp.``...)."""
    return strip_corporate_suffix(name or '')


def _ticker_pattern(symbol: str) -> str:
    """Regex for a whole ticker; symbols like ``BRK.B`` and ``^GSPC`` are escaped."""
    return re.escape(symbol) + r'(?!\w)'


def calculate_keyword_score(keyword: str, text: str) -> float:
    """Score a keyword hit by length, title position and frequency.

    Returns a value between 0.5 and 0.8.
    """
    base_score = 0.5
    length_bonus = min(len(keyword) / 20, 0.2)

    keyword_lower = keyword.lower()
    title_bonus = 0.15 if keyword_lower in text[:100].lower() else 0.0

    occurrences = len(re.findall(re.escape(keyword), text, flags=re.IGNORECASE))
    frequency_bonus = min(occurrences * 0.05, 0.15)

    return min(base_score + length_bonus + title_bonus + frequency_bonus, 0.8)


def find_relevant_assets(news_item: Dict[str, Any], assets: Iterable[Dict[str, Any]]) -> List[RelevanceMatch]:
    """Find every asset an article is relevant to.

    Args:
        news_item: Mapping with ``title``, ``summary``, ``mentioned_symbols``
            and ``mentioned_entities``.
        assets: Mappings with ``id``, ``symbol``, ``name`` and ``keywords``.

    Returns:
        Matches scoring above 0.3, best first.
    """
    text = f"{news_item.get('title') or ''} {news_item.get('summary') or ''}".lower()
    mentioned_symbols = news_item.get('mentioned_symbols') or []
    mentioned_entities = news_item.get('mentioned_entities') or []

    matches: List[RelevanceMatch] = []

    for asset in assets:
        symbol = asset['symbol']
        name = asset.get('name') or symbol
        ticker_pattern = _ticker_pattern(symbol)

        terms: List[str] = []
        highest = 0.0
        match_type = 'keyword_match'

        if symbol in mentioned_symbols:
            terms.append(symbol)
            highest = max(highest, 0.95)
            match_type = 'symbol_mention'

        if re.search(r'\$' + ticker_pattern, text, flags=re.IGNORECASE):
            terms.append(f'${symbol}')
            highest = max(highest, 0.95)
            match_type = 'symbol_mention'

        # Bare tickers can be ordinary acronyms, so they score lower
        if len(symbol) >= 2 and re.search(r'(?<!\w)' + ticker_pattern, text, flags=re.IGNORECASE):
            if symbol not in terms:
                terms.append(symbol)
                highest = max(highest, 0.7)
                match_type = 'symbol_mention'

        clean_name = clean_company_name(name)
        clean_lower = clean_name.lower()
        name_lower = name.lower()
        # A name that is just the ticker was already handled above
        name_is_ticker = clean_name.upper() == symbol.upper()

        if clean_lower and not name_is_ticker and (clean_lower in text or name_lower in text):
            terms.append(clean_name)
            highest = max(highest, 0.85)

        if clean_lower and not name_is_ticker and clean_name not in terms:
            for entity in mentioned_entities:
                entity_lower = entity.lower()
                if (
                    entity_lower == clean_lower
                    or entity_lower == name_lower
                    or entity_lower in clean_lower
                    or clean_lower in entity_lower
                ):
                    terms.append(clean_name)
                    highest = max(highest, 0.85)
                    break

        for keyword in asset.get('keywords') or []:
            # Single-letter tickers such as V are never keyword-matched
            if not keyword or len(keyword) < 2:
                continue
            if keyword.upper() == symbol.upper():
                # Tickers only count as whole words, so MA stays out of "markets"
                hit = re.search(r'(?<!\w)' + ticker_pattern, text, flags=re.IGNORECASE)
            else:
                hit = keyword.lower() in text
            if hit:
                terms.append(keyword)
                highest = max(highest, calculate_keyword_score(keyword, text))

        if terms and highest > MIN_RELEVANCE_SCORE:
            matches.append(RelevanceMatch(
                asset_id=asset['id'],
                match_type=match_type,
                relevance_score=min(highest, 1.0),
                matched_terms=list(dict.fromkeys(terms)),
            ))

    matches.sort(key=lambda m: m.relevance_score, reverse=True)
    return matches


class RelevanceEngine:
    """Runs the matcher over stored articles and reads matches back per user."""

    def __init__(self, db) -> None:
        self.db = db

    def process_news_relevance(
        self, news_ids: List[int], asset_ids: Optional[List[int]] = None
    ) -> RelevanceRunResult:
        result = RelevanceRunResult()

        assets = self.db.get_active_assets(asset_ids)
        if not assets:
            logger.warning("No active assets to match news against")
            return result

        for start in range(0, len(news_ids), BATCH_SIZE):
            batch_ids = news_ids[start:start + BATCH_SIZE]
            try:
                news_items = self.db.get_news_items(batch_ids)
            except Exception as e:
                logger.error(f"Error fetching news batch: {e}")
                result.errors += 1
                continue

            for item in news_items:
                matches = find_relevant_assets(item, assets)
                if matches:
                    try:
                        result.matches += self.db.upsert_relevance(item['id'], matches)
                    except Exception as e:
                        logger.error(f"Error inserting relevance for news {item['id']}: {e}")
                        result.errors += 1

                self.db.mark_processed(item['id'])
                result.processed += 1

        logger.info(
            f"Relevance run: {result.processed} processed, "
            f"{result.matches} matches, {result.errors} errors"
        )
        return result

    def process_all_unprocessed(self, hours: int = 48, limit: int = 500) -> RelevanceRunResult:
        try:
            news_ids = self.db.get_unprocessed_news_ids(hours=hours, limit=limit)
        except Exception as e:
            logger.error(f"Error fetching unprocessed news: {e}")
            return RelevanceRunResult(errors=1)

        if not news_ids:
            return RelevanceRunResult()
        return self.process_news_relevance(news_ids)

    def get_relevant_news_for_user(
        self,
        user_id: int,
        hours_back: int = 24,
        limit: int = 50,
        portfolio_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Relevant news per tracked asset, most active assets first.

        Assets with no news inside the window are omitted.
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours_back)

        results = []
        seen_assets = set()
        for asset in self.db.get_tracked_assets(user_id, portfolio_id=portfolio_id):
            if asset['id'] in seen_assets:
                continue
            seen_assets.add(asset['id'])

            try:
                news = self.db.get_relevant_news(asset['id'], since=cutoff, limit=limit)
            except Exception as e:
                logger.error(f"Error fetching news for asset {asset['symbol']}: {e}")
                continue

            if news:
                results.append({
                    'asset_id': asset['id'],
                    'asset_symbol': asset['symbol'],
                    'asset_name': asset['name'],
                    'news': news,
                })

        results.sort(key=lambda r: len(r['news']), reverse=True)
        return results
