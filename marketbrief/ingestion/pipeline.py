"""Store normalized news articles with de-duplication and run relevance matching."""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..contracts.schemas import IngestionResult, NormalizedArticle
from .normalizer import (
    generate_content_hash,
    is_duplicate_article,
    normalize_finnhub_article,
    normalize_newsapi_article,
    normalize_rss_item,
    normalize_tiingo_article,
    validate_article,
)

logger = logging.getLogger(__name__)

RECENT_TITLE_HOURS = 48

NORMALIZERS: Dict[str, Callable[..., NormalizedArticle]] = {
    'newsapi': normalize_newsapi_article,
    'finnhub': normalize_finnhub_article,
    'rss': normalize_rss_item,
    'tiingo': normalize_tiingo_article,
}


def load_payload_file(path: str) -> Dict[str, Any]:
    """Read a saved vendor payload: ``{"provider", "feed_name"?, "items": [...]}``."""
    with open(Path(path), 'r', encoding='utf-8') as f:
        payload = json.load(f)

    if not isinstance(payload, dict) or 'items' not in payload:
        raise ValueError(f"{path}: expected an object with 'provider' and 'items'")
    provider = str(payload.get('provider', '')).lower()
    if provider not in NORMALIZERS:
        raise ValueError(f"{path}: unknown provider '{provider}'")
    if not isinstance(payload['items'], list):
        raise ValueError(f"{path}: 'items' must be a list")

    payload['provider'] = provider
    return payload


class IngestionPipeline:
    """Validate, de-duplicate and insert articles, then match them to assets.

    Example:
        >>> pipeline = IngestionPipeline(db, RelevanceEngine(db))
        >>> pipeline.run([load_payload_file("finnhub.json")])
    """

    def __init__(self, db, relevance_engine=None):
        self.db = db
        self.relevance_engine = relevance_engine

    def ingest_articles(
        self,
        source_name: str,
        articles: Iterable[NormalizedArticle],
        now: Optional[datetime] = None,
    ) -> IngestionResult:
        start = time.time()
        articles = list(articles)
        result = IngestionResult(source_name=source_name, items_fetched=len(articles))

        valid = []
        for article in articles:
            if validate_article(article, now=now) is None:
                result.items_failed += 1
            else:
                valid.append(article)

        hashed = [(generate_content_hash(a.title, a.url), a) for a in valid]
        existing_hashes = self.db.get_existing_hashes(h for h, _ in hashed)
        recent_titles = self.db.get_recent_titles(hours=RECENT_TITLE_HOURS, now=now)

        for content_hash, article in hashed:
            if content_hash in existing_hashes:
                result.items_duplicate += 1
                continue
            if is_duplicate_article(article, recent_titles):
                result.items_duplicate += 1
                continue

            try:
                news_id = self.db.insert_news_item(article, content_hash)
            except Exception as e:
                result.items_failed += 1
                result.errors.append(f"Insert error: {e}")
                logger.error(f"Failed to insert '{article.title[:60]}': {e}")
                continue

            if news_id is None:
                # Lost a race on the unique hash
                result.items_duplicate += 1
            else:
                result.items_new += 1
                recent_titles.append(article.title)
            existing_hashes.add(content_hash)

        result.duration_ms = int((time.time() - start) * 1000)
        logger.info(
            f"{source_name}: {result.items_fetched} fetched, {result.items_new} new, "
            f"{result.items_duplicate} duplicate, {result.items_failed} failed"
        )
        return result

    def ingest_raw(
        self,
        provider: str,
        payloads: List[Dict[str, Any]],
        feed_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IngestionResult:
        """Normalize raw vendor payloads and store them."""
        normalizer = NORMALIZERS.get(provider)
        if normalizer is None:
            raise ValueError(f"Unknown news provider: {provider}")

        source_name = feed_name or provider
        articles = []
        errors = []
        for payload in payloads:
            try:
                if provider == 'rss':
                    articles.append(normalizer(payload, source_name))
                else:
                    articles.append(normalizer(payload))
            except (KeyError, TypeError, ValueError) as e:
                errors.append(f"Normalize error: {e}")
                logger.warning(f"Skipping malformed {provider} item: {e}")

        result = self.ingest_articles(source_name, articles, now=now)
        result.items_fetched += len(errors)
        result.items_failed += len(errors)
        result.errors = errors + result.errors
        return result

    def run(self, batches: List[Dict[str, Any]], run_type: str = 'manual', now: Optional[datetime] = None) -> Dict[str, Any]:
        """Ingest each payload batch, log the run, then process relevance.

        Args:
            batches: Items shaped like :func:`load_payload_file` output.
            run_type: ``manual`` or ``scheduled``.

        Returns:
            Dict with per-source ``results`` and the ``relevance`` summary.
        """
        start = time.time()
        results = []

        for batch in batches:
            provider = batch['provider']
            source_name = batch.get('feed_name') or provider
            log_id = self.db.start_ingestion_log(source_name, run_type=run_type)
            try:
                result = self.ingest_raw(provider, batch['items'], feed_name=batch.get('feed_name'), now=now)
            except Exception as e:
                logger.error(f"Ingestion failed for {source_name}: {e}")
                self.db.finish_ingestion_log(
                    log_id, 'failed', int((time.time() - start) * 1000), error_message=str(e)
                )
                results.append(IngestionResult(source_name=source_name, errors=[str(e)]))
                continue

            self.db.finish_ingestion_log(
                log_id,
                'completed',
                result.duration_ms,
                totals={
                    'items_fetched': result.items_fetched,
                    'items_new': result.items_new,
                    'items_duplicate': result.items_duplicate,
                    'items_failed': result.items_failed,
                },
                error_message='; '.join(result.errors) or None,
            )
            results.append(result)

        relevance = None
        if self.relevance_engine is not None:
            relevance = self.relevance_engine.process_all_unprocessed()

        return {
            'results': [r.to_dict() for r in results],
            'relevance': relevance.to_dict() if relevance else None,
            'duration_ms': int((time.time() - start) * 1000),
        }
