"""Tests for the SQLAlchemy repository against in-memory SQLite."""

from datetime import datetime, timedelta, timezone

import pytest

from marketbrief.contracts.schemas import NormalizedArticle, RelevanceMatch
from marketbrief.database.storage import IngestionLog


def _article(title, hours_ago=1, now=None):
    now = now or datetime.now(timezone.utc)
    return NormalizedArticle(
        source_name="Reuters",
        title=title,
        url=f"https://example.com/{abs(hash(title))}",
        published_at=now - timedelta(hours=hours_ago),
    )


def test_add_user_is_idempotent_by_email(db):
    first = db.add_user("jane@example.com", timezone="Europe/London")
    second = db.add_user("jane@example.com", timezone="Asia/Tokyo")
    assert first == second
    assert db.get_user(first)["timezone"] == "Europe/London"
    assert db.get_user(12345) is None


def test_track_asset_creates_shared_asset_with_keywords(db):
    jane = db.add_user("jane@example.com")
    sam = db.add_user("sam@example.com")

    first = db.track_asset(jane, "aapl", "Apple Inc.", importance_level="high")
    second = db.track_asset(sam, "AAPL", "Apple Inc.")

    assert first == second
    asset = db.get_asset(first)
    assert asset["symbol"] == "AAPL"
    assert asset["asset_type"] == "stock"
    assert asset["keywords"] == ["AAPL", "Apple Inc.", "Apple"]
    assert db.get_tracked_assets(jane)[0]["importance_level"] == "high"


def test_track_asset_updates_existing_holding(db):
    user_id = db.add_user("jane@example.com")
    db.track_asset(user_id, "MSFT", "Microsoft Corporation", portfolio_percentage=5.0)
    db.track_asset(user_id, "MSFT", "Microsoft Corporation", portfolio_percentage=8.0)

    assert len(db.get_tracked_assets(user_id)) == 1
    asset_id = db.get_asset_by_symbol("msft")["id"]
    assert db.get_allocations(user_id, asset_id)[0]["percentage"] == 8.0


def test_update_asset_prices_rejects_unknown_fields(db):
    asset_id = db.ensure_asset("AAPL", "Apple Inc.")
    with pytest.raises(ValueError, match="Unknown asset fields"):
        db.update_asset_prices(asset_id, {"price": 1.0})


def test_insert_news_item_dedupes_on_hash(db):
    article = _article("Fed holds rates steady")
    assert db.insert_news_item(article, "hash-1") is not None
    assert db.insert_news_item(article, "hash-1") is None
    assert db.get_existing_hashes(["hash-1", "hash-2"]) == {"hash-1"}


def test_unprocessed_news_respects_window_and_flag(db, now):
    recent = db.insert_news_item(_article("Recent story", hours_ago=2, now=now), "h1")
    db.insert_news_item(_article("Old story", hours_ago=72, now=now), "h2")

    assert db.get_unprocessed_news_ids(hours=48, now=now) == [recent]
    db.mark_processed(recent)
    assert db.get_unprocessed_news_ids(hours=48, now=now) == []


def test_upsert_relevance_refreshes_scores(db, now):
    asset_id = db.ensure_asset("AAPL", "Apple Inc.")
    news_id = db.insert_news_item(_article("Apple results", now=now), "h1")

    db.upsert_relevance(news_id, [RelevanceMatch(asset_id, "keyword_match", 0.6, ["Apple"])])
    db.upsert_relevance(news_id, [RelevanceMatch(asset_id, "symbol_mention", 0.95, ["AAPL"])])

    rows = db.get_relevant_news(asset_id, since=now - timedelta(days=1))
    assert len(rows) == 1
    assert rows[0]["match_type"] == "symbol_mention"
    assert rows[0]["relevance_score"] == 0.95
    assert rows[0]["published_at"].tzinfo == timezone.utc


def test_ingestion_log_lifecycle(db):
    log_id = db.start_ingestion_log("finnhub", run_type="scheduled")
    db.finish_ingestion_log(log_id, "completed", 120, totals={"items_fetched": 10, "items_new": 7})

    session = db.Session()
    try:
        row = session.get(IngestionLog, log_id)
        assert row.status == "completed"
        assert row.items_new == 7
        assert row.duration_ms == 120
        assert row.completed_at is not None
    finally:
        session.close()

    # No log id means the start failed; finishing is a no-op
    db.finish_ingestion_log(None, "failed", 0)
