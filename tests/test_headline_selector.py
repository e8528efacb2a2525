"""Tests for LLM headline selection, its fallback and the cached service."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from marketbrief.ai.llm_client import LLMError, LLMResponse
from marketbrief.contracts.schemas import NormalizedArticle
from marketbrief.headlines.scorer import ScoredCandidate, TopicBucket
from marketbrief.headlines.selector import (
    HeadlineSelector,
    MarketHeadlinesService,
    extract_json_object,
)
from marketbrief.ingestion.normalizer import generate_content_hash

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)


def _candidate(idx, title, bucket=TopicBucket.MACRO_RATES):
    return ScoredCandidate(
        id=idx,
        title=title,
        url=f"https://example.com/{idx}",
        source_name="Reuters",
        published_at=NOW,
        summary="Summary text.",
        relevance_score=0.5,
        score=0.9 - idx * 0.1,
        recency_score=1.0,
        credibility_score=0.95,
        macro_boost=0.1,
        topic_bucket=bucket,
    )


@pytest.fixture
def candidates():
    return [
        _candidate(0, "Fed minutes show caution on cuts"),
        _candidate(1, "Oil climbs on supply worries", TopicBucket.GEOPOLITICS_COMMODITIES),
    ]


def _llm_returning(text):
    llm = Mock()
    llm.complete.return_value = LLMResponse(text=text, model="test-model", tokens_used=42)
    return llm


def test_extract_json_object_tolerates_fences_and_chatter():
    assert extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert extract_json_object('Here you go: {"a": 2} hope it helps') == {"a": 2}
    with pytest.raises(json.JSONDecodeError):
        extract_json_object("no json here")


def test_build_user_prompt_lists_indexed_candidates(candidates):
    prompt = HeadlineSelector(Mock()).build_user_prompt(candidates)
    assert "CANDIDATE ARTICLES (2 total)" in prompt
    assert "[0] Title: Fed minutes show caution on cuts" in prompt
    assert "Topic: geopolitics_commodities" in prompt


def test_select_final_headlines_maps_indices(candidates):
    llm = _llm_returning(json.dumps({
        "headlines": [
            {"article_index": 1, "why_it_matters": "Energy costs feed inflation.", "confidence": 0.9},
            {"article_index": 0, "title": "Fed minutes: caution on cuts"},
            {"article_index": 7, "title": "Hallucinated"},
            {"article_index": True, "title": "Not an index"},
        ],
        "reasoning": "diverse",
    }))
    finals = HeadlineSelector(llm).select_final_headlines(candidates)

    assert [h.article_index for h in finals] == [1, 0]
    assert finals[0].title == "Oil climbs on supply worries"
    assert finals[0].why_it_matters == "Energy costs feed inflation."
    assert finals[1].title == "Fed minutes: caution on cuts"
    assert finals[1].confidence == 0.8
    assert "Federal Reserve" in finals[1].why_it_matters

    kwargs = llm.complete.call_args.kwargs
    assert kwargs["json_mode"] is True
    assert kwargs["temperature"] == 0.3


def test_select_final_headlines_failures_return_none(candidates):
    failing = Mock()
    failing.complete.side_effect = LLMError("boom")
    assert HeadlineSelector(failing).select_final_headlines(candidates) is None

    assert HeadlineSelector(_llm_returning("not json")).select_final_headlines(candidates) is None
    assert HeadlineSelector(_llm_returning('{"items": []}')).select_final_headlines(candidates) is None
    assert HeadlineSelector(Mock()).select_final_headlines([]) is None


def test_fallback_selection_formats_credibility_as_percent(candidates):
    finals = HeadlineSelector(Mock()).fallback_selection(candidates)
    assert len(finals) == 2
    assert finals[0].why_it_matters == "Key macro rates development with 95% source credibility"
    assert finals[0].confidence == pytest.approx(0.9)


def _store_news(db, now, title, source="Reuters", hours_ago=1):
    url = f"https://example.com/{abs(hash(title))}"
    article = NormalizedArticle(
        source_name=source, title=title, url=url, published_at=now - timedelta(hours=hours_ago)
    )
    return db.insert_news_item(article, generate_content_hash(title, url))


def test_headlines_service_falls_back_and_caches(db, now):
    _store_news(db, now, "Fed signals patience on rate cuts")
    _store_news(db, now, "Chip stocks rally on AI demand", source="CNBC")
    _store_news(db, now, "Old story about tariffs", hours_ago=72)

    llm = Mock()
    llm.complete.side_effect = LLMError("no key")
    service = MarketHeadlinesService(db, HeadlineSelector(llm), cache_minutes=30)

    first = service.get_headlines(now=now)
    assert first["cached"] is False
    assert first["metadata"]["candidates_reviewed"] == 2
    titles = [h["title"] for h in first["headlines"]]
    assert titles[0] == "Fed signals patience on rate cuts"
    assert "Old story about tariffs" not in titles

    second = service.get_headlines(now=now)
    assert second["cached"] is True
    assert second["headlines"] == first["headlines"]
    assert llm.complete.call_count == 1


def test_headlines_service_with_no_news(db, now):
    service = MarketHeadlinesService(db, HeadlineSelector(Mock()))
    result = service.get_headlines(now=now)
    assert result["headlines"] == []
    assert "message" in result
