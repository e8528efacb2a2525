"""Tests for deterministic headline scoring, de-duplication and diversity."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from marketbrief.headlines.scorer import (
    ScoredCandidate,
    TopicBucket,
    calculate_macro_boost,
    calculate_macro_relevance,
    calculate_recency_score,
    classify_topic_bucket,
    deduplicate_articles,
    ensure_diversity,
    generate_why_it_matters,
    get_credibility_score,
    jaccard_similarity,
    score_articles,
    select_top_candidates,
)

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)


def _candidate(title, score, bucket=TopicBucket.MARKET_INDICES):
    return ScoredCandidate(
        id=title,
        title=title,
        url=f"https://example.com/{abs(hash(title))}",
        source_name="Reuters",
        published_at=NOW,
        summary=None,
        relevance_score=0.5,
        score=score,
        recency_score=1.0,
        credibility_score=0.95,
        macro_boost=0.0,
        topic_bucket=bucket,
    )


def test_recency_decays_exponentially():
    assert calculate_recency_score(NOW, now=NOW) == 1.0
    assert calculate_recency_score(NOW - timedelta(hours=24), now=NOW) == pytest.approx(math.exp(-1))


def test_credibility_lookup():
    assert get_credibility_score("Reuters") == 0.95
    assert get_credibility_score("reuters.com") == 0.95
    assert get_credibility_score("Unknown Blog") == 0.5
    assert get_credibility_score("Unknown Blog", {"Unknown Blog": 0.9}) == 0.9
    assert get_credibility_score("") == 0.5


def test_macro_boost_is_capped():
    assert calculate_macro_boost("Fed signals rate cut as inflation cools") == pytest.approx(0.3)
    assert calculate_macro_boost("Powell: FOMC sees inflation, GDP and CPI risks") == pytest.approx(0.3)
    assert calculate_macro_boost("Company picks new logo") == 0.0


@pytest.mark.parametrize("title,bucket", [
    ("Powell says inflation remains sticky", TopicBucket.MACRO_RATES),
    ("Oil jumps as Middle East tensions rise", TopicBucket.GEOPOLITICS_COMMODITIES),
    ("Nvidia unveils new AI chip", TopicBucket.TECH_AI),
    ("Apple revenue beats forecast", TopicBucket.EARNINGS_MICRO),
    ("SEC opens probe into lender", TopicBucket.REGULATORY),
    ("Company picks new logo", TopicBucket.MARKET_INDICES),
])
def test_classify_topic_bucket(title, bucket):
    assert classify_topic_bucket(title) == bucket


def test_topic_patterns_match_word_starts_only():
    # "said" contains "ai" but is not a tech story
    assert classify_topic_bucket("Retailer said sales slowed") == TopicBucket.MARKET_INDICES


def test_jaccard_similarity():
    assert jaccard_similarity("a b c", "a b d") == 0.5
    assert jaccard_similarity("", "") == 0.0


def test_deduplicate_keeps_higher_score_in_place():
    first = _candidate("Fed holds rates steady today", 0.5)
    second = _candidate("Fed holds rates steady today again", 0.9)
    other = _candidate("Oil slides on supply glut", 0.7)

    result = deduplicate_articles([first, other, second])
    assert result == [second, other]


def test_ensure_diversity_prefers_one_per_bucket():
    macro1 = _candidate("Fed minutes", 0.9, TopicBucket.MACRO_RATES)
    macro2 = _candidate("Treasury yields climb", 0.85, TopicBucket.MACRO_RATES)
    tech = _candidate("Chip stocks rally", 0.8, TopicBucket.TECH_AI)
    earnings = _candidate("Retailer profit beats", 0.7, TopicBucket.EARNINGS_MICRO)
    ranked = [macro1, macro2, tech, earnings]

    assert ensure_diversity(ranked, limit=3) == [macro1, tech, earnings]
    assert ensure_diversity(ranked, limit=5) == [macro1, tech, earnings, macro2]


def test_score_articles_formula():
    scored = score_articles([{
        "id": 1,
        "title": "Company picks new logo",
        "url": "https://example.com/logo",
        "source_name": "Bloomberg",
        "published_at": NOW,
    }], now=NOW)
    assert len(scored) == 1
    # (0.5 * 0.3 + 1.0 * 0.3 + 1.0 * 0.4) * (1 + 0)
    assert scored[0].score == pytest.approx(0.85)
    assert scored[0].topic_bucket == TopicBucket.MARKET_INDICES


def test_select_top_candidates_dedupes_and_limits():
    base = {"url": "https://example.com/x", "source_name": "Reuters", "published_at": NOW}
    candidates = [
        dict(base, id=1, title="Fed holds rates steady today"),
        dict(base, id=2, title="Fed holds rates steady today as expected"),
        dict(base, id=3, title="Oil slides on supply glut", published_at=NOW - timedelta(hours=30)),
        dict(base, id=4, title="Chip stocks rally on AI demand"),
    ]
    top = select_top_candidates(candidates, limit=2, now=NOW)
    assert len(top) == 2
    assert {c.id for c in top}.isdisjoint({2})


def test_select_top_candidates_keeps_the_stronger_duplicate():
    base = {"url": "https://example.com/x", "published_at": NOW}
    candidates = [
        dict(base, id=1, title="Fed holds rates steady today", source_name="Yahoo Finance"),
        dict(base, id=2, title="Fed holds rates steady today as expected", source_name="Bloomberg"),
    ]
    top = select_top_candidates(candidates, limit=5, now=NOW)
    assert [c.id for c in top] == [2]


def test_macro_relevance_bounds():
    assert calculate_macro_relevance("Company picks new logo") == 0.4
    score = calculate_macro_relevance("Fed rate cut hopes lift S&P 500", "Powell signals inflation easing")
    assert 0.4 < score <= 1.0


def test_why_it_matters_templates():
    assert "Federal Reserve" in generate_why_it_matters("Fed minutes show caution")
    assert "Inflation" in generate_why_it_matters("CPI comes in hot")
    assert generate_why_it_matters("Company picks new logo").startswith("Market-moving")
