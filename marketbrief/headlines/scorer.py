"""Deterministic ranking for market-wide headlines.

First stage of headline selection: score by relevance, recency and source
credibility, boost macro stories, drop near-duplicates and spread the picks
across topic buckets. The LLM then chooses from what survives.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

SOURCE_CREDIBILITY: Dict[str, float] = {
    "Bloomberg": 1.00,
    "Reuters": 0.95,
    "Financial Times": 0.95,
    "WSJ": 0.90,
    "Wall Street Journal": 0.90,
    "The Economist": 0.90,
    "Barron's": 0.85,
    "CNBC": 0.80,
    "MarketWatch": 0.75,
    "Yahoo Finance": 0.70,
    "Motley Fool": 0.60,
}
DEFAULT_CREDIBILITY = 0.5

MACRO_KEYWORDS = [
    "Federal Reserve", "Fed", "interest rates", "inflation", "CPI", "PPI",
    "jobs report", "GDP", "Treasury", "bond yields", "oil", "energy",
    "geopolitics", "China", "Middle East", "AI", "artificial intelligence",
    "data center", "semiconductors", "earnings season", "guidance",
    "S&P 500", "Nasdaq", "Dow", "volatility", "VIX", "recession",
    "rate cut", "rate hike", "Powell", "FOMC", "tariffs", "trade war",
]

# Used for macro news relevance; the first 20 are weighted again in titles
MACRO_RELEVANCE_KEYWORDS = [
    'federal reserve', 'fed', 'interest rate', 'rate cut', 'rate hike', 'powell', 'fomc', 'monetary policy',
    'quantitative', 'inflation', 'deflation', 'cpi', 'pce',
    'gdp', 'unemployment', 'jobs report', 'nonfarm payroll', 'consumer confidence', 'retail sales',
    'housing starts', 'manufacturing', 'pmi', 'ism', 'economic growth', 'recession',
    's&p 500', 'dow jones', 'nasdaq', 'russell', 'market rally', 'market selloff', 'correction',
    'bull market', 'bear market', 'volatility', 'vix',
    'trade war', 'tariff', 'sanctions', 'geopolitical', 'china trade', 'eu', 'opec', 'oil price',
    'tech sector', 'financial sector', 'energy sector', 'healthcare sector', 'semiconductor', 'ai sector',
]


class TopicBucket(str, Enum):
    MACRO_RATES = "macro_rates"
    GEOPOLITICS_COMMODITIES = "geopolitics_commodities"
    TECH_AI = "tech_ai"
    MARKET_INDICES = "market_indices"
    EARNINGS_MICRO = "earnings_micro"
    REGULATORY = "regulatory"


# Checked in order; the first hit wins
_BUCKET_PATTERNS = [
    (TopicBucket.MACRO_RATES,
     re.compile(r"\b(federal reserve|fed|interest rate|inflation|cpi|ppi|powell|fomc|treasury|bond|yield)")),
    (TopicBucket.GEOPOLITICS_COMMODITIES,
     re.compile(r"\b(china|russia|middle east|geopolit|war|tariff|trade|oil|energy|commodit)")),
    (TopicBucket.TECH_AI,
     re.compile(r"\b(ai|artificial intelligence|data center|semiconductor|nvidia|chip|tech)")),
    (TopicBucket.MARKET_INDICES,
     re.compile(r"\b(s&p 500|nasdaq|dow|market|index|rally|sell.?off|volatility|vix)")),
    (TopicBucket.EARNINGS_MICRO,
     re.compile(r"\b(earnings|guidance|quarter|revenue|profit|forecast)")),
    (TopicBucket.REGULATORY,
     re.compile(r"\b(sec|regulation|antitrust|lawsuit|investigation)")),
]


@dataclass
class ScoredCandidate:
    id: Any
    title: str
    url: str
    source_name: str
    published_at: datetime
    summary: Optional[str]
    relevance_score: float
    score: float
    recency_score: float
    credibility_score: float
    macro_boost: float
    topic_bucket: TopicBucket


def calculate_recency_score(published_at: datetime, now: Optional[datetime] = None) -> float:
    """Exponential decay with a 24 hour time constant."""
    now = now or datetime.now(timezone.utc)
    hours_old = (now - published_at).total_seconds() / 3600
    return math.exp(-hours_old / 24)


def get_credibility_score(source_name: str, overrides: Optional[Mapping[str, float]] = None) -> float:
    table = dict(SOURCE_CREDIBILITY)
    if overrides:
        table.update(overrides)

    normalized = (source_name or '').strip()
    if normalized in table:
        return table[normalized]

    lowered = normalized.lower()
    if lowered:
        for key, value in table.items():
            key_lower = key.lower()
            if key_lower in lowered or lowered in key_lower:
                return value

    return DEFAULT_CREDIBILITY


def calculate_macro_boost(text: str) -> float:
    """+0.1 per macro keyword present, capped at +0.3."""
    lowered = text.lower()
    hits = sum(1 for keyword in MACRO_KEYWORDS if keyword.lower() in lowered)
    return min(hits, 3) * 0.1


def classify_topic_bucket(title: str, summary: Optional[str] = None) -> TopicBucket:
    text = f"{title} {summary or ''}".lower()
    for bucket, pattern in _BUCKET_PATTERNS:
        if pattern.search(text):
            return bucket
    return TopicBucket.MARKET_INDICES


def jaccard_similarity(text1: str, text2: str) -> float:
    tokens1 = set(text1.lower().split())
    tokens2 = set(text2.lower().split())
    union = tokens1 | tokens2
    if not union:
        return 0.0
    return len(tokens1 & tokens2) / len(union)


def deduplicate_articles(articles: List[ScoredCandidate], threshold: float = 0.5) -> List[ScoredCandidate]:
    """Drop near-duplicate titles, keeping the higher-scored one in place."""
    result: List[ScoredCandidate] = []
    for article in articles:
        for index, existing in enumerate(result):
            if jaccard_similarity(article.title, existing.title) >= threshold:
                if article.score > existing.score:
                    result[index] = article
                break
        else:
            result.append(article)
    return result


def ensure_diversity(articles: List[ScoredCandidate], limit: int = 5) -> List[ScoredCandidate]:
    """Take the best article from each topic bucket, then fill by score."""
    selected: List[ScoredCandidate] = []
    for bucket in TopicBucket:
        if len(selected) >= limit:
            break
        for article in articles:
            if article.topic_bucket == bucket:
                selected.append(article)
                break

    for article in articles:
        if len(selected) >= limit:
            break
        if not any(article is s for s in selected):
            selected.append(article)

    return selected[:limit]


def score_articles(
    candidates: List[Dict[str, Any]],
    now: Optional[datetime] = None,
    credibility_overrides: Optional[Mapping[str, float]] = None,
) -> List[ScoredCandidate]:
    """Score candidate dicts and return them best first.

    score = (relevance * 0.3 + recency * 0.3 + credibility * 0.4) * (1 + macro boost)
    """
    scored = []
    for candidate in candidates:
        title = candidate['title']
        summary = candidate.get('summary')
        relevance = candidate.get('relevance_score') or 0.5
        recency = calculate_recency_score(candidate['published_at'], now=now)
        credibility = get_credibility_score(candidate.get('source_name') or '', credibility_overrides)
        boost = calculate_macro_boost(f"{title} {summary or ''}")

        scored.append(ScoredCandidate(
            id=candidate.get('id'),
            title=title,
            url=candidate['url'],
            source_name=candidate.get('source_name') or '',
            published_at=candidate['published_at'],
            summary=summary,
            relevance_score=relevance,
            score=(relevance * 0.3 + recency * 0.3 + credibility * 0.4) * (1 + boost),
            recency_score=recency,
            credibility_score=credibility,
            macro_boost=boost,
            topic_bucket=classify_topic_bucket(title, summary),
        ))

    scored.sort(key=lambda c: c.score, reverse=True)
    return scored


def select_top_candidates(
    candidates: List[Dict[str, Any]],
    limit: int = 20,
    now: Optional[datetime] = None,
    credibility_overrides: Optional[Mapping[str, float]] = None,
) -> List[ScoredCandidate]:
    """Score, de-duplicate and keep the top ``limit`` candidates."""
    scored = score_articles(candidates, now=now, credibility_overrides=credibility_overrides)
    return deduplicate_articles(scored)[:limit]


def calculate_macro_relevance(title: str, summary: str = '') -> float:
    text = f"{title} {summary or ''}".lower()
    title_lower = title.lower()

    score = 0.4
    hits = sum(1 for keyword in MACRO_RELEVANCE_KEYWORDS if keyword in text)
    score += min(hits * 0.08, 0.4)

    for keyword in MACRO_RELEVANCE_KEYWORDS[:20]:
        if keyword in title_lower:
            score += 0.05

    return min(score, 1.0)


def generate_why_it_matters(title: str, category: str = '') -> str:
    title_lower = title.lower()

    if category == 'fed' or 'fed' in title_lower or 'rate' in title_lower:
        return 'Federal Reserve policy directly impacts borrowing costs and equity valuations.'
    if 'inflation' in title_lower or 'cpi' in title_lower:
        return 'Inflation data influences Fed policy and consumer purchasing power.'
    if 'jobs' in title_lower or 'unemployment' in title_lower:
        return 'Employment data signals economic health and consumer spending capacity.'
    if 'gdp' in title_lower or 'growth' in title_lower:
        return 'Economic growth metrics affect corporate earnings expectations.'
    if 'china' in title_lower or 'trade' in title_lower:
        return 'Trade dynamics impact global supply chains and multinational revenues.'
    if 'oil' in title_lower or 'energy' in title_lower:
        return 'Energy prices affect production costs across all sectors.'
    if 'tech' in title_lower or 'semiconductor' in title_lower:
        return 'Technology sector trends drive broader market movements.'

    return 'Market-moving news affecting investment sentiment and valuations.'
