"""LLM-assisted final selection of market-wide headlines."""

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from ..ai.llm_client import LLMError
from .scorer import (
    ScoredCandidate,
    calculate_macro_relevance,
    ensure_diversity,
    generate_why_it_matters,
    select_top_candidates,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a financial news curator for an institutional investor dashboard.

Your task: Select the TOP 5 most important market-wide headlines from the provided candidate articles.

CRITICAL RULES:
1. GROUNDING: Only use information explicitly stated in the candidate articles. Do NOT add external knowledge.
2. DIVERSITY: Cover macro/rates, geopolitics, tech/AI, market indices and earnings where possible.
3. RELEVANCE: Prioritize articles that matter to portfolio managers.
4. CITATION: Reference articles by their index number. Each headline maps to exactly ONE candidate.
5. "WHY IT MATTERS": 1-2 sentences on market impact, grounded in the article.
6. NO MARKDOWN: Output pure JSON only, no code fences.
7. REFUSAL: If fewer than 5 quality articles exist, return fewer items.

OUTPUT SCHEMA (strict JSON):
{
  "headlines": [
    {
      "article_index": 0,
      "title": "exact or slightly edited title from candidate",
      "source": "exact source from candidate",
      "url": "exact url from candidate",
      "published_at": "exact ISO timestamp from candidate",
      "why_it_matters": "1-2 sentence explanation",
      "confidence": 0.95
    }
  ],
  "reasoning": "brief explanation of selection logic"
}"""

CANDIDATE_HOURS = 48
CANDIDATE_POOL_LIMIT = 200
TOP_CANDIDATES = 20
FINAL_HEADLINES = 5


@dataclass
class FinalHeadline:
    title: str
    source: str
    url: str
    published_at: str
    why_it_matters: str
    confidence: float
    article_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "source": self.source,
            "url": self.url,
            "published_at": self.published_at,
            "why_it_matters": self.why_it_matters,
            "confidence": self.confidence,
        }


def _iso(value: Any) -> str:
    return value.isoformat() if isinstance(value, datetime) else str(value or "")


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object out of an LLM reply, tolerating code fences and chatter."""
    cleaned = re.sub(r"```(?:json)?\s*", "", text).replace("```", "").strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(cleaned[start:end + 1])


class HeadlineSelector:
    """Asks the LLM to pick the final five headlines from scored candidates."""

    def __init__(self, llm_client):
        self.llm_client = llm_client

    def build_user_prompt(self, candidates: List[ScoredCandidate]) -> str:
        blocks = []
        for idx, c in enumerate(candidates):
            blocks.append(
                f"[{idx}] Title: {c.title}\n"
                f"Source: {c.source_name}\n"
                f"Published: {_iso(c.published_at)}\n"
                f"URL: {c.url}\n"
                f"Summary: {c.summary or 'N/A'}\n"
                f"Score: {c.score:.3f} (recency: {c.recency_score:.2f}, credibility: {c.credibility_score:.2f})\n"
                f"Topic: {c.topic_bucket.value}\n"
            )
        candidate_list = "\n---\n".join(blocks)

        return (
            f"CANDIDATE ARTICLES ({len(candidates)} total):\n\n"
            f"{candidate_list}\n\n"
            "Select the TOP 5 headlines that give the most complete view of today's market. Prioritize:\n"
            "- Federal Reserve / interest rates / inflation news\n"
            "- Major geopolitical developments\n"
            "- Significant tech/AI infrastructure moves\n"
            "- Broad market index movements\n"
            "- Systemic earnings/guidance stories\n\n"
            "Output pure JSON following the schema. No markdown, no code fences."
        )

    def select_final_headlines(self, candidates: List[ScoredCandidate]) -> Optional[List[FinalHeadline]]:
        """Return the LLM's picks, or ``None`` if anything goes wrong."""
        if not candidates:
            return None

        logger.info(f"Asking LLM to select from {len(candidates)} headline candidates")
        try:
            response = self.llm_client.complete(
                SYSTEM_PROMPT, self.build_user_prompt(candidates), json_mode=True, temperature=0.3
            )
        except LLMError as e:
            logger.error(f"Headline selection failed: {e}")
            return None

        try:
            parsed = extract_json_object(response.text)
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to parse headline JSON: {e}; raw: {response.text[:500]}")
            return None

        items = parsed.get("headlines") if isinstance(parsed, dict) else None
        if not isinstance(items, list):
            logger.error("Headline response missing 'headlines' list")
            return None

        finals = []
        for item in items:
            if not isinstance(item, dict):
                continue
            idx = item.get("article_index")
            if not isinstance(idx, int) or isinstance(idx, bool) or not 0 <= idx < len(candidates):
                logger.warning(f"Invalid article_index: {idx}")
                continue

            candidate = candidates[idx]
            finals.append(FinalHeadline(
                title=item.get("title") or candidate.title,
                source=item.get("source") or candidate.source_name,
                url=item.get("url") or candidate.url,
                published_at=item.get("published_at") or _iso(candidate.published_at),
                why_it_matters=item.get("why_it_matters") or generate_why_it_matters(candidate.title),
                confidence=float(item.get("confidence") or 0.8),
                article_index=idx,
            ))

        logger.info(f"LLM selected {len(finals)} headlines")
        return finals or None

    def fallback_selection(self, candidates: List[ScoredCandidate]) -> List[FinalHeadline]:
        """Top five by score, with a templated "why it matters"."""
        finals = []
        for idx, c in enumerate(candidates[:FINAL_HEADLINES]):
            topic = c.topic_bucket.value.replace("_", " ")
            finals.append(FinalHeadline(
                title=c.title,
                source=c.source_name,
                url=c.url,
                published_at=_iso(c.published_at),
                why_it_matters=f"Key {topic} development with {c.credibility_score * 100:.0f}% source credibility",
                confidence=c.score,
                article_index=idx,
            ))
        return finals


class MarketHeadlinesService:
    """Market-wide top headlines with a short in-process cache."""

    def __init__(
        self,
        db,
        selector: HeadlineSelector,
        cache_minutes: int = 30,
        credibility_overrides: Optional[Mapping[str, float]] = None,
    ):
        self.db = db
        self.selector = selector
        self.cache_seconds = cache_minutes * 60
        self.credibility_overrides = credibility_overrides
        self._cache: Optional[Dict[str, Any]] = None

    def get_headlines(self, now: Optional[datetime] = None, use_cache: bool = True) -> Dict[str, Any]:
        current = time.time()
        if use_cache and self._cache and current - self._cache["timestamp"] < self.cache_seconds:
            logger.info("Returning cached market headlines")
            return {
                "headlines": self._cache["headlines"],
                "cached": True,
                "cache_age": int(current - self._cache["timestamp"]),
            }

        news = self.db.get_recent_news(hours=CANDIDATE_HOURS, limit=CANDIDATE_POOL_LIMIT, now=now)
        if not news:
            logger.info("No news items found in the last 48h")
            return {"headlines": [], "cached": False, "message": "No recent market news available"}

        for item in news:
            if item.get("relevance_score") is None:
                item["relevance_score"] = calculate_macro_relevance(item["title"], item.get("summary") or "")

        top = select_top_candidates(
            news, limit=TOP_CANDIDATES, now=now, credibility_overrides=self.credibility_overrides
        )
        diversified = ensure_diversity(top, limit=FINAL_HEADLINES)

        finals = self.selector.select_final_headlines(diversified)
        if not finals:
            logger.info("LLM headline selection unavailable, using fallback")
            finals = self.selector.fallback_selection(diversified)

        headlines = [h.to_dict() for h in finals]
        self._cache = {"headlines": headlines, "timestamp": current}

        return {
            "headlines": headlines,
            "cached": False,
            "metadata": {
                "candidates_reviewed": len(news),
                "top_scored": len(top),
                "final_selected": len(headlines),
            },
        }
