"""Market-wide headline ranking and selection."""

from .scorer import ScoredCandidate, TopicBucket, ensure_diversity, score_articles, select_top_candidates
from .selector import FinalHeadline, HeadlineSelector, MarketHeadlinesService

__all__ = [
    "FinalHeadline",
    "HeadlineSelector",
    "MarketHeadlinesService",
    "ScoredCandidate",
    "TopicBucket",
    "ensure_diversity",
    "score_articles",
    "select_top_candidates",
]
