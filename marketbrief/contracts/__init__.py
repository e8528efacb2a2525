"""Typed contracts for stable payload schemas."""

from .schemas import (
    AssetSummary,
    AssetWithNews,
    BriefingInput,
    GeneratedBriefing,
    Headline,
    IngestionResult,
    MarketOverview,
    NormalizedArticle,
    PortfolioAllocation,
    RelevanceMatch,
    RelevanceRunResult,
    RelevantNewsItem,
)

__all__ = [
    "AssetSummary",
    "AssetWithNews",
    "BriefingInput",
    "GeneratedBriefing",
    "Headline",
    "IngestionResult",
    "MarketOverview",
    "NormalizedArticle",
    "PortfolioAllocation",
    "RelevanceMatch",
    "RelevanceRunResult",
    "RelevantNewsItem",
]
