"""News-to-asset relevance matching."""

from .asset_types import generate_asset_keywords, infer_asset_type, is_mutual_fund
from .filter import RelevanceEngine, calculate_keyword_score, find_relevant_assets

__all__ = [
    "RelevanceEngine",
    "calculate_keyword_score",
    "find_relevant_assets",
    "generate_asset_keywords",
    "infer_asset_type",
    "is_mutual_fund",
]
