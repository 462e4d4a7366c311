"""Research aggregation: provider fallback, merging, selection and ingestion."""

from src.research.fallback import ChainResult, FallbackChainResolver, FetchStrategy
from src.research.merge import MergeResult, merge_provenance, merge_qna, merge_reviews
from src.research.selector import SOURCE_PRIORITY, pick_best_per_type, select_analysis

__all__ = [
    "ChainResult",
    "FallbackChainResolver",
    "FetchStrategy",
    "MergeResult",
    "merge_provenance",
    "merge_qna",
    "merge_reviews",
    "SOURCE_PRIORITY",
    "pick_best_per_type",
    "select_analysis",
]
