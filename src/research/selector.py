"""
Analysis source selection.

Several completed analyses of one type can exist for a category and
marketplace, one per input source. Generation uses exactly one per type,
chosen by a fixed source priority. Ties keep the first row encountered.
"""

from typing import Iterable, Optional

from src.models.schemas import AnalysisSource, ResearchAnalysis

SOURCE_PRIORITY: tuple[str, ...] = (
    AnalysisSource.MERGED.value,
    AnalysisSource.CSV.value,
    AnalysisSource.FILE.value,
    AnalysisSource.LINKED.value,
)

# Rows written before sources were tracked came from CSV imports.
DEFAULT_SOURCE = AnalysisSource.CSV.value


def source_rank(source: Optional[str]) -> int:
    """Position in ``SOURCE_PRIORITY``; unknown sources rank after every known one."""
    try:
        return SOURCE_PRIORITY.index(source or DEFAULT_SOURCE)
    except ValueError:
        return len(SOURCE_PRIORITY)


def select_analysis(rows: Iterable[ResearchAnalysis]) -> Optional[ResearchAnalysis]:
    """Best row by source priority, or None for no rows. ``sorted`` is stable."""
    ranked = sorted(rows, key=lambda row: source_rank(row.source))
    return ranked[0] if ranked else None


def pick_best_per_type(rows: Iterable[ResearchAnalysis]) -> dict[str, ResearchAnalysis]:
    """Group rows by analysis type and select one per group."""
    grouped: dict[str, list[ResearchAnalysis]] = {}
    for row in rows:
        grouped.setdefault(row.analysis_type, []).append(row)
    return {
        analysis_type: select_analysis(group)
        for analysis_type, group in grouped.items()
    }


__all__ = [
    "SOURCE_PRIORITY",
    "DEFAULT_SOURCE",
    "source_rank",
    "select_analysis",
    "pick_best_per_type",
]
