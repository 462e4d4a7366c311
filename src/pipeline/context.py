"""
Generation input assembly.

Loads the research analyses for a category and marketplace, picks one per
type by source priority, resolves linked market intelligence and combines
them with the product facts into a ``ListingGenerationInput``.
"""

from typing import Any, Optional

from src.models.schemas import (
    AnalysisType,
    Category,
    CharLimits,
    Country,
    ExistingListingText,
    Listing,
    ListingGenerationInput,
    MarketIntelligenceResult,
    OptimizationMode,
    ProductSpec,
    ResearchAnalysis,
)
from src.research.selector import pick_best_per_type
from src.storage.store import Store
from src.utils.logger import get_logger

logger = get_logger(__name__)


async def load_analyses(store: Store, category_id: str, country_id: str) -> dict[str, ResearchAnalysis]:
    """Best completed analysis per type for one category and marketplace."""
    rows = await store.list_analyses(category_id, country_id)
    picks = pick_best_per_type(rows)
    logger.debug(
        "Analyses selected",
        category_id=category_id,
        country_id=country_id,
        available=len(rows),
        picked={t: a.source or "csv" for t, a in picks.items()},
    )
    return picks


async def _market_intelligence(
    store: Store,
    row: Optional[ResearchAnalysis],
) -> Optional[MarketIntelligenceResult]:
    """A linked row points at a separate market-intelligence record; otherwise use its own payload."""
    if row is None:
        return None
    if row.market_intelligence_id:
        linked = await store.get_analysis(row.market_intelligence_id)
        if linked is not None and isinstance(linked.result, MarketIntelligenceResult):
            return linked.result
        logger.warning(
            "Linked market intelligence unavailable",
            analysis_id=row.id,
            market_intelligence_id=row.market_intelligence_id,
        )
    return row.result if isinstance(row.result, MarketIntelligenceResult) else None


def _result(picks: dict[str, ResearchAnalysis], analysis_type: AnalysisType) -> Any:
    row = picks.get(analysis_type.value)
    return row.result if row is not None else None


async def build_generation_input(
    store: Store,
    category: Category,
    country: Country,
    product: ProductSpec,
    optimization_mode: str = OptimizationMode.NEW.value,
    existing_listing_text: Optional[ExistingListingText] = None,
    analyses: Optional[dict[str, ResearchAnalysis]] = None,
) -> ListingGenerationInput:
    """
    Assemble everything the AI service needs for one product.

    Args:
        store: Persistence store
        category: Product category
        country: Marketplace with language and character limits
        product: Product facts
        optimization_mode: new, optimize_existing or based_on_existing
        existing_listing_text: Reference listing for the non-new modes
        analyses: Pre-selected analyses; loaded from the store when omitted

    Returns:
        ListingGenerationInput
    """
    if analyses is None:
        analyses = await load_analyses(store, category.id, country.id)

    return ListingGenerationInput(
        product_name=product.product_name.strip(),
        brand=product.brand.strip(),
        asin=product.asin or None,
        attributes={k: v for k, v in product.attributes.items() if k and v},
        category_name=category.name,
        marketplace=country.name,
        language=country.language,
        char_limits=CharLimits.from_country(country),
        optimization_mode=optimization_mode,
        existing_listing_text=existing_listing_text,
        keyword_analysis=_result(analyses, AnalysisType.KEYWORD_ANALYSIS),
        review_analysis=_result(analyses, AnalysisType.REVIEW_ANALYSIS),
        qna_analysis=_result(analyses, AnalysisType.QNA_ANALYSIS),
        competitor_analysis=_result(analyses, AnalysisType.COMPETITOR_ANALYSIS),
        market_intelligence=await _market_intelligence(
            store, analyses.get(AnalysisType.MARKET_INTELLIGENCE.value)
        ),
    )


def product_from_listing(listing: Listing) -> ProductSpec:
    """Rebuild the product facts a listing was generated from."""
    context = listing.generation_context or {}
    return ProductSpec(
        product_name=listing.product_name or context.get("product_name", ""),
        brand=listing.brand or context.get("brand", ""),
        asin=listing.asin or context.get("asin"),
        attributes=dict(context.get("attributes") or {}),
    )


def generation_context(product: ProductSpec, data: ListingGenerationInput, **extra: Any) -> dict[str, Any]:
    """Context blob stored on a listing so later phases can rebuild the input."""
    return {
        "product_name": data.product_name,
        "brand": data.brand,
        "asin": data.asin,
        "attributes": dict(data.attributes),
        "product_type_name": product.product_type_name,
        "analysis_types": data.available_analyses(),
        **extra,
    }


__all__ = [
    "load_analyses",
    "build_generation_input",
    "product_from_listing",
    "generation_context",
]
