"""
Batch orchestrator.

Generates complete listings for up to ``MAX_BATCH_SIZE`` products of one
category and marketplace with the single-shot AI call. Items run one after
another; a failing item is recorded and the batch moves on.
"""

from dataclasses import dataclass, field
from typing import Optional

from src.config.settings import Settings, get_settings
from src.models.schemas import (
    BULLET_SECTION_TYPES,
    BatchJob,
    BatchRequest,
    BatchStatus,
    Category,
    Country,
    FailedProduct,
    Listing,
    ListingGenerationResult,
    ListingPhase,
    ListingSection,
    ProductSpec,
    ResearchAnalysis,
    SectionType,
    SECTION_TYPES,
    flatten_bullet,
    format_backend_attributes,
)
from src.pipeline.context import build_generation_input, generation_context, load_analyses
from src.pipeline.phases import find_or_create_product_type
from src.pipeline.progress import ProgressCallback, ProgressTracker
from src.services.llm_service import ClaudeService
from src.services.validation_service import ValidationService
from src.storage.store import Store
from src.utils.logger import LogContext, get_logger
from src.utils.retry import ErrorHandler, NotFoundError, PersistenceError

logger = get_logger(__name__)


@dataclass
class BatchOutcome:
    batch_job: BatchJob
    failed_products: list[FailedProduct] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.batch_job.completed_listings


def section_variations(result: ListingGenerationResult, section_type: str) -> list[str]:
    """Variant list for one section of a single-shot result."""
    if section_type == SectionType.TITLE.value:
        return list(result.title)
    if section_type in BULLET_SECTION_TYPES:
        index = BULLET_SECTION_TYPES.index(section_type)
        return flatten_bullet(result.bullets[index]) if index < len(result.bullets) else []
    if section_type == SectionType.DESCRIPTION.value:
        return list(result.description)
    if section_type == SectionType.SEARCH_TERMS.value:
        return list(result.search_terms)
    if section_type == SectionType.SUBJECT_MATTER.value:
        if not result.subject_matter:
            return []
        return [
            "; ".join((f[i] if i < len(f) else "") for f in result.subject_matter)
            for i in range(3)
        ]
    if section_type == SectionType.BACKEND_ATTRIBUTES.value:
        return [format_backend_attributes(result.backend_attributes)] if result.backend_attributes else []
    return []


class BatchOrchestrator:
    """
    Runs one batch request to completion.

    Example:
        >>> orchestrator = BatchOrchestrator(store, ClaudeService())
        >>> outcome = await orchestrator.run_batch(request)
        >>> outcome.batch_job.status
        'completed'
    """

    def __init__(
        self,
        store: Store,
        claude: ClaudeService,
        validator: Optional[ValidationService] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.claude = claude
        self.validator = validator or ValidationService()
        self.settings = settings or get_settings()

    async def run_batch(
        self,
        request: BatchRequest,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchOutcome:
        """
        Validate every product, then generate and persist them one by one.

        Raises:
            ValidationError: Bad ids, empty or oversized batch, bad product row
            NotFoundError: Unknown category or country
        """
        self.validator.validate_batch_request(request, self.settings.max_batch_size)

        category = await self.store.get_category(request.category_id)
        if category is None:
            raise NotFoundError("Category", request.category_id)
        country = await self.store.get_country(request.country_id)
        if country is None:
            raise NotFoundError("Country", request.country_id)
        analyses = await load_analyses(self.store, category.id, country.id)

        batch = await self.store.insert_batch(
            BatchJob(
                name=request.name or f"Batch: {category.name} - {country.name}",
                category_id=category.id,
                country_id=country.id,
                status=BatchStatus.PROCESSING.value,
                total_listings=len(request.products),
            )
        )
        tracker = ProgressTracker.for_items(len(request.products), progress_callback)
        failures: list[FailedProduct] = []
        product_type_ids: list[str] = []

        with LogContext(batch_id=batch.id):
            logger.info("Batch started", total=len(request.products))
            for index, product in enumerate(request.products):
                try:
                    await self._generate_item(batch, category, country, product, analyses, product_type_ids)
                except Exception as e:
                    logger.warning(
                        "Batch item failed",
                        item=index + 1,
                        product_name=product.product_name,
                        error=str(e),
                    )
                    failures.append(
                        FailedProduct(
                            product_name=product.product_name,
                            error=str(e) or type(e).__name__,
                            error_type=ErrorHandler.categorize_error(e),
                        )
                    )

                batch = await self.store.update_batch(
                    batch.id,
                    {
                        "completed_listings": index + 1 - len(failures),
                        "failed_products": failures,
                        "product_type_ids": product_type_ids,
                    },
                )
                tracker.mark_complete(f"item_{index + 1}", f"Processed {product.product_name}")

            succeeded = len(request.products) - len(failures)
            status = BatchStatus.FAILED.value if succeeded == 0 else BatchStatus.COMPLETED.value
            batch = await self.store.update_batch(
                batch.id,
                {"status": status, "completed_listings": succeeded, "failed_products": failures},
            )
            logger.info("Batch finished", status=status, succeeded=succeeded, failed=len(failures))

        return BatchOutcome(batch_job=batch, failed_products=failures)

    async def _generate_item(
        self,
        batch: BatchJob,
        category: Category,
        country: Country,
        product: ProductSpec,
        analyses: dict[str, ResearchAnalysis],
        product_type_ids: list[str],
    ) -> Listing:
        product_type = await find_or_create_product_type(self.store, category.id, product)
        if product_type is not None and product_type.id not in product_type_ids:
            product_type_ids.append(product_type.id)

        data = await build_generation_input(self.store, category, country, product, analyses=analyses)
        outcome = await self.claude.generate_listing(data)
        result = outcome.result

        bullets = [flatten_bullet(b) for b in result.bullets]
        subject = section_variations(result, SectionType.SUBJECT_MATTER.value)
        listing = await self.store.insert_listing(
            Listing(
                category_id=category.id,
                country_id=country.id,
                product_type_id=product_type.id if product_type else None,
                batch_job_id=batch.id,
                product_name=data.product_name,
                brand=data.brand,
                asin=data.asin,
                phase=ListingPhase.COMPLETE.value,
                generation_context=generation_context(product, data, category_id=category.id),
                planning_matrix=result.planning_matrix or None,
                model_used=outcome.model,
                tokens_used=outcome.tokens_used,
                title=result.title[0],
                bullet_points=[b[0] if b else "" for b in bullets],
                description=result.description[0] if result.description else "",
                search_terms=result.search_terms[0] if result.search_terms else "",
                subject_matter=subject[:1],
                backend_attributes=result.backend_attributes or None,
            )
        )

        sections = []
        for section_type in SECTION_TYPES:
            variations = section_variations(result, section_type)
            if variations:
                sections.append(
                    ListingSection(listing_id=listing.id, section_type=section_type, variations=variations)
                )
        try:
            await self.store.insert_sections(sections)
        except Exception as e:
            await self.store.delete_listing(listing.id)
            raise PersistenceError(f"Failed to save listing sections: {e}", {"listing_id": listing.id}) from e

        logger.debug("Batch item generated", listing_id=listing.id, sections=len(sections))
        return listing


__all__ = ["BatchOrchestrator", "BatchOutcome", "section_variations"]
