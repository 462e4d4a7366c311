"""
Review collection for one ASIN on one marketplace.

The review chain tries, in order:

    1. ``amazon_reviews``  - structured reviews pages, paginated in batches
    2. ``apify``           - scrape actor over the reviews page
    3. ``amazon_product``  - the few reviews embedded in a product lookup

Whatever provider serves the request, its reviews are merged into the
stored ``AggregatedReviewRecord`` for (asin, country, sort order).
"""

from typing import TYPE_CHECKING, Optional

from src.config.settings import Settings, get_settings
from src.models.schemas import (
    AggregatedReviewRecord,
    RatingBucket,
    ReviewItem,
    validate_asin,
)
from src.research.fallback import FallbackChainResolver, FetchStrategy
from src.research.merge import merge_provenance, merge_reviews
from src.services.marketplace_service import (
    ApifyProvider,
    FetchResult,
    OxylabsProvider,
    ReviewPage,
)
from src.storage.store import Store
from src.utils.logger import LogContext, get_logger
from src.utils.retry import NotFoundError, ValidationError

if TYPE_CHECKING:
    from src.pipeline.jobs import BackgroundJobRunner

logger = get_logger(__name__)

# Page budget when "fetch all" is requested and the provider reports no total.
FETCH_ALL_PAGE_CAP = 9999
REVIEWS_PER_PAGE = 10


def compute_distribution(reviews: list[ReviewItem]) -> list[RatingBucket]:
    """Star distribution (5 down to 1) as whole percentages of rated reviews."""
    rated = [int(r.rating) for r in reviews if 1 <= r.rating <= 5]
    if not rated:
        return []
    return [
        RatingBucket(rating=star, percentage=str(round(rated.count(star) / len(rated) * 100)))
        for star in (5, 4, 3, 2, 1)
    ]


def average_rating(reviews: list[ReviewItem]) -> Optional[float]:
    rated = [r.rating for r in reviews if 1 <= r.rating <= 5]
    if not rated:
        return None
    return round(sum(rated) / len(rated), 1)


class ReviewsService:
    """Fetches reviews through the fallback chain and merges them into storage."""

    def __init__(
        self,
        store: Store,
        oxylabs: OxylabsProvider,
        apify: ApifyProvider,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.oxylabs = oxylabs
        self.apify = apify
        self.settings = settings or get_settings()

    async def fetch_structured_reviews(
        self,
        asin: str,
        domain: str,
        pages: int,
        sort_by: str = "recent",
    ) -> FetchResult[ReviewPage]:
        """
        Paginate the structured reviews source.

        Page 1 decides whether this provider is usable at all. After that, an
        empty or failed batch only ends pagination. ``pages == 0`` means fetch
        everything the provider reports.
        """
        first = await self.oxylabs.fetch_reviews_page(asin, domain, 1, 1, sort_by)
        if not first.ok:
            return first

        page = first.data
        reviews = list(page.reviews)
        fetch_all = pages == 0
        max_pages = (page.total_pages or FETCH_ALL_PAGE_CAP) if fetch_all else pages
        batch_size = self.settings.review_batch_pages

        pages_fetched = 1
        current_page = 2
        remaining = max_pages - 1
        while remaining > 0:
            batch_pages = min(remaining, batch_size)
            result = await self.oxylabs.fetch_reviews_page(asin, domain, current_page, batch_pages, sort_by)
            if not result.ok:
                logger.info(
                    "Review pagination stopped",
                    asin=asin,
                    page=current_page,
                    reason=result.failure.kind.value,
                )
                break

            batch_reviews = result.data.reviews
            reviews.extend(batch_reviews)
            pages_fetched += batch_pages
            if len(batch_reviews) < batch_pages * REVIEWS_PER_PAGE:
                break
            current_page += batch_pages
            remaining -= batch_pages

        combined = page.model_copy(update={"reviews": reviews, "pages_fetched": pages_fetched})
        return FetchResult.success(self.oxylabs.name, combined)

    async def fetch_reviews(
        self,
        asin: str,
        country_id: str,
        pages: Optional[int] = None,
        sort_by: str = "recent",
    ) -> AggregatedReviewRecord:
        """Resolve reviews through the chain and merge them into the stored record."""
        try:
            asin = validate_asin(asin)
        except ValueError as e:
            raise ValidationError(str(e), {"asin": asin})

        if pages is None:
            pages = self.settings.default_review_pages
        if pages < 0:
            raise ValidationError("pages must be 0 (all) or a positive number", {"pages": pages})

        country = await self.store.get_country(country_id)
        if country is None:
            raise NotFoundError("Country", country_id)

        domain = country.provider_domain
        max_reviews = 0 if pages == 0 else pages * REVIEWS_PER_PAGE

        strategies = [
            FetchStrategy(
                "amazon_reviews",
                lambda: self.fetch_structured_reviews(asin, domain, pages, sort_by),
            ),
            FetchStrategy(
                "apify",
                lambda: self.apify.fetch_reviews(asin, country.amazon_domain, max_reviews, sort_by),
            ),
            FetchStrategy(
                "amazon_product",
                lambda: self.oxylabs.lookup_product(asin, domain),
            ),
        ]

        with LogContext(asin=asin, country_id=country_id):
            chain = await FallbackChainResolver(f"reviews for ASIN {asin}").resolve(strategies)
            fetched: ReviewPage = chain.data

            existing = await self.store.get_review_record(asin, country_id, sort_by)
            merged = merge_reviews(existing.reviews if existing else [], fetched.reviews)

            distribution = fetched.rating_stars_distribution or compute_distribution(merged.items)
            total = fetched.total_reviews
            if total is None or total < len(merged.items):
                total = len(merged.items)

            record = AggregatedReviewRecord(
                asin=asin,
                country_id=country_id,
                marketplace_domain=country.amazon_domain,
                sort_by=sort_by,
                status="completed",
                source=chain.provider,
                fallback_reason=chain.fallback_reason,
                total_reviews=total,
                overall_rating=fetched.overall_rating or average_rating(merged.items),
                rating_stars_distribution=distribution,
                total_pages_fetched=fetched.pages_fetched,
                reviews=merged.items,
                raw_response=merge_provenance(
                    existing.raw_response if existing else None,
                    source=chain.provider,
                    received=len(fetched.reviews),
                    added=merged.added,
                    **fetched.metadata,
                ),
            )
            saved = await self.store.upsert_review_record(record)

            logger.info(
                "Reviews stored",
                provider=chain.provider,
                received=len(fetched.reviews),
                added=merged.added,
                total_stored=len(saved.reviews),
            )
            return saved

    async def fetch_reviews_in_background(
        self,
        runner: "BackgroundJobRunner",
        asin: str,
        country_id: str,
        pages: Optional[int] = None,
        sort_by: str = "recent",
    ) -> str:
        """Dispatch ``fetch_reviews`` as a background job and return its id."""

        async def work() -> dict:
            record = await self.fetch_reviews(asin, country_id, pages, sort_by)
            return {
                "record_id": record.id,
                "source": record.source,
                "reviews_stored": len(record.reviews),
            }

        return await runner.dispatch(
            "fetch_reviews",
            work,
            {"asin": asin, "country_id": country_id, "pages": pages, "sort_by": sort_by},
        )


__all__ = [
    "FETCH_ALL_PAGE_CAP",
    "compute_distribution",
    "average_rating",
    "ReviewsService",
]
