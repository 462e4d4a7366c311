import pytest
from unittest.mock import AsyncMock, MagicMock

from src.models.schemas import AggregatedReviewRecord, ReviewItem
from src.research.reviews import ReviewsService, average_rating, compute_distribution
from src.services.marketplace_service import FetchFailureKind, FetchResult, ReviewPage
from src.utils.retry import AllProvidersFailedError, NotFoundError, ValidationError


def reviews(prefix: str, count: int) -> list[ReviewItem]:
    return [ReviewItem(id=f"{prefix}{i}", rating=5 if i % 2 else 3) for i in range(count)]


def ok(data: ReviewPage, provider: str = "oxylabs") -> FetchResult:
    return FetchResult.success(provider, data)


def failed(kind=FetchFailureKind.PROVIDER_ERROR, provider: str = "oxylabs") -> FetchResult:
    return FetchResult.failed(provider, kind, "HTTP 500")


@pytest.fixture
def oxylabs():
    provider = MagicMock()
    provider.name = "oxylabs"
    provider.fetch_reviews_page = AsyncMock()
    provider.lookup_product = AsyncMock(return_value=failed(FetchFailureKind.EMPTY_RESULT))
    return provider


@pytest.fixture
def apify():
    provider = MagicMock()
    provider.name = "apify"
    provider.fetch_reviews = AsyncMock(return_value=failed(provider="apify"))
    return provider


@pytest.fixture
def service(store, oxylabs, apify, mock_settings):
    return ReviewsService(store, oxylabs, apify, mock_settings)


# =============================================================================
# Pagination
# =============================================================================

@pytest.mark.asyncio
async def test_pagination_stops_on_short_batch(service, oxylabs):
    """Budget 25: page 1 then pages 2-11 (full) then 12-21 (short) and stop."""
    oxylabs.fetch_reviews_page.side_effect = [
        ok(ReviewPage(reviews=reviews("p1-", 12), total_pages=40, pages_fetched=1)),
        ok(ReviewPage(reviews=reviews("b1-", 100), pages_fetched=10)),
        ok(ReviewPage(reviews=reviews("b2-", 37), pages_fetched=10)),
    ]

    result = await service.fetch_structured_reviews("B0TEST1234", "com", 25)

    calls = [c.args[2:4] for c in oxylabs.fetch_reviews_page.await_args_list]
    assert calls == [(1, 1), (2, 10), (12, 10)]
    assert len(result.data.reviews) == 149
    assert result.data.pages_fetched == 21


@pytest.mark.asyncio
async def test_pagination_first_page_failure_fails_provider(service, oxylabs):
    oxylabs.fetch_reviews_page.return_value = failed(FetchFailureKind.TIMEOUT)

    result = await service.fetch_structured_reviews("B0TEST1234", "com", 10)

    assert not result.ok
    assert oxylabs.fetch_reviews_page.await_count == 1


@pytest.mark.asyncio
async def test_pagination_later_failure_keeps_collected(service, oxylabs):
    oxylabs.fetch_reviews_page.side_effect = [
        ok(ReviewPage(reviews=reviews("p1-", 10), pages_fetched=1)),
        failed(FetchFailureKind.EMPTY_RESULT),
    ]

    result = await service.fetch_structured_reviews("B0TEST1234", "com", 5)

    assert result.ok
    assert len(result.data.reviews) == 10
    assert result.data.pages_fetched == 1


@pytest.mark.asyncio
async def test_fetch_all_uses_reported_total(service, oxylabs):
    oxylabs.fetch_reviews_page.side_effect = [
        ok(ReviewPage(reviews=reviews("p1-", 10), total_pages=4, pages_fetched=1)),
        ok(ReviewPage(reviews=reviews("b1-", 30), pages_fetched=3)),
    ]

    await service.fetch_structured_reviews("B0TEST1234", "com", 0)

    assert oxylabs.fetch_reviews_page.await_args_list[1].args[2:4] == (2, 3)


# =============================================================================
# Fetch and merge
# =============================================================================

@pytest.mark.asyncio
async def test_fetch_reviews_falls_back_to_apify_and_merges(service, store, oxylabs, apify):
    await store.upsert_review_record(AggregatedReviewRecord(
        asin="B0TEST1234",
        country_id="us",
        marketplace_domain="amazon.com",
        reviews=[ReviewItem(id="R1", rating=4)],
    ))
    oxylabs.fetch_reviews_page.return_value = failed()
    apify.fetch_reviews.return_value = ok(
        ReviewPage(reviews=[ReviewItem(id="R1", rating=1), ReviewItem(id="R2", rating=5)],
                   metadata={"runId": "run-1"}),
        provider="apify",
    )

    record = await service.fetch_reviews("b0test1234", "us", pages=3)

    assert record.source == "apify"
    assert record.fallback_reason.startswith("amazon_reviews provider-error")
    assert [r.id for r in record.reviews] == ["R1", "R2"]
    assert record.reviews[0].rating == 4
    assert record.total_reviews == 2
    assert record.raw_response["sources"]["apify"]["runId"] == "run-1"
    apify.fetch_reviews.assert_awaited_once_with("B0TEST1234", "amazon.com", 30, "recent")


@pytest.mark.asyncio
async def test_fetch_reviews_all_providers_fail(service, oxylabs):
    oxylabs.fetch_reviews_page.return_value = failed()

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await service.fetch_reviews("B0TEST1234", "us")

    assert exc_info.value.providers == ["amazon_reviews", "apify", "amazon_product"]


@pytest.mark.asyncio
async def test_fetch_reviews_validation(service):
    with pytest.raises(ValidationError):
        await service.fetch_reviews("bad", "us")
    with pytest.raises(ValidationError):
        await service.fetch_reviews("B0TEST1234", "us", pages=-1)
    with pytest.raises(NotFoundError):
        await service.fetch_reviews("B0TEST1234", "zz")


@pytest.mark.asyncio
async def test_fetch_reviews_in_background_dispatches(service):
    runner = MagicMock()
    runner.dispatch = AsyncMock(return_value="job-1")

    job_id = await service.fetch_reviews_in_background(runner, "B0TEST1234", "us", pages=2)

    assert job_id == "job-1"
    kind, _, params = runner.dispatch.await_args.args
    assert kind == "fetch_reviews"
    assert params["pages"] == 2


def test_distribution_and_average():
    items = [ReviewItem(id="a", rating=5), ReviewItem(id="b", rating=5), ReviewItem(id="c", rating=2),
             ReviewItem(id="d", rating=0)]
    buckets = compute_distribution(items)
    assert [b.rating for b in buckets] == [5, 4, 3, 2, 1]
    assert buckets[0].percentage == "67"
    assert buckets[3].percentage == "33"
    assert average_rating(items) == 4.0
    assert compute_distribution([]) == []
