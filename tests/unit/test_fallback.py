import pytest
from unittest.mock import AsyncMock

from src.research.fallback import FallbackChainResolver, FetchStrategy
from src.services.marketplace_service import FetchFailureKind, FetchResult, ReviewPage
from src.models.schemas import ReviewItem
from src.utils.retry import AllProvidersFailedError, ProviderError


def page(*ids: str) -> ReviewPage:
    return ReviewPage(reviews=[ReviewItem(id=i) for i in ids])


@pytest.mark.asyncio
async def test_first_success_wins_and_later_providers_untouched():
    second = AsyncMock()
    resolver = FallbackChainResolver("reviews")

    result = await resolver.resolve([
        FetchStrategy("first", AsyncMock(return_value=FetchResult.success("first", page("R1")))),
        FetchStrategy("second", second),
    ])

    assert result.provider == "first"
    assert result.fallback_reason is None
    second.assert_not_called()


@pytest.mark.asyncio
async def test_empty_and_failed_results_fall_through():
    resolver = FallbackChainResolver("reviews")

    result = await resolver.resolve([
        FetchStrategy("timeout", AsyncMock(
            return_value=FetchResult.failed("timeout", FetchFailureKind.TIMEOUT, "timed out after 60s")
        )),
        FetchStrategy("empty", AsyncMock(return_value=FetchResult.success("empty", page()))),
        FetchStrategy("raises", AsyncMock(side_effect=ProviderError("HTTP 500"))),
        FetchStrategy("last", AsyncMock(return_value=FetchResult.success("last", page("R9")))),
    ])

    assert result.provider == "last"
    assert [f.kind for f in result.failures] == [
        FetchFailureKind.TIMEOUT,
        FetchFailureKind.EMPTY_RESULT,
        FetchFailureKind.PROVIDER_ERROR,
    ]
    assert "timeout timeout" in result.fallback_reason


@pytest.mark.asyncio
async def test_all_failed_names_every_provider():
    resolver = FallbackChainResolver("reviews for ASIN B0TEST1234")

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await resolver.resolve([
            FetchStrategy("oxylabs", AsyncMock(side_effect=RuntimeError("boom"))),
            FetchStrategy("apify", AsyncMock(return_value=FetchResult.success("apify", page()))),
        ])

    error = exc_info.value
    assert error.providers == ["oxylabs", "apify"]
    assert "boom" in error.message
    assert "empty-result" in error.message


@pytest.mark.asyncio
async def test_requires_strategies():
    with pytest.raises(ValueError):
        await FallbackChainResolver("reviews").resolve([])
