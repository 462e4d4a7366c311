"""
Fallback chain resolution across research providers.

Providers are tried strictly one after another. The first one that returns
a non-empty success wins; an error or an empty result moves on to the next.
When every provider fails the caller gets one error naming each provider
and what went wrong with it.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from src.services.marketplace_service import FetchFailure, FetchFailureKind, FetchResult
from src.utils.logger import get_logger
from src.utils.retry import AllProvidersFailedError, PipelineError

logger = get_logger(__name__)

T = TypeVar("T")


def _has_items(data) -> bool:
    for attr in ("reviews", "questions", "items"):
        if hasattr(data, attr):
            return bool(getattr(data, attr))
    return bool(data)


@dataclass
class FetchStrategy(Generic[T]):
    """One provider attempt for a logical data need."""

    name: str
    fetch: Callable[[], Awaitable[FetchResult[T]]]
    is_empty: Callable[[T], bool] = field(default=lambda data: not _has_items(data))


@dataclass
class ChainResult(Generic[T]):
    provider: str
    data: T
    failures: list[FetchFailure] = field(default_factory=list)

    @property
    def fallback_reason(self) -> Optional[str]:
        """Why earlier providers were skipped, or None if the first one served."""
        if not self.failures:
            return None
        return "; ".join(f"{f.provider} {f}" for f in self.failures)


class FallbackChainResolver:
    """Resolves one data need through an ordered list of strategies."""

    def __init__(self, need: str):
        self.need = need

    async def resolve(self, strategies: Sequence[FetchStrategy[T]]) -> ChainResult[T]:
        if not strategies:
            raise ValueError("At least one fetch strategy is required")

        failures: list[FetchFailure] = []
        for strategy in strategies:
            try:
                result = await strategy.fetch()
            except PipelineError as e:
                result = FetchResult.failed(strategy.name, FetchFailureKind.PROVIDER_ERROR, e.message)
            except Exception as e:
                logger.exception("Fetch strategy raised", provider=strategy.name, need=self.need)
                result = FetchResult.failed(
                    strategy.name, FetchFailureKind.PROVIDER_ERROR, str(e) or type(e).__name__
                )

            if result.ok and strategy.is_empty(result.data):
                result = FetchResult.failed(strategy.name, FetchFailureKind.EMPTY_RESULT, "No items returned")

            if result.ok:
                if failures:
                    logger.info(
                        "Fallback provider satisfied request",
                        need=self.need,
                        provider=strategy.name,
                        skipped=[f.provider for f in failures],
                    )
                return ChainResult(provider=strategy.name, data=result.data, failures=failures)

            failure = result.failure
            failure.provider = strategy.name
            failures.append(failure)
            logger.warning(
                "Provider failed, trying next",
                need=self.need,
                provider=strategy.name,
                kind=failure.kind.value,
                error=failure.message,
            )

        raise AllProvidersFailedError(self.need, [(f.provider, str(f)) for f in failures])


__all__ = ["FetchStrategy", "ChainResult", "FallbackChainResolver"]
