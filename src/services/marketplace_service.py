"""
Marketplace research data providers.

Each provider wraps one external research service behind a uniform
contract: every call returns a ``FetchResult`` that is either a typed
success payload or a typed failure (``timeout``, ``provider-error`` or
``empty-result``). Nothing raises out of a provider call except programming
errors, so the fallback chain can treat every provider the same way.

Providers:
    - OxylabsProvider: structured marketplace-data API (reviews pages,
      product lookup with embedded reviews, questions)
    - ApifyProvider: asynchronous scrape actor (start run, long-poll until a
      terminal status, read the dataset)

Provider-specific field names and units are normalized here; everything
above this module only sees ``ReviewItem`` and ``QnAItem``.

Example:
    >>> async with OxylabsProvider(config=chain) as oxylabs:
    ...     result = await oxylabs.fetch_reviews_page("B0TEST1234", "com", 1, 1)
    ...     if result.ok:
    ...         print(len(result.data.reviews))
"""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Generic, Optional, TypeVar

import httpx
from pydantic import BaseModel, Field

from src.config.providers import (
    APIFY_API_TOKEN,
    OXYLABS_PASSWORD,
    OXYLABS_USERNAME,
    ChainedConfigProvider,
    build_config_chain,
)
from src.config.settings import Settings, get_settings
from src.models.schemas import QnAItem, RatingBucket, ReviewItem
from src.utils.logger import get_logger
from src.utils.retry import PipelineError, ProviderError, transport_retry

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Fetch Results
# =============================================================================

class FetchFailureKind(str, Enum):
    """Why a provider call produced no usable data."""
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider-error"
    EMPTY_RESULT = "empty-result"


@dataclass
class FetchFailure:
    kind: FetchFailureKind
    provider: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass
class FetchResult(Generic[T]):
    """Success payload or typed failure from one provider call."""

    provider: str
    data: Optional[T] = None
    failure: Optional[FetchFailure] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, provider: str, data: T) -> "FetchResult[T]":
        return cls(provider=provider, data=data)

    @classmethod
    def failed(cls, provider: str, kind: FetchFailureKind, message: str) -> "FetchResult[T]":
        return cls(provider=provider, failure=FetchFailure(kind, provider, message))


class EmptyResult(Exception):
    """Raised inside a provider when the call succeeded but returned nothing."""


# =============================================================================
# Payloads
# =============================================================================

class ReviewPage(BaseModel):
    """Reviews returned by one provider call plus any totals it reported."""

    reviews: list[ReviewItem] = Field(default_factory=list)
    total_pages: Optional[int] = None
    total_reviews: Optional[int] = None
    overall_rating: Optional[float] = None
    rating_stars_distribution: list[RatingBucket] = Field(default_factory=list)
    pages_fetched: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class QuestionPage(BaseModel):
    questions: list[QnAItem] = Field(default_factory=list)
    total_pages: Optional[int] = None


# =============================================================================
# Normalization helpers
# =============================================================================

_LEADING_INT = re.compile(r"^\s*(\d[\d,]*)")
_TITLE_RATING = re.compile(r"^(\d+(?:\.\d+)?)\s+out\s+of\s+\d+\s+stars?", re.IGNORECASE)
_REVIEW_URL_ID = re.compile(r"customer-reviews/([A-Z0-9]+)", re.IGNORECASE)


def parse_leading_int(value: Any) -> Optional[int]:
    """``"1,234 people found this helpful"`` -> 1234; None when no leading number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = _LEADING_INT.match(str(value or ""))
    if not match:
        return None
    return int(match.group(1).replace(",", ""))


def parse_rating(value: Any) -> float:
    """Clamp a provider rating into 0..5; unparsable values become 0."""
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return 0.0
    return rating if 0 <= rating <= 5 else 0.0


def rating_from_title(title: str) -> int:
    """Parse ``"4.0 out of 5 stars"`` prefixes."""
    match = _TITLE_RATING.match(title or "")
    return int(float(match.group(1)) + 0.5) if match else 0


def normalize_provider_review(raw: dict[str, Any]) -> ReviewItem:
    """Oxylabs review (already close to the canonical shape)."""
    return ReviewItem(
        id=str(raw["id"]) if raw.get("id") else None,
        title=raw.get("title") or "",
        author=raw.get("author") or "",
        rating=parse_rating(raw.get("rating")),
        content=raw.get("content") or "",
        timestamp=raw.get("timestamp") or "",
        is_verified=bool(raw.get("is_verified")),
        helpful_count=parse_leading_int(raw.get("helpful_count")) or 0,
        product_attributes=raw.get("product_attributes") or None,
        images=list(dict.fromkeys(raw.get("images") or [])),
    )


def normalize_apify_review(raw: dict[str, Any]) -> ReviewItem:
    """Map the scrape actor's output (string scores, prose counts) onto ``ReviewItem``."""
    review_id = raw.get("ReviewId") or ""
    if not review_id and raw.get("PageUrl"):
        match = _REVIEW_URL_ID.search(str(raw["PageUrl"]))
        if match:
            review_id = match.group(1)
    if not review_id:
        fingerprint = f"{raw.get('Reviewer')}-{raw.get('ReviewTitle')}-{raw.get('ReviewDate')}"
        review_id = "apify-" + hashlib.sha1(fingerprint.encode("utf-8")).hexdigest()[:12]

    try:
        score = float(str(raw.get("ReviewScore")))
    except ValueError:
        score = 0.0
    rating = int(score + 0.5) if 1 <= score <= 5 else rating_from_title(raw.get("ReviewTitle") or "")

    variant = raw.get("Variant")
    if isinstance(variant, list):
        variant = ", ".join(str(v) for v in variant)

    verified = raw.get("Verified")
    is_verified = (
        verified is True
        or str(verified).lower() == "true"
        or verified in ("Verified Purchase", "Yes")
    )

    images = raw.get("Images")
    return ReviewItem(
        id=str(review_id),
        title=raw.get("ReviewTitle") or "",
        author=raw.get("Reviewer") or "",
        rating=rating,
        content=raw.get("ReviewContent") or "",
        timestamp=raw.get("ReviewDate") or "",
        is_verified=is_verified,
        helpful_count=parse_leading_int(raw.get("HelpfulCounts")) or 0,
        product_attributes=variant or None,
        images=list(dict.fromkeys(images)) if isinstance(images, list) else [],
    )


def normalize_question(raw: dict[str, Any], source: Optional[str] = None) -> Optional[QnAItem]:
    question = (raw.get("question") or "").strip()
    if not question:
        return None
    return QnAItem(
        question=question,
        answer=(raw.get("answer") or "").strip(),
        votes=parse_leading_int(raw.get("votes")) or 0,
        source=source,
        author=raw.get("author"),
        date=raw.get("date"),
    )


def parse_distribution(raw: Any) -> list[RatingBucket]:
    buckets = []
    for entry in raw or []:
        try:
            buckets.append(
                RatingBucket(rating=int(entry["rating"]), percentage=str(entry.get("percentage", "0")))
            )
        except (KeyError, TypeError, ValueError):
            continue
    return buckets


# =============================================================================
# Provider Base Class
# =============================================================================

class MarketplaceProvider(ABC):
    """
    Abstract base class for research data providers.

    Credentials are resolved through the configuration chain at call time,
    never cached on the instance.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[ChainedConfigProvider] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or build_config_chain(settings=self.settings)
        self._client: Optional[httpx.AsyncClient] = None
        self._request_count = 0
        self._error_count = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    @property
    def timeout_seconds(self) -> float:
        """Budget for one provider call."""
        return float(self.settings.fetch_timeout_seconds)

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "MarketplaceProvider":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def _bounded(
        self,
        operation: str,
        call: Awaitable[T],
        timeout: Optional[float] = None,
    ) -> FetchResult[T]:
        """
        Run one provider call under a time budget and classify its outcome.

        A blown budget is always ``timeout``; provider-reported failures are
        ``provider-error``; ``EmptyResult`` becomes ``empty-result``.
        """
        budget = timeout if timeout is not None else self.timeout_seconds
        start = time.monotonic()
        self._request_count += 1
        try:
            data = await asyncio.wait_for(call, timeout=budget)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            self._error_count += 1
            logger.warning("Provider call timed out", provider=self.name, operation=operation, timeout=budget)
            return FetchResult.failed(
                self.name, FetchFailureKind.TIMEOUT, f"{operation} timed out after {budget:g}s"
            )
        except EmptyResult as e:
            return FetchResult.failed(self.name, FetchFailureKind.EMPTY_RESULT, str(e) or "No data returned")
        except PipelineError as e:
            self._error_count += 1
            logger.warning("Provider call failed", provider=self.name, operation=operation, error=e.message)
            return FetchResult.failed(self.name, FetchFailureKind.PROVIDER_ERROR, e.message)
        except (httpx.HTTPError, ValueError) as e:
            self._error_count += 1
            logger.warning("Provider call failed", provider=self.name, operation=operation, error=str(e))
            return FetchResult.failed(self.name, FetchFailureKind.PROVIDER_ERROR, str(e) or type(e).__name__)

        result = FetchResult.success(self.name, data)
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "requests": self._request_count,
            "errors": self._error_count,
        }


# =============================================================================
# Oxylabs (structured marketplace data)
# =============================================================================

class OxylabsProvider(MarketplaceProvider):
    """Structured marketplace-data API. Synchronous request/response per page range."""

    BASE_URL = "https://realtime.oxylabs.io/v1/queries"

    @property
    def name(self) -> str:
        return "oxylabs"

    async def _credentials(self) -> tuple[str, str]:
        username = await self.config.resolve(OXYLABS_USERNAME)
        password = await self.config.resolve(OXYLABS_PASSWORD)
        return username, password

    @transport_retry()
    async def _post(self, payload: dict[str, Any], auth: tuple[str, str]) -> httpx.Response:
        return await self._client.post(self.BASE_URL, json=payload, auth=auth)

    async def _query(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST one query and return ``results[0].content``."""
        if not self._client:
            await self.connect()

        auth = await self._credentials()
        response = await self._post(payload, auth)
        if not 200 <= response.status_code < 300:
            raise ProviderError(
                f"Oxylabs API error ({response.status_code}): {response.text[:500]}",
                provider=self.name,
            )

        data = response.json()
        results = data.get("results") or []
        content = results[0].get("content") if results else None
        if not content:
            raise EmptyResult(f"No {payload['source']} content returned from Oxylabs")
        return content

    async def fetch_reviews_page(
        self,
        asin: str,
        domain: str,
        start_page: int = 1,
        pages: int = 1,
        sort_by: str = "recent",
    ) -> FetchResult[ReviewPage]:
        """Fetch ``pages`` review pages starting at ``start_page``."""
        payload = {
            "source": "amazon_reviews",
            "domain": domain,
            "query": asin,
            "start_page": start_page,
            "pages": pages,
            "parse": True,
            "context": [{"key": "sort_by", "value": sort_by}],
        }

        async def call() -> ReviewPage:
            content = await self._query(payload)
            reviews = [normalize_provider_review(r) for r in content.get("reviews") or []]
            if not reviews:
                raise EmptyResult(f"No reviews on pages {start_page}-{start_page + pages - 1}")
            return ReviewPage(
                reviews=reviews,
                total_pages=parse_leading_int(content.get("pages")),
                total_reviews=parse_leading_int(content.get("reviews_count")),
                overall_rating=parse_rating(content.get("rating")) or None,
                rating_stars_distribution=parse_distribution(content.get("rating_stars_distribution")),
                pages_fetched=pages,
            )

        result = await self._bounded("amazon_reviews", call())
        logger.info(
            "Oxylabs reviews fetched",
            asin=asin,
            start_page=start_page,
            pages=pages,
            ok=result.ok,
            count=len(result.data.reviews) if result.ok else 0,
        )
        return result

    async def lookup_product(self, asin: str, domain: str) -> FetchResult[ReviewPage]:
        """Basic product lookup; only the handful of embedded reviews is used."""
        payload = {
            "source": "amazon_product",
            "domain": domain,
            "query": asin,
            "parse": True,
        }

        async def call() -> ReviewPage:
            content = await self._query(payload)
            reviews = [normalize_provider_review(r) for r in content.get("reviews") or []]
            if not reviews:
                raise EmptyResult("Product lookup returned no embedded reviews")
            return ReviewPage(
                reviews=reviews,
                total_reviews=parse_leading_int(content.get("reviews_count")),
                overall_rating=parse_rating(content.get("rating")) or None,
                rating_stars_distribution=parse_distribution(content.get("rating_stars_distribution")),
                pages_fetched=1,
                metadata={"title": content.get("title")},
            )

        return await self._bounded("amazon_product", call())

    async def fetch_questions(self, asin: str, domain: str, pages: int = 1) -> FetchResult[QuestionPage]:
        payload = {
            "source": "amazon_questions",
            "domain": domain,
            "query": asin,
            "pages": pages,
            "parse": True,
        }

        async def call() -> QuestionPage:
            content = await self._query(payload)
            questions = [
                q for q in (normalize_question(r, source=self.name) for r in content.get("questions") or [])
                if q is not None
            ]
            if not questions:
                raise EmptyResult("No questions returned from Oxylabs")
            return QuestionPage(questions=questions, total_pages=parse_leading_int(content.get("pages")))

        return await self._bounded("amazon_questions", call())


# =============================================================================
# Apify (asynchronous scrape actor)
# =============================================================================

class ApifyProvider(MarketplaceProvider):
    """Scrape-actor API: submit a run, long-poll until terminal, read the dataset."""

    BASE_URL = "https://api.apify.com/v2"
    ACTOR_ID = "delicious_zebu~amazon-reviews-scraper-with-advanced-filters"
    TERMINAL_STATUSES = frozenset({"SUCCEEDED", "FAILED", "TIMED-OUT", "ABORTED"})
    POLL_PAUSE_SECONDS = 1.0

    @property
    def name(self) -> str:
        return "apify"

    @property
    def timeout_seconds(self) -> float:
        # One long-poll request may legitimately wait the full poll window.
        return float(self.settings.apify_poll_wait_seconds + self.settings.fetch_timeout_seconds)

    @staticmethod
    def build_input(
        asin: str,
        amazon_domain: str,
        max_reviews: int,
        sort_by: str = "recent",
        filter_by_rating: str = "allStars",
    ) -> dict[str, Any]:
        """
        Actor input. Every filter is sent explicitly because the actor's
        defaults only return five-star reviews.
        """
        return {
            "ASIN_or_URL": [f"https://www.{amazon_domain}/dp/{asin}"],
            "sortBy": "helpful" if sort_by == "helpful" else "recent",
            "filterByRating": filter_by_rating,
            "filter_by_ratings": ["five_star", "four_star", "three_star", "two_star", "one_star"],
            "filter_by_verified_purchase_only": ["all_reviews", "avp_only_reviews"],
            "filter_by_mediaType": ["all_contents", "media_reviews_only"],
            "get_customers_say": True,
            "max_reviews": max_reviews,
        }

    @transport_retry()
    async def _request(self, method: str, url: str, token: str, **kwargs) -> dict[str, Any] | list:
        response = await self._client.request(
            method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs
        )
        if not 200 <= response.status_code < 300:
            raise ProviderError(
                f"Apify API error ({response.status_code}): {response.text[:500]}",
                provider=self.name,
            )
        return response.json()

    async def _run_actor(self, token: str, actor_input: dict[str, Any]) -> dict[str, Any]:
        wait = self.settings.apify_poll_wait_seconds
        started = await self._request(
            "POST",
            f"{self.BASE_URL}/acts/{self.ACTOR_ID}/runs",
            token,
            params={"waitForFinish": wait},
            json=actor_input,
        )
        run = started.get("data") or {}
        while run.get("status") not in self.TERMINAL_STATUSES:
            await asyncio.sleep(self.POLL_PAUSE_SECONDS)
            polled = await self._request(
                "GET",
                f"{self.BASE_URL}/actor-runs/{run['id']}",
                token,
                params={"waitForFinish": wait},
            )
            run = polled.get("data") or {}
        return run

    async def fetch_reviews(
        self,
        asin: str,
        amazon_domain: str,
        max_reviews: int = 100,
        sort_by: str = "recent",
    ) -> FetchResult[ReviewPage]:
        """Run the actor to completion. ``max_reviews`` 0 means no limit."""

        async def call() -> ReviewPage:
            if not self._client:
                await self.connect()
            token = await self.config.resolve(APIFY_API_TOKEN)
            actor_input = self.build_input(asin, amazon_domain, max_reviews, sort_by)

            logger.info("Apify run starting", asin=asin, domain=amazon_domain, max_reviews=max_reviews)
            run = await self._run_actor(token, actor_input)
            if run.get("status") != "SUCCEEDED":
                raise ProviderError(
                    f"Apify run {run.get('status')}: {run.get('statusMessage') or 'Unknown error'}",
                    provider=self.name,
                )

            items = await self._request(
                "GET",
                f"{self.BASE_URL}/datasets/{run['defaultDatasetId']}/items",
                token,
                params={"format": "json"},
            )
            reviews = [normalize_apify_review(item) for item in items or []]
            if not reviews:
                raise EmptyResult("Apify dataset is empty")

            first = items[0]
            reported_total = parse_leading_int(first.get("RatingTypeTotalReviews"))
            # The field sometimes holds rating text ("5.0 out of 5 stars").
            if reported_total is not None and reported_total < len(reviews):
                reported_total = None

            stats = run.get("stats") or {}
            return ReviewPage(
                reviews=reviews,
                total_reviews=reported_total,
                pages_fetched=max(1, math.ceil(len(reviews) / 10)),
                metadata={
                    "runId": run.get("id"),
                    "datasetId": run.get("defaultDatasetId"),
                    "computeUnits": stats.get("computeUnits", 0),
                    "durationMs": stats.get("durationMillis", 0),
                    "customersSay": first.get("CustomersSay"),
                    "maxReviewsRequested": max_reviews or "all",
                },
            )

        return await self._bounded(
            "apify_reviews", call(), timeout=float(self.settings.apify_max_wait_seconds)
        )


__all__ = [
    "FetchFailureKind",
    "FetchFailure",
    "FetchResult",
    "EmptyResult",
    "ReviewPage",
    "QuestionPage",
    "parse_leading_int",
    "parse_rating",
    "rating_from_title",
    "normalize_provider_review",
    "normalize_apify_review",
    "normalize_question",
    "parse_distribution",
    "MarketplaceProvider",
    "OxylabsProvider",
    "ApifyProvider",
]
