"""
Q&A ingestion and the Rufus collection queue.

The browser extension that collects Rufus answers is an untrusted external
producer. It authenticates with a pre-shared key, pulls ASINs from the
``RufusJobQueue`` and posts question/answer batches to
``QnAService.ingest``, which merges them into the stored Q&A record using
the question+answer identity rule.
"""

import hmac
from datetime import timedelta
from typing import Any, Iterable, Optional

from src.config.providers import RUFUS_EXTENSION_API_KEY, ChainedConfigProvider
from src.config.settings import Settings, get_settings
from src.models.schemas import (
    AggregatedQnARecord,
    Country,
    QnAItem,
    RufusItemStatus,
    RufusJob,
    RufusJobItem,
    RufusJobStatus,
    utc_now,
    validate_asin,
)
from src.research.fallback import FallbackChainResolver, FetchStrategy
from src.research.merge import merge_provenance, merge_qna
from src.services.marketplace_service import OxylabsProvider
from src.storage.store import Store
from src.utils.logger import LogContext, get_logger
from src.utils.retry import (
    AuthenticationError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)

logger = get_logger(__name__)

RUFUS_SOURCE = "rufus"
MAX_QUESTIONS_PER_ASIN = 50


# =============================================================================
# Authentication
# =============================================================================

class ExtensionAuthenticator:
    """Checks ``Authorization: Bearer <key>`` against the configured extension key."""

    def __init__(self, config: ChainedConfigProvider):
        self.config = config

    async def verify(self, authorization: Optional[str]) -> None:
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError()
        provided = authorization[len("Bearer "):].strip()
        if not provided:
            raise AuthenticationError()

        expected = await self.config.get(RUFUS_EXTENSION_API_KEY)
        if not expected or not hmac.compare_digest(expected.encode(), provided.encode()):
            raise AuthenticationError()


async def _resolve_marketplace(store: Store, marketplace: Optional[str]) -> Country:
    if not marketplace or not marketplace.strip():
        raise ValidationError('marketplace is required (e.g. "amazon.com")')
    country = await store.find_country_by_domain(marketplace)
    if country is None:
        raise ValidationError(f"Unknown marketplace: {marketplace}", {"marketplace": marketplace})
    return country


def _clean_asin(asin: Optional[str]) -> str:
    try:
        return validate_asin(asin or "")
    except ValueError:
        raise ValidationError(
            "Invalid ASIN format (must be 10 alphanumeric characters)",
            {"asin": asin},
        )


# =============================================================================
# Q&A Service
# =============================================================================

class QnAService:
    """Stores question/answer collections per (asin, country)."""

    def __init__(
        self,
        store: Store,
        authenticator: ExtensionAuthenticator,
        oxylabs: Optional[OxylabsProvider] = None,
    ):
        self.store = store
        self.authenticator = authenticator
        self.oxylabs = oxylabs

    async def _merge_into_record(
        self,
        asin: str,
        country: Country,
        incoming: list[QnAItem],
        source: str,
        **provenance: Any,
    ) -> tuple[AggregatedQnARecord, int]:
        existing = await self.store.get_qna_record(asin, country.id)
        merged = merge_qna(existing.questions if existing else [], incoming)

        record = AggregatedQnARecord(
            asin=asin,
            country_id=country.id,
            marketplace_domain=country.amazon_domain,
            total_questions=len(merged.items),
            questions=merged.items,
            raw_response=merge_provenance(
                existing.raw_response if existing else None,
                source=source,
                received=len(incoming),
                added=merged.added,
                **provenance,
            ),
        )
        saved = await self.store.upsert_qna_record(record)
        logger.info(
            "Q&A merged",
            asin=asin,
            source=source,
            received=len(incoming),
            added=merged.added,
            duplicates=merged.duplicates,
            total=len(saved.questions),
        )
        return saved, merged.added

    async def ingest(self, authorization: Optional[str], payload: dict[str, Any]) -> dict[str, Any]:
        """
        Accept one extension payload ``{asin, marketplace, questions: [{question, answer}]}``.

        Returns a summary with the stored record id and counts.
        """
        await self.authenticator.verify(authorization)

        asin = _clean_asin(payload.get("asin"))
        marketplace = payload.get("marketplace")
        if not marketplace:
            raise ValidationError('marketplace is required (e.g. "amazon.com")')
        questions = payload.get("questions")
        if not isinstance(questions, list) or not questions:
            raise ValidationError("questions array is required and must not be empty")
        country = await _resolve_marketplace(self.store, marketplace)

        formatted = [
            QnAItem(
                question=q["question"],
                answer=q.get("answer") if isinstance(q.get("answer"), str) else "",
                votes=0,
                source=RUFUS_SOURCE,
            )
            for q in questions
            if isinstance(q, dict) and isinstance(q.get("question"), str) and q["question"].strip()
        ]
        if not formatted:
            raise ValidationError("questions array contains no question text")

        with LogContext(asin=asin, marketplace=country.amazon_domain):
            record, added = await self._merge_into_record(
                asin,
                country,
                formatted,
                source="rufus_extension",
                extracted_at=utc_now().isoformat(),
            )

        return {
            "id": record.id,
            "asin": asin,
            "country_id": country.id,
            "questions_stored": len(record.questions),
            "rufus_questions_received": len(formatted),
            "rufus_questions_added": added,
        }

    async def get_questions(
        self,
        authorization: Optional[str],
        asin: str,
        marketplace: str,
        rufus_only: bool = False,
    ) -> dict[str, Any]:
        await self.authenticator.verify(authorization)
        asin = _clean_asin(asin)
        country = await _resolve_marketplace(self.store, marketplace)

        record = await self.store.get_qna_record(asin, country.id)
        if record is None:
            return {"questions": [], "total": 0, "updated_at": None}

        questions = record.questions
        if rufus_only:
            questions = [q for q in questions if q.source == RUFUS_SOURCE]
        return {
            "questions": [q.model_dump() for q in questions],
            "total": len(questions),
            "updated_at": record.updated_at.isoformat(),
        }

    async def fetch_questions(self, asin: str, country_id: str, pages: int = 1) -> AggregatedQnARecord:
        """Pull questions from the marketplace-data provider and merge them in."""
        if self.oxylabs is None:
            raise ValidationError("No questions provider is configured")
        asin = _clean_asin(asin)
        country = await self.store.get_country(country_id)
        if country is None:
            raise NotFoundError("Country", country_id)

        chain = await FallbackChainResolver(f"questions for ASIN {asin}").resolve(
            [
                FetchStrategy(
                    "amazon_questions",
                    lambda: self.oxylabs.fetch_questions(asin, country.provider_domain, pages),
                )
            ]
        )
        record, _ = await self._merge_into_record(
            asin, country, chain.data.questions, source=chain.provider, pages=pages
        )
        return record


# =============================================================================
# Rufus Job Queue
# =============================================================================

class RufusJobQueue:
    """Work queue of ASINs for the external Rufus collector."""

    ACTIVE_STATUSES = (RufusJobStatus.QUEUED.value, RufusJobStatus.PROCESSING.value)
    RESULT_STATUSES = (
        RufusItemStatus.COMPLETED.value,
        RufusItemStatus.FAILED.value,
        RufusItemStatus.SKIPPED.value,
    )

    def __init__(
        self,
        store: Store,
        authenticator: ExtensionAuthenticator,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.authenticator = authenticator
        self.settings = settings or get_settings()

    async def create_job(
        self,
        asins: Iterable[str],
        country_id: str,
        source: str = "manual",
    ) -> RufusJob:
        country = await self.store.get_country(country_id)
        if country is None:
            raise NotFoundError("Country", country_id)

        cleaned: list[str] = []
        invalid: list[str] = []
        for asin in asins:
            try:
                value = validate_asin(asin)
            except ValueError:
                invalid.append(asin)
                continue
            if value not in cleaned:
                cleaned.append(value)

        if invalid:
            raise ValidationError(f"Invalid ASINs: {', '.join(invalid)}", {"invalid": ", ".join(invalid)})
        if not cleaned:
            raise ValidationError("At least one ASIN is required")

        job = RufusJob(
            country_id=country.id,
            marketplace_domain=country.amazon_domain,
            source=source,
            total_asins=len(cleaned),
        )
        items = [RufusJobItem(job_id=job.id, asin=asin) for asin in cleaned]
        saved = await self.store.insert_rufus_job(job, items)
        logger.info("Rufus job created", job_id=saved.id, asins=len(cleaned))
        return saved

    async def _reset_stale_items(self) -> int:
        threshold = utc_now() - timedelta(minutes=self.settings.stale_job_minutes)
        reset = 0
        for item in await self.store.list_rufus_items(status=RufusItemStatus.PROCESSING.value):
            if item.started_at is not None and item.started_at < threshold:
                await self.store.update_rufus_item(
                    item.id, {"status": RufusItemStatus.PENDING.value, "started_at": None}
                )
                reset += 1
        if reset:
            logger.warning("Reset stale Rufus items", count=reset)
        return reset

    async def next_item(self, authorization: Optional[str]) -> Optional[dict[str, Any]]:
        """Claim the next pending ASIN, or None when the queue is empty."""
        await self.authenticator.verify(authorization)
        await self._reset_stale_items()

        for job in await self.store.list_rufus_jobs(self.ACTIVE_STATUSES):
            pending = await self.store.list_rufus_items(job.id, RufusItemStatus.PENDING.value)
            if not pending:
                continue

            item = pending[0]
            await self.store.update_rufus_item(
                item.id,
                {"status": RufusItemStatus.PROCESSING.value, "started_at": utc_now()},
            )
            if job.status == RufusJobStatus.QUEUED.value:
                await self.store.update_rufus_job(job.id, {"status": RufusJobStatus.PROCESSING.value})

            return {
                "item_id": item.id,
                "job_id": job.id,
                "asin": item.asin,
                "marketplace": job.marketplace_domain,
                "max_questions": MAX_QUESTIONS_PER_ASIN,
            }
        return None

    async def complete_item(
        self,
        authorization: Optional[str],
        item_id: str,
        status: str,
        questions_found: int = 0,
        error_message: Optional[str] = None,
    ) -> RufusJob:
        """Record one item's outcome and finalize the job once every item is processed."""
        await self.authenticator.verify(authorization)
        if status not in self.RESULT_STATUSES:
            raise ValidationError("status must be completed, failed, or skipped", {"status": status})

        item = await self.store.get_rufus_item(item_id)
        if item is None:
            raise NotFoundError("Rufus job item", item_id)
        if item.status in self.RESULT_STATUSES:
            raise PreconditionFailedError(f"Item {item_id} is already {item.status}", section="rufus_item")

        await self.store.update_rufus_item(
            item_id,
            {
                "status": status,
                "questions_found": questions_found or 0,
                "error_message": error_message,
                "completed_at": utc_now(),
            },
        )

        job = await self.store.get_rufus_job(item.job_id)
        if job is None:
            raise NotFoundError("Rufus job", item.job_id)

        completed = job.completed_asins + (1 if status == RufusItemStatus.COMPLETED.value else 0)
        failed = job.failed_asins + (0 if status == RufusItemStatus.COMPLETED.value else 1)
        changes: dict[str, Any] = {"completed_asins": completed, "failed_asins": failed}

        if completed + failed >= job.total_asins:
            success_rate = completed / job.total_asins if job.total_asins else 0.0
            changes["status"] = (
                RufusJobStatus.COMPLETED.value
                if success_rate >= self.settings.rufus_success_threshold
                else RufusJobStatus.COMPLETED_PARTIAL.value
            )
            logger.info("Rufus job finished", job_id=job.id, success_rate=round(success_rate, 2))

        return await self.store.update_rufus_job(job.id, changes)


__all__ = [
    "RUFUS_SOURCE",
    "MAX_QUESTIONS_PER_ASIN",
    "ExtensionAuthenticator",
    "QnAService",
    "RufusJobQueue",
]
