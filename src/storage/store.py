"""
Persistence store.

``Store`` is the async persistence interface the pipeline talks to. Every
operation is a single-record atomic write keyed by the record id or by a
unique conflict target (upsert), plus a compare-and-swap update on
``Listing.phase_version`` for optimistic concurrency.

``InMemoryStore`` is the reference implementation used by tests and by the
CLI through ``JsonFileStore``, which persists the whole state to one JSON
file after each mutation so phases can be run across invocations.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional, TypeVar

from pydantic import BaseModel as PydanticBaseModel

from src.models.schemas import (
    AggregatedQnARecord,
    AggregatedReviewRecord,
    BackgroundJob,
    BatchJob,
    Category,
    Country,
    Listing,
    ListingSection,
    ProductType,
    ResearchAnalysis,
    RufusJob,
    RufusJobItem,
    utc_now,
)
from src.utils.logger import get_logger
from src.utils.retry import ConcurrencyConflictError, NotFoundError, PersistenceError

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=PydanticBaseModel)


# =============================================================================
# Interface
# =============================================================================

class Store(ABC):
    """Abstract async persistence for every pipeline entity."""

    # Reference records
    @abstractmethod
    async def get_category(self, category_id: str) -> Optional[Category]: ...

    @abstractmethod
    async def save_category(self, category: Category) -> Category: ...

    @abstractmethod
    async def get_country(self, country_id: str) -> Optional[Country]: ...

    @abstractmethod
    async def find_country_by_domain(self, amazon_domain: str) -> Optional[Country]: ...

    @abstractmethod
    async def save_country(self, country: Country) -> Country: ...

    @abstractmethod
    async def get_product_type(self, product_type_id: str) -> Optional[ProductType]: ...

    @abstractmethod
    async def find_product_type(self, category_id: str, name: str) -> Optional[ProductType]: ...

    @abstractmethod
    async def save_product_type(self, product_type: ProductType) -> ProductType: ...

    # Research analyses
    @abstractmethod
    async def save_analysis(self, analysis: ResearchAnalysis) -> ResearchAnalysis: ...

    @abstractmethod
    async def get_analysis(self, analysis_id: str) -> Optional[ResearchAnalysis]: ...

    @abstractmethod
    async def list_analyses(
        self,
        category_id: str,
        country_id: str,
        analysis_type: Optional[str] = None,
        status: Optional[str] = "completed",
    ) -> list[ResearchAnalysis]: ...

    # Listings
    @abstractmethod
    async def insert_listing(self, listing: Listing) -> Listing: ...

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]: ...

    @abstractmethod
    async def update_listing(
        self,
        listing_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Listing: ...

    @abstractmethod
    async def delete_listing(self, listing_id: str) -> None: ...

    @abstractmethod
    async def list_listings(self, batch_job_id: Optional[str] = None) -> list[Listing]: ...

    # Sections
    @abstractmethod
    async def get_sections(self, listing_id: str) -> list[ListingSection]: ...

    @abstractmethod
    async def upsert_section(self, section: ListingSection) -> ListingSection: ...

    @abstractmethod
    async def insert_sections(self, sections: list[ListingSection]) -> list[ListingSection]: ...

    @abstractmethod
    async def update_section(self, section_id: str, changes: dict[str, Any]) -> ListingSection: ...

    @abstractmethod
    async def delete_sections(self, listing_id: str, section_types: Iterable[str]) -> int: ...

    # Batches
    @abstractmethod
    async def insert_batch(self, batch: BatchJob) -> BatchJob: ...

    @abstractmethod
    async def get_batch(self, batch_id: str) -> Optional[BatchJob]: ...

    @abstractmethod
    async def update_batch(self, batch_id: str, changes: dict[str, Any]) -> BatchJob: ...

    # Aggregated research records
    @abstractmethod
    async def get_review_record(
        self, asin: str, country_id: str, sort_by: str
    ) -> Optional[AggregatedReviewRecord]: ...

    @abstractmethod
    async def upsert_review_record(self, record: AggregatedReviewRecord) -> AggregatedReviewRecord: ...

    @abstractmethod
    async def get_qna_record(self, asin: str, country_id: str) -> Optional[AggregatedQnARecord]: ...

    @abstractmethod
    async def upsert_qna_record(self, record: AggregatedQnARecord) -> AggregatedQnARecord: ...

    # Background jobs
    @abstractmethod
    async def insert_job(self, job: BackgroundJob) -> BackgroundJob: ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[BackgroundJob]: ...

    @abstractmethod
    async def update_job(self, job_id: str, changes: dict[str, Any]) -> BackgroundJob: ...

    @abstractmethod
    async def list_jobs(self) -> list[BackgroundJob]: ...

    # Rufus collection queue
    @abstractmethod
    async def insert_rufus_job(self, job: RufusJob, items: list[RufusJobItem]) -> RufusJob: ...

    @abstractmethod
    async def get_rufus_job(self, job_id: str) -> Optional[RufusJob]: ...

    @abstractmethod
    async def update_rufus_job(self, job_id: str, changes: dict[str, Any]) -> RufusJob: ...

    @abstractmethod
    async def list_rufus_jobs(self, statuses: Optional[Iterable[str]] = None) -> list[RufusJob]: ...

    @abstractmethod
    async def get_rufus_item(self, item_id: str) -> Optional[RufusJobItem]: ...

    @abstractmethod
    async def list_rufus_items(
        self, job_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[RufusJobItem]: ...

    @abstractmethod
    async def update_rufus_item(self, item_id: str, changes: dict[str, Any]) -> RufusJobItem: ...

    # Admin settings
    @abstractmethod
    async def get_admin_setting(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set_admin_setting(self, key: str, value: Optional[str]) -> None: ...


# =============================================================================
# In-Memory Implementation
# =============================================================================

def _apply(model: ModelT, changes: dict[str, Any]) -> ModelT:
    """Return a validated copy of ``model`` with ``changes`` applied."""
    data = model.model_dump()
    data.update(changes)
    if "updated_at" in type(model).model_fields and "updated_at" not in changes:
        data["updated_at"] = utc_now()
    return type(model).model_validate(data)


class InMemoryStore(Store):
    """Dict-backed store. Returned records are copies, as from a database."""

    TABLES: dict[str, type[PydanticBaseModel]] = {
        "categories": Category,
        "countries": Country,
        "product_types": ProductType,
        "analyses": ResearchAnalysis,
        "listings": Listing,
        "sections": ListingSection,
        "batches": BatchJob,
        "review_records": AggregatedReviewRecord,
        "qna_records": AggregatedQnARecord,
        "jobs": BackgroundJob,
        "rufus_jobs": RufusJob,
        "rufus_items": RufusJobItem,
    }

    def __init__(self):
        self._tables: dict[str, dict[str, Any]] = {name: {} for name in self.TABLES}
        self._admin_settings: dict[str, str] = {}

    async def _commit(self) -> None:
        """Hook invoked after every mutation."""
        return None

    def _put(self, table: str, record: ModelT) -> ModelT:
        self._tables[table][record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def _get(self, table: str, record_id: Optional[str]) -> Optional[Any]:
        record = self._tables[table].get(record_id) if record_id else None
        return record.model_copy(deep=True) if record is not None else None

    def _require(self, table: str, record_id: str, entity: str) -> Any:
        record = self._tables[table].get(record_id)
        if record is None:
            raise NotFoundError(entity, record_id)
        return record

    async def _update(self, table: str, record_id: str, entity: str, changes: dict[str, Any]) -> Any:
        current = self._require(table, record_id, entity)
        updated = _apply(current, changes)
        self._tables[table][record_id] = updated
        await self._commit()
        return updated.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Reference records
    # -------------------------------------------------------------------------

    async def get_category(self, category_id: str) -> Optional[Category]:
        return self._get("categories", category_id)

    async def save_category(self, category: Category) -> Category:
        saved = self._put("categories", category)
        await self._commit()
        return saved

    async def get_country(self, country_id: str) -> Optional[Country]:
        return self._get("countries", country_id)

    async def find_country_by_domain(self, amazon_domain: str) -> Optional[Country]:
        target = amazon_domain.strip().lower()
        for country in self._tables["countries"].values():
            if country.amazon_domain.lower() == target:
                return country.model_copy(deep=True)
        return None

    async def save_country(self, country: Country) -> Country:
        saved = self._put("countries", country)
        await self._commit()
        return saved

    async def get_product_type(self, product_type_id: str) -> Optional[ProductType]:
        return self._get("product_types", product_type_id)

    async def find_product_type(self, category_id: str, name: str) -> Optional[ProductType]:
        target = name.strip().lower()
        for product_type in self._tables["product_types"].values():
            if product_type.category_id == category_id and product_type.name.lower() == target:
                return product_type.model_copy(deep=True)
        return None

    async def save_product_type(self, product_type: ProductType) -> ProductType:
        saved = self._put("product_types", product_type)
        await self._commit()
        return saved

    # -------------------------------------------------------------------------
    # Research analyses
    # -------------------------------------------------------------------------

    async def save_analysis(self, analysis: ResearchAnalysis) -> ResearchAnalysis:
        saved = self._put("analyses", analysis)
        await self._commit()
        return saved

    async def get_analysis(self, analysis_id: str) -> Optional[ResearchAnalysis]:
        return self._get("analyses", analysis_id)

    async def list_analyses(
        self,
        category_id: str,
        country_id: str,
        analysis_type: Optional[str] = None,
        status: Optional[str] = "completed",
    ) -> list[ResearchAnalysis]:
        return [
            a.model_copy(deep=True)
            for a in self._tables["analyses"].values()
            if a.category_id == category_id
            and a.country_id == country_id
            and (analysis_type is None or a.analysis_type == analysis_type)
            and (status is None or a.status == status)
        ]

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    async def insert_listing(self, listing: Listing) -> Listing:
        if listing.id in self._tables["listings"]:
            raise PersistenceError(f"Listing already exists: {listing.id}")
        saved = self._put("listings", listing)
        await self._commit()
        return saved

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return self._get("listings", listing_id)

    async def update_listing(
        self,
        listing_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Listing:
        current = self._require("listings", listing_id, "Listing")
        if expected_version is not None and current.phase_version != expected_version:
            raise ConcurrencyConflictError(listing_id, expected_version, current.phase_version)
        return await self._update("listings", listing_id, "Listing", changes)

    async def delete_listing(self, listing_id: str) -> None:
        self._tables["listings"].pop(listing_id, None)
        sections = self._tables["sections"]
        for section_id in [s.id for s in sections.values() if s.listing_id == listing_id]:
            del sections[section_id]
        await self._commit()

    async def list_listings(self, batch_job_id: Optional[str] = None) -> list[Listing]:
        return [
            listing.model_copy(deep=True)
            for listing in self._tables["listings"].values()
            if batch_job_id is None or listing.batch_job_id == batch_job_id
        ]

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def _find_section(self, listing_id: str, section_type: str) -> Optional[ListingSection]:
        for section in self._tables["sections"].values():
            if section.listing_id == listing_id and section.section_type == section_type:
                return section
        return None

    async def get_sections(self, listing_id: str) -> list[ListingSection]:
        return [
            s.model_copy(deep=True)
            for s in self._tables["sections"].values()
            if s.listing_id == listing_id
        ]

    async def upsert_section(self, section: ListingSection) -> ListingSection:
        """Insert or replace on (listing_id, section_type), keeping the row id."""
        existing = self._find_section(section.listing_id, section.section_type)
        if existing is not None:
            section = section.model_copy(
                update={"id": existing.id, "created_at": existing.created_at, "updated_at": utc_now()}
            )
        saved = self._put("sections", section)
        await self._commit()
        return saved

    async def insert_sections(self, sections: list[ListingSection]) -> list[ListingSection]:
        for section in sections:
            if self._find_section(section.listing_id, section.section_type) is not None:
                raise PersistenceError(
                    f"Section {section.section_type} already exists for listing {section.listing_id}"
                )
        saved = [self._put("sections", s) for s in sections]
        await self._commit()
        return saved

    async def update_section(self, section_id: str, changes: dict[str, Any]) -> ListingSection:
        return await self._update("sections", section_id, "Section", changes)

    async def delete_sections(self, listing_id: str, section_types: Iterable[str]) -> int:
        targets = set(section_types)
        sections = self._tables["sections"]
        doomed = [
            s.id for s in sections.values()
            if s.listing_id == listing_id and s.section_type in targets
        ]
        for section_id in doomed:
            del sections[section_id]
        await self._commit()
        return len(doomed)

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    async def insert_batch(self, batch: BatchJob) -> BatchJob:
        saved = self._put("batches", batch)
        await self._commit()
        return saved

    async def get_batch(self, batch_id: str) -> Optional[BatchJob]:
        return self._get("batches", batch_id)

    async def update_batch(self, batch_id: str, changes: dict[str, Any]) -> BatchJob:
        return await self._update("batches", batch_id, "Batch job", changes)

    # -------------------------------------------------------------------------
    # Aggregated research records
    # -------------------------------------------------------------------------

    async def get_review_record(
        self, asin: str, country_id: str, sort_by: str
    ) -> Optional[AggregatedReviewRecord]:
        for record in self._tables["review_records"].values():
            if record.asin == asin and record.country_id == country_id and record.sort_by == sort_by:
                return record.model_copy(deep=True)
        return None

    async def upsert_review_record(self, record: AggregatedReviewRecord) -> AggregatedReviewRecord:
        existing = await self.get_review_record(record.asin, record.country_id, record.sort_by)
        if existing is not None:
            record = record.model_copy(
                update={"id": existing.id, "created_at": existing.created_at, "updated_at": utc_now()}
            )
        saved = self._put("review_records", record)
        await self._commit()
        return saved

    async def get_qna_record(self, asin: str, country_id: str) -> Optional[AggregatedQnARecord]:
        for record in self._tables["qna_records"].values():
            if record.asin == asin and record.country_id == country_id:
                return record.model_copy(deep=True)
        return None

    async def upsert_qna_record(self, record: AggregatedQnARecord) -> AggregatedQnARecord:
        existing = await self.get_qna_record(record.asin, record.country_id)
        if existing is not None:
            record = record.model_copy(
                update={"id": existing.id, "created_at": existing.created_at, "updated_at": utc_now()}
            )
        saved = self._put("qna_records", record)
        await self._commit()
        return saved

    # -------------------------------------------------------------------------
    # Background jobs
    # -------------------------------------------------------------------------

    async def insert_job(self, job: BackgroundJob) -> BackgroundJob:
        saved = self._put("jobs", job)
        await self._commit()
        return saved

    async def get_job(self, job_id: str) -> Optional[BackgroundJob]:
        return self._get("jobs", job_id)

    async def update_job(self, job_id: str, changes: dict[str, Any]) -> BackgroundJob:
        return await self._update("jobs", job_id, "Job", changes)

    async def list_jobs(self) -> list[BackgroundJob]:
        jobs = [j.model_copy(deep=True) for j in self._tables["jobs"].values()]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    # -------------------------------------------------------------------------
    # Rufus collection queue
    # -------------------------------------------------------------------------

    async def insert_rufus_job(self, job: RufusJob, items: list[RufusJobItem]) -> RufusJob:
        saved = self._put("rufus_jobs", job)
        for item in items:
            self._put("rufus_items", item)
        await self._commit()
        return saved

    async def get_rufus_job(self, job_id: str) -> Optional[RufusJob]:
        return self._get("rufus_jobs", job_id)

    async def update_rufus_job(self, job_id: str, changes: dict[str, Any]) -> RufusJob:
        return await self._update("rufus_jobs", job_id, "Rufus job", changes)

    async def list_rufus_jobs(self, statuses: Optional[Iterable[str]] = None) -> list[RufusJob]:
        wanted = set(statuses) if statuses is not None else None
        jobs = [
            j.model_copy(deep=True)
            for j in self._tables["rufus_jobs"].values()
            if wanted is None or j.status in wanted
        ]
        return sorted(jobs, key=lambda j: j.created_at)

    async def get_rufus_item(self, item_id: str) -> Optional[RufusJobItem]:
        return self._get("rufus_items", item_id)

    async def list_rufus_items(
        self, job_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[RufusJobItem]:
        return [
            i.model_copy(deep=True)
            for i in self._tables["rufus_items"].values()
            if (job_id is None or i.job_id == job_id) and (status is None or i.status == status)
        ]

    async def update_rufus_item(self, item_id: str, changes: dict[str, Any]) -> RufusJobItem:
        return await self._update("rufus_items", item_id, "Rufus job item", changes)

    # -------------------------------------------------------------------------
    # Admin settings
    # -------------------------------------------------------------------------

    async def get_admin_setting(self, key: str) -> Optional[str]:
        return self._admin_settings.get(key)

    async def set_admin_setting(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self._admin_settings.pop(key, None)
        else:
            self._admin_settings[key] = value
        await self._commit()


# =============================================================================
# JSON File Implementation
# =============================================================================

class JsonFileStore(InMemoryStore):
    """In-memory store mirrored to a single JSON file."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read store file {self.path}: {e}") from e

        for table, model in self.TABLES.items():
            for row in raw.get(table, []):
                record = model.model_validate(row)
                self._tables[table][record.id] = record
        self._admin_settings = dict(raw.get("admin_settings", {}))
        logger.debug("Store loaded", path=str(self.path))

    def dump(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            table: [r.model_dump(mode="json") for r in rows.values()]
            for table, rows in self._tables.items()
        }
        data["admin_settings"] = dict(self._admin_settings)
        return data

    async def _commit(self) -> None:
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self.dump(), indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Cannot write store file {self.path}: {e}") from e


__all__ = ["Store", "InMemoryStore", "JsonFileStore"]
