"""
Phased generation state machine.

A listing is built in four AI phases: title, bullets, description (with
search terms) and backend (subject matter and backend attributes). Each
phase after the title reads the human-confirmed text of the earlier
sections, so regenerating a phase invalidates every section that was
derived from it.

Concurrent runs on the same listing are serialized optimistically with a
compare-and-swap on ``Listing.phase_version``: a run claims the listing
before invalidating and commits with a second swap before writing its
sections, so the run that loses the race writes nothing. When a section
write fails after the commit, the listing is put back to the previous
phase with the coverage and token totals it had before the run.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from src.models.schemas import (
    BULLET_SECTION_TYPES,
    Category,
    GenerationPhase,
    KeywordCoverage,
    Listing,
    ListingGenerationInput,
    ListingPhase,
    ListingSection,
    PhaseRequest,
    ProductSpec,
    ProductType,
    SectionType,
    bullet_section,
    flatten_bullet,
    format_backend_attributes,
)
from src.pipeline.context import (
    build_generation_input,
    generation_context,
    product_from_listing,
)
from src.services.llm_service import ClaudeService
from src.services.validation_service import ValidationService
from src.storage.store import Store
from src.utils.logger import LogContext, get_logger
from src.utils.retry import (
    NotFoundError,
    PersistenceError,
    PreconditionFailedError,
)

logger = get_logger(__name__)


# =============================================================================
# Phase Ordering
# =============================================================================

PHASE_ORDER: tuple[str, ...] = (
    GenerationPhase.TITLE.value,
    GenerationPhase.BULLETS.value,
    GenerationPhase.DESCRIPTION.value,
    GenerationPhase.BACKEND.value,
)

PHASE_SECTIONS: dict[str, tuple[str, ...]] = {
    GenerationPhase.TITLE.value: (SectionType.TITLE.value,),
    GenerationPhase.BULLETS.value: BULLET_SECTION_TYPES,
    GenerationPhase.DESCRIPTION.value: (
        SectionType.DESCRIPTION.value,
        SectionType.SEARCH_TERMS.value,
    ),
    GenerationPhase.BACKEND.value: (
        SectionType.SUBJECT_MATTER.value,
        SectionType.BACKEND_ATTRIBUTES.value,
    ),
}


def downstream_sections(phase: str) -> list[str]:
    """Section types owned by ``phase`` and by every phase after it."""
    if phase not in PHASE_ORDER:
        raise ValueError(f"Unknown phase: {phase}")
    start = PHASE_ORDER.index(phase)
    return [s for p in PHASE_ORDER[start:] for s in PHASE_SECTIONS[p]]


async def invalidate_downstream(store: Store, listing_id: str, phase: str) -> int:
    """Delete the sections of ``phase`` and of every later phase."""
    section_types = downstream_sections(phase)
    deleted = await store.delete_sections(listing_id, section_types)
    logger.info("Invalidated downstream sections", listing_id=listing_id, phase=phase, deleted=deleted)
    return deleted


# =============================================================================
# Results
# =============================================================================

@dataclass
class PhaseOutcome:
    """What one phase run produced."""
    phase: str
    listing: Listing
    sections: list[ListingSection]
    model: str
    tokens_used: int
    keyword_coverage: Optional[KeywordCoverage] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def listing_id(self) -> str:
        return self.listing.id


@dataclass
class _Claim:
    listing: Listing
    version: int


# =============================================================================
# State Machine
# =============================================================================

class PhasedGenerationMachine:
    """
    Runs one generation phase for one listing.

    Example:
        >>> machine = PhasedGenerationMachine(store, ClaudeService())
        >>> outcome = await machine.run_phase(PhaseRequest(
        ...     phase="title", category_id=cat.id, country_id=us.id,
        ...     product=ProductSpec(product_name="Steel Bottle", brand="Acme"),
        ... ))
        >>> outcome.listing.phase
        'title'
    """

    def __init__(
        self,
        store: Store,
        claude: ClaudeService,
        validator: Optional[ValidationService] = None,
    ):
        self.store = store
        self.claude = claude
        self.validator = validator or ValidationService()

    async def run_phase(self, request: PhaseRequest) -> PhaseOutcome:
        """Validate the request and dispatch to the phase handler."""
        self.validator.validate_phase_request(request)
        handlers = {
            GenerationPhase.TITLE.value: self.run_title_phase,
            GenerationPhase.BULLETS.value: self.run_bullets_phase,
            GenerationPhase.DESCRIPTION.value: self.run_description_phase,
            GenerationPhase.BACKEND.value: self.run_backend_phase,
        }
        handler = handlers[request.phase]
        with LogContext(phase=request.phase, listing_id=request.listing_id):
            if request.phase == GenerationPhase.TITLE.value:
                return await handler(request)
            return await handler(request.listing_id)

    # -------------------------------------------------------------------------
    # Title
    # -------------------------------------------------------------------------

    async def run_title_phase(self, request: PhaseRequest) -> PhaseOutcome:
        """
        Create a listing and its title section from product facts.

        When ``request.listing_id`` names an earlier attempt, that listing and
        its sections are removed once the new titles have been generated.

        Raises:
            ValidationError: Missing ids, short product name or missing brand
            NotFoundError: Unknown category or country
            PersistenceError: Title section could not be saved
        """
        self.validator.validate_phase_request(request)

        category = await self.store.get_category(request.category_id)
        if category is None:
            raise NotFoundError("Category", request.category_id)
        country = await self.store.get_country(request.country_id)
        if country is None:
            raise NotFoundError("Country", request.country_id)

        product_type = await self._resolve_product_type(category, request)
        product = request.product
        if product_type is not None:
            product = product.model_copy(
                update={"attributes": {**product_type.attributes, **product.attributes}}
            )

        data = await build_generation_input(
            self.store,
            category,
            country,
            product,
            optimization_mode=request.optimization_mode,
            existing_listing_text=request.existing_listing_text,
        )
        outcome = await self.claude.generate_title_phase(data)
        result = outcome.result

        if request.listing_id:
            await self.store.delete_listing(request.listing_id)
            logger.info("Replaced previous listing", previous_listing_id=request.listing_id)

        listing = await self.store.insert_listing(
            Listing(
                category_id=category.id,
                country_id=country.id,
                product_type_id=product_type.id if product_type else None,
                product_name=data.product_name,
                brand=data.brand,
                asin=data.asin,
                phase=ListingPhase.TITLE.value,
                optimization_mode=request.optimization_mode,
                existing_listing_text=request.existing_listing_text,
                generation_context=generation_context(product, data, category_id=category.id),
                keyword_coverage=result.keyword_coverage,
                model_used=outcome.model,
                tokens_used=outcome.tokens_used,
                title=result.titles[0],
            )
        )

        try:
            sections = await self.store.insert_sections(
                [
                    ListingSection(
                        listing_id=listing.id,
                        section_type=SectionType.TITLE.value,
                        variations=result.titles,
                    )
                ]
            )
        except Exception as e:
            await self._discard_listing(listing.id)
            raise PersistenceError(
                f"Failed to save title section: {e}",
                {"listing_id": listing.id},
            ) from e

        logger.info(
            "Title phase completed",
            listing_id=listing.id,
            variants=len(result.titles),
            tokens_used=outcome.tokens_used,
        )
        return PhaseOutcome(
            phase=GenerationPhase.TITLE.value,
            listing=listing,
            sections=sections,
            model=outcome.model,
            tokens_used=outcome.tokens_used,
            keyword_coverage=result.keyword_coverage,
        )

    async def _resolve_product_type(self, category: Category, request: PhaseRequest) -> Optional[ProductType]:
        if request.product_type_id:
            product_type = await self.store.get_product_type(request.product_type_id)
            if product_type is None:
                raise NotFoundError("Product type", request.product_type_id)
            return product_type
        return await find_or_create_product_type(self.store, category.id, request.product)

    async def _discard_listing(self, listing_id: str) -> None:
        try:
            await self.store.delete_listing(listing_id)
        except Exception as e:
            logger.error("Failed to remove listing after section error", listing_id=listing_id, error=str(e))

    # -------------------------------------------------------------------------
    # Bullets
    # -------------------------------------------------------------------------

    async def run_bullets_phase(self, listing_id: str) -> PhaseOutcome:
        """Generate bullet variants from the confirmed title."""
        listing, sections = await self._load(listing_id)
        title = self._require_text(sections, SectionType.TITLE.value, "Title")

        claim = await self._claim(listing, GenerationPhase.BULLETS.value)
        data = await self._rebuild_input(listing)
        coverage = listing.keyword_coverage or KeywordCoverage()

        outcome = await self.claude.generate_bullets_phase(data, title, coverage)
        result = outcome.result

        tokens_total = listing.tokens_used + outcome.tokens_used
        changes = {
            "phase": ListingPhase.BULLETS.value,
            "keyword_coverage": result.keyword_coverage,
            "planning_matrix": result.planning_matrix,
            "model_used": outcome.model,
            "tokens_used": tokens_total,
        }
        committed = await self._commit(claim, changes)

        written = []
        for number, bullet in enumerate(result.bullets[: len(BULLET_SECTION_TYPES)], start=1):
            variants = flatten_bullet(bullet)
            if not any(v.strip() for v in variants):
                continue
            written.append(
                ListingSection(listing_id=listing.id, section_type=bullet_section(number), variations=variants)
            )
        saved = await self._write_sections(claim, committed, changes, written, GenerationPhase.BULLETS.value)

        logger.info("Bullets phase completed", listing_id=listing.id, bullets=len(saved), tokens_used=outcome.tokens_used)
        return PhaseOutcome(
            phase=GenerationPhase.BULLETS.value,
            listing=committed,
            sections=saved,
            model=outcome.model,
            tokens_used=outcome.tokens_used,
            keyword_coverage=result.keyword_coverage,
            extra={"planning_matrix": [e.to_payload() for e in result.planning_matrix]},
        )

    # -------------------------------------------------------------------------
    # Description
    # -------------------------------------------------------------------------

    async def run_description_phase(self, listing_id: str) -> PhaseOutcome:
        """Generate description and search-term variants from title and bullets."""
        listing, sections = await self._load(listing_id)
        title = self._require_text(sections, SectionType.TITLE.value, "Title")
        bullets = confirmed_bullets(sections)
        if not any(b.strip() for b in bullets):
            raise PreconditionFailedError("Bullets must be confirmed before generating description", "bullets")

        claim = await self._claim(listing, GenerationPhase.DESCRIPTION.value)
        data = await self._rebuild_input(listing)
        coverage = listing.keyword_coverage or KeywordCoverage()

        outcome = await self.claude.generate_description_phase(data, title, bullets, coverage)
        result = outcome.result

        changes = {
            "phase": ListingPhase.DESCRIPTION.value,
            "keyword_coverage": result.keyword_coverage,
            "model_used": outcome.model,
            "tokens_used": listing.tokens_used + outcome.tokens_used,
        }
        committed = await self._commit(claim, changes)

        saved = await self._write_sections(
            claim,
            committed,
            changes,
            [
                ListingSection(
                    listing_id=listing.id,
                    section_type=SectionType.DESCRIPTION.value,
                    variations=result.descriptions,
                ),
                ListingSection(
                    listing_id=listing.id,
                    section_type=SectionType.SEARCH_TERMS.value,
                    variations=result.search_terms,
                ),
            ],
            GenerationPhase.DESCRIPTION.value,
        )

        logger.info("Description phase completed", listing_id=listing.id, tokens_used=outcome.tokens_used)
        return PhaseOutcome(
            phase=GenerationPhase.DESCRIPTION.value,
            listing=committed,
            sections=saved,
            model=outcome.model,
            tokens_used=outcome.tokens_used,
            keyword_coverage=result.keyword_coverage,
        )

    # -------------------------------------------------------------------------
    # Backend
    # -------------------------------------------------------------------------

    async def run_backend_phase(self, listing_id: str) -> PhaseOutcome:
        """Generate subject matter and backend attributes, then complete the listing."""
        listing, sections = await self._load(listing_id)
        title = self._require_text(sections, SectionType.TITLE.value, "Title")
        bullets = confirmed_bullets(sections)
        if not any(b.strip() for b in bullets):
            raise PreconditionFailedError("Bullets must be confirmed before generating backend", "bullets")
        description = self._require_text(sections, SectionType.DESCRIPTION.value, "Description")
        search_terms = self._require_text(sections, SectionType.SEARCH_TERMS.value, "Search terms")

        claim = await self._claim(listing, GenerationPhase.BACKEND.value)
        data = await self._rebuild_input(listing)
        coverage = listing.keyword_coverage or KeywordCoverage()

        outcome = await self.claude.generate_backend_phase(
            data, title, bullets, description, search_terms, coverage
        )
        result = outcome.result
        subject_variants = result.subject_matter_variants()

        changes = {
            "phase": ListingPhase.COMPLETE.value,
            "keyword_coverage": result.keyword_coverage,
            "backend_attributes": result.backend_attributes or None,
            "title": title,
            "bullet_points": bullets,
            "description": description,
            "search_terms": search_terms,
            "subject_matter": subject_variants[:1],
            "model_used": outcome.model,
            "tokens_used": listing.tokens_used + outcome.tokens_used,
        }
        committed = await self._commit(claim, changes)

        written = []
        if subject_variants:
            written.append(
                ListingSection(
                    listing_id=listing.id,
                    section_type=SectionType.SUBJECT_MATTER.value,
                    variations=subject_variants,
                )
            )
        if result.backend_attributes:
            written.append(
                ListingSection(
                    listing_id=listing.id,
                    section_type=SectionType.BACKEND_ATTRIBUTES.value,
                    variations=[format_backend_attributes(result.backend_attributes)],
                )
            )
        saved = await self._write_sections(claim, committed, changes, written, GenerationPhase.BACKEND.value)

        logger.info("Backend phase completed", listing_id=listing.id, tokens_used=outcome.tokens_used)
        return PhaseOutcome(
            phase=GenerationPhase.BACKEND.value,
            listing=committed,
            sections=saved,
            model=outcome.model,
            tokens_used=outcome.tokens_used,
            keyword_coverage=result.keyword_coverage,
            extra={"backend_attributes": result.backend_attributes},
        )

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    async def _load(self, listing_id: str) -> tuple[Listing, dict[str, ListingSection]]:
        listing = await self.store.get_listing(listing_id)
        if listing is None:
            raise NotFoundError("Listing", listing_id)
        sections = await self.store.get_sections(listing_id)
        return listing, {s.section_type: s for s in sections}

    @staticmethod
    def _require_text(sections: dict[str, ListingSection], section_type: str, label: str) -> str:
        section = sections.get(section_type)
        text = section.confirmed_text() if section is not None else ""
        if not text.strip():
            raise PreconditionFailedError(f"{label} must be confirmed first", section_type)
        return text

    async def _claim(self, listing: Listing, phase: str) -> _Claim:
        """Take the listing for this run, then clear what the phase will regenerate."""
        claimed = await self.store.update_listing(
            listing.id,
            {"phase_version": listing.phase_version + 1},
            expected_version=listing.phase_version,
        )
        await invalidate_downstream(self.store, listing.id, phase)
        return _Claim(listing=claimed, version=claimed.phase_version)

    async def _commit(self, claim: _Claim, changes: dict[str, Any]) -> Listing:
        return await self.store.update_listing(
            claim.listing.id,
            {**changes, "phase_version": claim.version + 1},
            expected_version=claim.version,
        )

    async def _write_sections(
        self,
        claim: _Claim,
        committed: Listing,
        changes: dict[str, Any],
        sections: list[ListingSection],
        phase: str,
    ) -> list[ListingSection]:
        """Save the phase's sections, rolling the listing back if any save fails."""
        saved = []
        try:
            for section in sections:
                saved.append(await self.store.upsert_section(section))
        except Exception as e:
            await self._rollback(claim, committed, changes, phase)
            raise PersistenceError(
                f"Failed to save {phase} sections: {e}",
                {"listing_id": committed.id},
            ) from e
        return saved

    async def _rollback(
        self, claim: _Claim, committed: Listing, changes: dict[str, Any], phase: str
    ) -> None:
        # The listing goes back to the last phase whose sections survived invalidation
        previous = {key: getattr(claim.listing, key) for key in changes}
        previous["phase"] = PHASE_ORDER[PHASE_ORDER.index(phase) - 1]
        previous["phase_version"] = committed.phase_version + 1
        try:
            await self.store.update_listing(
                committed.id, previous, expected_version=committed.phase_version
            )
        except Exception as e:
            logger.error("Failed to roll back listing after section error", listing_id=committed.id, error=str(e))
        else:
            logger.warning("Rolled back listing after section error", listing_id=committed.id, phase=previous["phase"])

    async def _rebuild_input(self, listing: Listing) -> ListingGenerationInput:
        country = await self.store.get_country(listing.country_id)
        if country is None:
            raise NotFoundError("Country", listing.country_id)
        category = await self.store.get_category(listing.category_id)
        if category is None:
            category = Category(id=listing.category_id, name="Unknown")
        return await build_generation_input(
            self.store,
            category,
            country,
            product_from_listing(listing),
            optimization_mode=listing.optimization_mode,
            existing_listing_text=listing.existing_listing_text,
        )


# =============================================================================
# Helpers
# =============================================================================

def confirmed_bullets(sections: dict[str, ListingSection]) -> list[str]:
    """Confirmed bullet texts ordered by bullet number; empty slots are kept."""
    numbered = sorted(
        ((int(section_type.split("_")[1]), section)
         for section_type, section in sections.items()
         if section_type in BULLET_SECTION_TYPES),
        key=lambda pair: pair[0],
    )
    return [section.confirmed_text() for _, section in numbered]


async def find_or_create_product_type(
    store: Store,
    category_id: str,
    product: ProductSpec,
) -> Optional[ProductType]:
    """Look up the named product type in the category, creating it when absent."""
    name = (product.product_type_name or "").strip()
    if not name:
        return None
    existing = await store.find_product_type(category_id, name)
    if existing is not None:
        return existing
    created = await store.save_product_type(
        ProductType(
            category_id=category_id,
            name=name,
            asin=product.asin or None,
            attributes=dict(product.attributes),
        )
    )
    logger.info("Product type created", product_type_id=created.id, name=name)
    return created


__all__ = [
    "PHASE_ORDER",
    "PHASE_SECTIONS",
    "downstream_sections",
    "invalidate_downstream",
    "PhaseOutcome",
    "PhasedGenerationMachine",
    "confirmed_bullets",
    "find_or_create_product_type",
]
