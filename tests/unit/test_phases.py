import pytest
from unittest.mock import AsyncMock

from src.models.schemas import ListingSection, PhaseRequest, ProductSpec
from src.pipeline.phases import (
    PhasedGenerationMachine,
    confirmed_bullets,
    downstream_sections,
    find_or_create_product_type,
)
from src.utils.retry import (
    ConcurrencyConflictError,
    NotFoundError,
    PersistenceError,
    PreconditionFailedError,
    ValidationError,
)


@pytest.fixture
def machine(store, mock_claude):
    return PhasedGenerationMachine(store, mock_claude)


def title_request(**kwargs) -> PhaseRequest:
    defaults = dict(
        phase="title",
        category_id="cat-1",
        country_id="us",
        product=ProductSpec(product_name="Insulated Water Bottle", brand="Acme", attributes={"capacity": "32oz"}),
    )
    defaults.update(kwargs)
    return PhaseRequest(**defaults)


async def section_types(store, listing_id: str) -> set[str]:
    return {s.section_type for s in await store.get_sections(listing_id)}


# =============================================================================
# Phase ordering
# =============================================================================

def test_downstream_sections():
    assert downstream_sections("backend") == ["subject_matter", "backend_attributes"]
    assert downstream_sections("description") == [
        "description", "search_terms", "subject_matter", "backend_attributes",
    ]
    assert downstream_sections("title")[0] == "title"
    with pytest.raises(ValueError):
        downstream_sections("images")


def test_confirmed_bullets_orders_numerically():
    sections = {
        f"bullet_{n}": ListingSection(listing_id="l", section_type=f"bullet_{n}", variations=[f"b{n}"])
        for n in (10, 2, 1)
    }
    assert confirmed_bullets(sections) == ["b1", "b2", "b10"]


# =============================================================================
# Full run
# =============================================================================

@pytest.mark.asyncio
async def test_all_phases_complete_listing(machine, store, mock_claude):
    title = await machine.run_phase(title_request())
    listing_id = title.listing_id

    assert title.listing.phase == "title"
    assert title.sections[0].variations[0] == "Acme Insulated Water Bottle Variant 1"
    data = mock_claude.generate_title_phase.await_args.args[0]
    assert data.keyword_analysis.title_keywords[0] == "insulated water bottle"
    assert data.attributes == {"capacity": "32oz"}

    bullets = await machine.run_phase(PhaseRequest(phase="bullets", listing_id=listing_id))
    assert len(bullets.sections) == 5
    assert bullets.sections[0].variations[0] == "seo concise 1"
    assert mock_claude.generate_bullets_phase.await_args.args[1] == "Acme Insulated Water Bottle Variant 1"

    await machine.run_phase(PhaseRequest(phase="description", listing_id=listing_id))
    backend = await machine.run_phase(PhaseRequest(phase="backend", listing_id=listing_id))

    listing = backend.listing
    assert listing.phase == "complete"
    assert listing.phase_version == 6
    assert listing.tokens_used == 1000 + 3000 + 2000 + 1500
    assert listing.description == "Description A"
    assert listing.search_terms == "gym bottle flask"
    assert listing.subject_matter == ["Hydration; Outdoors"]
    assert await section_types(store, listing_id) == {
        "title", "bullet_1", "bullet_2", "bullet_3", "bullet_4", "bullet_5",
        "description", "search_terms", "subject_matter", "backend_attributes",
    }
    attributes = next(s for s in backend.sections if s.section_type == "backend_attributes")
    assert "material type: Stainless Steel" in attributes.variations[0]


@pytest.mark.asyncio
async def test_final_text_overrides_selected_variant(machine, store, mock_claude):
    title = await machine.run_title_phase(title_request())
    section = title.sections[0]
    await store.update_section(section.id, {"selected_variation": 2, "final_text": "  Edited Title  "})

    await machine.run_bullets_phase(title.listing_id)

    assert mock_claude.generate_bullets_phase.await_args.args[1] == "Edited Title"


@pytest.mark.asyncio
async def test_regenerating_bullets_clears_later_sections(machine, store):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    await machine.run_bullets_phase(listing_id)
    await machine.run_description_phase(listing_id)
    await machine.run_backend_phase(listing_id)

    await machine.run_bullets_phase(listing_id)

    remaining = await section_types(store, listing_id)
    assert "bullet_1" in remaining
    assert remaining.isdisjoint({"description", "search_terms", "subject_matter", "backend_attributes"})
    assert (await store.get_listing(listing_id)).phase == "bullets"


@pytest.mark.asyncio
async def test_retried_title_replaces_previous_listing(machine, store):
    first = await machine.run_title_phase(title_request())
    second = await machine.run_title_phase(title_request(listing_id=first.listing_id))

    assert second.listing_id != first.listing_id
    assert await store.get_listing(first.listing_id) is None
    assert await store.get_sections(first.listing_id) == []


@pytest.mark.asyncio
async def test_coverage_carries_into_next_phase(machine, mock_claude):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    await machine.run_bullets_phase(listing_id)
    await machine.run_description_phase(listing_id)
    backend = await machine.run_backend_phase(listing_id)

    assert mock_claude.generate_bullets_phase.await_args.args[2].coverage_score == 30
    assert mock_claude.generate_description_phase.await_args.args[3].coverage_score == 55
    assert mock_claude.generate_backend_phase.await_args.args[5].coverage_score == 70
    assert backend.listing.keyword_coverage.coverage_score == 85


@pytest.mark.asyncio
async def test_backend_without_subject_matter_skips_section(machine, store, mock_claude):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    await machine.run_bullets_phase(listing_id)
    await machine.run_description_phase(listing_id)
    generated = mock_claude.generate_backend_phase.return_value
    generated.result.subject_matter = []

    backend = await machine.run_backend_phase(listing_id)

    assert backend.listing.phase == "complete"
    assert backend.listing.subject_matter == []
    assert "subject_matter" not in await section_types(store, listing_id)


# =============================================================================
# Preconditions
# =============================================================================

@pytest.mark.asyncio
async def test_title_request_validation(machine, mock_claude):
    with pytest.raises(ValidationError):
        await machine.run_phase(title_request(category_id=None))
    with pytest.raises(ValidationError):
        await machine.run_phase(title_request(product=ProductSpec(product_name="ab", brand="Acme")))
    with pytest.raises(NotFoundError):
        await machine.run_phase(title_request(country_id="zz"))
    mock_claude.generate_title_phase.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_listing(machine):
    with pytest.raises(NotFoundError):
        await machine.run_bullets_phase("missing")
    with pytest.raises(ValidationError):
        await machine.run_phase(PhaseRequest(phase="bullets"))


@pytest.mark.asyncio
async def test_bullets_require_title(machine, store, mock_claude):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    await store.delete_sections(listing_id, ["title"])

    with pytest.raises(PreconditionFailedError) as exc_info:
        await machine.run_bullets_phase(listing_id)

    assert exc_info.value.section == "title"
    mock_claude.generate_bullets_phase.assert_not_awaited()
    assert (await store.get_listing(listing_id)).phase_version == 0


@pytest.mark.asyncio
async def test_description_requires_bullets(machine):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    with pytest.raises(PreconditionFailedError, match="Bullets must be confirmed"):
        await machine.run_description_phase(listing_id)


@pytest.mark.asyncio
async def test_backend_requires_description(machine, store):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    await machine.run_bullets_phase(listing_id)

    with pytest.raises(PreconditionFailedError) as exc_info:
        await machine.run_backend_phase(listing_id)

    assert exc_info.value.section == "description"


# =============================================================================
# Failure handling
# =============================================================================

@pytest.mark.asyncio
async def test_title_section_failure_removes_listing(machine, store):
    store.insert_sections = AsyncMock(side_effect=RuntimeError("disk full"))

    with pytest.raises(PersistenceError) as exc_info:
        await machine.run_title_phase(title_request())

    assert await store.get_listing(exc_info.value.details["listing_id"]) is None
    assert await store.list_listings() == []


@pytest.mark.asyncio
async def test_section_failure_restores_previous_phase(machine, store, mock_claude):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    store.upsert_section = AsyncMock(side_effect=RuntimeError("disk full"))

    with pytest.raises(PersistenceError) as exc_info:
        await machine.run_bullets_phase(listing_id)

    assert exc_info.value.details["listing_id"] == listing_id
    listing = await store.get_listing(listing_id)
    assert listing.phase == "title"
    assert listing.keyword_coverage.coverage_score == 30
    assert listing.tokens_used == 1000
    assert listing.planning_matrix is None
    assert await section_types(store, listing_id) == {"title"}

    del store.upsert_section
    await machine.run_bullets_phase(listing_id)

    assert mock_claude.generate_bullets_phase.await_args.args[2].coverage_score == 30
    assert (await store.get_listing(listing_id)).phase == "bullets"


@pytest.mark.asyncio
async def test_backend_section_failure_restores_description_phase(machine, store):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    await machine.run_bullets_phase(listing_id)
    await machine.run_description_phase(listing_id)
    store.upsert_section = AsyncMock(side_effect=RuntimeError("disk full"))

    with pytest.raises(PersistenceError):
        await machine.run_backend_phase(listing_id)

    listing = await store.get_listing(listing_id)
    assert listing.phase == "description"
    assert listing.keyword_coverage.coverage_score == 70
    assert listing.subject_matter == []
    assert listing.backend_attributes is None


@pytest.mark.asyncio
async def test_concurrent_run_loses_race(machine, store, mock_claude):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    generated = mock_claude.generate_bullets_phase.return_value

    async def competing_run(*args):
        listing = await store.get_listing(listing_id)
        await store.update_listing(listing_id, {"phase_version": listing.phase_version + 1})
        return generated

    mock_claude.generate_bullets_phase.side_effect = competing_run

    with pytest.raises(ConcurrencyConflictError):
        await machine.run_bullets_phase(listing_id)

    assert await section_types(store, listing_id) == {"title"}


@pytest.mark.asyncio
async def test_generation_error_leaves_listing_claimed_but_clean(machine, store, mock_claude):
    listing_id = (await machine.run_title_phase(title_request())).listing_id
    await machine.run_bullets_phase(listing_id)
    mock_claude.generate_bullets_phase.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await machine.run_bullets_phase(listing_id)

    listing = await store.get_listing(listing_id)
    assert listing.phase == "bullets"
    assert await section_types(store, listing_id) == {"title"}


# =============================================================================
# Product types
# =============================================================================

@pytest.mark.asyncio
async def test_find_or_create_product_type(store):
    product = ProductSpec(product_name="Bottle", brand="Acme", product_type_name="Bottles ", attributes={"lid": "screw"})

    created = await find_or_create_product_type(store, "cat-1", product)
    found = await find_or_create_product_type(store, "cat-1", product)

    assert created.name == "Bottles"
    assert found.id == created.id
    assert created.attributes == {"lid": "screw"}
    assert await find_or_create_product_type(store, "cat-1", ProductSpec(product_name="Bottle")) is None


@pytest.mark.asyncio
async def test_title_merges_product_type_attributes(machine, store, mock_claude):
    product = ProductSpec(
        product_name="Insulated Water Bottle",
        brand="Acme",
        product_type_name="Bottles",
        attributes={"capacity": "32oz"},
    )
    outcome = await machine.run_title_phase(title_request(product=product))

    assert outcome.listing.product_type_id is not None
    with pytest.raises(NotFoundError):
        await machine.run_title_phase(title_request(product_type_id="nope"))
