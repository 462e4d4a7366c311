import json

import pytest

from src.models.schemas import BackgroundJob, Listing, ListingSection
from src.storage.store import InMemoryStore, JsonFileStore
from src.utils.retry import ConcurrencyConflictError, NotFoundError, PersistenceError


def make_listing(**kwargs) -> Listing:
    return Listing(category_id="cat-1", country_id="us", product_name="Bottle", brand="Acme", **kwargs)


@pytest.mark.asyncio
async def test_update_listing_compare_and_swap():
    store = InMemoryStore()
    listing = await store.insert_listing(make_listing())

    claimed = await store.update_listing(listing.id, {"phase_version": 1}, expected_version=0)
    assert claimed.phase_version == 1

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await store.update_listing(listing.id, {"phase_version": 1}, expected_version=0)
    assert exc_info.value.details["actual_version"] == 1


@pytest.mark.asyncio
async def test_update_listing_unknown_id():
    with pytest.raises(NotFoundError):
        await InMemoryStore().update_listing("missing", {"title": "x"})


@pytest.mark.asyncio
async def test_insert_listing_duplicate_id():
    store = InMemoryStore()
    listing = await store.insert_listing(make_listing())
    with pytest.raises(PersistenceError):
        await store.insert_listing(listing)


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    store = InMemoryStore()
    listing = await store.insert_listing(make_listing())
    listing.title = "mutated"
    assert (await store.get_listing(listing.id)).title == ""


@pytest.mark.asyncio
async def test_delete_listing_cascades_sections():
    store = InMemoryStore()
    listing = await store.insert_listing(make_listing())
    await store.insert_sections([
        ListingSection(listing_id=listing.id, section_type="title", variations=["t"]),
        ListingSection(listing_id=listing.id, section_type="bullet_1", variations=["b"]),
    ])

    await store.delete_listing(listing.id)

    assert await store.get_listing(listing.id) is None
    assert await store.get_sections(listing.id) == []


@pytest.mark.asyncio
async def test_upsert_section_keeps_row_id():
    store = InMemoryStore()
    first = await store.upsert_section(
        ListingSection(listing_id="l1", section_type="description", variations=["old"], final_text="kept?")
    )
    second = await store.upsert_section(
        ListingSection(listing_id="l1", section_type="description", variations=["new"])
    )

    assert second.id == first.id
    sections = await store.get_sections("l1")
    assert len(sections) == 1
    assert sections[0].variations == ["new"]
    assert sections[0].final_text is None


@pytest.mark.asyncio
async def test_insert_sections_rejects_existing_slot():
    store = InMemoryStore()
    await store.insert_sections([ListingSection(listing_id="l1", section_type="title", variations=["a"])])
    with pytest.raises(PersistenceError):
        await store.insert_sections([ListingSection(listing_id="l1", section_type="title", variations=["b"])])


@pytest.mark.asyncio
async def test_delete_sections_by_type():
    store = InMemoryStore()
    await store.insert_sections([
        ListingSection(listing_id="l1", section_type=t, variations=["x"])
        for t in ("title", "bullet_1", "bullet_2", "description")
    ])

    deleted = await store.delete_sections("l1", ["bullet_1", "bullet_2", "search_terms"])

    assert deleted == 2
    assert sorted(s.section_type for s in await store.get_sections("l1")) == ["description", "title"]


@pytest.mark.asyncio
async def test_list_analyses_filters(store, keyword_analysis):
    rows = await store.list_analyses("cat-1", "us")
    assert [r.id for r in rows] == [keyword_analysis.id]
    assert await store.list_analyses("cat-1", "us", analysis_type="review_analysis") == []
    assert await store.list_analyses("cat-1", "de") == []


@pytest.mark.asyncio
async def test_find_country_by_domain(store):
    country = await store.find_country_by_domain("Amazon.COM ")
    assert country.code == "US"


@pytest.mark.asyncio
async def test_admin_settings_roundtrip():
    store = InMemoryStore()
    await store.set_admin_setting("claude_model", "claude-x")
    assert await store.get_admin_setting("claude_model") == "claude-x"
    await store.set_admin_setting("claude_model", None)
    assert await store.get_admin_setting("claude_model") is None


@pytest.mark.asyncio
async def test_json_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "store.json"
    store = JsonFileStore(path)
    listing = await store.insert_listing(make_listing())
    await store.insert_job(BackgroundJob(kind="fetch_reviews"))
    await store.set_admin_setting("claude_model", "claude-x")

    reopened = JsonFileStore(path)

    assert (await reopened.get_listing(listing.id)).product_name == "Bottle"
    assert len(await reopened.list_jobs()) == 1
    assert await reopened.get_admin_setting("claude_model") == "claude-x"
    assert "listings" in json.loads(path.read_text())


def test_json_file_store_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json")
    with pytest.raises(PersistenceError):
        JsonFileStore(path)
