import pytest

from src.models.schemas import PhaseRequest, ProductSpec
from src.pipeline.phases import PhasedGenerationMachine
from src.pipeline.workflow import ListingWorkflow
from src.utils.retry import PipelineError, ProviderError


@pytest.fixture
def request_title():
    return PhaseRequest(
        phase="title",
        category_id="cat-1",
        country_id="us",
        product=ProductSpec(product_name="Insulated Water Bottle", brand="Acme"),
    )


@pytest.mark.asyncio
async def test_workflow_runs_every_phase(store, mock_claude, request_title):
    progress = []
    workflow = ListingWorkflow(
        PhasedGenerationMachine(store, mock_claude),
        store,
        progress_callback=lambda pct, msg: progress.append(pct),
    )

    result = await workflow.run(request_title)

    assert result.phases_completed == ["title", "bullets", "description", "backend"]
    assert result.tokens_used == 7500
    assert progress == [20, 60, 85, 100]

    listing = await store.get_listing(result.listing_id)
    assert listing.phase == "complete"
    assert listing.title == "Acme Insulated Water Bottle Variant 1"

    sections = {s.section_type: s for s in await store.get_sections(result.listing_id)}
    assert sections["title"].final_text == "Acme Insulated Water Bottle Variant 1"
    assert sections["bullet_1"].is_approved
    assert sections["description"].final_text == "Description A"
    assert sections["subject_matter"].is_approved


@pytest.mark.asyncio
async def test_workflow_stops_at_failing_phase(store, mock_claude, request_title):
    mock_claude.generate_description_phase.side_effect = ProviderError("Overloaded", provider="anthropic")
    workflow = ListingWorkflow(PhasedGenerationMachine(store, mock_claude), store)

    with pytest.raises(PipelineError) as exc_info:
        await workflow.run(request_title)

    error = exc_info.value
    assert error.message == "description phase failed: Overloaded"
    assert error.error_type == "provider-error"
    assert error.details["step"] == "description"
    mock_claude.generate_backend_phase.assert_not_awaited()

    listing = await store.get_listing(error.details["listing_id"])
    assert listing.phase == "bullets"


@pytest.mark.asyncio
async def test_workflow_validation_failure(store, mock_claude, request_title):
    request_title.product = ProductSpec(product_name="ab", brand="Acme")
    workflow = ListingWorkflow(PhasedGenerationMachine(store, mock_claude), store)

    with pytest.raises(PipelineError) as exc_info:
        await workflow.run(request_title)

    assert exc_info.value.error_type == "validation-error"
    assert exc_info.value.details["listing_id"] is None
    mock_claude.generate_title_phase.assert_not_awaited()
