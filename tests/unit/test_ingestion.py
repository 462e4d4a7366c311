import pytest
from unittest.mock import AsyncMock, MagicMock

from src.models.schemas import QnAItem
from src.research.ingestion import ExtensionAuthenticator, QnAService, RufusJobQueue
from src.services.marketplace_service import FetchResult, QuestionPage
from src.utils.retry import (
    AuthenticationError,
    PreconditionFailedError,
    ValidationError,
)

AUTH = "Bearer rufus-test-key"


@pytest.fixture
def authenticator(config_chain):
    return ExtensionAuthenticator(config_chain)


@pytest.fixture
def qna(store, authenticator):
    return QnAService(store, authenticator)


@pytest.fixture
def queue(store, authenticator, mock_settings):
    return RufusJobQueue(store, authenticator, mock_settings)


def asins(count: int) -> list[str]:
    return [f"B0TEST{i:04d}" for i in range(count)]


# =============================================================================
# Authentication
# =============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "", "rufus-test-key", "Bearer ", "Bearer wrong-key", "Basic rufus-test-key"])
async def test_authenticator_rejects(authenticator, header):
    with pytest.raises(AuthenticationError):
        await authenticator.verify(header)


@pytest.mark.asyncio
async def test_authenticator_accepts_key(authenticator):
    await authenticator.verify(AUTH)


@pytest.mark.asyncio
async def test_authenticator_without_configured_key(dict_provider):
    from src.config.providers import ChainedConfigProvider

    authenticator = ExtensionAuthenticator(ChainedConfigProvider([dict_provider({})]))
    with pytest.raises(AuthenticationError):
        await authenticator.verify(AUTH)


# =============================================================================
# Q&A ingestion
# =============================================================================

@pytest.mark.asyncio
async def test_ingest_merges_by_question_and_answer(qna, store):
    payload = {
        "asin": "b0test0001",
        "marketplace": "amazon.com",
        "questions": [
            {"question": "Does it keep drinks cold?", "answer": "Yes, 24 hours"},
            {"question": "Is the lid leak proof?", "answer": "Yes"},
            {"question": "   ", "answer": "ignored"},
        ],
    }
    first = await qna.ingest(AUTH, payload)

    payload["questions"] = [
        {"question": "Does it keep drinks cold?", "answer": "yes, 24 hours"},
        {"question": "Does it keep drinks cold?", "answer": "About 20 hours in my car"},
    ]
    second = await qna.ingest(AUTH, payload)

    assert first["rufus_questions_added"] == 2
    assert second["id"] == first["id"]
    assert second["rufus_questions_added"] == 1
    assert second["questions_stored"] == 3

    record = await store.get_qna_record("B0TEST0001", "us")
    assert record.total_questions == 3
    assert record.raw_response["sources"]["rufus_extension"]["merges"] == 2


@pytest.mark.asyncio
async def test_ingest_requires_auth_before_validation(qna):
    with pytest.raises(AuthenticationError):
        await qna.ingest("Bearer nope", {})


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"asin": "short", "marketplace": "amazon.com", "questions": [{"question": "q"}]},
    {"asin": "B0TEST0001", "questions": [{"question": "q"}]},
    {"asin": "B0TEST0001", "marketplace": "amazon.com", "questions": []},
    {"asin": "B0TEST0001", "marketplace": "amazon.xx", "questions": [{"question": "q"}]},
    {"asin": "B0TEST0001", "marketplace": "amazon.com", "questions": [{"answer": "no question"}]},
    {"asin": "B0TEST0001", "marketplace": "amazon.com", "questions": [{"question": 123, "answer": "x"}]},
    {"asin": "B0TEST0001", "marketplace": "amazon.com", "questions": ["Is it dishwasher safe?"]},
])
async def test_ingest_validation(qna, payload):
    with pytest.raises(ValidationError):
        await qna.ingest(AUTH, payload)


@pytest.mark.asyncio
async def test_ingest_skips_malformed_entries(qna, store):
    summary = await qna.ingest(AUTH, {
        "asin": "B0TEST0001",
        "marketplace": "amazon.com",
        "questions": [
            {"question": 123, "answer": "x"},
            {"question": "Does it leak?", "answer": {"text": "No"}},
        ],
    })

    assert summary["rufus_questions_received"] == 1
    record = await store.get_qna_record("B0TEST0001", "us")
    assert [(q.question, q.answer) for q in record.questions] == [("Does it leak?", "")]


@pytest.mark.asyncio
async def test_get_questions_filters_rufus(qna, store):
    await qna.ingest(AUTH, {
        "asin": "B0TEST0001",
        "marketplace": "amazon.com",
        "questions": [{"question": "From the extension?", "answer": "Yes"}],
    })
    record = await store.get_qna_record("B0TEST0001", "us")
    record.questions.append(QnAItem(question="From the provider?", source="oxylabs"))
    await store.upsert_qna_record(record)

    everything = await qna.get_questions(AUTH, "B0TEST0001", "amazon.com")
    rufus = await qna.get_questions(AUTH, "B0TEST0001", "amazon.com", rufus_only=True)
    missing = await qna.get_questions(AUTH, "B0TEST0002", "amazon.com")

    assert everything["total"] == 2
    assert rufus["total"] == 1
    assert missing == {"questions": [], "total": 0, "updated_at": None}


@pytest.mark.asyncio
async def test_fetch_questions_from_provider(store, authenticator):
    oxylabs = MagicMock()
    oxylabs.fetch_questions = AsyncMock(return_value=FetchResult.success(
        "oxylabs", QuestionPage(questions=[QnAItem(question="Is it BPA free?", answer="Yes", source="oxylabs")])
    ))
    service = QnAService(store, authenticator, oxylabs)

    record = await service.fetch_questions("B0TEST0001", "us", pages=2)

    oxylabs.fetch_questions.assert_awaited_once_with("B0TEST0001", "com", 2)
    assert record.total_questions == 1
    assert record.raw_response["last_source"] == "amazon_questions"


@pytest.mark.asyncio
async def test_fetch_questions_without_provider(qna):
    with pytest.raises(ValidationError):
        await qna.fetch_questions("B0TEST0001", "us")


# =============================================================================
# Rufus queue
# =============================================================================

@pytest.mark.asyncio
async def test_create_job_dedupes_and_validates(queue):
    job = await queue.create_job(["b0test0001", "B0TEST0001", "B0TEST0002"], "us")
    assert job.total_asins == 2
    assert job.marketplace_domain == "amazon.com"

    with pytest.raises(ValidationError):
        await queue.create_job(["B0TEST0001", "bad"], "us")
    with pytest.raises(ValidationError):
        await queue.create_job([], "us")


@pytest.mark.asyncio
async def test_next_item_claims_in_order(queue, store):
    job = await queue.create_job(asins(2), "us")

    first = await queue.next_item(AUTH)
    second = await queue.next_item(AUTH)
    third = await queue.next_item(AUTH)

    assert [first["asin"], second["asin"]] == asins(2)
    assert first["max_questions"] == 50
    assert third is None
    assert (await store.get_rufus_job(job.id)).status == "processing"


async def run_queue(queue, completed: int, failed: int):
    job = await queue.create_job(asins(completed + failed), "us")
    for n in range(completed + failed):
        item = await queue.next_item(AUTH)
        status = "completed" if n < completed else "failed"
        job = await queue.complete_item(AUTH, item["item_id"], status, questions_found=5)
    return job


@pytest.mark.asyncio
async def test_job_completes_at_success_threshold(queue):
    job = await run_queue(queue, completed=7, failed=3)
    assert job.status == "completed"
    assert job.completed_asins == 7


@pytest.mark.asyncio
async def test_job_partial_below_threshold(queue):
    job = await run_queue(queue, completed=6, failed=4)
    assert job.status == "completed_partial"
    assert job.failed_asins == 4


@pytest.mark.asyncio
async def test_job_stays_processing_until_all_items_reported(queue):
    await queue.create_job(asins(2), "us")
    item = await queue.next_item(AUTH)
    job = await queue.complete_item(AUTH, item["item_id"], "completed", 3)
    assert job.status == "processing"


@pytest.mark.asyncio
async def test_complete_item_twice_rejected(queue):
    await queue.create_job(asins(2), "us")
    item = await queue.next_item(AUTH)
    await queue.complete_item(AUTH, item["item_id"], "skipped")

    with pytest.raises(PreconditionFailedError):
        await queue.complete_item(AUTH, item["item_id"], "completed")


@pytest.mark.asyncio
async def test_complete_item_bad_status(queue):
    await queue.create_job(asins(1), "us")
    item = await queue.next_item(AUTH)
    with pytest.raises(ValidationError):
        await queue.complete_item(AUTH, item["item_id"], "processing")


@pytest.mark.asyncio
async def test_queue_endpoints_require_key(queue):
    with pytest.raises(AuthenticationError):
        await queue.next_item(None)
    with pytest.raises(AuthenticationError):
        await queue.complete_item("Bearer wrong", "item", "completed")
