import pytest
import json
from contextlib import ExitStack
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

from src.config.providers import ChainedConfigProvider, ConfigProvider
from src.models.schemas import (
    Category,
    Country,
    KeywordCoverage,
    PlacedKeyword,
    RemainingKeyword,
    ResearchAnalysis,
)
from src.services.llm_service import GenerationOutcome
from src.storage.store import InMemoryStore

SETTINGS_CONSUMERS = [
    "src.config.settings.get_settings",
    "src.config.providers.get_settings",
    "src.services.llm_service.get_settings",
    "src.services.marketplace_service.get_settings",
    "src.research.reviews.get_settings",
    "src.research.ingestion.get_settings",
    "src.pipeline.batch.get_settings",
    "src.pipeline.jobs.get_settings",
    "src.utils.formatters.get_settings",
    "src.main.get_settings",
]

SECRETS = {
    "anthropic_api_key": "sk-ant-api-mock-key",
    "oxylabs_username": "oxy-user",
    "oxylabs_password": "oxy-pass",
    "apify_api_token": "apify-test-token",
    "rufus_extension_api_key": "rufus-test-key",
}


@pytest.fixture
def mock_settings(tmp_path):
    """Create mock settings for testing."""
    settings = MagicMock()
    settings.get_secret.side_effect = lambda key: SECRETS.get(key)
    settings.configured_providers.return_value = ["oxylabs", "apify"]

    settings.claude_model = "claude-sonnet-4-20250514"
    settings.claude_max_tokens = 32768
    settings.phase_max_tokens = 16384
    settings.generation_temperature = 0.7
    settings.max_retries = 3
    settings.fetch_timeout_seconds = 60
    settings.apify_max_wait_seconds = 3600
    settings.apify_poll_wait_seconds = 60
    settings.review_batch_pages = 10
    settings.default_review_pages = 10
    settings.max_batch_size = 20
    settings.stale_job_minutes = 30
    settings.rufus_success_threshold = 0.70
    settings.app_env = "development"
    settings.log_level = "INFO"
    settings.data_dir = tmp_path / "data"
    settings.log_dir = tmp_path / "logs"

    return settings


@pytest.fixture(autouse=True)
def patch_get_settings(mock_settings):
    """Globally patch get_settings everywhere it is imported by name."""
    with ExitStack() as stack:
        for target in SETTINGS_CONSUMERS:
            stack.enter_context(patch(target, return_value=mock_settings))
        yield mock_settings


class DictConfigProvider(ConfigProvider):
    """Config provider over a plain dict."""

    def __init__(self, values: dict, name: str = "dict"):
        self.values = values
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)


@pytest.fixture
def dict_provider():
    """The dict-backed provider class, for building custom chains."""
    return DictConfigProvider


@pytest.fixture
def config_chain():
    return ChainedConfigProvider([DictConfigProvider(dict(SECRETS))])


# =============================================================================
# Reference Records
# =============================================================================

@pytest.fixture
def category():
    return Category(id="cat-1", name="Water Bottles", brand="Acme")


@pytest.fixture
def country():
    return Country(
        id="us",
        name="United States",
        code="US",
        amazon_domain="amazon.com",
        language="English",
        title_limit=200,
        bullet_limit=500,
        bullet_count=5,
        description_limit=2000,
        search_terms_limit=250,
    )


@pytest.fixture
def keyword_analysis(category, country):
    return ResearchAnalysis(
        id="kw-1",
        category_id=category.id,
        country_id=country.id,
        analysis_type="keyword_analysis",
        source="csv",
        result={
            "titleKeywords": ["insulated water bottle", "stainless steel bottle"],
            "bulletKeywords": ["leak proof", "keeps cold 24 hours"],
            "searchTermKeywords": ["gym bottle"],
        },
    )


@pytest.fixture
def store(category, country, keyword_analysis):
    """In-memory store seeded with one category, one marketplace and one analysis."""
    store = InMemoryStore()
    store._put("categories", category)
    store._put("countries", country)
    store._put("analyses", keyword_analysis)
    return store


@pytest.fixture
def coverage():
    return KeywordCoverage(
        placed=[PlacedKeyword(keyword="insulated water bottle", search_volume=12000, relevancy=0.9, placed_in="title")],
        remaining=[RemainingKeyword(keyword="leak proof", search_volume=5400, relevancy=0.7)],
        coverage_score=42,
    )


# =============================================================================
# Claude Doubles
# =============================================================================

def outcome(result, model: str = "claude-sonnet-4-20250514", tokens: int = 1000) -> GenerationOutcome:
    return GenerationOutcome(result=result, model=model, tokens_used=tokens)


def bullet_set(n: int) -> dict:
    return {
        strategy: {
            "concise": f"{strategy} concise {n}",
            "medium": f"{strategy} medium {n}",
            "longer": f"{strategy} longer {n}",
        }
        for strategy in ("seo", "benefit", "balanced")
    }


@pytest.fixture
def mock_claude():
    """ClaudeService double whose phase methods are AsyncMocks."""
    from src.models.schemas import (
        BackendPhaseResult,
        BulletsPhaseResult,
        DescriptionPhaseResult,
        ListingGenerationResult,
        TitlePhaseResult,
    )

    claude = MagicMock()
    claude.generate_title_phase = AsyncMock(return_value=outcome(TitlePhaseResult.model_validate({
        "titles": [f"Acme Insulated Water Bottle Variant {i}" for i in range(1, 6)],
        "keywordCoverage": {"placed": [], "remaining": [], "coverageScore": 30},
    })))
    claude.generate_bullets_phase = AsyncMock(return_value=outcome(BulletsPhaseResult.model_validate({
        "planningMatrix": [{"bulletNumber": 1, "primaryFocus": "Insulation"}],
        "bullets": [bullet_set(n) for n in range(1, 6)],
        "keywordCoverage": {"placed": [], "remaining": [], "coverageScore": 55},
    }), tokens=3000))
    claude.generate_description_phase = AsyncMock(return_value=outcome(DescriptionPhaseResult.model_validate({
        "descriptions": ["Description A", "Description B", "Description C"],
        "searchTerms": ["gym bottle flask", "travel flask", "sports bottle"],
        "keywordCoverage": {"coverageScore": 70},
    }), tokens=2000))
    claude.generate_backend_phase = AsyncMock(return_value=outcome(BackendPhaseResult.model_validate({
        "subjectMatter": [["Hydration", "Fitness", "Travel"], ["Outdoors", "Office", "School"]],
        "backendAttributes": {"material_type": ["Stainless Steel"], "target_audience": ["Adults"]},
        "keywordCoverage": {"coverageScore": 85},
    }), tokens=1500))
    claude.generate_listing = AsyncMock(return_value=outcome(ListingGenerationResult.model_validate({
        "title": ["Batch Title A", "Batch Title B"],
        "bullets": [bullet_set(n) for n in range(1, 6)],
        "description": ["Batch description"],
        "searchTerms": ["batch search terms"],
        "subjectMatter": [["Hydration", "Fitness", "Travel"]],
        "backendAttributes": {"material_type": ["Stainless Steel"]},
    }), tokens=8000))
    return claude


@pytest.fixture
def fixtures_file(tmp_path, category, country, keyword_analysis):
    path = tmp_path / "fixtures.json"
    path.write_text(json.dumps({
        "categories": [category.model_dump(mode="json")],
        "countries": [country.model_dump(mode="json")],
        "analyses": [keyword_analysis.model_dump(mode="json", by_alias=True)],
        "admin_settings": {"claude_model": "claude-sonnet-4-20250514"},
    }))
    return path
