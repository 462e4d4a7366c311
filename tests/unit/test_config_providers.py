import pytest
from unittest.mock import AsyncMock, MagicMock

from src.config.providers import (
    ANTHROPIC_API_KEY,
    APIFY_API_TOKEN,
    ChainedConfigProvider,
    EnvConfigProvider,
    StoreConfigProvider,
    build_config_chain,
)
from src.storage.store import InMemoryStore
from src.utils.retry import ConfigurationError


@pytest.mark.asyncio
async def test_store_value_wins_over_environment():
    store = InMemoryStore()
    await store.set_admin_setting(ANTHROPIC_API_KEY, "sk-ant-from-admin")

    chain = build_config_chain(store)

    assert await chain.get(ANTHROPIC_API_KEY) == "sk-ant-from-admin"
    assert await chain.get(APIFY_API_TOKEN) == "apify-test-token"


@pytest.mark.asyncio
async def test_blank_store_value_falls_through():
    store = InMemoryStore()
    await store.set_admin_setting(ANTHROPIC_API_KEY, "   ")

    chain = build_config_chain(store)

    assert await chain.get(ANTHROPIC_API_KEY) == "sk-ant-api-mock-key"


@pytest.mark.asyncio
async def test_failing_provider_is_skipped(dict_provider):
    broken = MagicMock()
    broken.name = "broken"
    broken.get = AsyncMock(side_effect=RuntimeError("settings table unavailable"))

    chain = ChainedConfigProvider([broken, dict_provider({"claude_model": "claude-x"})])

    assert await chain.get("claude_model") == "claude-x"


@pytest.mark.asyncio
async def test_resolve_missing_raises_configuration_error(dict_provider):
    chain = ChainedConfigProvider([
        dict_provider({}, name="first"),
        dict_provider({}, name="second"),
    ])

    with pytest.raises(ConfigurationError) as exc_info:
        await chain.resolve("oxylabs_username")

    assert "oxylabs_username" in exc_info.value.message
    assert exc_info.value.details["providers"] == ["first", "second"]
    assert chain.name == "first -> second"


@pytest.mark.asyncio
async def test_snapshot_reads_each_key_once(dict_provider):
    chain = ChainedConfigProvider([dict_provider({"a": "1"})])
    assert await chain.snapshot(["a", "b"]) == {"a": "1", "b": None}


def test_chain_requires_a_provider():
    with pytest.raises(ValueError):
        ChainedConfigProvider([])


def test_build_chain_without_store_is_environment_only():
    chain = build_config_chain()
    assert [p.name for p in chain.providers] == ["environment"]
    assert isinstance(chain.providers[0], EnvConfigProvider)


def test_build_chain_order():
    chain = build_config_chain(InMemoryStore())
    assert isinstance(chain.providers[0], StoreConfigProvider)
    assert chain.name == "admin_settings -> environment"
