"""
Configuration provider chain.

Credentials and model selection are mutable at runtime (an operator can
rotate a key in the admin settings table), so they are resolved through a
chain of providers once per operation instead of being cached process-wide.
The store-backed provider is consulted first; the environment is the fallback.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable, Optional

from src.config.settings import Settings, get_settings
from src.utils.logger import get_logger
from src.utils.retry import ConfigurationError

if TYPE_CHECKING:
    from src.storage.store import Store

logger = get_logger(__name__)


# Keys understood by every provider in the chain.
ANTHROPIC_API_KEY = "anthropic_api_key"
CLAUDE_MODEL = "claude_model"
OXYLABS_USERNAME = "oxylabs_username"
OXYLABS_PASSWORD = "oxylabs_password"
APIFY_API_TOKEN = "apify_api_token"
RUFUS_EXTENSION_API_KEY = "rufus_extension_api_key"


# =============================================================================
# Provider Interface
# =============================================================================

class ConfigProvider(ABC):
    """Abstract source of configuration values."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used in error messages and logs."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` or None when this provider has none."""
        pass


class StoreConfigProvider(ConfigProvider):
    """Reads the admin settings table of the persistence store."""

    def __init__(self, store: "Store"):
        self._store = store

    @property
    def name(self) -> str:
        return "admin_settings"

    async def get(self, key: str) -> Optional[str]:
        value = await self._store.get_admin_setting(key)
        if value is None:
            return None
        value = str(value).strip()
        return value or None


class EnvConfigProvider(ConfigProvider):
    """Reads values from the environment-backed ``Settings`` object."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings

    @property
    def name(self) -> str:
        return "environment"

    async def get(self, key: str) -> Optional[str]:
        settings = self._settings or get_settings()
        return settings.get_secret(key)


# =============================================================================
# Chained Provider
# =============================================================================

class ChainedConfigProvider(ConfigProvider):
    """
    Composes providers in priority order; the first non-empty value wins.

    A provider that raises is logged and skipped so a broken settings table
    never hides a valid environment credential.
    """

    def __init__(self, providers: Iterable[ConfigProvider]):
        self._providers = list(providers)
        if not self._providers:
            raise ValueError("ChainedConfigProvider needs at least one provider")

    @property
    def name(self) -> str:
        return " -> ".join(p.name for p in self._providers)

    @property
    def providers(self) -> list[ConfigProvider]:
        return list(self._providers)

    async def get(self, key: str) -> Optional[str]:
        for provider in self._providers:
            try:
                value = await provider.get(key)
            except Exception as e:
                logger.warning(
                    "Config provider failed, trying next",
                    provider=provider.name,
                    key=key,
                    error=str(e),
                )
                continue
            if value:
                return value
        return None

    async def resolve(self, key: str) -> str:
        """Return the value for ``key`` or raise ``ConfigurationError``."""
        value = await self.get(key)
        if not value:
            consulted = ", ".join(p.name for p in self._providers)
            raise ConfigurationError(
                f"Missing configuration value '{key}' (checked: {consulted})",
                details={"key": key, "providers": [p.name for p in self._providers]},
            )
        return value

    async def snapshot(self, keys: Iterable[str]) -> dict[str, Optional[str]]:
        """Resolve several keys once for the duration of one operation."""
        return {key: await self.get(key) for key in keys}


def build_config_chain(
    store: Optional["Store"] = None,
    settings: Optional[Settings] = None,
) -> ChainedConfigProvider:
    """Standard chain: admin settings in the store, then the environment."""
    providers: list[ConfigProvider] = []
    if store is not None:
        providers.append(StoreConfigProvider(store))
    providers.append(EnvConfigProvider(settings))
    return ChainedConfigProvider(providers)


__all__ = [
    "ANTHROPIC_API_KEY",
    "CLAUDE_MODEL",
    "OXYLABS_USERNAME",
    "OXYLABS_PASSWORD",
    "APIFY_API_TOKEN",
    "RUFUS_EXTENSION_API_KEY",
    "ConfigProvider",
    "StoreConfigProvider",
    "EnvConfigProvider",
    "ChainedConfigProvider",
    "build_config_chain",
]
