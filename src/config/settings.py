"""
Application settings and configuration management.

This module handles environment variables, provider credentials, and pipeline
tuning values using Pydantic settings management for type safety and validation.
Credentials here are the environment fallback; the admin-configurable values
stored alongside the data take precedence (see ``src.config.providers``).
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Keys (environment fallback for the admin settings store)
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")
    oxylabs_username: Optional[SecretStr] = Field(default=None, alias="OXYLABS_USERNAME")
    oxylabs_password: Optional[SecretStr] = Field(default=None, alias="OXYLABS_PASSWORD")
    apify_api_token: Optional[SecretStr] = Field(default=None, alias="APIFY_API_TOKEN")
    rufus_extension_api_key: Optional[SecretStr] = Field(
        default=None,
        alias="RUFUS_EXTENSION_API_KEY",
    )

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )

    # Model Configuration
    claude_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="CLAUDE_MODEL"
    )
    claude_max_tokens: int = Field(default=32768, alias="CLAUDE_MAX_TOKENS")
    phase_max_tokens: int = Field(default=16384, alias="PHASE_MAX_TOKENS")
    generation_temperature: float = Field(default=0.7, alias="GENERATION_TEMPERATURE")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")

    # External Providers
    fetch_timeout_seconds: int = Field(default=60, alias="FETCH_TIMEOUT_SECONDS")
    apify_max_wait_seconds: int = Field(default=3600, alias="APIFY_MAX_WAIT_SECONDS")
    apify_poll_wait_seconds: int = Field(default=60, alias="APIFY_POLL_WAIT_SECONDS")
    review_batch_pages: int = Field(default=10, alias="REVIEW_BATCH_PAGES")
    default_review_pages: int = Field(default=10, alias="DEFAULT_REVIEW_PAGES")

    # Pipeline Limits
    max_batch_size: int = Field(default=20, alias="MAX_BATCH_SIZE")
    stale_job_minutes: int = Field(default=30, alias="STALE_JOB_MINUTES")
    rufus_success_threshold: float = Field(default=0.70, alias="RUFUS_SUCCESS_THRESHOLD")

    # Storage
    data_dir: Path = Field(default=Path("data"), alias="DATA_DIR")
    log_dir: Path = Field(default=Path("logs"), alias="LOG_DIR")

    @field_validator("data_dir", "log_dir", mode="before")
    @classmethod
    def validate_directories(cls, v: str | Path) -> Path:
        """Ensure directories exist."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("anthropic_api_key", mode="before")
    @classmethod
    def validate_anthropic_key(cls, v: Optional[str]) -> Optional[str]:
        """Validate Anthropic API key format when one is supplied."""
        if v and not str(v).startswith("sk-"):
            raise ValueError("Invalid Anthropic API key format")
        return v

    @field_validator("rufus_success_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("RUFUS_SUCCESS_THRESHOLD must be between 0 and 1")
        return v

    def get_secret(self, key: str) -> Optional[str]:
        """Return the plain value of a credential field, or None if unset."""
        value = getattr(self, key, None)
        if value is None:
            return None
        if isinstance(value, SecretStr):
            return value.get_secret_value() or None
        return str(value) or None

    def configured_providers(self) -> list[str]:
        """Names of research providers with credentials in the environment."""
        providers = []
        if self.oxylabs_username and self.oxylabs_password:
            providers.append("oxylabs")
        if self.apify_api_token:
            providers.append("apify")
        return providers


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
