"""
Claude API service for listing generation.

This module wraps Anthropic's async client for the four generation phases
and the single-shot listing used by batches.

Key Features:
    - API key and model resolved through the config chain on every call
    - Bounded retry with exponential backoff on rate limits and 5xx responses
    - Token counting and cost tracking
    - Truncated responses are refused, never parsed
    - Pydantic schema validation of the returned JSON

Example:
    >>> service = ClaudeService(config=build_config_chain(store))
    >>> outcome = await service.generate_title_phase(generation_input)
    >>> outcome.result.titles[0], outcome.tokens_used
"""

from __future__ import annotations

import asyncio
import json
import random
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Optional, Type, TypeVar

import anthropic
from anthropic import APIError, APIStatusError, RateLimitError
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from src.config.providers import (
    ANTHROPIC_API_KEY,
    CLAUDE_MODEL,
    ChainedConfigProvider,
    build_config_chain,
)
from src.config.settings import Settings, get_settings
from src.models.schemas import (
    BackendPhaseResult,
    BulletsPhaseResult,
    DescriptionPhaseResult,
    KeywordCoverage,
    ListingGenerationInput,
    ListingGenerationResult,
    TitlePhaseResult,
    utc_now,
)
from src.services.prompts import (
    ListingPromptType,
    format_backend_prompt,
    format_bullets_prompt,
    format_description_prompt,
    format_full_listing_prompt,
    format_title_prompt,
)
from src.utils.logger import get_logger
from src.utils.retry import ProviderError, TokenLimitExceededError

T = TypeVar("T", bound=BaseModel)

logger = get_logger(__name__)

PROVIDER_NAME = "anthropic"


# =============================================================================
# Constants
# =============================================================================

# Token costs per model (per 1K tokens)
TOKEN_COSTS = {
    "claude-sonnet-4-20250514": {"input": 0.003, "output": 0.015},
    "claude-opus-4-20250514": {"input": 0.015, "output": 0.075},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-3-5-haiku-20241022": {"input": 0.0008, "output": 0.004},
}

MAX_BACKOFF_SECONDS = 60


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TokenUsage:
    """Token usage tracking for a single request."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str = ""
    timestamp: datetime = field(default_factory=utc_now)

    def calculate_cost(self, model: str) -> float:
        """Calculate estimated cost based on token usage."""
        if model in TOKEN_COSTS:
            costs = TOKEN_COSTS[model]
            input_cost = (self.input_tokens / 1000) * costs["input"]
            output_cost = (self.output_tokens / 1000) * costs["output"]
            self.estimated_cost = input_cost + output_cost
        return self.estimated_cost


@dataclass
class GenerationOutcome(Generic[T]):
    """Validated payload plus the model and tokens it cost."""
    result: T
    model: str
    tokens_used: int


# =============================================================================
# Main Service Class
# =============================================================================

class ClaudeService:
    """
    Claude API service for listing generation.

    Stateless apart from usage accounting: every call resolves its credential
    and model, sends one request (retrying only transient API failures) and
    returns a validated payload. Safe to re-invoke after any failure.

    Attributes:
        settings: Application settings
        config: Config chain used to resolve the API key and model
        token_usage_history: List of token usage records
        total_cost: Running total of API costs
    """

    def __init__(
        self,
        config: Optional[ChainedConfigProvider] = None,
        settings: Optional[Settings] = None,
        client: Optional[Any] = None,
        max_retries: Optional[int] = None,
    ):
        """
        Initialize the Claude service.

        Args:
            config: Config chain (admin settings, then environment)
            settings: Application settings instance
            client: Pre-built Anthropic client; when set, no key lookup happens
            max_retries: Maximum attempts for transient API failures
        """
        self.settings = settings or get_settings()
        self.config = config or build_config_chain(settings=self.settings)
        self._client = client
        self.max_retries = max_retries or self.settings.max_retries

        self.token_usage_history: list[TokenUsage] = []
        self.total_cost: float = 0.0

    async def __aenter__(self) -> "ClaudeService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Log usage statistics."""
        if self.token_usage_history:
            logger.info(
                "ClaudeService usage",
                total_requests=len(self.token_usage_history),
                total_tokens=sum(u.total_tokens for u in self.token_usage_history),
                total_cost=f"${self.total_cost:.4f}",
            )

    async def _resolve_model(self) -> str:
        return await self.config.get(CLAUDE_MODEL) or self.settings.claude_model

    async def _create_client(self) -> Any:
        if self._client is not None:
            return self._client
        api_key = await self.config.resolve(ANTHROPIC_API_KEY)
        return anthropic.AsyncAnthropic(api_key=api_key)

    # =========================================================================
    # Core API Methods
    # =========================================================================

    async def _call_api(
        self,
        system: str,
        prompt: str,
        max_tokens: int,
        task_type: ListingPromptType,
    ) -> tuple[str, TokenUsage]:
        """
        Make an API call with retry logic.

        Returns:
            Tuple of (response_text, token_usage)

        Raises:
            TokenLimitExceededError: If the response was cut off
            ProviderError: On API errors or after retries are exhausted
        """
        client = await self._create_client()
        model = await self._resolve_model()
        try:
            return await self._call_with_retries(client, model, system, prompt, max_tokens, task_type)
        finally:
            if client is not self._client:
                await client.close()

    async def _call_with_retries(
        self,
        client: Any,
        model: str,
        system: str,
        prompt: str,
        max_tokens: int,
        task_type: ListingPromptType,
    ) -> tuple[str, TokenUsage]:
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                start_time = time.time()

                response = await client.messages.create(
                    model=model,
                    max_tokens=max_tokens,
                    temperature=self.settings.generation_temperature,
                    system=system,
                    messages=[{"role": "user", "content": prompt}],
                )

                elapsed = time.time() - start_time

                if response.stop_reason == "max_tokens":
                    logger.error("Response truncated", task_type=task_type.value, max_tokens=max_tokens)
                    raise TokenLimitExceededError(max_tokens)

                response_text = "".join(
                    block.text for block in response.content if getattr(block, "type", "text") == "text"
                )

                usage = TokenUsage(
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    total_tokens=response.usage.input_tokens + response.usage.output_tokens,
                    model=model,
                )
                usage.calculate_cost(model)
                self.token_usage_history.append(usage)
                self.total_cost += usage.estimated_cost

                logger.info(
                    "API call successful",
                    task_type=task_type.value,
                    model=model,
                    attempt=attempt + 1,
                    elapsed_seconds=f"{elapsed:.2f}",
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    cost=f"${usage.estimated_cost:.4f}",
                )
                return response_text, usage

            except RateLimitError as e:
                last_error = e
                wait_time = self._calculate_backoff(attempt, base=30)
                logger.warning(
                    "Rate limit hit, backing off",
                    attempt=attempt + 1,
                    wait_seconds=wait_time,
                    error=str(e),
                )
                await asyncio.sleep(wait_time)

            except APIStatusError as e:
                last_error = e
                if e.status_code >= 500:
                    wait_time = self._calculate_backoff(attempt)
                    logger.warning(
                        "Server error, retrying",
                        attempt=attempt + 1,
                        status_code=e.status_code,
                        wait_seconds=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                elif e.status_code == 401:
                    logger.error("Authentication failed", error=str(e))
                    raise ProviderError(f"Authentication failed: {e}", provider=PROVIDER_NAME)
                else:
                    logger.error("API error", status_code=e.status_code, error=str(e))
                    raise ProviderError(
                        f"API error: {e}",
                        provider=PROVIDER_NAME,
                        details={"status_code": e.status_code},
                    )

            except APIError as e:
                last_error = e
                wait_time = self._calculate_backoff(attempt)
                logger.warning(
                    "API error, retrying",
                    attempt=attempt + 1,
                    wait_seconds=wait_time,
                    error=str(e),
                )
                await asyncio.sleep(wait_time)

        logger.error(
            "Max retries exceeded",
            task_type=task_type.value,
            max_retries=self.max_retries,
            last_error=str(last_error),
        )
        raise ProviderError(
            f"Failed after {self.max_retries} attempts: {last_error}",
            provider=PROVIDER_NAME,
        )

    async def _generate(
        self,
        schema: Type[T],
        prompts: tuple[str, str],
        max_tokens: int,
        task_type: ListingPromptType,
    ) -> GenerationOutcome[T]:
        system, prompt = prompts
        text, usage = await self._call_api(system, prompt, max_tokens, task_type)
        result = self._parse(schema, text, task_type)
        return GenerationOutcome(result=result, model=usage.model, tokens_used=usage.total_tokens)

    # =========================================================================
    # Generation Methods
    # =========================================================================

    async def generate_title_phase(self, data: ListingGenerationInput) -> GenerationOutcome[TitlePhaseResult]:
        """Five title variants plus the initial keyword coverage."""
        return await self._generate(
            TitlePhaseResult,
            format_title_prompt(data),
            self.settings.phase_max_tokens,
            ListingPromptType.TITLE_PHASE,
        )

    async def generate_bullets_phase(
        self,
        data: ListingGenerationInput,
        confirmed_title: str,
        coverage: KeywordCoverage,
    ) -> GenerationOutcome[BulletsPhaseResult]:
        """Planning matrix and nine variants per bullet; the largest phase output."""
        return await self._generate(
            BulletsPhaseResult,
            format_bullets_prompt(data, confirmed_title, coverage),
            self.settings.claude_max_tokens,
            ListingPromptType.BULLETS_PHASE,
        )

    async def generate_description_phase(
        self,
        data: ListingGenerationInput,
        confirmed_title: str,
        confirmed_bullets: list[str],
        coverage: KeywordCoverage,
    ) -> GenerationOutcome[DescriptionPhaseResult]:
        return await self._generate(
            DescriptionPhaseResult,
            format_description_prompt(data, confirmed_title, confirmed_bullets, coverage),
            self.settings.phase_max_tokens,
            ListingPromptType.DESCRIPTION_PHASE,
        )

    async def generate_backend_phase(
        self,
        data: ListingGenerationInput,
        confirmed_title: str,
        confirmed_bullets: list[str],
        confirmed_description: str,
        confirmed_search_terms: str,
        coverage: KeywordCoverage,
    ) -> GenerationOutcome[BackendPhaseResult]:
        return await self._generate(
            BackendPhaseResult,
            format_backend_prompt(
                data,
                confirmed_title,
                confirmed_bullets,
                confirmed_description,
                confirmed_search_terms,
                coverage,
            ),
            self.settings.phase_max_tokens,
            ListingPromptType.BACKEND_PHASE,
        )

    async def generate_listing(self, data: ListingGenerationInput) -> GenerationOutcome[ListingGenerationResult]:
        """Single-shot generation of every section, used by batches."""
        return await self._generate(
            ListingGenerationResult,
            format_full_listing_prompt(data),
            self.settings.claude_max_tokens,
            ListingPromptType.FULL_LISTING,
        )

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _parse(self, schema: Type[T], text: str, task_type: ListingPromptType) -> T:
        json_str = self._extract_json(text)
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.error("Response is not valid JSON", task_type=task_type.value, error=str(e))
            raise ProviderError(
                f"AI response for {task_type.value} was not valid JSON: {e}",
                provider=PROVIDER_NAME,
            )

        try:
            return schema.model_validate(data)
        except SchemaError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            logger.error("Response failed schema validation", task_type=task_type.value, errors=errors[:5])
            raise ProviderError(
                f"AI response for {task_type.value} did not match the expected structure",
                provider=PROVIDER_NAME,
                details={"errors": "; ".join(errors[:5])},
            )

    @staticmethod
    def _strip_fences(text: str) -> str:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            newline = cleaned.find("\n")
            if newline != -1:
                cleaned = cleaned[newline + 1:]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        return cleaned.strip()

    def _extract_json(self, text: str) -> str:
        """Extract JSON from text that may contain markdown or other content."""
        cleaned = self._strip_fences(text)
        if cleaned.startswith("{") or cleaned.startswith("["):
            return cleaned

        # Try to find JSON in code blocks first
        matches = re.findall(r"```(?:json)?\s*([\s\S]*?)```", text)
        if matches:
            return matches[0].strip()

        # Try to find raw JSON object or array
        matches = re.findall(r"(\{[\s\S]*\}|\[[\s\S]*\])", text)
        if matches:
            return max(matches, key=len)

        return cleaned

    def _calculate_backoff(self, attempt: int, base: float = 1.0) -> float:
        """Calculate exponential backoff with jitter."""
        backoff = base * (2 ** attempt)
        jitter = random.uniform(0, backoff * 0.1)
        return min(backoff + jitter, MAX_BACKOFF_SECONDS)

    def get_usage_stats(self) -> dict[str, Any]:
        """Get usage statistics."""
        return {
            "total_requests": len(self.token_usage_history),
            "total_input_tokens": sum(u.input_tokens for u in self.token_usage_history),
            "total_output_tokens": sum(u.output_tokens for u in self.token_usage_history),
            "total_cost": self.total_cost,
        }


__all__ = [
    "TOKEN_COSTS",
    "TokenUsage",
    "GenerationOutcome",
    "ClaudeService",
]
