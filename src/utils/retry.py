"""
Error taxonomy and centralized error handling.

Every failure the pipeline reports is a ``PipelineError`` carrying one of the
``ErrorType`` categories. ``ErrorHandler`` maps arbitrary exceptions onto the
same categories so batch failure entries and CLI output stay uniform.
"""

import asyncio
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.schemas import ErrorDetail, ErrorResponse, ErrorType


# =============================================================================
# Custom Exceptions
# =============================================================================

class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_ERROR,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        self.recoverable = recoverable


class ValidationError(PipelineError):
    """Bad or missing input; surfaced immediately, never retried."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, ErrorType.VALIDATION_ERROR, details, recoverable=False)


class NotFoundError(PipelineError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} not found: {entity_id}",
            ErrorType.NOT_FOUND,
            {"entity": entity, "id": entity_id},
        )


class PreconditionFailedError(PipelineError):
    """Phase preconditions are not met; ``section`` names what is missing."""

    def __init__(self, message: str, section: Optional[str] = None):
        super().__init__(
            message,
            ErrorType.PRECONDITION_FAILED,
            {"section": section} if section else {},
        )
        self.section = section


class ConcurrencyConflictError(PreconditionFailedError):
    """Another run changed the listing between claim and commit."""

    def __init__(self, listing_id: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            f"Listing {listing_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.details.update(
            {
                "listing_id": listing_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            }
        )


class ProviderTimeoutError(PipelineError):
    """A bounded external call exceeded its time budget. Retryable."""

    def __init__(self, provider: str, timeout_seconds: float):
        super().__init__(
            f"{provider} timed out after {timeout_seconds} seconds",
            ErrorType.PROVIDER_TIMEOUT,
            {"provider": provider, "timeout": timeout_seconds},
            recoverable=True,
        )
        self.provider = provider


class ProviderError(PipelineError):
    """An external service returned a definitive error."""

    def __init__(self, message: str, provider: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            message,
            ErrorType.PROVIDER_ERROR,
            {**(details or {}), **({"provider": provider} if provider else {})},
        )
        self.provider = provider


class TokenLimitExceededError(ProviderError):
    """The AI response was cut off at the output token limit."""

    def __init__(self, max_tokens: int):
        super().__init__(
            f"AI response truncated at the {max_tokens} token limit",
            provider="anthropic",
            details={"max_tokens": max_tokens},
        )


class AllProvidersFailedError(ProviderError):
    """Every provider in a fallback chain failed or returned nothing."""

    def __init__(self, need: str, attempts: list[tuple[str, str]]):
        summary = "; ".join(f"{name}: {error}" for name, error in attempts)
        super().__init__(
            f"All providers failed for {need}. {summary}",
            details={"attempts": [{"provider": n, "error": e} for n, e in attempts]},
        )
        self.attempts = attempts

    @property
    def providers(self) -> list[str]:
        return [name for name, _ in self.attempts]


class PersistenceError(PipelineError):
    """A store read or write failed."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, ErrorType.PERSISTENCE_ERROR, details)


class AuthenticationError(PipelineError):
    """A pre-shared key was missing or wrong."""

    def __init__(self, message: str = "Invalid or missing API key"):
        super().__init__(message, ErrorType.UNAUTHORIZED)


class ConfigurationError(PipelineError):
    """A required credential or setting is not configured anywhere."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, ErrorType.CONFIGURATION_ERROR, details)


# =============================================================================
# Transport Retry
# =============================================================================

def transport_retry(attempts: int = 3):
    """
    Retry policy for a single HTTP exchange with a provider.

    Only connection-level failures are retried; provider-reported errors and
    the outer time budget are left to the caller.
    """
    return retry(
        retry=retry_if_exception_type(httpx.NetworkError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )


# =============================================================================
# Error Handler
# =============================================================================

class ErrorHandler:
    """Centralized error handling and categorization."""

    @staticmethod
    def categorize_error(error: Exception) -> str:
        """Categorize errors for appropriate handling."""
        if isinstance(error, PipelineError):
            return ErrorType(error.error_type).value
        if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
            return ErrorType.PROVIDER_TIMEOUT.value
        if isinstance(error, (httpx.HTTPError, ConnectionError)):
            return ErrorType.PROVIDER_ERROR.value
        if isinstance(error, (ValueError, TypeError)):
            return ErrorType.VALIDATION_ERROR.value
        if isinstance(error, OSError):
            return ErrorType.PERSISTENCE_ERROR.value

        err_str = str(error).lower()
        if "timeout" in err_str or "timed out" in err_str:
            return ErrorType.PROVIDER_TIMEOUT.value
        if "api key" in err_str or "unauthorized" in err_str:
            return ErrorType.UNAUTHORIZED.value

        return ErrorType.INTERNAL_ERROR.value

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        """Whether re-invoking the same phase or fetch may succeed."""
        if isinstance(error, PipelineError):
            return error.recoverable
        return ErrorHandler.categorize_error(error) == ErrorType.PROVIDER_TIMEOUT.value

    @staticmethod
    def to_response(error: Exception) -> ErrorResponse:
        """Build the user-facing error record for any exception."""
        details = []
        if isinstance(error, PipelineError):
            for key, value in error.details.items():
                if value is not None and not isinstance(value, (dict, list)):
                    details.append(ErrorDetail(field=key, message=str(value)))
            message = error.message
        else:
            message = str(error) or type(error).__name__

        return ErrorResponse(
            error_type=ErrorHandler.categorize_error(error),
            message=message,
            details=details,
            recoverable=ErrorHandler.is_retryable(error),
        )


__all__ = [
    "PipelineError",
    "ValidationError",
    "NotFoundError",
    "PreconditionFailedError",
    "ConcurrencyConflictError",
    "ProviderTimeoutError",
    "ProviderError",
    "TokenLimitExceededError",
    "AllProvidersFailedError",
    "PersistenceError",
    "AuthenticationError",
    "ConfigurationError",
    "transport_retry",
    "ErrorHandler",
]
