"""Utils module for the Listing Research & Generation Pipeline."""

from src.utils.logger import LogContext, get_logger, setup_logging
from src.utils.retry import (
    ErrorHandler,
    PipelineError,
    ValidationError,
    NotFoundError,
    PreconditionFailedError,
    ProviderError,
    PersistenceError,
    transport_retry,
)
from src.utils.formatters import ListingFormatter

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "ListingFormatter",
    "ErrorHandler",
    "PipelineError",
    "ValidationError",
    "NotFoundError",
    "PreconditionFailedError",
    "ProviderError",
    "PersistenceError",
    "transport_retry",
]
