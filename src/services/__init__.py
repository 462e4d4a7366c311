"""
Services package for the Listing Research & Generation Pipeline.

This package contains the service classes for external API integrations.

Services:
    - ClaudeService: listing generation using Anthropic Claude
    - ValidationService: request validation before anything is persisted

Providers:
    - OxylabsProvider: structured marketplace data (reviews, product, questions)
    - ApifyProvider: review scrape actor
"""

from src.services.llm_service import (
    ClaudeService,
    GenerationOutcome,
    TokenUsage,
)
from src.services.marketplace_service import (
    # Providers
    MarketplaceProvider,
    OxylabsProvider,
    ApifyProvider,
    # Results
    FetchFailure,
    FetchFailureKind,
    FetchResult,
    ReviewPage,
    QuestionPage,
)
from src.services.validation_service import ValidationService

__all__ = [
    # LLM Service
    "ClaudeService",
    "GenerationOutcome",
    "TokenUsage",
    # Marketplace Providers
    "MarketplaceProvider",
    "OxylabsProvider",
    "ApifyProvider",
    # Fetch Results
    "FetchFailure",
    "FetchFailureKind",
    "FetchResult",
    "ReviewPage",
    "QuestionPage",
    # Validation
    "ValidationService",
]
