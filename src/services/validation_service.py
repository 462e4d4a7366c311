"""
Validation service for generation inputs.

Checks product facts, phase requests and batch requests before any record
is created, raising ``ValidationError`` with the offending field.
"""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from src.models.schemas import (
    ASIN_PATTERN,
    BatchRequest,
    GenerationPhase,
    PhaseRequest,
    ProductSpec,
)
from src.utils.logger import get_logger
from src.utils.retry import ValidationError

logger = get_logger(__name__)

MIN_PRODUCT_NAME_LENGTH = 3


class ValidationService:
    """Service for validating generation requests."""

    def parse_product(self, data: dict[str, Any]) -> ProductSpec:
        """Parse raw product facts (e.g. one row of a batch file)."""
        try:
            return ProductSpec.model_validate(data)
        except PydanticValidationError as e:
            logger.error("Product input validation failed", error=str(e))
            raise ValidationError(f"Invalid product format: {e}", {"input": str(data)[:200]})

    def validate_product(self, product: ProductSpec, index: Optional[int] = None) -> ProductSpec:
        """Product name of at least 3 characters after trimming, and a brand."""
        where = f"Product {index + 1}: " if index is not None else ""
        name = (product.product_name or "").strip()
        if len(name) < MIN_PRODUCT_NAME_LENGTH:
            raise ValidationError(
                f"{where}product name must be at least {MIN_PRODUCT_NAME_LENGTH} characters",
                {"field": "product_name", "value": product.product_name},
            )
        if not (product.brand or "").strip():
            raise ValidationError(f"{where}brand is required", {"field": "brand"})
        if product.asin and not self.validate_asin(product.asin):
            raise ValidationError(f"{where}invalid ASIN '{product.asin}'", {"field": "asin"})
        return product

    def validate_phase_request(self, request: PhaseRequest) -> PhaseRequest:
        if request.phase == GenerationPhase.TITLE.value:
            if not request.category_id:
                raise ValidationError("category_id is required", {"field": "category_id"})
            if not request.country_id:
                raise ValidationError("country_id is required", {"field": "country_id"})
            self.validate_product(request.product)
        elif not request.listing_id:
            raise ValidationError(
                f"listing_id is required for the {request.phase} phase",
                {"field": "listing_id"},
            )
        return request

    def validate_batch_request(self, request: BatchRequest, max_size: int) -> BatchRequest:
        """Every product is checked up front; one bad row rejects the batch."""
        if not request.category_id:
            raise ValidationError("category_id is required", {"field": "category_id"})
        if not request.country_id:
            raise ValidationError("country_id is required", {"field": "country_id"})
        if not request.products:
            raise ValidationError("At least one product is required", {"field": "products"})
        if len(request.products) > max_size:
            raise ValidationError(
                f"Batch size exceeds maximum of {max_size} products",
                {"field": "products", "count": len(request.products)},
            )
        for index, product in enumerate(request.products):
            self.validate_product(product, index)
        return request

    def validate_asin(self, asin: str) -> bool:
        """Validate Amazon ASIN format."""
        return bool(ASIN_PATTERN.match(asin.strip().upper()))


__all__ = ["MIN_PRODUCT_NAME_LENGTH", "ValidationService"]
