"""
Pydantic models and schemas for the Listing Research & Generation Pipeline.

This module defines all data structures used throughout the pipeline,
ensuring type safety, validation, and serialization consistency.

Models:
    - Category / Country / ProductType: reference records
    - ResearchAnalysis: one completed analysis with a tagged result payload
    - ReviewItem / QnAItem: canonical research items produced by adapters
    - AggregatedReviewRecord / AggregatedQnARecord: merged research per ASIN
    - Listing / ListingSection: phased generation state
    - BatchJob / BackgroundJob / RufusJob: long-running work records
    - Phase results: validated AI payloads for each generation phase
    - ErrorResponse: Standardized error handling
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Self, Union
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=True,
        ser_json_timedelta="iso8601",
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to JSON string."""
        return self.model_dump_json(indent=2, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to dictionary."""
        return self.model_dump(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


class CamelModel(BaseModel):
    """Base for AI and provider payloads, which use camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel)

    def to_payload(self) -> dict[str, Any]:
        """Dump with camelCase keys, as the AI prompts expect."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TimestampMixin(BaseModel):
    """Mixin for models that need timestamp tracking."""

    created_at: datetime = Field(
        default_factory=utc_now,
        description="Record creation timestamp in ISO 8601 format",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="Last update timestamp in ISO 8601 format",
    )

    @field_serializer("created_at", "updated_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        return value.isoformat() if value else None

    def touch(self) -> None:
        self.updated_at = utc_now()


# =============================================================================
# Enums
# =============================================================================

class ErrorType(str, Enum):
    """Error taxonomy shared by every component."""
    VALIDATION_ERROR = "validation-error"
    NOT_FOUND = "not-found"
    PRECONDITION_FAILED = "precondition-failed"
    PROVIDER_TIMEOUT = "provider-timeout"
    PROVIDER_ERROR = "provider-error"
    PERSISTENCE_ERROR = "persistence-error"
    UNAUTHORIZED = "unauthorized"
    CONFIGURATION_ERROR = "configuration-error"
    INTERNAL_ERROR = "internal-error"


class ListingPhase(str, Enum):
    """Furthest phase a listing has reached."""
    NONE = "none"
    TITLE = "title"
    BULLETS = "bullets"
    DESCRIPTION = "description"
    COMPLETE = "complete"


class GenerationPhase(str, Enum):
    """Phases an operator can request."""
    TITLE = "title"
    BULLETS = "bullets"
    DESCRIPTION = "description"
    BACKEND = "backend"


class ListingStatus(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    EXPORTED = "exported"


class OptimizationMode(str, Enum):
    NEW = "new"
    OPTIMIZE_EXISTING = "optimize_existing"
    BASED_ON_EXISTING = "based_on_existing"


class SectionType(str, Enum):
    """Content slots of a listing."""
    TITLE = "title"
    BULLET_1 = "bullet_1"
    BULLET_2 = "bullet_2"
    BULLET_3 = "bullet_3"
    BULLET_4 = "bullet_4"
    BULLET_5 = "bullet_5"
    BULLET_6 = "bullet_6"
    BULLET_7 = "bullet_7"
    BULLET_8 = "bullet_8"
    BULLET_9 = "bullet_9"
    BULLET_10 = "bullet_10"
    DESCRIPTION = "description"
    SEARCH_TERMS = "search_terms"
    SUBJECT_MATTER = "subject_matter"
    BACKEND_ATTRIBUTES = "backend_attributes"


MAX_BULLETS = 10

BULLET_SECTION_TYPES: tuple[str, ...] = tuple(
    f"bullet_{n}" for n in range(1, MAX_BULLETS + 1)
)

# Sections written by the single-shot (batch) generation path.
SECTION_TYPES: tuple[str, ...] = (
    SectionType.TITLE.value,
    *BULLET_SECTION_TYPES[:5],
    SectionType.DESCRIPTION.value,
    SectionType.SEARCH_TERMS.value,
    SectionType.SUBJECT_MATTER.value,
    SectionType.BACKEND_ATTRIBUTES.value,
)


def bullet_section(number: int) -> str:
    """Section type for the 1-based bullet ``number``."""
    if not 1 <= number <= MAX_BULLETS:
        raise ValueError(f"Bullet number must be between 1 and {MAX_BULLETS}")
    return f"bullet_{number}"


class BatchStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisType(str, Enum):
    KEYWORD_ANALYSIS = "keyword_analysis"
    REVIEW_ANALYSIS = "review_analysis"
    QNA_ANALYSIS = "qna_analysis"
    COMPETITOR_ANALYSIS = "competitor_analysis"
    MARKET_INTELLIGENCE = "market_intelligence"


class AnalysisSource(str, Enum):
    """Input source an analysis was derived from, best first."""
    MERGED = "merged"
    CSV = "csv"
    FILE = "file"
    LINKED = "linked"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


class RufusJobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_PARTIAL = "completed_partial"


class RufusItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Validators (Reusable)
# =============================================================================

ASIN_PATTERN = re.compile(r"^[A-Z0-9]{10}$")


def validate_asin(asin: str) -> str:
    """Validate Amazon ASIN format - 10 alphanumeric characters."""
    asin = (asin or "").upper().strip()

    if not ASIN_PATTERN.match(asin):
        raise ValueError(
            f"Invalid ASIN format: '{asin}'. "
            "Must be 10 alphanumeric characters (e.g., 'B07XYZ1234')"
        )

    return asin


# =============================================================================
# Reference Records
# =============================================================================

class Category(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    brand: Optional[str] = None


class Country(BaseModel):
    """A marketplace with its language and character limits."""

    id: str = Field(default_factory=new_id)
    name: str
    code: str
    amazon_domain: str = Field(..., description="e.g. amazon.com, amazon.de")
    language: str = "English"
    currency: str = "USD"
    title_limit: int = Field(default=200, gt=0)
    bullet_limit: int = Field(default=500, gt=0)
    bullet_count: int = Field(default=5, ge=1, le=MAX_BULLETS)
    description_limit: int = Field(default=2000, gt=0)
    search_terms_limit: int = Field(default=250, gt=0)

    @property
    def provider_domain(self) -> str:
        """Domain suffix the marketplace-data provider expects (``com``, ``co.uk``)."""
        domain = self.amazon_domain.lower()
        return domain[len("amazon."):] if domain.startswith("amazon.") else domain


class ProductType(TimestampMixin):
    id: str = Field(default_factory=new_id)
    category_id: str
    name: str
    asin: Optional[str] = None
    attributes: dict[str, str] = Field(default_factory=dict)


class CharLimits(CamelModel):
    title: int
    bullet: int
    bullet_count: int
    description: int
    search_terms: int

    @classmethod
    def from_country(cls, country: Country) -> Self:
        return cls(
            title=country.title_limit,
            bullet=country.bullet_limit,
            bullet_count=country.bullet_count,
            description=country.description_limit,
            search_terms=country.search_terms_limit,
        )


# =============================================================================
# Keyword Coverage
# =============================================================================

class PlacedKeyword(CamelModel):
    keyword: str
    search_volume: int = 0
    relevancy: float = 0.0
    placed_in: str = ""
    position: Optional[str] = None

    @field_validator("position", mode="before")
    @classmethod
    def coerce_position(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class RemainingKeyword(CamelModel):
    keyword: str
    search_volume: int = 0
    relevancy: float = 0.0
    suggested_placement: str = ""


class KeywordCoverage(CamelModel):
    """Running tally of keywords placed so far and keywords still to place."""

    placed: list[PlacedKeyword] = Field(default_factory=list)
    remaining: list[RemainingKeyword] = Field(default_factory=list)
    coverage_score: float = 0.0

    @field_validator("coverage_score", mode="before")
    @classmethod
    def coerce_score(cls, v: Any) -> float:
        if v is None:
            return 0.0
        return float(v)


# =============================================================================
# AI Phase Payloads
# =============================================================================

class PlanningMatrixEntry(CamelModel):
    bullet_number: int
    primary_focus: str = ""
    qna_gaps_addressed: list[str] = Field(default_factory=list)
    review_themes: list[str] = Field(default_factory=list)
    priority_keywords: list[str] = Field(default_factory=list)
    rufus_question_types: list[str] = Field(default_factory=list)


class BulletLengths(CamelModel):
    concise: str = ""
    medium: str = ""
    longer: str = ""


class BulletVariantSet(CamelModel):
    """Nine variants of one bullet: three strategies at three lengths."""

    seo: BulletLengths = Field(default_factory=BulletLengths)
    benefit: BulletLengths = Field(default_factory=BulletLengths)
    balanced: BulletLengths = Field(default_factory=BulletLengths)

    def flatten(self) -> list[str]:
        variants = []
        for strategy in (self.seo, self.benefit, self.balanced):
            variants.extend([strategy.concise, strategy.medium, strategy.longer])
        return variants


BulletPayload = Union[BulletVariantSet, list[str]]


def flatten_bullet(bullet: Any) -> list[str]:
    """Normalize one generated bullet (plain list or strategy set) to a variant list."""
    if bullet is None:
        return []
    if isinstance(bullet, BulletVariantSet):
        return bullet.flatten()
    if isinstance(bullet, dict):
        return BulletVariantSet.model_validate(bullet).flatten()
    if isinstance(bullet, str):
        return [bullet]
    return [str(v) for v in bullet]


class TitlePhaseResult(CamelModel):
    titles: list[str] = Field(..., min_length=1)
    keyword_coverage: KeywordCoverage = Field(default_factory=KeywordCoverage)


class BulletsPhaseResult(CamelModel):
    planning_matrix: list[PlanningMatrixEntry] = Field(default_factory=list)
    bullets: list[BulletPayload] = Field(..., min_length=1)
    keyword_coverage: KeywordCoverage = Field(default_factory=KeywordCoverage)


class DescriptionPhaseResult(CamelModel):
    descriptions: list[str] = Field(..., min_length=1)
    search_terms: list[str] = Field(..., min_length=1)
    keyword_coverage: KeywordCoverage = Field(default_factory=KeywordCoverage)


class BackendPhaseResult(CamelModel):
    subject_matter: list[list[str]] = Field(default_factory=list)
    backend_attributes: dict[str, list[str]] = Field(default_factory=dict)
    keyword_coverage: KeywordCoverage = Field(default_factory=KeywordCoverage)

    def subject_matter_variants(self, count: int = 3) -> list[str]:
        """One variant per index: that index of every field, joined with ``; ``."""
        if not any(value for field in self.subject_matter for value in field):
            return []
        return [
            "; ".join((field[i] if i < len(field) and field[i] else "") for field in self.subject_matter)
            for i in range(count)
        ]


class ListingGenerationResult(CamelModel):
    """Single-shot payload covering every section at once."""

    planning_matrix: list[PlanningMatrixEntry] = Field(default_factory=list)
    title: list[str] = Field(..., min_length=1)
    bullets: list[BulletPayload] = Field(default_factory=list)
    description: list[str] = Field(default_factory=list)
    search_terms: list[str] = Field(default_factory=list)
    subject_matter: list[list[str]] = Field(default_factory=list)
    backend_attributes: dict[str, list[str]] = Field(default_factory=dict)


def format_backend_attributes(attributes: dict[str, list[str]]) -> str:
    """Render backend attributes as ``key name: a, b`` lines."""
    lines = []
    for key, values in attributes.items():
        lines.append(f"{key.replace('_', ' ')}: {', '.join(values)}")
    return "\n".join(lines)


# =============================================================================
# Research Analysis Payloads (tagged by ``kind``)
# =============================================================================

class AnalysisPayload(CamelModel):
    """Common fields of every analysis payload. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    schema_version: int = 1
    executive_summary: Optional[str] = None


class _Item(CamelModel):
    model_config = ConfigDict(extra="allow")


class CustomerIntent(_Item):
    category: str = ""
    priority: Optional[str] = None
    pain_points: list[str] = Field(default_factory=list)


class FeatureDemand(_Item):
    feature: str = ""
    priority: Optional[str] = None


class BulletKeywordMap(_Item):
    bullet_number: int = 0
    keywords: list[str] = Field(default_factory=list)
    focus: Optional[str] = None


class KeywordAnalysisResult(AnalysisPayload):
    kind: Literal["keyword_analysis"] = "keyword_analysis"
    title_keywords: list[str] = Field(default_factory=list)
    bullet_keywords: list[str] = Field(default_factory=list)
    search_term_keywords: list[str] = Field(default_factory=list)
    customer_intent_patterns: list[CustomerIntent] = Field(default_factory=list)
    feature_demand: list[FeatureDemand] = Field(default_factory=list)
    bullet_keyword_map: list[BulletKeywordMap] = Field(default_factory=list)
    rufus_question_anticipation: list[str] = Field(default_factory=list)


class ReviewTheme(_Item):
    theme: str = ""
    mentions: Optional[int] = None
    evidence: Optional[str] = None


class BulletStrategy(_Item):
    bullet_number: int = 0
    focus: str = ""
    evidence: Optional[str] = None
    customer_pain_point: Optional[str] = None


class ReviewAnalysisResult(AnalysisPayload):
    kind: Literal["review_analysis"] = "review_analysis"
    strengths: list[ReviewTheme] = Field(default_factory=list)
    weaknesses: list[ReviewTheme] = Field(default_factory=list)
    use_cases: list[str] = Field(default_factory=list)
    positive_language: list[str] = Field(default_factory=list)
    bullet_strategy: list[BulletStrategy] = Field(default_factory=list)


class CustomerConcern(_Item):
    concern: str = ""
    suggested_response: Optional[str] = None


class ContentGap(_Item):
    gap: str = ""
    importance: Optional[str] = None


class FaqEntry(_Item):
    question: str = ""
    answer: str = ""


class QnAAnalysisResult(AnalysisPayload):
    kind: Literal["qna_analysis"] = "qna_analysis"
    customer_concerns: list[CustomerConcern] = Field(default_factory=list)
    content_gaps: list[ContentGap] = Field(default_factory=list)
    faq_for_description: list[FaqEntry] = Field(default_factory=list)
    high_risk_questions: list[str] = Field(default_factory=list)


class DifferentiationGap(_Item):
    gap: str = ""
    opportunity: Optional[str] = None
    priority: Optional[str] = None


class CompetitorAnalysisResult(AnalysisPayload):
    kind: Literal["competitor_analysis"] = "competitor_analysis"
    title_patterns: list[str] = Field(default_factory=list)
    bullet_themes: list[str] = Field(default_factory=list)
    differentiation_gaps: list[DifferentiationGap] = Field(default_factory=list)
    usps: list[str] = Field(default_factory=list)


class MarketIntelligenceResult(AnalysisPayload):
    kind: Literal["market_intelligence"] = "market_intelligence"
    customer_pain_points: list[str] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)
    buying_factors: list[str] = Field(default_factory=list)


AnalysisResult = Annotated[
    Union[
        KeywordAnalysisResult,
        ReviewAnalysisResult,
        QnAAnalysisResult,
        CompetitorAnalysisResult,
        MarketIntelligenceResult,
    ],
    Field(discriminator="kind"),
]


class ResearchAnalysis(TimestampMixin):
    """One completed analysis for a category and marketplace."""

    id: str = Field(default_factory=new_id)
    category_id: str
    country_id: str
    analysis_type: AnalysisType
    source: Optional[str] = Field(
        default=None,
        description="merged | csv | file | linked; missing is treated as csv",
    )
    status: str = "completed"
    market_intelligence_id: Optional[str] = None
    result: Optional[AnalysisResult] = None

    @model_validator(mode="before")
    @classmethod
    def tag_result(cls, data: Any) -> Any:
        """Stored payloads may predate the ``kind`` tag; derive it from the type."""
        if isinstance(data, dict):
            result = data.get("result")
            analysis_type = data.get("analysis_type")
            if isinstance(analysis_type, Enum):
                analysis_type = analysis_type.value
            if isinstance(result, dict) and "kind" not in result and analysis_type:
                data = {**data, "result": {**result, "kind": analysis_type}}
        return data


# =============================================================================
# Research Items (canonical shapes produced by adapters)
# =============================================================================

class ReviewItem(BaseModel):
    id: Optional[str] = None
    title: str = ""
    author: str = ""
    rating: float = Field(default=0, ge=0, le=5)
    content: str = ""
    timestamp: str = ""
    is_verified: bool = False
    helpful_count: int = Field(default=0, ge=0)
    product_attributes: Optional[str] = None
    images: list[str] = Field(default_factory=list)


class QnAItem(BaseModel):
    question: str
    answer: str = ""
    votes: int = 0
    source: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None


class RatingBucket(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    percentage: str = "0%"


class AggregatedReviewRecord(TimestampMixin):
    """Reviews for one (asin, country, sort order), merged across fetches."""

    id: str = Field(default_factory=new_id)
    asin: str
    country_id: str
    marketplace_domain: str
    sort_by: str = "recent"
    status: str = "completed"
    source: Optional[str] = None
    fallback_reason: Optional[str] = None
    error_message: Optional[str] = None
    total_reviews: Optional[int] = None
    overall_rating: Optional[float] = None
    rating_stars_distribution: list[RatingBucket] = Field(default_factory=list)
    total_pages_fetched: int = 0
    reviews: list[ReviewItem] = Field(default_factory=list)
    raw_response: dict[str, Any] = Field(default_factory=dict)


class AggregatedQnARecord(TimestampMixin):
    """Questions for one (asin, country), merged across collection passes."""

    id: str = Field(default_factory=new_id)
    asin: str
    country_id: str
    marketplace_domain: str
    total_questions: int = 0
    questions: list[QnAItem] = Field(default_factory=list)
    raw_response: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Listings
# =============================================================================

class ExistingListingText(BaseModel):
    title: Optional[str] = None
    bullets: list[str] = Field(default_factory=list)
    description: Optional[str] = None


class ListingSection(TimestampMixin):
    """One content slot of a listing with its generated variants."""

    id: str = Field(default_factory=new_id)
    listing_id: str
    section_type: SectionType
    variations: list[str] = Field(..., min_length=1)
    selected_variation: int = Field(default=0, ge=0)
    final_text: Optional[str] = None

    @computed_field
    @property
    def is_approved(self) -> bool:
        return bool(self.final_text and self.final_text.strip())

    def confirmed_text(self) -> str:
        """Human override if set, else the selected variant, else empty."""
        if self.final_text and self.final_text.strip():
            return self.final_text.strip()
        if 0 <= self.selected_variation < len(self.variations):
            return self.variations[self.selected_variation] or ""
        return ""


class Listing(TimestampMixin):
    """One generation unit driven through the phases."""

    id: str = Field(default_factory=new_id)
    category_id: str
    country_id: str
    product_type_id: Optional[str] = None
    batch_job_id: Optional[str] = None
    product_name: str = ""
    brand: str = ""
    asin: Optional[str] = None
    phase: ListingPhase = ListingPhase.NONE
    phase_version: int = Field(default=0, ge=0)
    status: ListingStatus = ListingStatus.DRAFT
    optimization_mode: OptimizationMode = OptimizationMode.NEW
    existing_listing_text: Optional[ExistingListingText] = None
    generation_context: dict[str, Any] = Field(default_factory=dict)
    keyword_coverage: Optional[KeywordCoverage] = None
    planning_matrix: Optional[list[PlanningMatrixEntry]] = None
    model_used: Optional[str] = None
    tokens_used: int = Field(default=0, ge=0)

    # Denormalized snapshot written when the listing completes.
    title: str = ""
    bullet_points: list[str] = Field(default_factory=list)
    description: Optional[str] = None
    search_terms: Optional[str] = None
    subject_matter: list[str] = Field(default_factory=list)
    backend_attributes: Optional[dict[str, list[str]]] = None


# =============================================================================
# Jobs
# =============================================================================

class FailedProduct(BaseModel):
    product_name: str
    error: str
    error_type: Optional[str] = None


class BatchJob(TimestampMixin):
    id: str = Field(default_factory=new_id)
    name: str = ""
    category_id: str
    country_id: str
    status: BatchStatus = BatchStatus.PROCESSING
    total_listings: int = Field(..., ge=0)
    completed_listings: int = Field(default=0, ge=0)
    failed_products: list[FailedProduct] = Field(default_factory=list)
    product_type_ids: list[str] = Field(default_factory=list)


class BackgroundJob(TimestampMixin):
    id: str = Field(default_factory=new_id)
    kind: str
    status: JobStatus = JobStatus.PENDING
    params: dict[str, Any] = Field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class RufusJob(TimestampMixin):
    id: str = Field(default_factory=new_id)
    country_id: str
    marketplace_domain: str
    source: str = "manual"
    status: RufusJobStatus = RufusJobStatus.QUEUED
    total_asins: int = 0
    completed_asins: int = 0
    failed_asins: int = 0

    @property
    def processed(self) -> int:
        return self.completed_asins + self.failed_asins


class RufusJobItem(TimestampMixin):
    id: str = Field(default_factory=new_id)
    job_id: str
    asin: str
    status: RufusItemStatus = RufusItemStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    questions_found: int = 0
    error_message: Optional[str] = None


# =============================================================================
# Input Models
# =============================================================================

class ProductSpec(BaseModel):
    """Facts about one product to generate a listing for."""

    product_name: str = ""
    brand: str = ""
    asin: Optional[str] = None
    attributes: dict[str, str] = Field(default_factory=dict)
    product_type_name: Optional[str] = None


class PhaseRequest(BaseModel):
    """An explicit request to run one generation phase."""

    phase: GenerationPhase
    listing_id: Optional[str] = None
    category_id: Optional[str] = None
    country_id: Optional[str] = None
    product: ProductSpec = Field(default_factory=ProductSpec)
    product_type_id: Optional[str] = None
    optimization_mode: OptimizationMode = OptimizationMode.NEW
    existing_listing_text: Optional[ExistingListingText] = None


class BatchRequest(BaseModel):
    name: str = ""
    category_id: str = ""
    country_id: str = ""
    products: list[ProductSpec] = Field(default_factory=list)


class ListingGenerationInput(BaseModel):
    """Everything the AI service needs to write a listing."""

    product_name: str
    brand: str
    asin: Optional[str] = None
    attributes: dict[str, str] = Field(default_factory=dict)
    category_name: str
    marketplace: str
    language: str = "English"
    char_limits: CharLimits
    optimization_mode: OptimizationMode = OptimizationMode.NEW
    existing_listing_text: Optional[ExistingListingText] = None
    keyword_analysis: Optional[KeywordAnalysisResult] = None
    review_analysis: Optional[ReviewAnalysisResult] = None
    qna_analysis: Optional[QnAAnalysisResult] = None
    competitor_analysis: Optional[CompetitorAnalysisResult] = None
    market_intelligence: Optional[MarketIntelligenceResult] = None

    def available_analyses(self) -> list[str]:
        names = [
            "keyword_analysis",
            "review_analysis",
            "qna_analysis",
            "competitor_analysis",
            "market_intelligence",
        ]
        return [n for n in names if getattr(self, n) is not None]


# =============================================================================
# Error Models
# =============================================================================

class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(
        default=None,
        description="Field that caused the error",
    )
    message: str = Field(..., description="Error message")
    code: Optional[str] = Field(
        default=None,
        description="Error code for programmatic handling",
    )


class ErrorResponse(BaseModel):
    """
    Standardized error response structure.

    Example:
        >>> error = ErrorResponse(
        ...     error_type=ErrorType.PRECONDITION_FAILED,
        ...     message="Title must be confirmed before generating bullets",
        ...     details=[ErrorDetail(field="title", message="No confirmed text")]
        ... )
    """

    error_id: str = Field(default_factory=new_id)
    error_type: ErrorType = Field(..., description="Error classification")
    message: str = Field(..., description="Human-readable error message")
    details: list[ErrorDetail] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    recoverable: bool = False


__all__ = [
    "utc_now",
    "new_id",
    "BaseModel",
    "CamelModel",
    "TimestampMixin",
    "ErrorType",
    "ListingPhase",
    "GenerationPhase",
    "ListingStatus",
    "OptimizationMode",
    "SectionType",
    "MAX_BULLETS",
    "BULLET_SECTION_TYPES",
    "SECTION_TYPES",
    "bullet_section",
    "BatchStatus",
    "AnalysisType",
    "AnalysisSource",
    "JobStatus",
    "TERMINAL_JOB_STATUSES",
    "RufusJobStatus",
    "RufusItemStatus",
    "ASIN_PATTERN",
    "validate_asin",
    "Category",
    "Country",
    "ProductType",
    "CharLimits",
    "PlacedKeyword",
    "RemainingKeyword",
    "KeywordCoverage",
    "PlanningMatrixEntry",
    "BulletLengths",
    "BulletVariantSet",
    "flatten_bullet",
    "TitlePhaseResult",
    "BulletsPhaseResult",
    "DescriptionPhaseResult",
    "BackendPhaseResult",
    "ListingGenerationResult",
    "format_backend_attributes",
    "AnalysisPayload",
    "KeywordAnalysisResult",
    "ReviewAnalysisResult",
    "QnAAnalysisResult",
    "CompetitorAnalysisResult",
    "MarketIntelligenceResult",
    "AnalysisResult",
    "ResearchAnalysis",
    "ReviewItem",
    "QnAItem",
    "RatingBucket",
    "AggregatedReviewRecord",
    "AggregatedQnARecord",
    "ExistingListingText",
    "ListingSection",
    "Listing",
    "FailedProduct",
    "BatchJob",
    "BackgroundJob",
    "RufusJob",
    "RufusJobItem",
    "ProductSpec",
    "PhaseRequest",
    "BatchRequest",
    "ListingGenerationInput",
    "ErrorDetail",
    "ErrorResponse",
]
