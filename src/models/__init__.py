"""Data models module for the Listing Research & Generation Pipeline."""

from src.models.schemas import (
    # Base Models
    BaseModel,
    CamelModel,
    TimestampMixin,

    # Enums and constants
    ErrorType,
    ListingPhase,
    GenerationPhase,
    ListingStatus,
    OptimizationMode,
    SectionType,
    SECTION_TYPES,
    BULLET_SECTION_TYPES,
    BatchStatus,
    AnalysisType,
    AnalysisSource,
    JobStatus,
    RufusJobStatus,
    RufusItemStatus,

    # Reference records
    Category,
    Country,
    ProductType,
    CharLimits,

    # Research
    ResearchAnalysis,
    KeywordAnalysisResult,
    ReviewAnalysisResult,
    QnAAnalysisResult,
    CompetitorAnalysisResult,
    MarketIntelligenceResult,
    ReviewItem,
    QnAItem,
    AggregatedReviewRecord,
    AggregatedQnARecord,

    # Generation
    KeywordCoverage,
    PlanningMatrixEntry,
    TitlePhaseResult,
    BulletsPhaseResult,
    DescriptionPhaseResult,
    BackendPhaseResult,
    ListingGenerationResult,
    ListingGenerationInput,
    Listing,
    ListingSection,

    # Jobs
    BatchJob,
    FailedProduct,
    BackgroundJob,
    RufusJob,
    RufusJobItem,

    # Inputs
    ProductSpec,
    PhaseRequest,
    BatchRequest,

    # Errors
    ErrorDetail,
    ErrorResponse,
)

__all__ = [
    "BaseModel",
    "CamelModel",
    "TimestampMixin",
    "ErrorType",
    "ListingPhase",
    "GenerationPhase",
    "ListingStatus",
    "OptimizationMode",
    "SectionType",
    "SECTION_TYPES",
    "BULLET_SECTION_TYPES",
    "BatchStatus",
    "AnalysisType",
    "AnalysisSource",
    "JobStatus",
    "RufusJobStatus",
    "RufusItemStatus",
    "Category",
    "Country",
    "ProductType",
    "CharLimits",
    "ResearchAnalysis",
    "KeywordAnalysisResult",
    "ReviewAnalysisResult",
    "QnAAnalysisResult",
    "CompetitorAnalysisResult",
    "MarketIntelligenceResult",
    "ReviewItem",
    "QnAItem",
    "AggregatedReviewRecord",
    "AggregatedQnARecord",
    "KeywordCoverage",
    "PlanningMatrixEntry",
    "TitlePhaseResult",
    "BulletsPhaseResult",
    "DescriptionPhaseResult",
    "BackendPhaseResult",
    "ListingGenerationResult",
    "ListingGenerationInput",
    "Listing",
    "ListingSection",
    "BatchJob",
    "FailedProduct",
    "BackgroundJob",
    "RufusJob",
    "RufusJobItem",
    "ProductSpec",
    "PhaseRequest",
    "BatchRequest",
    "ErrorDetail",
    "ErrorResponse",
]
