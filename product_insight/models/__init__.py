"""Data models module for the product insight engine."""

from product_insight.models.schemas import (
    # Base Models
    BaseModel,
    TimestampMixin,

    # Enums
    ProductKind,
    TaskStatus,

    # Input Models
    ProductReference,
    detect_kind,

    # Identity Models
    IdentityCandidate,

    # Service Models
    WebSearchResult,
    WebSearchResponse,
    FetchedPage,

    # Enrichment Models
    ValidationSource,
    CodeValidation,
    CoherenceCheck,
    EnrichedContext,

    # Task Models
    TaskOutcome,
    TaskResult,
    AnalysisRun,
    TaskResultRecord,
    TaskShape,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "ProductKind",
    "TaskStatus",
    "ProductReference",
    "detect_kind",
    "IdentityCandidate",
    "WebSearchResult",
    "WebSearchResponse",
    "FetchedPage",
    "ValidationSource",
    "CodeValidation",
    "CoherenceCheck",
    "EnrichedContext",
    "TaskOutcome",
    "TaskResult",
    "AnalysisRun",
    "TaskResultRecord",
    "TaskShape",
]
