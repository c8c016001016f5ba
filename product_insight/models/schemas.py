"""
Pydantic models and schemas for the product insight engine.

This module defines all data structures used throughout the engine,
ensuring type safety, validation, and serialization consistency.

Models:
    - ProductReference: Immutable user input (code or free-text name)
    - IdentityCandidate: Provisional product identity found on one web page
    - EnrichedContext: Read-only grounding context shared by all tasks
    - TaskResult / AnalysisRun: Per-task state and the run aggregate
    - TaskResultRecord: Row published to the result store
    - *Shape models: Minimal required output of each analysis task
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional, Self, Union
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
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


class TimestampMixin(BaseModel):
    """Mixin for models that need timestamp tracking."""

    created_at: datetime = Field(
        default_factory=utcnow,
        description="Record creation timestamp in ISO 8601 format",
    )

    @field_serializer("created_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        if not value:
            return None
        if value.tzinfo is None:
            return value.isoformat() + "Z"
        return value.isoformat()


# =============================================================================
# Enums
# =============================================================================

class ProductKind(str, Enum):
    """How a product identifier is interpreted."""
    CODE = "code"
    NAME = "name"


class TaskStatus(str, Enum):
    """Lifecycle of one analysis task within a run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


# =============================================================================
# Validators (Reusable)
# =============================================================================

# Digit-only identifiers of retail length are treated as product codes
PRODUCT_CODE_PATTERN = re.compile(r"^\d{8,13}$")

DEFAULT_CODE_NAME = "Product {identifier}"


def detect_kind(identifier: str) -> ProductKind:
    """Derive the reference kind from the identifier's shape."""
    if PRODUCT_CODE_PATTERN.match(identifier.strip()):
        return ProductKind.CODE
    return ProductKind.NAME


# =============================================================================
# Input Models
# =============================================================================

class ProductReference(BaseModel):
    """
    A product submitted for analysis.

    ``kind`` is always derived from ``identifier``; a supplied value is
    ignored. Code references entered without a name get a placeholder name
    until an identity is confirmed.

    Example:
        >>> ref = ProductReference(identifier="3017620422003")
        >>> ref.kind, ref.name
        ('code', 'Product 3017620422003')
    """

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., min_length=1, description="Product code or free-text name")
    name: str = Field(..., min_length=1, description="Human readable product name")
    kind: ProductKind = Field(..., description="Derived from the identifier shape")

    @model_validator(mode="before")
    @classmethod
    def derive_kind(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        identifier = str(data.get("identifier") or "").strip()
        kind = detect_kind(identifier)
        data["identifier"] = identifier
        data["kind"] = kind
        name = (data.get("name") or "").strip()
        if not name:
            name = DEFAULT_CODE_NAME.format(identifier=identifier) if kind == ProductKind.CODE else identifier
        data["name"] = name
        return data

    @classmethod
    def from_input(cls, identifier: str, name: Optional[str] = None) -> "ProductReference":
        return cls(identifier=identifier, name=name or "")

    @property
    def is_code(self) -> bool:
        return self.kind == ProductKind.CODE

    def with_name(self, name: str) -> "ProductReference":
        """Return a copy carrying a confirmed name."""
        return ProductReference(identifier=self.identifier, name=name)


# =============================================================================
# Identity Resolution Models
# =============================================================================

class IdentityCandidate(BaseModel):
    """A provisional identity for a product code, extracted from one page."""

    name: str = Field(..., min_length=1)
    brand: Optional[str] = None
    category: Optional[str] = None
    source_url: str
    source_domain: str
    matched_on_source: bool = False
    score: float = Field(default=0.0, ge=0.0, le=1.0)


# =============================================================================
# External Service Models
# =============================================================================

class WebSearchResult(BaseModel):
    """A single web search hit."""

    title: str = ""
    url: str = ""
    content: str = ""


class WebSearchResponse(BaseModel):
    """Results returned for one search query."""

    query: str
    results: list[WebSearchResult] = Field(default_factory=list)
    provider: Optional[str] = None
    cached: bool = False


class FetchedPage(BaseModel):
    """An HTML page retrieved from an allowlisted source domain."""

    model_config = ConfigDict(str_strip_whitespace=False)

    html: str
    final_url: str
    domain: str
    status: int = 200


# =============================================================================
# Enrichment Models
# =============================================================================

class ValidationSource(BaseModel):
    title: str = ""
    url: str = ""
    content: str = Field(default="", max_length=200)


class CodeValidation(BaseModel):
    """Result of the code validation search."""

    code: str
    is_valid: bool
    sources: list[ValidationSource] = Field(default_factory=list)
    error: Optional[str] = None


class CoherenceCheck(BaseModel):
    """Token overlap between the user's name and validation sources."""

    name_match: bool = False
    brand_match: bool = False
    coherence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    is_coherent: bool = False
    issues: list[str] = Field(default_factory=list)


class EnrichedContext(BaseModel):
    """
    Grounding context shared by reference across all nine task prompts.

    Frozen; collections are tuples so no task can mutate the shared copy.
    """

    model_config = ConfigDict(frozen=True)

    product_id: str
    kind: ProductKind
    code_validation: Optional[CodeValidation] = None
    coherence: Optional[CoherenceCheck] = None
    search_results: tuple[WebSearchResult, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def has_search_results(self) -> bool:
        return bool(self.search_results)

    @property
    def is_incoherent(self) -> bool:
        return self.coherence is not None and not self.coherence.is_coherent

    def snippets(self, limit: int) -> list[dict[str, str]]:
        """First ``limit`` search results as plain dicts for prompt embedding."""
        return [result.model_dump() for result in self.search_results[:limit]]


# =============================================================================
# Task Models
# =============================================================================

class TaskOutcome(BaseModel):
    """What the resilient executor returns for one task. Never an exception."""

    data: dict[str, Any]
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    degraded: bool = False
    attempts: int = 0
    last_error: Optional[str] = None


class TaskResult(BaseModel):
    """State of one task within one analysis run."""

    task_id: str
    status: TaskStatus = TaskStatus.PENDING
    data: Optional[dict[str, Any]] = None
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    degraded: bool = False
    error: Optional[str] = None
    attempts: int = 0
    duration_ms: Optional[int] = None

    @property
    def is_settled(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.ERROR)


class AnalysisRun(BaseModel):
    """Aggregate root for one product's analysis."""

    run_id: str = Field(default_factory=lambda: uuid4().hex)
    product_id: str
    product: ProductReference
    tools: dict[str, TaskResult] = Field(default_factory=dict)
    context: Optional[EnrichedContext] = None
    cancelled: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def count(self, status: TaskStatus) -> int:
        return sum(1 for result in self.tools.values() if result.status == status)

    @property
    def is_settled(self) -> bool:
        return bool(self.tools) and all(result.is_settled for result in self.tools.values())

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "product_id": self.product_id,
            "completed": self.count(TaskStatus.COMPLETED),
            "errors": self.count(TaskStatus.ERROR),
            "pending": self.count(TaskStatus.PENDING),
            "degraded": sum(1 for r in self.tools.values() if r.degraded),
        }


class TaskResultRecord(TimestampMixin):
    """One persisted task result, published after the task settles."""

    run_id: str
    task_id: str
    tool_name: str
    product_identifier: str
    product_name: str
    product_kind: ProductKind
    result_data: Optional[dict[str, Any]] = None
    confidence_score: Optional[float] = None
    status: TaskStatus
    degraded: bool = False
    model_used: Optional[str] = None
    processing_time_ms: Optional[int] = None


# =============================================================================
# Task Output Shapes
# =============================================================================

class TaskShape(BaseModel):
    """Minimal required fields of a task's JSON output; extra keys pass through."""

    model_config = ConfigDict(extra="allow")


NonEmptyStr = Annotated[str, Field(min_length=1)]


class CategorizerShape(TaskShape):
    main_category: NonEmptyStr
    tags: list[Any]


class CompetitorShape(TaskShape):
    competitors: list[Any]
    market_position: NonEmptyStr


class SeoOptimizerShape(TaskShape):
    title_tags: list[Any]
    keywords: Union[dict[str, Any], list[Any]]


class TrendsShape(TaskShape):
    current_trends: list[Any]
    growth_prediction: NonEmptyStr


class PriceOptimizerShape(TaskShape):
    recommended_price_range: dict[str, Any]
    pricing_strategy: NonEmptyStr


class ContentEnhancerShape(TaskShape):
    enhanced_title: NonEmptyStr
    short_description: NonEmptyStr


class DescriptionsBlock(TaskShape):
    short: NonEmptyStr


class DescriptionGeneratorShape(TaskShape):
    descriptions: DescriptionsBlock


class SeoGeneratorShape(TaskShape):
    seo_title: NonEmptyStr
    meta_description: NonEmptyStr


class MarketingGeneratorShape(TaskShape):
    marketing_messages: Union[dict[str, Any], list[Any]]
    value_propositions: list[Any]
