"""
Registry of the nine analysis tasks.

Each task is described once, as data: how to build its prompt, how to
validate the backend's answer, what to return when the backend cannot
produce a usable answer, and the confidence to assume when the answer
omits one. Adding a task means adding one ``TaskSpec`` entry.

Example:
    >>> spec = get_task_spec("categorizer")
    >>> prompt = spec.build_prompt(product, context)
    >>> spec.validate({"main_category": "Audio", "tags": []})
    True
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from product_insight.analyzers.prompts import (
    CATEGORIZER_PROMPT,
    COMPETITOR_PROMPT,
    CONTENT_ENHANCER_PROMPT,
    DESCRIPTION_GENERATOR_PROMPT,
    MARKETING_GENERATOR_PROMPT,
    PRICE_OPTIMIZER_PROMPT,
    SEO_GENERATOR_PROMPT,
    SEO_OPTIMIZER_PROMPT,
    TRENDS_PROMPT,
    TaskPrompt,
    render_prompt,
)
from product_insight.models.schemas import (
    CategorizerShape,
    CompetitorShape,
    ContentEnhancerShape,
    DescriptionGeneratorShape,
    EnrichedContext,
    MarketingGeneratorShape,
    PriceOptimizerShape,
    ProductReference,
    SeoGeneratorShape,
    SeoOptimizerShape,
    TaskShape,
    TrendsShape,
)

CONFIDENCE_FIELD = "confidence_score"

# Fallback confidence is half the task default, never below this floor
FALLBACK_CONFIDENCE_FACTOR = 0.5
FALLBACK_CONFIDENCE_FLOOR = 0.3


def fallback_confidence(default_confidence: float) -> float:
    return max(round(default_confidence * FALLBACK_CONFIDENCE_FACTOR, 2), FALLBACK_CONFIDENCE_FLOOR)


# =============================================================================
# Task Specification
# =============================================================================

@dataclass(frozen=True)
class TaskSpec:
    """Everything the engine needs to run one analysis task."""
    task_id: str
    display_name: str
    prompt: TaskPrompt
    shape: type[TaskShape]
    fallback_payload: dict[str, Any]
    default_confidence: float

    def build_prompt(
        self,
        product: ProductReference,
        context: Optional[EnrichedContext] = None,
    ) -> str:
        return render_prompt(self.prompt, product, context)

    def validate(self, data: Any) -> bool:
        """True when ``data`` carries the task's minimal required fields."""
        if not isinstance(data, dict):
            return False
        try:
            self.shape.model_validate(data)
        except ValidationError:
            return False
        return True

    def validation_errors(self, data: Any) -> list[str]:
        if not isinstance(data, dict):
            return [f"expected a JSON object, got {type(data).__name__}"]
        try:
            self.shape.model_validate(data)
        except ValidationError as e:
            return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        return []

    def fallback(self) -> dict[str, Any]:
        """A fresh copy of the static fallback payload with reduced confidence."""
        payload = copy.deepcopy(self.fallback_payload)
        payload[CONFIDENCE_FIELD] = fallback_confidence(self.default_confidence)
        return payload


# =============================================================================
# Fallback Payloads
# =============================================================================

CATEGORIZER_FALLBACK = {
    "main_category": "General Merchandise",
    "subcategories": ["Uncategorized"],
    "tags": ["product", "to-review"],
    "attributes": {},
    "reasoning": "Automatic categorization was unavailable; manual review recommended.",
}

COMPETITOR_FALLBACK = {
    "competitors": [],
    "market_position": "Mid-range",
    "competitive_advantages": ["To be confirmed with market research"],
    "threats": ["Competitive landscape not yet analyzed"],
    "data_sources": [],
}

SEO_OPTIMIZER_FALLBACK = {
    "title_tags": ["Product Specifications and Features"],
    "meta_descriptions": ["Discover the features and specifications of this product."],
    "keywords": {"primary": [], "secondary": [], "long_tail": []},
    "schema_markup": {"product_type": "Product", "category": "General"},
    "seo_score": 50,
}

TRENDS_FALLBACK = {
    "current_trends": ["Growing online research before purchase"],
    "seasonal_patterns": {"peak_months": ["November", "December"], "low_months": []},
    "growth_prediction": "Stable",
    "market_opportunities": ["Improve online product content"],
    "emerging_competitors": [],
    "technology_trends": [],
    "forecast_period": "12 months",
}

PRICE_OPTIMIZER_FALLBACK = {
    "recommended_price_range": {"min": None, "max": None, "optimal": None},
    "pricing_strategy": "Competitive",
    "competitor_prices": [],
    "value_propositions": ["Quality relative to price"],
    "price_sensitivity_factors": ["Competitor pricing", "Brand recognition"],
    "seasonal_adjustments": [],
    "currency": "EUR",
}

CONTENT_ENHANCER_FALLBACK = {
    "enhanced_title": "Product details pending review",
    "short_description": "Product description will be available after a successful analysis.",
    "detailed_description": "",
    "key_features": [],
    "benefits": [],
    "use_cases": [],
    "technical_specs": {},
    "content_quality_score": 40,
}

DESCRIPTION_GENERATOR_FALLBACK = {
    "descriptions": {
        "short": "A product description could not be generated automatically.",
        "medium": "",
        "detailed": "",
        "bullet_points": [],
    },
    "target_audiences": [],
    "emotional_appeals": [],
    "call_to_action": ["Learn more"],
    "readability_score": 50,
}

SEO_GENERATOR_FALLBACK = {
    "seo_title": "Product Specifications and Features",
    "meta_description": "Find specifications, features and buying information for this product.",
    "h1_tag": "Product Overview",
    "h2_tags": ["Features", "Specifications"],
    "seo_content": "",
    "alt_texts": [],
    "internal_links": [],
    "faq_section": [],
    "seo_score": 50,
}

MARKETING_GENERATOR_FALLBACK = {
    "marketing_messages": {
        "headline": "Discover what this product can do for you",
        "tagline": "Quality you can rely on",
        "elevator_pitch": "",
    },
    "social_media_posts": {},
    "ad_copy": {},
    "email_marketing": {"subject_lines": [], "preview_text": ""},
    "value_propositions": ["Reliable quality"],
    "engagement_prediction": 50,
}


# =============================================================================
# Registry
# =============================================================================

TASK_REGISTRY: dict[str, TaskSpec] = {
    spec.task_id: spec
    for spec in (
        TaskSpec("categorizer", "Automatic Categorizer", CATEGORIZER_PROMPT,
                 CategorizerShape, CATEGORIZER_FALLBACK, 0.8),
        TaskSpec("competitor", "Competitor Analysis", COMPETITOR_PROMPT,
                 CompetitorShape, COMPETITOR_FALLBACK, 0.75),
        TaskSpec("seo_optimizer", "SEO Optimizer", SEO_OPTIMIZER_PROMPT,
                 SeoOptimizerShape, SEO_OPTIMIZER_FALLBACK, 0.8),
        TaskSpec("trends", "Trend Forecast", TRENDS_PROMPT,
                 TrendsShape, TRENDS_FALLBACK, 0.75),
        TaskSpec("price_optimizer", "Price Optimizer", PRICE_OPTIMIZER_PROMPT,
                 PriceOptimizerShape, PRICE_OPTIMIZER_FALLBACK, 0.8),
        TaskSpec("content_enhancer", "Content Enhancer", CONTENT_ENHANCER_PROMPT,
                 ContentEnhancerShape, CONTENT_ENHANCER_FALLBACK, 0.85),
        TaskSpec("description_generator", "Description Generator", DESCRIPTION_GENERATOR_PROMPT,
                 DescriptionGeneratorShape, DESCRIPTION_GENERATOR_FALLBACK, 0.8),
        TaskSpec("seo_generator", "SEO Content Generator", SEO_GENERATOR_PROMPT,
                 SeoGeneratorShape, SEO_GENERATOR_FALLBACK, 0.8),
        TaskSpec("marketing_generator", "Marketing Generator", MARKETING_GENERATOR_PROMPT,
                 MarketingGeneratorShape, MARKETING_GENERATOR_FALLBACK, 0.8),
    )
}

TASK_IDS: tuple[str, ...] = tuple(TASK_REGISTRY)


class UnknownTaskError(KeyError):
    pass


def get_task_spec(task_id: str) -> TaskSpec:
    try:
        return TASK_REGISTRY[task_id]
    except KeyError:
        raise UnknownTaskError(f"Unknown task: {task_id}") from None


def get_task_name(task_id: str) -> str:
    """Display name for a task id; unknown ids are returned unchanged."""
    spec = TASK_REGISTRY.get(task_id)
    return spec.display_name if spec else task_id


__all__ = [
    "TaskSpec",
    "TASK_REGISTRY",
    "TASK_IDS",
    "UnknownTaskError",
    "get_task_spec",
    "get_task_name",
    "fallback_confidence",
    "CONFIDENCE_FIELD",
]
