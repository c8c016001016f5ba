"""
Prompts for the nine product analysis tasks.

Every task prompt has the same layout:

    <instruction>

    Product: <name> (<identifier>)
    [Code validation: <json>]          (tasks that use validated identity)
    [Coherence warning: <issues>]      (when the name disagrees with sources)
    [<context label>: <json snippets>] (when search results exist)

    <output request>
    <JSON template>

The JSON templates double as documentation of each task's output shape; the
minimal required subset is enforced by the task registry.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from product_insight.models.schemas import EnrichedContext, ProductReference


# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_INSTRUCTION = (
    "You are an expert product analyst. Always respond with valid JSON only, "
    "no additional text or explanations."
)


# =============================================================================
# Template Definition
# =============================================================================

@dataclass(frozen=True)
class TaskPrompt:
    """Static parts of one task's prompt."""
    instruction: str
    output_request: str
    json_template: str
    context_label: str = "Market Data"
    snippet_limit: int = 2
    include_validation: bool = False


def _context_lines(prompt: TaskPrompt, context: Optional[EnrichedContext]) -> list[str]:
    if context is None:
        return []
    lines = []
    if prompt.include_validation and context.code_validation is not None:
        validation = context.code_validation.model_dump(exclude_none=True)
        lines.append(f"Code validation: {json.dumps(validation, ensure_ascii=False)}")
    if context.is_incoherent:
        issues = "; ".join(context.coherence.issues) or "name may not match the product code"
        lines.append(f"Coherence warning: {issues}")
    snippets = context.snippets(prompt.snippet_limit)
    if snippets:
        lines.append(f"{prompt.context_label}: {json.dumps(snippets, ensure_ascii=False)}")
    return lines


def render_prompt(
    prompt: TaskPrompt,
    product: ProductReference,
    context: Optional[EnrichedContext] = None,
) -> str:
    """Fill a task prompt with the product and its shared context."""
    parts = [prompt.instruction, "", f"Product: {product.name} ({product.identifier})"]
    parts.extend(_context_lines(prompt, context))
    parts.extend(["", prompt.output_request, prompt.json_template.strip()])
    return "\n".join(parts)


# =============================================================================
# Task Prompts
# =============================================================================

CATEGORIZER_PROMPT = TaskPrompt(
    instruction="Analyze this product and categorize it comprehensively:",
    output_request="Provide detailed categorization in JSON format:",
    context_label="Market Info",
    snippet_limit=2,
    include_validation=True,
    json_template="""
{
  "main_category": "Primary category",
  "subcategories": ["sub1", "sub2"],
  "tags": ["tag1", "tag2", "tag3"],
  "attributes": {
    "material": "if applicable",
    "color": "if applicable",
    "size": "if applicable",
    "brand": "detected brand"
  },
  "confidence_score": 0.95,
  "reasoning": "Explanation of categorization"
}""",
)

COMPETITOR_PROMPT = TaskPrompt(
    instruction="Analyze competitors for this product:",
    output_request="Provide competitor analysis in JSON format:",
    snippet_limit=3,
    json_template="""
{
  "competitors": [
    {
      "name": "Competitor name",
      "price": "price if found",
      "features": ["feature1", "feature2"],
      "strengths": ["strength1"],
      "weaknesses": ["weakness1"]
    }
  ],
  "market_position": "Premium/Mid-range/Budget",
  "competitive_advantages": ["advantage1", "advantage2"],
  "threats": ["threat1", "threat2"],
  "confidence_score": 0.85,
  "data_sources": ["source1", "source2"]
}""",
)

SEO_OPTIMIZER_PROMPT = TaskPrompt(
    instruction="Optimize SEO for this product:",
    output_request="Provide SEO optimization in JSON format:",
    context_label="Market Context",
    json_template="""
{
  "title_tags": ["optimized title 1", "optimized title 2"],
  "meta_descriptions": ["description 1", "description 2"],
  "keywords": {
    "primary": ["main keyword 1", "main keyword 2"],
    "secondary": ["secondary 1", "secondary 2"],
    "long_tail": ["long tail phrase 1", "long tail phrase 2"]
  },
  "schema_markup": {
    "product_type": "Product type for schema",
    "category": "Schema category"
  },
  "confidence_score": 0.88,
  "seo_score": 85
}""",
)

TRENDS_PROMPT = TaskPrompt(
    instruction="Analyze market trends for this product:",
    output_request="Provide trends analysis in JSON format:",
    snippet_limit=3,
    json_template="""
{
  "current_trends": ["trend1", "trend2", "trend3"],
  "seasonal_patterns": {
    "peak_months": ["month1", "month2"],
    "low_months": ["month1", "month2"]
  },
  "growth_prediction": "Growing/Stable/Declining",
  "market_opportunities": ["opportunity1", "opportunity2"],
  "emerging_competitors": ["competitor1", "competitor2"],
  "technology_trends": ["tech trend1", "tech trend2"],
  "confidence_score": 0.82,
  "forecast_period": "12 months"
}""",
)

PRICE_OPTIMIZER_PROMPT = TaskPrompt(
    instruction="Optimize pricing strategy for this product:",
    output_request="Provide pricing optimization in JSON format:",
    context_label="Competitor Pricing",
    snippet_limit=3,
    json_template="""
{
  "recommended_price_range": {
    "min": 0,
    "max": 0,
    "optimal": 0
  },
  "pricing_strategy": "Premium/Competitive/Penetration",
  "competitor_prices": [
    {"competitor": "name", "price": 0, "features": "comparison"}
  ],
  "value_propositions": ["proposition1", "proposition2"],
  "price_sensitivity_factors": ["factor1", "factor2"],
  "seasonal_adjustments": ["adjustment1", "adjustment2"],
  "confidence_score": 0.85,
  "currency": "EUR"
}""",
)

CONTENT_ENHANCER_PROMPT = TaskPrompt(
    instruction="Enhance product content and descriptions:",
    output_request="Provide content enhancement in JSON format:",
    context_label="Additional Context",
    include_validation=True,
    json_template="""
{
  "enhanced_title": "Improved product title",
  "short_description": "Brief compelling description (50-100 words)",
  "detailed_description": "Comprehensive description (200-300 words)",
  "key_features": ["feature1", "feature2", "feature3"],
  "benefits": ["benefit1", "benefit2", "benefit3"],
  "use_cases": ["use case1", "use case2"],
  "technical_specs": {"spec1": "value1", "spec2": "value2"},
  "confidence_score": 0.9,
  "content_quality_score": 95
}""",
)

DESCRIPTION_GENERATOR_PROMPT = TaskPrompt(
    instruction="Generate comprehensive product descriptions:",
    output_request="Generate product descriptions in JSON format:",
    context_label="Research Data",
    snippet_limit=3,
    json_template="""
{
  "descriptions": {
    "short": "Concise 1-2 sentence description",
    "medium": "Paragraph description (100-150 words)",
    "detailed": "Comprehensive description (300-500 words)",
    "bullet_points": ["point1", "point2", "point3", "point4", "point5"]
  },
  "target_audiences": ["audience1", "audience2"],
  "emotional_appeals": ["appeal1", "appeal2"],
  "call_to_action": ["cta1", "cta2"],
  "confidence_score": 0.88,
  "readability_score": 85
}""",
)

SEO_GENERATOR_PROMPT = TaskPrompt(
    instruction="Generate SEO-optimized content for this product:",
    output_request="Generate SEO content in JSON format:",
    context_label="SEO Context",
    json_template="""
{
  "seo_title": "SEO-optimized title (50-60 chars)",
  "meta_description": "Meta description (150-160 chars)",
  "h1_tag": "Main heading",
  "h2_tags": ["subheading1", "subheading2"],
  "seo_content": "SEO-optimized content (300-400 words)",
  "alt_texts": ["alt text for image1", "alt text for image2"],
  "internal_links": ["suggested internal link1", "suggested internal link2"],
  "faq_section": [
    {"question": "Q1?", "answer": "A1"},
    {"question": "Q2?", "answer": "A2"}
  ],
  "confidence_score": 0.87,
  "seo_score": 90
}""",
)

MARKETING_GENERATOR_PROMPT = TaskPrompt(
    instruction="Generate marketing content for this product:",
    output_request="Generate marketing content in JSON format:",
    context_label="Market Context",
    json_template="""
{
  "marketing_messages": {
    "headline": "Catchy main headline",
    "tagline": "Memorable tagline",
    "elevator_pitch": "30-second pitch"
  },
  "social_media_posts": {
    "facebook": "Facebook-optimized post",
    "instagram": "Instagram caption with hashtags",
    "twitter": "Tweet-length message"
  },
  "ad_copy": {
    "google_ads": "Google Ads headline and description",
    "facebook_ads": "Facebook ad copy"
  },
  "email_marketing": {
    "subject_lines": ["subject1", "subject2", "subject3"],
    "preview_text": "Email preview text"
  },
  "value_propositions": ["value prop1", "value prop2"],
  "confidence_score": 0.86,
  "engagement_prediction": 85
}""",
)


__all__ = [
    "SYSTEM_INSTRUCTION",
    "TaskPrompt",
    "render_prompt",
    "CATEGORIZER_PROMPT",
    "COMPETITOR_PROMPT",
    "SEO_OPTIMIZER_PROMPT",
    "TRENDS_PROMPT",
    "PRICE_OPTIMIZER_PROMPT",
    "CONTENT_ENHANCER_PROMPT",
    "DESCRIPTION_GENERATOR_PROMPT",
    "SEO_GENERATOR_PROMPT",
    "MARKETING_GENERATOR_PROMPT",
]
