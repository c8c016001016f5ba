"""
Context enrichment for analysis prompts.

Builds the read-only EnrichedContext shared by all nine analysis tasks of a
run. Code references get a validation search, a name/identity coherence
check and a multi-query search; name references get one generic search.
Every failure degrades to a smaller context; nothing is raised.
"""

from __future__ import annotations

import re
from typing import Optional

from product_insight.extractors.identity_resolver import is_valid_code
from product_insight.models.schemas import (
    CodeValidation,
    CoherenceCheck,
    EnrichedContext,
    ProductReference,
    ValidationSource,
    WebSearchResult,
)
from product_insight.services.search_service import SearchService
from product_insight.utils.logger import get_logger

logger = get_logger(__name__)


VALIDATION_QUERY = '"{code}" site:eandata.com OR site:barcodelookup.com OR site:gepir.gs1.org'
ENHANCED_QUERIES = [
    '"{code}" "{name}" specifications',
    '"{code}" price review features',
    '"{name}" EAN {code} product information',
]
NAME_QUERY = '"{name}" product information specifications'

VALIDATION_RESULTS = 3
RESULTS_PER_QUERY = 3
MAX_ENHANCED_RESULTS = 5
SOURCE_SNIPPET_CHARS = 200
COHERENCE_THRESHOLD = 0.3
MIN_TOKEN_LENGTH = 3


def tokenize(text: str) -> list[str]:
    """Lower-cased words longer than two characters."""
    return [word for word in re.split(r"\s+", text.lower()) if len(word) >= MIN_TOKEN_LENGTH]


def check_coherence(
    product_name: str,
    validation: Optional[CodeValidation],
    brand: Optional[str] = None,
) -> CoherenceCheck:
    """
    Compare the user's product name with what validation sources say.

    The score is the fraction of name tokens found in the combined source
    text; below 0.3 the name is flagged as incoherent. Advisory only.
    """
    if validation is None or not validation.sources:
        return CoherenceCheck(
            coherence_score=0.0,
            is_coherent=False,
            issues=["No validation data available"],
        )

    source_text = " ".join(f"{s.title} {s.content}" for s in validation.sources).lower()
    tokens = tokenize(product_name)
    issues: list[str] = []

    found = sum(1 for token in tokens if token in source_text)
    score = found / len(tokens) if tokens else 0.0
    brand_match = bool(brand) and any(token in source_text for token in tokenize(brand))

    is_coherent = score >= COHERENCE_THRESHOLD
    if not is_coherent:
        issues.append("Product name does not match code validation data")

    return CoherenceCheck(
        name_match=found > 0,
        brand_match=brand_match,
        coherence_score=round(score, 4),
        is_coherent=is_coherent,
        issues=issues,
    )


class ContextEnricher:
    """
    Gathers web-search grounding for one product.

    Example:
        >>> enricher = ContextEnricher(search_service)
        >>> context = await enricher.enrich_context(product)
        >>> context.snippets(3)
    """

    def __init__(self, search_service: SearchService):
        self.search_service = search_service

    async def enrich_context(self, product: ProductReference) -> EnrichedContext:
        errors: list[str] = []
        if product.is_code:
            validation = await self.validate_code(product.identifier, errors)
            coherence = check_coherence(product.name, validation)
            results = await self._enhanced_search(product, errors)
            if not coherence.is_coherent:
                logger.info(
                    "Product name looks incoherent with code sources",
                    product_id=product.identifier,
                    coherence_score=coherence.coherence_score,
                )
            context = EnrichedContext(
                product_id=product.identifier,
                kind=product.kind,
                code_validation=validation,
                coherence=coherence,
                search_results=results,
                errors=errors,
            )
        else:
            query = NAME_QUERY.format(name=product.name)
            results = await self._search(query, RESULTS_PER_QUERY, errors)
            context = EnrichedContext(
                product_id=product.identifier,
                kind=product.kind,
                search_results=results,
                errors=errors,
            )

        logger.info(
            "Context enriched",
            product_id=product.identifier,
            kind=product.kind,
            results=len(context.search_results),
            errors=len(errors),
        )
        return context

    async def validate_code(self, code: str, errors: Optional[list[str]] = None) -> CodeValidation:
        """Search specialized sources for the code."""
        errors = errors if errors is not None else []
        query = VALIDATION_QUERY.format(code=code)
        try:
            response = await self.search_service.search(query, VALIDATION_RESULTS)
        except Exception as e:
            logger.warning("Code validation search failed", code=code, error=str(e))
            errors.append(f"validation: {e}")
            return CodeValidation(code=code, is_valid=False, error=str(e))

        sources = [
            ValidationSource(
                title=result.title,
                url=result.url,
                content=result.content[:SOURCE_SNIPPET_CHARS],
            )
            for result in response.results
        ]
        return CodeValidation(code=code, is_valid=is_valid_code(code), sources=sources)

    async def _enhanced_search(
        self,
        product: ProductReference,
        errors: list[str],
    ) -> list[WebSearchResult]:
        seen: set[str] = set()
        merged: list[WebSearchResult] = []
        for template in ENHANCED_QUERIES:
            query = template.format(code=product.identifier, name=product.name)
            for result in await self._search(query, RESULTS_PER_QUERY, errors):
                if result.url in seen:
                    continue
                seen.add(result.url)
                merged.append(result)
        return merged[:MAX_ENHANCED_RESULTS]

    async def _search(self, query: str, max_results: int, errors: list[str]) -> list[WebSearchResult]:
        try:
            response = await self.search_service.search(query, max_results)
        except Exception as e:
            logger.warning("Enrichment search failed", query=query, error=str(e))
            errors.append(f"search: {e}")
            return []
        return list(response.results[:max_results])


__all__ = ["ContextEnricher", "check_coherence", "tokenize", "COHERENCE_THRESHOLD"]
