"""
Extractors module for the product insight engine.

Components:
    - IdentityResolver: Product code to ranked identity candidates
    - PageExtractor: Product name and brand from fetched HTML
    - CandidateScorer: Deterministic candidate scoring
    - ConfirmedIdentityCache: Codes confirmed by a human
    - ContextEnricher: Shared search context for the analysis tasks
"""

from product_insight.extractors.identity_resolver import (
    # Main class
    IdentityResolver,
    # Supporting classes
    PageExtractor,
    CandidateScorer,
    ConfirmedIdentityCache,
    ExtractedIdentity,
    # Functions
    is_valid_code,
    score_candidate,
    deduplicate_candidates,
    rank_candidates,
)
from product_insight.extractors.context_enricher import (
    ContextEnricher,
    check_coherence,
)

__all__ = [
    "IdentityResolver",
    "PageExtractor",
    "CandidateScorer",
    "ConfirmedIdentityCache",
    "ExtractedIdentity",
    "is_valid_code",
    "score_candidate",
    "deduplicate_candidates",
    "rank_candidates",
    "ContextEnricher",
    "check_coherence",
]
