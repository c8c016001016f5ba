"""Pipeline module for the product insight engine."""

from product_insight.pipeline.orchestrator import (
    ProductAnalysisOrchestrator,
    AnalysisStateDict,
    ProgressCallback,
    create_orchestrator,
    analyze_product,
)

__all__ = [
    "ProductAnalysisOrchestrator",
    "AnalysisStateDict",
    "ProgressCallback",
    "create_orchestrator",
    "analyze_product",
]
