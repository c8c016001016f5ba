"""
Product Insight Engine.

Analyzes a retail product, identified by a 13-digit product code or by
name, with nine concurrent generative tasks grounded on web search
context, using LangGraph, Ollama or Claude, and Ollama web search or SerpAPI.
"""

__version__ = "1.0.0"
__author__ = "Product Insight Team"

# Lazy imports to avoid circular dependencies
def get_orchestrator():
    """Get the ProductAnalysisOrchestrator class (lazy import)."""
    from product_insight.pipeline.orchestrator import ProductAnalysisOrchestrator
    return ProductAnalysisOrchestrator

__all__ = ["get_orchestrator", "__version__"]
