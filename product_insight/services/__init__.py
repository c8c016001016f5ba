"""
Services package for the product insight engine.

Services:
    - ChatService: Generative backend (Ollama cloud or Anthropic Claude)
    - SearchService: Multi-provider web search with failover and caching
    - PageFetcher: Allowlisted HTML fetching
    - ValidationService: User input validation and bulk parsing
    - ResultPublisher: Queue in front of a ResultStore

Providers:
    - OllamaWebSearchProvider: Ollama web search API
    - SerpAPIProvider: Google organic results via SerpAPI
"""

from product_insight.services.llm_service import (
    ChatService,
    OllamaChatService,
    ClaudeChatService,
    ChatUsage,
    BackendError,
    UnauthorizedError,
    create_chat_service,
)
from product_insight.services.search_service import (
    # Service
    SearchService,
    create_search_service,
    # Providers
    SearchProvider,
    OllamaWebSearchProvider,
    SerpAPIProvider,
    ProviderStatus,
    # Utilities
    SearchCache,
    RateLimiter,
    # Exceptions
    SearchError,
    ProviderError,
    RateLimitError,
    ConfigurationError,
)
from product_insight.services.page_fetcher import PageFetcher, FetchError
from product_insight.services.validation_service import ValidationService
from product_insight.services.result_store import (
    ResultStore,
    InMemoryResultStore,
    ResultPublisher,
)

__all__ = [
    # Chat
    "ChatService",
    "OllamaChatService",
    "ClaudeChatService",
    "ChatUsage",
    "BackendError",
    "UnauthorizedError",
    "create_chat_service",
    # Search Service
    "SearchService",
    "create_search_service",
    "SearchProvider",
    "OllamaWebSearchProvider",
    "SerpAPIProvider",
    "ProviderStatus",
    "SearchCache",
    "RateLimiter",
    "SearchError",
    "ProviderError",
    "RateLimitError",
    "ConfigurationError",
    # Fetching
    "PageFetcher",
    "FetchError",
    # Validation
    "ValidationService",
    # Results
    "ResultStore",
    "InMemoryResultStore",
    "ResultPublisher",
]
