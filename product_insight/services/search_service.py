"""
Multi-provider web search service.

This module provides a unified ``search(query, max_results)`` interface over
web search providers. Results are normalized to ``{title, url, content}``
triples regardless of which provider answered.

Features:
    - Abstract SearchProvider base class for extensibility
    - Ollama web search and SerpAPI Google providers with automatic failover
    - Caching with configurable TTL
    - Rate limiting and throttling
    - Transport retries via tenacity
    - Structured logging

Example:
    >>> async with SearchService() as service:
    ...     response = await service.search('"3017620422003" gtin13', max_results=5)
    ...     for hit in response.results:
    ...         print(hit.title, hit.url)
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from product_insight.config.settings import Settings, get_settings
from product_insight.models.schemas import WebSearchResponse, WebSearchResult
from product_insight.utils.logger import get_logger
from product_insight.utils.retry import NetworkError

logger = get_logger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class SearchError(NetworkError):
    """Web search failed; callers treat this as "no results"."""
    pass


class ProviderError(SearchError):
    """A single provider failed."""
    pass


class RateLimitError(ProviderError):
    """Provider rate limit exceeded."""
    pass


class ConfigurationError(ProviderError):
    """No provider has credentials."""
    pass


class ProviderStatus(str, Enum):
    """Provider health status."""
    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


# =============================================================================
# Cache Implementation
# =============================================================================

@dataclass
class CacheEntry:
    """Cache entry with TTL tracking."""
    data: Any
    created_at: datetime
    ttl_seconds: int
    hits: int = 0

    def is_expired(self) -> bool:
        """Check if cache entry has expired."""
        return datetime.now(timezone.utc) - self.created_at > timedelta(seconds=self.ttl_seconds)

    def get(self) -> Any:
        """Get cached data and increment hit counter."""
        self.hits += 1
        return self.data


class SearchCache:
    """Async-safe cache for search responses."""

    def __init__(self, max_size: int = 500, default_ttl: int = 3600):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._cache: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def make_key(provider: str, **kwargs) -> str:
        """Generate a unique cache key."""
        key_str = json.dumps({"provider": provider, **kwargs}, sort_keys=True)
        return hashlib.sha256(key_str.encode()).hexdigest()[:32]

    async def get(self, key: str) -> Optional[Any]:
        """Get cached value if exists and not expired."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._cache[key]
                return None
            return entry.get()

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set cache value with optional custom TTL."""
        async with self._lock:
            if len(self._cache) >= self.max_size:
                evict_count = max(1, len(self._cache) // 4)
                oldest = sorted(self._cache.items(), key=lambda x: x[1].created_at)[:evict_count]
                for k, _ in oldest:
                    del self._cache[k]

            self._cache[key] = CacheEntry(
                data=value,
                created_at=datetime.now(timezone.utc),
                ttl_seconds=ttl or self.default_ttl,
            )

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._cache),
            "max_size": self.max_size,
            "total_hits": sum(e.hits for e in self._cache.values()),
        }


# =============================================================================
# Rate Limiter
# =============================================================================

class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, requests_per_second: float = 2.0):
        self.rate = requests_per_second
        self.tokens = requests_per_second
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """
        Acquire permission to make a request.

        Returns wait time in seconds (0 if immediate).
        """
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens >= 1:
                self.tokens -= 1
                return 0.0
            wait_time = (1 - self.tokens) / self.rate
            await asyncio.sleep(wait_time)
            self.tokens = 0
            return wait_time


# =============================================================================
# Abstract Search Provider
# =============================================================================

TRANSIENT_HTTP_ERRORS = (httpx.TimeoutException, httpx.NetworkError)


class SearchProvider(ABC):
    """
    Abstract base class for search providers.

    Subclasses implement ``_request`` which performs exactly one HTTP call and
    returns normalized results; transient transport errors raised there are
    retried by tenacity before being converted to ``ProviderError``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or RateLimiter()
        self._client = client
        self._owns_client = client is None
        self._status = ProviderStatus.AVAILABLE
        self._last_error: Optional[str] = None
        self._request_count = 0
        self._error_count = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Check if provider is properly configured with API keys."""

    @property
    def status(self) -> ProviderStatus:
        return self._status

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=float(self.settings.search_timeout_seconds),
                    write=10.0,
                    pool=5.0,
                ),
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                ),
            )
            self._owns_client = True

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SearchProvider":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def _update_status(self, success: bool, error: Optional[str] = None) -> None:
        """Update provider status based on request result."""
        self._request_count += 1
        if success:
            self._error_count = 0
            self._status = ProviderStatus.AVAILABLE
            return
        self._error_count += 1
        self._last_error = error
        if self._error_count >= 3:
            if "rate limit" in (error or "").lower():
                self._status = ProviderStatus.RATE_LIMITED
            else:
                self._status = ProviderStatus.ERROR

    @abstractmethod
    async def _request(self, query: str, max_results: int) -> list[WebSearchResult]:
        """Perform one search request."""

    @retry(
        retry=retry_if_exception_type(TRANSIENT_HTTP_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _request_with_retry(self, query: str, max_results: int) -> list[WebSearchResult]:
        return await self._request(query, max_results)

    async def search(self, query: str, max_results: int = 5) -> WebSearchResponse:
        """
        Search the web.

        Raises:
            RateLimitError: Provider answered 429.
            ProviderError: Any other failure.
        """
        await self.rate_limiter.acquire()
        if self._client is None:
            await self.connect()

        start_time = time.monotonic()
        try:
            results = await self._request_with_retry(query, max_results)
        except httpx.HTTPStatusError as e:
            error_msg = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            self._update_status(False, error_msg)
            logger.warning("Search request failed", provider=self.name, error=error_msg)
            if e.response.status_code == 429:
                raise RateLimitError(f"{self.name} rate limit exceeded: {error_msg}") from e
            raise ProviderError(f"{self.name} error: {error_msg}") from e
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            self._update_status(False, str(e))
            logger.warning("Search request failed", provider=self.name, error=str(e))
            raise ProviderError(f"{self.name} error: {e}") from e

        self._update_status(True)
        logger.info(
            "Search completed",
            provider=self.name,
            query=query,
            results_count=len(results),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return WebSearchResponse(query=query, results=results[:max_results], provider=self.name)

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self._status.value,
            "configured": self.is_configured,
            "request_count": self._request_count,
            "error_count": self._error_count,
            "last_error": self._last_error,
        }


# =============================================================================
# Ollama Web Search Provider
# =============================================================================

class OllamaWebSearchProvider(SearchProvider):
    """Ollama cloud ``web_search`` endpoint."""

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def is_configured(self) -> bool:
        return self.settings.ollama_api_key is not None

    @property
    def endpoint(self) -> str:
        return self.settings.ollama_base_url.rstrip("/") + "/web_search"

    async def _request(self, query: str, max_results: int) -> list[WebSearchResult]:
        if not self.settings.ollama_api_key:
            raise ConfigurationError("Ollama API key not configured")
        response = await self._client.post(
            self.endpoint,
            json={"query": query, "max_results": max_results},
            headers={
                "Authorization": f"Bearer {self.settings.ollama_api_key.get_secret_value()}",
            },
        )
        response.raise_for_status()
        data = response.json()
        return [
            WebSearchResult(
                title=item.get("title") or "",
                url=item.get("url") or "",
                content=item.get("content") or "",
            )
            for item in data.get("results") or []
        ]


# =============================================================================
# SerpAPI Provider
# =============================================================================

class SerpAPIProvider(SearchProvider):
    """SerpAPI Google organic results."""

    BASE_URL = "https://serpapi.com/search"

    @property
    def name(self) -> str:
        return "serpapi"

    @property
    def is_configured(self) -> bool:
        return self.settings.serpapi_api_key is not None

    async def _request(self, query: str, max_results: int) -> list[WebSearchResult]:
        if not self.settings.serpapi_api_key:
            raise ConfigurationError("SerpAPI API key not configured")
        params = {
            "engine": "google",
            "q": query,
            "num": max_results,
            "api_key": self.settings.serpapi_api_key.get_secret_value(),
        }
        response = await self._client.get(self.BASE_URL, params=params)
        response.raise_for_status()
        data = response.json()
        return [
            WebSearchResult(
                title=item.get("title") or "",
                url=item.get("link") or "",
                content=item.get("snippet") or "",
            )
            for item in data.get("organic_results") or []
        ]


PROVIDER_CLASSES: dict[str, type[SearchProvider]] = {
    "ollama": OllamaWebSearchProvider,
    "serpapi": SerpAPIProvider,
}


# =============================================================================
# Search Service
# =============================================================================

class SearchService:
    """
    Unified search service orchestrating multiple providers.

    Features:
        - Automatic failover between providers
        - Shared response cache keyed by query and result count
        - Shared rate limiting

    Example:
        >>> async with SearchService() as service:
        ...     response = await service.search("wireless mouse specifications", 3)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        providers: Optional[list[SearchProvider]] = None,
        enable_cache: Optional[bool] = None,
    ):
        self.settings = settings or get_settings()
        if enable_cache is None:
            enable_cache = self.settings.cache_enabled
        self.cache = SearchCache(default_ttl=self.settings.cache_ttl_seconds) if enable_cache else None
        self._rate_limiter = RateLimiter(
            requests_per_second=max(self.settings.max_requests_per_minute / 60.0, 0.1)
        )
        self._providers: list[SearchProvider] = list(providers or [])
        self._initialized = bool(providers)

    async def _init_providers(self) -> None:
        """Initialize and configure providers in preference order."""
        if self._initialized:
            return

        for name in self.settings.get_search_providers():
            provider = PROVIDER_CLASSES[name](
                settings=self.settings,
                rate_limiter=self._rate_limiter,
            )
            await provider.connect()
            self._providers.append(provider)
            logger.info("Search provider initialized", provider=name)

        if not self._providers:
            raise ConfigurationError(
                "No search providers configured. Set OLLAMA_API_KEY or SERPAPI_API_KEY"
            )
        self._initialized = True

    async def __aenter__(self) -> "SearchService":
        await self._init_providers()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close all provider connections."""
        for provider in self._providers:
            await provider.disconnect()
        self._providers.clear()
        self._initialized = False

    def _get_available_providers(self) -> list[SearchProvider]:
        available = [p for p in self._providers if p.status == ProviderStatus.AVAILABLE]
        # A fully degraded pool still gets tried rather than failing outright
        return available or list(self._providers)

    async def _try_providers(self, query: str, max_results: int) -> WebSearchResponse:
        """Try providers in order, failing over on error."""
        last_error: Optional[Exception] = None
        for provider in self._get_available_providers():
            try:
                return await provider.search(query, max_results)
            except RateLimitError as e:
                logger.warning("Provider rate limited, trying next", provider=provider.name, error=str(e))
                last_error = e
            except ProviderError as e:
                logger.warning("Provider error, trying next", provider=provider.name, error=str(e))
                last_error = e
        raise SearchError(f"All providers failed: {last_error}")

    async def search(self, query: str, max_results: int = 5) -> WebSearchResponse:
        """
        Search the web with failover across providers.

        Args:
            query: Search query string
            max_results: Upper bound on returned results

        Returns:
            WebSearchResponse with at most ``max_results`` results

        Raises:
            SearchError: No provider configured or all providers failed.
        """
        await self._init_providers()

        cache_key = SearchCache.make_key("search", query=query, max_results=max_results)
        if self.cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached.model_copy(update={"cached": True})

        response = await self._try_providers(query, max_results)
        if self.cache:
            await self.cache.set(cache_key, response)
        return response

    def get_stats(self) -> dict[str, Any]:
        return {
            "providers": [p.get_stats() for p in self._providers],
            "cache": self.cache.get_stats() if self.cache else None,
        }


# =============================================================================
# Factory Function
# =============================================================================

async def create_search_service(settings: Optional[Settings] = None) -> SearchService:
    """Create and initialize a search service."""
    service = SearchService(settings=settings)
    await service._init_providers()
    return service


__all__ = [
    "SearchService",
    "create_search_service",
    "SearchProvider",
    "OllamaWebSearchProvider",
    "SerpAPIProvider",
    "SearchCache",
    "RateLimiter",
    "ProviderStatus",
    "SearchError",
    "ProviderError",
    "RateLimitError",
    "ConfigurationError",
]
