"""
Page fetch service for product lookup sources.

Fetches HTML pages from a fixed allowlist of product-code lookup domains.
Requests to other hosts, non-HTML responses and oversized bodies are
rejected with ``FetchError`` before any content reaches the resolver.
Bodies are streamed so an oversized page is cut off at the size limit
instead of being read whole.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

import httpx

from product_insight.config.settings import Settings, get_settings
from product_insight.models.schemas import FetchedPage
from product_insight.utils.logger import get_logger
from product_insight.utils.retry import NetworkError

logger = get_logger(__name__)


BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,fr;q=0.8",
}


class FetchError(NetworkError):
    """A page could not be fetched or was rejected."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def domain_of(url: str) -> str:
    """Lower-cased host of ``url`` without a leading ``www.``."""
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def is_domain_allowed(domain: str, allowed: list[str]) -> bool:
    """Exact match or a subdomain of an allowlisted domain."""
    domain = domain.lower()
    return any(domain == entry or domain.endswith("." + entry) for entry in allowed)


class PageFetcher:
    """
    Allowlisted HTML fetcher.

    Example:
        >>> async with PageFetcher() as fetcher:
        ...     page = await fetcher.fetch_page("https://www.upcitemdb.com/upc/3017620422003")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.allowed_domains = self.settings.allowed_fetch_domains
        self.max_bytes = self.settings.max_html_bytes
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers=BROWSER_HEADERS,
            follow_redirects=True,
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(self.settings.search_timeout_seconds),
                write=10.0,
                pool=5.0,
            ),
        )

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch_page(self, url: str) -> FetchedPage:
        """
        Fetch one HTML page.

        Raises:
            FetchError: Host not allowlisted, non-2xx status, non-HTML
                content type, body larger than the configured limit, or a
                transport failure.
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise FetchError(f"Unsupported URL scheme: {parsed.scheme!r}", url=url)

        domain = domain_of(url)
        if not is_domain_allowed(domain, self.allowed_domains):
            raise FetchError(f"Domain not allowed: {domain}", url=url)

        try:
            async with self.client.stream("GET", url, headers=BROWSER_HEADERS) as response:
                if not response.is_success:
                    raise FetchError(
                        f"Upstream returned {response.status_code}",
                        url=url,
                        status_code=response.status_code,
                    )

                content_type = response.headers.get("content-type", "")
                if "text/html" not in content_type.lower():
                    raise FetchError(
                        f"Unsupported content type: {content_type or 'unknown'}", url=url
                    )

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.max_bytes:
                    raise FetchError(
                        f"Page too large: {declared} bytes declared",
                        url=url,
                        status_code=response.status_code,
                    )

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise FetchError(
                            f"Page too large: over {self.max_bytes} bytes",
                            url=url,
                            status_code=response.status_code,
                        )

                final_url = str(response.url)
                status = response.status_code
                html = bytes(body).decode(response.charset_encoding or "utf-8", errors="replace")
        except httpx.HTTPError as e:
            raise FetchError(f"Fetch failed: {e}", url=url) from e

        logger.debug("Page fetched", url=url, final_url=final_url, bytes=len(body))
        return FetchedPage(
            html=html,
            final_url=final_url,
            domain=domain_of(final_url) or domain,
            status=status,
        )


__all__ = ["PageFetcher", "FetchError", "domain_of", "is_domain_allowed", "BROWSER_HEADERS"]
