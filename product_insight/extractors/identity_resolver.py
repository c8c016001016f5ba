"""
Product code identity resolution.

Given a 13-digit retail product code, this module finds web pages that
mention the exact code, extracts a product identity (name, brand, category)
from each page and ranks the resulting candidates for human confirmation.

Features:
    - Local checksum rejection before any network call
    - Targeted search queries against specialized lookup sites
    - JSON-LD Product markup preferred over title / meta heuristics
    - Deduplication by (name, source domain), first occurrence wins
    - Deterministic weighted scoring, computed after full collection
    - Caller-owned cache of confirmed identities

Example:
    >>> resolver = IdentityResolver(search_service, page_fetcher)
    >>> candidates = await resolver.resolve_candidates("3017620422003")
    >>> for c in candidates:
    ...     print(c.score, c.name, c.source_domain)
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from bs4 import BeautifulSoup

from product_insight.config.settings import Settings, get_settings
from product_insight.models.schemas import IdentityCandidate, WebSearchResult
from product_insight.services.page_fetcher import FetchError, PageFetcher, domain_of
from product_insight.services.search_service import SearchError, SearchService
from product_insight.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

EAN13_PATTERN = re.compile(r"^\d{13}$")

RESOLUTION_QUERIES = [
    '"{code}" site:eandata.com OR site:barcodelookup.com OR site:upcitemdb.com',
    '"{code}" "gtin13" OR "ean13"',
    '"{code}" "fiche technique" OR "caractéristiques" OR "specifications"',
]
RESULTS_PER_QUERY = 5

TRUSTED_DOMAINS = (
    "eandata.com",
    "barcodelookup.com",
    "upcitemdb.com",
    "openfoodfacts.org",
)

# GS1 country prefixes and the territory words that corroborate them
REGION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "54": ("belgique", "belgium", "belgië", "luxembourg"),
    "76": ("suisse", "switzerland", "schweiz", "svizzera"),
    "87": ("nederland", "netherlands", "holland"),
    "84": ("españa", "espana", "spain"),
    "80": ("italia", "italy"),
    "50": ("united kingdom", "uk", "britain"),
}

MIN_CANDIDATE_SCORE = 0.6
MAX_CANDIDATES = 3

PRODUCT_TYPES = {"Product", "IndividualProduct", "ProductModel"}
TITLE_SUFFIX = re.compile(r"\s+[-|–—]\s+[^-|–—]*$")


# =============================================================================
# Checksum
# =============================================================================

def is_valid_code(code: str) -> bool:
    """
    Validate a 13-digit retail code's check digit.

    Digits 0..11 are weighted 1 (even index) or 3 (odd index); the check
    digit is ``(10 - sum % 10) % 10`` and must equal digit 12.
    """
    if not isinstance(code, str) or not EAN13_PATTERN.match(code):
        return False
    total = sum(int(digit) * (1 if i % 2 == 0 else 3) for i, digit in enumerate(code[:12]))
    return (10 - total % 10) % 10 == int(code[12])


def code_on_page(html: str, code: str) -> bool:
    """True when ``code`` appears as a whole word in the page."""
    return re.search(rf"\b{re.escape(code)}\b", html, re.IGNORECASE) is not None


# =============================================================================
# Page Extraction
# =============================================================================

@dataclass
class ExtractedIdentity:
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None


def _as_text(value: Any) -> Optional[str]:
    """Flatten JSON-LD values (str, {"name": ...}, lists) to a string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        return _as_text(value.get("name"))
    if isinstance(value, list):
        for item in value:
            text = _as_text(item)
            if text:
                return text
        return None
    return str(value).strip() or None


class PageExtractor:
    """Extracts a product identity from one HTML page."""

    @classmethod
    def extract(cls, html: str) -> ExtractedIdentity:
        soup = BeautifulSoup(html, "html.parser")
        product = cls._first_json_ld_product(soup)

        identity = ExtractedIdentity()
        if product:
            identity.name = _as_text(product.get("name"))
            identity.brand = _as_text(product.get("brand"))
            identity.category = _as_text(product.get("category"))

        if not identity.name:
            identity.name = cls._title_name(soup)
        if not identity.brand:
            identity.brand = cls._meta_brand(soup)
        return identity

    @classmethod
    def _first_json_ld_product(cls, soup: BeautifulSoup) -> Optional[dict[str, Any]]:
        for script in soup.find_all("script", type="application/ld+json"):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            found = cls._find_products(data)
            if found:
                return found[0]
        return None

    @classmethod
    def _find_products(cls, data: Any) -> list[dict[str, Any]]:
        products: list[dict[str, Any]] = []
        if isinstance(data, list):
            for item in data:
                products.extend(cls._find_products(item))
        elif isinstance(data, dict):
            item_type = data.get("@type")
            candidates = item_type if isinstance(item_type, list) else [item_type]
            types = {t for t in candidates if isinstance(t, str)}
            if types & PRODUCT_TYPES:
                products.append(data)
            if "@graph" in data:
                products.extend(cls._find_products(data["@graph"]))
        return products

    @staticmethod
    def _title_name(soup: BeautifulSoup) -> Optional[str]:
        if not soup.title or not soup.title.string:
            return None
        title = soup.title.string.strip()
        stripped = TITLE_SUFFIX.sub("", title).strip()
        return stripped or title or None

    @staticmethod
    def _meta_brand(soup: BeautifulSoup) -> Optional[str]:
        tag = soup.find("meta", attrs={"property": "product:brand"}) or soup.find(
            "meta", attrs={"name": "brand"}
        )
        if tag and tag.get("content"):
            return tag["content"].strip() or None
        return None


# =============================================================================
# Scoring and Deduplication
# =============================================================================

class CandidateScorer:
    """Deterministic weighted score for identity candidates."""

    WEIGHTS = {
        "name": 0.2,
        "code_on_page": 0.5,
        "trusted_domain": 0.2,
        "brand": 0.1,
        "category": 0.1,
        "region": 0.1,
    }

    @staticmethod
    def is_trusted(domain: str) -> bool:
        domain = domain.lower()
        return any(trusted in domain for trusted in TRUSTED_DOMAINS)

    @staticmethod
    def region_matches(candidate: IdentityCandidate, code: str) -> bool:
        keywords = REGION_KEYWORDS.get(code[:2])
        if not keywords:
            return False
        haystack = f"{candidate.name} {candidate.brand or ''}".lower()
        return any(re.search(rf"\b{re.escape(word)}\b", haystack) for word in keywords)

    @classmethod
    def score(cls, candidate: IdentityCandidate, code: str) -> float:
        """Score in [0, 1]; depends only on the candidate's attributes and the code."""
        total = 0.0
        if candidate.name:
            total += cls.WEIGHTS["name"]
        if candidate.matched_on_source:
            total += cls.WEIGHTS["code_on_page"]
        if cls.is_trusted(candidate.source_domain):
            total += cls.WEIGHTS["trusted_domain"]
        if candidate.brand:
            total += cls.WEIGHTS["brand"]
        if candidate.category:
            total += cls.WEIGHTS["category"]
        if cls.region_matches(candidate, code):
            total += cls.WEIGHTS["region"]
        return round(min(total, 1.0), 4)


def score_candidate(candidate: IdentityCandidate, code: str) -> float:
    return CandidateScorer.score(candidate, code)


def deduplicate_candidates(candidates: Iterable[IdentityCandidate]) -> list[IdentityCandidate]:
    """Drop repeats of (lower-cased name, source domain); first occurrence wins."""
    seen: set[tuple[str, str]] = set()
    unique: list[IdentityCandidate] = []
    for candidate in candidates:
        key = (candidate.name.lower(), candidate.source_domain.lower())
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def rank_candidates(candidates: Iterable[IdentityCandidate], code: str) -> list[IdentityCandidate]:
    """Score, filter below the threshold, sort descending and keep the best few."""
    scored = [c.model_copy(update={"score": score_candidate(c, code)}) for c in candidates]
    kept = [c for c in scored if c.score >= MIN_CANDIDATE_SCORE]
    kept.sort(key=lambda c: c.score, reverse=True)
    return kept[:MAX_CANDIDATES]


# =============================================================================
# Confirmed Identity Cache
# =============================================================================

class ConfirmedIdentityCache:
    """
    Codes a human has confirmed, mapped to the confirmed product name.

    Owned by the caller; the resolver only reads it. Persistence is explicit
    through ``load`` / ``save``.
    """

    def __init__(self, entries: Optional[dict[str, str]] = None):
        self._entries: dict[str, str] = dict(entries or {})

    def get(self, code: str) -> Optional[str]:
        return self._entries.get(code)

    def confirm(self, code: str, name: str) -> None:
        self._entries[code] = name

    def forget(self, code: str) -> None:
        self._entries.pop(code, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, code: object) -> bool:
        return code in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> dict[str, str]:
        return dict(self._entries)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ConfirmedIdentityCache":
        path = Path(path)
        if not path.exists():
            return cls()
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Identity cache at {path} is not a JSON object")
        return cls({str(k): str(v) for k, v in data.items()})

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self._entries, indent=2, ensure_ascii=False), encoding="utf-8")


# =============================================================================
# Resolver
# =============================================================================

class IdentityResolver:
    """Resolves a product code to ranked identity candidates."""

    def __init__(
        self,
        search_service: SearchService,
        page_fetcher: PageFetcher,
        settings: Optional[Settings] = None,
    ):
        self.search_service = search_service
        self.page_fetcher = page_fetcher
        self.settings = settings or get_settings()

    async def resolve_candidates(
        self,
        code: str,
        cache: Optional[ConfirmedIdentityCache] = None,
    ) -> list[IdentityCandidate]:
        """
        Find and rank identity candidates for ``code``.

        Args:
            code: 13-digit product code.
            cache: Confirmed identities owned by the caller.

        Returns:
            Up to three candidates scoring at least 0.6, best first. An
            invalid checksum or a fruitless search yields an empty list.
        """
        code = (code or "").strip()
        if not is_valid_code(code):
            logger.info("Rejected product code", code=code, reason="checksum")
            return []

        if cache is not None:
            confirmed = cache.get(code)
            if confirmed:
                logger.info("Identity cache hit", code=code)
                return [
                    IdentityCandidate(
                        name=confirmed,
                        source_url="",
                        source_domain="cache",
                        matched_on_source=True,
                        score=1.0,
                    )
                ]

        collected: list[IdentityCandidate] = []
        for template in RESOLUTION_QUERIES:
            collected.extend(await self._collect_for_query(template.format(code=code), code))

        ranked = rank_candidates(deduplicate_candidates(collected), code)
        logger.info(
            "Identity resolution finished",
            code=code,
            collected=len(collected),
            returned=len(ranked),
        )
        return ranked

    async def _collect_for_query(self, query: str, code: str) -> list[IdentityCandidate]:
        try:
            response = await self.search_service.search(query, RESULTS_PER_QUERY)
        except SearchError as e:
            logger.warning("Resolution search failed", query=query, error=str(e))
            return []
        except Exception as e:
            logger.warning("Unexpected resolution search failure", query=query, error=str(e))
            return []

        extracted = await asyncio.gather(
            *(self._candidate_from_result(result, code) for result in response.results)
        )
        return [candidate for candidate in extracted if candidate is not None]

    async def _candidate_from_result(
        self,
        result: WebSearchResult,
        code: str,
    ) -> Optional[IdentityCandidate]:
        if not result.url:
            return None
        try:
            page = await self.page_fetcher.fetch_page(result.url)
        except FetchError as e:
            logger.debug("Skipping page", url=result.url, error=str(e))
            return None
        except Exception as e:
            logger.warning("Unexpected page fetch failure", url=result.url, error=str(e))
            return None

        try:
            identity = PageExtractor.extract(page.html)
            if not identity.name:
                return None
            return IdentityCandidate(
                name=identity.name,
                brand=identity.brand,
                category=identity.category,
                source_url=page.final_url or result.url,
                source_domain=page.domain or domain_of(result.url),
                matched_on_source=code_on_page(page.html, code),
            )
        except Exception as e:
            logger.warning("Page extraction failed", url=result.url, error=str(e))
            return None


__all__ = [
    "IdentityResolver",
    "ConfirmedIdentityCache",
    "CandidateScorer",
    "PageExtractor",
    "ExtractedIdentity",
    "is_valid_code",
    "code_on_page",
    "score_candidate",
    "deduplicate_candidates",
    "rank_candidates",
    "TRUSTED_DOMAINS",
    "REGION_KEYWORDS",
    "MIN_CANDIDATE_SCORE",
    "MAX_CANDIDATES",
]
