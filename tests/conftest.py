import pytest
from unittest.mock import AsyncMock, MagicMock

from product_insight.config.settings import Settings, get_settings
from product_insight.models.schemas import (
    ProductReference,
    WebSearchResponse,
    WebSearchResult,
)

# Environment variables read by Settings; cleared so a developer's shell or
# CI secrets never leak into a test
SETTINGS_ENV_VARS = (
    "OLLAMA_API_KEY",
    "ANTHROPIC_API_KEY",
    "SERPAPI_API_KEY",
    "APP_ENV",
    "DEBUG",
    "LOG_LEVEL",
    "LOG_FILE",
    "LLM_PROVIDER",
    "OLLAMA_BASE_URL",
    "CHAT_MODEL",
    "CLAUDE_MODEL",
    "MAX_RETRIES",
    "REQUEST_TIMEOUT_SECONDS",
    "SEARCH_PROVIDERS",
    "FETCH_ALLOWED_DOMAINS",
    "MAX_HTML_BYTES",
    "CACHE_ENABLED",
    "IDENTITY_CACHE_PATH",
)


def make_settings(**overrides) -> Settings:
    values = {
        "OLLAMA_API_KEY": "ollama-test-key",
        "SERPAPI_API_KEY": "serpapi-test-key",
        "ANTHROPIC_API_KEY": None,
        "REQUEST_TIMEOUT_SECONDS": 5,
        "MAX_RETRIES": 3,
        "CACHE_ENABLED": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate every test from the host environment and the settings cache."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def code_product():
    return ProductReference.from_input("4006381333931", "Stabilo Boss Original Highlighter")


@pytest.fixture
def name_product():
    return ProductReference.from_input("Wireless Mouse X200")


@pytest.fixture
def valid_outputs():
    """Minimal valid JSON output for every task."""
    return {
        "categorizer": {"main_category": "Office Supplies", "tags": ["highlighter", "stationery"]},
        "competitor": {"competitors": [{"name": "Pelikan"}], "market_position": "Premium"},
        "seo_optimizer": {"title_tags": ["Stabilo Boss Highlighter"], "keywords": {"primary": ["highlighter"]}},
        "trends": {"current_trends": ["Pastel colors"], "growth_prediction": "Stable"},
        "price_optimizer": {
            "recommended_price_range": {"min": 1.5, "max": 2.5, "optimal": 1.99},
            "pricing_strategy": "Competitive",
        },
        "content_enhancer": {
            "enhanced_title": "Stabilo Boss Original Highlighter, Yellow",
            "short_description": "The classic highlighter.",
        },
        "description_generator": {"descriptions": {"short": "The classic highlighter."}},
        "seo_generator": {"seo_title": "Stabilo Boss Highlighter", "meta_description": "Buy the classic."},
        "marketing_generator": {
            "marketing_messages": {"headline": "Make it stand out"},
            "value_propositions": ["Long lasting ink"],
        },
    }


@pytest.fixture
def mock_chat_service():
    """Chat service double; configure ``chat`` per test."""
    service = MagicMock()
    service.chat = AsyncMock(return_value='{"analysis": "ok"}')
    service.close = AsyncMock()
    return service


@pytest.fixture
def mock_search_service():
    """Search service double returning no results unless configured."""
    service = MagicMock()
    service.search = AsyncMock(
        side_effect=lambda query, max_results=5: WebSearchResponse(query=query, results=[])
    )
    service.close = AsyncMock()
    return service


@pytest.fixture
def search_hits():
    def build(*urls, content="Stabilo Boss Original highlighter yellow 4006381333931"):
        return [
            WebSearchResult(title=f"Result {i}", url=url, content=content)
            for i, url in enumerate(urls, start=1)
        ]
    return build
