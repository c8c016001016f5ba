import pytest
from pydantic import ValidationError

from product_insight.config.settings import Settings, get_settings


def test_defaults(settings_factory):
    settings = settings_factory(OLLAMA_API_KEY=None, SERPAPI_API_KEY=None)

    assert settings.llm_provider == "ollama"
    assert settings.chat_model == "gpt-oss:20b-cloud"
    assert settings.ollama_base_url == "https://ollama.com/api"
    assert settings.max_html_bytes == 2 * 1024 * 1024
    assert settings.active_model == "gpt-oss:20b-cloud"


def test_secrets_are_masked(settings):
    assert settings.ollama_api_key.get_secret_value() == "ollama-test-key"
    assert "ollama-test-key" not in repr(settings)


def test_anthropic_key_format_is_checked(settings_factory):
    with pytest.raises(ValidationError):
        settings_factory(ANTHROPIC_API_KEY="not-a-key")

    settings = settings_factory(ANTHROPIC_API_KEY="sk-ant-test", LLM_PROVIDER="anthropic")
    assert settings.anthropic_api_key.get_secret_value() == "sk-ant-test"
    assert settings.active_model == settings.claude_model


def test_empty_anthropic_key_is_none(settings_factory):
    assert settings_factory(ANTHROPIC_API_KEY="").anthropic_api_key is None


def test_max_retries_must_be_positive(settings_factory):
    with pytest.raises(ValidationError):
        settings_factory(MAX_RETRIES=0)


def test_search_providers_require_credentials(settings_factory):
    assert settings_factory().get_search_providers() == ["ollama", "serpapi"]
    assert settings_factory(SERPAPI_API_KEY=None).get_search_providers() == ["ollama"]
    assert settings_factory(SEARCH_PROVIDERS="serpapi, ollama").get_search_providers() == ["serpapi", "ollama"]
    assert settings_factory(OLLAMA_API_KEY=None, SERPAPI_API_KEY=None).get_search_providers() == []


def test_validate_backend(settings_factory):
    assert settings_factory().validate_backend() == []

    problems = settings_factory(OLLAMA_API_KEY=None, SERPAPI_API_KEY=None).validate_backend()
    assert "OLLAMA_API_KEY is not set" in problems
    assert "No web search provider has credentials" in problems

    problems = settings_factory(LLM_PROVIDER="anthropic").validate_backend()
    assert problems == ["ANTHROPIC_API_KEY is not set"]


def test_allowed_fetch_domains_from_csv(settings_factory):
    settings = settings_factory(FETCH_ALLOWED_DOMAINS="EANdata.com, upcitemdb.com,,")
    assert settings.allowed_fetch_domains == ["eandata.com", "upcitemdb.com"]


def test_default_allowlist(settings):
    assert "openfoodfacts.org" in settings.allowed_fetch_domains
    assert "gepir.gs1.org" in settings.allowed_fetch_domains


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("CHAT_MODEL", "llama3:8b")
    monkeypatch.setenv("MAX_RETRIES", "5")

    settings = Settings(_env_file=None)

    assert settings.chat_model == "llama3:8b"
    assert settings.max_retries == 5


def test_get_settings_is_cached(monkeypatch):
    monkeypatch.setenv("OLLAMA_API_KEY", "cached-key")
    first = get_settings()
    assert get_settings() is first
