"""
Application settings and configuration management.

This module handles all environment variables, API keys, and application
configuration using Pydantic settings management for type safety and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_FETCH_DOMAINS = [
    "eandata.com",
    "barcodelookup.com",
    "upcitemdb.com",
    "openfoodfacts.org",
    "world.openfoodfacts.org",
    "gs1.org",
    "gepir.gs1.org",
]


def _split_csv(value: str) -> list[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Keys
    ollama_api_key: Optional[SecretStr] = Field(default=None, alias="OLLAMA_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")
    serpapi_api_key: Optional[SecretStr] = Field(default=None, alias="SERPAPI_API_KEY")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    # Model Configuration
    llm_provider: Literal["ollama", "anthropic"] = Field(
        default="ollama",
        alias="LLM_PROVIDER"
    )
    ollama_base_url: str = Field(default="https://ollama.com/api", alias="OLLAMA_BASE_URL")
    chat_model: str = Field(default="gpt-oss:20b-cloud", alias="CHAT_MODEL")
    claude_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="CLAUDE_MODEL"
    )
    claude_max_tokens: int = Field(default=4000, alias="CLAUDE_MAX_TOKENS")
    analysis_temperature: float = Field(default=0.7, alias="ANALYSIS_TEMPERATURE")

    # Timeouts and Retries
    request_timeout_seconds: int = Field(default=60, alias="REQUEST_TIMEOUT_SECONDS")
    search_timeout_seconds: int = Field(default=30, alias="SEARCH_TIMEOUT_SECONDS")
    max_retries: int = Field(default=3, ge=1, alias="MAX_RETRIES")
    backoff_cap_seconds: float = Field(default=30.0, alias="BACKOFF_CAP_SECONDS")
    max_requests_per_minute: int = Field(default=60, alias="MAX_REQUESTS_PER_MINUTE")

    # Search Settings
    search_providers: str = Field(default="ollama,serpapi", alias="SEARCH_PROVIDERS")
    max_search_results: int = Field(default=5, alias="MAX_SEARCH_RESULTS")

    # Page Fetch Settings
    fetch_allowed_domains: str = Field(
        default=",".join(DEFAULT_FETCH_DOMAINS),
        alias="FETCH_ALLOWED_DOMAINS"
    )
    max_html_bytes: int = Field(default=2 * 1024 * 1024, alias="MAX_HTML_BYTES")

    # Cache Settings
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")
    cache_ttl_seconds: int = Field(default=3600, alias="CACHE_TTL_SECONDS")
    identity_cache_path: Optional[Path] = Field(default=None, alias="IDENTITY_CACHE_PATH")

    @field_validator("anthropic_api_key", mode="before")
    @classmethod
    def validate_anthropic_key(cls, v):
        """Validate Anthropic API key format."""
        if v and not str(v).startswith("sk-"):
            raise ValueError("Invalid Anthropic API key format")
        return v or None

    def validate_backend(self) -> list[str]:
        """Return a list of configuration problems for the selected backend."""
        problems = []
        if self.llm_provider == "ollama" and not self.ollama_api_key:
            problems.append("OLLAMA_API_KEY is not set")
        if self.llm_provider == "anthropic" and not self.anthropic_api_key:
            problems.append("ANTHROPIC_API_KEY is not set")
        if not self.get_search_providers():
            problems.append("No web search provider has credentials")
        return problems

    def get_search_providers(self) -> list[str]:
        """Configured search providers that have credentials, in preference order."""
        available = []
        for name in _split_csv(self.search_providers):
            if name == "ollama" and self.ollama_api_key:
                available.append(name)
            elif name == "serpapi" and self.serpapi_api_key:
                available.append(name)
        return available

    @property
    def allowed_fetch_domains(self) -> list[str]:
        return _split_csv(self.fetch_allowed_domains)

    @property
    def active_model(self) -> str:
        if self.llm_provider == "anthropic":
            return self.claude_model
        return self.chat_model


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
