"""
Generative chat services used by the analysis tasks.

Two interchangeable backends implement the same ``chat`` contract:

    - OllamaChatService: Ollama cloud ``/chat`` endpoint over httpx
    - ClaudeChatService: Anthropic Messages API via ``anthropic.AsyncAnthropic``

Both support an awaited full-string mode and an incremental mode where each
text chunk is handed to an ``on_chunk`` callback as it arrives. Neither
retries on its own: a single call is a single attempt, and the resilient
task executor owns the retry policy.

Failures surface as ``BackendError``; rejected credentials surface as the
``UnauthorizedError`` subtype so callers can stop retrying.

Example:
    >>> service = create_chat_service(settings)
    >>> async with service:
    ...     text = await service.chat(settings.active_model, messages)
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import anthropic
import httpx
from anthropic import APIError, APIStatusError

from product_insight.config.settings import Settings, get_settings
from product_insight.utils.logger import get_logger
from product_insight.utils.retry import AuthorizationError, NetworkError

logger = get_logger(__name__)

ChunkCallback = Callable[[str], None]
Message = dict[str, str]

AUTH_STATUS_CODES = (401, 403)


# =============================================================================
# Custom Exceptions
# =============================================================================

class BackendError(NetworkError):
    """The generative backend failed to answer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(BackendError, AuthorizationError):
    """The backend rejected (or we never had) a credential."""
    pass


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ChatUsage:
    """Running counters for one chat service instance."""
    requests: int = 0
    failures: int = 0
    total_seconds: float = 0.0
    models: dict[str, int] = field(default_factory=dict)

    def record(self, model: str, elapsed: float, ok: bool) -> None:
        self.requests += 1
        self.total_seconds += elapsed
        self.models[model] = self.models.get(model, 0) + 1
        if not ok:
            self.failures += 1


# =============================================================================
# Base Service
# =============================================================================

class ChatService(ABC):
    """Abstract generative chat backend."""

    name: str = "base"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.usage = ChatUsage()

    async def __aenter__(self) -> "ChatService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    @abstractmethod
    def default_model(self) -> str:
        ...

    @abstractmethod
    async def _complete(
        self,
        model: str,
        messages: list[Message],
        on_chunk: Optional[ChunkCallback],
    ) -> str:
        ...

    async def close(self) -> None:
        logger.info(
            "Chat service closed",
            backend=self.name,
            requests=self.usage.requests,
            failures=self.usage.failures,
        )

    async def chat(
        self,
        model: Optional[str],
        messages: list[Message],
        on_chunk: Optional[ChunkCallback] = None,
    ) -> str:
        """
        Send a conversation and return the assistant's full reply.

        Args:
            model: Model name; the backend default when empty.
            messages: ``{"role", "content"}`` dicts, system messages included.
            on_chunk: Called with each text fragment when streaming.

        Raises:
            UnauthorizedError: Missing or rejected credential.
            BackendError: Any other backend or transport failure.
        """
        model = model or self.default_model
        start = time.monotonic()
        ok = False
        try:
            text = await self._complete(model, messages, on_chunk)
            ok = True
            return text
        finally:
            elapsed = time.monotonic() - start
            self.usage.record(model, elapsed, ok)
            logger.debug(
                "Chat call finished",
                backend=self.name,
                model=model,
                ok=ok,
                elapsed_seconds=f"{elapsed:.2f}",
                streaming=on_chunk is not None,
            )

    def get_usage_stats(self) -> dict[str, Any]:
        return {
            "backend": self.name,
            "total_requests": self.usage.requests,
            "failed_requests": self.usage.failures,
            "total_seconds": round(self.usage.total_seconds, 3),
            "requests_by_model": dict(self.usage.models),
        }


# =============================================================================
# Ollama Cloud
# =============================================================================

class OllamaChatService(ChatService):
    """
    Chat over the Ollama cloud API.

    Non-streaming calls read ``message.content`` from a single JSON body.
    Streaming calls read newline-delimited JSON chunks until ``done``.
    """

    name = "ollama"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(settings)
        key = self.settings.ollama_api_key
        self._api_key = api_key or (key.get_secret_value() if key else None)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.settings.ollama_base_url,
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(self.settings.request_timeout_seconds),
                write=10.0,
                pool=5.0,
            ),
        )

    @property
    def default_model(self) -> str:
        return self.settings.chat_model

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _check_status(status_code: int, body: str) -> None:
        if status_code in AUTH_STATUS_CODES:
            raise UnauthorizedError(
                f"Ollama API error: {status_code} unauthorized", status_code=status_code
            )
        if status_code >= 400:
            raise BackendError(
                f"Ollama API error: {status_code} {body[:200]}", status_code=status_code
            )

    async def _complete(
        self,
        model: str,
        messages: list[Message],
        on_chunk: Optional[ChunkCallback],
    ) -> str:
        if not self._api_key:
            raise UnauthorizedError("No API key configured for Ollama")

        payload = {"model": model, "messages": messages, "stream": on_chunk is not None}
        try:
            if on_chunk is None:
                response = await self.client.post("/chat", json=payload, headers=self._headers())
                self._check_status(response.status_code, response.text)
                body = response.json()
                if body.get("error"):
                    raise BackendError(f"Ollama API error: {body['error']}")
                return (body.get("message") or {}).get("content", "")

            parts: list[str] = []
            async with self.client.stream(
                "POST", "/chat", json=payload, headers=self._headers()
            ) as response:
                if response.status_code >= 400:
                    raw = await response.aread()
                    self._check_status(response.status_code, raw.decode("utf-8", "replace"))
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    chunk = json.loads(line)
                    if chunk.get("error"):
                        raise BackendError(f"Ollama API error: {chunk['error']}")
                    text = (chunk.get("message") or {}).get("content", "")
                    if text:
                        parts.append(text)
                        on_chunk(text)
                    if chunk.get("done"):
                        break
            return "".join(parts)

        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise BackendError(f"Ollama transport error: {e}") from e
        except ValueError as e:
            raise BackendError(f"Ollama returned an unreadable body: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
        await super().close()


# =============================================================================
# Anthropic Claude
# =============================================================================

class ClaudeChatService(ChatService):
    """Chat over the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        super().__init__(settings)
        key = self.settings.anthropic_api_key
        self._api_key = api_key or (key.get_secret_value() if key else None)
        self.client = client
        if self.client is None and self._api_key:
            self.client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=float(self.settings.request_timeout_seconds),
                max_retries=0,
            )

    @property
    def default_model(self) -> str:
        return self.settings.claude_model

    @staticmethod
    def _split_system(messages: list[Message]) -> tuple[str, list[Message]]:
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        conversation = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m.get("role") != "system"
        ]
        return system, conversation

    async def _complete(
        self,
        model: str,
        messages: list[Message],
        on_chunk: Optional[ChunkCallback],
    ) -> str:
        if self.client is None:
            raise UnauthorizedError("No API key configured for Anthropic")

        system, conversation = self._split_system(messages)
        request = dict(
            model=model,
            max_tokens=self.settings.claude_max_tokens,
            temperature=self.settings.analysis_temperature,
            system=system,
            messages=conversation,
        )
        try:
            if on_chunk is None:
                response = await self.client.messages.create(**request)
                return response.content[0].text if response.content else ""

            parts: list[str] = []
            async with self.client.messages.stream(**request) as stream:
                async for text in stream.text_stream:
                    parts.append(text)
                    on_chunk(text)
            return "".join(parts)

        except APIStatusError as e:
            if e.status_code in AUTH_STATUS_CODES:
                logger.error("Authentication failed", backend=self.name, status_code=e.status_code)
                raise UnauthorizedError(f"Authentication failed: {e}", status_code=e.status_code) from e
            raise BackendError(f"API error: {e}", status_code=e.status_code) from e
        except APIError as e:
            raise BackendError(f"API error: {e}") from e

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
        await super().close()


# =============================================================================
# Convenience Functions
# =============================================================================

def create_chat_service(settings: Optional[Settings] = None) -> ChatService:
    """
    Factory function to create the configured chat backend.

    Args:
        settings: Optional settings override

    Returns:
        ChatService for ``settings.llm_provider``
    """
    settings = settings or get_settings()
    if settings.llm_provider == "anthropic":
        return ClaudeChatService(settings=settings)
    return OllamaChatService(settings=settings)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "ChatService",
    "OllamaChatService",
    "ClaudeChatService",
    "create_chat_service",
    "ChatUsage",
    "BackendError",
    "UnauthorizedError",
]
