import json
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from product_insight.services.llm_service import (
    BackendError,
    ClaudeChatService,
    OllamaChatService,
    UnauthorizedError,
    create_chat_service,
)
from product_insight.utils.retry import AuthorizationError

MESSAGES = [
    {"role": "system", "content": "Respond with JSON only."},
    {"role": "user", "content": "Categorize this product."},
]


def ollama_service(settings, handler, api_key=None):
    client = httpx.AsyncClient(
        base_url=settings.ollama_base_url,
        transport=httpx.MockTransport(handler),
    )
    return OllamaChatService(settings=settings, api_key=api_key, client=client)


# =============================================================================
# Ollama
# =============================================================================

@pytest.mark.asyncio
async def test_ollama_chat_returns_message_content(settings):
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["auth"] = request.headers["authorization"]
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": '{"ok": true}'}})

    async with ollama_service(settings, handler) as service:
        text = await service.chat("gpt-oss:20b-cloud", MESSAGES)

    assert text == '{"ok": true}'
    assert captured["path"] == "/api/chat"
    assert captured["auth"] == "Bearer ollama-test-key"
    assert captured["payload"]["stream"] is False
    assert captured["payload"]["messages"] == MESSAGES
    assert service.get_usage_stats()["total_requests"] == 1


@pytest.mark.asyncio
async def test_ollama_uses_default_model_when_empty(settings):
    captured = {}

    def handler(request):
        captured["model"] = json.loads(request.content)["model"]
        return httpx.Response(200, json={"message": {"content": "x"}})

    async with ollama_service(settings, handler) as service:
        await service.chat("", MESSAGES)

    assert captured["model"] == settings.chat_model


@pytest.mark.asyncio
async def test_ollama_streaming_calls_on_chunk(settings):
    lines = [
        {"message": {"content": '{"main'}, "done": False},
        {"message": {"content": '_category": "Office"}'}, "done": False},
        {"message": {"content": ""}, "done": True},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\n"

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body.encode())

    chunks = []
    async with ollama_service(settings, handler) as service:
        text = await service.chat("gpt-oss:20b-cloud", MESSAGES, on_chunk=chunks.append)

    assert text == '{"main_category": "Office"}'
    assert chunks == ['{"main', '_category": "Office"}']


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_ollama_rejected_credentials(settings, status):
    async with ollama_service(settings, lambda request: httpx.Response(status, text="nope")) as service:
        with pytest.raises(UnauthorizedError) as exc_info:
            await service.chat("m", MESSAGES)

    assert isinstance(exc_info.value, AuthorizationError)
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_ollama_server_error(settings):
    async with ollama_service(settings, lambda request: httpx.Response(500, text="overloaded")) as service:
        with pytest.raises(BackendError) as exc_info:
            await service.chat("m", MESSAGES)

    assert not isinstance(exc_info.value, UnauthorizedError)
    assert exc_info.value.status_code == 500
    assert service.usage.failures == 1


@pytest.mark.asyncio
async def test_ollama_transport_error(settings):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with ollama_service(settings, handler) as service:
        with pytest.raises(BackendError, match="transport"):
            await service.chat("m", MESSAGES)


@pytest.mark.asyncio
async def test_ollama_missing_key_fails_without_request(settings_factory):
    settings = settings_factory(OLLAMA_API_KEY=None)

    def handler(request):
        raise AssertionError("request should not be sent")

    async with ollama_service(settings, handler) as service:
        with pytest.raises(UnauthorizedError, match="No API key"):
            await service.chat("m", MESSAGES)


# =============================================================================
# Claude
# =============================================================================

def claude_client():
    client = MagicMock()
    client.messages.create = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_claude_splits_system_prompt(settings):
    client = claude_client()
    client.messages.create.return_value = MagicMock(content=[MagicMock(text='{"ok": true}')])
    service = ClaudeChatService(settings=settings, api_key="sk-ant-test", client=client)

    text = await service.chat("claude-test", MESSAGES)

    assert text == '{"ok": true}'
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["system"] == "Respond with JSON only."
    assert kwargs["messages"] == [{"role": "user", "content": "Categorize this product."}]


@pytest.mark.asyncio
async def test_claude_authentication_error(settings):
    client = claude_client()
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    client.messages.create.side_effect = anthropic.AuthenticationError(
        "invalid x-api-key",
        response=httpx.Response(401, request=request),
        body=None,
    )
    service = ClaudeChatService(settings=settings, api_key="sk-ant-test", client=client)

    with pytest.raises(UnauthorizedError):
        await service.chat("claude-test", MESSAGES)


@pytest.mark.asyncio
async def test_claude_server_error(settings):
    client = claude_client()
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    client.messages.create.side_effect = anthropic.InternalServerError(
        "overloaded",
        response=httpx.Response(529, request=request),
        body=None,
    )
    service = ClaudeChatService(settings=settings, api_key="sk-ant-test", client=client)

    with pytest.raises(BackendError) as exc_info:
        await service.chat("claude-test", MESSAGES)

    assert not isinstance(exc_info.value, UnauthorizedError)


@pytest.mark.asyncio
async def test_claude_without_key(settings):
    service = ClaudeChatService(settings=settings)

    with pytest.raises(UnauthorizedError):
        await service.chat("claude-test", MESSAGES)


# =============================================================================
# Factory
# =============================================================================

def test_create_chat_service_selects_backend(settings_factory):
    assert isinstance(create_chat_service(settings_factory()), OllamaChatService)

    settings = settings_factory(LLM_PROVIDER="anthropic", ANTHROPIC_API_KEY="sk-ant-test")
    service = create_chat_service(settings)
    assert isinstance(service, ClaudeChatService)
    assert service.default_model == settings.claude_model
