"""Tests for the enhancement client."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from brief.notes.models import AIProvider, EnhanceMode
from brief.services.enhancer import EnhanceClient, EnhanceClientSettings, build_prompt
from brief.services.errors import EnhanceError


class _FakeCompletions:
    def __init__(self, content: str | None) -> None:
        self.content = content
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class _FakeOpenAI:
    def __init__(self, content: str | None = "Polished") -> None:
        self.completions = _FakeCompletions(content)
        self.chat = SimpleNamespace(completions=self.completions)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _client(handler, **kwargs) -> EnhanceClient:
    transport = httpx.MockTransport(handler)
    return EnhanceClient(http_client=httpx.AsyncClient(transport=transport), **kwargs)


def test_prompts_embed_content_per_mode() -> None:
    assert build_prompt("raw", "polish").endswith("\n\nraw")
    assert "3-5 concise bullet points" in build_prompt("raw", EnhanceMode.SUMMARIZE)
    assert "Markdown checklist" in build_prompt("raw", EnhanceMode.ACTION_ITEMS)
    assert "decisions" in build_prompt("raw", EnhanceMode.DECISIONS)


@pytest.mark.asyncio
async def test_local_provider_posts_completion_request() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"content": "# Notes"})

    client = _client(handler, settings=EnhanceClientSettings(local_url="http://llama:8080/"))

    result = await client.enhance("raw", "polish", "local")

    assert result == "# Notes"
    assert str(seen[0].url) == "http://llama:8080/completion"
    body = json.loads(seen[0].content)
    assert body["n_predict"] == 2048
    assert body["stream"] is False
    assert body["prompt"].endswith("raw")


@pytest.mark.asyncio
async def test_local_provider_http_error() -> None:
    client = _client(lambda request: httpx.Response(503))

    with pytest.raises(EnhanceError, match="HTTP 503"):
        await client.enhance("raw", "polish", AIProvider.LOCAL)


@pytest.mark.asyncio
async def test_local_provider_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)

    with pytest.raises(EnhanceError, match="Local AI not available"):
        await client.enhance("raw", "polish", "local")


@pytest.mark.asyncio
async def test_openai_requires_key() -> None:
    client = _client(lambda request: httpx.Response(200))

    with pytest.raises(EnhanceError, match="OpenAI API key required"):
        await client.enhance("raw", "polish", "openai")


@pytest.mark.asyncio
async def test_openai_routes_through_sdk_and_caches_client() -> None:
    fake = _FakeOpenAI()
    created: list[str] = []

    def factory(api_key: str) -> Any:
        created.append(api_key)
        return fake

    client = _client(lambda request: httpx.Response(200), openai_factory=factory)

    assert await client.enhance("raw", "summarize", "openai", "sk-1") == "Polished"
    await client.enhance("raw", "summarize", "openai", "sk-1")

    assert created == ["sk-1"]
    assert fake.completions.calls[0]["model"] == "gpt-4o-mini"
    assert fake.completions.calls[0]["messages"][0]["role"] == "user"

    await client.aclose()
    assert fake.closed


@pytest.mark.asyncio
async def test_openai_empty_response_is_error() -> None:
    client = _client(lambda request: httpx.Response(200), openai_factory=lambda key: _FakeOpenAI(None))

    with pytest.raises(EnhanceError, match="Empty response"):
        await client.enhance("raw", "polish", "openai", "sk-1")


@pytest.mark.asyncio
async def test_anthropic_sends_headers_and_reads_text_block() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "- decided"}]})

    client = _client(handler)

    assert await client.enhance("raw", "decisions", "anthropic", "sk-ant") == "- decided"
    request = seen[0]
    assert request.headers["x-api-key"] == "sk-ant"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert json.loads(request.content)["max_tokens"] == 2048


@pytest.mark.asyncio
async def test_anthropic_requires_key_and_text() -> None:
    client = _client(lambda request: httpx.Response(200, json={"content": []}))

    with pytest.raises(EnhanceError, match="Anthropic API key required"):
        await client.enhance("raw", "polish", "anthropic")
    with pytest.raises(EnhanceError, match="Empty response"):
        await client.enhance("raw", "polish", "anthropic", "sk-ant")


@pytest.mark.asyncio
async def test_unknown_provider_is_rejected() -> None:
    client = _client(lambda request: httpx.Response(200))

    with pytest.raises(ValueError):
        await client.enhance("raw", "polish", "cohere")
