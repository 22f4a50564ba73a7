"""Async enhancement client routing note transformations to an AI provider.

``local`` talks to a llama-server sidecar, ``openai`` goes through the
official async SDK, ``anthropic`` calls the Messages API directly.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx
from openai import APIError, AsyncOpenAI

from ..notes.models import AIProvider, EnhanceMode
from .errors import EnhanceError

__all__ = ["EnhanceClient", "EnhanceClientSettings", "build_prompt"]

LOGGER = logging.getLogger(__name__)
_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_ANTHROPIC_VERSION = "2023-06-01"
_MAX_OUTPUT_TOKENS = 2048

_PROMPTS: Mapping[EnhanceMode, str] = {
    EnhanceMode.POLISH: (
        "You are a meeting notes editor. Polish the following raw notes: fix grammar, add structure "
        "with headers, keep the author's voice. Output only the improved notes in Markdown.\n\n{content}"
    ),
    EnhanceMode.SUMMARIZE: (
        "Summarize the following meeting notes in 3-5 concise bullet points. Output only the bullets "
        "in Markdown.\n\n{content}"
    ),
    EnhanceMode.ACTION_ITEMS: (
        "Extract all action items from the following meeting notes. For each, note the owner if "
        "mentioned and any deadline. Output as a Markdown checklist.\n\n{content}"
    ),
    EnhanceMode.DECISIONS: (
        "Extract all decisions made in the following meeting notes. Output as a Markdown list.\n\n{content}"
    ),
}


def build_prompt(content: str, mode: EnhanceMode | str) -> str:
    """Return the instruction prompt for ``mode`` wrapped around ``content``."""

    return _PROMPTS[EnhanceMode.parse(mode)].format(content=content)


@dataclass(slots=True)
class EnhanceClientSettings:
    """Subset of settings required to configure the enhancement client."""

    local_url: str = "http://localhost:8080"
    local_model: str | None = None
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-haiku-4-5-20251001"
    request_timeout: float | None = 120.0


class EnhanceClient:
    """Transformation backend used by the session coordinator."""

    def __init__(
        self,
        settings: EnhanceClientSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        openai_factory: Callable[[str], AsyncOpenAI] | None = None,
    ) -> None:
        self._settings = settings or EnhanceClientSettings()
        self._http = http_client or httpx.AsyncClient(timeout=self._settings.request_timeout)
        self._owns_http = http_client is None
        self._openai_factory = openai_factory or self._build_openai_client
        self._openai_clients: dict[str, AsyncOpenAI] = {}

    @property
    def settings(self) -> EnhanceClientSettings:
        return self._settings

    async def enhance(
        self,
        content: str,
        mode: EnhanceMode | str,
        provider: AIProvider | str,
        credentials: str | None = None,
    ) -> str:
        """Run ``mode`` over ``content`` with ``provider`` and return the new text."""

        target = AIProvider.parse(provider)
        prompt = build_prompt(content, mode)
        LOGGER.debug(
            "Enhancing %d chars via %s (mode=%s)", len(content), target.value, EnhanceMode.parse(mode).value
        )
        if target is AIProvider.LOCAL:
            result = await self._call_local(prompt)
        elif target is AIProvider.OPENAI:
            if not credentials:
                raise EnhanceError("OpenAI API key required")
            result = await self._call_openai(prompt, credentials)
        else:
            if not credentials:
                raise EnhanceError("Anthropic API key required")
            result = await self._call_anthropic(prompt, credentials)
        return result

    async def _call_local(self, prompt: str) -> str:
        url = self._settings.local_url.rstrip("/") + "/completion"
        body: dict[str, Any] = {"prompt": prompt, "n_predict": _MAX_OUTPUT_TOKENS, "stream": False}
        if self._settings.local_model:
            body["model"] = self._settings.local_model
        try:
            response = await self._http.post(url, json=body)
        except httpx.HTTPError as exc:
            raise EnhanceError(f"Local AI not available: {exc}") from exc
        data = _json_or_error(response, "Local AI")
        content = data.get("content") if isinstance(data, Mapping) else None
        if not isinstance(content, str):
            raise EnhanceError("Empty response from local AI")
        return content

    async def _call_openai(self, prompt: str, api_key: str) -> str:
        client = self._openai_clients.get(api_key)
        if client is None:
            client = self._openai_factory(api_key)
            self._openai_clients[api_key] = client
        try:
            completion = await client.chat.completions.create(
                model=self._settings.openai_model,
                messages=[{"role": "user", "content": prompt}],
            )
        except APIError as exc:
            raise EnhanceError(f"OpenAI request failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise EnhanceError(f"OpenAI request failed: {exc}") from exc
        choices = getattr(completion, "choices", None) or []
        if not choices:
            raise EnhanceError("Empty response from OpenAI")
        content = getattr(choices[0].message, "content", None)
        if not content:
            raise EnhanceError("Empty response from OpenAI")
        return str(content)

    async def _call_anthropic(self, prompt: str, api_key: str) -> str:
        headers = {"x-api-key": api_key, "anthropic-version": _ANTHROPIC_VERSION}
        body = {
            "model": self._settings.anthropic_model,
            "max_tokens": _MAX_OUTPUT_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            response = await self._http.post(_ANTHROPIC_URL, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise EnhanceError(f"Anthropic request failed: {exc}") from exc
        data = _json_or_error(response, "Anthropic")
        blocks = data.get("content") if isinstance(data, Mapping) else None
        if not isinstance(blocks, list):
            raise EnhanceError("Empty response from Anthropic")
        for block in blocks:
            if isinstance(block, Mapping) and isinstance(block.get("text"), str):
                return block["text"]
        raise EnhanceError("Empty response from Anthropic")

    def _build_openai_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, timeout=self._settings.request_timeout)

    async def aclose(self) -> None:
        """Release network resources held by the underlying clients."""

        for client in self._openai_clients.values():
            close = getattr(client, "close", None)
            if close is None:
                continue
            result = close()
            if inspect.isawaitable(result):
                await result
        self._openai_clients.clear()
        if self._owns_http:
            await self._http.aclose()


def _json_or_error(response: httpx.Response, source: str) -> Any:
    if response.status_code >= 400:
        raise EnhanceError(f"{source} request failed: HTTP {response.status_code}")
    try:
        return response.json()
    except ValueError as exc:
        raise EnhanceError(f"{source} returned an unreadable response") from exc
