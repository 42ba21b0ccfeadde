"""Async client for Anthropic Claude API.

Anthropic uses a different protocol from OpenAI:
  - Auth:     x-api-key + anthropic-version headers (not Bearer)
  - Endpoint: POST /v1/messages (not /chat/completions)
  - System:   top-level "system" field (not a message role)
  - Response: content[0].text (not choices[0].message.content)
  - Tokens:   usage.input_tokens / output_tokens (not prompt/completion)

Interface is identical to OpenAICompatibleClient so the factory in
llm_client.py can swap it in transparently.
"""

from __future__ import annotations

import logging

import httpx

from lorekeeper.infra.llm_client import (
    LLMConnectionError,
    LLMError,
    LLMTimeoutError,
    LlmResponse,
    LlmUsage,
)
from lorekeeper.infra.openai_client import _get_cloud_semaphore

logger = logging.getLogger(__name__)

# Anthropic API version header (required by the API)
_ANTHROPIC_VERSION = "2023-06-01"


def _split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Move system-role messages into the top-level system string."""
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    rest = [m for m in messages if m.get("role") != "system"]
    return "\n\n".join(system_parts), rest


class AnthropicClient:
    """Async client for Anthropic Claude API."""

    def __init__(self, base_url: str, api_key: str, model: str, timeout: int = 120):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": _ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _make_client(self, timeout: float | httpx.Timeout) -> httpx.AsyncClient:
        """Create httpx client bypassing system proxy (same rationale as OpenAI client)."""
        transport = httpx.AsyncHTTPTransport()
        return httpx.AsyncClient(transport=transport, timeout=timeout)

    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int = 600,
        temperature: float = 0.4,
    ) -> LlmResponse:
        """Call Anthropic Messages API and return the raw completion text."""
        system, chat = _split_system(messages)
        payload: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": chat,
        }
        if system:
            payload["system"] = system

        sem = _get_cloud_semaphore()
        async with sem:
            logger.debug("Anthropic semaphore acquired for generate()")
            try:
                async with self._make_client(
                    httpx.Timeout(self.timeout, connect=10.0)
                ) as client:
                    resp = await client.post(
                        f"{self.base_url}/v1/messages",
                        json=payload,
                        headers=self._headers(),
                    )
                    resp.raise_for_status()
            except httpx.TimeoutException as exc:
                raise LLMTimeoutError(
                    f"Anthropic API request timed out after {self.timeout}s"
                ) from exc
            except httpx.HTTPStatusError as exc:
                raise LLMError(
                    f"Anthropic API HTTP error {exc.response.status_code}: "
                    f"{exc.response.text[:300]}"
                ) from exc
            except httpx.TransportError as exc:
                raise LLMConnectionError(f"Anthropic API unreachable: {exc}") from exc

        data = resp.json()

        content_blocks = data.get("content", [])
        if not content_blocks:
            raise LLMError("Empty content in Anthropic API response")
        content: str = content_blocks[0].get("text", "")
        if not content:
            raise LLMError("Empty text in Anthropic API response")

        stop_reason = data.get("stop_reason", "") or ""
        if stop_reason == "max_tokens":
            logger.warning(
                "Anthropic output truncated (stop_reason=max_tokens, %d chars)",
                len(content),
            )

        usage_data = data.get("usage", {})
        usage = LlmUsage(
            prompt_tokens=usage_data.get("input_tokens", 0),
            completion_tokens=usage_data.get("output_tokens", 0),
            total_tokens=usage_data.get("input_tokens", 0) + usage_data.get("output_tokens", 0),
        )
        return LlmResponse(output=content, usage=usage, finish_reason=stop_reason)
