"""Async client for OpenAI-compatible APIs (OpenRouter, DeepSeek, local proxies, etc.)."""

from __future__ import annotations

import asyncio
import logging

import httpx

from lorekeeper.infra.llm_client import (
    LLMConnectionError,
    LLMError,
    LLMTimeoutError,
    LlmResponse,
    LlmUsage,
)

logger = logging.getLogger(__name__)

# Cloud APIs handle parallel requests; allow up to 3 concurrent calls.
_cloud_semaphore: asyncio.Semaphore | None = None


def _get_cloud_semaphore() -> asyncio.Semaphore:
    """Lazily create semaphore in the running event loop."""
    global _cloud_semaphore
    if _cloud_semaphore is None:
        _cloud_semaphore = asyncio.Semaphore(3)
    return _cloud_semaphore


class OpenAICompatibleClient:
    """Async client for OpenAI-compatible chat completion APIs."""

    def __init__(self, base_url: str, api_key: str, model: str, timeout: int = 120):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _make_client(self, timeout: float | httpx.Timeout) -> httpx.AsyncClient:
        """Create httpx client that bypasses system proxy.

        httpx reads http_proxy/https_proxy env vars by default. If the proxy
        is down, all requests fail. A direct AsyncHTTPTransport bypasses it.
        """
        transport = httpx.AsyncHTTPTransport()
        return httpx.AsyncClient(transport=transport, timeout=timeout)

    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int = 600,
        temperature: float = 0.4,
    ) -> LlmResponse:
        """Call the chat completions endpoint and return the raw completion text."""
        payload: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }

        sem = _get_cloud_semaphore()
        async with sem:
            logger.debug("Cloud semaphore acquired for generate()")
            try:
                async with self._make_client(
                    httpx.Timeout(self.timeout, connect=10.0)
                ) as client:
                    resp = await client.post(
                        f"{self.base_url}/chat/completions",
                        json=payload,
                        headers=self._headers(),
                    )
                    resp.raise_for_status()
            except httpx.TimeoutException as exc:
                raise LLMTimeoutError(
                    f"Cloud API request timed out after {self.timeout}s"
                ) from exc
            except httpx.HTTPStatusError as exc:
                raise LLMError(
                    f"Cloud API HTTP error {exc.response.status_code}: "
                    f"{exc.response.text[:300]}"
                ) from exc
            except httpx.TransportError as exc:
                raise LLMConnectionError(f"Cloud API unreachable: {exc}") from exc

        data = resp.json()
        choices = data.get("choices", [])
        if not choices:
            raise LLMError("Empty choices in cloud API response")

        choice = choices[0]
        content: str = choice.get("message", {}).get("content", "") or ""
        if not content:
            raise LLMError("Empty content in cloud API response")

        finish_reason = choice.get("finish_reason", "") or ""
        if finish_reason == "length":
            # Truncated JSON is repaired downstream by recover_json
            logger.warning(
                "Cloud API output truncated (finish_reason=length, %d chars)",
                len(content),
            )

        usage_data = data.get("usage", {}) or {}
        usage = LlmUsage(
            prompt_tokens=usage_data.get("prompt_tokens", 0),
            completion_tokens=usage_data.get("completion_tokens", 0),
            total_tokens=usage_data.get("total_tokens", 0),
        )
        return LlmResponse(output=content, usage=usage, finish_reason=finish_reason)
