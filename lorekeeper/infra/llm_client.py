"""Async LLM client with Ollama and OpenAI-compatible API support.

Every client exposes the same oracle contract used by the lore tasks::

    await client.generate(messages, max_tokens=..., temperature=...) -> LlmResponse

``messages`` is an ordered list of ``{"role": "system"|"user", "content": str}``.
Clients raise ``LLMError`` subclasses on failure; callers treat any raise as a
soft failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import httpx

from lorekeeper.infra import config

if TYPE_CHECKING:
    from lorekeeper.infra.anthropic_client import AnthropicClient
    from lorekeeper.infra.openai_client import OpenAICompatibleClient

logger = logging.getLogger(__name__)


@dataclass
class LlmUsage:
    """Token usage from an LLM call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LlmResponse:
    """Raw completion text plus usage. ``output`` is never parsed here."""

    output: str = ""
    usage: LlmUsage = field(default_factory=LlmUsage)
    finish_reason: str = ""


class TextOracle(Protocol):
    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> LlmResponse: ...


# Global semaphore to serialize Ollama calls (single GPU processes one request at a time).
_llm_semaphore: asyncio.Semaphore | None = None


def _get_semaphore() -> asyncio.Semaphore:
    """Lazily create semaphore in the running event loop."""
    global _llm_semaphore
    if _llm_semaphore is None:
        _llm_semaphore = asyncio.Semaphore(1)
    return _llm_semaphore


class LLMError(Exception):
    """Base exception for LLM client errors."""


class LLMTimeoutError(LLMError):
    """Raised when LLM request times out."""


class LLMConnectionError(LLMError):
    """Raised when the LLM endpoint cannot be reached."""


class OllamaClient:
    """Async client for the Ollama chat API."""

    def __init__(
        self,
        base_url: str = config.OLLAMA_BASE_URL,
        model: str = config.OLLAMA_MODEL,
        timeout: int = config.LLM_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int = 600,
        temperature: float = 0.4,
    ) -> LlmResponse:
        """Call Ollama chat API and return the raw completion text."""
        payload: dict = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "think": False,  # Disable thinking mode (qwen3) to get content directly
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

        sem = _get_semaphore()
        async with sem:
            logger.debug("LLM semaphore acquired for generate()")
            try:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout, connect=10.0)
                ) as client:
                    resp = await client.post(
                        f"{self.base_url}/api/chat",
                        json=payload,
                    )
                    resp.raise_for_status()
            except httpx.TimeoutException as exc:
                raise LLMTimeoutError(
                    f"Ollama request timed out after {self.timeout}s"
                ) from exc
            except httpx.HTTPStatusError as exc:
                raise LLMError(
                    f"Ollama HTTP error {exc.response.status_code}: {exc.response.text[:300]}"
                ) from exc
            except httpx.TransportError as exc:
                raise LLMConnectionError(f"Ollama unreachable: {exc}") from exc

        data = resp.json()
        content: str = data.get("message", {}).get("content", "")
        if not content:
            raise LLMError("Empty response from Ollama")

        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)
        usage = LlmUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
        return LlmResponse(
            output=content,
            usage=usage,
            finish_reason=data.get("done_reason", ""),
        )


# Module-level singletons
_client: OllamaClient | OpenAICompatibleClient | AnthropicClient | None = None
_secondary_client: OpenAICompatibleClient | None = None


def get_llm_client() -> OllamaClient | OpenAICompatibleClient | AnthropicClient:
    """Return module-level singleton LLM client based on LLM_PROVIDER config."""
    global _client
    if _client is None:
        if config.LLM_PROVIDER == "openai":
            if not config.LLM_API_KEY:
                raise ValueError("LLM_API_KEY is required when LLM_PROVIDER=openai")
            if not config.LLM_BASE_URL:
                raise ValueError("LLM_BASE_URL is required when LLM_PROVIDER=openai")
            if config.LLM_PROVIDER_FORMAT == "anthropic":
                from lorekeeper.infra.anthropic_client import AnthropicClient
                _client = AnthropicClient(
                    base_url=config.LLM_BASE_URL,
                    api_key=config.LLM_API_KEY,
                    model=config.LLM_MODEL or "claude-sonnet-4-5",
                    timeout=config.LLM_TIMEOUT,
                )
            else:
                from lorekeeper.infra.openai_client import OpenAICompatibleClient
                _client = OpenAICompatibleClient(
                    base_url=config.LLM_BASE_URL,
                    api_key=config.LLM_API_KEY,
                    model=config.LLM_MODEL or "gpt-4o",
                    timeout=config.LLM_TIMEOUT,
                )
        else:
            _client = OllamaClient(
                base_url=config.OLLAMA_BASE_URL,
                model=config.OLLAMA_MODEL,
                timeout=config.LLM_TIMEOUT,
            )
    return _client


def get_secondary_client() -> OpenAICompatibleClient | None:
    """Return the hybrid-mode secondary client, or None when not configured."""
    global _secondary_client
    if _secondary_client is None and config.has_secondary_provider():
        from lorekeeper.infra.openai_client import OpenAICompatibleClient
        _secondary_client = OpenAICompatibleClient(
            base_url=config.SECONDARY_LLM_BASE_URL,
            api_key=config.SECONDARY_LLM_API_KEY,
            model=config.SECONDARY_LLM_MODEL,
            timeout=config.LLM_TIMEOUT,
        )
    return _secondary_client
