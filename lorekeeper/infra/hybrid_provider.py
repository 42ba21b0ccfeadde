"""Hybrid primary/secondary oracle pool with automatic fail-over.

While both providers are alive, work is fanned out one task per provider so a
scan pass finishes in roughly half the wall time. A secondary that fails
``FAILURE_THRESHOLD`` times in a row is dropped for the remainder of the run;
every failed secondary call is retried once on the primary.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from lorekeeper.infra.llm_client import LlmResponse, TextOracle

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

FAILURE_THRESHOLD = 2


class _FailoverSecondary:
    """Secondary provider that retries on the primary and reports failures."""

    def __init__(self, owner: HybridProviders, secondary: TextOracle):
        self._owner = owner
        self._secondary = secondary

    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> LlmResponse:
        primary = self._owner.primary
        if not self._owner.is_hybrid():
            return await primary.generate(messages, max_tokens=max_tokens, temperature=temperature)
        try:
            response = await self._secondary.generate(
                messages, max_tokens=max_tokens, temperature=temperature,
            )
        except Exception as exc:
            self._owner._record_failure(exc)
            return await primary.generate(messages, max_tokens=max_tokens, temperature=temperature)
        self._owner._record_success()
        return response


class HybridProviders:
    """Two-state provider pool: ``dual`` until the secondary dies, then ``primary-only``."""

    def __init__(
        self,
        primary: TextOracle,
        secondary: TextOracle | None = None,
        inter_call_delay: float = 1.0,
    ):
        self.primary = primary
        self.inter_call_delay = inter_call_delay
        self._secondary_alive = secondary is not None
        self._consecutive_failures = 0
        self._wrapped = _FailoverSecondary(self, secondary) if secondary is not None else None

    @property
    def state(self) -> str:
        return "dual" if self._secondary_alive else "primary-only"

    def is_hybrid(self) -> bool:
        return self._secondary_alive

    def get_providers(self) -> list[TextOracle]:
        """Current live providers; never re-grows once the secondary is dropped."""
        if self._secondary_alive and self._wrapped is not None:
            return [self.primary, self._wrapped]
        return [self.primary]

    def _record_failure(self, exc: Exception) -> None:
        self._consecutive_failures += 1
        logger.error(
            "Secondary provider failed (%dx): %s", self._consecutive_failures, exc,
        )
        if self._secondary_alive and self._consecutive_failures >= FAILURE_THRESHOLD:
            self._secondary_alive = False
            logger.warning("Secondary provider disabled, falling back to primary only")

    def _record_success(self) -> None:
        self._consecutive_failures = 0

    async def run_batched(
        self,
        items: Sequence[T],
        worker: Callable[[T, TextOracle], Awaitable[R]],
        *,
        delay_first: bool = False,
        label: str = "task",
    ) -> list[tuple[T, R | None]]:
        """Run ``worker`` over ``items`` in batches sized by the live provider count.

        One batch completes before the next starts. A worker that raises yields
        ``None`` for its item; the rest of the batch proceeds.
        """
        results: list[tuple[T, R | None]] = []
        i = 0
        while i < len(items):
            if i > 0 or delay_first:
                await asyncio.sleep(self.inter_call_delay)
            providers = self.get_providers()
            batch = list(items[i:i + len(providers)])
            i += len(providers)

            outcomes = await asyncio.gather(
                *(worker(item, providers[idx]) for idx, item in enumerate(batch)),
                return_exceptions=True,
            )
            for idx, (item, outcome) in enumerate(zip(batch, outcomes)):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error("Provider %d failed for %s: %s", idx, label, outcome)
                    results.append((item, None))
                else:
                    results.append((item, outcome))
        return results
