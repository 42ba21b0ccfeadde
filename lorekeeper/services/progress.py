"""Fire-and-forget progress reporting for the scan and organize pipelines."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Union

from lorekeeper.models.lorebook import ScanProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ScanProgress], Union[None, Awaitable[None]]]

# Strong refs so scheduled callbacks are not garbage-collected mid-flight
_pending: set[asyncio.Future] = set()


def _log_failure(fut: asyncio.Future) -> None:
    _pending.discard(fut)
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        logger.warning("Progress callback failed: %s", exc)


def emit_progress(callback: ProgressCallback | None, progress: ScanProgress) -> None:
    """Invoke ``callback`` without ever blocking or failing the caller.

    Coroutine results are scheduled on the running loop and not awaited.
    """
    if callback is None:
        return
    try:
        result = callback(progress)
    except Exception:
        logger.warning("Progress callback failed for phase %s", progress.phase, exc_info=True)
        return
    if inspect.isawaitable(result):
        fut = asyncio.ensure_future(result)
        _pending.add(fut)
        fut.add_done_callback(_log_failure)
