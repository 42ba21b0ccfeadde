"""Shared call wrapper for single-shot oracle tasks.

Tasks never raise: transport or parse failures are logged and surface as
``None`` so one bad call only drops that element for the current pass.
"""

from __future__ import annotations

import logging
from typing import Any

from lorekeeper.infra.llm_client import TextOracle
from lorekeeper.utils.json_recovery import recover_json

logger = logging.getLogger(__name__)


def _messages(system: str, user: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


async def ask_text(
    oracle: TextOracle,
    prompt: tuple[str, str],
    *,
    max_tokens: int,
    temperature: float,
    label: str,
) -> str | None:
    """Raw stripped completion text, or None on failure or empty output."""
    system, user = prompt
    try:
        response = await oracle.generate(
            _messages(system, user), max_tokens=max_tokens, temperature=temperature,
        )
    except Exception:
        logger.warning("Oracle call failed for %s", label, exc_info=True)
        return None
    text = (response.output or "").strip()
    return text or None


async def ask_json(
    oracle: TextOracle,
    prompt: tuple[str, str],
    *,
    max_tokens: int,
    temperature: float,
    label: str,
) -> dict[str, Any] | None:
    """Parsed JSON object from the completion, or None."""
    raw = await ask_text(
        oracle, prompt, max_tokens=max_tokens, temperature=temperature, label=label,
    )
    if raw is None:
        return None
    parsed = recover_json(raw)
    if not isinstance(parsed, dict):
        logger.warning("Unparseable %s response (%d chars)", label, len(raw))
        return None
    return parsed


def clamp_confidence(value: Any, default: int = 3) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(min(5, max(1, value)))


def string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [v for v in value if isinstance(v, str)]
