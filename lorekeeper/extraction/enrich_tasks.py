"""User-initiated lore tasks that bypass the scan passes.

``match_prompt_to_entry`` + ``generate_enriched_text`` implement "update the
entry this instruction is about"; ``generate_entries_from_prompt`` creates
new drafts from a freeform description.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from lorekeeper.extraction import lore_prompts as prompts
from lorekeeper.extraction.oracle import ask_json, ask_text, clamp_confidence, string_list
from lorekeeper.infra.llm_client import TextOracle
from lorekeeper.models.lorebook import (
    ALL_CATEGORIES,
    LorebookEntry,
    PendingEntry,
    generate_id,
    normalize_keys,
    now_ms,
)
from lorekeeper.models.settings import LoreSettings

logger = logging.getLogger(__name__)

MAX_MATCH_CANDIDATES = 20
AUTO_CATEGORY = "auto"


@dataclass
class TargetMatch:
    entry: LorebookEntry
    confidence: int


def prescore_entries(prompt: str, entries: Sequence[LorebookEntry]) -> list[LorebookEntry]:
    """Rank entries by naive keyword overlap with ``prompt`` (stable for equal scores)."""
    words = [w for w in prompt.lower().split() if len(w) > 2]
    scored: list[tuple[int, LorebookEntry]] = []
    for entry in entries:
        name = entry.display_name.lower()
        keys = [k.lower() for k in entry.keys]
        score = 0
        for word in words:
            if word in name:
                score += 2
            score += sum(1 for key in keys if word in key)
        scored.append((score, entry))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [entry for _, entry in scored]


async def match_prompt_to_entry(
    oracle: TextOracle,
    prompt: str,
    entries: Sequence[LorebookEntry],
) -> TargetMatch | None:
    if not entries:
        return None

    candidates = prescore_entries(prompt, entries)[:MAX_MATCH_CANDIDATES]
    parsed = await ask_json(
        oracle,
        prompts.build_match_prompt(prompt, candidates),
        max_tokens=100,
        temperature=0.2,
        label="match entry",
    )
    if not parsed:
        return None
    idx = parsed.get("index")
    if isinstance(idx, float) and idx.is_integer():
        idx = int(idx)
    if isinstance(idx, bool) or not isinstance(idx, int):
        return None
    if not 0 <= idx < len(candidates):
        return None
    return TargetMatch(entry=candidates[idx], confidence=clamp_confidence(parsed.get("confidence")))


async def generate_enriched_text(
    oracle: TextOracle,
    prompt: str,
    current_text: str,
    display_name: str,
) -> str | None:
    return await ask_text(
        oracle,
        prompts.build_enrich_prompt(prompt, current_text, display_name),
        max_tokens=350,
        temperature=0.3,
        label=f"enrich '{display_name}'",
    )


async def generate_entries_from_prompt(
    oracle: TextOracle,
    prompt: str,
    category: str,
    settings: LoreSettings,
    existing_names: Sequence[str] = (),
    story_text: str | None = None,
    comprehension: str | None = None,
) -> list[PendingEntry]:
    """One or more drafts from a description; ``category="auto"`` lets the oracle choose."""
    budget = prompts.MAX_INPUT_TEXT - len(comprehension or "")
    context_text = prompts.tail(story_text or "", budget)

    parsed = await ask_json(
        oracle,
        prompts.build_entries_from_prompt(prompt, category, context_text, existing_names, comprehension),
        max_tokens=800,
        temperature=settings.temperature,
        label="entries from prompt",
    )
    if not parsed or not isinstance(parsed.get("entries"), list):
        return []

    fallback = category if category != AUTO_CATEGORY else "concept"
    drafts: list[PendingEntry] = []
    for e in parsed["entries"]:
        if not isinstance(e, dict):
            continue
        name, text = e.get("displayName"), e.get("text")
        if not isinstance(name, str) or not name or not isinstance(text, str) or not text:
            continue
        keys = string_list(e.get("keys"))
        drafts.append(PendingEntry(
            id=generate_id(),
            category=e.get("category") if e.get("category") in ALL_CATEGORIES else fallback,
            display_name=name,
            keys=(normalize_keys(keys) if keys is not None else []) or [name],
            text=text,
            created_at=now_ms(),
        ))
    logger.info("Generated %d entries from prompt", len(drafts))
    return drafts
