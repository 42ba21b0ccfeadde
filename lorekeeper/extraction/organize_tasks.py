"""Organize-pass oracle tasks: duplicate confirmation and fallback classification."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from lorekeeper.extraction import lore_prompts as prompts
from lorekeeper.extraction.oracle import ask_json, string_list
from lorekeeper.infra.llm_client import TextOracle
from lorekeeper.models.lorebook import ALL_CATEGORIES, LorebookEntry
from lorekeeper.models.organize import ClassificationResult, ConfirmedDuplicate, DuplicateCandidate

logger = logging.getLogger(__name__)

CONFIRM_BATCH_SIZE = 5
CLASSIFY_BATCH_SIZE = 12
MIN_CLASSIFY_CONFIDENCE = 3
INTER_CALL_DELAY = 1.0


def _batches(items: Sequence, size: int):
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


def _one_based_index(value, batch_len: int) -> int | None:
    # Missing or non-numeric indices fall back to the first slot
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value:
        value = 1
    idx = int(value) - 1
    if 0 <= idx < batch_len:
        return idx
    return None


async def confirm_duplicates(
    oracle: TextOracle,
    candidates: Sequence[DuplicateCandidate],
    comprehension: str | None = None,
    delay: float = INTER_CALL_DELAY,
) -> list[ConfirmedDuplicate]:
    """Ask the oracle which candidate pairs are the same entity, five pairs per call."""
    confirmed: list[ConfirmedDuplicate] = []
    for n, batch in enumerate(_batches(candidates, CONFIRM_BATCH_SIZE)):
        if n > 0:
            await asyncio.sleep(delay)

        parsed = await ask_json(
            oracle,
            prompts.build_confirm_duplicates_prompt(batch, comprehension),
            max_tokens=600,
            temperature=0.3,
            label="confirm duplicates",
        )
        if not parsed or not isinstance(parsed.get("results"), list):
            continue

        for r in parsed["results"]:
            if not isinstance(r, dict) or not r.get("isDuplicate"):
                continue
            idx = _one_based_index(r.get("pair"), len(batch))
            if idx is None:
                continue
            candidate = batch[idx]
            if r.get("keepIndex") == "B":
                keep, remove = candidate.entry_b, candidate.entry_a
            else:
                keep, remove = candidate.entry_a, candidate.entry_b

            merged_text = r.get("mergedText")
            reason = r.get("reason")
            merged_keys = string_list(r.get("mergedKeys"))
            confirmed.append(ConfirmedDuplicate(
                keep_entry=keep,
                remove_entry=remove,
                merged_text=merged_text if isinstance(merged_text, str) else keep.text,
                merged_keys=merged_keys if merged_keys is not None else list(keep.keys),
                reason=reason if isinstance(reason, str) and reason else candidate.reason,
            ))
    return confirmed


async def classify_unknown(
    oracle: TextOracle,
    entries: Sequence[LorebookEntry],
    delay: float = INTER_CALL_DELAY,
) -> list[ClassificationResult]:
    """Oracle classification for entries the heuristic could not place, twelve per call."""
    results: list[ClassificationResult] = []
    for n, batch in enumerate(_batches(entries, CLASSIFY_BATCH_SIZE)):
        if n > 0:
            await asyncio.sleep(delay)

        parsed = await ask_json(
            oracle,
            prompts.build_classify_prompt(batch),
            max_tokens=300,
            temperature=0.2,
            label="classify",
        )
        if not parsed or not isinstance(parsed.get("classifications"), list):
            continue

        for c in parsed["classifications"]:
            if not isinstance(c, dict):
                continue
            idx = _one_based_index(c.get("index"), len(batch))
            if idx is None or c.get("type") not in ALL_CATEGORIES:
                continue
            confidence = c.get("confidence")
            if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
                continue
            if confidence < MIN_CLASSIFY_CONFIDENCE:
                continue
            results.append(ClassificationResult(
                entry_id=batch[idx].id,
                display_name=batch[idx].display_name,
                suggested_type=c["type"],
                confidence=int(confidence),
            ))
    logger.debug("Oracle classified %d of %d unknown entries", len(results), len(entries))
    return results
