"""Scan-pass oracle tasks: identify, draft, update, relationships, reformat, names.

Each task builds one prompt, makes one oracle call and narrows the parsed
shape. Failures degrade to the task's empty result; nothing here retries.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from lorekeeper.extraction import lore_prompts as prompts
from lorekeeper.extraction.oracle import ask_json, ask_text, clamp_confidence, string_list
from lorekeeper.infra.llm_client import TextOracle
from lorekeeper.models.lorebook import (
    IdentifiedElement,
    LorebookEntry,
    NameProposal,
    PendingEntry,
    RelationshipDelta,
    generate_id,
    normalize_keys,
    now_ms,
)
from lorekeeper.models.settings import LoreSettings
from lorekeeper.utils.character_template import extract_field

logger = logging.getLogger(__name__)

UPDATE_CONTEXT_BUDGET = 4000
UPDATE_RESERVE = 600
RELATIONSHIP_RESERVE = 800
REFORMAT_STORY_TAIL = 3000


async def identify_elements(
    oracle: TextOracle,
    story_text: str,
    settings: LoreSettings,
    existing_names: Sequence[str],
    comprehension: str | None = None,
) -> list[IdentifiedElement]:
    """Pass 1: up to five lore-worthy elements in the recent story text."""
    categories = settings.enabled_categories.enabled()
    if not categories:
        return []

    budget = prompts.identify_budget(prompts.existing_names_line(existing_names), comprehension)
    process_text = prompts.tail(story_text, budget)
    if len(process_text) < len(story_text):
        logger.debug("Text truncated to %d chars for identification", budget)

    parsed = await ask_json(
        oracle,
        prompts.build_identify_prompt(process_text, categories, existing_names, comprehension),
        max_tokens=300,
        temperature=settings.temperature,
        label="identify",
    )
    if not parsed or not isinstance(parsed.get("elements"), list):
        return []

    elements: list[IdentifiedElement] = []
    for el in parsed["elements"]:
        if not isinstance(el, dict):
            continue
        name = el.get("name")
        category = el.get("category")
        if not isinstance(name, str) or not name or category not in categories:
            continue
        merges_with = el.get("mergesWith")
        if not isinstance(merges_with, str) or not merges_with or merges_with == "null":
            merges_with = None
        elements.append(IdentifiedElement(name=name, category=category, merges_with=merges_with))
        if len(elements) >= prompts.MAX_ELEMENTS_PER_SCAN:
            break
    return elements


async def draft_entry(
    oracle: TextOracle,
    name: str,
    category: str,
    story_text: str,
    settings: LoreSettings,
    existing_names: Sequence[str],
    comprehension: str | None = None,
) -> PendingEntry | None:
    """Pass 2: a full pending entry for one new element."""
    budget = prompts.MAX_INPUT_TEXT - len(comprehension or "")
    is_character = category == "character"

    parsed = await ask_json(
        oracle,
        prompts.build_draft_prompt(
            name, category, prompts.tail(story_text, budget),
            settings.detail_level, existing_names, comprehension,
        ),
        max_tokens=600 if is_character else 200,
        temperature=settings.temperature,
        label=f"draft '{name}'",
    )
    if not parsed or not isinstance(parsed.get("displayName"), str):
        return None

    keys = string_list(parsed.get("keys"))
    keys = (normalize_keys(keys) if keys is not None else []) or [name]
    text = parsed.get("text")
    return PendingEntry(
        id=generate_id(),
        category=category,
        display_name=parsed["displayName"] or name,
        keys=keys,
        text=text if isinstance(text, str) else "",
        confidence=clamp_confidence(parsed.get("confidence")),
        created_at=now_ms(),
    )


async def detect_update(
    oracle: TextOracle,
    display_name: str,
    current_text: str,
    story_text: str,
    settings: LoreSettings,
    comprehension: str | None = None,
) -> str | None:
    """Revised entry text when the story adds information, else None."""
    current = current_text or ""
    budget = (
        UPDATE_CONTEXT_BUDGET
        - len(current)
        - len(prompts.update_comprehension_block(comprehension))
        - UPDATE_RESERVE
    )
    parsed = await ask_json(
        oracle,
        prompts.build_update_prompt(display_name, current, prompts.tail(story_text, budget), comprehension),
        max_tokens=600,
        temperature=settings.temperature,
        label=f"update '{display_name}'",
    )
    if not parsed or parsed.get("noUpdate") is True:
        return None
    updated = parsed.get("updatedText")
    if isinstance(updated, str) and updated:
        return updated
    return None


async def detect_relationship_delta(
    oracle: TextOracle,
    display_name: str,
    current_text: str,
    story_text: str,
    comprehension: str | None = None,
) -> RelationshipDelta | None:
    """New Family/Relationships field contents for a template-formatted character."""
    family = extract_field(current_text, "Family")
    relationships = extract_field(current_text, "Relationships")
    budget = UPDATE_CONTEXT_BUDGET - (
        len(family) + len(relationships)
        + len(prompts.comprehension_section(comprehension)) + RELATIONSHIP_RESERVE
    )

    parsed = await ask_json(
        oracle,
        prompts.build_relationship_prompt(
            display_name, family, relationships, prompts.tail(story_text, budget), comprehension,
        ),
        max_tokens=400,
        temperature=0.35,
        label=f"relationships '{display_name}'",
    )
    if not parsed or parsed.get("noUpdate") is True:
        return None

    delta = RelationshipDelta(
        family=parsed.get("family") if isinstance(parsed.get("family"), str) else None,
        relationships=(
            parsed.get("relationships") if isinstance(parsed.get("relationships"), str) else None
        ),
    )
    if not delta.family and not delta.relationships:
        return None
    return delta


async def reformat_entry(
    oracle: TextOracle,
    display_name: str,
    current_text: str,
    story_text: str | None = None,
    comprehension: str | None = None,
) -> str | None:
    """Full template-formatted rewrite of a character entry (plain text output)."""
    story_tail = (story_text or "")[-REFORMAT_STORY_TAIL:]
    return await ask_text(
        oracle,
        prompts.build_reformat_prompt(display_name, current_text, story_tail, comprehension),
        max_tokens=600,
        temperature=0.35,
        label=f"reformat '{display_name}'",
    )


# ── Family-name propagation ───────────────────────────


def validate_name_proposal(current_name: str, proposed_name: str) -> bool:
    """Accept only a surname added to a bare first name, first name kept verbatim."""
    if current_name == proposed_name:
        return False
    current_parts = current_name.split()
    proposed_parts = proposed_name.split()
    if len(current_parts) != 1:
        return False
    if len(proposed_parts) <= len(current_parts):
        return False
    return proposed_name.strip().lower().startswith(current_name.strip().lower())


def character_name(entry: LorebookEntry) -> str:
    return (extract_field(entry.text, "Name") or entry.display_name).strip()


def _summarize(entry: LorebookEntry) -> str:
    name = extract_field(entry.text, "Name") or entry.display_name
    family = extract_field(entry.text, "Family")
    relationships = extract_field(entry.text, "Relationships")
    summary = f"- {name}"
    if family:
        summary += f"\n  Family: {family}"
    if relationships:
        summary += f"\n  Relationships: {relationships}"
    return summary


def connection_graph(entries: Sequence[LorebookEntry]) -> list[str]:
    """``"A <-> B"`` for every character whose first name appears in another's family/relationships."""
    names = [character_name(e) for e in entries]
    connections: list[str] = []
    for entry in entries:
        name = character_name(entry)
        combined = (
            extract_field(entry.text, "Family") + "\n" + extract_field(entry.text, "Relationships")
        ).lower()
        for other in names:
            if other == name or not other:
                continue
            first = re.split(r"\s+", other.lower())[0]
            if first in combined:
                link = f"{name} <-> {other}"
                if link not in connections:
                    connections.append(link)
    return connections


async def propagate_family_names(
    oracle: TextOracle,
    character_entries: Sequence[LorebookEntry],
    comprehension: str | None = None,
) -> list[NameProposal]:
    """Pass 5: surname proposals for bare first names, filtered by ``validate_name_proposal``."""
    if len(character_entries) < 2:
        return []

    summaries = "\n".join(_summarize(e) for e in character_entries)
    parsed = await ask_json(
        oracle,
        prompts.build_family_names_prompt(summaries, connection_graph(character_entries), comprehension),
        max_tokens=400,
        temperature=0.3,
        label="family names",
    )
    if not parsed or not isinstance(parsed.get("proposals"), list):
        return []

    proposals: list[NameProposal] = []
    for p in parsed["proposals"]:
        if not isinstance(p, dict):
            continue
        current, proposed = p.get("currentName"), p.get("proposedName")
        if not isinstance(current, str) or not isinstance(proposed, str):
            continue
        if not validate_name_proposal(current, proposed):
            logger.debug("Rejected name proposal %r -> %r", current, proposed)
            continue
        reason = p.get("reason")
        proposals.append(NameProposal(
            current_name=current,
            proposed_name=proposed,
            reason=reason if isinstance(reason, str) else "",
        ))
    return proposals
