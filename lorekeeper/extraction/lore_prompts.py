"""Prompt templates for the lore scan, organize and enrich tasks.

Every builder returns ``(system_prompt, user_prompt)``.
"""

from __future__ import annotations

from collections.abc import Sequence

from lorekeeper.models.lorebook import ALL_CATEGORIES, LorebookEntry
from lorekeeper.models.organize import DuplicateCandidate
from lorekeeper.utils.character_template import CHARACTER_TEMPLATE

MAX_INPUT_TEXT = 6000
MAX_ELEMENTS_PER_SCAN = 5

_DETAIL_INSTRUCTIONS = {
    "brief": "Write 1-2 concise sentences.",
    "standard": "Write 2-4 informative sentences.",
    "detailed": "Write 4-6 comprehensive sentences.",
}

_CHARACTER_DEDUCTION = """\
For each field, deduce from character behavior, dialogue, and narrative context:
- Self-Image: infer from how they present themselves vs how others see them
- Motivations/Goals: infer from their actions, desires, and conflicts
- Secrets: infer from contradictions between what they say and do, or hidden knowledge
- Relationships/Family: use "- Name: detail" format, one per line
Omit fields with no information or basis for deduction. Keep each field concise."""


def tail(text: str, budget: int) -> str:
    """Last ``budget`` characters of ``text`` (empty when the budget is exhausted)."""
    if budget <= 0:
        return ""
    return text[-budget:] if len(text) > budget else text


def _block(context: str | None, heading: str = "", lead: str = "") -> str:
    if not context:
        return ""
    head = f"{heading}\n" if heading else ""
    return f"{lead}{head}{context}\n"


# ── Scan passes ───────────────────────────────────────


def identify_budget(existing_line: str, comprehension: str | None) -> int:
    return MAX_INPUT_TEXT - len(comprehension or "") - len(existing_line)


def existing_names_line(names: Sequence[str], limit: int = 30) -> str:
    return f"\nEXISTING ENTRIES: {', '.join(names[:limit])}\n" if names else ""


def build_identify_prompt(
    story_text: str,
    categories: Sequence[str],
    existing_names: Sequence[str],
    comprehension: str | None = None,
) -> tuple[str, str]:
    system = (
        "You are an expert story analyst. Identify important lore-worthy elements "
        "from story text. Output ONLY valid JSON."
    )
    existing_line = existing_names_line(existing_names)
    if existing_names:
        merge_instruction = (
            '\nIf an element is the same entity as an existing entry (e.g., a real name '
            'revealed for a described character), set "mergesWith" to that existing entry '
            'name. Otherwise set "mergesWith" to null.'
        )
        merge_field = ',"mergesWith":"existing entry name or null"'
    else:
        merge_instruction = ""
        merge_field = ""

    user = f"""Analyze this story text and identify the most important elements that should be tracked in a lorebook.

Categories to look for: {', '.join(categories)}
{existing_line}
{_block(comprehension)}RECENT STORY TEXT:
{story_text}

List up to {MAX_ELEMENTS_PER_SCAN} elements. For each, provide the name and category.{merge_instruction}
Output ONLY this JSON format, no other text:
{{"elements":[{{"name":"Element Name","category":"character"{merge_field}}}]}}"""
    return system, user


def build_draft_prompt(
    name: str,
    category: str,
    context_text: str,
    detail_level: str,
    existing_names: Sequence[str],
    comprehension: str | None = None,
) -> tuple[str, str]:
    system = (
        "You are a lorebook entry writer for interactive fiction. Create rich, "
        "well-structured lorebook entries by deducing and inferring from context, "
        "character behavior, and narrative implications. Output ONLY valid JSON."
    )
    if category == "character":
        detail = (
            f"Use this structured format for the text field:\n{CHARACTER_TEMPLATE}\n\n"
            f"{_CHARACTER_DEDUCTION}"
        )
    else:
        detail = _DETAIL_INSTRUCTIONS.get(detail_level, _DETAIL_INSTRUCTIONS["standard"])

    others = (
        f"\nOther tracked entries: {', '.join(existing_names[:20])}\n" if existing_names else ""
    )
    related = (
        " If this element has clear relationships to other tracked entries, include them "
        "in the Relationships field (for characters) or add a brief \"Related:\" line at the end."
        if existing_names else ""
    )

    user = f"""Create a lorebook entry for this {category}: "{name}"
{others}
{_block(comprehension)}Based on this recent story context:
{context_text}

{detail} Deduce details from context and character behavior, not only explicitly stated facts. Provide 2-4 short keywords or aliases that would trigger this entry.{related}

Output ONLY this JSON format, no other text:
{{"displayName":"Full Name","keys":["key1","key2"],"text":"Entry text here.","confidence":3}}"""
    return system, user


def update_comprehension_block(comprehension: str | None) -> str:
    return f"\n{comprehension}\n" if comprehension else ""


def build_update_prompt(
    display_name: str,
    current_text: str,
    context_text: str,
    comprehension: str | None = None,
) -> tuple[str, str]:
    system = (
        "You analyze story text to detect new information about existing lorebook entries. "
        "Consider both explicitly stated information AND what can be reasonably deduced "
        "from character behavior and narrative context. Output ONLY valid JSON."
    )
    user = f"""Does this story text reveal new information about "{display_name}" that is NOT already in the current entry?

Current entry:
{current_text}
{update_comprehension_block(comprehension)}
Story text:
{context_text}

If the story reveals new details (stated or deducible) not in the entry, return updated entry text that incorporates the new info while keeping existing info.
If NO new information is found, return noUpdate.

Output ONLY one of these JSON formats:
{{"updatedText":"Complete updated entry text here."}}
{{"noUpdate":true}}"""
    return system, user


def comprehension_section(comprehension: str | None) -> str:
    return _block(comprehension, "STORY COMPREHENSION:", lead="\n")


def story_context_section(comprehension: str | None) -> str:
    return _block(comprehension, "STORY CONTEXT:", lead="\n")


def build_relationship_prompt(
    display_name: str,
    current_family: str,
    current_relationships: str,
    context_text: str,
    comprehension: str | None = None,
) -> tuple[str, str]:
    system = (
        "You analyze story text to detect new relationship and family information "
        "for existing character entries. Output ONLY valid JSON."
    )
    user = f"""Does the story reveal new family or relationship info about "{display_name}" not already recorded?

Current Family field:
{current_family or '(empty)'}

Current Relationships field:
{current_relationships or '(empty)'}
{comprehension_section(comprehension)}
Recent story text:
{context_text}

Look for:
- New family members mentioned or implied
- New relationships (rivals, mentors, allies, lovers, etc.)
- Changed relationship dynamics (e.g. friendship becoming rivalry)

If new info found, return the COMPLETE updated field content (keep existing + add new).
If no new info, return noUpdate.

Output ONLY one of these JSON formats:
{{"family":"- Name: role\\n- Name: role","relationships":"- Name: relationship type and dynamic\\n- Name: detail"}}
{{"noUpdate":true}}

Include ALL existing entries plus new ones. Use "- Name: detail" format, one per line."""
    return system, user


def build_reformat_prompt(
    display_name: str,
    current_text: str,
    story_tail: str,
    comprehension: str | None = None,
) -> tuple[str, str]:
    system = (
        "You enrich and reformat lorebook character entries. Using story context, fill in "
        "missing fields by deducing from character behavior, dialogue, and narrative role. "
        "Return ONLY the reformatted text, no JSON or extra formatting."
    )
    story_block = _block(story_tail, "RECENT STORY TEXT:", lead="\n")
    user = f"""Enrich and reformat this character lorebook entry into the structured template below. Preserve ALL existing information. For empty or missing fields, deduce from story context: infer motivations from actions, secrets from contradictions, self-image from how they present themselves.

Current entry for "{display_name}":
{current_text}
{comprehension_section(comprehension)}{story_block}
Required format:
{CHARACTER_TEMPLATE}

Omit fields only if there is truly no basis for deduction. Keep each field concise. Return ONLY the reformatted text."""
    return system, user


def build_family_names_prompt(
    summaries: str,
    connections: Sequence[str],
    comprehension: str | None = None,
) -> tuple[str, str]:
    system = (
        "You analyze character relationships to ensure consistent family naming "
        "in a lorebook. Output ONLY valid JSON."
    )
    if connections:
        graph = (
            "\nKNOWN CONNECTIONS (characters explicitly linked in Family/Relationships fields):\n"
            + "\n".join(connections) + "\n"
        )
    else:
        graph = "\nNo explicit connections found between characters.\n"

    user = f"""Review these characters and their family/relationship data. Assign last names ONLY based on explicit family connections.
{story_context_section(comprehension)}
CHARACTERS:
{summaries}
{graph}
STRICT RULES:
1. PROPAGATE an existing last name ONLY to characters who are explicitly listed in that character's Family or Relationships field (or vice versa). Example: if "Alex Copeland" lists "Lily" as daughter, give Lily the last name Copeland.
2. For characters who have NO explicit family connection to ANY character with a last name, create a UNIQUE NEW last name that fits the story setting. Each unrelated character gets their OWN distinct last name.
3. NEVER assign an existing character's last name to someone who is not explicitly mentioned in their Family/Relationships fields.
4. Do NOT change names that already have last names.
5. Only propose changes for characters who currently lack a last name.

Output ONLY this JSON format:
{{"proposals":[{{"currentName":"First","proposedName":"First Last","reason":"brief explanation"}}]}}
If no changes needed: {{"proposals":[]}}"""
    return system, user


# ── Organize ──────────────────────────────────────────


def build_confirm_duplicates_prompt(
    batch: Sequence[DuplicateCandidate],
    comprehension: str | None = None,
) -> tuple[str, str]:
    system = "You analyze lorebook entries for duplicates. Output ONLY valid JSON."

    def describe(entry: LorebookEntry) -> str:
        return (
            f'"{entry.display_name}" [keys: {", ".join(entry.keys)}]\n'
            f"     {entry.text[:200]}"
        )

    pairs = "\n\n".join(
        f"Pair {idx}:\n  A: {describe(c.entry_a)}\n  B: {describe(c.entry_b)}"
        for idx, c in enumerate(batch, 1)
    )
    user = f"""Are these pairs of lorebook entries duplicates (same entity described twice)?
{story_context_section(comprehension)}
{pairs}

For each pair, determine if they describe the same entity. If duplicate, merge their information and pick the better entry to keep (longer, more detailed). If NOT duplicates, mark as keep_both.

Output ONLY this JSON:
{{"results":[{{"pair":1,"isDuplicate":true,"keepIndex":"A","mergedText":"combined entry text","mergedKeys":["key1","key2"],"reason":"why duplicate"}}]}}
Use keepIndex "A" or "B". For non-duplicates: {{"pair":1,"isDuplicate":false}}"""
    return system, user


def build_classify_prompt(batch: Sequence[LorebookEntry]) -> tuple[str, str]:
    system = "You classify lorebook entries into categories. Output ONLY valid JSON."
    listing = "\n".join(
        f'{idx}. "{e.display_name}": {e.text[:150]}' for idx, e in enumerate(batch, 1)
    )
    user = f"""Classify each entry into one of: {', '.join(ALL_CATEGORIES)}.

{listing}

Output ONLY this JSON:
{{"classifications":[{{"index":1,"type":"character","confidence":4}}]}}
- confidence: 1-5 how sure you are"""
    return system, user


# ── User-initiated enrich ─────────────────────────────


def build_match_prompt(prompt: str, candidates: Sequence[LorebookEntry]) -> tuple[str, str]:
    system = "You match user requests to lorebook entries. Output ONLY valid JSON."
    listing = "\n".join(
        f"{i}: {e.display_name or '(unnamed)'} [{', '.join(e.keys[:3])}]"
        for i, e in enumerate(candidates)
    )
    user = f"""The user wants to update a lorebook entry. Which entry matches their request?

User request: "{prompt}"

Entries:
{listing}

Output ONLY this JSON: {{"index":0,"confidence":4}}
- index: the entry number from the list above
- confidence: 1-5 how sure you are this is the right entry"""
    return system, user


def build_enrich_prompt(prompt: str, current_text: str, display_name: str) -> tuple[str, str]:
    system = (
        "You update lorebook entries for interactive fiction. Return ONLY the updated "
        "entry text, no JSON or extra formatting."
    )
    user = f"""Update this lorebook entry for "{display_name}" based on the user's instruction.

Current entry text:
{current_text}

User instruction: "{prompt}"

Write the complete updated entry text. Keep existing information and incorporate the requested changes. Return ONLY the updated text, nothing else."""
    return system, user


def build_entries_from_prompt(
    prompt: str,
    category: str,
    context_text: str,
    existing_names: Sequence[str],
    comprehension: str | None = None,
) -> tuple[str, str]:
    use_template = category in ("character", "auto")
    character_instructions = (
        f"\nFor CHARACTER entries, use this structured format for the text field:\n"
        f"{CHARACTER_TEMPLATE}\n\nOmit fields that have no information. Keep each field concise."
        if use_template else ""
    )
    system = (
        "You are a lorebook entry creator for interactive fiction. Create well-structured "
        "lorebook entries based on user descriptions. Output ONLY valid JSON."
        + character_instructions
    )
    if category == "auto":
        category_instruction = (
            "Determine the most appropriate category for each entry from: "
            f"{', '.join(ALL_CATEGORIES)}."
        )
    else:
        category_instruction = f'All entries should use category "{category}".'
    story_block = f"STORY CONTEXT:\n{context_text}\n" if context_text else ""

    user = f"""Create lorebook entries based on this description:
"{prompt}"

{category_instruction}{existing_names_line(existing_names)}
{_block(comprehension)}{story_block}
Create one or more entries as appropriate for the description. Each entry needs a display name, category, search keys, and descriptive text.

Output ONLY this JSON format, no other text:
{{"entries":[{{"displayName":"Full Name","category":"character","keys":["key1","key2"],"text":"Entry text here."}}]}}"""
    return system, user
