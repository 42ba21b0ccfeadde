"""Structured character template: field extraction and in-place splicing.

Relationships and Family are list fields written as ``- Name: detail`` lines
under their label. Splicing rewrites only the targeted block; every other
line of the entry is left byte-for-byte intact.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

CHARACTER_TEMPLATE = """Name: [Full name, including last name]
Age: [Age or approximate age]
Gender: [Gender identity]
Physical Appearance: [Detailed physical description]
Sexuality: [Sexual orientation and interests, if relevant]
Description: [Personality, role, and key traits]
Self-Image: [How they see themselves; self-perception vs reality]
Motivations/Goals: [What drives them; what they want]
Secrets: [Hidden knowledge, lies, concealed truths]
Relationships:
- [Name]: [relationship type and dynamic]
Family:
- [Name]: [family role, e.g. sister, father]
Background: [History and backstory]
Additional notes: [Any other relevant details]"""

TEMPLATE_FIELDS: tuple[str, ...] = (
    "Name",
    "Age",
    "Gender",
    "Physical Appearance",
    "Sexuality",
    "Description",
    "Self-Image",
    "Motivations/Goals",
    "Secrets",
    "Relationships",
    "Family",
    "Background",
    "Additional notes",
)

# Labels each list field is inserted in front of when absent
_DOWNSTREAM = {
    "Relationships": ("Family", "Background", "Additional notes"),
    "Family": ("Background", "Additional notes"),
}

_LIST_ITEM = re.compile(r"^\s*-\s+")
_TOP_LEVEL = re.compile(r"^\S")
_NAME_LINE = re.compile(r"^Name:[^\n]*", re.M)


def _label_pattern(field_name: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(field_name)}:\s*(.*)")


@dataclass
class _Block:
    start: int
    end: int
    inline: str
    items: list[str]


def _scan_block(lines: list[str], field_name: str) -> _Block | None:
    """Locate a field's label line and the lines that belong to it.

    The block runs until the next top-level line. ``end`` is exclusive and
    stops after the last non-blank line, so trailing blank lines stay outside.
    Indented lines that are not list items are notes: inside the block but not
    part of ``items``.
    """
    pattern = _label_pattern(field_name)
    for start, line in enumerate(lines):
        match = pattern.match(line)
        if match:
            break
    else:
        return None

    items: list[str] = []
    end = start + 1
    for idx in range(start + 1, len(lines)):
        line = lines[idx]
        if _LIST_ITEM.match(line):
            items.append(line.strip())
        elif _TOP_LEVEL.match(line):
            break
        elif not line.strip():
            continue
        end = idx + 1
    return _Block(start=start, end=end, inline=match.group(1).strip(), items=items)


def extract_field(text: str | None, field_name: str) -> str:
    """Same-line value of ``field_name`` plus its ``- `` continuation lines.

    Returns an empty string if the label is absent.
    """
    if not text:
        return ""
    block = _scan_block(text.split("\n"), field_name)
    if block is None:
        return ""
    if block.items:
        return (block.inline + "\n" if block.inline else "") + "\n".join(block.items)
    return block.inline


def _parse_value(value: str, inline_hint: str = "") -> tuple[str, list[str]]:
    """Split a field value into its same-line part and normalized ``- `` items."""
    lines = [line.strip() for line in value.split("\n") if line.strip()]
    inline = ""
    if lines and inline_hint and lines[0] == inline_hint:
        inline = lines.pop(0)
    items: list[str] = []
    for line in lines:
        if _LIST_ITEM.match(line):
            items.append(line)
        elif line.lstrip("-").strip():
            items.append(f"- {line.lstrip('-').strip()}")
    return inline, items


def _item_groups(body: list[str]) -> dict[str | None, list[str]]:
    """Original item lines keyed by stripped text, each with the notes under it."""
    groups: dict[str | None, list[str]] = {}
    key: str | None = None
    for line in body:
        if _LIST_ITEM.match(line):
            key = line.strip()
            if key not in groups:
                groups[key] = [line]
        elif line.strip():
            groups.setdefault(key, []).append(line)
    return groups


def _splice_one(text: str, field_name: str, value: str) -> str:
    lines = text.split("\n")
    block = _scan_block(lines, field_name)

    if block is None:
        _, items = _parse_value(value)
        if not items:
            return text
        replacement = f"{field_name}:\n" + "\n".join(items)
        downstream = re.compile(rf"^({'|'.join(re.escape(f) for f in _DOWNSTREAM[field_name])}):", re.M)
        match = downstream.search(text)
        if match:
            return text[:match.start()] + replacement + "\n\n" + text[match.start():]
        return text.rstrip() + "\n\n" + replacement

    inline, items = _parse_value(value, block.inline)
    if not inline and not items:
        return text
    if (inline, items) == (block.inline, block.items):
        return text

    # Surviving items keep their original line and any notes beneath it
    groups = _item_groups(lines[block.start + 1:block.end])
    body = list(groups.get(None, []))
    for item in items:
        body.extend(groups.get(item, [item]))
    label = lines[block.start] if inline else f"{field_name}:"
    return "\n".join(lines[:block.start] + [label] + body + lines[block.end:])


def splice_fields(
    text: str,
    relationships: str | None = None,
    family: str | None = None,
) -> str:
    """Write updated Relationships/Family blocks into ``text``.

    Existing blocks are replaced in place; missing ones are inserted before the
    next downstream label, or appended. Relationships is spliced first.
    """
    result = text
    if relationships:
        result = _splice_one(result, "Relationships", relationships)
    if family:
        result = _splice_one(result, "Family", family)
    return result


def replace_name_line(text: str, new_name: str) -> str:
    """Rewrite the first ``Name:`` line; text without one is returned unchanged."""
    return _NAME_LINE.sub(lambda _m: f"Name: {new_name}", text, count=1)
