"""Best-effort recovery of JSON objects from raw LLM output.

LLM responses are frequently cut off at the token budget, leaving a dangling
string or unclosed brackets. ``recover_json`` closes whatever is open and
retries once instead of discarding the whole response.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")


def _locate_object(raw: str) -> str | None:
    """Greedy first-``{`` to last-``}`` span; a brace with no closer runs to end of text."""
    match = _OBJECT_SPAN.search(raw)
    if match:
        return match.group()
    start = raw.find("{")
    if start >= 0:
        return raw[start:]
    return None


def closing_suffix(text: str) -> str:
    """Return the tokens needed to close an open string and open brackets, innermost first."""
    stack: list[str] = []
    in_string = False
    escape = False
    for ch in text:
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in ("{", "["):
            stack.append(ch)
        elif ch == "}":
            if stack and stack[-1] == "{":
                stack.pop()
        elif ch == "]":
            if stack and stack[-1] == "[":
                stack.pop()

    suffix = '"' if in_string else ""
    for opener in reversed(stack):
        suffix += "]" if opener == "[" else "}"
    return suffix


def recover_json(raw: str | None) -> Any | None:
    """Parse the first JSON object in ``raw``, repairing truncation once. Never raises."""
    if not raw:
        return None

    candidate = _locate_object(raw)
    if candidate is None:
        return None

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    suffix = closing_suffix(candidate)
    if not suffix:
        return None
    try:
        repaired = json.loads(candidate + suffix)
    except json.JSONDecodeError:
        logger.debug("JSON recovery failed for %d-char response", len(raw))
        return None
    logger.info("Repaired truncated JSON: added %d closers", len(suffix))
    return repaired
