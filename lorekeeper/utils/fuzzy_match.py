"""Name-similarity scoring used for entity resolution and exclusion checks.

Scores are coarse buckets rather than a continuous metric:
1.0 exact, 0.8 substring, 0.7 small edit distance on short names, 0 otherwise.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from rapidfuzz.distance import Levenshtein

from lorekeeper.models.lorebook import LorebookEntry

DEFAULT_THRESHOLD = 0.7

_SHORT_NAME_MAX = 20
_MAX_EDIT_DISTANCE = 2


def similarity(a: str, b: str) -> float:
    """Symmetric name similarity in [0, 1]."""
    al = (a or "").strip().lower()
    bl = (b or "").strip().lower()
    if not al or not bl:
        return 0.0
    if al == bl:
        return 1.0
    if al in bl or bl in al:
        return 0.8
    if len(al) <= _SHORT_NAME_MAX and len(bl) <= _SHORT_NAME_MAX:
        if Levenshtein.distance(al, bl, score_cutoff=_MAX_EDIT_DISTANCE) <= _MAX_EDIT_DISTANCE:
            return 0.7
    return 0.0


@dataclass
class FuzzyMatch:
    entry: LorebookEntry
    score: float
    matched_on: Literal["display_name", "key"]


def find_best_match(
    name: str,
    entries: Iterable[LorebookEntry],
    threshold: float = DEFAULT_THRESHOLD,
) -> FuzzyMatch | None:
    """Best match for ``name`` over every entry's display name and keys.

    Earlier candidates win ties; only a strictly higher score replaces them.
    """
    best: FuzzyMatch | None = None
    for entry in entries:
        score = similarity(name, entry.display_name)
        if score >= threshold and (best is None or score > best.score):
            best = FuzzyMatch(entry=entry, score=score, matched_on="display_name")
        for key in entry.keys:
            score = similarity(name, key)
            if score >= threshold and (best is None or score > best.score):
                best = FuzzyMatch(entry=entry, score=score, matched_on="key")
    return best


def fuzzy_match_in_set(
    name: str,
    names: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
) -> bool:
    return any(similarity(name, existing) >= threshold for existing in names)
