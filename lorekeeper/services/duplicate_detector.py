"""Heuristic duplicate-pair detection over a whole lorebook."""

from __future__ import annotations

from collections.abc import Sequence

from rapidfuzz.distance import Levenshtein

from lorekeeper.models.lorebook import LorebookEntry
from lorekeeper.models.organize import DuplicateCandidate


MAX_CANDIDATES = 15
JACCARD_THRESHOLD = 0.4


def _name_score(a: str, b: str) -> tuple[float, str]:
    if a == b:
        return 1.0, "Exact name match"
    if a in b or b in a:
        return 0.8, "Name substring match"
    if len(a) <= 20 and len(b) <= 20:
        dist = Levenshtein.distance(a, b)
        if dist <= 2:
            return 0.7, f"Similar names (edit distance {dist})"
    return 0.0, ""


def _key_overlap(a: LorebookEntry, b: LorebookEntry) -> float:
    keys_a = {k.lower() for k in a.keys}
    keys_b = {k.lower() for k in b.keys}
    if not keys_a or not keys_b:
        return 0.0
    return len(keys_a & keys_b) / len(keys_a | keys_b)


def find_duplicate_candidates(entries: Sequence[LorebookEntry]) -> list[DuplicateCandidate]:
    """All scored pairs, highest similarity first.

    Key Jaccard overlap above 0.4 scores ``0.5 + 0.3 * jaccard`` and can only
    raise a name-based score.
    """
    candidates: list[DuplicateCandidate] = []
    for i, a in enumerate(entries):
        name_a = a.display_name.strip().lower()
        if not name_a:
            continue
        for b in entries[i + 1:]:
            name_b = b.display_name.strip().lower()
            if not name_b:
                continue

            similarity, reason = _name_score(name_a, name_b)
            jaccard = _key_overlap(a, b)
            if jaccard > JACCARD_THRESHOLD:
                similarity = max(similarity, 0.5 + jaccard * 0.3)
                reason = reason or f"Key overlap ({round(jaccard * 100)}%)"

            if similarity > 0:
                candidates.append(DuplicateCandidate(entry_a=a, entry_b=b, similarity=similarity, reason=reason))

    candidates.sort(key=lambda c: c.similarity, reverse=True)
    return candidates
