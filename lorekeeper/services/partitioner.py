"""Three-way split of identified elements into new / existing / merge candidates.

Elements already pending, rejected or dismissed are dropped (exact or fuzzy
match) and counted in ``excluded_count``. A merge target already claimed by a
pending merge sends the element down the "new" route instead.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from lorekeeper.models.lorebook import (
    ExistingElement,
    IdentifiedElement,
    LorebookEntry,
    MergeElement,
    Partition,
    ScanState,
)
from lorekeeper.utils.fuzzy_match import find_best_match, fuzzy_match_in_set

logger = logging.getLogger(__name__)


def merge_pair_key(element_name: str, merge_target: str) -> str:
    return f"{element_name}->{merge_target}".lower()


def _exclusions(state: ScanState) -> tuple[set[str], set[str]]:
    """(excluded names, names already targeted by a pending merge), case-folded."""
    excluded: set[str] = set()
    claimed: set[str] = set()
    for pending in state.pending_entries:
        excluded.add(pending.display_name.lower())
        excluded.update(k.lower() for k in pending.keys)
    for update in state.pending_updates:
        excluded.add(update.display_name.lower())
        excluded.update(k.lower() for k in update.keys)
    for merge in state.pending_merges:
        excluded.add(merge.new_name.lower())
        claimed.add(merge.existing_display_name.lower())
    excluded.update(n.lower() for n in state.rejected_names)
    excluded.update(n.lower() for n in state.dismissed_update_names)
    excluded.discard("")
    return excluded, claimed


def _index_entries(entries: Sequence[LorebookEntry]) -> dict[str, LorebookEntry]:
    """Display names win over keys; first key claimant wins among keys."""
    by_name: dict[str, LorebookEntry] = {}
    for entry in entries:
        if entry.display_name:
            by_name[entry.display_name.lower()] = entry
        for key in entry.keys:
            by_name.setdefault(key.lower(), entry)
    return by_name


def _resolve(name: str, by_name: dict[str, LorebookEntry], entries: Sequence[LorebookEntry]) -> LorebookEntry | None:
    entry = by_name.get(name.lower())
    if entry is not None:
        return entry
    match = find_best_match(name, entries)
    return match.entry if match else None


def partition_elements(
    elements: Sequence[IdentifiedElement],
    existing_entries: Sequence[LorebookEntry],
    state: ScanState,
) -> Partition:
    excluded, claimed = _exclusions(state)
    rejected_pairs = {p.lower() for p in state.rejected_merge_names}
    by_name = _index_entries(existing_entries)

    result = Partition()
    for el in elements:
        name_lower = el.name.lower()
        if name_lower in excluded or fuzzy_match_in_set(el.name, excluded):
            result.excluded_count += 1
            continue

        if el.merges_with:
            plain = IdentifiedElement(name=el.name, category=el.category)
            if merge_pair_key(el.name, el.merges_with) in rejected_pairs:
                result.new_elements.append(plain)
                continue
            target = _resolve(el.merges_with, by_name, existing_entries)
            if target is not None:
                target_name = target.display_name or el.merges_with
                if target_name.lower() in claimed:
                    result.new_elements.append(plain)
                    continue
                result.merge_elements.append(MergeElement(
                    name=el.name, category=el.category, merge_target=target_name, entry=target,
                ))
                continue

        matched = _resolve(el.name, by_name, existing_entries)
        if matched is not None:
            result.existing_elements.append(ExistingElement(name=el.name, category=el.category, entry=matched))
        else:
            result.new_elements.append(IdentifiedElement(name=el.name, category=el.category))

    logger.debug(
        "Partitioned %d elements: %d new, %d existing, %d merge, %d excluded",
        len(elements), len(result.new_elements), len(result.existing_elements),
        len(result.merge_elements), result.excluded_count,
    )
    return result
