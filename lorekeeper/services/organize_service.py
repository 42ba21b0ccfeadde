"""Organize pipeline: classify every entry, confirm duplicates, flag misfiled entries.

Produces cleanup proposals only. Cleanup ids are deterministic so a dismissed
proposal is not raised again on the next run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from lorekeeper.extraction import organize_tasks
from lorekeeper.infra.llm_client import TextOracle
from lorekeeper.models.category_map import CategoryMap
from lorekeeper.models.lorebook import LorebookEntry, ScanProgress
from lorekeeper.models.organize import (
    CategoryCleanup,
    Cleanup,
    DuplicateCleanup,
    EntrySnapshot,
    OrganizeResult,
    category_cleanup_id,
    duplicate_cleanup_id,
)
from lorekeeper.services.duplicate_detector import MAX_CANDIDATES, find_duplicate_candidates
from lorekeeper.services.progress import ProgressCallback, emit_progress
from lorekeeper.utils.entry_classifier import UNKNOWN, classify_entry_type

logger = logging.getLogger(__name__)

UNCATEGORIZED_LABEL = "(uncategorized)"


class LorebookOrganizer:
    def __init__(self, oracle: TextOracle, inter_call_delay: float = organize_tasks.INTER_CALL_DELAY):
        self.oracle = oracle
        self.inter_call_delay = inter_call_delay

    async def classify_all(
        self,
        entries: Sequence[LorebookEntry],
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, str]:
        """``{entry_id: category}`` from the heuristic, with oracle fallback for unknowns."""
        classifications: dict[str, str] = {}
        unknowns: list[LorebookEntry] = []
        for entry in entries:
            category = classify_entry_type(entry.text, entry.display_name)
            if category == UNKNOWN:
                unknowns.append(entry)
            else:
                classifications[entry.id] = category
        logger.info("Heuristic: %d classified, %d unknown", len(classifications), len(unknowns))

        if unknowns:
            emit_progress(on_progress, ScanProgress(phase="classifying-llm"))
            results = await organize_tasks.classify_unknown(self.oracle, unknowns, delay=self.inter_call_delay)
            for result in results:
                classifications[result.entry_id] = result.suggested_type
            logger.info("Oracle classified %d additional entries", len(results))
        return classifications

    async def organize(
        self,
        entries: Sequence[LorebookEntry],
        category_map: CategoryMap,
        dismissed_ids: Iterable[str] = (),
        comprehension: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OrganizeResult:
        dismissed = set(dismissed_ids)
        cleanups: list[Cleanup] = []

        emit_progress(on_progress, ScanProgress(phase="classifying"))
        logger.info("Organize: classifying %d entries", len(entries))
        classifications = await self.classify_all(entries, on_progress)

        emit_progress(on_progress, ScanProgress(phase="deduplicating"))
        candidates = find_duplicate_candidates(entries)
        logger.info("Found %d duplicate candidates", len(candidates))
        if candidates:
            emit_progress(on_progress, ScanProgress(phase="confirming-duplicates"))
            confirmed = await organize_tasks.confirm_duplicates(
                self.oracle, candidates[:MAX_CANDIDATES], comprehension, delay=self.inter_call_delay,
            )
            for merge in confirmed:
                cleanup_id = duplicate_cleanup_id(merge.keep_entry.id, merge.remove_entry.id)
                if cleanup_id in dismissed:
                    continue
                cleanups.append(DuplicateCleanup(
                    id=cleanup_id,
                    keep_entry=EntrySnapshot.of(merge.keep_entry),
                    remove_entry=EntrySnapshot.of(merge.remove_entry),
                    merged_text=merge.merged_text,
                    merged_keys=merge.merged_keys,
                    reason=merge.reason,
                ))

        emit_progress(on_progress, ScanProgress(phase="recategorizing"))
        cleanups.extend(recategorize(entries, classifications, category_map, dismissed))

        logger.info("Organize complete: %d cleanups proposed", len(cleanups))
        return OrganizeResult(cleanups=cleanups)


def recategorize(
    entries: Sequence[LorebookEntry],
    classifications: dict[str, str],
    category_map: CategoryMap,
    dismissed: set[str],
) -> list[CategoryCleanup]:
    """Legacy-move or recategorize proposals for entries outside their classified category."""
    cleanups: list[CategoryCleanup] = []
    for entry in entries:
        semantic = classifications.get(entry.id)
        if not semantic:
            continue
        current_id = entry.category
        expected_id = category_map.id_for_type(semantic)
        if current_id and current_id == expected_id:
            continue

        cleanup_type = "legacy-move" if category_map.is_legacy(current_id) else "recategorize"
        cleanup_id = category_cleanup_id(cleanup_type, entry.id, semantic)
        if cleanup_id in dismissed:
            continue
        cleanups.append(CategoryCleanup(
            id=cleanup_id,
            type=cleanup_type,
            entry_id=entry.id,
            display_name=entry.display_name,
            current_category=category_map.name_of(current_id) or UNCATEGORIZED_LABEL,
            current_category_id=current_id,
            proposed_category=category_map.expected_name(semantic),
            proposed_type=semantic,
            proposed_category_id=expected_id,
        ))
    return cleanups
