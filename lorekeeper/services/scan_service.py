"""Multi-pass lore scan over one story-text snapshot.

Pipeline: identify -> partition -> generate -> merge -> update-detect ->
relationship-delta -> reformat -> name-propagation. Every pass only appends
proposals to a deep copy of the caller's ``ScanState``; nothing is applied to
the lorebook here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from lorekeeper.extraction import lore_tasks
from lorekeeper.infra.hybrid_provider import HybridProviders
from lorekeeper.infra.llm_client import TextOracle
from lorekeeper.models.lorebook import (
    MAX_KEYS,
    ExistingElement,
    IdentifiedElement,
    LorebookEntry,
    MergeElement,
    PendingEntry,
    PendingMerge,
    PendingUpdate,
    ScanProgress,
    ScanResult,
    ScanState,
    ScanSummary,
    generate_id,
    now_ms,
)
from lorekeeper.models.settings import LoreSettings
from lorekeeper.services.partitioner import partition_elements
from lorekeeper.services.progress import ProgressCallback, emit_progress
from lorekeeper.utils.character_template import replace_name_line, splice_fields
from lorekeeper.utils.entry_classifier import is_template_formatted, looks_like_character

logger = logging.getLogger(__name__)

MIN_STORY_CHARS = 100
MIN_ENTRY_TEXT = 30
MAX_UPDATES_PER_SCAN = 3  # merges + plain updates share this budget
MAX_RELATIONSHIP_UPDATES = 3
MAX_REFORMATS_PER_SCAN = 3
INTER_CALL_DELAY = 1.0

INSUFFICIENT_CONTENT = "Not enough story content to analyze"


def merge_keys(entry: LorebookEntry, new_name: str, limit: int = MAX_KEYS) -> list[str]:
    """Union of the new name, existing keys and display name, case-deduped.

    The new name comes first so the cap never drops it; other keys keep the
    casing they had on the existing entry.
    """
    candidates = [new_name, *entry.keys]
    if entry.display_name:
        candidates.append(entry.display_name)
    seen: set[str] = set()
    merged: list[str] = []
    for key in candidates:
        folded = key.lower()
        if not folded or folded in seen:
            continue
        seen.add(folded)
        merged.append(key)
    return merged[:limit]


def _has_body(entry: LorebookEntry) -> bool:
    return len(entry.text or "") > MIN_ENTRY_TEXT


class LoreScanner:
    """Runs scans against a primary oracle and an optional secondary.

    The secondary is only used when ``settings.hybrid_enabled``; fail-over
    state is per scan.
    """

    def __init__(
        self,
        oracle: TextOracle,
        secondary: TextOracle | None = None,
        inter_call_delay: float = INTER_CALL_DELAY,
    ):
        self.oracle = oracle
        self.secondary = secondary
        self.inter_call_delay = inter_call_delay

    async def _pause(self) -> None:
        await asyncio.sleep(self.inter_call_delay)

    async def scan(
        self,
        story_text: str,
        settings: LoreSettings,
        existing_entries: Sequence[LorebookEntry],
        state: ScanState,
        *,
        on_progress: ProgressCallback | None = None,
        comprehension: str | None = None,
        relationships_only: bool = False,
    ) -> ScanResult:
        if len(story_text.strip()) < MIN_STORY_CHARS:
            return ScanResult(state=state.model_copy(deep=True), error=INSUFFICIENT_CONTENT)

        if relationships_only:
            return await self._scan_relationships_only(
                story_text, existing_entries, state, on_progress, comprehension,
            )

        existing_names = [e.display_name for e in existing_entries if e.display_name]

        emit_progress(on_progress, ScanProgress(phase="identifying"))
        logger.info("Scanning %d chars for lore elements", len(story_text))
        elements = await lore_tasks.identify_elements(
            self.oracle, story_text, settings, existing_names, comprehension,
        )
        if not elements:
            logger.info("No elements identified")
            return ScanResult(state=state.model_copy(deep=True), no_results=True)

        partition = partition_elements(elements, existing_entries, state)
        if partition.is_empty():
            logger.info("All %d elements already known or excluded", len(elements))
            return ScanResult(state=state.model_copy(deep=True), no_results=True)

        updated = state.model_copy(deep=True)
        hybrid = HybridProviders(
            self.oracle,
            self.secondary if settings.hybrid_enabled else None,
            inter_call_delay=self.inter_call_delay,
        )
        summary = ScanSummary()

        summary.generated = await self._generate(
            hybrid, partition.new_elements, story_text, settings, existing_names,
            updated, on_progress, comprehension,
        )
        merge_count = min(len(partition.merge_elements), MAX_UPDATES_PER_SCAN)
        summary.merges_found = await self._process_merges(
            hybrid, partition.merge_elements[:merge_count], story_text, settings,
            updated, on_progress, comprehension,
        )

        update_budget = max(0, MAX_UPDATES_PER_SCAN - merge_count)
        if partition.existing_elements and settings.auto_detect_updates and update_budget > 0:
            summary.updates_found = await self._detect_updates(
                hybrid, partition.existing_elements[:update_budget], story_text, settings,
                updated, on_progress, comprehension,
            )

        if settings.auto_detect_updates:
            summary.relationship_updates_found = await self._update_relationships(
                existing_entries, story_text, updated, on_progress, comprehension,
            )

        summary.reformats_found = await self._reformat_characters(
            hybrid, existing_entries, story_text, updated, on_progress, comprehension,
        )
        summary.name_proposals = await self._propagate_names(
            existing_entries, updated, on_progress, comprehension,
        )

        updated.chars_since_last_scan = 0
        logger.info("Scan complete: %s", summary.model_dump())
        return ScanResult(state=updated, summary=summary)

    # ── Passes ────────────────────────────────────────

    async def _generate(
        self,
        hybrid: HybridProviders,
        elements: list[IdentifiedElement],
        story_text: str,
        settings: LoreSettings,
        existing_names: list[str],
        updated: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> int:
        if not elements:
            return 0
        emit_progress(on_progress, ScanProgress(phase="generating"))
        logger.info(
            "Generating entries for %d new elements%s",
            len(elements), " (hybrid parallel)" if hybrid.is_hybrid() else "",
        )

        async def draft(el: IdentifiedElement, provider: TextOracle) -> PendingEntry | None:
            return await lore_tasks.draft_entry(
                provider, el.name, el.category, story_text, settings, existing_names, comprehension,
            )

        generated = 0
        for _el, entry in await hybrid.run_batched(elements, draft, label="draft"):
            if entry is None or not entry.text:
                continue
            updated.pending_entries.append(entry)
            generated += 1
            emit_progress(on_progress, ScanProgress(
                phase="generating", pending_entries=list(updated.pending_entries),
            ))
        return generated

    async def _process_merges(
        self,
        hybrid: HybridProviders,
        elements: list[MergeElement],
        story_text: str,
        settings: LoreSettings,
        updated: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> int:
        if not elements:
            return 0
        emit_progress(on_progress, ScanProgress(phase="processing-merges"))
        logger.info("Processing %d identity merges", len(elements))

        async def fold_in(el: MergeElement, provider: TextOracle) -> str | None:
            return await lore_tasks.detect_update(
                provider, el.entry.display_name or el.merge_target, el.entry.text,
                story_text, settings, comprehension,
            )

        found = 0
        results = await hybrid.run_batched(elements, fold_in, delay_first=True, label="merge")
        for el, updated_text in results:
            entry = el.entry
            updated.pending_merges.append(PendingMerge(
                id=generate_id(),
                new_name=el.name,
                new_category=el.category,
                existing_display_name=entry.display_name or el.merge_target,
                existing_keys=list(entry.keys),
                existing_text=entry.text,
                proposed_display_name=el.name,
                proposed_keys=merge_keys(entry, el.name),
                proposed_text=updated_text or entry.text,
                created_at=now_ms(),
            ))
            found += 1
            emit_progress(on_progress, ScanProgress(
                phase="processing-merges", pending_merges=list(updated.pending_merges),
            ))
        return found

    async def _detect_updates(
        self,
        hybrid: HybridProviders,
        elements: list[ExistingElement],
        story_text: str,
        settings: LoreSettings,
        updated: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> int:
        emit_progress(on_progress, ScanProgress(phase="checking-updates"))
        logger.info("Checking %d entries for updates", len(elements))

        async def check(el: ExistingElement, provider: TextOracle) -> str | None:
            return await lore_tasks.detect_update(
                provider, el.entry.display_name or el.name, el.entry.text,
                story_text, settings, comprehension,
            )

        found = 0
        results = await hybrid.run_batched(elements, check, delay_first=True, label="update")
        for el, updated_text in results:
            if not updated_text:
                continue
            updated.pending_updates.append(PendingUpdate(
                id=generate_id(),
                display_name=el.entry.display_name or el.name,
                keys=list(el.entry.keys),
                category=el.category,
                original_text=el.entry.text,
                updated_text=updated_text,
                created_at=now_ms(),
            ))
            found += 1
            emit_progress(on_progress, ScanProgress(
                phase="checking-updates", pending_updates=list(updated.pending_updates),
            ))
        return found

    async def _relationship_pass(
        self,
        candidates: Sequence[LorebookEntry],
        story_text: str,
        updated: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> int:
        """Sequential on the primary oracle; each check is preceded by the inter-call delay."""
        found = 0
        for entry in candidates[:MAX_RELATIONSHIP_UPDATES]:
            await self._pause()
            delta = await lore_tasks.detect_relationship_delta(
                self.oracle, entry.display_name, entry.text, story_text, comprehension,
            )
            if delta is None:
                continue
            spliced = splice_fields(entry.text, relationships=delta.relationships, family=delta.family)
            if spliced == entry.text:
                continue
            updated.pending_updates.append(PendingUpdate(
                id=generate_id(),
                display_name=entry.display_name,
                keys=list(entry.keys),
                category="character",
                original_text=entry.text,
                updated_text=spliced,
                is_relationship_update=True,
                created_at=now_ms(),
            ))
            found += 1
            emit_progress(on_progress, ScanProgress(
                phase="updating-relationships", pending_updates=list(updated.pending_updates),
            ))
        if found:
            logger.info("Found %d relationship updates", found)
        return found

    async def _update_relationships(
        self,
        existing_entries: Sequence[LorebookEntry],
        story_text: str,
        updated: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> int:
        touched = {u.display_name.lower() for u in updated.pending_updates}
        touched.update(m.existing_display_name.lower() for m in updated.pending_merges)
        candidates = [
            e for e in existing_entries
            if _has_body(e) and is_template_formatted(e.text)
            and e.display_name.lower() not in touched
        ]
        if not candidates:
            return 0
        emit_progress(on_progress, ScanProgress(phase="updating-relationships"))
        logger.info("Checking %d formatted characters for relationship updates", len(candidates))
        return await self._relationship_pass(candidates, story_text, updated, on_progress, comprehension)

    async def _scan_relationships_only(
        self,
        story_text: str,
        existing_entries: Sequence[LorebookEntry],
        state: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> ScanResult:
        updated = state.model_copy(deep=True)
        formatted = [e for e in existing_entries if _has_body(e) and is_template_formatted(e.text)]
        if not formatted:
            return ScanResult(state=updated, no_results=True)

        pending = {u.display_name.lower() for u in updated.pending_updates}
        candidates = [e for e in formatted if e.display_name.lower() not in pending]

        emit_progress(on_progress, ScanProgress(phase="updating-relationships"))
        logger.info("Relationships scan: checking %d formatted characters", len(candidates))
        found = await self._relationship_pass(candidates, story_text, updated, on_progress, comprehension)

        updated.chars_since_last_scan = 0
        summary = ScanSummary(relationship_updates_found=found)
        logger.info("Relationships scan complete: %s", summary.model_dump())
        return ScanResult(state=updated, summary=summary, no_results=found == 0)

    async def _reformat_characters(
        self,
        hybrid: HybridProviders,
        existing_entries: Sequence[LorebookEntry],
        story_text: str,
        updated: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> int:
        pending = {u.display_name.lower() for u in updated.pending_updates}
        pending.update(m.existing_display_name.lower() for m in updated.pending_merges)
        pending.update(n.lower() for n in updated.dismissed_reformat_names)

        candidates = [
            e for e in existing_entries
            if _has_body(e)
            and not is_template_formatted(e.text)
            and looks_like_character(e.text)
            and e.display_name.lower() not in pending
        ]
        if not candidates:
            return 0
        emit_progress(on_progress, ScanProgress(phase="enriching"))
        logger.info("Found %d unformatted character entries", len(candidates))

        async def reformat(entry: LorebookEntry, provider: TextOracle) -> str | None:
            return await lore_tasks.reformat_entry(
                provider, entry.display_name, entry.text, story_text, comprehension,
            )

        found = 0
        results = await hybrid.run_batched(
            candidates[:MAX_REFORMATS_PER_SCAN], reformat, delay_first=True, label="reformat",
        )
        for entry, reformatted in results:
            if not reformatted or reformatted == entry.text:
                continue
            updated.pending_updates.append(PendingUpdate(
                id=generate_id(),
                display_name=entry.display_name,
                keys=list(entry.keys),
                category="character",
                original_text=entry.text,
                updated_text=reformatted,
                is_reformat=True,
                created_at=now_ms(),
            ))
            found += 1
            emit_progress(on_progress, ScanProgress(
                phase="enriching", pending_updates=list(updated.pending_updates),
            ))
        return found

    async def _propagate_names(
        self,
        existing_entries: Sequence[LorebookEntry],
        updated: ScanState,
        on_progress: ProgressCallback | None,
        comprehension: str | None,
    ) -> int:
        roster: list[LorebookEntry] = [
            e for e in existing_entries
            if e.text and (e.category == "character" or looks_like_character(e.text))
        ]
        roster.extend(p for p in updated.pending_entries if p.category == "character")
        if len(roster) < 2:
            return 0

        emit_progress(on_progress, ScanProgress(phase="propagating-names"))
        logger.info("Propagating family names across %d characters", len(roster))
        await self._pause()
        proposals = await lore_tasks.propagate_family_names(self.oracle, roster, comprehension)

        found = 0
        for proposal in proposals:
            current = proposal.current_name.lower()
            match = next(
                (
                    e for e in roster
                    if lore_tasks.character_name(e).lower() == current
                    or e.display_name.lower() == current
                ),
                None,
            )
            if match is None:
                continue
            updated.pending_updates.append(PendingUpdate(
                id=generate_id(),
                display_name=match.display_name,
                keys=list(match.keys),
                category="character",
                original_text=match.text,
                updated_text=replace_name_line(match.text, proposal.proposed_name),
                is_name_update=True,
                proposed_display_name=proposal.proposed_name,
                name_reason=proposal.reason,
                created_at=now_ms(),
            ))
            found += 1
            emit_progress(on_progress, ScanProgress(
                phase="propagating-names", pending_updates=list(updated.pending_updates),
            ))
        if found:
            logger.info("Proposed %d name updates", found)
        return found
