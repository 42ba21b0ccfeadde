"""Lorebook entry and scan-state Pydantic models."""

from __future__ import annotations

import random
import string
import time

from pydantic import BaseModel

ALL_CATEGORIES: tuple[str, ...] = ("character", "location", "item", "faction", "concept")
MAX_KEYS = 6


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id() -> str:
    """``lore_<epoch ms>_<9 random base36 chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"lore_{now_ms()}_{suffix}"


def normalize_keys(keys: list[str], limit: int = MAX_KEYS) -> list[str]:
    """Drop non-strings/blanks and case-insensitive duplicates, keep first ``limit``."""
    seen: set[str] = set()
    result: list[str] = []
    for key in keys:
        if not isinstance(key, str) or not key.strip():
            continue
        folded = key.strip().lower()
        if folded in seen:
            continue
        seen.add(folded)
        result.append(key.strip())
    return result[:limit]


class LorebookEntry(BaseModel):
    id: str
    category: str | None = None  # store category id, or a semantic category
    display_name: str = ""
    keys: list[str] = []
    text: str = ""
    created_at: int = 0


class PendingEntry(LorebookEntry):
    confidence: int = 3  # 1-5


class PendingMerge(BaseModel):
    id: str
    new_name: str
    new_category: str
    existing_display_name: str
    existing_keys: list[str] = []
    existing_text: str = ""
    proposed_display_name: str
    proposed_keys: list[str] = []
    proposed_text: str = ""
    created_at: int = 0


class PendingUpdate(BaseModel):
    id: str
    display_name: str
    keys: list[str] = []
    category: str
    original_text: str = ""
    updated_text: str
    is_relationship_update: bool = False
    is_reformat: bool = False
    is_name_update: bool = False
    proposed_display_name: str | None = None
    name_reason: str | None = None
    created_at: int = 0


class ScanState(BaseModel):
    """Per-lorebook accumulator threaded through scans.

    Scans never mutate an instance they receive; they return a deep copy.
    """

    pending_entries: list[PendingEntry] = []
    pending_merges: list[PendingMerge] = []
    pending_updates: list[PendingUpdate] = []
    rejected_names: list[str] = []
    rejected_merge_names: list[str] = []  # "<element name>-><merge target>"
    dismissed_update_names: list[str] = []
    dismissed_reformat_names: list[str] = []
    chars_since_last_scan: int = 0


class IdentifiedElement(BaseModel):
    name: str
    category: str
    merges_with: str | None = None


class ExistingElement(BaseModel):
    name: str
    category: str
    entry: LorebookEntry


class MergeElement(BaseModel):
    name: str
    category: str
    merge_target: str
    entry: LorebookEntry


class Partition(BaseModel):
    new_elements: list[IdentifiedElement] = []
    existing_elements: list[ExistingElement] = []
    merge_elements: list[MergeElement] = []
    excluded_count: int = 0

    def is_empty(self) -> bool:
        return not (self.new_elements or self.existing_elements or self.merge_elements)


class RelationshipDelta(BaseModel):
    family: str | None = None
    relationships: str | None = None


class NameProposal(BaseModel):
    current_name: str
    proposed_name: str
    reason: str = ""


class ScanProgress(BaseModel):
    phase: str
    pending_entries: list[PendingEntry] | None = None
    pending_merges: list[PendingMerge] | None = None
    pending_updates: list[PendingUpdate] | None = None


class ScanSummary(BaseModel):
    generated: int = 0
    merges_found: int = 0
    updates_found: int = 0
    relationship_updates_found: int = 0
    reformats_found: int = 0
    name_proposals: int = 0


class ScanResult(BaseModel):
    state: ScanState
    summary: ScanSummary | None = None
    no_results: bool = False
    error: str | None = None
