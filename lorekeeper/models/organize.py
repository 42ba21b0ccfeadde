"""Organize-pass models: duplicate candidates, classifications and cleanups."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from lorekeeper.models.lorebook import LorebookEntry


class DuplicateCandidate(BaseModel):
    entry_a: LorebookEntry
    entry_b: LorebookEntry
    similarity: float
    reason: str = ""


class ConfirmedDuplicate(BaseModel):
    keep_entry: LorebookEntry
    remove_entry: LorebookEntry
    merged_text: str
    merged_keys: list[str] = []
    reason: str = ""


class ClassificationResult(BaseModel):
    entry_id: str
    display_name: str
    suggested_type: str
    confidence: int


class EntrySnapshot(BaseModel):
    id: str
    display_name: str
    keys: list[str] = []
    text: str = ""

    @classmethod
    def of(cls, entry: LorebookEntry) -> EntrySnapshot:
        return cls(id=entry.id, display_name=entry.display_name, keys=entry.keys, text=entry.text)


class DuplicateCleanup(BaseModel):
    id: str
    type: Literal["duplicate"] = "duplicate"
    keep_entry: EntrySnapshot
    remove_entry: EntrySnapshot
    merged_text: str
    merged_keys: list[str] = []
    reason: str = ""


class CategoryCleanup(BaseModel):
    id: str
    type: Literal["legacy-move", "recategorize"]
    entry_id: str
    display_name: str
    current_category: str
    current_category_id: str | None = None
    proposed_category: str
    proposed_type: str
    proposed_category_id: str | None = None


Cleanup = Annotated[Union[DuplicateCleanup, CategoryCleanup], Field(discriminator="type")]


def duplicate_cleanup_id(keep_id: str, remove_id: str) -> str:
    return f"dup_{keep_id}_{remove_id}"


def category_cleanup_id(cleanup_type: str, entry_id: str, proposed_type: str) -> str:
    return f"{cleanup_type}_{entry_id}_{proposed_type}"


class OrganizeResult(BaseModel):
    cleanups: list[Cleanup] = []
