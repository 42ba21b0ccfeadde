"""Per-lorebook scan settings."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from lorekeeper.models.lorebook import ALL_CATEGORIES


class EnabledCategories(BaseModel):
    character: bool = True
    location: bool = True
    item: bool = True
    faction: bool = True
    concept: bool = True

    def enabled(self) -> list[str]:
        """Enabled category names in canonical order."""
        return [c for c in ALL_CATEGORIES if getattr(self, c)]


class LoreSettings(BaseModel):
    auto_scan: bool = True
    auto_detect_updates: bool = True
    hybrid_enabled: bool = True
    min_new_chars_for_scan: int = 500
    temperature: float = 0.4
    detail_level: Literal["brief", "standard", "detailed"] = "standard"
    enabled_categories: EnabledCategories = EnabledCategories()


DEFAULT_SETTINGS = LoreSettings()
