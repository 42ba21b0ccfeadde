"""Bidirectional map between store category ids and the five semantic categories."""

from __future__ import annotations

from dataclasses import dataclass, field

# Semantic category -> display name the store is expected to use
TYPE_TO_CATEGORY_NAME: dict[str, str] = {
    "character": "Characters",
    "location": "Locations",
    "item": "Items",
    "faction": "Factions",
    "concept": "Concepts",
}

# Fallback bucket that scans file new entries into before they are organized
DEFAULT_BUCKET_NAME = "Lore Creator"


@dataclass(frozen=True)
class CategoryMap:
    """``{category_id: display_name}`` plus a case-insensitive reverse lookup."""

    names_by_id: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        reverse = {name.lower(): cat_id for cat_id, name in self.names_by_id.items()}
        object.__setattr__(self, "_ids_by_name", reverse)

    def name_of(self, category_id: str | None) -> str:
        if not category_id:
            return ""
        return self.names_by_id.get(category_id, "")

    def id_of(self, name: str) -> str | None:
        return self._ids_by_name.get(name.lower())

    def expected_name(self, semantic_type: str) -> str:
        return TYPE_TO_CATEGORY_NAME[semantic_type]

    def id_for_type(self, semantic_type: str) -> str | None:
        return self.id_of(self.expected_name(semantic_type))

    @property
    def default_bucket_id(self) -> str | None:
        return self.id_of(DEFAULT_BUCKET_NAME)

    def is_legacy(self, category_id: str | None) -> bool:
        """Uncategorized, or still sitting in the default bucket."""
        return not category_id or category_id == self.default_bucket_id
