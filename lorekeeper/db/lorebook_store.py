"""Read-mostly persistence for lorebook entries and their category map."""

import json
import logging

from pydantic import ValidationError

from lorekeeper.db.sqlite_db import get_connection
from lorekeeper.models.category_map import CategoryMap
from lorekeeper.models.lorebook import LorebookEntry, normalize_keys

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Structural problem with stored or imported lorebook data."""


def _entry_from_payload(raw: dict) -> LorebookEntry:
    """Accepts both the app's camelCase export keys and snake_case."""
    if not isinstance(raw, dict):
        raise StoreError(f"Entry must be an object, got {type(raw).__name__}")
    try:
        entry = LorebookEntry(
            id=raw["id"],
            category=raw.get("category"),
            display_name=raw.get("displayName", raw.get("display_name", "")),
            keys=raw.get("keys", []),
            text=raw.get("text", ""),
            created_at=raw.get("createdAt", raw.get("created_at", 0)),
        )
    except KeyError as exc:
        raise StoreError("Entry is missing an id") from exc
    except ValidationError as exc:
        raise StoreError(f"Invalid entry {raw.get('id')!r}: {exc}") from exc
    entry.keys = normalize_keys(entry.keys)
    return entry


async def import_lorebook(lorebook_id: str, payload: dict) -> int:
    """Replace a lorebook's categories and entries. Returns the entry count."""
    categories = payload.get("categories", {})
    raw_entries = payload.get("entries")
    if not isinstance(categories, dict):
        raise StoreError("'categories' must map category id to name")
    if not isinstance(raw_entries, list):
        raise StoreError("'entries' must be a list")

    entries = [_entry_from_payload(raw) for raw in raw_entries]
    ids = [e.id for e in entries]
    if len(set(ids)) != len(ids):
        raise StoreError("Duplicate entry ids in import")

    conn = await get_connection()
    try:
        await conn.execute("DELETE FROM lore_entries WHERE lorebook_id = ?", (lorebook_id,))
        await conn.execute("DELETE FROM lore_categories WHERE lorebook_id = ?", (lorebook_id,))
        await conn.executemany(
            "INSERT INTO lore_categories (id, lorebook_id, name) VALUES (?, ?, ?)",
            [(str(cat_id), lorebook_id, str(name)) for cat_id, name in categories.items()],
        )
        await conn.executemany(
            """
            INSERT INTO lore_entries
                (id, lorebook_id, category_id, display_name, keys_json, text, position, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    e.id, lorebook_id, e.category, e.display_name,
                    json.dumps(e.keys, ensure_ascii=False), e.text, pos, e.created_at,
                )
                for pos, e in enumerate(entries)
            ],
        )
        await conn.commit()
    finally:
        await conn.close()

    logger.info("Imported %d entries into lorebook %s", len(entries), lorebook_id)
    return len(entries)


async def list_entries(lorebook_id: str) -> list[LorebookEntry]:
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            """
            SELECT id, category_id, display_name, keys_json, text, created_at
            FROM lore_entries WHERE lorebook_id = ?
            ORDER BY position, created_at
            """,
            (lorebook_id,),
        )
        rows = await cursor.fetchall()
    finally:
        await conn.close()

    return [
        LorebookEntry(
            id=row["id"],
            category=row["category_id"],
            display_name=row["display_name"],
            keys=json.loads(row["keys_json"]),
            text=row["text"],
            created_at=row["created_at"],
        )
        for row in rows
    ]


async def get_category_map(lorebook_id: str) -> CategoryMap:
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            "SELECT id, name FROM lore_categories WHERE lorebook_id = ? ORDER BY id",
            (lorebook_id,),
        )
        rows = await cursor.fetchall()
    finally:
        await conn.close()
    return CategoryMap({row["id"]: row["name"] for row in rows})


async def reorder_entries(lorebook_id: str, ordered_ids: list[str]) -> None:
    """Rewrite entry positions; ``ordered_ids`` must name every entry exactly once."""
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            "SELECT id FROM lore_entries WHERE lorebook_id = ?", (lorebook_id,),
        )
        current = {row["id"] for row in await cursor.fetchall()}
        if len(ordered_ids) != len(current) or set(ordered_ids) != current:
            raise StoreError(
                f"Reorder expects {len(current)} ids, got {len(ordered_ids)} "
                "(or ids do not match)"
            )
        await conn.executemany(
            "UPDATE lore_entries SET position = ? WHERE lorebook_id = ? AND id = ?",
            [(pos, lorebook_id, entry_id) for pos, entry_id in enumerate(ordered_ids)],
        )
        await conn.commit()
    finally:
        await conn.close()
