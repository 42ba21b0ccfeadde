"""Persistence for per-lorebook ScanState and dismissed cleanup ids."""

import logging

from pydantic import ValidationError

from lorekeeper.db.lorebook_store import StoreError
from lorekeeper.db.sqlite_db import get_connection
from lorekeeper.models.lorebook import ScanState

logger = logging.getLogger(__name__)


async def load_state(lorebook_id: str) -> ScanState:
    """Stored state, or a fresh one if none has been saved."""
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            "SELECT state_json FROM scan_states WHERE lorebook_id = ?", (lorebook_id,),
        )
        row = await cursor.fetchone()
    finally:
        await conn.close()
    if not row:
        return ScanState()
    try:
        return ScanState.model_validate_json(row["state_json"])
    except ValidationError as exc:
        raise StoreError(f"Corrupt scan state for lorebook {lorebook_id!r}") from exc


async def save_state(lorebook_id: str, state: ScanState) -> None:
    conn = await get_connection()
    try:
        await conn.execute(
            """
            INSERT INTO scan_states (lorebook_id, state_json, updated_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(lorebook_id) DO UPDATE SET
                state_json = excluded.state_json,
                updated_at = excluded.updated_at
            """,
            (lorebook_id, state.model_dump_json()),
        )
        await conn.commit()
    finally:
        await conn.close()


async def add_chars_since_scan(lorebook_id: str, count: int) -> ScanState:
    """Bump the unscanned-character counter and persist it."""
    state = await load_state(lorebook_id)
    state.chars_since_last_scan += count
    await save_state(lorebook_id, state)
    return state


async def dismiss_cleanup(lorebook_id: str, cleanup_id: str) -> None:
    conn = await get_connection()
    try:
        await conn.execute(
            "INSERT OR IGNORE INTO dismissed_cleanups (lorebook_id, cleanup_id) VALUES (?, ?)",
            (lorebook_id, cleanup_id),
        )
        await conn.commit()
    finally:
        await conn.close()


async def get_dismissed_cleanups(lorebook_id: str) -> set[str]:
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            "SELECT cleanup_id FROM dismissed_cleanups WHERE lorebook_id = ?", (lorebook_id,),
        )
        rows = await cursor.fetchall()
    finally:
        await conn.close()
    return {row["cleanup_id"] for row in rows}
