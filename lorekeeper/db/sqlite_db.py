import aiosqlite

from lorekeeper.infra.config import DB_PATH, ensure_data_dir

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS lore_categories (
    id              TEXT NOT NULL,
    lorebook_id     TEXT NOT NULL,
    name            TEXT NOT NULL,
    PRIMARY KEY (lorebook_id, id)
);

CREATE TABLE IF NOT EXISTS lore_entries (
    id              TEXT NOT NULL,
    lorebook_id     TEXT NOT NULL,
    category_id     TEXT,
    display_name    TEXT NOT NULL DEFAULT '',
    keys_json       TEXT NOT NULL DEFAULT '[]',
    text            TEXT NOT NULL DEFAULT '',
    position        INTEGER NOT NULL DEFAULT 0,
    created_at      INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (lorebook_id, id)
);

CREATE TABLE IF NOT EXISTS scan_states (
    lorebook_id     TEXT PRIMARY KEY,
    state_json      TEXT NOT NULL,
    updated_at      TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS dismissed_cleanups (
    lorebook_id     TEXT NOT NULL,
    cleanup_id      TEXT NOT NULL,
    dismissed_at    TEXT DEFAULT (datetime('now')),
    PRIMARY KEY (lorebook_id, cleanup_id)
);

CREATE INDEX IF NOT EXISTS idx_lore_entries_book ON lore_entries(lorebook_id, position);
"""


async def get_connection() -> aiosqlite.Connection:
    conn = await aiosqlite.connect(str(DB_PATH))
    await conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = aiosqlite.Row
    return conn


async def init_db() -> None:
    ensure_data_dir()
    conn = await get_connection()
    try:
        await conn.executescript(_SCHEMA_SQL)
        await conn.commit()
    finally:
        await conn.close()
