"""Shared test fixtures: scripted oracles and an in-memory lorebook database."""

from unittest.mock import patch

import aiosqlite
import pytest
import pytest_asyncio

from lorekeeper.infra.llm_client import LlmResponse

# Schema mirrored from lorekeeper/db/sqlite_db.py
_TEST_SCHEMA = """
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
"""

# System-prompt fragments identifying each oracle task
ROUTES = {
    "identify": "Identify important lore-worthy elements",
    "draft": "lorebook entry writer",
    "update": "detect new information about existing lorebook entries",
    "relationships": "new relationship and family information",
    "reformat": "enrich and reformat lorebook character entries",
    "family": "consistent family naming",
    "confirm": "analyze lorebook entries for duplicates",
    "classify": "classify lorebook entries into categories",
    "match": "match user requests",
    "enrich": "You update lorebook entries",
    "create": "lorebook entry creator",
}


class ScriptedOracle:
    """Oracle double that answers by task.

    ``scripts`` maps a ``ROUTES`` name to a reply. A list reply is consumed one
    item per call; an exception instance is raised. Unscripted tasks get "".
    """

    def __init__(self, **scripts):
        self.scripts = scripts
        self.calls: list[dict] = []

    def _route(self, system: str) -> str | None:
        for name, fragment in ROUTES.items():
            if fragment in system:
                return name
        return None

    def calls_to(self, route: str) -> list[dict]:
        return [c for c in self.calls if c["route"] == route]

    async def generate(self, messages, *, max_tokens, temperature):
        route = self._route(messages[0]["content"])
        self.calls.append({
            "route": route,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        reply = self.scripts.get(route, "")
        if isinstance(reply, list):
            reply = reply.pop(0) if reply else ""
        if isinstance(reply, BaseException):
            raise reply
        return LlmResponse(output=reply)


@pytest.fixture
def make_oracle():
    return ScriptedOracle


@pytest_asyncio.fixture
async def memory_db():
    """Create an in-memory SQLite database with full schema."""
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.executescript(_TEST_SCHEMA)
    await conn.commit()
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def mock_get_connection(memory_db):
    """Patch get_connection in every store to return the shared in-memory DB.

    close() is a no-op so the fixture owns the connection lifecycle.
    """

    class _NonClosingConnection:
        def __init__(self, conn):
            self._conn = conn

        def __getattr__(self, name):
            return getattr(self._conn, name)

        async def close(self):
            pass  # no-op

    async def _factory():
        return _NonClosingConnection(memory_db)

    with patch("lorekeeper.db.lorebook_store.get_connection", _factory), \
         patch("lorekeeper.db.scan_state_store.get_connection", _factory):
        yield memory_db
