"""Unit-specific fixtures (no I/O beyond in-memory SQLite)."""

from __future__ import annotations

import aiosqlite
import pytest

from astragate.store import SqliteProfileStore


@pytest.fixture()
async def profile_store():
    """In-memory SQLite profile store for unit tests."""
    async with aiosqlite.connect(":memory:") as db:
        s = SqliteProfileStore(db)
        await s.init_db()
        yield s
