"""Integration test fixtures.

Provides a fully wired AppState backed by in-memory SQLite, a fake generator
and a controllable clock, plus an HTTP client bound to the FastAPI app. Clock
and generator fixtures come from tests/conftest.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from astragate.api import create_app
from astragate.store import SqliteProfileStore
from astragate.state import build_state

if TYPE_CHECKING:
    from astragate.config import Settings
    from astragate.state import AppState
    from tests.conftest import FakeClock, FakeGenerator


@pytest.fixture()
async def profile_store() -> SqliteProfileStore:
    async with aiosqlite.connect(":memory:") as db:
        store = SqliteProfileStore(db)
        await store.init_db()
        yield store


@pytest.fixture()
async def app_state(
    settings: Settings,
    profile_store: SqliteProfileStore,
    generator: FakeGenerator,
    clock: FakeClock,
) -> AppState:
    """Full AppState wired for HTTP integration tests."""
    state = build_state(settings, store=profile_store, generator=generator, clock=clock)
    yield state
    await state.aclose()


@pytest.fixture()
async def client(app_state: AppState) -> httpx.AsyncClient:
    # Unhandled errors become 500 responses instead of propagating into the test
    transport = httpx.ASGITransport(app=create_app(state=app_state), raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
