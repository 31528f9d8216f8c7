"""Shared fixtures: controllable clock, fake collaborators, wired AppState."""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from astragate.config import Settings
from astragate.errors import PersistenceError
from astragate.state import build_state

if TYPE_CHECKING:
    from pathlib import Path

    from astragate.models.profile import Profile
    from astragate.models.requests import GenerationRequest
    from astragate.state import AppState


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeGenerator:
    """Records calls; can block, sleep, fail or return a fixed payload on demand."""

    def __init__(self) -> None:
        self.calls: list[GenerationRequest] = []
        self.error: Exception | None = None
        self.delay: float = 0.0
        self.release: asyncio.Event | None = None
        self.payload: object = None

    async def generate(self, request: GenerationRequest) -> object:
        self.calls.append(request)
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.payload is not None:
            return self.payload
        return f"{request.content.segment} text #{len(self.calls)}"


class InMemoryProfileStore:
    """ProfileStore double. ``failing_saves`` makes the next N saves fail."""

    def __init__(self) -> None:
        self.profiles: dict[str, Profile] = {}
        self.failing_saves = 0
        self.failing_loads = 0
        self.save_calls = 0
        self.load_calls = 0

    async def load(self, user_id: str) -> Profile | None:
        self.load_calls += 1
        if self.failing_loads:
            self.failing_loads -= 1
            raise PersistenceError("load failed")
        return self.profiles.get(user_id)

    async def save(self, profile: Profile) -> None:
        self.save_calls += 1
        if self.failing_saves:
            self.failing_saves -= 1
            raise PersistenceError("save failed")
        self.profiles[profile.user_id] = profile


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=UTC))


@pytest.fixture()
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
async def state(
    settings: Settings,
    store: InMemoryProfileStore,
    generator: FakeGenerator,
    clock: FakeClock,
) -> AppState:
    app_state = build_state(settings, store=store, generator=generator, clock=clock)
    yield app_state
    await app_state.aclose()


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Environment for running the server in a subprocess with an isolated db."""
    env = os.environ.copy()
    env["ASTRAGATE__STORE__DB_PATH"] = str(tmp_path / "content.db")
    return env
