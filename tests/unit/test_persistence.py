"""Unit tests for astragate.persistence.ContentPersister."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from structlog.testing import capture_logs

from astragate.errors import PersistenceFailed
from astragate.models.content import CacheEntry, CacheKey, DailyForecast, DeepDiveTopic
from astragate.persistence import ContentPersister

if TYPE_CHECKING:
    from astragate.models.content import ContentType
    from astragate.models.profile import Profile
    from astragate.store import SqliteProfileStore
    from tests.conftest import FakeClock, InMemoryProfileStore


def make_entry(clock: FakeClock, content: ContentType, payload: str = "Text") -> CacheEntry:
    key = CacheKey.for_content("u1", content, clock())
    return CacheEntry(key=key, payload=payload, generated_at=clock())


class SlowStore:
    """Wraps a store so loads yield to the event loop, exposing lost updates."""

    def __init__(self, inner: InMemoryProfileStore) -> None:
        self.inner = inner

    async def load(self, user_id: str) -> Profile | None:
        profile = await self.inner.load(user_id)
        await asyncio.sleep(0.01)
        return profile

    async def save(self, profile: Profile) -> None:
        await self.inner.save(profile)


class TestPersist:
    async def test_creates_profile(self, store: InMemoryProfileStore, clock: FakeClock) -> None:
        persister = ContentPersister(store, clock=clock)
        entry = make_entry(clock, DailyForecast())
        await persister.persist(entry)

        profile = store.profiles["u1"]
        assert profile.updated_at == clock()
        assert list(profile.generated_content) == ["u1:daily-forecast"]

    async def test_merges_with_existing_content(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        persister = ContentPersister(store, clock=clock)
        await persister.persist(make_entry(clock, DailyForecast()))
        await persister.persist(make_entry(clock, DeepDiveTopic(topic="love")))

        assert set(store.profiles["u1"].generated_content) == {
            "u1:daily-forecast",
            "u1:deep-dive/love",
        }

    async def test_concurrent_writes_for_same_user_are_not_lost(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        persister = ContentPersister(SlowStore(store), clock=clock)
        topics = ["love", "career", "health"]
        await asyncio.gather(
            *(persister.persist(make_entry(clock, DeepDiveTopic(topic=t))) for t in topics)
        )

        assert len(store.profiles["u1"].generated_content) == 3

    async def test_retries_once_then_succeeds(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        store.failing_saves = 1
        persister = ContentPersister(store, clock=clock)
        await persister.persist(make_entry(clock, DailyForecast()))

        assert store.save_calls == 2
        assert "u1" in store.profiles

    async def test_gives_up_after_attempts(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        store.failing_saves = 5
        persister = ContentPersister(store, clock=clock)
        with pytest.raises(PersistenceFailed):
            await persister.persist(make_entry(clock, DailyForecast()))
        assert store.save_calls == 2

    async def test_load_failure_counts_as_attempt(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        store.failing_loads = 1
        persister = ContentPersister(store, clock=clock)
        await persister.persist(make_entry(clock, DailyForecast()))
        assert store.save_calls == 1

    async def test_works_with_sqlite_store(
        self, profile_store: SqliteProfileStore, clock: FakeClock
    ) -> None:
        persister = ContentPersister(profile_store, clock=clock)
        entry = make_entry(clock, DeepDiveTopic(topic="karma"), "Karmic lessons")
        await persister.persist(entry)

        assert await persister.load_entries("u1") == [entry]


class TestSchedule:
    async def test_background_failure_is_logged(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        store.failing_saves = 2
        persister = ContentPersister(store, clock=clock)
        with capture_logs() as logs:
            task = persister.schedule(make_entry(clock, DailyForecast()))
            await task

        events = [log["event"] for log in logs]
        assert events.count("content_persist_attempt_failed") == 2
        assert "content_persist_failed" in events
        assert task.exception() is None

    async def test_aclose_waits_for_pending(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        persister = ContentPersister(SlowStore(store), clock=clock)
        persister.schedule(make_entry(clock, DailyForecast()))
        assert len(persister) == 1

        await persister.aclose()
        assert len(persister) == 0
        assert "u1" in store.profiles

    async def test_load_entries_for_unknown_user(
        self, store: InMemoryProfileStore, clock: FakeClock
    ) -> None:
        assert await ContentPersister(store, clock=clock).load_entries("nobody") == []
