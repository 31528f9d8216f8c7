"""Best-effort background persistence of generated content.

Writes go through ``ProfileStore`` as load-merge-save, serialized per user so
two generations finishing together for the same user do not overwrite each
other. A failed write is retried once; after that it is logged and dropped.
The in-memory cache stays authoritative either way.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import TYPE_CHECKING

import structlog

from astragate.errors import PersistenceError, PersistenceFailed
from astragate.models.profile import Profile
from astragate.periods import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from astragate.models.content import CacheEntry
    from astragate.store import ProfileStore

log = structlog.get_logger()


class ContentPersister:
    def __init__(
        self,
        store: ProfileStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        attempts: int = 2,
    ) -> None:
        self._store = store
        self._clock = clock
        self._attempts = attempts
        self._pending: set[asyncio.Task[None]] = set()
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def schedule(self, entry: CacheEntry) -> asyncio.Task[None]:
        """Persist ``entry`` in the background. Failures never reach the caller."""
        task = asyncio.create_task(self._run(entry), name=f"persist:{entry.key.slot}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(self, entry: CacheEntry) -> None:
        try:
            await self.persist(entry)
        except PersistenceFailed as exc:
            log.error("content_persist_failed", key=str(entry.key), error=exc.message)

    async def persist(self, entry: CacheEntry) -> None:
        """Merge ``entry`` into the user's stored profile.

        Raises ``PersistenceFailed`` once every attempt has failed.
        """
        user_id = entry.key.user_id
        last_error: PersistenceError | None = None
        async with self._lock_for(user_id):
            for attempt in range(1, self._attempts + 1):
                try:
                    profile = await self._store.load(user_id) or Profile(user_id=user_id)
                    await self._store.save(profile.with_entry(entry, updated_at=self._clock()))
                except PersistenceError as exc:
                    last_error = exc
                    log.warning(
                        "content_persist_attempt_failed",
                        key=str(entry.key),
                        attempt=attempt,
                        error=str(exc),
                    )
                    continue
                log.debug("content_persisted", key=str(entry.key), attempt=attempt)
                return
        raise PersistenceFailed(
            f"Could not persist {entry.key} after {self._attempts} attempts"
        ) from last_error

    async def load_entries(self, user_id: str) -> list[CacheEntry]:
        """Entries previously persisted for ``user_id``. Raises ``PersistenceError``."""
        profile = await self._store.load(user_id)
        return profile.entries() if profile is not None else []

    def __len__(self) -> int:
        return len(self._pending)

    async def aclose(self) -> None:
        """Wait for writes already scheduled. Called at shutdown."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
