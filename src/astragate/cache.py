"""In-memory content cache with stale-while-revalidate.

Entries are stored per slot (user + content, without the period), so the
entry generated for yesterday's daily forecast is still reachable after the
user's midnight. ``get`` reports it as a miss; ``get_stale`` hands it out as
a fallback when regeneration fails.

The cache performs no I/O. Durable persistence happens in
``astragate.persistence`` after a generation completes.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import structlog

from astragate.models.content import CacheEntry
from astragate.periods import Period

if TYPE_CHECKING:
    from datetime import datetime

    from astragate.models.content import CacheKey, Payload

log = structlog.get_logger()

_DEFAULT_SHARDS = 16


def is_fresh(entry: CacheEntry, requested: CacheKey) -> bool:
    """Freshness policy.

    Once-per-topic content stays fresh until invalidated. Period-bound content
    is fresh only while the requested period (derived from the caller's clock
    and UTC offset) matches the period the entry was generated in.
    """
    if entry.key.content != requested.content or entry.key.user_id != requested.user_id:
        return False
    if requested.content.period is Period.NONE:
        return True
    return entry.key.period == requested.period


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, CacheEntry] = {}


class ContentCache:
    """Process-wide map of generated content, sharded by slot."""

    def __init__(self, *, shards: int = _DEFAULT_SHARDS) -> None:
        self._shards = [_Shard() for _ in range(shards)]

    def _shard(self, slot: str) -> _Shard:
        return self._shards[hash(slot) % len(self._shards)]

    def _lookup(self, key: CacheKey) -> CacheEntry | None:
        shard = self._shard(key.slot)
        with shard.lock:
            return shard.entries.get(key.slot)

    def get(self, key: CacheKey) -> CacheEntry | None:
        """Return the entry for ``key`` if it is fresh. Returns ``None`` on miss."""
        entry = self._lookup(key)
        if entry is None:
            return None
        if not is_fresh(entry, key):
            log.debug("cache_stale", key=str(key), entry_period=entry.key.period)
            return None
        return entry

    def get_stale(self, key: CacheKey) -> CacheEntry | None:
        """Return whatever is stored for the slot of ``key``, fresh or not."""
        return self._lookup(key)

    def put(self, key: CacheKey, payload: Payload, generated_at: datetime) -> CacheEntry:
        """Store a new entry, replacing any previous one for the same slot."""
        entry = CacheEntry(key=key, payload=payload, generated_at=generated_at)
        self.store(entry)
        return entry

    def store(self, entry: CacheEntry, *, replace: bool = True) -> bool:
        """Insert a prebuilt entry. With ``replace=False`` an occupied slot is left alone."""
        slot = entry.key.slot
        shard = self._shard(slot)
        with shard.lock:
            if not replace and slot in shard.entries:
                return False
            shard.entries[slot] = entry
        return True

    def invalidate(self, key: CacheKey) -> bool:
        """Remove the entry for the slot of ``key``. Returns True if one existed."""
        shard = self._shard(key.slot)
        with shard.lock:
            removed = shard.entries.pop(key.slot, None)
        if removed is not None:
            log.info("cache_invalidated", key=str(key))
        return removed is not None

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)
