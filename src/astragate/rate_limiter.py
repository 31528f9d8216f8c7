"""In-memory fixed-window rate limiter.

State is per process. Running several instances behind a load balancer gives
each instance its own budget; there is no shared backing store.

Windows are spread over a fixed number of shards, each guarded by its own
lock, so checks for unrelated subjects never wait on each other. The
periodic sweep takes the same shard locks as ``check_and_consume``.
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import suppress
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Self

import structlog

from astragate.models.rate_limit import RateLimitResult
from astragate.periods import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable

    from astragate.models.rate_limit import RateLimitConfig

log = structlog.get_logger()

_DEFAULT_SHARDS = 16


@dataclass
class RateLimitWindow:
    subject: str
    count: int
    window_start: datetime
    window_end: datetime


class _Shard:
    __slots__ = ("lock", "windows")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.windows: dict[str, RateLimitWindow] = {}


class RateLimiter:
    """Per-subject request counter with a cancellable background sweep."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utc_now,
        sweep_interval_seconds: float = 300.0,
        shards: int = _DEFAULT_SHARDS,
    ) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._shards = [_Shard() for _ in range(shards)]
        self._sweep_task: asyncio.Task[None] | None = None

    def _shard(self, subject: str) -> _Shard:
        return self._shards[hash(subject) % len(self._shards)]

    def check_and_consume(self, subject: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one request for ``subject`` if its window still has budget.

        Rejected calls leave the window untouched, so hammering a closed
        window neither extends nor resets it.
        """
        now = self._clock()
        shard = self._shard(subject)
        with shard.lock:
            window = shard.windows.get(subject)
            if window is None or window.window_end <= now:
                window = RateLimitWindow(
                    subject=subject,
                    count=0,
                    window_start=now,
                    window_end=now + config.window,
                )
                shard.windows[subject] = window
            if window.count < config.max_requests:
                window.count += 1
                return RateLimitResult(
                    allowed=True,
                    limit=config.max_requests,
                    remaining=config.max_requests - window.count,
                    reset_at=window.window_end,
                )
            reset_at = window.window_end

        log.info("rate_limit_exceeded", subject=subject, reset_at=reset_at.isoformat())
        return RateLimitResult(
            allowed=False,
            limit=config.max_requests,
            remaining=0,
            reset_at=reset_at,
        )

    def peek(self, subject: str) -> RateLimitWindow | None:
        """Snapshot of the current window for ``subject``, if any."""
        shard = self._shard(subject)
        with shard.lock:
            window = shard.windows.get(subject)
            return replace(window) if window is not None else None

    def __len__(self) -> int:
        return sum(len(shard.windows) for shard in self._shards)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Drop windows whose end has passed. Returns the number removed."""
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [s for s, w in shard.windows.items() if w.window_end <= now]
                for subject in expired:
                    del shard.windows[subject]
                removed += len(expired)
        log.debug("rate_limit_sweep_complete", removed=removed, active=len(self))
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep. Must be called from a running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="rate-limit-sweep")

    async def aclose(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
