"""Collapse concurrent work for the same key into one in-flight task.

The first caller for a key starts the work as its own task; later callers
await that task instead of starting another. Everyone observes the same
result or the same exception. Callers await through ``asyncio.shield`` so a
caller that gives up (e.g. a disconnected HTTP client) does not cancel work
other callers are waiting on; the task always runs to completion.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Hashable

log = structlog.get_logger()

T = TypeVar("T")


class SingleFlightRegistry:
    def __init__(self) -> None:
        self._tickets: dict[Hashable, asyncio.Task[Any]] = {}

    async def run(
        self,
        key: Hashable,
        fn: Callable[[], Awaitable[T]],
        *,
        on_success: Callable[[T], None] | None = None,
    ) -> T:
        """Run ``fn`` unless a task for ``key`` is already in flight, then await it.

        ``on_success`` is only honoured for the caller that starts the task. It
        runs once the ticket has been released, outside the critical section.
        """
        task = self._tickets.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._tickets[key] = task
            task.add_done_callback(partial(self._release, key, on_success=on_success))
            log.debug("single_flight_started", key=str(key))
        else:
            log.debug("single_flight_joined", key=str(key))
        return await asyncio.shield(task)

    def _release(
        self,
        key: Hashable,
        task: asyncio.Task[Any],
        *,
        on_success: Callable[[Any], None] | None,
    ) -> None:
        if self._tickets.get(key) is task:
            del self._tickets[key]
        if task.cancelled():
            return
        # Retrieving the exception keeps asyncio from reporting it as
        # never retrieved when every joiner has already gone away.
        if task.exception() is not None or on_success is None:
            return
        try:
            on_success(task.result())
        except Exception:
            log.error("single_flight_callback_error", key=str(key), exc_info=True)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._tickets

    def __len__(self) -> int:
        return len(self._tickets)

    async def aclose(self) -> None:
        """Cancel every outstanding task. Called at shutdown."""
        tasks = list(self._tickets.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            log.info("single_flight_cancelled", count=len(tasks))
