"""Application state: every long-lived component, built once per process.

``open_app_state`` owns the lifecycle: the store connection, the generator's
HTTP client and the rate-limit sweep task are created on entry and torn down
in reverse order on exit.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from astragate.cache import ContentCache
from astragate.allowances import UsageLedger
from astragate.generator import HttpGenerator, build_http_client
from astragate.orchestrator import GenerationOrchestrator
from astragate.persistence import ContentPersister
from astragate.periods import utc_now
from astragate.rate_limiter import RateLimiter
from astragate.single_flight import SingleFlightRegistry
from astragate.store import SqliteProfileStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import datetime

    from astragate.config import Settings
    from astragate.generator import Generator
    from astragate.store import ProfileStore

log = structlog.get_logger()


@dataclass
class AppState:
    settings: Settings
    rate_limiter: RateLimiter
    cache: ContentCache
    flights: SingleFlightRegistry
    persister: ContentPersister
    ledger: UsageLedger
    orchestrator: GenerationOrchestrator
    clock: Callable[[], datetime] = utc_now

    async def aclose(self) -> None:
        await self.rate_limiter.aclose()
        await self.flights.aclose()
        await self.persister.aclose()


def build_state(
    settings: Settings,
    *,
    store: ProfileStore,
    generator: Generator,
    clock: Callable[[], datetime] = utc_now,
) -> AppState:
    """Wire the components together. Does not start background tasks."""
    rate_limiter = RateLimiter(
        clock=clock, sweep_interval_seconds=settings.rate_limits.sweep_interval_seconds
    )
    cache = ContentCache()
    flights = SingleFlightRegistry()
    persister = ContentPersister(store, clock=clock)
    ledger = UsageLedger(clock=clock)
    orchestrator = GenerationOrchestrator(
        rate_limiter=rate_limiter,
        cache=cache,
        flights=flights,
        generator=generator,
        persister=persister,
        rate_limits=settings.rate_limits,
        allowances=settings.allowances,
        ledger=ledger,
        timeout_seconds=settings.generator.timeout_seconds,
        max_hydrated_users=settings.store.max_hydrated_users,
        clock=clock,
    )
    return AppState(
        settings=settings,
        rate_limiter=rate_limiter,
        cache=cache,
        flights=flights,
        persister=persister,
        ledger=ledger,
        orchestrator=orchestrator,
        clock=clock,
    )


@asynccontextmanager
async def open_app_state(settings: Settings) -> AsyncIterator[AppState]:
    db_path = Path(settings.store.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db, build_http_client(settings.generator) as client:
        store = SqliteProfileStore(db)
        await store.init_db()
        state = build_state(
            settings, store=store, generator=HttpGenerator(client, settings.generator)
        )
        state.rate_limiter.start()
        log.info("app_state_ready", db_path=str(db_path), model=settings.generator.model)
        try:
            yield state
        finally:
            await state.aclose()
            log.info("app_state_closed")
