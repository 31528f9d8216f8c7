"""Get-or-generate: the one entry point for AI-generated content.

Request flow::

    tier gate -> allowances -> hydrate -> cache
              -> single-flight( rate limit -> generator -> cache write )
              -> background persistence

A rejected request never reaches the store or the cache. A cache hit returns
before the rate limiter, the single-flight registry or the generator are
touched. When the generation path fails with a retryable error and the cache
still holds an older entry for the same slot, that entry is served instead
(stale-while-revalidate). ``PremiumRequired`` and ``AllowanceExceeded`` are
raised before any of this and are never masked.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from functools import partial
from typing import TYPE_CHECKING

import structlog

from astragate.cache import is_fresh
from astragate.allowances import UsageLedger
from astragate.config import AllowanceSettings
from astragate.errors import (
    AllowanceExceeded,
    GenerationError,
    GenerationFailed,
    GenerationTimeout,
    PersistenceError,
    PremiumRequired,
    RateLimitExceeded,
)
from astragate.models.allowance import Feature
from astragate.models.content import CacheKey, GeneratedContent, SynastryReport
from astragate.models.requests import OperationClass, Tier
from astragate.periods import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from astragate.cache import ContentCache
    from astragate.config import RateLimitSettings
    from astragate.generator import Generator
    from astragate.models.content import CacheEntry, ContentType
    from astragate.models.requests import GenerationRequest
    from astragate.persistence import ContentPersister
    from astragate.rate_limiter import RateLimiter
    from astragate.single_flight import SingleFlightRegistry

log = structlog.get_logger()


class GenerationOrchestrator:
    def __init__(
        self,
        *,
        rate_limiter: RateLimiter,
        cache: ContentCache,
        flights: SingleFlightRegistry,
        generator: Generator,
        persister: ContentPersister,
        rate_limits: RateLimitSettings,
        allowances: AllowanceSettings | None = None,
        ledger: UsageLedger | None = None,
        timeout_seconds: float = 30.0,
        max_hydrated_users: int = 100_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._flights = flights
        self._generator = generator
        self._persister = persister
        self._rate_limits = rate_limits
        self._allowances = allowances or AllowanceSettings()
        self._ledger = ledger or UsageLedger(clock=clock)
        self._timeout = timeout_seconds
        self._clock = clock
        # Users already hydrated, oldest first. Evicted users are simply
        # hydrated again on their next request.
        self._hydrated: OrderedDict[str, None] = OrderedDict()
        self._max_hydrated = max_hydrated_users

    async def get_or_generate(self, request: GenerationRequest) -> GeneratedContent:
        content = request.content
        if content.requires_premium and request.tier is not Tier.PREMIUM:
            log.info("premium_required", user_id=request.user_id, content=content.segment)
            raise PremiumRequired(content.kind)

        key = CacheKey.for_content(
            request.user_id, content, self._clock(), request.utc_offset_minutes
        )
        self._check_allowances(request)
        await self.hydrate(request.user_id)

        if not request.force_regenerate:
            entry = self._cache.get(key)
            if entry is not None:
                log.debug("cache_hit", key=str(key))
                return GeneratedContent.from_entry(entry, cached=True)

        try:
            entry = await self._flights.run(
                key,
                partial(self._generate, request, key),
                on_success=self._persister.schedule,
            )
        except (RateLimitExceeded, GenerationTimeout, GenerationFailed) as exc:
            fallback = self._cache.get_stale(key)
            if fallback is None:
                raise
            log.warning(
                "serving_stale_content",
                key=str(key),
                entry_period=fallback.key.period,
                error_code=exc.code.value,
                error=exc.message,
            )
            return GeneratedContent.from_entry(
                fallback, cached=True, stale=not is_fresh(fallback, key)
            )
        return GeneratedContent.from_entry(entry, cached=False)

    def _check_allowances(self, request: GenerationRequest) -> None:
        """Count this request against the tier's per-feature allowances.

        Usage is recorded here, before the cache, so a request that later
        fails to generate still counts.
        """
        content = request.content
        if request.force_regenerate:
            self._admit(request, Feature.REGENERATE)
        if isinstance(content, SynastryReport) and content.mode == "brief":
            self._admit(request, Feature.SYNASTRY_BRIEF, item=content.partner_fingerprint)

    def _admit(
        self, request: GenerationRequest, feature: Feature, *, item: str | None = None
    ) -> None:
        allowance = self._allowances.allowance_for(request.tier, feature)
        result = self._ledger.admit(
            request.user_id,
            feature,
            allowance,
            item=item,
            utc_offset_minutes=request.utc_offset_minutes,
        )
        if not result.allowed:
            raise AllowanceExceeded(
                feature.value, allowance.limit or 0, resets_at=result.resets_at
            )

    async def _generate(self, request: GenerationRequest, key: CacheKey) -> CacheEntry:
        """Body of the single-flight ticket for ``key``."""
        config = self._rate_limits.config_for(request.tier, OperationClass.GENERATION)
        quota = self._rate_limiter.check_and_consume(request.subject_key, config)
        if not quota.allowed:
            raise RateLimitExceeded(quota.reset_at, now=self._clock())

        started = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout):
                payload = await self._generator.generate(request)
        except TimeoutError as exc:
            log.warning("generation_timeout", key=str(key), timeout_seconds=self._timeout)
            raise GenerationTimeout(self._timeout) from exc
        except GenerationError as exc:
            log.warning("generation_failed", key=str(key), error=str(exc))
            raise GenerationFailed(exc) from exc

        entry = self._cache.put(key, payload, self._clock())
        log.info(
            "content_generated",
            key=str(key),
            quota_remaining=quota.remaining,
            duration_ms=round((time.perf_counter() - started) * 1000),
        )
        return entry

    async def hydrate(self, user_id: str) -> int:
        """Load previously persisted content for ``user_id`` into the cache.

        Runs once per user while the user is among the most recently
        hydrated ``max_hydrated_users``; slots already populated in memory
        win. A store failure is logged and the next call tries again.
        Returns the number of entries loaded.
        """
        if user_id in self._hydrated:
            self._hydrated.move_to_end(user_id)
            return 0
        try:
            entries = await self._persister.load_entries(user_id)
        except PersistenceError:
            log.warning("hydrate_failed", user_id=user_id, exc_info=True)
            return 0
        self._hydrated[user_id] = None
        while len(self._hydrated) > self._max_hydrated:
            self._hydrated.popitem(last=False)
        loaded = sum(1 for entry in entries if self._cache.store(entry, replace=False))
        if loaded:
            log.debug("hydrate_complete", user_id=user_id, loaded=loaded)
        return loaded

    def invalidate(
        self, user_id: str, content: ContentType, *, utc_offset_minutes: int = 0
    ) -> bool:
        key = CacheKey.for_content(user_id, content, self._clock(), utc_offset_minutes)
        return self._cache.invalidate(key)
