"""Per-feature usage allowances (the counting half of the tier gate).

Each (user, feature) pair keeps one usage record for the current counting
period. When the user's local period rolls over the record starts again from
zero, so the map holds at most one record per user and feature.

Some features count distinct items rather than calls: asking again for a
brief synastry with a partner already admitted does not use up another
slot. Like the rate limiter, usage is held per process.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from astragate.models.allowance import AllowanceResult
from astragate.periods import next_rollover, period_key, utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from astragate.models.allowance import Feature, FeatureAllowance

log = structlog.get_logger()


@dataclass
class _Usage:
    period: str
    count: int = 0
    items: set[str] = field(default_factory=set)


class UsageLedger:
    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._usage: dict[tuple[str, Feature], _Usage] = {}

    def admit(
        self,
        user_id: str,
        feature: Feature,
        allowance: FeatureAllowance,
        *,
        item: str | None = None,
        utc_offset_minutes: int = 0,
    ) -> AllowanceResult:
        """Record one use of ``feature`` if the allowance still has room.

        With ``item`` set, an item admitted earlier in the same period is
        allowed again without counting. Rejections leave usage untouched.
        """
        if allowance.limit is None:
            return AllowanceResult(allowed=True, used=0, limit=None)

        now = self._clock()
        current = period_key(allowance.period, now, utc_offset_minutes)
        resets_at = next_rollover(allowance.period, now, utc_offset_minutes)
        with self._lock:
            usage = self._usage.get((user_id, feature))
            if usage is None or usage.period != current:
                usage = _Usage(period=current)
                self._usage[(user_id, feature)] = usage
            if item is not None and item in usage.items:
                return AllowanceResult(
                    allowed=True, used=usage.count, limit=allowance.limit, resets_at=resets_at
                )
            if usage.count < allowance.limit:
                usage.count += 1
                if item is not None:
                    usage.items.add(item)
                return AllowanceResult(
                    allowed=True, used=usage.count, limit=allowance.limit, resets_at=resets_at
                )
            used = usage.count

        log.info("allowance_exhausted", user_id=user_id, feature=feature.value, used=used)
        return AllowanceResult(
            allowed=False, used=used, limit=allowance.limit, resets_at=resets_at
        )

    def used(self, user_id: str, feature: Feature) -> int:
        with self._lock:
            usage = self._usage.get((user_id, feature))
            return usage.count if usage is not None else 0

    def __len__(self) -> int:
        return len(self._usage)
