"""Calendar period keys for period-bound content.

Forecasts are regenerated once per user-local day, ISO week, or month. The
key is always computed in the user's UTC offset so a daily forecast rolls
over at the user's midnight, not the server's.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from enum import StrEnum

# Real-world offsets range from UTC-12:00 to UTC+14:00.
MIN_UTC_OFFSET_MINUTES = -12 * 60
MAX_UTC_OFFSET_MINUTES = 14 * 60


class Period(StrEnum):
    NONE = "none"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def local_time(now: datetime, utc_offset_minutes: int = 0) -> datetime:
    """Convert ``now`` to the user's wall-clock time. Naive values are treated as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(timezone(timedelta(minutes=utc_offset_minutes)))


def period_key(period: Period, now: datetime, utc_offset_minutes: int = 0) -> str:
    """Return the discriminator for ``period`` at ``now`` (empty for ``Period.NONE``)."""
    if period is Period.NONE:
        return ""
    local = local_time(now, utc_offset_minutes)
    if period is Period.DAY:
        return local.date().isoformat()
    if period is Period.WEEK:
        iso = local.isocalendar()
        return f"{iso.year}-W{iso.week:02d}"
    return f"{local.year:04d}-{local.month:02d}"


def next_rollover(period: Period, now: datetime, utc_offset_minutes: int = 0) -> datetime | None:
    """UTC instant at which the period containing ``now`` ends, or None if it never does."""
    if period is Period.NONE:
        return None
    local = local_time(now, utc_offset_minutes)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is Period.DAY:
        boundary = midnight + timedelta(days=1)
    elif period is Period.WEEK:
        boundary = midnight + timedelta(days=7 - local.weekday())
    elif local.month == 12:
        boundary = midnight.replace(year=local.year + 1, month=1, day=1)
    else:
        boundary = midnight.replace(month=local.month + 1, day=1)
    return boundary.astimezone(UTC)


def utc_now() -> datetime:
    """Default clock. Components accept a replacement for tests."""
    return datetime.now(UTC)
