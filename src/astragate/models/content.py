from __future__ import annotations

import hashlib
import re
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from astragate.errors import CacheKeyError
from astragate.periods import Period, next_rollover, period_key

_TOPIC_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")

Payload = str | dict[str, Any]


def normalize_topic(value: str) -> str:
    """Lowercase and strip a deep dive topic. Raises ``ValueError`` if malformed."""
    value = value.strip().lower()
    if not _TOPIC_RE.match(value):
        raise ValueError(f"Invalid deep dive topic: {value!r}")
    return value


class _ContentBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    period: ClassVar[Period] = Period.NONE

    @property
    def requires_premium(self) -> bool:
        return False

    @property
    def segment(self) -> str:
        """Path-like identifier of this content within a user's slot space."""
        return self.kind  # type: ignore[attr-defined]


class DeepDiveTopic(_ContentBase):
    """Once-per-topic natal chart analysis (personality, love, career, ...)."""

    kind: Literal["deep-dive"] = "deep-dive"
    topic: str

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        return normalize_topic(v)

    @property
    def segment(self) -> str:
        return f"{self.kind}/{self.topic}"


class DailyForecast(_ContentBase):
    kind: Literal["daily-forecast"] = "daily-forecast"
    period: ClassVar[Period] = Period.DAY


class WeeklyForecast(_ContentBase):
    kind: Literal["weekly-forecast"] = "weekly-forecast"
    period: ClassVar[Period] = Period.WEEK

    @property
    def requires_premium(self) -> bool:
        return True


class MonthlyForecast(_ContentBase):
    kind: Literal["monthly-forecast"] = "monthly-forecast"
    period: ClassVar[Period] = Period.MONTH

    @property
    def requires_premium(self) -> bool:
        return True


class SynastryReport(_ContentBase):
    """Compatibility report for the user and one partner; ``full`` is Premium only."""

    kind: Literal["synastry"] = "synastry"
    partner_fingerprint: str  # SHA-256 of the partner's birth data
    mode: Literal["brief", "full"] = "brief"

    @property
    def requires_premium(self) -> bool:
        return self.mode == "full"

    @property
    def segment(self) -> str:
        return f"{self.kind}/{self.mode}/{self.partner_fingerprint}"


ContentType = Annotated[
    DeepDiveTopic | DailyForecast | WeeklyForecast | MonthlyForecast | SynastryReport,
    Field(discriminator="kind"),
]


def partner_fingerprint(
    name: str, birth_date: str, birth_time: str | None = None, birth_place: str | None = None
) -> str:
    """Stable identifier for a synastry partner, independent of formatting noise."""
    parts = [name, birth_date, birth_time or "", birth_place or ""]
    normalized = "|".join(p.strip().lower() for p in parts)
    return hashlib.sha256(normalized.encode()).hexdigest()


class CacheKey(BaseModel):
    """(user, content, period) composite. Use ``for_content`` to derive one."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    content: ContentType
    period: str = ""  # Empty for content that is generated once per topic

    @classmethod
    def for_content(
        cls,
        user_id: str,
        content: ContentType,
        now: datetime,
        utc_offset_minutes: int = 0,
    ) -> CacheKey:
        if not user_id or not user_id.strip():
            raise CacheKeyError("Cache key requires a non-empty user id")
        return cls(
            user_id=user_id,
            content=content,
            period=period_key(content.period, now, utc_offset_minutes),
        )

    @property
    def slot(self) -> str:
        """Identity shared by every period of the same content for the same user."""
        return f"{self.user_id}:{self.content.segment}"

    def __str__(self) -> str:
        return f"{self.slot}:{self.period}"


class CacheEntry(BaseModel):
    """Generated artifact. Immutable: regeneration replaces the entry."""

    model_config = ConfigDict(frozen=True)

    key: CacheKey
    payload: Payload
    generated_at: datetime


class GeneratedContent(BaseModel):
    """Result of ``GenerationOrchestrator.get_or_generate``."""

    key: CacheKey
    payload: Payload
    generated_at: datetime
    cached: bool
    stale: bool = False

    @classmethod
    def from_entry(cls, entry: CacheEntry, *, cached: bool, stale: bool = False) -> GeneratedContent:
        return cls(
            key=entry.key,
            payload=entry.payload,
            generated_at=entry.generated_at,
            cached=cached,
            stale=stale,
        )

    def expires_at(self, utc_offset_minutes: int = 0) -> datetime | None:
        return next_rollover(self.key.content.period, self.generated_at, utc_offset_minutes)
