from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field


class RateLimitConfig(BaseModel):
    """Fixed-window budget: ``max_requests`` per ``window_ms`` milliseconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    window_ms: int = Field(gt=0)
    max_requests: int = Field(ge=0)

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)


class RateLimitResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
