from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from astragate.periods import Period


class Feature(StrEnum):
    SYNASTRY_BRIEF = "synastry-brief"
    REGENERATE = "regenerate"


class FeatureAllowance(BaseModel):
    """How often a tier may use a feature. ``limit=None`` is unlimited.

    ``period`` is the counting window: ``Period.NONE`` never resets, the
    others reset when the user's local period rolls over.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    limit: int | None = Field(default=None, ge=0)
    period: Period = Period.NONE


class AllowanceResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    used: int
    limit: int | None
    resets_at: datetime | None = None
