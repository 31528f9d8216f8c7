from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from astragate.models.content import ContentType
from astragate.periods import MAX_UTC_OFFSET_MINUTES, MIN_UTC_OFFSET_MINUTES


class Tier(StrEnum):
    FREE = "free"
    PREMIUM = "premium"


class OperationClass(StrEnum):
    GENERAL = "general"  # Any gated API call
    GENERATION = "generation"  # Calls that reach the AI generator


def subject_key(user_id: str, tier: Tier, operation: OperationClass) -> str:
    """Rate-limit subject, e.g. ``u42:ai-free`` for generation calls."""
    prefix = "ai" if operation is OperationClass.GENERATION else "api"
    return f"{user_id}:{prefix}-{tier.value}"


class GenerationRequest(BaseModel):
    """A single get-or-generate request.

    ``context`` carries opaque generator inputs (profile, chart data) and is
    never part of the cache key.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    tier: Tier
    content: ContentType
    force_regenerate: bool = False
    utc_offset_minutes: int = Field(
        default=0, ge=MIN_UTC_OFFSET_MINUTES, le=MAX_UTC_OFFSET_MINUTES
    )
    context: dict[str, Any] = Field(default_factory=dict)

    @property
    def subject_key(self) -> str:
        return subject_key(self.user_id, self.tier, OperationClass.GENERATION)
