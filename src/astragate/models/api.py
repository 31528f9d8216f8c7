"""HTTP request and response bodies (camelCase on the wire)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from astragate.models.content import (
    ContentType,
    DailyForecast,
    DeepDiveTopic,
    GeneratedContent,
    MonthlyForecast,
    Payload,
    SynastryReport,
    WeeklyForecast,
    normalize_topic,
    partner_fingerprint,
)
from astragate.models.requests import Tier
from astragate.periods import MAX_UTC_OFFSET_MINUTES, MIN_UTC_OFFSET_MINUTES


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProfileBody(_CamelModel):
    """User profile as sent by the client. Unknown fields are passed to the generator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = Field(min_length=1)
    is_premium: bool = False
    utc_offset_minutes: int = Field(
        default=0, ge=MIN_UTC_OFFSET_MINUTES, le=MAX_UTC_OFFSET_MINUTES
    )
    name: str | None = None
    language: str | None = None

    @field_validator("id")
    @classmethod
    def strip_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("profile id must not be blank")
        return v

    @property
    def tier(self) -> Tier:
        return Tier.PREMIUM if self.is_premium else Tier.FREE


class PartnerBody(_CamelModel):
    name: str = Field(min_length=1)
    birth_date: str = Field(min_length=1)
    birth_time: str | None = None
    birth_place: str | None = None

    @property
    def fingerprint(self) -> str:
        return partner_fingerprint(self.name, self.birth_date, self.birth_time, self.birth_place)


class ContentRequestBody(_CamelModel):
    profile: ProfileBody
    chart_data: dict[str, Any] | None = None

    def generation_context(self) -> dict[str, Any]:
        """Everything the generator may use; never part of the cache key."""
        return self.model_dump(by_alias=True, exclude_none=True)


class DeepDiveBody(ContentRequestBody):
    topic: str

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        return normalize_topic(v)


class SynastryBody(ContentRequestBody):
    partner: PartnerBody
    mode: Literal["brief", "full"] = "brief"


class RegenerateBody(ContentRequestBody):
    content_type: Literal[
        "daily-forecast", "weekly-forecast", "monthly-forecast", "deep-dive", "synastry"
    ]
    topic: str | None = None
    partner: PartnerBody | None = None
    mode: Literal["brief", "full"] = "brief"

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str | None) -> str | None:
        return normalize_topic(v) if v is not None else None

    @model_validator(mode="after")
    def check_content_fields(self) -> RegenerateBody:
        if self.content_type == "deep-dive" and not self.topic:
            raise ValueError("topic is required to regenerate a deep dive")
        if self.content_type == "synastry" and self.partner is None:
            raise ValueError("partner is required to regenerate a synastry report")
        return self

    def content(self) -> ContentType:
        if self.content_type == "deep-dive":
            return DeepDiveTopic(topic=self.topic or "")
        if self.content_type == "synastry":
            if self.partner is None:
                raise ValueError("partner is required to regenerate a synastry report")
            return SynastryReport(partner_fingerprint=self.partner.fingerprint, mode=self.mode)
        forecasts: dict[str, ContentType] = {
            "daily-forecast": DailyForecast(),
            "weekly-forecast": WeeklyForecast(),
            "monthly-forecast": MonthlyForecast(),
        }
        return forecasts[self.content_type]


class ContentResponse(_CamelModel):
    content: Payload
    content_type: str
    period: str
    generated_at: datetime
    expires_at: datetime | None
    cached: bool
    stale: bool

    @classmethod
    def from_result(cls, result: GeneratedContent, utc_offset_minutes: int = 0) -> ContentResponse:
        return cls(
            content=result.payload,
            content_type=result.key.content.kind,
            period=result.key.period,
            generated_at=result.generated_at,
            expires_at=result.expires_at(utc_offset_minutes),
            cached=result.cached,
            stale=result.stale,
        )


class ErrorBody(_CamelModel):
    error: str
    message: str


class RateLimitedBody(ErrorBody):
    retry_after: int  # Seconds
