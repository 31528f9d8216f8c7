from __future__ import annotations

from astragate.models.allowance import AllowanceResult, Feature, FeatureAllowance
from astragate.models.content import (
    CacheEntry,
    CacheKey,
    ContentType,
    DailyForecast,
    DeepDiveTopic,
    GeneratedContent,
    MonthlyForecast,
    SynastryReport,
    WeeklyForecast,
    partner_fingerprint,
)
from astragate.models.profile import Profile, StoredContent
from astragate.models.rate_limit import RateLimitConfig, RateLimitResult
from astragate.models.requests import GenerationRequest, OperationClass, Tier

__all__ = [
    # content
    "ContentType",
    "DeepDiveTopic",
    "DailyForecast",
    "WeeklyForecast",
    "MonthlyForecast",
    "SynastryReport",
    "partner_fingerprint",
    "CacheKey",
    "CacheEntry",
    "GeneratedContent",
    # allowances
    "Feature",
    "FeatureAllowance",
    "AllowanceResult",
    # profile
    "Profile",
    "StoredContent",
    # rate limiting
    "RateLimitConfig",
    "RateLimitResult",
    # requests
    "GenerationRequest",
    "OperationClass",
    "Tier",
]
