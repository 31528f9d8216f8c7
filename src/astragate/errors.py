"""Error taxonomy for the generation gate.

``AstraGateError`` subclasses are the errors callers of
``GenerationOrchestrator.get_or_generate`` can observe. ``GenerationError``
and ``PersistenceError`` belong to the collaborator side (generator and
profile store) and are converted at the orchestrator boundary.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from math import ceil


class ErrorCode(StrEnum):
    PREMIUM_REQUIRED = "PREMIUM_REQUIRED"
    ALLOWANCE_EXCEEDED = "ALLOWANCE_EXCEEDED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    GENERATION_FAILED = "GENERATION_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    CACHE_KEY_ERROR = "CACHE_KEY_ERROR"


class AstraGateError(Exception):
    """Base class for errors surfaced by the generation gate."""

    code: ErrorCode
    recoverable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class PremiumRequired(AstraGateError):
    code = ErrorCode.PREMIUM_REQUIRED

    def __init__(self, content_kind: str) -> None:
        super().__init__(f"{content_kind} is available only with a Premium subscription")
        self.content_kind = content_kind


class AllowanceExceeded(AstraGateError):
    code = ErrorCode.ALLOWANCE_EXCEEDED

    def __init__(
        self, feature: str, limit: int, *, resets_at: datetime | None = None
    ) -> None:
        super().__init__(f"The {feature} allowance of {limit} has been used up")
        self.feature = feature
        self.limit = limit
        self.resets_at = resets_at


class RateLimitExceeded(AstraGateError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    recoverable = True

    def __init__(self, reset_at: datetime, *, now: datetime | None = None) -> None:
        super().__init__("Too many requests. Please try again later.")
        self.reset_at = reset_at
        self.retry_after = retry_after_seconds(reset_at, now or datetime.now(UTC))


class GenerationTimeout(AstraGateError):
    code = ErrorCode.GENERATION_TIMEOUT
    recoverable = True

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Content generation did not finish within {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class GenerationFailed(AstraGateError):
    code = ErrorCode.GENERATION_FAILED
    recoverable = True

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Content generation failed: {cause}")
        self.cause = cause


class PersistenceFailed(AstraGateError):
    code = ErrorCode.PERSISTENCE_FAILED
    recoverable = True


class CacheKeyError(AstraGateError):
    code = ErrorCode.CACHE_KEY_ERROR


class GenerationError(Exception):
    """Raised by a Generator when the upstream call does not produce text."""


class PersistenceError(Exception):
    """Raised by a ProfileStore when a load or save cannot be completed."""


def retry_after_seconds(reset_at: datetime, now: datetime) -> int:
    """Whole seconds until ``reset_at``, never less than 1."""
    return max(1, ceil((reset_at - now).total_seconds()))
