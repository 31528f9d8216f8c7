"""HTTP API.

Every content route is POST-only and gated by the general per-tier request
budget. Rate-limit headers are attached to every gated response, including
error responses. If the limiter itself fails the gate opens: the request
proceeds without headers and the failure is logged.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from astragate.config import Settings
from astragate.errors import AstraGateError, ErrorCode, PremiumRequired, RateLimitExceeded
from astragate.models.api import (
    ContentRequestBody,
    ContentResponse,
    DeepDiveBody,
    ErrorBody,
    RateLimitedBody,
    RegenerateBody,
    SynastryBody,
)
from astragate.models.content import (
    DailyForecast,
    DeepDiveTopic,
    MonthlyForecast,
    SynastryReport,
    WeeklyForecast,
)
from astragate.models.requests import GenerationRequest, OperationClass, subject_key
from astragate.state import open_app_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from fastapi import Response

    from astragate.models.api import ProfileBody
    from astragate.models.content import ContentType
    from astragate.models.rate_limit import RateLimitResult
    from astragate.state import AppState

log = structlog.get_logger()

_ERROR_STATUS: dict[ErrorCode, tuple[int, str]] = {
    ErrorCode.PREMIUM_REQUIRED: (403, "Premium required"),
    ErrorCode.ALLOWANCE_EXCEEDED: (403, "Allowance exceeded"),
    ErrorCode.RATE_LIMIT_EXCEEDED: (429, "Too many requests"),
    ErrorCode.GENERATION_TIMEOUT: (504, "Generation timeout"),
    ErrorCode.GENERATION_FAILED: (502, "Generation failed"),
}

router = APIRouter(prefix="/api/astrology")


def get_state(request: Request) -> AppState:
    return request.app.state.astragate


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": result.reset_at.isoformat(),
    }


def enforce_request_limit(request: Request, state: AppState, profile: ProfileBody) -> None:
    """Consume one unit of the general budget or raise ``RateLimitExceeded``."""
    try:
        config = state.settings.rate_limits.config_for(profile.tier, OperationClass.GENERAL)
        result = state.rate_limiter.check_and_consume(
            subject_key(profile.id, profile.tier, OperationClass.GENERAL), config
        )
    except Exception:
        log.error("rate_limiter_error", user_id=profile.id, exc_info=True)
        return

    request.state.rate_limit_headers = rate_limit_headers(result)
    if not result.allowed:
        log.warning("request_rate_limited", user_id=profile.id, path=request.url.path)
        raise RateLimitExceeded(result.reset_at, now=state.clock())


async def serve_content(
    request: Request,
    body: ContentRequestBody,
    content: ContentType,
    *,
    force_regenerate: bool = False,
) -> ContentResponse:
    state = get_state(request)
    profile = body.profile
    enforce_request_limit(request, state, profile)

    result = await state.orchestrator.get_or_generate(
        GenerationRequest(
            user_id=profile.id,
            tier=profile.tier,
            content=content,
            force_regenerate=force_regenerate,
            utc_offset_minutes=profile.utc_offset_minutes,
            context=body.generation_context(),
        )
    )
    return ContentResponse.from_result(result, profile.utc_offset_minutes)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/daily-horoscope", response_model=ContentResponse)
async def daily_horoscope(body: ContentRequestBody, request: Request) -> ContentResponse:
    return await serve_content(request, body, DailyForecast())


@router.post("/weekly-horoscope", response_model=ContentResponse)
async def weekly_horoscope(body: ContentRequestBody, request: Request) -> ContentResponse:
    return await serve_content(request, body, WeeklyForecast())


@router.post("/monthly-horoscope", response_model=ContentResponse)
async def monthly_horoscope(body: ContentRequestBody, request: Request) -> ContentResponse:
    return await serve_content(request, body, MonthlyForecast())


@router.post("/deep-dive", response_model=ContentResponse)
async def deep_dive(body: DeepDiveBody, request: Request) -> ContentResponse:
    return await serve_content(request, body, DeepDiveTopic(topic=body.topic))


@router.post("/synastry", response_model=ContentResponse)
async def synastry(body: SynastryBody, request: Request) -> ContentResponse:
    content = SynastryReport(partner_fingerprint=body.partner.fingerprint, mode=body.mode)
    return await serve_content(request, body, content)


@router.post("/regenerate", response_model=ContentResponse)
async def regenerate(body: RegenerateBody, request: Request) -> ContentResponse:
    """Force a fresh generation. Premium only; still subject to the generation quota."""
    if not body.profile.is_premium:
        raise PremiumRequired("regenerate")
    return await serve_content(request, body, body.content(), force_regenerate=True)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


def _error(
    status: int, error: str, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorBody(error=error, message=message).model_dump(),
        headers=headers,
    )


async def _astragate_error_handler(request: Request, exc: AstraGateError) -> JSONResponse:
    status, error = _ERROR_STATUS.get(exc.code, (500, "Internal server error"))
    if isinstance(exc, RateLimitExceeded):
        body = RateLimitedBody(error=error, message=exc.message, retry_after=exc.retry_after)
        return JSONResponse(
            status_code=status,
            content=body.model_dump(by_alias=True),
            headers={"Retry-After": str(exc.retry_after)},
        )
    if status == 500:
        log.error("unexpected_gate_error", code=exc.code.value, error=exc.message)
    return _error(status, error, exc.message)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in errors
    )
    return _error(400, "Bad request", message or str(exc))


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 405:
        return _error(
            405, "Method not allowed", f"{request.method} is not supported here", exc.headers
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorBody(error=str(exc.detail), message=str(exc.detail)).model_dump(),
        headers=exc.headers,
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled_error", path=request.url.path, exc_info=exc)
    return _error(500, "Internal server error", str(exc))


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None, *, state: AppState | None = None) -> FastAPI:
    """Build the FastAPI app.

    With ``state`` the app uses the given components as-is and never opens or
    closes them; otherwise the lifespan builds them from ``settings``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if state is not None:
            yield
            return
        async with open_app_state(settings or Settings()) as app_state:
            app.state.astragate = app_state
            yield

    app = FastAPI(title="astragate", lifespan=lifespan)
    if state is not None:
        app.state.astragate = state

    @app.middleware("http")
    async def attach_rate_limit_headers(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        headers = getattr(request.state, "rate_limit_headers", None)
        if headers:
            response.headers.update(headers)
        return response

    @app.get("/health")
    async def health(request: Request) -> dict[str, object]:
        app_state = get_state(request)
        return {
            "status": "ok",
            "cachedEntries": len(app_state.cache),
            "inFlight": len(app_state.flights),
        }

    app.include_router(router)
    app.add_exception_handler(AstraGateError, _astragate_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)
    return app

