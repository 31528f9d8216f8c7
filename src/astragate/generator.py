"""Text generation collaborator.

``Generator`` is the interface the orchestrator depends on. ``HttpGenerator``
talks to any OpenAI-compatible chat completions endpoint. Prompt wording is
deliberately minimal: the request context is handed to the model as JSON.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Protocol

import httpx
import structlog

from astragate.errors import GenerationError

if TYPE_CHECKING:
    from astragate.config import GeneratorSettings
    from astragate.models.requests import GenerationRequest

log = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are Astra, a warm and insightful astrologer. Write personalised "
    "astrology content for the user described in the JSON message. Answer in "
    "the user's language when one is given."
)


class Generator(Protocol):
    async def generate(self, request: GenerationRequest) -> str: ...


def build_http_client(settings: GeneratorSettings) -> httpx.AsyncClient:
    """HTTP client for the generator.

    The transport timeout sits slightly above the orchestrator's own deadline,
    which is the one callers actually observe.
    """
    headers = {"User-Agent": "astragate/0.1"}
    if settings.api_key is not None:
        headers["Authorization"] = f"Bearer {settings.api_key.get_secret_value()}"
    return httpx.AsyncClient(
        base_url=settings.base_url.rstrip("/") + "/",
        headers=headers,
        timeout=httpx.Timeout(settings.timeout_seconds + 5.0, connect=10.0),
    )


def build_messages(request: GenerationRequest) -> list[dict[str, str]]:
    body = {
        "content": request.content.model_dump(),
        "context": request.context,
    }
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": json.dumps(body, ensure_ascii=False, default=str)},
    ]


class HttpGenerator:
    """Generator backed by ``POST {base_url}/chat/completions``."""

    def __init__(self, client: httpx.AsyncClient, settings: GeneratorSettings) -> None:
        self._client = client
        self._settings = settings

    async def generate(self, request: GenerationRequest) -> str:
        payload = {
            "model": self._settings.model,
            "messages": build_messages(request),
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }
        try:
            response = await self._client.post("chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise GenerationError(
                f"Generator returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f"Generator request failed: {exc!r}") from exc
        except ValueError as exc:
            raise GenerationError("Generator returned a non-JSON body") from exc

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError("Generator response has no completion text") from exc
        if not isinstance(text, str) or not text.strip():
            raise GenerationError("Generator returned empty content")

        log.debug(
            "generation_complete",
            content=request.content.segment,
            user_id=request.user_id,
            length=len(text),
        )
        return text
