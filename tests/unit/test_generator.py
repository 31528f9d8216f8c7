"""Unit tests for astragate.generator."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from astragate.config import GeneratorSettings
from astragate.errors import GenerationError
from astragate.generator import HttpGenerator, build_http_client, build_messages
from astragate.models.content import DailyForecast, DeepDiveTopic
from astragate.models.requests import GenerationRequest, Tier

BASE_URL = "https://llm.example.com/v1"
COMPLETIONS_URL = f"{BASE_URL}/chat/completions"

SETTINGS = GeneratorSettings(base_url=BASE_URL, api_key="sk-test", model="test-model")


def completion(text: str | None) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


@pytest.fixture()
def request_() -> GenerationRequest:
    return GenerationRequest(
        user_id="u1",
        tier=Tier.FREE,
        content=DeepDiveTopic(topic="love"),
        context={"profile": {"name": "Mira", "language": "ru"}},
    )


# ---------------------------------------------------------------------------
# build_http_client / build_messages
# ---------------------------------------------------------------------------


class TestBuildHttpClient:
    async def test_auth_header_and_base_url(self) -> None:
        async with build_http_client(SETTINGS) as client:
            assert client.headers["Authorization"] == "Bearer sk-test"
            assert str(client.base_url) == f"{BASE_URL}/"

    async def test_no_auth_header_without_key(self) -> None:
        async with build_http_client(GeneratorSettings(base_url=BASE_URL)) as client:
            assert "Authorization" not in client.headers

    async def test_transport_timeout_exceeds_generation_deadline(self) -> None:
        async with build_http_client(SETTINGS) as client:
            assert client.timeout.read is not None
            assert client.timeout.read > SETTINGS.timeout_seconds


class TestBuildMessages:
    def test_user_message_carries_content_and_context(
        self, request_: GenerationRequest
    ) -> None:
        system, user = build_messages(request_)
        assert system["role"] == "system"
        body = json.loads(user["content"])
        assert body["content"] == {"kind": "deep-dive", "topic": "love"}
        assert body["context"]["profile"]["language"] == "ru"


# ---------------------------------------------------------------------------
# HttpGenerator.generate
# ---------------------------------------------------------------------------


class TestHttpGenerator:
    async def test_returns_completion_text(self, request_: GenerationRequest) -> None:
        with respx.mock:
            route = respx.post(COMPLETIONS_URL).mock(
                return_value=httpx.Response(200, json=completion("Venus rules your heart."))
            )
            async with build_http_client(SETTINGS) as client:
                text = await HttpGenerator(client, SETTINGS).generate(request_)

        assert text == "Venus rules your heart."
        sent = json.loads(route.calls.last.request.content)
        assert sent["model"] == "test-model"
        assert sent["max_tokens"] == SETTINGS.max_tokens
        assert len(sent["messages"]) == 2

    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_http_error_status(self, request_: GenerationRequest, status: int) -> None:
        with respx.mock:
            respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(status))
            async with build_http_client(SETTINGS) as client:
                with pytest.raises(GenerationError, match=str(status)):
                    await HttpGenerator(client, SETTINGS).generate(request_)

    async def test_network_error(self, request_: GenerationRequest) -> None:
        with respx.mock:
            respx.post(COMPLETIONS_URL).mock(side_effect=httpx.ConnectError("Connection refused"))
            async with build_http_client(SETTINGS) as client:
                with pytest.raises(GenerationError):
                    await HttpGenerator(client, SETTINGS).generate(request_)

    async def test_non_json_body(self, request_: GenerationRequest) -> None:
        with respx.mock:
            respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(200, text="<html>"))
            async with build_http_client(SETTINGS) as client:
                with pytest.raises(GenerationError, match="non-JSON"):
                    await HttpGenerator(client, SETTINGS).generate(request_)

    @pytest.mark.parametrize(
        "body",
        [{}, {"choices": []}, {"choices": [{"message": {}}]}, completion(None), completion("  ")],
    )
    async def test_missing_or_empty_completion(
        self, request_: GenerationRequest, body: dict
    ) -> None:
        with respx.mock:
            respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(200, json=body))
            async with build_http_client(SETTINGS) as client:
                with pytest.raises(GenerationError):
                    await HttpGenerator(client, SETTINGS).generate(request_)

    async def test_daily_forecast_request(self) -> None:
        daily = GenerationRequest(user_id="u2", tier=Tier.PREMIUM, content=DailyForecast())
        with respx.mock:
            route = respx.post(COMPLETIONS_URL).mock(
                return_value=httpx.Response(200, json=completion("A bright day."))
            )
            async with build_http_client(SETTINGS) as client:
                assert await HttpGenerator(client, SETTINGS).generate(daily) == "A bright day."

        user_message = json.loads(route.calls.last.request.content)["messages"][1]
        assert json.loads(user_message["content"])["content"] == {"kind": "daily-forecast"}
