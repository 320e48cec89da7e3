"""Anthropic client: retries, model fallback and JSON extraction."""
import json

import httpx
import pytest

from app.config import get_settings
from app.services.llm_service import (
    LLMNotConfiguredError,
    LLMProviderError,
    LLMService,
    is_model_resolution_error,
    parse_json_from_text,
    read_error_reason,
)


def _service(handler, api_key="test-key", **settings_update) -> LLMService:
    settings = get_settings().model_copy(update={"claude_api_key": api_key, **settings_update})
    return LLMService(settings, transport=httpx.MockTransport(handler), retry_delay=0, parse_retry_delay=0)


def _text(text: str, model: str = "claude-test") -> httpx.Response:
    return httpx.Response(200, json={"model": model, "content": [{"type": "text", "text": text}]})


@pytest.mark.asyncio
async def test_rate_limit_is_retried_then_succeeds() -> None:
    responses = [httpx.Response(429, json={"error": {"message": "rate limited"}}), _text("hello")]
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses.pop(0)

    result = await _service(handler).create_message(
        system="sys", messages=[{"role": "user", "content": "hi"}], max_tokens=10, temperature=0.2
    )

    assert result.text == "hello"
    assert len(seen) == 2
    assert seen[0].headers["x-api-key"] == "test-key"
    assert seen[0].headers["anthropic-version"] == "2023-06-01"


@pytest.mark.asyncio
async def test_client_error_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": {"message": "invalid x-api-key"}})

    with pytest.raises(LLMProviderError) as exc:
        await _service(handler).complete_text("sys", "hi")

    assert exc.value.status == 401
    assert exc.value.reason == "invalid x-api-key"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_error_surfaces_as_status_zero() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(LLMProviderError) as exc:
        await _service(handler).complete_text("sys", "hi")

    assert exc.value.status == 0


@pytest.mark.asyncio
async def test_missing_key_raises_not_configured() -> None:
    with pytest.raises(LLMNotConfiguredError):
        await _service(lambda r: _text("x"), api_key=None).complete_text("sys", "hi")


@pytest.mark.asyncio
async def test_fallback_walks_models_in_order() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        model = json.loads(request.content)["model"]
        if model in ("claude-primary", "claude-second"):
            return httpx.Response(404, json={"error": {"message": f"model: {model} not found"}})
        return _text("third time lucky", model)

    result = await _service(handler).create_message_with_fallback(
        model="claude-primary",
        system="sys",
        messages=[{"role": "user", "content": "hi"}],
        max_tokens=10,
        temperature=0.2,
        fallback_models=["claude-primary", "claude-second", "claude-third"],
    )

    assert result.model == "claude-third"
    assert result.text == "third time lucky"


@pytest.mark.asyncio
async def test_complete_json_retries_unparseable_output() -> None:
    replies = [_text("Sure! Here you go"), _text('Result:\n```json\n{"hook": "Stop guessing"}\n```')]

    result = await _service(lambda r: replies.pop(0)).complete_json("sys", "prompt")

    assert result == {"hook": "Stop guessing"}


@pytest.mark.asyncio
async def test_complete_json_gives_up_with_value_error() -> None:
    with pytest.raises(ValueError):
        await _service(lambda r: _text("no json here")).complete_json("sys", "prompt")


def test_parse_json_from_text_variants() -> None:
    assert parse_json_from_text('{"a": 1}') == {"a": 1}
    assert parse_json_from_text('prefix {"a": {"b": 2}} suffix') == {"a": {"b": 2}}
    assert parse_json_from_text("```\n{\"a\": 3}\n```") == {"a": 3}
    assert parse_json_from_text("{broken") is None
    assert parse_json_from_text("") is None


def test_error_helpers() -> None:
    assert read_error_reason({"error": {"message": "bad model"}}, "raw") == "bad model"
    assert read_error_reason({"message": "top level"}, "raw") == "top level"
    assert read_error_reason(None, "  ") == "Claude request failed"
    assert is_model_resolution_error(404, "model: x")
    assert not is_model_resolution_error(500, "model: x")
    assert not is_model_resolution_error(400, "max_tokens too large")
