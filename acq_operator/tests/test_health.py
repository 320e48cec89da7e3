"""Probes, root endpoint and request middleware."""
import pytest
from starlette.requests import Request

from app.logging_config import MASK, redact_secrets
from app.main import __version__
from app.middleware.rate_limit import is_limited_path, rate_limit_key


@pytest.mark.asyncio
async def test_healthz_and_root(client) -> None:
    health = await client.get("/api/healthz")
    root = await client.get("/")

    assert health.json() == {"status": "ok"}
    assert root.json()["name"] == "acq_operator"
    assert root.json()["version"] == __version__


@pytest.mark.asyncio
async def test_readyz_without_redis_or_claude(client) -> None:
    r = await client.get("/api/readyz")

    assert r.status_code == 200
    assert r.json() == {"status": "ok", "db": "ok", "redis": "disabled", "claude": "missing"}


@pytest.mark.asyncio
async def test_correlation_id_is_echoed_or_minted(client) -> None:
    echoed = await client.get("/api/healthz", headers={"X-Correlation-ID": "abc-123"})
    minted = await client.get("/api/healthz")

    assert echoed.headers["X-Correlation-ID"] == "abc-123"
    assert len(minted.headers["X-Correlation-ID"]) == 36


def _request(headers: dict) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "method": "POST", "path": "/api/ai/dashboard-chat", "headers": raw, "client": ("10.0.0.1", 1234)})


def test_rate_limit_scope_and_keys() -> None:
    assert is_limited_path("/api/ai/dashboard-chat")
    assert is_limited_path("/api/content-ai")
    assert not is_limited_path("/webhooks/instagram")

    assert rate_limit_key(_request({"X-Workspace-ID": "ws-1"})) == "workspace:ws-1"
    token_key = rate_limit_key(_request({"Authorization": "Bearer secret-token"}))
    assert token_key.startswith("token:") and "secret-token" not in token_key
    assert rate_limit_key(_request({})) == "ip:10.0.0.1"


def test_secrets_are_masked_in_log_events() -> None:
    event = {"event": "graph.call", "access_token": "EAAB...", "api_key": "", "user": "u1"}

    out = redact_secrets(None, "info", event)

    assert out["access_token"] == MASK
    assert out["api_key"] == ""
    assert out["user"] == "u1"
