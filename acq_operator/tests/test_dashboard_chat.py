"""POST /api/ai/dashboard-chat: identity short-circuit, provider fallback and degraded replies."""
import json
import uuid
from unittest.mock import AsyncMock

import httpx
import pytest

from app.config import get_settings
from app.db import async_session_factory
from app.dependencies import get_chat_service
from app.main import app
from app.models import InstagramThread, Workspace, WorkspaceMember
from app.schemas.chat import DashboardChatRequest
from app.services.chat_service import (
    ChatSettings,
    DashboardChatService,
    is_identity_question,
    is_lead_inbox_question,
    normalize_messages,
    resolve_model,
)
from app.services.inbox_snapshot_service import InboxSnapshotBuilder, SnapshotLimits
from app.services.llm_service import LLMService
from conftest import make_token

DEFAULT_MODEL = "claude-3-5-sonnet-latest"
FALLBACK_MODEL = "claude-fallback-model"


def _ok(text: str, model: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "model": model,
            "content": [{"type": "text", "text": text}],
            "usage": {"input_tokens": 10, "output_tokens": 5},
        },
    )


def _install(handler, api_key_configured: bool = True) -> list:
    """Override the chat service with one whose provider is a MockTransport; returns captured bodies."""
    calls: list = []

    def recording(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        return handler(request)

    settings = get_settings().model_copy(update={"claude_api_key": "test-key"})
    llm = LLMService(settings, transport=httpx.MockTransport(recording), retry_delay=0, parse_retry_delay=0)
    service = DashboardChatService(
        chat_settings=ChatSettings(
            api_key_configured=api_key_configured,
            default_model=DEFAULT_MODEL,
            fallback_models=[FALLBACK_MODEL],
        ),
        llm=llm,
        snapshot_builder=InboxSnapshotBuilder(SnapshotLimits(), async_session_factory),
        knowledge_loader=AsyncMock(return_value="We sell a 12-week coaching program."),
    )
    app.dependency_overrides[get_chat_service] = lambda: service
    return calls


async def _member_workspace(session):
    user_id = uuid.uuid4()
    ws = Workspace(id=uuid.uuid4(), name="Chat WS")
    session.add(ws)
    await session.flush()
    session.add(WorkspaceMember(workspace_id=ws.id, user_id=user_id, role="owner"))
    await session.commit()
    return ws, user_id


def _body(workspace_id, text: str, **extra) -> dict:
    return {"workspaceId": str(workspace_id), "messages": [{"role": "user", "content": text}], **extra}


@pytest.mark.asyncio
async def test_identity_question_answered_without_provider(client, session) -> None:
    ws, user_id = await _member_workspace(session)
    calls = _install(lambda request: _ok("should not be used", DEFAULT_MODEL))

    r = await client.post(
        "/api/ai/dashboard-chat",
        json=_body(ws.id, "What AI is this?", modelProfile="saturn-light"),
        headers={"Authorization": f"Bearer {make_token(user_id)}"},
    )

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True and data["degraded"] is False
    assert "Saturn Light" in data["reply"]
    assert "Claude" not in data["reply"]
    assert calls == []


@pytest.mark.asyncio
async def test_reply_with_inbox_context_for_lead_question(client, session) -> None:
    ws, user_id = await _member_workspace(session)
    session.add(
        InstagramThread(
            workspace_id=ws.id,
            conversation_id="acct:peer-1",
            instagram_account_id="acct",
            instagram_user_id="peer-1",
            peer_username="jane",
            last_message_text="How much is it?",
            last_message_direction="inbound",
        )
    )
    await session.commit()
    calls = _install(lambda request: _ok("Reply to @jane first.", DEFAULT_MODEL))

    r = await client.post(
        "/api/ai/dashboard-chat",
        json=_body(ws.id, "Who are my best leads to reply to today?"),
        headers={"Authorization": f"Bearer {make_token(user_id)}"},
    )

    data = r.json()
    assert data["reply"] == "Reply to @jane first."
    assert data["degraded"] is False
    assert data["usage"] == {"input_tokens": 10, "output_tokens": 5}
    assert len(calls) == 1
    system = calls[0]["system"]
    assert "We sell a 12-week coaching program." in system
    assert "Live Instagram inbox context" in system
    assert "@jane" in system


@pytest.mark.asyncio
async def test_general_question_skips_inbox_context(client, session) -> None:
    ws, user_id = await _member_workspace(session)
    calls = _install(lambda request: _ok("Here is a hook.", DEFAULT_MODEL))

    await client.post(
        "/api/ai/dashboard-chat",
        json=_body(ws.id, "Write me a hook about discipline"),
        headers={"Authorization": f"Bearer {make_token(user_id)}"},
    )

    assert "Live Instagram inbox context" not in calls[0]["system"]
    assert calls[0]["max_tokens"] == 900


@pytest.mark.asyncio
async def test_provider_error_degrades_with_echo(client, session) -> None:
    ws, user_id = await _member_workspace(session)
    calls = _install(lambda request: httpx.Response(500, json={"error": {"message": "overloaded"}}))

    r = await client.post(
        "/api/ai/dashboard-chat",
        json=_body(ws.id, "Draft a follow-up message"),
        headers={"Authorization": f"Bearer {make_token(user_id)}"},
    )

    data = r.json()
    assert r.status_code == 200
    assert data["degraded"] is True
    assert "(overloaded)" in data["reply"]
    assert 'I saved your request: "Draft a follow-up message"' in data["reply"]
    # transient errors are retried before giving up
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_unknown_model_falls_back(client, session) -> None:
    ws, user_id = await _member_workspace(session)

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["model"] == DEFAULT_MODEL:
            return httpx.Response(404, json={"error": {"type": "not_found_error", "message": f"model: {DEFAULT_MODEL}"}})
        return _ok("Fallback answer", body["model"])

    calls = _install(handler)

    r = await client.post(
        "/api/ai/dashboard-chat",
        json=_body(ws.id, "Write a DM opener"),
        headers={"Authorization": f"Bearer {make_token(user_id)}"},
    )

    data = r.json()
    assert data["reply"] == "Fallback answer"
    assert data["model"] == FALLBACK_MODEL
    assert [c["model"] for c in calls] == [DEFAULT_MODEL, FALLBACK_MODEL]


@pytest.mark.asyncio
async def test_missing_api_key_degrades(client, session) -> None:
    ws, user_id = await _member_workspace(session)
    calls = _install(lambda request: _ok("unused", DEFAULT_MODEL), api_key_configured=False)

    r = await client.post(
        "/api/ai/dashboard-chat",
        json=_body(ws.id, "Summarize my week"),
        headers={"Authorization": f"Bearer {make_token(user_id)}"},
    )

    data = r.json()
    assert data["degraded"] is True
    assert "AI key missing" in data["reply"]
    assert calls == []


@pytest.mark.asyncio
async def test_missing_token_degrades_unauthorized(client, session) -> None:
    ws, _ = await _member_workspace(session)
    _install(lambda request: _ok("unused", DEFAULT_MODEL))

    r = await client.post("/api/ai/dashboard-chat", json=_body(ws.id, "hello"))

    data = r.json()
    assert r.status_code == 200
    assert data["degraded"] is True
    assert "Unauthorized" in data["reply"]


@pytest.mark.asyncio
async def test_non_uuid_or_foreign_workspace_degrades(client, session) -> None:
    ws, _ = await _member_workspace(session)
    stranger = uuid.uuid4()
    _install(lambda request: _ok("unused", DEFAULT_MODEL))
    headers = {"Authorization": f"Bearer {make_token(stranger)}"}

    bad_id = await client.post("/api/ai/dashboard-chat", json=_body("not-a-uuid", "hello"), headers=headers)
    foreign = await client.post("/api/ai/dashboard-chat", json=_body(ws.id, "hello"), headers=headers)

    for r in (bad_id, foreign):
        assert r.json()["degraded"] is True
        assert "Workspace access not linked yet" in r.json()["reply"]


@pytest.mark.asyncio
async def test_mistyped_fields_keep_prompt_echo(client) -> None:
    _install(lambda request: _ok("unused", DEFAULT_MODEL))
    body = {
        "workspaceId": 12345,
        "modelId": 5,
        "isThinkingEnabled": "yes",
        "messages": [{"role": "user", "content": "Which leads should I call first?"}],
    }
    headers = {"Authorization": f"Bearer {make_token(uuid.uuid4())}"}

    r = await client.post("/api/ai/dashboard-chat", json=body, headers=headers)

    assert r.status_code == 200
    assert r.json()["degraded"] is True
    assert "Workspace access not linked yet" in r.json()["reply"]
    assert '"Which leads should I call first?"' in r.json()["reply"]


def test_request_fields_are_coerced_leniently() -> None:
    parsed = DashboardChatRequest.model_validate(
        {"workspaceId": 12345, "modelId": {"id": "x"}, "modelProfile": "  ", "isThinkingEnabled": 1, "messages": "hi"}
    )
    assert parsed.workspace_id == "12345"
    assert parsed.model_id is None
    assert parsed.model_profile is None
    assert parsed.is_thinking_enabled is True
    assert parsed.messages == []


@pytest.mark.asyncio
async def test_unreadable_body_degrades(client) -> None:
    _install(lambda request: _ok("unused", DEFAULT_MODEL))

    r = await client.post(
        "/api/ai/dashboard-chat",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert r.status_code == 200
    assert r.json()["degraded"] is True


def test_normalize_messages_drops_invalid_turns_and_keeps_images() -> None:
    image = "data:image/png;base64,iVBORw0KGgo="
    raw = [
        {"role": "system", "content": "ignored"},
        {"role": "assistant", "content": "   "},
        {"role": "user", "content": "", "attachments": [{"kind": "image", "previewUrl": image}]},
        {"role": "user", "content": "x" * 13000},
        "garbage",
    ]

    out = normalize_messages(raw, 4_500_000)

    assert len(out) == 2
    blocks = out[0]["content"]
    assert blocks[0]["text"].startswith("Analyze the attached images")
    assert blocks[1]["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}
    assert len(out[1]["content"]) == 12000


def test_question_classifiers_and_model_resolution() -> None:
    assert is_identity_question("which model are you on?")
    assert not is_identity_question("write a caption")
    assert is_lead_inbox_question("check my DMs")
    assert is_lead_inbox_question("which leads should I follow up with?")
    assert not is_lead_inbox_question("what is a lead magnet")

    settings = ChatSettings(
        api_key_configured=True,
        default_model=DEFAULT_MODEL,
        profile_models={"opus-4.5": "claude-opus-custom", "haiku-4.5": None},
    )
    assert resolve_model("claude-direct-id", settings) == "claude-direct-id"
    assert resolve_model("opus-4.5", settings) == "claude-opus-custom"
    assert resolve_model("haiku-4.5", settings) == DEFAULT_MODEL
    assert resolve_model(None, settings) == DEFAULT_MODEL
