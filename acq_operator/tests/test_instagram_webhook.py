"""Instagram webhook: subscription handshake, idempotent ingestion, direction and thread summary rules."""
import uuid
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from app.config import get_settings
from app.dependencies import get_webhook_ingestor
from app.main import app
from app.models import (
    InstagramConnection,
    InstagramConversationTag,
    InstagramMessage,
    InstagramTag,
    InstagramThread,
    InstagramUser,
    Workspace,
)
from app.services.instagram_graph_service import InstagramGraphClient
from app.services.instagram_webhook_service import InstagramWebhookIngestor
from app.services.storage_service import ObjectStorage

ACCOUNT = "17841400000000001"
PEER = "5550001"
CONVERSATION = f"{ACCOUNT}:{PEER}"
T0 = 1_767_000_000_000


def graph_handler(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if request.url.host == "graph.instagram.com" and request.url.path.endswith(f"/{PEER}"):
        return httpx.Response(
            200,
            json={"username": "jane.lifts", "name": "Jane", "profile_pic": "https://scontent.cdninstagram.com/jane.jpg"},
        )
    if url.startswith("https://scontent.cdninstagram.com/"):
        return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})
    if url.startswith("https://lookaside.fbsbx.com/"):
        return httpx.Response(200, content=b"\x89PNGdata", headers={"content-type": "image/png"})
    return httpx.Response(404, json={"error": {"message": "not found"}})


@pytest.fixture
def ingestor(tmp_path) -> InstagramWebhookIngestor:
    return InstagramWebhookIngestor(
        storage=ObjectStorage(str(tmp_path), "https://cdn.test/storage"),
        graph=InstagramGraphClient(get_settings(), transport=httpx.MockTransport(graph_handler)),
        media_bucket="instagram-media",
    )


@pytest_asyncio.fixture
async def workspace(session) -> Workspace:
    ws = Workspace(id=uuid.uuid4(), name="Webhook WS")
    session.add(ws)
    await session.flush()
    session.add(
        InstagramConnection(
            workspace_id=ws.id,
            instagram_account_id=ACCOUNT,
            page_id="page-1",
            access_token="page-token",
        )
    )
    await session.commit()
    return ws


def _event(sender: str, recipient: str, mid: str, ts: int, text=None, attachments=None) -> dict:
    message = {"mid": mid}
    if text is not None:
        message["text"] = text
    if attachments is not None:
        message["attachments"] = attachments
    return {"sender": {"id": sender}, "recipient": {"id": recipient}, "timestamp": ts, "message": message}


def _body(*events, entry_id: str = ACCOUNT, obj: str = "instagram") -> dict:
    return {"object": obj, "entry": [{"id": entry_id, "time": T0, "messaging": list(events)}]}


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _thread(session) -> InstagramThread:
    r = await session.execute(select(InstagramThread).where(InstagramThread.conversation_id == CONVERSATION))
    return r.scalar_one()


@pytest.mark.asyncio
async def test_verify_handshake(client) -> None:
    ok = await client.get(
        "/webhooks/instagram",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
    )
    bad = await client.get(
        "/webhooks/instagram",
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"},
    )

    assert ok.status_code == 200 and ok.text == "12345"
    assert bad.status_code == 403


@pytest.mark.asyncio
async def test_redelivery_is_idempotent(client, session, workspace, ingestor) -> None:
    app.dependency_overrides[get_webhook_ingestor] = lambda: ingestor
    body = _body(_event(PEER, ACCOUNT, "mid.1", T0, text="Hey, how much is coaching?"))

    for _ in range(2):
        r = await client.post("/webhooks/instagram", json=body)
        assert r.status_code == 200
        assert r.text == "EVENT_RECEIVED"

    assert await _count(session, InstagramMessage) == 1
    assert await _count(session, InstagramThread) == 1
    assert await _count(session, InstagramConversationTag) == 1
    tag = (await session.execute(select(InstagramTag))).scalar_one()
    assert tag.name == "New lead"

    thread = await _thread(session)
    assert thread.last_message_direction == "inbound"
    assert thread.last_message_text == "Hey, how much is coaching?"
    assert thread.peer_username == "jane.lifts"
    assert thread.peer_profile_picture_url == (
        f"https://cdn.test/storage/instagram-media/instagram/profile-pics/{workspace.id}/{PEER}.jpg"
    )
    user = (await session.execute(select(InstagramUser))).scalar_one()
    assert user.profile_pic_storage_path == f"instagram/profile-pics/{workspace.id}/{PEER}.jpg"

    message = (await session.execute(select(InstagramMessage))).scalar_one()
    assert message.conversation_key == CONVERSATION
    assert message.raw_payload["conversation_key"] == CONVERSATION
    assert message.raw_payload["stored_attachments"] == []


@pytest.mark.asyncio
async def test_invalid_json_still_acknowledged(client) -> None:
    r = await client.post("/webhooks/instagram", content=b"not json", headers={"Content-Type": "application/json"})

    assert r.status_code == 200
    assert r.text == "EVENT_RECEIVED"


@pytest.mark.asyncio
async def test_outbound_echo_and_out_of_order_delivery(session, workspace, ingestor) -> None:
    await ingestor.ingest(session, _body(_event(PEER, ACCOUNT, "mid.in", T0 + 60_000, text="Is it still available?")))
    # older outbound message arrives late
    stats = await ingestor.ingest(session, _body(_event(ACCOUNT, PEER, "mid.out", T0, text="Thanks for reaching out")))
    await session.commit()

    assert stats.stored == 1 and stats.new_threads == 0
    thread = await _thread(session)
    assert thread.last_message_id == "mid.in"
    assert thread.last_message_direction == "inbound"
    assert thread.last_outbound_at is not None
    assert thread.last_inbound_at.replace(tzinfo=timezone.utc) == datetime.fromtimestamp(
        (T0 + 60_000) / 1000, tz=timezone.utc
    )
    out = (
        await session.execute(select(InstagramMessage).where(InstagramMessage.message_id == "mid.out"))
    ).scalar_one()
    assert out.direction == "outbound"
    assert out.instagram_user_id == PEER


@pytest.mark.asyncio
async def test_spam_flag_is_sticky_and_priority_preserved(session, workspace, ingestor) -> None:
    session.add(
        InstagramThread(
            workspace_id=workspace.id,
            conversation_id=CONVERSATION,
            instagram_account_id=ACCOUNT,
            instagram_user_id=PEER,
            priority=True,
            lead_status="qualified",
        )
    )
    await session.commit()

    await ingestor.ingest(
        session, _body(_event(PEER, ACCOUNT, "mid.spam", T0, text="Guaranteed return, join my telegram!!!"))
    )
    await ingestor.ingest(session, _body(_event(PEER, ACCOUNT, "mid.ok", T0 + 1000, text="sorry wrong chat")))
    await session.commit()

    thread = await _thread(session)
    assert thread.is_spam is True
    assert thread.priority is True
    assert thread.lead_status == "qualified"
    # existing thread: no New lead tag
    assert await _count(session, InstagramConversationTag) == 0


@pytest.mark.asyncio
async def test_page_entry_and_attachments(session, workspace, ingestor) -> None:
    attachments = [
        {"type": "share", "payload": {"url": "https://l.instagram.com/?u=https%3A%2F%2Fwww.instagram.com%2Freel%2FABC%2F"}},
        {"type": "image", "payload": {"url": "https://lookaside.fbsbx.com/ig_messaging_cdn/?asset_id=1"}},
    ]
    stats = await ingestor.ingest(
        session, _body(_event(PEER, ACCOUNT, "mid.att", T0, attachments=attachments), entry_id="page-1", obj="page")
    )
    await session.commit()

    assert stats.stored == 1 and stats.new_threads == 1
    thread = await _thread(session)
    assert thread.last_message_text == "See reel"
    message = (await session.execute(select(InstagramMessage))).scalar_one()
    assert message.message_text is None
    share, image = message.raw_payload["stored_attachments"]
    assert share["share_kind"] == "reel"
    assert share["public_url"] == "https://www.instagram.com/reel/ABC/"
    assert image["path"] == f"instagram/{workspace.id}/{ACCOUNT}/mid.att/1.png"
    assert image["public_url"].startswith("https://cdn.test/storage/instagram-media/")
    assert image["size"] == len(b"\x89PNGdata")


@pytest.mark.asyncio
async def test_unknown_object_and_connection_are_ignored(session, workspace, ingestor) -> None:
    ignored = await ingestor.ingest(session, _body(_event(PEER, ACCOUNT, "mid.x", T0, text="hi"), obj="whatsapp"))
    unknown = await ingestor.ingest(
        session, _body(_event(PEER, "999", "mid.y", T0, text="hi"), entry_id="999")
    )
    incomplete = await ingestor.ingest(session, _body({"sender": {"id": PEER}, "message": {"mid": "mid.z"}}))

    assert ignored.entries == 0
    assert unknown.entries == 1 and unknown.stored == 0
    assert incomplete.skipped == 1
    assert await _count(session, InstagramMessage) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"object": "instagram", "entry": 5},
        {"object": "instagram", "entry": "not-a-list"},
        {"object": "instagram", "entry": [{"id": ACCOUNT, "messaging": {"mid": "x"}}]},
        {"object": "page", "entry": [7, None, {"id": ACCOUNT, "messaging": 3}]},
    ],
)
async def test_malformed_entries_are_acknowledged(client, session, workspace, ingestor, body) -> None:
    app.dependency_overrides[get_webhook_ingestor] = lambda: ingestor

    r = await client.post("/webhooks/instagram", json=body)

    assert r.status_code == 200
    assert r.text == "EVENT_RECEIVED"
    assert await _count(session, InstagramMessage) == 0


class _BrokenIngestor:
    async def ingest(self, db, body):
        raise RuntimeError("database unavailable")


@pytest.mark.asyncio
async def test_ingest_failure_still_acknowledged(client) -> None:
    app.dependency_overrides[get_webhook_ingestor] = lambda: _BrokenIngestor()

    r = await client.post("/webhooks/instagram", json=_body(_event(PEER, ACCOUNT, "mid.1", T0, text="hi")))

    assert r.status_code == 200
    assert r.text == "EVENT_RECEIVED"


@pytest.mark.asyncio
async def test_thread_created_by_concurrent_delivery_is_reused(session, workspace, ingestor) -> None:
    existing = InstagramThread(
        workspace_id=workspace.id,
        conversation_id=CONVERSATION,
        instagram_account_id=ACCOUNT,
        instagram_user_id=PEER,
        lead_status="open",
    )
    session.add(existing)
    await session.flush()

    thread, created = await ingestor._insert_thread(
        session,
        InstagramThread(
            workspace_id=workspace.id,
            conversation_id=CONVERSATION,
            instagram_account_id=ACCOUNT,
            instagram_user_id=PEER,
            lead_status="open",
        ),
    )

    assert created is False
    assert thread.id == existing.id
    assert await _count(session, InstagramThread) == 1

    stats = await ingestor.ingest(session, _body(_event(PEER, ACCOUNT, "mid.race", T0, text="still here?")))
    await session.commit()

    assert stats.stored == 1 and stats.new_threads == 0
    assert await _count(session, InstagramMessage) == 1


def _sized_graph(max_bytes: int, handler) -> InstagramGraphClient:
    settings = get_settings().model_copy(update={"media_max_bytes": max_bytes})
    return InstagramGraphClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_download_respects_size_cap() -> None:
    async def chunked():
        for _ in range(4):
            yield b"0123456789"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/small.jpg":
            return httpx.Response(200, content=b"tiny", headers={"content-type": "image/jpeg"})
        if request.url.path == "/declared.jpg":
            return httpx.Response(200, content=b"x" * 64, headers={"content-type": "image/jpeg"})
        return httpx.Response(200, content=chunked(), headers={"content-type": "image/jpeg"})

    graph = _sized_graph(32, handler)

    small = await graph.download("https://scontent.cdninstagram.com/small.jpg")
    assert small is not None and small.data == b"tiny"
    assert small.content_type == "image/jpeg"
    assert await graph.download("https://scontent.cdninstagram.com/declared.jpg") is None
    assert await graph.download("https://scontent.cdninstagram.com/streamed.jpg") is None
