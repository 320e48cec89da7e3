"""
Inbox snapshot builder against a real (SQLite) session: visibility per role,
ranking, recent messages per conversation and handle hints.
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.models import (
    InstagramAlert,
    InstagramConversationTag,
    InstagramMessage,
    InstagramTag,
    InstagramThread,
    Workspace,
)
from app.services.access_service import ROLE_OWNER, ROLE_SETTER, is_thread_visible
from app.services.inbox_snapshot_service import (
    EMPTY_RANKING_METHOD,
    FETCH_CONCURRENCY,
    RANKING_METHOD,
    InboxSnapshotBuilder,
    SnapshotLimits,
    build_inbox_context_block,
    extract_handle_hints,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
ACCOUNT = "17841400000000001"


def _thread(workspace_id, peer, **kw):
    values = dict(
        workspace_id=workspace_id,
        conversation_id=f"{ACCOUNT}:{peer}",
        instagram_account_id=ACCOUNT,
        instagram_user_id=peer,
        peer_username=f"user_{peer}",
        lead_status="open",
    )
    values.update(kw)
    return InstagramThread(**values)


async def _seed(session):
    ws = Workspace(id=uuid.uuid4(), name="Snapshot WS")
    session.add(ws)
    await session.flush()
    setter_id = uuid.uuid4()

    hot = _thread(
        ws.id, "1001",
        peer_name="Hot Hannah",
        lead_status="Qualified",
        last_message_at=NOW - timedelta(hours=2),
        last_inbound_at=NOW - timedelta(hours=2),
        last_message_direction="inbound",
        last_message_text="What's the price?",
    )
    cold = _thread(
        ws.id, "1002",
        last_message_at=NOW - timedelta(days=5),
        last_outbound_at=NOW - timedelta(days=5),
        last_message_direction="outbound",
        last_message_text="Let me know!",
        assigned_user_id=setter_id,
    )
    spam = _thread(ws.id, "1003", is_spam=True, last_message_at=NOW)
    hidden = _thread(ws.id, "1004", hidden_from_setters=True, shared_with_setters=True, last_message_at=NOW)
    session.add_all([hot, cold, spam, hidden])

    tag = InstagramTag(workspace_id=ws.id, name="Hot Lead")
    session.add(tag)
    await session.flush()
    session.add(InstagramConversationTag(workspace_id=ws.id, conversation_id=hot.conversation_id, tag_id=tag.id))
    session.add(
        InstagramAlert(
            workspace_id=ws.id,
            conversation_id=hot.conversation_id,
            alert_type="hot_lead_unreplied",
            overdue_minutes=90,
        )
    )
    for i, (direction, text) in enumerate(
        [("inbound", "Hi there"), ("outbound", "Hey! How can I help?"), ("inbound", "What's the price? Ready to book")]
    ):
        session.add(
            InstagramMessage(
                workspace_id=ws.id,
                message_id=f"mid-hot-{i}",
                conversation_key=hot.conversation_id,
                instagram_account_id=ACCOUNT,
                instagram_user_id="1001",
                direction=direction,
                message_text=text,
                message_timestamp=NOW - timedelta(hours=3) + timedelta(minutes=20 * i),
            )
        )
    # legacy row without conversation_key, found through account + peer
    session.add(
        InstagramMessage(
            workspace_id=ws.id,
            message_id="mid-cold-legacy",
            instagram_account_id=ACCOUNT,
            sender_id=ACCOUNT,
            recipient_id="1002",
            instagram_user_id="1002",
            direction="outbound",
            message_text="Let me know!",
            message_timestamp=NOW - timedelta(days=5),
        )
    )
    await session.commit()
    return ws, hot, cold, setter_id


def _builder(session_factory, **limits):
    return InboxSnapshotBuilder(SnapshotLimits(**limits), session_factory, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_owner_snapshot_ranks_hot_lead_first(session, session_factory) -> None:
    ws, hot, cold, _ = await _seed(session)

    snapshot = await _builder(session_factory).build(session, ws.id, str(uuid.uuid4()), ROLE_OWNER)

    assert snapshot.ranking_method == RANKING_METHOD
    # spam thread excluded, hidden thread visible to owners
    assert snapshot.total_visible_conversations == 3
    top = snapshot.top_leads[0]
    assert top.conversation_id == hot.conversation_id
    assert top.temperature == "hot"
    assert top.waiting_for_reply is True
    assert top.open_alert is not None and top.open_alert.type == "hot_lead_unreplied"
    assert [m.text for m in top.recent_messages][-1] == "What's the price? Ready to book"
    assert [m.sender for m in top.recent_messages] == ["lead", "you", "lead"]
    assert any(r.startswith("Intent signals:") for r in top.priority_reasons)
    assert hot.conversation_id in [lead.conversation_id for lead in snapshot.today_focus]
    assert cold.conversation_id not in [lead.conversation_id for lead in snapshot.today_focus]

    cold_insight = next(lead for lead in snapshot.top_leads if lead.conversation_id == cold.conversation_id)
    assert [m.text for m in cold_insight.recent_messages] == ["Let me know!"]
    assert len(snapshot.lead_index) == 3


@pytest.mark.asyncio
async def test_setter_sees_only_assigned_or_shared(session, session_factory) -> None:
    ws, hot, cold, setter_id = await _seed(session)

    snapshot = await _builder(session_factory).build(session, ws.id, str(setter_id), ROLE_SETTER)

    assert [lead.conversation_id for lead in snapshot.top_leads] == [cold.conversation_id]


@pytest.mark.asyncio
async def test_setter_without_conversations_gets_empty_snapshot(session, session_factory) -> None:
    ws, *_ = await _seed(session)

    snapshot = await _builder(session_factory).build(session, ws.id, str(uuid.uuid4()), ROLE_SETTER)

    assert snapshot.total_visible_conversations == 0
    assert snapshot.ranking_method == EMPTY_RANKING_METHOD
    assert snapshot.top_leads == [] and snapshot.lead_index == []
    block = build_inbox_context_block(snapshot, 24000)
    assert '"total_visible_conversations": 0' in block


@pytest.mark.asyncio
async def test_handle_hint_pulls_low_ranked_thread_into_detail(session, session_factory) -> None:
    ws = Workspace(id=uuid.uuid4(), name="Hints")
    session.add(ws)
    await session.flush()
    for i in range(12):
        session.add(
            _thread(
                ws.id, f"2{i:03d}",
                priority=i < 10,
                last_message_at=NOW - timedelta(hours=i),
            )
        )
        session.add(
            InstagramMessage(
                workspace_id=ws.id,
                message_id=f"mid-hint-{i}",
                conversation_key=f"{ACCOUNT}:2{i:03d}",
                direction="inbound",
                message_text=f"hello {i}",
                message_timestamp=NOW - timedelta(hours=i),
            )
        )
    await session.commit()

    builder = _builder(session_factory, detailed_conversation_limit=8)
    plain = await builder.build(session, ws.id, None, ROLE_OWNER)
    hinted = await builder.build(session, ws.id, None, ROLE_OWNER, "what did @user_2011 say?")

    def detail(snapshot):
        return {lead.conversation_id for lead in snapshot.top_leads if lead.recent_messages}

    target = f"{ACCOUNT}:2011"
    assert target not in detail(plain)
    assert target in detail(hinted)


def test_extract_handle_hints_dedupes_and_lowercases() -> None:
    assert extract_handle_hints("Compare @Jane.Doe and @jane.doe with @bob_1") == ["jane.doe", "bob_1"]
    assert extract_handle_hints(None) == []


def test_visibility_rules() -> None:
    me = str(uuid.uuid4())
    assert is_thread_visible({"lead_status": "removed"}, me, ROLE_OWNER) is False
    assert is_thread_visible({"assigned_user_id": me}, me, ROLE_SETTER) is True
    assert is_thread_visible({"assigned_user_id": me, "hidden_from_setters": True}, me, ROLE_SETTER) is False
    assert is_thread_visible({"shared_with_setters": True}, me, ROLE_SETTER) is True
    assert is_thread_visible({}, me, ROLE_SETTER) is False
    assert is_thread_visible({}, me, ROLE_OWNER) is True


class _TrackingBuilder(InboxSnapshotBuilder):
    """Records how many message lookups are in flight at once."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.in_flight = 0
        self.peak = 0
        self.calls = 0

    async def _fetch_recent(self, workspace_id, thread):
        self.in_flight += 1
        self.calls += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super()._fetch_recent(workspace_id, thread)
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_message_lookups_run_at_most_four_at_a_time(session, session_factory) -> None:
    ws = Workspace(id=uuid.uuid4(), name="Batches")
    session.add(ws)
    await session.flush()
    for i in range(10):
        session.add(_thread(ws.id, f"3{i:03d}", last_message_at=NOW - timedelta(hours=i)))
    await session.commit()

    builder = _TrackingBuilder(SnapshotLimits(detailed_conversation_limit=10), session_factory, clock=lambda: NOW)
    snapshot = await builder.build(session, ws.id, None, ROLE_OWNER)

    assert FETCH_CONCURRENCY == 4
    assert builder.calls == 10
    assert builder.peak == FETCH_CONCURRENCY
    assert snapshot.total_visible_conversations == 10
