"""
Inbox snapshot builder: visible threads -> cheap preliminary ranking -> recent messages for
the winners (plus @handle mentions) -> final ranking -> bounded JSON views for the AI operator.
"""
import asyncio
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.logging_config import get_logger
from app.models import InstagramAlert, InstagramMessage, InstagramThread
from app.schemas.inbox import InboxSnapshot, LeadIndexEntry, LeadInsight, OpenAlert, RecentMessage
from app.services.access_service import is_thread_visible
from app.services.lead_scoring_service import LeadScore, score_lead, summarize_recent_messages
from app.services.phase_service import infer_temperature
from app.services.tag_service import LOOKUP_CHUNK, load_tag_names_by_conversation
from app.utils.text import as_str, compact_text, normalize_spaces
from app.utils.timeutil import start_of_utc_day, to_iso, to_ms, utc_now

logger = get_logger(__name__)

FETCH_CONCURRENCY = 4
EMPTY_RANKING_METHOD = (
    "No visible inbox conversations for this user role. Connect Instagram or check permissions."
)
RANKING_METHOD = (
    "Priority score combines lead status, hot/warm/cold tags, open alerts, reply wait time, "
    "recency, and intent signals from recent inbound messages."
)
_HANDLE_RE = re.compile(r"@([a-z0-9._]+)", re.IGNORECASE)


@dataclass
class SnapshotLimits:
    """Context-size caps; floors (max(40, ...), max(8, ...)) are applied by the builder."""
    threads_limit: int = 220
    top_leads_limit: int = 15
    lead_index_limit: int = 70
    detailed_conversation_limit: int = 18
    recent_messages_per_conversation: int = 14
    context_max_chars: int = 24000

    @classmethod
    def from_settings(cls, settings: Settings) -> "SnapshotLimits":
        return cls(
            threads_limit=settings.inbox_threads_limit,
            top_leads_limit=settings.inbox_top_leads_limit,
            lead_index_limit=settings.inbox_lead_index_limit,
            detailed_conversation_limit=settings.inbox_detailed_conv_limit,
            recent_messages_per_conversation=settings.inbox_recent_msgs_per_conv,
            context_max_chars=settings.inbox_context_max_chars,
        )


@dataclass
class _Candidate:
    thread: InstagramThread
    temperature: str
    alert: Optional[InstagramAlert]
    scored: LeadScore
    recent_messages: List[RecentMessage] = field(default_factory=list)


def extract_handle_hints(question: Optional[str]) -> List[str]:
    """Lowercased @handles mentioned in the question, first-seen order."""
    out: List[str] = []
    for match in _HANDLE_RE.finditer(question or ""):
        handle = match.group(1).strip().lower()
        if handle and handle not in out:
            out.append(handle)
    return out


def pick_lead_name(thread: Any) -> str:
    name = compact_text(thread.peer_name or "", 64)
    if name:
        return name
    username = compact_text(thread.peer_username or "", 64).lstrip("@")
    if username:
        return f"@{username}"
    return "Instagram lead"


def pick_lead_handle(thread: Any) -> Optional[str]:
    username = compact_text(thread.peer_username or "", 64).lstrip("@")
    return f"@{username}" if username else None


def build_inbox_context_block(snapshot: Optional[InboxSnapshot], max_chars: int) -> str:
    """Indented JSON snapshot (clipped to max_chars) wrapped with usage instructions."""
    if snapshot is None:
        return ""
    payload = json.dumps(snapshot.model_dump(by_alias=True), indent=2, ensure_ascii=False)
    clipped = f"{payload[:max_chars]}\n..." if len(payload) > max_chars else payload
    return "\n".join(
        [
            "Live Instagram inbox context (source-of-truth for lead/message answers):",
            clipped,
            "",
            "Instructions for this context:",
            "- Use this data directly for lead and inbox questions.",
            "- For prioritization, rank by priority_score and explain each pick with priority_reasons.",
            '- Use today_focus for "today" requests before broader lead_index entries.',
            "- Do not claim anything that is not present in this snapshot.",
        ]
    )


async def fetch_conversation_messages(
    db: AsyncSession,
    workspace_id: UUID,
    thread: InstagramThread,
    limit: int,
) -> List[InstagramMessage]:
    """
    Most recent `limit` messages of one conversation, oldest first.
    Lookup by conversation_key; fall back to account + peer id for rows stored without a key.
    """
    conversation_id = thread.conversation_id
    if not conversation_id:
        return []
    newest_first = (
        InstagramMessage.message_timestamp.desc().nulls_last(),
        InstagramMessage.created_at.desc(),
    )
    r = await db.execute(
        select(InstagramMessage)
        .where(
            InstagramMessage.workspace_id == workspace_id,
            InstagramMessage.conversation_key == conversation_id,
        )
        .order_by(*newest_first)
        .limit(limit)
    )
    rows = list(r.scalars().all())
    if rows:
        return rows[::-1]

    account_id = as_str(thread.instagram_account_id)
    peer_id = as_str(thread.instagram_user_id)
    if not account_id or not peer_id:
        return []
    r = await db.execute(
        select(InstagramMessage)
        .where(
            InstagramMessage.workspace_id == workspace_id,
            InstagramMessage.instagram_account_id == account_id,
            or_(
                InstagramMessage.sender_id == peer_id,
                InstagramMessage.recipient_id == peer_id,
                InstagramMessage.instagram_user_id == peer_id,
            ),
            or_(
                InstagramMessage.conversation_key.is_(None),
                InstagramMessage.conversation_key == conversation_id,
            ),
        )
        .order_by(*newest_first)
        .limit(limit)
    )
    return list(r.scalars().all())[::-1]


class InboxSnapshotBuilder:
    """
    Builds one InboxSnapshot per request. Message lookups run FETCH_CONCURRENCY at a time,
    each on its own session from session_factory (an AsyncSession is not concurrency-safe).
    """

    def __init__(
        self,
        limits: SnapshotLimits,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.limits = limits
        self.session_factory = session_factory
        self.clock = clock

    async def _load_threads(self, db: AsyncSession, workspace_id: UUID) -> List[InstagramThread]:
        r = await db.execute(
            select(InstagramThread)
            .where(InstagramThread.workspace_id == workspace_id)
            .order_by(
                InstagramThread.priority.desc(),
                InstagramThread.last_message_at.desc().nulls_last(),
            )
            .limit(max(40, self.limits.threads_limit))
        )
        return list(r.scalars().all())

    async def _load_open_alerts(
        self, db: AsyncSession, workspace_id: UUID, conversation_ids: Sequence[str]
    ) -> Dict[str, InstagramAlert]:
        out: Dict[str, InstagramAlert] = {}
        for i in range(0, len(conversation_ids), LOOKUP_CHUNK):
            chunk = list(conversation_ids[i:i + LOOKUP_CHUNK])
            r = await db.execute(
                select(InstagramAlert)
                .where(
                    InstagramAlert.workspace_id == workspace_id,
                    InstagramAlert.status == "open",
                    InstagramAlert.conversation_id.in_(chunk),
                )
                .order_by(InstagramAlert.created_at)
            )
            for alert in r.scalars().all():
                out.setdefault(alert.conversation_id, alert)
        return out

    async def _fetch_recent(self, workspace_id: UUID, thread: InstagramThread) -> List[RecentMessage]:
        limit = self.limits.recent_messages_per_conversation
        try:
            async with self.session_factory() as session:
                rows = await fetch_conversation_messages(session, workspace_id, thread, limit)
        except Exception as e:
            logger.warning(
                "inbox_snapshot.messages_failed",
                conversation_id=thread.conversation_id,
                error=str(e),
            )
            return []
        return summarize_recent_messages(rows, limit)

    def _select_detailed(self, ranked: List[_Candidate], latest_prompt: str) -> List[_Candidate]:
        base = max(8, self.limits.detailed_conversation_limit)
        cap = max(8, self.limits.detailed_conversation_limit + 6)
        selected = {c.thread.conversation_id for c in ranked[:base]}
        hints = extract_handle_hints(latest_prompt)
        if hints:
            for candidate in ranked:
                if len(selected) >= cap:
                    break
                handle = normalize_spaces(candidate.thread.peer_username).lstrip("@")
                if not handle:
                    continue
                if any(hint in handle or handle in hint for hint in hints):
                    selected.add(candidate.thread.conversation_id)
        return [c for c in ranked if c.thread.conversation_id in selected]

    def _to_insight(self, candidate: _Candidate) -> LeadInsight:
        thread = candidate.thread
        alert = candidate.alert
        return LeadInsight(
            conversation_id=thread.conversation_id,
            lead_name=pick_lead_name(thread),
            instagram_handle=pick_lead_handle(thread),
            lead_status=as_str(thread.lead_status or "open") or "open",
            temperature=candidate.temperature,
            priority_score=candidate.scored.score,
            waiting_for_reply=candidate.scored.waiting_for_reply,
            priority_reasons=candidate.scored.reasons,
            open_alert=(
                OpenAlert(
                    type=as_str(alert.alert_type),
                    overdue_minutes=alert.overdue_minutes,
                    recommended_action=alert.recommended_action,
                )
                if alert is not None
                else None
            ),
            last_message_at=to_iso(thread.last_message_at),
            last_message_direction=thread.last_message_direction,
            last_message_text=compact_text(thread.last_message_text or "", 220) or None,
            last_inbound_at=to_iso(thread.last_inbound_at),
            last_outbound_at=to_iso(thread.last_outbound_at),
            summary_text=compact_text(thread.summary_text or "", 420) or None,
            recent_messages=candidate.recent_messages,
        )

    @staticmethod
    def _rank_key(score: int, last_message_at: Any) -> tuple[int, int]:
        return (-score, -to_ms(last_message_at))

    async def build(
        self,
        db: AsyncSession,
        workspace_id: UUID,
        actor_user_id: Optional[str],
        role: str,
        latest_prompt: str = "",
    ) -> Optional[InboxSnapshot]:
        """
        Snapshot for one actor. None when the thread query fails; an explicit empty snapshot
        (total_visible_conversations=0) when the role sees no conversations.
        """
        try:
            threads = await self._load_threads(db, workspace_id)
        except Exception as e:
            logger.warning("inbox_snapshot.thread_load_failed", workspace_id=str(workspace_id), error=str(e))
            return None

        visible = [
            t for t in threads
            if t.conversation_id and is_thread_visible(t, actor_user_id, role)
        ]
        if not visible:
            return InboxSnapshot(
                generated_at=to_iso(self.clock()),
                total_visible_conversations=0,
                ranking_method=EMPTY_RANKING_METHOD,
            )

        conversation_ids = [t.conversation_id for t in visible]
        try:
            alerts = await self._load_open_alerts(db, workspace_id, conversation_ids)
        except Exception as e:
            logger.warning("inbox_snapshot.alerts_failed", workspace_id=str(workspace_id), error=str(e))
            alerts = {}
        try:
            tag_names = await load_tag_names_by_conversation(db, workspace_id, conversation_ids)
        except Exception as e:
            logger.warning("inbox_snapshot.tags_failed", workspace_id=str(workspace_id), error=str(e))
            tag_names = {}

        now = self.clock()
        candidates: List[_Candidate] = []
        for thread in visible:
            temperature = infer_temperature(tag_names.get(thread.conversation_id, []))
            alert = alerts.get(thread.conversation_id)
            candidates.append(
                _Candidate(
                    thread=thread,
                    temperature=temperature,
                    alert=alert,
                    scored=score_lead(now, thread, temperature, alert, []),
                )
            )
        candidates.sort(key=lambda c: self._rank_key(c.scored.score, c.thread.last_message_at))

        detailed = self._select_detailed(candidates, latest_prompt)
        for i in range(0, len(detailed), FETCH_CONCURRENCY):
            batch = detailed[i:i + FETCH_CONCURRENCY]
            results = await asyncio.gather(*(self._fetch_recent(workspace_id, c.thread) for c in batch))
            for candidate, messages in zip(batch, results):
                candidate.recent_messages = messages

        now = self.clock()
        for candidate in candidates:
            candidate.scored = score_lead(
                now, candidate.thread, candidate.temperature, candidate.alert, candidate.recent_messages
            )
        candidates.sort(key=lambda c: self._rank_key(c.scored.score, c.thread.last_message_at))
        insights = [self._to_insight(c) for c in candidates]

        day_start_ms = to_ms(start_of_utc_day(now))
        today_focus = [
            lead for lead in insights
            if max(to_ms(lead.last_inbound_at), to_ms(lead.last_message_at)) >= day_start_ms
        ][: max(1, min(12, self.limits.top_leads_limit))]

        lead_index = [
            LeadIndexEntry(
                conversation_id=lead.conversation_id,
                lead_name=lead.lead_name,
                instagram_handle=lead.instagram_handle,
                priority_score=lead.priority_score,
                waiting_for_reply=lead.waiting_for_reply,
                lead_status=lead.lead_status,
                temperature=lead.temperature,
                open_alert_type=lead.open_alert.type if lead.open_alert else None,
                last_message_at=lead.last_message_at,
                last_message_preview=compact_text(lead.last_message_text or "", 120) or None,
            )
            for lead in insights[: max(10, self.limits.lead_index_limit)]
        ]

        logger.info(
            "inbox_snapshot.built",
            workspace_id=str(workspace_id),
            role=role,
            visible=len(visible),
            detailed=len(detailed),
        )
        return InboxSnapshot(
            generated_at=to_iso(now),
            total_visible_conversations=len(visible),
            ranking_method=RANKING_METHOD,
            today_focus=today_focus,
            top_leads=insights[: max(1, self.limits.top_leads_limit)],
            lead_index=lead_index,
        )
