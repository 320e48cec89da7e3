"""
Inbox and YouTube corpora for weekly content ideas.

build_inbox_corpus ranks the workspace's threads by urgency, samples recent
messages per conversation and tallies objection / pain / convincer keywords and
repeated questions over inbound text. load_youtube_signals summarises the
latest synced channel and videos. Both produce a prompt-ready text block.
"""
import json
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from app.models import InstagramMessage, InstagramThread, YoutubeChannel, YoutubeVideo
from app.services.phase_service import conversation_phase, normalize_phase
from app.services.tag_service import load_tag_names_by_conversation
from app.utils.text import as_record, as_str, compact_text
from app.utils.timeutil import ensure_utc, to_iso, to_ms, utc_now

logger = get_logger(__name__)

THREAD_SCAN_LIMIT = 1200
SELECTED_THREAD_LIMIT = 180
MESSAGE_WINDOW_DAYS = 180
MESSAGE_SCAN_LIMIT = 12000
MESSAGE_FALLBACK_LIMIT = 8000
MESSAGES_PER_CONVERSATION = 80
RENDERED_MESSAGES_PER_CONVERSATION = 14
MESSAGE_RENDER_CHARS = 260
QUESTION_KEY_CHARS = 90
CORPUS_PROMPT_MAX_CHARS = 26000

YOUTUBE_VIDEO_LIMIT = 120
YOUTUBE_TOP_TOPICS = 14
YOUTUBE_TOP_VIDEOS = 10
EMPTY_YOUTUBE_CONTEXT = "No connected YouTube channel data found."

OBJECTION_KEYWORDS: Dict[str, List[str]] = {
    "pricing": ["price", "pricing", "expensive", "too much", "cost"],
    "timing": ["later", "not ready", "too soon", "busy", "timing"],
    "trust": ["proof", "legit", "trust", "scam", "real"],
    "effort": ["too hard", "complicated", "overwhelming", "difficult"],
    "fit": ["not for me", "not my niche", "not my audience", "not sure this fits"],
}

PAIN_KEYWORDS: Dict[str, List[str]] = {
    "no_leads": ["no leads", "not getting leads", "lead flow", "inbound"],
    "low_sales": ["no sales", "not closing", "close rate", "conversion"],
    "inconsistent_content": ["inconsistent", "not posting", "content plan", "ideas"],
    "time_shortage": ["no time", "too busy", "time"],
    "low_confidence": ["not confident", "camera shy", "awkward on camera", "hesitant"],
}

CONVINCER_KEYWORDS: Dict[str, List[str]] = {
    "proof": ["results", "case study", "testimonial", "before and after"],
    "clarity": ["makes sense", "clear now", "got it", "understand"],
    "urgency": ["need this", "asap", "right now", "this week"],
    "commitment": ["booked", "book a call", "send link", "i'm in", "let's do it"],
}

TOPIC_STOP_WORDS = frozenset(
    """
    the and for you your with that this from into about how why when what where are was were is be
    to of a an in on at it as or if my we our their they them i me im ive vs new best top video videos
    youtube short shorts podcast episode guide
    """.split()
)

_URL_RE = re.compile(r"https?://\S+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_NON_QUESTION_RE = re.compile(r"[^a-z0-9\s?]")
_WS_RE = re.compile(r"\s+")


def top_entries(counts: Dict[str, int], limit: int = 8) -> List[Dict[str, Any]]:
    """[{key, count}] sorted by count desc, zero counts dropped."""
    ranked = sorted(((k, c) for k, c in counts.items() if c > 0), key=lambda kv: kv[1], reverse=True)
    return [{"key": k, "count": c} for k, c in ranked[:limit]]


def keyword_hits(text: str, labels: Dict[str, List[str]]) -> List[str]:
    lower = text.lower()
    return [label for label, keys in labels.items() if any(k in lower for k in keys)]


def normalize_question(text: str) -> str:
    cleaned = _NON_QUESTION_RE.sub("", text.lower())
    return _WS_RE.sub(" ", cleaned).strip()[:QUESTION_KEY_CHARS]


def topic_tokens(text: Any) -> List[str]:
    """Lowercase alphanumeric words of 3-28 chars, URLs and stop words removed."""
    cleaned = _URL_RE.sub(" ", as_str(text).lower())
    cleaned = _WS_RE.sub(" ", _NON_ALNUM_RE.sub(" ", cleaned)).strip()
    if not cleaned:
        return []
    return [w for w in cleaned.split(" ") if 3 <= len(w) <= 28 and w not in TOPIC_STOP_WORDS]


def parse_string_list(value: Any) -> List[str]:
    """JSON list or JSON-encoded list string -> stripped non-empty strings."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if not isinstance(value, list):
        return []
    return [s for s in (as_str(v).strip() for v in value) if s]


def to_count(value: Any) -> int:
    try:
        return max(0, round(float(value or 0)))
    except (TypeError, ValueError, OverflowError):
        return 0


def derive_conversation_key(row: Any) -> str:
    """conversation_key column, then raw_payload.conversation_key, then account:peer."""
    direct = as_str(getattr(row, "conversation_key", None)).strip()
    if direct:
        return direct
    from_payload = as_str(as_record(getattr(row, "raw_payload", None)).get("conversation_key")).strip()
    if from_payload:
        return from_payload
    account = as_str(getattr(row, "instagram_account_id", None)).strip()
    peer = as_str(getattr(row, "instagram_user_id", None)).strip()
    if account and peer:
        return f"{account}:{peer}"
    return ""


def derive_message_text(row: Any) -> str:
    """Stored text, then payload text, then 'Attachment shared' when the message only carried media."""
    direct = as_str(getattr(row, "message_text", None)).strip()
    if direct:
        return direct
    payload = as_record(getattr(row, "raw_payload", None))
    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    if isinstance(message, dict) and as_str(message.get("text")).strip():
        return as_str(message.get("text")).strip()
    fallback = as_str(payload.get("text")).strip()
    if fallback:
        return fallback
    stored = payload.get("stored_attachments")
    if not isinstance(stored, list):
        stored = as_record(payload.get("attachments")).get("data")
    if isinstance(stored, list) and stored:
        return "Attachment shared"
    return ""


async def load_conversation_phase_map(
    db: AsyncSession,
    workspace_id: UUID,
    lead_status_by_conversation: Dict[str, Optional[str]],
) -> Dict[str, str]:
    """conversation_id -> phase, tag phases overriding lead_status."""
    tags_by_conversation = await load_tag_names_by_conversation(
        db, workspace_id, lead_status_by_conversation.keys()
    )
    return {
        cid: conversation_phase(status, tags_by_conversation.get(cid, []))
        for cid, status in lead_status_by_conversation.items()
    }


@dataclass
class _CorpusMessage:
    direction: str
    text: str
    at_ms: int


@dataclass
class InboxCorpus:
    conversations_for_prompt: str = ""
    phase_counts: Dict[str, int] = field(default_factory=dict)
    top_objections: List[Dict[str, Any]] = field(default_factory=list)
    top_pain_points: List[Dict[str, Any]] = field(default_factory=list)
    top_questions: List[Dict[str, Any]] = field(default_factory=list)
    top_convincers: List[Dict[str, Any]] = field(default_factory=list)
    sampled_conversation_count: int = 0

    def summary(self) -> Dict[str, Any]:
        return {
            "phaseCounts": self.phase_counts,
            "topPainPoints": self.top_pain_points,
            "topObjections": self.top_objections,
            "topQuestions": self.top_questions,
            "topConvincers": self.top_convincers,
            "sampledConversationCount": self.sampled_conversation_count,
        }


@dataclass
class _RankedThread:
    conversation_id: str
    phase: str
    waiting_hours: float
    score: float


def _rank_threads(
    threads: Sequence[InstagramThread],
    phase_by_conversation: Dict[str, str],
    phase_filter: Iterable[str],
    now: datetime,
) -> List[_RankedThread]:
    wanted = {p for p in phase_filter if p}
    now_ms = to_ms(now)
    ranked: List[_RankedThread] = []
    for t in threads:
        cid = as_str(t.conversation_id)
        if not cid:
            continue
        phase = phase_by_conversation.get(cid, "open")
        if wanted and phase not in wanted:
            continue
        inbound_ms = to_ms(t.last_inbound_at)
        outbound_ms = to_ms(t.last_outbound_at)
        waiting_hours = 0.0
        if inbound_ms > outbound_ms and inbound_ms > 0:
            waiting_hours = max(0.0, (now_ms - inbound_ms) / 3_600_000)
        score = waiting_hours * 10 + (25 if t.priority else 0) + to_ms(t.last_message_at) / 1e11
        ranked.append(_RankedThread(cid, phase, waiting_hours, score))
    ranked.sort(key=lambda r: r.score, reverse=True)
    return ranked[:SELECTED_THREAD_LIMIT]


async def _load_corpus_messages(db: AsyncSession, workspace_id: UUID, since: datetime) -> List[InstagramMessage]:
    base = select(InstagramMessage).where(InstagramMessage.workspace_id == workspace_id)
    order = InstagramMessage.message_timestamp.desc().nulls_last()
    try:
        async with db.begin_nested():
            r = await db.execute(
                base.where(InstagramMessage.message_timestamp >= since).order_by(order).limit(MESSAGE_SCAN_LIMIT)
            )
            return list(r.scalars().all())
    except SQLAlchemyError as e:
        logger.warning("content_corpus.windowed_messages_failed", workspace_id=str(workspace_id), error=str(e))
    r = await db.execute(base.order_by(order).limit(MESSAGE_FALLBACK_LIMIT))
    return list(r.scalars().all())


async def build_inbox_corpus(
    db: AsyncSession,
    workspace_id: UUID,
    phase_filter: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> InboxCorpus:
    """Raises SQLAlchemyError when threads cannot be loaded; callers degrade."""
    now = ensure_utc(now) or utc_now()
    r = await db.execute(
        select(InstagramThread)
        .where(InstagramThread.workspace_id == workspace_id)
        .order_by(InstagramThread.last_message_at.desc().nulls_last())
        .limit(THREAD_SCAN_LIMIT)
    )
    threads = list(r.scalars().all())
    lead_status = {t.conversation_id: t.lead_status for t in threads if t.conversation_id}
    phase_by_conversation = await load_conversation_phase_map(db, workspace_id, lead_status)
    selected = _rank_threads(
        threads, phase_by_conversation, [normalize_phase(p) for p in phase_filter], now
    )
    selected_by_id = {t.conversation_id: t for t in selected}

    rows = await _load_corpus_messages(db, workspace_id, now - timedelta(days=MESSAGE_WINDOW_DAYS))
    by_conversation: Dict[str, List[_CorpusMessage]] = {}
    for row in rows:
        key = derive_conversation_key(row)
        if key not in selected_by_id:
            continue
        text = derive_message_text(row)
        if not text:
            continue
        bucket = by_conversation.setdefault(key, [])
        if len(bucket) >= MESSAGES_PER_CONVERSATION:
            continue
        direction = "outbound" if as_str(row.direction).lower() == "outbound" else "inbound"
        bucket.append(_CorpusMessage(direction, text, to_ms(row.message_timestamp)))

    objections: Counter = Counter()
    pains: Counter = Counter()
    convincers: Counter = Counter()
    questions: Counter = Counter()
    phase_counts: Counter = Counter()
    sections: List[str] = []

    for cid, messages in by_conversation.items():
        recent = sorted(messages, key=lambda m: m.at_ms)[-RENDERED_MESSAGES_PER_CONVERSATION:]
        if not recent:
            continue
        thread = selected_by_id[cid]
        phase_counts[thread.phase] += 1
        lines: List[str] = []
        for m in recent:
            text = compact_text(m.text, MESSAGE_RENDER_CHARS)
            if not text:
                continue
            lines.append(f"{'You' if m.direction == 'outbound' else 'Lead'}: {text}")
            if m.direction != "inbound":
                continue
            objections.update(keyword_hits(text, OBJECTION_KEYWORDS))
            pains.update(keyword_hits(text, PAIN_KEYWORDS))
            convincers.update(keyword_hits(text, CONVINCER_KEYWORDS))
            if "?" in text:
                question = normalize_question(text)
                if question:
                    questions[question] += 1
        header = f"Conversation {cid} | phase={thread.phase} | waiting_hours={round(thread.waiting_hours)}"
        sections.append(header + "\n" + "\n".join(lines))

    prompt_text = ""
    for section in sections:
        chunk = f"{section}\n\n"
        if len(prompt_text) + len(chunk) > CORPUS_PROMPT_MAX_CHARS:
            break
        prompt_text += chunk

    logger.info(
        "content_corpus.built",
        workspace_id=str(workspace_id),
        threads=len(threads),
        selected=len(selected),
        sampled=len(sections),
    )
    return InboxCorpus(
        conversations_for_prompt=prompt_text.strip(),
        phase_counts=dict(phase_counts),
        top_objections=top_entries(objections, 10),
        top_pain_points=top_entries(pains, 10),
        top_questions=top_entries(questions, 10),
        top_convincers=top_entries(convincers, 8),
        sampled_conversation_count=len(sections),
    )


@dataclass
class YoutubeVideoSignal:
    title: str
    published_at: Optional[str]
    views: int
    likes: int
    comments: int
    tags: List[str]


@dataclass
class YoutubeSignals:
    has_data: bool = False
    channel_title: str = ""
    channel_description: str = ""
    subscriber_count: int = 0
    channel_video_count: int = 0
    channel_view_count: int = 0
    recent_videos: List[YoutubeVideoSignal] = field(default_factory=list)
    top_videos: List[Dict[str, Any]] = field(default_factory=list)
    top_topics: List[Dict[str, Any]] = field(default_factory=list)
    prompt_context: str = EMPTY_YOUTUBE_CONTEXT

    def summary(self) -> Dict[str, Any]:
        return {
            "hasData": self.has_data,
            "channelTitle": self.channel_title,
            "subscriberCount": self.subscriber_count,
            "topTopics": self.top_topics,
            "topVideos": self.top_videos,
            "recentVideoCount": len(self.recent_videos),
        }


async def load_youtube_signals(db: AsyncSession, workspace_id: UUID) -> YoutubeSignals:
    """Latest channel plus recent videos; any failure yields empty signals."""
    try:
        async with db.begin_nested():
            r = await db.execute(
                select(YoutubeChannel)
                .where(YoutubeChannel.workspace_id == workspace_id)
                .order_by(YoutubeChannel.last_synced_at.desc().nulls_last())
                .limit(1)
            )
            channel = r.scalar_one_or_none()
            r = await db.execute(
                select(YoutubeVideo)
                .where(YoutubeVideo.workspace_id == workspace_id)
                .order_by(YoutubeVideo.published_at.desc().nulls_last())
                .limit(YOUTUBE_VIDEO_LIMIT)
            )
            video_rows = list(r.scalars().all())
    except SQLAlchemyError as e:
        logger.warning("content_corpus.youtube_failed", workspace_id=str(workspace_id), error=str(e))
        return YoutubeSignals()

    videos = [
        YoutubeVideoSignal(
            title=as_str(v.title).strip(),
            published_at=to_iso(v.published_at),
            views=to_count(v.view_count),
            likes=to_count(v.like_count),
            comments=to_count(v.comment_count),
            tags=parse_string_list(v.tags),
        )
        for v in video_rows
    ]
    videos = [v for v in videos if v.title]

    topics: Counter = Counter()
    for v in videos:
        topics.update(topic_tokens(v.title))
        for tag in v.tags[:8]:
            topics.update(topic_tokens(tag))
        topics.update(topic_tokens(v.title.split(":")[0]))
    top_topics = top_entries(topics, YOUTUBE_TOP_TOPICS)
    top_videos = [
        {"title": v.title, "views": v.views, "published_at": v.published_at}
        for v in sorted(videos, key=lambda v: v.views, reverse=True)[:YOUTUBE_TOP_VIDEOS]
    ]

    channel_title = as_str(channel.title).strip() if channel else ""
    lines: List[str] = []
    if channel_title:
        lines.append(f"Channel: {channel_title}")
        lines.append(f"Subscribers: {to_count(channel.subscriber_count)}")
        lines.append(f"Channel videos: {to_count(channel.video_count)}")
        lines.append(f"Channel views: {to_count(channel.view_count)}")
    if top_topics:
        lines.append("Top recurring topics: " + ", ".join(f"{t['key']} ({t['count']})" for t in top_topics))
    if videos:
        lines.append("Recent videos:\n- " + "\n- ".join(f"{v.title} [views={v.views}]" for v in videos[:15]))
    else:
        lines.append("Recent videos: none")
    if top_videos:
        lines.append("Top performing videos:\n- " + "\n- ".join(f"{v['title']} [views={v['views']}]" for v in top_videos[:8]))

    return YoutubeSignals(
        has_data=bool(channel_title or videos),
        channel_title=channel_title,
        channel_description=as_str(channel.description).strip() if channel else "",
        subscriber_count=to_count(channel.subscriber_count) if channel else 0,
        channel_video_count=to_count(channel.video_count) if channel else 0,
        channel_view_count=to_count(channel.view_count) if channel else 0,
        recent_videos=videos,
        top_videos=top_videos,
        top_topics=top_topics,
        prompt_context="\n".join(lines).strip() or EMPTY_YOUTUBE_CONTEXT,
    )
