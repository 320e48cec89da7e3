"""
Weekly YouTube content ideas mined from the inbox, plus per-idea hook / outline / CTA / script.

Responses are `{success: true, ...}` payloads or `{success: false, error, details?}`
envelopes; provider failures never raise out of this module.
"""
import json
import secrets
import string
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from app.models import ContentIdea, ContentScript, TrackedLink
from app.schemas.common import FailureResponse
from app.schemas.content_ai import ContentIdeaOut, ContentScriptOut, TrackedLinkOut
from app.services.content_corpus_service import (
    InboxCorpus,
    YoutubeSignals,
    build_inbox_corpus,
    load_youtube_signals,
)
from app.services.llm_service import LLMProviderError, LLMService
from app.services.phase_service import normalize_bucket, normalize_phase
from app.services.tag_service import is_unique_violation
from app.utils.text import as_record, as_str, as_str_list
from app.utils.timeutil import to_iso, to_ms, utc_now

logger = get_logger(__name__)

WEEKLY_IDEA_COUNT = 10
CACHE_WINDOW = timedelta(days=7)
RECENT_IDEAS_LIMIT = 100
TITLE_MAX_CHARS = 300
SLUG_LENGTH = 8
SLUG_ATTEMPTS = 6
SLUG_ALPHABET = string.ascii_lowercase + string.digits
GENERATION_MODE = "weekly_inbox_youtube_ai"

WEEKLY_IDEAS_SYSTEM = """You are an elite YouTube strategist for appointment-based businesses.

Return ONLY valid JSON in this shape:
{
  "insights": [
    {
      "bucket": "objections|pain_points|case_studies|mistakes|how_to",
      "phase": "string",
      "signal": "string",
      "frequency": number,
      "evidence": ["string"]
    }
  ],
  "ideas": [
    {
      "bucket": "objections|pain_points|case_studies|mistakes|how_to",
      "phase": "string",
      "title": "string",
      "hook": "string",
      "angle": "string",
      "pain": "string",
      "objection": "string",
      "what_convinced": "string",
      "cta_intent": "string"
    }
  ]
}

Rules:
- Ideas must be YouTube-ready and directly useful this week.
- Prioritize ideas that pre-qualify and drive booked calls.
- Use the YouTube history provided to avoid repeating old angles.
- Prefer adjacent topics that fit what already performs on the channel.
- Use concrete language, no vague generic tips.
- Keep titles short and specific."""

HOOK_SYSTEM = (
    'Return ONLY JSON: {"hook":"string"}. Write one hard-hitting YouTube hook (<18 words) '
    "that speaks to the exact objection/pain."
)
OUTLINE_SYSTEM = (
    'Return ONLY JSON: {"outline":["string"]}. Create a practical 6-8 step YouTube outline '
    "that turns the objection into a booking conversation."
)
CTA_SYSTEM = (
    'Return ONLY JSON: {"cta":"string"}. Write one CTA that is direct, human, and includes '
    "the provided tracked booking link exactly once."
)
SCRIPT_SYSTEM = """Return ONLY JSON:
{
  "title": "string",
  "script": "string",
  "sections": [
    { "label": "Hook", "text": "string" },
    { "label": "Body", "text": "string" },
    { "label": "CTA", "text": "string" }
  ]
}

Rules:
- Real human tone, no fluff.
- Strong first 2 seconds.
- Include practical examples and one CTA to book."""

HEALTH_SYSTEM = "Return exactly OK"


def failure(error: str, details: Any = None) -> Dict[str, Any]:
    """Pipeline failure envelope (HTTP 200)."""
    return FailureResponse(
        error=error, details=None if details is None else str(details)
    ).model_dump(exclude_none=True)


def is_http_url(value: Optional[str]) -> bool:
    try:
        parsed = urlparse(value or "")
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def random_slug(length: int = SLUG_LENGTH) -> str:
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def normalize_idea_meta(raw: Any) -> Dict[str, Any]:
    """outline_json as a dict with a clean outline_steps list."""
    if isinstance(raw, list):
        return {"outline_steps": as_str_list(raw)}
    meta = dict(as_record(raw))
    meta["outline_steps"] = as_str_list(meta.get("outline_steps"))
    return meta


def dedupe_titles(ideas: Iterable[Any], limit: int) -> List[Dict[str, Any]]:
    """Drop ideas without a title and case-insensitive duplicate titles; keep first `limit`."""
    seen = set()
    out: List[Dict[str, Any]] = []
    for raw in ideas:
        idea = as_record(raw)
        title = as_str(idea.get("title")).strip()
        if not title:
            continue
        key = title.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(idea)
        if len(out) >= limit:
            break
    return out


def serialize_idea(idea: ContentIdea) -> Dict[str, Any]:
    return ContentIdeaOut.model_validate(idea).model_dump(mode="json")


def _cached(ideas: List[ContentIdea], warning: Optional[str] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "success": True,
        "ideas": [serialize_idea(i) for i in ideas],
        "autoSkipped": True,
        "generationMode": "cached",
    }
    if warning:
        out["warnings"] = [warning]
    return out


def build_weekly_prompt(
    knowledge: str,
    now: datetime,
    count: int,
    phase_filter: List[str],
    corpus: InboxCorpus,
    youtube: YoutubeSignals,
) -> str:
    targets = f"Target phases: {', '.join(phase_filter)}" if phase_filter else "Target phases: all"
    return "\n".join(
        [
            "Knowledge (internal context):",
            knowledge or "(none)",
            "",
            f"Date: {to_iso(now)}",
            f"Weekly idea count (fixed): {count}",
            targets,
            f"YouTube available: {'yes' if youtube.has_data else 'no'}",
            "",
            f"Top pains: {json.dumps(corpus.top_pain_points)}",
            f"Top objections: {json.dumps(corpus.top_objections)}",
            f"Top questions: {json.dumps(corpus.top_questions)}",
            f"What convinced buyers: {json.dumps(corpus.top_convincers)}",
            f"Phase counts: {json.dumps(corpus.phase_counts)}",
            f"Sampled conversations: {corpus.sampled_conversation_count}",
            "",
            "YouTube context:",
            youtube.prompt_context,
            "",
            "Conversation excerpts:",
            corpus.conversations_for_prompt or "(none available)",
            "",
            f"Generate exactly {count} ideas.",
        ]
    )


def idea_context(knowledge: str, idea: ContentIdea, meta: Dict[str, Any], bucket: str, phase: str) -> str:
    insight = as_record(meta.get("insight"))
    outline = meta.get("outline_steps") or []
    return "\n".join(
        [
            "Knowledge:",
            knowledge or "(none)",
            "",
            f"Idea title: {idea.title or 'Untitled idea'}",
            f"Bucket: {bucket}",
            f"Phase: {phase}",
            f"Angle: {idea.angle or '(none)'}",
            f"Hook: {idea.hook or '(none)'}",
            f"Current CTA: {idea.cta or '(none)'}",
            f"Current outline: {' | '.join(outline) or '(none)'}",
            f"Inbox pain: {as_str(insight.get('pain'))}",
            f"Inbox objection: {as_str(insight.get('objection'))}",
            f"What convinced buyers: {as_str(insight.get('what_convinced'))}",
        ]
    )


class ContentIdeasService:
    """Weekly ideas and idea pieces for one workspace; knowledge_loader returns the knowledge text."""

    def __init__(
        self,
        llm: LLMService,
        knowledge_loader: Callable[[], Awaitable[str]],
        app_origin: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.llm = llm
        self.knowledge_loader = knowledge_loader
        self.app_origin = app_origin
        self.clock = clock

    async def _recent_ai_ideas(self, db: AsyncSession, workspace_id: UUID, now: datetime) -> List[ContentIdea]:
        r = await db.execute(
            select(ContentIdea)
            .where(
                ContentIdea.workspace_id == workspace_id,
                ContentIdea.platform == "youtube",
                ContentIdea.source == "ai",
                ContentIdea.created_at >= now - CACHE_WINDOW,
            )
            .order_by(ContentIdea.created_at.desc())
            .limit(RECENT_IDEAS_LIMIT)
        )
        return list(r.scalars().all())

    async def generate_weekly_ideas(
        self,
        db: AsyncSession,
        workspace_id: UUID,
        actor_id: Optional[UUID],
        phase_filter: Iterable[str] = (),
    ) -> Dict[str, Any]:
        now = self.clock()
        phases = [normalize_phase(p) for p in phase_filter if as_str(p).strip()]
        existing = await self._recent_ai_ideas(db, workspace_id, now)
        if len(existing) >= WEEKLY_IDEA_COUNT:
            logger.info("content_ideas.cached", workspace_id=str(workspace_id), count=len(existing))
            return _cached(existing)

        count = max(1, WEEKLY_IDEA_COUNT - len(existing))
        corpus = InboxCorpus()
        inbox_error = ""
        try:
            async with db.begin_nested():
                corpus = await build_inbox_corpus(db, workspace_id, phases, now=now)
        except SQLAlchemyError as e:
            inbox_error = str(e)
            logger.warning("content_ideas.corpus_failed", workspace_id=str(workspace_id), error=inbox_error)

        youtube = await load_youtube_signals(db, workspace_id)
        if not corpus.conversations_for_prompt:
            if existing:
                return _cached(existing, "No inbox conversation corpus available yet. Showing existing weekly ideas.")
            return failure("Not enough inbox conversation data yet to generate ideas.")

        knowledge = await self.knowledge_loader()
        prompt = build_weekly_prompt(knowledge, now, count, phases, corpus, youtube)
        try:
            result = as_record(await self.llm.complete_json(WEEKLY_IDEAS_SYSTEM, prompt, max_tokens=1700))
        except (LLMProviderError, ValueError) as e:
            logger.warning("content_ideas.generation_failed", workspace_id=str(workspace_id), error=str(e))
            if existing:
                return _cached(existing, f"Claude generation failed: {e}")
            return failure("Claude generation failed", e)

        ideas_raw = result.get("ideas") if isinstance(result.get("ideas"), list) else []
        insights = result.get("insights") if isinstance(result.get("insights"), list) else []
        if 0 < len(ideas_raw) < count:
            refill_prompt = (
                f"{prompt}\n\nYou only returned {len(ideas_raw)}. "
                f"Return {count - len(ideas_raw)} additional unique ideas now."
            )
            try:
                refill = as_record(await self.llm.complete_json(WEEKLY_IDEAS_SYSTEM, refill_prompt, max_tokens=1400))
                if isinstance(refill.get("ideas"), list):
                    ideas_raw = ideas_raw + refill["ideas"]
                if not insights and isinstance(refill.get("insights"), list):
                    insights = refill["insights"]
            except (LLMProviderError, ValueError) as e:
                logger.warning("content_ideas.refill_failed", workspace_id=str(workspace_id), error=str(e))

        if not ideas_raw:
            if existing:
                return _cached(existing, "Claude returned no ideas; showing existing weekly ideas.")
            return failure("Claude returned no ideas for this week.")

        ideas = dedupe_titles(ideas_raw, count)
        if not ideas:
            if existing:
                return _cached(existing, "Claude output had no usable titles; showing existing weekly ideas.")
            return failure("No usable ideas generated by Claude.")

        top_topic = youtube.top_topics[0]["key"] if youtube.top_topics else None
        rows = [self._idea_row(workspace_id, actor_id, idea, now, youtube.has_data, top_topic) for idea in ideas]
        try:
            async with db.begin_nested():
                db.add_all(rows)
        except SQLAlchemyError as e:
            logger.error("content_ideas.store_failed", workspace_id=str(workspace_id), error=str(e))
            return failure("Failed to store ideas", e)

        combined = sorted(rows + existing, key=lambda i: to_ms(i.created_at), reverse=True)[:RECENT_IDEAS_LIMIT]
        warnings = [f"Inbox scan warning: {inbox_error}"] if inbox_error else []
        logger.info("content_ideas.generated", workspace_id=str(workspace_id), generated=len(rows))
        return {
            "success": True,
            "ideas": [serialize_idea(i) for i in combined],
            "generatedCount": len(rows),
            "weeklyTarget": WEEKLY_IDEA_COUNT,
            "generationMode": "ai",
            "insights": insights,
            "warnings": warnings,
            "corpus": corpus.summary(),
            "youtube": youtube.summary(),
        }

    def _idea_row(
        self,
        workspace_id: UUID,
        actor_id: Optional[UUID],
        idea: Dict[str, Any],
        now: datetime,
        youtube_used: bool,
        top_topic: Optional[str],
    ) -> ContentIdea:
        bucket = normalize_bucket(as_str(idea.get("bucket")) or "pain_points")
        phase = normalize_phase(as_str(idea.get("phase")) or "open")
        outline_json = {
            "bucket": bucket,
            "phase": phase,
            "insight": {
                "pain": as_str(idea.get("pain")),
                "objection": as_str(idea.get("objection")),
                "what_convinced": as_str(idea.get("what_convinced")),
                "evidence": as_str_list(idea.get("evidence")),
            },
            "source": {
                "mode": GENERATION_MODE,
                "generated_at": to_iso(now),
                "youtube_context_used": youtube_used,
                "top_topic": top_topic,
                "fallback_reason": None,
            },
            "outline_steps": [],
        }
        return ContentIdea(
            workspace_id=workspace_id,
            created_by=actor_id,
            platform="youtube",
            format="long",
            title=(as_str(idea.get("title")).strip() or "Untitled idea")[:TITLE_MAX_CHARS],
            hook=as_str(idea.get("hook")) or None,
            angle=as_str(idea.get("angle")) or None,
            cta=None,
            outline_json=outline_json,
            status="idea",
            source="ai",
            created_at=now,
            updated_at=now,
        )

    async def generate_idea_piece(
        self,
        db: AsyncSession,
        workspace_id: UUID,
        actor_id: Optional[UUID],
        idea_id: UUID,
        kind: str,
        booking_destination: Optional[str] = None,
        app_origin: Optional[str] = None,
    ) -> Dict[str, Any]:
        r = await db.execute(
            select(ContentIdea).where(ContentIdea.workspace_id == workspace_id, ContentIdea.id == idea_id)
        )
        idea = r.scalar_one_or_none()
        if idea is None:
            return failure("Idea not found")

        meta = normalize_idea_meta(idea.outline_json)
        bucket = normalize_bucket(as_str(meta.get("bucket")) or "pain_points")
        phase = normalize_phase(as_str(meta.get("phase")) or "open")
        meta.update(bucket=bucket, phase=phase)
        context = idea_context(await self.knowledge_loader(), idea, meta, bucket, phase)

        if kind == "hook":
            return await self._hook(db, idea, context)
        if kind == "outline":
            return await self._outline(db, idea, meta, context)
        if kind == "cta":
            return await self._cta(db, idea, meta, context, actor_id, booking_destination, app_origin)
        if kind == "script":
            return await self._script(db, idea, meta, context, actor_id)
        return failure("Invalid kind")

    async def _hook(self, db: AsyncSession, idea: ContentIdea, context: str) -> Dict[str, Any]:
        try:
            result = as_record(await self.llm.complete_json(HOOK_SYSTEM, f"{context}\n\nWrite one hook now.", max_tokens=320))
        except (LLMProviderError, ValueError) as e:
            return failure("Claude hook generation failed", e)
        hook = as_str(result.get("hook")).strip()
        if not hook:
            return failure("Claude returned an empty hook")
        idea.hook = hook
        await db.flush()
        return {"success": True, "kind": "hook", "idea": serialize_idea(idea)}

    async def _outline(self, db: AsyncSession, idea: ContentIdea, meta: Dict[str, Any], context: str) -> Dict[str, Any]:
        try:
            result = as_record(
                await self.llm.complete_json(OUTLINE_SYSTEM, f"{context}\n\nGenerate the outline now.", max_tokens=520)
            )
        except (LLMProviderError, ValueError) as e:
            return failure("Claude outline generation failed", e)
        outline = as_str_list(result.get("outline"))
        if not outline:
            return failure("Claude returned an empty outline")
        idea.outline_json = {**meta, "outline_steps": outline}
        await db.flush()
        return {"success": True, "kind": "outline", "idea": serialize_idea(idea)}

    async def _booking_destination(self, db: AsyncSession, workspace_id: UUID, requested: Optional[str]) -> str:
        destination = as_str(requested).strip()
        if is_http_url(destination):
            return destination
        r = await db.execute(
            select(TrackedLink.destination_url)
            .where(
                TrackedLink.workspace_id == workspace_id,
                TrackedLink.mode == "booking",
                TrackedLink.archived.is_(False),
            )
            .order_by(TrackedLink.created_at.desc())
            .limit(1)
        )
        return as_str(r.scalar_one_or_none()).strip()

    async def create_tracked_booking_link(
        self,
        db: AsyncSession,
        workspace_id: UUID,
        actor_id: Optional[UUID],
        title: str,
        destination_url: str,
    ) -> Optional[TrackedLink]:
        """Random slug, retried on slug collisions up to SLUG_ATTEMPTS times."""
        name = f"CTA - {title.strip()[:72]}" if title.strip() else "CTA link"
        for attempt in range(1, SLUG_ATTEMPTS + 1):
            link = TrackedLink(
                workspace_id=workspace_id,
                created_by=actor_id,
                name=name,
                slug=random_slug(),
                destination_url=destination_url,
                mode="booking",
            )
            try:
                async with db.begin_nested():
                    db.add(link)
                return link
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                logger.info("content_ideas.slug_conflict", attempt=attempt)
        return None

    async def _cta(
        self,
        db: AsyncSession,
        idea: ContentIdea,
        meta: Dict[str, Any],
        context: str,
        actor_id: Optional[UUID],
        booking_destination: Optional[str],
        app_origin: Optional[str],
    ) -> Dict[str, Any]:
        destination = await self._booking_destination(db, idea.workspace_id, booking_destination)
        if not is_http_url(destination):
            return failure("Set a valid booking destination URL first.")
        link = await self.create_tracked_booking_link(db, idea.workspace_id, actor_id, idea.title or "", destination)
        if link is None:
            return failure("Failed to create tracked booking link")

        origin = as_str(app_origin).strip() or as_str(self.app_origin).strip()
        tracked_url = f"{origin.rstrip('/')}/book/{link.slug}" if is_http_url(origin) else f"/book/{link.slug}"
        prompt = f"{context}\n\nTracked booking link: {tracked_url}\n\nWrite the CTA now using this exact link once."
        try:
            result = as_record(await self.llm.complete_json(CTA_SYSTEM, prompt, max_tokens=420))
        except (LLMProviderError, ValueError) as e:
            return failure("Claude CTA generation failed", e)
        cta = as_str(result.get("cta")).strip()
        if not cta:
            return failure("Claude returned an empty CTA")

        idea.cta = cta
        idea.outline_json = {
            **meta,
            "cta_link_id": str(link.id),
            "cta_link_slug": link.slug,
            "cta_link_url": tracked_url,
        }
        await db.flush()
        return {
            "success": True,
            "kind": "cta",
            "idea": serialize_idea(idea),
            "link": TrackedLinkOut(
                id=link.id, slug=link.slug, destination_url=link.destination_url, tracked_url=tracked_url
            ).model_dump(mode="json"),
        }

    async def _script(
        self,
        db: AsyncSession,
        idea: ContentIdea,
        meta: Dict[str, Any],
        context: str,
        actor_id: Optional[UUID],
    ) -> Dict[str, Any]:
        prompt = f"{context}\n\nWrite a complete script now. Include the CTA exactly once near the end."
        try:
            result = as_record(await self.llm.complete_json(SCRIPT_SYSTEM, prompt, max_tokens=1800))
        except (LLMProviderError, ValueError) as e:
            return failure("Claude script generation failed", e)
        script_text = as_str(result.get("script")).strip()
        if not script_text:
            return failure("Claude returned an empty script")
        sections = result.get("sections") if isinstance(result.get("sections"), list) else None

        script = ContentScript(
            workspace_id=idea.workspace_id,
            created_by=actor_id,
            idea_id=idea.id,
            title=as_str(result.get("title")).strip() or idea.title or "Untitled idea",
            script_text=script_text,
            sections_json=sections,
            status="draft",
        )
        db.add(script)
        await db.flush()
        idea.status = "scripted"
        idea.outline_json = {**meta, "script_id": str(script.id)}
        await db.flush()
        return {
            "success": True,
            "kind": "script",
            "idea": serialize_idea(idea),
            "script": ContentScriptOut.model_validate(script).model_dump(mode="json"),
        }

    async def health_check(self) -> Dict[str, Any]:
        try:
            text = await self.llm.complete_text(HEALTH_SYSTEM, "OK", max_tokens=8)
        except LLMProviderError as e:
            return failure("Claude health check failed", e)
        return {"success": True, "claude": text or "ok"}
