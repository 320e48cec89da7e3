"""
Dashboard AI chat orchestrator.

received -> identity short-circuit | context decision -> provider call -> success | fallback model | degrade.
Every failure path returns a ChatReply with degraded=True; nothing is raised to the caller.
"""
import asyncio
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Actor
from app.config import Settings
from app.logging_config import get_logger
from app.schemas.chat import ChatReply, DashboardChatRequest
from app.services.access_service import ROLE_OWNER, resolve_workspace_role, user_has_workspace_access
from app.services.inbox_snapshot_service import InboxSnapshotBuilder, build_inbox_context_block
from app.services.llm_service import LLMProviderError, LLMService
from app.utils.text import as_record, as_str, normalize_spaces

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are ACQ's executive AI operator for sales teams.

Your role:
- Help owners and setters make better decisions fast.
- Use concise, practical, execution-first guidance.
- Prefer concrete next steps over theory.
- When the user asks for scripts/messages, produce ready-to-send copy.
- When data is missing, say exactly what is missing and how to get it.
- Never invent workspace facts, metrics, or history.

Response style:
- Keep responses structured and scannable.
- Use plain language, no fluff, no hype.
- Be direct and useful.

Identity rules (strict):
- You are ACQ AI inside the ACQ app.
- The user-facing assistant profiles are "Saturn 1.1" and "Saturn Light".
- If asked what app this is, what AI this is, or which model this is, answer with ACQ + Saturn naming only.
- Never mention Anthropic, Claude, or internal provider/model IDs in identity answers.

Lead and inbox rules:
- When live inbox context is provided, treat it as source-of-truth.
- For "best/hottest leads" requests, prioritize by priority_score and explain each pick with the provided reasons and message evidence.
- If the user asks for "today", use the today_focus section first.
- If requested data is not in the live context, say exactly that instead of guessing."""

MAX_TEXT_CHARS = 12000
MAX_IMAGES_PER_MESSAGE = 10
MAX_TURNS = 24
CONTEXT_SCAN_TURNS = 4
DEFAULT_IMAGE_PROMPT = "Analyze the attached images and answer the request."

_DATA_URL_RE = re.compile(
    r"^data:(image/[a-z0-9.+-]+)(?:;[a-z0-9-]+=[^;,]+)*;base64,([A-Za-z0-9+/=]+)$",
    re.IGNORECASE,
)

_IDENTITY_PATTERNS = [
    re.compile(p)
    for p in (
        r"\bwhat app is this\b",
        r"\bwhich app is this\b",
        r"\bwhat(?:'s| is)? this app(?:lication)?(?: called| name)?\b",
        r"\bname of (?:this|the) app\b",
        r"\bwhat(?:'s| is)? this ai\b",
        r"\bwhat ai(?: are you| is this)?\b",
        r"\bwhich ai\b",
        r"\bwho are you\b",
        r"\bwhat are you\b",
        r"\bwhat(?:'s| is)? (?:the )?model\b",
        r"\bwhich model\b",
        r"\bare you (?:using )?claude\b",
        r"\bclaude\b",
        r"\banthropic\b",
    )
]
_INBOX_TERM_RE = re.compile(r"\binstagram\b|\binbox\b|\bdm\b|\bdms\b|\bconversations?\b|\bmessages?\b")
_LEAD_TERM_RE = re.compile(r"\blead\b|\bleads\b")
_EXECUTION_INTENT_RE = re.compile(
    r"\bbest\b|\bhottest\b|\bhot\b|\bpriority\b|\brank\b|\btop\b|\brespond\b|\breply\b|\bfollow up\b"
    r"|\bfollow-up\b|\bqualified\b|\btoday\b|\bwho\b|\bwhich\b|\bshow\b|\bgive\b"
)

ChatMessage = Dict[str, Any]


@dataclass
class ChatSettings:
    """Model routing and provider knobs for the chat path."""
    api_key_configured: bool
    default_model: str
    profile_models: Dict[str, Optional[str]] = field(default_factory=dict)
    fallback_models: List[str] = field(default_factory=list)
    image_max_base64_chars: int = 4_500_000
    context_max_chars: int = 24000

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatSettings":
        return cls(
            api_key_configured=bool((settings.claude_api_key or "").strip()),
            default_model=settings.claude_model,
            profile_models={
                "sonnet-4.5": settings.claude_model_sonnet,
                "opus-4.5": settings.claude_model_opus,
                "haiku-4.5": settings.claude_model_haiku,
            },
            fallback_models=settings.fallback_models(),
            image_max_base64_chars=settings.claude_image_max_base64_chars,
            context_max_chars=settings.inbox_context_max_chars,
        )


def resolve_model(model_id: Optional[str], chat_settings: ChatSettings) -> str:
    """claude-* ids pass through; product ids map to per-profile overrides; else default."""
    requested = (model_id or "").strip()
    if requested.startswith("claude-"):
        return requested
    override = (chat_settings.profile_models.get(requested) or "").strip()
    return override or chat_settings.default_model


def parse_image_data_url(data_url: Any, max_base64_chars: int) -> Optional[Dict[str, str]]:
    """data:image/...;base64,... -> {media_type, data}; None when malformed or oversized."""
    match = _DATA_URL_RE.match(as_str(data_url))
    if not match:
        return None
    media_type = match.group(1).strip().lower()
    data = match.group(2).strip()
    if not media_type.startswith("image/") or not data or len(data) > max_base64_chars:
        return None
    return {"media_type": media_type, "data": data}


def normalize_messages(raw_messages: Any, max_image_base64_chars: int) -> List[ChatMessage]:
    """
    Keep user/assistant turns with text (or images for user turns), text capped at
    MAX_TEXT_CHARS, at most MAX_IMAGES_PER_MESSAGE images per turn, last MAX_TURNS turns.
    """
    if not isinstance(raw_messages, list):
        return []
    out: List[ChatMessage] = []
    for item in raw_messages:
        msg = as_record(item)
        role = msg.get("role")
        if role not in ("user", "assistant"):
            continue
        content = as_str(msg.get("content")).strip()
        if role == "user":
            attachments = msg.get("attachments") if isinstance(msg.get("attachments"), list) else []
            images = [
                a for a in (as_record(x) for x in attachments)
                if as_str(a.get("kind")).lower() == "image"
            ][:MAX_IMAGES_PER_MESSAGE]
            image_blocks = []
            for attachment in images:
                parsed = parse_image_data_url(attachment.get("previewUrl"), max_image_base64_chars)
                if parsed is None:
                    continue
                image_blocks.append({"type": "image", "source": {"type": "base64", **parsed}})
            if image_blocks:
                text_block = {"type": "text", "text": (content or DEFAULT_IMAGE_PROMPT)[:MAX_TEXT_CHARS]}
                out.append({"role": role, "content": [text_block, *image_blocks]})
                continue
        if not content:
            continue
        out.append({"role": role, "content": content[:MAX_TEXT_CHARS]})
    return out[-MAX_TURNS:]


def message_text(message: ChatMessage) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return "\n".join(
            as_str(block.get("text")) for block in content if isinstance(block, dict) and block.get("type") == "text"
        ).strip()
    return ""


def latest_user_prompt(messages: List[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            text = message_text(message)
            if text:
                return text
    return ""


def is_identity_question(text: Optional[str]) -> bool:
    """Questions about which app/AI/model this is (answered without the provider)."""
    q = normalize_spaces(text)
    if not q:
        return False
    return any(pattern.search(q) for pattern in _IDENTITY_PATTERNS)


def is_lead_inbox_question(text: Optional[str]) -> bool:
    """Inbox/DM/conversation terms, or 'lead(s)' combined with an execution verb."""
    q = normalize_spaces(text)
    if not q:
        return False
    if _INBOX_TERM_RE.search(q):
        return True
    return bool(_LEAD_TERM_RE.search(q) and _EXECUTION_INTENT_RE.search(q))


def should_attach_inbox_context(messages: List[ChatMessage]) -> bool:
    prompts = [t for t in (message_text(m) for m in messages if m.get("role") == "user") if t]
    return any(is_lead_inbox_question(p) for p in prompts[-CONTEXT_SCAN_TURNS:])


def resolve_product_model_label(model_profile: Optional[str]) -> str:
    if (model_profile or "").strip().lower() == "saturn-light":
        return "Saturn Light"
    return "Saturn 1.1"


def build_identity_reply(model_profile: Optional[str]) -> str:
    label = resolve_product_model_label(model_profile)
    return (
        f"This is the ACQ app, and you're chatting with ACQ AI on the {label} profile. "
        "ACQ AI profiles are Saturn 1.1 and Saturn Light."
    )


def build_degraded_reply(messages: List[ChatMessage], reason: str = "") -> str:
    latest = latest_user_prompt(messages)
    suffix = (reason or "").strip()
    if not latest:
        return "AI is temporarily unavailable. Please try again in a few seconds."
    clipped = f" ({suffix[:120]})" if suffix else ""
    return (
        f"AI is temporarily unavailable{clipped}. "
        f'I saved your request: "{latest[:220]}". Please try again in a few seconds.'
    )


def build_system_prompt(knowledge: str, inbox_context: str) -> str:
    sections = [SYSTEM_PROMPT]
    if knowledge:
        sections.append(f"Workspace knowledge context:\n{knowledge}")
    if inbox_context:
        sections.append(inbox_context)
    return "\n\n".join(sections)


class DashboardChatService:
    """One instance per request; collaborators are injected so tests can swap them."""

    def __init__(
        self,
        chat_settings: ChatSettings,
        llm: LLMService,
        snapshot_builder: InboxSnapshotBuilder,
        knowledge_loader: Callable[[], Awaitable[str]],
    ) -> None:
        self.chat_settings = chat_settings
        self.llm = llm
        self.snapshot_builder = snapshot_builder
        self.knowledge_loader = knowledge_loader

    def _degraded(self, messages: List[ChatMessage], reason: str, model: Optional[str] = None) -> ChatReply:
        logger.info("dashboard_chat.degraded", reason=reason[:120], model=model)
        return ChatReply(reply=build_degraded_reply(messages, reason), degraded=True, model=model)

    async def reply(self, db: AsyncSession, request: DashboardChatRequest, actor: Optional[Actor]) -> ChatReply:
        messages = normalize_messages(request.messages, self.chat_settings.image_max_base64_chars)
        try:
            return await self._reply(db, request, actor, messages)
        except Exception as e:
            logger.exception("dashboard_chat.unexpected_error", error=str(e))
            return self._degraded(messages, str(e) or e.__class__.__name__)

    async def _reply(
        self,
        db: AsyncSession,
        request: DashboardChatRequest,
        actor: Optional[Actor],
        messages: List[ChatMessage],
    ) -> ChatReply:
        selected_model = resolve_model(request.model_id, self.chat_settings)
        thinking = bool(request.is_thinking_enabled)
        latest_prompt = latest_user_prompt(messages)

        workspace_raw = (request.workspace_id or "").strip()
        if not workspace_raw:
            return self._degraded(messages, "workspace missing")
        if not messages:
            return self._degraded(messages, "message missing")
        if actor is None:
            return self._degraded(messages, "Unauthorized")
        try:
            workspace_id = uuid.UUID(workspace_raw)
        except ValueError:
            return self._degraded(messages, "Workspace access not linked yet")
        if not await user_has_workspace_access(db, workspace_id, actor.user_id):
            return self._degraded(messages, "Workspace access not linked yet")

        if is_identity_question(latest_prompt):
            logger.info("dashboard_chat.identity_short_circuit", workspace_id=str(workspace_id))
            return ChatReply(reply=build_identity_reply(request.model_profile), model=selected_model)

        if not self.chat_settings.api_key_configured:
            return self._degraded(messages, "AI key missing", model=selected_model)

        attach_inbox = should_attach_inbox_context(messages)
        if attach_inbox:
            knowledge, role = await asyncio.gather(
                self.knowledge_loader(),
                resolve_workspace_role(db, workspace_id, actor.user_id),
            )
        else:
            knowledge, role = await self.knowledge_loader(), ROLE_OWNER

        inbox_context = ""
        if attach_inbox:
            snapshot = await self.snapshot_builder.build(
                db, workspace_id, str(actor.user_id), role, latest_prompt
            )
            inbox_context = build_inbox_context_block(snapshot, self.chat_settings.context_max_chars)

        try:
            result = await self.llm.create_message_with_fallback(
                model=selected_model,
                system=build_system_prompt(knowledge, inbox_context),
                messages=messages,
                max_tokens=1800 if thinking else 900,
                temperature=0.15 if thinking else 0.25,
                fallback_models=self.chat_settings.fallback_models,
            )
        except LLMProviderError as e:
            return self._degraded(messages, e.reason or "Claude request failed", model=selected_model)

        if not result.text:
            return self._degraded(messages, "Empty AI response", model=result.model)

        logger.info(
            "dashboard_chat.replied",
            workspace_id=str(workspace_id),
            model=result.model,
            inbox_context=bool(inbox_context),
            latency_ms=result.latency_ms,
        )
        return ChatReply(reply=result.text, model=result.model, usage=result.usage)
