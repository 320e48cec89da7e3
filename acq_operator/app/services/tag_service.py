"""
Inbox tag store helpers: race-safe tag creation and tag-name lookup per conversation.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from app.models import InstagramConversationTag, InstagramTag
from app.utils.text import unique

logger = get_logger(__name__)

# IN (...) lists are chunked to keep bind-parameter counts bounded.
LOOKUP_CHUNK = 1000


@dataclass(frozen=True)
class TagPreset:
    """Default presentation for a system-created tag."""
    name: str
    color: Optional[str] = None
    icon: Optional[str] = None
    prompt: Optional[str] = None


NEW_LEAD_TAG = TagPreset(
    name="New lead",
    color="#ec4899",
    icon="user-plus",
    prompt="Brand new inbound lead that has not been worked yet.",
)


def is_unique_violation(exc: BaseException) -> bool:
    """IntegrityError or any driver error whose text looks like a uniqueness conflict."""
    if isinstance(exc, IntegrityError):
        return True
    text = str(exc).lower()
    return "duplicate" in text or "unique" in text


async def find_tag_id(db: AsyncSession, workspace_id: UUID, name: str) -> Optional[UUID]:
    """Case-insensitive exact-name lookup."""
    r = await db.execute(
        select(InstagramTag.id)
        .where(
            InstagramTag.workspace_id == workspace_id,
            func.lower(InstagramTag.name) == name.strip().lower(),
        )
        .limit(1)
    )
    return r.scalar_one_or_none()


async def ensure_tag_id(
    db: AsyncSession,
    workspace_id: UUID,
    preset: TagPreset,
    created_by: Optional[UUID] = None,
) -> Optional[UUID]:
    """
    Return the id of the workspace tag named preset.name, creating it when missing.
    A concurrent insert of the same name is resolved by re-scanning after the conflict.
    """
    existing = await find_tag_id(db, workspace_id, preset.name)
    if existing is not None:
        return existing

    tag = InstagramTag(
        workspace_id=workspace_id,
        name=preset.name,
        color=preset.color,
        icon=preset.icon,
        prompt=preset.prompt,
        created_by=created_by,
    )
    try:
        async with db.begin_nested():
            db.add(tag)
        return tag.id
    except IntegrityError as exc:
        if not is_unique_violation(exc):
            raise
        logger.info("tag_service.insert_conflict_rescan", workspace_id=str(workspace_id), name=preset.name)
    return await find_tag_id(db, workspace_id, preset.name)


async def attach_tag(
    db: AsyncSession,
    workspace_id: UUID,
    conversation_id: str,
    tag_id: UUID,
    source: str = "ai",
    created_by: Optional[UUID] = None,
) -> bool:
    """Link a tag to a conversation; False when the link already exists."""
    r = await db.execute(
        select(InstagramConversationTag.id).where(
            InstagramConversationTag.workspace_id == workspace_id,
            InstagramConversationTag.conversation_id == conversation_id,
            InstagramConversationTag.tag_id == tag_id,
        )
    )
    if r.scalar_one_or_none() is not None:
        return False
    try:
        async with db.begin_nested():
            db.add(
                InstagramConversationTag(
                    workspace_id=workspace_id,
                    conversation_id=conversation_id,
                    tag_id=tag_id,
                    source=source,
                    created_by=created_by,
                )
            )
    except IntegrityError:
        logger.debug("tag_service.link_exists", conversation_id=conversation_id, tag_id=str(tag_id))
        return False
    return True


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def load_tag_names_by_conversation(
    db: AsyncSession,
    workspace_id: UUID,
    conversation_ids: Iterable[str],
) -> Dict[str, List[str]]:
    """
    conversation_id -> tag names (link order). Conversations without tags are absent.
    """
    ids = unique(cid for cid in conversation_ids if cid)
    out: Dict[str, List[str]] = {}
    for chunk in _chunks(ids, LOOKUP_CHUNK):
        r = await db.execute(
            select(InstagramConversationTag.conversation_id, InstagramTag.name)
            .join(InstagramTag, InstagramTag.id == InstagramConversationTag.tag_id)
            .where(
                InstagramConversationTag.workspace_id == workspace_id,
                InstagramTag.workspace_id == workspace_id,
                InstagramConversationTag.conversation_id.in_(chunk),
            )
            .order_by(InstagramConversationTag.created_at)
        )
        for conversation_id, name in r.all():
            if not name:
                continue
            out.setdefault(conversation_id, []).append(name)
    return out
