"""
Workspace access and role policy shared by every inbox consumer.

Roles: owner | coach | setter. Owners and coaches see every non-spam, non-removed
thread; setters see threads assigned to them or shared with setters and not hidden.
"""
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from app.models import PortalRole, Profile, WorkspaceMember
from app.utils.text import as_str, get_field, normalize_name

logger = get_logger(__name__)

ROLE_OWNER = "owner"
ROLE_COACH = "coach"
ROLE_SETTER = "setter"


def normalize_role(raw: Optional[str]) -> Optional[str]:
    """setter/coach pass through; any other non-empty role is owner; empty -> None."""
    role = normalize_name(raw)
    if not role:
        return None
    if role in (ROLE_SETTER, ROLE_COACH):
        return role
    return ROLE_OWNER


def is_thread_visible(thread: Any, actor_user_id: Optional[str], role: str) -> bool:
    """Single visibility rule for snapshot, corpus and any other thread listing."""
    if get_field(thread, "is_spam"):
        return False
    if normalize_name(get_field(thread, "lead_status")) == "removed":
        return False
    if role != ROLE_SETTER:
        return True
    if get_field(thread, "hidden_from_setters"):
        return False
    assigned = as_str(get_field(thread, "assigned_user_id"))
    if assigned and actor_user_id and assigned == str(actor_user_id):
        return True
    return bool(get_field(thread, "shared_with_setters"))


async def _member_role(db: AsyncSession, workspace_id: UUID, user_id: UUID) -> Optional[str]:
    r = await db.execute(
        select(WorkspaceMember.role)
        .where(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.user_id == user_id)
        .limit(1)
    )
    return r.scalar_one_or_none()


async def _portal_role(db: AsyncSession, workspace_id: UUID, user_id: UUID) -> Optional[str]:
    r = await db.execute(
        select(PortalRole.role)
        .where(
            PortalRole.workspace_id == workspace_id,
            PortalRole.user_id == user_id,
            PortalRole.role != "client",
        )
        .limit(1)
    )
    return r.scalar_one_or_none()


async def user_has_workspace_access(db: AsyncSession, workspace_id: UUID, user_id: UUID) -> bool:
    """
    Membership, then non-client portal role, then profile.current_workspace_id.
    """
    if await _member_role(db, workspace_id, user_id) is not None:
        return True
    if await _portal_role(db, workspace_id, user_id) is not None:
        return True
    r = await db.execute(select(Profile.current_workspace_id).where(Profile.id == user_id))
    current = r.scalar_one_or_none()
    has_access = current is not None and current == workspace_id
    if not has_access:
        logger.info("access.denied", workspace_id=str(workspace_id), user_id=str(user_id))
    return has_access


async def resolve_workspace_role(db: AsyncSession, workspace_id: UUID, user_id: UUID) -> str:
    """Member role first, then portal role; default owner."""
    role = normalize_role(await _member_role(db, workspace_id, user_id))
    if role:
        return role
    role = normalize_role(await _portal_role(db, workspace_id, user_id))
    return role or ROLE_OWNER
