"""Inbox tags and the conversation <-> tag link table."""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base
from app.utils.timeutil import utc_now


class InstagramTag(Base):
    """
    Workspace tag. Names are unique per workspace case-insensitively.
    Tag names drive temperature (hot/warm/cold) and pipeline phase.
    """

    __tablename__ = "instagram_tags"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
    )


Index(
    "uq_instagram_tags_workspace_lower_name",
    InstagramTag.workspace_id,
    func.lower(InstagramTag.name),
    unique=True,
)


class InstagramConversationTag(Base):
    """Many-to-many link; source: manual | ai."""

    __tablename__ = "instagram_conversation_tags"
    __table_args__ = (
        UniqueConstraint("workspace_id", "conversation_id", "tag_id", name="uq_instagram_conversation_tags"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    conversation_id: Mapped[str] = mapped_column(String(160), nullable=False)
    tag_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("instagram_tags.id", ondelete="CASCADE"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
    )
