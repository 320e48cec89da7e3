"""Content idea and script models (weekly AI ideas, per-idea hook/outline/cta/script)."""
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base, JsonType
from app.utils.timeutil import utc_now


class ContentIdea(Base):
    """
    Content idea.
    status: idea | scripted | ... ; source: ai | manual.
    outline_json: {bucket, phase, insight{...}, source{...}, outline_steps[]} for AI ideas.
    """

    __tablename__ = "content_ideas"
    __table_args__ = (
        Index("ix_content_ideas_workspace_created", "workspace_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    platform: Mapped[str] = mapped_column(String(32), nullable=False, default="youtube")
    format: Mapped[str] = mapped_column(String(32), nullable=False, default="long")
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    hook: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    angle: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cta: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outline_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="idea")
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        server_default=func.now(),
    )

    scripts = relationship("ContentScript", back_populates="idea")


class ContentScript(Base):
    """Full video script generated from an idea."""

    __tablename__ = "content_scripts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    idea_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("content_ideas.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    script_text: Mapped[str] = mapped_column(Text, nullable=False)
    sections_json: Mapped[Optional[list[Any]]] = mapped_column(JsonType, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
    )

    idea = relationship("ContentIdea", back_populates="scripts")
