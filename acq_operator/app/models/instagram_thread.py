"""Instagram thread model: one summary row per (workspace, conversation)."""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base
from app.utils.timeutil import utc_now


class InstagramThread(Base):
    """
    Conversation summary. conversation_id = "<instagram_account_id>:<peer id>".
    priority, lead_status, assignment and setter visibility are owned by the dashboard;
    the webhook only writes peer/last-message facts.
    """

    __tablename__ = "instagram_threads"
    __table_args__ = (
        UniqueConstraint("workspace_id", "conversation_id", name="uq_instagram_threads_workspace_conversation"),
        Index("ix_instagram_threads_workspace_last_message", "workspace_id", "last_message_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    conversation_id: Mapped[str] = mapped_column(String(160), nullable=False)
    instagram_account_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    instagram_user_id: Mapped[Optional[str]] = mapped_column(String(96), nullable=True)
    peer_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    peer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    peer_profile_picture_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assigned_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    priority: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shared_with_setters: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hidden_from_setters: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_spam: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    lead_status: Mapped[str] = mapped_column(String(64), nullable=False, default="open")
    summary_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_direction: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_inbound_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_outbound_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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
