"""Instagram message model: one row per provider message id."""
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base, JsonType
from app.utils.timeutil import utc_now


class InstagramMessage(Base):
    """
    Raw DM row. message_id (Meta `mid`) is the global idempotency key.
    raw_payload keeps the webhook messaging node plus stored_attachments and conversation_key.
    """

    __tablename__ = "instagram_messages"
    __table_args__ = (
        Index("ix_instagram_messages_workspace_conversation", "workspace_id", "conversation_key"),
        Index("ix_instagram_messages_workspace_timestamp", "workspace_id", "message_timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    message_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    conversation_key: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    instagram_account_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    instagram_user_id: Mapped[Optional[str]] = mapped_column(String(96), nullable=True)
    sender_id: Mapped[Optional[str]] = mapped_column(String(96), nullable=True)
    recipient_id: Mapped[Optional[str]] = mapped_column(String(96), nullable=True)
    message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    direction: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    message_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
    )
