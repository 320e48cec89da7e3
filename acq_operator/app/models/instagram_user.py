"""Cached Instagram peer profile (username, display name, mirrored profile picture)."""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class InstagramUser(Base):
    """Peer profile cache, refreshed by the webhook when older than 24h."""

    __tablename__ = "instagram_users"
    __table_args__ = (
        UniqueConstraint("workspace_id", "instagram_user_id", name="uq_instagram_users_workspace_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    instagram_user_id: Mapped[str] = mapped_column(String(96), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profile_pic_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    profile_pic_public_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    profile_pic_storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    profile_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
