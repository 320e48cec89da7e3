"""Instagram connection model: maps webhook entry ids to a workspace."""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.utils.timeutil import utc_now


class InstagramConnection(Base):
    """
    One connected Instagram professional account per row.
    A webhook entry id may be the IG account id, the linked page id or the facebook user id.
    """

    __tablename__ = "instagram_connections"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    instagram_account_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    page_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    facebook_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
    )

    workspace = relationship("Workspace", back_populates="instagram_connections")
