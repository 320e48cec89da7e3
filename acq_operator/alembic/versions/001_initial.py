"""initial

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False)


def _workspace_fk() -> sa.Column:
    return sa.Column("workspace_id", postgresql.UUID(as_uuid=True), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True)


def _workspace_constraint() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE")


def upgrade() -> None:
    op.create_table(
        "workspaces",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "workspace_members",
        _id(),
        _workspace_fk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(32), server_default="owner", nullable=False),
        _created_at(),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
    )
    op.create_table(
        "portal_roles",
        _id(),
        _workspace_fk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "profiles",
        _id(),
        sa.Column("current_workspace_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "instagram_connections",
        _id(),
        _workspace_fk(),
        sa.Column("instagram_account_id", sa.String(64), nullable=True),
        sa.Column("page_id", sa.String(64), nullable=True),
        sa.Column("facebook_user_id", sa.String(64), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        _created_at(),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_instagram_connections_instagram_account_id", "instagram_connections", ["instagram_account_id"])
    op.create_index("ix_instagram_connections_page_id", "instagram_connections", ["page_id"])
    op.create_index("ix_instagram_connections_facebook_user_id", "instagram_connections", ["facebook_user_id"])

    op.create_table(
        "instagram_threads",
        _id(),
        _workspace_fk(),
        sa.Column("conversation_id", sa.String(160), nullable=False),
        sa.Column("instagram_account_id", sa.String(64), nullable=True),
        sa.Column("instagram_user_id", sa.String(96), nullable=True),
        sa.Column("peer_username", sa.String(255), nullable=True),
        sa.Column("peer_name", sa.String(255), nullable=True),
        sa.Column("peer_profile_picture_url", sa.Text(), nullable=True),
        sa.Column("assigned_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("priority", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("shared_with_setters", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("hidden_from_setters", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_spam", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("lead_status", sa.String(64), server_default="open", nullable=False),
        sa.Column("summary_text", sa.Text(), nullable=True),
        sa.Column("last_message_id", sa.String(255), nullable=True),
        sa.Column("last_message_text", sa.Text(), nullable=True),
        sa.Column("last_message_direction", sa.String(16), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_inbound_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_outbound_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "conversation_id", name="uq_instagram_threads_workspace_conversation"),
    )
    op.create_index(
        "ix_instagram_threads_workspace_last_message", "instagram_threads", ["workspace_id", "last_message_at"]
    )

    op.create_table(
        "instagram_messages",
        _id(),
        _workspace_fk(),
        sa.Column("message_id", sa.String(255), nullable=False),
        sa.Column("conversation_key", sa.String(160), nullable=True),
        sa.Column("instagram_account_id", sa.String(64), nullable=True),
        sa.Column("instagram_user_id", sa.String(96), nullable=True),
        sa.Column("sender_id", sa.String(96), nullable=True),
        sa.Column("recipient_id", sa.String(96), nullable=True),
        sa.Column("message_text", sa.Text(), nullable=True),
        sa.Column("direction", sa.String(16), nullable=True),
        sa.Column("message_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        _created_at(),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id", name="uq_instagram_messages_message_id"),
    )
    op.create_index(
        "ix_instagram_messages_workspace_conversation", "instagram_messages", ["workspace_id", "conversation_key"]
    )
    op.create_index(
        "ix_instagram_messages_workspace_timestamp", "instagram_messages", ["workspace_id", "message_timestamp"]
    )

    op.create_table(
        "instagram_users",
        _id(),
        _workspace_fk(),
        sa.Column("instagram_user_id", sa.String(96), nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("profile_pic_url", sa.Text(), nullable=True),
        sa.Column("profile_pic_public_url", sa.Text(), nullable=True),
        sa.Column("profile_pic_storage_path", sa.Text(), nullable=True),
        sa.Column("profile_fetched_at", sa.DateTime(timezone=True), nullable=True),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "instagram_user_id", name="uq_instagram_users_workspace_user"),
    )

    op.create_table(
        "instagram_tags",
        _id(),
        _workspace_fk(),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("color", sa.String(16), nullable=True),
        sa.Column("icon", sa.String(64), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_instagram_tags_workspace_lower_name",
        "instagram_tags",
        ["workspace_id", sa.text("lower(name)")],
        unique=True,
    )
    op.create_table(
        "instagram_conversation_tags",
        _id(),
        _workspace_fk(),
        sa.Column("conversation_id", sa.String(160), nullable=False),
        sa.Column("tag_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("source", sa.String(16), server_default="manual", nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        _workspace_constraint(),
        sa.ForeignKeyConstraint(["tag_id"], ["instagram_tags.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "conversation_id", "tag_id", name="uq_instagram_conversation_tags"),
    )

    op.create_table(
        "instagram_alerts",
        _id(),
        _workspace_fk(),
        sa.Column("conversation_id", sa.String(160), nullable=False),
        sa.Column("alert_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), server_default="open", nullable=False),
        sa.Column("overdue_minutes", sa.Integer(), nullable=True),
        sa.Column("recommended_action", sa.Text(), nullable=True),
        _created_at(),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_instagram_alerts_workspace_status", "instagram_alerts", ["workspace_id", "status"])

    op.create_table(
        "content_ideas",
        _id(),
        _workspace_fk(),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("platform", sa.String(32), server_default="youtube", nullable=False),
        sa.Column("format", sa.String(32), server_default="long", nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("hook", sa.Text(), nullable=True),
        sa.Column("angle", sa.Text(), nullable=True),
        sa.Column("cta", sa.Text(), nullable=True),
        sa.Column("outline_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.String(32), server_default="idea", nullable=False),
        sa.Column("source", sa.String(32), server_default="manual", nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_content_ideas_workspace_created", "content_ideas", ["workspace_id", "created_at"])
    op.create_table(
        "content_scripts",
        _id(),
        _workspace_fk(),
        sa.Column("idea_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("script_text", sa.Text(), nullable=False),
        sa.Column("sections_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.String(32), server_default="draft", nullable=False),
        _created_at(),
        _workspace_constraint(),
        sa.ForeignKeyConstraint(["idea_id"], ["content_ideas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tracked_links",
        _id(),
        _workspace_fk(),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(32), nullable=False),
        sa.Column("destination_url", sa.Text(), nullable=False),
        sa.Column("mode", sa.String(16), server_default="booking", nullable=False),
        sa.Column("archived", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _created_at(),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uq_tracked_links_slug"),
    )

    op.create_table(
        "youtube_channels",
        _id(),
        _workspace_fk(),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("subscriber_count", sa.BigInteger(), nullable=True),
        sa.Column("video_count", sa.BigInteger(), nullable=True),
        sa.Column("view_count", sa.BigInteger(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "youtube_videos",
        _id(),
        _workspace_fk(),
        sa.Column("title", sa.String(512), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("view_count", sa.BigInteger(), nullable=True),
        sa.Column("like_count", sa.BigInteger(), nullable=True),
        sa.Column("comment_count", sa.BigInteger(), nullable=True),
        sa.Column("tags", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _workspace_constraint(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_youtube_videos_workspace_published", "youtube_videos", ["workspace_id", "published_at"])


def downgrade() -> None:
    op.drop_index("ix_youtube_videos_workspace_published", table_name="youtube_videos")
    op.drop_table("youtube_videos")
    op.drop_table("youtube_channels")
    op.drop_table("tracked_links")
    op.drop_table("content_scripts")
    op.drop_index("ix_content_ideas_workspace_created", table_name="content_ideas")
    op.drop_table("content_ideas")
    op.drop_index("ix_instagram_alerts_workspace_status", table_name="instagram_alerts")
    op.drop_table("instagram_alerts")
    op.drop_table("instagram_conversation_tags")
    op.drop_index("uq_instagram_tags_workspace_lower_name", table_name="instagram_tags")
    op.drop_table("instagram_tags")
    op.drop_table("instagram_users")
    op.drop_index("ix_instagram_messages_workspace_timestamp", table_name="instagram_messages")
    op.drop_index("ix_instagram_messages_workspace_conversation", table_name="instagram_messages")
    op.drop_table("instagram_messages")
    op.drop_index("ix_instagram_threads_workspace_last_message", table_name="instagram_threads")
    op.drop_table("instagram_threads")
    op.drop_index("ix_instagram_connections_facebook_user_id", table_name="instagram_connections")
    op.drop_index("ix_instagram_connections_page_id", table_name="instagram_connections")
    op.drop_index("ix_instagram_connections_instagram_account_id", table_name="instagram_connections")
    op.drop_table("instagram_connections")
    op.drop_table("profiles")
    op.drop_table("portal_roles")
    op.drop_table("workspace_members")
    op.drop_table("workspaces")
