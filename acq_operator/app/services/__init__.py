"""Business logic services."""
from app.services.chat_service import DashboardChatService
from app.services.content_ideas_service import ContentIdeasService
from app.services.inbox_snapshot_service import InboxSnapshotBuilder
from app.services.instagram_webhook_service import InstagramWebhookIngestor

__all__ = [
    "DashboardChatService",
    "ContentIdeasService",
    "InboxSnapshotBuilder",
    "InstagramWebhookIngestor",
]
