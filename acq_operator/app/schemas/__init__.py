"""Pydantic request/response schemas."""
from app.schemas.chat import ChatReply, DashboardChatRequest
from app.schemas.common import ErrorResponse, FailureResponse
from app.schemas.content_ai import (
    ContentAIRequest,
    ContentIdeaOut,
    ContentScriptOut,
    TrackedLinkOut,
)
from app.schemas.inbox import (
    InboxSnapshot,
    LeadIndexEntry,
    LeadInsight,
    OpenAlert,
    RecentMessage,
)

__all__ = [
    "ChatReply",
    "DashboardChatRequest",
    "ErrorResponse",
    "FailureResponse",
    "ContentAIRequest",
    "ContentIdeaOut",
    "ContentScriptOut",
    "TrackedLinkOut",
    "InboxSnapshot",
    "LeadIndexEntry",
    "LeadInsight",
    "OpenAlert",
    "RecentMessage",
]
