"""SQLAlchemy models for ACQ Operator."""
from app.models.workspace import PortalRole, Profile, Workspace, WorkspaceMember
from app.models.instagram_connection import InstagramConnection
from app.models.instagram_thread import InstagramThread
from app.models.instagram_message import InstagramMessage
from app.models.instagram_user import InstagramUser
from app.models.instagram_tag import InstagramConversationTag, InstagramTag
from app.models.instagram_alert import InstagramAlert
from app.models.content_idea import ContentIdea, ContentScript
from app.models.tracked_link import TrackedLink
from app.models.youtube import YoutubeChannel, YoutubeVideo

__all__ = [
    "Workspace",
    "WorkspaceMember",
    "PortalRole",
    "Profile",
    "InstagramConnection",
    "InstagramThread",
    "InstagramMessage",
    "InstagramUser",
    "InstagramTag",
    "InstagramConversationTag",
    "InstagramAlert",
    "ContentIdea",
    "ContentScript",
    "TrackedLink",
    "YoutubeChannel",
    "YoutubeVideo",
]
