"""
Schemas for POST /api/ai/dashboard-chat. Request fields keep the dashboard's camelCase names;
parsing is lenient because malformed turns are dropped, not rejected.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.utils.text import as_str

TRUTHY = ("true", "1", "yes", "on")


class DashboardChatRequest(BaseModel):
    """Chat turn request. messages: [{role, content, attachments?}] (normalised by the service)."""
    model_config = {"populate_by_name": True}

    workspace_id: Optional[str] = Field(None, alias="workspaceId")
    model_id: Optional[str] = Field(None, alias="modelId")
    model_profile: Optional[str] = Field(None, alias="modelProfile")
    is_thinking_enabled: bool = Field(False, alias="isThinkingEnabled")
    messages: List[Any] = Field(default_factory=list)

    @field_validator("workspace_id", "model_id", "model_profile", mode="before")
    @classmethod
    def _loose_str(cls, value: Any) -> Optional[str]:
        if isinstance(value, (dict, list)):
            return None
        return as_str(value).strip() or None

    @field_validator("is_thinking_enabled", mode="before")
    @classmethod
    def _loose_bool(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return as_str(value).strip().lower() in TRUTHY

    @field_validator("messages", mode="before")
    @classmethod
    def _loose_list(cls, value: Any) -> List[Any]:
        return value if isinstance(value, list) else []


class ChatReply(BaseModel):
    """Always HTTP 200; degraded=True marks a synthesized fallback reply."""
    success: bool = True
    reply: str
    degraded: bool = False
    model: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
