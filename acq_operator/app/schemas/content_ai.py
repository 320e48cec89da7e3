"""Schemas for POST /api/content-ai (weekly ideas, idea pieces, health check)."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

CONTENT_AI_ACTIONS = (
    "generate-weekly-ideas",
    "generate-ideas",
    "generate-idea-piece",
    "generate-script",
    "health-check",
)
IDEA_PIECE_KINDS = ("hook", "outline", "cta", "script")


class ContentAIRequest(BaseModel):
    """Action envelope; action-specific fields are optional."""
    model_config = {"populate_by_name": True}

    action: str = Field("", description="One of CONTENT_AI_ACTIONS")
    workspace_id: str = Field("", alias="workspaceId")
    phase_filter: List[str] = Field(default_factory=list, alias="phaseFilter")
    phases: List[str] = Field(default_factory=list)
    idea_id: Optional[str] = Field(None, alias="ideaId")
    kind: Optional[str] = None
    booking_destination: Optional[str] = Field(None, alias="bookingDestination")
    app_origin: Optional[str] = Field(None, alias="appOrigin")


class ContentIdeaOut(BaseModel):
    """Stored content idea."""
    model_config = {"from_attributes": True}

    id: UUID
    workspace_id: UUID
    created_by: Optional[UUID] = None
    platform: str
    format: str
    title: str
    hook: Optional[str] = None
    angle: Optional[str] = None
    cta: Optional[str] = None
    outline_json: Optional[Dict[str, Any]] = None
    status: str
    source: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ContentScriptOut(BaseModel):
    """Stored script row."""
    model_config = {"from_attributes": True}

    id: UUID
    workspace_id: UUID
    idea_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    title: str
    script_text: str
    sections_json: Optional[List[Any]] = None
    status: str
    created_at: Optional[datetime] = None


class TrackedLinkOut(BaseModel):
    id: UUID
    slug: str
    destination_url: str
    tracked_url: str
