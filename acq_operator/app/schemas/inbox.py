"""
Inbox snapshot schemas: the bounded JSON view of the inbox handed to the AI operator.
Field names are part of the prompt contract (the system prompt refers to them).
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class RecentMessage(BaseModel):
    """One compacted message; from: lead | you."""
    model_config = {"populate_by_name": True}

    sender: str = Field(..., alias="from")
    at: Optional[str] = None
    text: str


class OpenAlert(BaseModel):
    type: str
    overdue_minutes: Optional[int] = None
    recommended_action: Optional[str] = None


class LeadInsight(BaseModel):
    """Per-conversation insight, computed fresh for every snapshot."""
    conversation_id: str
    lead_name: str
    instagram_handle: Optional[str] = None
    lead_status: str = "open"
    temperature: str = "none"
    priority_score: int
    waiting_for_reply: bool
    priority_reasons: List[str] = Field(default_factory=list)
    open_alert: Optional[OpenAlert] = None
    last_message_at: Optional[str] = None
    last_message_direction: Optional[str] = None
    last_message_text: Optional[str] = None
    last_inbound_at: Optional[str] = None
    last_outbound_at: Optional[str] = None
    summary_text: Optional[str] = None
    recent_messages: List[RecentMessage] = Field(default_factory=list)


class LeadIndexEntry(BaseModel):
    """Flat summary row (no message bodies)."""
    conversation_id: str
    lead_name: str
    instagram_handle: Optional[str] = None
    priority_score: int
    waiting_for_reply: bool
    lead_status: str
    temperature: str
    open_alert_type: Optional[str] = None
    last_message_at: Optional[str] = None
    last_message_preview: Optional[str] = None


class InboxSnapshot(BaseModel):
    generated_at: str
    total_visible_conversations: int
    ranking_method: str
    today_focus: List[LeadInsight] = Field(default_factory=list)
    top_leads: List[LeadInsight] = Field(default_factory=list)
    lead_index: List[LeadIndexEntry] = Field(default_factory=list)
