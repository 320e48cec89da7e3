"""
Dashboard AI operator chat.
POST /api/ai/dashboard-chat: always 200 {success, reply, degraded, model?, usage?}.
"""
import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Actor, get_optional_actor
from app.db import get_db
from app.dependencies import get_chat_service
from app.logging_config import get_logger
from app.schemas.chat import ChatReply, DashboardChatRequest
from app.services.chat_service import DashboardChatService

router = APIRouter(prefix="/api/ai", tags=["ai"])
logger = get_logger(__name__)


@router.post("/dashboard-chat", response_model=ChatReply)
async def dashboard_chat(
    request: Request,
    db: AsyncSession = Depends(get_db),
    actor: Optional[Actor] = Depends(get_optional_actor),
    service: DashboardChatService = Depends(get_chat_service),
) -> ChatReply:
    """Body is parsed leniently: unreadable JSON becomes an empty request and degrades."""
    raw = await request.body()
    try:
        body = json.loads(raw or b"{}")
        chat_request = DashboardChatRequest.model_validate(body if isinstance(body, dict) else {})
    except (ValueError, ValidationError) as e:
        logger.info("dashboard_chat.invalid_body", error=str(e)[:200])
        chat_request = DashboardChatRequest()
    return await service.reply(db, chat_request, actor)
