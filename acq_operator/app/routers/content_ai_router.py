"""
Content AI actions.
POST /api/content-ai {action, workspaceId, ...}
  generate-weekly-ideas | generate-ideas : weekly YouTube ideas from the inbox corpus
  generate-idea-piece {ideaId, kind}     : hook | outline | cta | script for one idea
  generate-script {ideaId}               : alias for kind=script
  health-check                           : one tiny completion
400 malformed request, 401 no valid token, 403 no workspace access;
pipeline failures are 200 {success: false, error, details?}.
"""
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Actor, require_actor
from app.db import get_db
from app.dependencies import get_content_ideas_service
from app.logging_config import get_logger
from app.schemas.common import ErrorResponse
from app.schemas.content_ai import CONTENT_AI_ACTIONS, IDEA_PIECE_KINDS, ContentAIRequest
from app.services.access_service import user_has_workspace_access
from app.services.content_ideas_service import ContentIdeasService, failure

router = APIRouter(prefix="/api", tags=["content-ai"])
logger = get_logger(__name__)


@router.post(
    "/content-ai",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def content_ai(
    body: ContentAIRequest,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
    service: ContentIdeasService = Depends(get_content_ideas_service),
):
    action = body.action.strip()
    workspace_raw = body.workspace_id.strip()
    if not action or not workspace_raw:
        raise HTTPException(status_code=400, detail="Missing action or workspaceId")
    try:
        workspace_id = uuid.UUID(workspace_raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid workspaceId")
    if not await user_has_workspace_access(db, workspace_id, actor.user_id):
        raise HTTPException(status_code=403, detail="Workspace access denied")

    logger.info("content_ai.action", action=action, workspace_id=str(workspace_id))
    if action not in CONTENT_AI_ACTIONS:
        return failure(f"Unknown action: {action}")

    if action in ("generate-weekly-ideas", "generate-ideas"):
        return await service.generate_weekly_ideas(
            db, workspace_id, actor.user_id, body.phase_filter or body.phases
        )

    if action in ("generate-idea-piece", "generate-script"):
        if not (body.idea_id or "").strip():
            return failure("Missing ideaId")
        try:
            idea_id = uuid.UUID(body.idea_id.strip())
        except ValueError:
            return failure("Idea not found")
        kind = "script" if action == "generate-script" else (body.kind or "").strip().lower()
        if kind not in IDEA_PIECE_KINDS:
            return failure("Invalid kind")
        return await service.generate_idea_piece(
            db,
            workspace_id,
            actor.user_id,
            idea_id,
            kind,
            booking_destination=body.booking_destination,
            app_origin=body.app_origin,
        )

    return await service.health_check()
