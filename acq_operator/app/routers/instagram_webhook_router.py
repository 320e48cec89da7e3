"""
Instagram DM webhook.
GET  /webhooks/instagram: Meta subscription handshake (hub.mode / hub.verify_token / hub.challenge).
POST /webhooks/instagram: messaging events; always 200 EVENT_RECEIVED so Meta does not retry-storm.
"""
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db import get_db
from app.dependencies import get_webhook_ingestor
from app.logging_config import get_logger
from app.services.instagram_webhook_service import InstagramWebhookIngestor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)

EVENT_RECEIVED = "EVENT_RECEIVED"


@router.get("/instagram", response_class=PlainTextResponse)
async def verify_instagram_webhook(request: Request, settings: Settings = Depends(get_settings)):
    """Echo hub.challenge when the verify token matches; 403 otherwise."""
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge") or ""
    if mode == "subscribe" and settings.instagram_verify_token and token == settings.instagram_verify_token:
        logger.info("webhook.instagram.verified")
        return PlainTextResponse(challenge, status_code=200)
    logger.warning("webhook.instagram.verify_rejected", mode=mode)
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/instagram", response_class=PlainTextResponse)
async def instagram_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    ingestor: InstagramWebhookIngestor = Depends(get_webhook_ingestor),
):
    """Ingest DM events. Per-event failures are logged by the ingestor."""
    raw = await request.body()
    try:
        body = json.loads(raw or b"{}")
    except ValueError as e:
        logger.warning("webhook.instagram.invalid_body", error=str(e))
        return PlainTextResponse(EVENT_RECEIVED, status_code=200)

    logger.info("webhook.instagram.received", object=body.get("object") if isinstance(body, dict) else None)
    try:
        await ingestor.ingest(db, body)
    except Exception:
        logger.exception("webhook.instagram.ingest_failed")
        await db.rollback()
    return PlainTextResponse(EVENT_RECEIVED, status_code=200)
