"""API routers."""
from app.routers.api_health_router import router as api_health_router
from app.routers.content_ai_router import router as content_ai_router
from app.routers.dashboard_chat_router import router as dashboard_chat_router
from app.routers.instagram_webhook_router import router as instagram_webhook_router

__all__ = [
    "api_health_router",
    "content_ai_router",
    "dashboard_chat_router",
    "instagram_webhook_router",
]
