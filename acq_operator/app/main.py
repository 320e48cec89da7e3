"""
ACQ Operator API.

Routes: Instagram webhook (/webhooks/instagram), dashboard AI chat (/api/ai/dashboard-chat),
content AI actions (/api/content-ai) and health probes (/api/healthz, /api/readyz).
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import get_settings
from app.db import engine
from app.logging_config import configure_logging, get_logger
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.routers import (
    api_health_router,
    content_ai_router,
    dashboard_chat_router,
    instagram_webhook_router,
)

__version__ = "0.1.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()
    logger.info(
        "app_started",
        version=__version__,
        env=settings.app_env,
        claude_configured=bool((settings.claude_api_key or "").strip()),
        redis_configured=bool(settings.redis_url),
        webhook_verify_configured=bool(settings.instagram_verify_token),
    )
    yield
    await engine.dispose()
    logger.info("app_shutdown")


app = FastAPI(title="ACQ Operator", version=__version__, lifespan=lifespan)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(CorrelationIdMiddleware)

for router in (api_health_router, instagram_webhook_router, dashboard_chat_router, content_ai_router):
    app.include_router(router)


@app.get("/")
def root() -> dict[str, str]:
    return {"name": "acq_operator", "version": __version__}
