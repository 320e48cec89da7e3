"""
Probes.
GET /api/healthz: liveness, always 200.
GET /api/readyz: database and Redis (when configured) must answer, else 503.
Claude key presence is reported but never fails readiness (chat degrades without it).
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db import get_db
from app.infrastructure.redis_cache import redis_client
from app.logging_config import get_logger

router = APIRouter(prefix="/api", tags=["health"])
logger = get_logger(__name__)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


async def _redis_status() -> str:
    async with redis_client() as client:
        if client is None:
            return "disabled"
        await client.ping()
        return "ok"


@router.get("/readyz")
async def readyz(db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)):
    checks: Dict[str, Any] = {
        "db": "ok",
        "redis": "disabled",
        "claude": "configured" if (settings.claude_api_key or "").strip() else "missing",
    }
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("readyz.db_fail", error=str(e))
        checks["db"] = "fail"
    try:
        checks["redis"] = await _redis_status()
    except Exception as e:
        logger.warning("readyz.redis_fail", error=str(e))
        checks["redis"] = "fail"

    if "fail" in (checks["db"], checks["redis"]):
        return JSONResponse(status_code=503, content={"status": "unhealthy", **checks})
    return {"status": "ok", **checks}
