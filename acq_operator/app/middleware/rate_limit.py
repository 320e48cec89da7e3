"""
Rate limit for the AI endpoints (every request there can reach the Claude API).
Redis sliding window of RATE_LIMIT_PER_MIN requests per minute, keyed by the
X-Workspace-ID header, else by the bearer token, else by client address.
Webhooks and health probes are never limited; without REDIS_URL nothing is.
"""
import hashlib
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.auth import extract_bearer_token
from app.config import get_settings
from app.infrastructure.redis_cache import redis_client
from app.logging_config import get_logger

logger = get_logger(__name__)

REDIS_KEY_PREFIX = "rl:"
WINDOW_SECONDS = 60
LIMITED_PATH_PREFIXES = ("/api/ai/", "/api/content-ai")


def is_limited_path(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in LIMITED_PATH_PREFIXES)


def rate_limit_key(request: Request) -> Optional[str]:
    workspace = request.headers.get("X-Workspace-ID", "").strip()
    if workspace:
        return f"workspace:{workspace[:64]}"
    token = extract_bearer_token(request)
    if token:
        # tokens are long-lived secrets; only a digest goes to Redis
        return "token:" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return None


async def _within_limit(key: str, limit: int) -> bool:
    """ZADD now, drop entries older than the window, ZCARD. Redis errors fail open."""
    now = time.time()
    rkey = REDIS_KEY_PREFIX + key
    try:
        async with redis_client() as client:
            if client is None:
                return True
            pipe = client.pipeline()
            pipe.zadd(rkey, {str(uuid.uuid4()): now})
            pipe.zremrangebyscore(rkey, "-inf", now - WINDOW_SECONDS)
            pipe.zcard(rkey)
            pipe.expire(rkey, WINDOW_SECONDS + 10)
            results = await pipe.execute()
    except Exception as e:
        logger.warning("rate_limit.redis_error", key=key, error=str(e))
        return True
    return results[2] <= limit


class RateLimitMiddleware(BaseHTTPMiddleware):
    """429 when a caller exceeds its per-minute budget on the AI endpoints."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        settings = get_settings()
        if not settings.redis_url or not is_limited_path(request.url.path):
            return await call_next(request)
        key = rate_limit_key(request)
        if key is None:
            return await call_next(request)
        limit = settings.rate_limit_per_min
        if not await _within_limit(key, limit):
            logger.info("rate_limit.exceeded", key=key.split(":", 1)[0], path=request.url.path, limit=limit)
            return JSONResponse(
                status_code=429,
                content={"success": False, "error": "Rate limit exceeded. Try again in a minute."},
                headers={"Retry-After": str(WINDOW_SECONDS)},
            )
        return await call_next(request)
