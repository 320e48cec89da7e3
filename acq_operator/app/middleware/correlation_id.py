"""
Request context for logs: X-Correlation-ID (reused or minted), path and the optional
X-Workspace-ID are bound into structlog contextvars; one access line per request.
"""
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.logging_config import get_logger

logger = get_logger(__name__)

HEADER_CORRELATION_ID = "X-Correlation-ID"
HEADER_WORKSPACE_ID = "X-Workspace-ID"
QUIET_PATHS = ("/api/healthz", "/api/readyz")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(HEADER_CORRELATION_ID, "").strip()[:128] or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id, path=request.url.path)
        workspace_id = request.headers.get(HEADER_WORKSPACE_ID, "").strip()
        if workspace_id:
            structlog.contextvars.bind_contextvars(workspace_id=workspace_id[:64])

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[HEADER_CORRELATION_ID] = correlation_id
        if request.url.path not in QUIET_PATHS:
            logger.info(
                "http.request",
                method=request.method,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000),
            )
        return response
