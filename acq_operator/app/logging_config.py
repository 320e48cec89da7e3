"""
structlog setup: JSON lines outside local, console renderer locally.
Secrets that pass through log calls (Graph access tokens, provider keys, bearer
tokens) are masked before rendering.
"""
import logging
import sys
from typing import Any, Dict

import structlog

from app.config import get_settings

SECRET_FIELDS = frozenset({"access_token", "api_key", "authorization", "token", "x-api-key"})
MASK = "***"


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in list(event_dict):
        if key.lower() in SECRET_FIELDS and event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def configure_logging() -> None:
    """Called once from the app lifespan."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    local = settings.app_env == "local"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if local else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    # httpx request lines include Graph API query strings (access_token=...)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if local else logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
