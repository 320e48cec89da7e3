"""
Workspace knowledge text injected into AI system prompts.
Read from object storage (AI_KNOWLEDGE_BUCKET / AI_KNOWLEDGE_PATH), clipped to
AI_KNOWLEDGE_MAX_CHARS, cached in Redis for DEFAULT_TTL_SECONDS. Any failure -> "".
"""
from app.config import Settings
from app.infrastructure.redis_cache import cache_get, cache_set
from app.logging_config import get_logger
from app.services.storage_service import ObjectStorage

logger = get_logger(__name__)


def _cache_key(settings: Settings) -> str:
    return f"knowledge:{settings.knowledge_bucket}/{settings.knowledge_path}"


async def load_knowledge(settings: Settings, storage: ObjectStorage) -> str:
    """Knowledge text or "" when missing/unreadable."""
    key = _cache_key(settings)
    cached = await cache_get(key)
    if cached is not None:
        return cached
    try:
        text = await storage.download_text(settings.knowledge_bucket, settings.knowledge_path)
    except Exception as e:
        logger.warning("knowledge.load_failed", path=settings.knowledge_path, error=str(e))
        return ""
    if not text:
        return ""
    text = text[: settings.knowledge_max_chars]
    await cache_set(key, text)
    return text
