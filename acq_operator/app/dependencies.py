"""FastAPI dependency factories for services; tests override these via app.dependency_overrides."""
from functools import partial

from fastapi import Depends

from app.config import Settings, get_settings
from app.db import async_session_factory
from app.services.chat_service import ChatSettings, DashboardChatService
from app.services.content_ideas_service import ContentIdeasService
from app.services.inbox_snapshot_service import InboxSnapshotBuilder, SnapshotLimits
from app.services.instagram_graph_service import InstagramGraphClient
from app.services.instagram_webhook_service import InstagramWebhookIngestor
from app.services.knowledge_service import load_knowledge
from app.services.llm_service import LLMService
from app.services.storage_service import ObjectStorage


def get_storage(settings: Settings = Depends(get_settings)) -> ObjectStorage:
    return ObjectStorage.from_settings(settings)


def get_llm_service(settings: Settings = Depends(get_settings)) -> LLMService:
    return LLMService(settings)


def get_chat_service(
    settings: Settings = Depends(get_settings),
    llm: LLMService = Depends(get_llm_service),
    storage: ObjectStorage = Depends(get_storage),
) -> DashboardChatService:
    return DashboardChatService(
        chat_settings=ChatSettings.from_settings(settings),
        llm=llm,
        snapshot_builder=InboxSnapshotBuilder(SnapshotLimits.from_settings(settings), async_session_factory),
        knowledge_loader=partial(load_knowledge, settings, storage),
    )


def get_content_ideas_service(
    settings: Settings = Depends(get_settings),
    llm: LLMService = Depends(get_llm_service),
    storage: ObjectStorage = Depends(get_storage),
) -> ContentIdeasService:
    return ContentIdeasService(
        llm=llm,
        knowledge_loader=partial(load_knowledge, settings, storage),
        app_origin=settings.app_public_origin,
    )


def get_webhook_ingestor(
    settings: Settings = Depends(get_settings),
    storage: ObjectStorage = Depends(get_storage),
) -> InstagramWebhookIngestor:
    return InstagramWebhookIngestor(
        storage=storage,
        graph=InstagramGraphClient(settings),
        media_bucket=settings.instagram_media_bucket,
    )
