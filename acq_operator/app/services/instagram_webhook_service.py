"""
Instagram DM webhook ingestion.

For each messaging event: resolve the workspace connection, classify direction
relative to the workspace's own ids, mirror attachments and the peer profile
picture (best-effort), upsert the thread summary and the message row.
Redelivery of the same event converges on the same rows.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from app.models import InstagramConnection, InstagramMessage, InstagramThread, InstagramUser
from app.services import instagram_attachment_service as attachments
from app.services.instagram_graph_service import InstagramGraphClient
from app.services.spam_service import is_probably_spam
from app.services.storage_service import ObjectStorage
from app.services.tag_service import NEW_LEAD_TAG, attach_tag, ensure_tag_id
from app.utils.text import as_record, as_str
from app.utils.timeutil import ensure_utc, parse_timestamp, utc_now

logger = get_logger(__name__)

SUPPORTED_OBJECTS = ("instagram", "page")
PROFILE_STALE_AFTER = timedelta(hours=24)
UNKNOWN_PEER_PREFIX = "unknown:"
ATTACHMENT_PLACEHOLDER = "[attachment]"
UNAVAILABLE_PLACEHOLDER = "Content not available"


@dataclass
class PeerProfile:
    username: Optional[str] = None
    name: Optional[str] = None
    profile_picture_url: Optional[str] = None


@dataclass
class IngestStats:
    entries: int = 0
    events: int = 0
    stored: int = 0
    skipped: int = 0
    failed: int = 0
    new_threads: int = 0


@dataclass
class _EntryContext:
    connection: InstagramConnection
    account_id: str
    self_ids: Set[str]
    profile_cache: Dict[str, Optional[PeerProfile]] = field(default_factory=dict)
    new_lead_tag_id: Optional[UUID] = None


def _max_dt(current: Optional[datetime], candidate: Optional[datetime]) -> Optional[datetime]:
    current = ensure_utc(current)
    if current is None:
        return candidate
    if candidate is None:
        return current
    return max(current, candidate)


class InstagramWebhookIngestor:
    """Processes one webhook body inside the caller's session."""

    def __init__(
        self,
        storage: ObjectStorage,
        graph: InstagramGraphClient,
        media_bucket: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.graph = graph
        self.media_bucket = media_bucket
        self.clock = clock

    async def ingest(self, db: AsyncSession, body: Any) -> IngestStats:
        stats = IngestStats()
        payload = as_record(body)
        if payload.get("object") not in SUPPORTED_OBJECTS:
            logger.info("instagram_webhook.ignored_object", object=payload.get("object"))
            return stats

        entries = payload.get("entry")
        if not isinstance(entries, list):
            logger.warning("instagram_webhook.malformed_entries", kind=type(entries).__name__)
            return stats

        for entry in entries:
            entry = as_record(entry)
            entry_id = as_str(entry.get("id")).strip()
            if not entry_id:
                continue
            stats.entries += 1
            connection = await self._find_connection(db, entry_id)
            if connection is None:
                logger.warning("instagram_webhook.connection_not_found", entry_id=entry_id)
                continue
            account_id = connection.instagram_account_id or entry_id
            ctx = _EntryContext(
                connection=connection,
                account_id=account_id,
                self_ids={
                    i for i in (account_id, entry_id, connection.page_id, connection.facebook_user_id) if i
                },
            )
            events = entry.get("messaging")
            if not isinstance(events, list):
                continue
            for event in events:
                stats.events += 1
                try:
                    async with db.begin_nested():
                        outcome = await self._handle_event(db, ctx, as_record(event))
                except Exception:
                    stats.failed += 1
                    logger.exception("instagram_webhook.event_failed", entry_id=entry_id)
                    continue
                if outcome is None:
                    stats.skipped += 1
                    continue
                stats.stored += 1
                if outcome:
                    stats.new_threads += 1

        logger.info(
            "instagram_webhook.processed",
            entries=stats.entries,
            events=stats.events,
            stored=stats.stored,
            skipped=stats.skipped,
            failed=stats.failed,
            new_threads=stats.new_threads,
        )
        return stats

    async def _find_connection(self, db: AsyncSession, entry_id: str) -> Optional[InstagramConnection]:
        for column in (
            InstagramConnection.instagram_account_id,
            InstagramConnection.page_id,
            InstagramConnection.facebook_user_id,
        ):
            r = await db.execute(select(InstagramConnection).where(column == entry_id).limit(1))
            connection = r.scalar_one_or_none()
            if connection is not None:
                return connection
        return None

    async def _handle_event(self, db: AsyncSession, ctx: _EntryContext, messaging: Dict[str, Any]) -> Optional[bool]:
        """None when the event is skipped, else whether a new thread was created."""
        sender_id = as_str(as_record(messaging.get("sender")).get("id")).strip()
        recipient_id = as_str(as_record(messaging.get("recipient")).get("id")).strip()
        message = as_record(messaging.get("message"))
        message_id = as_str(message.get("mid") or message.get("id")).strip()
        if not sender_id or not recipient_id or not message_id:
            return None

        workspace_id = ctx.connection.workspace_id
        direction = "outbound" if sender_id in ctx.self_ids else "inbound"
        if direction == "inbound":
            peer_id = sender_id
        elif recipient_id not in ctx.self_ids:
            peer_id = recipient_id
        else:
            peer_id = f"{UNKNOWN_PEER_PREFIX}{message_id}"
        conversation_key = f"{ctx.account_id}:{peer_id}"
        timestamp = parse_timestamp(messaging.get("timestamp"))
        text = as_str(message.get("text")).strip() or None

        stored_attachments, share_preview = await self._mirror_attachments(
            ctx, workspace_id, message_id, message.get("attachments")
        )
        peer = await self._peer_profile(db, ctx, workspace_id, peer_id)

        if text:
            last_text = text
        elif share_preview:
            last_text = share_preview
        elif stored_attachments:
            last_text = ATTACHMENT_PLACEHOLDER
        else:
            last_text = UNAVAILABLE_PLACEHOLDER

        thread, created = await self._upsert_thread(
            db,
            workspace_id=workspace_id,
            conversation_key=conversation_key,
            account_id=ctx.account_id,
            peer_id=peer_id,
            peer=peer,
            message_id=message_id,
            last_text=last_text,
            direction=direction,
            timestamp=timestamp or self.clock(),
            is_spam=direction == "inbound" and is_probably_spam(text),
        )
        if created:
            await self._tag_new_lead(db, ctx, workspace_id, thread.conversation_id)

        raw_payload = dict(messaging)
        raw_payload["stored_attachments"] = stored_attachments
        raw_payload["conversation_key"] = conversation_key
        await self._upsert_message(
            db,
            workspace_id=workspace_id,
            message_id=message_id,
            values={
                "conversation_key": conversation_key,
                "instagram_account_id": ctx.account_id,
                "instagram_user_id": peer_id,
                "sender_id": sender_id,
                "recipient_id": recipient_id,
                "message_text": text,
                "direction": direction,
                "message_timestamp": timestamp,
                "raw_payload": raw_payload,
            },
        )
        return created

    async def _mirror_attachments(
        self,
        ctx: _EntryContext,
        workspace_id: UUID,
        message_id: str,
        raw_attachments: Any,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        stored: List[Dict[str, Any]] = []
        share_preview: Optional[str] = None
        if not isinstance(raw_attachments, list):
            return stored, share_preview
        token = ctx.connection.access_token

        for index, raw in enumerate(raw_attachments):
            attachment = as_record(raw)
            att_type = as_str(attachment.get("type")).strip() or None
            urls = attachments.candidate_urls(attachment)
            share_url = attachments.best_share_url(urls)
            kind = attachments.infer_share_kind(att_type, share_url)

            if kind:
                public_url = share_url if share_url and attachments.share_kind_from_url(share_url) else None
                if public_url is None and token:
                    media_id = attachments.extract_attachment_id(attachment)
                    if media_id:
                        public_url = await self.graph.fetch_media_permalink(media_id, token)
                stored.append(
                    {
                        "type": att_type or "share",
                        "share_kind": kind,
                        "is_share": True,
                        "source_url": share_url,
                        "public_url": public_url or share_url,
                    }
                )
                if share_preview is None:
                    share_preview = attachments.share_preview_text(kind)
                continue

            source_url = urls[0] if urls else None
            if source_url is None:
                stored.append({"type": att_type or "file", "source_url": None, "public_url": None})
                continue
            media = await self.graph.download(source_url)
            if media is None or attachments.is_html(media.content_type):
                stored.append({"type": att_type or "file", "source_url": source_url, "public_url": None})
                continue
            ext = attachments.extension_for(media.content_type, source_url)
            path = attachments.attachment_path(workspace_id, ctx.account_id, message_id, index, ext)
            try:
                public_url = await self.storage.upload(self.media_bucket, path, media.data)
            except OSError as e:
                logger.warning("instagram_webhook.attachment_store_failed", path=path, error=str(e))
                stored.append({"type": att_type or "file", "source_url": source_url, "public_url": None})
                continue
            stored.append(
                {
                    "type": att_type or "file",
                    "source_url": source_url,
                    "bucket": self.media_bucket,
                    "path": path,
                    "public_url": public_url,
                    "content_type": media.content_type,
                    "size": len(media.data),
                }
            )
        return stored, share_preview

    async def _peer_profile(
        self, db: AsyncSession, ctx: _EntryContext, workspace_id: UUID, peer_id: str
    ) -> Optional[PeerProfile]:
        if peer_id.startswith(UNKNOWN_PEER_PREFIX):
            return None
        if peer_id in ctx.profile_cache:
            return ctx.profile_cache[peer_id]

        r = await db.execute(
            select(InstagramUser).where(
                InstagramUser.workspace_id == workspace_id,
                InstagramUser.instagram_user_id == peer_id,
            )
        )
        user = r.scalar_one_or_none()
        now = self.clock()
        fetched_at = ensure_utc(user.profile_fetched_at) if user else None
        stale = (
            user is None
            or fetched_at is None
            or now - fetched_at > PROFILE_STALE_AFTER
            or not user.username
            or not (user.profile_pic_public_url or user.profile_pic_url)
        )

        if stale and ctx.connection.access_token:
            data = await self.graph.fetch_user_profile(peer_id, ctx.connection.access_token)
            if data is not None:
                user = await self._store_profile(db, workspace_id, peer_id, user, data, now)

        profile = None
        if user is not None:
            profile = PeerProfile(
                username=user.username,
                name=user.name,
                profile_picture_url=user.profile_pic_public_url or user.profile_pic_url,
            )
        ctx.profile_cache[peer_id] = profile
        return profile

    async def _store_profile(
        self,
        db: AsyncSession,
        workspace_id: UUID,
        peer_id: str,
        user: Optional[InstagramUser],
        data: Dict[str, Any],
        now: datetime,
    ) -> InstagramUser:
        if user is None:
            user = InstagramUser(workspace_id=workspace_id, instagram_user_id=peer_id)
            db.add(user)
        user.username = as_str(data.get("username")).strip() or user.username
        user.name = as_str(data.get("name")).strip() or user.name
        pic_url = as_str(data.get("profile_pic")).strip() or None
        if pic_url:
            user.profile_pic_url = pic_url
            media = await self.graph.download(pic_url)
            if media is not None and not attachments.is_html(media.content_type):
                ext = attachments.extension_for(media.content_type, pic_url)
                path = attachments.profile_pic_path(workspace_id, peer_id, ext)
                try:
                    user.profile_pic_public_url = await self.storage.upload(self.media_bucket, path, media.data)
                    user.profile_pic_storage_path = path
                except OSError as e:
                    logger.warning("instagram_webhook.profile_pic_store_failed", path=path, error=str(e))
        user.profile_fetched_at = now
        await db.flush()
        return user

    async def _upsert_thread(
        self,
        db: AsyncSession,
        *,
        workspace_id: UUID,
        conversation_key: str,
        account_id: str,
        peer_id: str,
        peer: Optional[PeerProfile],
        message_id: str,
        last_text: str,
        direction: str,
        timestamp: datetime,
        is_spam: bool,
    ) -> Tuple[InstagramThread, bool]:
        r = await db.execute(
            select(InstagramThread).where(
                InstagramThread.workspace_id == workspace_id,
                InstagramThread.conversation_id == conversation_key,
            )
        )
        thread = r.scalar_one_or_none()
        created = thread is None
        if thread is None:
            thread, created = await self._insert_thread(
                db,
                InstagramThread(
                    workspace_id=workspace_id,
                    conversation_id=conversation_key,
                    instagram_account_id=account_id,
                    instagram_user_id=peer_id,
                    lead_status="open",
                    priority=False,
                ),
            )

        thread.instagram_account_id = account_id
        thread.instagram_user_id = peer_id
        if peer is not None:
            thread.peer_username = peer.username or thread.peer_username
            thread.peer_name = peer.name or thread.peer_name
            thread.peer_profile_picture_url = peer.profile_picture_url or thread.peer_profile_picture_url

        # Out-of-order delivery must not move the summary backwards.
        current_last = ensure_utc(thread.last_message_at)
        if current_last is None or timestamp >= current_last:
            thread.last_message_id = message_id
            thread.last_message_text = last_text
            thread.last_message_direction = direction
            thread.last_message_at = timestamp
        if direction == "inbound":
            thread.last_inbound_at = _max_dt(thread.last_inbound_at, timestamp)
        else:
            thread.last_outbound_at = _max_dt(thread.last_outbound_at, timestamp)
        if is_spam:
            thread.is_spam = True
        await db.flush()
        return thread, created

    async def _insert_thread(self, db: AsyncSession, thread: InstagramThread) -> Tuple[InstagramThread, bool]:
        """Insert a new thread; a concurrent delivery that created it first wins."""
        workspace_id, conversation_id = thread.workspace_id, thread.conversation_id
        try:
            async with db.begin_nested():
                db.add(thread)
                await db.flush()
        except IntegrityError:
            r = await db.execute(
                select(InstagramThread).where(
                    InstagramThread.workspace_id == workspace_id,
                    InstagramThread.conversation_id == conversation_id,
                )
            )
            raced = r.scalar_one_or_none()
            if raced is None:
                raise
            logger.info("instagram_webhook.thread_insert_raced", conversation_id=conversation_id)
            return raced, False
        return thread, True

    async def _tag_new_lead(self, db: AsyncSession, ctx: _EntryContext, workspace_id: UUID, conversation_id: str) -> None:
        if ctx.new_lead_tag_id is None:
            ctx.new_lead_tag_id = await ensure_tag_id(db, workspace_id, NEW_LEAD_TAG)
        if ctx.new_lead_tag_id is None:
            logger.warning("instagram_webhook.new_lead_tag_missing", workspace_id=str(workspace_id))
            return
        await attach_tag(db, workspace_id, conversation_id, ctx.new_lead_tag_id, source="ai")

    async def _upsert_message(
        self, db: AsyncSession, *, workspace_id: UUID, message_id: str, values: Dict[str, Any]
    ) -> None:
        r = await db.execute(select(InstagramMessage).where(InstagramMessage.message_id == message_id))
        row = r.scalar_one_or_none()
        if row is None:
            db.add(InstagramMessage(workspace_id=workspace_id, message_id=message_id, **values))
        elif row.workspace_id != workspace_id:
            logger.warning(
                "instagram_webhook.message_workspace_mismatch",
                message_id=message_id,
                workspace_id=str(workspace_id),
            )
            return
        else:
            for key, value in values.items():
                setattr(row, key, value)
        await db.flush()
