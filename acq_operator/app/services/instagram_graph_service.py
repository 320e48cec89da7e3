"""
Instagram / Facebook Graph API client (httpx) used by the webhook ingestor:
peer profile lookup, shared-media permalink lookup and media download.
All calls are best-effort: failures are logged and surface as None.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.config import Settings
from app.logging_config import get_logger

logger = get_logger(__name__)

MEDIA_FIELDS = "permalink,permalink_url,media_url,thumbnail_url,media_type"
PROFILE_FIELDS = "name,username,profile_pic"


class GraphAPIError(Exception):
    """Graph API returned an error envelope or a non-2xx status."""

    def __init__(self, label: str, status: int, message: str):
        self.label = label
        self.status = status
        super().__init__(f"{label} request failed ({status}): {message}")


@dataclass
class DownloadedMedia:
    content_type: Optional[str]
    data: bytes


class InstagramGraphClient:
    """Thin async client; `transport` is injectable for tests."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        version = settings.meta_graph_api_version
        self.base_ig = f"https://graph.instagram.com/{version}"
        self.base_fb = f"https://graph.facebook.com/{version}"
        self.timeout = settings.graph_timeout_seconds
        self.max_media_bytes = settings.media_max_bytes
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True)

    async def _get_json(self, url: str, label: str, access_token: str, fields: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.get(
                url,
                params={"fields": fields, "access_token": access_token},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        try:
            data = resp.json() if resp.text else {}
        except ValueError:
            data = {"raw": resp.text}
        error = data.get("error") if isinstance(data, dict) else None
        if resp.status_code >= 400 or error:
            message = error.get("message") if isinstance(error, dict) else None
            raise GraphAPIError(label, resp.status_code, message or f"{label} request failed")
        return data if isinstance(data, dict) else {}

    async def fetch_user_profile(self, instagram_user_id: str, access_token: str) -> Optional[Dict[str, Any]]:
        """{name, username, profile_pic} for a DM peer, or None."""
        try:
            return await self._get_json(
                f"{self.base_ig}/{instagram_user_id}", "user_profile", access_token, PROFILE_FIELDS
            )
        except (GraphAPIError, httpx.HTTPError) as e:
            logger.info("instagram_graph.profile_failed", instagram_user_id=instagram_user_id, error=str(e))
            return None

    async def fetch_media_permalink(self, media_id: str, access_token: str) -> Optional[str]:
        """Permalink for a shared post/reel/story id; tries graph.instagram.com then graph.facebook.com."""
        if not media_id or not access_token:
            return None
        for base, label in ((self.base_ig, "ig_media_permalink"), (self.base_fb, "fb_media_permalink")):
            try:
                data = await self._get_json(f"{base}/{media_id}", label, access_token, MEDIA_FIELDS)
            except (GraphAPIError, httpx.HTTPError) as e:
                logger.debug("instagram_graph.permalink_failed", label=label, media_id=media_id, error=str(e))
                continue
            for key in ("permalink_url", "permalink", "url", "media_url"):
                value = data.get(key)
                if isinstance(value, str) and value.strip().lower().startswith(("http://", "https://")):
                    return value.strip()
        return None

    async def download(self, url: str) -> Optional[DownloadedMedia]:
        """Stream a media URL; None on non-2xx, transport error or a body over max_media_bytes."""
        try:
            async with self._client() as client:
                async with client.stream("GET", url) as resp:
                    if resp.status_code >= 400:
                        logger.info("instagram_graph.download_status", status=resp.status_code)
                        return None
                    declared = resp.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > self.max_media_bytes:
                        logger.info("instagram_graph.download_too_large", size=int(declared))
                        return None
                    chunks = []
                    size = 0
                    async for chunk in resp.aiter_bytes():
                        size += len(chunk)
                        if size > self.max_media_bytes:
                            logger.info("instagram_graph.download_too_large", size=size)
                            return None
                        chunks.append(chunk)
                    content_type = resp.headers.get("content-type")
        except httpx.HTTPError as e:
            logger.info("instagram_graph.download_failed", error=str(e))
            return None
        return DownloadedMedia(content_type=content_type, data=b"".join(chunks))
