"""
Object storage: bucket directories under STORAGE_ROOT, public URLs under STORAGE_PUBLIC_BASE_URL.
Used for mirrored Instagram attachments, peer profile pictures and the AI knowledge file.
"""
import asyncio
from pathlib import Path, PurePosixPath
from typing import Optional

from app.config import Settings
from app.logging_config import get_logger

logger = get_logger(__name__)


class StoragePathError(ValueError):
    """Object path escapes its bucket (absolute path or '..' segment)."""


class ObjectStorage:
    """Bucket/path addressed files on local disk; upserts overwrite."""

    def __init__(self, root: str, public_base_url: str) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        return cls(settings.storage_root, settings.storage_public_base_url)

    def _resolve(self, bucket: str, object_path: str) -> Path:
        rel = PurePosixPath(object_path)
        if not bucket or "/" in bucket or bucket in (".", ".."):
            raise StoragePathError(f"invalid bucket: {bucket!r}")
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise StoragePathError(f"invalid object path: {object_path!r}")
        return self.root.joinpath(bucket, *rel.parts)

    def public_url(self, bucket: str, object_path: str) -> str:
        return f"{self.public_base_url}/{bucket}/{object_path.lstrip('/')}"

    def _write(self, dest: Path, data: bytes) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        with open(dest, "wb") as f:
            f.write(data)

    async def upload(self, bucket: str, object_path: str, data: bytes) -> str:
        """Write (overwrite) and return the public URL."""
        dest = self._resolve(bucket, object_path)
        await asyncio.to_thread(self._write, dest, data)
        logger.debug("storage.uploaded", bucket=bucket, path=object_path, size=len(data))
        return self.public_url(bucket, object_path)

    async def download_text(self, bucket: str, object_path: str) -> Optional[str]:
        """UTF-8 text of the object, None when it does not exist."""
        src = self._resolve(bucket, object_path)
        if not src.is_file():
            return None
        return await asyncio.to_thread(src.read_text, encoding="utf-8", errors="replace")
