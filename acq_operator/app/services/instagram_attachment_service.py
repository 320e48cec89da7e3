"""
Pure helpers for Instagram DM attachments: share-kind detection, Meta redirect
unwrapping, candidate URL discovery and storage naming.
"""
import re
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from app.utils.text import as_record, as_str

SHARE_KINDS = ("reel", "story", "post")

# Meta's outbound link shims wrap the real URL in ?u=
REDIRECT_HOSTS = ("l.instagram.com", "l.facebook.com", "lm.facebook.com")

CANDIDATE_URL_KEYS = (
    "url",
    "link",
    "permalink",
    "permalink_url",
    "share_url",
    "shareable_url",
    "media_url",
    "video_url",
    "image_url",
    "src",
    "preview_url",
    "thumbnail_url",
)

ID_KEYS = ("id", "media_id", "story_id", "reel_id", "post_id", "asset_id", "attachment_id")

DEEP_SCAN_MAX_URLS = 30
DEEP_SCAN_MAX_DEPTH = 5

CONTENT_TYPE_EXT = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
}

_UNSAFE_PATH_RE = re.compile(r"[^A-Za-z0-9._=-]+")


def is_http_url(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower().startswith(("http://", "https://"))


def unwrap_meta_redirect_url(url: str) -> str:
    """https://l.instagram.com/?u=<encoded> -> <decoded>; anything else unchanged."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if (parsed.hostname or "").lower() not in REDIRECT_HOSTS:
        return url
    target = (parse_qs(parsed.query).get("u") or [""])[0]
    return target if is_http_url(target) else url


def share_kind_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    path = (urlparse(url).path or "").lower()
    if "/reel/" in path or "/reels/" in path:
        return "reel"
    if "/stories/" in path:
        return "story"
    if "/p/" in path or "/tv/" in path:
        return "post"
    return None


def infer_share_kind(attachment_type: Any, url: Optional[str] = None) -> Optional[str]:
    """'reel' | 'story' | 'post' | None from the attachment type, then its URL."""
    kind = as_str(attachment_type).strip().lower()
    for candidate in SHARE_KINDS:
        if candidate in kind:
            return candidate
    from_url = share_kind_from_url(url)
    if from_url:
        return from_url
    if kind == "share":
        return "post"
    return None


def score_share_url(url: str) -> int:
    """Rank candidate URLs: instagram permalinks first, CDN blobs last."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return 0
    host = (parsed.hostname or "").lower()
    if "instagram.com" in host and share_kind_from_url(url):
        return 100
    if "instagram.com" in host:
        return 90
    if "facebook.com" in host or "fb.watch" in host:
        return 80
    if "cdninstagram" in host or "fbcdn" in host:
        return 40
    if host:
        return 60
    return 10


def _deep_scan(node: Any, depth: int, out: List[str]) -> None:
    if len(out) >= DEEP_SCAN_MAX_URLS or depth > DEEP_SCAN_MAX_DEPTH:
        return
    if isinstance(node, str):
        if is_http_url(node):
            out.append(unwrap_meta_redirect_url(node.strip()))
        return
    if isinstance(node, dict):
        for value in node.values():
            _deep_scan(value, depth + 1, out)
    elif isinstance(node, list):
        for value in node:
            _deep_scan(value, depth + 1, out)


def candidate_urls(attachment: Dict[str, Any]) -> List[str]:
    """Known URL keys from the attachment and its payload first, then a bounded deep scan."""
    payload = as_record(attachment.get("payload"))
    out: List[str] = []
    for source in (payload, attachment):
        for key in CANDIDATE_URL_KEYS:
            value = source.get(key)
            if is_http_url(value):
                url = unwrap_meta_redirect_url(value.strip())
                if url not in out:
                    out.append(url)
    scanned: List[str] = []
    _deep_scan(attachment, 0, scanned)
    for url in scanned:
        if url not in out:
            out.append(url)
    return out


def best_share_url(urls: List[str]) -> Optional[str]:
    if not urls:
        return None
    return max(urls, key=score_share_url)


def extract_attachment_id(attachment: Dict[str, Any]) -> Optional[str]:
    payload = as_record(attachment.get("payload"))
    for source in (payload, attachment):
        for key in ID_KEYS:
            value = source.get(key)
            if isinstance(value, (str, int)) and as_str(value).strip():
                return as_str(value).strip()
    return None


def share_preview_text(kind: str) -> str:
    return f"See {kind}"


def extension_for(content_type: Optional[str], url: Optional[str] = None) -> str:
    """File extension from the content type, then the URL path; 'bin' when unknown."""
    base = as_str(content_type).split(";")[0].strip().lower()
    if base in CONTENT_TYPE_EXT:
        return CONTENT_TYPE_EXT[base]
    if url:
        suffix = (urlparse(url).path or "").rsplit(".", 1)
        if len(suffix) == 2:
            ext = suffix[1].lower()
            if ext == "jpeg":
                return "jpg"
            if ext in CONTENT_TYPE_EXT.values():
                return ext
    return "bin"


def is_html(content_type: Optional[str]) -> bool:
    return "text/html" in as_str(content_type).lower()


def safe_path_segment(value: Any) -> str:
    """Storage path segment with anything outside [A-Za-z0-9._=-] replaced."""
    cleaned = _UNSAFE_PATH_RE.sub("_", as_str(value)).strip("._")
    return cleaned or "unknown"


def attachment_path(workspace_id: Any, account_id: str, message_id: str, index: int, ext: str) -> str:
    return "/".join(
        (
            "instagram",
            safe_path_segment(workspace_id),
            safe_path_segment(account_id),
            safe_path_segment(message_id),
            f"{index}.{ext}",
        )
    )


def profile_pic_path(workspace_id: Any, peer_id: str, ext: str) -> str:
    return f"instagram/profile-pics/{safe_path_segment(workspace_id)}/{safe_path_segment(peer_id)}.{ext}"
