"""Small text helpers shared by scoring, snapshot and corpus code."""
import re
from typing import Any, Dict, Iterable, List, TypeVar

T = TypeVar("T")

_WS_RE = re.compile(r"\s+")
_SEPARATOR_RE = re.compile(r"[_-]+")


def as_str(value: Any) -> str:
    """None -> '', everything else str()."""
    return "" if value is None else str(value)


def as_record(value: Any) -> Dict[str, Any]:
    """Dict or empty dict (duck-typed JSON payloads)."""
    return value if isinstance(value, dict) else {}


def as_str_list(value: Any) -> List[str]:
    """List of non-empty stripped strings; anything that is not a list -> []."""
    if not isinstance(value, list):
        return []
    return [s for s in (as_str(v).strip() for v in value) if s]


def normalize_name(value: Any) -> str:
    """Lowercase, `_`/`-` to spaces, collapse whitespace. 'Hot_Lead' -> 'hot lead'."""
    text = _SEPARATOR_RE.sub(" ", as_str(value).strip().lower())
    return _WS_RE.sub(" ", text).strip()


def normalize_spaces(value: Any) -> str:
    """Lowercase and collapse whitespace, keep punctuation."""
    return _WS_RE.sub(" ", as_str(value).lower()).strip()


def compact_text(value: Any, max_len: int = 180) -> str:
    """Single-line text clipped to max_len with a trailing '...'."""
    text = _WS_RE.sub(" ", as_str(value)).strip()
    if len(text) <= max_len:
        return text
    return f"{text[: max(0, max_len - 1)].strip()}..."


def unique(items: Iterable[T]) -> List[T]:
    """Deduplicate keeping first-seen order."""
    seen = set()
    out: List[T] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def get_field(record: Any, key: str) -> Any:
    """Read `key` from an ORM row, dataclass or plain mapping."""
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)
