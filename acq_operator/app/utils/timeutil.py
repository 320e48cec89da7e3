"""
Timestamp helpers. Webhook payloads and stored rows mix datetimes, epoch seconds,
epoch milliseconds and ISO strings; everything here parses fail-closed (None).
"""
import re
from datetime import datetime, timezone
from typing import Any, Optional

_EPOCH_RE = re.compile(r"^\d{10,13}(\.\d+)?$")
_COMPACT_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def utc_now() -> datetime:
    """Aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes (SQLite round-trips) are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_epoch(number: float) -> Optional[datetime]:
    # < 1e12 is seconds, otherwise milliseconds
    seconds = number if number < 1e12 else number / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse datetime | epoch seconds/ms (int, float, digit string) | ISO-8601 string.
    Returns aware UTC datetime or None when the value is missing or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return _from_epoch(float(value))
    text = str(value).strip()
    if not text:
        return None
    if _EPOCH_RE.match(text):
        return _from_epoch(float(text))
    normalized = _COMPACT_OFFSET_RE.sub(r"\1:\2", text)
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(normalized))
    except ValueError:
        return None


def to_ms(value: Any) -> int:
    """Epoch milliseconds, 0 when missing. Used for recency tie-breaks."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return 0
    return int(parsed.timestamp() * 1000)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO string for JSON payloads (UTC)."""
    value = ensure_utc(value)
    return value.isoformat() if value else None


def start_of_utc_day(now: datetime) -> datetime:
    """Midnight UTC of the day containing `now`."""
    now = ensure_utc(now) or utc_now()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)
