"""
Lead scorer: composite priority score per conversation with human-readable reasons.

Inputs are thread-level facts (status, priority flag, last inbound/outbound instants),
temperature from tags, at most one open alert and the recent messages fetched for
the conversation. Score is an int clamped to [-100, 100]; reasons are deduplicated
and capped at MAX_REASONS in contribution order.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from app.schemas.inbox import RecentMessage
from app.services.phase_service import normalize_phase
from app.utils.text import as_str, compact_text, get_field, normalize_name, normalize_spaces, unique
from app.utils.timeutil import to_iso, to_ms

SCORE_MIN = -100
SCORE_MAX = 100
MAX_REASONS = 6
INTENT_MESSAGES = 6
HOUR_MS = 3_600_000

# (label, pattern) evaluated against lowercased, whitespace-collapsed text
POSITIVE_SIGNALS: tuple[tuple[str, re.Pattern], ...] = (
    ("pricing intent", re.compile(r"\bprice\b|\bpricing\b|\bcost\b|\brate\b|\bquote\b|\bbudget\b|\binvest(?:ment)?\b")),
    ("availability question", re.compile(r"\bavailable\b|\bavailability\b|\bopenings\b")),
    ("call booking intent", re.compile(r"\bbook\b|\bbooking\b|\bcall\b|\bdemo\b|\bzoom\b|\bmeeting\b")),
    ("ready-to-start language", re.compile(r"\bready\b|\bstart\b|\blet'?s go\b|\bmove forward\b")),
    ("buying interest", re.compile(r"\binterested\b|\bsounds good\b|\byes\b")),
)
NEGATIVE_SIGNALS: tuple[tuple[str, re.Pattern], ...] = (
    ("opt-out language", re.compile(r"\bnot interested\b|\bno thanks\b|\bstop\b|\bremove me\b|\bdo not contact\b")),
    ("timing objection", re.compile(r"\bmaybe later\b|\bnot now\b|\bbusy now\b")),
)

ALERT_WEIGHTS: dict[str, tuple[int, str]] = {
    "hot lead unreplied": (28, "Open alert: hot lead waiting on reply."),
    "qualified inactive": (20, "Open alert: qualified lead inactive."),
    "no show followup": (24, "Open alert: no-show follow-up needed."),
}
GENERIC_ALERT_WEIGHT = 12


@dataclass
class IntentSignals:
    positive: List[str] = field(default_factory=list)
    negative: List[str] = field(default_factory=list)


@dataclass
class LeadScore:
    """Score in [-100, 100], ordered reasons, waiting_for_reply."""
    score: int
    reasons: List[str]
    waiting_for_reply: bool


def extract_intent_signals(text: Optional[str]) -> IntentSignals:
    """Keyword scan of lead-authored text; labels in declaration order."""
    source = normalize_spaces(text)
    signals = IntentSignals()
    if not source:
        return signals
    signals.positive = [label for label, pattern in POSITIVE_SIGNALS if pattern.search(source)]
    signals.negative = [label for label, pattern in NEGATIVE_SIGNALS if pattern.search(source)]
    return signals


def _message_text(message: Any) -> str:
    text = get_field(message, "message_text")
    if text:
        return as_str(text)
    payload = get_field(message, "raw_payload") or {}
    if isinstance(payload, Mapping):
        inner = payload.get("message")
        if isinstance(inner, Mapping):
            return as_str(inner.get("text"))
        if inner:
            return as_str(inner)
        return as_str(payload.get("text"))
    return ""


def _message_instant(message: Any) -> Any:
    value = get_field(message, "message_timestamp") or get_field(message, "created_at")
    if value:
        return value
    payload = get_field(message, "raw_payload") or {}
    return payload.get("created_time") if isinstance(payload, Mapping) else None


def summarize_recent_messages(messages: Sequence[Any], limit: int) -> List[RecentMessage]:
    """
    Chronological (stable) order, keep the last `limit`, compact text to 220 chars.
    Messages without text are dropped; outbound -> 'you', anything else -> 'lead'.
    """
    ordered = sorted(enumerate(messages), key=lambda pair: (to_ms(_message_instant(pair[1])), pair[0]))
    tail = [m for _, m in ordered][-max(1, limit):]
    out: List[RecentMessage] = []
    for message in tail:
        text = compact_text(_message_text(message), 220)
        if not text:
            continue
        sender = "you" if as_str(get_field(message, "direction")) == "outbound" else "lead"
        at_value = get_field(message, "message_timestamp") or get_field(message, "created_at")
        at = to_iso(at_value) if isinstance(at_value, datetime) else (as_str(at_value) or None)
        out.append(RecentMessage(sender=sender, at=at, text=text))
    return out


def reply_instants(thread: Any) -> tuple[int, int]:
    """(inbound_ms, outbound_ms): explicit fields merged with last_message_at gated by direction."""
    direction = as_str(get_field(thread, "last_message_direction"))
    last_ms = to_ms(get_field(thread, "last_message_at"))
    inbound_ms = max(to_ms(get_field(thread, "last_inbound_at")), last_ms if direction == "inbound" else 0)
    outbound_ms = max(to_ms(get_field(thread, "last_outbound_at")), last_ms if direction == "outbound" else 0)
    return inbound_ms, outbound_ms


def score_lead(
    now: datetime,
    thread: Any,
    temperature: str,
    alert: Optional[Any],
    recent_messages: Iterable[RecentMessage],
) -> LeadScore:
    """
    Additive priority score for one conversation.
    `thread` and `alert` may be ORM rows or plain mappings.
    """
    now_ms = to_ms(now)
    reasons: List[str] = []
    score = 0

    status = normalize_phase(get_field(thread, "lead_status") or "open")
    if status == "qualified":
        score += 18
        reasons.append("Lead is already qualified.")
    elif status == "disqualified":
        score -= 40
        reasons.append("Lead is marked disqualified.")
    else:
        score += 5

    if get_field(thread, "priority"):
        score += 14
        reasons.append("Conversation is marked as priority.")

    if temperature == "hot":
        score += 30
        reasons.append("Tagged as Hot Lead.")
    elif temperature == "warm":
        score += 15
        reasons.append("Tagged as Warm Lead.")
    elif temperature == "cold":
        score -= 8
        reasons.append("Tagged as Cold Lead.")

    if alert is not None:
        alert_type = as_str(get_field(alert, "alert_type"))
        weight, reason = ALERT_WEIGHTS.get(
            normalize_name(alert_type),
            (GENERIC_ALERT_WEIGHT, f"Open alert: {compact_text(alert_type, 38)}."),
        )
        score += weight
        reasons.append(reason)
        overdue_minutes = int(get_field(alert, "overdue_minutes") or 0)
        if overdue_minutes > 0:
            score += min(12, overdue_minutes // 60)
            reasons.append(f"Alert overdue by {overdue_minutes} minutes.")

    inbound_ms, outbound_ms = reply_instants(thread)
    waiting_for_reply = inbound_ms > 0 and inbound_ms > outbound_ms
    if waiting_for_reply:
        wait_hours = max(0.0, (now_ms - inbound_ms) / HOUR_MS)
        if wait_hours >= 24:
            score += 18
            reasons.append(f"Lead has been waiting {round(wait_hours)}h for a reply.")
        elif wait_hours >= 6:
            score += 13
            reasons.append(f"Lead has been waiting {round(wait_hours)}h for a reply.")
        else:
            score += 8
            reasons.append("Unread inbound message needs response.")

    last_touch_ms = max(inbound_ms, outbound_ms, to_ms(get_field(thread, "last_message_at")))
    if last_touch_ms > 0:
        hours_ago = (now_ms - last_touch_ms) / HOUR_MS
        if hours_ago <= 4:
            score += 8
        elif hours_ago <= 24:
            score += 5
        elif hours_ago <= 72:
            score += 2

    lead_lines = [m.text for m in recent_messages if m.sender == "lead"][-INTENT_MESSAGES:]
    backup_text = ""
    if as_str(get_field(thread, "last_message_direction")) == "inbound":
        backup_text = compact_text(get_field(thread, "last_message_text"), 240)
    signal_source = " \n ".join(lead_lines) + " " + backup_text
    signals = extract_intent_signals(signal_source)
    if signals.positive:
        score += min(14, len(signals.positive) * 4)
        reasons.append(f"Intent signals: {', '.join(unique(signals.positive)[:3])}.")
    if signals.negative:
        score -= min(26, len(signals.negative) * 10)
        reasons.append(f"Risk signals: {', '.join(unique(signals.negative)[:2])}.")

    return LeadScore(
        score=max(SCORE_MIN, min(SCORE_MAX, score)),
        reasons=unique(reasons)[:MAX_REASONS],
        waiting_for_reply=waiting_for_reply,
    )
