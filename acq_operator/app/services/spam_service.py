"""
Spam heuristic for inbound Instagram DMs (rule-only, no LLM).
Severe keyword => spam. Otherwise additive score over mild signals; spam iff score >= SPAM_THRESHOLD.
"""
import re
from typing import Optional

SPAM_THRESHOLD = 3

SEVERE_SIGNALS = (
    "onlyfans",
    "porn",
    "airdrop",
    "double your",
    "guaranteed return",
    "forex signal",
)

MILD_SIGNALS = (
    "whatsapp",
    "telegram",
    "t.me/",
    "crypto",
    "investment",
    "dm me now",
    "limited offer",
    "click here",
)

_URL_RE = re.compile(r"https?://|\bwww\.", re.IGNORECASE)
_SHORTENER_RE = re.compile(r"bit\.ly|tinyurl|linktr\.ee|t\.co", re.IGNORECASE)
_MONEY_RE = re.compile(r"\$\d+|\d+\$|\b\d+%")


def spam_score(text: Optional[str]) -> int:
    """Additive mild-signal score (severe keywords are not counted here)."""
    t = (text or "").lower()
    score = sum(1 for signal in MILD_SIGNALS if signal in t)
    if _URL_RE.search(t):
        score += 1
    if _SHORTENER_RE.search(t):
        score += 2
    if _MONEY_RE.search(t):
        score += 1
    if t.count("!") >= 3:
        score += 1
    return score


def is_probably_spam(text: Optional[str]) -> bool:
    """
    True when the text looks like a spam or scam DM.
    Empty or whitespace-only text is never spam.
    """
    t = (text or "").lower()
    if not t.strip():
        return False
    if any(signal in t for signal in SEVERE_SIGNALS):
        return True
    return spam_score(t) >= SPAM_THRESHOLD
