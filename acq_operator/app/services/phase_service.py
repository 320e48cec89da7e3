"""
Tag/phase resolver: lead_status strings and tag names -> pipeline phase, temperature, idea bucket.
Pure functions; tag storage lives in tag_service.
"""
import re
from typing import Iterable, Optional

from app.utils.text import normalize_name

DEFAULT_PHASE = "open"

# First match wins, in this order.
PHASE_ORDER: tuple[str, ...] = (
    "downsell",
    "qualified",
    "disqualified",
    "no_show",
    "booked_call",
    "follow_up",
    "new_lead",
    "closed_won",
    "closed_lost",
)

PHASE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "downsell": ("downsell",),
    "qualified": ("qualified",),
    "disqualified": ("disqualified", "unqualified"),
    "no_show": ("no show", "no-show", "noshow"),
    "booked_call": ("book", "appointment"),
    "follow_up": ("follow",),
    "new_lead": ("new lead",),
    "closed_won": ("won", "closed"),
    "closed_lost": ("lost",),
}

# A phase keyword does not count when one of these is also present.
PHASE_EXCLUSIONS: dict[str, tuple[str, ...]] = {
    "qualified": ("disqualified", "unqualified"),
    "closed_won": ("lost",),
}

IDEA_BUCKETS: tuple[str, ...] = ("objections", "pain_points", "case_studies", "mistakes", "how_to")
DEFAULT_BUCKET = "pain_points"

_BUCKET_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("objection", "objections"),
    ("pain", "pain_points"),
    ("case", "case_studies"),
    ("mistake", "mistakes"),
    ("how", "how_to"),
)

_WS_RE = re.compile(r"\s+")
MAX_SLUG_LEN = 48


def normalize_phase(raw: Optional[str]) -> str:
    """
    Map a free-text status/tag name to a phase token.
    Empty -> 'open'; unrecognised -> whitespace-to-underscore slug (<= 48 chars).
    """
    s = (raw or "").strip().lower()
    if not s:
        return DEFAULT_PHASE
    for phase in PHASE_ORDER:
        if any(excluded in s for excluded in PHASE_EXCLUSIONS.get(phase, ())):
            continue
        if any(keyword in s for keyword in PHASE_KEYWORDS[phase]):
            return phase
    return _WS_RE.sub("_", s)[:MAX_SLUG_LEN]


def is_known_phase(phase: str) -> bool:
    return phase in PHASE_ORDER


def resolve_phase(tag_names: Iterable[Optional[str]], default: str = DEFAULT_PHASE) -> str:
    """
    Resolve many tags to one phase: lowest PHASE_ORDER index among recognised phases.
    Tags that do not map to the vocabulary are ignored; none recognised -> default.
    """
    best: Optional[str] = None
    for name in tag_names:
        phase = normalize_phase(name)
        if not is_known_phase(phase):
            continue
        if best is None or PHASE_ORDER.index(phase) < PHASE_ORDER.index(best):
            best = phase
    return best if best is not None else default


def conversation_phase(lead_status: Optional[str], tag_names: Iterable[Optional[str]]) -> str:
    """Tag phases override lead_status; lead_status is the fallback (default 'open')."""
    return resolve_phase(tag_names, default=normalize_phase(lead_status or DEFAULT_PHASE))


def infer_temperature(tag_names: Iterable[Optional[str]]) -> str:
    """hot | warm | cold | none from tag names; hot beats warm beats cold."""
    normalized = {normalize_name(name) for name in tag_names}
    if "hot" in normalized or "hot lead" in normalized:
        return "hot"
    if "warm" in normalized or "warm lead" in normalized:
        return "warm"
    if "cold" in normalized or "cold lead" in normalized:
        return "cold"
    return "none"


def normalize_bucket(raw: Optional[str]) -> str:
    """Content idea bucket; default pain_points."""
    s = (raw or "").strip().lower()
    for keyword, bucket in _BUCKET_KEYWORDS:
        if keyword in s:
            return bucket
    return DEFAULT_BUCKET
