"""Rule-based extraction of call facts from transcript text.

Every extractor is total: no match means None (or TriState.UNKNOWN), never
an exception. Matching is case-insensitive and whole-word.
"""

import logging
import re
from typing import Callable

from callscript.session import CapturedInfo
from callscript.states import TriState
from callscript.transcript import caller_text
from callscript.validation import (
    match_any_keyword,
    normalize_postcode,
    validate_name,
    validate_phone,
)

logger = logging.getLogger(__name__)

MAX_JOB_LENGTH = 150

JOB_KEYWORDS = (
    # Plumbing
    "boiler", "tap", "taps", "leak", "leaking", "dripping", "plumbing",
    "toilet", "sink", "bath", "shower", "radiator", "radiators", "heating",
    "pipe", "pipes", "drain", "stopcock", "cistern", "flush", "overflow",
    # Electrical
    "electrical", "light", "lights", "socket", "sockets", "switch", "fuse",
    "wiring", "bulb", "extractor", "fan",
    # Carpentry
    "door", "doors", "shelf", "shelves", "cupboard", "cabinet", "wardrobe",
    "drawer", "handle", "hinge", "lock",
    # Walls and ceilings
    "painting", "paint", "plaster", "plastering", "tile", "tiles", "tiling",
    "grouting", "ceiling", "wall",
    # Outdoor
    "fence", "gate", "gutter", "roof", "window", "windows", "blind",
    "curtain", "shed", "decking", "patio",
    # Mounting
    "mount", "mounting", "tv mount", "mirror", "picture", "bracket", "rail", "hook",
    # General
    "repair", "fix", "replace", "install", "fit", "broken", "stuck", "jammed",
)

AREA_KEYWORDS = (
    "brixton", "clapham", "battersea", "wandsworth", "fulham", "chelsea",
    "kensington", "hammersmith", "shepherds bush", "notting hill",
    "paddington", "camden", "islington", "hackney", "shoreditch",
    "stratford", "greenwich", "lewisham", "peckham", "dulwich",
    "streatham", "tooting", "wimbledon", "putney", "richmond", "croydon",
    "bromley",
)

DECISION_MAKER_NEGATIVE = {
    "need to check with", "i'll have to ask", "i'm just getting quotes",
    "just getting quotes for", "he'll decide", "she'll decide",
    "they'll decide", "calling on behalf", "for my boss", "for my landlord",
    "i'm the tenant", "i rent", "checking for", "my manager",
}
DECISION_MAKER_POSITIVE = {
    "i'm the owner", "i own", "it's my", "it's mine", "my property",
    "my house", "my flat", "i can approve", "i make the decision",
    "i live there", "i'm the landlord", "owner myself",
}

REMOTE_INDICATORS = {
    "not local", "can't be there", "won't be there", "i live in",
    "i'm up in", "i'm down in", "abroad", "overseas", "miles away",
    "hours away", "different city", "out of town", "manchester",
    "birmingham", "leeds", "bristol", "scotland",
}
LOCAL_INDICATORS = {
    "i'll be there", "i can be there", "i live there", "i'm local",
    "round the corner", "nearby", "down the road", "can let you in",
    "i'll wait in", "i work from home", "i'll be in",
}

TENANT_INDICATORS = {
    "my tenant", "the tenant", "tenants", "renter", "letting to",
    "let to someone", "someone living there", "currently let",
}
EMPTY_INDICATORS = {
    "it's empty", "is empty", "sitting empty", "vacant", "between tenants", "just moved out",
    "nobody living there", "unoccupied", "ready for new tenant",
    "before tenant moves in",
}

_FULL_POSTCODE_IN_TEXT = re.compile(r"\b([A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2})\b", re.IGNORECASE)
_OUTWARD_POSTCODE_IN_TEXT = re.compile(r"\b([A-Z]{1,2}\d[A-Z\d]?)\b", re.IGNORECASE)
_PHONE_IN_TEXT = re.compile(r"(?<![\d+])(\+44[\d ]{10,13}|0[\d ]{10,13})(?!\d)")
_NAME_IN_TEXT = re.compile(
    r"\b(?:my name is|my name's|name's|i'm called)\s+([A-Za-z][A-Za-z'\-]*)(?:\s+([A-Za-z][A-Za-z'\-]*))?",
    re.IGNORECASE,
)
_SPEAKING_NAME_IN_TEXT = re.compile(
    r"\bthis is\s+([A-Za-z][A-Za-z'\-]*)(?:\s+([A-Za-z][A-Za-z'\-]*))?\s+speaking\b",
    re.IGNORECASE,
)
_LEADING_FILLER = re.compile(r"^(?:(?:hi|hello|hey|yeah|yes|so|um|uh|erm|well|right|okay|ok)\b[\s,]*)+", re.IGNORECASE)


def extract_job(text: str) -> str | None:
    """Return the first sentence mentioning a job, in the caller's own words."""
    if not text:
        return None
    for sentence in re.split(r"[.!?]+", text):
        if not match_any_keyword(sentence, JOB_KEYWORDS):
            continue
        cleaned = _LEADING_FILLER.sub("", sentence.strip())
        cleaned = re.sub(r"\s+", " ", cleaned).strip(" ,")
        if cleaned:
            return cleaned[:MAX_JOB_LENGTH]
    return None


def extract_postcode(text: str) -> str | None:
    """Most specific location found: full postcode, outward code, then area name."""
    if not text:
        return None
    full = _FULL_POSTCODE_IN_TEXT.search(text)
    if full:
        return normalize_postcode(full.group(1))

    outward = _OUTWARD_POSTCODE_IN_TEXT.search(text)
    if outward:
        return outward.group(1).upper()

    lower = text.lower()
    for area in AREA_KEYWORDS:
        if re.search(rf"\bin\s+(?:the\s+)?{re.escape(area)}\b", lower):
            return area.title()
    return None


def extract_phone(text: str) -> str | None:
    if not text:
        return None
    for match in _PHONE_IN_TEXT.finditer(text):
        phone = validate_phone(match.group(1))
        if phone:
            return phone
    return None


def extract_name(text: str) -> str | None:
    if not text:
        return None
    match = _NAME_IN_TEXT.search(text) or _SPEAKING_NAME_IN_TEXT.search(text)
    if not match:
        return None
    first = validate_name(match.group(1))
    if not first:
        return None
    parts = [first.capitalize()]
    # A second word only counts as a surname when the transcript capitalised it
    second = match.group(2)
    if second and second[0].isupper() and validate_name(second):
        parts.append(second)
    return " ".join(parts)


def _detect(text: str, first: set[str], first_value: TriState,
            second: set[str], second_value: TriState) -> TriState:
    if not text:
        return TriState.UNKNOWN
    if match_any_keyword(text, first):
        return first_value
    if match_any_keyword(text, second):
        return second_value
    return TriState.UNKNOWN


def detect_decision_maker(text: str) -> TriState:
    # Negations are checked first: "my house, but I need to check with my wife" is a no.
    return _detect(text, DECISION_MAKER_NEGATIVE, TriState.NO, DECISION_MAKER_POSITIVE, TriState.YES)


def detect_remote(text: str) -> TriState:
    return _detect(text, REMOTE_INDICATORS, TriState.YES, LOCAL_INDICATORS, TriState.NO)


def detect_tenant(text: str) -> TriState:
    # "between tenants" names tenants but means nobody is living there
    return _detect(text, EMPTY_INDICATORS, TriState.NO, TENANT_INDICATORS, TriState.YES)


def extract_info(transcript) -> CapturedInfo:
    """Run every extractor over a flat string or a list of speaker-tagged entries.

    For entries, only the caller's turns are considered.
    """
    text = caller_text(transcript)
    return CapturedInfo(
        job=extract_job(text),
        postcode=extract_postcode(text),
        name=extract_name(text),
        contact=extract_phone(text),
        is_decision_maker=detect_decision_maker(text),
        is_remote=detect_remote(text),
        has_tenant=detect_tenant(text),
    )


def extract_info_from_entries(entries: list) -> CapturedInfo:
    return extract_info(entries or [])


def extract_info_incremental(chunk: str, existing: CapturedInfo) -> CapturedInfo:
    """Merge facts from a new chunk into a copy of `existing`; first writer wins."""
    merged = existing.copy()
    merged.merge_missing(extract_info(chunk))
    return merged


class StreamingInfoExtractor:
    """Accumulates captured info across transcript chunks.

    Each chunk is extracted on its own and merged keep-first into the running
    result, then `on_update` receives a snapshot.
    """

    def __init__(self, on_update: Callable[[CapturedInfo], None] | None = None):
        self._on_update = on_update
        self._info = CapturedInfo()

    def add_chunk(self, text: str) -> CapturedInfo:
        if text and text.strip():
            self._info = extract_info_incremental(text, self._info)
        snapshot = self._info.copy()
        if self._on_update is not None:
            try:
                self._on_update(snapshot)
            except Exception:
                logger.exception("Info extractor update handler failed")
        return snapshot

    def get_current_info(self) -> CapturedInfo:
        return self._info.copy()

    def reset(self) -> None:
        self._info = CapturedInfo()
