import re
from typing import Iterable


def match_any_keyword(text: str, keywords: Iterable[str]) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf'\b{re.escape(kw)}\b', lower) for kw in keywords)


def find_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    """Return every keyword present in text as a whole word, in keyword order.

    Duplicates in `keywords` are reported once.
    """
    lower = text.lower()
    found = []
    for kw in keywords:
        if kw in found:
            continue
        if re.search(rf'\b{re.escape(kw)}\b', lower):
            found.append(kw)
    return found


SENTINEL_VALUES = {
    "not provided", "n/a", "na", "unknown", "none", "tbd",
    "not", "just", "calling", "ringing", "the", "a", "an",
    "here", "looking", "after", "trying", "phoning",
}


def validate_name(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    # Reject phone numbers used as names
    if re.match(r"^[\d+\-() ]{7,}$", cleaned):
        return ""
    if not re.match(r"^[A-Za-z][A-Za-z' \-]*$", cleaned):
        return ""
    if len(cleaned) < 2:
        return ""
    return cleaned


# --- UK postcodes ---

FULL_POSTCODE = re.compile(r"^[A-Z]{1,2}\d[A-Z\d]?\s?\d[A-Z]{2}$", re.IGNORECASE)
OUTWARD_POSTCODE = re.compile(r"^[A-Z]{1,2}\d[A-Z\d]?$", re.IGNORECASE)


def normalize_postcode(value: str) -> str:
    """Uppercase, drop spaces, then put one space before the inward code.

    Example: "sw112ab" -> "SW11 2AB". Outward-only codes come back bare ("SW11").
    """
    cleaned = re.sub(r"\s+", "", value).upper()
    if len(cleaned) > 4:
        return f"{cleaned[:-3]} {cleaned[-3:]}"
    return cleaned


def is_valid_uk_postcode(value: str | None) -> bool:
    if not value:
        return False
    cleaned = value.strip()
    return bool(FULL_POSTCODE.match(cleaned) or OUTWARD_POSTCODE.match(cleaned))


# --- UK phone numbers ---

_PHONE_SHAPE = re.compile(r"^(?:\+44\d{10}|0\d{10,11})$")


def validate_phone(value: str | None) -> str:
    """Strip spacing from a UK number and return it, or "" if it isn't one."""
    if not value:
        return ""
    cleaned = re.sub(r"[\s\-()]", "", value)
    if _PHONE_SHAPE.match(cleaned):
        return cleaned
    return ""
