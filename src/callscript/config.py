"""Startup configuration.

validate_config() checks the environment before the server accepts
connections, so a missing key fails at boot rather than mid-call. The
accessors below read tuning values with their defaults.
"""

import os
import sys
import logging

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./callscript.db"

REQUIRED_VARS: list[str] = []

OPTIONAL_VARS = [
    "CALLSCRIPT_DATABASE_URL",
    "OPENAI_API_KEY",
    "LOG_LEVEL",
]


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env or in the deployment environment.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def database_url() -> str:
    return os.getenv("CALLSCRIPT_DATABASE_URL") or DEFAULT_DATABASE_URL


def openai_api_key() -> str | None:
    return os.getenv("OPENAI_API_KEY") or None


def classifier_debounce_ms() -> int:
    return _int("CALLSCRIPT_CLASSIFIER_DEBOUNCE_MS", 500)


def tier1_min_confidence() -> int:
    return _int("CALLSCRIPT_TIER1_MIN_CONFIDENCE", 70)


def use_tier2() -> bool:
    """Tier 2 is on by default whenever there is a key to call it with."""
    return _bool("CALLSCRIPT_USE_TIER2", openai_api_key() is not None)


def stale_session_minutes() -> int:
    return _int("CALLSCRIPT_STALE_SESSION_MINUTES", 30)


def cleanup_interval_minutes() -> int:
    return _int("CALLSCRIPT_CLEANUP_INTERVAL_MINUTES", 5)


def db_retention_hours() -> int:
    return _int("CALLSCRIPT_DB_RETENTION_HOURS", 24)


def log_level() -> str:
    return (os.getenv("LOG_LEVEL") or "INFO").upper()


def port() -> int:
    return _int("PORT", 8765)
