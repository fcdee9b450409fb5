import os
import secrets
from datetime import time
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("CLASSDESK_DB_PATH", BASE_DIR / "database" / "classdesk.db"))
ADMIN_USERNAME = os.getenv("CLASSDESK_ADMIN_USERNAME", "admin").strip() or "admin"
ADMIN_PASSWORD = os.getenv("CLASSDESK_ADMIN_PASSWORD", "admin123").strip() or "admin123"
SIGNING_KEY = (
    os.getenv("CLASSDESK_SIGNING_KEY", "").strip()
    or secrets.token_urlsafe(32)
)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("CLASSDESK_AUTH_TOKEN_TTL_SECONDS", "43200"))
LOG_LEVEL = os.getenv("CLASSDESK_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def parse_clock_time(value: str | None) -> time | None:
    """Parse ``HH:MM`` or ``HH:MM:SS``; returns None when the text is not a valid time."""
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        hh = int(parts[0])
        mm = int(parts[1])
        ss = int(parts[2]) if len(parts) > 2 else 0
        return time(hh, mm, ss)
    except ValueError:
        return None


def _parse_time(value: str | None, fallback: time) -> time:
    return parse_clock_time(value) or fallback


def _parse_seconds(value: str | None, fallback: float) -> float:
    if not value:
        return fallback
    try:
        return max(0.0, float(value))
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("CLASSDESK_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("CLASSDESK_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("CLASSDESK_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept", "X-Session-Id"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("CLASSDESK_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("CLASSDESK_ENABLE_DEBUG_ENDPOINTS"), False)


# School defaults, used until an admin saves the settings row.
SCHOOL_NAME = os.getenv("CLASSDESK_SCHOOL_NAME", "Classdesk School").strip() or "Classdesk School"
WORK_START = _parse_time(os.getenv("CLASSDESK_WORK_START"), time(8, 0))
WORK_END = _parse_time(os.getenv("CLASSDESK_WORK_END"), time(14, 0))
TIMEZONE = os.getenv("CLASSDESK_TIMEZONE", "UTC").strip() or "UTC"

# Check-in pipeline
SCAN_COOLDOWN_SECONDS = _parse_seconds(os.getenv("CLASSDESK_SCAN_COOLDOWN_SECONDS"), 2.0)
SCAN_TIMEOUT_SECONDS = _parse_seconds(os.getenv("CLASSDESK_SCAN_TIMEOUT_SECONDS"), 10.0)
SCANNER_SESSION_TTL_SECONDS = int(os.getenv("CLASSDESK_SCANNER_SESSION_TTL_SECONDS", "43200"))

# How long a connection waits on a locked database before raising.
DB_BUSY_TIMEOUT_SECONDS = _parse_seconds(os.getenv("CLASSDESK_DB_BUSY_TIMEOUT_SECONDS"), 5.0)
