import threading
import time
from datetime import datetime

from backend.config import (
    SCAN_COOLDOWN_SECONDS,
    SCAN_TIMEOUT_SECONDS,
    SCANNER_SESSION_TTL_SECONDS,
)
from backend.services.checkin import CheckInPipeline
from backend.services.stores import (
    SettingsSchedule,
    SqliteAttendanceStore,
    SqliteRoster,
    utc_now,
)

DEFAULT_SESSION_ID = "default"

# -----------------------------
# Scanner sessions (in-memory)
# -----------------------------
SESSIONS_LOCK = threading.Lock()
_SESSIONS: dict[str, dict] = {}


def _clock() -> datetime:
    return utc_now()


def _new_pipeline() -> CheckInPipeline:
    return CheckInPipeline(
        roster=SqliteRoster(),
        store=SqliteAttendanceStore(),
        schedule=SettingsSchedule(),
        clock=_clock,
        cooldown_seconds=SCAN_COOLDOWN_SECONDS,
        timeout_seconds=SCAN_TIMEOUT_SECONDS,
    )


def _cleanup_sessions(now: float) -> None:
    expired = [
        k for k, v in _SESSIONS.items()
        if now - float(v["updated_at"]) > SCANNER_SESSION_TTL_SECONDS
    ]
    for k in expired:
        _SESSIONS.pop(k, None)


def _session_key(session_id: str | None) -> str:
    return (session_id or "").strip() or DEFAULT_SESSION_ID


def get_pipeline(session_id: str | None) -> CheckInPipeline:
    """Return the pipeline owned by a scanner session, creating it on first use."""
    key = _session_key(session_id)
    now = time.monotonic()
    with SESSIONS_LOCK:
        _cleanup_sessions(now)
        entry = _SESSIONS.get(key)
        if entry is None:
            entry = {"pipeline": _new_pipeline(), "updated_at": now}
            _SESSIONS[key] = entry
        else:
            entry["updated_at"] = now
        return entry["pipeline"]


def end_session(session_id: str | None) -> bool:
    key = _session_key(session_id)
    with SESSIONS_LOCK:
        entry = _SESSIONS.pop(key, None)
    if entry is None:
        return False
    entry["pipeline"].ledger.clear()
    return True


def reset_sessions() -> None:
    with SESSIONS_LOCK:
        _SESSIONS.clear()
