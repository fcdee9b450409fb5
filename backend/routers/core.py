from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    DB_PATH,
    ENABLE_DEBUG_ENDPOINTS,
    SCAN_COOLDOWN_SECONDS,
    SCAN_TIMEOUT_SECONDS,
)
from backend.security import require_admin
from backend.services.stores import schedule_from_settings
from database.db import get_settings

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: dict = Depends(require_admin)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/schedule")
def schedule_config():
    row = get_settings()
    start, end = schedule_from_settings(row)
    return {
        "work_start_time": start.strftime("%H:%M:%S"),
        "work_end_time": end.strftime("%H:%M:%S"),
        "timezone": row[3],
        "scan_cooldown_seconds": SCAN_COOLDOWN_SECONDS,
        "scan_timeout_seconds": SCAN_TIMEOUT_SECONDS,
    }
