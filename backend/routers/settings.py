import pytz
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.config import parse_clock_time
from backend.security import require_admin, require_staff
from database.db import get_settings, save_settings

router = APIRouter(dependencies=[Depends(require_staff)])


class SettingsUpdate(BaseModel):
    school_name: str | None = None
    work_start_time: str | None = None
    work_end_time: str | None = None
    timezone: str | None = None


def _settings_to_dict(row) -> dict:
    return {
        "school_name": row[0],
        "work_start_time": row[1],
        "work_end_time": row[2],
        "timezone": row[3],
        "updated_at": row[4],
    }


@router.get("/settings")
def read_settings():
    return _settings_to_dict(get_settings())


@router.put("/settings", dependencies=[Depends(require_admin)])
def write_settings(payload: SettingsUpdate):
    current = _settings_to_dict(get_settings())
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    merged = {**current, **changes}

    school_name = (merged["school_name"] or "").strip()
    if not school_name:
        raise HTTPException(status_code=400, detail="School name is required.")

    start = parse_clock_time(merged["work_start_time"])
    end = parse_clock_time(merged["work_end_time"])
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Work hours must be HH:MM or HH:MM:SS.")

    timezone = (merged["timezone"] or "").strip()
    try:
        pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {timezone}")

    row = save_settings(
        school_name=school_name,
        work_start_time=start.strftime("%H:%M:%S"),
        work_end_time=end.strftime("%H:%M:%S"),
        timezone=timezone,
    )
    return _settings_to_dict(row)
