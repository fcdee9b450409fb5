from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import require_admin
from database.db import (
    delete_attendance_record,
    get_attendance_records,
    get_attendance_stats,
    get_daily_summary,
    get_student_by_id,
    update_attendance_record,
)

router = APIRouter(dependencies=[Depends(require_admin)])


class AttendanceUpdate(BaseModel):
    present: bool | None = None
    notes: str | None = None


def _check_date(value: str, field: str) -> str:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}; expected YYYY-MM-DD.")
    return value


@router.get("/attendance")
def attendance(date: str | None = None, student_id: str | None = None):
    if date:
        _check_date(date, "date")
    rows = get_attendance_records(date, student_id)
    return [
        {
            "id": r[0],
            "student_id": r[1],
            "student_name": r[2],
            "class_name": r[3],
            "date": r[4],
            "present": bool(r[5]),
            "notes": r[6],
            "created_at": r[7],
        }
        for r in rows
    ]


@router.get("/attendance/summary")
def summary(date: str):
    return get_daily_summary(_check_date(date, "date"))


@router.get("/attendance/stats/{student_id}")
def stats(student_id: str, start: str, end: str):
    _check_date(start, "start")
    _check_date(end, "end")
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end.")
    if not get_student_by_id(student_id):
        raise HTTPException(status_code=404, detail="Student not found.")
    return {"student_id": student_id, "start": start, "end": end, **get_attendance_stats(student_id, start, end)}


@router.patch("/attendance/{log_id}")
def edit_attendance(log_id: int, payload: AttendanceUpdate):
    row = update_attendance_record(log_id, present=payload.present, notes=payload.notes)
    if not row:
        raise HTTPException(status_code=404, detail="Log entry not found.")
    return {
        "id": row[0],
        "student_id": row[1],
        "date": row[2],
        "present": bool(row[3]),
        "notes": row[4],
        "created_at": row[5],
    }


@router.delete("/attendance/{log_id}")
def delete_attendance(log_id: int):
    ok = delete_attendance_record(log_id)
    if not ok:
        raise HTTPException(status_code=404, detail="Log entry not found.")
    return {"ok": True}
