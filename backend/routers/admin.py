import sqlite3

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import require_admin
from backend.services.scanner_sessions import reset_sessions
from database.db import StaffRole, add_staff_user, clear_attendance, get_all_staff_users

router = APIRouter(dependencies=[Depends(require_admin)])


class StaffCreate(BaseModel):
    username: str
    password: str
    role: StaffRole = "operator"


@router.get("/admin/staff")
def list_staff():
    return [
        {"id": r[0], "username": r[1], "role": r[2], "created_at": r[3]}
        for r in get_all_staff_users()
    ]


@router.post("/admin/staff")
def create_staff(payload: StaffCreate):
    username = payload.username.strip()
    password = payload.password.strip()
    if not username or not password:
        raise HTTPException(status_code=400, detail="Username and password are required.")

    try:
        staff_id = add_staff_user(username, password, payload.role)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Username already exists.")
    return {"id": staff_id, "username": username, "role": payload.role}


@router.post("/admin/reset/attendance")
def reset_attendance():
    ok = clear_attendance()
    if not ok:
        raise HTTPException(status_code=400, detail="Attendance table not found. Check DB schema.")
    # ledgers describe check-ins that no longer exist
    reset_sessions()
    return {"ok": True, "message": "Attendance records cleared"}
