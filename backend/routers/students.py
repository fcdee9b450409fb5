import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from backend.security import require_admin, require_staff
from backend.services.badges import badge_payload, render_badge_png
from database.db import (
    STUDENT_STATUSES,
    StudentStatus,
    add_student,
    delete_student,
    get_all_students,
    get_student_by_id,
    update_student,
)

router = APIRouter(dependencies=[Depends(require_staff)])


class StudentCreate(BaseModel):
    name: str
    class_name: str | None = None
    phone: str | None = None
    status: StudentStatus = "active"
    id: str | None = None


class StudentUpdate(BaseModel):
    name: str | None = None
    class_name: str | None = None
    phone: str | None = None
    status: StudentStatus | None = None


def _student_to_dict(row) -> dict:
    return {
        "id": row[0],
        "name": row[1],
        "class_name": row[2],
        "phone": row[3],
        "status": row[4],
        "created_at": row[5],
    }


@router.get("/students")
def students(search: str | None = None, status: str | None = None):
    if status and status not in STUDENT_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status filter.")
    rows = get_all_students(search=search, status=status)
    return [_student_to_dict(r) for r in rows]


@router.get("/students/{student_id}")
def student_detail(student_id: str):
    row = get_student_by_id(student_id)
    if not row:
        raise HTTPException(status_code=404, detail="Student not found.")
    return _student_to_dict(row)


@router.post("/students", dependencies=[Depends(require_admin)])
def create_student(payload: StudentCreate):
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Student name is required.")

    student_id = payload.id.strip() if payload.id else None
    try:
        new_id = add_student(
            name,
            class_name=(payload.class_name or "").strip() or None,
            phone=(payload.phone or "").strip() or None,
            status=payload.status,
            student_id=student_id or None,
        )
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Student ID already exists.")

    return _student_to_dict(get_student_by_id(new_id))


@router.patch("/students/{student_id}", dependencies=[Depends(require_admin)])
def edit_student(student_id: str, payload: StudentUpdate):
    fields = payload.model_dump(exclude_unset=True)
    if "name" in fields:
        if not (fields["name"] or "").strip():
            raise HTTPException(status_code=400, detail="Student name is required.")
        fields["name"] = fields["name"].strip()
    if "status" in fields and fields["status"] is None:
        raise HTTPException(status_code=400, detail="Status cannot be empty.")

    if not update_student(student_id, **fields):
        raise HTTPException(status_code=404, detail="Student not found.")
    return _student_to_dict(get_student_by_id(student_id))


@router.delete("/students/{student_id}", dependencies=[Depends(require_admin)])
def remove_student(student_id: str):
    if not delete_student(student_id):
        raise HTTPException(status_code=404, detail="Student not found.")
    return {"ok": True}


@router.get("/students/{student_id}/qr")
def student_qr(student_id: str):
    row = get_student_by_id(student_id)
    if not row:
        raise HTTPException(status_code=404, detail="Student not found.")

    png = render_badge_png(badge_payload(row[0], row[1], row[2]))
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="QR_{row[0][:8].upper()}.png"'},
    )
