import asyncio
from datetime import date, datetime, time

import pytz

from backend.config import TIMEZONE, WORK_END, WORK_START, parse_clock_time
from backend.services.checkin import AttendanceRecord, Student
from database.db import (
    attendance_exists,
    get_settings,
    get_student_by_id,
    upsert_attendance,
)


def student_from_row(row) -> Student:
    student_id, name, class_name, _phone, status, _created_at = row
    return Student(id=str(student_id), name=name, status=status or "active", class_name=class_name)


def record_from_row(row) -> AttendanceRecord:
    log_id, student_id, day, present, notes, created_at = row
    return AttendanceRecord(
        id=int(log_id),
        student_id=str(student_id),
        date=str(day),
        present=bool(present),
        notes=notes,
        created_at=str(created_at) if created_at is not None else None,
    )


def schedule_from_settings(row) -> tuple[time, time]:
    _name, start_text, end_text, _tz, _updated = row
    start = parse_clock_time(start_text) or WORK_START
    end = parse_clock_time(end_text) or WORK_END
    return start, end


def timezone_from_settings(row):
    tz_name = row[3] or TIMEZONE
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        return pytz.timezone(TIMEZONE)


def utc_now() -> datetime:
    """Current instant; the pipeline converts it to the school's timezone."""
    return datetime.now(pytz.utc)


class SqliteRoster:
    async def find(self, student_id: str) -> Student | None:
        row = await asyncio.to_thread(get_student_by_id, student_id)
        if not row:
            return None
        return student_from_row(row)


class SqliteAttendanceStore:
    async def exists(self, student_id: str, day: date) -> bool:
        return await asyncio.to_thread(attendance_exists, student_id, day.isoformat())

    async def upsert(
        self, student_id: str, day: date, present: bool, note: str | None
    ) -> AttendanceRecord:
        row = await asyncio.to_thread(upsert_attendance, student_id, day.isoformat(), present, note)
        return record_from_row(row)


class SettingsSchedule:
    async def current_window(self) -> tuple[time, time]:
        row = await asyncio.to_thread(get_settings)
        return schedule_from_settings(row)

    async def timezone(self):
        row = await asyncio.to_thread(get_settings)
        return timezone_from_settings(row)
