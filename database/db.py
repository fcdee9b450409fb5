import hashlib
import hmac
import secrets
import sqlite3
import uuid
from typing import Any, Literal

from backend.config import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    DB_BUSY_TIMEOUT_SECONDS,
    DB_PATH,
    SCHOOL_NAME,
    TIMEZONE,
    WORK_END,
    WORK_START,
)


PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000

StudentStatus = Literal["active", "suspended", "expelled"]
STUDENT_STATUSES: set[str] = {"active", "suspended", "expelled"}

# admin: full dashboard; operator: scanner gate and roster lookup only
StaffRole = Literal["admin", "operator"]
STAFF_ROLES: set[str] = {"admin", "operator"}

_STUDENT_COLUMNS = "id, name, class_name, phone, status, created_at"
_ATTENDANCE_COLUMNS = "id, student_id, date, present, notes, created_at"


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def connect_db():
    conn = sqlite3.connect(
        str(DB_PATH),
        timeout=DB_BUSY_TIMEOUT_SECONDS,
        check_same_thread=False,
    )
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _ensure_default_admin(cursor: sqlite3.Cursor) -> None:
    username = (ADMIN_USERNAME or "").strip()
    password = (ADMIN_PASSWORD or "").strip()
    if not username or not password:
        return

    cursor.execute(
        """
        INSERT OR IGNORE INTO staff_users (username, password_hash, role)
        VALUES (?, ?, 'admin')
        """,
        (username, _hash_password(password)),
    )


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        class_name TEXT,
        phone TEXT,
        status TEXT NOT NULL DEFAULT 'active'
            CHECK (status IN ('active', 'suspended', 'expelled')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute(
        """
    CREATE TABLE IF NOT EXISTS staff_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'operator'
            CHECK (role IN ('admin', 'operator')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """
    )

    # one row per student per date
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        present INTEGER NOT NULL DEFAULT 1,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
        UNIQUE(student_id, date)
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS school_settings (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        school_name TEXT NOT NULL,
        work_start_time TEXT NOT NULL,   -- HH:MM:SS
        work_end_time TEXT NOT NULL,     -- HH:MM:SS
        timezone TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_attendance_date
        ON attendance (date)
        """
    )

    _ensure_default_admin(cursor)

    conn.commit()
    conn.close()


# -----------------------------
# Students
# -----------------------------
def get_all_students(search: str | None = None, status: str | None = None):
    clauses: list[str] = []
    params: list[Any] = []
    if search:
        clauses.append("(name LIKE ? OR id LIKE ? OR class_name LIKE ?)")
        pattern = f"%{search.strip()}%"
        params.extend([pattern, pattern, pattern])
    if status:
        clauses.append("status = ?")
        params.append(status)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_STUDENT_COLUMNS}
        FROM students
        {where}
        ORDER BY name
        """,
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return rows


def add_student(
    name: str,
    *,
    class_name: str | None = None,
    phone: str | None = None,
    status: StudentStatus = "active",
    student_id: str | None = None,
) -> str:
    new_id = student_id or uuid.uuid4().hex
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("""
            INSERT INTO students (id, name, class_name, phone, status)
            VALUES (?, ?, ?, ?, ?)
        """, (new_id, name, class_name, phone, status))
        conn.commit()
    finally:
        conn.close()
    return new_id


def get_student_by_id(student_id: str):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_STUDENT_COLUMNS}
        FROM students
        WHERE id = ?
    """, (student_id,))
    row = cur.fetchone()
    conn.close()
    return row


def update_student(student_id: str, **fields: Any) -> bool:
    """
    Update the given columns (name, class_name, phone, status) of one student.

    Returns False when the student does not exist.
    """
    allowed = {"name", "class_name", "phone", "status"}
    updates = {k: v for k, v in fields.items() if k in allowed}
    if not updates:
        return get_student_by_id(student_id) is not None

    assignments = ", ".join(f"{col} = ?" for col in updates)
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            f"UPDATE students SET {assignments} WHERE id = ?",
            (*updates.values(), student_id),
        )
        changed = cur.rowcount > 0
        conn.commit()
    finally:
        conn.close()
    return changed


def delete_student(student_id: str) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM students WHERE id = ?", (student_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


# -----------------------------
# Staff accounts
# -----------------------------
def add_staff_user(username: str, password: str, role: StaffRole = "operator") -> int:
    """Create a dashboard login; raises sqlite3.IntegrityError when the username is taken."""
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO staff_users (username, password_hash, role)
            VALUES (?, ?, ?)
            """,
            (username, _hash_password(password), role),
        )
        staff_id = int(cur.lastrowid)
        conn.commit()
    finally:
        conn.close()
    return staff_id


def get_all_staff_users():
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, username, role, created_at
        FROM staff_users
        ORDER BY username COLLATE NOCASE
    """)
    rows = cur.fetchall()
    conn.close()
    return rows


def verify_staff_credentials(username: str, password: str) -> dict | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, username, password_hash, role
        FROM staff_users
        WHERE username = ? COLLATE NOCASE
        """,
        (username,),
    )
    row = cur.fetchone()
    conn.close()

    if not row:
        return None

    staff_id, saved_username, password_hash, role = row
    if not _verify_password(password, password_hash):
        return None

    return {"id": staff_id, "username": saved_username, "role": role}


# -----------------------------
# Attendance
# -----------------------------
def attendance_exists(student_id: str, date: str) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT 1
        FROM attendance
        WHERE student_id = ? AND date = ?
        LIMIT 1
        """,
        (student_id, date),
    )
    found = cur.fetchone() is not None
    conn.close()
    return found


def upsert_attendance(student_id: str, date: str, present: bool = True, notes: str | None = None):
    """
    Insert or update the single attendance row for (student_id, date).

    The UNIQUE(student_id, date) constraint is the conflict target, so concurrent
    callers can never produce a second row for the same day.
    """
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO attendance (student_id, date, present, notes)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(student_id, date) DO UPDATE SET
                present = excluded.present,
                notes = excluded.notes
            """,
            (student_id, date, 1 if present else 0, notes),
        )
        cur.execute(
            f"""
            SELECT {_ATTENDANCE_COLUMNS}
            FROM attendance
            WHERE student_id = ? AND date = ?
            """,
            (student_id, date),
        )
        row = cur.fetchone()
        conn.commit()
    finally:
        conn.close()
    return row


def get_attendance_records(date: str | None = None, student_id: str | None = None):
    clauses: list[str] = []
    params: list[Any] = []
    if date:
        clauses.append("a.date = ?")
        params.append(date)
    if student_id:
        clauses.append("a.student_id = ?")
        params.append(student_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT
            a.id,
            a.student_id,
            s.name,
            s.class_name,
            a.date,
            a.present,
            a.notes,
            a.created_at
        FROM attendance a
        JOIN students s ON s.id = a.student_id
        {where}
        ORDER BY a.date DESC, a.created_at DESC, a.id DESC
        """,
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return rows


def update_attendance_record(log_id: int, *, present: bool | None = None, notes: str | None = None):
    updates: dict[str, Any] = {}
    if present is not None:
        updates["present"] = 1 if present else 0
    if notes is not None:
        updates["notes"] = notes

    conn = connect_db()
    cur = conn.cursor()
    try:
        if updates:
            assignments = ", ".join(f"{col} = ?" for col in updates)
            cur.execute(
                f"UPDATE attendance SET {assignments} WHERE id = ?",
                (*updates.values(), log_id),
            )
            conn.commit()
        cur.execute(
            f"""
            SELECT {_ATTENDANCE_COLUMNS}
            FROM attendance
            WHERE id = ?
            """,
            (log_id,),
        )
        row = cur.fetchone()
    finally:
        conn.close()
    return row


def delete_attendance_record(log_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM attendance WHERE id = ?", (log_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def get_daily_summary(date: str) -> dict:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT
            COUNT(*),
            COALESCE(SUM(CASE WHEN present = 1 THEN 1 ELSE 0 END), 0)
        FROM attendance
        WHERE date = ?
        """,
        (date,),
    )
    total, present = cur.fetchone()
    cur.execute("SELECT COUNT(*) FROM students WHERE status = 'active'")
    (active_students,) = cur.fetchone()
    conn.close()

    return {
        "date": date,
        "total": int(total),
        "present": int(present),
        "absent": int(total) - int(present),
        "active_students": int(active_students),
        "not_checked_in": max(0, int(active_students) - int(present)),
    }


def get_attendance_stats(student_id: str, start_date: str, end_date: str) -> dict:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT
            COUNT(*),
            COALESCE(SUM(CASE WHEN present = 1 THEN 1 ELSE 0 END), 0)
        FROM attendance
        WHERE student_id = ?
          AND date >= ?
          AND date <= ?
        """,
        (student_id, start_date, end_date),
    )
    total, present = cur.fetchone()
    conn.close()

    total = int(total)
    present = int(present)
    return {
        "total": total,
        "present": present,
        "absent": total - present,
        "percentage": (present / total) * 100 if total > 0 else 0,
    }


def clear_attendance() -> bool:
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("DELETE FROM attendance")
        conn.commit()
        return True
    except sqlite3.OperationalError:
        return False
    finally:
        conn.close()


# -----------------------------
# School settings
# -----------------------------
def _default_settings_row() -> tuple:
    return (
        SCHOOL_NAME,
        WORK_START.strftime("%H:%M:%S"),
        WORK_END.strftime("%H:%M:%S"),
        TIMEZONE,
        None,
    )


def get_settings():
    """
    Return (school_name, work_start_time, work_end_time, timezone, updated_at).

    Configured defaults are used only while no settings row (or table) exists;
    a locked or unreadable database raises sqlite3.OperationalError.
    """
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            SELECT school_name, work_start_time, work_end_time, timezone, updated_at
            FROM school_settings
            WHERE id = 1
            """
        )
        row = cur.fetchone()
    except sqlite3.OperationalError as e:
        if "no such table" not in str(e).lower():
            raise
        row = None
    finally:
        conn.close()
    return row or _default_settings_row()


def save_settings(
    *,
    school_name: str,
    work_start_time: str,
    work_end_time: str,
    timezone: str,
):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO school_settings (id, school_name, work_start_time, work_end_time, timezone)
        VALUES (1, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            school_name = excluded.school_name,
            work_start_time = excluded.work_start_time,
            work_end_time = excluded.work_end_time,
            timezone = excluded.timezone,
            updated_at = CURRENT_TIMESTAMP
        """,
        (school_name, work_start_time, work_end_time, timezone),
    )
    conn.commit()
    conn.close()
    return get_settings()
