import asyncio
import json
import logging
import time as monotonic_time
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from typing import Any, Callable, Literal, Protocol

from backend.services.feedback import Feedback, build_feedback
from backend.services.ledger import LedgerEntry, SessionLedger

logger = logging.getLogger(__name__)

OutcomeKind = Literal[
    "success",
    "already_present",
    "out_of_window",
    "inactive_student",
    "unknown_student",
    "processing_error",
]
PayloadKind = Literal["structured", "raw", "manual"]
PipelineState = Literal["idle", "processing", "cooling_down"]

SCAN_NOTE = "QR Scan"
MANUAL_NOTE = "Manual Entry"


# -----------------------------
# Collaborator contracts
# -----------------------------
@dataclass(frozen=True)
class Student:
    id: str
    name: str
    status: str = "active"
    class_name: str | None = None


@dataclass(frozen=True)
class AttendanceRecord:
    id: int | None
    student_id: str
    date: str
    present: bool
    notes: str | None
    created_at: str | None


class RosterLookup(Protocol):
    async def find(self, student_id: str) -> Student | None: ...


class AttendanceStore(Protocol):
    async def exists(self, student_id: str, day: date) -> bool: ...

    async def upsert(
        self, student_id: str, day: date, present: bool, note: str | None
    ) -> AttendanceRecord: ...


class SchedulePolicy(Protocol):
    async def current_window(self) -> tuple[time, time]: ...

    async def timezone(self) -> tzinfo | None: ...


# -----------------------------
# Payload parsing
# -----------------------------
@dataclass(frozen=True)
class ScanPayload:
    kind: PayloadKind
    student_id: str


def parse_scan_payload(raw_text: str) -> ScanPayload:
    """
    Badges encode a JSON object (``{"studentId": ..., "name": ...}``); older
    cards carry the bare identifier. Anything that is not a JSON object with a
    usable ``studentId``/``id`` field is taken verbatim as the identifier.
    Identifiers are never trimmed; whitespace is part of the id.
    """
    try:
        data = json.loads(raw_text)
    except (TypeError, ValueError):
        return ScanPayload(kind="raw", student_id=raw_text)

    if isinstance(data, dict):
        for key in ("studentId", "id"):
            value = data.get(key)
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value) != "":
                return ScanPayload(kind="structured", student_id=str(value))

    return ScanPayload(kind="raw", student_id=raw_text)


# -----------------------------
# Outcomes
# -----------------------------
@dataclass(frozen=True)
class CheckInOutcome:
    kind: OutcomeKind
    student_id: str
    student_name: str | None = None
    student_status: str | None = None
    date: str | None = None
    checked_at: str | None = None
    window_start: str | None = None
    window_end: str | None = None
    record: AttendanceRecord | None = None
    message: str = ""

    @property
    def ledger_class(self) -> Literal["success", "duplicate", "error"]:
        if self.kind == "success":
            return "success"
        if self.kind == "already_present":
            return "duplicate"
        return "error"

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind,
            "student_id": self.student_id,
            "student_name": self.student_name,
            "student_status": self.student_status,
            "date": self.date,
            "checked_at": self.checked_at,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "message": self.message,
            "record": None,
        }
        if self.record is not None:
            payload["record"] = {
                "id": self.record.id,
                "student_id": self.record.student_id,
                "date": self.record.date,
                "present": self.record.present,
                "notes": self.record.notes,
                "created_at": self.record.created_at,
            }
        return payload


@dataclass(frozen=True)
class CheckInResult:
    outcome: CheckInOutcome
    feedback: Feedback
    ledger_entry: LedgerEntry


def _in_window(now_time: time, start: time, end: time) -> bool:
    # a window whose start is after its end wraps past midnight
    if start <= end:
        return start <= now_time <= end
    return now_time >= start or now_time <= end


# -----------------------------
# Pipeline
# -----------------------------
class CheckInPipeline:
    """
    Turns one decode event into exactly one classified outcome.

    Stages run strictly in order and stop at the first rejection:
    existence, disciplinary status, school-hours window, already present
    today, then the attendance upsert. While a scan is in flight, and for
    ``cooldown_seconds`` after it finishes, new events are dropped.
    """

    def __init__(
        self,
        *,
        roster: RosterLookup,
        store: AttendanceStore,
        schedule: SchedulePolicy,
        clock: Callable[[], datetime],
        ledger: SessionLedger | None = None,
        cooldown_seconds: float = 2.0,
        timeout_seconds: float | None = 10.0,
        monotonic: Callable[[], float] = monotonic_time.monotonic,
    ):
        self.roster = roster
        self.store = store
        self.schedule = schedule
        self.clock = clock
        self.ledger = ledger if ledger is not None else SessionLedger()
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self.timeout_seconds = timeout_seconds
        self._monotonic = monotonic
        self._processing = False
        self._ready_at = 0.0
        self._scan_time: datetime | None = None
        self._tz: tzinfo | None = None

    @property
    def state(self) -> PipelineState:
        if self._processing:
            return "processing"
        if self._monotonic() < self._ready_at:
            return "cooling_down"
        return "idle"

    async def handle_scan(self, raw_text: str) -> CheckInResult | None:
        """Process decoded text from the scanner. Returns None when the event was dropped."""
        if not self._acquire():
            logger.debug("Scan dropped while pipeline is %s", self.state)
            return None
        try:
            payload = parse_scan_payload(raw_text)
            return await self._run(payload.student_id, note=SCAN_NOTE)
        finally:
            self._release()

    async def handle_manual(self, student_id: str) -> CheckInResult | None:
        """Operator picked a student from the roster; the identifier is already resolved."""
        if not self._acquire():
            logger.debug("Manual check-in dropped while pipeline is %s", self.state)
            return None
        try:
            return await self._run(student_id, note=MANUAL_NOTE)
        finally:
            self._release()

    def _acquire(self) -> bool:
        # no await between the check and the set: atomic on the event loop
        if self.state != "idle":
            return False
        self._processing = True
        return True

    def _release(self) -> None:
        self._ready_at = self._monotonic() + self.cooldown_seconds
        self._processing = False

    async def _run(self, student_id: str, *, note: str) -> CheckInResult:
        self._scan_time = None
        try:
            if self.timeout_seconds:
                outcome = await asyncio.wait_for(
                    self._evaluate(student_id, note=note),
                    timeout=self.timeout_seconds,
                )
            else:
                outcome = await self._evaluate(student_id, note=note)
        except asyncio.TimeoutError:
            # an upsert already handed to a worker thread may still commit
            logger.error("Check-in for %r timed out after %ss", student_id, self.timeout_seconds)
            outcome = CheckInOutcome(
                kind="processing_error",
                student_id=student_id,
                message="Check-in timed out.",
            )
        except Exception:
            logger.exception("Check-in for %r failed", student_id)
            outcome = CheckInOutcome(
                kind="processing_error",
                student_id=student_id,
                message="Invalid code or processing error.",
            )
        return self._finish(outcome)

    async def _now(self) -> datetime:
        # the clock and the timezone lookup both run under the check-in timeout
        now = await asyncio.to_thread(self.clock)
        if now.tzinfo is not None:
            tz = await self.schedule.timezone()
            if tz is not None:
                self._tz = tz
                now = now.astimezone(tz)
        self._scan_time = now
        return now

    async def _evaluate(self, student_id: str, *, note: str) -> CheckInOutcome:
        student = await self.roster.find(student_id)
        if student is None:
            return CheckInOutcome(
                kind="unknown_student",
                student_id=student_id,
                message="Student is not registered.",
            )

        if student.status and student.status != "active":
            return CheckInOutcome(
                kind="inactive_student",
                student_id=student.id,
                student_name=student.name,
                student_status=student.status,
                message=f"Cannot record attendance for a {student.status} student.",
            )

        now = await self._now()
        today = now.date()
        start, end = await self.schedule.current_window()
        if not _in_window(now.time(), start, end):
            return CheckInOutcome(
                kind="out_of_window",
                student_id=student.id,
                student_name=student.name,
                date=today.isoformat(),
                checked_at=now.strftime("%H:%M:%S"),
                window_start=start.strftime("%H:%M"),
                window_end=end.strftime("%H:%M"),
                message="Outside school hours.",
            )

        if await self.store.exists(student.id, today):
            return CheckInOutcome(
                kind="already_present",
                student_id=student.id,
                student_name=student.name,
                date=today.isoformat(),
                checked_at=now.strftime("%H:%M:%S"),
                message="Attendance already recorded today.",
            )

        record = await self.store.upsert(student.id, today, True, note)
        return CheckInOutcome(
            kind="success",
            student_id=student.id,
            student_name=student.name,
            date=today.isoformat(),
            checked_at=now.strftime("%H:%M:%S"),
            record=record,
            message="Attendance recorded.",
        )

    def _finish(self, outcome: CheckInOutcome) -> CheckInResult:
        if outcome.kind == "success":
            logger.info("Check-in recorded for %s (%s)", outcome.student_id, outcome.student_name)
        elif outcome.kind != "processing_error":
            logger.warning("Check-in rejected for %s: %s", outcome.student_id, outcome.kind)

        feedback = build_feedback(outcome)
        entry = self.ledger.append(
            student_id=outcome.student_id,
            student_name=outcome.student_name or _fallback_name(outcome.kind),
            time=self._ledger_time(),
            outcome_class=outcome.ledger_class,
            outcome_kind=outcome.kind,
        )
        return CheckInResult(outcome=outcome, feedback=feedback, ledger_entry=entry)

    def _ledger_time(self) -> str:
        # scans that never reached the clock are stamped with the host time
        # in the last timezone the schedule reported
        stamp = self._scan_time or datetime.now(self._tz)
        return stamp.strftime("%H:%M:%S")


def _fallback_name(kind: OutcomeKind) -> str:
    if kind == "unknown_student":
        return "Unknown student"
    return "Processing error"
