import asyncio
import json
import time as wall_time
from datetime import date, datetime, time

import pytest
import pytz

from backend.services.checkin import (
    AttendanceRecord,
    CheckInPipeline,
    Student,
    parse_scan_payload,
)
from backend.services.feedback import SUCCESS_TONE, WARNING_TONE
from backend.services.ledger import SessionLedger


class FakeRoster:
    def __init__(self, *students: Student):
        self.students = {s.id: s for s in students}
        self.lookups: list[str] = []
        self.fail_with: Exception | None = None

    async def find(self, student_id):
        self.lookups.append(student_id)
        if self.fail_with:
            raise self.fail_with
        return self.students.get(student_id)


class FakeStore:
    def __init__(self):
        self.rows: dict[tuple[str, str], AttendanceRecord] = {}
        self.writes = 0
        self.fail_with: Exception | None = None
        self.delay = 0.0
        self.commit_delay = 0.0

    async def exists(self, student_id, day):
        if self.fail_with:
            raise self.fail_with
        if self.delay:
            await asyncio.sleep(self.delay)
        return (student_id, day.isoformat()) in self.rows

    async def upsert(self, student_id, day, present, note):
        if self.commit_delay:
            # a worker thread keeps running after the caller gives up on it
            return await asyncio.to_thread(self._commit_later, student_id, day, present, note)
        return self._commit(student_id, day, present, note)

    def _commit_later(self, student_id, day, present, note):
        wall_time.sleep(self.commit_delay)
        return self._commit(student_id, day, present, note)

    def _commit(self, student_id, day, present, note):
        self.writes += 1
        key = (student_id, day.isoformat())
        record = AttendanceRecord(
            id=len(self.rows) + 1,
            student_id=student_id,
            date=day.isoformat(),
            present=present,
            notes=note,
            created_at=None,
        )
        self.rows[key] = record
        return record


class FakeSchedule:
    def __init__(self, start=time(8, 0), end=time(14, 0), tz=None):
        self.window = (start, end)
        self.tz = tz
        self.fail_with: Exception | None = None

    async def current_window(self):
        if self.fail_with:
            raise self.fail_with
        return self.window

    async def timezone(self):
        return self.tz


class ManualClock:
    def __init__(self, now: datetime):
        self.now = now
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.now


class ManualMonotonic:
    def __init__(self):
        self.value = 100.0

    def __call__(self):
        return self.value


S1 = Student(id="S1", name="Sara Ali")
S2 = Student(id="S2", name="Omar Said", status="suspended")
S3 = Student(id="S3", name="Lina Haddad")
S4 = Student(id="S4", name="Yousef Nabil", status="expelled")


def _pipeline(
    *, now=datetime(2026, 3, 2, 9, 0), store=None, schedule=None, roster=None, clock=None,
    cooldown=0.0, timeout=5.0,
):
    monotonic = ManualMonotonic()
    pipeline = CheckInPipeline(
        roster=roster or FakeRoster(S1, S2, S3, S4),
        store=store or FakeStore(),
        schedule=schedule or FakeSchedule(),
        clock=clock or ManualClock(now),
        ledger=SessionLedger(),
        cooldown_seconds=cooldown,
        timeout_seconds=timeout,
        monotonic=monotonic,
    )
    return pipeline, monotonic


def _scan(pipeline, text):
    return asyncio.run(pipeline.handle_scan(text))


# -----------------------------
# Payload parsing
# -----------------------------
def test_parse_structured_payload_prefers_student_id():
    parsed = parse_scan_payload(json.dumps({"studentId": "S1", "id": "other", "name": "Sara"}))
    assert parsed.kind == "structured"
    assert parsed.student_id == "S1"


def test_parse_structured_payload_falls_back_to_id_field():
    parsed = parse_scan_payload('{"id": 42}')
    assert parsed.kind == "structured"
    assert parsed.student_id == "42"


def test_parse_structured_payload_keeps_identifier_verbatim():
    parsed = parse_scan_payload('{"studentId": " S1 "}')
    assert parsed.kind == "structured"
    assert parsed.student_id == " S1 "


def test_structured_id_with_whitespace_is_not_matched_to_trimmed_student():
    pipeline, _ = _pipeline()
    result = _scan(pipeline, '{"studentId": " S1 "}')
    assert result.outcome.kind == "unknown_student"
    assert result.outcome.student_id == " S1 "
    assert pipeline.roster.lookups == [" S1 "]


@pytest.mark.parametrize("text", ["S1", "UNKNOWN-ID", "{not json", "[1, 2]", '"S1"', '{"name": "x"}', "42"])
def test_parse_falls_back_to_raw_text(text):
    parsed = parse_scan_payload(text)
    assert parsed.kind == "raw"
    assert parsed.student_id == text


# -----------------------------
# Stage ordering and outcomes
# -----------------------------
def test_active_student_in_window_succeeds_then_duplicate():
    store = FakeStore()
    pipeline, _ = _pipeline(store=store)

    first = _scan(pipeline, "S1")
    assert first.outcome.kind == "success"
    assert first.outcome.record.notes == "QR Scan"
    assert first.outcome.date == "2026-03-02"

    second = _scan(pipeline, "S1")
    assert second.outcome.kind == "already_present"
    assert store.writes == 1
    assert list(store.rows) == [("S1", "2026-03-02")]


def test_structured_badge_payload_checks_in_student():
    pipeline, _ = _pipeline()
    result = _scan(pipeline, json.dumps({"studentId": "S3", "name": "Lina Haddad", "className": "5A"}))
    assert result.outcome.kind == "success"
    assert result.outcome.student_id == "S3"


def test_unknown_student_never_writes():
    store = FakeStore()
    pipeline, _ = _pipeline(store=store)

    result = _scan(pipeline, "UNKNOWN-ID")
    assert result.outcome.kind == "unknown_student"
    assert result.outcome.student_id == "UNKNOWN-ID"
    assert store.writes == 0
    assert result.ledger_entry.student_name == "Unknown student"


@pytest.mark.parametrize("student_id,status", [("S2", "suspended"), ("S4", "expelled")])
def test_inactive_student_rejected_regardless_of_time(student_id, status):
    store = FakeStore()
    # outside the window too: disciplinary check comes first
    pipeline, _ = _pipeline(store=store, now=datetime(2026, 3, 2, 7, 0))

    result = _scan(pipeline, student_id)
    assert result.outcome.kind == "inactive_student"
    assert result.outcome.student_status == status
    assert store.writes == 0


def test_scan_before_window_is_out_of_window():
    store = FakeStore()
    pipeline, _ = _pipeline(store=store, now=datetime(2026, 3, 2, 7, 0))

    result = _scan(pipeline, "S3")
    assert result.outcome.kind == "out_of_window"
    assert result.outcome.window_start == "08:00"
    assert result.outcome.window_end == "14:00"
    assert store.writes == 0


@pytest.mark.parametrize("clock_time", [time(8, 0), time(14, 0)])
def test_window_bounds_are_inclusive(clock_time):
    pipeline, _ = _pipeline(now=datetime.combine(date(2026, 3, 2), clock_time))
    assert _scan(pipeline, "S1").outcome.kind == "success"


@pytest.mark.parametrize("clock_time", [time(7, 59, 59), time(14, 0, 1)])
def test_just_outside_window_is_rejected(clock_time):
    pipeline, _ = _pipeline(now=datetime.combine(date(2026, 3, 2), clock_time))
    assert _scan(pipeline, "S1").outcome.kind == "out_of_window"


def test_window_crossing_midnight():
    schedule = FakeSchedule(start=time(22, 0), end=time(2, 0))
    late, _ = _pipeline(schedule=schedule, now=datetime(2026, 3, 2, 23, 30))
    early, _ = _pipeline(schedule=schedule, now=datetime(2026, 3, 2, 1, 0))
    noon, _ = _pipeline(schedule=schedule, now=datetime(2026, 3, 2, 12, 0))
    assert _scan(late, "S1").outcome.kind == "success"
    assert _scan(early, "S1").outcome.kind == "success"
    assert _scan(noon, "S1").outcome.kind == "out_of_window"


def test_repeated_scans_keep_exactly_one_record():
    store = FakeStore()
    pipeline, _ = _pipeline(store=store)

    kinds = [_scan(pipeline, "S1").outcome.kind for _ in range(5)]
    assert kinds == ["success"] + ["already_present"] * 4
    assert len(store.rows) == 1
    assert store.writes == 1


def test_next_day_scan_records_again():
    store = FakeStore()
    pipeline, _ = _pipeline(store=store)
    assert _scan(pipeline, "S1").outcome.kind == "success"

    pipeline.clock.now = datetime(2026, 3, 3, 9, 0)
    assert _scan(pipeline, "S1").outcome.kind == "success"
    assert len(store.rows) == 2


def test_store_failure_yields_processing_error_and_recovers():
    store = FakeStore()
    store.fail_with = ConnectionError("backend unreachable")
    pipeline, _ = _pipeline(store=store)

    result = _scan(pipeline, "S1")
    assert result.outcome.kind == "processing_error"
    assert result.ledger_entry.outcome_class == "error"

    store.fail_with = None
    assert _scan(pipeline, "S1").outcome.kind == "success"
    assert pipeline.state == "idle"


def test_slow_store_times_out_as_processing_error():
    store = FakeStore()
    store.delay = 1.0
    pipeline, _ = _pipeline(store=store, timeout=0.05)

    result = _scan(pipeline, "S1")
    assert result.outcome.kind == "processing_error"
    assert store.writes == 0


def test_roster_failure_yields_processing_error():
    roster = FakeRoster(S1)
    roster.fail_with = RuntimeError("roster offline")
    store = FakeStore()
    pipeline, _ = _pipeline(roster=roster, store=store)

    result = _scan(pipeline, "S1")
    assert result.outcome.kind == "processing_error"
    assert result.ledger_entry.student_name == "Processing error"
    assert store.writes == 0
    assert pipeline.state == "idle"


def test_schedule_failure_yields_processing_error():
    schedule = FakeSchedule()
    schedule.fail_with = RuntimeError("settings unreadable")
    store = FakeStore()
    pipeline, _ = _pipeline(schedule=schedule, store=store)

    result = _scan(pipeline, "S1")
    assert result.outcome.kind == "processing_error"
    assert result.ledger_entry.outcome_class == "error"
    assert store.writes == 0


def test_blocking_clock_is_bounded_by_timeout():
    def slow_clock():
        wall_time.sleep(0.5)
        return datetime(2026, 3, 2, 9, 0)

    store = FakeStore()
    pipeline, _ = _pipeline(clock=slow_clock, store=store, timeout=0.05)

    result = _scan(pipeline, "S1")
    assert result.outcome.kind == "processing_error"
    assert result.outcome.message == "Check-in timed out."
    assert store.writes == 0


def test_upsert_that_commits_after_timeout_reads_as_present_next_time():
    store = FakeStore()
    store.commit_delay = 0.3
    pipeline, _ = _pipeline(store=store, timeout=0.05)

    # asyncio.run waits for the worker thread before returning
    assert _scan(pipeline, "S1").outcome.kind == "processing_error"
    assert store.writes == 1

    store.commit_delay = 0.0
    assert _scan(pipeline, "S1").outcome.kind == "already_present"
    assert len(store.rows) == 1


def test_manual_check_in_skips_parsing():
    store = FakeStore()
    pipeline, _ = _pipeline(store=store)

    result = asyncio.run(pipeline.handle_manual("S3"))
    assert result.outcome.kind == "success"
    assert result.outcome.record.notes == "Manual Entry"


# -----------------------------
# Clock and timezone
# -----------------------------
def test_clock_is_read_once_per_scan():
    clock = ManualClock(datetime(2026, 3, 2, 9, 0))
    pipeline, _ = _pipeline(clock=clock)

    result = _scan(pipeline, "S1")
    assert clock.calls == 1
    assert result.ledger_entry.time == result.outcome.checked_at == "09:00:00"


def test_aware_clock_is_converted_to_schedule_timezone():
    utc_six = datetime(2026, 3, 2, 6, 0, tzinfo=pytz.utc)
    riyadh = FakeSchedule(tz=pytz.timezone("Asia/Riyadh"))
    local, _ = _pipeline(clock=ManualClock(utc_six), schedule=riyadh)
    plain, _ = _pipeline(clock=ManualClock(utc_six))

    result = _scan(local, "S1")
    assert result.outcome.kind == "success"
    assert result.outcome.checked_at == "09:00:00"
    assert result.ledger_entry.time == "09:00:00"
    assert _scan(plain, "S1").outcome.kind == "out_of_window"


def test_local_date_decides_the_attendance_day():
    # 22:30 UTC on the 2nd is already the 3rd in Riyadh
    late_utc = datetime(2026, 3, 2, 22, 30, tzinfo=pytz.utc)
    schedule = FakeSchedule(start=time(0, 0), end=time(23, 59), tz=pytz.timezone("Asia/Riyadh"))
    pipeline, _ = _pipeline(clock=ManualClock(late_utc), schedule=schedule)

    result = _scan(pipeline, "S1")
    assert result.outcome.date == "2026-03-03"


# -----------------------------
# Debounce
# -----------------------------
def test_second_event_within_cooldown_is_dropped():
    store = FakeStore()
    pipeline, monotonic = _pipeline(store=store, cooldown=2.0)

    assert _scan(pipeline, "S1").outcome.kind == "success"
    assert pipeline.state == "cooling_down"
    assert _scan(pipeline, "S1") is None
    assert len(pipeline.ledger) == 1

    monotonic.value += 2.0
    assert pipeline.state == "idle"
    assert _scan(pipeline, "S1").outcome.kind == "already_present"
    assert len(pipeline.ledger) == 2


def test_event_during_processing_is_dropped():
    store = FakeStore()
    store.delay = 0.05
    pipeline, _ = _pipeline(store=store)

    async def both():
        first = asyncio.create_task(pipeline.handle_scan("S1"))
        await asyncio.sleep(0)
        assert pipeline.state == "processing"
        second = await pipeline.handle_scan("S3")
        return await first, second

    first, second = asyncio.run(both())
    assert first.outcome.kind == "success"
    assert second is None
    assert store.writes == 1


def test_cooldown_applies_after_rejections_too():
    pipeline, monotonic = _pipeline(cooldown=2.0)
    assert _scan(pipeline, "UNKNOWN-ID").outcome.kind == "unknown_student"
    assert _scan(pipeline, "S1") is None
    monotonic.value += 2.5
    assert _scan(pipeline, "S1").outcome.kind == "success"


# -----------------------------
# Ledger and feedback
# -----------------------------
def test_ledger_is_newest_first_with_counts():
    pipeline, _ = _pipeline()
    _scan(pipeline, "S1")
    _scan(pipeline, "S1")
    _scan(pipeline, "UNKNOWN-ID")

    entries = pipeline.ledger.all()
    assert [e.outcome_class for e in entries] == ["error", "duplicate", "success"]
    assert [e.id for e in entries] == [3, 2, 1]
    assert entries[-1].time == "09:00:00"
    assert pipeline.ledger.counts() == {"success": 1, "duplicate": 1, "error": 1, "total": 3}


def test_feedback_tones_distinguish_success():
    pipeline, _ = _pipeline()
    ok = _scan(pipeline, "S1")
    dup = _scan(pipeline, "S1")
    bad = _scan(pipeline, "S2")

    assert ok.feedback.tone == SUCCESS_TONE
    assert ok.feedback.badge == "green"
    assert dup.feedback.tone == WARNING_TONE
    assert dup.feedback.badge == "yellow"
    assert bad.feedback.badge == "red"
    assert "suspended" in bad.feedback.title
