from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from backend.services.checkin import CheckInOutcome

FeedbackLevel = Literal["success", "warning", "error"]
BadgeColor = Literal["green", "yellow", "red"]


@dataclass(frozen=True)
class Tone:
    frequency_hz: int
    waveform: Literal["sine", "sawtooth"]
    duration_seconds: float
    gain: float = 0.3


SUCCESS_TONE = Tone(frequency_hz=800, waveform="sine", duration_seconds=0.2)
WARNING_TONE = Tone(frequency_hz=400, waveform="sawtooth", duration_seconds=0.3)


@dataclass(frozen=True)
class Feedback:
    level: FeedbackLevel
    badge: BadgeColor
    title: str
    description: str
    tone: Tone

    def as_dict(self) -> dict:
        return asdict(self)


def build_feedback(outcome: "CheckInOutcome") -> Feedback:
    """Toast text, badge colour and tone for one outcome."""
    name = outcome.student_name or outcome.student_id

    if outcome.kind == "success":
        return Feedback("success", "green", "Attendance recorded", name, SUCCESS_TONE)
    if outcome.kind == "already_present":
        return Feedback(
            "warning",
            "yellow",
            "Already checked in",
            f"{name} - already recorded today",
            WARNING_TONE,
        )
    if outcome.kind == "inactive_student":
        return Feedback(
            "error",
            "red",
            f"Cannot check in a {outcome.student_status} student",
            f"Student: {name}",
            WARNING_TONE,
        )
    if outcome.kind == "out_of_window":
        return Feedback(
            "error",
            "red",
            "Outside school hours",
            f"School hours: {outcome.window_start} to {outcome.window_end}",
            WARNING_TONE,
        )
    if outcome.kind == "unknown_student":
        return Feedback(
            "error",
            "red",
            "Student not found",
            f"Student ID: {outcome.student_id}",
            WARNING_TONE,
        )
    return Feedback(
        "error",
        "red",
        "Invalid QR code or processing error",
        outcome.message or "Please try again.",
        WARNING_TONE,
    )
