import itertools
import threading
from dataclasses import asdict, dataclass
from typing import Literal

LedgerClass = Literal["success", "duplicate", "error"]


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    student_id: str
    student_name: str
    time: str              # HH:MM:SS, wall clock
    outcome_class: LedgerClass
    outcome_kind: str

    def as_dict(self) -> dict:
        return asdict(self)


class SessionLedger:
    """
    Append-only, in-memory log of check-in outcomes for one scanner session.

    Nothing here is persisted; ending the session clears it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: list[LedgerEntry] = []
        self._ids = itertools.count(1)

    def append(
        self,
        *,
        student_id: str,
        student_name: str,
        time: str,
        outcome_class: LedgerClass,
        outcome_kind: str,
    ) -> LedgerEntry:
        with self._lock:
            entry = LedgerEntry(
                id=next(self._ids),
                student_id=student_id,
                student_name=student_name,
                time=time,
                outcome_class=outcome_class,
                outcome_kind=outcome_kind,
            )
            self._entries.append(entry)
            return entry

    def all(self) -> list[LedgerEntry]:
        """Entries, most recent first."""
        with self._lock:
            return list(reversed(self._entries))

    def counts(self) -> dict[str, int]:
        with self._lock:
            entries = list(self._entries)
        return {
            "success": sum(1 for e in entries if e.outcome_class == "success"),
            "duplicate": sum(1 for e in entries if e.outcome_class == "duplicate"),
            "error": sum(1 for e in entries if e.outcome_class == "error"),
            "total": len(entries),
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
