"""Diaper change log with day-of-life expectations."""

from typing import Any

from ..records import DiaperEntry, now_ms, start_of_day_ms
from .event_store import EventStore

DAY_MS = 24 * 60 * 60 * 1000

# Minimum (wet, dirty) changes expected on day 1..7 of life; day 7 holds after.
DIAPER_EXPECTATIONS = [(1, 1), (2, 2), (3, 2), (4, 3), (5, 3), (6, 3), (6, 3)]


class DiaperStore(EventStore[DiaperEntry]):
    record_cls = DiaperEntry

    def __init__(self, storage=None):
        super().__init__(storage)
        self.birth_date: int | None = None  # ms epoch, local to this device

    def _meta(self) -> dict[str, Any]:
        return {"birthDate": self.birth_date}

    def _restore_meta(self, meta: dict[str, Any]) -> None:
        birth_date = meta.get("birthDate")
        self.birth_date = birth_date if isinstance(birth_date, int) else None

    def set_birth_date(self, birth_date: int) -> None:
        self.birth_date = birth_date
        self._save_meta()

    def add(self, type: str, notes: str | None = None, timestamp: int | None = None) -> str:
        return self.create(
            {
                "timestamp": timestamp if timestamp is not None else now_ms(),
                "type": type,
                "notes": notes,
            }
        )

    # Analysis

    def current_day(self) -> int:
        """Day of life, 1 on the birth day. Without a birth date, day 1."""
        if self.birth_date is None:
            return 1
        return max(1, (now_ms() - self.birth_date) // DAY_MS + 1)

    def today_entries(self) -> list[DiaperEntry]:
        midnight = start_of_day_ms(now_ms())
        return [e for e in self if e.timestamp >= midnight]

    def day_stats(self, day: int | None = None) -> dict[str, Any]:
        """Today's wet/dirty counts against the expectation for ``day``.

        ``both`` counts as wet and dirty. Days past the seventh use the
        day-seven expectation.
        """
        if day is None:
            day = self.current_day()
        expected_wet, expected_dirty = DIAPER_EXPECTATIONS[min(max(day, 1), 7) - 1]

        today = self.today_entries()
        wet = sum(1 for e in today if e.type in ("wet", "both"))
        dirty = sum(1 for e in today if e.type in ("dirty", "both"))
        return {
            "wet": wet,
            "dirty": dirty,
            "total": len(today),
            "expected_wet": expected_wet,
            "expected_dirty": expected_dirty,
            "meets_expectation": wet >= expected_wet and dirty >= expected_dirty,
        }
