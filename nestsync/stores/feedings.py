"""Feeding sessions with side alternation."""

from typing import Any

from ..records import (
    FEEDING_SIDES,
    FeedingSession,
    SyncStatus,
    generate_id,
    now_ms,
    start_of_day_ms,
)
from .event_store import EventStore


class FeedingStore(EventStore[FeedingSession]):
    """Feeding log plus the side used last, which survives restarts.

    ``last_side`` is local to the device and is not synchronized.
    """

    record_cls = FeedingSession

    def __init__(self, storage=None):
        super().__init__(storage)
        self.active: FeedingSession | None = None
        self.last_side: str | None = None

    def _meta(self) -> dict[str, Any]:
        return {"lastSide": self.last_side}

    def _restore_meta(self, meta: dict[str, Any]) -> None:
        side = meta.get("lastSide")
        self.last_side = side if side in FEEDING_SIDES else None

    def set_last_side(self, side: str | None) -> None:
        """Record the side of a feeding logged outside ``start``/``end``."""
        self.last_side = side
        self._save_meta()

    def start(self, side: str) -> str:
        session = FeedingSession(
            id=generate_id(self.kind),
            start_time=now_ms(),
            side=side,
            sync_status=SyncStatus.PENDING,
        )
        session.validate()
        self.active = session
        return session.id

    def end(self, amount: float | None = None, notes: str | None = None) -> str | None:
        if self.active is None:
            return None

        end_time = now_ms()
        session = self.active
        session.end_time = end_time
        session.duration = round((end_time - session.start_time) / 1000)
        session.amount = amount
        session.notes = notes
        self.active = None
        self.last_side = session.side

        self._records[session.id] = session
        self._changed("create", session.id, pending=True)
        return session.id

    def cancel(self) -> None:
        self.active = None

    def clear(self) -> None:
        self.active = None
        self.last_side = None
        super().clear()

    def recommended_side(self) -> str:
        """Alternate breasts; after a bottle feed start on the left."""
        if self.last_side in (None, "bottle"):
            return "left"
        return "right" if self.last_side == "left" else "left"

    # Analysis

    def time_since_last_feed(self) -> int | None:
        """Milliseconds since the most recent feeding ended, or None."""
        ended = [s.end_time for s in self if s.end_time is not None]
        if not ended:
            return None
        return now_ms() - max(ended)

    def today_sessions(self) -> list[FeedingSession]:
        """Sessions that started since local midnight."""
        midnight = start_of_day_ms(now_ms())
        return [s for s in self if s.start_time >= midnight]

    def daily_stats(self) -> dict[str, Any]:
        today = self.today_sessions()
        bottles = [s for s in today if s.side == "bottle"]
        return {
            "total_feedings": len(today),
            "total_duration": sum(s.duration or 0 for s in today),
            "left_count": sum(1 for s in today if s.side == "left"),
            "right_count": sum(1 for s in today if s.side == "right"),
            "bottle_count": len(bottles),
            "bottle_amount": sum(s.amount or 0 for s in bottles),
        }
