"""Contraction log with an active (in-progress) timer."""

from ..records import Contraction, SyncStatus, generate_id, now_ms
from .event_store import EventStore


class ContractionStore(EventStore[Contraction]):
    """Contractions and water-broke markers.

    A timed contraction lives in ``active`` until it is ended; only then is it
    appended to the log and becomes eligible for sync.
    """

    record_cls = Contraction

    def __init__(self, storage=None):
        super().__init__(storage)
        self.active: Contraction | None = None

    def start(self) -> str:
        """Start timing a contraction. Returns its id."""
        self.active = Contraction(
            id=generate_id(self.kind),
            start_time=now_ms(),
            sync_status=SyncStatus.PENDING,
        )
        return self.active.id

    def end(self, notes: str | None = None) -> str | None:
        """Finish the active contraction and append it to the log."""
        if self.active is None:
            return None

        end_time = now_ms()
        record = self.active
        record.end_time = end_time
        record.duration = round((end_time - record.start_time) / 1000)
        record.notes = notes
        record.sync_status = SyncStatus.PENDING
        self.active = None

        self._records[record.id] = record
        self._changed("create", record.id, pending=True)
        return record.id

    def cancel(self) -> None:
        """Discard the active contraction."""
        self.active = None

    def add(self, start_time: int, duration: int) -> str:
        """Record a contraction entered after the fact."""
        return self.create(
            {
                "startTime": start_time,
                "endTime": start_time + duration * 1000,
                "duration": duration,
                "type": "contraction",
            }
        )

    def add_water_broke(self, time: int) -> str:
        return self.create(
            {"startTime": time, "endTime": time, "type": "water_broke"}
        )

    def update(
        self,
        record_id: str,
        start_time: int | None = None,
        duration: int | None = None,
    ) -> bool:
        """Edit timing, recomputing ``end_time`` from start and duration."""
        record = self.get(record_id)
        if record is None:
            return False

        new_start = start_time if start_time is not None else record.start_time
        new_duration = duration if duration is not None else record.duration
        new_end = (
            new_start + new_duration * 1000 if new_duration is not None else record.end_time
        )
        return self.mutate(
            record_id,
            {"startTime": new_start, "duration": new_duration, "endTime": new_end},
        )

    def clear(self) -> None:
        self.active = None
        super().clear()

    def recent(self, minutes: int) -> list[Contraction]:
        """Completed contractions that ended within the last ``minutes``."""
        cutoff = now_ms() - minutes * 60 * 1000
        return [c for c in self if c.end_time and c.end_time >= cutoff]
