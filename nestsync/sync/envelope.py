"""Wire envelope exchanged with the household relay."""

import json
from dataclasses import dataclass
from typing import Any

from ..records import (
    Contraction,
    DiaperEntry,
    FeedingSession,
    MalformedPayloadError,
    SyncableRecord,
    now_ms,
)

RECORD_KINDS: dict[str, type[SyncableRecord]] = {
    Contraction.kind: Contraction,
    FeedingSession.kind: FeedingSession,
    DiaperEntry.kind: DiaperEntry,
}

PHASE_CHANGE = "phase_change"
BABY_INFO = "baby_info"
SIGNAL_KINDS = (PHASE_CHANGE, BABY_INFO)

ALL_KINDS = (*RECORD_KINDS, *SIGNAL_KINDS)


@dataclass
class SyncPayload:
    """A record or signal wrapped with routing metadata."""

    kind: str
    timestamp: int  # ms epoch
    data: Any
    origin_device_id: str
    household_id: str

    @classmethod
    def for_record(
        cls, record: SyncableRecord, origin_device_id: str, household_id: str
    ) -> "SyncPayload":
        return cls(
            kind=record.kind,
            timestamp=now_ms(),
            data=record.to_dict(),
            origin_device_id=origin_device_id,
            household_id=household_id,
        )

    @property
    def is_record(self) -> bool:
        return self.kind in RECORD_KINDS

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "timestamp": self.timestamp,
            "data": self.data,
            "originDeviceId": self.origin_device_id,
            "householdId": self.household_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> "SyncPayload":
        """Decode an envelope.

        Raises:
            MalformedPayloadError: If required fields are missing or invalid.
        """
        if not isinstance(data, dict):
            raise MalformedPayloadError("Envelope must be a JSON object")

        kind = data.get("kind")
        if kind not in ALL_KINDS:
            raise MalformedPayloadError(f"Unknown envelope kind: {kind!r}")
        if "data" not in data:
            raise MalformedPayloadError("Envelope has no data")

        timestamp = data.get("timestamp", 0)
        if not isinstance(timestamp, (int, float)):
            raise MalformedPayloadError("Envelope timestamp must be a number")

        return cls(
            kind=kind,
            timestamp=int(timestamp),
            data=data["data"],
            origin_device_id=str(data.get("originDeviceId") or ""),
            household_id=str(data.get("householdId") or ""),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "SyncPayload":
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedPayloadError(f"Invalid JSON: {e}") from e
        return cls.from_dict(data)

    def record(self) -> SyncableRecord:
        """Decode ``data`` into the record type named by ``kind``."""
        record_cls = RECORD_KINDS.get(self.kind)
        if record_cls is None:
            raise MalformedPayloadError(f"{self.kind} does not carry a record")
        return record_cls.from_dict(self.data)
