"""Record types shared by the event stores and the wire codec.

Records are plain dataclasses. Their wire form uses camelCase keys and never
carries the local ``sync_status`` field.
"""

import random
import string
import time
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar


class SyncStatus(Enum):
    """Local sync state of a record."""

    PENDING = "pending"
    SYNCED = "synced"
    OFFLINE = "offline"
    ERROR = "error"


class MalformedPayloadError(ValueError):
    """Raised when an envelope or record cannot be decoded."""


_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    """Current time as milliseconds since the epoch."""
    return int(time.time() * 1000)


def start_of_day_ms(ms: int) -> int:
    """Local midnight at or before ``ms``, in milliseconds since the epoch."""
    day = datetime.fromtimestamp(ms / 1000).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(day.timestamp() * 1000)


def generate_id(prefix: str) -> str:
    """Generate a household-unique id: ``<prefix>_<ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{now_ms()}_{suffix}"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class SyncableRecord:
    """Base shape of every synchronized record."""

    kind: ClassVar[str] = ""

    id: str
    sync_status: SyncStatus = field(default=SyncStatus.PENDING, compare=False)

    @classmethod
    def payload_fields(cls) -> list[str]:
        """Names of the kind-specific fields (everything but id/status)."""
        return [f.name for f in fields(cls) if f.name not in ("id", "sync_status")]

    @classmethod
    def wire_keys(cls) -> dict[str, str]:
        """Map of camelCase wire key to attribute name."""
        return {_camel(name): name for name in cls.payload_fields()}

    @classmethod
    def normalize_payload(cls, payload: dict[str, Any]) -> dict[str, Any]:
        """Accept camelCase or snake_case keys; drop unknown ones."""
        keys = cls.wire_keys()
        allowed = set(keys.values())
        result = {}
        for key, value in payload.items():
            name = keys.get(key, key)
            if name in allowed:
                result[name] = value
        return result

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire form (no sync status)."""
        data: dict[str, Any] = {"id": self.id}
        for wire_key, name in self.wire_keys().items():
            value = getattr(self, name)
            if value is not None:
                data[wire_key] = value
        return data

    def to_storage(self) -> dict[str, Any]:
        """Serialize for local persistence, keeping the sync status."""
        data = self.to_dict()
        data["syncStatus"] = self.sync_status.value
        return data

    @classmethod
    def from_dict(
        cls,
        data: Any,
        sync_status: SyncStatus = SyncStatus.SYNCED,
    ) -> "SyncableRecord":
        """Decode a record from its wire form.

        Raises:
            MalformedPayloadError: If ``data`` is not a valid record.
        """
        if not isinstance(data, dict):
            raise MalformedPayloadError(f"{cls.kind} record must be an object")
        record_id = data.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise MalformedPayloadError(f"{cls.kind} record has no id")
        try:
            record = cls(id=record_id, **cls.normalize_payload(data))
        except TypeError as e:
            raise MalformedPayloadError(f"Invalid {cls.kind} record: {e}") from e
        record.sync_status = sync_status
        record.validate()
        return record

    @classmethod
    def from_storage(cls, data: Any) -> "SyncableRecord":
        """Decode a persisted record, restoring its local sync status."""
        if not isinstance(data, dict):
            raise MalformedPayloadError(f"Stored {cls.kind} record must be an object")
        try:
            status = SyncStatus(data.get("syncStatus", SyncStatus.PENDING.value))
        except ValueError:
            status = SyncStatus.PENDING
        return cls.from_dict(data, sync_status=status)

    def validate(self) -> None:
        """Check kind-specific constraints. Subclasses override."""


@dataclass
class Contraction(SyncableRecord):
    kind: ClassVar[str] = "contraction"

    start_time: int = 0
    end_time: int | None = None
    duration: int | None = None  # seconds
    type: str | None = None  # None means a regular contraction
    notes: str | None = None

    def validate(self) -> None:
        if not isinstance(self.start_time, (int, float)):
            raise MalformedPayloadError("contraction startTime must be a number")
        if self.type not in (None, "contraction", "water_broke"):
            raise MalformedPayloadError(f"Unknown contraction type: {self.type}")


FEEDING_SIDES = ("left", "right", "bottle")


@dataclass
class FeedingSession(SyncableRecord):
    kind: ClassVar[str] = "feeding"

    start_time: int = 0
    end_time: int | None = None
    duration: int | None = None  # seconds
    side: str = "left"
    amount: float | None = None  # ml/oz for bottle feeds
    notes: str | None = None

    def validate(self) -> None:
        if self.side not in FEEDING_SIDES:
            raise MalformedPayloadError(f"Unknown feeding side: {self.side}")


DIAPER_TYPES = ("wet", "dirty", "both")


@dataclass
class DiaperEntry(SyncableRecord):
    kind: ClassVar[str] = "diaper"

    timestamp: int = 0
    type: str = "wet"
    notes: str | None = None

    def validate(self) -> None:
        if self.type not in DIAPER_TYPES:
            raise MalformedPayloadError(f"Unknown diaper type: {self.type}")


APP_PHASES = ("wait", "moment", "rhythm")


@dataclass
class BabyInfo:
    """Out-of-band household state; overwritten, never merged."""

    name: str | None = None
    birth_time: int | None = None
    birth_weight: float | None = None
    birth_length: float | None = None
    gender: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            _camel(f.name): getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    @classmethod
    def from_dict(cls, data: Any) -> "BabyInfo":
        if not isinstance(data, dict):
            raise MalformedPayloadError("baby_info data must be an object")
        keys = {_camel(f.name): f.name for f in fields(cls)}
        return cls(**{keys[k]: v for k, v in data.items() if k in keys})
