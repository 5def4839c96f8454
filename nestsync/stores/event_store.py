"""Ordered, locally persisted collection of syncable records of one kind."""

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Generic, Iterator, TypeVar

from ..records import MalformedPayloadError, SyncableRecord, SyncStatus, generate_id
from ..storage import KeyValueStorage

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SyncableRecord)


@dataclass(frozen=True)
class StoreChange:
    """Notification emitted after every store mutation."""

    kind: str
    action: str  # "create", "mutate", "remove", "merge", "synced", "reset"
    record_id: str | None = None
    pending: bool = False  # True when the change left a record pending


ChangeListener = Callable[[StoreChange], None]


class EventStore(Generic[R]):
    """Event store for one record kind.

    Records keep insertion order. Local writes mark a record pending; only an
    acknowledgment (``mark_synced``) or a remote ``merge`` produces a synced
    record. All operations are synchronous and meant to run on the single
    event-loop thread.
    """

    record_cls: type[R]

    def __init__(self, storage: KeyValueStorage | None = None):
        """Initialize the store.

        Args:
            storage: Optional durable storage. When given, the full record
                list is saved after every change.
        """
        self._records: dict[str, R] = {}
        self._storage = storage
        self._listeners: list[ChangeListener] = []

    @property
    def kind(self) -> str:
        return self.record_cls.kind

    @property
    def storage_key(self) -> str:
        return f"records:{self.kind}"

    # Persistence

    def load(self) -> int:
        """Load records from storage, replacing in-memory state.

        Returns:
            Number of records loaded.
        """
        if self._storage is None:
            return 0

        meta = self._storage.get(self.meta_key)
        if isinstance(meta, dict):
            self._restore_meta(meta)
        elif meta is not None:
            logger.warning(f"Ignoring stored {self.kind} metadata of type {type(meta).__name__}")

        raw = self._storage.get(self.storage_key) or []
        if not isinstance(raw, list):
            logger.warning(f"Ignoring stored {self.kind} records of type {type(raw).__name__}")
            raw = []

        records: dict[str, R] = {}
        for item in raw:
            try:
                record = self.record_cls.from_storage(item)
            except MalformedPayloadError as e:
                logger.warning(f"Skipping unreadable {self.kind} record: {e}")
                continue
            records[record.id] = record

        self._records = records
        logger.debug(f"Loaded {len(records)} {self.kind} records")
        return len(records)

    def _save(self) -> None:
        if self._storage is not None:
            self._storage.set(
                self.storage_key, [r.to_storage() for r in self._records.values()]
            )
        self._save_meta()

    # Local, unsynchronized per-store state (e.g. the last feeding side)

    @property
    def meta_key(self) -> str:
        return f"meta:{self.kind}"

    def _meta(self) -> dict[str, Any] | None:
        """State to persist beside the records. None means the store has none."""
        return None

    def _restore_meta(self, meta: dict[str, Any]) -> None:
        pass

    def _save_meta(self) -> None:
        meta = self._meta()
        if self._storage is not None and meta is not None:
            self._storage.set(self.meta_key, meta)

    # Change notification

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, action: str, record_id: str | None = None, pending: bool = False) -> None:
        self._save()
        change = StoreChange(self.kind, action, record_id, pending)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Store listener failed: {e}", exc_info=True)

    # Record operations

    def create(self, payload: dict[str, Any]) -> str:
        """Insert a new locally-authored record.

        Args:
            payload: Kind-specific fields (camelCase or snake_case keys).

        Returns:
            The generated record id.
        """
        record_id = generate_id(self.kind)
        record = self.record_cls(
            id=record_id, **self.record_cls.normalize_payload(payload)
        )
        record.sync_status = SyncStatus.PENDING
        record.validate()
        self._records[record_id] = record
        self._changed("create", record_id, pending=True)
        return record_id

    def mutate(self, record_id: str, partial: dict[str, Any]) -> bool:
        """Update fields in place and reset the record to pending.

        Unknown ids are ignored. ``id`` and ``syncStatus`` cannot be changed.

        Returns:
            True if a record was updated.
        """
        record = self._records.get(record_id)
        if record is None:
            return False

        updates = self.record_cls.normalize_payload(partial)
        updated = replace(record, **updates, sync_status=SyncStatus.PENDING)
        updated.validate()
        self._records[record_id] = updated
        self._changed("mutate", record_id, pending=True)
        return True

    def remove(self, record_id: str) -> bool:
        """Delete a record locally. Deletions are not synchronized."""
        if self._records.pop(record_id, None) is None:
            return False
        self._changed("remove", record_id)
        return True

    def merge(self, remote: R) -> bool:
        """Insert a remote record as synced unless its id is already known.

        Returns:
            True if the record was added.
        """
        if remote.id in self._records:
            logger.debug(f"Ignoring duplicate {self.kind} record {remote.id}")
            return False

        self._records[remote.id] = replace(remote, sync_status=SyncStatus.SYNCED)
        self._changed("merge", remote.id)
        return True

    def pending(self) -> list[R]:
        """Records awaiting acknowledgment, in insertion order."""
        return [r for r in self._records.values() if r.sync_status == SyncStatus.PENDING]

    def mark_synced(self, record_id: str) -> bool:
        """Flip a record to synced without touching its payload."""
        record = self._records.get(record_id)
        if record is None:
            return False
        record.sync_status = SyncStatus.SYNCED
        self._changed("synced", record_id)
        return True

    def mark_pending(self, record_ids: list[str]) -> int:
        """Reset records to pending so the next flush pushes them again."""
        count = 0
        for record_id in record_ids:
            record = self._records.get(record_id)
            if record is not None:
                record.sync_status = SyncStatus.PENDING
                count += 1
        if count:
            self._changed("reset", pending=True)
        return count

    def replace_all(self, records: list[R]) -> None:
        """Replace the whole collection, keeping the records' statuses."""
        self._records = {r.id: r for r in records}
        self._changed("reset", pending=any(r.sync_status == SyncStatus.PENDING for r in records))

    def clear(self) -> None:
        """Remove every record locally."""
        self._records = {}
        self._changed("reset")

    # Read access

    def get(self, record_id: str) -> R | None:
        return self._records.get(record_id)

    def all(self) -> list[R]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[R]:
        return iter(list(self._records.values()))
