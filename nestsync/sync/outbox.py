"""Pending selector over all event stores."""

from dataclasses import dataclass
from typing import Iterable

from ..records import SyncableRecord
from ..stores import EventStore


@dataclass
class OutboxItem:
    store: EventStore
    record: SyncableRecord


class Outbox:
    """Read-only view of every record not yet acknowledged by the relay.

    Holds no state of its own; every call recomputes from the stores.
    """

    def __init__(self, stores: Iterable[EventStore]):
        self._stores = list(stores)

    def items(self) -> list[OutboxItem]:
        """Pending records, store by store, each in insertion order."""
        return [
            OutboxItem(store, record)
            for store in self._stores
            for record in store.pending()
        ]

    @property
    def pending_count(self) -> int:
        return sum(len(store.pending()) for store in self._stores)

    def is_empty(self) -> bool:
        return self.pending_count == 0
