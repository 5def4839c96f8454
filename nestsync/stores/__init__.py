"""Event stores for the household event log.

One store per record kind. Each keeps insertion order, tracks a local sync
status per record and merges remote records idempotently by id.
"""

from .contractions import ContractionStore
from .diapers import DiaperStore
from .event_store import EventStore, StoreChange
from .feedings import FeedingStore

__all__ = [
    "ContractionStore",
    "DiaperStore",
    "EventStore",
    "FeedingStore",
    "StoreChange",
]
