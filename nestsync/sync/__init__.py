"""Synchronization engine for household event logs.

Pushes locally pending records to the household relay, merges records
received from peers, and tracks connection state for the UI.
"""

from .connectivity import ConnectivityMonitor, HttpConnectivityProbe
from .coordinator import SyncCoordinator, SyncState
from .envelope import SyncPayload
from .outbox import Outbox, OutboxItem
from .transport import ConnectionState, TransportClient

__all__ = [
    "ConnectionState",
    "ConnectivityMonitor",
    "HttpConnectivityProbe",
    "Outbox",
    "OutboxItem",
    "SyncCoordinator",
    "SyncPayload",
    "SyncState",
    "TransportClient",
]
