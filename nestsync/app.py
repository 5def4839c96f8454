"""Application context: owns the stores, session and sync engine for one device."""

import logging

from .config import Config
from .records import SyncableRecord
from .session import HouseholdSession, SharedState
from .storage import KeyValueStorage, MemoryStorage, SQLiteStorage
from .stores import ContractionStore, DiaperStore, EventStore, FeedingStore
from .sync import ConnectivityMonitor, HttpConnectivityProbe, SyncCoordinator, TransportClient

logger = logging.getLogger(__name__)


class AppContext:
    """Wires explicit store instances into the sync coordinator.

    Nothing here is module-global, so several contexts (e.g. two simulated
    devices in a test) can live in one process.
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: KeyValueStorage | None = None,
        transport: TransportClient | None = None,
        connectivity: ConnectivityMonitor | None = None,
    ):
        self.config = config or Config()
        if storage is None:
            db_path = self.config.storage.db_path
            storage = SQLiteStorage(db_path) if db_path else MemoryStorage()
        self.storage = storage

        self.contractions = ContractionStore(storage)
        self.feedings = FeedingStore(storage)
        self.diapers = DiaperStore(storage)
        self.session = HouseholdSession(self.config.device.id or None, storage)
        self.shared = SharedState(storage)

        self.connectivity = connectivity or ConnectivityMonitor()
        sync_config = self.config.sync
        self.transport = transport or TransportClient(
            api_base=self.config.relay.api_base,
            ws_base=self.config.relay.ws_base,
            max_retries=sync_config.max_retries,
            retry_delay=sync_config.retry_delay_seconds,
            reconnect_delay=sync_config.reconnect_delay_seconds,
            timeout=sync_config.request_timeout_seconds,
            is_online=lambda: self.connectivity.is_online,
        )
        self.coordinator = SyncCoordinator(
            stores=self.stores,
            session=self.session,
            transport=self.transport,
            connectivity=self.connectivity,
            shared_state=self.shared,
            debounce_seconds=sync_config.debounce_seconds,
        )

        self.probe: HttpConnectivityProbe | None = None
        conn_config = self.config.connectivity
        if conn_config.probe_enabled and conn_config.probe_url:
            self.probe = HttpConnectivityProbe(
                self.connectivity,
                conn_config.probe_url,
                interval_seconds=conn_config.probe_interval_seconds,
            )

    @property
    def stores(self) -> list[EventStore]:
        return [self.contractions, self.feedings, self.diapers]

    def load(self) -> None:
        """Restore persisted records, session and shared state."""
        for store in self.stores:
            store.load()
        self.session.load()
        self.shared.load()
        logger.info(
            f"Loaded device {self.session.device_id} "
            f"(household: {self.session.household_id or 'none'})"
        )

    async def start(self) -> None:
        """Load state and, when sync is enabled, start the sync engine."""
        self.load()
        if not self.config.sync.enabled:
            logger.info("Sync disabled, running in local mode")
            return
        if self.probe:
            await self.probe.start()
        await self.coordinator.start()

    async def close(self) -> None:
        await self.coordinator.stop()
        if self.probe:
            await self.probe.stop()
        await self.transport.aclose()
        if isinstance(self.storage, SQLiteStorage):
            self.storage.close()

    def all_records(self) -> set[tuple[str, str]]:
        """Identity of every stored record as ``(kind, id)`` pairs."""
        return {(store.kind, r.id) for store in self.stores for r in store}

    def find(self, record_id: str) -> SyncableRecord | None:
        for store in self.stores:
            record = store.get(record_id)
            if record is not None:
                return record
        return None
