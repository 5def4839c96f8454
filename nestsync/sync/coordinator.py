"""Sync coordinator: decides when to flush the outbox and applies inbound data.

Everything here runs on one asyncio event loop. Store, session and
connectivity changes arrive as synchronous callbacks; network work is
scheduled as tasks. Sync failures never raise past this class: they only
show up as ``pending_count > 0`` or ``is_connected == False``.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Coroutine, Iterable

from ..records import BabyInfo, MalformedPayloadError, now_ms
from ..session import HouseholdSession, SharedState
from ..stores import EventStore, StoreChange
from .connectivity import ConnectivityMonitor
from .envelope import BABY_INFO, PHASE_CHANGE, SyncPayload
from .outbox import Outbox
from .transport import ConnectionState, TransportClient

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Derived coordinator state."""

    IDLE = "idle"  # no household
    LOCAL_ONLY = "local_only"  # household set, device offline
    ACTIVE = "active"  # household set, device online


class SyncCoordinator:
    """Keeps the local event stores converging with the rest of the household."""

    def __init__(
        self,
        stores: Iterable[EventStore],
        session: HouseholdSession,
        transport: TransportClient,
        connectivity: ConnectivityMonitor,
        shared_state: SharedState | None = None,
        debounce_seconds: float = 2.0,
    ):
        """Initialize the coordinator.

        Args:
            stores: Event stores to synchronize, one per record kind.
            session: Household membership for this device.
            transport: Relay transport (socket + HTTP push).
            connectivity: Observer reporting whether the device is online.
            shared_state: Phase/baby-info holder for out-of-band signals.
            debounce_seconds: Quiet period before a flush after local writes.
        """
        self._stores: dict[str, EventStore] = {s.kind: s for s in stores}
        self.outbox = Outbox(self._stores.values())
        self.session = session
        self.transport = transport
        self.connectivity = connectivity
        self.shared_state = shared_state or SharedState()
        self.debounce_seconds = debounce_seconds

        self._debounce_handle: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._flush_again = False
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribers: list[Callable[[], None]] = []
        self._started = False

        self.transport.on_message(self.handle_inbound)
        self.transport.on_state_change(self._on_socket_state)

    # Lifecycle

    async def start(self) -> None:
        """Subscribe to changes and connect if a household is already set."""
        if self._started:
            return
        self._started = True

        for store in self._stores.values():
            self._unsubscribers.append(store.subscribe(self._on_store_change))
        self._unsubscribers.append(self.session.subscribe(self._on_household_changed))
        self._unsubscribers.append(self.connectivity.subscribe(self._on_connectivity_changed))

        logger.info(f"Sync coordinator started in {self.state.value} state")
        if self.state == SyncState.ACTIVE:
            self.transport.connect(self.session.household_id)
            if self.pending_count:
                self._schedule_flush()

    async def stop(self) -> None:
        """Unsubscribe, disconnect and cancel scheduled work."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._cancel_debounce()
        self.transport.disconnect()
        self.session.is_connected = False

        tasks = list(self._tasks)
        if self._flush_task is not None and not self._flush_task.done():
            tasks.append(self._flush_task)
        self._flush_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._started = False
        logger.info("Sync coordinator stopped")

    # Status

    @property
    def state(self) -> SyncState:
        if not self.session.household_id:
            return SyncState.IDLE
        if not self.connectivity.is_online:
            return SyncState.LOCAL_ONLY
        return SyncState.ACTIVE

    @property
    def is_connected(self) -> bool:
        return self.session.is_connected

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    @property
    def last_sync_time(self) -> int | None:
        return self.session.last_sync_time

    @property
    def pending_count(self) -> int:
        return self.outbox.pending_count

    def get_sync_status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "household_id": self.session.household_id,
            "device_id": self.session.device_id,
            "is_connected": self.is_connected,
            "is_online": self.is_online,
            "last_sync_time": self.last_sync_time,
            "pending_count": self.pending_count,
            "records": {kind: len(store) for kind, store in self._stores.items()},
        }

    # Flushing

    async def sync_now(self) -> None:
        """Push every pending record; mark each one synced on acknowledgment.

        Failed records stay pending for the next flush. ``last_sync_time`` is
        updated even when some pushes fail. Only one flush runs at a time: a
        call made while one is in flight waits for it, and the running flush
        makes one more pass to pick up records added in the meantime.
        """
        if not self.session.household_id or not self.connectivity.is_online:
            return

        self._cancel_debounce()
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_again = True
        else:
            self._flush_task = asyncio.get_running_loop().create_task(self._flush_loop())
        await self._flush_task

    async def _flush_loop(self) -> None:
        while True:
            self._flush_again = False
            await self._flush_once()
            if not self._flush_again:
                return

    async def _flush_once(self) -> None:
        household_id = self.session.household_id
        if not household_id or not self.connectivity.is_online:
            return

        items = self.outbox.items()
        pushed = 0
        for item in items:
            envelope = SyncPayload.for_record(item.record, self.session.device_id, household_id)
            if await self.transport.push(envelope):
                # An edit made during the push replaced the record object; keep it pending.
                if item.store.get(item.record.id) is item.record:
                    item.store.mark_synced(item.record.id)
                    pushed += 1

        # The household may have been left while pushes were in flight
        if self.session.household_id == household_id:
            self.session.record_sync()
        if items:
            logger.info(f"Flushed outbox: {pushed}/{len(items)} records acknowledged")

    def _on_store_change(self, change: StoreChange) -> None:
        if change.pending and self.state == SyncState.ACTIVE:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        """(Re)start the debounce window for a flush."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, flush not scheduled")
            return

        self._cancel_debounce()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._debounce_fired)

    def _debounce_fired(self) -> None:
        self._debounce_handle = None
        if self.state == SyncState.ACTIVE:
            self._spawn(self.sync_now())

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background sync task failed: {task.exception()}")

    # State transitions

    def _on_household_changed(self, household_id: str | None) -> None:
        self.transport.disconnect()
        self.session.is_connected = False

        if household_id is None:
            self._cancel_debounce()
            return

        if self.connectivity.is_online:
            self.transport.connect(household_id)
            if self.pending_count:
                self._schedule_flush()

    def _on_connectivity_changed(self, online: bool) -> None:
        if not online:
            self._cancel_debounce()
            self.transport.disconnect()
            self.session.is_connected = False
            return

        if self.session.household_id:
            self.transport.connect(self.session.household_id)
            self._spawn(self.sync_now())

    def _on_socket_state(self, state: ConnectionState) -> None:
        self.session.is_connected = state == ConnectionState.CONNECTED

    # Inbound

    def handle_inbound(self, payload: SyncPayload) -> bool:
        """Apply an envelope received from a peer.

        Records are merged by id (duplicates are ignored); phase and baby
        info signals overwrite local state.

        Returns:
            True if local state changed.
        """
        household_id = self.session.household_id
        if not household_id:
            return False
        if payload.household_id and payload.household_id != household_id:
            logger.debug(f"Ignoring envelope for household {payload.household_id}")
            return False

        try:
            if payload.is_record:
                store = self._stores.get(payload.kind)
                if store is None:
                    return False
                return store.merge(payload.record())

            if payload.kind == PHASE_CHANGE:
                self.shared_state.set_phase(payload.data)
                return True

            if payload.kind == BABY_INFO:
                self.shared_state.set_baby_info(BabyInfo.from_dict(payload.data))
                return True
        except MalformedPayloadError as e:
            logger.warning(f"Dropping malformed {payload.kind} envelope: {e}")
        return False

    # Household API

    async def join_household(self, household_id: str) -> None:
        """Join a household and immediately share this device's backlog."""
        self.session.join(household_id)
        await self.sync_now()

    async def create_household(self) -> str:
        return self.session.create()

    def leave_household(self) -> None:
        self.session.leave()

    # Out-of-band signals

    async def set_phase(self, phase: str) -> bool:
        """Change the household phase locally and broadcast it."""
        self.shared_state.set_phase(phase)
        return await self._broadcast(PHASE_CHANGE, phase)

    async def set_baby_info(self, info: BabyInfo) -> bool:
        self.shared_state.set_baby_info(info)
        return await self._broadcast(BABY_INFO, info.to_dict())

    async def _broadcast(self, kind: str, data: Any) -> bool:
        """Send a signal over the socket, falling back to an HTTP push."""
        if self.state != SyncState.ACTIVE:
            return False

        envelope = SyncPayload(
            kind=kind,
            timestamp=now_ms(),
            data=data,
            origin_device_id=self.session.device_id,
            household_id=self.session.household_id,
        )
        if await self.transport.send(envelope):
            return True
        return await self.transport.push(envelope)
