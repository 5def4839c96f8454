"""End-to-end convergence of two devices through an in-process relay."""

import asyncio
import json

import httpx
import pytest

from nestsync.app import AppContext
from nestsync.config import Config
from nestsync.records import SyncStatus
from nestsync.storage import MemoryStorage
from nestsync.sync import ConnectivityMonitor, SyncPayload, TransportClient


class Relay:
    """Accepts pushes and fans them out to the other members of the household."""

    def __init__(self):
        self.devices: list[AppContext] = []
        self.received: list[SyncPayload] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = SyncPayload.from_dict(json.loads(request.content))
        self.received.append(payload)
        self.deliver(payload)
        return httpx.Response(200, json={"ok": True})

    def deliver(self, payload: SyncPayload) -> None:
        for device in self.devices:
            if device.session.device_id == payload.origin_device_id:
                continue
            if device.session.household_id == payload.household_id:
                device.coordinator.handle_inbound(payload)

    def add_device(self, device_id: str, online: bool = True) -> AppContext:
        config = Config()
        config.device.id = device_id
        config.sync.debounce_seconds = 0.02
        transport = TransportClient(
            api_base="https://relay.test/api",
            retry_delay=0,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
        )
        device = AppContext(
            config,
            storage=MemoryStorage(),
            transport=transport,
            connectivity=ConnectivityMonitor(online),
        )
        self.devices.append(device)
        return device


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestConvergence:
    """Tests for two devices converging through the relay."""

    @pytest.mark.asyncio
    async def test_backlogs_are_shared_on_join(self):
        """Records logged before joining reach the partner."""
        relay = Relay()
        a = relay.add_device("phone-a")
        b = relay.add_device("phone-b")
        await a.start()
        await b.start()

        contraction_id = a.contractions.add(1_000, 60)
        diaper_id = b.diapers.add("wet", timestamp=2_000)

        household_id = await a.coordinator.create_household()
        await b.coordinator.join_household(household_id)
        await a.coordinator.sync_now()

        assert a.all_records() == b.all_records() == {
            ("contraction", contraction_id),
            ("diaper", diaper_id),
        }
        assert a.coordinator.pending_count == 0
        assert b.coordinator.pending_count == 0
        assert b.contractions.get(contraction_id).duration == 60
        assert a.diapers.get(diaper_id).sync_status == SyncStatus.SYNCED

        await a.close()
        await b.close()

    @pytest.mark.asyncio
    async def test_offline_writes_converge_after_reconnect(self):
        """Writes made offline on both devices converge once online."""
        relay = Relay()
        a = relay.add_device("phone-a")
        b = relay.add_device("phone-b")
        await a.start()
        await b.start()
        household_id = await a.coordinator.create_household()
        await b.coordinator.join_household(household_id)

        a.connectivity.set_online(False)
        b.connectivity.set_online(False)
        a_ids = [a.contractions.add(i * 60_000, 45) for i in range(3)]
        b_id = b.feedings.create({"startTime": 5_000, "side": "left"})
        assert relay.received == []

        a.connectivity.set_online(True)
        b.connectivity.set_online(True)
        await wait_until(
            lambda: a.coordinator.pending_count == 0 and b.coordinator.pending_count == 0
        )

        assert a.all_records() == b.all_records()
        assert {("contraction", i) for i in a_ids} <= b.all_records()
        assert ("feeding", b_id) in a.all_records()

        await a.close()
        await b.close()

    @pytest.mark.asyncio
    async def test_redelivery_changes_nothing(self):
        """Replaying every envelope leaves the partner unchanged."""
        relay = Relay()
        a = relay.add_device("phone-a")
        b = relay.add_device("phone-b")
        await a.start()
        await b.start()
        household_id = await a.coordinator.create_household()
        await b.coordinator.join_household(household_id)

        a.diapers.add("both")
        await a.coordinator.sync_now()
        before = [(r, r.sync_status) for r in b.diapers]

        for payload in list(relay.received):
            relay.deliver(payload)

        assert [(r, r.sync_status) for r in b.diapers] == before
        assert b.coordinator.pending_count == 0

        await a.close()
        await b.close()
