"""Household membership and device identity."""

import logging
import uuid
from typing import Callable

from .records import APP_PHASES, BabyInfo, MalformedPayloadError, generate_id, now_ms
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

HouseholdListener = Callable[[str | None], None]

SESSION_KEY = "session"
SHARED_STATE_KEY = "shared"


class HouseholdSession:
    """Identity of this device and the household it shares events with.

    Without a household id the device runs in pure local mode. Listeners are
    told about every household change so the sync layer can start or stop.
    """

    def __init__(
        self,
        device_id: str | None = None,
        storage: KeyValueStorage | None = None,
    ):
        self._storage = storage
        self.device_id = device_id or ""
        self.household_id: str | None = None
        self.last_sync_time: int | None = None
        self.is_connected = False
        self._listeners: list[HouseholdListener] = []

    def load(self) -> None:
        """Restore persisted identity; mint a device id if none exists."""
        data = (self._storage.get(SESSION_KEY) if self._storage else None) or {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring stored session of type {type(data).__name__}")
            data = {}
        household_id = data.get("householdId")
        self.household_id = household_id if isinstance(household_id, str) and household_id else None
        last_sync = data.get("lastSyncTime")
        self.last_sync_time = last_sync if isinstance(last_sync, int) else None
        if not self.device_id and isinstance(data.get("deviceId"), str):
            self.device_id = data["deviceId"]
        if not self.device_id:
            self.device_id = f"device_{uuid.uuid4().hex[:12]}"
            logger.info(f"Generated device id {self.device_id}")
        self._save()

    def _save(self) -> None:
        if self._storage is None:
            return
        self._storage.set(
            SESSION_KEY,
            {
                "householdId": self.household_id,
                "deviceId": self.device_id,
                "lastSyncTime": self.last_sync_time,
            },
        )

    def subscribe(self, listener: HouseholdListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def is_active(self) -> bool:
        """True when a household is set and sync should run."""
        return bool(self.household_id)

    def _set_household(self, household_id: str | None) -> None:
        if household_id == self.household_id:
            return
        self.household_id = household_id
        self._save()
        logger.info(f"Household set to {household_id}" if household_id else "Left household")
        for listener in list(self._listeners):
            try:
                listener(household_id)
            except Exception as e:
                logger.error(f"Household listener failed: {e}", exc_info=True)

    def create(self) -> str:
        """Mint a new household id and become its first member."""
        household_id = generate_id("household")
        self._set_household(household_id)
        return household_id

    def join(self, household_id: str) -> None:
        if not household_id:
            raise ValueError("household_id must not be empty")
        self._set_household(household_id)

    def leave(self) -> None:
        """Return to local mode. Records and their statuses are untouched."""
        self.is_connected = False
        self._set_household(None)

    def record_sync(self) -> None:
        self.last_sync_time = now_ms()
        self._save()

    def to_dict(self) -> dict:
        return {
            "householdId": self.household_id,
            "deviceId": self.device_id,
            "isConnected": self.is_connected,
            "lastSyncTime": self.last_sync_time,
        }


class SharedState:
    """Household-wide values that are overwritten rather than merged."""

    def __init__(self, storage: KeyValueStorage | None = None):
        self._storage = storage
        self.phase = "wait"
        self.baby_info: BabyInfo | None = None

    def load(self) -> None:
        data = (self._storage.get(SHARED_STATE_KEY) if self._storage else None) or {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring stored shared state of type {type(data).__name__}")
            data = {}
        if data.get("phase") in APP_PHASES:
            self.phase = data["phase"]
        if data.get("babyInfo"):
            try:
                self.baby_info = BabyInfo.from_dict(data["babyInfo"])
            except MalformedPayloadError as e:
                logger.warning(f"Ignoring stored baby info: {e}")

    def _save(self) -> None:
        if self._storage is None:
            return
        self._storage.set(
            SHARED_STATE_KEY,
            {
                "phase": self.phase,
                "babyInfo": self.baby_info.to_dict() if self.baby_info else None,
            },
        )

    def set_phase(self, phase: str) -> None:
        if phase not in APP_PHASES:
            raise MalformedPayloadError(f"Unknown phase: {phase!r}")
        self.phase = phase
        self._save()

    def set_baby_info(self, info: BabyInfo) -> None:
        self.baby_info = info
        self._save()
