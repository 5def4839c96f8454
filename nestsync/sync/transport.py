"""Transport to the household relay.

A WebSocket carries realtime envelopes in both directions; HTTP ``POST
/sync`` is the retried fallback used when an acknowledgment matters more than
latency. Nothing in here raises to the caller for network failures.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable
from urllib.parse import quote

import httpx
import websockets
from websockets.exceptions import WebSocketException

from ..records import MalformedPayloadError
from .envelope import SyncPayload

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Socket lifecycle state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


InboundCallback = Callable[[SyncPayload], None]
StateCallback = Callable[[ConnectionState], None]


class TransportClient:
    """Owns the relay socket and the HTTP push channel.

    After the socket drops, a single reconnect is scheduled after
    ``reconnect_delay`` seconds, provided a household is still set and
    ``is_online()`` reports true. ``disconnect()`` cancels that timer.
    """

    def __init__(
        self,
        api_base: str = "",
        ws_base: str = "",
        max_retries: int = 3,
        retry_delay: float = 1.0,
        reconnect_delay: float = 3.0,
        timeout: float = 10.0,
        is_online: Callable[[], bool] | None = None,
        http_client: httpx.AsyncClient | None = None,
        ws_connect: Callable[[str], Any] | None = None,
    ):
        """Initialize the transport.

        Args:
            api_base: Base URL of the relay's HTTP API.
            ws_base: WebSocket URL of the relay.
            max_retries: Attempts per ``push`` before giving up.
            retry_delay: Base delay; attempt ``n`` waits ``retry_delay * n``.
            reconnect_delay: Seconds to wait before reopening a dropped socket.
            timeout: HTTP request timeout in seconds.
            is_online: Callable reporting whether the device has a network path.
            http_client: Optional httpx client (for dependency injection/testing).
            ws_connect: Optional replacement for ``websockets.connect``.
        """
        self.api_base = api_base.rstrip("/")
        self.ws_base = ws_base
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.reconnect_delay = reconnect_delay
        self.timeout = timeout
        self._is_online = is_online or (lambda: True)
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._ws_connect = ws_connect or websockets.connect

        self._state = ConnectionState.DISCONNECTED
        self._household_id: str | None = None
        self._socket: Any = None
        self._task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None

        self._on_message: InboundCallback | None = None
        self._on_state_change: StateCallback | None = None

    def on_message(self, callback: InboundCallback) -> None:
        """Register the handler for decoded inbound envelopes."""
        self._on_message = callback

    def on_state_change(self, callback: StateCallback) -> None:
        self._on_state_change = callback

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def socket_url(self, household_id: str) -> str:
        separator = "&" if "?" in self.ws_base else "?"
        return f"{self.ws_base}{separator}household={quote(household_id, safe='')}"

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.debug(f"Socket state: {state.value}")
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                logger.error(f"State callback failed: {e}", exc_info=True)

    # Socket lifecycle

    def connect(self, household_id: str) -> None:
        """Open the relay socket for a household.

        A no-op while a socket is already connecting or connected. Must be
        called from within the running event loop.
        """
        if self._state != ConnectionState.DISCONNECTED:
            logger.debug(f"connect() ignored, socket is {self._state.value}")
            return
        if not self.ws_base:
            logger.debug("No WebSocket URL configured, staying disconnected")
            return

        self._cancel_reconnect()
        self._household_id = household_id
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run(household_id))

    def disconnect(self) -> None:
        """Close the socket and cancel any scheduled reconnect. Idempotent."""
        self._household_id = None
        self._cancel_reconnect()

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._socket = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def _run(self, household_id: str) -> None:
        url = self.socket_url(household_id)
        ws = None
        try:
            async with self._ws_connect(url) as ws:
                self._socket = ws
                self._set_state(ConnectionState.CONNECTED)
                logger.info(f"Connected to relay for household {household_id}")

                async for raw in ws:
                    self._handle_raw(raw)

            logger.info("Relay closed the socket")
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning(f"Relay socket error: {e}")
        except Exception as e:
            logger.error(f"Unexpected relay socket failure: {e}", exc_info=True)
        finally:
            if self._socket is ws:
                self._socket = None

        # Not reached on cancellation; disconnect() already reset the state.
        self._task = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            payload = SyncPayload.from_json(raw)
        except MalformedPayloadError as e:
            logger.warning(f"Dropping malformed relay message: {e}")
            return

        if self._on_message is None:
            return
        try:
            self._on_message(payload)
        except Exception as e:
            logger.error(f"Inbound handler failed: {e}", exc_info=True)

    def _schedule_reconnect(self) -> None:
        if self._household_id is None or not self._is_online():
            return
        if self._reconnect_handle is not None:
            return

        logger.info(f"Reconnecting in {self.reconnect_delay}s")
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            self.reconnect_delay, self._reconnect
        )

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        household_id = self._household_id
        if household_id is None or not self._is_online():
            return
        self.connect(household_id)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    # Outbound

    async def send(self, envelope: SyncPayload) -> bool:
        """Send over the open socket. Best effort, no retry.

        Returns:
            True if the frame was handed to the socket.
        """
        ws = self._socket
        if ws is None or self._state != ConnectionState.CONNECTED:
            return False

        try:
            await ws.send(envelope.to_json())
            return True
        except (OSError, WebSocketException) as e:
            logger.warning(f"Socket send failed: {e}")
            return False

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_http_client = True
        return self._http_client

    async def push(self, envelope: SyncPayload) -> bool:
        """POST an envelope to ``{api_base}/sync`` with linear backoff.

        Any 2xx is success. Other statuses and network errors are retried up
        to ``max_retries`` attempts.

        Returns:
            True on acknowledgment, False once every attempt has failed.
        """
        if not self.api_base:
            logger.debug("No API URL configured, push skipped")
            return False

        url = f"{self.api_base}/sync"
        client = self._get_http_client()

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await client.post(url, json=envelope.to_dict())
                if response.is_success:
                    return True
                logger.warning(
                    f"Push rejected with HTTP {response.status_code}, "
                    f"attempt {attempt}/{self.max_retries}"
                )
            except httpx.HTTPError as e:
                logger.warning(
                    f"Push failed ({e.__class__.__name__}), "
                    f"attempt {attempt}/{self.max_retries}"
                )
            except httpx.InvalidURL as e:
                # Retrying cannot fix a bad api_base
                logger.error(f"Push skipped, invalid relay URL {url}: {e}")
                return False

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        logger.warning(f"Giving up on {envelope.kind} push after {self.max_retries} attempts")
        return False

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client if we created it."""
        self.disconnect()
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
