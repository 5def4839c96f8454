"""Connectivity observers.

The coordinator never reads the network state directly; it subscribes to a
``ConnectivityMonitor`` that something else keeps up to date (an OS hook, a
UI toggle, or the HTTP probe below).
"""

import asyncio
import logging
from typing import Callable

import httpx

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class ConnectivityMonitor:
    """Holds the device's online flag and notifies subscribers on change."""

    def __init__(self, online: bool = True):
        self._online = online
        self._callbacks: list[ConnectivityCallback] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a callback invoked with the new state on every change.

        Returns:
            A callable that removes the callback.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Update the online flag. Subscribers only hear about real changes."""
        if online == self._online:
            return

        self._online = online
        logger.info(f"Device is now {'online' if online else 'offline'}")
        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception as e:
                logger.error(f"Connectivity callback failed: {e}", exc_info=True)


class HttpConnectivityProbe:
    """Polls a URL and feeds the result into a ``ConnectivityMonitor``.

    Any HTTP response counts as online; only transport errors mean offline.
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        url: str,
        interval_seconds: float = 15.0,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._monitor = monitor
        self._url = url
        self._interval = interval_seconds
        self._timeout = timeout
        self._client = client
        self._task: asyncio.Task | None = None
        self._running = False

    async def check(self) -> bool:
        """Probe once and update the monitor.

        A malformed probe URL says nothing about the network, so the monitor
        is left as it was.
        """
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            await client.get(self._url)
            online = True
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        except httpx.InvalidURL as e:
            logger.error(f"Invalid connectivity probe URL {self._url}: {e}")
            return False
        finally:
            if self._client is None:
                await client.aclose()

        self._monitor.set_online(online)
        return online

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Connectivity probe started ({self._url}, every {self._interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            await self.check()
            await asyncio.sleep(self._interval)
