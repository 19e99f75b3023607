"""Network reachability tracking for the sync gate."""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Tracks whether the remote backend is reachable.

    ``is_connected()`` reports the last probe result; ``start()`` keeps it
    fresh with a periodic background probe.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        probe_path: str = "/",
        interval: float = 30.0,
        initially_connected: bool = True
    ):
        self.client = client
        self.probe_path = probe_path
        self.interval = interval
        self._connected = initially_connected
        self._task: Optional[asyncio.Task] = None

    def is_connected(self) -> bool:
        return self._connected

    async def refresh(self) -> bool:
        """Probe the backend once. Any HTTP response counts as connected."""
        try:
            await self.client.head(self.probe_path, timeout=5.0)
            connected = True
        except httpx.TransportError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            connected = False

        if connected != self._connected:
            logger.info(f"Connectivity changed: {'online' if connected else 'offline'}")
        self._connected = connected
        return connected

    def start(self):
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)
