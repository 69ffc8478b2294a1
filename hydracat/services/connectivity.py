"""
Connectivity Monitor
====================
Publishes the device's connection state. Two sources feed it:
- refresh(): an HTTP probe; any response at all means connected, any
  transport error means offline
- report(): the UI shell pushing a platform connectivity event

The state starts as UNKNOWN until the first probe or report. Only
CONNECTED counts as online for the write path.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

import httpx

from hydracat.core.observable import Observable

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class ConnectivityMonitor:

    def __init__(
        self,
        probe_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._probe_url = probe_url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout_seconds
        self.state: Observable[ConnectionState] = Observable(ConnectionState.UNKNOWN)

    @property
    def is_connected(self) -> bool:
        return self.state.value == ConnectionState.CONNECTED

    def report(self, state: ConnectionState) -> None:
        if state != self.state.value:
            logger.info("Connectivity %s -> %s", self.state.value.value, state.value)
        self.state.set(state)

    async def refresh(self) -> ConnectionState:
        try:
            await self._http().head(self._probe_url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe failed: %s", exc)
            self.report(ConnectionState.OFFLINE)
        else:
            self.report(ConnectionState.CONNECTED)
        return self.state.value

    async def watch(self, interval_seconds: float) -> None:
        """Probe forever; run as a background task and cancel to stop."""
        while True:
            await self.refresh()
            await asyncio.sleep(interval_seconds)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client
