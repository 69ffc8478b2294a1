"""
Sync Orchestrator
=================
Drains the offline queue when the device comes back online.

- Exactly one sync per offline -> connected transition.
- Single-flight: while a sync runs, further transitions and manual
  retries join nothing and start nothing.
- The result is published as a one-shot, dismissible SyncNotice; the
  last failure (count + message) stays available for a retry button.
- Syncs started by a reconnect run as background tasks; one that dies
  with an unexpected error still publishes an interrupted notice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from hydracat.core.dates import Clock
from hydracat.core.observable import Observable
from hydracat.models.results import SYNC_INTERRUPTED_MESSAGE, sync_failed_message, synced_message
from hydracat.services.connectivity import ConnectionState, ConnectivityMonitor
from hydracat.services.offline_queue import OfflineQueue, SyncFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncNotice:
    message: str
    synced_count: int
    failed_count: int
    created_at: datetime
    interrupted: bool = False

    @property
    def is_failure(self) -> bool:
        return self.failed_count > 0 or self.interrupted


@dataclass(frozen=True)
class SyncFailure:
    failed_count: int
    message: str


@dataclass(frozen=True)
class SyncReport:
    synced_count: int
    failed_count: int


class SyncOrchestrator:

    def __init__(
        self,
        queue: OfflineQueue,
        connectivity: ConnectivityMonitor,
        clock: Clock = datetime.now,
    ) -> None:
        self._queue = queue
        self._connectivity = connectivity
        self._clock = clock
        self._in_flight: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._tasks: set[asyncio.Task] = set()
        self.notice: Observable[Optional[SyncNotice]] = Observable(None)
        self.last_failure: Optional[SyncFailure] = None

    @property
    def is_syncing(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def start(self) -> None:
        """Listen for connectivity changes. Must be called inside the event loop."""
        if self._unsubscribe is not None:
            return
        loop = asyncio.get_running_loop()

        def on_change(previous: ConnectionState, current: ConnectionState) -> None:
            task = loop.create_task(self.handle_connectivity_change(previous, current))
            self._tasks.add(task)
            task.add_done_callback(self._finish)

        self._unsubscribe = self._connectivity.state.subscribe(on_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def handle_connectivity_change(
        self, previous: ConnectionState, current: ConnectionState
    ) -> Optional[SyncReport]:
        if previous == ConnectionState.OFFLINE and current == ConnectionState.CONNECTED:
            logger.info("Back online, syncing offline queue")
            return await self.sync_now()
        return None

    async def sync_now(self) -> Optional[SyncReport]:
        """Run a sync unless one is already running (then returns None)."""
        if self.is_syncing:
            logger.info("Sync already in progress; not starting another")
            return None
        self._in_flight = asyncio.ensure_future(self._run())
        return await self._in_flight

    def dismiss_notice(self) -> None:
        self.notice.set(None)

    async def _run(self) -> SyncReport:
        if await self._queue.size() == 0:
            return SyncReport(0, 0)
        try:
            synced, failed = await self._queue.sync_pending_operations()
        except SyncFailedError as exc:
            synced, failed = exc.success_count, exc.failure_count
            self.last_failure = SyncFailure(failed_count=failed, message=exc.message)
            self._publish(exc.message, synced, failed)
            return SyncReport(synced, failed)

        self.last_failure = None
        if synced:
            self._publish(synced_message(synced), synced, failed)
        return SyncReport(synced, failed)

    def _finish(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background sync failed: %s", exc, exc_info=exc)
            self.last_failure = SyncFailure(failed_count=0, message=SYNC_INTERRUPTED_MESSAGE)
            self._publish(SYNC_INTERRUPTED_MESSAGE, 0, 0, interrupted=True)

    def _publish(self, message: str, synced: int, failed: int, interrupted: bool = False) -> None:
        if failed and synced:
            message = f"{synced_message(synced)}. {sync_failed_message(failed)}"
        self.notice.set(
            SyncNotice(
                message=message,
                synced_count=synced,
                failed_count=failed,
                created_at=self._clock(),
                interrupted=interrupted,
            ),
            force=True,
        )
