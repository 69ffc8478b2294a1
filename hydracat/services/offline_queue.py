"""
Offline Operation Queue
=======================
Durable FIFO of writes captured while offline.

Storage layout: one local-store key per operation,
`offlineQueue_{sequence:010d}_{operation_id}`, so the lexical key order
is the creation order and a single corrupted entry cannot take the rest
of the queue with it. Unreadable entries are moved aside under
`offlineQueueCorrupt_...` and logged.

Replay goes through the bound replayer (the write coordinator's replay
path). Each operation gets a bounded number of attempts with back-off;
a failure leaves it queued as `failed` and does not block the entries
behind it. Sessions are keyed by id remotely, so retrying is safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence

from pydantic import ValidationError

from hydracat.core.dates import Clock
from hydracat.db.local_store import LocalStore
from hydracat.models.operation import (
    OperationStatus,
    QueuedOperation,
    dump_operation,
    parse_operation,
)
from hydracat.models.results import (
    Accepted,
    AcceptedWithWarning,
    EnqueueResult,
    RejectedQueueFull,
    queue_full_message,
    queue_warning_message,
    sync_failed_message,
)
from hydracat.services import analytics as events
from hydracat.services.analytics import Analytics

logger = logging.getLogger(__name__)

KEY_PREFIX = "offlineQueue_"
CORRUPT_PREFIX = "offlineQueueCorrupt_"

Replayer = Callable[[QueuedOperation], Awaitable[None]]


class SyncFailedError(Exception):
    """At least one queued operation failed to replay."""

    def __init__(self, failure_count: int, message: str, success_count: int = 0) -> None:
        self.failure_count = failure_count
        self.success_count = success_count
        self.message = message
        super().__init__(message)


class OfflineQueue:

    def __init__(
        self,
        store: LocalStore,
        analytics: Optional[Analytics] = None,
        clock: Clock = datetime.now,
        soft_limit: int = 50,
        hard_limit: int = 200,
        ttl_days: int = 30,
        max_attempts: int = 3,
        backoff_seconds: Sequence[float] = (1.0, 2.0, 4.0),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        replayer: Optional[Replayer] = None,
    ) -> None:
        self._store = store
        self._analytics = analytics or Analytics()
        self._clock = clock
        self.soft_limit = soft_limit
        self.hard_limit = hard_limit
        self._ttl_days = ttl_days
        self._max_attempts = max(1, max_attempts)
        self._backoff = list(backoff_seconds) or [0.0]
        self._sleep = sleep
        self._replayer = replayer
        self._enqueue_lock = asyncio.Lock()
        self._sync_lock = asyncio.Lock()

    def bind_replayer(self, replayer: Replayer) -> None:
        self._replayer = replayer

    # ------------------------------------------------------------------
    # Enqueue / inspect
    # ------------------------------------------------------------------

    async def enqueue(self, operation: QueuedOperation) -> EnqueueResult:
        async with self._enqueue_lock:
            self._purge_expired()
            keys = self._store.keys(KEY_PREFIX)
            if len(keys) >= self.hard_limit:
                logger.warning("Offline queue full (%d); rejecting %s", len(keys), operation.type)
                self._analytics.emit(events.OFFLINE_QUEUE_FULL, queue_size=len(keys))
                return RejectedQueueFull(queue_size=len(keys), message=queue_full_message(len(keys)))

            key = f"{KEY_PREFIX}{self._next_sequence(keys):010d}_{operation.id}"
            self._store.set(key, dump_operation(operation))
            size = len(keys) + 1

        logger.info("Queued offline %s operation %s (queue size %d)", operation.type, operation.id, size)
        self._analytics.emit(
            events.OFFLINE_LOGGING_QUEUED, operation_type=operation.type, queue_size=size,
        )
        if size >= self.soft_limit:
            return AcceptedWithWarning(queue_size=size, message=queue_warning_message(size))
        return Accepted(queue_size=size)

    async def size(self) -> int:
        return len(self._store.keys(KEY_PREFIX))

    async def should_show_warning(self) -> bool:
        return await self.size() >= self.soft_limit

    async def operations(self) -> list[QueuedOperation]:
        """Every readable queued operation, oldest first."""
        ops = []
        for key in self._store.keys(KEY_PREFIX):
            op = self._load(key)
            if op is not None:
                ops.append(op)
        return ops

    async def pending_operations(self) -> list[QueuedOperation]:
        return [op for op in await self.operations() if op.status != OperationStatus.FAILED]

    async def failed_operations(self) -> list[QueuedOperation]:
        return [op for op in await self.operations() if op.status == OperationStatus.FAILED]

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def sync_pending_operations(self) -> tuple[int, int]:
        """Replay everything in creation order.

        Returns (success_count, failure_count); raises SyncFailedError when
        any operation failed.
        """
        if self._replayer is None:
            raise RuntimeError("OfflineQueue has no replayer bound")

        async with self._sync_lock:
            started = time.monotonic()
            keys = self._store.keys(KEY_PREFIX)
            success = failure = 0
            for key in keys:
                op = self._load(key)
                if op is None:
                    continue
                if op.is_expired(self._clock(), self._ttl_days):
                    logger.warning("Dropping expired offline operation %s from %s", op.id, op.created_at)
                    self._store.remove(key)
                    continue
                if await self._replay(key, op):
                    success += 1
                else:
                    failure += 1

            duration_ms = int((time.monotonic() - started) * 1000)

        logger.info("Offline sync finished: %d synced, %d failed in %dms", success, failure, duration_ms)
        self._analytics.emit(
            events.OFFLINE_SYNC_COMPLETED,
            queue_size=len(keys),
            success_count=success,
            failure_count=failure,
            duration_ms=duration_ms,
        )
        if failure:
            self._analytics.emit(events.OFFLINE_SYNC_FAILED, failure_count=failure)
            raise SyncFailedError(failure, sync_failed_message(failure), success_count=success)
        return success, failure

    async def retry_failed_operation(self, operation_id: str) -> bool:
        """Replay one failed operation now. True if it synced."""
        if self._replayer is None:
            raise RuntimeError("OfflineQueue has no replayer bound")
        async with self._sync_lock:
            key = self._key_for(operation_id)
            if key is None:
                return False
            op = self._load(key)
            if op is None or op.status != OperationStatus.FAILED:
                return False
            return await self._replay(key, op.marked_pending())

    async def remove_operation(self, operation_id: str) -> bool:
        key = self._key_for(operation_id)
        if key is None:
            return False
        self._store.remove(key)
        return True

    async def clear_all(self) -> int:
        keys = self._store.keys(KEY_PREFIX)
        for key in keys:
            self._store.remove(key)
        logger.info("Cleared %d offline operations", len(keys))
        return len(keys)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _replay(self, key: str, op: QueuedOperation) -> bool:
        self._store.set(key, dump_operation(op.marked_syncing()))
        error: Optional[str] = None
        for attempt in range(self._max_attempts):
            try:
                await self._replayer(op)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.warning(
                    "Replay of %s %s failed (attempt %d/%d): %s",
                    op.type, op.id, attempt + 1, self._max_attempts, error,
                )
                if attempt + 1 < self._max_attempts:
                    await self._sleep(self._backoff[min(attempt, len(self._backoff) - 1)])
                continue
            self._store.remove(key)
            return True

        self._store.set(key, dump_operation(op.marked_failed(error or "unknown error")))
        return False

    def _load(self, key: str) -> Optional[QueuedOperation]:
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return parse_operation(raw)
        except ValidationError as exc:
            logger.error("Corrupted offline queue entry %s moved aside: %s", key, exc)
            self._store.set(CORRUPT_PREFIX + key[len(KEY_PREFIX):], raw)
            self._store.remove(key)
            self._analytics.emit(events.OFFLINE_QUEUE_CORRUPTED_ENTRY, key=key)
            return None

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in self._store.keys(KEY_PREFIX):
            op = self._load(key)
            if op is not None and op.is_expired(now, self._ttl_days):
                logger.warning("Purging expired offline operation %s", op.id)
                self._store.remove(key)

    def _key_for(self, operation_id: str) -> Optional[str]:
        for key in self._store.keys(KEY_PREFIX):
            if key.endswith(f"_{operation_id}"):
                return key
        return None

    @staticmethod
    def _next_sequence(keys: list[str]) -> int:
        if not keys:
            return 0
        return int(keys[-1][len(KEY_PREFIX):].split("_", 1)[0]) + 1
