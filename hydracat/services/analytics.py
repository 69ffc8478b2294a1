"""
Analytics
=========
Fire-and-forget event reporting. Callers never await an event and never
see a sink failure: a sink that raises (or returns a coroutine that
raises) is logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

# Event names
DUPLICATE_CHECK_CACHE_HIT = "duplicate_check_cache_hit"
DUPLICATE_CHECK_CACHE_MISS = "duplicate_check_cache_miss"
DUPLICATE_DETECTED = "duplicate_detected"
CACHE_WARM_SUCCESS = "cache_warm_success"
CACHE_WARM_FAILURE = "cache_warm_failure"
CACHE_WRITE_FAILURE = "cache_write_failure"
SESSION_LOGGED = "session_logged"
SESSION_UPDATED = "session_updated"
QUICK_LOG_COMPLETED = "quick_log_completed"
LOGGING_FAILURE = "logging_failure"
OFFLINE_LOGGING_QUEUED = "offline_logging_queued"
OFFLINE_QUEUE_FULL = "offline_queue_full"
OFFLINE_QUEUE_CORRUPTED_ENTRY = "offline_queue_corrupted_entry"
OFFLINE_REPLAY_NEAR_DUPLICATE = "offline_replay_near_duplicate"
OFFLINE_SYNC_COMPLETED = "offline_sync_completed"
OFFLINE_SYNC_FAILED = "offline_sync_failed"


class AnalyticsSink(Protocol):
    """Anything with a track() method; may be sync or async."""

    def track(self, event: str, params: dict[str, Any]) -> Any: ...


class LogAnalyticsSink:
    """Writes events to the application log."""

    def track(self, event: str, params: dict[str, Any]) -> None:
        logger.info("analytics event=%s params=%s", event, params)


class Analytics:

    def __init__(self, sink: Optional[AnalyticsSink] = None) -> None:
        self._sink = sink or LogAnalyticsSink()
        self._pending: set[asyncio.Task] = set()

    def emit(self, event: str, **params: Any) -> None:
        try:
            result = self._sink.track(event, params)
        except Exception as exc:
            logger.warning("Analytics sink failed for %s: %s", event, exc)
            return
        if inspect.isawaitable(result):
            self._schedule(event, result)

    def _schedule(self, event: str, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            # No running loop: nothing can drive the coroutine.
            logger.warning("Dropping analytics event %s: %s", event, exc)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finish(event, t))

    def _finish(self, event: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Analytics sink failed for %s: %s", event, exc)
