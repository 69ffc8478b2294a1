"""
Component wiring
================
Builds the logging data layer with explicit constructor injection. One
LoggingStack per process; the FastAPI app keeps it on app.state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
from supabase import Client

from hydracat.config import Settings
from hydracat.core.dates import Clock
from hydracat.db.local_store import LocalStore, SqliteLocalStore
from hydracat.db.supabase import get_supabase_client
from hydracat.services.analytics import Analytics, AnalyticsSink
from hydracat.services.connectivity import ConnectivityMonitor
from hydracat.services.duplicate_detection import DuplicateDetector
from hydracat.services.logging_coordinator import LoggingCoordinator, NotificationCanceller
from hydracat.services.offline_queue import OfflineQueue
from hydracat.services.profile import ActiveProfileHolder
from hydracat.services.remote_store import RemoteStore
from hydracat.services.summary_cache import LocalSummaryCache
from hydracat.services.summary_reader import RemoteSummaryReader
from hydracat.services.sync_orchestrator import SyncOrchestrator


@dataclass
class LoggingStack:
    settings: Settings
    local_store: LocalStore
    analytics: Analytics
    cache: LocalSummaryCache
    remote: RemoteStore
    reader: RemoteSummaryReader
    detector: DuplicateDetector
    connectivity: ConnectivityMonitor
    queue: OfflineQueue
    profiles: ActiveProfileHolder
    coordinator: LoggingCoordinator
    orchestrator: SyncOrchestrator


def build_stack(
    settings: Settings,
    *,
    db: Optional[Client] = None,
    remote: Optional[RemoteStore] = None,
    local_store: Optional[LocalStore] = None,
    analytics_sink: Optional[AnalyticsSink] = None,
    notifications: Optional[NotificationCanceller] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Clock = datetime.now,
) -> LoggingStack:
    if local_store is None:
        local_store = SqliteLocalStore(settings.local_store_path)
    analytics = Analytics(analytics_sink)
    if remote is None:
        remote = RemoteStore(db if db is not None else get_supabase_client())

    cache = LocalSummaryCache(
        local_store,
        analytics=analytics,
        clock=clock,
        recent_times_limit=settings.recent_times_limit,
        duplicate_window_minutes=settings.duplicate_window_minutes,
    )
    reader = RemoteSummaryReader(
        remote,
        clock=clock,
        daily_ttl=timedelta(seconds=settings.daily_summary_ttl_seconds),
        monthly_ttl=timedelta(seconds=settings.monthly_summary_ttl_seconds),
    )
    detector = DuplicateDetector(
        cache, remote, analytics=analytics, clock=clock,
        window_minutes=settings.duplicate_window_minutes,
    )
    connectivity = ConnectivityMonitor(
        settings.connectivity_probe_url,
        client=http_client,
        timeout_seconds=settings.connectivity_timeout_seconds,
    )
    queue = OfflineQueue(
        local_store,
        analytics=analytics,
        clock=clock,
        soft_limit=settings.queue_soft_limit,
        hard_limit=settings.queue_hard_limit,
        ttl_days=settings.queue_entry_ttl_days,
        max_attempts=settings.replay_max_attempts,
        backoff_seconds=settings.replay_backoff_seconds,
    )
    profiles = ActiveProfileHolder()
    coordinator = LoggingCoordinator(
        cache=cache,
        reader=reader,
        remote=remote,
        detector=detector,
        queue=queue,
        connectivity=connectivity,
        profiles=profiles,
        analytics=analytics,
        notifications=notifications,
        clock=clock,
        schedule_window_minutes=settings.schedule_match_window_minutes,
        duplicate_window_minutes=settings.duplicate_window_minutes,
    )
    queue.bind_replayer(coordinator.replay_operation)
    orchestrator = SyncOrchestrator(queue, connectivity, clock=clock)

    return LoggingStack(
        settings=settings,
        local_store=local_store,
        analytics=analytics,
        cache=cache,
        remote=remote,
        reader=reader,
        detector=detector,
        connectivity=connectivity,
        queue=queue,
        profiles=profiles,
        coordinator=coordinator,
        orchestrator=orchestrator,
    )
