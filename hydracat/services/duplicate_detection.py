"""
Duplicate Detection
===================
Decides which earlier sessions a new medication dose has to be compared
against, reading as little as possible:

Tier 1  No cache entry, nothing logged today, or this medication not
        logged today while the cache accounts for every session: no
        candidates, zero reads.
Tier 2  The cache holds a timestamp for this medication inside the
        window: one synthetic candidate at that time, zero reads.
        Outside the window with complete cache data: no candidates.
Tier 3  The cache cannot vouch for every dose (fewer recorded timestamps
        than sessions, e.g. after a warm without times or after pruning)
        and holds no in-window time for this medication: one bounded
        remote read.

Offline callers use cached_candidates(), which never goes past Tier 2.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from hydracat.core.dates import Clock, minutes_between
from hydracat.models.summary import DailySummaryCache
from hydracat.services import analytics as events
from hydracat.services.analytics import Analytics
from hydracat.services.remote_store import DEFAULT_SESSION_LIMIT, RemoteStore, RemoteStoreError
from hydracat.services.summary_cache import LocalSummaryCache, closest_within_window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateCandidate:
    medication_name: str
    effective_time: datetime
    session_id: Optional[str] = None  # None when synthesised from the cache
    source: str = "cache"  # cache | remote


def find_conflict(
    candidates: Iterable[DuplicateCandidate], effective_time: datetime, window_minutes: float
) -> Optional[DuplicateCandidate]:
    """Candidate closest to effective_time within the window, if any."""
    in_window = [
        c for c in candidates
        if minutes_between(c.effective_time, effective_time) <= window_minutes
    ]
    if not in_window:
        return None
    return min(in_window, key=lambda c: minutes_between(c.effective_time, effective_time))


class DuplicateDetector:

    def __init__(
        self,
        cache: LocalSummaryCache,
        remote: RemoteStore,
        analytics: Optional[Analytics] = None,
        clock: Clock = datetime.now,
        window_minutes: int = 120,
        session_limit: int = DEFAULT_SESSION_LIMIT,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._analytics = analytics or Analytics()
        self._clock = clock
        self._window = window_minutes
        self._limit = session_limit

    async def candidates_for(
        self, user_id: str, pet_id: str, medication_name: str, effective_time: datetime
    ) -> list[DuplicateCandidate]:
        entry = await self._cache.get(user_id, pet_id)
        decided, candidates = self._from_cache(entry, medication_name, effective_time)
        if decided:
            return candidates

        # Tier 3
        self._analytics.emit(
            events.DUPLICATE_CHECK_CACHE_MISS, medication_name=medication_name, tier=3,
        )
        try:
            sessions = await self._remote.fetch_todays_medication_sessions(
                user_id, pet_id, self._clock(), medication_name=medication_name, limit=self._limit,
            )
        except RemoteStoreError as exc:
            logger.warning("Duplicate check remote read failed for %s: %s", medication_name, exc)
            return []
        return [
            DuplicateCandidate(
                medication_name=s.medication_name,
                effective_time=s.effective_time,
                session_id=s.id,
                source="remote",
            )
            for s in sessions
        ]

    async def cached_candidates(
        self, user_id: str, pet_id: str, medication_name: str, effective_time: datetime
    ) -> list[DuplicateCandidate]:
        """Tiers 1 and 2 only. Never touches the network."""
        entry = await self._cache.get(user_id, pet_id)
        _, candidates = self._from_cache(entry, medication_name, effective_time)
        return candidates

    def _from_cache(
        self,
        entry: Optional[DailySummaryCache],
        medication_name: str,
        effective_time: datetime,
    ) -> tuple[bool, list[DuplicateCandidate]]:
        """(decided, candidates). decided=False means only a remote read can tell."""
        if entry is None or not entry.has_any_sessions:
            self._analytics.emit(events.DUPLICATE_CHECK_CACHE_MISS, medication_name=medication_name, tier=1)
            return True, []

        complete = entry.recorded_medication_times >= entry.medication_session_count
        if not entry.has_medication_logged(medication_name):
            if not complete:
                # Sessions exist that the cache has no name for.
                return False, []
            self._analytics.emit(events.DUPLICATE_CHECK_CACHE_MISS, medication_name=medication_name, tier=1)
            return True, []

        times = entry.recent_times_for(medication_name)
        hit = closest_within_window(times, effective_time, self._window)
        if hit is not None:
            self._analytics.emit(events.DUPLICATE_CHECK_CACHE_HIT, medication_name=medication_name, tier=2)
            return True, [DuplicateCandidate(medication_name=medication_name, effective_time=hit)]

        if complete:
            self._analytics.emit(events.DUPLICATE_CHECK_CACHE_MISS, medication_name=medication_name, tier=2)
            return True, []

        return False, []
