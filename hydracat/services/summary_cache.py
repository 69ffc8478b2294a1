"""
Local Summary Cache
===================
Today's treatment activity per owner/pet, persisted on the device under
`dailySummary_{user_id}_{pet_id}_{YYYY-MM-DD}`.

Rules:
- Every mutation is a read-modify-write serialised on a per owner/pet
  asyncio.Lock and persisted before the call returns.
- Only contributions whose effective time falls on today are applied.
- A storage read failure behaves as "no entry". A storage write failure
  keeps the in-memory update, is logged, and is reported to analytics.
- Entries for any other day are invisible to get() and removed by
  clear_expired().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from hydracat.core.dates import Clock, date_key, minutes_between
from hydracat.core.observable import Observable
from hydracat.db.local_store import LocalStore, LocalStoreError
from hydracat.models.schedule import TreatmentType
from hydracat.models.summary import DailySummary, DailySummaryCache, SessionContribution
from hydracat.services import analytics as events
from hydracat.services.analytics import Analytics

logger = logging.getLogger(__name__)

KEY_PREFIX = "dailySummary_"


@dataclass(frozen=True)
class CacheChange:
    user_id: str
    pet_id: str
    entry: Optional[DailySummaryCache]


def closest_within_window(
    times: Iterable[datetime], target: datetime, window_minutes: float
) -> Optional[datetime]:
    """Closest timestamp within the window of target, or None."""
    best: Optional[datetime] = None
    for t in times:
        if minutes_between(t, target) > window_minutes:
            continue
        if best is None or minutes_between(t, target) < minutes_between(best, target):
            best = t
    return best


class LocalSummaryCache:

    def __init__(
        self,
        store: LocalStore,
        analytics: Optional[Analytics] = None,
        clock: Clock = datetime.now,
        recent_times_limit: int = 8,
        duplicate_window_minutes: int = 120,
    ) -> None:
        self._store = store
        self._analytics = analytics or Analytics()
        self._clock = clock
        self._limit = recent_times_limit
        self._window = duplicate_window_minutes
        self._memory: dict[str, DailySummaryCache] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self.changes: Observable[Optional[CacheChange]] = Observable(None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, user_id: str, pet_id: str) -> Optional[DailySummaryCache]:
        """Today's entry, or None if absent, unreadable, or from another day."""
        today = self._clock().date()
        return self._load(self._key(user_id, pet_id, date_key(today)), today)

    async def is_likely_duplicate(
        self,
        user_id: str,
        pet_id: str,
        medication_name: str,
        candidate_time: datetime,
        window_minutes: Optional[int] = None,
    ) -> bool:
        entry = await self.get(user_id, pet_id)
        if entry is None:
            return False
        window = self._window if window_minutes is None else window_minutes
        times = entry.recent_times_for(medication_name)
        return closest_within_window(times, candidate_time, window) is not None

    async def recent_times_for(self, user_id: str, pet_id: str, medication_name: str) -> list[datetime]:
        entry = await self.get(user_id, pet_id)
        return entry.recent_times_for(medication_name) if entry else []

    async def completed_times_for(self, user_id: str, pet_id: str, medication_name: str) -> list[datetime]:
        entry = await self.get(user_id, pet_id)
        return entry.completed_times_for(medication_name) if entry else []

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def apply_medication_session(
        self,
        user_id: str,
        pet_id: str,
        medication_name: str,
        dosage_given: float,
        completed: bool,
        effective_time: datetime,
    ) -> DailySummaryCache:
        contribution = SessionContribution(
            treatment_type=TreatmentType.MEDICATION,
            effective_time=effective_time,
            medication_name=medication_name,
            dosage=dosage_given,
            completed=completed,
        )
        return await self.apply_contributions(user_id, pet_id, [contribution])

    async def apply_fluid_session(
        self,
        user_id: str,
        pet_id: str,
        volume_given: float,
        effective_time: Optional[datetime] = None,
    ) -> DailySummaryCache:
        contribution = SessionContribution(
            treatment_type=TreatmentType.FLUID,
            effective_time=effective_time or self._clock(),
            volume=volume_given,
        )
        return await self.apply_contributions(user_id, pet_id, [contribution])

    async def apply_quick_log_batch(
        self, user_id: str, pet_id: str, contributions: list[SessionContribution]
    ) -> DailySummaryCache:
        """Apply a whole batch in one read-modify-write."""
        return await self.apply_contributions(user_id, pet_id, contributions)

    async def apply_contributions(
        self, user_id: str, pet_id: str, contributions: list[SessionContribution]
    ) -> DailySummaryCache:
        today = self._clock().date()

        def update(entry: DailySummaryCache) -> DailySummaryCache:
            for c in contributions:
                if c.effective_time.date() != today:
                    logger.debug("Skipping cache contribution for %s (not today)", c.effective_time)
                    continue
                entry = entry.with_contribution(c, self._limit)
            return entry

        return await self._mutate(user_id, pet_id, update)

    async def revert(
        self, user_id: str, pet_id: str, contributions: list[SessionContribution]
    ) -> DailySummaryCache:
        """Undo contributions previously applied (write failed after an optimistic update)."""
        today = self._clock().date()

        def update(entry: DailySummaryCache) -> DailySummaryCache:
            for c in contributions:
                if c.effective_time.date() == today:
                    entry = entry.without_contribution(c)
            return entry

        return await self._mutate(user_id, pet_id, update)

    async def apply_medication_update(
        self,
        user_id: str,
        pet_id: str,
        medication_name: str,
        dosage_delta: float,
        effective_time: datetime,
        was_completed: bool,
        is_completed: bool,
    ) -> DailySummaryCache:
        """Edit of an existing session: adjusts totals, never the session count."""
        stamp = effective_time.isoformat()

        def update(entry: DailySummaryCache) -> DailySummaryCache:
            completed = dict(entry.medication_completed_times)
            times = list(completed.get(medication_name, []))
            if is_completed and not was_completed:
                times = (times + [stamp])[-self._limit:]
            elif was_completed and not is_completed and stamp in times:
                times.remove(stamp)
            completed[medication_name] = times
            return entry.model_copy(update={
                "total_medication_doses_given": max(0.0, entry.total_medication_doses_given + dosage_delta),
                "medication_completed_times": completed,
            })

        return await self._mutate(user_id, pet_id, update)

    async def apply_fluid_update(self, user_id: str, pet_id: str, volume_delta: float) -> DailySummaryCache:
        def update(entry: DailySummaryCache) -> DailySummaryCache:
            return entry.model_copy(update={
                "total_fluid_volume_given": max(0.0, entry.total_fluid_volume_given + volume_delta),
            })

        return await self._mutate(user_id, pet_id, update)

    async def warm(
        self,
        user_id: str,
        pet_id: str,
        summary: Optional[DailySummary],
        medication_sessions: Iterable = (),
        fluid_sessions: Iterable = (),
    ) -> DailySummaryCache:
        """Replace today's entry from remote state. Running it twice yields the same entry."""
        today = self._clock().date()
        entry = DailySummaryCache.empty(today)
        for session in sorted(medication_sessions, key=lambda s: s.effective_time):
            entry = entry.with_contribution(SessionContribution.for_medication(session), self._limit)
        for session in sorted(fluid_sessions, key=lambda s: s.effective_time):
            entry = entry.with_contribution(SessionContribution.for_fluid(session), self._limit)

        if summary is not None:
            # Counts come from the aggregate; the session reads above are bounded
            # and may be partial.
            entry = entry.model_copy(update={
                "medication_session_count": max(summary.medication_scheduled_doses, entry.medication_session_count),
                "total_medication_doses_given": summary.medication_total_dosage,
                "fluid_session_count": max(summary.fluid_session_count, entry.fluid_session_count),
                "total_fluid_volume_given": summary.fluid_total_volume,
            })

        return await self._mutate(user_id, pet_id, lambda _: entry)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def clear_expired(self) -> int:
        """Remove every entry not dated today. Returns how many were removed."""
        today = date_key(self._clock().date())
        removed = 0
        for key in list(self._memory):
            if not key.endswith(f"_{today}"):
                del self._memory[key]
        try:
            for key in self._store.keys(KEY_PREFIX):
                if key.rsplit("_", 1)[-1] != today:
                    self._store.remove(key)
                    removed += 1
        except LocalStoreError as exc:
            logger.warning("Could not clear expired summary caches: %s", exc)
        if removed:
            logger.info("Cleared %d expired summary cache entries", removed)
        return removed

    async def clear_pet(self, user_id: str, pet_id: str) -> None:
        prefix = f"{KEY_PREFIX}{user_id}_{pet_id}_"
        for key in [k for k in self._memory if k.startswith(prefix)]:
            del self._memory[key]
        try:
            for key in self._store.keys(prefix):
                self._store.remove(key)
        except LocalStoreError as exc:
            logger.warning("Could not clear summary cache for pet %s: %s", pet_id, exc)
        self.changes.set(CacheChange(user_id, pet_id, None), force=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _key(user_id: str, pet_id: str, day: str) -> str:
        return f"{KEY_PREFIX}{user_id}_{pet_id}_{day}"

    def _lock_for(self, user_id: str, pet_id: str) -> asyncio.Lock:
        return self._locks.setdefault((user_id, pet_id), asyncio.Lock())

    def _load(self, key: str, today) -> Optional[DailySummaryCache]:
        entry = self._memory.get(key)
        if entry is None:
            entry = self._read(key)
        if entry is None:
            return None
        if not entry.is_valid_for(today):
            self._memory.pop(key, None)
            return None
        self._memory[key] = entry
        return entry

    def _read(self, key: str) -> Optional[DailySummaryCache]:
        try:
            raw = self._store.get(key)
        except LocalStoreError as exc:
            logger.warning("Summary cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return DailySummaryCache.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable summary cache %s: %s", key, exc)
            return None

    async def _mutate(
        self,
        user_id: str,
        pet_id: str,
        update: Callable[[DailySummaryCache], DailySummaryCache],
    ) -> DailySummaryCache:
        async with self._lock_for(user_id, pet_id):
            today = self._clock().date()
            key = self._key(user_id, pet_id, date_key(today))
            current = self._load(key, today) or DailySummaryCache.empty(today)
            entry = update(current)
            self._memory[key] = entry
            try:
                self._store.set(key, entry.model_dump_json())
            except LocalStoreError as exc:
                logger.warning("Summary cache write failed for %s: %s", key, exc)
                self._analytics.emit(events.CACHE_WRITE_FAILURE, key=key, error=str(exc))
        self.changes.set(CacheChange(user_id, pet_id, entry), force=True)
        return entry
