"""
Remote Summary Reader
=====================
Read-through cache in front of the remote daily and monthly aggregates.
Daily entries live 5 minutes, monthly entries 15. Only found summaries
are cached. Any read failure returns None; callers treat that as
"no prior data".
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from hydracat.core.dates import Clock, date_key, month_key
from hydracat.models.summary import DailySummary, MonthlySummary
from hydracat.services.remote_store import RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)


class RemoteSummaryReader:

    def __init__(
        self,
        store: RemoteStore,
        clock: Clock = datetime.now,
        daily_ttl: timedelta = timedelta(minutes=5),
        monthly_ttl: timedelta = timedelta(minutes=15),
    ) -> None:
        self._store = store
        self._clock = clock
        self._daily_ttl = daily_ttl
        self._monthly_ttl = monthly_ttl
        self._daily: dict[tuple[str, str, str], tuple[DailySummary, datetime]] = {}
        self._monthly: dict[tuple[str, str, str], tuple[MonthlySummary, datetime]] = {}

    async def get_daily_summary(self, user_id: str, pet_id: str, day: date) -> Optional[DailySummary]:
        key = (user_id, pet_id, date_key(day))
        cached = self._fresh(self._daily, key, self._daily_ttl)
        if cached is not None:
            return cached
        try:
            summary = await self._store.fetch_daily_summary(user_id, pet_id, day)
        except RemoteStoreError as exc:
            logger.warning("Daily summary read failed for pet %s on %s: %s", pet_id, key[2], exc)
            return None
        if summary is not None:
            self._daily[key] = (summary, self._clock())
        return summary

    async def get_monthly_summary(self, user_id: str, pet_id: str, day: date) -> Optional[MonthlySummary]:
        key = (user_id, pet_id, month_key(day))
        cached = self._fresh(self._monthly, key, self._monthly_ttl)
        if cached is not None:
            return cached
        try:
            summary = await self._store.fetch_monthly_summary(user_id, pet_id, day)
        except RemoteStoreError as exc:
            logger.warning("Monthly summary read failed for pet %s in %s: %s", pet_id, key[2], exc)
            return None
        if summary is not None:
            self._monthly[key] = (summary, self._clock())
        return summary

    async def get_today_summary(
        self, user_id: str, pet_id: str, lightweight: bool = False
    ) -> Optional[DailySummary]:
        """Today's aggregate. Lightweight reads fetch counters only and skip the TTL map."""
        today = self._clock().date()
        if not lightweight:
            return await self.get_daily_summary(user_id, pet_id, today)
        try:
            return await self._store.fetch_daily_counts(user_id, pet_id, today)
        except RemoteStoreError as exc:
            logger.warning("Lightweight summary read failed for pet %s: %s", pet_id, exc)
            return None

    def invalidate_day(self, user_id: str, pet_id: str, day: date) -> None:
        self._daily.pop((user_id, pet_id, date_key(day)), None)
        self._monthly.pop((user_id, pet_id, month_key(day)), None)

    def clear_all_caches(self) -> None:
        self._daily.clear()
        self._monthly.clear()

    def _fresh(self, cache: dict, key: tuple, ttl: timedelta):
        hit = cache.get(key)
        if hit is None:
            return None
        summary, fetched_at = hit
        if self._clock() - fetched_at >= ttl:
            del cache[key]
            return None
        return summary
