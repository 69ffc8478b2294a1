"""
Remote Treatment Store
======================
Supabase adapter for treatment sessions and their summary aggregates.

Writes go through Postgres functions so a session insert and its daily
and monthly summary increments land atomically, with server-side
timestamps:

- log_treatment_sessions(p_user_id, p_pet_id, p_medication_sessions,
  p_fluid_sessions, p_daily_deltas, p_monthly_deltas)
  Inserts are keyed by session id; an id that already exists is skipped
  together with its deltas, so replaying a queued write is safe.
- update_treatment_session(p_user_id, p_pet_id, p_table, p_session,
  p_summary_date, p_month_id, p_delta)

Every Supabase failure surfaces as RemoteStoreError.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Optional

from supabase import Client

from hydracat.core.dates import date_key, month_key, start_of_day
from hydracat.models.session import FluidSession, MedicationSession
from hydracat.models.summary import DailySummary, MonthlySummary, SummaryUpdate

logger = logging.getLogger(__name__)

MEDICATION_TABLE = "medication_sessions"
FLUID_TABLE = "fluid_sessions"
DAILY_SUMMARY_TABLE = "treatment_summaries_daily"
MONTHLY_SUMMARY_TABLE = "treatment_summaries_monthly"

# Columns for the lightweight "today" read
_DAILY_COUNT_COLUMNS = (
    "summary_date,medication_total_doses,medication_scheduled_doses,"
    "medication_missed_count,fluid_session_count,fluid_treatment_done"
)

DEFAULT_SESSION_LIMIT = 10


class RemoteStoreError(Exception):
    """A Supabase read or write failed."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


def _summary_deltas(
    medication_sessions: list[MedicationSession],
    fluid_sessions: list[FluidSession],
) -> tuple[list[dict], list[dict]]:
    """Merge per-session updates into one delta per day and one per month."""
    by_day: dict[date, list[SummaryUpdate]] = defaultdict(list)
    for s in medication_sessions:
        by_day[s.date_time.date()].append(SummaryUpdate.for_medication(s))
    for s in fluid_sessions:
        by_day[s.date_time.date()].append(SummaryUpdate.for_fluid(s))

    by_month: dict[str, list[SummaryUpdate]] = defaultdict(list)
    daily = []
    for day, updates in sorted(by_day.items()):
        merged = SummaryUpdate.merge(updates)
        daily.append({"summary_date": date_key(day), **merged.to_payload()})
        by_month[month_key(day)].append(merged)

    monthly = [
        {"month_id": month, **SummaryUpdate.merge(updates).to_payload()}
        for month, updates in sorted(by_month.items())
    ]
    return daily, monthly


class RemoteStore:

    def __init__(self, db: Client) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def commit_sessions(
        self,
        user_id: str,
        pet_id: str,
        medication_sessions: Optional[list[MedicationSession]] = None,
        fluid_sessions: Optional[list[FluidSession]] = None,
    ) -> None:
        """Write sessions plus their summary increments as one batch."""
        medication_sessions = medication_sessions or []
        fluid_sessions = fluid_sessions or []
        daily, monthly = _summary_deltas(medication_sessions, fluid_sessions)
        params = {
            "p_user_id": user_id,
            "p_pet_id": pet_id,
            "p_medication_sessions": [s.to_row() for s in medication_sessions],
            "p_fluid_sessions": [s.to_row() for s in fluid_sessions],
            "p_daily_deltas": daily,
            "p_monthly_deltas": monthly,
        }
        try:
            self._db.rpc("log_treatment_sessions", params).execute()
        except Exception as exc:
            raise RemoteStoreError("log_treatment_sessions", str(exc)) from exc
        logger.info(
            "Committed %d medication and %d fluid sessions for pet %s",
            len(medication_sessions), len(fluid_sessions), pet_id,
        )

    async def update_medication_session(
        self, user_id: str, pet_id: str, old: MedicationSession, new: MedicationSession
    ) -> None:
        await self._update(user_id, pet_id, MEDICATION_TABLE, new, SummaryUpdate.for_medication_edit(old, new))

    async def update_fluid_session(
        self, user_id: str, pet_id: str, old: FluidSession, new: FluidSession
    ) -> None:
        await self._update(user_id, pet_id, FLUID_TABLE, new, SummaryUpdate.for_fluid_edit(old, new))

    async def _update(self, user_id: str, pet_id: str, table: str, session, delta: SummaryUpdate) -> None:
        day = session.date_time.date()
        params = {
            "p_user_id": user_id,
            "p_pet_id": pet_id,
            "p_table": table,
            "p_session": session.to_row(),
            "p_summary_date": date_key(day),
            "p_month_id": month_key(day),
            "p_delta": delta.to_payload(),
        }
        try:
            self._db.rpc("update_treatment_session", params).execute()
        except Exception as exc:
            raise RemoteStoreError("update_treatment_session", str(exc)) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_daily_summary(self, user_id: str, pet_id: str, day: date) -> Optional[DailySummary]:
        row = self._single(DAILY_SUMMARY_TABLE, "*", user_id, pet_id, "summary_date", date_key(day))
        return DailySummary.model_validate(row) if row else None

    async def fetch_daily_counts(self, user_id: str, pet_id: str, day: date) -> Optional[DailySummary]:
        """Counters only; used when the caller just needs 'anything logged today?'."""
        row = self._single(DAILY_SUMMARY_TABLE, _DAILY_COUNT_COLUMNS, user_id, pet_id, "summary_date", date_key(day))
        return DailySummary.model_validate(row) if row else None

    async def fetch_monthly_summary(self, user_id: str, pet_id: str, day: date) -> Optional[MonthlySummary]:
        row = self._single(MONTHLY_SUMMARY_TABLE, "*", user_id, pet_id, "month_id", month_key(day))
        return MonthlySummary.model_validate(row) if row else None

    async def fetch_todays_medication_sessions(
        self,
        user_id: str,
        pet_id: str,
        now: datetime,
        medication_name: Optional[str] = None,
        limit: int = DEFAULT_SESSION_LIMIT,
    ) -> list[MedicationSession]:
        """Today's sessions, newest first; optionally one medication only."""
        rows = self._todays_rows(MEDICATION_TABLE, user_id, pet_id, now, limit, medication_name)
        return [MedicationSession.from_row(r) for r in rows]

    async def fetch_todays_fluid_sessions(
        self, user_id: str, pet_id: str, now: datetime, limit: int = DEFAULT_SESSION_LIMIT
    ) -> list[FluidSession]:
        rows = self._todays_rows(FLUID_TABLE, user_id, pet_id, now, limit)
        return [FluidSession.from_row(r) for r in rows]

    def _single(self, table: str, columns: str, user_id: str, pet_id: str, column: str, value: str) -> Optional[dict]:
        try:
            result = (
                self._db.table(table)
                .select(columns)
                .eq("user_id", user_id)
                .eq("pet_id", pet_id)
                .eq(column, value)
                .maybe_single()
                .execute()
            )
        except Exception as exc:
            raise RemoteStoreError(f"read {table}", str(exc)) from exc
        # maybe_single() returns None (not an empty result) when no row matches
        if result is None or not result.data:
            return None
        return result.data

    def _todays_rows(
        self,
        table: str,
        user_id: str,
        pet_id: str,
        now: datetime,
        limit: int,
        medication_name: Optional[str] = None,
    ) -> list[dict]:
        try:
            query = (
                self._db.table(table)
                .select("*")
                .eq("user_id", user_id)
                .eq("pet_id", pet_id)
            )
            if medication_name is not None:
                query = query.eq("medication_name", medication_name)
            result = (
                query.gte("date_time", start_of_day(now).isoformat())
                .order("date_time", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as exc:
            raise RemoteStoreError(f"read {table}", str(exc)) from exc
        return result.data or []
