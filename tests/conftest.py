"""
Shared test fixtures
====================
- FrozenClock: controllable "now" injected everywhere a clock is taken
- FakeRemoteStore: in-memory stand-in for the Supabase adapter
- RecordingSink: analytics sink that keeps every event
- stack: a fully wired LoggingStack on top of the three above, online
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Optional

import pytest

from hydracat.config import Settings
from hydracat.db.local_store import MemoryLocalStore
from hydracat.models.schedule import Schedule, TreatmentFrequency, TreatmentType
from hydracat.models.session import FluidSession, MedicationSession
from hydracat.models.summary import DailySummary
from hydracat.services.connectivity import ConnectionState
from hydracat.services.profile import ActiveProfile
from hydracat.services.remote_store import RemoteStoreError
from hydracat.stack import build_stack

NOW = datetime(2026, 3, 10, 12, 0)
USER_ID = "user-1"
PET_ID = "pet-1"
PROFILE = ActiveProfile(USER_ID, PET_ID)


class FrozenClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def track(self, event: str, params: dict) -> None:
        self.events.append((event, params))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class FakeRemoteStore:
    """Mirrors RemoteStore's async surface; sessions are keyed by id like the real RPC."""

    def __init__(self) -> None:
        self.commits: list[dict] = []
        self.updates: list[dict] = []
        self.medication_sessions: dict[str, MedicationSession] = {}
        self.fluid_sessions: dict[str, FluidSession] = {}
        self.daily: dict[tuple[str, str, date], DailySummary] = {}
        self.reads: Counter = Counter()
        self.fail_next_writes = 0
        self.fail_writes = False
        self.fail_reads = False
        # Session-row reads only; daily summaries still succeed
        self.fail_session_reads = 0
        # Writes that land remotely but whose response never arrives
        self.lose_next_responses = 0

    def _maybe_fail_write(self, operation: str) -> None:
        if self.fail_writes or self.fail_next_writes > 0:
            self.fail_next_writes = max(0, self.fail_next_writes - 1)
            raise RemoteStoreError(operation, "network unreachable")

    def _maybe_fail_read(self, operation: str) -> None:
        if self.fail_reads:
            raise RemoteStoreError(operation, "network unreachable")

    def _maybe_fail_session_read(self, operation: str) -> None:
        self._maybe_fail_read(operation)
        if self.fail_session_reads > 0:
            self.fail_session_reads -= 1
            raise RemoteStoreError(operation, "network unreachable")

    async def commit_sessions(self, user_id, pet_id, medication_sessions=None, fluid_sessions=None):
        self._maybe_fail_write("log_treatment_sessions")
        medication_sessions = medication_sessions or []
        fluid_sessions = fluid_sessions or []
        self.commits.append({
            "user_id": user_id,
            "pet_id": pet_id,
            "medication": list(medication_sessions),
            "fluid": list(fluid_sessions),
        })
        for s in medication_sessions:
            self.medication_sessions.setdefault(s.id, s)
        for s in fluid_sessions:
            self.fluid_sessions.setdefault(s.id, s)
        if self.lose_next_responses > 0:
            self.lose_next_responses -= 1
            raise RemoteStoreError("log_treatment_sessions", "connection reset")

    async def update_medication_session(self, user_id, pet_id, old, new):
        self._maybe_fail_write("update_treatment_session")
        self.updates.append({"table": "medication_sessions", "old": old, "new": new})
        self.medication_sessions[new.id] = new

    async def update_fluid_session(self, user_id, pet_id, old, new):
        self._maybe_fail_write("update_treatment_session")
        self.updates.append({"table": "fluid_sessions", "old": old, "new": new})
        self.fluid_sessions[new.id] = new

    async def fetch_daily_summary(self, user_id, pet_id, day):
        self.reads["daily"] += 1
        self._maybe_fail_read("read treatment_summaries_daily")
        return self.daily.get((user_id, pet_id, day))

    async def fetch_daily_counts(self, user_id, pet_id, day):
        self.reads["daily_counts"] += 1
        self._maybe_fail_read("read treatment_summaries_daily")
        return self.daily.get((user_id, pet_id, day))

    async def fetch_monthly_summary(self, user_id, pet_id, day):
        self.reads["monthly"] += 1
        self._maybe_fail_read("read treatment_summaries_monthly")
        return None

    async def fetch_todays_medication_sessions(self, user_id, pet_id, now, medication_name=None, limit=10):
        self.reads["medication_sessions"] += 1
        self._maybe_fail_session_read("read medication_sessions")
        rows = [
            s for s in self.medication_sessions.values()
            if s.user_id == user_id and s.pet_id == pet_id
            and s.date_time.date() == now.date()
            and (medication_name is None or s.medication_name == medication_name)
        ]
        return sorted(rows, key=lambda s: s.date_time, reverse=True)[:limit]

    async def fetch_todays_fluid_sessions(self, user_id, pet_id, now, limit=10):
        self.reads["fluid_sessions"] += 1
        self._maybe_fail_session_read("read fluid_sessions")
        rows = [
            s for s in self.fluid_sessions.values()
            if s.user_id == user_id and s.pet_id == pet_id and s.date_time.date() == now.date()
        ]
        return sorted(rows, key=lambda s: s.date_time, reverse=True)[:limit]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_medication(
    name: str = "Benazepril",
    at: datetime = NOW,
    dosage: float = 1.0,
    completed: bool = True,
    **overrides,
) -> MedicationSession:
    fields = dict(
        user_id=USER_ID,
        pet_id=PET_ID,
        date_time=at,
        medication_name=name,
        dosage_given=dosage,
        dosage_scheduled=1.0,
        medication_unit="pill",
        completed=completed,
    )
    fields.update(overrides)
    return MedicationSession(**fields)


def make_fluid(volume: float = 100.0, at: datetime = NOW, **overrides) -> FluidSession:
    fields = dict(user_id=USER_ID, pet_id=PET_ID, date_time=at, volume_given=volume)
    fields.update(overrides)
    return FluidSession(**fields)


def medication_schedule(
    name: str = "Benazepril",
    times: tuple = (time(8, 0), time(20, 0)),
    schedule_id: Optional[str] = None,
    **overrides,
) -> Schedule:
    fields = dict(
        id=schedule_id or f"sched-{name.lower()}",
        treatment_type=TreatmentType.MEDICATION,
        frequency=TreatmentFrequency.TWICE_DAILY,
        reminder_times=list(times),
        created_at=datetime(2026, 1, 1),
        medication_name=name,
        target_dosage=1.0,
        medication_unit="pill",
    )
    fields.update(overrides)
    return Schedule(**fields)


def fluid_schedule(times: tuple = (time(9, 0),), **overrides) -> Schedule:
    fields = dict(
        id="sched-fluid",
        treatment_type=TreatmentType.FLUID,
        frequency=TreatmentFrequency.ONCE_DAILY,
        reminder_times=list(times),
        created_at=datetime(2026, 1, 1),
        target_volume=150.0,
    )
    fields.update(overrides)
    return Schedule(**fields)


def make_settings(**overrides) -> Settings:
    fields = dict(
        supabase_url="http://localhost:54321",
        supabase_service_key="test-key",
        replay_max_attempts=2,
        replay_backoff_seconds=[0.0],
    )
    fields.update(overrides)
    return Settings(_env_file=None, **fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def local_store() -> MemoryLocalStore:
    return MemoryLocalStore()


@pytest.fixture
def stack(clock, remote, sink, local_store):
    built = build_stack(
        make_settings(),
        remote=remote,
        local_store=local_store,
        analytics_sink=sink,
        clock=clock,
    )
    built.connectivity.report(ConnectionState.CONNECTED)
    built.profiles.select(USER_ID, PET_ID)
    return built
