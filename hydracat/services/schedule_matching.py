"""
Schedule Matching
=================
Links a logged session to the reminder slot it most plausibly fulfils,
and lists today's slots for quick-log.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from hydracat.core.dates import minutes_between
from hydracat.models.schedule import Schedule


@dataclass(frozen=True)
class ScheduleMatch:
    schedule: Schedule
    scheduled_time: datetime


@dataclass(frozen=True)
class Slot:
    """One reminder of one schedule on a given day."""

    schedule: Schedule
    scheduled_time: datetime


def match_schedule(
    session_time: datetime,
    candidates: Iterable[Schedule],
    window_minutes: float,
) -> Optional[ScheduleMatch]:
    """Closest reminder on the session's day within the window.

    Ties keep the earlier candidate.
    """
    best: Optional[ScheduleMatch] = None
    best_distance = float("inf")
    for schedule in candidates:
        for slot in schedule.reminder_times_on(session_time.date()):
            distance = minutes_between(slot, session_time)
            if distance <= window_minutes and distance < best_distance:
                best = ScheduleMatch(schedule, slot)
                best_distance = distance
    return best


def match_medication_schedule(
    session, schedules: Iterable[Schedule], window_minutes: float
) -> Optional[ScheduleMatch]:
    candidates = [
        s for s in schedules
        if s.is_medication and s.is_active and s.medication_name == session.medication_name
    ]
    return match_schedule(session.date_time, candidates, window_minutes)


def match_fluid_schedule(
    session, schedules: Iterable[Schedule], window_minutes: float
) -> Optional[ScheduleMatch]:
    candidates = [s for s in schedules if s.is_fluid and s.is_active]
    return match_schedule(session.date_time, candidates, window_minutes)


def todays_slots(schedules: Iterable[Schedule], now: datetime) -> list[Slot]:
    """Every active reminder slot due today, in time order."""
    slots = [
        Slot(schedule, t)
        for schedule in schedules
        for t in schedule.reminder_times_on(now.date())
    ]
    return sorted(slots, key=lambda s: s.scheduled_time)
