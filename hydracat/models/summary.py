"""
Treatment Summary Schemas
=========================
Three families:

- DailySummaryCache: the on-device snapshot of today's activity for one
  owner/pet. Drives the zero-read duplicate check and quick-log slot
  completion. Timestamps are stored as ISO-8601 strings so the blob stays
  plain JSON.
- DailySummary / MonthlySummary: aggregates read from the remote store.
- SummaryUpdate: the increments a write applies to the remote aggregates.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from hydracat.core.dates import date_key
from hydracat.models.schedule import TreatmentType


# ---------------------------------------------------------------------------
# Contributions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionContribution:
    """The additive effect of one session on the daily cache."""

    treatment_type: TreatmentType
    effective_time: datetime
    medication_name: Optional[str] = None
    dosage: float = 0.0
    volume: float = 0.0
    completed: bool = True

    @classmethod
    def for_medication(cls, session) -> "SessionContribution":
        return cls(
            treatment_type=TreatmentType.MEDICATION,
            effective_time=session.effective_time,
            medication_name=session.medication_name,
            dosage=session.dosage_given,
            completed=session.completed,
        )

    @classmethod
    def for_fluid(cls, session) -> "SessionContribution":
        return cls(
            treatment_type=TreatmentType.FLUID,
            effective_time=session.effective_time,
            volume=session.volume_given,
        )


def _append_bounded(times: list[str], value: str, limit: int) -> list[str]:
    return (times + [value])[-limit:]


def _remove_one(times: list[str], value: str) -> list[str]:
    if value not in times:
        return list(times)
    index = len(times) - 1 - times[::-1].index(value)
    return times[:index] + times[index + 1:]


def _parse_times(values: list[str]) -> list[datetime]:
    return [datetime.fromisoformat(v) for v in values]


# ---------------------------------------------------------------------------
# Local cache entry
# ---------------------------------------------------------------------------

class DailySummaryCache(BaseModel):
    date: str  # YYYY-MM-DD, local
    medication_session_count: int = 0
    fluid_session_count: int = 0
    medication_names: list[str] = Field(default_factory=list)
    total_medication_doses_given: float = 0.0
    total_fluid_volume_given: float = 0.0
    medication_recent_times: dict[str, list[str]] = Field(default_factory=dict)
    medication_completed_times: dict[str, list[str]] = Field(default_factory=dict)
    fluid_recent_times: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls, day: date) -> "DailySummaryCache":
        return cls(date=date_key(day))

    def is_valid_for(self, day: date) -> bool:
        return self.date == date_key(day)

    @property
    def has_any_sessions(self) -> bool:
        return self.medication_session_count > 0 or self.fluid_session_count > 0

    def has_medication_logged(self, medication_name: str) -> bool:
        return medication_name in self.medication_names

    def recent_times_for(self, medication_name: str) -> list[datetime]:
        return _parse_times(self.medication_recent_times.get(medication_name, []))

    def completed_times_for(self, medication_name: str) -> list[datetime]:
        return _parse_times(self.medication_completed_times.get(medication_name, []))

    def fluid_times(self) -> list[datetime]:
        return _parse_times(self.fluid_recent_times)

    @property
    def recorded_medication_times(self) -> int:
        return sum(len(v) for v in self.medication_recent_times.values())

    def with_contribution(self, contribution: SessionContribution, limit: int) -> "DailySummaryCache":
        stamp = contribution.effective_time.isoformat()
        if contribution.treatment_type == TreatmentType.FLUID:
            return self.model_copy(update={
                "fluid_session_count": self.fluid_session_count + 1,
                "total_fluid_volume_given": self.total_fluid_volume_given + contribution.volume,
                "fluid_recent_times": _append_bounded(self.fluid_recent_times, stamp, limit),
            })

        name = contribution.medication_name or ""
        names = list(self.medication_names)
        if name not in names:
            names.append(name)
        recent = dict(self.medication_recent_times)
        recent[name] = _append_bounded(recent.get(name, []), stamp, limit)
        completed = dict(self.medication_completed_times)
        if contribution.completed:
            completed[name] = _append_bounded(completed.get(name, []), stamp, limit)
        return self.model_copy(update={
            "medication_session_count": self.medication_session_count + 1,
            "medication_names": names,
            "total_medication_doses_given": self.total_medication_doses_given + contribution.dosage,
            "medication_recent_times": recent,
            "medication_completed_times": completed,
        })

    def without_contribution(self, contribution: SessionContribution) -> "DailySummaryCache":
        """Inverse of with_contribution, used to roll back an optimistic update."""
        stamp = contribution.effective_time.isoformat()
        if contribution.treatment_type == TreatmentType.FLUID:
            return self.model_copy(update={
                "fluid_session_count": max(0, self.fluid_session_count - 1),
                "total_fluid_volume_given": max(0.0, self.total_fluid_volume_given - contribution.volume),
                "fluid_recent_times": _remove_one(self.fluid_recent_times, stamp),
            })

        name = contribution.medication_name or ""
        recent = dict(self.medication_recent_times)
        recent[name] = _remove_one(recent.get(name, []), stamp)
        completed = dict(self.medication_completed_times)
        if contribution.completed:
            completed[name] = _remove_one(completed.get(name, []), stamp)
        names = list(self.medication_names)
        if not recent[name]:
            recent.pop(name)
            completed.pop(name, None)
            if name in names:
                names.remove(name)
        return self.model_copy(update={
            "medication_session_count": max(0, self.medication_session_count - 1),
            "medication_names": names,
            "total_medication_doses_given": max(0.0, self.total_medication_doses_given - contribution.dosage),
            "medication_recent_times": recent,
            "medication_completed_times": completed,
        })


# ---------------------------------------------------------------------------
# Remote aggregates
# ---------------------------------------------------------------------------

class DailySummary(BaseModel):
    """Row of treatment_summaries_daily. Lightweight reads fill only the counters."""

    summary_date: date
    medication_total_doses: int = 0
    medication_scheduled_doses: int = 0
    medication_missed_count: int = 0
    medication_total_dosage: float = 0.0
    fluid_session_count: int = 0
    fluid_total_volume: float = 0.0
    fluid_treatment_done: bool = False
    updated_at: Optional[datetime] = None

    @property
    def has_medication_activity(self) -> bool:
        return self.medication_scheduled_doses > 0


class MonthlySummary(BaseModel):
    """Row of treatment_summaries_monthly."""

    month_id: str  # YYYY-MM
    medication_total_doses: int = 0
    medication_scheduled_doses: int = 0
    medication_missed_count: int = 0
    medication_total_dosage: float = 0.0
    fluid_session_count: int = 0
    fluid_total_volume: float = 0.0
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Remote increments
# ---------------------------------------------------------------------------

class SummaryUpdate(BaseModel):
    """Deltas applied server-side to the daily and monthly aggregates."""

    medication_doses_delta: int = 0
    medication_scheduled_delta: int = 0
    medication_missed_delta: int = 0
    medication_dosage_delta: float = 0.0
    fluid_volume_delta: float = 0.0
    fluid_session_delta: int = 0
    fluid_treatment_done: Optional[bool] = None

    @classmethod
    def for_medication(cls, session) -> "SummaryUpdate":
        return cls(
            medication_doses_delta=1 if session.completed else 0,
            medication_scheduled_delta=1,
            medication_missed_delta=0 if session.completed else 1,
            medication_dosage_delta=session.dosage_given,
        )

    @classmethod
    def for_fluid(cls, session) -> "SummaryUpdate":
        return cls(
            fluid_volume_delta=session.volume_given,
            fluid_session_delta=1,
            fluid_treatment_done=True,
        )

    @classmethod
    def for_medication_edit(cls, old, new) -> "SummaryUpdate":
        flipped = int(new.completed) - int(old.completed)
        return cls(
            medication_doses_delta=flipped,
            medication_missed_delta=-flipped,
            medication_dosage_delta=new.dosage_given - old.dosage_given,
        )

    @classmethod
    def for_fluid_edit(cls, old, new) -> "SummaryUpdate":
        return cls(fluid_volume_delta=new.volume_given - old.volume_given)

    @classmethod
    def merge(cls, updates: list["SummaryUpdate"]) -> "SummaryUpdate":
        merged = cls()
        for u in updates:
            merged = cls(
                medication_doses_delta=merged.medication_doses_delta + u.medication_doses_delta,
                medication_scheduled_delta=merged.medication_scheduled_delta + u.medication_scheduled_delta,
                medication_missed_delta=merged.medication_missed_delta + u.medication_missed_delta,
                medication_dosage_delta=merged.medication_dosage_delta + u.medication_dosage_delta,
                fluid_volume_delta=merged.fluid_volume_delta + u.fluid_volume_delta,
                fluid_session_delta=merged.fluid_session_delta + u.fluid_session_delta,
                fluid_treatment_done=merged.fluid_treatment_done or u.fluid_treatment_done,
            )
        return merged

    @property
    def has_updates(self) -> bool:
        return bool(self.to_payload())

    def to_payload(self) -> dict:
        """Non-zero deltas only."""
        return {k: v for k, v in self.model_dump().items() if v}
