"""
Treatment Session Schemas
=========================
One logged medication dose or fluid therapy session. Rows map 1:1 onto
the `medication_sessions` and `fluid_sessions` tables, so to_row() is a
plain JSON dump.

Datetimes are normalised to naive local time on the way in: the daily
cache and the duplicate window both reason in the owner's local day.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hydracat.core.dates import to_local_naive

STRESS_LEVELS = ("low", "medium", "high")


def _new_id() -> str:
    return str(uuid.uuid4())


def slot_session_id(seed: str, schedule_id: str, scheduled_time: datetime) -> str:
    """Stable id for one quick-logged slot, so a retried batch rewrites the same rows."""
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{seed}/{schedule_id}/{scheduled_time.isoformat()}"))


class _SessionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    user_id: str
    pet_id: str
    date_time: datetime
    notes: Optional[str] = Field(None, max_length=500)
    schedule_id: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("date_time", "scheduled_time", "created_at")
    @classmethod
    def _local_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value) if value is not None else None

    @property
    def effective_time(self) -> datetime:
        """Scheduled slot if the session was matched to one, else the logged time."""
        return self.scheduled_time or self.date_time

    def with_schedule(self, schedule_id: str, scheduled_time: datetime):
        return self.model_copy(
            update={"schedule_id": schedule_id, "scheduled_time": scheduled_time}
        )

    def to_row(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict):
        return cls.model_validate(row)


class MedicationSession(_SessionBase):
    """A single dose given (or marked missed) for a named medication."""

    medication_name: str
    dosage_given: float
    dosage_scheduled: float
    medication_unit: str
    completed: bool = True

    @classmethod
    def from_schedule(
        cls,
        schedule,
        scheduled_time: datetime,
        user_id: str,
        pet_id: str,
        session_id: Optional[str] = None,
    ) -> "MedicationSession":
        """Completed session for one reminder slot, used by quick-log."""
        dosage = schedule.target_dosage or 0.0
        return cls(
            id=session_id or _new_id(),
            user_id=user_id,
            pet_id=pet_id,
            date_time=scheduled_time,
            medication_name=schedule.medication_name or "",
            dosage_given=dosage,
            dosage_scheduled=dosage,
            medication_unit=schedule.medication_unit or "",
            completed=True,
            schedule_id=schedule.id,
            scheduled_time=scheduled_time,
        )


class FluidSession(_SessionBase):
    """Subcutaneous fluid therapy session."""

    volume_given: float
    injection_site: Optional[str] = None
    stress_level: Optional[str] = None  # one of STRESS_LEVELS

    @classmethod
    def from_schedule(
        cls,
        schedule,
        scheduled_time: datetime,
        user_id: str,
        pet_id: str,
        session_id: Optional[str] = None,
    ) -> "FluidSession":
        return cls(
            id=session_id or _new_id(),
            user_id=user_id,
            pet_id=pet_id,
            date_time=scheduled_time,
            volume_given=schedule.target_volume or 0.0,
            schedule_id=schedule.id,
            scheduled_time=scheduled_time,
        )
