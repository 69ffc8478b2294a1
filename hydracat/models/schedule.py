"""
Treatment Schedule Schemas
==========================
A schedule describes when a treatment is due. Read-only input to the
logging layer: schedules are created elsewhere and handed in as
"today's schedules" by the UI.
"""

from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from hydracat.core.dates import to_local_naive


class TreatmentType(str, Enum):
    MEDICATION = "medication"
    FLUID = "fluid"


class TreatmentFrequency(str, Enum):
    ONCE_DAILY = "once_daily"
    TWICE_DAILY = "twice_daily"
    THRICE_DAILY = "thrice_daily"
    EVERY_OTHER_DAY = "every_other_day"
    EVERY_3_DAYS = "every_3_days"


# Days between due dates for interval frequencies, anchored on created_at
_INTERVAL_DAYS = {
    TreatmentFrequency.EVERY_OTHER_DAY: 2,
    TreatmentFrequency.EVERY_3_DAYS: 3,
}


class Schedule(BaseModel):
    id: str
    treatment_type: TreatmentType
    frequency: TreatmentFrequency = TreatmentFrequency.ONCE_DAILY
    reminder_times: list[time] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime

    # Medication schedules
    medication_name: Optional[str] = None
    target_dosage: Optional[float] = None
    medication_unit: Optional[str] = None

    # Fluid schedules
    target_volume: Optional[float] = None

    @field_validator("created_at")
    @classmethod
    def _local_time(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    @property
    def is_medication(self) -> bool:
        return self.treatment_type == TreatmentType.MEDICATION

    @property
    def is_fluid(self) -> bool:
        return self.treatment_type == TreatmentType.FLUID

    def is_due_on(self, day: date) -> bool:
        if not self.is_active:
            return False
        interval = _INTERVAL_DAYS.get(self.frequency)
        if interval is None:
            return True
        elapsed = (day - self.created_at.date()).days
        return elapsed >= 0 and elapsed % interval == 0

    def reminder_times_on(self, day: date) -> list[datetime]:
        """Reminder slots as full datetimes on `day`, earliest first."""
        if not self.is_due_on(day):
            return []
        return sorted(datetime.combine(day, t.replace(tzinfo=None)) for t in self.reminder_times)
