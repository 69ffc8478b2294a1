"""
Queued Operation Schemas
========================
A write captured while offline. Each variant carries exactly the
payload needed to replay it later; the `type` tag selects the variant
when a persisted entry is read back.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from hydracat.models.schedule import Schedule
from hydracat.models.session import FluidSession, MedicationSession


class OperationStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"


class RecentSession(BaseModel):
    """A cache-known earlier dose of the same medication, captured at enqueue."""

    medication_name: str
    effective_time: datetime


class _OperationBase(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    pet_id: str
    created_at: datetime = Field(default_factory=datetime.now)
    status: OperationStatus = OperationStatus.PENDING
    retry_count: int = 0
    last_error: Optional[str] = None

    def is_expired(self, now: datetime, ttl_days: int) -> bool:
        return now - self.created_at > timedelta(days=ttl_days)

    def marked_syncing(self):
        return self.model_copy(update={"status": OperationStatus.SYNCING})

    def marked_failed(self, error: str):
        return self.model_copy(update={
            "status": OperationStatus.FAILED,
            "retry_count": self.retry_count + 1,
            "last_error": error,
        })

    def marked_pending(self):
        return self.model_copy(update={"status": OperationStatus.PENDING, "last_error": None})


class CreateMedicationOperation(_OperationBase):
    type: Literal["create_medication"] = "create_medication"
    session: MedicationSession
    todays_schedules: list[Schedule] = Field(default_factory=list)
    recent_sessions: list[RecentSession] = Field(default_factory=list)


class CreateFluidOperation(_OperationBase):
    type: Literal["create_fluid"] = "create_fluid"
    session: FluidSession
    todays_schedule: Optional[Schedule] = None


class UpdateMedicationOperation(_OperationBase):
    type: Literal["update_medication"] = "update_medication"
    old_session: MedicationSession
    new_session: MedicationSession


class UpdateFluidOperation(_OperationBase):
    type: Literal["update_fluid"] = "update_fluid"
    old_session: FluidSession
    new_session: FluidSession


class QuickLogAllOperation(_OperationBase):
    type: Literal["quick_log_all"] = "quick_log_all"
    todays_schedules: list[Schedule] = Field(default_factory=list)


QueuedOperation = Annotated[
    Union[
        CreateMedicationOperation,
        CreateFluidOperation,
        UpdateMedicationOperation,
        UpdateFluidOperation,
        QuickLogAllOperation,
    ],
    Field(discriminator="type"),
]

_OPERATION_ADAPTER: TypeAdapter = TypeAdapter(QueuedOperation)


def parse_operation(raw: str) -> QueuedOperation:
    """Decode a persisted entry. Raises pydantic.ValidationError if corrupted."""
    return _OPERATION_ADAPTER.validate_json(raw)


def dump_operation(operation: QueuedOperation) -> str:
    return operation.model_dump_json()
