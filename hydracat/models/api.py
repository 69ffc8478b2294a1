"""
HTTP Schemas
============
Request / response bodies for the logging and sync routers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from hydracat.models.schedule import Schedule
from hydracat.services.connectivity import ConnectionState


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class MedicationLogRequest(BaseModel):
    medication_name: str = Field(..., max_length=100)
    dosage_given: float
    dosage_scheduled: float
    medication_unit: str = Field(..., max_length=30)
    completed: bool = True
    date_time: Optional[datetime] = None  # defaults to now
    notes: Optional[str] = Field(None, max_length=500)
    todays_schedules: list[Schedule] = Field(default_factory=list)


class FluidLogRequest(BaseModel):
    volume_given: float
    injection_site: Optional[str] = Field(None, max_length=50)
    stress_level: Optional[str] = None
    date_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)
    active_schedule: Optional[Schedule] = None


class QuickLogRequest(BaseModel):
    todays_schedules: list[Schedule] = Field(default_factory=list)


class ConnectivityReport(BaseModel):
    state: ConnectionState


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class LogResponse(BaseModel):
    status: Literal["logged", "queued"]
    session_id: Optional[str] = None
    warning: Optional[str] = None
    bookkeeping_error: Optional[str] = None


class QuickLogResponse(BaseModel):
    session_count: int
    queued: bool = False
    warning: Optional[str] = None


class SyncNoticeResponse(BaseModel):
    message: str
    synced_count: int
    failed_count: int
    created_at: datetime
    is_failure: bool = False


class SyncFailureResponse(BaseModel):
    failed_count: int
    message: str


class SyncStatusResponse(BaseModel):
    queue_size: int
    show_queue_warning: bool
    is_syncing: bool
    connection_state: ConnectionState
    notice: Optional[SyncNoticeResponse] = None
    last_failure: Optional[SyncFailureResponse] = None


class SyncRunResponse(BaseModel):
    started: bool
    synced_count: int = 0
    failed_count: int = 0


class CacheStateResponse(BaseModel):
    warmed: bool
    medication_session_count: int = 0
    fluid_session_count: int = 0
    medication_names: list[str] = Field(default_factory=list)
