"""
Treatment Logging Router
========================
POST /api/v1/logging/medication: log one medication dose
POST /api/v1/logging/fluid: log one fluid session
POST /api/v1/logging/quick-log: log every remaining slot due today
POST /api/v1/logging/resume: clear expired caches and warm today's

The write routes go through the LoggingCoordinator, which decides between the
online write and the offline queue. Outcomes map to HTTP as:

  logged / queued        201
  no active pet          400
  duplicate dose         409 (body carries the conflicting time)
  validation             422
  remote write failed    502
  offline queue full     503
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from hydracat.models.api import (
    CacheStateResponse,
    FluidLogRequest,
    LogResponse,
    MedicationLogRequest,
    QuickLogRequest,
    QuickLogResponse,
)
from hydracat.models.results import DuplicateDetected, FailureKind, LogFailure, LogSuccess
from hydracat.models.session import FluidSession, MedicationSession
from hydracat.routers.deps import get_active_profile, get_stack
from hydracat.services.profile import ActiveProfile
from hydracat.stack import LoggingStack

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/logging", tags=["logging"])

_FAILURE_STATUS = {
    FailureKind.NO_ACTIVE_SUBJECT: status.HTTP_400_BAD_REQUEST,
    FailureKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureKind.REMOTE_WRITE: status.HTTP_502_BAD_GATEWAY,
    FailureKind.QUEUE_FULL: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureKind.UNEXPECTED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _raise_failure(result: LogFailure) -> None:
    # detail stays in the logs; the client only gets the short message
    raise HTTPException(
        status_code=_FAILURE_STATUS[result.kind],
        detail={"message": result.message, "code": result.kind.value},
    )


def _to_response(result: LogSuccess) -> LogResponse:
    return LogResponse(
        status="queued" if result.queued else "logged",
        session_id=result.session_id,
        warning=result.warning,
        bookkeeping_error=result.bookkeeping_error,
    )


def _ids(profile: Optional[ActiveProfile]) -> dict:
    # Placeholder ids when no pet is selected; the coordinator rejects the write.
    if profile is None:
        return {"user_id": "", "pet_id": ""}
    return {"user_id": profile.user_id, "pet_id": profile.pet_id}


@router.post("/medication", response_model=LogResponse, status_code=status.HTTP_201_CREATED)
async def log_medication(
    body: MedicationLogRequest,
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> LogResponse:
    session = MedicationSession(
        **_ids(profile),
        date_time=body.date_time or datetime.now(),
        medication_name=body.medication_name,
        dosage_given=body.dosage_given,
        dosage_scheduled=body.dosage_scheduled,
        medication_unit=body.medication_unit,
        completed=body.completed,
        notes=body.notes,
    )
    result = await stack.coordinator.log_medication_session(session, body.todays_schedules, profile=profile)

    if isinstance(result, DuplicateDetected):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": result.message,
                "code": "duplicate",
                "medication_name": result.medication_name,
                "conflicting_time": result.conflicting_time.isoformat(),
            },
        )
    if isinstance(result, LogFailure):
        _raise_failure(result)
    return _to_response(result)


@router.post("/fluid", response_model=LogResponse, status_code=status.HTTP_201_CREATED)
async def log_fluid(
    body: FluidLogRequest,
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> LogResponse:
    session = FluidSession(
        **_ids(profile),
        date_time=body.date_time or datetime.now(),
        volume_given=body.volume_given,
        injection_site=body.injection_site,
        stress_level=body.stress_level,
        notes=body.notes,
    )
    result = await stack.coordinator.log_fluid_session(session, body.active_schedule, profile=profile)
    if isinstance(result, LogFailure):
        _raise_failure(result)
    return _to_response(result)


@router.post("/quick-log", response_model=QuickLogResponse, status_code=status.HTTP_201_CREATED)
async def quick_log(
    body: QuickLogRequest,
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> QuickLogResponse:
    result = await stack.coordinator.quick_log_all_treatments(body.todays_schedules, profile=profile)
    if isinstance(result, LogFailure):
        _raise_failure(result)
    return QuickLogResponse(session_count=result.session_count, queued=result.queued, warning=result.warning)


@router.post("/resume", response_model=CacheStateResponse)
async def resume(
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> CacheStateResponse:
    """App returned to the foreground: drop stale day caches and re-warm today's."""
    entry = await stack.coordinator.on_resume(profile=profile)
    if entry is None:
        return CacheStateResponse(warmed=False)
    return CacheStateResponse(
        warmed=True,
        medication_session_count=entry.medication_session_count,
        fluid_session_count=entry.fluid_session_count,
        medication_names=entry.medication_names,
    )
