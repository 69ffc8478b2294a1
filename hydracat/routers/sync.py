"""
Offline Sync Router
===================
GET    /api/v1/sync/status: queue depth, sync notice, last failure
POST   /api/v1/sync/retry: manual sync (single-flight)
DELETE /api/v1/sync/notice: dismiss the current sync notice
PUT    /api/v1/sync/connectivity: the app shell reports a connectivity change

The UI polls /status every few seconds; it never drains the queue.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from hydracat.models.api import (
    ConnectivityReport,
    SyncFailureResponse,
    SyncNoticeResponse,
    SyncRunResponse,
    SyncStatusResponse,
)
from hydracat.routers.deps import get_active_profile, get_stack
from hydracat.services.profile import ActiveProfile
from hydracat.stack import LoggingStack

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> SyncStatusResponse:
    orchestrator = stack.orchestrator
    notice = orchestrator.notice.value
    failure = orchestrator.last_failure
    return SyncStatusResponse(
        queue_size=await stack.queue.size(),
        show_queue_warning=await stack.queue.should_show_warning(),
        is_syncing=orchestrator.is_syncing,
        connection_state=stack.connectivity.state.value,
        notice=SyncNoticeResponse(
            message=notice.message,
            synced_count=notice.synced_count,
            failed_count=notice.failed_count,
            created_at=notice.created_at,
            is_failure=notice.is_failure,
        ) if notice else None,
        last_failure=SyncFailureResponse(
            failed_count=failure.failed_count, message=failure.message,
        ) if failure else None,
    )


@router.post("/retry", response_model=SyncRunResponse)
async def retry_sync(
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> SyncRunResponse:
    report = await stack.orchestrator.sync_now()
    if report is None:
        return SyncRunResponse(started=False)
    return SyncRunResponse(started=True, synced_count=report.synced_count, failed_count=report.failed_count)


@router.delete("/notice", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_notice(
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> Response:
    stack.orchestrator.dismiss_notice()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/connectivity", status_code=status.HTTP_204_NO_CONTENT)
async def report_connectivity(
    body: ConnectivityReport,
    profile: Optional[ActiveProfile] = Depends(get_active_profile),
    stack: LoggingStack = Depends(get_stack),
) -> Response:
    # The orchestrator's listener schedules the sync; this call does not wait for it.
    stack.connectivity.report(body.state)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
