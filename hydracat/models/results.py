"""
Logging Outcomes
================
Typed results returned by the write coordinator and the offline queue.
Duplicates, validation problems and a full queue are expected outcomes,
so they come back as values rather than exceptions.

Every failure carries a short fixed message for the UI; technical
detail is kept separately for logs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class FailureKind(str, Enum):
    VALIDATION = "validation"
    NO_ACTIVE_SUBJECT = "no_active_subject"
    REMOTE_WRITE = "remote_write"
    QUEUE_FULL = "queue_full"
    UNEXPECTED = "unexpected"


USER_MESSAGES: dict[FailureKind, str] = {
    FailureKind.VALIDATION: "Please check the treatment details and try again.",
    FailureKind.NO_ACTIVE_SUBJECT: "Please select a pet before logging a treatment.",
    FailureKind.REMOTE_WRITE: "Unable to save right now. Please check your connection and try again.",
    FailureKind.QUEUE_FULL: "Too many treatments waiting to sync. Please connect to internet to free up space.",
    FailureKind.UNEXPECTED: "Something went wrong. Please try again.",
}

DUPLICATE_MESSAGE = (
    "You've already logged this treatment today. Would you like to update it instead?"
)


def queue_warning_message(size: int) -> str:
    return (
        f"You have {size} treatments waiting to sync. "
        "Connect to internet soon to avoid data loss."
    )


def queue_full_message(size: int) -> str:
    return (
        f"Too many treatments waiting to sync ({size}). "
        "Please connect to internet to free up space."
    )


def sync_failed_message(count: int) -> str:
    noun = "treatment" if count == 1 else "treatments"
    return f"{count} {noun} could not sync. Check your connection and tap retry."


SYNC_INTERRUPTED_MESSAGE = "Sync could not finish. Check your connection and tap retry."


def synced_message(count: int) -> str:
    noun = "treatment" if count == 1 else "treatments"
    return f"Synced {count} {noun}"


# ---------------------------------------------------------------------------
# Write outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LogSuccess:
    session_id: Optional[str]
    queued: bool = False
    warning: Optional[str] = None
    # Set when the write landed but cache refresh or notification
    # cancellation afterwards did not.
    bookkeeping_error: Optional[str] = None


@dataclass(frozen=True)
class DuplicateDetected:
    medication_name: str
    conflicting_time: datetime
    existing_session_id: Optional[str] = None
    message: str = DUPLICATE_MESSAGE


@dataclass(frozen=True)
class LogFailure:
    kind: FailureKind
    message: str
    detail: Optional[str] = None

    @classmethod
    def of(cls, kind: FailureKind, detail: Optional[str] = None, message: Optional[str] = None) -> "LogFailure":
        return cls(kind=kind, message=message or USER_MESSAGES[kind], detail=detail)


@dataclass(frozen=True)
class QuickLogResult:
    session_count: int
    queued: bool = False
    warning: Optional[str] = None
    bookkeeping_error: Optional[str] = None


MedicationLogResult = Union[LogSuccess, DuplicateDetected, LogFailure]
FluidLogResult = Union[LogSuccess, LogFailure]
UpdateLogResult = Union[LogSuccess, LogFailure]


# ---------------------------------------------------------------------------
# Enqueue outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Accepted:
    queue_size: int


@dataclass(frozen=True)
class AcceptedWithWarning:
    queue_size: int
    message: str


@dataclass(frozen=True)
class RejectedQueueFull:
    queue_size: int
    message: str


EnqueueResult = Union[Accepted, AcceptedWithWarning, RejectedQueueFull]
