"""
Session Validation
==================
Structural and business rules checked before anything is written,
online or offline. Each validator returns a list of human-readable
errors; an empty list means the session is valid. The first error is
what the UI shows.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from hydracat.models.session import STRESS_LEVELS, FluidSession, MedicationSession

MAX_DOSAGE = 100
MIN_FLUID_VOLUME_ML = 1
MAX_FLUID_VOLUME_ML = 500

# Clock skew tolerated before a timestamp counts as "in the future"
_FUTURE_TOLERANCE = timedelta(minutes=1)


def _common_errors(session, now: datetime) -> list[str]:
    errors = []
    if not session.user_id:
        errors.append("Owner is required")
    if not session.pet_id:
        errors.append("Pet is required")
    if session.date_time > now + _FUTURE_TOLERANCE:
        errors.append("Treatment time cannot be in the future")
    return errors


def validate_medication_session(session: MedicationSession, now: datetime) -> list[str]:
    errors = _common_errors(session, now)
    name = session.medication_name.strip()
    if not name:
        errors.append("Medication name is required")
    elif len(name) < 2:
        errors.append("Medication name must be at least 2 characters")
    if not session.medication_unit.strip():
        errors.append("Medication unit is required")
    if session.dosage_given < 0:
        errors.append("Dosage given cannot be negative")
    elif session.dosage_given > MAX_DOSAGE:
        errors.append(f"Dosage given cannot exceed {MAX_DOSAGE}")
    if session.dosage_scheduled <= 0:
        errors.append("Scheduled dosage must be greater than 0")
    return errors


def validate_fluid_session(session: FluidSession, now: datetime) -> list[str]:
    errors = _common_errors(session, now)
    if not MIN_FLUID_VOLUME_ML <= session.volume_given <= MAX_FLUID_VOLUME_ML:
        errors.append(
            f"Fluid volume must be between {MIN_FLUID_VOLUME_ML} and {MAX_FLUID_VOLUME_ML} ml"
        )
    if session.stress_level is not None and session.stress_level not in STRESS_LEVELS:
        errors.append("Stress level must be low, medium or high")
    return errors
