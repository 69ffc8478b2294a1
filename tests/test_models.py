"""
Tests for data models
=====================
Covers:
- Sessions: effective time, local-time normalisation, notes limit, rows
- Schedules: interval frequencies anchored on created_at, inactive schedules
- Queued operations: discriminated decode, corrupted input, expiry, status
- SummaryUpdate: create / edit deltas, merge, payload without zeroes

Run: pytest tests/test_models.py -v
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pytest
from pydantic import ValidationError

from conftest import NOW, PET_ID, USER_ID, fluid_schedule, make_fluid, make_medication, medication_schedule
from hydracat.models.operation import (
    CreateFluidOperation,
    OperationStatus,
    QuickLogAllOperation,
    UpdateMedicationOperation,
    dump_operation,
    parse_operation,
)
from hydracat.models.session import FluidSession, MedicationSession
from hydracat.models.summary import SummaryUpdate


class TestSessions:

    def test_effective_time_prefers_schedule_slot(self):
        session = make_medication(at=NOW.replace(hour=8, minute=25))
        assert session.effective_time == NOW.replace(hour=8, minute=25)

        matched = session.with_schedule("sched-1", NOW.replace(hour=8))
        assert matched.effective_time == NOW.replace(hour=8)
        assert matched.id == session.id

    def test_aware_datetimes_become_naive_local(self):
        aware = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        session = make_fluid(at=aware)

        assert session.date_time.tzinfo is None
        assert session.date_time == aware.astimezone().replace(tzinfo=None)

    def test_notes_limited_to_500_characters(self):
        with pytest.raises(ValidationError):
            make_fluid(notes="x" * 501)

    def test_sessions_are_immutable(self):
        session = make_fluid()
        with pytest.raises(ValidationError):
            session.volume_given = 50.0

    def test_row_round_trip(self):
        session = make_medication(notes="hid it in food")
        row = session.to_row()

        assert row["medication_name"] == "Benazepril"
        assert row["date_time"] == "2026-03-10T12:00:00"
        assert MedicationSession.from_row(row) == session

    def test_from_schedule_uses_targets(self):
        slot = NOW.replace(hour=9)
        medication = MedicationSession.from_schedule(medication_schedule(), slot, USER_ID, PET_ID)
        fluid = FluidSession.from_schedule(fluid_schedule(), slot, USER_ID, PET_ID)

        assert medication.completed
        assert medication.dosage_given == 1.0
        assert medication.schedule_id == "sched-benazepril"
        assert fluid.volume_given == 150.0
        assert fluid.scheduled_time == slot


class TestSchedules:

    def test_daily_schedule_due_every_day(self):
        schedule = medication_schedule()
        assert schedule.reminder_times_on(date(2026, 3, 10)) == [
            datetime(2026, 3, 10, 8, 0), datetime(2026, 3, 10, 20, 0),
        ]

    def test_every_other_day_anchored_on_creation(self):
        schedule = medication_schedule(frequency="every_other_day", times=(time(8, 0),))

        assert schedule.is_due_on(date(2026, 1, 1))
        assert not schedule.is_due_on(date(2026, 1, 2))
        assert schedule.is_due_on(date(2026, 1, 3))
        assert not schedule.is_due_on(date(2025, 12, 30))

    def test_inactive_schedule_has_no_slots(self):
        assert medication_schedule(is_active=False).reminder_times_on(date(2026, 3, 10)) == []

    def test_reminder_times_sorted(self):
        schedule = medication_schedule(times=(time(20, 0), time(8, 0)))
        assert [t.hour for t in schedule.reminder_times_on(date(2026, 3, 10))] == [8, 20]


class TestQueuedOperations:

    def test_decode_selects_variant(self):
        op = UpdateMedicationOperation(
            user_id=USER_ID, pet_id=PET_ID, created_at=NOW,
            old_session=make_medication(dosage=1.0), new_session=make_medication(dosage=0.5),
        )

        decoded = parse_operation(dump_operation(op))

        assert isinstance(decoded, UpdateMedicationOperation)
        assert decoded.new_session.dosage_given == 0.5

    def test_quick_log_keeps_schedules(self):
        op = QuickLogAllOperation(
            user_id=USER_ID, pet_id=PET_ID, created_at=NOW,
            todays_schedules=[medication_schedule(), fluid_schedule()],
        )

        decoded = parse_operation(dump_operation(op))

        assert [s.id for s in decoded.todays_schedules] == ["sched-benazepril", "sched-fluid"]

    @pytest.mark.parametrize("raw", [
        "not json",
        '{"type": "delete_everything", "user_id": "u", "pet_id": "p"}',
        '{"type": "create_fluid", "user_id": "u", "pet_id": "p"}',
    ])
    def test_corrupted_input_raises(self, raw):
        with pytest.raises(ValidationError):
            parse_operation(raw)

    def test_expiry(self):
        op = CreateFluidOperation(user_id=USER_ID, pet_id=PET_ID, created_at=NOW, session=make_fluid())

        assert not op.is_expired(NOW + timedelta(days=30), 30)
        assert op.is_expired(NOW + timedelta(days=30, seconds=1), 30)

    def test_status_transitions(self):
        op = CreateFluidOperation(user_id=USER_ID, pet_id=PET_ID, created_at=NOW, session=make_fluid())

        failed = op.marked_syncing().marked_failed("timeout")
        assert failed.status == OperationStatus.FAILED
        assert failed.retry_count == 1
        assert failed.last_error == "timeout"

        pending = failed.marked_pending()
        assert pending.status == OperationStatus.PENDING
        assert pending.last_error is None
        assert pending.retry_count == 1


class TestSummaryUpdate:

    def test_completed_medication(self):
        update = SummaryUpdate.for_medication(make_medication(dosage=2.0))
        assert update.to_payload() == {
            "medication_doses_delta": 1,
            "medication_scheduled_delta": 1,
            "medication_dosage_delta": 2.0,
        }

    def test_missed_medication(self):
        update = SummaryUpdate.for_medication(make_medication(dosage=0.0, completed=False))
        assert update.to_payload() == {"medication_scheduled_delta": 1, "medication_missed_delta": 1}

    def test_edit_flipping_to_missed(self):
        old = make_medication(dosage=1.0, completed=True)
        new = old.model_copy(update={"completed": False, "dosage_given": 0.0})

        assert SummaryUpdate.for_medication_edit(old, new).to_payload() == {
            "medication_doses_delta": -1,
            "medication_missed_delta": 1,
            "medication_dosage_delta": -1.0,
        }

    def test_fluid_edit_without_change_has_no_updates(self):
        session = make_fluid(100.0)
        assert not SummaryUpdate.for_fluid_edit(session, session).has_updates

    def test_merge(self):
        merged = SummaryUpdate.merge([
            SummaryUpdate.for_fluid(make_fluid(100.0)),
            SummaryUpdate.for_fluid(make_fluid(50.0)),
            SummaryUpdate.for_medication(make_medication()),
        ])

        assert merged.fluid_session_delta == 2
        assert merged.fluid_volume_delta == 150.0
        assert merged.fluid_treatment_done is True
        assert merged.medication_doses_delta == 1
