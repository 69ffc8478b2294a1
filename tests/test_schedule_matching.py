"""
Tests for schedule matching and session validation
==================================================
Covers:
- match_schedule: closest slot, window edge, ties, other days
- medication/fluid matching filters by type, name and active flag
- todays_slots ordering across schedules
- validate_medication_session / validate_fluid_session rules

Run: pytest tests/test_schedule_matching.py -v
"""

from __future__ import annotations

from datetime import time, timedelta

from conftest import NOW, fluid_schedule, make_fluid, make_medication, medication_schedule
from hydracat.services.schedule_matching import (
    match_fluid_schedule,
    match_medication_schedule,
    match_schedule,
    todays_slots,
)
from hydracat.services.validation import validate_fluid_session, validate_medication_session


class TestMatchSchedule:

    def test_closest_slot(self):
        schedule = medication_schedule(times=(time(8, 0), time(10, 0)))

        match = match_schedule(NOW.replace(hour=9, minute=20), [schedule], 120)

        assert match.scheduled_time == NOW.replace(hour=10)
        assert match.schedule is schedule

    def test_window_edge_is_inclusive(self):
        schedule = medication_schedule(times=(time(10, 0),))

        assert match_schedule(NOW, [schedule], 120) is not None
        assert match_schedule(NOW + timedelta(minutes=1), [schedule], 120) is None

    def test_tie_keeps_first_candidate(self):
        first = medication_schedule(name="Benazepril", times=(time(11, 0),))
        second = medication_schedule(name="Famotidine", times=(time(13, 0),))

        assert match_schedule(NOW, [first, second], 120).schedule is first

    def test_interval_schedule_not_due_today_never_matches(self):
        schedule = medication_schedule(frequency="every_3_days", times=(time(12, 0),))

        assert match_schedule(NOW, [schedule], 120) is None

    def test_medication_matching_requires_same_name(self):
        schedules = [medication_schedule(name="Famotidine", times=(time(12, 0),))]

        assert match_medication_schedule(make_medication(), schedules, 120) is None

    def test_medication_matching_skips_inactive_and_fluid(self):
        schedules = [
            medication_schedule(times=(time(12, 0),), is_active=False),
            fluid_schedule(times=(time(12, 0),)),
        ]

        assert match_medication_schedule(make_medication(), schedules, 120) is None

    def test_fluid_matching(self):
        match = match_fluid_schedule(make_fluid(at=NOW.replace(hour=10)), [fluid_schedule()], 120)

        assert match.scheduled_time == NOW.replace(hour=9)


class TestTodaysSlots:

    def test_slots_sorted_across_schedules(self):
        slots = todays_slots([medication_schedule(), fluid_schedule()], NOW)

        assert [(s.schedule.id, s.scheduled_time.hour) for s in slots] == [
            ("sched-benazepril", 8),
            ("sched-fluid", 9),
            ("sched-benazepril", 20),
        ]

    def test_inactive_schedules_have_no_slots(self):
        assert todays_slots([medication_schedule(is_active=False)], NOW) == []


class TestValidation:

    def test_valid_medication(self):
        assert validate_medication_session(make_medication(), NOW) == []

    def test_medication_rules(self):
        session = make_medication(name="B", dosage=150.0, medication_unit=" ", dosage_scheduled=0.0)

        assert validate_medication_session(session, NOW) == [
            "Medication name must be at least 2 characters",
            "Medication unit is required",
            "Dosage given cannot exceed 100",
            "Scheduled dosage must be greater than 0",
        ]

    def test_missing_owner_and_pet(self):
        session = make_medication(user_id="", pet_id="")

        assert validate_medication_session(session, NOW)[:2] == ["Owner is required", "Pet is required"]

    def test_future_tolerance(self):
        assert validate_fluid_session(make_fluid(at=NOW + timedelta(seconds=30)), NOW) == []
        assert validate_fluid_session(make_fluid(at=NOW + timedelta(minutes=5)), NOW) == [
            "Treatment time cannot be in the future",
        ]

    def test_fluid_volume_bounds(self):
        assert validate_fluid_session(make_fluid(1.0), NOW) == []
        assert validate_fluid_session(make_fluid(500.0), NOW) == []
        assert validate_fluid_session(make_fluid(501.0), NOW) == ["Fluid volume must be between 1 and 500 ml"]

    def test_stress_level(self):
        assert validate_fluid_session(make_fluid(stress_level="low"), NOW) == []
        assert validate_fluid_session(make_fluid(stress_level="calm"), NOW) == [
            "Stress level must be low, medium or high",
        ]
