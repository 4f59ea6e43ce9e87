"""
Unit tests for technician conflict detection.
"""

import pytest
from datetime import datetime, time, timedelta

from services.conflict_service import ConflictService, windows_overlap
from tests.conftest import (
    book_appointment,
    create_service_item,
    create_technician,
    force_status,
    next_workday,
)


class TestWindowsOverlap:
    """Half-open interval overlap."""

    base = datetime(2030, 1, 7, 9, 0)

    def _window(self, start_minutes: int, end_minutes: int):
        return self.base + timedelta(minutes=start_minutes), self.base + timedelta(minutes=end_minutes)

    @pytest.mark.parametrize("a, b, expected", [
        ((0, 60), (30, 90), True),
        ((0, 60), (60, 120), False),   # back to back
        ((0, 60), (-60, 0), False),    # back to back, other side
        ((0, 60), (10, 20), True),     # contained
        ((0, 60), (0, 60), True),      # identical
        ((0, 60), (90, 120), False),
        ((30, 30), (0, 60), False),    # zero length
        ((0, 60), (30, 30), False),    # zero length, other side
        ((30, 20), (0, 60), False),    # inverted
    ])
    def test_overlap_cases(self, a, b, expected):
        a_start, a_end = self._window(*a)
        b_start, b_end = self._window(*b)
        assert windows_overlap(a_start, a_end, b_start, b_end) is expected

    @pytest.mark.parametrize("a, b", [
        ((0, 60), (30, 90)),
        ((0, 60), (60, 120)),
        ((0, 120), (30, 45)),
    ])
    def test_overlap_is_symmetric(self, a, b):
        a_start, a_end = self._window(*a)
        b_start, b_end = self._window(*b)
        assert windows_overlap(a_start, a_end, b_start, b_end) == windows_overlap(b_start, b_end, a_start, a_end)


class TestFindConflicts:

    @pytest.fixture
    def scheduled(self, db_session, customer, vehicle, technician):
        """A confirmed 60-minute appointment for the technician at 10:00."""
        service = create_service_item(db_session, "Motor diagnostics", "motor", 800000, 60)
        day = next_workday()
        appointment = book_appointment(
            db_session, customer, vehicle, [service], day, time(10, 0), technician_id=technician.id
        )
        force_status(db_session, appointment, "confirmed")
        return appointment

    def test_overlapping_window_conflicts(self, db_session, technician, scheduled):
        start = datetime.combine(scheduled.scheduled_date, time(10, 30))
        conflicts = ConflictService.find_conflicts(db_session, technician.id, start, start + timedelta(minutes=60))
        assert [a.id for a in conflicts] == [scheduled.id]

    def test_back_to_back_windows_do_not_conflict(self, db_session, technician, scheduled):
        before = datetime.combine(scheduled.scheduled_date, time(9, 0))
        after = datetime.combine(scheduled.scheduled_date, time(11, 0))

        assert not ConflictService.has_conflict(db_session, technician.id, before, before + timedelta(minutes=60))
        assert not ConflictService.has_conflict(db_session, technician.id, after, after + timedelta(minutes=60))

    def test_excluded_appointment_is_ignored(self, db_session, technician, scheduled):
        start = scheduled.scheduled_start
        assert ConflictService.has_conflict(db_session, technician.id, start, scheduled.scheduled_end)
        assert not ConflictService.has_conflict(
            db_session, technician.id, start, scheduled.scheduled_end, exclude_appointment_id=scheduled.id
        )

    def test_other_technician_is_free(self, db_session, scheduled):
        other = create_technician(db_session, "other@test.com")
        assert not ConflictService.has_conflict(
            db_session, other.id, scheduled.scheduled_start, scheduled.scheduled_end
        )

    @pytest.mark.parametrize("status", ["pending", "cancelled", "completed", "no_show", "rescheduled"])
    def test_inactive_statuses_do_not_conflict(self, db_session, technician, scheduled, status):
        force_status(db_session, scheduled, status)
        assert not ConflictService.has_conflict(
            db_session, technician.id, scheduled.scheduled_start, scheduled.scheduled_end
        )

    def test_in_progress_conflicts(self, db_session, technician, scheduled):
        force_status(db_session, scheduled, "in_progress")
        assert ConflictService.has_conflict(
            db_session, technician.id, scheduled.scheduled_start, scheduled.scheduled_end
        )
