"""
Technician schedule conflict detection.

This is the single predicate for "is this technician double-booked". It is
used at booking time, during auto-assignment and when staff reassign an
appointment.
"""

import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy.orm import Session

from models import Appointment
from shared_types.workflow import CONFLICT_STATUSES

logger = logging.getLogger(__name__)


def windows_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """
    Strict half-open overlap of [start_a, end_a) and [start_b, end_b).

    Back-to-back windows (end_a == start_b) do not overlap, and neither does a
    zero-length window.
    """
    if start_a >= end_a or start_b >= end_b:
        return False
    return start_a < end_b and start_b < end_a


class ConflictService:
    """Service for detecting overlapping technician commitments."""

    @staticmethod
    def find_conflicts(
        db: Session,
        technician_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[Appointment]:
        """
        Find the technician's active appointments overlapping a window.

        Only appointments on the same calendar day as ``window_start`` in
        status confirmed or in_progress are considered. Appointments without
        an estimated completion are treated as lasting the default duration.

        Args:
            db: Database session
            technician_id: Technician to check
            window_start: Start of the proposed window (naive center time)
            window_end: End of the proposed window (exclusive)
            exclude_appointment_id: Appointment to ignore (the one being moved)

        Returns:
            Conflicting appointments, ordered by scheduled time
        """
        query = db.query(Appointment).filter(
            Appointment.assigned_technician_id == technician_id,
            Appointment.scheduled_date == window_start.date(),
            Appointment.status.in_([s.value for s in CONFLICT_STATUSES]),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)

        conflicts = [
            appointment
            for appointment in query.order_by(Appointment.scheduled_time).all()
            if windows_overlap(appointment.scheduled_start, appointment.scheduled_end, window_start, window_end)
        ]
        if conflicts:
            logger.debug(
                f"Technician {technician_id} has {len(conflicts)} conflicting appointment(s) "
                f"for {window_start:%Y-%m-%d %H:%M}-{window_end:%H:%M}"
            )
        return conflicts

    @staticmethod
    def has_conflict(
        db: Session,
        technician_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> bool:
        """True if the technician has any active appointment overlapping the window."""
        return bool(ConflictService.find_conflicts(
            db, technician_id, window_start, window_end, exclude_appointment_id
        ))
