"""
Slot capacity service.

Owns slot inventory and the per-technician seat ledger inside each slot.
Reservation and release are single conditional UPDATE statements: the
capacity check and the increment happen in one step in the database, so two
concurrent bookings can never both take the last seat.

None of the methods here commit; callers own the transaction.
"""

import logging
from datetime import date, time
from typing import Optional, List, Iterable, Tuple

from sqlalchemy import case, or_
from sqlalchemy.orm import Session

from core.exceptions import (
    InvalidInputError,
    NotFoundError,
    SlotUnavailableError,
    TechnicianUnavailableError,
)
from models import Appointment, Slot, SlotTechnician
from shared_types.workflow import SlotStatus
from utils.datetime_utils import center_now

logger = logging.getLogger(__name__)


def compute_slot_status(booked_count: int, capacity: int) -> SlotStatus:
    """
    Derive slot status from its counters.

    ``full`` when no seat is left, ``available`` when nothing is booked,
    ``partially_booked`` in between.
    """
    if booked_count >= capacity:
        return SlotStatus.FULL
    if booked_count <= 0:
        return SlotStatus.AVAILABLE
    return SlotStatus.PARTIALLY_BOOKED


class SlotCapacityService:
    """Service for slot reservation, release and technician seat accounting."""

    @staticmethod
    def get_slot(db: Session, slot_id: int) -> Slot:
        slot = db.query(Slot).filter(Slot.id == slot_id).first()
        if slot is None:
            raise NotFoundError("Slot", slot_id)
        return slot

    @staticmethod
    def reserve(db: Session, slot_id: int) -> Slot:
        """
        Take one seat in a slot.

        The increment only applies when ``booked_count < capacity`` at the
        moment the UPDATE runs; status is recomputed in the same statement.

        Args:
            db: Database session
            slot_id: Slot to reserve

        Returns:
            The refreshed Slot

        Raises:
            NotFoundError: If the slot does not exist
            SlotUnavailableError: If the slot is full or inactive
        """
        new_count = Slot.booked_count + 1
        updated = db.query(Slot).filter(
            Slot.id == slot_id,
            Slot.is_active == True,
            Slot.booked_count < Slot.capacity,
        ).update({
            Slot.booked_count: new_count,
            Slot.status: case(
                (new_count >= Slot.capacity, SlotStatus.FULL.value),
                else_=SlotStatus.PARTIALLY_BOOKED.value,
            ),
            Slot.updated_at: center_now(),
        }, synchronize_session=False)

        slot = SlotCapacityService.get_slot(db, slot_id)
        db.refresh(slot)

        if updated == 0:
            logger.info(f"Slot {slot_id} reservation refused ({slot.booked_count}/{slot.capacity})")
            raise SlotUnavailableError(slot_id, slot.capacity, slot.booked_count)

        logger.info(f"Reserved slot {slot_id}: {slot.booked_count}/{slot.capacity} ({slot.status})")
        return slot

    @staticmethod
    def release(db: Session, slot_id: int) -> Slot:
        """
        Give back one seat in a slot.

        The counter is floored at zero, so releasing an empty slot is a no-op
        rather than an error.

        Raises:
            NotFoundError: If the slot does not exist
        """
        db.query(Slot).filter(Slot.id == slot_id).update({
            Slot.booked_count: case(
                (Slot.booked_count > 0, Slot.booked_count - 1),
                else_=0,
            ),
            Slot.status: case(
                (Slot.booked_count <= 1, SlotStatus.AVAILABLE.value),
                (Slot.booked_count - 1 >= Slot.capacity, SlotStatus.FULL.value),
                else_=SlotStatus.PARTIALLY_BOOKED.value,
            ),
            Slot.updated_at: center_now(),
        }, synchronize_session=False)

        slot = SlotCapacityService.get_slot(db, slot_id)
        db.refresh(slot)
        logger.info(f"Released slot {slot_id}: {slot.booked_count}/{slot.capacity} ({slot.status})")
        return slot

    @staticmethod
    def technician_available_in_slot(db: Session, slot_id: int, technician_id: int) -> bool:
        """
        Check whether a technician has a free seat in a slot.

        True only if the technician is on the slot's roster and their
        per-slot workload is below their per-slot maximum. This is
        independent of the slot's own capacity; callers check both.
        """
        entry = db.query(SlotTechnician).filter(
            SlotTechnician.slot_id == slot_id,
            SlotTechnician.technician_id == technician_id,
        ).first()
        if entry is None:
            return False
        return entry.current_workload < entry.max_capacity

    @staticmethod
    def open_roster(db: Session, slot_id: int, holding: Optional[int] = None) -> List[int]:
        """
        Roster members who can still take a booking in this slot.

        A technician whose per-slot workload has reached their maximum is left
        out, except ``holding``, who already occupies a seat for the booking
        being (re)assigned.
        """
        seat_free = SlotTechnician.current_workload < SlotTechnician.max_capacity
        if holding is not None:
            seat_free = or_(seat_free, SlotTechnician.technician_id == holding)
        rows = db.query(SlotTechnician.technician_id).filter(
            SlotTechnician.slot_id == slot_id,
            seat_free,
        ).order_by(SlotTechnician.technician_id).all()
        return [row.technician_id for row in rows]

    @staticmethod
    def reserve_technician_seat(db: Session, slot_id: int, technician_id: int) -> SlotTechnician:
        """
        Take one of a technician's seats in a slot.

        Raises:
            TechnicianUnavailableError: If the technician is not rostered on the
                slot or has no seat left
        """
        updated = db.query(SlotTechnician).filter(
            SlotTechnician.slot_id == slot_id,
            SlotTechnician.technician_id == technician_id,
            SlotTechnician.current_workload < SlotTechnician.max_capacity,
        ).update({
            SlotTechnician.current_workload: SlotTechnician.current_workload + 1,
        }, synchronize_session=False)

        entry = db.query(SlotTechnician).filter(
            SlotTechnician.slot_id == slot_id,
            SlotTechnician.technician_id == technician_id,
        ).first()

        if updated == 0:
            if entry is None:
                raise TechnicianUnavailableError(
                    f"Technician {technician_id} is not rostered on slot {slot_id}",
                    {"slot_id": slot_id, "technician_id": technician_id},
                )
            db.refresh(entry)
            raise TechnicianUnavailableError(
                f"Technician {technician_id} has no free seat in slot {slot_id}",
                {
                    "slot_id": slot_id,
                    "technician_id": technician_id,
                    "current_workload": entry.current_workload,
                    "max_capacity": entry.max_capacity,
                    "remaining_capacity": max(0, entry.max_capacity - entry.current_workload),
                },
            )

        assert entry is not None
        db.refresh(entry)
        return entry

    @staticmethod
    def release_technician_seat(db: Session, slot_id: int, technician_id: int) -> bool:
        """
        Give back one of a technician's seats in a slot (floored at zero).

        Returns:
            True if the technician is rostered on the slot, False otherwise
        """
        updated = db.query(SlotTechnician).filter(
            SlotTechnician.slot_id == slot_id,
            SlotTechnician.technician_id == technician_id,
        ).update({
            SlotTechnician.current_workload: case(
                (SlotTechnician.current_workload > 0, SlotTechnician.current_workload - 1),
                else_=0,
            ),
        }, synchronize_session=False)
        return updated > 0

    @staticmethod
    def get_roster_appointment_ids(db: Session, slot_id: int, technician_id: int) -> List[int]:
        """Appointments occupying a technician's seats in a slot (derived, not stored)."""
        rows = db.query(Appointment.id).filter(
            Appointment.slot_id == slot_id,
            Appointment.assigned_technician_id == technician_id,
        ).order_by(Appointment.id).all()
        return [row[0] for row in rows]

    @staticmethod
    def create_slot(
        db: Session,
        slot_date: date,
        start_time: time,
        end_time: time,
        capacity: int = 1,
        technicians: Optional[Iterable[Tuple[int, int]]] = None,
    ) -> Slot:
        """
        Create a slot with its technician roster.

        Args:
            db: Database session
            slot_date: Date of the slot
            start_time: Start of the window
            end_time: End of the window (exclusive)
            capacity: Maximum appointments in the slot
            technicians: (technician_id, max_capacity) pairs for the roster

        Raises:
            InvalidInputError: If the window is empty, capacity is not positive,
                or the window overlaps another active slot on the same date
        """
        if end_time <= start_time:
            raise InvalidInputError("Slot end time must be after start time")
        if capacity <= 0:
            raise InvalidInputError("Slot capacity must be positive", {"capacity": capacity})

        overlapping = db.query(Slot).filter(
            Slot.date == slot_date,
            Slot.is_active == True,
            Slot.start_time < end_time,
            Slot.end_time > start_time,
        ).first()
        if overlapping is not None:
            raise InvalidInputError(
                f"Slot overlaps with existing slot ({overlapping.start_time:%H:%M} - {overlapping.end_time:%H:%M})",
                {"overlapping_slot_id": overlapping.id},
            )

        slot = Slot(
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            capacity=capacity,
            booked_count=0,
            status=SlotStatus.AVAILABLE.value,
        )
        for technician_id, max_capacity in technicians or []:
            slot.technicians.append(SlotTechnician(
                technician_id=technician_id,
                current_workload=0,
                max_capacity=max_capacity,
            ))
        db.add(slot)
        db.flush()
        logger.info(f"Created slot {slot.id} on {slot_date} {start_time:%H:%M}-{end_time:%H:%M} (capacity {capacity})")
        return slot

    @staticmethod
    def list_slots(
        db: Session,
        start_date: date,
        end_date: date,
        technician_id: Optional[int] = None,
        only_bookable: bool = False,
    ) -> List[Slot]:
        """List active slots in a date range, optionally filtered to a technician's roster."""
        query = db.query(Slot).filter(
            Slot.is_active == True,
            Slot.date >= start_date,
            Slot.date <= end_date,
        )
        if technician_id is not None:
            query = query.join(SlotTechnician, SlotTechnician.slot_id == Slot.id).filter(
                SlotTechnician.technician_id == technician_id
            )
        if only_bookable:
            query = query.filter(Slot.booked_count < Slot.capacity)
        return query.order_by(Slot.date, Slot.start_time).all()

