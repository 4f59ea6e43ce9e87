"""
Rescheduling of appointments.

A reschedule moves the appointment to a new date and time, re-checks the
assigned technician for the new window, optionally reserves a new slot, and
enters the ``rescheduled`` status. The old slot seat is given back by the
state machine once the transition has committed.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from core.constants import DEFAULT_APPOINTMENT_DURATION_MINUTES
from core.exceptions import InvalidInputError, RescheduleNotAllowedError
from models import Appointment
from services.appointment_state_machine import AppointmentStateMachine, parse_status
from services.refund_policy_service import evaluate_reschedule
from services.slot_capacity_service import SlotCapacityService
from services.technician_scoring_service import TechnicianScoringService
from shared_types.workflow import Actor, ActorRole, AppointmentStatus
from utils.datetime_utils import center_now, combine_local, hours_between, to_center_naive

logger = logging.getLogger(__name__)


class RescheduleService:

    @staticmethod
    def reschedule(
        db: Session,
        appointment_id: int,
        new_date: date,
        new_time: time,
        actor: Actor,
        reason: Optional[str] = None,
        slot_id: Optional[int] = None,
        customer_agreed: Optional[bool] = None,
        auto_confirm: bool = False,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """
        Move an appointment to a new date and time.

        Args:
            db: Database session
            appointment_id: Appointment to move
            new_date: New scheduled date
            new_time: New scheduled time
            actor: Customer (bound by the reschedule policy) or staff/admin
            reason: Why the appointment is moved
            slot_id: Slot to reserve for the new window
            customer_agreed: Whether the customer agreed (staff-initiated moves)
            auto_confirm: Confirm the appointment again right after rescheduling
            now: Evaluation time; defaults to the current center time

        Returns:
            The rescheduled (or re-confirmed) appointment

        Raises:
            RescheduleNotAllowedError: If the reschedule policy refuses a customer
            InvalidInputError: If the new time is not in the future
            TechnicianUnavailableError: If the assigned technician cannot take the new window
            SlotUnavailableError: If the new slot is full
        """
        now = now or center_now()
        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)
        AppointmentStateMachine.validate(appointment, AppointmentStatus.RESCHEDULED, actor)
        current = parse_status(appointment.status)

        eligibility = evaluate_reschedule(
            appointment.scheduled_start,
            now,
            actor.role,
            appointment.reschedule_count or 0,
            status=current,
        )
        if not eligibility.can_reschedule:
            logger.warning(f"Reschedule refused for appointment {appointment_id}: {eligibility.reason}")
            raise RescheduleNotAllowedError(eligibility.reason, eligibility.to_dict())

        new_start = combine_local(new_date, new_time)
        if hours_between(now, new_start) <= 0:
            raise InvalidInputError(
                "New appointment time must be in the future",
                {"new_start": new_start.isoformat()},
            )
        if new_start == appointment.scheduled_start and slot_id is None:
            raise InvalidInputError("New appointment time is the same as the current one")
        if slot_id is not None:
            slot = SlotCapacityService.get_slot(db, slot_id)
            if slot.date != new_date or not (slot.start_time <= new_time < slot.end_time):
                raise InvalidInputError(
                    "New appointment time is outside the selected slot",
                    {"slot_id": slot_id, "slot_date": slot.date.isoformat()},
                )

        duration = appointment.total_duration_minutes or DEFAULT_APPOINTMENT_DURATION_MINUTES
        technician_id = appointment.assigned_technician_id
        if technician_id is not None:
            TechnicianScoringService.ensure_technician_can_take(
                db, technician_id, new_start, duration,
                exclude_appointment_id=appointment.id, enforce_workload=False,
            )

        def move(target: Appointment) -> None:
            target.original_scheduled_date = target.scheduled_date
            target.original_scheduled_time = target.scheduled_time
            target.scheduled_date = new_date
            target.scheduled_time = new_time
            target.estimated_completion = new_start + timedelta(minutes=duration)
            target.rescheduling_reason = reason
            target.rescheduled_by = actor.user_id
            target.rescheduled_at = to_center_naive(center_now())
            target.customer_agreed = True if actor.role == ActorRole.CUSTOMER else customer_agreed
            if actor.role == ActorRole.CUSTOMER:
                target.reschedule_count = (target.reschedule_count or 0) + 1
            if slot_id is not None:
                SlotCapacityService.reserve(db, slot_id)
                if technician_id is not None:
                    SlotCapacityService.reserve_technician_seat(db, slot_id, technician_id)
                target.slot_id = slot_id

        AppointmentStateMachine.transition(
            db, appointment, AppointmentStatus.RESCHEDULED, actor, reason=reason, apply=move,
        )
        logger.info(
            f"Rescheduled appointment {appointment.appointment_number} to {new_date} {new_time:%H:%M}"
        )

        if auto_confirm:
            AppointmentStateMachine.transition(
                db, appointment, AppointmentStatus.CONFIRMED, actor, reason="Confirmed after reschedule",
            )
        return appointment
