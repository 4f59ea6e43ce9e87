"""
Appointment service for the booking operations exposed to the API.

This module ties the booking core together: it validates the request,
reserves capacity, chooses or checks the technician, and hands every status
change to the state machine. Cancellation, rescheduling and parts decisions
are delegated to their own services.
"""

import logging
import random
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.config import DEFAULT_DEPOSIT_AMOUNT
from core.constants import (
    APPOINTMENT_NUMBER_MAX_ATTEMPTS,
    APPOINTMENT_NUMBER_PREFIX,
    APPOINTMENT_NUMBER_SUFFIX_DIGITS,
    DEFAULT_APPOINTMENT_DURATION_MINUTES,
)
from core.exceptions import (
    ConcurrentModificationError,
    ForbiddenError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    ServiceNotFoundError,
    VehicleNotOwnedError,
)
from models import Appointment, AppointmentServiceLine, RefundLedgerEntry, ServiceItem, Vehicle
from services.appointment_state_machine import AppointmentStateMachine, allowed_targets, parse_status
from services.cancellation_service import CancellationService
from services.notification_service import NotificationService
from services.parts_shortage_service import PartsShortageService, parse_decision
from services.refund_policy_service import evaluate_reschedule
from services.reschedule_service import RescheduleService
from services.slot_capacity_service import SlotCapacityService
from services.technician_scoring_service import TechnicianScoringService
from services.technician_service import TechnicianService
from shared_types.workflow import (
    Actor,
    ActorRole,
    AppointmentStatus,
    PaymentStatus,
    TERMINAL_STATUSES,
)
from utils.datetime_utils import center_now, combine_local, hours_between

logger = logging.getLogger(__name__)

PRIORITIES = ("low", "normal", "high", "urgent")
BOOKING_TYPES = ("deposit_booking", "full_service")

# A technician can be (re)assigned until work starts
ASSIGNABLE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
    AppointmentStatus.CUSTOMER_ARRIVED,
    AppointmentStatus.RECEPTION_CREATED,
    AppointmentStatus.RECEPTION_APPROVED,
})


def generate_appointment_number(db: Session, scheduled_date: date) -> str:
    """APT + YYMMDD + random digits, unique among existing appointments."""
    prefix = f"{APPOINTMENT_NUMBER_PREFIX}{scheduled_date:%y%m%d}"
    upper = 10 ** APPOINTMENT_NUMBER_SUFFIX_DIGITS - 1
    for _ in range(APPOINTMENT_NUMBER_MAX_ATTEMPTS):
        candidate = f"{prefix}{random.randint(0, upper):0{APPOINTMENT_NUMBER_SUFFIX_DIGITS}d}"
        exists = db.query(Appointment.id).filter(Appointment.appointment_number == candidate).first()
        if exists is None:
            return candidate
    raise ConcurrentModificationError("Appointment number", prefix)


class AppointmentService:
    """
    Service class for appointment operations.

    Methods that change state commit their own transaction; errors leave the
    appointment and all counters untouched.
    """

    @staticmethod
    def create_appointment(
        db: Session,
        customer_id: int,
        vehicle_id: int,
        services: Sequence[Dict[str, Any]],
        scheduled_date: date,
        scheduled_time: time,
        technician_id: Optional[int] = None,
        slot_id: Optional[int] = None,
        auto_assign: bool = False,
        prepaid: bool = False,
        booking_type: str = "full_service",
        deposit_amount: Optional[int] = None,
        customer_notes: Optional[str] = None,
        priority: str = "normal",
        actor: Optional[Actor] = None,
    ) -> Appointment:
        """
        Create an appointment.

        Args:
            db: Database session
            customer_id: Booking customer
            vehicle_id: Vehicle to service (must belong to the customer)
            services: List of {"service_id": int, "quantity": int}
            scheduled_date: Appointment date (center time)
            scheduled_time: Appointment start time (center time)
            technician_id: Technician requested explicitly
            slot_id: Slot to reserve
            auto_assign: Pick the best eligible technician when none is given
            prepaid: Payment already completed; the appointment starts confirmed
            booking_type: 'deposit_booking' or 'full_service'
            deposit_amount: Deposit for deposit bookings (defaults to DEFAULT_DEPOSIT_AMOUNT)
            customer_notes: Free-text notes from the customer
            priority: 'low', 'normal', 'high' or 'urgent'
            actor: Who is booking; defaults to the customer

        Returns:
            Created appointment (pending, or confirmed when prepaid)

        Raises:
            VehicleNotOwnedError: If the vehicle is unknown, inactive or not the customer's
            ServiceNotFoundError: If a service is unknown or inactive
            TechnicianUnavailableError: If the requested technician cannot take the window
            NoEligibleTechnicianError: If auto-assignment finds no candidate
            SlotUnavailableError: If the slot is full
        """
        actor = actor or Actor(ActorRole.CUSTOMER, customer_id)
        if actor.role == ActorRole.CUSTOMER and actor.user_id != customer_id:
            raise ForbiddenError("Customers can only book for themselves", required_role=["staff", "admin"])
        if priority not in PRIORITIES:
            raise InvalidInputError(f"Invalid priority '{priority}'", {"allowed": list(PRIORITIES)})
        if booking_type not in BOOKING_TYPES:
            raise InvalidInputError(f"Invalid booking type '{booking_type}'", {"allowed": list(BOOKING_TYPES)})
        if not services:
            raise InvalidInputError("At least one service is required")

        vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
        if vehicle is None or not vehicle.is_active or vehicle.customer_id != customer_id:
            raise VehicleNotOwnedError(vehicle_id, customer_id)

        lines = AppointmentService._build_service_lines(db, services)
        duration = sum(line.duration * line.quantity for line in lines)
        total = sum(line.price * line.quantity for line in lines)
        categories: List[str] = []
        for line in lines:
            if line.category and line.category not in categories:
                categories.append(line.category)

        start = combine_local(scheduled_date, scheduled_time)
        if hours_between(center_now(), start) <= 0:
            raise InvalidInputError("Appointment time must be in the future", {"start": start.isoformat()})

        slot = None
        if slot_id is not None:
            slot = SlotCapacityService.get_slot(db, slot_id)
            if slot.date != scheduled_date or not (slot.start_time <= scheduled_time < slot.end_time):
                raise InvalidInputError(
                    "Scheduled time is outside the selected slot",
                    {"slot_id": slot_id, "slot_date": slot.date.isoformat()},
                )

        status = AppointmentStatus.CONFIRMED if prepaid else AppointmentStatus.PENDING
        if booking_type == "deposit_booking":
            deposit = deposit_amount if deposit_amount is not None else DEFAULT_DEPOSIT_AMOUNT
            deposit = min(deposit, total) if total > 0 else deposit
        else:
            deposit = 0

        try:
            if slot is not None:
                SlotCapacityService.reserve(db, slot.id)

            if technician_id is None and auto_assign:
                roster = SlotCapacityService.open_roster(db, slot.id) if slot is not None else None
                best = TechnicianScoringService.select_best_technician(
                    db, categories, start, duration, technician_ids=roster
                )
                technician_id = best.technician_id
            elif technician_id is not None:
                TechnicianScoringService.ensure_technician_can_take(db, technician_id, start, duration)

            if technician_id is not None:
                TechnicianService.increment_workload(db, technician_id)
                if slot is not None:
                    SlotCapacityService.reserve_technician_seat(db, slot.id, technician_id)

            appointment = Appointment(
                appointment_number=generate_appointment_number(db, scheduled_date),
                customer_id=customer_id,
                vehicle_id=vehicle_id,
                scheduled_date=scheduled_date,
                scheduled_time=scheduled_time,
                estimated_completion=start + timedelta(minutes=duration),
                status=status.value,
                priority=priority,
                assigned_technician_id=technician_id,
                slot_id=slot.id if slot is not None else None,
                total_amount=total,
                booking_type=booking_type,
                deposit_amount=deposit,
                deposit_paid=prepaid and booking_type == "deposit_booking",
                paid_amount=(deposit if booking_type == "deposit_booking" else total) if prepaid else 0,
                payment_status=PaymentStatus.PAID.value if prepaid else PaymentStatus.PENDING.value,
                customer_notes=customer_notes,
                reschedule_count=0,
                service_lines=lines,
            )
            db.add(appointment)
            AppointmentStateMachine.append_event(
                db, appointment, None, status, actor, reason="Appointment created"
            )
            db.commit()
        except IntegrityError as e:
            logger.warning(f"Appointment booking conflict: {e}")
            db.rollback()
            raise ConcurrentModificationError("Appointment", None)
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Created appointment {appointment.appointment_number} for customer {customer_id} "
            f"({status.value}, technician {technician_id}, slot {slot_id})"
        )
        AppointmentStateMachine.run_side_effect(
            db, appointment, actor, "notify",
            lambda: NotificationService.notify_status_change(appointment, None, status.value, actor),
        )
        return appointment

    @staticmethod
    def _build_service_lines(db: Session, services: Sequence[Dict[str, Any]]) -> List[AppointmentServiceLine]:
        requested: List[tuple[int, int]] = []
        for entry in services:
            try:
                service_id = int(entry["service_id"])
                quantity = int(entry.get("quantity", 1))
            except (KeyError, TypeError, ValueError):
                raise InvalidInputError("Each service needs a numeric service_id", {"service": entry})
            if quantity < 1:
                raise InvalidInputError("Service quantity must be at least 1", {"service_id": service_id})
            requested.append((service_id, quantity))

        ids = {service_id for service_id, _ in requested}
        catalog = {
            item.id: item
            for item in db.query(ServiceItem).filter(ServiceItem.id.in_(ids), ServiceItem.is_active == True).all()
        }
        missing = sorted(ids - set(catalog))
        if missing:
            raise ServiceNotFoundError(missing)

        return [
            AppointmentServiceLine(
                service_id=service_id,
                position=position,
                quantity=quantity,
                price=catalog[service_id].base_price,
                duration=catalog[service_id].estimated_duration,
                category=catalog[service_id].category,
            )
            for position, (service_id, quantity) in enumerate(requested)
        ]

    @staticmethod
    def get_appointment(db: Session, appointment_id: int, actor: Optional[Actor] = None) -> Appointment:
        """
        Get an appointment, enforcing that customers and technicians only see their own.

        Raises:
            NotFoundError: If the appointment does not exist
            ForbiddenError: If the actor may not see it
        """
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        if actor is not None:
            if actor.role == ActorRole.CUSTOMER and appointment.customer_id != actor.user_id:
                raise ForbiddenError("You can only view your own appointments")
            if actor.role == ActorRole.TECHNICIAN and appointment.assigned_technician_id != actor.user_id:
                raise ForbiddenError("You can only view appointments assigned to you")
        return appointment

    @staticmethod
    def list_appointments(
        db: Session,
        customer_id: Optional[int] = None,
        technician_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Appointment]:
        query = db.query(Appointment)
        if customer_id is not None:
            query = query.filter(Appointment.customer_id == customer_id)
        if technician_id is not None:
            query = query.filter(Appointment.assigned_technician_id == technician_id)
        if status is not None:
            query = query.filter(Appointment.status == status.value)
        if start_date is not None:
            query = query.filter(Appointment.scheduled_date >= start_date)
        if end_date is not None:
            query = query.filter(Appointment.scheduled_date <= end_date)
        return query.order_by(
            Appointment.scheduled_date, Appointment.scheduled_time, Appointment.id
        ).offset(offset).limit(limit).all()

    @staticmethod
    def transition_appointment(
        db: Session,
        appointment_id: int,
        target: AppointmentStatus,
        actor: Actor,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        """
        Apply a status change requested by a caller.

        Edges that carry extra data are routed to their own operation so they
        cannot be taken without it: cancel_requested to request_cancellation,
        cancel_approved to approve_cancellation, leaving cancel_requested
        otherwise to reject_cancellation, cancelled from cancel_approved to
        process_refund. Rescheduling needs a new date and has its own endpoint.

        Raises:
            NotFoundError: If the appointment does not exist
            ForbiddenError: If an identity guard fails
            InvalidTransitionError: If the edge is not allowed
        """
        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)
        current = parse_status(appointment.status)

        if target == AppointmentStatus.RESCHEDULED:
            raise InvalidInputError("Use the reschedule operation to move an appointment")
        if target == AppointmentStatus.CANCEL_REQUESTED:
            CancellationService.request_cancellation(db, appointment_id, reason or "", actor)
            return appointment
        if current == AppointmentStatus.CANCEL_REQUESTED:
            if target == AppointmentStatus.CANCEL_APPROVED:
                return CancellationService.approve_cancellation(db, appointment_id, actor, notes)
            AppointmentStateMachine.validate(appointment, target, actor)
            return CancellationService.reject_cancellation(db, appointment_id, actor, reason)
        if current == AppointmentStatus.CANCEL_APPROVED and target == AppointmentStatus.CANCELLED:
            AppointmentStateMachine.validate(appointment, target, actor)
            CancellationService.process_refund(db, appointment_id, actor)
            return appointment

        return AppointmentStateMachine.transition(db, appointment, target, actor, reason, notes)

    @staticmethod
    def assign_technician(
        db: Session,
        appointment_id: int,
        actor: Actor,
        technician_id: Optional[int] = None,
        auto_assign: bool = False,
    ) -> Appointment:
        """
        Assign or reassign the technician of an appointment.

        The previous technician's workload and slot seat are released in the
        same transaction. A pending appointment is confirmed by the assignment.

        Args:
            db: Database session
            appointment_id: Appointment to staff
            actor: Staff, admin or system
            technician_id: Technician to assign explicitly
            auto_assign: Pick the best eligible technician

        Returns:
            The updated appointment

        Raises:
            NoEligibleTechnicianError: If auto-assignment finds no candidate
            TechnicianConflictError: If the chosen technician is busy in the window
            TechnicianUnavailableError: If the chosen technician fails the availability gate
        """
        if not (actor.is_administrative or actor.role == ActorRole.SYSTEM):
            raise ForbiddenError("Only staff can assign technicians", required_role=["staff", "admin"])
        if technician_id is None and not auto_assign:
            raise InvalidInputError("Provide a technician_id or set auto_assign")

        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)
        current = parse_status(appointment.status)
        if current not in ASSIGNABLE_STATUSES:
            raise InvalidTransitionError(
                current.value, current.value, actor.role.value,
                message=f"Cannot assign a technician while appointment is {current.value}",
            )

        start = appointment.scheduled_start
        duration = appointment.total_duration_minutes or DEFAULT_APPOINTMENT_DURATION_MINUTES
        if technician_id is None:
            roster = None
            if appointment.slot is not None:
                roster = SlotCapacityService.open_roster(
                    db, appointment.slot_id, holding=appointment.assigned_technician_id
                )
            best = TechnicianScoringService.select_best_technician(
                db, appointment.service_categories, start, duration,
                exclude_appointment_id=appointment.id, technician_ids=roster,
            )
            technician_id = best.technician_id
        else:
            TechnicianScoringService.ensure_technician_can_take(
                db, technician_id, start, duration, exclude_appointment_id=appointment.id
            )

        previous_id = appointment.assigned_technician_id
        if previous_id == technician_id:
            logger.info(f"Technician {technician_id} already assigned to appointment {appointment_id}")
            return appointment

        def assign(target: Appointment) -> None:
            TechnicianService.increment_workload(db, technician_id)  # type: ignore[arg-type]
            if target.slot_id is not None:
                SlotCapacityService.reserve_technician_seat(db, target.slot_id, technician_id)  # type: ignore[arg-type]
            if previous_id is not None:
                TechnicianService.decrement_workload(db, previous_id)
                if target.slot_id is not None:
                    SlotCapacityService.release_technician_seat(db, target.slot_id, previous_id)
            target.assigned_technician_id = technician_id

        if current == AppointmentStatus.PENDING:
            AppointmentStateMachine.transition(
                db, appointment, AppointmentStatus.CONFIRMED, actor,
                reason=f"Technician {technician_id} assigned", apply=assign,
            )
        else:
            try:
                assign(appointment)
                db.commit()
            except (IntegrityError, StaleDataError) as e:
                db.rollback()
                logger.warning(f"Concurrent update on appointment {appointment_id}: {e}")
                raise ConcurrentModificationError("Appointment", appointment_id)
            except Exception:
                db.rollback()
                raise

        logger.info(
            f"Assigned technician {technician_id} to appointment {appointment.appointment_number}"
            + (f" (replacing {previous_id})" if previous_id is not None else "")
        )
        return appointment

    @staticmethod
    def request_cancellation(
        db: Session,
        appointment_id: int,
        reason: str,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return CancellationService.request_cancellation(db, appointment_id, reason, actor, now)

    @staticmethod
    def approve_cancellation(db: Session, appointment_id: int, actor: Actor, notes: Optional[str] = None) -> Appointment:
        return CancellationService.approve_cancellation(db, appointment_id, actor, notes)

    @staticmethod
    def reject_cancellation(db: Session, appointment_id: int, actor: Actor, reason: Optional[str] = None) -> Appointment:
        return CancellationService.reject_cancellation(db, appointment_id, actor, reason)

    @staticmethod
    def process_refund(
        db: Session,
        appointment_id: int,
        actor: Actor,
        reference: Optional[str] = None,
    ) -> Optional[RefundLedgerEntry]:
        return CancellationService.process_refund(db, appointment_id, actor, reference)

    @staticmethod
    def reschedule_appointment(
        db: Session,
        appointment_id: int,
        new_date: date,
        new_time: time,
        actor: Actor,
        reason: Optional[str] = None,
        slot_id: Optional[int] = None,
        auto_confirm: bool = False,
        now: Optional[datetime] = None,
    ) -> Appointment:
        return RescheduleService.reschedule(
            db, appointment_id, new_date, new_time, actor,
            reason=reason, slot_id=slot_id, auto_confirm=auto_confirm, now=now,
        )

    @staticmethod
    def handle_parts_decision(
        db: Session,
        appointment_id: int,
        decision: str,
        actor: Actor,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Appointment:
        return PartsShortageService.handle_decision(db, appointment_id, parse_decision(decision), actor, payload)

    @staticmethod
    def get_customer_actions(
        db: Session,
        appointment_id: int,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Which actions the caller can take on an appointment right now.

        Uses the same policy functions as the operations themselves, so a
        button shown here is never refused when pressed (barring time passing).
        """
        appointment = AppointmentService.get_appointment(db, appointment_id, actor)
        now = now or center_now()
        status = parse_status(appointment.status)

        cancellation = CancellationService.preview(appointment, actor.role, now)
        reschedule = evaluate_reschedule(
            appointment.scheduled_start, now, actor.role, appointment.reschedule_count or 0, status=status
        ).to_dict()

        targets = [] if status in TERMINAL_STATUSES else allowed_targets(status, actor.role)
        return {
            "appointment_id": appointment.id,
            "status": status.value,
            "can_cancel": cancellation["can_cancel"] and AppointmentStatus.CANCEL_REQUESTED in targets,
            "cancellation": cancellation,
            "can_reschedule": reschedule["can_reschedule"] and AppointmentStatus.RESCHEDULED in targets,
            "reschedule": reschedule,
            "allowed_transitions": [target.value for target in targets],
        }
