"""
Appointment state machine.

All status changes go through ``AppointmentStateMachine.transition``. A
transition is legal only if the target is reachable from the current status
in ``TRANSITIONS`` and the actor's role is listed for that edge. Identity
guards apply on top of roles: customers act only on their own appointments,
and technicians only on appointments assigned to them (except when reporting
a parts shortage or completing work).

Accepted transitions set the status and append one workflow event in a
single commit. Follow-up effects (slot release, technician workload,
notification) run after the commit; if one fails it is logged and stored as
an AppointmentSideEffectFailure, and the transition stays committed.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.exceptions import (
    ConcurrentModificationError,
    ForbiddenError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from models import Appointment, AppointmentSideEffectFailure, AppointmentWorkflowEvent
from services.notification_service import NotificationService
from services.slot_capacity_service import SlotCapacityService
from services.technician_service import TechnicianService
from shared_types.workflow import Actor, ActorRole, AppointmentStatus, TERMINAL_STATUSES
from utils.datetime_utils import center_now, to_center_naive

logger = logging.getLogger(__name__)

S = AppointmentStatus

_CUSTOMER = ActorRole.CUSTOMER
_TECHNICIAN = ActorRole.TECHNICIAN
_STAFF = ActorRole.STAFF
_ADMIN = ActorRole.ADMIN
_SYSTEM = ActorRole.SYSTEM

_OFFICE = frozenset({_STAFF, _ADMIN})
_OFFICE_OR_SYSTEM = frozenset({_STAFF, _ADMIN, _SYSTEM})
_CUSTOMER_OR_OFFICE = frozenset({_CUSTOMER, _STAFF, _ADMIN})
_WORKSHOP = frozenset({_TECHNICIAN, _STAFF, _ADMIN})

# Statuses a rejected cancellation request may return to
CANCEL_REQUEST_SOURCES = frozenset({
    S.PENDING,
    S.CONFIRMED,
    S.CUSTOMER_ARRIVED,
    S.RECEPTION_CREATED,
    S.RECEPTION_APPROVED,
    S.PARTS_INSUFFICIENT,
    S.WAITING_FOR_PARTS,
})

TRANSITIONS: Dict[AppointmentStatus, Dict[AppointmentStatus, FrozenSet[ActorRole]]] = {
    S.PENDING: {
        S.CONFIRMED: _OFFICE_OR_SYSTEM,
        S.CANCELLED: _OFFICE_OR_SYSTEM,
        S.NO_SHOW: _OFFICE_OR_SYSTEM,
        S.RESCHEDULED: _CUSTOMER_OR_OFFICE,
        S.CANCEL_REQUESTED: _CUSTOMER_OR_OFFICE,
    },
    S.CONFIRMED: {
        S.CUSTOMER_ARRIVED: _OFFICE,
        S.CANCELLED: _OFFICE_OR_SYSTEM,
        S.RESCHEDULED: _CUSTOMER_OR_OFFICE,
        S.NO_SHOW: _OFFICE_OR_SYSTEM,
        S.CANCEL_REQUESTED: _CUSTOMER_OR_OFFICE,
    },
    S.CUSTOMER_ARRIVED: {
        S.RECEPTION_CREATED: _WORKSHOP,
        S.CANCELLED: _OFFICE,
        S.CANCEL_REQUESTED: _OFFICE,
    },
    S.RECEPTION_CREATED: {
        S.RECEPTION_APPROVED: _OFFICE,
        S.PARTS_INSUFFICIENT: _WORKSHOP,
        S.CANCELLED: _OFFICE,
        S.CANCEL_REQUESTED: _OFFICE,
    },
    S.RECEPTION_APPROVED: {
        S.IN_PROGRESS: _WORKSHOP,
        S.PARTS_INSUFFICIENT: _WORKSHOP,
        S.CANCELLED: _OFFICE,
        S.CANCEL_REQUESTED: _OFFICE,
    },
    S.IN_PROGRESS: {
        S.PARTS_REQUESTED: _WORKSHOP,
        S.PARTS_INSUFFICIENT: _WORKSHOP,
        S.QUALITY_CHECK: _WORKSHOP,
        S.COMPLETED: _WORKSHOP,
        S.CANCELLED: _OFFICE,
    },
    S.PARTS_INSUFFICIENT: {
        S.WAITING_FOR_PARTS: _OFFICE,
        S.IN_PROGRESS: _WORKSHOP,
        S.RESCHEDULED: _OFFICE,
        S.CANCELLED: _OFFICE,
        S.CANCEL_REQUESTED: _OFFICE,
    },
    S.WAITING_FOR_PARTS: {
        S.RECEPTION_APPROVED: _OFFICE,
        S.IN_PROGRESS: _WORKSHOP,
        S.PARTS_INSUFFICIENT: _WORKSHOP,
        S.RESCHEDULED: _OFFICE,
        S.CANCELLED: _OFFICE,
        S.CANCEL_REQUESTED: _OFFICE,
    },
    S.PARTS_REQUESTED: {
        S.IN_PROGRESS: _WORKSHOP,
        S.PARTS_INSUFFICIENT: _WORKSHOP,
        S.WAITING_FOR_PARTS: _OFFICE,
        S.CANCELLED: _OFFICE,
    },
    S.QUALITY_CHECK: {
        S.READY_FOR_PICKUP: _WORKSHOP,
        S.IN_PROGRESS: _WORKSHOP,
        S.COMPLETED: _OFFICE,
    },
    S.READY_FOR_PICKUP: {
        S.COMPLETED: _OFFICE,
    },
    S.RESCHEDULED: {
        S.CONFIRMED: _CUSTOMER_OR_OFFICE,
        S.CANCELLED: _OFFICE,
    },
    S.CANCEL_REQUESTED: {
        S.CANCEL_APPROVED: _OFFICE,
        # Rejection: only back to the status held before the request
        **{source: _OFFICE for source in CANCEL_REQUEST_SOURCES},
    },
    S.CANCEL_APPROVED: {
        S.CANCELLED: _OFFICE_OR_SYSTEM,
    },
    S.COMPLETED: {},
    S.CANCELLED: {},
    S.NO_SHOW: {},
}

# Technician edges that do not require the technician to be the assignee
_UNASSIGNED_TECHNICIAN_TARGETS = frozenset({S.PARTS_INSUFFICIENT, S.COMPLETED})

# Entering these releases the reserved slot seat
_SLOT_RELEASING_TARGETS = frozenset({S.CANCELLED, S.NO_SHOW, S.RESCHEDULED})


def parse_status(value: str) -> AppointmentStatus:
    """Parse a status string, raising InvalidInputError for unknown values."""
    try:
        return AppointmentStatus(value)
    except ValueError:
        raise InvalidInputError(
            f"Unknown appointment status '{value}'",
            {"status": value, "allowed": [s.value for s in AppointmentStatus]},
        )


def allowed_targets(status: AppointmentStatus, role: ActorRole) -> List[AppointmentStatus]:
    """Targets reachable from ``status`` for ``role``, ignoring identity guards."""
    return [target for target, roles in TRANSITIONS[status].items() if role in roles]


def can_transition(status: AppointmentStatus, target: AppointmentStatus, role: ActorRole) -> bool:
    """Whether the adjacency table has an edge status -> target for role."""
    return role in TRANSITIONS[status].get(target, frozenset())


@dataclass
class _EffectContext:
    """Appointment state captured before the transition, for post-commit effects."""
    appointment_id: int
    slot_id: Optional[int]
    technician_id: Optional[int]
    from_status: AppointmentStatus
    to_status: AppointmentStatus
    actor: Actor
    reason: Optional[str]


class AppointmentStateMachine:
    """Validates and applies appointment status transitions."""

    @staticmethod
    def load_for_update(db: Session, appointment_id: int) -> Appointment:
        """
        Load an appointment with a row lock.

        Raises:
            NotFoundError: If the appointment does not exist
            ConcurrentModificationError: If another transaction holds the lock
        """
        try:
            appointment = db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).populate_existing().with_for_update(nowait=True).first()
        except OperationalError:
            db.rollback()
            raise ConcurrentModificationError("Appointment", appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    @staticmethod
    def validate(appointment: Appointment, target: AppointmentStatus, actor: Actor) -> None:
        """
        Check a transition without applying it.

        Raises:
            InvalidTransitionError: If the edge is not in the table for the actor's role,
                or the appointment is already in the target status
            ForbiddenError: If the actor fails an identity guard
        """
        current = parse_status(appointment.status)

        if current == target:
            raise InvalidTransitionError(
                current.value, target.value, actor.role.value,
                message=f"Appointment is already {current.value}",
            )

        edges = TRANSITIONS[current]
        if target not in edges or actor.role not in edges[target]:
            raise InvalidTransitionError(current.value, target.value, actor.role.value)

        if current == S.CANCEL_REQUESTED and target != S.CANCEL_APPROVED:
            previous = appointment.cancel_request.previous_status if appointment.cancel_request else None
            if target.value != previous:
                raise InvalidTransitionError(
                    current.value, target.value, actor.role.value,
                    message=f"A rejected cancellation returns to {previous}, not {target.value}",
                )

        if actor.role == _CUSTOMER and appointment.customer_id != actor.user_id:
            raise ForbiddenError(
                "Customers can only act on their own appointments",
                required_role=[_STAFF.value, _ADMIN.value],
            )

        if (
            actor.role == _TECHNICIAN
            and target not in _UNASSIGNED_TECHNICIAN_TARGETS
            and appointment.assigned_technician_id != actor.user_id
        ):
            raise ForbiddenError(
                "Only the assigned technician can perform this transition",
                required_role=[_STAFF.value, _ADMIN.value],
                assigned_technician_id=appointment.assigned_technician_id,
            )

    @staticmethod
    def append_event(
        db: Session,
        appointment: Appointment,
        from_status: Optional[AppointmentStatus],
        to_status: AppointmentStatus,
        actor: Actor,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AppointmentWorkflowEvent:
        """Append the next workflow event. Does not commit."""
        last_sequence = 0
        if appointment.id is not None:
            last_sequence = db.query(func.max(AppointmentWorkflowEvent.sequence)).filter(
                AppointmentWorkflowEvent.appointment_id == appointment.id
            ).scalar() or 0

        event = AppointmentWorkflowEvent(
            sequence=last_sequence + 1,
            from_status=from_status.value if from_status else None,
            status=to_status.value,
            changed_by=actor.user_id,
            actor_role=actor.role.value,
            changed_at=center_now(),
            reason=reason,
            notes=notes,
        )
        appointment.workflow_events.append(event)
        return event

    @staticmethod
    def transition(
        db: Session,
        appointment: Appointment,
        target: AppointmentStatus,
        actor: Actor,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        apply: Optional[Callable[[Appointment], None]] = None,
    ) -> Appointment:
        """
        Move an appointment to ``target``.

        Args:
            db: Database session
            appointment: Appointment to transition (ideally loaded with load_for_update)
            target: Requested status
            actor: Acting role and identity
            reason: Free-text reason, recorded in the workflow event
            notes: Additional notes, recorded in the workflow event
            apply: Extra field changes committed together with the transition
                (e.g. the cancellation record); runs after validation and after
                the built-in field changes, so it may set a new slot

        Returns:
            The updated appointment

        Raises:
            InvalidTransitionError: If the edge is not allowed
            ForbiddenError: If an identity guard fails
            ConcurrentModificationError: If another writer changed the appointment first
        """
        AppointmentStateMachine.validate(appointment, target, actor)
        current = parse_status(appointment.status)

        context = _EffectContext(
            appointment_id=appointment.id,
            slot_id=appointment.slot_id,
            technician_id=appointment.assigned_technician_id,
            from_status=current,
            to_status=target,
            actor=actor,
            reason=reason,
        )

        try:
            AppointmentStateMachine._apply_field_effects(appointment, target)
            if apply is not None:
                apply(appointment)
            appointment.status = target.value
            AppointmentStateMachine.append_event(db, appointment, current, target, actor, reason, notes)
            db.commit()
        except (IntegrityError, StaleDataError) as e:
            db.rollback()
            logger.warning(f"Concurrent update on appointment {context.appointment_id}: {e}")
            raise ConcurrentModificationError("Appointment", context.appointment_id)
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Appointment {appointment.appointment_number}: {current.value} -> {target.value} "
            f"by {actor.role.value} {actor.user_id if actor.user_id is not None else ''}".rstrip()
        )

        AppointmentStateMachine._run_side_effects(db, appointment, context)
        return appointment

    @staticmethod
    def _apply_field_effects(appointment: Appointment, target: AppointmentStatus) -> None:
        """Field changes that belong to the transition itself."""
        now = to_center_naive(center_now())
        if target == S.CUSTOMER_ARRIVED:
            appointment.arrived_at = now
        elif target == S.COMPLETED:
            appointment.actual_completion = now
        elif target in _SLOT_RELEASING_TARGETS:
            # The seat is given back after commit; drop the reference now so
            # the appointment never points at a seat it no longer holds.
            appointment.slot_id = None

    @staticmethod
    def _run_side_effects(db: Session, appointment: Appointment, context: _EffectContext) -> None:
        """Post-commit effects. Failures are recorded, never raised."""
        target = context.to_status

        if target in _SLOT_RELEASING_TARGETS and context.slot_id is not None:
            def release_slot() -> None:
                SlotCapacityService.release(db, context.slot_id)  # type: ignore[arg-type]
                if context.technician_id is not None:
                    SlotCapacityService.release_technician_seat(db, context.slot_id, context.technician_id)  # type: ignore[arg-type]
            AppointmentStateMachine._run_effect(db, context, "release_slot", release_slot)

        if context.technician_id is not None and target in TERMINAL_STATUSES:
            if target == S.COMPLETED:
                AppointmentStateMachine._run_effect(
                    db, context, "record_completion",
                    lambda: TechnicianService.record_completion(db, context.technician_id),  # type: ignore[arg-type]
                )
            else:
                AppointmentStateMachine._run_effect(
                    db, context, "decrement_workload",
                    lambda: TechnicianService.decrement_workload(db, context.technician_id),  # type: ignore[arg-type]
                )

        AppointmentStateMachine._run_effect(
            db, context, "notify",
            lambda: NotificationService.notify_status_change(
                appointment, context.from_status.value, target.value, context.actor, context.reason
            ),
        )

    @staticmethod
    def run_side_effect(
        db: Session,
        appointment: Appointment,
        actor: Actor,
        effect: str,
        action: Callable[[], object],
    ) -> bool:
        """Run a post-commit effect outside a transition (e.g. after creation)."""
        status = parse_status(appointment.status)
        context = _EffectContext(
            appointment_id=appointment.id,
            slot_id=appointment.slot_id,
            technician_id=appointment.assigned_technician_id,
            from_status=status,
            to_status=status,
            actor=actor,
            reason=None,
        )
        return AppointmentStateMachine._run_effect(db, context, effect, action)

    @staticmethod
    def _run_effect(db: Session, context: _EffectContext, effect: str, action: Callable[[], object]) -> bool:
        try:
            action()
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.exception(
                f"Side effect '{effect}' failed for appointment {context.appointment_id} "
                f"after transition to {context.to_status.value}: {e}"
            )
            AppointmentStateMachine._record_failure(db, context, effect, e)
            return False

    @staticmethod
    def _record_failure(db: Session, context: _EffectContext, effect: str, error: Exception) -> None:
        try:
            db.add(AppointmentSideEffectFailure(
                appointment_id=context.appointment_id,
                effect=effect,
                status=context.to_status.value,
                error=f"{type(error).__name__}: {error}",
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception(f"Could not record side effect failure for appointment {context.appointment_id}: {e}")
