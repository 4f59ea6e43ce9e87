"""
Parts shortage decisions.

Each decision is allowed only from specific statuses. The decision check
runs first and reports the decision in its error; the state machine then
validates the resulting transition as usual (roles, identity guards).
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from core.exceptions import InvalidInputError, InvalidStatusForDecisionError
from models import Appointment, AppointmentPartsShortage
from services.appointment_state_machine import AppointmentStateMachine, parse_status
from services.cancellation_service import CancellationService
from services.reschedule_service import RescheduleService
from shared_types.workflow import Actor, AppointmentStatus, PartsDecision
from utils.datetime_utils import center_now, parse_date_string, parse_time_string, to_center_naive

logger = logging.getLogger(__name__)

S = AppointmentStatus


@dataclass(frozen=True)
class DecisionRule:
    sources: FrozenSet[AppointmentStatus]
    target: AppointmentStatus


DECISION_RULES: Dict[PartsDecision, DecisionRule] = {
    PartsDecision.MARK_INSUFFICIENT: DecisionRule(
        frozenset({S.RECEPTION_CREATED, S.RECEPTION_APPROVED, S.IN_PROGRESS, S.PARTS_REQUESTED, S.WAITING_FOR_PARTS}),
        S.PARTS_INSUFFICIENT,
    ),
    PartsDecision.WAIT: DecisionRule(
        frozenset({S.PARTS_INSUFFICIENT, S.PARTS_REQUESTED}),
        S.WAITING_FOR_PARTS,
    ),
    PartsDecision.PROCEED_WITHOUT: DecisionRule(
        frozenset({S.PARTS_INSUFFICIENT}),
        S.IN_PROGRESS,
    ),
    PartsDecision.RESCHEDULE: DecisionRule(
        frozenset({S.PARTS_INSUFFICIENT, S.WAITING_FOR_PARTS}),
        S.RESCHEDULED,
    ),
    PartsDecision.CANCEL: DecisionRule(
        frozenset({S.PARTS_INSUFFICIENT, S.WAITING_FOR_PARTS}),
        S.CANCEL_REQUESTED,
    ),
    PartsDecision.RESUME_WORK: DecisionRule(
        frozenset({S.WAITING_FOR_PARTS, S.PARTS_REQUESTED}),
        S.IN_PROGRESS,
    ),
}


def parse_decision(value: str) -> PartsDecision:
    try:
        return PartsDecision(value)
    except ValueError:
        raise InvalidInputError(
            f"Unknown parts decision '{value}'",
            {"decision": value, "allowed": [d.value for d in PartsDecision]},
        )


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
        return to_center_naive(parsed) if parsed.tzinfo else parsed
    except ValueError:
        raise InvalidInputError(f"Invalid datetime '{value}'", {"value": value})


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return parse_date_string(str(value))
    except ValueError:
        raise InvalidInputError(f"Invalid date '{value}', expected YYYY-MM-DD", {"value": value})


def _as_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    try:
        return parse_time_string(str(value))
    except ValueError:
        raise InvalidInputError(f"Invalid time '{value}', expected HH:MM", {"value": value})


class PartsShortageService:
    """Service applying parts shortage decisions to appointments."""

    @staticmethod
    def check_decision(appointment: Appointment, decision: PartsDecision) -> DecisionRule:
        """
        Raises:
            InvalidStatusForDecisionError: If the decision is not allowed from the current status
        """
        rule = DECISION_RULES[decision]
        current = parse_status(appointment.status)
        if current not in rule.sources:
            raise InvalidStatusForDecisionError(
                decision.value,
                current.value,
                sorted(status.value for status in rule.sources),
            )
        return rule

    @staticmethod
    def handle_decision(
        db: Session,
        appointment_id: int,
        decision: PartsDecision,
        actor: Actor,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Appointment:
        """
        Apply a parts decision.

        Args:
            db: Database session
            appointment_id: Appointment affected by the shortage
            decision: One of PartsDecision
            actor: Technician, staff or admin
            payload: Decision data. Recognised keys: reason, notes,
                insufficient_parts (mark_insufficient), estimated_arrival (wait),
                new_date, new_time, slot_id, customer_agreed (reschedule)

        Returns:
            The updated appointment

        Raises:
            InvalidStatusForDecisionError: If the decision is not allowed now
            InvalidTransitionError: If the state machine rejects the resulting transition
        """
        payload = payload or {}
        reason: Optional[str] = payload.get("reason")
        notes: Optional[str] = payload.get("notes")

        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)
        rule = PartsShortageService.check_decision(appointment, decision)
        logger.info(f"Parts decision '{decision.value}' on appointment {appointment.appointment_number}")

        if decision == PartsDecision.MARK_INSUFFICIENT:
            parts: List[Dict[str, Any]] = list(payload.get("insufficient_parts") or [])

            def record_shortage(target: Appointment) -> None:
                shortage = target.parts_shortage
                if shortage is None:
                    shortage = AppointmentPartsShortage()
                    target.parts_shortage = shortage
                shortage.insufficient_parts = parts
                shortage.reported_by = actor.user_id
                shortage.reported_at = center_now()
                shortage.reason = reason
                shortage.estimated_parts_arrival = None

            return AppointmentStateMachine.transition(
                db, appointment, rule.target, actor, reason=reason, notes=notes, apply=record_shortage,
            )

        if decision == PartsDecision.WAIT:
            eta = _as_datetime(payload.get("estimated_arrival"))

            def record_eta(target: Appointment) -> None:
                shortage = target.parts_shortage
                if shortage is None:
                    shortage = AppointmentPartsShortage(
                        insufficient_parts=[],
                        reported_by=actor.user_id,
                        reported_at=center_now(),
                        reason=reason,
                    )
                    target.parts_shortage = shortage
                shortage.estimated_parts_arrival = eta

            return AppointmentStateMachine.transition(
                db, appointment, rule.target, actor, reason=reason, notes=notes, apply=record_eta,
            )

        if decision == PartsDecision.RESCHEDULE:
            if payload.get("new_date") is None or payload.get("new_time") is None:
                raise InvalidInputError("Rescheduling requires new_date and new_time")
            return RescheduleService.reschedule(
                db,
                appointment.id,
                _as_date(payload["new_date"]),
                _as_time(payload["new_time"]),
                actor,
                reason=reason or "Parts shortage",
                slot_id=payload.get("slot_id"),
                customer_agreed=payload.get("customer_agreed"),
            )

        if decision == PartsDecision.CANCEL:
            # Only staff and admins hold the edge, so the request uses staff refund terms
            CancellationService.request_cancellation(
                db, appointment.id, reason or "Required parts unavailable", actor,
            )
            return appointment

        # proceed_without, resume_work
        return AppointmentStateMachine.transition(db, appointment, rule.target, actor, reason=reason, notes=notes)
