"""
Cancellation sub-flow: request, approve or reject, then refund.

A request freezes the refund terms (percentage, base amount, refund amount)
at request time. Approval and rejection only stamp who decided. Processing
the refund writes an immutable RefundLedgerEntry when something was paid
and closes the appointment as cancelled.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.exceptions import CancellationWindowClosedError, InvalidInputError, PolicyViolationError
from models import Appointment, AppointmentCancelRequest, RefundLedgerEntry
from services.appointment_state_machine import AppointmentStateMachine, parse_status
from services.refund_policy_service import default_policy, evaluate_cancellation
from shared_types.workflow import Actor, ActorRole, AppointmentStatus, PaymentStatus
from utils.datetime_utils import center_now

logger = logging.getLogger(__name__)


def cancellation_base_amount(appointment: Appointment) -> int:
    """The amount a refund percentage applies to: what the customer has actually paid."""
    return appointment.paid_amount or 0


class CancellationService:
    """Service for the cancel_requested -> cancel_approved -> cancelled flow."""

    @staticmethod
    def request_cancellation(
        db: Session,
        appointment_id: int,
        reason: str,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        File a cancellation request and move the appointment to cancel_requested.

        Args:
            db: Database session
            appointment_id: Appointment to cancel
            reason: Why the appointment is being cancelled
            actor: Customer (own appointment) or staff/admin
            now: Evaluation time; defaults to the current center time

        Returns:
            Dict with refund_percentage, requested_at, hours_left and refund_amount

        Raises:
            NotFoundError: If the appointment does not exist
            InvalidTransitionError: If cancel_requested is not reachable
            ForbiddenError: If a customer cancels someone else's appointment
            CancellationWindowClosedError: If the customer is past the cancellation window
        """
        if not reason or not reason.strip():
            raise InvalidInputError("A cancellation reason is required")

        now = now or center_now()
        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)
        AppointmentStateMachine.validate(appointment, AppointmentStatus.CANCEL_REQUESTED, actor)
        current = parse_status(appointment.status)

        policy = default_policy()
        eligibility = evaluate_cancellation(
            appointment.scheduled_start,
            now,
            actor.role,
            base_amount=cancellation_base_amount(appointment),
            status=current,
            policy=policy,
        )
        if not eligibility.can_cancel:
            logger.warning(f"Cancellation refused for appointment {appointment_id}: {eligibility.reason}")
            if eligibility.hours_left < policy.minimum_cancellation_hours:
                raise CancellationWindowClosedError(
                    eligibility.reason,
                    eligibility.hours_left,
                    policy.minimum_cancellation_hours,
                    eligibility.refund_percentage,
                )
            raise PolicyViolationError(eligibility.reason, eligibility.to_dict())

        requested_at = center_now()

        def record_request(target: Appointment) -> None:
            request = target.cancel_request
            if request is None:
                request = AppointmentCancelRequest()
                target.cancel_request = request
            # A previously rejected request is overwritten by the new one
            request.reason = reason.strip()
            request.requested_at = requested_at
            request.requested_by = actor.user_id
            request.requested_by_role = actor.role.value
            request.previous_status = current.value
            request.hours_left = eligibility.hours_left
            request.refund_percentage = eligibility.refund_percentage
            request.base_amount = eligibility.base_amount
            request.refund_amount = eligibility.refund_amount
            request.approved_at = None
            request.approved_by = None
            request.approved_notes = None
            request.rejected_at = None
            request.rejected_by = None
            request.rejection_reason = None

        AppointmentStateMachine.transition(
            db, appointment, AppointmentStatus.CANCEL_REQUESTED, actor,
            reason=reason, apply=record_request,
        )

        return {
            "refund_percentage": eligibility.refund_percentage,
            "requested_at": requested_at.isoformat(),
            "hours_left": round(eligibility.hours_left, 2),
            "refund_amount": eligibility.refund_amount,
        }

    @staticmethod
    def approve_cancellation(
        db: Session,
        appointment_id: int,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Appointment:
        """Approve a pending cancellation request (cancel_requested -> cancel_approved)."""
        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)

        def stamp_approval(target: Appointment) -> None:
            request = target.cancel_request
            request.approved_at = center_now()
            request.approved_by = actor.user_id
            request.approved_notes = notes

        return AppointmentStateMachine.transition(
            db, appointment, AppointmentStatus.CANCEL_APPROVED, actor,
            notes=notes, apply=stamp_approval,
        )

    @staticmethod
    def reject_cancellation(
        db: Session,
        appointment_id: int,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Reject a cancellation request, restoring the status held before it."""
        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)
        request = appointment.cancel_request
        if request is None or parse_status(appointment.status) != AppointmentStatus.CANCEL_REQUESTED:
            raise InvalidInputError(
                f"Appointment {appointment_id} has no open cancellation request",
                {"status": appointment.status},
            )

        def stamp_rejection(target: Appointment) -> None:
            target.cancel_request.rejected_at = center_now()
            target.cancel_request.rejected_by = actor.user_id
            target.cancel_request.rejection_reason = reason

        return AppointmentStateMachine.transition(
            db, appointment, AppointmentStatus(request.previous_status), actor,
            reason=reason, apply=stamp_rejection,
        )

    @staticmethod
    def process_refund(
        db: Session,
        appointment_id: int,
        actor: Actor,
        reference: Optional[str] = None,
    ) -> Optional[RefundLedgerEntry]:
        """
        Record the refund of an approved cancellation and close the appointment.

        The refund amount is the one frozen on the request. The appointment's
        original payment fields are left as they were; the reversal lives in
        the ledger entry, and payment_status reflects it. When nothing was
        paid there is nothing to reverse: no ledger entry is written,
        payment_status is left alone and the appointment is still cancelled.

        Returns:
            The ledger entry, or None when nothing was paid

        Raises:
            InvalidTransitionError: If the appointment is not cancel_approved
            InvalidInputError: If there is no cancellation request to refund
        """
        appointment = AppointmentStateMachine.load_for_update(db, appointment_id)
        request = appointment.cancel_request
        if request is None:
            raise InvalidInputError(f"Appointment {appointment_id} has no cancellation request")

        if (request.base_amount or 0) <= 0:
            def close_unpaid(target: Appointment) -> None:
                target.cancel_request.refund_processed_at = center_now()
                target.cancel_request.refund_processed_by = actor.user_id

            AppointmentStateMachine.transition(
                db, appointment, AppointmentStatus.CANCELLED, actor,
                reason=request.reason, notes="Nothing paid, no refund", apply=close_unpaid,
            )
            logger.info(f"Appointment {appointment.appointment_number} cancelled with nothing to refund")
            return None

        entry = RefundLedgerEntry(
            appointment_id=appointment.id,
            cancel_request_id=request.id,
            base_amount=request.base_amount,
            refund_percentage=request.refund_percentage,
            refund_amount=request.refund_amount,
            reference=reference or f"RF-{appointment.appointment_number}-{uuid.uuid4().hex[:8].upper()}",
            created_by=actor.user_id,
        )

        def record_refund(target: Appointment) -> None:
            now = center_now()
            target.refund_entries.append(entry)
            target.cancel_request.refund_processed_at = now
            target.cancel_request.refund_processed_by = actor.user_id
            target.cancel_request.refund_reference = entry.reference
            if entry.refund_amount > 0:
                target.payment_status = (
                    PaymentStatus.REFUNDED.value
                    if entry.refund_percentage >= 100
                    else PaymentStatus.PARTIALLY_REFUNDED.value
                )

        AppointmentStateMachine.transition(
            db, appointment, AppointmentStatus.CANCELLED, actor,
            reason=request.reason, notes=f"Refund {entry.refund_amount} ({entry.refund_percentage}%)",
            apply=record_refund,
        )
        logger.info(
            f"Refund {entry.reference} recorded for appointment {appointment.appointment_number}: "
            f"{entry.refund_amount} of {entry.base_amount}"
        )
        return entry

    @staticmethod
    def preview(appointment: Appointment, role: ActorRole, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Cancellation eligibility as shown to the caller, without side effects."""
        eligibility = evaluate_cancellation(
            appointment.scheduled_start,
            now or center_now(),
            role,
            base_amount=cancellation_base_amount(appointment),
            status=parse_status(appointment.status),
        )
        return eligibility.to_dict()
