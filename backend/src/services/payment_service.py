"""
Payment boundary.

The booking core only needs to know that a payment was completed. A pending
payment is persisted with an expiry when the customer is sent to the gateway;
the gateway callback completes it. Two flows are supported:

- deposit for an existing appointment: success marks the deposit paid and
  confirms the appointment (system actor);
- pay before booking: the booking request is stored with the payment and the
  appointment is created, already confirmed, when payment succeeds.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.config import PENDING_PAYMENT_TTL_MINUTES
from core.exceptions import BookingError, ForbiddenError, InvalidInputError, NotFoundError, PaymentExpiredError
from models import Appointment, PendingPayment
from services.appointment_service import AppointmentService
from services.appointment_state_machine import AppointmentStateMachine, parse_status
from shared_types.workflow import (
    Actor,
    ActorRole,
    AppointmentStatus,
    PaymentStatus,
    PendingPaymentStatus,
    TERMINAL_STATUSES,
)
from utils.datetime_utils import center_now, parse_date_string, parse_time_string, to_center_naive

logger = logging.getLogger(__name__)


def generate_transaction_ref() -> str:
    return f"PAY{center_now():%y%m%d%H%M%S}{uuid.uuid4().hex[:8].upper()}"


class PaymentService:
    """Service for pending payments and gateway callbacks."""

    @staticmethod
    def create_pending_payment(
        db: Session,
        user_id: int,
        amount: int,
        appointment_id: Optional[int] = None,
        booking: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> PendingPayment:
        """
        Persist a pending payment before redirecting to the gateway.

        Exactly one of ``appointment_id`` (deposit for an existing appointment)
        or ``booking`` (pay-before-booking request) must be given.

        Raises:
            InvalidInputError: If the amount or the target is invalid
            NotFoundError: If the appointment does not exist
            ForbiddenError: If the appointment belongs to someone else
        """
        if amount <= 0:
            raise InvalidInputError("Payment amount must be positive", {"amount": amount})
        if (appointment_id is None) == (booking is None):
            raise InvalidInputError("Provide either appointment_id or booking")

        if appointment_id is not None:
            appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
            if appointment is None:
                raise NotFoundError("Appointment", appointment_id)
            if appointment.customer_id != user_id:
                raise ForbiddenError("You can only pay for your own appointments")
            if appointment.deposit_paid or appointment.payment_status == PaymentStatus.PAID.value:
                raise InvalidInputError(f"Appointment {appointment_id} is already paid")

        now = to_center_naive(now or center_now())
        payment = PendingPayment(
            transaction_ref=generate_transaction_ref(),
            user_id=user_id,
            amount=amount,
            appointment_id=appointment_id,
            booking_payload=booking,
            status=PendingPaymentStatus.PENDING.value,
            expires_at=now + timedelta(minutes=PENDING_PAYMENT_TTL_MINUTES),
        )
        db.add(payment)
        db.commit()
        logger.info(
            f"Created pending payment {payment.transaction_ref} for user {user_id}: {amount} "
            f"(expires {payment.expires_at:%H:%M})"
        )
        return payment

    @staticmethod
    def complete_payment(
        db: Session,
        transaction_ref: str,
        success: bool,
        paid_amount: Optional[int] = None,
        gateway_transaction_no: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PendingPayment:
        """
        Handle the gateway callback for a pending payment.

        A callback for an already completed or failed payment returns the
        stored record unchanged, so gateway retries are harmless.

        Raises:
            NotFoundError: If the transaction reference is unknown
            PaymentExpiredError: If the payment expired before the callback arrived
        """
        payment = db.query(PendingPayment).filter(
            PendingPayment.transaction_ref == transaction_ref
        ).with_for_update().first()
        if payment is None:
            raise NotFoundError("PendingPayment", transaction_ref)

        if payment.status in (PendingPaymentStatus.COMPLETED.value, PendingPaymentStatus.FAILED.value):
            logger.info(f"Duplicate callback for payment {transaction_ref} ({payment.status})")
            return payment

        now = to_center_naive(now or center_now())
        if payment.status == PendingPaymentStatus.EXPIRED.value or payment.is_expired(now):
            if payment.status != PendingPaymentStatus.EXPIRED.value:
                payment.status = PendingPaymentStatus.EXPIRED.value
                db.commit()
            logger.warning(f"Callback for expired payment {transaction_ref}")
            raise PaymentExpiredError(transaction_ref)

        payment.gateway_transaction_no = gateway_transaction_no
        payment.completed_at = now
        if not success:
            payment.status = PendingPaymentStatus.FAILED.value
            db.commit()
            logger.info(f"Payment {transaction_ref} failed at the gateway")
            return payment

        amount = paid_amount if paid_amount is not None else payment.amount
        try:
            if payment.appointment_id is not None:
                appointment = PaymentService._apply_deposit(db, payment, amount)
            else:
                appointment = PaymentService._create_prepaid_booking(db, payment)
        except BookingError as e:
            # Money was taken but the booking could not be honoured; staff must refund it
            logger.error(f"Payment {transaction_ref} succeeded but could not be applied: {e.message}")
            payment.status = PendingPaymentStatus.FAILED.value
            payment.gateway_transaction_no = gateway_transaction_no
            payment.completed_at = now
            db.commit()
            raise

        payment.status = PendingPaymentStatus.COMPLETED.value
        payment.result_appointment_id = appointment.id
        db.commit()
        logger.info(f"Payment {transaction_ref} completed for appointment {appointment.appointment_number}")
        return payment

    @staticmethod
    def _apply_deposit(db: Session, payment: PendingPayment, amount: int) -> Appointment:
        appointment = AppointmentStateMachine.load_for_update(db, payment.appointment_id)  # type: ignore[arg-type]

        def mark_paid(target: Appointment) -> None:
            target.deposit_paid = True
            target.paid_amount = (target.paid_amount or 0) + amount
            target.payment_status = PaymentStatus.PAID.value

        status = parse_status(appointment.status)
        if status in TERMINAL_STATUSES:
            raise InvalidInputError(
                f"Appointment {appointment.id} is {status.value}; the payment cannot be applied",
                {"status": status.value},
            )

        if status == AppointmentStatus.PENDING:
            AppointmentStateMachine.transition(
                db, appointment, AppointmentStatus.CONFIRMED, Actor.system(),
                reason=f"Payment {payment.transaction_ref} completed", apply=mark_paid,
            )
        else:
            mark_paid(appointment)
            db.flush()
        return appointment

    @staticmethod
    def _create_prepaid_booking(db: Session, payment: PendingPayment) -> Appointment:
        booking = dict(payment.booking_payload or {})
        try:
            scheduled_date = booking["scheduled_date"]
            scheduled_time = booking["scheduled_time"]
            if not isinstance(scheduled_date, date):
                scheduled_date = parse_date_string(str(scheduled_date))
            if isinstance(scheduled_time, str):
                scheduled_time = parse_time_string(scheduled_time)
            return AppointmentService.create_appointment(
                db,
                customer_id=payment.user_id,
                vehicle_id=int(booking["vehicle_id"]),
                services=booking["services"],
                scheduled_date=scheduled_date,
                scheduled_time=scheduled_time,
                technician_id=booking.get("technician_id"),
                slot_id=booking.get("slot_id"),
                auto_assign=bool(booking.get("auto_assign", False)),
                prepaid=True,
                booking_type=booking.get("booking_type", "full_service"),
                deposit_amount=booking.get("deposit_amount"),
                customer_notes=booking.get("customer_notes"),
                actor=Actor(ActorRole.CUSTOMER, payment.user_id),
            )
        except (KeyError, ValueError) as e:
            raise InvalidInputError(f"Stored booking request is invalid: {e}", {"transaction_ref": payment.transaction_ref})

    @staticmethod
    def expire_stale_payments(db: Session, now: Optional[datetime] = None) -> List[str]:
        """
        Mark pending payments past their expiry as expired.

        Returns:
            Transaction references that were expired
        """
        now = to_center_naive(now or center_now())
        stale = db.query(PendingPayment).filter(
            PendingPayment.status == PendingPaymentStatus.PENDING.value,
            PendingPayment.expires_at <= now,
        ).all()
        for payment in stale:
            payment.status = PendingPaymentStatus.EXPIRED.value
        if stale:
            db.commit()
            logger.info(f"Expired {len(stale)} stale pending payment(s)")
        return [payment.transaction_ref for payment in stale]
