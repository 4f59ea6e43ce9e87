"""
Unit tests for pending payments and gateway callbacks.
"""

import pytest
from datetime import time, timedelta

from core.config import PENDING_PAYMENT_TTL_MINUTES
from core.exceptions import (
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    PaymentExpiredError,
    SlotUnavailableError,
)
from models import Appointment, AppointmentWorkflowEvent, PendingPayment
from services.payment_service import PaymentService, generate_transaction_ref
from tests.conftest import (
    book_appointment,
    create_customer,
    create_slot,
    create_vehicle,
)
from utils.datetime_utils import center_now, to_center_naive


@pytest.fixture
def deposit_appointment(db_session, customer, vehicle, battery_service, booking_date):
    return book_appointment(
        db_session, customer, vehicle, [battery_service], booking_date, time(9, 0),
        booking_type="deposit_booking",
    )


def _booking(vehicle, service, booking_date, **overrides):
    booking = {
        "vehicle_id": vehicle.id,
        "services": [{"service_id": service.id, "quantity": 1}],
        "scheduled_date": booking_date.isoformat(),
        "scheduled_time": "09:00",
        "booking_type": "full_service",
    }
    booking.update(overrides)
    return booking


class TestCreatePendingPayment:

    def test_expiry_is_ttl_from_now(self, db_session, customer, deposit_appointment):
        now = center_now()
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id, now=now
        )

        assert payment.status == "pending"
        assert payment.transaction_ref.startswith("PAY")
        assert payment.expires_at == to_center_naive(now) + timedelta(minutes=PENDING_PAYMENT_TTL_MINUTES)
        assert db_session.get(PendingPayment, payment.transaction_ref) is payment

    def test_transaction_refs_are_unique(self):
        assert len({generate_transaction_ref() for _ in range(20)}) == 20

    @pytest.mark.parametrize("amount", [0, -100])
    def test_amount_must_be_positive(self, db_session, customer, deposit_appointment, amount):
        with pytest.raises(InvalidInputError):
            PaymentService.create_pending_payment(
                db_session, customer.id, amount, appointment_id=deposit_appointment.id
            )

    def test_exactly_one_target(self, db_session, customer, vehicle, battery_service, deposit_appointment, booking_date):
        with pytest.raises(InvalidInputError):
            PaymentService.create_pending_payment(db_session, customer.id, 1000)
        with pytest.raises(InvalidInputError):
            PaymentService.create_pending_payment(
                db_session, customer.id, 1000,
                appointment_id=deposit_appointment.id,
                booking=_booking(vehicle, battery_service, booking_date),
            )

    def test_unknown_appointment(self, db_session, customer):
        with pytest.raises(NotFoundError):
            PaymentService.create_pending_payment(db_session, customer.id, 1000, appointment_id=999)

    def test_cannot_pay_for_someone_elses_appointment(self, db_session, deposit_appointment):
        other = create_customer(db_session, "other@test.com")
        with pytest.raises(ForbiddenError):
            PaymentService.create_pending_payment(db_session, other.id, 1000, appointment_id=deposit_appointment.id)


class TestDepositCallback:

    def test_success_confirms_and_marks_deposit_paid(self, db_session, customer, deposit_appointment):
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id
        )

        result = PaymentService.complete_payment(
            db_session, payment.transaction_ref, True, gateway_transaction_no="GW-1"
        )

        assert result.status == "completed"
        assert result.result_appointment_id == deposit_appointment.id
        assert result.gateway_transaction_no == "GW-1"

        appointment = db_session.get(Appointment, deposit_appointment.id)
        assert appointment.status == "confirmed"
        assert appointment.deposit_paid is True
        assert appointment.paid_amount == 200000
        assert appointment.payment_status == "paid"

        last = db_session.query(AppointmentWorkflowEvent).filter(
            AppointmentWorkflowEvent.appointment_id == appointment.id
        ).order_by(AppointmentWorkflowEvent.sequence.desc()).first()
        assert last.actor_role == "system"
        assert last.changed_by is None

    def test_duplicate_callback_is_idempotent(self, db_session, customer, deposit_appointment):
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id
        )
        PaymentService.complete_payment(db_session, payment.transaction_ref, True)

        again = PaymentService.complete_payment(db_session, payment.transaction_ref, True)

        assert again.status == "completed"
        assert db_session.get(Appointment, deposit_appointment.id).paid_amount == 200000

    def test_deposit_for_confirmed_appointment_keeps_status(self, db_session, customer, deposit_appointment):
        deposit_appointment.status = "confirmed"
        db_session.commit()
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id
        )

        PaymentService.complete_payment(db_session, payment.transaction_ref, True, paid_amount=150000)

        appointment = db_session.get(Appointment, deposit_appointment.id)
        assert appointment.status == "confirmed"
        assert appointment.paid_amount == 150000

    def test_gateway_failure(self, db_session, customer, deposit_appointment):
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id
        )

        result = PaymentService.complete_payment(db_session, payment.transaction_ref, False)

        assert result.status == "failed"
        appointment = db_session.get(Appointment, deposit_appointment.id)
        assert appointment.status == "pending"
        assert appointment.deposit_paid is False

    def test_already_paid_appointment_cannot_get_new_payment(self, db_session, customer, deposit_appointment):
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id
        )
        PaymentService.complete_payment(db_session, payment.transaction_ref, True)

        with pytest.raises(InvalidInputError):
            PaymentService.create_pending_payment(
                db_session, customer.id, 200000, appointment_id=deposit_appointment.id
            )

    def test_unknown_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            PaymentService.complete_payment(db_session, "PAY-NOPE", True)


class TestExpiry:

    def test_callback_after_expiry_is_refused(self, db_session, customer, deposit_appointment):
        created = center_now() - timedelta(minutes=PENDING_PAYMENT_TTL_MINUTES + 1)
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id, now=created
        )

        with pytest.raises(PaymentExpiredError):
            PaymentService.complete_payment(db_session, payment.transaction_ref, True)

        db_session.refresh(payment)
        assert payment.status == "expired"
        assert db_session.get(Appointment, deposit_appointment.id).status == "pending"

        with pytest.raises(PaymentExpiredError):
            PaymentService.complete_payment(db_session, payment.transaction_ref, True)

    def test_callback_just_before_expiry_is_accepted(self, db_session, customer, deposit_appointment):
        now = center_now()
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 200000, appointment_id=deposit_appointment.id, now=now
        )
        result = PaymentService.complete_payment(
            db_session, payment.transaction_ref, True,
            now=now + timedelta(minutes=PENDING_PAYMENT_TTL_MINUTES - 1),
        )
        assert result.status == "completed"

    def test_expire_stale_payments(self, db_session, customer, deposit_appointment):
        now = center_now()
        stale = PaymentService.create_pending_payment(
            db_session, customer.id, 1000, appointment_id=deposit_appointment.id,
            now=now - timedelta(minutes=PENDING_PAYMENT_TTL_MINUTES),
        )
        fresh = PaymentService.create_pending_payment(
            db_session, customer.id, 1000, appointment_id=deposit_appointment.id, now=now
        )

        expired = PaymentService.expire_stale_payments(db_session, now)

        assert expired == [stale.transaction_ref]
        db_session.refresh(stale)
        db_session.refresh(fresh)
        assert stale.status == "expired"
        assert fresh.status == "pending"
        assert PaymentService.expire_stale_payments(db_session, now) == []


class TestPayBeforeBooking:

    def test_success_creates_confirmed_appointment(self, db_session, customer, vehicle, battery_service, booking_date):
        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 500000, booking=_booking(vehicle, battery_service, booking_date)
        )
        assert db_session.query(Appointment).count() == 0

        result = PaymentService.complete_payment(db_session, payment.transaction_ref, True)

        appointment = db_session.get(Appointment, result.result_appointment_id)
        assert appointment.customer_id == customer.id
        assert appointment.status == "confirmed"
        assert appointment.scheduled_date == booking_date
        assert appointment.scheduled_time == time(9, 0)
        assert appointment.payment_status == "paid"
        assert appointment.paid_amount == 500000
        assert result.status == "completed"

    def test_failed_booking_marks_payment_failed(self, db_session, customer, vehicle, battery_service, booking_date):
        slot = create_slot(db_session, booking_date, capacity=1)
        other = create_customer(db_session, "other@test.com")
        book_appointment(db_session, other, create_vehicle(db_session, other), [battery_service], booking_date, slot_id=slot.id)

        payment = PaymentService.create_pending_payment(
            db_session, customer.id, 500000,
            booking=_booking(vehicle, battery_service, booking_date, slot_id=slot.id),
        )

        with pytest.raises(SlotUnavailableError):
            PaymentService.complete_payment(db_session, payment.transaction_ref, True)

        db_session.refresh(payment)
        assert payment.status == "failed"
        assert payment.result_appointment_id is None
        assert db_session.query(Appointment).filter(Appointment.customer_id == customer.id).count() == 0

    def test_invalid_stored_booking(self, db_session, customer, vehicle, battery_service, booking_date):
        booking = _booking(vehicle, battery_service, booking_date, scheduled_time="nine")
        payment = PaymentService.create_pending_payment(db_session, customer.id, 500000, booking=booking)

        with pytest.raises(InvalidInputError):
            PaymentService.complete_payment(db_session, payment.transaction_ref, True)

        db_session.refresh(payment)
        assert payment.status == "failed"
