"""
Integration tests for payment creation and the gateway callback.
"""

import pytest
from datetime import time, timedelta

from core.config import PENDING_PAYMENT_TTL_MINUTES
from models import Appointment, PendingPayment
from tests.conftest import book_appointment, create_staff, login_as


@pytest.fixture
def deposit_appointment(db_session, customer, vehicle, battery_service, booking_date):
    return book_appointment(
        db_session, customer, vehicle, [battery_service], booking_date, time(9, 0),
        booking_type="deposit_booking",
    )


class TestPaymentEndpoints:

    def test_deposit_payment_confirms_appointment(self, client, db_session, customer, deposit_appointment):
        login_as(customer)
        created = client.post(
            "/api/payments",
            json={"amount": 200000, "appointment_id": deposit_appointment.id},
        )
        assert created.status_code == 201
        ref = created.json()["transaction_ref"]
        assert created.json()["status"] == "pending"

        callback = client.post(
            f"/api/payments/{ref}/callback",
            json={"success": True, "gateway_transaction_no": "GW-42"},
        )

        assert callback.status_code == 200
        assert callback.json()["status"] == "completed"
        assert callback.json()["result_appointment_id"] == deposit_appointment.id
        appointment = db_session.get(Appointment, deposit_appointment.id)
        assert appointment.status == "confirmed"
        assert appointment.deposit_paid is True

    def test_pay_before_booking(self, client, db_session, customer, vehicle, battery_service, booking_date):
        login_as(customer)
        created = client.post("/api/payments", json={
            "amount": 500000,
            "booking": {
                "vehicle_id": vehicle.id,
                "services": [{"service_id": battery_service.id, "quantity": 1}],
                "scheduled_date": booking_date.isoformat(),
                "scheduled_time": "10:00",
            },
        })
        assert created.status_code == 201
        assert db_session.query(Appointment).count() == 0

        callback = client.post(f"/api/payments/{created.json()['transaction_ref']}/callback", json={"success": True})

        appointment_id = callback.json()["result_appointment_id"]
        appointment = db_session.get(Appointment, appointment_id)
        assert appointment.status == "confirmed"
        assert appointment.scheduled_time == time(10, 0)
        assert appointment.payment_status == "paid"

    def test_expired_payment(self, client, db_session, customer, deposit_appointment):
        login_as(customer)
        ref = client.post(
            "/api/payments",
            json={"amount": 200000, "appointment_id": deposit_appointment.id},
        ).json()["transaction_ref"]
        payment = db_session.get(PendingPayment, ref)
        payment.expires_at = payment.expires_at - timedelta(minutes=PENDING_PAYMENT_TTL_MINUTES + 1)
        db_session.commit()

        response = client.post(f"/api/payments/{ref}/callback", json={"success": True})

        assert response.status_code == 422
        assert response.json()["error"] == "payment_expired"
        assert db_session.get(Appointment, deposit_appointment.id).status == "pending"

    def test_unknown_transaction(self, client):
        response = client.post("/api/payments/PAY-NOPE/callback", json={"success": True})
        assert response.status_code == 404

    def test_amount_must_be_positive(self, client, customer, deposit_appointment):
        login_as(customer)
        response = client.post("/api/payments", json={"amount": 0, "appointment_id": deposit_appointment.id})
        assert response.status_code == 422

    def test_needs_a_target(self, client, customer):
        login_as(customer)
        response = client.post("/api/payments", json={"amount": 1000})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"

    def test_only_customers_start_payments(self, client, db_session, deposit_appointment):
        login_as(create_staff(db_session))
        response = client.post("/api/payments", json={"amount": 1000, "appointment_id": deposit_appointment.id})
        assert response.status_code == 403
