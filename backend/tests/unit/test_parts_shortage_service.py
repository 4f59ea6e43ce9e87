"""
Unit tests for parts shortage decisions.
"""

import pytest
from datetime import datetime, time, timedelta

from core.exceptions import (
    InvalidInputError,
    InvalidStatusForDecisionError,
    InvalidTransitionError,
)
from services.parts_shortage_service import (
    DECISION_RULES,
    PartsShortageService,
    parse_decision,
)
from services.appointment_state_machine import TRANSITIONS
from shared_types.workflow import PartsDecision
from tests.conftest import actor_for, book_appointment, force_status


@pytest.fixture
def appointment(db_session, customer, vehicle, battery_service, technician, booking_date):
    appointment = book_appointment(
        db_session, customer, vehicle, [battery_service], booking_date, time(9, 0),
        technician_id=technician.id,
    )
    return force_status(db_session, appointment, "in_progress")


MISSING_PARTS = [
    {"part_id": 17, "part_name": "Coolant pump", "required_quantity": 1, "available_quantity": 0},
]


class TestDecisionRules:

    def test_every_decision_has_a_rule(self):
        assert set(DECISION_RULES) == set(PartsDecision)

    @pytest.mark.parametrize("decision", list(PartsDecision))
    def test_rule_targets_are_reachable_from_every_source(self, decision):
        rule = DECISION_RULES[decision]
        for source in rule.sources:
            assert rule.target in TRANSITIONS[source], f"{source.value} -> {rule.target.value}"

    def test_parse_decision(self):
        assert parse_decision("wait") == PartsDecision.WAIT
        with pytest.raises(InvalidInputError):
            parse_decision("panic")


class TestHandleDecision:

    def test_mark_insufficient_records_shortage(self, db_session, appointment, technician):
        PartsShortageService.handle_decision(
            db_session, appointment.id, PartsDecision.MARK_INSUFFICIENT, actor_for(technician),
            {"insufficient_parts": MISSING_PARTS, "reason": "Pump out of stock"},
        )

        assert appointment.status == "parts_insufficient"
        shortage = appointment.parts_shortage
        assert shortage.insufficient_parts == MISSING_PARTS
        assert shortage.reported_by == technician.id
        assert shortage.reason == "Pump out of stock"

    def test_wait_records_estimated_arrival(self, db_session, appointment, technician, staff):
        PartsShortageService.handle_decision(
            db_session, appointment.id, PartsDecision.MARK_INSUFFICIENT, actor_for(technician),
            {"insufficient_parts": MISSING_PARTS},
        )
        eta = datetime.combine(appointment.scheduled_date + timedelta(days=2), time(8, 0))

        PartsShortageService.handle_decision(
            db_session, appointment.id, PartsDecision.WAIT, actor_for(staff),
            {"estimated_arrival": eta.isoformat()},
        )

        assert appointment.status == "waiting_for_parts"
        assert appointment.parts_shortage.estimated_parts_arrival == eta
        assert appointment.parts_shortage.insufficient_parts == MISSING_PARTS

    def test_resume_work_after_waiting(self, db_session, appointment, technician, staff):
        force_status(db_session, appointment, "waiting_for_parts")

        PartsShortageService.handle_decision(
            db_session, appointment.id, PartsDecision.RESUME_WORK, actor_for(technician)
        )
        assert appointment.status == "in_progress"

    def test_proceed_without_parts(self, db_session, appointment, staff):
        force_status(db_session, appointment, "parts_insufficient")

        PartsShortageService.handle_decision(
            db_session, appointment.id, PartsDecision.PROCEED_WITHOUT, actor_for(staff),
            {"notes": "Customer accepted partial repair"},
        )
        assert appointment.status == "in_progress"

    def test_wrong_status_reports_decision_and_allowed_statuses(self, db_session, appointment, staff):
        with pytest.raises(InvalidStatusForDecisionError) as exc_info:
            PartsShortageService.handle_decision(db_session, appointment.id, PartsDecision.WAIT, actor_for(staff))

        details = exc_info.value.details
        assert details["decision"] == "wait"
        assert details["current_status"] == "in_progress"
        assert details["allowed_statuses"] == ["parts_insufficient", "parts_requested"]
        assert appointment.status == "in_progress"

    def test_technician_cannot_wait_for_parts(self, db_session, appointment, technician):
        force_status(db_session, appointment, "parts_insufficient")
        with pytest.raises(InvalidTransitionError):
            PartsShortageService.handle_decision(
                db_session, appointment.id, PartsDecision.WAIT, actor_for(technician)
            )
        assert appointment.status == "parts_insufficient"

    def test_reschedule_moves_appointment(self, db_session, appointment, staff, booking_date):
        force_status(db_session, appointment, "parts_insufficient")
        new_date = booking_date + timedelta(days=7)

        PartsShortageService.handle_decision(
            db_session, appointment.id, PartsDecision.RESCHEDULE, actor_for(staff),
            {"new_date": new_date.isoformat(), "new_time": "10:00", "customer_agreed": True},
        )

        assert appointment.status == "rescheduled"
        assert appointment.scheduled_date == new_date
        assert appointment.scheduled_time == time(10, 0)
        assert appointment.rescheduling_reason == "Parts shortage"
        assert appointment.customer_agreed is True

    def test_reschedule_requires_new_date(self, db_session, appointment, staff):
        force_status(db_session, appointment, "waiting_for_parts")
        with pytest.raises(InvalidInputError):
            PartsShortageService.handle_decision(
                db_session, appointment.id, PartsDecision.RESCHEDULE, actor_for(staff), {"new_time": "10:00"}
            )

    def test_reschedule_rejects_bad_time(self, db_session, appointment, staff, booking_date):
        force_status(db_session, appointment, "waiting_for_parts")
        with pytest.raises(InvalidInputError):
            PartsShortageService.handle_decision(
                db_session, appointment.id, PartsDecision.RESCHEDULE, actor_for(staff),
                {"new_date": booking_date.isoformat(), "new_time": "25:99"},
            )

    def test_cancel_files_cancellation_request(self, db_session, appointment, staff):
        force_status(db_session, appointment, "waiting_for_parts")

        PartsShortageService.handle_decision(
            db_session, appointment.id, PartsDecision.CANCEL, actor_for(staff)
        )

        assert appointment.status == "cancel_requested"
        request = appointment.cancel_request
        assert request.reason == "Required parts unavailable"
        assert request.previous_status == "waiting_for_parts"
        assert request.refund_percentage == 100
        assert request.requested_by_role == "staff"
