"""
Unit tests for the appointment state machine.

Covers the adjacency table, role and identity guards, the workflow event log,
and post-commit side effects.
"""

import pytest
from datetime import time
from unittest.mock import patch

from core.exceptions import ForbiddenError, InvalidInputError, InvalidTransitionError, NotFoundError
from models import AppointmentSideEffectFailure, AppointmentWorkflowEvent
from services.appointment_state_machine import (
    AppointmentStateMachine,
    TRANSITIONS,
    allowed_targets,
    can_transition,
    parse_status,
)
from shared_types.workflow import Actor, ActorRole, AppointmentStatus, TERMINAL_STATUSES
from tests.conftest import (
    actor_for,
    book_appointment,
    create_customer,
    create_slot,
    create_staff,
    create_technician,
    force_status,
    get_profile,
)

S = AppointmentStatus


class TestTransitionTable:

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(AppointmentStatus)

    def test_targets_are_statuses_and_roles_are_roles(self):
        for source, edges in TRANSITIONS.items():
            for target, roles in edges.items():
                assert isinstance(target, AppointmentStatus)
                assert target != source
                assert roles
                assert all(isinstance(role, ActorRole) for role in roles)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_edges(self, status):
        assert TRANSITIONS[status] == {}
        for role in ActorRole:
            assert allowed_targets(status, role) == []

    def test_every_status_can_reach_a_terminal_status(self):
        for start in AppointmentStatus:
            seen = {start}
            frontier = [start]
            while frontier:
                current = frontier.pop()
                for target in TRANSITIONS[current]:
                    if target not in seen:
                        seen.add(target)
                        frontier.append(target)
            assert seen & TERMINAL_STATUSES, f"{start.value} cannot finish"

    @pytest.mark.parametrize("status", list(AppointmentStatus))
    @pytest.mark.parametrize("role", list(ActorRole))
    def test_allowed_targets_agree_with_can_transition(self, status, role):
        targets = set(allowed_targets(status, role))
        for target in AppointmentStatus:
            assert can_transition(status, target, role) == (target in targets)

    def test_customer_cannot_confirm_or_complete(self):
        assert not can_transition(S.PENDING, S.CONFIRMED, ActorRole.CUSTOMER)
        assert not can_transition(S.IN_PROGRESS, S.COMPLETED, ActorRole.CUSTOMER)

    def test_customer_can_request_cancellation(self):
        assert can_transition(S.PENDING, S.CANCEL_REQUESTED, ActorRole.CUSTOMER)
        assert can_transition(S.CONFIRMED, S.CANCEL_REQUESTED, ActorRole.CUSTOMER)

    def test_system_can_mark_no_show(self):
        assert can_transition(S.CONFIRMED, S.NO_SHOW, ActorRole.SYSTEM)
        assert not can_transition(S.IN_PROGRESS, S.NO_SHOW, ActorRole.SYSTEM)

    def test_parse_status(self):
        assert parse_status("in_progress") == S.IN_PROGRESS
        with pytest.raises(InvalidInputError):
            parse_status("on_fire")


class TestTransitions:

    @pytest.fixture
    def appointment(self, db_session, customer, vehicle, battery_service, technician, booking_date):
        return book_appointment(
            db_session, customer, vehicle, [battery_service], booking_date, time(9, 0),
            technician_id=technician.id,
        )

    def _events(self, db_session, appointment):
        return db_session.query(AppointmentWorkflowEvent).filter(
            AppointmentWorkflowEvent.appointment_id == appointment.id
        ).order_by(AppointmentWorkflowEvent.sequence).all()

    def test_creation_writes_first_event(self, db_session, appointment, customer):
        events = self._events(db_session, appointment)
        assert len(events) == 1
        assert events[0].sequence == 1
        assert events[0].from_status is None
        assert events[0].status == "pending"
        assert events[0].changed_by == customer.id
        assert events[0].actor_role == "customer"

    def test_full_workflow_appends_one_event_per_transition(
        self, db_session, appointment, staff, technician
    ):
        office = actor_for(staff)
        tech = actor_for(technician)
        path = [
            (S.CONFIRMED, office),
            (S.CUSTOMER_ARRIVED, office),
            (S.RECEPTION_CREATED, tech),
            (S.RECEPTION_APPROVED, office),
            (S.IN_PROGRESS, tech),
            (S.QUALITY_CHECK, tech),
            (S.READY_FOR_PICKUP, tech),
            (S.COMPLETED, office),
        ]
        for target, actor in path:
            AppointmentStateMachine.transition(db_session, appointment, target, actor)
            assert appointment.status == target.value

        events = self._events(db_session, appointment)
        assert [e.sequence for e in events] == list(range(1, len(path) + 2))
        assert [e.status for e in events] == ["pending"] + [target.value for target, _ in path]
        for previous, event in zip(events, events[1:]):
            assert event.from_status == previous.status

        assert appointment.arrived_at is not None
        assert appointment.actual_completion is not None

        profile = get_profile(db_session, technician)
        assert profile.workload_current == 0
        assert profile.completed_jobs == 1

    def test_invalid_transition_leaves_state_unchanged(self, db_session, appointment, staff):
        with pytest.raises(InvalidTransitionError) as exc_info:
            AppointmentStateMachine.transition(db_session, appointment, S.COMPLETED, actor_for(staff))

        assert exc_info.value.details == {"current_status": "pending", "target_status": "completed", "role": "staff"}
        db_session.refresh(appointment)
        assert appointment.status == "pending"
        assert len(self._events(db_session, appointment)) == 1

    def test_same_status_is_rejected(self, db_session, appointment, staff):
        with pytest.raises(InvalidTransitionError):
            AppointmentStateMachine.transition(db_session, appointment, S.PENDING, actor_for(staff))

    def test_role_not_allowed_on_edge(self, db_session, appointment, customer):
        with pytest.raises(InvalidTransitionError):
            AppointmentStateMachine.transition(db_session, appointment, S.CONFIRMED, actor_for(customer))
        assert appointment.status == "pending"

    def test_terminal_status_rejects_everything(self, db_session, appointment, staff):
        AppointmentStateMachine.transition(db_session, appointment, S.CANCELLED, actor_for(staff), reason="Duplicate")
        for target in AppointmentStatus:
            if target == S.CANCELLED:
                continue
            with pytest.raises(InvalidTransitionError):
                AppointmentStateMachine.validate(appointment, target, actor_for(staff))

    def test_customer_must_own_appointment(self, db_session, appointment):
        stranger = create_customer(db_session, "stranger@test.com")
        with pytest.raises(ForbiddenError):
            AppointmentStateMachine.transition(db_session, appointment, S.CANCEL_REQUESTED, actor_for(stranger))

    def test_only_assigned_technician_can_start_work(self, db_session, appointment, technician):
        other = create_technician(db_session, "other@test.com")
        force_status(db_session, appointment, "reception_approved")

        with pytest.raises(ForbiddenError) as exc_info:
            AppointmentStateMachine.transition(db_session, appointment, S.IN_PROGRESS, actor_for(other))
        assert exc_info.value.details["assigned_technician_id"] == technician.id

        AppointmentStateMachine.transition(db_session, appointment, S.IN_PROGRESS, actor_for(technician))
        assert appointment.status == "in_progress"

    def test_any_technician_can_report_parts_shortage(self, db_session, appointment):
        other = create_technician(db_session, "other@test.com")
        force_status(db_session, appointment, "in_progress")

        AppointmentStateMachine.transition(
            db_session, appointment, S.PARTS_INSUFFICIENT, actor_for(other), reason="No coolant"
        )
        assert appointment.status == "parts_insufficient"

    def test_system_actor_event_has_no_user(self, db_session, appointment):
        force_status(db_session, appointment, "confirmed")
        AppointmentStateMachine.transition(db_session, appointment, S.NO_SHOW, Actor.system())

        last = self._events(db_session, appointment)[-1]
        assert last.changed_by is None
        assert last.actor_role == "system"

    def test_cancellation_releases_slot_and_workload(
        self, db_session, customer, vehicle, battery_service, technician, staff, booking_date
    ):
        slot = create_slot(db_session, booking_date, capacity=2, technicians=[(technician, 2)])
        appointment = book_appointment(
            db_session, customer, vehicle, [battery_service], booking_date, time(9, 0),
            technician_id=technician.id, slot_id=slot.id,
        )
        assert get_profile(db_session, technician).workload_current == 1

        AppointmentStateMachine.transition(db_session, appointment, S.CANCELLED, actor_for(staff))

        db_session.refresh(slot)
        db_session.refresh(slot.technicians[0])
        assert slot.booked_count == 0
        assert slot.technicians[0].current_workload == 0
        assert appointment.slot_id is None
        assert get_profile(db_session, technician).workload_current == 0

    def test_load_for_update_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            AppointmentStateMachine.load_for_update(db_session, 12345)

    def test_workflow_events_are_append_only(self, db_session, appointment):
        event = self._events(db_session, appointment)[0]
        event.reason = "rewritten"
        with pytest.raises(ValueError):
            db_session.commit()
        db_session.rollback()


class TestSideEffects:

    def test_failed_notification_keeps_transition_and_is_recorded(
        self, db_session, customer, vehicle, battery_service, staff, booking_date
    ):
        appointment = book_appointment(db_session, customer, vehicle, [battery_service], booking_date)

        with patch(
            "services.appointment_state_machine.NotificationService.notify_status_change",
            side_effect=RuntimeError("webhook down"),
        ):
            AppointmentStateMachine.transition(db_session, appointment, S.CONFIRMED, actor_for(staff))

        db_session.refresh(appointment)
        assert appointment.status == "confirmed"

        failures = db_session.query(AppointmentSideEffectFailure).all()
        assert len(failures) == 1
        assert failures[0].appointment_id == appointment.id
        assert failures[0].effect == "notify"
        assert failures[0].status == "confirmed"
        assert "webhook down" in failures[0].error
        assert failures[0].resolved is False

    def test_run_side_effect_reports_success(self, db_session, customer, vehicle, battery_service, booking_date):
        appointment = book_appointment(db_session, customer, vehicle, [battery_service], booking_date)
        calls = []

        assert AppointmentStateMachine.run_side_effect(
            db_session, appointment, Actor.system(), "custom", lambda: calls.append(1)
        ) is True
        assert calls == [1]
        assert db_session.query(AppointmentSideEffectFailure).count() == 0


class TestTransitionClosure:
    """Every (status, role, target) triple missing from the table is refused without side effects."""

    @pytest.fixture
    def appointment(self, db_session, customer, vehicle, battery_service, technician, booking_date):
        return book_appointment(
            db_session, customer, vehicle, [battery_service], booking_date, time(9, 0),
            technician_id=technician.id,
        )

    @pytest.fixture
    def actors(self, db_session, customer, technician, staff):
        return {
            ActorRole.CUSTOMER: actor_for(customer),
            ActorRole.TECHNICIAN: actor_for(technician),
            ActorRole.STAFF: actor_for(staff),
            ActorRole.ADMIN: actor_for(create_staff(db_session, "admin@test.com", role="admin")),
            ActorRole.SYSTEM: Actor.system(),
        }

    @pytest.mark.parametrize("status", list(AppointmentStatus))
    @pytest.mark.parametrize("role", list(ActorRole))
    def test_edges_outside_the_table_are_refused(self, db_session, appointment, actors, status, role):
        force_status(db_session, appointment, status.value)
        event_count = db_session.query(AppointmentWorkflowEvent).filter(
            AppointmentWorkflowEvent.appointment_id == appointment.id
        ).count()
        refused = [target for target in AppointmentStatus if not can_transition(status, target, role)]

        for target in refused:
            with pytest.raises(InvalidTransitionError):
                AppointmentStateMachine.transition(db_session, appointment, target, actors[role])

            assert appointment.status == status.value
            assert db_session.query(AppointmentWorkflowEvent).filter(
                AppointmentWorkflowEvent.appointment_id == appointment.id
            ).count() == event_count
