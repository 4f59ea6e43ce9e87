"""
Shared response models for API endpoints.

This module contains Pydantic response models that are shared across
multiple API endpoints to ensure consistency and reduce duplication.
"""

from datetime import datetime, date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from models import Appointment, PendingPayment, RefundLedgerEntry, Slot
from utils.datetime_utils import format_time


class ErrorResponse(BaseModel):
    """Body returned for every booking error."""
    error: str
    message: str
    details: Dict[str, Any] = {}


class ServiceLineResponse(BaseModel):
    service_id: int
    quantity: int
    price: int
    duration: int  # Minutes per unit
    category: Optional[str] = None


class WorkflowEventResponse(BaseModel):
    sequence: int
    from_status: Optional[str] = None
    status: str
    changed_by: Optional[int] = None
    actor_role: str
    changed_at: datetime
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    """Response model for an appointment with its history."""
    id: int
    appointment_number: str
    customer_id: int
    vehicle_id: int
    scheduled_date: date
    scheduled_time: str  # HH:MM
    estimated_completion: datetime
    actual_completion: Optional[datetime] = None
    status: str
    priority: str
    assigned_technician_id: Optional[int] = None
    slot_id: Optional[int] = None
    total_amount: int
    booking_type: str
    deposit_amount: int
    deposit_paid: bool
    paid_amount: int
    payment_status: str
    customer_notes: Optional[str] = None
    reschedule_count: int
    services: List[ServiceLineResponse]
    workflow: List[WorkflowEventResponse]
    cancel_request: Optional[Dict[str, Any]] = None
    parts_shortage: Optional[Dict[str, Any]] = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            appointment_number=appointment.appointment_number,
            customer_id=appointment.customer_id,
            vehicle_id=appointment.vehicle_id,
            scheduled_date=appointment.scheduled_date,
            scheduled_time=format_time(appointment.scheduled_time),
            estimated_completion=appointment.estimated_completion,
            actual_completion=appointment.actual_completion,
            status=appointment.status,
            priority=appointment.priority,
            assigned_technician_id=appointment.assigned_technician_id,
            slot_id=appointment.slot_id,
            total_amount=appointment.total_amount,
            booking_type=appointment.booking_type,
            deposit_amount=appointment.deposit_amount,
            deposit_paid=appointment.deposit_paid,
            paid_amount=appointment.paid_amount,
            payment_status=appointment.payment_status,
            customer_notes=appointment.customer_notes,
            reschedule_count=appointment.reschedule_count or 0,
            services=[
                ServiceLineResponse(
                    service_id=line.service_id,
                    quantity=line.quantity,
                    price=line.price,
                    duration=line.duration,
                    category=line.category,
                )
                for line in appointment.service_lines
            ],
            workflow=[
                WorkflowEventResponse(
                    sequence=event.sequence,
                    from_status=event.from_status,
                    status=event.status,
                    changed_by=event.changed_by,
                    actor_role=event.actor_role,
                    changed_at=event.changed_at,
                    reason=event.reason,
                    notes=event.notes,
                )
                for event in appointment.workflow_events
            ],
            cancel_request=appointment.cancel_request.to_dict() if appointment.cancel_request else None,
            parts_shortage=appointment.parts_shortage.to_dict() if appointment.parts_shortage else None,
        )


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]


class CancellationRequestResponse(BaseModel):
    """Result of filing a cancellation request."""
    appointment_id: int
    status: str
    refund_percentage: int
    requested_at: str
    hours_left: float
    refund_amount: int


class RefundResponse(BaseModel):
    appointment_id: int
    status: str
    reference: Optional[str] = None
    base_amount: int
    refund_percentage: int
    refund_amount: int

    @classmethod
    def nothing_paid(cls, appointment_id: int, status: str) -> "RefundResponse":
        return cls(
            appointment_id=appointment_id,
            status=status,
            reference=None,
            base_amount=0,
            refund_percentage=0,
            refund_amount=0,
        )

    @classmethod
    def from_entry(cls, entry: RefundLedgerEntry, status: str) -> "RefundResponse":
        return cls(
            appointment_id=entry.appointment_id,
            status=status,
            reference=entry.reference,
            base_amount=entry.base_amount,
            refund_percentage=entry.refund_percentage,
            refund_amount=entry.refund_amount,
        )


class SlotTechnicianResponse(BaseModel):
    technician_id: int
    current_workload: int
    max_capacity: int


class SlotResponse(BaseModel):
    """Response model for a service slot."""
    id: int
    date: date
    start_time: str
    end_time: str
    capacity: int
    booked_count: int
    remaining_capacity: int
    status: str
    technicians: List[SlotTechnicianResponse]

    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotResponse":
        return cls(
            id=slot.id,
            date=slot.date,
            start_time=format_time(slot.start_time),
            end_time=format_time(slot.end_time),
            capacity=slot.capacity,
            booked_count=slot.booked_count,
            remaining_capacity=slot.remaining_capacity,
            status=slot.status,
            technicians=[
                SlotTechnicianResponse(
                    technician_id=member.technician_id,
                    current_workload=member.current_workload,
                    max_capacity=member.max_capacity,
                )
                for member in slot.technicians
            ],
        )


class SlotListResponse(BaseModel):
    slots: List[SlotResponse]


class TechnicianCandidateResponse(BaseModel):
    technician_id: int
    score: int
    customer_rating: float
    breakdown: Dict[str, float]
    workload_current: int
    workload_capacity: int
    skills: List[str]


class TechnicianRankingResponse(BaseModel):
    candidates: List[TechnicianCandidateResponse]


class PendingPaymentResponse(BaseModel):
    """Response model for a pending payment."""
    transaction_ref: str
    amount: int
    status: str
    expires_at: datetime
    appointment_id: Optional[int] = None
    result_appointment_id: Optional[int] = None

    @classmethod
    def from_payment(cls, payment: PendingPayment) -> "PendingPaymentResponse":
        return cls(
            transaction_ref=payment.transaction_ref,
            amount=payment.amount,
            status=payment.status,
            expires_at=payment.expires_at,
            appointment_id=payment.appointment_id,
            result_appointment_id=payment.result_appointment_id,
        )
