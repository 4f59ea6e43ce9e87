# pyright: reportMissingTypeStubs=false
"""
Appointment API endpoints.

Thin HTTP layer over AppointmentService. Booking errors raised by the
services propagate to the exception handlers in main.py, which turn them
into status codes; anything unexpected becomes a 500 here.
"""

import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from core.constants import MAX_REASON_LENGTH
from core.database import get_db
from core.exceptions import BookingError
from auth.dependencies import (
    UserContext,
    get_current_user,
    require_staff_or_admin,
    require_technician_staff_or_admin,
)
from services import AppointmentService
from services.appointment_state_machine import parse_status
from api.responses import (
    AppointmentListResponse,
    AppointmentResponse,
    CancellationRequestResponse,
    RefundResponse,
)
from utils.datetime_utils import parse_time_string

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request Models =====

def _validate_time(value: Any) -> Any:
    if isinstance(value, str):
        return parse_time_string(value)
    return value


class ServiceRequest(BaseModel):
    service_id: int
    quantity: int = Field(default=1, ge=1)


class AppointmentCreateRequest(BaseModel):
    """Request model for booking an appointment."""
    customer_id: Optional[int] = None  # Staff booking on behalf of a customer
    vehicle_id: int
    services: List[ServiceRequest] = Field(min_length=1)
    scheduled_date: date
    scheduled_time: time  # HH:MM
    technician_id: Optional[int] = None
    slot_id: Optional[int] = None
    auto_assign: bool = False
    booking_type: str = "full_service"
    deposit_amount: Optional[int] = Field(default=None, ge=0)
    customer_notes: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    priority: str = "normal"

    @field_validator("scheduled_time", mode="before")
    @classmethod
    def parse_scheduled_time(cls, v: Any) -> Any:
        return _validate_time(v)


class TransitionRequest(BaseModel):
    status: str
    reason: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    notes: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)


class AssignTechnicianRequest(BaseModel):
    technician_id: Optional[int] = None
    auto_assign: bool = False


class CancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=MAX_REASON_LENGTH)


class CancelDecisionRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    reason: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)


class RefundRequest(BaseModel):
    reference: Optional[str] = Field(default=None, max_length=64)


class RescheduleRequest(BaseModel):
    new_date: date
    new_time: time
    reason: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    slot_id: Optional[int] = None
    auto_confirm: bool = False

    @field_validator("new_time", mode="before")
    @classmethod
    def parse_new_time(cls, v: Any) -> Any:
        return _validate_time(v)


class PartsDecisionRequest(BaseModel):
    """Request model for a parts shortage decision."""
    decision: str
    reason: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    notes: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    insufficient_parts: Optional[List[Dict[str, Any]]] = None
    estimated_arrival: Optional[datetime] = None
    new_date: Optional[date] = None
    new_time: Optional[time] = None
    slot_id: Optional[int] = None
    customer_agreed: Optional[bool] = None

    @field_validator("new_time", mode="before")
    @classmethod
    def parse_new_time(cls, v: Any) -> Any:
        return _validate_time(v)


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


# ===== Booking =====

@router.post("/appointments", summary="Book an appointment", status_code=http_status.HTTP_201_CREATED)
async def create_appointment(
    request: AppointmentCreateRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    """Book an appointment for the current customer, or for any customer when called by staff."""
    try:
        if current_user.role == "customer":
            customer_id = current_user.user_id
        elif current_user.is_staff_or_admin():
            if request.customer_id is None:
                raise HTTPException(
                    status_code=http_status.HTTP_400_BAD_REQUEST,
                    detail="customer_id is required when booking on behalf of a customer",
                )
            customer_id = request.customer_id
        else:
            raise HTTPException(
                status_code=http_status.HTTP_403_FORBIDDEN,
                detail="Technicians cannot book appointments",
            )

        appointment = AppointmentService.create_appointment(
            db,
            customer_id=customer_id,
            vehicle_id=request.vehicle_id,
            services=[service.model_dump() for service in request.services],
            scheduled_date=request.scheduled_date,
            scheduled_time=request.scheduled_time,
            technician_id=request.technician_id,
            slot_id=request.slot_id,
            auto_assign=request.auto_assign,
            booking_type=request.booking_type,
            deposit_amount=request.deposit_amount,
            customer_notes=request.customer_notes,
            priority=request.priority,
            actor=current_user.to_actor(),
        )
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error("create appointment", e)


@router.get("/appointments", summary="List appointments")
async def list_appointments(
    customer_id: Optional[int] = Query(None),
    technician_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentListResponse:
    """
    List appointments.

    Customers only see their own appointments and technicians only those
    assigned to them; the corresponding filter is forced.
    """
    try:
        if current_user.role == "customer":
            customer_id = current_user.user_id
        elif current_user.role == "technician":
            technician_id = current_user.user_id

        appointments = AppointmentService.list_appointments(
            db,
            customer_id=customer_id,
            technician_id=technician_id,
            status=parse_status(status) if status else None,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
        return AppointmentListResponse(
            appointments=[AppointmentResponse.from_appointment(a) for a in appointments]
        )
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error("list appointments", e)


@router.get("/appointments/{appointment_id}", summary="Get appointment")
async def get_appointment(
    appointment_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.get_appointment(db, appointment_id, current_user.to_actor())
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"get appointment {appointment_id}", e)


# ===== Workflow =====

@router.post("/appointments/{appointment_id}/transition", summary="Change appointment status")
async def transition_appointment(
    appointment_id: int,
    request: TransitionRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.transition_appointment(
            db,
            appointment_id,
            parse_status(request.status),
            current_user.to_actor(),
            reason=request.reason,
            notes=request.notes,
        )
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"transition appointment {appointment_id}", e)


@router.post("/appointments/{appointment_id}/assign-technician", summary="Assign a technician")
async def assign_technician(
    appointment_id: int,
    request: AssignTechnicianRequest,
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.assign_technician(
            db,
            appointment_id,
            current_user.to_actor(),
            technician_id=request.technician_id,
            auto_assign=request.auto_assign,
        )
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"assign technician to appointment {appointment_id}", e)


@router.get("/appointments/{appointment_id}/customer-actions", summary="Available customer actions")
async def get_customer_actions(
    appointment_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Cancel and reschedule eligibility, computed by the same policy the actions enforce."""
    try:
        return AppointmentService.get_customer_actions(db, appointment_id, current_user.to_actor())
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"get actions for appointment {appointment_id}", e)


# ===== Cancellation =====

@router.post("/appointments/{appointment_id}/cancel-request", summary="Request cancellation")
async def request_cancellation(
    appointment_id: int,
    request: CancelRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CancellationRequestResponse:
    try:
        result = AppointmentService.request_cancellation(
            db, appointment_id, request.reason, current_user.to_actor()
        )
        return CancellationRequestResponse(
            appointment_id=appointment_id,
            status="cancel_requested",
            **result,
        )
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"request cancellation of appointment {appointment_id}", e)


@router.post("/appointments/{appointment_id}/cancel-request/approve", summary="Approve cancellation")
async def approve_cancellation(
    appointment_id: int,
    request: CancelDecisionRequest,
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.approve_cancellation(
            db, appointment_id, current_user.to_actor(), request.notes
        )
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"approve cancellation of appointment {appointment_id}", e)


@router.post("/appointments/{appointment_id}/cancel-request/reject", summary="Reject cancellation")
async def reject_cancellation(
    appointment_id: int,
    request: CancelDecisionRequest,
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.reject_cancellation(
            db, appointment_id, current_user.to_actor(), request.reason
        )
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"reject cancellation of appointment {appointment_id}", e)


@router.post("/appointments/{appointment_id}/refund", summary="Process refund of an approved cancellation")
async def process_refund(
    appointment_id: int,
    request: RefundRequest,
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> RefundResponse:
    try:
        entry = AppointmentService.process_refund(
            db, appointment_id, current_user.to_actor(), request.reference
        )
        if entry is None:
            return RefundResponse.nothing_paid(appointment_id, status="cancelled")
        return RefundResponse.from_entry(entry, status="cancelled")
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"process refund for appointment {appointment_id}", e)


# ===== Rescheduling and parts =====

@router.post("/appointments/{appointment_id}/reschedule", summary="Reschedule appointment")
async def reschedule_appointment(
    appointment_id: int,
    request: RescheduleRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.reschedule_appointment(
            db,
            appointment_id,
            request.new_date,
            request.new_time,
            current_user.to_actor(),
            reason=request.reason,
            slot_id=request.slot_id,
            auto_confirm=request.auto_confirm,
        )
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"reschedule appointment {appointment_id}", e)


@router.post("/appointments/{appointment_id}/parts-decision", summary="Apply a parts shortage decision")
async def handle_parts_decision(
    appointment_id: int,
    request: PartsDecisionRequest,
    current_user: UserContext = Depends(require_technician_staff_or_admin),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    try:
        payload = request.model_dump(exclude={"decision"}, exclude_none=True)
        appointment = AppointmentService.handle_parts_decision(
            db, appointment_id, request.decision, current_user.to_actor(), payload
        )
        return AppointmentResponse.from_appointment(appointment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        raise _internal_error(f"apply parts decision to appointment {appointment_id}", e)
