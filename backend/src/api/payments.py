# pyright: reportMissingTypeStubs=false
"""
Payment API endpoints.

The gateway integration itself lives outside this service; these endpoints
persist the pending payment and accept the gateway's completion callback.
"""

import logging
from datetime import date, time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import BookingError
from auth.dependencies import UserContext, require_customer
from services import PaymentService
from api.responses import PendingPaymentResponse

logger = logging.getLogger(__name__)

router = APIRouter()


class BookingPayload(BaseModel):
    """Booking created once the payment succeeds."""
    vehicle_id: int
    services: List[Dict[str, int]] = Field(min_length=1)
    scheduled_date: date
    scheduled_time: time
    technician_id: Optional[int] = None
    slot_id: Optional[int] = None
    auto_assign: bool = False
    booking_type: str = "full_service"
    deposit_amount: Optional[int] = None
    customer_notes: Optional[str] = None


class PaymentCreateRequest(BaseModel):
    amount: int = Field(gt=0)
    appointment_id: Optional[int] = None
    booking: Optional[BookingPayload] = None


class PaymentCallbackRequest(BaseModel):
    success: bool
    paid_amount: Optional[int] = None
    gateway_transaction_no: Optional[str] = Field(default=None, max_length=64)


@router.post("/payments", summary="Start a payment", status_code=http_status.HTTP_201_CREATED)
async def create_payment(
    request: PaymentCreateRequest,
    current_user: UserContext = Depends(require_customer),
    db: Session = Depends(get_db),
) -> PendingPaymentResponse:
    try:
        booking: Optional[Dict[str, Any]] = None
        if request.booking is not None:
            booking = request.booking.model_dump(mode="json")
        payment = PaymentService.create_pending_payment(
            db,
            current_user.user_id,
            request.amount,
            appointment_id=request.appointment_id,
            booking=booking,
        )
        return PendingPaymentResponse.from_payment(payment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        logger.exception(f"Failed to create payment: {e}")
        db.rollback()
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create payment",
        )


@router.post("/payments/{transaction_ref}/callback", summary="Payment gateway callback")
async def payment_callback(
    transaction_ref: str,
    request: PaymentCallbackRequest,
    db: Session = Depends(get_db),
) -> PendingPaymentResponse:
    """
    Complete a pending payment.

    Verifying the gateway's signature happens in front of this service; the
    callback only carries the outcome.
    """
    try:
        payment = PaymentService.complete_payment(
            db,
            transaction_ref,
            request.success,
            paid_amount=request.paid_amount,
            gateway_transaction_no=request.gateway_transaction_no,
        )
        return PendingPaymentResponse.from_payment(payment)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        logger.exception(f"Failed to handle callback for payment {transaction_ref}: {e}")
        db.rollback()
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to handle payment callback",
        )
