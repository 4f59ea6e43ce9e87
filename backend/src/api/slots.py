# pyright: reportMissingTypeStubs=false
"""
Slot API endpoints.

Slots are created by staff with a technician roster. Reserve and release are
exposed for staff tooling; bookings reserve slots through the appointment
endpoints.
"""

import logging
from datetime import date, time
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import BookingError
from auth.dependencies import UserContext, get_current_user, require_staff_or_admin
from services import SlotCapacityService
from api.responses import SlotListResponse, SlotResponse
from utils.datetime_utils import parse_time_string

logger = logging.getLogger(__name__)

router = APIRouter()


class RosterEntry(BaseModel):
    technician_id: int
    max_capacity: int = Field(default=1, ge=1)


class SlotCreateRequest(BaseModel):
    """Request model for creating a slot."""
    date: date
    start_time: time
    end_time: time
    capacity: int = Field(default=1, ge=1)
    technicians: List[RosterEntry] = []

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_times(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_time_string(v)
        return v


@router.get("/slots", summary="List slots")
async def list_slots(
    start_date: date = Query(...),
    end_date: Optional[date] = Query(None),
    technician_id: Optional[int] = Query(None),
    only_bookable: bool = Query(False),
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SlotListResponse:
    try:
        slots = SlotCapacityService.list_slots(
            db,
            start_date,
            end_date or start_date,
            technician_id=technician_id,
            only_bookable=only_bookable,
        )
        return SlotListResponse(slots=[SlotResponse.from_slot(slot) for slot in slots])
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        logger.exception(f"Failed to list slots: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list slots",
        )


@router.post("/slots", summary="Create slot", status_code=http_status.HTTP_201_CREATED)
async def create_slot(
    request: SlotCreateRequest,
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> SlotResponse:
    try:
        slot = SlotCapacityService.create_slot(
            db,
            request.date,
            request.start_time,
            request.end_time,
            capacity=request.capacity,
            technicians=[(entry.technician_id, entry.max_capacity) for entry in request.technicians],
        )
        db.commit()
        return SlotResponse.from_slot(slot)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        logger.exception(f"Failed to create slot: {e}")
        db.rollback()
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create slot",
        )


@router.post("/slots/{slot_id}/reserve", summary="Reserve one seat in a slot")
async def reserve_slot(
    slot_id: int,
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> SlotResponse:
    try:
        slot = SlotCapacityService.reserve(db, slot_id)
        db.commit()
        return SlotResponse.from_slot(slot)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        logger.exception(f"Failed to reserve slot {slot_id}: {e}")
        db.rollback()
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reserve slot",
        )


@router.post("/slots/{slot_id}/release", summary="Release one seat in a slot")
async def release_slot(
    slot_id: int,
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> SlotResponse:
    try:
        slot = SlotCapacityService.release(db, slot_id)
        db.commit()
        return SlotResponse.from_slot(slot)
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        logger.exception(f"Failed to release slot {slot_id}: {e}")
        db.rollback()
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to release slot",
        )
