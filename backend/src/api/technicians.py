# pyright: reportMissingTypeStubs=false
"""
Technician API endpoints.
"""

import logging
from datetime import date, time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from sqlalchemy.orm import Session

from core.constants import DEFAULT_APPOINTMENT_DURATION_MINUTES
from core.database import get_db
from core.exceptions import BookingError
from auth.dependencies import UserContext, require_staff_or_admin
from services import TechnicianScoringService
from api.responses import TechnicianCandidateResponse, TechnicianRankingResponse
from utils.datetime_utils import combine_local, parse_time_string

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/technicians/ranking", summary="Rank technicians for an appointment window")
async def rank_technicians(
    scheduled_date: date = Query(...),
    scheduled_time: str = Query(..., description="HH:MM"),
    duration_minutes: int = Query(DEFAULT_APPOINTMENT_DURATION_MINUTES, ge=1),
    categories: Optional[List[str]] = Query(None),
    exclude_appointment_id: Optional[int] = Query(None),
    current_user: UserContext = Depends(require_staff_or_admin),
    db: Session = Depends(get_db),
) -> TechnicianRankingResponse:
    """
    Eligible technicians for the window, best first.

    Ineligible technicians (off shift, unavailable, at capacity, or with an
    overlapping appointment) are left out.
    """
    try:
        start_time: time = parse_time_string(scheduled_time)
    except ValueError:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail="Invalid scheduled_time, expected HH:MM",
        )

    try:
        ranked = TechnicianScoringService.rank_candidates(
            db,
            categories or [],
            combine_local(scheduled_date, start_time),
            duration_minutes,
            exclude_appointment_id=exclude_appointment_id,
        )
        return TechnicianRankingResponse(
            candidates=[TechnicianCandidateResponse(**candidate.to_dict()) for candidate in ranked]
        )
    except (HTTPException, BookingError):
        raise
    except Exception as e:
        logger.exception(f"Failed to rank technicians: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to rank technicians",
        )
