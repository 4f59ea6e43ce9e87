"""
Technician workload bookkeeping.

``TechnicianProfile.workload_current`` is a cache of how many active
appointments a technician holds. It is changed only by single-statement
conditional updates here and can be rebuilt from the appointments table with
``reconcile_workload``.
"""

import logging
from typing import Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from core.config import ENFORCE_TECHNICIAN_WORKLOAD
from core.exceptions import NotFoundError, TechnicianUnavailableError
from models import Appointment, TechnicianProfile
from shared_types.workflow import ACTIVE_STATUSES
from utils.datetime_utils import center_now

logger = logging.getLogger(__name__)


class TechnicianService:
    """Service for technician workload counters and performance stats."""

    @staticmethod
    def get_profile(db: Session, technician_id: int) -> TechnicianProfile:
        profile = db.query(TechnicianProfile).filter(
            TechnicianProfile.technician_id == technician_id
        ).first()
        if profile is None:
            raise NotFoundError("TechnicianProfile", technician_id)
        return profile

    @staticmethod
    def increment_workload(db: Session, technician_id: int, enforce_capacity: Optional[bool] = None) -> None:
        """
        Add one active appointment to a technician's workload.

        When capacity enforcement is on, the increment only applies while
        ``workload_current < workload_capacity``.

        Raises:
            TechnicianUnavailableError: If enforcement is on and the technician is at capacity
        """
        if enforce_capacity is None:
            enforce_capacity = ENFORCE_TECHNICIAN_WORKLOAD

        query = db.query(TechnicianProfile).filter(TechnicianProfile.technician_id == technician_id)
        if enforce_capacity:
            query = query.filter(TechnicianProfile.workload_current < TechnicianProfile.workload_capacity)

        updated = query.update({
            TechnicianProfile.workload_current: TechnicianProfile.workload_current + 1,
            TechnicianProfile.updated_at: center_now(),
        }, synchronize_session=False)

        if updated == 0:
            profile = TechnicianService.get_profile(db, technician_id)
            db.refresh(profile)
            raise TechnicianUnavailableError(
                f"Technician {technician_id} is at workload capacity",
                {
                    "technician_id": technician_id,
                    "workload_current": profile.workload_current,
                    "workload_capacity": profile.workload_capacity,
                    "remaining_capacity": max(0, profile.workload_capacity - profile.workload_current),
                },
            )
        logger.debug(f"Incremented workload for technician {technician_id}")

    @staticmethod
    def decrement_workload(db: Session, technician_id: int) -> None:
        """Remove one active appointment from a technician's workload (floored at zero)."""
        db.query(TechnicianProfile).filter(
            TechnicianProfile.technician_id == technician_id
        ).update({
            TechnicianProfile.workload_current: case(
                (TechnicianProfile.workload_current > 0, TechnicianProfile.workload_current - 1),
                else_=0,
            ),
            TechnicianProfile.updated_at: center_now(),
        }, synchronize_session=False)
        logger.debug(f"Decremented workload for technician {technician_id}")

    @staticmethod
    def record_completion(db: Session, technician_id: int) -> None:
        """Count a completed job: release the workload and bump completed_jobs."""
        db.query(TechnicianProfile).filter(
            TechnicianProfile.technician_id == technician_id
        ).update({
            TechnicianProfile.workload_current: case(
                (TechnicianProfile.workload_current > 0, TechnicianProfile.workload_current - 1),
                else_=0,
            ),
            TechnicianProfile.completed_jobs: TechnicianProfile.completed_jobs + 1,
            TechnicianProfile.updated_at: center_now(),
        }, synchronize_session=False)

    @staticmethod
    def reconcile_workload(db: Session, technician_id: int) -> int:
        """
        Rebuild the workload counter from the technician's active appointments.

        Returns:
            The recomputed workload
        """
        actual = db.query(Appointment).filter(
            Appointment.assigned_technician_id == technician_id,
            Appointment.status.in_([s.value for s in ACTIVE_STATUSES]),
        ).count()

        profile = TechnicianService.get_profile(db, technician_id)
        db.refresh(profile)
        if profile.workload_current != actual:
            logger.warning(
                f"Technician {technician_id} workload drifted: counter {profile.workload_current}, actual {actual}"
            )
            profile.workload_current = actual
            db.flush()
        return actual
