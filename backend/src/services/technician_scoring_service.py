"""
Technician scoring and selection.

Candidates first pass an eligibility gate (working day and hours, availability
status, optional workload cap, no schedule conflict). Eligible candidates are
then scored on a 0-100 scale:

    0.4 x skill match + 0.3 x workload + 0.2 x performance + 0.1 x availability

and ranked by score, then by customer rating.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from core.config import ENFORCE_TECHNICIAN_WORKLOAD
from core.constants import (
    AVAILABILITY_WEIGHT,
    MAX_CUSTOMER_RATING,
    MAX_PROFICIENCY_LEVEL,
    NEUTRAL_SKILL_MATCH_SCORE,
    PERFORMANCE_WEIGHT,
    SKILL_MATCH_WEIGHT,
    WORKLOAD_WEIGHT,
)
from core.exceptions import NoEligibleTechnicianError, TechnicianConflictError, TechnicianUnavailableError
from models import TechnicianProfile, TechnicianSkill, User
from services.conflict_service import ConflictService
from shared_types.workflow import ScoreBreakdown, ScoredCandidate, TechnicianAvailability
from utils.datetime_utils import combine_local, weekday_name

logger = logging.getLogger(__name__)

_WORKING_STATUSES = (TechnicianAvailability.AVAILABLE.value, TechnicianAvailability.BUSY.value)


def skill_match(skills: Iterable[TechnicianSkill], required_categories: Sequence[str]) -> float:
    """
    Average proficiency over the skills matching the requested categories, scaled to 0-100.

    Returns 0 when no skill matches. A job that names no category at all gets
    a neutral score, since no technician is better suited than another.
    """
    if not required_categories:
        return NEUTRAL_SKILL_MATCH_SCORE
    levels = [skill.proficiency_level for skill in skills if skill.service_category in required_categories]
    if not levels:
        return 0.0
    return sum(levels) / (len(levels) * MAX_PROFICIENCY_LEVEL) * 100


def workload_percentage(workload_current: int, workload_capacity: int) -> float:
    if workload_capacity <= 0:
        return 100.0
    return workload_current / workload_capacity * 100


def workload_score(workload_current: int, workload_capacity: int) -> float:
    """100 minus the workload percentage, so a lighter load scores higher."""
    return max(0.0, 100 - workload_percentage(workload_current, workload_capacity))


def performance_score(efficiency: float, customer_rating: float) -> float:
    """Mean of efficiency (0-100) and customer rating scaled from 0-5 to 0-100."""
    return (efficiency + customer_rating * (100 / MAX_CUSTOMER_RATING)) / 2


def availability_score(availability_status: str) -> float:
    return 100.0 if availability_status == TechnicianAvailability.AVAILABLE.value else 50.0


def score_technician(profile: TechnicianProfile, required_categories: Sequence[str]) -> ScoreBreakdown:
    """Weighted score of a technician for a job needing ``required_categories``."""
    skill = skill_match(profile.skills, required_categories)
    workload = workload_score(profile.workload_current, profile.workload_capacity)
    performance = performance_score(profile.efficiency, profile.customer_rating)
    availability = availability_score(profile.availability_status)
    total = (
        SKILL_MATCH_WEIGHT * skill
        + WORKLOAD_WEIGHT * workload
        + PERFORMANCE_WEIGHT * performance
        + AVAILABILITY_WEIGHT * availability
    )
    return ScoreBreakdown(
        skill_match=skill,
        workload_score=workload,
        performance_score=performance,
        availability_score=availability,
        total=total,
    )


def availability_problem(
    profile: TechnicianProfile,
    start: datetime,
    duration_minutes: int,
    enforce_workload: Optional[bool] = None,
) -> Optional[str]:
    """
    Explain why a technician cannot take a job, or return None if they can.

    Checks, in order: active profile, availability status (available or busy),
    working day, shift hours containing the whole window, and (when workload
    enforcement is on) a free workload slot.
    """
    if enforce_workload is None:
        enforce_workload = ENFORCE_TECHNICIAN_WORKLOAD

    if not profile.is_active:
        return "technician profile is inactive"
    if profile.availability_status not in _WORKING_STATUSES:
        return f"technician is {profile.availability_status}"
    if weekday_name(start.date()) not in (profile.work_days or []):
        return f"technician does not work on {weekday_name(start.date())}"

    end = start + timedelta(minutes=duration_minutes)
    shift_start = combine_local(start.date(), profile.shift_start)
    shift_end = combine_local(start.date(), profile.shift_end)
    if start < shift_start or end > shift_end:
        return f"window is outside shift {profile.shift_start:%H:%M}-{profile.shift_end:%H:%M}"

    if enforce_workload and profile.workload_current >= profile.workload_capacity:
        return f"workload {profile.workload_current}/{profile.workload_capacity} is at capacity"
    return None


def is_available_for_appointment(
    profile: TechnicianProfile,
    start: datetime,
    duration_minutes: int,
    enforce_workload: Optional[bool] = None,
) -> bool:
    return availability_problem(profile, start, duration_minutes, enforce_workload) is None


class TechnicianScoringService:
    """Service for ranking and selecting technicians for an appointment window."""

    @staticmethod
    def _active_profiles(db: Session, technician_ids: Optional[Sequence[int]] = None) -> List[TechnicianProfile]:
        query = db.query(TechnicianProfile).join(
            User, User.id == TechnicianProfile.technician_id
        ).options(
            selectinload(TechnicianProfile.skills)
        ).filter(
            TechnicianProfile.is_active == True,
            User.is_active == True,
            User.role == "technician",
        )
        if technician_ids is not None:
            query = query.filter(TechnicianProfile.technician_id.in_(list(technician_ids)))
        return query.order_by(TechnicianProfile.technician_id).all()

    @staticmethod
    def rank_candidates(
        db: Session,
        required_categories: Sequence[str],
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: Optional[int] = None,
        technician_ids: Optional[Sequence[int]] = None,
    ) -> List[ScoredCandidate]:
        """
        Rank eligible technicians for a window, best first.

        Args:
            db: Database session
            required_categories: Service categories the job needs
            start: Window start (naive center time)
            duration_minutes: Window length
            exclude_appointment_id: Appointment being (re)assigned, ignored in
                conflict checks
            technician_ids: Restrict to these technicians (e.g. a slot roster)

        Returns:
            Eligible candidates sorted by score desc, then customer rating desc
        """
        end = start + timedelta(minutes=duration_minutes)
        candidates: List[ScoredCandidate] = []

        for profile in TechnicianScoringService._active_profiles(db, technician_ids):
            problem = availability_problem(profile, start, duration_minutes)
            if problem is not None:
                logger.debug(f"Technician {profile.technician_id} not eligible: {problem}")
                continue
            if ConflictService.has_conflict(db, profile.technician_id, start, end, exclude_appointment_id):
                logger.debug(f"Technician {profile.technician_id} not eligible: schedule conflict")
                continue

            breakdown = score_technician(profile, required_categories)
            candidates.append(ScoredCandidate(
                technician_id=profile.technician_id,
                score=breakdown.total,
                customer_rating=profile.customer_rating,
                breakdown=breakdown,
                workload_current=profile.workload_current,
                workload_capacity=profile.workload_capacity,
                skills=[skill.service_category for skill in profile.skills],
            ))

        candidates.sort(key=lambda c: (-c.score, -c.customer_rating, c.technician_id))
        return candidates

    @staticmethod
    def select_best_technician(
        db: Session,
        required_categories: Sequence[str],
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: Optional[int] = None,
        technician_ids: Optional[Sequence[int]] = None,
    ) -> ScoredCandidate:
        """
        Pick the top-ranked eligible technician.

        Raises:
            NoEligibleTechnicianError: If no technician passes the eligibility gate
        """
        ranked = TechnicianScoringService.rank_candidates(
            db, required_categories, start, duration_minutes, exclude_appointment_id, technician_ids
        )
        if not ranked:
            raise NoEligibleTechnicianError(
                "No technician is available for this appointment window",
                {
                    "service_categories": list(required_categories),
                    "start": start.isoformat(),
                    "duration_minutes": duration_minutes,
                },
            )
        best = ranked[0]
        logger.info(
            f"Selected technician {best.technician_id} with score {round(best.score)} "
            f"out of {len(ranked)} eligible candidate(s)"
        )
        return best

    @staticmethod
    def ensure_technician_can_take(
        db: Session,
        technician_id: int,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: Optional[int] = None,
        enforce_workload: Optional[bool] = None,
    ) -> TechnicianProfile:
        """
        Validate an explicitly chosen technician for a window.

        Pass ``enforce_workload=False`` when the technician already carries
        this appointment in their workload (e.g. when it is being moved).

        Raises:
            TechnicianUnavailableError: If the technician has no active profile or
                fails the availability gate
            TechnicianConflictError: If the window overlaps one of their active
                appointments
        """
        profiles = TechnicianScoringService._active_profiles(db, [technician_id])
        if not profiles:
            raise TechnicianUnavailableError(
                f"Technician {technician_id} not found or inactive",
                {"technician_id": technician_id},
            )
        profile = profiles[0]

        problem = availability_problem(profile, start, duration_minutes, enforce_workload)
        if problem is not None:
            raise TechnicianUnavailableError(
                f"Technician {technician_id} is not available: {problem}",
                {
                    "technician_id": technician_id,
                    "reason": problem,
                    "workload_current": profile.workload_current,
                    "workload_capacity": profile.workload_capacity,
                    "workload_percentage": round(profile.workload_percentage, 2),
                },
            )

        end = start + timedelta(minutes=duration_minutes)
        conflicts = ConflictService.find_conflicts(db, technician_id, start, end, exclude_appointment_id)
        if conflicts:
            raise TechnicianConflictError(technician_id, [appointment.id for appointment in conflicts])
        return profile
