"""
Shared types for the appointment workflow.

Closed enumerations for appointment status, actor role and related value
sets, plus small dataclasses passed between services. Status and role values
are stored in the database as their string values.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CUSTOMER_ARRIVED = "customer_arrived"
    RECEPTION_CREATED = "reception_created"
    RECEPTION_APPROVED = "reception_approved"
    IN_PROGRESS = "in_progress"
    PARTS_INSUFFICIENT = "parts_insufficient"
    WAITING_FOR_PARTS = "waiting_for_parts"
    PARTS_REQUESTED = "parts_requested"
    QUALITY_CHECK = "quality_check"
    READY_FOR_PICKUP = "ready_for_pickup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"
    CANCEL_REQUESTED = "cancel_requested"
    CANCEL_APPROVED = "cancel_approved"


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

# Statuses that occupy a technician's calendar for conflict detection
CONFLICT_STATUSES = frozenset({
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
})

# Statuses counted as active work when reconciling technician workload
ACTIVE_STATUSES = frozenset(set(AppointmentStatus) - TERMINAL_STATUSES)


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    TECHNICIAN = "technician"
    STAFF = "staff"
    ADMIN = "admin"
    SYSTEM = "system"


ADMINISTRATIVE_ROLES = frozenset({ActorRole.STAFF, ActorRole.ADMIN})


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    PARTIALLY_BOOKED = "partially_booked"
    FULL = "full"


class TechnicianAvailability(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    BREAK = "break"
    OFFLINE = "offline"
    SICK_LEAVE = "sick_leave"
    VACATION = "vacation"


class ServiceCategory(str, Enum):
    BATTERY = "battery"
    MOTOR = "motor"
    CHARGING = "charging"
    ELECTRONICS = "electronics"
    BODY = "body"
    GENERAL = "general"
    DIAGNOSTIC = "diagnostic"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PendingPaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class PartsDecision(str, Enum):
    MARK_INSUFFICIENT = "mark_insufficient"
    WAIT = "wait"
    PROCEED_WITHOUT = "proceed_without"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    RESUME_WORK = "resume_work"


@dataclass(frozen=True)
class Actor:
    """The identity performing an action. ``user_id`` is None for the system actor."""
    role: ActorRole
    user_id: Optional[int] = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=ActorRole.SYSTEM)

    @property
    def is_administrative(self) -> bool:
        return self.role in ADMINISTRATIVE_ROLES


@dataclass
class CancellationEligibility:
    """
    Result of evaluating a cancellation against the refund policy.

    The same value backs both the "can the customer see a cancel button"
    query and the cancellation itself.
    """
    can_cancel: bool
    reason: str
    refund_percentage: int
    hours_left: float
    base_amount: int = 0
    refund_amount: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "can_cancel": self.can_cancel,
            "reason": self.reason,
            "refund_percentage": self.refund_percentage,
            "hours_left": round(self.hours_left, 2),
            "base_amount": self.base_amount,
            "estimated_refund_amount": self.refund_amount,
        }


@dataclass
class RescheduleEligibility:
    can_reschedule: bool
    reason: str
    hours_left: float
    reschedules_remaining: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_reschedule": self.can_reschedule,
            "reason": self.reason,
            "hours_left": round(self.hours_left, 2),
            "reschedules_remaining": self.reschedules_remaining,
        }


@dataclass
class ScoreBreakdown:
    skill_match: float
    workload_score: float
    performance_score: float
    availability_score: float
    total: float

    def to_dict(self) -> dict[str, float]:
        return {
            "skill_match": round(self.skill_match, 2),
            "workload_score": round(self.workload_score, 2),
            "performance_score": round(self.performance_score, 2),
            "availability_score": round(self.availability_score, 2),
            "total": round(self.total, 2),
        }


@dataclass
class ScoredCandidate:
    """A technician that passed the eligibility gate, with its score."""
    technician_id: int
    score: float
    customer_rating: float
    breakdown: ScoreBreakdown
    workload_current: int = 0
    workload_capacity: int = 0
    skills: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "technician_id": self.technician_id,
            "score": round(self.score),
            "customer_rating": self.customer_rating,
            "breakdown": self.breakdown.to_dict(),
            "workload_current": self.workload_current,
            "workload_capacity": self.workload_capacity,
            "skills": self.skills,
        }
