"""
Cancellation refund and reschedule policy.

The functions here are the only place where lead time is turned into a
refund percentage or a reschedule decision. Both the "which actions can the
customer see" query and the actual cancellation call them, so what is
displayed and what is enforced cannot drift apart.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from core.config import (
    MAX_CUSTOMER_RESCHEDULES,
    MINIMUM_CANCELLATION_HOURS,
    REFUND_POLICY_TIERS,
    RESCHEDULE_MINIMUM_HOURS,
)
from shared_types.workflow import (
    ActorRole,
    ADMINISTRATIVE_ROLES,
    AppointmentStatus,
    CancellationEligibility,
    RescheduleEligibility,
    TERMINAL_STATUSES,
)
from utils.datetime_utils import hours_between

logger = logging.getLogger(__name__)

# Statuses from which a cancellation request can be filed
CANCELLABLE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.CUSTOMER_ARRIVED,
    AppointmentStatus.RECEPTION_CREATED,
    AppointmentStatus.RECEPTION_APPROVED,
    AppointmentStatus.PARTS_INSUFFICIENT,
    AppointmentStatus.WAITING_FOR_PARTS,
})

# Statuses a customer may cancel or reschedule from
CUSTOMER_CANCELLABLE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
CUSTOMER_RESCHEDULABLE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


@dataclass(frozen=True)
class RefundTier:
    min_hours: float
    percentage: int


class RefundPolicy:
    """
    Ordered lead-time tiers mapping hours before the appointment to a refund percentage.

    Tiers must be monotonic: more lead time never yields a smaller refund.
    """

    def __init__(self, tiers: Sequence[Tuple[float, int]], minimum_cancellation_hours: float = 0.0):
        ordered = sorted((RefundTier(hours, pct) for hours, pct in tiers), key=lambda t: t.min_hours, reverse=True)
        for higher, lower in zip(ordered, ordered[1:]):
            if higher.percentage < lower.percentage:
                raise ValueError("Refund tiers must be monotonic in lead time")
        self.tiers = ordered
        self.minimum_cancellation_hours = minimum_cancellation_hours

    def percentage_for(self, hours_left: float) -> int:
        """Refund percentage of the first tier whose threshold ``hours_left`` meets."""
        for tier in self.tiers:
            if hours_left >= tier.min_hours:
                return tier.percentage
        return 0


def default_policy() -> RefundPolicy:
    return RefundPolicy(REFUND_POLICY_TIERS, MINIMUM_CANCELLATION_HOURS)


def hours_until(scheduled_at: datetime, now: datetime) -> float:
    """Hours of lead time left before ``scheduled_at`` (negative once it has passed)."""
    return hours_between(now, scheduled_at)


def refund_percentage_for(hours_left: float, policy: Optional[RefundPolicy] = None) -> int:
    return (policy or default_policy()).percentage_for(hours_left)


def compute_refund_amount(base_amount: int, refund_percentage: int) -> int:
    """round(base_amount x refund_percentage / 100)."""
    return int(round(base_amount * refund_percentage / 100))


def evaluate_cancellation(
    scheduled_at: datetime,
    now: datetime,
    actor_role: ActorRole,
    base_amount: int = 0,
    status: Optional[AppointmentStatus] = None,
    policy: Optional[RefundPolicy] = None,
    override_percentage: Optional[int] = None,
) -> CancellationEligibility:
    """
    Decide whether an appointment may be cancelled and what it refunds.

    Customers are bound by the refund tiers and by the minimum cancellation
    lead time. Staff, admins and the system bypass the tiers: the refund is
    100% unless an explicit override percentage is given.

    Args:
        scheduled_at: Appointment start (naive center time or aware)
        now: Current time
        actor_role: Who is cancelling
        base_amount: Amount the percentage applies to
        status: Current appointment status, if known
        policy: Refund policy; defaults to the configured one
        override_percentage: Administrative refund percentage

    Returns:
        CancellationEligibility with can_cancel, reason, refund_percentage,
        hours_left and the estimated refund amount
    """
    policy = policy or default_policy()
    hours_left = hours_until(scheduled_at, now)

    if status is not None and status in TERMINAL_STATUSES:
        return CancellationEligibility(False, f"Appointment is already {status.value}", 0, hours_left, base_amount, 0)

    if actor_role in ADMINISTRATIVE_ROLES or actor_role == ActorRole.SYSTEM:
        percentage = 100 if override_percentage is None else max(0, min(100, override_percentage))
        return CancellationEligibility(
            True,
            "Administrative cancellation",
            percentage,
            hours_left,
            base_amount,
            compute_refund_amount(base_amount, percentage),
        )

    if actor_role != ActorRole.CUSTOMER:
        return CancellationEligibility(False, f"Role {actor_role.value} cannot cancel appointments", 0, hours_left, base_amount, 0)

    if status is not None and status not in CUSTOMER_CANCELLABLE_STATUSES:
        return CancellationEligibility(
            False, f"Appointment cannot be cancelled by the customer while {status.value}", 0, hours_left, base_amount, 0
        )

    if hours_left < policy.minimum_cancellation_hours:
        return CancellationEligibility(
            False,
            f"Cancellation window closed ({hours_left:.1f}h left, minimum {policy.minimum_cancellation_hours:g}h)",
            0,
            hours_left,
            base_amount,
            0,
        )

    percentage = refund_percentage_for(hours_left, policy)
    reason = (
        f"Cancellation allowed with {percentage}% refund ({hours_left:.1f}h before appointment)"
    )
    return CancellationEligibility(
        True, reason, percentage, hours_left, base_amount, compute_refund_amount(base_amount, percentage)
    )


def evaluate_reschedule(
    scheduled_at: datetime,
    now: datetime,
    actor_role: ActorRole,
    reschedule_count: int,
    status: Optional[AppointmentStatus] = None,
    minimum_hours: Optional[float] = None,
    max_reschedules: Optional[int] = None,
) -> RescheduleEligibility:
    """
    Decide whether an appointment may be rescheduled.

    Customers need at least ``RESCHEDULE_MINIMUM_HOURS`` of lead time and may
    reschedule at most ``MAX_CUSTOMER_RESCHEDULES`` times. Staff and admins
    are not bound by either limit.
    """
    minimum_hours = RESCHEDULE_MINIMUM_HOURS if minimum_hours is None else minimum_hours
    max_reschedules = MAX_CUSTOMER_RESCHEDULES if max_reschedules is None else max_reschedules
    hours_left = hours_until(scheduled_at, now)
    remaining = max(0, max_reschedules - reschedule_count)

    if status is not None and status in TERMINAL_STATUSES:
        return RescheduleEligibility(False, f"Appointment is already {status.value}", hours_left, remaining)

    if actor_role in ADMINISTRATIVE_ROLES:
        return RescheduleEligibility(True, "Administrative reschedule", hours_left, remaining)

    if actor_role != ActorRole.CUSTOMER:
        return RescheduleEligibility(False, f"Role {actor_role.value} cannot reschedule appointments", hours_left, remaining)

    if status is not None and status not in CUSTOMER_RESCHEDULABLE_STATUSES:
        return RescheduleEligibility(
            False, f"Appointment cannot be rescheduled while {status.value}", hours_left, remaining
        )
    if reschedule_count >= max_reschedules:
        return RescheduleEligibility(
            False, f"Maximum of {max_reschedules} reschedules reached", hours_left, 0
        )
    if hours_left < minimum_hours:
        return RescheduleEligibility(
            False,
            f"Rescheduling requires at least {minimum_hours:g}h notice ({hours_left:.1f}h left)",
            hours_left,
            remaining,
        )
    return RescheduleEligibility(True, "Reschedule allowed", hours_left, remaining)
