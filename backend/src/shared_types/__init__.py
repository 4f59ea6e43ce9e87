"""
Shared type definitions for the EV service center backend.

This module contains enums and dataclasses that are used across multiple services.
"""

from shared_types.workflow import (
    Actor,
    ActorRole,
    AppointmentStatus,
    CancellationEligibility,
    PartsDecision,
    RescheduleEligibility,
    ScoredCandidate,
    SlotStatus,
)

__all__ = [
    "Actor",
    "ActorRole",
    "AppointmentStatus",
    "CancellationEligibility",
    "PartsDecision",
    "RescheduleEligibility",
    "ScoredCandidate",
    "SlotStatus",
]
