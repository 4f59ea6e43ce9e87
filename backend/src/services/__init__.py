"""
Services package for the booking core.

This package contains service classes that encapsulate business logic
shared across the API routers and background jobs.
"""

from .appointment_state_machine import AppointmentStateMachine
from .slot_capacity_service import SlotCapacityService
from .conflict_service import ConflictService
from .technician_scoring_service import TechnicianScoringService
from .technician_service import TechnicianService
from .cancellation_service import CancellationService
from .reschedule_service import RescheduleService
from .parts_shortage_service import PartsShortageService
from .appointment_service import AppointmentService
from .payment_service import PaymentService
from .notification_service import NotificationService

__all__ = [
    "AppointmentStateMachine",
    "SlotCapacityService",
    "ConflictService",
    "TechnicianScoringService",
    "TechnicianService",
    "CancellationService",
    "RescheduleService",
    "PartsShortageService",
    "AppointmentService",
    "PaymentService",
    "NotificationService",
]
