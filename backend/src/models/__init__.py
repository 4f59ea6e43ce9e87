# Package initialization
# Import all models to ensure relationships are properly established
from .user import User
from .vehicle import Vehicle
from .service_item import ServiceItem
from .slot import Slot, SlotTechnician
from .technician_profile import TechnicianProfile, TechnicianSkill
from .appointment import Appointment, AppointmentServiceLine
from .appointment_workflow_event import AppointmentWorkflowEvent
from .appointment_cancel_request import AppointmentCancelRequest
from .appointment_parts_shortage import AppointmentPartsShortage
from .refund_ledger_entry import RefundLedgerEntry
from .pending_payment import PendingPayment
from .side_effect_failure import AppointmentSideEffectFailure

__all__ = [
    "User",
    "Vehicle",
    "ServiceItem",
    "Slot",
    "SlotTechnician",
    "TechnicianProfile",
    "TechnicianSkill",
    "Appointment",
    "AppointmentServiceLine",
    "AppointmentWorkflowEvent",
    "AppointmentCancelRequest",
    "AppointmentPartsShortage",
    "RefundLedgerEntry",
    "PendingPayment",
    "AppointmentSideEffectFailure",
]
