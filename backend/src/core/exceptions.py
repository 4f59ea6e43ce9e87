"""
Domain error taxonomy for the booking core.

Services raise these errors; the API layer maps them to HTTP responses in
main.py. Every error carries a machine-readable ``code`` and a ``details``
dict with the values the caller needs to recover (current status, remaining
capacity, hours left, required role).
"""

from typing import Any, Optional


class BookingError(Exception):
    """Base class for all booking-core errors."""

    code = "booking_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to the error body returned by the API."""
        return {"error": self.code, "message": self.message, "details": self.details}


# ===== Validation =====

class ValidationError(BookingError):
    """Malformed input: unknown entity, wrong owner, bad enum value."""

    code = "validation_error"


class NotFoundError(ValidationError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})


class VehicleNotOwnedError(ValidationError):
    code = "vehicle_not_owned"

    def __init__(self, vehicle_id: int, customer_id: int):
        super().__init__(
            f"Vehicle {vehicle_id} does not belong to customer {customer_id}",
            {"vehicle_id": vehicle_id, "customer_id": customer_id},
        )


class ServiceNotFoundError(ValidationError):
    code = "service_not_found"

    def __init__(self, missing_service_ids: list[int]):
        super().__init__(
            "One or more services are unknown or inactive",
            {"missing_service_ids": missing_service_ids},
        )


class InvalidInputError(ValidationError):
    code = "invalid_input"


# ===== State machine =====

class InvalidTransitionError(BookingError):
    """A transition not present in the adjacency table for this actor."""

    code = "invalid_transition"

    def __init__(
        self,
        current_status: str,
        target_status: str,
        role: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Cannot transition from {current_status} to {target_status}",
            {"current_status": current_status, "target_status": target_status, "role": role},
        )
        self.current_status = current_status
        self.target_status = target_status


class InvalidStatusForDecisionError(InvalidTransitionError):
    code = "invalid_status_for_decision"

    def __init__(self, decision: str, current_status: str, allowed_statuses: list[str]):
        super().__init__(
            current_status,
            decision,
            message=f"Decision '{decision}' is not allowed while appointment is {current_status}",
        )
        self.details["decision"] = decision
        self.details["allowed_statuses"] = allowed_statuses


# ===== Capacity =====

class ResourceUnavailableError(BookingError):
    """Slot or technician capacity is exhausted."""

    code = "resource_unavailable"


class SlotUnavailableError(ResourceUnavailableError):
    code = "slot_unavailable"

    def __init__(self, slot_id: int, capacity: Optional[int] = None, booked_count: Optional[int] = None):
        remaining = None
        if capacity is not None and booked_count is not None:
            remaining = max(0, capacity - booked_count)
        super().__init__(
            f"Slot {slot_id} has no remaining capacity",
            {"slot_id": slot_id, "capacity": capacity, "booked_count": booked_count, "remaining_capacity": remaining},
        )


class TechnicianUnavailableError(ResourceUnavailableError):
    code = "technician_unavailable"


class TechnicianConflictError(TechnicianUnavailableError):
    code = "technician_conflict"

    def __init__(self, technician_id: int, conflicting_appointment_ids: list[int]):
        super().__init__(
            f"Technician {technician_id} already has an appointment in this window",
            {"technician_id": technician_id, "conflicting_appointment_ids": conflicting_appointment_ids},
        )


class NoEligibleTechnicianError(ResourceUnavailableError):
    code = "no_eligible_technician"


class ConcurrentModificationError(ResourceUnavailableError):
    code = "concurrent_modification"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} is being modified by another operation, please retry",
            {"entity": entity, "id": entity_id},
        )


# ===== Policy =====

class PolicyViolationError(BookingError):
    """The request is well-formed but the business policy refuses it."""

    code = "policy_violation"


class ForbiddenError(PolicyViolationError):
    code = "forbidden"

    def __init__(self, message: str, required_role: Optional[list[str]] = None, **details: Any):
        super().__init__(message, {"required_role": required_role, **details})


class CancellationWindowClosedError(PolicyViolationError):
    code = "cancellation_window_closed"

    def __init__(self, reason: str, hours_left: float, minimum_hours: float, refund_percentage: int = 0):
        super().__init__(
            reason,
            {
                "hours_left": round(hours_left, 2),
                "minimum_hours": minimum_hours,
                "refund_percentage": refund_percentage,
            },
        )


class RescheduleNotAllowedError(PolicyViolationError):
    code = "reschedule_not_allowed"


class PaymentExpiredError(PolicyViolationError):
    code = "payment_expired"

    def __init__(self, transaction_ref: str):
        super().__init__(
            f"Pending payment {transaction_ref} has expired",
            {"transaction_ref": transaction_ref},
        )
