"""
Pending payment model.

Tracks a payment handed to the gateway until its callback arrives. Records
are keyed by the transaction reference sent to the gateway and carry an
expiry; a callback for an expired record is refused, and the background job
marks stale records expired.
"""

from datetime import datetime
from typing import Any, Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class PendingPayment(Base):
    __tablename__ = "pending_payments"

    transaction_ref: Mapped[str] = mapped_column(String(64), primary_key=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    amount: Mapped[int] = mapped_column(Integer)

    appointment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("appointments.id"), nullable=True)
    """Set when paying the deposit of an existing appointment."""

    booking_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    """Booking request to create once payment succeeds (pay-before-booking flow)."""

    status: Mapped[str] = mapped_column(String(20), default="pending")
    """One of PendingPaymentStatus values."""

    expires_at: Mapped[datetime] = mapped_column(DateTime)
    """Naive center time."""

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    gateway_transaction_no: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    result_appointment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("appointments.id"), nullable=True)
    """Appointment confirmed or created by this payment."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    def is_expired(self, now: datetime) -> bool:
        """True when ``now`` (naive center time) is at or past the expiry."""
        return now >= self.expires_at

    __table_args__ = (
        Index('idx_pending_payments_status_expires', 'status', 'expires_at'),
    )
