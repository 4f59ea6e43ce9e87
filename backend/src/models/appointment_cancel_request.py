"""
Cancellation request model.

Created when an appointment enters cancel_requested. The refund values are
computed once, at request time, from the refund policy; approval and refund
processing only stamp who did what and when.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, Text, Float
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class AppointmentCancelRequest(Base):
    __tablename__ = "appointment_cancel_requests"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    appointment_id: Mapped[int] = mapped_column(
        ForeignKey("appointments.id", ondelete="CASCADE"), unique=True, index=True
    )

    reason: Mapped[str] = mapped_column(Text)
    requested_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    requested_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    requested_by_role: Mapped[str] = mapped_column(String(20))

    previous_status: Mapped[str] = mapped_column(String(50))
    """Status held before the request; a rejected request returns here."""

    hours_left: Mapped[float] = mapped_column(Float)
    refund_percentage: Mapped[int] = mapped_column(Integer)
    base_amount: Mapped[int] = mapped_column(Integer)
    """Deposit when a deposit was paid, otherwise the appointment total."""
    refund_amount: Mapped[int] = mapped_column(Integer)

    approved_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    rejected_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    rejected_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    refund_processed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    refund_processed_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    refund_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    appointment = relationship("Appointment", back_populates="cancel_request")

    def to_dict(self) -> dict[str, object]:
        return {
            "reason": self.reason,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "requested_by": self.requested_by,
            "previous_status": self.previous_status,
            "hours_left": round(self.hours_left, 2),
            "refund_percentage": self.refund_percentage,
            "base_amount": self.base_amount,
            "refund_amount": self.refund_amount,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "approved_by": self.approved_by,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "refund_processed_at": self.refund_processed_at.isoformat() if self.refund_processed_at else None,
            "refund_reference": self.refund_reference,
        }
