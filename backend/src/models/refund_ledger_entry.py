"""
Refund ledger model.

A refund is recorded as a reversal entry next to the original payment fields
of the appointment, never as a mutation of them. Entries are immutable once
written.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class RefundLedgerEntry(Base):
    __tablename__ = "refund_ledger_entries"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"), index=True)
    cancel_request_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointment_cancel_requests.id"), nullable=True
    )

    base_amount: Mapped[int] = mapped_column(Integer)
    refund_percentage: Mapped[int] = mapped_column(Integer)
    refund_amount: Mapped[int] = mapped_column(Integer)
    """round(base_amount x refund_percentage / 100)."""

    reference: Mapped[str] = mapped_column(String(64), unique=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    appointment = relationship("Appointment", back_populates="refund_entries")


@event.listens_for(RefundLedgerEntry, "before_update")  # type: ignore
def _reject_refund_entry_update(mapper, connection, target):  # type: ignore
    raise ValueError("Refund ledger entries are immutable")


@event.listens_for(RefundLedgerEntry, "before_delete")  # type: ignore
def _reject_refund_entry_delete(mapper, connection, target):  # type: ignore
    raise ValueError("Refund ledger entries are immutable")
