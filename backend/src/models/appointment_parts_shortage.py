"""Parts shortage record attached to an appointment when required parts are missing."""

from datetime import datetime
from typing import Any, Optional
from sqlalchemy import ForeignKey, TIMESTAMP, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class AppointmentPartsShortage(Base):
    __tablename__ = "appointment_parts_shortages"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    appointment_id: Mapped[int] = mapped_column(
        ForeignKey("appointments.id", ondelete="CASCADE"), unique=True, index=True
    )

    insufficient_parts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    """List of {part_id, part_name, required_quantity, available_quantity}."""

    reported_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    reported_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    estimated_parts_arrival: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    """ETA recorded by the 'wait' decision."""

    appointment = relationship("Appointment", back_populates="parts_shortage")

    def to_dict(self) -> dict[str, object]:
        return {
            "insufficient_parts": self.insufficient_parts,
            "reported_by": self.reported_by,
            "reported_at": self.reported_at.isoformat() if self.reported_at else None,
            "reason": self.reason,
            "estimated_parts_arrival": (
                self.estimated_parts_arrival.isoformat() if self.estimated_parts_arrival else None
            ),
        }
