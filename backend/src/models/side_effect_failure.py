"""
Side-effect failure log.

Follow-up work after a committed transition (slot release, workload update,
notification) may fail. The transition stays committed; the failure is stored
here so it can be reported and retried separately.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Text, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class AppointmentSideEffectFailure(Base):
    __tablename__ = "appointment_side_effect_failures"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"), index=True)
    effect: Mapped[str] = mapped_column(String(50))
    """e.g. 'release_slot', 'decrement_workload', 'notify'."""
    status: Mapped[str] = mapped_column(String(50))
    """Status the appointment entered when the effect ran."""
    error: Mapped[str] = mapped_column(Text)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
