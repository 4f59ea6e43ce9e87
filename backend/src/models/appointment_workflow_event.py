"""
Workflow event model: the append-only status history of an appointment.

Each accepted transition writes exactly one row in the same transaction as
the status change. ``sequence`` is unique per appointment, so two writers
racing on the same appointment cannot both append the same position; the
loser's transaction fails instead of interleaving history.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class AppointmentWorkflowEvent(Base):
    """One accepted status transition."""

    __tablename__ = "appointment_workflow_events"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id", ondelete="CASCADE"), index=True)

    sequence: Mapped[int] = mapped_column(Integer)
    """1-based position in the appointment's history."""

    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Status before the transition. NULL for the creation event."""

    status: Mapped[str] = mapped_column(String(50))
    """Status entered by this transition."""

    changed_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Acting user. NULL when the system performed the transition."""

    actor_role: Mapped[str] = mapped_column(String(20))

    changed_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    appointment = relationship("Appointment", back_populates="workflow_events")

    __table_args__ = (
        UniqueConstraint('appointment_id', 'sequence', name='uq_workflow_event_sequence'),
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "sequence": self.sequence,
            "from_status": self.from_status,
            "status": self.status,
            "changed_by": self.changed_by,
            "actor_role": self.actor_role,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "reason": self.reason,
            "notes": self.notes,
        }


@event.listens_for(AppointmentWorkflowEvent, "before_update")  # type: ignore
def _reject_workflow_event_update(mapper, connection, target):  # type: ignore
    raise ValueError("Workflow events are append-only and cannot be modified")


@event.listens_for(AppointmentWorkflowEvent, "before_delete")  # type: ignore
def _reject_workflow_event_delete(mapper, connection, target):  # type: ignore
    raise ValueError("Workflow events are append-only and cannot be deleted")
