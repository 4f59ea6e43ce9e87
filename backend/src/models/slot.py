"""
Slot models: bookable time windows with finite capacity.

A Slot caps how many appointments may be booked in a window. Its roster
(SlotTechnician rows) caps how many of those each technician may take. The
two limits are independent: a slot can have free capacity while every
rostered technician is full, and the reverse.

Both counters are only changed through single-statement conditional updates
in services.slot_capacity_service; the CHECK constraints are a backstop.
"""

from datetime import date as date_type, datetime, time as time_type
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, Date, Time, Boolean, CheckConstraint, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from utils.datetime_utils import combine_local


class Slot(Base):
    """A time window with booking capacity and a technician roster."""

    __tablename__ = "slots"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    date: Mapped[date_type] = mapped_column(Date)
    start_time: Mapped[time_type] = mapped_column(Time)
    end_time: Mapped[time_type] = mapped_column(Time)

    capacity: Mapped[int] = mapped_column(Integer, default=1)
    booked_count: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(20), default="available")
    """Derived from booked_count/capacity: 'available', 'partially_booked' or 'full'."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    technicians = relationship("SlotTechnician", back_populates="slot", cascade="all, delete-orphan")

    @property
    def start(self) -> datetime:
        return combine_local(self.date, self.start_time)

    @property
    def end(self) -> datetime:
        return combine_local(self.date, self.end_time)

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.capacity - self.booked_count)

    def __repr__(self) -> str:
        return f"<Slot(id={self.id}, date={self.date}, {self.start_time}-{self.end_time}, {self.booked_count}/{self.capacity})>"

    __table_args__ = (
        CheckConstraint('booked_count >= 0', name='ck_slots_booked_count_non_negative'),
        CheckConstraint('booked_count <= capacity', name='ck_slots_booked_count_within_capacity'),
        CheckConstraint('capacity > 0', name='ck_slots_capacity_positive'),
        Index('idx_slots_date', 'date'),
    )


class SlotTechnician(Base):
    """A technician rostered on a slot, with a per-slot seat limit."""

    __tablename__ = "slot_technicians"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id", ondelete="CASCADE"), index=True)
    technician_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    current_workload: Mapped[int] = mapped_column(Integer, default=0)
    max_capacity: Mapped[int] = mapped_column(Integer, default=1)

    slot = relationship("Slot", back_populates="technicians")

    __table_args__ = (
        UniqueConstraint('slot_id', 'technician_id', name='uq_slot_technician'),
        CheckConstraint('current_workload >= 0', name='ck_slot_technicians_workload_non_negative'),
        CheckConstraint('current_workload <= max_capacity', name='ck_slot_technicians_workload_within_capacity'),
    )
