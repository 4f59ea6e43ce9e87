"""
Appointment model representing a vehicle service booking.

Appointments move through the workflow defined in
services.appointment_state_machine. Status is only ever changed by that
module, and every change appends an AppointmentWorkflowEvent. Appointments
are never hard-deleted: terminal ones are kept for audit and refund history.
"""

from datetime import date as date_type, datetime, time as time_type, timedelta
from typing import Optional
from sqlalchemy import String, ForeignKey, Index, TIMESTAMP, Boolean, Integer, Date, Time, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import DEFAULT_APPOINTMENT_DURATION_MINUTES
from core.database import Base
from utils.datetime_utils import combine_local


class Appointment(Base):
    """
    Appointment entity linking a customer, vehicle, services and (optionally)
    a technician and a reserved slot.

    Scheduling fields are naive and interpreted in service center time.
    ``estimated_completion`` always equals the scheduled start plus the sum of
    service duration x quantity over the service lines.
    """

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    appointment_number: Mapped[str] = mapped_column(String(20), unique=True)
    """Human-readable number: APT + YYMMDD + random suffix."""

    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"))

    scheduled_date: Mapped[date_type] = mapped_column(Date)
    scheduled_time: Mapped[time_type] = mapped_column(Time)
    estimated_completion: Mapped[datetime] = mapped_column(DateTime)
    actual_completion: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    status: Mapped[str] = mapped_column(String(50), default="pending")
    """Current workflow status, one of AppointmentStatus values."""

    priority: Mapped[str] = mapped_column(String(20), default="normal")
    """One of 'low', 'normal', 'high', 'urgent'."""

    assigned_technician_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    slot_id: Mapped[Optional[int]] = mapped_column(ForeignKey("slots.id"), nullable=True)
    """Reserved slot. Weak reference used for capacity accounting only."""

    # Pricing and payment
    total_amount: Mapped[int] = mapped_column(Integer, default=0)
    booking_type: Mapped[str] = mapped_column(String(30), default="full_service")
    """'deposit_booking' (deposit paid up front) or 'full_service'."""
    deposit_amount: Mapped[int] = mapped_column(Integer, default=0)
    deposit_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_amount: Mapped[int] = mapped_column(Integer, default=0)
    payment_status: Mapped[str] = mapped_column(String(30), default="pending")

    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    arrived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    """Set when the customer checks in; the no-show job skips appointments that have it."""

    # Rescheduling
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0)
    rescheduling_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_scheduled_date: Mapped[Optional[date_type]] = mapped_column(Date, nullable=True)
    original_scheduled_time: Mapped[Optional[time_type]] = mapped_column(Time, nullable=True)
    customer_agreed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    rescheduled_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    rescheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    """Optimistic lock counter, bumped on every update."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    # Relationships
    customer = relationship("User", foreign_keys=[customer_id])
    vehicle = relationship("Vehicle")
    technician = relationship("User", foreign_keys=[assigned_technician_id])
    slot = relationship("Slot")

    service_lines = relationship(
        "AppointmentServiceLine",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentServiceLine.position",
    )
    workflow_events = relationship(
        "AppointmentWorkflowEvent",
        back_populates="appointment",
        order_by="AppointmentWorkflowEvent.sequence",
    )
    """Append-only status history, ordered by sequence."""

    cancel_request = relationship("AppointmentCancelRequest", back_populates="appointment", uselist=False)
    parts_shortage = relationship("AppointmentPartsShortage", back_populates="appointment", uselist=False)
    refund_entries = relationship("RefundLedgerEntry", back_populates="appointment")

    __mapper_args__ = {"version_id_col": version}

    @property
    def scheduled_start(self) -> datetime:
        """Scheduled start as a naive center-time datetime."""
        return combine_local(self.scheduled_date, self.scheduled_time)

    @property
    def scheduled_end(self) -> datetime:
        """Estimated completion, falling back to the default duration when missing."""
        if self.estimated_completion is not None:
            return self.estimated_completion
        return self.scheduled_start + timedelta(minutes=DEFAULT_APPOINTMENT_DURATION_MINUTES)

    @property
    def total_duration_minutes(self) -> int:
        return sum(line.duration * line.quantity for line in self.service_lines)

    @property
    def service_categories(self) -> list[str]:
        categories: list[str] = []
        for line in self.service_lines:
            if line.category and line.category not in categories:
                categories.append(line.category)
        return categories

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, number='{self.appointment_number}', status='{self.status}')>"

    __table_args__ = (
        Index('idx_appointments_status', 'status'),
        Index('idx_appointments_technician_date', 'assigned_technician_id', 'scheduled_date'),
        Index('idx_appointments_date_status', 'scheduled_date', 'status'),
    )


class AppointmentServiceLine(Base):
    """
    A service booked on an appointment.

    Price, duration and category are copied from the catalog at booking time.
    """

    __tablename__ = "appointment_service_lines"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id", ondelete="CASCADE"), index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("service_items.id"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    price: Mapped[int] = mapped_column(Integer)
    duration: Mapped[int] = mapped_column(Integer)
    """Minutes per unit."""
    category: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    appointment = relationship("Appointment", back_populates="service_lines")
    service = relationship("ServiceItem")
