"""
Technician profile models.

The profile carries the inputs of technician scoring: availability status,
workload counter, shift, skill matrix and performance figures. The workload
counter is a cache; the authoritative workload is the set of active
appointments assigned to the technician (see
TechnicianService.reconcile_workload).
"""

from datetime import datetime, time as time_type
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, Float, Time, Boolean, JSON, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


def _default_work_days() -> list[str]:
    return ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]


class TechnicianProfile(Base):
    __tablename__ = "technician_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    technician_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, index=True)
    employee_id: Mapped[str] = mapped_column(String(32), unique=True)

    availability_status: Mapped[str] = mapped_column(String(20), default="available")
    """One of TechnicianAvailability values."""

    workload_current: Mapped[int] = mapped_column(Integer, default=0)
    workload_capacity: Mapped[int] = mapped_column(Integer, default=8)
    """Maximum concurrent active appointments."""

    shift_start: Mapped[time_type] = mapped_column(Time, default=time_type(8, 0))
    shift_end: Mapped[time_type] = mapped_column(Time, default=time_type(17, 0))
    work_days: Mapped[list[str]] = mapped_column(JSON, default=_default_work_days)
    """Lower-case weekday names."""

    customer_rating: Mapped[float] = mapped_column(Float, default=0.0)
    """0-5."""
    completed_jobs: Mapped[int] = mapped_column(Integer, default=0)
    efficiency: Mapped[float] = mapped_column(Float, default=0.0)
    """0-100."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    technician = relationship("User", back_populates="technician_profile")
    skills = relationship("TechnicianSkill", back_populates="profile", cascade="all, delete-orphan")

    @property
    def workload_percentage(self) -> float:
        if self.workload_capacity <= 0:
            return 0.0
        return self.workload_current / self.workload_capacity * 100

    def __repr__(self) -> str:
        return f"<TechnicianProfile(technician_id={self.technician_id}, employee_id='{self.employee_id}')>"

    __table_args__ = (
        CheckConstraint('workload_current >= 0', name='ck_technician_workload_non_negative'),
    )


class TechnicianSkill(Base):
    """One row of a technician's skill matrix."""

    __tablename__ = "technician_skills"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("technician_profiles.id", ondelete="CASCADE"), index=True)

    service_category: Mapped[str] = mapped_column(String(30))
    proficiency_level: Mapped[int] = mapped_column(Integer)
    """1-5."""
    certification_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    profile = relationship("TechnicianProfile", back_populates="skills")

    __table_args__ = (
        UniqueConstraint('profile_id', 'service_category', name='uq_technician_skill_category'),
        CheckConstraint('proficiency_level BETWEEN 1 AND 5', name='ck_technician_skill_proficiency_range'),
    )
