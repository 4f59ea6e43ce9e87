"""
Service catalog model.

Service items supply the price and duration used when an appointment is
booked. The booking copies both values onto its service lines so later
catalog edits never change an existing appointment.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, TIMESTAMP, Boolean, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class ServiceItem(Base):
    """A bookable service (e.g. battery health check, motor diagnostics)."""

    __tablename__ = "service_items"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    category: Mapped[str] = mapped_column(String(30), index=True)
    """Service category, matched against technician skills when scoring."""

    base_price: Mapped[int] = mapped_column(Integer)
    """Price in the smallest currency unit."""

    estimated_duration: Mapped[int] = mapped_column(Integer)
    """Duration in minutes."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ServiceItem(id={self.id}, name='{self.name}', category='{self.category}')>"
