"""Vehicle model: an electric vehicle owned by a customer."""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    """Owning customer. Bookings are only accepted for vehicles the customer owns."""

    make: Mapped[str] = mapped_column(String(100))
    model: Mapped[str] = mapped_column(String(100))
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    vin: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True)
    license_plate: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Soft delete flag. Inactive vehicles cannot be booked."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    customer = relationship("User", back_populates="vehicles")

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, make='{self.make}', model='{self.model}')>"
