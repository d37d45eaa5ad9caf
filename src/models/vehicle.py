from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel
from src.utils.constants import FuelPolicy, VehicleType


class Vehicle(BaseModel):
    __tablename__ = "vehicles"

    id: Mapped[int] = mapped_column(primary_key=True)
    vendor_id: Mapped[int] = mapped_column(Integer, index=True)
    title: Mapped[str] = mapped_column(String(150))
    vehicle_type: Mapped[VehicleType] = mapped_column(default=VehicleType.CAR)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(30), nullable=True)

    # Rate card
    daily_rate: Mapped[float] = mapped_column(Numeric(12, 2))
    hourly_rate: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    weekly_discount_percent: Mapped[float] = mapped_column(Numeric(5, 2), default=0)
    monthly_discount_percent: Mapped[float] = mapped_column(Numeric(5, 2), default=0)
    extra_hour_charge: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    deposit_amount: Mapped[float] = mapped_column(Numeric(12, 2), default=0)

    # Policy
    fuel_policy: Mapped[FuelPolicy] = mapped_column(default=FuelPolicy.FULL_TO_FULL)
    min_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    allowed_km_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extra_km_charge: Mapped[float | None] = mapped_column(Numeric(10, 2), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Compare-and-set token for every write that changes the vehicle's calendar
    booking_version: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    # Relationships
    blocks: Mapped[list["AvailabilityBlock"]] = relationship(
        back_populates="vehicle", cascade="all, delete-orphan"
    )
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="vehicle")  # noqa: F821


class AvailabilityBlock(BaseModel):
    __tablename__ = "availability_blocks"

    id: Mapped[int] = mapped_column(primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Relationships
    vehicle: Mapped["Vehicle"] = relationship(back_populates="blocks")
