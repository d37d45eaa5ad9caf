from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel
from src.utils.constants import (
    BookingMode,
    CancelledBy,
    DepositRefundStatus,
    ReservationStatus,
)


class Reservation(BaseModel):
    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_vehicle_window", "vehicle_id", "pickup_time", "dropoff_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_ref: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    customer_id: Mapped[int] = mapped_column(Integer, index=True)
    vendor_id: Mapped[int] = mapped_column(Integer, index=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"))
    driver_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    pickup_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    pickup_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pickup_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    dropoff_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    dropoff_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dropoff_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    booking_mode: Mapped[BookingMode] = mapped_column(default=BookingMode.SELF_DRIVE)
    duration_days: Mapped[int] = mapped_column(Integer)
    duration_hours: Mapped[int] = mapped_column(Integer)

    # Price breakdown captured at commit time, never recomputed
    base_amount: Mapped[float] = mapped_column(Numeric(14, 4))
    driver_amount: Mapped[float] = mapped_column(Numeric(14, 4), default=0)
    taxes: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    discount: Mapped[float] = mapped_column(Numeric(14, 4), default=0)
    deposit: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    total_payable: Mapped[float] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    promotion_id: Mapped[int | None] = mapped_column(ForeignKey("promotions.id"), nullable=True)
    status: Mapped[ReservationStatus] = mapped_column(
        default=ReservationStatus.PENDING_PAYMENT, index=True
    )

    # Cancellation record
    cancelled_by: Mapped[CancelledBy | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_fee: Mapped[float | None] = mapped_column(Numeric(14, 4), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Penalty record
    late_fee: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    damage_deduction: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    penalty_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Deposit refund
    deposit_refund_status: Mapped[DepositRefundStatus | None] = mapped_column(nullable=True)
    deposit_refund_amount: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    deposit_refund_initiated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deposit_refund_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deposit_refund_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    vehicle: Mapped["Vehicle"] = relationship(back_populates="reservations")  # noqa: F821
    promotion: Mapped["Promotion | None"] = relationship()  # noqa: F821
    payments: Mapped[list["Payment"]] = relationship(back_populates="reservation")  # noqa: F821
    refunds: Mapped[list["Refund"]] = relationship(back_populates="reservation")  # noqa: F821
