from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel, utcnow
from src.utils.constants import PaymentStatus, RefundStatus, TransactionType


class Payment(BaseModel):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id"), index=True)
    customer_id: Mapped[int] = mapped_column(Integer, index=True)
    vendor_id: Mapped[int] = mapped_column(Integer, index=True)
    amount: Mapped[float] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    gateway_order_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(default=PaymentStatus.INITIATED)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_amount: Mapped[float] = mapped_column(Numeric(12, 2), default=0)

    # Relationships
    reservation: Mapped["Reservation"] = relationship(back_populates="payments")  # noqa: F821


class Refund(BaseModel):
    __tablename__ = "refunds"

    id: Mapped[int] = mapped_column(primary_key=True)
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id"), index=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"))
    amount: Mapped[float] = mapped_column(Numeric(12, 2))
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[RefundStatus] = mapped_column(default=RefundStatus.PENDING)
    gateway_refund_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True, index=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    initiated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    reservation: Mapped["Reservation"] = relationship(back_populates="refunds")  # noqa: F821
    payment: Mapped["Payment"] = relationship()


class LedgerTransaction(BaseModel):
    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[TransactionType]
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id"), index=True)
    vendor_id: Mapped[int] = mapped_column(Integer)
    customer_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[float] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
