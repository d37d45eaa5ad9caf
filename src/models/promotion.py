from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel
from src.utils.constants import DiscountType


class Promotion(BaseModel):
    __tablename__ = "promotions"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_type: Mapped[DiscountType] = mapped_column(default=DiscountType.PERCENTAGE)
    discount_value: Mapped[float] = mapped_column(Numeric(10, 2))
    min_booking_amount: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    max_discount_amount: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    valid_till: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    usage_limit_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    applicable_vehicle_types: Mapped[list | None] = mapped_column(JSON, nullable=True)
    applicable_cities: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationships
    redemptions: Mapped[list["PromotionRedemption"]] = relationship(back_populates="promotion")


class PromotionRedemption(BaseModel):
    __tablename__ = "promotion_redemptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    promotion_id: Mapped[int] = mapped_column(ForeignKey("promotions.id"), index=True)
    customer_id: Mapped[int] = mapped_column(Integer, index=True)
    # One redemption per reservation
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id"), unique=True)

    # Relationships
    promotion: Mapped["Promotion"] = relationship(back_populates="redemptions")
