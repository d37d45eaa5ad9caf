from datetime import datetime

from pydantic import Field, field_validator, model_validator

from src.schemas.common import BaseSchema, TimestampSchema, WindowSchema, as_utc
from src.utils.constants import BookingMode, DiscountType


class PromotionBase(BaseSchema):
    code: str
    description: str | None = None
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: float = Field(gt=0)
    min_booking_amount: float | None = Field(None, ge=0)
    max_discount_amount: float | None = Field(None, ge=0)
    valid_from: datetime
    valid_till: datetime
    usage_limit_per_user: int | None = Field(None, ge=1)
    total_usage_limit: int | None = Field(None, ge=1)
    applicable_vehicle_types: list[str] | None = None
    applicable_cities: list[str] | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("valid_from", "valid_till")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return as_utc(value)


class PromotionCreate(PromotionBase):
    @model_validator(mode="after")
    def check_terms(self) -> "PromotionCreate":
        if self.valid_till <= self.valid_from:
            raise ValueError("valid_till must be after valid_from")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class PromotionResponse(PromotionBase, TimestampSchema):
    id: int
    used_count: int
    is_active: bool


class PromotionValidation(WindowSchema):
    code: str
    vehicle_id: int
    booking_mode: BookingMode = BookingMode.SELF_DRIVE


class PromotionValidationResponse(BaseSchema):
    is_valid: bool
    promotion: PromotionResponse | None = None
    discount_amount: float | None = None
    message: str | None = None
