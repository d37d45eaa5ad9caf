from datetime import datetime

from pydantic import Field, field_validator

from src.schemas.common import BaseSchema, TimestampSchema, as_utc
from src.utils.constants import FuelPolicy, VehicleType


class VehicleBase(BaseSchema):
    title: str
    vehicle_type: VehicleType = VehicleType.CAR
    city: str | None = None
    registration_number: str | None = None
    daily_rate: float = Field(gt=0)
    hourly_rate: float | None = None
    weekly_discount_percent: float = Field(0, ge=0, lt=100)
    monthly_discount_percent: float = Field(0, ge=0, lt=100)
    extra_hour_charge: float = Field(0, ge=0)
    deposit_amount: float = Field(0, ge=0)
    fuel_policy: FuelPolicy = FuelPolicy.FULL_TO_FULL
    min_age: int | None = None
    allowed_km_per_day: int | None = None
    extra_km_charge: float | None = None


class VehicleCreate(VehicleBase):
    vendor_id: int | None = None


class VehicleResponse(VehicleBase, TimestampSchema):
    id: int
    vendor_id: int
    is_active: bool
    booking_version: int


class AvailabilityBlockCreate(BaseSchema):
    start_time: datetime
    end_time: datetime
    reason: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return as_utc(value)


class AvailabilityBlockResponse(BaseSchema):
    id: int
    vehicle_id: int
    start_time: datetime
    end_time: datetime
    reason: str | None = None
