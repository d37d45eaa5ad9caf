from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, field_validator


class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=False)


class TimestampSchema(BaseSchema):
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MessageResponse(BaseSchema):
    message: str


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way out; naive values are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class WindowSchema(BaseSchema):
    pickup_time: datetime
    dropoff_time: datetime

    @field_validator("pickup_time", "dropoff_time")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return as_utc(value)
