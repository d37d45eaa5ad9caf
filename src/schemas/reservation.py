from datetime import datetime

from pydantic import Field

from src.schemas.common import BaseSchema, TimestampSchema, WindowSchema
from src.utils.constants import (
    BookingMode,
    CancelledBy,
    DepositRefundStatus,
    RefundStatus,
    ReservationStatus,
)


class DurationResponse(BaseSchema):
    days: int
    hours: int


class PriceBreakdownResponse(BaseSchema):
    base_amount: float
    driver_amount: float
    taxes: float
    discount: float
    deposit: float
    total_payable: float
    currency: str = "INR"
    duration: DurationResponse
    promotion_code: str | None = None


class PriceQuoteRequest(WindowSchema):
    vehicle_id: int
    booking_mode: BookingMode = BookingMode.SELF_DRIVE
    promotion_code: str | None = None


class PriceQuoteResponse(BaseSchema):
    vehicle_id: int
    price_breakdown: PriceBreakdownResponse
    promotion_error: str | None = None


class AvailabilityRequest(WindowSchema):
    vehicle_id: int


class AvailabilityResponse(BaseSchema):
    vehicle_id: int
    available: bool
    reason: str | None = None
    pickup_time: datetime
    dropoff_time: datetime


class LocationInput(BaseSchema):
    city: str | None = None
    location_name: str | None = None


class ReservationCreate(WindowSchema):
    vehicle_id: int
    booking_mode: BookingMode = BookingMode.SELF_DRIVE
    driver_id: int | None = None
    pickup: LocationInput | None = None
    dropoff: LocationInput | None = None
    promotion_code: str | None = None
    require_promotion: bool = False
    notes: str | None = None


class ReservationResponse(TimestampSchema):
    id: int
    booking_ref: str
    customer_id: int
    vendor_id: int
    vehicle_id: int
    driver_id: int | None = None
    pickup_city: str | None = None
    pickup_location: str | None = None
    pickup_time: datetime
    dropoff_city: str | None = None
    dropoff_location: str | None = None
    dropoff_time: datetime
    booking_mode: BookingMode
    duration_days: int
    duration_hours: int
    base_amount: float
    driver_amount: float
    taxes: float
    discount: float
    deposit: float
    total_payable: float
    currency: str
    promotion_id: int | None = None
    status: ReservationStatus
    cancelled_by: CancelledBy | None = None
    cancelled_at: datetime | None = None
    cancellation_fee: float | None = None
    cancellation_reason: str | None = None
    late_fee: float | None = None
    damage_deduction: float | None = None
    penalty_notes: str | None = None
    completed_at: datetime | None = None
    deposit_refund_status: DepositRefundStatus | None = None
    deposit_refund_amount: float | None = None
    notes: str | None = None


class ReservationCreateResponse(BaseSchema):
    reservation: ReservationResponse
    booking_ref: str
    payment_required: bool = True
    promotion_error: str | None = None


class ReservationListResponse(BaseSchema):
    reservations: list[ReservationResponse]
    total: int
    page: int
    limit: int


class RefundResponse(TimestampSchema):
    id: int
    reservation_id: int
    payment_id: int
    amount: float
    reason: str | None = None
    status: RefundStatus
    gateway_refund_id: str | None = None
    last_error: str | None = None
    completed_at: datetime | None = None


class ReservationCancelRequest(BaseSchema):
    reason: str | None = None
    waive_fee: bool = False


class ReservationCancelResponse(BaseSchema):
    reservation: ReservationResponse
    cancellation_fee: float
    refund_amount: float
    refund: RefundResponse | None = None


class Penalties(BaseSchema):
    late_fee: float = Field(0, ge=0)
    damage_deduction: float = Field(0, ge=0)
    notes: str | None = None


class ReservationCompleteRequest(BaseSchema):
    penalties: Penalties | None = None
    notes: str | None = None


class SettlementResponse(BaseSchema):
    reservation: ReservationResponse
    final_amount: float
    adjustment: float
    deposit_refund_amount: float


class ReservationStatusUpdate(BaseSchema):
    status: ReservationStatus
    reason: str | None = None


class RefundRequest(BaseSchema):
    amount: float | None = Field(None, gt=0)
    reason: str | None = None


class InvoiceResponse(BaseSchema):
    invoice_number: str
    issue_date: datetime
    booking_date: datetime | None = None
    customer_id: int
    vendor_id: int
    vehicle_id: int
    pickup_time: datetime
    dropoff_time: datetime
    price_breakdown: PriceBreakdownResponse
    status: ReservationStatus
    amount_paid: float


class ExpireUnpaidResponse(BaseSchema):
    expired: int
    booking_refs: list[str]
