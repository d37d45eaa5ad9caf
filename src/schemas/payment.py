from datetime import datetime
from typing import Any

from src.schemas.common import BaseSchema, TimestampSchema
from src.schemas.reservation import ReservationResponse
from src.utils.constants import PaymentStatus


class PaymentOrderCreate(BaseSchema):
    reservation_id: int


class PaymentOrderResponse(BaseSchema):
    payment_id: int
    order_id: str
    amount: float
    currency: str
    key_id: str


class PaymentVerifyRequest(BaseSchema):
    payment_id: int
    gateway_order_id: str
    gateway_payment_id: str
    signature: str


class PaymentResponse(TimestampSchema):
    id: int
    reservation_id: int
    customer_id: int
    amount: float
    currency: str
    gateway_order_id: str
    gateway_payment_id: str | None = None
    payment_method: str | None = None
    status: PaymentStatus
    paid_at: datetime | None = None
    refunded_amount: float


class PaymentVerifyResponse(BaseSchema):
    payment: PaymentResponse
    reservation: ReservationResponse


class WebhookEvent(BaseSchema):
    event: str
    payload: dict[str, Any]
