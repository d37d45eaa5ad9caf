from fastapi import APIRouter, Header, Request

from src.core.dependencies import DB, CustomerPrincipal, Payments
from src.core.exceptions import AuthenticationError
from src.schemas.payment import (
    PaymentOrderCreate,
    PaymentOrderResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    WebhookEvent,
)
from src.services import payment as payment_service

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/orders", response_model=PaymentOrderResponse, status_code=201)
async def create_order(
    db: DB, customer: CustomerPrincipal, provider: Payments, data: PaymentOrderCreate
):
    return await payment_service.create_payment_order(db, customer.id, data, provider)


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    db: DB, customer: CustomerPrincipal, provider: Payments, data: PaymentVerifyRequest
):
    return await payment_service.verify_payment(db, customer.id, data, provider)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: DB,
    provider: Payments,
    x_razorpay_signature: str = Header(""),
):
    body = await request.body()
    if not provider.verify_webhook_signature(body, x_razorpay_signature):
        raise AuthenticationError("Invalid webhook signature")
    event = WebhookEvent.model_validate_json(body)
    return await payment_service.handle_webhook(db, event)
