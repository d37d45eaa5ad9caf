import logging
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from src.models.payment import LedgerTransaction, Payment, Refund
from src.models.reservation import Reservation
from src.schemas.payment import (
    PaymentOrderCreate,
    PaymentOrderResponse,
    PaymentResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    WebhookEvent,
)
from src.schemas.reservation import ReservationResponse
from src.services import events, lifecycle
from src.services.common import flush_changes
from src.services.payment_gateway import PaymentProvider
from src.services.pricing import to_decimal
from src.utils.constants import (
    DepositRefundStatus,
    EventType,
    PaymentStatus,
    RefundStatus,
    ReservationStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)


async def get_captured_payment(db: AsyncSession, reservation_id: int) -> Payment | None:
    result = await db.execute(
        select(Payment)
        .where(
            Payment.reservation_id == reservation_id,
            Payment.status.in_([PaymentStatus.SUCCESS, PaymentStatus.REFUNDED]),
        )
        .order_by(Payment.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_payment_order(
    db: AsyncSession, customer_id: int, data: PaymentOrderCreate, provider: PaymentProvider
) -> PaymentOrderResponse:
    reservation = await db.get(Reservation, data.reservation_id)
    if not reservation:
        raise NotFoundError("Booking not found")
    if reservation.customer_id != customer_id:
        raise AuthorizationError("Access denied")
    if reservation.status != ReservationStatus.PENDING_PAYMENT:
        raise InvalidStateTransitionError(
            reservation.status.value,
            ReservationStatus.CONFIRMED.value,
            detail="Booking is not awaiting payment",
        )

    amount = to_decimal(reservation.total_payable)
    order = await provider.create_order(amount, reservation.currency, reservation.booking_ref)

    payment = Payment(
        reservation_id=reservation.id,
        customer_id=customer_id,
        vendor_id=reservation.vendor_id,
        amount=amount,
        currency=reservation.currency,
        gateway_order_id=order.order_id,
        status=PaymentStatus.INITIATED,
        refunded_amount=Decimal("0"),
    )
    db.add(payment)
    await db.flush()
    logger.info("Payment order %s created for booking %s", order.order_id, reservation.booking_ref)

    return PaymentOrderResponse(
        payment_id=payment.id,
        order_id=order.order_id,
        amount=float(amount),
        currency=reservation.currency,
        key_id=provider.key_id,
    )


async def _apply_capture(
    db: AsyncSession,
    payment: Payment,
    reservation: Reservation,
    gateway_payment_id: str,
    captured: bool,
    method: str | None,
    now: datetime,
) -> None:
    if payment.status in (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED):
        # Verify call and webhook both report the same capture
        return

    payment.gateway_payment_id = gateway_payment_id
    payment.payment_method = method

    if not captured:
        payment.status = PaymentStatus.FAILED
        events.record_event(
            db,
            EventType.PAYMENT_FAILED,
            reservation,
            events.customer_recipient(reservation.customer_id),
        )
        logger.info("Payment for booking %s failed", reservation.booking_ref)
        return

    payment.status = PaymentStatus.SUCCESS
    payment.paid_at = now
    db.add(
        LedgerTransaction(
            type=TransactionType.PAYMENT,
            reservation_id=reservation.id,
            vendor_id=reservation.vendor_id,
            customer_id=reservation.customer_id,
            reference_id=gateway_payment_id,
            amount=to_decimal(payment.amount),
            currency=payment.currency,
            meta={"method": method, "order_id": payment.gateway_order_id},
        )
    )

    if reservation.status == ReservationStatus.PENDING_PAYMENT:
        lifecycle.transition(reservation, ReservationStatus.CONFIRMED)
        for recipient in (
            events.vendor_recipient(reservation.vendor_id),
            events.customer_recipient(reservation.customer_id),
        ):
            events.record_event(
                db,
                EventType.RESERVATION_CONFIRMED,
                reservation,
                recipient,
                {"amount": float(payment.amount)},
            )
        logger.info("Booking %s confirmed by payment", reservation.booking_ref)
        return

    # Money arrived for a booking that is no longer payable (e.g. expired by the sweep)
    logger.warning(
        "Captured payment for booking %s in status %s, queueing full refund",
        reservation.booking_ref,
        reservation.status.value,
    )
    await flush_changes(db)
    await queue_refund(
        db, reservation, payment, to_decimal(payment.amount), "Booking no longer payable"
    )


async def verify_payment(
    db: AsyncSession, customer_id: int, data: PaymentVerifyRequest, provider: PaymentProvider
) -> PaymentVerifyResponse:
    signed = provider.verify_signature(
        data.gateway_order_id, data.gateway_payment_id, data.signature
    )
    if not signed:
        raise ValidationError("Invalid payment signature")

    payment = await db.get(Payment, data.payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    if payment.customer_id != customer_id:
        raise AuthorizationError("Access denied")
    if payment.gateway_order_id != data.gateway_order_id:
        raise ValidationError("Order does not match payment")

    gateway_payment = await provider.fetch_payment(data.gateway_payment_id)
    reservation = await db.get(Reservation, payment.reservation_id)

    await _apply_capture(
        db,
        payment,
        reservation,
        gateway_payment.payment_id,
        gateway_payment.captured,
        gateway_payment.method,
        datetime.now(UTC),
    )
    await flush_changes(db)
    await db.refresh(payment)
    await db.refresh(reservation)

    return PaymentVerifyResponse(
        payment=PaymentResponse.model_validate(payment),
        reservation=ReservationResponse.model_validate(reservation),
    )


async def queue_refund(
    db: AsyncSession,
    reservation: Reservation,
    payment: Payment,
    amount: Decimal,
    reason: str | None = None,
) -> Refund:
    refund = Refund(
        reservation_id=reservation.id,
        payment_id=payment.id,
        amount=amount,
        reason=reason,
        status=RefundStatus.PENDING,
    )
    db.add(refund)
    await db.flush()
    return refund


async def submit_refund(
    db: AsyncSession, refund: Refund, provider: PaymentProvider, now: datetime | None = None
) -> Refund:
    now = now or datetime.now(UTC)
    payment = await db.get(Payment, refund.payment_id)
    reservation = await db.get(Reservation, refund.reservation_id)
    amount = to_decimal(refund.amount)

    gateway_refund = await provider.refund(payment.gateway_payment_id, amount)

    refund.gateway_refund_id = gateway_refund.refund_id
    refund.status = RefundStatus.PROCESSING
    refund.last_error = None

    payment.refunded_amount = to_decimal(payment.refunded_amount) + amount
    if payment.refunded_amount >= to_decimal(payment.amount):
        payment.status = PaymentStatus.REFUNDED

    if reservation.deposit_refund_status == DepositRefundStatus.PENDING:
        reservation.deposit_refund_status = DepositRefundStatus.INITIATED
        reservation.deposit_refund_initiated_at = now

    db.add(
        LedgerTransaction(
            type=TransactionType.REFUND,
            reservation_id=reservation.id,
            vendor_id=reservation.vendor_id,
            customer_id=reservation.customer_id,
            reference_id=gateway_refund.refund_id,
            amount=-amount,
            currency=payment.currency,
            meta={"reason": refund.reason},
        )
    )
    events.record_event(
        db,
        EventType.REFUND_INITIATED,
        reservation,
        events.customer_recipient(reservation.customer_id),
        {"refund_id": gateway_refund.refund_id, "amount": float(amount)},
    )
    logger.info(
        "Refund %s submitted for booking %s", gateway_refund.refund_id, reservation.booking_ref
    )

    if gateway_refund.processed:
        await complete_refund(db, refund, reservation, now)
    return refund


async def try_submit_refund(
    db: AsyncSession, refund: Refund, provider: PaymentProvider
) -> Refund:
    try:
        return await submit_refund(db, refund, provider)
    except PaymentProviderError as exc:
        refund.last_error = exc.detail
        logger.warning("Refund %s left pending: %s", refund.id, exc.detail)
        return refund


async def complete_refund(
    db: AsyncSession, refund: Refund, reservation: Reservation, now: datetime
) -> None:
    if refund.status == RefundStatus.COMPLETED:
        return

    refund.status = RefundStatus.COMPLETED
    refund.completed_at = now

    if reservation.deposit_refund_status in (
        DepositRefundStatus.PENDING,
        DepositRefundStatus.INITIATED,
    ):
        reservation.deposit_refund_status = DepositRefundStatus.COMPLETED
        reservation.deposit_refund_completed_at = now
        reservation.deposit_refund_transaction_id = refund.gateway_refund_id

    if lifecycle.mark_refunded(reservation):
        logger.info("Booking %s refunded", reservation.booking_ref)

    events.record_event(
        db,
        EventType.REFUND_COMPLETED,
        reservation,
        events.customer_recipient(reservation.customer_id),
        {"refund_id": refund.gateway_refund_id, "amount": float(refund.amount)},
    )


async def handle_webhook(db: AsyncSession, event: WebhookEvent) -> dict:
    now = datetime.now(UTC)

    if event.event in ("payment.captured", "payment.failed"):
        entity = event.payload.get("payment", {}).get("entity", {})
        result = await db.execute(
            select(Payment).where(Payment.gateway_order_id == entity.get("order_id"))
        )
        payment = result.scalar_one_or_none()
        if not payment:
            logger.warning("Webhook %s for unknown order %s", event.event, entity.get("order_id"))
            return {"status": "ignored"}
        reservation = await db.get(Reservation, payment.reservation_id)
        await _apply_capture(
            db,
            payment,
            reservation,
            entity.get("id"),
            event.event == "payment.captured",
            entity.get("method"),
            now,
        )

    elif event.event == "refund.processed":
        entity = event.payload.get("refund", {}).get("entity", {})
        result = await db.execute(
            select(Refund).where(Refund.gateway_refund_id == entity.get("id"))
        )
        refund = result.scalar_one_or_none()
        if not refund:
            logger.warning("Webhook refund.processed for unknown refund %s", entity.get("id"))
            return {"status": "ignored"}
        reservation = await db.get(Reservation, refund.reservation_id)
        await complete_refund(db, refund, reservation, now)

    else:
        return {"status": "ignored"}

    await flush_changes(db)
    return {"status": "ok"}
