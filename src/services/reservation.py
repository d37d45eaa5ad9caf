"""
Booking orchestrator.

Reservation commits are serialized per vehicle through a compare-and-set on
``Vehicle.booking_version``: a commit reads the version, re-checks the calendar,
and only inserts when it can bump the version it read. Every write that frees
or occupies calendar time bumps the same counter, so a commit that raced with
another writer loses the CAS and re-checks against the new calendar.
"""

import asyncio
import logging
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, get_settings
from src.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransitionError,
    InvalidWindowError,
    NotFoundError,
    PromotionNotApplicableError,
    ValidationError,
    VehicleUnavailableError,
)
from src.models.payment import LedgerTransaction, Refund
from src.models.reservation import Reservation
from src.models.vehicle import Vehicle
from src.schemas.common import as_utc
from src.schemas.reservation import (
    AvailabilityRequest,
    AvailabilityResponse,
    DurationResponse,
    ExpireUnpaidResponse,
    InvoiceResponse,
    PriceBreakdownResponse,
    PriceQuoteRequest,
    PriceQuoteResponse,
    RefundRequest,
    RefundResponse,
    ReservationCancelRequest,
    ReservationCancelResponse,
    ReservationCompleteRequest,
    ReservationCreate,
    ReservationCreateResponse,
    ReservationListResponse,
    ReservationResponse,
    ReservationStatusUpdate,
    SettlementResponse,
)
from src.services import availability, events, lifecycle
from src.services import payment as payment_service
from src.services.common import (
    ensure_can_manage,
    ensure_can_view,
    flush_changes,
    release_vehicle,
)
from src.services.payment_gateway import PaymentProvider
from src.services.pricing import ZERO, PriceBreakdown, to_decimal
from src.services.promotion import price_with_promotion, redeem_promotion
from src.utils.constants import (
    CancelledBy,
    DepositRefundStatus,
    EventType,
    RefundStatus,
    ReservationStatus,
    TransactionType,
    UserRole,
)

logger = logging.getLogger(__name__)

COMMIT_RETRY_DELAY_SECONDS = 0.05


def generate_booking_ref() -> str:
    return f"BOOK-{uuid.uuid4().hex[:10].upper()}"


def breakdown_response(breakdown: PriceBreakdown, currency: str) -> PriceBreakdownResponse:
    return PriceBreakdownResponse(
        base_amount=float(breakdown.base_amount),
        driver_amount=float(breakdown.driver_amount),
        taxes=float(breakdown.taxes),
        discount=float(breakdown.discount),
        deposit=float(breakdown.deposit),
        total_payable=float(breakdown.total_payable),
        currency=currency,
        duration=DurationResponse(
            days=breakdown.duration.days, hours=breakdown.duration.hours
        ),
        promotion_code=breakdown.promotion_code,
    )


def _stored_breakdown(reservation: Reservation) -> PriceBreakdownResponse:
    return PriceBreakdownResponse(
        base_amount=float(reservation.base_amount),
        driver_amount=float(reservation.driver_amount),
        taxes=float(reservation.taxes),
        discount=float(reservation.discount),
        deposit=float(reservation.deposit),
        total_payable=float(reservation.total_payable),
        currency=reservation.currency,
        duration=DurationResponse(
            days=reservation.duration_days, hours=reservation.duration_hours
        ),
        promotion_code=reservation.promotion.code if reservation.promotion_id else None,
    )


def _cancelled_by(principal) -> CancelledBy:
    return {
        UserRole.CUSTOMER: CancelledBy.CUSTOMER,
        UserRole.VENDOR: CancelledBy.VENDOR,
        UserRole.ADMIN: CancelledBy.ADMIN,
    }[principal.role]


async def _get_vehicle(db: AsyncSession, vehicle_id: int) -> Vehicle:
    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    return vehicle


async def _get_reservation(db: AsyncSession, reservation_id: int) -> Reservation:
    reservation = await db.get(Reservation, reservation_id)
    if not reservation:
        raise NotFoundError("Booking not found")
    return reservation


async def quote_price(
    db: AsyncSession,
    data: PriceQuoteRequest,
    customer_id: int | None = None,
    settings: Settings | None = None,
) -> PriceQuoteResponse:
    settings = settings or get_settings()
    vehicle = await _get_vehicle(db, data.vehicle_id)

    promotion_error = None
    try:
        breakdown, _ = await price_with_promotion(
            db,
            vehicle,
            data.pickup_time,
            data.dropoff_time,
            data.booking_mode,
            data.promotion_code,
            customer_id,
            settings,
            datetime.now(UTC),
        )
    except PromotionNotApplicableError as exc:
        promotion_error = exc.detail
        breakdown, _ = await price_with_promotion(
            db,
            vehicle,
            data.pickup_time,
            data.dropoff_time,
            data.booking_mode,
            None,
            customer_id,
            settings,
            datetime.now(UTC),
        )

    return PriceQuoteResponse(
        vehicle_id=vehicle.id,
        price_breakdown=breakdown_response(breakdown, settings.currency),
        promotion_error=promotion_error,
    )


async def check_availability(db: AsyncSession, data: AvailabilityRequest) -> AvailabilityResponse:
    result = await availability.check_availability(
        db, data.vehicle_id, data.pickup_time, data.dropoff_time
    )
    return AvailabilityResponse(
        vehicle_id=data.vehicle_id,
        available=result.available,
        reason=result.reason,
        pickup_time=data.pickup_time,
        dropoff_time=data.dropoff_time,
    )


async def _read_booking_version(db: AsyncSession, vehicle_id: int) -> int:
    result = await db.execute(select(Vehicle.booking_version).where(Vehicle.id == vehicle_id))
    return result.scalar_one()


async def _advisory_check(
    db: AsyncSession, vehicle_id: int, pickup: datetime, dropoff: datetime
) -> availability.AvailabilityResult:
    return await availability.check_availability(db, vehicle_id, pickup, dropoff)


async def _commit_reservation(
    db: AsyncSession, reservation: Reservation, max_attempts: int
) -> Reservation:
    """
    Insert the reservation only if the vehicle's calendar is unchanged since
    the conflict check. A lost compare-and-set or a storage write conflict
    retries; a real overlap fails.
    """
    vehicle_id = reservation.vehicle_id
    for attempt in range(1, max_attempts + 1):
        try:
            version = await _read_booking_version(db, vehicle_id)
            result = await availability.evaluate(
                db, vehicle_id, reservation.pickup_time, reservation.dropoff_time
            )
            if not result.available:
                logger.info(
                    "Booking commit for vehicle %s rejected: %s", vehicle_id, result.reason
                )
                raise VehicleUnavailableError(result.reason)

            cas = await db.execute(
                update(Vehicle)
                .where(Vehicle.id == vehicle_id, Vehicle.booking_version == version)
                .values(booking_version=version + 1)
                .execution_options(synchronize_session=False)
            )
        except OperationalError as exc:
            logger.warning(
                "Storage conflict while committing booking on vehicle %s (attempt %d/%d): %s",
                vehicle_id,
                attempt,
                max_attempts,
                exc,
            )
            await asyncio.sleep(COMMIT_RETRY_DELAY_SECONDS * attempt)
            continue

        if cas.rowcount == 1:
            db.add(reservation)
            await db.flush()
            return reservation

        logger.info(
            "Vehicle %s calendar changed during commit (attempt %d/%d)",
            vehicle_id,
            attempt,
            max_attempts,
        )

    raise VehicleUnavailableError("Vehicle calendar is changing too quickly, try again")


async def create_reservation(
    db: AsyncSession,
    customer_id: int,
    data: ReservationCreate,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> ReservationCreateResponse:
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    pickup_time = as_utc(data.pickup_time)
    dropoff_time = as_utc(data.dropoff_time)

    if dropoff_time <= pickup_time:
        raise InvalidWindowError()
    if pickup_time < now:
        raise ValidationError("Cannot create a booking in the past")

    vehicle = await _get_vehicle(db, data.vehicle_id)
    if not vehicle.is_active:
        raise VehicleUnavailableError("Vehicle is not active")

    advisory = await _advisory_check(db, vehicle.id, pickup_time, dropoff_time)
    if not advisory.available:
        raise VehicleUnavailableError(advisory.reason)

    promotion_error = None
    try:
        breakdown, promotion = await price_with_promotion(
            db,
            vehicle,
            pickup_time,
            dropoff_time,
            data.booking_mode,
            data.promotion_code,
            customer_id,
            settings,
            now,
        )
    except PromotionNotApplicableError as exc:
        if data.require_promotion:
            raise
        promotion_error = exc.detail
        breakdown, promotion = await price_with_promotion(
            db, vehicle, pickup_time, dropoff_time, data.booking_mode, None,
            customer_id, settings, now,
        )

    pickup = data.pickup
    dropoff = data.dropoff
    reservation = Reservation(
        booking_ref=generate_booking_ref(),
        customer_id=customer_id,
        vendor_id=vehicle.vendor_id,
        vehicle_id=vehicle.id,
        driver_id=data.driver_id,
        pickup_city=(pickup.city if pickup else None) or vehicle.city,
        pickup_location=pickup.location_name if pickup else None,
        pickup_time=pickup_time,
        dropoff_city=(dropoff.city if dropoff else None) or vehicle.city,
        dropoff_location=dropoff.location_name if dropoff else None,
        dropoff_time=dropoff_time,
        booking_mode=data.booking_mode,
        status=ReservationStatus.PENDING_PAYMENT,
        currency=settings.currency,
        notes=data.notes,
    )
    _apply_breakdown(reservation, breakdown, promotion)

    await _commit_reservation(db, reservation, settings.booking_commit_max_attempts)

    if promotion is not None:
        redeemed = await redeem_promotion(db, promotion, customer_id, reservation.id)
        if not redeemed:
            if data.require_promotion:
                raise PromotionNotApplicableError("Promotion usage limit reached")
            promotion_error = "Promotion usage limit reached"
            breakdown, _ = await price_with_promotion(
                db, vehicle, pickup_time, dropoff_time, data.booking_mode, None,
                customer_id, settings, now,
            )
            _apply_breakdown(reservation, breakdown, None)

    for recipient in (
        events.vendor_recipient(reservation.vendor_id),
        events.customer_recipient(customer_id),
    ):
        events.record_event(
            db,
            EventType.RESERVATION_CREATED,
            reservation,
            recipient,
            {"vehicle_id": vehicle.id, "total_payable": float(reservation.total_payable)},
        )

    await flush_changes(db)
    await db.refresh(reservation)
    logger.info(
        "Booking %s created for vehicle %s by customer %s",
        reservation.booking_ref,
        vehicle.id,
        customer_id,
    )

    return ReservationCreateResponse(
        reservation=ReservationResponse.model_validate(reservation),
        booking_ref=reservation.booking_ref,
        payment_required=True,
        promotion_error=promotion_error,
    )


def _apply_breakdown(reservation: Reservation, breakdown: PriceBreakdown, promotion) -> None:
    reservation.duration_days = breakdown.duration.days
    reservation.duration_hours = breakdown.duration.hours
    reservation.base_amount = breakdown.base_amount
    reservation.driver_amount = breakdown.driver_amount
    reservation.taxes = breakdown.taxes
    reservation.discount = breakdown.discount
    reservation.deposit = breakdown.deposit
    reservation.total_payable = breakdown.total_payable
    reservation.promotion_id = promotion.id if promotion is not None else None


async def get_reservations(
    db: AsyncSession,
    principal,
    page: int = 1,
    limit: int = 20,
    status: ReservationStatus | None = None,
) -> ReservationListResponse:
    query = select(Reservation)
    count_query = select(func.count(Reservation.id))

    if principal.role == UserRole.CUSTOMER:
        query = query.where(Reservation.customer_id == principal.id)
        count_query = count_query.where(Reservation.customer_id == principal.id)
    elif principal.role == UserRole.VENDOR:
        query = query.where(Reservation.vendor_id == principal.vendor_id)
        count_query = count_query.where(Reservation.vendor_id == principal.vendor_id)

    if status:
        query = query.where(Reservation.status == status)
        count_query = count_query.where(Reservation.status == status)

    result = await db.execute(count_query)
    total = result.scalar() or 0

    offset = (page - 1) * limit
    result = await db.execute(
        query.order_by(Reservation.created_at.desc(), Reservation.id.desc())
        .offset(offset)
        .limit(limit)
    )
    reservations = result.scalars().all()

    return ReservationListResponse(
        reservations=[ReservationResponse.model_validate(r) for r in reservations],
        total=total,
        page=page,
        limit=limit,
    )


async def get_reservation_by_id(
    db: AsyncSession, reservation_id: int, principal
) -> ReservationResponse:
    reservation = await _get_reservation(db, reservation_id)
    ensure_can_view(reservation, principal)
    return ReservationResponse.model_validate(reservation)


async def get_invoice(db: AsyncSession, reservation_id: int, principal) -> InvoiceResponse:
    reservation = await _get_reservation(db, reservation_id)
    ensure_can_view(reservation, principal)
    if reservation.promotion_id:
        await db.refresh(reservation, ["promotion"])

    payment = await payment_service.get_captured_payment(db, reservation.id)
    amount_paid = ZERO
    if payment is not None:
        amount_paid = to_decimal(payment.amount) - to_decimal(payment.refunded_amount)

    return InvoiceResponse(
        invoice_number=f"INV-{reservation.booking_ref}",
        issue_date=datetime.now(UTC),
        booking_date=reservation.created_at,
        customer_id=reservation.customer_id,
        vendor_id=reservation.vendor_id,
        vehicle_id=reservation.vehicle_id,
        pickup_time=reservation.pickup_time,
        dropoff_time=reservation.dropoff_time,
        price_breakdown=_stored_breakdown(reservation),
        status=reservation.status,
        amount_paid=float(amount_paid),
    )


async def cancel_reservation(
    db: AsyncSession,
    reservation_id: int,
    principal,
    data: ReservationCancelRequest | None,
    provider: PaymentProvider,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> ReservationCancelResponse:
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    data = data or ReservationCancelRequest()

    reservation = await _get_reservation(db, reservation_id)
    ensure_can_view(reservation, principal)
    if data.waive_fee and principal.role != UserRole.ADMIN:
        raise AuthorizationError("Only admins can waive the cancellation fee")

    outcome = lifecycle.cancel(
        reservation,
        _cancelled_by(principal),
        now,
        reason=data.reason,
        waive_fee=data.waive_fee,
        policy=lifecycle.CancellationPolicy.from_settings(settings),
    )
    await flush_changes(db)
    await release_vehicle(db, reservation.vehicle_id)

    for recipient in (
        events.vendor_recipient(reservation.vendor_id),
        events.customer_recipient(reservation.customer_id),
    ):
        events.record_event(
            db,
            EventType.RESERVATION_CANCELLED,
            reservation,
            recipient,
            {
                "cancellation_fee": float(outcome.cancellation_fee),
                "refund_amount": float(outcome.refund_amount),
            },
        )

    refund = None
    payment = await payment_service.get_captured_payment(db, reservation.id)
    if payment is not None and outcome.refund_amount > 0:
        refund = await payment_service.queue_refund(
            db, reservation, payment, outcome.refund_amount, data.reason or "Booking cancelled"
        )
        refund = await payment_service.try_submit_refund(db, refund, provider)

    await flush_changes(db)
    await db.refresh(reservation)
    logger.info(
        "Booking %s cancelled by %s, fee %s",
        reservation.booking_ref,
        reservation.cancelled_by.value,
        outcome.cancellation_fee,
    )

    return ReservationCancelResponse(
        reservation=ReservationResponse.model_validate(reservation),
        cancellation_fee=float(outcome.cancellation_fee),
        refund_amount=float(outcome.refund_amount),
        refund=RefundResponse.model_validate(refund) if refund else None,
    )


async def complete_reservation(
    db: AsyncSession,
    reservation_id: int,
    principal,
    data: ReservationCompleteRequest | None,
    now: datetime | None = None,
) -> SettlementResponse:
    now = now or datetime.now(UTC)
    data = data or ReservationCompleteRequest()
    penalties = data.penalties

    reservation = await _get_reservation(db, reservation_id)
    ensure_can_manage(reservation, principal)

    settlement = lifecycle.complete(
        reservation,
        now,
        late_fee=penalties.late_fee if penalties else None,
        damage_deduction=penalties.damage_deduction if penalties else None,
        notes=penalties.notes if penalties else None,
    )
    if data.notes:
        reservation.notes = data.notes
    await flush_changes(db)
    await release_vehicle(db, reservation.vehicle_id)

    if settlement.adjustment != 0:
        db.add(
            LedgerTransaction(
                type=TransactionType.ADJUSTMENT,
                reservation_id=reservation.id,
                vendor_id=reservation.vendor_id,
                customer_id=reservation.customer_id,
                amount=settlement.adjustment,
                currency=reservation.currency,
                meta={
                    "late_fee": float(reservation.late_fee),
                    "damage_deduction": float(reservation.damage_deduction),
                },
            )
        )

    for recipient in (
        events.vendor_recipient(reservation.vendor_id),
        events.customer_recipient(reservation.customer_id),
    ):
        events.record_event(
            db,
            EventType.RESERVATION_COMPLETED,
            reservation,
            recipient,
            {"final_amount": float(settlement.final_amount)},
        )

    await flush_changes(db)
    await db.refresh(reservation)
    logger.info(
        "Booking %s completed, final amount %s", reservation.booking_ref, settlement.final_amount
    )

    return SettlementResponse(
        reservation=ReservationResponse.model_validate(reservation),
        final_amount=float(settlement.final_amount),
        adjustment=float(settlement.adjustment),
        deposit_refund_amount=float(settlement.deposit_refund_amount),
    )


async def update_status(
    db: AsyncSession,
    reservation_id: int,
    principal,
    data: ReservationStatusUpdate,
    provider: PaymentProvider,
    settings: Settings | None = None,
) -> ReservationResponse:
    reservation = await _get_reservation(db, reservation_id)
    ensure_can_manage(reservation, principal)
    target = data.status

    if target == ReservationStatus.CANCELLED:
        result = await cancel_reservation(
            db,
            reservation_id,
            principal,
            ReservationCancelRequest(reason=data.reason),
            provider,
            settings,
        )
        return result.reservation
    if target == ReservationStatus.COMPLETED:
        settlement = await complete_reservation(db, reservation_id, principal, None)
        return settlement.reservation
    if target in (ReservationStatus.CONFIRMED, ReservationStatus.REFUNDED):
        # Only a captured payment confirms and only a completed refund refunds
        raise InvalidStateTransitionError(
            reservation.status.value,
            target.value,
            detail=f"Bookings move to {target.value} through the payment flow",
        )

    previous = lifecycle.transition(reservation, target)
    await flush_changes(db)
    if lifecycle.is_active(previous) and not lifecycle.is_active(target):
        await release_vehicle(db, reservation.vehicle_id)

    for recipient in (
        events.vendor_recipient(reservation.vendor_id),
        events.customer_recipient(reservation.customer_id),
    ):
        events.record_event(
            db,
            EventType.RESERVATION_STATUS_CHANGED,
            reservation,
            recipient,
            {"previous_status": previous.value, "reason": data.reason},
        )

    await flush_changes(db)
    await db.refresh(reservation)
    logger.info(
        "Booking %s moved from %s to %s", reservation.booking_ref, previous.value, target.value
    )
    return ReservationResponse.model_validate(reservation)


async def refund_reservation(
    db: AsyncSession,
    reservation_id: int,
    principal,
    data: RefundRequest | None,
    provider: PaymentProvider,
) -> RefundResponse:
    data = data or RefundRequest()
    reservation = await _get_reservation(db, reservation_id)
    ensure_can_manage(reservation, principal)

    if reservation.status not in (ReservationStatus.CANCELLED, ReservationStatus.COMPLETED):
        raise InvalidStateTransitionError(
            reservation.status.value,
            ReservationStatus.REFUNDED.value,
            detail="Only cancelled or completed bookings can be refunded",
        )

    payment = await payment_service.get_captured_payment(db, reservation.id)
    if payment is None:
        raise ValidationError("Booking has no captured payment to refund")

    result = await db.execute(
        select(Refund)
        .where(Refund.reservation_id == reservation.id, Refund.status == RefundStatus.PENDING)
        .order_by(Refund.id)
        .limit(1)
    )
    refund = result.scalar_one_or_none()

    if refund is None:
        if reservation.status == ReservationStatus.CANCELLED:
            amount = max(
                ZERO,
                to_decimal(reservation.total_payable) - to_decimal(reservation.cancellation_fee),
            )
        else:
            if reservation.deposit_refund_status not in (None, DepositRefundStatus.PENDING):
                raise ConflictError("Deposit refund already initiated")
            amount = to_decimal(reservation.deposit)
        if data.amount is not None:
            amount = Decimal(str(data.amount))

        remaining = to_decimal(payment.amount) - to_decimal(payment.refunded_amount)
        if amount <= 0:
            raise ValidationError("Nothing to refund for this booking")
        if amount > remaining:
            raise ValidationError(f"Refund amount exceeds refundable balance of {remaining}")

        refund = await payment_service.queue_refund(
            db, reservation, payment, amount, data.reason or "Refund requested"
        )

    await payment_service.submit_refund(db, refund, provider)
    await flush_changes(db)
    await db.refresh(refund)
    return RefundResponse.model_validate(refund)


async def expire_unpaid_reservations(
    db: AsyncSession, now: datetime | None = None, settings: Settings | None = None
) -> ExpireUnpaidResponse:
    """
    Cancel bookings left in pending_payment past the payment window.

    Each row is moved with a conditional UPDATE on its status and version, so a
    payment confirmed concurrently wins over the sweep.
    """
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(minutes=settings.pending_payment_timeout_minutes)

    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.status == ReservationStatus.PENDING_PAYMENT,
            Reservation.created_at < cutoff,
        )
        .order_by(Reservation.id)
    )
    candidates = result.scalars().all()

    expired: list[str] = []
    for reservation in candidates:
        moved = await db.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation.id,
                Reservation.status == ReservationStatus.PENDING_PAYMENT,
                Reservation.version == reservation.version,
            )
            .values(
                status=ReservationStatus.CANCELLED,
                cancelled_by=CancelledBy.SYSTEM,
                cancelled_at=now,
                cancellation_fee=ZERO,
                cancellation_reason="Payment window expired",
                version=Reservation.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            continue

        await release_vehicle(db, reservation.vehicle_id)
        await db.refresh(reservation)
        events.record_event(
            db,
            EventType.RESERVATION_EXPIRED,
            reservation,
            events.customer_recipient(reservation.customer_id),
        )
        expired.append(reservation.booking_ref)

    await db.flush()
    if expired:
        logger.info("Expired %d unpaid bookings: %s", len(expired), ", ".join(expired))
    return ExpireUnpaidResponse(expired=len(expired), booking_refs=expired)
