import logging
from datetime import UTC, datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings
from src.core.exceptions import ConflictError, NotFoundError, PromotionNotApplicableError
from src.models.promotion import Promotion, PromotionRedemption
from src.models.vehicle import Vehicle
from src.schemas.promotion import (
    PromotionCreate,
    PromotionResponse,
    PromotionValidation,
    PromotionValidationResponse,
)
from src.services.pricing import (
    PriceBreakdown,
    PricingPolicy,
    PromotionTerms,
    RateCard,
    compute_price,
)
from src.utils.constants import BookingMode

logger = logging.getLogger(__name__)


async def get_promotions(
    db: AsyncSession, is_active: bool | None = True
) -> list[PromotionResponse]:
    query = select(Promotion).order_by(Promotion.id)
    if is_active is not None:
        query = query.where(Promotion.is_active == is_active)
    result = await db.execute(query)
    return [PromotionResponse.model_validate(p) for p in result.scalars().all()]


async def create_promotion(db: AsyncSession, data: PromotionCreate) -> PromotionResponse:
    result = await db.execute(select(Promotion).where(Promotion.code == data.code))
    if result.scalar_one_or_none():
        raise ConflictError("Promotion code already exists")

    promotion = Promotion(**data.model_dump(), used_count=0, is_active=True)
    db.add(promotion)
    await db.flush()
    await db.refresh(promotion)
    return PromotionResponse.model_validate(promotion)


async def get_promotion_by_code(db: AsyncSession, code: str) -> Promotion | None:
    result = await db.execute(select(Promotion).where(Promotion.code == code.strip().upper()))
    return result.scalar_one_or_none()


async def count_user_redemptions(db: AsyncSession, promotion_id: int, customer_id: int) -> int:
    result = await db.execute(
        select(func.count(PromotionRedemption.id)).where(
            PromotionRedemption.promotion_id == promotion_id,
            PromotionRedemption.customer_id == customer_id,
        )
    )
    return result.scalar() or 0


async def redeem_promotion(
    db: AsyncSession, promotion: Promotion, customer_id: int, reservation_id: int
) -> bool:
    """
    Count one use of the promotion for a reservation.

    Both usage caps are checked inside the conditional UPDATE, so concurrent
    bookings cannot push the promotion past either limit. Returns False when
    a limit was hit.
    """
    user_redemptions = (
        select(func.count(PromotionRedemption.id))
        .where(
            PromotionRedemption.promotion_id == promotion.id,
            PromotionRedemption.customer_id == customer_id,
        )
        .scalar_subquery()
    )
    result = await db.execute(
        update(Promotion)
        .where(
            Promotion.id == promotion.id,
            or_(
                Promotion.total_usage_limit.is_(None),
                Promotion.used_count < Promotion.total_usage_limit,
            ),
            or_(
                Promotion.usage_limit_per_user.is_(None),
                user_redemptions < Promotion.usage_limit_per_user,
            ),
        )
        .values(used_count=Promotion.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(
            "Promotion %s limit reached before redemption by customer %s",
            promotion.code,
            customer_id,
        )
        return False

    db.add(
        PromotionRedemption(
            promotion_id=promotion.id,
            customer_id=customer_id,
            reservation_id=reservation_id,
        )
    )
    return True


async def price_with_promotion(
    db: AsyncSession,
    vehicle: Vehicle,
    pickup: datetime,
    dropoff: datetime,
    mode: BookingMode,
    code: str | None,
    customer_id: int | None,
    settings: Settings,
    now: datetime,
) -> tuple[PriceBreakdown, Promotion | None]:
    rate_card = RateCard.from_vehicle(vehicle)
    policy = PricingPolicy.from_settings(settings)
    if not code:
        return compute_price(rate_card, pickup, dropoff, mode, policy=policy), None

    promotion = await get_promotion_by_code(db, code)
    if promotion is None:
        raise PromotionNotApplicableError("Invalid promotion code")

    redemptions = 0
    if customer_id is not None:
        redemptions = await count_user_redemptions(db, promotion.id, customer_id)

    breakdown = compute_price(
        rate_card,
        pickup,
        dropoff,
        mode,
        PromotionTerms.from_promotion(promotion),
        policy=policy,
        now=now,
        vehicle_type=vehicle.vehicle_type,
        city=vehicle.city,
        user_redemptions=redemptions,
    )
    return breakdown, promotion


async def validate_promotion(
    db: AsyncSession,
    data: PromotionValidation,
    customer_id: int | None,
    settings: Settings,
) -> PromotionValidationResponse:
    vehicle = await db.get(Vehicle, data.vehicle_id)
    if vehicle is None:
        raise NotFoundError("Vehicle not found")

    try:
        breakdown, promotion = await price_with_promotion(
            db,
            vehicle,
            data.pickup_time,
            data.dropoff_time,
            data.booking_mode,
            data.code,
            customer_id,
            settings,
            datetime.now(UTC),
        )
    except PromotionNotApplicableError as exc:
        return PromotionValidationResponse(is_valid=False, message=exc.detail)

    return PromotionValidationResponse(
        is_valid=True,
        promotion=PromotionResponse.model_validate(promotion),
        discount_amount=float(breakdown.discount),
    )
