from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from src.core.exceptions import InvalidWindowError, PromotionNotApplicableError
from src.utils.constants import BookingMode, DiscountType

ZERO = Decimal("0")
HUNDRED = Decimal("100")
_HOUR = timedelta(hours=1)


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_currency(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RateCard:
    daily_rate: Decimal
    hourly_rate: Decimal | None = None
    weekly_discount_percent: Decimal = ZERO
    monthly_discount_percent: Decimal = ZERO
    extra_hour_charge: Decimal = ZERO
    deposit_amount: Decimal = ZERO

    @classmethod
    def from_vehicle(cls, vehicle) -> "RateCard":
        return cls(
            daily_rate=to_decimal(vehicle.daily_rate),
            hourly_rate=(
                to_decimal(vehicle.hourly_rate) if vehicle.hourly_rate is not None else None
            ),
            weekly_discount_percent=to_decimal(vehicle.weekly_discount_percent),
            monthly_discount_percent=to_decimal(vehicle.monthly_discount_percent),
            extra_hour_charge=to_decimal(vehicle.extra_hour_charge),
            deposit_amount=to_decimal(vehicle.deposit_amount),
        )


@dataclass(frozen=True)
class PromotionTerms:
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_till: datetime
    is_active: bool = True
    min_booking_amount: Decimal | None = None
    max_discount_amount: Decimal | None = None
    total_usage_limit: int | None = None
    used_count: int = 0
    usage_limit_per_user: int | None = None
    applicable_vehicle_types: tuple[str, ...] = ()
    applicable_cities: tuple[str, ...] = ()

    @classmethod
    def from_promotion(cls, promotion) -> "PromotionTerms":
        return cls(
            code=promotion.code,
            discount_type=DiscountType(promotion.discount_type),
            discount_value=to_decimal(promotion.discount_value),
            valid_from=_as_utc(promotion.valid_from),
            valid_till=_as_utc(promotion.valid_till),
            is_active=promotion.is_active,
            min_booking_amount=(
                to_decimal(promotion.min_booking_amount)
                if promotion.min_booking_amount is not None
                else None
            ),
            max_discount_amount=(
                to_decimal(promotion.max_discount_amount)
                if promotion.max_discount_amount is not None
                else None
            ),
            total_usage_limit=promotion.total_usage_limit,
            used_count=promotion.used_count or 0,
            usage_limit_per_user=promotion.usage_limit_per_user,
            applicable_vehicle_types=tuple(promotion.applicable_vehicle_types or ()),
            applicable_cities=tuple(promotion.applicable_cities or ()),
        )


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.18")
    driver_hourly_rate: Decimal = Decimal("100")

    @classmethod
    def from_settings(cls, settings) -> "PricingPolicy":
        return cls(
            tax_rate=to_decimal(settings.tax_rate),
            driver_hourly_rate=to_decimal(settings.driver_hourly_rate),
        )


@dataclass(frozen=True)
class Duration:
    days: int
    hours: int


@dataclass(frozen=True)
class PriceBreakdown:
    base_amount: Decimal
    driver_amount: Decimal
    taxes: Decimal
    discount: Decimal
    deposit: Decimal
    total_payable: Decimal
    duration: Duration
    promotion_code: str | None = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def compute_duration(pickup: datetime, dropoff: datetime) -> Duration:
    elapsed = _as_utc(dropoff) - _as_utc(pickup)
    if elapsed <= timedelta(0):
        raise InvalidWindowError()
    hours = -(-elapsed // _HOUR)
    days = -(-hours // 24)
    return Duration(days=days, hours=hours)


def compute_base_amount(rate_card: RateCard, duration: Duration) -> Decimal:
    """
    Tier selection, first match wins:
    1. 30+ days with a monthly discount: 30 days at the discounted monthly rate
    2. 7+ days with a weekly discount: 7 days at the discounted weekly rate
    3. daily rate for every day
    Leftover hours beyond full days are billed at the extra hour charge.
    """
    daily = rate_card.daily_rate
    if duration.days >= 30 and rate_card.monthly_discount_percent > 0:
        base = daily * 30 * (1 - rate_card.monthly_discount_percent / HUNDRED)
    elif duration.days >= 7 and rate_card.weekly_discount_percent > 0:
        base = daily * 7 * (1 - rate_card.weekly_discount_percent / HUNDRED)
    else:
        base = daily * duration.days

    leftover_hours = duration.hours % 24
    if leftover_hours and rate_card.extra_hour_charge > 0:
        base += rate_card.extra_hour_charge * leftover_hours
    return base


def check_promotion(
    terms: PromotionTerms,
    booking_amount: Decimal,
    now: datetime,
    vehicle_type: str | None = None,
    city: str | None = None,
    user_redemptions: int = 0,
) -> None:
    now = _as_utc(now)
    if not terms.is_active:
        raise PromotionNotApplicableError("Promotion is not active")
    if now < _as_utc(terms.valid_from):
        raise PromotionNotApplicableError("Promotion is not yet valid")
    if now > _as_utc(terms.valid_till):
        raise PromotionNotApplicableError("Promotion has expired")
    if terms.total_usage_limit is not None and terms.used_count >= terms.total_usage_limit:
        raise PromotionNotApplicableError("Promotion usage limit reached")
    if terms.usage_limit_per_user is not None and user_redemptions >= terms.usage_limit_per_user:
        raise PromotionNotApplicableError("Promotion already used the maximum number of times")
    if terms.applicable_vehicle_types:
        vehicle_type = getattr(vehicle_type, "value", vehicle_type)
        if vehicle_type not in terms.applicable_vehicle_types:
            raise PromotionNotApplicableError("Promotion does not apply to this vehicle type")
    if terms.applicable_cities:
        cities = {c.lower() for c in terms.applicable_cities}
        if not city or city.lower() not in cities:
            raise PromotionNotApplicableError("Promotion does not apply to this city")
    if terms.min_booking_amount is not None and booking_amount < terms.min_booking_amount:
        raise PromotionNotApplicableError(
            f"Minimum booking amount for this promotion is {terms.min_booking_amount}"
        )


def compute_discount(terms: PromotionTerms, base_amount: Decimal) -> Decimal:
    if terms.discount_type == DiscountType.PERCENTAGE:
        discount = base_amount * terms.discount_value / HUNDRED
        if terms.max_discount_amount is not None and discount > terms.max_discount_amount:
            discount = terms.max_discount_amount
        return discount
    return terms.discount_value


def compute_price(
    rate_card: RateCard,
    pickup: datetime,
    dropoff: datetime,
    mode: BookingMode = BookingMode.SELF_DRIVE,
    promotion: PromotionTerms | None = None,
    *,
    policy: PricingPolicy = PricingPolicy(),
    now: datetime | None = None,
    vehicle_type: str | None = None,
    city: str | None = None,
    user_redemptions: int = 0,
) -> PriceBreakdown:
    duration = compute_duration(pickup, dropoff)
    base_amount = compute_base_amount(rate_card, duration)

    driver_amount = ZERO
    if BookingMode(mode) == BookingMode.WITH_DRIVER:
        driver_amount = policy.driver_hourly_rate * duration.hours

    taxes = (base_amount + driver_amount) * policy.tax_rate
    deposit = rate_card.deposit_amount

    discount = ZERO
    if promotion is not None:
        if now is None:
            raise ValueError("now is required to evaluate a promotion")
        check_promotion(
            promotion,
            base_amount + driver_amount,
            now,
            vehicle_type=vehicle_type,
            city=city,
            user_redemptions=user_redemptions,
        )
        discount = compute_discount(promotion, base_amount)

    total = base_amount + driver_amount + taxes + deposit - discount
    total_payable = max(ZERO, round_currency(total))

    return PriceBreakdown(
        base_amount=base_amount,
        driver_amount=driver_amount,
        taxes=round_currency(taxes),
        discount=discount,
        deposit=deposit,
        total_payable=total_payable,
        duration=duration,
        promotion_code=promotion.code if promotion is not None else None,
    )
