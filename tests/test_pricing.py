from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from src.core.exceptions import InvalidWindowError, PromotionNotApplicableError
from src.services.pricing import (
    PromotionTerms,
    RateCard,
    compute_base_amount,
    compute_duration,
    compute_price,
)
from src.utils.constants import BookingMode, DiscountType

PICKUP = datetime(2030, 1, 1, 10, 0, tzinfo=UTC)
NOW = datetime(2029, 12, 1, tzinfo=UTC)


def rate_card(**overrides) -> RateCard:
    values = {
        "daily_rate": Decimal("1000"),
        "weekly_discount_percent": Decimal("0"),
        "monthly_discount_percent": Decimal("0"),
        "extra_hour_charge": Decimal("0"),
        "deposit_amount": Decimal("0"),
    }
    values.update(overrides)
    return RateCard(**values)


def promotion(**overrides) -> PromotionTerms:
    values = {
        "code": "SAVE10",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "min_booking_amount": None,
        "max_discount_amount": None,
        "valid_from": NOW - timedelta(days=1),
        "valid_till": NOW + timedelta(days=60),
        "usage_limit_per_user": None,
        "total_usage_limit": None,
        "used_count": 0,
        "applicable_vehicle_types": None,
        "applicable_cities": None,
        "is_active": True,
    }
    values.update(overrides)
    return PromotionTerms(**values)


def test_three_day_self_drive_quote():
    breakdown = compute_price(rate_card(), PICKUP, PICKUP + timedelta(days=3))

    assert breakdown.base_amount == Decimal("3000")
    assert breakdown.taxes == Decimal("540")
    assert breakdown.total_payable == Decimal("3540")
    assert breakdown.duration.days == 3
    assert breakdown.duration.hours == 72


def test_pricing_is_deterministic():
    first = compute_price(rate_card(), PICKUP, PICKUP + timedelta(days=3))
    second = compute_price(rate_card(), PICKUP, PICKUP + timedelta(days=3))
    assert first == second


def test_weekly_discount_applies_at_exactly_seven_days():
    card = rate_card(weekly_discount_percent=Decimal("10"))
    breakdown = compute_price(card, PICKUP, PICKUP + timedelta(days=7))
    assert breakdown.base_amount == Decimal("6300")


def test_six_days_ignores_weekly_discount():
    card = rate_card(weekly_discount_percent=Decimal("10"))
    breakdown = compute_price(card, PICKUP, PICKUP + timedelta(days=6))
    assert breakdown.base_amount == Decimal("6000")


def test_monthly_tier_wins_over_weekly():
    card = rate_card(
        weekly_discount_percent=Decimal("10"), monthly_discount_percent=Decimal("20")
    )
    breakdown = compute_price(card, PICKUP, PICKUP + timedelta(days=30))
    assert breakdown.base_amount == Decimal("24000")


def test_partial_hours_round_up():
    duration = compute_duration(PICKUP, PICKUP + timedelta(hours=25, minutes=1))
    assert duration.hours == 26
    assert duration.days == 2


def test_leftover_hours_billed_at_extra_hour_charge():
    card = rate_card(extra_hour_charge=Decimal("50"))
    duration = compute_duration(PICKUP, PICKUP + timedelta(hours=27))
    # 2 days at daily rate plus 3 leftover hours
    assert compute_base_amount(card, duration) == Decimal("2150")


def test_driver_surcharge_is_hourly():
    breakdown = compute_price(
        rate_card(), PICKUP, PICKUP + timedelta(days=1), BookingMode.WITH_DRIVER
    )
    assert breakdown.driver_amount == Decimal("2400")
    assert breakdown.taxes == Decimal("612")
    assert breakdown.total_payable == Decimal("4012")


def test_deposit_is_added_untaxed():
    card = rate_card(deposit_amount=Decimal("2000"))
    breakdown = compute_price(card, PICKUP, PICKUP + timedelta(days=3))
    assert breakdown.taxes == Decimal("540")
    assert breakdown.total_payable == Decimal("5540")


def test_percentage_promotion_is_capped():
    terms = promotion(discount_value=Decimal("50"), max_discount_amount=Decimal("500"))
    breakdown = compute_price(
        rate_card(), PICKUP, PICKUP + timedelta(days=3), promotion=terms, now=NOW
    )
    assert breakdown.discount == Decimal("500")
    assert breakdown.total_payable == Decimal("3040")
    assert breakdown.promotion_code == "SAVE10"


def test_flat_promotion():
    terms = promotion(discount_type=DiscountType.FLAT, discount_value=Decimal("300"))
    breakdown = compute_price(
        rate_card(), PICKUP, PICKUP + timedelta(days=3), promotion=terms, now=NOW
    )
    assert breakdown.discount == Decimal("300")
    assert breakdown.total_payable == Decimal("3240")


def test_total_never_goes_negative():
    terms = promotion(discount_type=DiscountType.FLAT, discount_value=Decimal("100000"))
    breakdown = compute_price(
        rate_card(), PICKUP, PICKUP + timedelta(days=1), promotion=terms, now=NOW
    )
    assert breakdown.total_payable == Decimal("0")


def test_expired_promotion_is_rejected():
    terms = promotion(valid_till=NOW - timedelta(hours=1))
    with pytest.raises(PromotionNotApplicableError):
        compute_price(rate_card(), PICKUP, PICKUP + timedelta(days=3), promotion=terms, now=NOW)


def test_promotion_minimum_amount():
    terms = promotion(min_booking_amount=Decimal("5000"))
    with pytest.raises(PromotionNotApplicableError):
        compute_price(rate_card(), PICKUP, PICKUP + timedelta(days=3), promotion=terms, now=NOW)


def test_promotion_restricted_to_city():
    terms = promotion(applicable_cities=["Mumbai"])
    with pytest.raises(PromotionNotApplicableError):
        compute_price(
            rate_card(),
            PICKUP,
            PICKUP + timedelta(days=3),
            promotion=terms,
            now=NOW,
            city="Pune",
        )


@pytest.mark.parametrize("dropoff", [PICKUP, PICKUP - timedelta(hours=1)])
def test_invalid_window(dropoff):
    with pytest.raises(InvalidWindowError):
        compute_price(rate_card(), PICKUP, dropoff)
