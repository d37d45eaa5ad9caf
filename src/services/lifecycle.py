from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from src.core.exceptions import InvalidStateTransitionError, ValidationError
from src.services.pricing import ZERO, to_decimal
from src.utils.constants import (
    ACTIVE_RESERVATION_STATUSES,
    CancelledBy,
    DepositRefundStatus,
    ReservationStatus,
)

S = ReservationStatus

TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    S.PENDING_PAYMENT: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset(
        {S.CHECKED_OUT, S.IN_PROGRESS, S.CANCELLED, S.NO_SHOW, S.DRIVER_UNAVAILABLE}
    ),
    S.CHECKED_OUT: frozenset({S.IN_PROGRESS}),
    S.IN_PROGRESS: frozenset({S.COMPLETED}),
    # Only a completed refund leaves these two
    S.COMPLETED: frozenset({S.REFUNDED}),
    S.CANCELLED: frozenset({S.REFUNDED}),
    S.NO_SHOW: frozenset(),
    S.DRIVER_UNAVAILABLE: frozenset(),
    S.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    {S.COMPLETED, S.CANCELLED, S.NO_SHOW, S.DRIVER_UNAVAILABLE, S.REFUNDED}
)
CANCELLABLE_STATUSES = frozenset({S.PENDING_PAYMENT, S.CONFIRMED})


@dataclass(frozen=True)
class CancellationPolicy:
    full_window_hours: int = 24
    full_fee_ratio: Decimal = Decimal("0.5")
    partial_window_hours: int = 48
    partial_fee_ratio: Decimal = Decimal("0.25")

    @classmethod
    def from_settings(cls, settings) -> "CancellationPolicy":
        return cls(
            full_window_hours=settings.cancellation_full_window_hours,
            full_fee_ratio=to_decimal(settings.cancellation_full_fee_ratio),
            partial_window_hours=settings.cancellation_partial_window_hours,
            partial_fee_ratio=to_decimal(settings.cancellation_partial_fee_ratio),
        )


@dataclass(frozen=True)
class CancellationOutcome:
    cancellation_fee: Decimal
    refund_amount: Decimal
    hours_until_pickup: float


@dataclass(frozen=True)
class SettlementOutcome:
    final_amount: Decimal
    adjustment: Decimal
    deposit_refund_amount: Decimal


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_active(status: ReservationStatus) -> bool:
    return ReservationStatus(status) in ACTIVE_RESERVATION_STATUSES


def is_terminal(status: ReservationStatus) -> bool:
    return ReservationStatus(status) in TERMINAL_STATUSES


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return ReservationStatus(target) in TRANSITIONS[ReservationStatus(current)]


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    current = ReservationStatus(current)
    target = ReservationStatus(target)
    if not can_transition(current, target):
        raise InvalidStateTransitionError(current.value, target.value)


def cancellation_fee(
    base_amount: Decimal,
    pickup_time: datetime,
    now: datetime,
    policy: CancellationPolicy = CancellationPolicy(),
) -> tuple[Decimal, float]:
    hours_until_pickup = (_as_utc(pickup_time) - _as_utc(now)).total_seconds() / 3600
    base_amount = to_decimal(base_amount)
    if hours_until_pickup < policy.full_window_hours:
        fee = base_amount * policy.full_fee_ratio
    elif hours_until_pickup < policy.partial_window_hours:
        fee = base_amount * policy.partial_fee_ratio
    else:
        fee = ZERO
    return fee, hours_until_pickup


def transition(reservation, target: ReservationStatus) -> ReservationStatus:
    previous = ReservationStatus(reservation.status)
    ensure_transition(previous, target)
    reservation.status = ReservationStatus(target)
    return previous


def cancel(
    reservation,
    cancelled_by: CancelledBy,
    now: datetime,
    reason: str | None = None,
    waive_fee: bool = False,
    policy: CancellationPolicy = CancellationPolicy(),
) -> CancellationOutcome:
    current = ReservationStatus(reservation.status)
    if current not in CANCELLABLE_STATUSES:
        raise InvalidStateTransitionError(
            current.value,
            S.CANCELLED.value,
            detail=f"Booking cannot be cancelled in {current.value} status",
        )

    fee, hours_until_pickup = cancellation_fee(
        reservation.base_amount, reservation.pickup_time, now, policy
    )
    if waive_fee:
        fee = ZERO
    refund_amount = max(ZERO, to_decimal(reservation.total_payable) - fee)

    reservation.status = S.CANCELLED
    reservation.cancelled_by = CancelledBy(cancelled_by)
    reservation.cancelled_at = now
    reservation.cancellation_fee = fee
    reservation.cancellation_reason = reason

    return CancellationOutcome(
        cancellation_fee=fee,
        refund_amount=refund_amount,
        hours_until_pickup=hours_until_pickup,
    )


def complete(
    reservation,
    now: datetime,
    late_fee=None,
    damage_deduction=None,
    notes: str | None = None,
) -> SettlementOutcome:
    ensure_transition(reservation.status, S.COMPLETED)

    late_fee = to_decimal(late_fee)
    damage_deduction = to_decimal(damage_deduction)
    if late_fee < 0 or damage_deduction < 0:
        raise ValidationError("Penalties cannot be negative")

    total = to_decimal(reservation.total_payable)
    final_amount = total + late_fee + damage_deduction

    reservation.status = S.COMPLETED
    reservation.completed_at = now
    reservation.late_fee = late_fee
    reservation.damage_deduction = damage_deduction
    reservation.penalty_notes = notes

    deposit = to_decimal(reservation.deposit)
    if deposit > 0:
        reservation.deposit_refund_status = DepositRefundStatus.PENDING
        reservation.deposit_refund_amount = deposit

    return SettlementOutcome(
        final_amount=final_amount,
        adjustment=final_amount - total,
        deposit_refund_amount=deposit,
    )


def mark_refunded(reservation) -> bool:
    current = ReservationStatus(reservation.status)
    if not can_transition(current, S.REFUNDED):
        return False
    reservation.status = S.REFUNDED
    return True
