from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.core.exceptions import NotFoundError, ValidationError
from src.models.reservation import Reservation
from src.models.vehicle import AvailabilityBlock, Vehicle
from src.schemas.common import as_utc
from src.utils.constants import ACTIVE_RESERVATION_STATUSES
from src.utils.retry import retry_read


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str | None = None
    conflicting_reservation_id: int | None = None
    conflicting_block_id: int | None = None


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return as_utc(start_a) < as_utc(end_b) and as_utc(end_a) > as_utc(start_b)


async def find_conflicting_reservation(
    db: AsyncSession,
    vehicle_id: int,
    start: datetime,
    end: datetime,
    exclude_reservation_id: int | None = None,
) -> Reservation | None:
    query = select(Reservation).where(
        Reservation.vehicle_id == vehicle_id,
        Reservation.status.in_(list(ACTIVE_RESERVATION_STATUSES)),
        Reservation.pickup_time < as_utc(end),
        Reservation.dropoff_time > as_utc(start),
    )
    if exclude_reservation_id is not None:
        query = query.where(Reservation.id != exclude_reservation_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def find_conflicting_block(
    db: AsyncSession, vehicle_id: int, start: datetime, end: datetime
) -> AvailabilityBlock | None:
    result = await db.execute(
        select(AvailabilityBlock)
        .where(
            AvailabilityBlock.vehicle_id == vehicle_id,
            AvailabilityBlock.start_time < as_utc(end),
            AvailabilityBlock.end_time > as_utc(start),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def evaluate(
    db: AsyncSession, vehicle_id: int, start: datetime, end: datetime
) -> AvailabilityResult:
    block = await find_conflicting_block(db, vehicle_id, start, end)
    if block is not None:
        reason = block.reason or "blocked by vendor"
        return AvailabilityResult(
            available=False,
            reason=f"Vehicle is unavailable: {reason}",
            conflicting_block_id=block.id,
        )

    reservation = await find_conflicting_reservation(db, vehicle_id, start, end)
    if reservation is not None:
        return AvailabilityResult(
            available=False,
            reason="Vehicle is already booked for the selected dates",
            conflicting_reservation_id=reservation.id,
        )

    return AvailabilityResult(available=True, reason="Vehicle is available for the selected dates")


async def check_availability(
    db: AsyncSession, vehicle_id: int, start: datetime, end: datetime
) -> AvailabilityResult:
    """
    Advisory availability check.

    The answer can be stale by the time the caller acts on it; booking
    creation repeats the conflict check inside its compare-and-set commit.
    """
    if as_utc(end) <= as_utc(start):
        raise ValidationError("Dropoff must be after pickup")

    settings = get_settings()

    async def _read() -> AvailabilityResult:
        vehicle = await db.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found")
        if not vehicle.is_active:
            return AvailabilityResult(available=False, reason="Vehicle is not active")
        return await evaluate(db, vehicle_id, start, end)

    return await retry_read(_read, settings.storage_read_retries)


async def is_available(db: AsyncSession, vehicle_id: int, start: datetime, end: datetime) -> bool:
    result = await check_availability(db, vehicle_id, start, end)
    return result.available
