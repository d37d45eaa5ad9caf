import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from src.core.exceptions import AuthorizationError, ConcurrentModificationError
from src.models.reservation import Reservation
from src.models.vehicle import Vehicle
from src.utils.constants import UserRole

logger = logging.getLogger(__name__)


async def flush_changes(db: AsyncSession) -> None:
    try:
        await db.flush()
    except StaleDataError as exc:
        logger.info("Optimistic version check failed: %s", exc)
        raise ConcurrentModificationError() from exc


async def release_vehicle(db: AsyncSession, vehicle_id: int) -> None:
    """
    Bump the vehicle's booking version after a reservation leaves the active set.

    Any booking commit that read the old version will retry against the new
    calendar instead of committing on a stale view.
    """
    await db.execute(
        update(Vehicle)
        .where(Vehicle.id == vehicle_id)
        .values(booking_version=Vehicle.booking_version + 1)
        .execution_options(synchronize_session=False)
    )


def can_view(reservation: Reservation, principal) -> bool:
    if principal.role == UserRole.ADMIN:
        return True
    if principal.role == UserRole.VENDOR:
        return reservation.vendor_id == principal.vendor_id
    return reservation.customer_id == principal.id


def ensure_can_view(reservation: Reservation, principal) -> None:
    if not can_view(reservation, principal):
        raise AuthorizationError("Access denied")


def ensure_can_manage(reservation: Reservation, principal) -> None:
    if principal.role == UserRole.ADMIN:
        return
    if principal.role == UserRole.VENDOR and reservation.vendor_id == principal.vendor_id:
        return
    raise AuthorizationError("Access denied")
