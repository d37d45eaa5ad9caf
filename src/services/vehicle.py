import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import AuthorizationError, InvalidWindowError, NotFoundError
from src.models.vehicle import AvailabilityBlock, Vehicle
from src.schemas.vehicle import (
    AvailabilityBlockCreate,
    AvailabilityBlockResponse,
    VehicleCreate,
    VehicleResponse,
)
from src.services.common import release_vehicle
from src.utils.constants import UserRole

logger = logging.getLogger(__name__)


def _ensure_owner(vehicle: Vehicle, principal) -> None:
    if principal.role == UserRole.ADMIN:
        return
    if principal.role == UserRole.VENDOR and vehicle.vendor_id == principal.vendor_id:
        return
    raise AuthorizationError("Access denied")


async def get_vehicle_by_id(db: AsyncSession, vehicle_id: int) -> VehicleResponse:
    vehicle = await db.get(Vehicle, vehicle_id, populate_existing=True)
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    return VehicleResponse.model_validate(vehicle)


async def create_vehicle(db: AsyncSession, principal, data: VehicleCreate) -> VehicleResponse:
    values = data.model_dump(exclude={"vendor_id"})
    if principal.role == UserRole.VENDOR:
        vendor_id = principal.vendor_id
    elif data.vendor_id is not None:
        vendor_id = data.vendor_id
    else:
        raise AuthorizationError("Admins must specify the vendor owning the vehicle")

    vehicle = Vehicle(**values, vendor_id=vendor_id, is_active=True, booking_version=0)
    db.add(vehicle)
    await db.flush()
    await db.refresh(vehicle)
    logger.info("Vehicle %s created for vendor %s", vehicle.id, vendor_id)
    return VehicleResponse.model_validate(vehicle)


async def get_blocks(db: AsyncSession, vehicle_id: int) -> list[AvailabilityBlockResponse]:
    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    result = await db.execute(
        select(AvailabilityBlock)
        .where(AvailabilityBlock.vehicle_id == vehicle_id)
        .order_by(AvailabilityBlock.start_time)
    )
    return [AvailabilityBlockResponse.model_validate(b) for b in result.scalars().all()]


async def add_block(
    db: AsyncSession, vehicle_id: int, principal, data: AvailabilityBlockCreate
) -> AvailabilityBlockResponse:
    if data.end_time <= data.start_time:
        raise InvalidWindowError("Block end must be after its start")

    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    _ensure_owner(vehicle, principal)

    block = AvailabilityBlock(
        vehicle_id=vehicle.id,
        start_time=data.start_time,
        end_time=data.end_time,
        reason=data.reason,
    )
    db.add(block)
    await db.flush()
    # Bookings committing against the old calendar must re-check
    await release_vehicle(db, vehicle.id)
    await db.refresh(block)
    logger.info("Vehicle %s blocked %s - %s", vehicle.id, data.start_time, data.end_time)
    return AvailabilityBlockResponse.model_validate(block)


async def remove_block(db: AsyncSession, vehicle_id: int, block_id: int, principal) -> None:
    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    _ensure_owner(vehicle, principal)

    block = await db.get(AvailabilityBlock, block_id)
    if not block or block.vehicle_id != vehicle.id:
        raise NotFoundError("Availability block not found")

    await db.delete(block)
    await db.flush()
    await release_vehicle(db, vehicle.id)
    logger.info("Vehicle %s block %s removed", vehicle.id, block_id)
