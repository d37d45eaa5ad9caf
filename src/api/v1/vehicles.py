from fastapi import APIRouter

from src.core.dependencies import DB, CurrentPrincipal, VendorOrAdmin
from src.schemas.common import MessageResponse
from src.schemas.vehicle import (
    AvailabilityBlockCreate,
    AvailabilityBlockResponse,
    VehicleCreate,
    VehicleResponse,
)
from src.services import vehicle as vehicle_service

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


@router.post("", response_model=VehicleResponse, status_code=201)
async def create_vehicle(db: DB, principal: VendorOrAdmin, data: VehicleCreate):
    return await vehicle_service.create_vehicle(db, principal, data)


@router.get("/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(db: DB, principal: CurrentPrincipal, vehicle_id: int):
    return await vehicle_service.get_vehicle_by_id(db, vehicle_id)


@router.get("/{vehicle_id}/blocks", response_model=list[AvailabilityBlockResponse])
async def list_blocks(db: DB, principal: CurrentPrincipal, vehicle_id: int):
    return await vehicle_service.get_blocks(db, vehicle_id)


@router.post(
    "/{vehicle_id}/blocks", response_model=AvailabilityBlockResponse, status_code=201
)
async def add_block(
    db: DB, principal: VendorOrAdmin, vehicle_id: int, data: AvailabilityBlockCreate
):
    return await vehicle_service.add_block(db, vehicle_id, principal, data)


@router.delete("/{vehicle_id}/blocks/{block_id}", response_model=MessageResponse)
async def remove_block(db: DB, principal: VendorOrAdmin, vehicle_id: int, block_id: int):
    await vehicle_service.remove_block(db, vehicle_id, block_id, principal)
    return MessageResponse(message="Availability block removed")
