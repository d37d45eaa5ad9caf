from fastapi import APIRouter

from src.api.v1 import bookings, events, payments, promotions, vehicles

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(bookings.router)
api_router.include_router(payments.router)
api_router.include_router(vehicles.router)
api_router.include_router(promotions.router)
api_router.include_router(events.router)
