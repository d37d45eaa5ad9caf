from fastapi import APIRouter, Query

from src.core.dependencies import (
    DB,
    AdminPrincipal,
    Config,
    CurrentPrincipal,
    CustomerPrincipal,
    Pagination,
    Payments,
    VendorOrAdmin,
)
from src.schemas.reservation import (
    AvailabilityRequest,
    AvailabilityResponse,
    ExpireUnpaidResponse,
    InvoiceResponse,
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
from src.services import reservation as reservation_service
from src.utils.constants import ReservationStatus, UserRole

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/price", response_model=PriceQuoteResponse)
async def quote_price(
    db: DB, principal: CurrentPrincipal, settings: Config, data: PriceQuoteRequest
):
    customer_id = principal.id if principal.role == UserRole.CUSTOMER else None
    return await reservation_service.quote_price(db, data, customer_id, settings)


@router.post("/availability", response_model=AvailabilityResponse)
async def check_availability(db: DB, principal: CurrentPrincipal, data: AvailabilityRequest):
    return await reservation_service.check_availability(db, data)


@router.post("", response_model=ReservationCreateResponse, status_code=201)
async def create_reservation(
    db: DB, customer: CustomerPrincipal, settings: Config, data: ReservationCreate
):
    return await reservation_service.create_reservation(db, customer.id, data, settings)


@router.get("", response_model=ReservationListResponse)
async def list_reservations(
    db: DB,
    principal: CurrentPrincipal,
    pagination: Pagination,
    status: ReservationStatus | None = Query(None),
):
    return await reservation_service.get_reservations(
        db, principal, pagination.page, pagination.limit, status
    )


@router.post("/expire-unpaid", response_model=ExpireUnpaidResponse)
async def expire_unpaid(db: DB, admin: AdminPrincipal, settings: Config):
    return await reservation_service.expire_unpaid_reservations(db, settings=settings)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(db: DB, principal: CurrentPrincipal, reservation_id: int):
    return await reservation_service.get_reservation_by_id(db, reservation_id, principal)


@router.get("/{reservation_id}/invoice", response_model=InvoiceResponse)
async def get_invoice(db: DB, principal: CurrentPrincipal, reservation_id: int):
    return await reservation_service.get_invoice(db, reservation_id, principal)


@router.post("/{reservation_id}/cancel", response_model=ReservationCancelResponse)
async def cancel_reservation(
    db: DB,
    principal: CurrentPrincipal,
    provider: Payments,
    settings: Config,
    reservation_id: int,
    data: ReservationCancelRequest | None = None,
):
    return await reservation_service.cancel_reservation(
        db, reservation_id, principal, data, provider, settings
    )


@router.post("/{reservation_id}/complete", response_model=SettlementResponse)
async def complete_reservation(
    db: DB,
    principal: VendorOrAdmin,
    reservation_id: int,
    data: ReservationCompleteRequest | None = None,
):
    return await reservation_service.complete_reservation(db, reservation_id, principal, data)


@router.patch("/{reservation_id}/status", response_model=ReservationResponse)
async def update_status(
    db: DB,
    principal: VendorOrAdmin,
    provider: Payments,
    settings: Config,
    reservation_id: int,
    data: ReservationStatusUpdate,
):
    return await reservation_service.update_status(
        db, reservation_id, principal, data, provider, settings
    )


@router.post("/{reservation_id}/refund", response_model=RefundResponse)
async def refund_reservation(
    db: DB,
    principal: VendorOrAdmin,
    provider: Payments,
    reservation_id: int,
    data: RefundRequest | None = None,
):
    return await reservation_service.refund_reservation(
        db, reservation_id, principal, data, provider
    )
