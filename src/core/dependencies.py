from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Query
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, get_settings
from src.core.exceptions import AuthenticationError, AuthorizationError
from src.core.security import decode_token
from src.database import async_session_maker
from src.services.notifications import LoggingNotificationSink, NotificationSink
from src.services.payment_gateway import GatewayPaymentProvider, PaymentProvider
from src.utils.constants import UserRole

# Tokens are minted by the identity provider; this service only reads them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


@dataclass(frozen=True)
class Principal:
    id: int
    role: UserRole
    vendor_id: int | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_current_principal(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    payload = decode_token(token)
    if payload is None:
        raise AuthenticationError()

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    subject = payload.get("sub")
    if subject is None:
        raise AuthenticationError()

    try:
        role = UserRole(payload.get("role", UserRole.CUSTOMER.value))
        vendor_id = payload.get("vendor_id")
        return Principal(
            id=int(subject),
            role=role,
            vendor_id=int(vendor_id) if vendor_id is not None else None,
        )
    except ValueError:
        raise AuthenticationError("Malformed token claims")


async def get_current_customer(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    if principal.role != UserRole.CUSTOMER:
        raise AuthorizationError("Customer access required")
    return principal


async def get_current_vendor_or_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    if principal.role not in [UserRole.VENDOR, UserRole.ADMIN]:
        raise AuthorizationError("Vendor or admin access required")
    if principal.role == UserRole.VENDOR and principal.vendor_id is None:
        raise AuthorizationError("Vendor profile not found")
    return principal


async def get_current_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    if principal.role != UserRole.ADMIN:
        raise AuthorizationError("Admin access required")
    return principal


_notification_sink = LoggingNotificationSink()


def get_notification_sink() -> NotificationSink:
    return _notification_sink


def get_payment_provider(
    settings: Annotated[Settings, Depends(get_settings)],
) -> PaymentProvider:
    return GatewayPaymentProvider.from_settings(settings)


class PaginationParams:
    def __init__(
        self,
        page: Annotated[int, Query(ge=1)] = 1,
        limit: Annotated[int, Query(ge=1, le=100)] = 20,
    ):
        self.page = page
        self.limit = limit
        self.offset = (page - 1) * limit


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Config = Annotated[Settings, Depends(get_settings)]
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
CustomerPrincipal = Annotated[Principal, Depends(get_current_customer)]
VendorOrAdmin = Annotated[Principal, Depends(get_current_vendor_or_admin)]
AdminPrincipal = Annotated[Principal, Depends(get_current_admin)]
Payments = Annotated[PaymentProvider, Depends(get_payment_provider)]
Notifier = Annotated[NotificationSink, Depends(get_notification_sink)]
Pagination = Annotated[PaginationParams, Depends()]
