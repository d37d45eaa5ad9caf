import hashlib
import hmac
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.dependencies import get_db, get_payment_provider
from src.core.exceptions import PaymentProviderError
from src.core.security import create_access_token
from src.database import Base
from src.main import app
from src.models.vehicle import Vehicle
from src.services.payment_gateway import GatewayOrder, GatewayPayment, GatewayRefund, sign
from src.utils.constants import VehicleType

TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_rental.db"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session_maker = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

CUSTOMER_ID = 101
OTHER_CUSTOMER_ID = 102
VENDOR_USER_ID = 201
VENDOR_ID = 7
OTHER_VENDOR_ID = 8
ADMIN_ID = 1


class FakePaymentProvider:
    """In-memory stand-in for the payment gateway."""

    key_id = "rzp_test_key"
    key_secret = "test-key-secret"
    webhook_secret = "test-webhook-secret"

    def __init__(self):
        self.orders: list[GatewayOrder] = []
        self.refunds: list[tuple[str, Decimal]] = []
        self.payment_statuses: dict[str, str] = {}
        self.refund_status = "processed"
        self.fail_refunds = False

    async def create_order(self, amount: Decimal, currency: str, reference: str) -> GatewayOrder:
        order = GatewayOrder(
            order_id=f"order_{len(self.orders) + 1}", amount=amount, currency=currency
        )
        self.orders.append(order)
        return order

    def signature_for(self, order_id: str, payment_id: str) -> str:
        return sign(self.key_secret, order_id, payment_id)

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(self.signature_for(order_id, payment_id), signature)

    def webhook_signature_for(self, body: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        return hmac.compare_digest(self.webhook_signature_for(body), signature)

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        status = self.payment_statuses.get(payment_id, "captured")
        return GatewayPayment(payment_id=payment_id, status=status, method="card")

    async def refund(self, payment_id: str, amount: Decimal) -> GatewayRefund:
        if self.fail_refunds:
            raise PaymentProviderError("Refund declined by gateway")
        self.refunds.append((payment_id, amount))
        return GatewayRefund(refund_id=f"rfnd_{len(self.refunds)}", status=self.refund_status)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session_maker() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def payment_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession, payment_provider: FakePaymentProvider
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def bearer(subject: int, role: str, vendor_id: int | None = None) -> dict[str, str]:
    claims = {"sub": str(subject), "role": role}
    if vendor_id is not None:
        claims["vendor_id"] = vendor_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def customer_headers() -> dict[str, str]:
    return bearer(CUSTOMER_ID, "customer")


@pytest.fixture
def other_customer_headers() -> dict[str, str]:
    return bearer(OTHER_CUSTOMER_ID, "customer")


@pytest.fixture
def vendor_headers() -> dict[str, str]:
    return bearer(VENDOR_USER_ID, "vendor", VENDOR_ID)


@pytest.fixture
def other_vendor_headers() -> dict[str, str]:
    return bearer(VENDOR_USER_ID + 1, "vendor", OTHER_VENDOR_ID)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return bearer(ADMIN_ID, "admin")


async def add_vehicle(db_session: AsyncSession, **overrides) -> int:
    values = {
        "vendor_id": VENDOR_ID,
        "title": "Swift Dzire",
        "vehicle_type": VehicleType.CAR,
        "city": "Pune",
        "daily_rate": 1000,
        "weekly_discount_percent": 0,
        "monthly_discount_percent": 0,
        "extra_hour_charge": 0,
        "deposit_amount": 0,
        "is_active": True,
        "booking_version": 0,
    }
    values.update(overrides)
    vehicle = Vehicle(**values)
    db_session.add(vehicle)
    await db_session.commit()
    return vehicle.id


@pytest_asyncio.fixture
async def vehicle_id(db_session: AsyncSession) -> int:
    return await add_vehicle(db_session)
