import json
from datetime import UTC, datetime, timedelta

import pytest
from conftest import add_vehicle
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.payment import LedgerTransaction, Payment, Refund
from src.utils.constants import PaymentStatus, RefundStatus, TransactionType


async def book(
    client: AsyncClient, headers: dict, vehicle_id: int, start_in_hours: float = 72
) -> dict:
    start = (datetime.now(UTC) + timedelta(hours=start_in_hours)).replace(microsecond=0)
    response = await client.post(
        "/api/v1/bookings",
        json={
            "vehicle_id": vehicle_id,
            "pickup_time": start.isoformat(),
            "dropoff_time": (start + timedelta(days=3)).isoformat(),
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["reservation"]


async def pay(
    client: AsyncClient, headers: dict, provider, reservation_id: int, payment_id: str = "pay_1"
) -> dict:
    response = await client.post(
        "/api/v1/payments/orders", json={"reservation_id": reservation_id}, headers=headers
    )
    assert response.status_code == 201, response.text
    order = response.json()

    response = await client.post(
        "/api/v1/payments/verify",
        json={
            "payment_id": order["payment_id"],
            "gateway_order_id": order["order_id"],
            "gateway_payment_id": payment_id,
            "signature": provider.signature_for(order["order_id"], payment_id),
        },
        headers=headers,
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_order(
    client: AsyncClient, customer_headers: dict, payment_provider, vehicle_id: int
):
    reservation = await book(client, customer_headers, vehicle_id)

    response = await client.post(
        "/api/v1/payments/orders",
        json={"reservation_id": reservation["id"]},
        headers=customer_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["amount"] == 3540
    assert data["currency"] == "INR"
    assert data["key_id"] == payment_provider.key_id
    assert payment_provider.orders[0].order_id == data["order_id"]


@pytest.mark.asyncio
async def test_order_only_for_own_booking(
    client: AsyncClient,
    customer_headers: dict,
    other_customer_headers: dict,
    vehicle_id: int,
):
    reservation = await book(client, customer_headers, vehicle_id)
    response = await client.post(
        "/api/v1/payments/orders",
        json={"reservation_id": reservation["id"]},
        headers=other_customer_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_verified_payment_confirms_booking(
    client: AsyncClient,
    db_session: AsyncSession,
    customer_headers: dict,
    payment_provider,
    vehicle_id: int,
):
    reservation = await book(client, customer_headers, vehicle_id)
    result = await pay(client, customer_headers, payment_provider, reservation["id"])

    assert result["reservation"]["status"] == "confirmed"
    assert result["payment"]["status"] == "success"
    assert result["payment"]["gateway_payment_id"] == "pay_1"

    ledger = await db_session.execute(
        select(LedgerTransaction.type, LedgerTransaction.amount).where(
            LedgerTransaction.reservation_id == reservation["id"]
        )
    )
    assert [(t, float(a)) for t, a in ledger.all()] == [(TransactionType.PAYMENT, 3540.0)]

    # A second order is refused once the booking is paid
    response = await client.post(
        "/api/v1/payments/orders",
        json={"reservation_id": reservation["id"]},
        headers=customer_headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_bad_signature_rejected(
    client: AsyncClient, customer_headers: dict, payment_provider, vehicle_id: int
):
    reservation = await book(client, customer_headers, vehicle_id)
    response = await client.post(
        "/api/v1/payments/orders",
        json={"reservation_id": reservation["id"]},
        headers=customer_headers,
    )
    order = response.json()

    response = await client.post(
        "/api/v1/payments/verify",
        json={
            "payment_id": order["payment_id"],
            "gateway_order_id": order["order_id"],
            "gateway_payment_id": "pay_1",
            "signature": "forged",
        },
        headers=customer_headers,
    )
    assert response.status_code == 422

    response = await client.get(f"/api/v1/bookings/{reservation['id']}", headers=customer_headers)
    assert response.json()["status"] == "pending_payment"


@pytest.mark.asyncio
async def test_failed_capture_keeps_booking_unpaid(
    client: AsyncClient, customer_headers: dict, payment_provider, vehicle_id: int
):
    payment_provider.payment_statuses["pay_fail"] = "failed"
    reservation = await book(client, customer_headers, vehicle_id)

    result = await pay(
        client, customer_headers, payment_provider, reservation["id"], payment_id="pay_fail"
    )
    assert result["payment"]["status"] == "failed"
    assert result["reservation"]["status"] == "pending_payment"


@pytest.mark.asyncio
async def test_cancel_paid_booking_refunds_through_gateway(
    client: AsyncClient,
    db_session: AsyncSession,
    customer_headers: dict,
    payment_provider,
    vehicle_id: int,
):
    reservation = await book(client, customer_headers, vehicle_id, start_in_hours=30)
    await pay(client, customer_headers, payment_provider, reservation["id"])

    response = await client.post(
        f"/api/v1/bookings/{reservation['id']}/cancel", headers=customer_headers
    )
    assert response.status_code == 200
    data = response.json()
    # 25% of the 3000 base amount
    assert data["cancellation_fee"] == 750
    assert data["refund_amount"] == 2790
    assert data["refund"]["status"] == "completed"
    assert data["reservation"]["status"] == "refunded"
    assert payment_provider.refunds[0][0] == "pay_1"

    ledger = await db_session.execute(
        select(LedgerTransaction.amount).where(
            LedgerTransaction.reservation_id == reservation["id"],
            LedgerTransaction.type == TransactionType.REFUND,
        )
    )
    assert [float(a) for a in ledger.scalars().all()] == [-2790.0]


@pytest.mark.asyncio
async def test_refund_failure_does_not_block_cancellation(
    client: AsyncClient,
    customer_headers: dict,
    vendor_headers: dict,
    payment_provider,
    vehicle_id: int,
):
    reservation = await book(client, customer_headers, vehicle_id)
    await pay(client, customer_headers, payment_provider, reservation["id"])
    payment_provider.fail_refunds = True

    response = await client.post(
        f"/api/v1/bookings/{reservation['id']}/cancel", headers=customer_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["reservation"]["status"] == "cancelled"
    assert data["refund"]["status"] == "pending"
    assert data["refund"]["last_error"] == "Refund declined by gateway"

    # Retrying while the gateway still fails surfaces its message
    url = f"/api/v1/bookings/{reservation['id']}/refund"
    response = await client.post(url, headers=vendor_headers)
    assert response.status_code == 502
    assert response.json()["detail"] == "Refund declined by gateway"

    payment_provider.fail_refunds = False
    payment_provider.refund_status = "pending"
    response = await client.post(url, headers=vendor_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "processing"
    assert response.json()["amount"] == 3540


@pytest.mark.asyncio
async def test_deposit_refund_after_completion_via_webhook(
    client: AsyncClient,
    db_session: AsyncSession,
    customer_headers: dict,
    vendor_headers: dict,
    payment_provider,
):
    vehicle_id = await add_vehicle(db_session, deposit_amount=2000)
    reservation = await book(client, customer_headers, vehicle_id)
    assert reservation["total_payable"] == 5540
    await pay(client, customer_headers, payment_provider, reservation["id"])

    url = f"/api/v1/bookings/{reservation['id']}"
    await client.patch(f"{url}/status", json={"status": "in_progress"}, headers=vendor_headers)
    response = await client.post(f"{url}/complete", headers=vendor_headers)
    assert response.json()["deposit_refund_amount"] == 2000
    assert response.json()["reservation"]["deposit_refund_status"] == "pending"

    payment_provider.refund_status = "pending"
    response = await client.post(f"{url}/refund", headers=vendor_headers)
    assert response.status_code == 200
    refund = response.json()
    assert refund["amount"] == 2000
    assert refund["status"] == "processing"

    body = json.dumps(
        {
            "event": "refund.processed",
            "payload": {"refund": {"entity": {"id": refund["gateway_refund_id"]}}},
        }
    ).encode()
    response = await client.post(
        "/api/v1/payments/webhook",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Razorpay-Signature": payment_provider.webhook_signature_for(body),
        },
    )
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    response = await client.get(url, headers=customer_headers)
    assert response.json()["status"] == "refunded"
    assert response.json()["deposit_refund_status"] == "completed"

    result = await db_session.execute(
        select(Refund.status).where(Refund.gateway_refund_id == refund["gateway_refund_id"])
    )
    assert result.scalar_one() == RefundStatus.COMPLETED


@pytest.mark.asyncio
async def test_webhook_capture_confirms_booking(
    client: AsyncClient,
    db_session: AsyncSession,
    customer_headers: dict,
    payment_provider,
    vehicle_id: int,
):
    reservation = await book(client, customer_headers, vehicle_id)
    response = await client.post(
        "/api/v1/payments/orders",
        json={"reservation_id": reservation["id"]},
        headers=customer_headers,
    )
    order_id = response.json()["order_id"]

    body = json.dumps(
        {
            "event": "payment.captured",
            "payload": {
                "payment": {"entity": {"id": "pay_hook", "order_id": order_id, "method": "upi"}}
            },
        }
    ).encode()
    signature = payment_provider.webhook_signature_for(body)
    for _ in range(2):
        response = await client.post(
            "/api/v1/payments/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Razorpay-Signature": signature},
        )
        assert response.status_code == 200

    response = await client.get(f"/api/v1/bookings/{reservation['id']}", headers=customer_headers)
    assert response.json()["status"] == "confirmed"

    # Redelivered webhook does not book the money twice
    result = await db_session.execute(
        select(LedgerTransaction.id).where(LedgerTransaction.reservation_id == reservation["id"])
    )
    assert len(result.scalars().all()) == 1

    result = await db_session.execute(
        select(Payment.status, Payment.payment_method).where(Payment.gateway_order_id == order_id)
    )
    assert result.one() == (PaymentStatus.SUCCESS, "upi")


@pytest.mark.asyncio
async def test_webhook_signature_required(client: AsyncClient):
    response = await client.post(
        "/api/v1/payments/webhook",
        content=b'{"event": "payment.captured", "payload": {}}',
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": "nope"},
    )
    assert response.status_code == 401
