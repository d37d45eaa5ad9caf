"""
Payment provider client.

The gateway speaks a Razorpay-compatible REST API: amounts travel in the
smallest currency unit, requests use HTTP basic auth with the key pair, and
checkout signatures are HMAC-SHA256 over ``order_id|payment_id``.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx

from src.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    order_id: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class GatewayPayment:
    payment_id: str
    status: str
    method: str | None = None

    @property
    def captured(self) -> bool:
        return self.status == "captured"


@dataclass(frozen=True)
class GatewayRefund:
    refund_id: str
    status: str

    @property
    def processed(self) -> bool:
        return self.status == "processed"


class PaymentProvider(Protocol):
    key_id: str

    async def create_order(
        self, amount: Decimal, currency: str, reference: str
    ) -> GatewayOrder: ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool: ...

    async def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    async def refund(self, payment_id: str, amount: Decimal) -> GatewayRefund: ...


def sign(secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


class GatewayPaymentProvider:
    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> "GatewayPaymentProvider":
        return cls(
            base_url=settings.payment_gateway_url,
            key_id=settings.payment_key_id,
            key_secret=settings.payment_key_secret,
            webhook_secret=settings.payment_webhook_secret,
            timeout=settings.payment_timeout_seconds,
        )

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self._key_secret),
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(method, path, json=json)
            except httpx.HTTPError as exc:
                logger.error("Payment gateway %s %s failed: %s", method, path, exc)
                raise PaymentProviderError(f"Payment gateway unreachable: {exc}") from exc

        if response.is_error:
            try:
                message = response.json().get("error", {}).get("description")
            except ValueError:
                message = None
            message = message or f"Payment gateway returned {response.status_code}"
            logger.error("Payment gateway %s %s rejected: %s", method, path, message)
            raise PaymentProviderError(message)
        return response.json()

    async def create_order(self, amount: Decimal, currency: str, reference: str) -> GatewayOrder:
        data = await self._request(
            "POST",
            "/v1/orders",
            json={
                "amount": to_minor_units(amount),
                "currency": currency,
                "receipt": reference,
                "payment_capture": 1,
            },
        )
        return GatewayOrder(
            order_id=data["id"],
            amount=Decimal(data["amount"]) / 100,
            currency=data.get("currency", currency),
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = sign(self._key_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        if not self._webhook_secret or not signature:
            return False
        expected = hmac.new(self._webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = await self._request("GET", f"/v1/payments/{payment_id}")
        return GatewayPayment(
            payment_id=data["id"], status=data.get("status", ""), method=data.get("method")
        )

    async def refund(self, payment_id: str, amount: Decimal) -> GatewayRefund:
        data = await self._request(
            "POST",
            f"/v1/payments/{payment_id}/refund",
            json={"amount": to_minor_units(amount), "speed": "normal"},
        )
        return GatewayRefund(refund_id=data["id"], status=data.get("status", "pending"))
