from __future__ import annotations

import base64
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

from config.settings import ConfigurationError, Settings


logger = logging.getLogger(__name__)

X402_VERSION = 1
PAYMENT_HEADER = "x-payment"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
ASSET_DECIMALS = 6


class PaymentRequired(Exception):
    def __init__(self, error: str, requirements: Dict[str, Any]) -> None:
        super().__init__(error)
        self.error = error
        self.requirements = requirements


def to_atomic_amount(price: str, decimals: int = ASSET_DECIMALS) -> str:
    """Convert a price like ``$0.01`` to integer asset units (``10000``)."""
    try:
        amount = Decimal(price.strip().lstrip("$"))
    except (InvalidOperation, AttributeError) as exc:
        raise ConfigurationError(f"Invalid DEFAULT_PRICE: {price!r}") from exc
    if amount < 0:
        raise ConfigurationError(f"Invalid DEFAULT_PRICE: {price!r}")
    return str(int(amount.scaleb(decimals)))


class Paywall:
    """Gate a route behind an x402 payment.

    Requests without an ``X-PAYMENT`` header get a 402 listing the payment
    requirements. Payment headers are checked with the facilitator's
    ``/verify`` endpoint before the handler runs, and settled through
    ``/settle`` once it has succeeded, so each payment is collected once.
    """

    def __init__(
        self,
        settings: Settings,
        description: str,
        client: Optional[httpx.AsyncClient] = None,
        max_timeout_seconds: int = 300,
    ) -> None:
        self.network = settings.network
        self.pay_to = settings.pay_to
        self.facilitator_url = (settings.facilitator_url or "").rstrip("/")
        self.amount = to_atomic_amount(settings.default_price or "")
        self.description = description
        self.max_timeout_seconds = max_timeout_seconds
        self._client = client

    def requirements(self, resource_url: str) -> Dict[str, Any]:
        return {
            "scheme": "exact",
            "network": self.network,
            "maxAmountRequired": self.amount,
            "resource": resource_url,
            "description": self.description,
            "mimeType": "application/json",
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
        }

    async def _post_facilitator(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if self._client is not None:
            response = await self._client.post(f"{self.facilitator_url}{path}", json=body)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(f"{self.facilitator_url}{path}", json=body)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected facilitator response from {path}: {data!r}")
        return data

    def _facilitator_body(self, payment: str, requirements: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "x402Version": X402_VERSION,
            "paymentHeader": payment,
            "paymentRequirements": requirements,
        }

    async def verify(self, payment: str, requirements: Dict[str, Any]) -> Optional[str]:
        """Return ``None`` when the payment is valid, else the reason it is not."""
        try:
            data = await self._post_facilitator(
                "/verify", self._facilitator_body(payment, requirements)
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Payment verification failed: %s", exc)
            return "Payment verification unavailable"

        if data.get("isValid") is True:
            return None
        return str(data.get("invalidReason") or "Invalid payment")

    async def settle(self, admitted: "AdmittedPayment") -> str:
        """Collect a verified payment; return the ``X-PAYMENT-RESPONSE`` value.

        Raises ``PaymentRequired`` when the facilitator does not settle, which
        is also what a replayed payment header gets.
        """
        try:
            data = await self._post_facilitator(
                "/settle", self._facilitator_body(admitted.payment, admitted.requirements)
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Payment settlement failed: %s", exc)
            raise PaymentRequired(
                "Payment settlement unavailable", admitted.requirements
            ) from exc

        if data.get("success") is not True:
            reason = str(data.get("errorReason") or "Payment settlement failed")
            logger.warning("Payment not settled: %s", reason)
            raise PaymentRequired(reason, admitted.requirements)

        logger.info("Payment settled: transaction=%s", data.get("transaction"))
        encoded = json.dumps(data, separators=(",", ":")).encode("utf-8")
        return base64.b64encode(encoded).decode("ascii")

    async def check(self, request: Request) -> "AdmittedPayment":
        requirements = self.requirements(str(request.url))
        payment = request.headers.get(PAYMENT_HEADER)
        if not payment:
            raise PaymentRequired("X-PAYMENT header is required", requirements)
        reason = await self.verify(payment, requirements)
        if reason is not None:
            raise PaymentRequired(reason, requirements)
        return AdmittedPayment(self, payment, requirements)


class AdmittedPayment:
    """A verified payment waiting to be settled once the request succeeds."""

    __slots__ = ("paywall", "payment", "requirements")

    def __init__(self, paywall: Paywall, payment: str, requirements: Dict[str, Any]) -> None:
        self.paywall = paywall
        self.payment = payment
        self.requirements = requirements

    async def settle(self) -> str:
        return await self.paywall.settle(self)


async def require_payment(request: Request) -> Optional[AdmittedPayment]:
    paywall: Optional[Paywall] = getattr(request.app.state, "paywall", None)
    if paywall is None:
        return None
    return await paywall.check(request)


async def payment_required_handler(request: Request, exc: PaymentRequired) -> JSONResponse:
    return JSONResponse(
        status_code=402,
        content={
            "x402Version": X402_VERSION,
            "error": exc.error,
            "accepts": [exc.requirements],
        },
    )
