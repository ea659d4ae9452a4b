"""
Payment gateway boundary for paid registrations and subscriptions.

The registration service and the trial expiration job only talk to the
abstract PaymentGateway. PaystackGateway is the production implementation;
tests substitute in-memory fakes.

All amounts are in minor units (cents / kobo).
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from backend.src.config.settings import AppSettings
from backend.src.services.exceptions import ExternalVerificationError
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")

DEFAULT_TIMEOUT = 30.0  # seconds


class PaymentStatus(str, enum.Enum):
    """Normalized outcome of a payment verification."""
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class PaymentInitialization:
    """Handle returned when a payment is started."""
    payment_url: str
    reference: str


class PaymentGateway(ABC):
    """
    Abstract payment gateway.

    Implementations raise ExternalVerificationError for transport failures
    and for responses that cannot be interpreted.
    """

    name = "payment_gateway"

    @abstractmethod
    async def initialize_payment(self, amount: int, metadata: Dict[str, Any]) -> PaymentInitialization:
        """Start a payment of amount minor units and return the checkout handle."""

    @abstractmethod
    async def verify_payment(self, reference: str) -> PaymentStatus:
        """Report the settlement state of a payment."""

    @abstractmethod
    async def verify_subscription(self, subscription_code: str) -> str:
        """Return the gateway's status string for a subscription (e.g. "active")."""

    async def close(self) -> None:
        """Release transport resources."""


# Paystack transaction statuses that are still in flight
_PAYSTACK_PENDING = {"ongoing", "pending", "processing", "queued"}


class PaystackGateway(PaymentGateway):
    """
    Paystack implementation over httpx.AsyncClient.

    Uses the secret key as bearer token. The payer email, when present in
    metadata, is sent as Paystack's required email field.
    """

    name = "paystack"

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        currency: str = "ZAR",
        callback_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not secret_key:
            raise ValueError("secret_key is required")

        self._currency = currency
        self._callback_url = callback_url or None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "PaystackGateway":
        return cls(
            secret_key=settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            currency=settings.currency,
            callback_url=settings.payment_callback_url,
        )

    async def initialize_payment(self, amount: int, metadata: Dict[str, Any]) -> PaymentInitialization:
        payload: Dict[str, Any] = {
            "amount": amount,
            "currency": self._currency,
            "email": metadata.get("email"),
            "metadata": metadata,
        }
        if self._callback_url:
            payload["callback_url"] = self._callback_url

        data = await self._request("POST", "/transaction/initialize", json=payload)
        try:
            return PaymentInitialization(
                payment_url=data["authorization_url"],
                reference=data["reference"],
            )
        except (KeyError, TypeError):
            raise ExternalVerificationError(self.name, "Malformed initialize response")

    async def verify_payment(self, reference: str) -> PaymentStatus:
        data = await self._request("GET", f"/transaction/verify/{reference}", reference=reference)
        status = str((data or {}).get("status", "")).lower()
        if status == "success":
            return PaymentStatus.SUCCESS
        if status in _PAYSTACK_PENDING:
            return PaymentStatus.PENDING
        return PaymentStatus.FAILED

    async def verify_subscription(self, subscription_code: str) -> str:
        data = await self._request("GET", f"/subscription/{subscription_code}", reference=subscription_code)
        return str((data or {}).get("status", "")).lower()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, reference: Optional[str] = None, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                f"Paystack request failed: {method} {path}",
                extra={"error": str(e), "reference": reference}
            )
            raise ExternalVerificationError(self.name, f"Request failed: {e}", reference=reference)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not body.get("status", False):
            message = body.get("message") or f"HTTP {response.status_code}"
            raise ExternalVerificationError(self.name, message, reference=reference)

        return body.get("data")
