"""
Payment gateway client and webhook signature helpers.
"""

import hashlib
import hmac
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from ..config import get_settings
from ..utils.circuit_breaker import CircuitBreaker, get_payment_circuit_breaker
from ..utils.exceptions import PaymentServiceError
from ..utils.retry import retry_on_external_service_error

logger = logging.getLogger(__name__)


@dataclass
class PaymentSession:
    """Checkout session opened at the gateway for one booking."""
    session_id: str
    amount: Decimal
    currency: str
    checkout_url: Optional[str] = None
    intent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """Outcome of a refund request."""
    succeeded: bool
    refund_id: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentGateway(ABC):
    """Interface the payment service uses to talk to the card processor."""

    @abstractmethod
    async def initiate(self, amount: Decimal, currency: str, metadata: Dict[str, Any]) -> PaymentSession:
        """Open a checkout session for ``amount``."""

    @abstractmethod
    async def refund(
        self,
        reference: str,
        amount: Decimal,
        idempotency_key: Optional[str] = None
    ) -> RefundResult:
        """
        Refund a captured payment identified by its session or intent id.

        Repeating a call with the same ``idempotency_key`` must not refund twice.
        """


def sign_payload(data: Dict[str, Any], secret: str) -> str:
    """HMAC-SHA256 over the payload's keys in sorted ``k=v`` form."""
    sign_string = "&".join(f"{key}={value}" for key, value in sorted(data.items()))
    return hmac.new(secret.encode(), sign_string.encode(), hashlib.sha256).hexdigest()


def compute_webhook_signature(body: bytes, secret: str) -> str:
    """Signature the gateway attaches to a webhook body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check a webhook signature in constant time."""
    if not signature:
        return False

    expected = compute_webhook_signature(body, secret)
    return hmac.compare_digest(expected, signature)


class HttpPaymentGateway(PaymentGateway):
    """
    JSON-over-HTTP gateway client.

    Every call goes through the ``payment_gateway`` circuit breaker, so a
    processor outage fails fast instead of piling up requests.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        signing_secret: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.payment_gateway_url).rstrip("/") + "/"
        self.api_key = api_key if api_key is not None else settings.payment_gateway_api_key
        self.signing_secret = signing_secret or settings.payment_webhook_secret
        self.timeout = settings.payment_gateway_timeout
        self._client = client
        self.breaker = breaker or get_payment_circuit_breaker()

    @retry_on_external_service_error(max_attempts=2, base_delay=0.5, max_delay=2.0)
    async def initiate(self, amount: Decimal, currency: str, metadata: Dict[str, Any]) -> PaymentSession:
        payload = {
            "amount": str(amount),
            "currency": currency,
            "reference": str(metadata.get("booking_id", "")),
            "request_id": uuid.uuid4().hex,
        }
        payload["signature"] = sign_payload(payload, self.signing_secret)

        logger.info(f"Opening payment session for {amount} {currency} (ref {payload['reference']})")
        result = await self.breaker.call(self._post, "sessions", payload)

        session_id = result.get("session_id") or result.get("id")
        if not session_id:
            raise PaymentServiceError("Gateway response did not include a session id")

        return PaymentSession(
            session_id=session_id,
            amount=amount,
            currency=currency,
            checkout_url=result.get("checkout_url"),
            intent_id=result.get("payment_intent"),
            metadata=dict(metadata),
        )

    async def refund(
        self,
        reference: str,
        amount: Decimal,
        idempotency_key: Optional[str] = None
    ) -> RefundResult:
        payload = {
            "reference": reference,
            "amount": str(amount),
        }
        payload["signature"] = sign_payload(payload, self.signing_secret)

        logger.info(f"Requesting refund of {amount} for {reference}")
        result = await self.breaker.call(
            self._post,
            "refunds",
            payload,
            idempotency_key=idempotency_key or f"refund-{reference}"
        )

        if result.get("status") == "succeeded":
            return RefundResult(succeeded=True, refund_id=result.get("id"))

        reason = result.get("failure_reason") or result.get("status") or "unknown"
        logger.warning(f"Refund for {reference} was not accepted: {reason}")
        return RefundResult(succeeded=False, refund_id=result.get("id"), failure_reason=reason)

    async def _post(self, path: str, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            if self._client is not None:
                response = await self._client.post(self.base_url + path, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.base_url + path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise PaymentServiceError(f"Request to {path} failed: {e}") from e

        # Declined refunds come back as 4xx with a JSON body
        if response.status_code >= 500:
            raise PaymentServiceError(
                f"Gateway returned {response.status_code} for {path}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise PaymentServiceError(f"Gateway returned a non-JSON body for {path}") from e
