"""
HTTP client for the Razorpay payment gateway
"""
import hashlib
import hmac
from typing import Dict, Any, Optional

import httpx
import structlog

from denasetu.core.circuit_breaker import CircuitBreaker, CircuitBreakerError
from denasetu.core.config import get_settings
from denasetu.core.exceptions import GatewayError

logger = structlog.get_logger(__name__)
settings = get_settings()


class GatewayUnavailable(GatewayError):
    """Transport failure or 5xx from the gateway; counts against the circuit breaker"""
    pass


gateway_circuit_breaker = CircuitBreaker(
    name="razorpay",
    failure_threshold=settings.gateway_failure_threshold,
    recovery_seconds=settings.gateway_recovery_seconds,
    expected_exception=GatewayUnavailable,
)


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayClient:
    """Creates payable orders and verifies payment signatures"""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        self.base_url = (base_url or settings.razorpay_base_url).rstrip("/")
        self.timeout = httpx.Timeout(
            settings.gateway_timeout_seconds,
            connect=settings.gateway_connect_timeout_seconds
        )
        self.transport = transport
        self.breaker = breaker or gateway_circuit_breaker

    async def create_order(self, amount_minor: int, currency: str, receipt: str,
                           notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Ask the gateway for a payable order.

        Args:
            amount_minor: Amount in the currency's minor unit (paise for INR)
            currency: ISO currency code
            receipt: Merchant receipt label, at most 40 characters
            notes: Optional key/value notes stored with the order

        Returns:
            Gateway order object (``id``, ``amount``, ``currency``, ``receipt``, ...)
        """
        if not self.key_id or not self.key_secret:
            logger.error("Payment gateway credentials are not configured")
            raise GatewayError("Payment gateway credentials are not configured")

        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        if notes:
            payload["notes"] = notes

        try:
            return await self.breaker.call(self._post_order, payload)
        except CircuitBreakerError as e:
            logger.warning("Payment gateway circuit open", receipt=receipt)
            raise GatewayError(str(e))

    async def _post_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(
            "Creating gateway order",
            amount=payload["amount"],
            currency=payload["currency"],
            receipt=payload["receipt"]
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/orders",
                    json=payload,
                    auth=(self.key_id, self.key_secret),
                )
        except httpx.TimeoutException:
            logger.error("Timeout while creating gateway order", receipt=payload["receipt"])
            raise GatewayUnavailable("Payment gateway timeout")
        except httpx.HTTPError as e:
            logger.error("Connection error to payment gateway", error=str(e))
            raise GatewayUnavailable("Payment gateway unavailable")

        if response.status_code >= 500:
            logger.error(
                "Payment gateway server error",
                status_code=response.status_code,
                response=response.text
            )
            raise GatewayUnavailable(self._error_message(response))

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(
                "Payment gateway rejected order",
                status_code=response.status_code,
                error=message
            )
            raise GatewayError(message)

        try:
            order = response.json()
        except ValueError:
            logger.error("Payment gateway returned a non-JSON order",
                         status_code=response.status_code,
                         response=response.text[:200])
            raise GatewayUnavailable("Payment gateway returned an invalid order")
        if not isinstance(order, dict) or not order.get("id"):
            logger.error("Payment gateway order has no id", response=response.text[:200])
            raise GatewayUnavailable("Payment gateway returned an invalid order")

        logger.info("Gateway order created", order_id=order.get("id"), amount=order.get("amount"))
        return order

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"Payment gateway error ({response.status_code})"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("description"):
            return error["description"]
        if isinstance(error, str):
            return error
        return f"Payment gateway error ({response.status_code})"

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout signature: HMAC-SHA256 of ``order_id|payment_id`` keyed by the key secret"""
        if not self.key_secret or not signature:
            return False
        expected = _hmac_sha256(self.key_secret, f"{order_id}|{payment_id}".encode("utf-8"))
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        """Webhook signature: HMAC-SHA256 of the raw body keyed by the webhook secret"""
        if not self.webhook_secret or not signature:
            return False
        expected = _hmac_sha256(self.webhook_secret, body)
        return hmac.compare_digest(expected, signature)


def get_payment_gateway() -> RazorpayClient:
    """Dependency to get the gateway client"""
    return RazorpayClient()
