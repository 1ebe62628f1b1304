"""
Payment Adapter
Uniform charge/refund contract over card, redirect-capture, cash and mock gateways
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Protocol

import httpx
import stripe

from boxoffice.config import Settings
from boxoffice.core.metrics import PAYMENT_CHARGES
from boxoffice.models.order import PaymentMethod

logger = logging.getLogger(__name__)

CARD_DECLINED = "CARD_DECLINED"
PAYMENT_FAILED = "PAYMENT_FAILED"
PAYMENT_TIMEOUT = "PAYMENT_TIMEOUT"
GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
INVALID_PAYMENT_METHOD = "INVALID_PAYMENT_METHOD"


@dataclass
class ChargeResult:
    success: bool
    charge_id: Optional[str] = None
    pending_verification: bool = False
    error_code: Optional[str] = None
    message: Optional[str] = None


@dataclass
class RefundResult:
    success: bool
    refund_id: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class PaymentGateway(Protocol):
    async def charge(self, amount: Decimal, currency: str, idempotency_key: str, token: Optional[str] = None) -> ChargeResult:
        ...

    async def refund(self, charge_id: str, amount: Decimal, currency: str) -> RefundResult:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to cents"""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class MockPaymentGateway:
    """
    In-process gateway for development and tests

    Tokens starting with ``tok_decline`` are declined; ``tok_fail`` is a
    generic failure. Charges are idempotent per key.
    """

    def __init__(self):
        self.charges: Dict[str, ChargeResult] = {}
        self.charge_calls = 0
        self.refunds: Dict[str, RefundResult] = {}

    async def charge(self, amount: Decimal, currency: str, idempotency_key: str, token: Optional[str] = None) -> ChargeResult:
        self.charge_calls += 1
        if idempotency_key in self.charges:
            return self.charges[idempotency_key]

        token = token or ""
        if token.startswith("tok_decline"):
            result = ChargeResult(success=False, error_code=CARD_DECLINED, message="Your card was declined")
        elif token.startswith("tok_fail"):
            result = ChargeResult(success=False, error_code=PAYMENT_FAILED, message="Payment could not be processed")
        else:
            result = ChargeResult(success=True, charge_id=f"mock_ch_{uuid.uuid4().hex[:16]}")

        self.charges[idempotency_key] = result
        return result

    async def refund(self, charge_id: str, amount: Decimal, currency: str) -> RefundResult:
        result = self.refunds.get(charge_id)
        if result is None:
            result = RefundResult(success=True, refund_id=f"mock_re_{uuid.uuid4().hex[:16]}")
            self.refunds[charge_id] = result
        return result


class StripeCardGateway:
    """Card payments through Stripe PaymentIntents"""

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def charge(self, amount: Decimal, currency: str, idempotency_key: str, token: Optional[str] = None) -> ChargeResult:
        if not token:
            return ChargeResult(success=False, error_code=INVALID_PAYMENT_METHOD, message="Card token is required")

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                api_key=self.api_key,
                amount=to_minor_units(amount),
                currency=currency.lower(),
                payment_method=token,
                payment_method_types=["card"],
                confirm=True,
                idempotency_key=idempotency_key,
                metadata={"idempotency_key": idempotency_key},
            )
        except stripe.CardError as e:
            logger.info(f"Card declined: {e.user_message or e}")
            return ChargeResult(success=False, error_code=CARD_DECLINED, message=e.user_message or "Your card was declined")
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            logger.error(f"Stripe unavailable: {e}")
            return ChargeResult(success=False, error_code=GATEWAY_UNAVAILABLE, message="Payment gateway unavailable")
        except stripe.StripeError as e:
            logger.error(f"Stripe error: {e}")
            return ChargeResult(success=False, error_code=PAYMENT_FAILED, message="Payment processing error")

        if intent.status == "succeeded":
            return ChargeResult(success=True, charge_id=intent.id)
        return ChargeResult(
            success=False,
            charge_id=intent.id,
            error_code=PAYMENT_FAILED,
            message=f"Payment not completed (status {intent.status})"
        )

    async def refund(self, charge_id: str, amount: Decimal, currency: str) -> RefundResult:
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                api_key=self.api_key,
                payment_intent=charge_id,
                amount=to_minor_units(amount),
                idempotency_key=f"refund_{charge_id}",
            )
        except stripe.StripeError as e:
            logger.error(f"Refund error: {e}")
            return RefundResult(success=False, error_code=PAYMENT_FAILED, message=str(e))
        return RefundResult(success=True, refund_id=refund.id)


class RedirectCaptureGateway:
    """
    Redirect-and-capture wallets (PayPal-style orders API)

    ``token`` is the approved order id the buyer returned with.
    """

    def __init__(self, base_url: str, access_token: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self, request_id: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "PayPal-Request-Id": request_id,
        }

    async def charge(self, amount: Decimal, currency: str, idempotency_key: str, token: Optional[str] = None) -> ChargeResult:
        if not token:
            return ChargeResult(success=False, error_code=INVALID_PAYMENT_METHOD, message="Approved order id is required")

        try:
            response = await self.client.post(
                f"{self.base_url}/v2/checkout/orders/{token}/capture",
                headers=self._headers(idempotency_key),
                json={},
            )
        except httpx.TransportError as e:
            logger.error(f"Redirect gateway unreachable: {e}")
            return ChargeResult(success=False, error_code=GATEWAY_UNAVAILABLE, message="Payment gateway unavailable")

        if response.status_code >= 500:
            logger.error(f"Redirect gateway error {response.status_code}")
            return ChargeResult(success=False, error_code=GATEWAY_UNAVAILABLE, message="Payment gateway unavailable")

        body = response.json() if response.content else {}
        if response.status_code >= 400:
            issues = {detail.get("issue") for detail in body.get("details", [])}
            if "INSTRUMENT_DECLINED" in issues:
                return ChargeResult(success=False, error_code=CARD_DECLINED, message="Payment instrument declined")
            return ChargeResult(success=False, error_code=PAYMENT_FAILED, message=body.get("message", "Capture failed"))

        if body.get("status") != "COMPLETED":
            return ChargeResult(success=False, error_code=PAYMENT_FAILED, message=f"Capture status {body.get('status')}")

        capture_id = token
        for unit in body.get("purchase_units", []):
            captures = unit.get("payments", {}).get("captures", [])
            if captures:
                capture_id = captures[0].get("id", token)
                break
        return ChargeResult(success=True, charge_id=capture_id)

    async def refund(self, charge_id: str, amount: Decimal, currency: str) -> RefundResult:
        try:
            response = await self.client.post(
                f"{self.base_url}/v2/payments/captures/{charge_id}/refund",
                headers=self._headers(f"refund_{charge_id}"),
                json={"amount": {"value": f"{amount:.2f}", "currency_code": currency.upper()}},
            )
        except httpx.TransportError as e:
            logger.error(f"Redirect gateway unreachable for refund: {e}")
            return RefundResult(success=False, error_code=GATEWAY_UNAVAILABLE, message=str(e))

        if response.status_code >= 400:
            return RefundResult(success=False, error_code=PAYMENT_FAILED, message=f"Refund failed ({response.status_code})")
        return RefundResult(success=True, refund_id=response.json().get("id"))

    async def aclose(self):
        await self.client.aclose()


class CashGateway:
    """Deferred payment collected at the box office"""

    async def charge(self, amount: Decimal, currency: str, idempotency_key: str, token: Optional[str] = None) -> ChargeResult:
        return ChargeResult(
            success=True,
            charge_id=f"cash_{uuid.uuid4().hex[:16]}",
            pending_verification=True,
            message="Pay at the box office with your verification code"
        )

    async def refund(self, charge_id: str, amount: Decimal, currency: str) -> RefundResult:
        return RefundResult(success=True, refund_id=f"cash_refund_{uuid.uuid4().hex[:12]}")


class PaymentAdapter:
    """
    Dispatches to the gateway for a payment method and normalizes every outcome

    Charges are bounded by ``timeout_seconds`` and never retried here.
    """

    def __init__(self, gateways: Dict[PaymentMethod, PaymentGateway], currency: str = "USD", timeout_seconds: float = 30.0):
        self.gateways = gateways
        self.currency = currency
        self.timeout_seconds = timeout_seconds

    def _gateway(self, method) -> Optional[PaymentGateway]:
        try:
            return self.gateways.get(PaymentMethod(method))
        except ValueError:
            return None

    async def charge(
        self,
        amount: Decimal,
        method,
        idempotency_key: str,
        token: Optional[str] = None,
    ) -> ChargeResult:
        gateway = self._gateway(method)
        method_label = getattr(method, "value", str(method))
        if gateway is None:
            PAYMENT_CHARGES.labels(method=method_label, result=INVALID_PAYMENT_METHOD).inc()
            return ChargeResult(success=False, error_code=INVALID_PAYMENT_METHOD, message=f"Unsupported payment method {method_label}")

        try:
            result = await asyncio.wait_for(
                gateway.charge(amount, self.currency, idempotency_key, token),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Payment timed out after {self.timeout_seconds}s",
                extra={"idempotency_key": idempotency_key, "payment_method": method_label}
            )
            result = ChargeResult(success=False, error_code=PAYMENT_TIMEOUT, message="Payment timed out")
        except Exception as e:
            logger.error(
                f"Payment gateway error: {e}",
                exc_info=True,
                extra={"idempotency_key": idempotency_key, "payment_method": method_label}
            )
            result = ChargeResult(success=False, error_code=PAYMENT_FAILED, message="Payment processing error")

        if not result.success and not result.error_code:
            result.error_code = PAYMENT_FAILED
        PAYMENT_CHARGES.labels(method=method_label, result="success" if result.success else result.error_code).inc()
        return result

    async def refund(self, charge_id: str, amount: Decimal, method) -> RefundResult:
        gateway = self._gateway(method)
        if gateway is None:
            return RefundResult(success=False, error_code=INVALID_PAYMENT_METHOD)
        try:
            return await asyncio.wait_for(
                gateway.refund(charge_id, amount, self.currency),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Refund timed out for charge {charge_id}")
            return RefundResult(success=False, error_code=PAYMENT_TIMEOUT, message="Refund timed out")


def build_payment_adapter(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> PaymentAdapter:
    """Wire gateways from configuration"""
    gateways: Dict[PaymentMethod, PaymentGateway] = {PaymentMethod.CASH: CashGateway()}
    if settings.PAYMENT_MOCK_ENABLED:
        gateways[PaymentMethod.MOCK] = MockPaymentGateway()
    if settings.STRIPE_SECRET_KEY:
        gateways[PaymentMethod.CARD] = StripeCardGateway(settings.STRIPE_SECRET_KEY)
    elif settings.PAYMENT_MOCK_ENABLED:
        gateways[PaymentMethod.CARD] = gateways[PaymentMethod.MOCK]
    if settings.PAYPAL_ACCESS_TOKEN:
        gateways[PaymentMethod.REDIRECT] = RedirectCaptureGateway(
            settings.PAYPAL_API_URL, settings.PAYPAL_ACCESS_TOKEN, client=http_client
        )
    return PaymentAdapter(gateways, currency=settings.CURRENCY, timeout_seconds=settings.PAYMENT_TIMEOUT_SECONDS)
