"""PayPal mock adapter simulating the orders API."""
import base64
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict

import structlog

from payment_orchestrator.core.enums import Currency, PaymentMethodType
from payment_orchestrator.core.errors import ProviderErrorCode
from payment_orchestrator.providers.base import PaymentProviderAdapter
from payment_orchestrator.providers.state_store import VirtualTransaction
from payment_orchestrator.providers.types import (
    AuthorizeRequest,
    AuthorizeResponse,
    CancelRequest,
    CancelResponse,
    CaptureRequest,
    CaptureResponse,
    ProcessedWebhook,
    RefundRequest,
    RefundResponse,
    WebhookPayload,
)

logger = structlog.get_logger(__name__)

TEST_CARDS = {
    "success": "4242424242424242",
    "insufficient_funds": "4000000000009995",
    "expired": "4000000000000069",
    "network_error": "4000000000000341",
}

# Order states
APPROVED = "APPROVED"
CAPTURED = "CAPTURED"
VOIDED = "VOIDED"

WEBHOOK_STATUS_MAP = {
    "PAYMENT.CAPTURE.COMPLETED": "captured",
    "PAYMENT.CAPTURE.DENIED": "failed",
    "PAYMENT.AUTHORIZATION.VOIDED": "cancelled",
    "PAYMENT.CAPTURE.REFUNDED": "refunded",
}


def format_amount(amount: int) -> str:
    """Minor units to PayPal's decimal string."""
    return f"{Decimal(amount) / 100:.2f}"


def parse_amount(value: str) -> int:
    """PayPal's decimal string to minor units."""
    return int((Decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayPalMockAdapter(PaymentProviderAdapter):
    """PayPal adapter backed by virtual orders."""

    provider_code = "paypal"
    provider_name = "PayPal"
    supported_currencies = frozenset(Currency) - {Currency.CNY}
    supported_methods = frozenset({PaymentMethodType.CARD, PaymentMethodType.DIGITAL_WALLET})

    test_cards = {
        TEST_CARDS["insufficient_funds"]: (
            ProviderErrorCode.INSUFFICIENT_FUNDS,
            "Transaction declined - insufficient funds",
        ),
        TEST_CARDS["expired"]: (ProviderErrorCode.EXPIRED_CARD, "The card has expired"),
        TEST_CARDS["network_error"]: (
            ProviderErrorCode.NETWORK_ERROR,
            "Network error - please try again",
        ),
    }

    async def authorize(self, request: AuthorizeRequest) -> AuthorizeResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        order_id = self._generate_transaction_id()
        logger.debug(
            "paypal_authorize_request",
            order_id=order_id,
            amount=request.amount,
            currency=request.currency.value,
        )

        self._check_test_card(request.payment_method.card_number)

        self.state_store.put(
            self.provider_code,
            order_id,
            VirtualTransaction(
                status=CAPTURED if request.capture else APPROVED,
                amount=request.amount,
                currency=request.currency.value,
            ),
        )

        return AuthorizeResponse(
            success=True,
            provider_transaction_id=order_id,
            status="captured" if request.capture else "authorized",
            amount=request.amount,
            currency=request.currency,
            authorization_code=f"PAYPAL-{secrets.token_hex(6).upper()}",
            raw_response={
                "id": order_id,
                "intent": "CAPTURE" if request.capture else "AUTHORIZE",
                "status": "COMPLETED" if request.capture else APPROVED,
                "purchase_units": [
                    {
                        "amount": {
                            "currency_code": request.currency.value,
                            "value": format_amount(request.amount),
                        }
                    }
                ],
            },
        )

    async def capture(self, request: CaptureRequest) -> CaptureResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        order = self._load(request.provider_transaction_id, label="Order")
        if order.status == CAPTURED:
            raise self._error("Order already captured", ProviderErrorCode.DUPLICATE_TRANSACTION)
        if order.status == VOIDED:
            raise self._error("Order was voided", ProviderErrorCode.INVALID_REQUEST)

        capture_amount = request.amount if request.amount is not None else order.amount
        if capture_amount > order.amount:
            raise self._error(
                "Capture amount exceeds authorized amount", ProviderErrorCode.INVALID_REQUEST
            )

        order.status = CAPTURED
        self.state_store.put(self.provider_code, request.provider_transaction_id, order)
        capture_id = f"CAPTURE-{secrets.token_hex(8).upper()}"

        logger.debug(
            "paypal_capture_completed",
            order_id=request.provider_transaction_id,
            capture_id=capture_id,
            captured_amount=capture_amount,
        )

        # The order id stays the handle for later refunds.
        return CaptureResponse(
            success=True,
            provider_transaction_id=request.provider_transaction_id,
            captured_amount=capture_amount,
            currency=Currency(order.currency),
            raw_response={
                "id": capture_id,
                "order_id": request.provider_transaction_id,
                "status": "COMPLETED",
                "amount": {
                    "currency_code": order.currency,
                    "value": format_amount(capture_amount),
                },
            },
        )

    async def cancel(self, request: CancelRequest) -> CancelResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        order = self._load(request.provider_transaction_id, label="Order")
        if order.status == CAPTURED:
            raise self._error(
                "Cannot void a captured order, use refund instead",
                ProviderErrorCode.INVALID_REQUEST,
            )
        if order.status == VOIDED:
            raise self._error("Order already voided", ProviderErrorCode.DUPLICATE_TRANSACTION)

        order.status = VOIDED
        self.state_store.put(self.provider_code, request.provider_transaction_id, order)

        logger.debug("paypal_void_completed", order_id=request.provider_transaction_id)

        return CancelResponse(
            success=True,
            provider_transaction_id=request.provider_transaction_id,
            raw_response={"id": request.provider_transaction_id, "status": VOIDED},
        )

    async def refund(self, request: RefundRequest) -> RefundResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        order = self._load(request.provider_transaction_id, label="Order")
        if order.status != CAPTURED:
            raise self._error("Can only refund captured orders", ProviderErrorCode.INVALID_REQUEST)

        refund_amount = request.amount if request.amount is not None else order.amount
        if refund_amount > order.remaining_amount:
            raise self._error(
                "Refund amount exceeds remaining balance", ProviderErrorCode.INVALID_REQUEST
            )

        order.refunded_amount += refund_amount
        self.state_store.put(self.provider_code, request.provider_transaction_id, order)
        refund_id = f"REFUND-{secrets.token_hex(8).upper()}"

        logger.debug(
            "paypal_refund_completed",
            order_id=request.provider_transaction_id,
            refund_id=refund_id,
            refunded_amount=refund_amount,
        )

        return RefundResponse(
            success=True,
            provider_refund_id=refund_id,
            refunded_amount=refund_amount,
            currency=Currency(order.currency),
            status="completed",
            raw_response={
                "id": refund_id,
                "status": "COMPLETED",
                "amount": {
                    "currency_code": order.currency,
                    "value": format_amount(refund_amount),
                },
            },
        )

    def verify_webhook_signature(self, payload: str, signature: str, secret: str) -> bool:
        """Signature is the base64 HMAC-SHA256 of the raw payload."""
        expected = self.sign_payload(payload, secret)
        return hmac.compare_digest((signature or "").encode(), expected.encode())

    @staticmethod
    def sign_payload(payload: str, secret: str) -> str:
        digest = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def decode_webhook(self, raw_payload: str, headers: Dict[str, str]) -> WebhookPayload:
        try:
            event = json.loads(raw_payload)
            resource = event["resource"]
            create_time = event.get("create_time")
            timestamp = (
                datetime.fromisoformat(create_time.replace("Z", "+00:00"))
                if create_time
                else datetime.now(timezone.utc)
            )
            return WebhookPayload(
                event_type=event["event_type"],
                provider_event_id=event.get("id"),
                provider_transaction_id=resource.get("id"),
                data={"resource": resource},
                timestamp=timestamp,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise self._error(
                f"Malformed PayPal webhook: {e}", ProviderErrorCode.INVALID_REQUEST
            ) from e

    async def parse_webhook(self, payload: WebhookPayload) -> ProcessedWebhook:
        resource = payload.data.get("resource") or {}
        amount_obj = resource.get("amount") or {}
        value = amount_obj.get("value")

        amount = None
        if value:
            try:
                amount = parse_amount(value)
            except InvalidOperation:
                logger.warning("paypal_webhook_invalid_amount", value=value)

        return ProcessedWebhook(
            event_type=payload.event_type,
            provider_transaction_id=resource.get("id"),
            status=WEBHOOK_STATUS_MAP.get(payload.event_type),
            amount=amount,
            currency=amount_obj.get("currency_code"),
        )
