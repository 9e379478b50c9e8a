"""
Stripe mock adapter.

Simulates the payment intent lifecycle against a virtual state store.
Scripted outcomes are driven by Stripe's published test card numbers.
"""
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timezone
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
    "incorrect_cvv": "4000000000000127",
    "generic_decline": "4000000000000002",
    "network_error": "4000000000000341",
    "fraud": "4100000000000019",
}

# Payment intent states
REQUIRES_CAPTURE = "requires_capture"
SUCCEEDED = "succeeded"
CANCELED = "canceled"

WEBHOOK_STATUS_MAP = {
    "payment_intent.succeeded": "captured",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "cancelled",
    "charge.refunded": "refunded",
}


class StripeMockAdapter(PaymentProviderAdapter):
    """Stripe adapter backed by virtual payment intents."""

    provider_code = "stripe"
    provider_name = "Stripe"
    supported_currencies = frozenset(Currency)
    supported_methods = frozenset({PaymentMethodType.CARD, PaymentMethodType.DIGITAL_WALLET})

    test_cards = {
        TEST_CARDS["insufficient_funds"]: (
            ProviderErrorCode.INSUFFICIENT_FUNDS,
            "Your card has insufficient funds",
        ),
        TEST_CARDS["expired"]: (ProviderErrorCode.EXPIRED_CARD, "Your card has expired"),
        TEST_CARDS["incorrect_cvv"]: (
            ProviderErrorCode.INVALID_CVV,
            "Your card's security code is incorrect",
        ),
        TEST_CARDS["generic_decline"]: (ProviderErrorCode.CARD_DECLINED, "Your card was declined"),
        TEST_CARDS["network_error"]: (
            ProviderErrorCode.NETWORK_ERROR,
            "Could not connect to payment network",
        ),
        TEST_CARDS["fraud"]: (
            ProviderErrorCode.FRAUD_SUSPECTED,
            "Transaction flagged as potentially fraudulent",
        ),
    }

    async def authorize(self, request: AuthorizeRequest) -> AuthorizeResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        provider_transaction_id = self._generate_transaction_id()
        logger.debug(
            "stripe_authorize_request",
            provider_transaction_id=provider_transaction_id,
            amount=request.amount,
            currency=request.currency.value,
            card_last_four=request.payment_method.last_four,
        )

        self._check_test_card(request.payment_method.card_number)

        status = SUCCEEDED if request.capture else REQUIRES_CAPTURE
        self.state_store.put(
            self.provider_code,
            provider_transaction_id,
            VirtualTransaction(status=status, amount=request.amount, currency=request.currency.value),
        )

        return AuthorizeResponse(
            success=True,
            provider_transaction_id=provider_transaction_id,
            status="captured" if request.capture else "authorized",
            amount=request.amount,
            currency=request.currency,
            authorization_code=f"auth_{secrets.token_hex(8)}",
            avs_result="Y",
            cvv_result="M",
            raw_response={
                "id": provider_transaction_id,
                "object": "payment_intent",
                "status": status,
            },
        )

    async def capture(self, request: CaptureRequest) -> CaptureResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        intent = self._load(request.provider_transaction_id)
        if intent.status == SUCCEEDED:
            raise self._error("Transaction already captured", ProviderErrorCode.DUPLICATE_TRANSACTION)
        if intent.status == CANCELED:
            raise self._error("Transaction was cancelled", ProviderErrorCode.INVALID_REQUEST)

        capture_amount = request.amount if request.amount is not None else intent.amount
        if capture_amount > intent.amount:
            raise self._error(
                "Capture amount exceeds authorized amount", ProviderErrorCode.INVALID_REQUEST
            )

        intent.status = SUCCEEDED
        self.state_store.put(self.provider_code, request.provider_transaction_id, intent)

        logger.debug(
            "stripe_capture_completed",
            provider_transaction_id=request.provider_transaction_id,
            captured_amount=capture_amount,
        )

        return CaptureResponse(
            success=True,
            provider_transaction_id=request.provider_transaction_id,
            captured_amount=capture_amount,
            currency=Currency(intent.currency),
            raw_response={
                "id": request.provider_transaction_id,
                "object": "payment_intent",
                "status": SUCCEEDED,
                "amount_captured": capture_amount,
            },
        )

    async def cancel(self, request: CancelRequest) -> CancelResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        intent = self._load(request.provider_transaction_id)
        if intent.status == SUCCEEDED:
            raise self._error(
                "Cannot cancel a captured transaction, use refund instead",
                ProviderErrorCode.INVALID_REQUEST,
            )
        if intent.status == CANCELED:
            raise self._error("Transaction already cancelled", ProviderErrorCode.DUPLICATE_TRANSACTION)

        intent.status = CANCELED
        self.state_store.put(self.provider_code, request.provider_transaction_id, intent)

        logger.debug("stripe_cancel_completed", provider_transaction_id=request.provider_transaction_id)

        return CancelResponse(
            success=True,
            provider_transaction_id=request.provider_transaction_id,
            raw_response={
                "id": request.provider_transaction_id,
                "object": "payment_intent",
                "status": CANCELED,
                "cancellation_reason": request.reason,
            },
        )

    async def refund(self, request: RefundRequest) -> RefundResponse:
        self._ensure_initialized()
        await self._simulate_latency()

        intent = self._load(request.provider_transaction_id)
        if intent.status != SUCCEEDED:
            raise self._error(
                "Cannot refund an uncaptured transaction", ProviderErrorCode.INVALID_REQUEST
            )

        refund_amount = request.amount if request.amount is not None else intent.amount
        if refund_amount > intent.remaining_amount:
            raise self._error(
                "Refund amount exceeds remaining balance", ProviderErrorCode.INVALID_REQUEST
            )

        intent.refunded_amount += refund_amount
        self.state_store.put(self.provider_code, request.provider_transaction_id, intent)
        refund_id = f"re_{secrets.token_hex(12)}"

        logger.debug(
            "stripe_refund_completed",
            provider_transaction_id=request.provider_transaction_id,
            refund_id=refund_id,
            refunded_amount=refund_amount,
        )

        return RefundResponse(
            success=True,
            provider_refund_id=refund_id,
            refunded_amount=refund_amount,
            currency=Currency(intent.currency),
            status="completed",
            raw_response={
                "id": refund_id,
                "object": "refund",
                "payment_intent": request.provider_transaction_id,
                "amount": refund_amount,
                "status": "succeeded",
            },
        )

    def verify_webhook_signature(self, payload: str, signature: str, secret: str) -> bool:
        """
        Verify a ``Stripe-Signature`` header.

        Format is ``t=<timestamp>,v1=<hex HMAC-SHA256 of "<timestamp>.<payload>">``.
        """
        parts = dict(
            part.split("=", 1) for part in (signature or "").split(",") if "=" in part
        )
        timestamp = parts.get("t")
        provided = parts.get("v1")
        if not timestamp or not provided:
            return False

        expected = hmac.new(
            secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(provided, expected)

    @staticmethod
    def sign_payload(payload: str, secret: str, timestamp: int) -> str:
        """Build a signature header the way Stripe does."""
        digest = hmac.new(
            secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
        ).hexdigest()
        return f"t={timestamp},v1={digest}"

    def decode_webhook(self, raw_payload: str, headers: Dict[str, str]) -> WebhookPayload:
        try:
            event = json.loads(raw_payload)
            data_object = event["data"]["object"]
            return WebhookPayload(
                event_type=event["type"],
                provider_event_id=event.get("id"),
                provider_transaction_id=data_object.get("id"),
                data=data_object,
                timestamp=datetime.fromtimestamp(event.get("created", 0), tz=timezone.utc),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise self._error(
                f"Malformed Stripe webhook: {e}", ProviderErrorCode.INVALID_REQUEST
            ) from e

    async def parse_webhook(self, payload: WebhookPayload) -> ProcessedWebhook:
        data = payload.data
        amount = data.get("amount")
        currency = data.get("currency")
        return ProcessedWebhook(
            event_type=payload.event_type,
            provider_transaction_id=data.get("id"),
            status=WEBHOOK_STATUS_MAP.get(payload.event_type),
            amount=int(amount) if amount is not None else None,
            currency=currency.upper() if currency else None,
        )
