"""
Payment provider adapter interface.

Every provider integration implements ``PaymentProviderAdapter``. Adapters
raise ``ProviderError`` for declines and transport failures; the
orchestrator decides whether to fall back based on ``retryable``.
"""
import asyncio
import random
import secrets
import string
import time
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional, Tuple

import structlog

from payment_orchestrator.core.enums import Currency, PaymentMethodType
from payment_orchestrator.core.errors import ProviderError, ProviderErrorCode
from payment_orchestrator.providers.state_store import (
    InMemoryStateStore,
    VirtualStateStore,
    VirtualTransaction,
)
from payment_orchestrator.providers.types import (
    AuthorizeRequest,
    AuthorizeResponse,
    CancelRequest,
    CancelResponse,
    CaptureRequest,
    CaptureResponse,
    ProcessedWebhook,
    ProviderConfig,
    ProviderHealth,
    RefundRequest,
    RefundResponse,
    WebhookPayload,
)

logger = structlog.get_logger(__name__)

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    """Render a non-negative integer in base 36."""
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


class PaymentProviderAdapter(ABC):
    """Base class for payment provider adapters."""

    provider_code: str
    provider_name: str
    supported_currencies: FrozenSet[Currency]
    supported_methods: FrozenSet[PaymentMethodType]

    # Test card number -> (error code, message)
    test_cards: Dict[str, Tuple[ProviderErrorCode, str]] = {}

    def __init__(self, state_store: Optional[VirtualStateStore] = None):
        """
        Initialize adapter.

        Args:
            state_store: Store for provider-side transaction state
        """
        self.state_store = state_store or InMemoryStateStore()
        self.config = ProviderConfig()
        self.is_initialized = False

    async def initialize(self, config: ProviderConfig) -> None:
        """Apply configuration; adapters refuse calls until initialized."""
        self.config = config
        self.is_initialized = True

    @abstractmethod
    async def authorize(self, request: AuthorizeRequest) -> AuthorizeResponse:
        ...

    @abstractmethod
    async def capture(self, request: CaptureRequest) -> CaptureResponse:
        ...

    @abstractmethod
    async def cancel(self, request: CancelRequest) -> CancelResponse:
        ...

    @abstractmethod
    async def refund(self, request: RefundRequest) -> RefundResponse:
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str, secret: str) -> bool:
        """Check a webhook signature against the shared secret."""

    @abstractmethod
    def decode_webhook(self, raw_payload: str, headers: Dict[str, str]) -> WebhookPayload:
        """Decode a raw webhook body into the common envelope."""

    async def parse_webhook(self, payload: WebhookPayload) -> ProcessedWebhook:
        return ProcessedWebhook(
            event_type=payload.event_type,
            provider_transaction_id=payload.provider_transaction_id,
        )

    async def check_health(self) -> ProviderHealth:
        """
        Probe the provider.

        Mock adapters report ``degraded`` with probability
        ``config.failure_rate``.
        """
        start = time.perf_counter()
        await self._simulate_latency()
        latency_ms = (time.perf_counter() - start) * 1000

        if random.random() < self.config.failure_rate:
            return ProviderHealth(
                status="degraded",
                latency_ms=latency_ms,
                message="Simulated degradation",
            )

        return ProviderHealth(status="healthy", latency_ms=latency_ms)

    def supports_currency(self, currency: Currency | str) -> bool:
        return Currency(currency) in self.supported_currencies

    def supports_method(self, method: PaymentMethodType | str) -> bool:
        return PaymentMethodType(method) in self.supported_methods

    def _generate_transaction_id(self) -> str:
        timestamp = to_base36(int(time.time() * 1000))
        return f"{self.provider_code}_{timestamp}_{secrets.token_hex(4)}"

    async def _simulate_latency(self) -> None:
        if self.config.simulate_latency_ms > 0:
            await asyncio.sleep(self.config.simulate_latency_ms / 1000)

    def _ensure_initialized(self) -> None:
        if not self.is_initialized:
            raise ProviderError(
                f"Provider {self.provider_code} is not initialized",
                ProviderErrorCode.PROVIDER_UNAVAILABLE,
                provider_code=self.provider_code,
            )

    def _check_test_card(self, card_number: Optional[str]) -> None:
        """Raise the scripted error for a test card number."""
        scripted = self.test_cards.get(card_number or "")
        if scripted is not None:
            code, message = scripted
            raise self._error(message, code)

    def _load(self, provider_transaction_id: str, label: str = "Transaction") -> VirtualTransaction:
        state = self.state_store.get(self.provider_code, provider_transaction_id)
        if state is None:
            raise self._error(
                f"{label} {provider_transaction_id} not found", ProviderErrorCode.NOT_FOUND
            )
        return state

    def _error(self, message: str, code: ProviderErrorCode) -> ProviderError:
        return ProviderError(message, code, provider_code=self.provider_code)
