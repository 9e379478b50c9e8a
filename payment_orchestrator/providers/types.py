"""Request and response models exchanged with provider adapters."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from payment_orchestrator.core.enums import Currency, PaymentMethodType, ProviderStatus


class ProviderConfig(BaseModel):
    """Runtime configuration handed to an adapter on initialization."""

    api_key: Optional[str] = None
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None
    timeout_seconds: float = 30.0
    simulate_latency_ms: int = 0
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentMethodDetails(BaseModel):
    """Payment instrument presented for a payment."""

    type: PaymentMethodType
    token: Optional[str] = None
    card_number: Optional[str] = None
    expiry_month: Optional[int] = Field(default=None, ge=1, le=12)
    expiry_year: Optional[int] = None
    cvv: Optional[str] = None
    holder_name: Optional[str] = None
    card_brand: Optional[str] = None
    country: Optional[str] = None

    @property
    def last_four(self) -> Optional[str]:
        return self.card_number[-4:] if self.card_number else None


class AuthorizeRequest(BaseModel):
    merchant_id: str
    amount: int = Field(gt=0)
    currency: Currency
    payment_method: PaymentMethodDetails
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    capture: bool = True
    customer_id: Optional[str] = None


class AuthorizeResponse(BaseModel):
    success: bool
    provider_transaction_id: str
    status: Literal["authorized", "captured", "declined", "pending"]
    amount: int
    currency: Currency
    authorization_code: Optional[str] = None
    avs_result: Optional[str] = None
    cvv_result: Optional[str] = None
    risk_score: Optional[float] = None
    decline_reason: Optional[str] = None
    raw_response: Dict[str, Any] = Field(default_factory=dict)


class CaptureRequest(BaseModel):
    provider_transaction_id: str
    amount: Optional[int] = Field(default=None, gt=0)
    currency: Optional[Currency] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CaptureResponse(BaseModel):
    success: bool
    provider_transaction_id: str
    captured_amount: int
    currency: Currency
    raw_response: Dict[str, Any] = Field(default_factory=dict)


class CancelRequest(BaseModel):
    provider_transaction_id: str
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CancelResponse(BaseModel):
    success: bool
    provider_transaction_id: str
    raw_response: Dict[str, Any] = Field(default_factory=dict)


class RefundRequest(BaseModel):
    provider_transaction_id: str
    amount: Optional[int] = Field(default=None, gt=0)
    currency: Optional[Currency] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RefundResponse(BaseModel):
    success: bool
    provider_refund_id: str
    refunded_amount: int
    currency: Currency
    status: Literal["pending", "completed", "failed"]
    raw_response: Dict[str, Any] = Field(default_factory=dict)


class ProviderHealth(BaseModel):
    """Result of an adapter health probe."""

    status: Literal["healthy", "degraded", "unhealthy"]
    latency_ms: float = 0.0
    last_check: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message: Optional[str] = None


class ProviderMetrics(BaseModel):
    """Provider performance over the rolling window."""

    success_rate: float
    average_latency_ms: float
    total_transactions: int
    failed_transactions: int
    last_updated: datetime


class WebhookPayload(BaseModel):
    """Provider webhook decoded into a common envelope."""

    event_type: str
    provider_event_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    signature: Optional[str] = None


class ProcessedWebhook(BaseModel):
    """Webhook interpreted by the adapter."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    provider_transaction_id: Optional[str] = None
    status: Optional[Literal["authorized", "captured", "refunded", "cancelled", "failed"]] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RoutingProvider(BaseModel):
    """Provider as seen by the routing engine for one merchant."""

    id: uuid.UUID
    code: str
    name: str
    status: ProviderStatus
    supported_currencies: List[str]
    supported_methods: List[str]
    priority: int = 1
    success_rate: Optional[float] = None
    average_latency_ms: Optional[float] = None
    cost_per_transaction: Optional[float] = None
    is_active: bool = True
