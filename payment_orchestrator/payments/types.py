"""Payment request and result models."""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from payment_orchestrator.core.enums import Currency, TransactionStatus, TransactionType
from payment_orchestrator.providers.types import PaymentMethodDetails


class CreatePaymentRequest(BaseModel):
    """Payment submitted by a merchant."""

    merchant_id: str = Field(min_length=1)
    amount: int = Field(gt=0, description="Amount in minor units")
    currency: Currency
    target_currency: Optional[Currency] = Field(
        default=None, description="Currency to charge in; FX conversion applies when it differs"
    )
    payment_method: PaymentMethodDetails
    customer_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = Field(default=None, max_length=255)
    capture: bool = True


class CapturePaymentRequest(BaseModel):
    amount: Optional[int] = Field(default=None, gt=0)


class RefundPaymentRequest(BaseModel):
    amount: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = None


class PaymentFilter(BaseModel):
    merchant_id: Optional[str] = None
    customer_id: Optional[str] = None
    status: Optional[TransactionStatus] = None
    type: Optional[TransactionType] = None
    currency: Optional[Currency] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


class PaymentResult(BaseModel):
    """Transaction as returned to callers."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    merchant_id: str
    customer_id: Optional[str] = None
    type: TransactionType
    status: TransactionStatus
    amount: int
    currency: Currency
    converted_amount: Optional[int] = None
    converted_currency: Optional[Currency] = None
    fx_rate_id: Optional[uuid.UUID] = None
    fx_effective_rate: Optional[float] = None
    provider_id: Optional[uuid.UUID] = None
    provider_transaction_id: Optional[str] = None
    parent_transaction_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    provider_attempts: List[Dict[str, Any]] = Field(default_factory=list)
    captured_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: Optional[TransactionStatus] = None
    to_status: TransactionStatus
    reason: Optional[str] = None
    created_at: datetime
