"""FX rate, conversion and quote models."""
import uuid
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from payment_orchestrator.core.enums import Currency


class FxRate(BaseModel):
    """Rate for a currency pair, with the spread applied on top."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[uuid.UUID] = None
    source_currency: Currency
    target_currency: Currency
    rate: float = Field(gt=0)
    spread: float = Field(default=0.0, ge=0)
    effective_rate: float = Field(gt=0)
    source: str
    valid_from: datetime
    valid_to: Optional[datetime] = None


class FxProviderRates(BaseModel):
    """Rates published by a provider for one base currency."""

    base_currency: Currency
    rates: Dict[str, float]
    timestamp: datetime
    source: str


class ConversionResult(BaseModel):
    source_amount: int
    source_currency: Currency
    target_amount: int
    target_currency: Currency
    rate: float
    spread: float
    effective_rate: float
    spread_amount: int
    fx_rate_id: Optional[uuid.UUID] = None


class FxQuote(BaseModel):
    """Conversion locked in until ``expires_at``."""

    id: str
    source_amount: int
    source_currency: Currency
    target_amount: int
    target_currency: Currency
    rate: float
    spread: float
    effective_rate: float
    fx_rate_id: Optional[uuid.UUID] = None
    expires_at: datetime
    created_at: datetime
