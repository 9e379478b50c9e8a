"""Ledger entry and balance models."""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from payment_orchestrator.core.enums import Currency, LedgerEntryType


class LedgerEntryInput(BaseModel):
    """
    One line of a posting.

    Account code and amount are checked by the ledger itself so that a bad
    line is reported as a ledger rejection rather than a validation error.
    """

    account_code: str
    entry_type: LedgerEntryType
    amount: int
    currency: Currency
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LedgerEntryInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    account_code: str
    entry_type: LedgerEntryType
    amount: int
    currency: Currency
    balance: Optional[int] = None
    posting: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime


class LedgerEntryFilter(BaseModel):
    transaction_id: Optional[uuid.UUID] = None
    account_code: Optional[str] = None
    entry_type: Optional[LedgerEntryType] = None
    currency: Optional[Currency] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


class AccountBalance(BaseModel):
    """Debit and credit totals of one account in one currency."""

    account_code: str
    currency: Currency
    debit_total: int
    credit_total: int
    balance: int


class LedgerSummary(BaseModel):
    total_debits: int
    total_credits: int
    is_balanced: bool
    accounts: List[AccountBalance]
