"""Double-entry ledger."""
from .service import LedgerService
from .types import (
    AccountBalance,
    LedgerEntryFilter,
    LedgerEntryInfo,
    LedgerEntryInput,
    LedgerSummary,
)

__all__ = [
    "AccountBalance",
    "LedgerEntryFilter",
    "LedgerEntryInfo",
    "LedgerEntryInput",
    "LedgerService",
    "LedgerSummary",
]
