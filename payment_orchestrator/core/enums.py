"""Shared enumerations used across routing, payments, ledger and reconciliation."""
from enum import Enum


class Currency(str, Enum):
    """ISO 4217 currencies supported by the orchestrator."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    SGD = "SGD"
    JPY = "JPY"
    AUD = "AUD"
    CAD = "CAD"
    CHF = "CHF"
    CNY = "CNY"
    HKD = "HKD"


class PaymentMethodType(str, Enum):
    """Payment instrument families."""

    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    DIGITAL_WALLET = "DIGITAL_WALLET"
    CRYPTO = "CRYPTO"


class ProviderStatus(str, Enum):
    """Operational status of a payment provider."""

    ACTIVE = "ACTIVE"
    DEGRADED = "DEGRADED"
    MAINTENANCE = "MAINTENANCE"
    INACTIVE = "INACTIVE"


class TransactionType(str, Enum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    PAYOUT = "PAYOUT"
    TRANSFER = "TRANSFER"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class LedgerEntryType(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class AccountCode(str, Enum):
    """Chart of accounts."""

    # Assets
    CASH = "1000"
    ACCOUNTS_RECEIVABLE = "1100"
    PROVIDER_RECEIVABLE = "1200"
    FX_RECEIVABLE = "1300"

    # Liabilities
    ACCOUNTS_PAYABLE = "2000"
    MERCHANT_PAYABLE = "2100"
    REFUND_PAYABLE = "2200"

    # Revenue
    PAYMENT_REVENUE = "3000"
    FX_REVENUE = "3100"
    FEE_REVENUE = "3200"

    # Expenses
    PROVIDER_FEES = "4000"
    FX_COSTS = "4100"
    REFUND_EXPENSE = "4200"


class DiscrepancyType(str, Enum):
    MISSING_IN_DB = "MISSING_IN_DB"
    MISSING_IN_PROVIDER = "MISSING_IN_PROVIDER"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    STATUS_MISMATCH = "STATUS_MISMATCH"


class DiscrepancyResolution(str, Enum):
    FORCE_MATCH = "force_match"
    REFUND = "refund"
    IGNORE = "ignore"


class ReportStatus(str, Enum):
    COMPLETED = "COMPLETED"
    REQUIRES_REVIEW = "REQUIRES_REVIEW"


class WebhookEventStatus(str, Enum):
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


def enum_values(enum_cls: type[Enum]) -> str:
    """Render enum values as a SQL ``IN`` list for check constraints."""
    return ", ".join(f"'{member.value}'" for member in enum_cls)
