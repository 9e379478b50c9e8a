"""Shared vocabulary: enums, error kinds and the transaction state machine."""
from .enums import (
    AccountCode,
    Currency,
    DiscrepancyResolution,
    DiscrepancyType,
    LedgerEntryType,
    PaymentMethodType,
    ProviderStatus,
    ReportStatus,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)
from .errors import (
    ErrorKind,
    FxError,
    FxErrorCode,
    LedgerError,
    LedgerErrorCode,
    OrchestratorError,
    PaymentError,
    PaymentErrorCode,
    ProviderError,
    ProviderErrorCode,
    ReconciliationError,
    ReconciliationErrorCode,
    RoutingError,
    RoutingErrorCode,
)
from .state_machine import assert_transition, can_transition

__all__ = [
    "AccountCode",
    "Currency",
    "DiscrepancyResolution",
    "DiscrepancyType",
    "LedgerEntryType",
    "PaymentMethodType",
    "ProviderStatus",
    "ReportStatus",
    "TransactionStatus",
    "TransactionType",
    "WebhookEventStatus",
    "ErrorKind",
    "OrchestratorError",
    "ProviderError",
    "ProviderErrorCode",
    "PaymentError",
    "PaymentErrorCode",
    "RoutingError",
    "RoutingErrorCode",
    "LedgerError",
    "LedgerErrorCode",
    "ReconciliationError",
    "ReconciliationErrorCode",
    "FxError",
    "FxErrorCode",
    "assert_transition",
    "can_transition",
]
