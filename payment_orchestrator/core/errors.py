"""
Error kinds raised by the orchestrator.

Every failure belongs to exactly one kind (provider, payment, routing,
ledger, reconciliation, fx). Each kind is a single exception class carrying
a closed ``code`` enum plus structured fields; callers branch on ``code``
rather than on subclasses.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    PROVIDER = "provider"
    PAYMENT = "payment"
    ROUTING = "routing"
    LEDGER = "ledger"
    RECONCILIATION = "reconciliation"
    FX = "fx"


class ProviderErrorCode(str, Enum):
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    EXPIRED_CARD = "EXPIRED_CARD"
    INVALID_CARD = "INVALID_CARD"
    INVALID_CVV = "INVALID_CVV"
    CARD_DECLINED = "CARD_DECLINED"
    FRAUD_SUSPECTED = "FRAUD_SUSPECTED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_PROVIDER_ERRORS = frozenset(
    {
        ProviderErrorCode.NETWORK_ERROR,
        ProviderErrorCode.TIMEOUT,
        ProviderErrorCode.RATE_LIMITED,
        ProviderErrorCode.PROVIDER_UNAVAILABLE,
    }
)


class PaymentErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"


class RoutingErrorCode(str, Enum):
    NO_PROVIDERS_AVAILABLE = "NO_PROVIDERS_AVAILABLE"
    NO_ELIGIBLE_PROVIDER = "NO_ELIGIBLE_PROVIDER"
    RULE_NOT_FOUND = "RULE_NOT_FOUND"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


class LedgerErrorCode(str, Enum):
    UNBALANCED_ENTRY = "UNBALANCED_ENTRY"
    INVALID_ACCOUNT_CODE = "INVALID_ACCOUNT_CODE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"


class ReconciliationErrorCode(str, Enum):
    REPORT_NOT_FOUND = "REPORT_NOT_FOUND"
    DISCREPANCY_NOT_FOUND = "DISCREPANCY_NOT_FOUND"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


class FxErrorCode(str, Enum):
    RATE_NOT_FOUND = "RATE_NOT_FOUND"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class OrchestratorError(Exception):
    """Base for all orchestrator error kinds."""

    kind: ErrorKind

    def __init__(self, message: str, code: Enum, **details: Any):
        """
        Initialize error.

        Args:
            message: Human readable message
            code: Error code from the kind's code enum
            **details: Structured context (transaction id, report id, ...)
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error for logs and API consumers."""
        return {
            "kind": self.kind.value,
            "code": self.code.value,
            "message": self.message,
            **{k: str(v) for k, v in self.details.items()},
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.code.value}, message={self.message!r})>"


class ProviderError(OrchestratorError):
    """Failure reported by (or while talking to) a payment provider."""

    kind = ErrorKind.PROVIDER

    def __init__(
        self,
        message: str,
        code: ProviderErrorCode = ProviderErrorCode.UNKNOWN_ERROR,
        retryable: Optional[bool] = None,
        provider_code: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, code, provider_code=provider_code)
        self.retryable = code in RETRYABLE_PROVIDER_ERRORS if retryable is None else retryable
        self.provider_code = provider_code
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retryable"] = self.retryable
        return data


class PaymentError(OrchestratorError):
    """Payment orchestration failure."""

    kind = ErrorKind.PAYMENT

    def __init__(
        self,
        message: str,
        code: PaymentErrorCode,
        transaction_id: Optional[Any] = None,
        provider_error: Optional[ProviderError] = None,
    ):
        super().__init__(
            message,
            code,
            transaction_id=transaction_id,
            provider_code=provider_error.provider_code if provider_error else None,
        )
        self.transaction_id = transaction_id
        self.provider_error = provider_error

    @classmethod
    def not_found(cls, transaction_id: Any) -> "PaymentError":
        return cls(
            f"Transaction {transaction_id} not found",
            PaymentErrorCode.NOT_FOUND,
            transaction_id=transaction_id,
        )

    @classmethod
    def invalid_status(cls, transaction_id: Any, current: str, required: str) -> "PaymentError":
        return cls(
            f"Transaction {transaction_id} is {current}, expected {required}",
            PaymentErrorCode.INVALID_STATUS,
            transaction_id=transaction_id,
        )


class RoutingError(OrchestratorError):
    """Routing decision could not be made."""

    kind = ErrorKind.ROUTING

    def __init__(self, message: str, code: RoutingErrorCode, merchant_id: Optional[str] = None):
        super().__init__(message, code, merchant_id=merchant_id)
        self.merchant_id = merchant_id


class LedgerError(OrchestratorError):
    """Ledger posting rejected."""

    kind = ErrorKind.LEDGER

    def __init__(self, message: str, code: LedgerErrorCode, transaction_id: Optional[Any] = None):
        super().__init__(message, code, transaction_id=transaction_id)
        self.transaction_id = transaction_id


class ReconciliationError(OrchestratorError):
    """Reconciliation report lookup or update failed."""

    kind = ErrorKind.RECONCILIATION

    def __init__(
        self,
        message: str,
        code: ReconciliationErrorCode,
        report_id: Optional[Any] = None,
        discrepancy_id: Optional[str] = None,
    ):
        super().__init__(message, code, report_id=report_id, discrepancy_id=discrepancy_id)
        self.report_id = report_id
        self.discrepancy_id = discrepancy_id


class FxError(OrchestratorError):
    """FX rate lookup or quote failure."""

    kind = ErrorKind.FX

    def __init__(
        self,
        message: str,
        code: FxErrorCode,
        source_currency: Optional[str] = None,
        target_currency: Optional[str] = None,
    ):
        super().__init__(
            message,
            code,
            source_currency=source_currency,
            target_currency=target_currency,
        )
