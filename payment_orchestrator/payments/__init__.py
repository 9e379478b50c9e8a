"""Payment orchestration."""
from .orchestrator import PaymentOrchestrator
from .types import (
    CapturePaymentRequest,
    CreatePaymentRequest,
    PaymentFilter,
    PaymentResult,
    RefundPaymentRequest,
    StatusHistoryEntry,
)

__all__ = [
    "CapturePaymentRequest",
    "CreatePaymentRequest",
    "PaymentFilter",
    "PaymentOrchestrator",
    "PaymentResult",
    "RefundPaymentRequest",
    "StatusHistoryEntry",
]
