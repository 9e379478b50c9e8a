"""Database models and connection management."""
from payment_orchestrator.database.connection import (
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)
from payment_orchestrator.database.models import (
    Base,
    FxRateRecord,
    LedgerEntry,
    MerchantProviderConfig,
    PaymentProvider,
    ReconciliationReport,
    RoutingRule,
    Transaction,
    TransactionStatusHistory,
    WebhookEvent,
    utcnow,
)

__all__ = [
    "Base",
    "FxRateRecord",
    "LedgerEntry",
    "MerchantProviderConfig",
    "PaymentProvider",
    "ReconciliationReport",
    "RoutingRule",
    "Transaction",
    "TransactionStatusHistory",
    "WebhookEvent",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
    "utcnow",
]
