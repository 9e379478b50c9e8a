"""SQLAlchemy database models for the payment orchestrator."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from payment_orchestrator.core.enums import (
    LedgerEntryType,
    ProviderStatus,
    ReportStatus,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
    enum_values,
)

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PaymentProvider(Base):
    """
    Payment provider directory.

    One row per provider integration (``code`` matches an adapter in the
    adapter registry). Status is refreshed from health checks.
    """

    __tablename__ = "payment_providers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProviderStatus.ACTIVE.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    supported_currencies: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    supported_methods: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    cost_per_transaction: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    base_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    config: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            f"status IN ({enum_values(ProviderStatus)})", name="valid_provider_status"
        ),
        CheckConstraint("cost_per_transaction >= 0", name="non_negative_cost"),
    )

    def __repr__(self) -> str:
        """String representation of PaymentProvider."""
        return f"<PaymentProvider(code={self.code}, status={self.status})>"


class MerchantProviderConfig(Base):
    """
    Per-merchant provider enablement.

    ``priority`` is the merchant's preference order (1 = most preferred) and
    feeds the priority component of provider scoring.
    """

    __tablename__ = "merchant_provider_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payment_providers.id"), nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    credentials: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    provider: Mapped[PaymentProvider] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("merchant_id", "provider_id", name="uq_merchant_provider"),
        CheckConstraint("priority >= 1", name="positive_priority"),
    )


class RoutingRule(Base):
    """
    Merchant routing rule.

    Rules are evaluated in ascending ``priority``; the first rule whose
    ``conditions`` match selects ``provider_id``. ``version`` is bumped on
    every update and checked on flush.
    """

    __tablename__ = "routing_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conditions: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payment_providers.id"), nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_routing_rules_merchant_priority", "merchant_id", "is_active", "priority"),
    )

    def __repr__(self) -> str:
        """String representation of RoutingRule."""
        return f"<RoutingRule(id={self.id}, name={self.name}, priority={self.priority})>"


class Transaction(Base):
    """
    Payment, refund, payout and transfer records.

    Amount and currency never change after creation. ``status`` only moves
    along the transaction state machine; every change is mirrored in
    ``transaction_status_history``.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=TransactionType.PAYMENT.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    converted_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    converted_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    fx_rate_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    fx_effective_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    payment_method_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("payment_providers.id"), nullable=True, index=True
    )
    provider_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    parent_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True, index=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    provider_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    provider_attempts: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            f"status IN ({enum_values(TransactionStatus)})", name="valid_transaction_status"
        ),
        CheckConstraint(
            f"type IN ({enum_values(TransactionType)})", name="valid_transaction_type"
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_transactions_merchant_provider_created", "merchant_id", "provider_id", "created_at"),
    )

    @property
    def charged_amount(self) -> int:
        """Amount sent to the provider (converted amount when FX applied)."""
        return self.converted_amount if self.converted_amount is not None else self.amount

    @property
    def charged_currency(self) -> str:
        """Currency sent to the provider."""
        return self.converted_currency or self.currency

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, merchant_id={self.merchant_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class TransactionStatusHistory(Base):
    """
    Transaction status audit trail.

    Append-only; rows are never updated or deleted.
    """

    __tablename__ = "transaction_status_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False, index=True
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        """String representation of TransactionStatusHistory."""
        return (
            f"<TransactionStatusHistory(transaction_id={self.transaction_id}, "
            f"{self.from_status}->{self.to_status})>"
        )


class LedgerEntry(Base):
    """
    Double-entry ledger lines.

    Immutable once written. The entries of one posting are inserted in a
    single database transaction and balance per currency.
    """

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False, index=True
    )
    account_code: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    entry_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    posting: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_ledger_amount"),
        CheckConstraint(
            f"entry_type IN ({enum_values(LedgerEntryType)})", name="valid_entry_type"
        ),
        UniqueConstraint(
            "transaction_id", "posting", "account_code", "entry_type", name="uq_ledger_posting"
        ),
        Index("idx_ledger_account_currency", "account_code", "currency", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of LedgerEntry."""
        return (
            f"<LedgerEntry(account={self.account_code}, type={self.entry_type}, "
            f"amount={self.amount} {self.currency})>"
        )


class FxRateRecord(Base):
    """Stored FX rates; the latest valid row per pair backs the rate cache."""

    __tablename__ = "fx_rates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    target_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[float] = mapped_column(Float, nullable=False)
    spread: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    effective_rate: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("rate > 0", name="positive_rate"),
        Index("idx_fx_rates_pair_valid_from", "source_currency", "target_currency", "valid_from"),
    )


class ReconciliationReport(Base):
    """
    Result of one reconciliation run.

    ``discrepancies`` holds the ordered discrepancy list; the report is only
    mutated by discrepancy resolution, guarded by ``version``.
    """

    __tablename__ = "reconciliation_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unmatched_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discrepancies: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    summary: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            f"status IN ({enum_values(ReportStatus)})", name="valid_report_status"
        ),
    )

    def __repr__(self) -> str:
        """String representation of ReconciliationReport."""
        return (
            f"<ReconciliationReport(id={self.id}, merchant_id={self.merchant_id}, "
            f"status={self.status})>"
        )


class WebhookEvent(Base):
    """Inbound provider webhook events and their processing state."""

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payment_providers.id"), nullable=False
    )
    provider_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    headers: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            f"status IN ({enum_values(WebhookEventStatus)})", name="valid_webhook_status"
        ),
        UniqueConstraint("provider_id", "provider_event_id", name="uq_webhook_provider_event"),
    )

    def __repr__(self) -> str:
        """String representation of WebhookEvent."""
        return f"<WebhookEvent(id={self.id}, type={self.event_type}, status={self.status})>"
