"""
Payment orchestration.

``create_payment`` routes a payment, persists it as PENDING and then tries
the selected provider followed by the routing fallbacks, one at a time:

- a retryable ``ProviderError`` moves on to the next candidate
- a non-retryable one stops immediately
- an answer from the provider ends the loop (captured -> COMPLETED,
  authorized -> PENDING, declined -> FAILED)

Every attempt is timed and fed to the provider's rolling metrics, which in
turn feed routing scores.
"""
import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, List, Optional, Tuple, TypeVar

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.enums import TransactionStatus, TransactionType
from payment_orchestrator.core.errors import (
    PaymentError,
    PaymentErrorCode,
    ProviderError,
    ProviderErrorCode,
)
from payment_orchestrator.database.models import (
    PaymentProvider,
    Transaction,
    TransactionStatusHistory,
)
from payment_orchestrator.fx.service import FxService
from payment_orchestrator.fx.types import ConversionResult
from payment_orchestrator.ledger.service import LedgerService
from payment_orchestrator.monitoring.metrics import metrics
from payment_orchestrator.payments.history import record_creation, record_status_change
from payment_orchestrator.payments.types import (
    CapturePaymentRequest,
    CreatePaymentRequest,
    PaymentFilter,
    PaymentResult,
    RefundPaymentRequest,
    StatusHistoryEntry,
)
from payment_orchestrator.providers.base import PaymentProviderAdapter
from payment_orchestrator.providers.service import ProviderService
from payment_orchestrator.providers.types import (
    AuthorizeRequest,
    AuthorizeResponse,
    CancelRequest,
    CaptureRequest,
    RefundRequest,
)
from payment_orchestrator.routing.service import RoutingService
from payment_orchestrator.routing.types import RoutingContext

logger = structlog.get_logger(__name__)

T = TypeVar("T")

S = TransactionStatus

AUTHORIZE_STATUS_MAP = {
    "captured": S.COMPLETED,
    "authorized": S.PENDING,
    "pending": S.PENDING,
    "declined": S.FAILED,
}

REFUND_STATUS_MAP = {
    "completed": S.COMPLETED,
    "pending": S.PENDING,
    "failed": S.FAILED,
}


class PaymentOrchestrator:
    """Payment lifecycle: create with fallback, capture, cancel, refund."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        routing: RoutingService,
        provider_service: ProviderService,
        ledger: LedgerService,
        fx: FxService,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            session_factory: Database session factory
            routing: Routing decision engine
            provider_service: Provider directory and adapters
            ledger: Double-entry ledger
            fx: FX conversion service
            settings: Application settings (attempt cap, provider timeout)
        """
        self.session_factory = session_factory
        self.routing = routing
        self.provider_service = provider_service
        self.ledger = ledger
        self.fx = fx
        self.settings = settings or get_settings()

    async def create_payment(self, request: CreatePaymentRequest) -> PaymentResult:
        """
        Create and execute a payment.

        A request whose idempotency key is already known returns the stored
        transaction without contacting any provider.

        Returns:
            PaymentResult: Transaction in COMPLETED, PENDING (authorized
            only) or FAILED (declined) status

        Raises:
            RoutingError: No provider can take the payment
            FxError: Conversion to the target currency is not possible
            PaymentError: ALL_PROVIDERS_FAILED when every attempt raised
        """
        started = time.perf_counter()
        log = logger.bind(
            merchant_id=request.merchant_id,
            idempotency_key=request.idempotency_key,
        )
        log.info("payment_create_started", amount=request.amount, currency=request.currency.value)

        if request.idempotency_key:
            existing = await self._find_by_idempotency_key(request.idempotency_key)
            if existing is not None:
                log.info("payment_idempotent_replay", transaction_id=str(existing.id))
                return existing

        conversion: Optional[ConversionResult] = None
        if request.target_currency and request.target_currency != request.currency:
            conversion = await self.fx.convert(
                request.amount, request.currency, request.target_currency
            )

        amount = conversion.target_amount if conversion else request.amount
        currency = conversion.target_currency if conversion else request.currency

        context = RoutingContext(
            merchant_id=request.merchant_id,
            amount=amount,
            currency=currency,
            payment_method_type=request.payment_method.type,
            card_brand=request.payment_method.card_brand,
            country=request.payment_method.country,
            customer_id=request.customer_id,
            metadata=request.metadata,
        )
        decision = await self.routing.select_provider(context)

        try:
            transaction_id = await self._create_pending(request, conversion)
        except IntegrityError:
            # A concurrent request with the same idempotency key won the insert
            existing = (
                await self._find_by_idempotency_key(request.idempotency_key)
                if request.idempotency_key
                else None
            )
            if existing is None:
                raise
            log.info("payment_idempotent_race", transaction_id=str(existing.id))
            return existing

        log = log.bind(transaction_id=str(transaction_id))
        candidates = [decision.selected_provider_id, *decision.fallback_provider_ids]
        candidates = candidates[: self.settings.max_provider_attempts]

        last_error: Optional[ProviderError] = None
        for attempt, provider_id in enumerate(candidates, start=1):
            try:
                result = await self._attempt(
                    transaction_id, provider_id, attempt, request, amount, currency
                )
            except ProviderError as e:
                last_error = e
                log.warning(
                    "payment_attempt_failed",
                    provider_id=str(provider_id),
                    attempt=attempt,
                    code=e.code.value,
                    retryable=e.retryable,
                    error=e.message,
                )
                if not e.retryable:
                    break
                continue
            except Exception as e:
                log.error("payment_attempt_error", provider_id=str(provider_id), error=str(e))
                await self._fail(transaction_id, str(e))
                raise

            metrics.record_payment_request(result.status.value, currency.value, amount)
            metrics.record_payment_duration(time.perf_counter() - started)
            log.info(
                "payment_create_finished",
                status=result.status.value,
                provider_id=str(provider_id),
                attempts=attempt,
            )
            return result

        reason = last_error.message if last_error else "All payment providers failed"
        await self._fail(transaction_id, reason)
        metrics.record_payment_request(S.FAILED.value, currency.value, amount)
        metrics.record_payment_duration(time.perf_counter() - started)
        log.error("payment_all_providers_failed", attempts=len(candidates), reason=reason)

        raise PaymentError(
            f"All payment providers failed for transaction {transaction_id}",
            PaymentErrorCode.ALL_PROVIDERS_FAILED,
            transaction_id=transaction_id,
            provider_error=last_error,
        )

    async def capture_payment(
        self,
        transaction_id: uuid.UUID,
        request: Optional[CapturePaymentRequest] = None,
    ) -> PaymentResult:
        """
        Capture an authorized payment (PENDING -> COMPLETED).

        Raises:
            PaymentError: NOT_FOUND, INVALID_STATUS, INVALID_REQUEST (no
                provider on the transaction) or PROVIDER_ERROR
        """
        request = request or CapturePaymentRequest()
        transaction = await self._load_for_action(transaction_id, S.PENDING)
        provider, adapter = await self._adapter_for(transaction)

        started = time.perf_counter()
        try:
            response = await self._provider_call(
                transaction,
                provider,
                adapter.capture(
                    CaptureRequest(
                        provider_transaction_id=transaction.provider_transaction_id,
                        amount=request.amount,
                        currency=transaction.charged_currency,
                    )
                ),
            )
        except PaymentError:
            await self.provider_service.update_metrics(
                provider.id, False, (time.perf_counter() - started) * 1000
            )
            raise
        await self.provider_service.update_metrics(
            provider.id, True, (time.perf_counter() - started) * 1000
        )

        async with self.session_factory() as db:
            transaction = await self._get_transaction(db, transaction_id)
            record_status_change(db, transaction, S.COMPLETED, "Payment captured")
            transaction.captured_at = datetime.now(timezone.utc)
            transaction.provider_response = response.raw_response
            await self.ledger.record_completed_payment(transaction, db, response.captured_amount)
            await db.commit()
            await db.refresh(transaction)
            result = PaymentResult.model_validate(transaction)

        logger.info(
            "payment_captured",
            transaction_id=str(transaction_id),
            captured_amount=response.captured_amount,
        )
        return result

    async def cancel_payment(
        self, transaction_id: uuid.UUID, reason: Optional[str] = None
    ) -> PaymentResult:
        """
        Cancel a PENDING payment.

        A transaction never sent to a provider is cancelled locally.

        Raises:
            PaymentError: NOT_FOUND, INVALID_STATUS or PROVIDER_ERROR
        """
        transaction = await self._load_for_action(transaction_id, S.PENDING)

        if transaction.provider_id and transaction.provider_transaction_id:
            provider, adapter = await self._adapter_for(transaction)
            await self._provider_call(
                transaction,
                provider,
                adapter.cancel(
                    CancelRequest(
                        provider_transaction_id=transaction.provider_transaction_id,
                        reason=reason,
                    )
                ),
            )

        async with self.session_factory() as db:
            transaction = await self._get_transaction(db, transaction_id)
            record_status_change(db, transaction, S.CANCELLED, reason)
            transaction.cancelled_at = datetime.now(timezone.utc)
            transaction.failure_reason = reason
            await db.commit()
            await db.refresh(transaction)
            result = PaymentResult.model_validate(transaction)

        logger.info("payment_cancelled", transaction_id=str(transaction_id), reason=reason)
        return result

    async def refund_payment(
        self,
        transaction_id: uuid.UUID,
        request: Optional[RefundPaymentRequest] = None,
    ) -> PaymentResult:
        """
        Refund a COMPLETED payment, fully or partially.

        Creates a REFUND transaction linked to the payment and posts the
        refund to the ledger. The payment moves to REFUNDED once its refunds
        add up to the charged amount.
        A refund the provider reports as failed is kept as a FAILED refund
        transaction, the payment stays COMPLETED and PROVIDER_ERROR is raised.

        Returns:
            PaymentResult: The refund transaction

        Raises:
            PaymentError: NOT_FOUND, INVALID_STATUS, INVALID_REQUEST (amount
                above what is left to refund) or PROVIDER_ERROR
        """
        request = request or RefundPaymentRequest()
        transaction = await self._load_for_action(transaction_id, S.COMPLETED)

        already_refunded = await self._refunded_total(transaction_id)
        remaining = transaction.charged_amount - already_refunded
        amount = request.amount or remaining
        if amount <= 0 or amount > remaining:
            raise PaymentError(
                f"Refund amount {amount} exceeds refundable amount {remaining}",
                PaymentErrorCode.INVALID_REQUEST,
                transaction_id=transaction_id,
            )

        provider, adapter = await self._adapter_for(transaction)
        response = await self._provider_call(
            transaction,
            provider,
            adapter.refund(
                RefundRequest(
                    provider_transaction_id=transaction.provider_transaction_id,
                    amount=amount,
                    currency=transaction.charged_currency,
                    reason=request.reason,
                )
            ),
        )

        now = datetime.now(timezone.utc)
        async with self.session_factory() as db:
            parent = await self._get_transaction(db, transaction_id)
            refund = Transaction(
                id=uuid.uuid4(),
                merchant_id=parent.merchant_id,
                customer_id=parent.customer_id,
                type=TransactionType.REFUND.value,
                status=S.PENDING.value,
                amount=response.refunded_amount,
                currency=response.currency.value,
                payment_method_type=parent.payment_method_type,
                provider_id=parent.provider_id,
                provider_transaction_id=response.provider_refund_id,
                parent_transaction_id=parent.id,
                description=request.reason or "Refund",
                provider_response=response.raw_response,
                metadata_={},
                provider_attempts=[],
            )
            await record_creation(db, refund, "Refund created")

            refund_status = REFUND_STATUS_MAP[response.status]
            if refund_status != S.PENDING:
                record_status_change(db, refund, refund_status, request.reason)
            if refund_status == S.COMPLETED:
                refund.refunded_at = now
                await self.ledger.record_refund(
                    refund.id, refund.amount, refund.currency, parent.merchant_id, db=db
                )

            counts_toward_total = refund_status in (S.COMPLETED, S.PENDING)
            if (
                counts_toward_total
                and already_refunded + response.refunded_amount >= parent.charged_amount
            ):
                record_status_change(db, parent, S.REFUNDED, request.reason or "Fully refunded")
                parent.refunded_at = now

            await db.commit()
            await db.refresh(refund)
            result = PaymentResult.model_validate(refund)

        if refund_status == S.FAILED:
            logger.warning(
                "payment_refund_failed",
                transaction_id=str(transaction_id),
                refund_transaction_id=str(result.id),
                provider_code=provider.code,
            )
            raise PaymentError(
                f"Provider {provider.code} declined the refund of {amount}",
                PaymentErrorCode.PROVIDER_ERROR,
                transaction_id=transaction_id,
            )

        logger.info(
            "payment_refunded",
            transaction_id=str(transaction_id),
            refund_transaction_id=str(result.id),
            refunded_amount=response.refunded_amount,
        )
        return result

    async def get_payment(self, transaction_id: uuid.UUID) -> Optional[PaymentResult]:
        async with self.session_factory() as db:
            transaction = await db.get(Transaction, transaction_id)
            return PaymentResult.model_validate(transaction) if transaction else None

    async def list_payments(
        self,
        filters: Optional[PaymentFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[PaymentResult], int]:
        """
        List transactions, newest first.

        Returns:
            Tuple[List[PaymentResult], int]: Page of transactions and total count
        """
        filters = filters or PaymentFilter()
        conditions = []
        if filters.merchant_id is not None:
            conditions.append(Transaction.merchant_id == filters.merchant_id)
        if filters.customer_id is not None:
            conditions.append(Transaction.customer_id == filters.customer_id)
        if filters.status is not None:
            conditions.append(Transaction.status == filters.status.value)
        if filters.type is not None:
            conditions.append(Transaction.type == filters.type.value)
        if filters.currency is not None:
            conditions.append(Transaction.currency == filters.currency.value)
        if filters.from_date is not None:
            conditions.append(Transaction.created_at >= filters.from_date)
        if filters.to_date is not None:
            conditions.append(Transaction.created_at <= filters.to_date)

        async with self.session_factory() as db:
            result = await db.execute(
                select(Transaction)
                .where(*conditions)
                .order_by(Transaction.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            payments = [PaymentResult.model_validate(t) for t in result.scalars().all()]
            total = await db.scalar(
                select(func.count()).select_from(Transaction).where(*conditions)
            )

        return payments, int(total or 0)

    async def get_status_history(self, transaction_id: uuid.UUID) -> List[StatusHistoryEntry]:
        """Status changes of a transaction, oldest first."""
        async with self.session_factory() as db:
            if await db.get(Transaction, transaction_id) is None:
                raise PaymentError.not_found(transaction_id)
            result = await db.execute(
                select(TransactionStatusHistory)
                .where(TransactionStatusHistory.transaction_id == transaction_id)
                .order_by(TransactionStatusHistory.id)
            )
            return [StatusHistoryEntry.model_validate(row) for row in result.scalars().all()]

    # Attempt execution

    async def _attempt(
        self,
        transaction_id: uuid.UUID,
        provider_id: uuid.UUID,
        attempt: int,
        request: CreatePaymentRequest,
        amount: int,
        currency: Any,
    ) -> PaymentResult:
        provider = await self.provider_service.get_provider(provider_id)
        if provider is None:
            raise ProviderError(
                f"Provider {provider_id} not found",
                ProviderErrorCode.PROVIDER_UNAVAILABLE,
            )

        async with self.session_factory() as db:
            transaction = await self._get_transaction(db, transaction_id)
            transaction.provider_id = provider.id
            if transaction.status == S.PENDING.value:
                record_status_change(
                    db, transaction, S.PROCESSING, f"Processing with {provider.code}"
                )
            await db.commit()

        started = time.perf_counter()
        try:
            adapter = await self.provider_service.get_adapter(provider.code, request.merchant_id)
            response: AuthorizeResponse = await self._with_timeout(
                provider.code,
                adapter.authorize(
                    AuthorizeRequest(
                        merchant_id=request.merchant_id,
                        amount=amount,
                        currency=currency,
                        payment_method=request.payment_method,
                        description=request.description,
                        metadata=request.metadata,
                        idempotency_key=request.idempotency_key,
                        capture=request.capture,
                        customer_id=request.customer_id,
                    )
                ),
            )
        except ProviderError as e:
            duration = time.perf_counter() - started
            await self.provider_service.update_metrics(provider.id, False, duration * 1000)
            metrics.record_provider_attempt(provider.code, "error", duration)
            await self._record_failed_attempt(transaction_id, provider, attempt, e, duration)
            raise

        duration = time.perf_counter() - started
        await self.provider_service.update_metrics(provider.id, response.success, duration * 1000)
        metrics.record_provider_attempt(provider.code, response.status, duration)

        new_status = AUTHORIZE_STATUS_MAP[response.status]
        async with self.session_factory() as db:
            transaction = await self._get_transaction(db, transaction_id)
            transaction.provider_transaction_id = response.provider_transaction_id
            transaction.provider_response = response.raw_response
            transaction.failure_reason = response.decline_reason
            record_status_change(
                db, transaction, new_status, response.decline_reason or f"Provider {response.status}"
            )
            if new_status == S.COMPLETED:
                transaction.captured_at = datetime.now(timezone.utc)
                await self.ledger.record_completed_payment(transaction, db)
            await db.commit()
            await db.refresh(transaction)
            return PaymentResult.model_validate(transaction)

    async def _record_failed_attempt(
        self,
        transaction_id: uuid.UUID,
        provider: PaymentProvider,
        attempt: int,
        error: ProviderError,
        duration_seconds: float,
    ) -> None:
        async with self.session_factory() as db:
            transaction = await self._get_transaction(db, transaction_id)
            # Reassign so the JSON column change is detected
            transaction.provider_attempts = [
                *(transaction.provider_attempts or []),
                {
                    "attempt": attempt,
                    "provider_id": str(provider.id),
                    "provider_code": provider.code,
                    "error_code": error.code.value,
                    "message": error.message,
                    "retryable": error.retryable,
                    "latency_ms": round(duration_seconds * 1000, 2),
                    "failed_at": datetime.now(timezone.utc).isoformat(),
                },
            ]
            transaction.failure_reason = error.message
            await db.commit()

    async def _fail(self, transaction_id: uuid.UUID, reason: str) -> None:
        async with self.session_factory() as db:
            transaction = await self._get_transaction(db, transaction_id)
            record_status_change(db, transaction, S.FAILED, reason)
            transaction.failure_reason = reason
            await db.commit()

    # Helpers

    async def _create_pending(
        self, request: CreatePaymentRequest, conversion: Optional[ConversionResult]
    ) -> uuid.UUID:
        transaction = Transaction(
            id=uuid.uuid4(),
            merchant_id=request.merchant_id,
            customer_id=request.customer_id,
            type=TransactionType.PAYMENT.value,
            status=S.PENDING.value,
            amount=request.amount,
            currency=request.currency.value,
            converted_amount=conversion.target_amount if conversion else None,
            converted_currency=conversion.target_currency.value if conversion else None,
            fx_rate_id=conversion.fx_rate_id if conversion else None,
            fx_effective_rate=conversion.effective_rate if conversion else None,
            payment_method_type=request.payment_method.type.value,
            idempotency_key=request.idempotency_key,
            description=request.description,
            metadata_=dict(request.metadata),
            provider_attempts=[],
        )
        async with self.session_factory() as db:
            await record_creation(db, transaction, "Payment created")
            await db.commit()
        return transaction.id

    async def _find_by_idempotency_key(self, idempotency_key: str) -> Optional[PaymentResult]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Transaction).where(Transaction.idempotency_key == idempotency_key)
            )
            transaction = result.scalar_one_or_none()
            return PaymentResult.model_validate(transaction) if transaction else None

    async def _load_for_action(
        self, transaction_id: uuid.UUID, required: TransactionStatus
    ) -> Transaction:
        async with self.session_factory() as db:
            transaction = await self._get_transaction(db, transaction_id)
        if transaction.status != required.value:
            raise PaymentError.invalid_status(transaction_id, transaction.status, required.value)
        return transaction

    async def _adapter_for(
        self, transaction: Transaction
    ) -> Tuple[PaymentProvider, PaymentProviderAdapter]:
        if not transaction.provider_id or not transaction.provider_transaction_id:
            raise PaymentError(
                "Transaction has no provider",
                PaymentErrorCode.INVALID_REQUEST,
                transaction_id=transaction.id,
            )

        provider = await self.provider_service.get_provider(transaction.provider_id)
        if provider is None:
            raise PaymentError(
                "Provider not found",
                PaymentErrorCode.PROVIDER_ERROR,
                transaction_id=transaction.id,
            )

        try:
            adapter = await self.provider_service.get_adapter(provider.code, transaction.merchant_id)
        except ProviderError as e:
            raise self._wrap(transaction, e) from e
        return provider, adapter

    async def _provider_call(
        self, transaction: Transaction, provider: PaymentProvider, call: Awaitable[T]
    ) -> T:
        try:
            return await self._with_timeout(provider.code, call)
        except ProviderError as e:
            logger.error(
                "payment_provider_call_failed",
                transaction_id=str(transaction.id),
                provider_code=provider.code,
                code=e.code.value,
                error=e.message,
            )
            raise self._wrap(transaction, e) from e

    async def _with_timeout(self, provider_code: str, call: Awaitable[T]) -> T:
        timeout = self.settings.provider_call_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Provider {provider_code} did not respond within {timeout}s",
                ProviderErrorCode.TIMEOUT,
                provider_code=provider_code,
                original_error=e,
            ) from e

    @staticmethod
    def _wrap(transaction: Transaction, error: ProviderError) -> PaymentError:
        return PaymentError(
            error.message,
            PaymentErrorCode.PROVIDER_ERROR,
            transaction_id=transaction.id,
            provider_error=error,
        )

    @staticmethod
    async def _get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
        transaction = await db.get(Transaction, transaction_id)
        if transaction is None:
            raise PaymentError.not_found(transaction_id)
        return transaction

    async def _refunded_total(self, transaction_id: uuid.UUID) -> int:
        async with self.session_factory() as db:
            total = await db.scalar(
                select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                    Transaction.parent_transaction_id == transaction_id,
                    Transaction.type == TransactionType.REFUND.value,
                    Transaction.status.in_([S.PENDING.value, S.COMPLETED.value]),
                )
            )
        return int(total or 0)
