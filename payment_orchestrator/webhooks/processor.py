"""
Webhook ingress.

A provider callback is verified, decoded by the provider's adapter, stored
as a ``WebhookEvent`` and applied to the matching transaction through the
transaction state machine. Events are deduplicated by provider event id.
"""
import time
from datetime import datetime, timezone
from typing import Dict, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_orchestrator.cache import Cache, CacheDomain, cache_key
from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.enums import TransactionStatus, TransactionType, WebhookEventStatus
from payment_orchestrator.core.errors import ProviderError, ProviderErrorCode
from payment_orchestrator.database.models import Transaction, WebhookEvent
from payment_orchestrator.ledger.service import LedgerService
from payment_orchestrator.monitoring.metrics import metrics
from payment_orchestrator.payments.history import record_status_change
from payment_orchestrator.providers.types import ProcessedWebhook
from payment_orchestrator.providers.service import ProviderService

logger = structlog.get_logger(__name__)

WEBHOOK_STATUS_MAP = {
    "captured": TransactionStatus.COMPLETED,
    "authorized": TransactionStatus.PENDING,
    "refunded": TransactionStatus.REFUNDED,
    "cancelled": TransactionStatus.CANCELLED,
    "failed": TransactionStatus.FAILED,
}


class WebhookResult(BaseModel):
    success: bool
    event_id: Optional[int] = None
    duplicate: bool = False
    transaction_id: Optional[str] = None
    transaction_status: Optional[TransactionStatus] = None


class WebhookProcessor:
    """Verifies, records and applies provider webhooks."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Cache,
        provider_service: ProviderService,
        ledger: LedgerService,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.provider_service = provider_service
        self.ledger = ledger
        self.settings = settings or get_settings()

    async def handle(
        self,
        provider_code: str,
        raw_payload: str,
        signature: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> WebhookResult:
        """
        Process one webhook delivery.

        Args:
            provider_code: Provider the webhook came from
            raw_payload: Raw request body
            signature: Signature header value
            headers: Request headers

        Returns:
            WebhookResult: Stored event and resulting transaction status

        Raises:
            ProviderError: NOT_FOUND for an unknown provider,
                AUTHENTICATION_ERROR for a bad signature, INVALID_REQUEST
                for an undecodable body
            PaymentError: INVALID_TRANSITION if the event does not fit the
                transaction's current status (the event is marked FAILED)
        """
        started = time.perf_counter()
        headers = dict(headers or {})
        provider = await self.provider_service.get_provider_by_code(provider_code)
        if provider is None:
            raise ProviderError(
                f"Provider {provider_code} not found",
                ProviderErrorCode.NOT_FOUND,
                provider_code=provider_code,
            )

        adapter = await self.provider_service.get_adapter(provider.code)
        webhook_secret = (provider.config or {}).get("webhook_secret")
        if webhook_secret and not adapter.verify_webhook_signature(
            raw_payload, signature or "", webhook_secret
        ):
            logger.warning("webhook_signature_invalid", provider_code=provider.code)
            metrics.record_webhook_event(provider.code, "rejected", time.perf_counter() - started)
            raise ProviderError(
                "Invalid webhook signature",
                ProviderErrorCode.AUTHENTICATION_ERROR,
                provider_code=provider.code,
            )

        payload = adapter.decode_webhook(raw_payload, headers)
        log = logger.bind(
            provider_code=provider.code,
            event_type=payload.event_type,
            provider_event_id=payload.provider_event_id,
        )

        dedup_key = (
            cache_key(CacheDomain.WEBHOOK_PROCESSED, provider.code, payload.provider_event_id)
            if payload.provider_event_id
            else None
        )
        if dedup_key and await self.cache.exists(dedup_key):
            log.info("webhook_duplicate_skipped")
            metrics.record_webhook_event(provider.code, "duplicate", time.perf_counter() - started)
            return WebhookResult(success=True, duplicate=True)

        event = WebhookEvent(
            provider_id=provider.id,
            provider_event_id=payload.provider_event_id,
            event_type=payload.event_type,
            status=WebhookEventStatus.RECEIVED.value,
            payload=payload.data,
            headers=headers,
            signature=signature,
            attempts=0,
        )
        async with self.session_factory() as db:
            db.add(event)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                log.info("webhook_duplicate_event")
                metrics.record_webhook_event(
                    provider.code, "duplicate", time.perf_counter() - started
                )
                return WebhookResult(success=True, duplicate=True)
        event_id = event.id

        await self._set_event_status(event_id, WebhookEventStatus.PROCESSING)
        try:
            processed = await adapter.parse_webhook(payload)
            transaction_id, status = await self._apply(processed)
        except Exception as e:
            await self._set_event_status(event_id, WebhookEventStatus.FAILED, error=str(e))
            log.error("webhook_processing_failed", event_id=event_id, error=str(e))
            metrics.record_webhook_event(provider.code, "failed", time.perf_counter() - started)
            raise

        await self._set_event_status(event_id, WebhookEventStatus.PROCESSED)
        if dedup_key:
            await self.cache.set_with_ttl(
                dedup_key, {"event_id": event_id}, self.settings.webhook_dedup_ttl_seconds
            )

        metrics.record_webhook_event(provider.code, "processed", time.perf_counter() - started)
        log.info("webhook_processed", event_id=event_id, transaction_id=transaction_id)
        return WebhookResult(
            success=True,
            event_id=event_id,
            transaction_id=transaction_id,
            transaction_status=status,
        )

    async def _apply(self, processed: ProcessedWebhook):
        if not processed.provider_transaction_id:
            logger.debug("webhook_without_transaction", event_type=processed.event_type)
            return None, None

        async with self.session_factory() as db:
            result = await db.execute(
                select(Transaction)
                .where(Transaction.provider_transaction_id == processed.provider_transaction_id)
                .order_by(Transaction.created_at)
                .limit(1)
            )
            transaction = result.scalar_one_or_none()
            if transaction is None:
                logger.warning(
                    "webhook_transaction_not_found",
                    provider_transaction_id=processed.provider_transaction_id,
                )
                return None, None

            current = TransactionStatus(transaction.status)
            new_status = WEBHOOK_STATUS_MAP.get(processed.status) if processed.status else None
            if new_status is None or new_status == current:
                return str(transaction.id), current

            record_status_change(db, transaction, new_status, f"Webhook: {processed.event_type}")
            now = datetime.now(timezone.utc)
            if new_status == TransactionStatus.COMPLETED:
                transaction.captured_at = now
                if transaction.type == TransactionType.PAYMENT.value:
                    await self.ledger.record_completed_payment(transaction, db)
            elif new_status == TransactionStatus.REFUNDED:
                transaction.refunded_at = now
            elif new_status == TransactionStatus.CANCELLED:
                transaction.cancelled_at = now

            await db.commit()

        logger.info(
            "transaction_status_updated_by_webhook",
            transaction_id=str(transaction.id),
            from_status=current.value,
            to_status=new_status.value,
            event_type=processed.event_type,
        )
        return str(transaction.id), new_status

    async def _set_event_status(
        self, event_id: int, status: WebhookEventStatus, error: Optional[str] = None
    ) -> None:
        async with self.session_factory() as db:
            event = await db.get(WebhookEvent, event_id)
            event.status = status.value
            if status in (WebhookEventStatus.PROCESSED, WebhookEventStatus.FAILED):
                event.attempts = (event.attempts or 0) + 1
            if status == WebhookEventStatus.PROCESSED:
                event.processed_at = datetime.now(timezone.utc)
            if error is not None:
                event.last_error = error
            await db.commit()
