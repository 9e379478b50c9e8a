"""
Provider directory.

Owns the ``payment_providers`` and ``merchant_provider_configs`` tables,
builds adapter configuration, caches health probes and exposes rolling
performance metrics to routing.
"""
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_orchestrator.cache import Cache, CacheDomain, cache_key
from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.enums import Currency, PaymentMethodType, ProviderStatus
from payment_orchestrator.core.errors import ProviderError, ProviderErrorCode
from payment_orchestrator.database.models import MerchantProviderConfig, PaymentProvider
from payment_orchestrator.monitoring.metrics import metrics
from payment_orchestrator.providers.base import PaymentProviderAdapter
from payment_orchestrator.providers.metrics_window import ProviderMetricsWindow
from payment_orchestrator.providers.registry import AdapterRegistry
from payment_orchestrator.providers.types import (
    ProviderConfig,
    ProviderHealth,
    ProviderMetrics,
    RoutingProvider,
)

logger = structlog.get_logger(__name__)

HEALTH_STATUS_MAP = {
    "healthy": ProviderStatus.ACTIVE,
    "degraded": ProviderStatus.DEGRADED,
    "unhealthy": ProviderStatus.MAINTENANCE,
}


class ProviderService:
    """Payment provider directory and health/metrics tracking."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Cache,
        registry: AdapterRegistry,
        metrics_window: Optional[ProviderMetricsWindow] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize provider service.

        Args:
            session_factory: Database session factory
            cache: Cache backend
            registry: Adapter registry
            metrics_window: Rolling metrics window (built from cache if omitted)
            settings: Application settings
        """
        self.session_factory = session_factory
        self.cache = cache
        self.registry = registry
        self.settings = settings or get_settings()
        self.metrics_window = metrics_window or ProviderMetricsWindow(
            cache, self.settings.provider_metrics_window_seconds
        )

    # Directory

    async def upsert_provider(
        self,
        code: str,
        name: str,
        supported_currencies: Sequence[Currency | str],
        supported_methods: Sequence[PaymentMethodType | str],
        cost_per_transaction: float = 0.0,
        base_url: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        status: ProviderStatus = ProviderStatus.ACTIVE,
        is_active: bool = True,
    ) -> PaymentProvider:
        """Create a provider, or update the one with the same code."""
        async with self.session_factory() as db:
            result = await db.execute(select(PaymentProvider).where(PaymentProvider.code == code))
            provider = result.scalar_one_or_none()
            if provider is None:
                provider = PaymentProvider(code=code)
                db.add(provider)

            provider.name = name
            provider.supported_currencies = [Currency(c).value for c in supported_currencies]
            provider.supported_methods = [PaymentMethodType(m).value for m in supported_methods]
            provider.cost_per_transaction = cost_per_transaction
            provider.base_url = base_url
            provider.config = dict(config or {})
            provider.status = ProviderStatus(status).value
            provider.is_active = is_active

            await db.commit()
            await db.refresh(provider)

        logger.info("provider_upserted", provider_id=str(provider.id), code=code)
        return provider

    async def configure_merchant_provider(
        self,
        merchant_id: str,
        provider_id: uuid.UUID,
        priority: int = 1,
        is_active: bool = True,
        credentials: Optional[Dict[str, Any]] = None,
    ) -> MerchantProviderConfig:
        """Enable a provider for a merchant (or update the existing config)."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(MerchantProviderConfig).where(
                    MerchantProviderConfig.merchant_id == merchant_id,
                    MerchantProviderConfig.provider_id == provider_id,
                )
            )
            merchant_config = result.scalar_one_or_none()
            if merchant_config is None:
                merchant_config = MerchantProviderConfig(
                    merchant_id=merchant_id, provider_id=provider_id
                )
                db.add(merchant_config)

            merchant_config.priority = priority
            merchant_config.is_active = is_active
            merchant_config.credentials = dict(credentials or {})

            await db.commit()
            await db.refresh(merchant_config)

        logger.info(
            "merchant_provider_configured",
            merchant_id=merchant_id,
            provider_id=str(provider_id),
            priority=priority,
        )
        return merchant_config

    async def get_provider(self, provider_id: uuid.UUID) -> Optional[PaymentProvider]:
        async with self.session_factory() as db:
            return await db.get(PaymentProvider, provider_id)

    async def get_provider_by_code(self, code: str) -> Optional[PaymentProvider]:
        async with self.session_factory() as db:
            result = await db.execute(select(PaymentProvider).where(PaymentProvider.code == code))
            return result.scalar_one_or_none()

    async def list_providers(
        self,
        status: Optional[ProviderStatus] = None,
        currency: Optional[Currency] = None,
        method: Optional[PaymentMethodType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[PaymentProvider], int]:
        """
        List active providers ordered by name.

        Returns:
            Tuple[List[PaymentProvider], int]: Page of providers and total count
        """
        query = select(PaymentProvider).where(PaymentProvider.is_active.is_(True))
        if status is not None:
            query = query.where(PaymentProvider.status == ProviderStatus(status).value)

        async with self.session_factory() as db:
            result = await db.execute(query.order_by(PaymentProvider.name))
            providers = list(result.scalars().all())

        # Array membership is filtered here to stay portable across JSON backends
        if currency is not None:
            providers = [p for p in providers if Currency(currency).value in p.supported_currencies]
        if method is not None:
            providers = [
                p for p in providers if PaymentMethodType(method).value in p.supported_methods
            ]

        offset = (page - 1) * limit
        return providers[offset:offset + limit], len(providers)

    async def get_merchant_providers(self, merchant_id: str) -> List[RoutingProvider]:
        """
        Providers enabled for a merchant, in merchant priority order.

        Each entry carries the provider's rolling success rate and latency
        (None when no attempt is in the window) and its cost.
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(MerchantProviderConfig)
                .where(
                    MerchantProviderConfig.merchant_id == merchant_id,
                    MerchantProviderConfig.is_active.is_(True),
                )
                .order_by(MerchantProviderConfig.priority)
            )
            configs = list(result.scalars().unique().all())

        providers = []
        for merchant_config in configs:
            provider = merchant_config.provider
            snapshot = await self.get_metrics(provider.id)
            providers.append(
                RoutingProvider(
                    id=provider.id,
                    code=provider.code,
                    name=provider.name,
                    status=ProviderStatus(provider.status),
                    supported_currencies=list(provider.supported_currencies),
                    supported_methods=list(provider.supported_methods),
                    priority=merchant_config.priority,
                    success_rate=snapshot.success_rate if snapshot else None,
                    average_latency_ms=snapshot.average_latency_ms if snapshot else None,
                    cost_per_transaction=provider.cost_per_transaction,
                    is_active=provider.is_active,
                )
            )
        return providers

    # Adapters

    async def build_provider_config(
        self, provider: PaymentProvider, merchant_id: Optional[str] = None
    ) -> ProviderConfig:
        """Adapter configuration from the provider row and merchant credentials."""
        credentials: Dict[str, Any] = {}
        if merchant_id is not None:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(MerchantProviderConfig).where(
                        MerchantProviderConfig.merchant_id == merchant_id,
                        MerchantProviderConfig.provider_id == provider.id,
                    )
                )
                merchant_config = result.scalar_one_or_none()
            if merchant_config is not None:
                credentials = dict(merchant_config.credentials or {})

        provider_config = dict(provider.config or {})
        return ProviderConfig(
            api_key=credentials.get("api_key"),
            secret_key=credentials.get("secret_key"),
            webhook_secret=credentials.get("webhook_secret") or provider_config.get("webhook_secret"),
            sandbox=not self.settings.is_production,
            base_url=provider.base_url,
            timeout_seconds=self.settings.provider_call_timeout_seconds,
            simulate_latency_ms=provider_config.get(
                "simulate_latency_ms", self.settings.provider_simulate_latency_ms
            ),
            failure_rate=provider_config.get("failure_rate", self.settings.provider_failure_rate),
            metadata=provider_config,
        )

    async def get_adapter(
        self, provider_code: str, merchant_id: Optional[str] = None
    ) -> PaymentProviderAdapter:
        """
        Initialized adapter for a provider.

        Raises:
            ProviderError: NOT_FOUND for an unknown provider code,
                PROVIDER_UNAVAILABLE when no adapter is registered
        """
        provider = await self.get_provider_by_code(provider_code)
        if provider is None:
            raise ProviderError(
                f"Provider {provider_code} not found",
                ProviderErrorCode.NOT_FOUND,
                provider_code=provider_code,
            )
        config = await self.build_provider_config(provider, merchant_id)
        return await self.registry.get(provider.code, config)

    # Health and metrics

    async def check_health(self, provider_id: uuid.UUID) -> ProviderHealth:
        """
        Probe a provider, cached for ``provider_health_cache_ttl``.

        The provider's status follows the result (healthy -> ACTIVE,
        degraded -> DEGRADED, unhealthy -> MAINTENANCE). A probe that raises
        is reported as unhealthy.

        Raises:
            ProviderError: NOT_FOUND for an unknown provider id
        """
        key = cache_key(CacheDomain.PROVIDER_HEALTH, provider_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return ProviderHealth.model_validate(cached)

        provider = await self.get_provider(provider_id)
        if provider is None:
            raise ProviderError(f"Provider {provider_id} not found", ProviderErrorCode.NOT_FOUND)

        try:
            adapter = await self.get_adapter(provider.code)
            health = await adapter.check_health()
        except Exception as e:
            logger.error(
                "provider_health_check_failed",
                provider_id=str(provider_id),
                provider_code=provider.code,
                error=str(e),
            )
            health = ProviderHealth(status="unhealthy", latency_ms=0.0, message=str(e))

        await self.cache.set_with_ttl(
            key, health.model_dump(mode="json"), self.settings.provider_health_cache_ttl
        )
        await self._update_provider_status(provider_id, HEALTH_STATUS_MAP[health.status])
        metrics.set_provider_health(provider.code, health.status)

        logger.info(
            "provider_health_checked",
            provider_id=str(provider_id),
            provider_code=provider.code,
            status=health.status,
            latency_ms=health.latency_ms,
        )
        return health

    async def get_metrics(self, provider_id: uuid.UUID) -> Optional[ProviderMetrics]:
        """Rolling metrics snapshot, cached for ``provider_metrics_cache_ttl``."""
        key = cache_key(CacheDomain.PROVIDER_METRICS, provider_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return ProviderMetrics.model_validate(cached)

        snapshot = await self.metrics_window.snapshot(provider_id)
        if snapshot is not None:
            await self.cache.set_with_ttl(
                key, snapshot.model_dump(mode="json"), self.settings.provider_metrics_cache_ttl
            )
        return snapshot

    async def update_metrics(self, provider_id: uuid.UUID, success: bool, latency_ms: float) -> None:
        """Record one attempt; the cached snapshot is dropped so routing sees it."""
        await self.metrics_window.record(provider_id, success, latency_ms)
        await self.cache.delete(cache_key(CacheDomain.PROVIDER_METRICS, provider_id))

    async def _update_provider_status(self, provider_id: uuid.UUID, status: ProviderStatus) -> None:
        async with self.session_factory() as db:
            provider = await db.get(PaymentProvider, provider_id)
            if provider is not None and provider.status != status.value:
                provider.status = status.value
                await db.commit()
                logger.info(
                    "provider_status_updated",
                    provider_id=str(provider_id),
                    status=status.value,
                )
