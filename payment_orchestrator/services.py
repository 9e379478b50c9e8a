"""
Service wiring.

Every service takes its collaborators through its constructor; this module
builds one instance of each for a process (CLI run, worker, test) so nothing
needs a module-level singleton.
"""
import random
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_orchestrator.cache import Cache
from payment_orchestrator.config import Settings
from payment_orchestrator.fx import FxRateProvider, FxService, default_fx_providers
from payment_orchestrator.ledger import LedgerService
from payment_orchestrator.monitoring import HealthCheck
from payment_orchestrator.payments import PaymentOrchestrator
from payment_orchestrator.providers import (
    AdapterRegistry,
    ProviderMetricsWindow,
    ProviderService,
    default_registry,
)
from payment_orchestrator.reconciliation import ReconciliationEngine
from payment_orchestrator.routing import RoutingService
from payment_orchestrator.webhooks import WebhookProcessor


@dataclass
class Services:
    """All services of one process, sharing one database, cache and registry."""

    settings: Settings
    registry: AdapterRegistry
    metrics_window: ProviderMetricsWindow
    provider_service: ProviderService
    routing: RoutingService
    fx: FxService
    ledger: LedgerService
    orchestrator: PaymentOrchestrator
    reconciliation: ReconciliationEngine
    webhooks: WebhookProcessor
    health: HealthCheck


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: Cache,
    registry: Optional[AdapterRegistry] = None,
    fx_providers: Optional[Sequence[FxRateProvider]] = None,
    rng: Optional[random.Random] = None,
) -> Services:
    """
    Construct every service once.

    Args:
        settings: Application settings
        session_factory: Database session factory
        cache: Cache backend
        registry: Adapter registry (defaults to the built-in mock adapters)
        fx_providers: FX rate providers in priority order
        rng: Random source for mock settlement perturbation

    Returns:
        Services: Wired service container
    """
    registry = registry or default_registry()
    metrics_window = ProviderMetricsWindow(cache, settings.provider_metrics_window_seconds)
    provider_service = ProviderService(
        session_factory, cache, registry, metrics_window=metrics_window, settings=settings
    )
    routing = RoutingService(session_factory, cache, provider_service, settings=settings)
    fx = FxService(
        session_factory,
        cache,
        providers=fx_providers if fx_providers is not None else default_fx_providers(settings),
        settings=settings,
    )
    ledger = LedgerService(session_factory)
    orchestrator = PaymentOrchestrator(
        session_factory, routing, provider_service, ledger, fx, settings=settings
    )

    return Services(
        settings=settings,
        registry=registry,
        metrics_window=metrics_window,
        provider_service=provider_service,
        routing=routing,
        fx=fx,
        ledger=ledger,
        orchestrator=orchestrator,
        reconciliation=ReconciliationEngine(session_factory, settings=settings, rng=rng),
        webhooks=WebhookProcessor(
            session_factory, cache, provider_service, ledger, settings=settings
        ),
        health=HealthCheck(session_factory, cache),
    )
