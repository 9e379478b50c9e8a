"""Payment provider adapters, registry, rolling metrics and directory service."""
from payment_orchestrator.providers.base import PaymentProviderAdapter
from payment_orchestrator.providers.metrics_window import ProviderMetricsWindow
from payment_orchestrator.providers.paypal_adapter import PayPalMockAdapter
from payment_orchestrator.providers.registry import AdapterRegistry, default_registry
from payment_orchestrator.providers.service import ProviderService
from payment_orchestrator.providers.state_store import (
    InMemoryStateStore,
    VirtualStateStore,
    VirtualTransaction,
)
from payment_orchestrator.providers.stripe_adapter import StripeMockAdapter

__all__ = [
    "AdapterRegistry",
    "InMemoryStateStore",
    "PayPalMockAdapter",
    "PaymentProviderAdapter",
    "ProviderMetricsWindow",
    "ProviderService",
    "StripeMockAdapter",
    "VirtualStateStore",
    "VirtualTransaction",
    "default_registry",
]
