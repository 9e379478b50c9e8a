"""Adapter registry mapping provider codes to adapter instances."""
from typing import Callable, Dict, List, Optional

import structlog

from payment_orchestrator.core.errors import ProviderError, ProviderErrorCode
from payment_orchestrator.providers.base import PaymentProviderAdapter
from payment_orchestrator.providers.paypal_adapter import PayPalMockAdapter
from payment_orchestrator.providers.state_store import InMemoryStateStore, VirtualStateStore
from payment_orchestrator.providers.stripe_adapter import StripeMockAdapter
from payment_orchestrator.providers.types import ProviderConfig

logger = structlog.get_logger(__name__)

AdapterFactory = Callable[[VirtualStateStore], PaymentProviderAdapter]


class AdapterRegistry:
    """
    Creates and caches one adapter instance per provider code.

    All adapters created by a registry share its state store.
    """

    def __init__(self, state_store: Optional[VirtualStateStore] = None):
        self.state_store = state_store or InMemoryStateStore()
        self._factories: Dict[str, AdapterFactory] = {}
        self._instances: Dict[str, PaymentProviderAdapter] = {}

    def register(self, provider_code: str, factory: AdapterFactory) -> None:
        """Register an adapter factory, replacing any cached instance."""
        code = provider_code.lower()
        self._factories[code] = factory
        self._instances.pop(code, None)
        logger.info("provider_adapter_registered", provider_code=code)

    async def get(
        self, provider_code: str, config: Optional[ProviderConfig] = None
    ) -> PaymentProviderAdapter:
        """
        Get the adapter for a provider.

        Args:
            provider_code: Provider code (case-insensitive)
            config: Configuration applied before returning the adapter

        Returns:
            PaymentProviderAdapter: Initialized adapter when config is given

        Raises:
            ProviderError: PROVIDER_UNAVAILABLE if no adapter is registered
        """
        code = provider_code.lower()
        adapter = self._instances.get(code)

        if adapter is None:
            factory = self._factories.get(code)
            if factory is None:
                raise ProviderError(
                    f"No adapter registered for provider: {provider_code}",
                    ProviderErrorCode.PROVIDER_UNAVAILABLE,
                    provider_code=code,
                )
            adapter = factory(self.state_store)
            self._instances[code] = adapter
            logger.info("provider_adapter_created", provider_code=code)

        if config is not None:
            await adapter.initialize(config)

        return adapter

    def available(self) -> List[str]:
        return sorted(self._factories)

    def has(self, provider_code: str) -> bool:
        return provider_code.lower() in self._factories

    def clear_instances(self) -> None:
        self._instances.clear()


def default_registry(state_store: Optional[VirtualStateStore] = None) -> AdapterRegistry:
    """Registry with the built-in Stripe and PayPal mock adapters."""
    registry = AdapterRegistry(state_store)
    registry.register(StripeMockAdapter.provider_code, StripeMockAdapter)
    registry.register(PayPalMockAdapter.provider_code, PayPalMockAdapter)
    return registry
