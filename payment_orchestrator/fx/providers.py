"""
FX rate providers.

Providers are tried in order by ``FxService``. Each one may report itself
unavailable (e.g. missing API key) and is then skipped.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from payment_orchestrator.core.enums import Currency
from payment_orchestrator.core.errors import FxError, FxErrorCode
from payment_orchestrator.fx.types import FxProviderRates

logger = structlog.get_logger(__name__)


class FxRateProvider(ABC):
    """Source of raw FX rates."""

    name: str

    @abstractmethod
    async def fetch_rates(self, base_currency: Currency) -> FxProviderRates:
        """All rates published for a base currency."""

    @abstractmethod
    async def get_rate(self, source: Currency, target: Currency) -> Optional[float]:
        """Raw rate for a pair, None if the provider does not quote it."""

    @abstractmethod
    async def is_available(self) -> bool:
        ...


class ExchangeRateApiProvider(FxRateProvider):
    """
    exchangerate-api.com v6 client.

    Transport errors are retried with exponential backoff; API-level errors
    (``result != "success"``) are not.
    """

    name = "exchangerate-api"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize provider.

        Args:
            base_url: API base URL (``https://v6.exchangerate-api.com/v6``)
            api_key: API key; the provider is unavailable without one
            timeout_seconds: Request timeout
            client: HTTP client to use instead of a per-request one
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.client = client

    async def is_available(self) -> bool:
        return bool(self.api_key)

    async def fetch_rates(self, base_currency: Currency) -> FxProviderRates:
        """
        Fetch the latest rates for a base currency.

        Raises:
            FxError: PROVIDER_ERROR on an API error or a failed request
        """
        base = Currency(base_currency).value
        try:
            data = await self._get_latest(base)
        except httpx.HTTPError as e:
            logger.error("fx_provider_request_failed", provider=self.name, base=base, error=str(e))
            raise FxError(
                f"{self.name} request failed: {e}",
                FxErrorCode.PROVIDER_ERROR,
                source_currency=base,
            ) from e

        if data.get("result") != "success":
            error_type = data.get("error-type", "unknown")
            logger.error("fx_provider_api_error", provider=self.name, base=base, error_type=error_type)
            raise FxError(
                f"{self.name} error: {error_type}",
                FxErrorCode.PROVIDER_ERROR,
                source_currency=base,
            )

        updated = data.get("time_last_update_unix")
        timestamp = (
            datetime.fromtimestamp(updated, tz=timezone.utc)
            if updated
            else datetime.now(timezone.utc)
        )
        return FxProviderRates(
            base_currency=base,
            rates={k: float(v) for k, v in data.get("conversion_rates", {}).items()},
            timestamp=timestamp,
            source=self.name,
        )

    async def get_rate(self, source: Currency, target: Currency) -> Optional[float]:
        rates = await self.fetch_rates(source)
        return rates.rates.get(Currency(target).value)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _get_latest(self, base: str) -> Dict[str, Any]:
        url = f"{self.base_url}/{self.api_key}/latest/{base}"
        logger.debug("fx_provider_request", provider=self.name, base=base)

        if self.client is not None:
            response = await self.client.get(url, timeout=self.timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url)

        response.raise_for_status()
        return response.json()


# Units of each currency per 1 USD
STATIC_USD_RATES: Dict[str, float] = {
    "USD": 1.0,
    "EUR": 0.92,
    "GBP": 0.79,
    "SGD": 1.34,
    "JPY": 149.5,
    "AUD": 1.53,
    "CAD": 1.36,
    "CHF": 0.88,
    "CNY": 7.24,
    "HKD": 7.82,
}


class StaticRateProvider(FxRateProvider):
    """Last-resort fixed rate table; cross rates go through USD."""

    name = "static"

    def __init__(self, usd_rates: Optional[Dict[str, float]] = None):
        self.usd_rates = dict(usd_rates or STATIC_USD_RATES)

    async def is_available(self) -> bool:
        return True

    async def fetch_rates(self, base_currency: Currency) -> FxProviderRates:
        base = Currency(base_currency).value
        rates = {}
        for code in self.usd_rates:
            rate = self._cross_rate(base, code)
            if rate is not None:
                rates[code] = rate
        return FxProviderRates(
            base_currency=base,
            rates=rates,
            timestamp=datetime.now(timezone.utc),
            source=self.name,
        )

    async def get_rate(self, source: Currency, target: Currency) -> Optional[float]:
        return self._cross_rate(Currency(source).value, Currency(target).value)

    def _cross_rate(self, source: str, target: str) -> Optional[float]:
        source_rate = self.usd_rates.get(source)
        target_rate = self.usd_rates.get(target)
        if not source_rate or target_rate is None:
            return None
        return target_rate / source_rate
