"""
FX conversion service.

Rate lookup order for a pair:

1. Cache (``fx_cache_ttl_seconds``)
2. Latest valid row in ``fx_rates``
3. Provider chain, in order; the fetched rate is stored and cached

The configured spread is applied on top of the raw rate to produce the
effective rate used for conversions.
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence

import httpx
import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_orchestrator.cache import Cache, CacheDomain, cache_key, cache_pattern
from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.enums import Currency
from payment_orchestrator.core.errors import FxError, FxErrorCode
from payment_orchestrator.database.models import FxRateRecord
from payment_orchestrator.fx.providers import (
    ExchangeRateApiProvider,
    FxRateProvider,
    StaticRateProvider,
)
from payment_orchestrator.fx.types import ConversionResult, FxQuote, FxRate
from payment_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PROVIDER_FAILURES = (FxError, httpx.HTTPError, ValueError)


def round_minor(value: float) -> int:
    """Round to whole minor units, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def default_fx_providers(settings: Settings) -> List[FxRateProvider]:
    """HTTP API first, static table as last resort."""
    return [
        ExchangeRateApiProvider(
            base_url=settings.fx_provider_base_url,
            api_key=settings.fx_provider_api_key,
            timeout_seconds=settings.fx_request_timeout_seconds,
        ),
        StaticRateProvider(),
    ]


class FxService:
    """Exchange rates, conversions and time-limited quotes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Cache,
        providers: Optional[Sequence[FxRateProvider]] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize FX service.

        Args:
            session_factory: Database session factory
            cache: Cache for rates and quotes
            providers: Ordered rate provider chain
            settings: Application settings (spread, TTLs)
        """
        self.session_factory = session_factory
        self.cache = cache
        self.settings = settings or get_settings()
        self.providers = (
            list(providers) if providers is not None else default_fx_providers(self.settings)
        )

    async def get_rate(self, source: Currency, target: Currency) -> FxRate:
        """
        Current rate for a currency pair.

        Raises:
            FxError: RATE_NOT_FOUND if no cache entry, stored rate or
                provider can supply the pair
        """
        source, target = Currency(source), Currency(target)
        now = datetime.now(timezone.utc)

        if source == target:
            return FxRate(
                source_currency=source,
                target_currency=target,
                rate=1.0,
                spread=0.0,
                effective_rate=1.0,
                source="identity",
                valid_from=now,
            )

        key = cache_key(CacheDomain.FX_RATE, source, target)
        cached = await self.cache.get(key)
        if cached is not None:
            return FxRate.model_validate(cached)

        async with self.session_factory() as db:
            result = await db.execute(
                select(FxRateRecord)
                .where(
                    FxRateRecord.source_currency == source.value,
                    FxRateRecord.target_currency == target.value,
                    FxRateRecord.is_active.is_(True),
                    FxRateRecord.valid_from <= now,
                    or_(FxRateRecord.valid_to.is_(None), FxRateRecord.valid_to > now),
                )
                .order_by(FxRateRecord.valid_from.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()

        if record is not None:
            rate = FxRate.model_validate(record)
            await self._cache_rate(rate)
            return rate

        for provider in self.providers:
            if not await provider.is_available():
                logger.debug("fx_provider_unavailable", provider=provider.name)
                continue
            try:
                raw_rate = await provider.get_rate(source, target)
            except PROVIDER_FAILURES as e:
                logger.warning(
                    "fx_provider_rate_failed",
                    provider=provider.name,
                    source_currency=source.value,
                    target_currency=target.value,
                    error=str(e),
                )
                metrics.record_fx_provider_failure(provider.name)
                continue

            if raw_rate:
                rates = await self._store_rates(source, {target.value: raw_rate}, provider.name)
                return rates[0]

        raise FxError(
            f"No exchange rate available for {source.value}/{target.value}",
            FxErrorCode.RATE_NOT_FOUND,
            source_currency=source.value,
            target_currency=target.value,
        )

    async def convert(self, amount: int, source: Currency, target: Currency) -> ConversionResult:
        """
        Convert an amount in minor units.

        The spread amount is the part of the target amount produced by the
        spread, i.e. ``round(amount x effective) - round(amount x rate)``.
        """
        rate = await self.get_rate(source, target)
        target_amount = round_minor(amount * rate.effective_rate)
        spread_amount = target_amount - round_minor(amount * rate.rate)

        logger.debug(
            "fx_conversion",
            source_amount=amount,
            source_currency=rate.source_currency.value,
            target_amount=target_amount,
            target_currency=rate.target_currency.value,
            effective_rate=rate.effective_rate,
        )

        return ConversionResult(
            source_amount=amount,
            source_currency=rate.source_currency,
            target_amount=target_amount,
            target_currency=rate.target_currency,
            rate=rate.rate,
            spread=rate.spread,
            effective_rate=rate.effective_rate,
            spread_amount=spread_amount,
            fx_rate_id=rate.id,
        )

    async def get_quote(
        self,
        amount: int,
        source: Currency,
        target: Currency,
        validity_minutes: Optional[int] = None,
    ) -> FxQuote:
        """Lock a conversion for ``validity_minutes`` (settings default)."""
        validity = validity_minutes or self.settings.fx_quote_validity_minutes
        conversion = await self.convert(amount, source, target)
        now = datetime.now(timezone.utc)

        quote = FxQuote(
            id=str(uuid.uuid4()),
            source_amount=conversion.source_amount,
            source_currency=conversion.source_currency,
            target_amount=conversion.target_amount,
            target_currency=conversion.target_currency,
            rate=conversion.rate,
            spread=conversion.spread,
            effective_rate=conversion.effective_rate,
            fx_rate_id=conversion.fx_rate_id,
            expires_at=now + timedelta(minutes=validity),
            created_at=now,
        )
        await self.cache.set_with_ttl(
            cache_key(CacheDomain.FX_QUOTE, quote.id),
            quote.model_dump(mode="json"),
            validity * 60,
        )

        logger.info(
            "fx_quote_created",
            quote_id=quote.id,
            source_currency=quote.source_currency.value,
            target_currency=quote.target_currency.value,
            expires_at=quote.expires_at.isoformat(),
        )
        return quote

    async def validate_quote(self, quote_id: str) -> FxQuote:
        """
        Fetch a quote that is still valid.

        Raises:
            FxError: QUOTE_EXPIRED if the quote is unknown or past expiry
        """
        key = cache_key(CacheDomain.FX_QUOTE, quote_id)
        cached = await self.cache.get(key)
        if cached is None:
            raise FxError(f"Quote {quote_id} not found or expired", FxErrorCode.QUOTE_EXPIRED)

        quote = FxQuote.model_validate(cached)
        if quote.expires_at <= datetime.now(timezone.utc):
            await self.cache.delete(key)
            raise FxError(
                f"Quote {quote_id} expired",
                FxErrorCode.QUOTE_EXPIRED,
                source_currency=quote.source_currency.value,
                target_currency=quote.target_currency.value,
            )
        return quote

    async def get_all_rates(self, base: Currency = Currency.USD) -> List[FxRate]:
        """Rates from ``base`` to every other supported currency that has one."""
        base = Currency(base)
        rates = []
        for target in Currency:
            if target == base:
                continue
            try:
                rates.append(await self.get_rate(base, target))
            except FxError as e:
                if e.code != FxErrorCode.RATE_NOT_FOUND:
                    raise
                logger.warning(
                    "fx_rate_missing", source_currency=base.value, target_currency=target.value
                )
        return rates

    async def refresh_rates(self, base: Currency = Currency.USD) -> int:
        """
        Drop cached rates and store fresh ones from the first provider that answers.

        Returns:
            int: Number of rates stored

        Raises:
            FxError: PROVIDER_ERROR if every provider failed
        """
        base = Currency(base)
        cleared = await self.cache.delete_pattern(cache_pattern(CacheDomain.FX_RATE))
        logger.info("fx_rate_cache_cleared", keys=cleared)

        for provider in self.providers:
            if not await provider.is_available():
                continue
            try:
                published = await provider.fetch_rates(base)
            except PROVIDER_FAILURES as e:
                logger.error("fx_refresh_provider_failed", provider=provider.name, error=str(e))
                metrics.record_fx_provider_failure(provider.name)
                continue

            supported = {currency.value for currency in Currency}
            rates = {
                code: value
                for code, value in published.rates.items()
                if code in supported and code != base.value and value > 0
            }
            stored = await self._store_rates(base, rates, provider.name)
            logger.info(
                "fx_rates_refreshed", provider=provider.name, base=base.value, count=len(stored)
            )
            return len(stored)

        raise FxError(
            "All FX providers failed",
            FxErrorCode.PROVIDER_ERROR,
            source_currency=base.value,
        )

    async def _store_rates(
        self, source: Currency, rates: Dict[str, float], provider_name: str
    ) -> List[FxRate]:
        spread = self.settings.fx_default_spread
        now = datetime.now(timezone.utc)

        async with self.session_factory() as db:
            records = [
                FxRateRecord(
                    source_currency=Currency(source).value,
                    target_currency=target,
                    rate=raw_rate,
                    spread=spread,
                    effective_rate=raw_rate * (1 + spread),
                    source=provider_name,
                    valid_from=now,
                    is_active=True,
                )
                for target, raw_rate in rates.items()
            ]
            db.add_all(records)
            await db.commit()
            stored = [FxRate.model_validate(record) for record in records]

        for rate in stored:
            await self._cache_rate(rate)
        return stored

    async def _cache_rate(self, rate: FxRate) -> None:
        await self.cache.set_with_ttl(
            cache_key(CacheDomain.FX_RATE, rate.source_currency, rate.target_currency),
            rate.model_dump(mode="json"),
            self.settings.fx_cache_ttl_seconds,
        )
