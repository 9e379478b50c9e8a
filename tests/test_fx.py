"""
Tests for FX rates, conversions and quotes.
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from payment_orchestrator.cache import CacheDomain, cache_key, cache_pattern
from payment_orchestrator.core.enums import Currency
from payment_orchestrator.core.errors import FxError, FxErrorCode
from payment_orchestrator.fx import (
    ExchangeRateApiProvider,
    FxService,
    StaticRateProvider,
    round_minor,
)

API_BASE = "https://fx.test/v6"


def api_provider(handler) -> ExchangeRateApiProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExchangeRateApiProvider(API_BASE, "key_123", client=client)


def latest_rates_response(request: httpx.Request) -> httpx.Response:
    assert request.url.path == "/v6/key_123/latest/USD"
    return httpx.Response(
        200,
        json={
            "result": "success",
            "base_code": "USD",
            "time_last_update_unix": 1700000000,
            "conversion_rates": {"USD": 1, "EUR": 0.9, "GBP": 0.8, "XAU": 0.0005},
        },
    )


@pytest.fixture
def fx(session_factory, cache, test_settings) -> FxService:
    return FxService(session_factory, cache, providers=[StaticRateProvider()], settings=test_settings)


class TestRateProviders:
    """Test suite for the FX rate sources."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_static_cross_rates(self) -> None:
        provider = StaticRateProvider({"USD": 1.0, "EUR": 0.8, "GBP": 0.5})

        assert await provider.get_rate(Currency.EUR, Currency.GBP) == pytest.approx(0.625)
        assert await provider.get_rate(Currency.USD, Currency.JPY) is None

        published = await provider.fetch_rates(Currency.GBP)
        assert published.rates["USD"] == pytest.approx(2.0)
        assert published.source == "static"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_api_provider_parses_latest_rates(self) -> None:
        provider = api_provider(latest_rates_response)

        published = await provider.fetch_rates(Currency.USD)

        assert published.rates["EUR"] == 0.9
        assert published.timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert await provider.get_rate(Currency.USD, Currency.GBP) == 0.8

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_api_error_result(self) -> None:
        provider = api_provider(
            lambda request: httpx.Response(200, json={"result": "error", "error-type": "invalid-key"})
        )

        with pytest.raises(FxError) as exc_info:
            await provider.fetch_rates(Currency.USD)

        assert exc_info.value.code == FxErrorCode.PROVIDER_ERROR
        assert "invalid-key" in str(exc_info.value)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self) -> None:
        """Test a dropped connection is retried before the request succeeds."""
        calls = []

        def flaky(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return latest_rates_response(request)

        published = await api_provider(flaky).fetch_rates(Currency.USD)

        assert len(calls) == 2
        assert published.rates["GBP"] == 0.8

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_status_error_becomes_provider_error(self) -> None:
        provider = api_provider(lambda request: httpx.Response(503))

        with pytest.raises(FxError) as exc_info:
            await provider.fetch_rates(Currency.USD)

        assert exc_info.value.code == FxErrorCode.PROVIDER_ERROR

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_api_provider_needs_key(self) -> None:
        assert not await ExchangeRateApiProvider(API_BASE, "").is_available()


class TestConversion:
    """Test suite for rates and conversions."""

    @pytest.mark.unit
    def test_round_minor_half_up(self) -> None:
        assert round_minor(924.5) == 925
        assert round_minor(924.49) == 924
        assert round_minor(0.5) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_convert_applies_spread(self, fx) -> None:
        """Test 10.00 USD at 0.92 with a 0.5% spread yields 9.25 EUR, 0.05 of it spread."""
        result = await fx.convert(1000, Currency.USD, Currency.EUR)

        assert result.rate == pytest.approx(0.92)
        assert result.effective_rate == pytest.approx(0.92 * 1.005)
        assert result.target_amount == 925
        assert result.spread_amount == 5
        assert result.fx_rate_id is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_identity_rate(self, fx) -> None:
        rate = await fx.get_rate(Currency.GBP, Currency.GBP)
        result = await fx.convert(1234, Currency.GBP, Currency.GBP)

        assert (rate.rate, rate.effective_rate, rate.source) == (1.0, 1.0, "identity")
        assert result.target_amount == 1234
        assert result.spread_amount == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_rate_served_from_cache_then_database(self, fx, cache) -> None:
        first = await fx.get_rate(Currency.USD, Currency.GBP)
        assert await cache.get(cache_key(CacheDomain.FX_RATE, "USD", "GBP")) is not None

        await cache.delete_pattern(cache_pattern(CacheDomain.FX_RATE))
        fx.providers = []
        stored = await fx.get_rate(Currency.USD, Currency.GBP)

        assert stored.id == first.id
        assert stored.source == "static"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rate_not_found(self, session_factory, cache, test_settings) -> None:
        fx = FxService(session_factory, cache, providers=[], settings=test_settings)

        with pytest.raises(FxError) as exc_info:
            await fx.get_rate(Currency.USD, Currency.EUR)

        assert exc_info.value.code == FxErrorCode.RATE_NOT_FOUND

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failing_provider_falls_through(self, session_factory, cache, test_settings) -> None:
        failing = api_provider(lambda request: httpx.Response(500))
        fx = FxService(
            session_factory, cache, providers=[failing, StaticRateProvider()], settings=test_settings
        )

        rate = await fx.get_rate(Currency.USD, Currency.EUR)

        assert rate.source == "static"


class TestQuotes:
    """Test suite for FX quotes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_quote_round_trip(self, fx) -> None:
        quote = await fx.get_quote(1000, Currency.USD, Currency.EUR, validity_minutes=5)

        validated = await fx.validate_quote(quote.id)

        assert validated == quote
        assert validated.target_amount == 925
        assert quote.expires_at - quote.created_at == timedelta(minutes=5)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_expired_quote_rejected(self, fx, cache) -> None:
        quote = await fx.get_quote(1000, Currency.USD, Currency.EUR)
        key = cache_key(CacheDomain.FX_QUOTE, quote.id)
        expired = quote.model_copy(
            update={"expires_at": datetime.now(timezone.utc) - timedelta(seconds=1)}
        )
        await cache.set_with_ttl(key, expired.model_dump(mode="json"), 60)

        with pytest.raises(FxError) as exc_info:
            await fx.validate_quote(quote.id)

        assert exc_info.value.code == FxErrorCode.QUOTE_EXPIRED
        assert await cache.get(key) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_quote(self, fx) -> None:
        with pytest.raises(FxError) as exc_info:
            await fx.validate_quote("missing")

        assert exc_info.value.code == FxErrorCode.QUOTE_EXPIRED


class TestRefreshRates:
    """Test suite for FxService.refresh_rates."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_refresh_stores_supported_currencies(
        self, session_factory, cache, test_settings
    ) -> None:
        """Test unsupported codes (XAU) and the base currency are skipped."""
        fx = FxService(
            session_factory,
            cache,
            providers=[api_provider(latest_rates_response), StaticRateProvider()],
            settings=test_settings,
        )

        stored = await fx.refresh_rates(Currency.USD)

        assert stored == 2
        rate = await fx.get_rate(Currency.USD, Currency.EUR)
        assert rate.source == "exchangerate-api"
        assert rate.rate == 0.9

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_refresh_all_providers_failed(self, session_factory, cache, test_settings) -> None:
        fx = FxService(
            session_factory,
            cache,
            providers=[
                api_provider(lambda request: httpx.Response(500)),
                ExchangeRateApiProvider(API_BASE, ""),
            ],
            settings=test_settings,
        )

        with pytest.raises(FxError) as exc_info:
            await fx.refresh_rates()

        assert exc_info.value.code == FxErrorCode.PROVIDER_ERROR

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_all_rates(self, fx) -> None:
        rates = await fx.get_all_rates(Currency.EUR)

        assert len(rates) == len(Currency) - 1
        assert all(rate.source_currency == Currency.EUR for rate in rates)
