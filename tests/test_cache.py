"""
Tests for cache key namespaces and the Redis cache backend.
"""
import pytest

from payment_orchestrator.cache import CacheDomain, cache_key, cache_pattern
from payment_orchestrator.core.enums import Currency


class TestCacheKeys:
    """Test suite for key construction."""

    @pytest.mark.unit
    def test_enum_parts_render_as_values(self) -> None:
        assert cache_key(CacheDomain.FX_RATE, Currency.USD, "EUR") == "fx:rate:USD:EUR"
        assert cache_key(CacheDomain.ROUTING_RULES, "m_1") == "routing:rules:m_1"

    @pytest.mark.unit
    def test_key_requires_parts(self) -> None:
        with pytest.raises(ValueError):
            cache_key(CacheDomain.PROVIDER_HEALTH)

    @pytest.mark.unit
    def test_pattern(self) -> None:
        assert cache_pattern(CacheDomain.WEBHOOK_PROCESSED) == "webhook:processed:*"


class TestRedisCache:
    """Test suite for RedisCache against fakeredis."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_values_are_json_under_prefix(self, cache) -> None:
        await cache.set("a", {"amount": 1000, "tags": ["x"]})

        assert await cache.get("a") == {"amount": 1000, "tags": ["x"]}
        assert await cache.client.get("test:a") == '{"amount": 1000, "tags": ["x"]}'
        assert await cache.get("missing") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ttl_and_delete(self, cache) -> None:
        await cache.set_with_ttl("b", 1, 30)

        assert 0 < await cache.client.ttl("test:b") <= 30
        assert await cache.exists("b")
        await cache.delete("b")
        assert not await cache.exists("b")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_pattern_only_touches_domain(self, cache) -> None:
        await cache.set(cache_key(CacheDomain.FX_RATE, "USD", "EUR"), 0.92)
        await cache.set(cache_key(CacheDomain.FX_RATE, "USD", "GBP"), 0.79)
        await cache.set(cache_key(CacheDomain.FX_QUOTE, "q1"), {})

        deleted = await cache.delete_pattern(cache_pattern(CacheDomain.FX_RATE))

        assert deleted == 2
        assert await cache.exists(cache_key(CacheDomain.FX_QUOTE, "q1"))
        assert await cache.delete_pattern(cache_pattern(CacheDomain.FX_RATE)) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_increment_and_expire(self, cache) -> None:
        assert await cache.increment("counter") == 1
        assert await cache.increment("counter", 5) == 6

        await cache.expire("counter", 10)
        assert 0 < await cache.client.ttl("test:counter") <= 10

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_window_drops_old_members(self, cache) -> None:
        await cache.window_add("w", "old", 100, min_score=0)
        await cache.window_add("w", "new", 200, min_score=150)

        assert await cache.window_range("w", min_score=0) == ["new"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ping(self, cache) -> None:
        assert await cache.ping()
