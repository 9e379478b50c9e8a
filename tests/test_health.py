"""
Tests for dependency health checks.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from payment_orchestrator.monitoring.health import HealthCheck, HealthCheckError


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_all_healthy(self, session_factory, cache) -> None:
        result = await HealthCheck(session_factory, cache).check_all()

        assert result["status"] == "healthy"
        assert result["checks"]["database"]["status"] == "healthy"
        assert result["checks"]["cache"]["status"] == "healthy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cache_failure_reported(self, session_factory, cache, mocker) -> None:
        mocker.patch.object(cache, "ping", AsyncMock(side_effect=ConnectionError("refused")))
        health = HealthCheck(session_factory, cache)

        with pytest.raises(HealthCheckError):
            await health.check_cache()

        result = await health.check_all()
        assert result["status"] == "unhealthy"
        assert result["checks"]["database"]["status"] == "healthy"
        assert "refused" in result["checks"]["cache"]["error"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_slow_probe_times_out(self, session_factory, cache, mocker) -> None:
        async def slow_ping() -> bool:
            await asyncio.sleep(1)
            return True

        mocker.patch.object(cache, "ping", AsyncMock(side_effect=slow_ping))
        health = HealthCheck(session_factory, cache, timeout_seconds=0.01)

        with pytest.raises(HealthCheckError) as exc_info:
            await health.check_cache()

        assert exc_info.value.service == "cache"
        assert "timed out" in str(exc_info.value)
