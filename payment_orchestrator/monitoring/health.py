"""
Dependency health checks for the database and the cache.

Each probe is timed and bounded by a timeout; ``check_all`` reports every
dependency even when one of them is down.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_orchestrator.cache import Cache

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """A dependency probe failed or timed out."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service} health check failed: {message}")
        self.service = service


class HealthCheck:
    """Probes the dependencies every service shares."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Cache,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.timeout_seconds = timeout_seconds

    async def _probe(self, service: str, probe: Callable[[], Awaitable[Any]]) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            await asyncio.wait_for(probe(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error("health_check_timeout", service=service, timeout=self.timeout_seconds)
            raise HealthCheckError(service, f"timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            logger.error("health_check_failed", service=service, error=str(e))
            raise HealthCheckError(service, str(e)) from e

        return {
            "status": "healthy",
            "service": service,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }

    async def _select_one(self) -> None:
        async with self.session_factory() as db:
            await db.execute(text("SELECT 1"))

    async def check_database(self) -> Dict[str, Any]:
        """
        Run ``SELECT 1`` against the database.

        Raises:
            HealthCheckError: If the query fails or times out
        """
        return await self._probe("database", self._select_one)

    async def check_cache(self) -> Dict[str, Any]:
        """
        Ping the cache.

        Raises:
            HealthCheckError: If the ping fails or times out
        """
        return await self._probe("cache", self.cache.ping)

    async def check_all(self) -> Dict[str, Any]:
        """
        Probe every dependency.

        Returns:
            Dict[str, Any]: ``{"status": "healthy" | "unhealthy", "checks": {...}}``
        """
        checks: Dict[str, Any] = {}
        for name, check in (("database", self.check_database), ("cache", self.check_cache)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}

        healthy = all(check["status"] == "healthy" for check in checks.values())
        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}
