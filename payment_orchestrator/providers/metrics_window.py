"""
Rolling provider performance window.

Each provider attempt is stored as a member of a sorted set scored by its
timestamp (ms). Members older than the window are trimmed on every write,
so the set never holds more than one window of attempts.
"""
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from payment_orchestrator.cache import Cache, CacheDomain, cache_key
from payment_orchestrator.providers.types import ProviderMetrics

logger = structlog.get_logger(__name__)


class ProviderMetricsWindow:
    """Success rate and latency of each provider over the last window."""

    def __init__(self, cache: Cache, window_seconds: int = 3600):
        """
        Initialize window.

        Args:
            cache: Cache backend holding the sorted sets
            window_seconds: Window length (default 1 hour)
        """
        self.cache = cache
        self.window_seconds = window_seconds

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000

    async def record(
        self,
        provider_id: Any,
        success: bool,
        latency_ms: float,
        now_ms: Optional[int] = None,
    ) -> None:
        """Add one attempt and drop attempts that fell out of the window."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        member = json.dumps(
            {
                "id": uuid.uuid4().hex,
                "success": success,
                "latency_ms": latency_ms,
                "timestamp": now_ms,
            }
        )
        await self.cache.window_add(
            cache_key(CacheDomain.PROVIDER_ROLLING, provider_id),
            member,
            score=now_ms,
            min_score=now_ms - self.window_ms,
        )
        logger.debug(
            "provider_metrics_recorded",
            provider_id=str(provider_id),
            success=success,
            latency_ms=latency_ms,
        )

    async def snapshot(
        self, provider_id: Any, now_ms: Optional[int] = None
    ) -> Optional[ProviderMetrics]:
        """
        Aggregate the attempts inside the window.

        Returns:
            Optional[ProviderMetrics]: None when no attempt is in the window
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        members = await self.cache.window_range(
            cache_key(CacheDomain.PROVIDER_ROLLING, provider_id),
            min_score=now_ms - self.window_ms,
        )
        if not members:
            return None

        attempts = [json.loads(member) for member in members]
        total = len(attempts)
        failed = sum(1 for attempt in attempts if not attempt["success"])

        return ProviderMetrics(
            success_rate=(total - failed) / total,
            average_latency_ms=sum(attempt["latency_ms"] for attempt in attempts) / total,
            total_transactions=total,
            failed_transactions=failed,
            last_updated=datetime.now(timezone.utc),
        )
