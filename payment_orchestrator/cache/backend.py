"""
Key/value cache with TTL.

``Cache`` is the interface consumed by the services; ``RedisCache`` is the
implementation on ``redis.asyncio``. Values are stored as JSON.
"""
import json
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)


class Cache(ABC):
    """Cache interface used for rules, FX rates, provider health and metrics."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value or None."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a value without expiry."""

    @abstractmethod
    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a value that expires after ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def increment(self, key: str, amount: int = 1) -> int:
        ...

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the number deleted."""

    @abstractmethod
    async def window_add(self, key: str, member: str, score: float, min_score: float) -> None:
        """Add a scored member and drop members scored below ``min_score``."""

    @abstractmethod
    async def window_range(self, key: str, min_score: float) -> List[str]:
        """Members scored at or above ``min_score``."""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class RedisCache(Cache):
    """Redis-backed cache."""

    def __init__(self, client: aioredis.Redis, key_prefix: str = "payment:"):
        """
        Initialize cache.

        Args:
            client: Redis client (``decode_responses=True``)
            key_prefix: Prefix applied to every key
        """
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, key_prefix: str = "payment:") -> "RedisCache":
        """Create a cache from a Redis URL."""
        client = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, default=str)

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        await self.client.set(self._key(key), self._dump(value))

    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.client.setex(self._key(key), ttl_seconds, self._dump(value))

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(self._key(key)))

    async def increment(self, key: str, amount: int = 1) -> int:
        return int(await self.client.incrby(self._key(key), amount))

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self.client.expire(self._key(key), ttl_seconds)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self.client.scan_iter(match=self._key(pattern))]
        if not keys:
            return 0
        deleted = await self.client.delete(*keys)
        logger.debug("cache_pattern_deleted", pattern=pattern, deleted=deleted)
        return int(deleted)

    async def window_add(self, key: str, member: str, score: float, min_score: float) -> None:
        full_key = self._key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(full_key, {member: score})
            pipe.zremrangebyscore(full_key, "-inf", f"({min_score}")
            await pipe.execute()

    async def window_range(self, key: str, min_score: float) -> List[str]:
        return list(await self.client.zrangebyscore(self._key(key), min_score, "+inf"))

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()
