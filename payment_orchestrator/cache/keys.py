"""Cache key namespaces; the only place key shapes are defined."""
from enum import Enum
from typing import Any


class CacheDomain(str, Enum):
    ROUTING_RULES = "routing:rules"
    PROVIDER_HEALTH = "provider:health"
    PROVIDER_METRICS = "provider:metrics"
    PROVIDER_ROLLING = "provider:rolling"
    FX_RATE = "fx:rate"
    FX_QUOTE = "fx:quote"
    WEBHOOK_PROCESSED = "webhook:processed"


def cache_key(domain: CacheDomain, *parts: Any) -> str:
    """
    Build a namespaced cache key.

    Example:
        cache_key(CacheDomain.FX_RATE, "USD", "EUR") -> "fx:rate:USD:EUR"
    """
    if not parts:
        raise ValueError("cache_key requires at least one identifier part")
    rendered = [getattr(part, "value", part) for part in parts]
    return ":".join([domain.value, *(str(part) for part in rendered)])


def cache_pattern(domain: CacheDomain) -> str:
    """Glob pattern matching every key of a domain."""
    return f"{domain.value}:*"
