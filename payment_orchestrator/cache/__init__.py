"""Cache package: TTL key/value cache and namespaced key builder."""
from .backend import Cache, RedisCache
from .keys import CacheDomain, cache_key, cache_pattern

__all__ = ["Cache", "RedisCache", "CacheDomain", "cache_key", "cache_pattern"]
