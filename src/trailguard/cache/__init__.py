"""
Redis-backed JSON cache with circuit breaker protection.

Example Usage:
    from trailguard.cache import CacheClient

    cache = CacheClient()
    await cache.connect()

    forecast = await cache.get_or_set(
        f"weather:{city}", lambda: fetch_forecast(city), ttl_seconds=600
    )
"""

from .client import CACHE_TARGET, CacheClient
from .exceptions import CacheBackendError

__all__ = [
    "CACHE_TARGET",
    "CacheClient",
    "CacheBackendError",
]
