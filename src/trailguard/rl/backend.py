"""Rate limiting backend implementations."""

import math
import time
import threading
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .exceptions import RateLimitBackendError

logger = logging.getLogger(__name__)

CLEANUP_EVERY = 1000


def _window_position(now: float, window_seconds: int) -> Tuple[int, int]:
    """Return (window_id, ttl_remaining) with ttl_remaining >= 1."""
    window_id = int(now // window_seconds)
    window_end = (window_id + 1) * window_seconds
    return window_id, max(1, math.ceil(window_end - now))


class LimiterBackend(ABC):
    """Abstract base class for rate limiting backends."""

    @abstractmethod
    async def incr_and_get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """
        Atomically increment the counter for `key` in the current fixed window.
        Return (count, ttl_remaining_seconds).
        window_id = floor(epoch / window_seconds)
        ttl_remaining_seconds = ceil(((window_id+1)*window_seconds) - now), at least 1
        """

    @abstractmethod
    async def block(self, key: str, seconds: int) -> None:
        """Reject `key` for the next `seconds` seconds."""

    @abstractmethod
    async def blocked_for(self, key: str) -> int:
        """Seconds left on a block for `key`, 0 when not blocked."""


class MemoryBackend(LimiterBackend):
    """Thread-safe in-memory rate limiting backend, local to this process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        # key -> (window_id, count, window_end)
        self._counters: Dict[str, Tuple[int, int, float]] = {}
        self._blocks: Dict[str, float] = {}
        self._clock = clock
        self._lock = threading.Lock()
        self._ops = 0

    async def incr_and_get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        with self._lock:
            now = self._clock()
            window_id, ttl_remaining = _window_position(now, window_seconds)

            current_window, count, _ = self._counters.get(key, (window_id, 0, 0.0))
            if current_window != window_id:
                count = 0
            count += 1
            self._counters[key] = (window_id, count, (window_id + 1) * window_seconds)

            self._ops += 1
            if self._ops % CLEANUP_EVERY == 0:
                self._cleanup_expired(now)

            return count, ttl_remaining

    async def block(self, key: str, seconds: int) -> None:
        with self._lock:
            self._blocks[key] = self._clock() + seconds

    async def blocked_for(self, key: str) -> int:
        with self._lock:
            until = self._blocks.get(key)
            if until is None:
                return 0
            remaining = until - self._clock()
            if remaining <= 0:
                del self._blocks[key]
                return 0
            return max(1, math.ceil(remaining))

    def _cleanup_expired(self, now: float) -> None:
        """Remove counters of finished windows and lapsed blocks."""
        expired = [key for key, (_, _, window_end) in self._counters.items() if window_end <= now]
        for key in expired:
            del self._counters[key]
        for key in [key for key, until in self._blocks.items() if until <= now]:
            del self._blocks[key]


class RedisBackend(LimiterBackend):
    """
    Shared rate limiting backend on Redis.

    Each window has its own counter key, ``{key}:{window_id}``, incremented
    and given an expiry inside one MULTI/EXEC transaction so concurrent
    requests from every instance see a single consistent count.
    """

    def __init__(self, redis_client: aioredis.Redis, clock: Callable[[], float] = time.time):
        self._redis = redis_client
        self._clock = clock

    async def incr_and_get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        window_id, ttl_remaining = _window_position(self._clock(), window_seconds)
        window_key = f"{key}:{window_id}"
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.incr(window_key)
            pipe.expire(window_key, ttl_remaining)
            count, _ = await pipe.execute()
        except (RedisError, OSError) as e:
            logger.error(
                "Redis backend error during incr_and_get",
                extra={"key": key, "window_seconds": window_seconds, "error": str(e)}
            )
            raise RateLimitBackendError(f"Redis backend failed: {e}", e) from e
        return int(count), ttl_remaining

    async def block(self, key: str, seconds: int) -> None:
        try:
            await self._redis.set(f"{key}:block", "1", ex=seconds)
        except (RedisError, OSError) as e:
            raise RateLimitBackendError(f"Redis backend failed: {e}", e) from e

    async def blocked_for(self, key: str) -> int:
        try:
            ttl = await self._redis.ttl(f"{key}:block")
        except (RedisError, OSError) as e:
            raise RateLimitBackendError(f"Redis backend failed: {e}", e) from e
        return max(0, int(ttl))
