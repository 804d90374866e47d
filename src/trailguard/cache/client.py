"""
Redis cache client for trailguard.

Every operation goes through the "redis" resilience pipeline. The cache is
never a hard dependency: reads degrade to a miss and writes become no-ops
when Redis is unreachable or its breaker is open.
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.backoff import ExponentialWithJitterBackoff, NoBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.asyncio.retry import Retry

from trailguard.cache.exceptions import CacheBackendError
from trailguard.circuit_breaker.breaker import CircuitBreakerState
from trailguard.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitBreakerTimeoutError,
    RetriesExhaustedError,
)
from trailguard.circuit_breaker.manager import PipelineRegistry
from trailguard.circuit_breaker.pipeline import ResiliencePipeline
from trailguard.core.config import Settings, get_settings
from trailguard.core.logging import get_logger

logger = get_logger(__name__)

CACHE_TARGET = "redis"
SCAN_BATCH_SIZE = 100


class CacheClient:
    """JSON cache on Redis with a circuit breaker and background reconnects."""

    def __init__(self,
                 settings: Optional[Settings] = None,
                 redis_client: Optional[aioredis.Redis] = None,
                 registry: Optional[PipelineRegistry] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.settings = settings or get_settings()
        self.redis = redis_client
        self.registry = registry or PipelineRegistry(
            breaker_config=self.settings.cache_breaker_config(),
            retry_policy=self.settings.cache_retry_policy(),
            invocation_timeout=self.settings.CACHE_BREAKER_TIMEOUT,
        )
        self._sleep = sleep
        self._backoff = ExponentialWithJitterBackoff(
            cap=self.settings.CACHE_RECONNECT_MAX_DELAY,
            base=self.settings.CACHE_RECONNECT_BASE_DELAY,
        )
        self._connected = False
        self._closing = False
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def pipeline(self) -> ResiliencePipeline:
        return self.registry.get_pipeline(CACHE_TARGET)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _is_available(self) -> bool:
        return (
            self._connected
            and self.redis is not None
            and self.pipeline.breaker.state != CircuitBreakerState.OPEN
        )

    async def connect(self) -> bool:
        """
        Create the Redis client if needed and check it with PING.

        Never raises; on failure the client stays disconnected and a
        background reconnect is started.
        """
        if self.redis is None:
            # retries are left to the pipeline
            self.redis = aioredis.Redis.from_url(
                self.settings.redis_url,
                decode_responses=True,
                retry=Retry(NoBackoff(), 0),
            )

        try:
            await self.redis.ping()
        except (RedisError, OSError) as e:
            self._connected = False
            logger.error(f"Redis connection failed, cache disabled until reconnect: {e}")
            self._schedule_reconnect()
            return False

        self._connected = True
        logger.info("Connected to Redis cache")
        return True

    def _schedule_reconnect(self) -> None:
        if self._closing or self.settings.CACHE_RECONNECT_MAX_ATTEMPTS == 0:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._reconnect_task = loop.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        """
        Ping until Redis answers or the client is closed.

        The first CACHE_RECONNECT_MAX_ATTEMPTS attempts back off exponentially;
        after that the loop keeps polling at CACHE_RECONNECT_MAX_DELAY.
        """
        max_attempts = self.settings.CACHE_RECONNECT_MAX_ATTEMPTS
        attempt = 0
        while not self._closing:
            attempt += 1
            if attempt <= max_attempts:
                delay = self._backoff.compute(attempt)
            else:
                delay = self.settings.CACHE_RECONNECT_MAX_DELAY
                if attempt == max_attempts + 1:
                    logger.error(
                        f"Redis still unreachable after {max_attempts} attempts, "
                        f"retrying every {delay}s"
                    )

            await self._sleep(delay)
            try:
                await self.redis.ping()
            except (RedisError, OSError) as e:
                logger.debug(f"Redis reconnect attempt {attempt} failed: {e}")
                continue

            self._connected = True
            logger.info(f"Reconnected to Redis after {attempt} attempts")
            return

    async def _run(self, operation: str, key: str, action: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await self.pipeline.execute(action)
        except CircuitBreakerError as e:
            raise CacheBackendError(operation, key, e) from e

    def _handle_failure(self, error: CacheBackendError) -> None:
        cause = error.original_exception
        logger.warning(
            f"Cache {error.operation} degraded for key {error.key}: {cause}",
        )
        lost_connection = isinstance(cause, CircuitBreakerTimeoutError) or (
            isinstance(cause, RetriesExhaustedError)
            and isinstance(cause.last_error, (RedisConnectionError, OSError))
        )
        if lost_connection and self._connected:
            self._connected = False
            logger.error("Lost connection to Redis, starting background reconnect")
            self._schedule_reconnect()

    async def get(self, key: str) -> Any:
        """Return the decoded value for ``key``, or None on a miss or any failure."""
        if not self._is_available():
            return None

        try:
            raw = await self._run("get", key, lambda: self.redis.get(key))
        except CacheBackendError as e:
            self._handle_failure(e)
            return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable cache value for key {key}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store ``value`` as JSON with a TTL; silently skipped when the cache is unavailable."""
        if not self._is_available():
            return

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cannot serialize cache value for key {key}: {e}")
            return

        ttl = ttl_seconds if ttl_seconds is not None else self.settings.CACHE_DEFAULT_TTL
        try:
            await self._run("set", key, lambda: self.redis.setex(key, ttl, payload))
        except CacheBackendError as e:
            self._handle_failure(e)

    async def delete(self, key: str) -> None:
        if not self._is_available():
            return

        try:
            await self._run("delete", key, lambda: self.redis.delete(key))
        except CacheBackendError as e:
            self._handle_failure(e)

    async def delete_matching(self, pattern: str) -> int:
        """Delete every key matching a glob ``pattern`` using SCAN; returns the count deleted."""
        if not self._is_available():
            return 0

        async def scan_and_delete() -> int:
            deleted = 0
            batch = []
            async for key in self.redis.scan_iter(match=pattern, count=SCAN_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= SCAN_BATCH_SIZE:
                    deleted += await self.redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.redis.delete(*batch)
            return deleted

        try:
            return await self._run("delete_matching", pattern, scan_and_delete)
        except CacheBackendError as e:
            self._handle_failure(e)
            return 0

    async def clear_user_cache(self, user_id: str) -> int:
        """Remove every entry, in any namespace, whose key has ``user_id`` as a whole segment after the prefix."""
        return await self.delete_matching(f"*:{user_id}:*")

    async def get_or_set(self,
                         key: str,
                         loader: Callable[[], Awaitable[Any]],
                         ttl_seconds: Optional[int] = None) -> Any:
        """Return the cached value, or load, store and return it. Loader errors propagate."""
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await loader()
        if value is not None:
            await self.set(key, value, ttl_seconds)
        return value

    def get_connection_status(self) -> str:
        return "connected" if self._connected else "disconnected"

    def get_breaker_state(self) -> str:
        return self.pipeline.state

    async def close(self) -> None:
        """Stop reconnecting and close the Redis client."""
        self._closing = True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None

        if self.redis is not None:
            await self.redis.aclose()
        self._connected = False
        logger.info("Redis cache client closed")
