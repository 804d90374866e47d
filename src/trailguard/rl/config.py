"""Rate limiting configuration and controller factories."""

from typing import List, Optional, Sequence, Tuple

import redis.asyncio as aioredis
from pydantic import BaseModel, Field

from trailguard.core.config import Settings, get_settings
from trailguard.core.policy import FailurePolicy
from .backend import LimiterBackend, MemoryBackend, RedisBackend
from .exceptions import RateLimitConfigurationError
from .limiter import (
    DEFAULT_ENDPOINT_POLICIES,
    AdmissionController,
    EndpointAdmissionController,
    EndpointRule,
    RatePolicy,
    RateLimiter,
)


class RateLimitConfig(BaseModel):
    """Rate limiting configuration model."""

    enabled: bool = Field(default=True, description="Enable the global limiter")
    endpoint_enabled: bool = Field(default=True, description="Enable per-endpoint limits")
    enforce: bool = Field(default=True, description="False bypasses every limiter")
    backend: str = Field(default="memory", description="Backend type")
    redis_url: Optional[str] = Field(default=None, description="Redis URL if using Redis backend")
    max_requests: int = Field(default=100, ge=1, description="Points per window")
    window_seconds: int = Field(default=900, ge=1, description="Window in seconds")
    burst_points: int = Field(default=10, ge=1, description="Process-local burst points")
    burst_seconds: int = Field(default=1, ge=1, description="Process-local burst window")
    failure_policy: FailurePolicy = Field(default=FailurePolicy.OPEN, description="Behaviour when the store is down")
    exempt_paths: List[str] = Field(default_factory=lambda: ["/api/auth"])
    blocked_user_agents: List[str] = Field(default_factory=lambda: ["bot", "crawler", "spider"])


def get_rate_limit_config(settings: Optional[Settings] = None) -> RateLimitConfig:
    """Get rate limiting configuration from settings."""
    settings = settings or get_settings()

    return RateLimitConfig(
        enabled=settings.ENABLE_RATE_LIMITING,
        endpoint_enabled=settings.ENABLE_ENDPOINT_RATE_LIMITING,
        enforce=settings.is_production or not settings.RATE_LIMIT_SKIP_NON_PRODUCTION,
        backend=settings.RATE_LIMIT_BACKEND,
        redis_url=settings.RATE_LIMIT_REDIS_URL or settings.redis_url,
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        burst_points=settings.RATE_LIMIT_BURST_POINTS,
        burst_seconds=settings.RATE_LIMIT_BURST_SECONDS,
        failure_policy=FailurePolicy.parse(settings.RATE_LIMIT_FAILURE_POLICY),
        exempt_paths=settings.RATE_LIMIT_EXEMPT_PATHS,
        blocked_user_agents=settings.RATE_LIMIT_BLOCKED_USER_AGENTS,
    )


def create_redis_client(config: RateLimitConfig) -> Optional[aioredis.Redis]:
    """Redis client for the shared store, or None with the memory backend."""
    if config.backend != "redis":
        return None
    if not config.redis_url:
        raise RateLimitConfigurationError("Redis backend requires a redis_url", "redis_url")
    return aioredis.Redis.from_url(config.redis_url, decode_responses=True)


def create_backend(config: RateLimitConfig, redis: Optional[aioredis.Redis] = None) -> LimiterBackend:
    """Create the durable backend named by the configuration."""
    if config.backend == "memory":
        return MemoryBackend()
    if config.backend == "redis":
        return RedisBackend(redis or create_redis_client(config))
    raise RateLimitConfigurationError(f"Unknown rate limiting backend: {config.backend}", config.backend)


def create_admission_controller(
    settings: Optional[Settings] = None,
    redis: Optional[aioredis.Redis] = None,
    config: Optional[RateLimitConfig] = None,
) -> Optional[AdmissionController]:
    """
    Create the global two-layer admission controller.

    Returns:
        AdmissionController instance or None if disabled
    """
    config = config or get_rate_limit_config(settings)
    if not config.enabled:
        return None

    window_limiter = RateLimiter(
        create_backend(config, redis),
        RatePolicy(name="global", points=config.max_requests, window_seconds=config.window_seconds),
    )
    burst_limiter = RateLimiter(
        MemoryBackend(),
        RatePolicy(name="burst", points=config.burst_points, window_seconds=config.burst_seconds),
    )
    return AdmissionController(window_limiter, burst_limiter, config.failure_policy)


def create_endpoint_controller(
    settings: Optional[Settings] = None,
    redis: Optional[aioredis.Redis] = None,
    config: Optional[RateLimitConfig] = None,
    policies: Sequence[Tuple[str, RatePolicy]] = DEFAULT_ENDPOINT_POLICIES,
) -> Optional[EndpointAdmissionController]:
    """
    Create the per-endpoint controller; all rules share one backend.

    Returns:
        EndpointAdmissionController instance or None if disabled
    """
    config = config or get_rate_limit_config(settings)
    if not config.endpoint_enabled:
        return None

    backend = create_backend(config, redis)
    rules = [EndpointRule(prefix, RateLimiter(backend, policy)) for prefix, policy in policies]
    return EndpointAdmissionController(rules, config.failure_policy)
