"""Rate limiting module."""

from .keys import build_rl_key
from .backend import LimiterBackend, MemoryBackend, RedisBackend
from .limiter import (
    AdmissionController,
    DEFAULT_ENDPOINT_POLICIES,
    EndpointAdmissionController,
    EndpointRule,
    RateLimitResult,
    RatePolicy,
    RateLimiter,
)
from .middleware import RateLimitMiddleware, resolve_actor
from .config import (
    RateLimitConfig,
    create_admission_controller,
    create_backend,
    create_endpoint_controller,
    create_redis_client,
    get_rate_limit_config,
)
from .exceptions import (
    RateLimitError,
    RateLimitExceededError,
    RateLimitConfigurationError,
    RateLimitBackendError
)

__all__ = [
    "build_rl_key",
    "LimiterBackend",
    "MemoryBackend",
    "RedisBackend",
    "AdmissionController",
    "DEFAULT_ENDPOINT_POLICIES",
    "EndpointAdmissionController",
    "EndpointRule",
    "RateLimitResult",
    "RatePolicy",
    "RateLimiter",
    "RateLimitMiddleware",
    "resolve_actor",
    "RateLimitConfig",
    "create_admission_controller",
    "create_backend",
    "create_endpoint_controller",
    "create_redis_client",
    "get_rate_limit_config",
    "RateLimitError",
    "RateLimitExceededError",
    "RateLimitConfigurationError",
    "RateLimitBackendError"
]
