"""
Circuit breaker package for trailguard.

Every outbound dependency call goes through a ResiliencePipeline:
- an invocation timeout around the whole call
- retries with exponential backoff and jitter for transient failures
- a per-target circuit breaker that stops calling a failing target

Example Usage:
    from trailguard.circuit_breaker import PipelineRegistry, CircuitOpenError

    registry = PipelineRegistry()
    pipeline = registry.get_pipeline("https://maps.googleapis.com")

    try:
        result = await pipeline.execute(fetch_directions)
    except CircuitOpenError as e:
        return {"error": "service_unavailable", "retry_after": e.cooldown_remaining}
"""

from .breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState
from .exceptions import (
    CircuitBreakerConfigurationError,
    CircuitBreakerError,
    CircuitBreakerTimeoutError,
    CircuitOpenError,
    NonRetryableError,
    RetriesExhaustedError,
    UpstreamServerError,
)
from .listeners import BreakerListener, LoggingBreakerListener
from .manager import PipelineRegistry
from .pipeline import ResiliencePipeline
from .retry import RetryPolicy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitBreakerError",
    "CircuitBreakerConfigurationError",
    "CircuitBreakerTimeoutError",
    "CircuitOpenError",
    "NonRetryableError",
    "RetriesExhaustedError",
    "UpstreamServerError",
    "BreakerListener",
    "LoggingBreakerListener",
    "PipelineRegistry",
    "ResiliencePipeline",
    "RetryPolicy",
]
