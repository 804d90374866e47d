"""Rate limiter and admission controllers."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from trailguard.core.policy import FailurePolicy

from .backend import LimiterBackend, MemoryBackend
from .exceptions import RateLimitBackendError, RateLimitConfigurationError, RateLimitExceededError
from .keys import build_rl_key

logger = logging.getLogger(__name__)


@dataclass
class RatePolicy:
    """Rate limiting policy configuration."""
    name: str = "default"
    points: int = 100
    window_seconds: int = 900
    block_seconds: int = 0

    def __post_init__(self):
        if self.points < 1:
            raise RateLimitConfigurationError("points must be >= 1", f"points={self.points}")
        if self.window_seconds < 1:
            raise RateLimitConfigurationError(
                "window_seconds must be >= 1", f"window_seconds={self.window_seconds}"
            )
        if self.block_seconds < 0:
            raise RateLimitConfigurationError(
                "block_seconds must be >= 0", f"block_seconds={self.block_seconds}"
            )


@dataclass
class RateLimitResult:
    """Outcome of an admitted request."""
    allowed: bool
    remaining: int
    reset_after: int
    degraded: bool = False


class RateLimiter:
    """Rate limiter that uses a backend to track and enforce a policy."""

    def __init__(self, backend: LimiterBackend, policy: Optional[RatePolicy] = None):
        """Initialize rate limiter with backend and policy."""
        self._backend = backend
        self._policy = policy or RatePolicy()

    @property
    def policy(self) -> RatePolicy:
        return self._policy

    @property
    def backend(self) -> LimiterBackend:
        return self._backend

    async def consume(self, actor: str) -> RateLimitResult:
        """
        Consume one point for ``actor``.

        Raises:
            RateLimitExceededError: The actor is over quota or currently blocked
            RateLimitBackendError: The backend could not be reached
        """
        policy = self._policy
        key = build_rl_key(policy=policy.name, actor=actor)

        if policy.block_seconds > 0:
            blocked = await self._backend.blocked_for(key)
            if blocked > 0:
                raise RateLimitExceededError(actor, blocked, policy.name)

        count, ttl_remaining = await self._backend.incr_and_get(key, policy.window_seconds)

        if count > policy.points:
            retry_after = ttl_remaining
            if policy.block_seconds > 0:
                await self._backend.block(key, policy.block_seconds)
                retry_after = policy.block_seconds
            raise RateLimitExceededError(actor, retry_after, policy.name)

        return RateLimitResult(allowed=True, remaining=policy.points - count, reset_after=ttl_remaining)


async def _consume_with_policy(limiter: RateLimiter,
                               actor: str,
                               path: Optional[str],
                               failure_policy: FailurePolicy) -> RateLimitResult:
    try:
        return await limiter.consume(actor)
    except RateLimitBackendError as e:
        if not failure_policy.allows:
            logger.error(
                "Rate limit store unavailable, rejecting request",
                extra={"actor": actor, "path": path, "policy": limiter.policy.name, "error": e.message}
            )
            raise
        logger.warning(
            "Rate limit store unavailable, allowing request",
            extra={"actor": actor, "path": path, "policy": limiter.policy.name, "error": e.message}
        )
        return RateLimitResult(
            allowed=True,
            remaining=limiter.policy.points,
            reset_after=0,
            degraded=True,
        )


class AdmissionController:
    """
    Two-layer admission: a process-local burst limiter, then the shared window limiter.

    Both layers must pass. The burst limiter always keeps its counters in
    process memory; only the window limiter may use a shared store.
    """

    def __init__(self,
                 window_limiter: RateLimiter,
                 burst_limiter: Optional[RateLimiter] = None,
                 failure_policy: FailurePolicy = FailurePolicy.OPEN):
        if burst_limiter is not None and not isinstance(burst_limiter.backend, MemoryBackend):
            raise RateLimitConfigurationError("Burst limiter must use a MemoryBackend")
        self.window_limiter = window_limiter
        self.burst_limiter = burst_limiter
        self.failure_policy = failure_policy

    async def admit(self, actor: str, path: Optional[str] = None) -> RateLimitResult:
        """
        Raises:
            RateLimitExceededError: Either layer rejected the request
            RateLimitBackendError: The shared store is down under fail-closed policy
        """
        if self.burst_limiter is not None:
            await self.burst_limiter.consume(actor)
        return await _consume_with_policy(self.window_limiter, actor, path, self.failure_policy)


@dataclass
class EndpointRule:
    """A limiter applied to every path starting with ``prefix``."""
    prefix: str
    limiter: RateLimiter


DEFAULT_ENDPOINT_POLICIES: Tuple[Tuple[str, RatePolicy], ...] = (
    ("/api/users", RatePolicy(name="users", points=50, window_seconds=900, block_seconds=60)),
    ("/api/adventures", RatePolicy(name="adventures", points=200, window_seconds=900, block_seconds=30)),
)


class EndpointAdmissionController:
    """Per-path-prefix limits; the longest matching prefix wins, unmatched paths are not limited."""

    def __init__(self, rules: Sequence[EndpointRule], failure_policy: FailurePolicy = FailurePolicy.OPEN):
        self.rules: List[EndpointRule] = sorted(rules, key=lambda rule: len(rule.prefix), reverse=True)
        self.failure_policy = failure_policy

    def match(self, path: str) -> Optional[EndpointRule]:
        for rule in self.rules:
            if path.startswith(rule.prefix):
                return rule
        return None

    async def admit(self, actor: str, path: Optional[str] = None) -> Optional[RateLimitResult]:
        """Returns None when no rule applies to ``path``."""
        rule = self.match(path or "")
        if rule is None:
            return None
        return await _consume_with_policy(rule.limiter, actor, path, self.failure_policy)
