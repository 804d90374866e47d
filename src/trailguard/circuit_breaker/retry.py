"""
Retry with exponential backoff for breaker-wrapped calls.

The delay before retry n (1-based) is ``min_delay * factor ** (n - 1)``,
optionally multiplied by a random factor in [1, 2) and capped at ``max_delay``.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import httpx

from .exceptions import (
    CircuitBreakerConfigurationError,
    NonRetryableError,
    RetriesExhaustedError,
    UpstreamServerError,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TransportError,
    UpstreamServerError,
)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass
class RetryPolicy:
    """Retry settings for a remote call."""

    max_retries: int = 2
    min_delay: float = 0.1
    factor: float = 2.0
    max_delay: Optional[float] = None
    jitter: bool = True
    retry_on: Tuple[Type[BaseException], ...] = field(default=DEFAULT_RETRY_ON)

    def __post_init__(self):
        if self.max_retries < 0:
            raise CircuitBreakerConfigurationError(
                "max_retries must be >= 0",
                config_field="max_retries",
                provided_value=self.max_retries
            )
        if self.min_delay < 0:
            raise CircuitBreakerConfigurationError(
                "min_delay must be >= 0",
                config_field="min_delay",
                provided_value=self.min_delay
            )
        if self.factor < 1:
            raise CircuitBreakerConfigurationError(
                "factor must be >= 1",
                config_field="factor",
                provided_value=self.factor
            )
        if self.max_delay is not None and self.max_delay < self.min_delay:
            raise CircuitBreakerConfigurationError(
                "max_delay must be >= min_delay",
                config_field="max_delay",
                provided_value=self.max_delay
            )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)

    def compute_delay(self, retry_number: int) -> float:
        """Backoff in seconds before the given retry (1-based)."""
        delay = self.min_delay * (self.factor ** (retry_number - 1))
        if self.jitter:
            delay *= 1 + random.random()
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    async def run(self,
                  action: Callable[[], Awaitable[Any]],
                  target: Optional[str] = None,
                  sleep: SleepFunc = asyncio.sleep) -> Any:
        """
        Invoke ``action`` until it succeeds or the attempts run out.

        Args:
            action: Zero-argument coroutine function performing one attempt
            target: Target identity, used in errors and logs
            sleep: Awaitable sleep used between attempts

        Returns:
            The action's result, unchanged

        Raises:
            RetriesExhaustedError: Every attempt failed with a retryable error
            NonRetryableError: An attempt failed with an error not worth retrying
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await action()
            except Exception as e:
                if not self.is_retryable(e):
                    logger.debug(
                        "Non-retryable failure",
                        extra={"target": target, "attempt": attempt, "error_type": type(e).__name__}
                    )
                    raise NonRetryableError(target, e) from e

                last_error = e
                if attempt < self.max_attempts:
                    delay = self.compute_delay(attempt)
                    logger.warning(
                        f"Call failed (attempt {attempt}/{self.max_attempts}), retrying in {delay:.3f}s: {e}",
                        extra={"target": target, "attempt": attempt, "delay": delay}
                    )
                    await sleep(delay)

        logger.error(
            f"Call failed after {self.max_attempts} attempts",
            extra={"target": target, "error_type": type(last_error).__name__}
        )
        raise RetriesExhaustedError(target, last_error, self.max_attempts) from last_error
