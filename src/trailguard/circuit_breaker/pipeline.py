"""
Breaker-wrapped remote call: invocation timeout around retries, guarded by a breaker.

The breaker sees exactly one outcome per logical call, so a call that fails
twice and then succeeds counts as a single success.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .breaker import CircuitBreaker
from .exceptions import CircuitBreakerError, CircuitBreakerTimeoutError, CircuitOpenError
from .retry import RetryPolicy, SleepFunc

logger = logging.getLogger(__name__)


class ResiliencePipeline:
    """
    Composition of timeout, retry and circuit breaker for one target.

    A pipeline without a breaker performs a plain retrying call; this is used
    for requests whose target cannot be identified.
    """

    def __init__(self,
                 target: Optional[str],
                 breaker: Optional[CircuitBreaker] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 invocation_timeout: Optional[float] = 5.0,
                 sleep: SleepFunc = asyncio.sleep):
        self.target = target
        self.breaker = breaker
        self.retry_policy = retry_policy or RetryPolicy()
        self.invocation_timeout = invocation_timeout
        self._sleep = sleep

    @property
    def state(self) -> Optional[str]:
        return self.breaker.state.value if self.breaker else None

    async def _run_with_retries(self, action: Callable[[], Awaitable[Any]]) -> Any:
        return await self.retry_policy.run(action, target=self.target, sleep=self._sleep)

    async def execute(self, action: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``action`` through the pipeline.

        Raises:
            CircuitOpenError: The breaker is open; the action was not invoked
            CircuitBreakerTimeoutError: The whole retrying call exceeded the invocation timeout
            RetriesExhaustedError: Every attempt failed with a retryable error
            NonRetryableError: An attempt failed with a non-retryable error
        """
        if self.breaker is None:
            return await self._run_with_retries(action)

        breaker = self.breaker
        if not breaker.allow_call():
            stats = breaker.get_stats()
            raise CircuitOpenError(
                self.target,
                cooldown_remaining=stats["cooldown_remaining_seconds"],
                failure_rate=stats["failure_rate"],
            )

        try:
            if self.invocation_timeout is None:
                result = await self._run_with_retries(action)
            else:
                result = await asyncio.wait_for(
                    self._run_with_retries(action), timeout=self.invocation_timeout
                )
        except asyncio.TimeoutError:
            error = CircuitBreakerTimeoutError(self.target, self.invocation_timeout)
            breaker.record_failure(error)
            logger.warning(
                "Breaker invocation timeout exceeded",
                extra={"target": self.target, "timeout_seconds": self.invocation_timeout}
            )
            raise error from None
        except CircuitBreakerError as e:
            breaker.record_failure(e)
            raise
        except asyncio.CancelledError:
            breaker.release()
            raise

        breaker.record_success()
        return result
