"""
Per-target pipeline registry for trailguard.

Each remote target (URL origin, logical service name or "redis") gets its own
breaker and pipeline, created lazily on first use and kept for the life of
the registry. Registries are plain objects owned by the client that uses
them.

Example Usage:
    registry = PipelineRegistry(
        breaker_config=settings.http_breaker_config(),
        retry_policy=settings.http_retry_policy(),
        invocation_timeout=settings.HTTP_BREAKER_TIMEOUT,
    )

    pipeline = registry.get_pipeline("https://api.yelp.com")
    try:
        response = await pipeline.execute(lambda: client.get(url))
    except CircuitOpenError:
        return handle_service_unavailable()
"""

import asyncio
import threading
import time
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from .breaker import CircuitBreaker, CircuitBreakerConfig
from .listeners import LoggingBreakerListener
from .pipeline import ResiliencePipeline
from .retry import RetryPolicy, SleepFunc

logger = logging.getLogger(__name__)


class PipelineRegistry:
    """
    Memoises one ResiliencePipeline per target identity.

    Creation happens under a threading lock, so concurrent first use of a
    target yields a single instance whether callers share an event loop or
    run on separate threads.
    """

    def __init__(self,
                 breaker_config: Optional[CircuitBreakerConfig] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 invocation_timeout: Optional[float] = 5.0,
                 listeners: Optional[Iterable[Any]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: SleepFunc = asyncio.sleep):
        """
        Args:
            breaker_config: Default breaker configuration for new targets
            retry_policy: Default retry policy for new targets
            invocation_timeout: Default timeout around each retrying call, None disables it
            listeners: Transition observers attached to every breaker; defaults to logging
            clock: Time source handed to every breaker
            sleep: Sleep used between retries
        """
        self.default_config = breaker_config or CircuitBreakerConfig()
        self.default_retry_policy = retry_policy or RetryPolicy()
        self.invocation_timeout = invocation_timeout
        self._listeners = list(listeners) if listeners is not None else [LoggingBreakerListener()]
        self._clock = clock
        self._sleep = sleep

        self._pipelines: Dict[str, ResiliencePipeline] = {}
        self._overrides: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_pipeline(self, target: str) -> ResiliencePipeline:
        """
        Get or create the pipeline for ``target``.

        Args:
            target: Unique identity of the remote dependency

        Returns:
            The same ResiliencePipeline instance on every call for this target
        """
        pipeline = self._pipelines.get(target)
        if pipeline is not None:
            return pipeline

        with self._lock:
            pipeline = self._pipelines.get(target)
            if pipeline is None:
                override = self._overrides.get(target, {})
                config = override.get("breaker_config", self.default_config)
                breaker = CircuitBreaker(
                    target, config, listeners=self._listeners, clock=self._clock
                )
                pipeline = ResiliencePipeline(
                    target,
                    breaker=breaker,
                    retry_policy=override.get("retry_policy", self.default_retry_policy),
                    invocation_timeout=override.get("invocation_timeout", self.invocation_timeout),
                    sleep=self._sleep,
                )
                self._pipelines[target] = pipeline

                logger.info(
                    "Created circuit breaker for target",
                    extra={
                        "target": target,
                        "total_targets": len(self._pipelines),
                        "error_threshold_percentage": config.error_threshold_percentage,
                        "reset_timeout": config.reset_timeout,
                    }
                )
            return pipeline

    def direct_pipeline(self) -> ResiliencePipeline:
        """A retrying pipeline with no breaker, for calls that have no target identity."""
        return ResiliencePipeline(
            None, breaker=None, retry_policy=self.default_retry_policy, sleep=self._sleep
        )

    def configure_target(self,
                         target: str,
                         breaker_config: Optional[CircuitBreakerConfig] = None,
                         retry_policy: Optional[RetryPolicy] = None,
                         invocation_timeout: Optional[float] = None):
        """
        Set custom settings for a specific target.

        If the pipeline already exists its breaker config and retry policy are
        replaced in place; the breaker keeps its state but its rolling window
        restarts empty.
        """
        with self._lock:
            override = self._overrides.setdefault(target, {})
            if breaker_config is not None:
                override["breaker_config"] = breaker_config
            if retry_policy is not None:
                override["retry_policy"] = retry_policy
            if invocation_timeout is not None:
                override["invocation_timeout"] = invocation_timeout

            pipeline = self._pipelines.get(target)
            if pipeline is not None:
                if breaker_config is not None:
                    pipeline.breaker.update_config(breaker_config)
                if retry_policy is not None:
                    pipeline.retry_policy = retry_policy
                if invocation_timeout is not None:
                    pipeline.invocation_timeout = invocation_timeout
                logger.info("Updated configuration for target", extra={"target": target})

    def targets(self) -> List[str]:
        return list(self._pipelines.keys())

    def get_states(self) -> Dict[str, str]:
        """Snapshot of ``{target: "closed" | "open" | "half-open"}``."""
        return {
            target: pipeline.breaker.state.value
            for target, pipeline in list(self._pipelines.items())
        }

    def get_all_stats(self) -> List[Dict[str, Any]]:
        return [pipeline.breaker.get_stats() for pipeline in list(self._pipelines.values())]

    def reset(self, target: str) -> bool:
        """
        Manually reset one breaker to closed.

        Returns:
            True if the breaker was reset, False if the target is unknown
        """
        pipeline = self._pipelines.get(target)
        if pipeline is None:
            return False
        pipeline.breaker.reset()
        return True

    def reset_all(self) -> int:
        """Reset every breaker that is not closed; returns how many were reset."""
        reset_count = 0
        for target, pipeline in list(self._pipelines.items()):
            if pipeline.breaker.state.value != "closed":
                pipeline.breaker.reset()
                reset_count += 1

        if reset_count:
            logger.warning(
                "Bulk circuit breaker reset completed",
                extra={"reset_count": reset_count, "total_targets": len(self._pipelines)}
            )
        return reset_count
