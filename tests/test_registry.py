"""Tests for the per-target pipeline registry."""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest
from unittest.mock import AsyncMock

from trailguard.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitOpenError,
    PipelineRegistry,
    RetriesExhaustedError,
    RetryPolicy,
)


async def no_sleep(delay: float) -> None:
    return None


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPipelineRegistry:
    """Test memoisation and isolation of per-target pipelines."""

    @pytest.fixture
    def registry(self):
        return PipelineRegistry(retry_policy=RetryPolicy(jitter=False), sleep=no_sleep, listeners=[])

    def test_get_pipeline_is_idempotent(self, registry):
        first = registry.get_pipeline("https://a.example")
        second = registry.get_pipeline("https://a.example")

        assert first is second
        assert registry.targets() == ["https://a.example"]

    @pytest.mark.asyncio
    async def test_concurrent_first_use_creates_one_pipeline(self, registry):
        async def fetch():
            await asyncio.sleep(0)
            return registry.get_pipeline("https://a.example")

        pipelines = await asyncio.gather(*(fetch() for _ in range(50)))

        assert all(p is pipelines[0] for p in pipelines)

    def test_threaded_first_use_creates_one_pipeline(self, registry):
        with ThreadPoolExecutor(max_workers=8) as pool:
            pipelines = list(pool.map(lambda _: registry.get_pipeline("https://b.example"), range(64)))

        assert all(p is pipelines[0] for p in pipelines)

    @pytest.mark.asyncio
    async def test_target_isolation(self, registry):
        """Failures against one target never change another target's state."""
        registry.get_pipeline("https://b.example")
        failing = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(6):
            with pytest.raises((RetriesExhaustedError, CircuitOpenError)):
                await registry.get_pipeline("https://a.example").execute(failing)

        assert registry.get_states() == {
            "https://a.example": "open",
            "https://b.example": "closed",
        }

    def test_configure_target_applies_to_new_pipeline(self, registry):
        config = CircuitBreakerConfig(volume_threshold=2, reset_timeout=5.0)
        registry.configure_target("redis", breaker_config=config, invocation_timeout=1.0)

        pipeline = registry.get_pipeline("redis")

        assert pipeline.breaker.config is config
        assert pipeline.invocation_timeout == 1.0
        assert registry.get_pipeline("other").breaker.config is registry.default_config

    def test_configure_target_updates_existing_pipeline(self, registry):
        pipeline = registry.get_pipeline("redis")
        policy = RetryPolicy(max_retries=0)

        registry.configure_target("redis", retry_policy=policy)

        assert pipeline.retry_policy is policy

    def test_configure_target_rebuilds_rolling_window(self):
        clock = ManualClock()
        registry = PipelineRegistry(listeners=[], clock=clock)
        breaker = registry.get_pipeline("t").breaker
        config = CircuitBreakerConfig(rolling_window_seconds=60.0, rolling_buckets=6)

        registry.configure_target("t", breaker_config=config)
        for _ in range(3):
            breaker.record_failure()
        clock.now += 30
        for _ in range(2):
            breaker.record_failure()

        assert breaker.config is config
        assert breaker.state == CircuitBreakerState.OPEN

    @pytest.mark.asyncio
    async def test_reset_and_reset_all(self, registry):
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for target in ("https://a.example", "https://b.example"):
            for _ in range(5):
                with pytest.raises(RetriesExhaustedError):
                    await registry.get_pipeline(target).execute(failing)

        assert registry.reset("https://a.example") is True
        assert registry.reset("https://unknown.example") is False
        assert registry.get_pipeline("https://a.example").breaker.state == CircuitBreakerState.CLOSED

        assert registry.reset_all() == 1
        assert set(registry.get_states().values()) == {"closed"}

    def test_get_all_stats(self, registry):
        registry.get_pipeline("https://a.example")
        stats = registry.get_all_stats()

        assert len(stats) == 1
        assert stats[0]["target"] == "https://a.example"
