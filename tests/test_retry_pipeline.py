"""Tests for retry backoff and the breaker-wrapped call pipeline."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from trailguard.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfigurationError,
    CircuitBreakerError,
    CircuitBreakerState,
    CircuitBreakerTimeoutError,
    CircuitOpenError,
    NonRetryableError,
    ResiliencePipeline,
    RetriesExhaustedError,
    RetryPolicy,
)


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryPolicy:
    """Test backoff computation and classification."""

    def test_delays_without_jitter(self):
        policy = RetryPolicy(min_delay=0.1, factor=2.0, jitter=False)

        assert policy.compute_delay(1) == pytest.approx(0.1)
        assert policy.compute_delay(2) == pytest.approx(0.2)
        assert policy.compute_delay(3) == pytest.approx(0.4)

    def test_jitter_stays_within_one_to_two_times(self):
        policy = RetryPolicy(min_delay=0.1, factor=2.0, jitter=True)

        for _ in range(50):
            delay = policy.compute_delay(2)
            assert 0.2 <= delay < 0.4

    def test_max_delay_caps_backoff(self):
        policy = RetryPolicy(min_delay=1.0, factor=10.0, max_delay=5.0, jitter=False)
        assert policy.compute_delay(4) == 5.0

    def test_invalid_policy_rejected(self):
        with pytest.raises(CircuitBreakerConfigurationError):
            RetryPolicy(max_retries=-1)
        with pytest.raises(CircuitBreakerConfigurationError):
            RetryPolicy(factor=0.5)

    @pytest.mark.asyncio
    async def test_retry_then_succeed(self):
        """A retryable failure followed by success returns the result after two invocations."""
        sleep = RecordingSleep()
        action = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])

        result = await RetryPolicy(jitter=False).run(action, target="t", sleep=sleep)

        assert result == "ok"
        assert action.await_count == 2
        assert sleep.delays == [pytest.approx(0.1)]

    @pytest.mark.asyncio
    async def test_exhaustion_carries_last_error(self):
        sleep = RecordingSleep()
        errors = [ConnectionError("1"), ConnectionError("2"), ConnectionError("3")]
        action = AsyncMock(side_effect=errors)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await RetryPolicy(max_retries=2, jitter=False).run(action, target="t", sleep=sleep)

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is errors[2]
        assert action.await_count == 3
        assert sleep.delays == [pytest.approx(0.1), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_not_retried(self):
        sleep = RecordingSleep()
        action = AsyncMock(side_effect=KeyError("bad payload"))

        with pytest.raises(NonRetryableError) as exc_info:
            await RetryPolicy().run(action, target="t", sleep=sleep)

        assert isinstance(exc_info.value.last_error, KeyError)
        assert action.await_count == 1
        assert sleep.delays == []


class TestResiliencePipeline:
    """Test the timeout + retry + breaker composition."""

    @pytest.fixture
    def breaker(self):
        return CircuitBreaker("https://svc.example")

    @pytest.fixture
    def pipeline(self, breaker):
        return ResiliencePipeline(
            "https://svc.example",
            breaker=breaker,
            retry_policy=RetryPolicy(jitter=False),
            invocation_timeout=None,
            sleep=RecordingSleep(),
        )

    @pytest.mark.asyncio
    async def test_success_recorded_once_per_logical_call(self, pipeline, breaker):
        action = AsyncMock(side_effect=[ConnectionError(), ConnectionError(), {"ok": True}])

        result = await pipeline.execute(action)

        assert result == {"ok": True}
        stats = breaker.get_stats()
        assert stats["window_successes"] == 1
        assert stats["window_failures"] == 0

    @pytest.mark.asyncio
    async def test_breaker_opens_and_rejects_without_invoking(self, pipeline, breaker):
        failing = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(5):
            with pytest.raises(RetriesExhaustedError):
                await pipeline.execute(failing)

        assert breaker.state == CircuitBreakerState.OPEN

        untouched = AsyncMock(return_value="never")
        with pytest.raises(CircuitOpenError) as exc_info:
            await pipeline.execute(untouched)

        untouched.assert_not_awaited()
        assert exc_info.value.target == "https://svc.example"
        assert exc_info.value.cooldown_remaining > 0

    @pytest.mark.asyncio
    async def test_non_retryable_counts_as_breaker_failure(self, pipeline, breaker):
        action = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(NonRetryableError):
            await pipeline.execute(action)

        assert action.await_count == 1
        assert breaker.get_stats()["window_failures"] == 1

    @pytest.mark.asyncio
    async def test_invocation_timeout_covers_whole_call(self, breaker):
        pipeline = ResiliencePipeline(
            "https://slow.example",
            breaker=breaker,
            retry_policy=RetryPolicy(jitter=False),
            invocation_timeout=0.05,
        )

        async def hang():
            await asyncio.sleep(5)

        with pytest.raises(CircuitBreakerTimeoutError) as exc_info:
            await pipeline.execute(hang)

        assert exc_info.value.timeout_seconds == 0.05
        assert exc_info.value.get_http_status_code() == 503
        assert breaker.get_stats()["window_failures"] == 1

    @pytest.mark.asyncio
    async def test_direct_pipeline_has_no_breaker(self):
        pipeline = ResiliencePipeline(None, breaker=None, retry_policy=RetryPolicy(jitter=False),
                                      sleep=RecordingSleep())
        action = AsyncMock(side_effect=[ConnectionError(), "ok"])

        assert await pipeline.execute(action) == "ok"
        assert pipeline.state is None


class TestErrorTaxonomy:
    """Test error serialization and status mapping."""

    def test_circuit_open_error(self):
        error = CircuitOpenError("https://svc.example", cooldown_remaining=12.4, failure_rate=0.8)

        assert error.get_http_status_code() == 503
        assert error.get_retry_after_header() == "12"
        assert error.to_dict()["error"] == "circuit_open"

    def test_retry_after_is_at_least_one_second(self):
        assert CircuitOpenError("t", cooldown_remaining=0.1).get_retry_after_header() == "1"

    def test_exhausted_and_non_retryable_map_to_502(self):
        assert RetriesExhaustedError("t", ConnectionError(), 3).get_http_status_code() == 502
        assert NonRetryableError("t", ValueError()).get_http_status_code() == 502

    def test_configuration_error_is_not_a_remote_failure(self):
        error = CircuitBreakerConfigurationError("bad", config_field="factor", provided_value=0.5)

        assert isinstance(error, ValueError)
        assert not isinstance(error, CircuitBreakerError)
        assert error.to_dict()["config_field"] == "factor"
