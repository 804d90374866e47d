"""
Core Circuit Breaker implementation for trailguard.

The circuit breaker operates as a state machine with three states:
- CLOSED: Normal operation, calls flow through and feed a rolling window
- OPEN: Failure rate too high, calls are rejected without being attempted
- HALF_OPEN: Cool-down expired, a limited number of trial calls are allowed

Outcomes are aggregated over a trailing time window split into buckets, so
old failures age out on their own. The breaker trips when the window holds
enough calls and the failure percentage exceeds the configured threshold.

All state changes happen under a re-entrant lock, so a breaker may be shared
between threads.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple
import logging

from .exceptions import CircuitBreakerConfigurationError

logger = logging.getLogger(__name__)


class CircuitBreakerState(Enum):
    """
    Circuit breaker state enumeration.

    States:
        CLOSED: Normal operation - calls pass through to the remote target
        OPEN: Failing fast - calls are rejected immediately
        HALF_OPEN: Recovery testing - limited trial calls allowed
    """
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerConfig:
    """
    Configuration class for circuit breaker behavior.
    """

    error_threshold_percentage: float = 50.0
    """Failure percentage in the rolling window that must be exceeded to open"""

    volume_threshold: int = 5
    """Minimum calls in the rolling window before the error rate is evaluated"""

    rolling_window_seconds: float = 10.0
    """Length of the trailing statistics window"""

    rolling_buckets: int = 10
    """Number of buckets the window is split into"""

    reset_timeout: float = 30.0
    """Seconds to stay open before allowing trial calls"""

    half_open_max_calls: int = 1
    """Trial calls allowed concurrently while half-open"""

    def __post_init__(self):
        """Validate configuration values after initialization."""
        self._validate_config()

    def _validate_config(self):
        """
        Validate configuration parameters for consistency and sanity.

        Raises:
            CircuitBreakerConfigurationError: If configuration is invalid
        """
        if not 0.0 <= self.error_threshold_percentage <= 100.0:
            raise CircuitBreakerConfigurationError(
                "error_threshold_percentage must be between 0 and 100",
                config_field="error_threshold_percentage",
                provided_value=self.error_threshold_percentage
            )

        if self.volume_threshold < 1:
            raise CircuitBreakerConfigurationError(
                "volume_threshold must be >= 1",
                config_field="volume_threshold",
                provided_value=self.volume_threshold
            )

        if self.rolling_window_seconds <= 0:
            raise CircuitBreakerConfigurationError(
                "rolling_window_seconds must be > 0",
                config_field="rolling_window_seconds",
                provided_value=self.rolling_window_seconds
            )

        if self.rolling_buckets < 1:
            raise CircuitBreakerConfigurationError(
                "rolling_buckets must be >= 1",
                config_field="rolling_buckets",
                provided_value=self.rolling_buckets
            )

        if self.reset_timeout <= 0:
            raise CircuitBreakerConfigurationError(
                "reset_timeout must be > 0",
                config_field="reset_timeout",
                provided_value=self.reset_timeout
            )

        if self.half_open_max_calls < 1:
            raise CircuitBreakerConfigurationError(
                "half_open_max_calls must be >= 1",
                config_field="half_open_max_calls",
                provided_value=self.half_open_max_calls
            )


class RollingWindow:
    """Success/failure counts over a trailing time window, kept in fixed-width buckets."""

    def __init__(self, window_seconds: float, buckets: int, clock: Callable[[], float]):
        self._bucket_seconds = window_seconds / buckets
        self._max_buckets = buckets
        self._clock = clock
        # each entry: [bucket_index, successes, failures]
        self._buckets: Deque[List[int]] = deque()

    def _current_index(self) -> int:
        return int(self._clock() // self._bucket_seconds)

    def _prune(self, current_index: int) -> None:
        oldest_allowed = current_index - self._max_buckets + 1
        while self._buckets and self._buckets[0][0] < oldest_allowed:
            self._buckets.popleft()

    def record(self, success: bool) -> None:
        index = self._current_index()
        self._prune(index)
        if not self._buckets or self._buckets[-1][0] != index:
            self._buckets.append([index, 0, 0])
        if success:
            self._buckets[-1][1] += 1
        else:
            self._buckets[-1][2] += 1

    def counts(self) -> Tuple[int, int]:
        """Return (successes, failures) inside the window."""
        self._prune(self._current_index())
        successes = sum(bucket[1] for bucket in self._buckets)
        failures = sum(bucket[2] for bucket in self._buckets)
        return successes, failures

    def clear(self) -> None:
        self._buckets.clear()


class CircuitBreaker:
    """
    Circuit breaker protecting a single remote target.

    Usage:
        breaker = CircuitBreaker("https://api.example.com", CircuitBreakerConfig())

        if not breaker.allow_call():
            raise CircuitOpenError(breaker.target, breaker.cooldown_remaining)
        try:
            result = await call()
        except Exception as e:
            breaker.record_failure(e)
            raise
        breaker.record_success()
    """

    def __init__(self,
                 target: str,
                 config: Optional[CircuitBreakerConfig] = None,
                 listeners: Optional[Iterable[Any]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize circuit breaker.

        Args:
            target: Identity of the remote target this breaker protects
            config: Configuration object, uses defaults if not provided
            listeners: Observers with an on_state_change(target, old, new) method
            clock: Monotonic time source, injectable for tests
        """
        self.target = target
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._listeners: List[Any] = list(listeners or [])
        self._lock = threading.RLock()

        self._state = CircuitBreakerState.CLOSED
        self._window = RollingWindow(
            self.config.rolling_window_seconds, self.config.rolling_buckets, clock
        )
        self._opened_at: Optional[float] = None
        self._half_open_in_flight = 0

        self.total_calls = 0
        self.total_failures = 0
        self.total_successes = 0
        self.total_rejections = 0
        self.total_trips = 0
        self.last_state_change_time = clock()

    def add_listener(self, listener: Any) -> None:
        """Register an observer for state transitions."""
        with self._lock:
            self._listeners.append(listener)

    def update_config(self, config: CircuitBreakerConfig) -> None:
        """
        Replace the configuration, keeping the current state.

        The rolling window is rebuilt for the new length and bucket count and
        starts empty.
        """
        with self._lock:
            self.config = config
            self._window = RollingWindow(
                config.rolling_window_seconds, config.rolling_buckets, self._clock
            )

    @property
    def state(self) -> CircuitBreakerState:
        """Current state, moving OPEN to HALF_OPEN if the cool-down has expired."""
        with self._lock:
            self._refresh_state()
            return self._state

    @property
    def opened_at(self) -> Optional[float]:
        """Clock reading of the last transition to OPEN."""
        return self._opened_at

    @property
    def cooldown_remaining(self) -> float:
        with self._lock:
            if self._state != CircuitBreakerState.OPEN or self._opened_at is None:
                return 0.0
            return max(0.0, self._opened_at + self.config.reset_timeout - self._clock())

    def _refresh_state(self) -> None:
        if (self._state == CircuitBreakerState.OPEN
                and self._opened_at is not None
                and self._clock() >= self._opened_at + self.config.reset_timeout):
            self._transition(CircuitBreakerState.HALF_OPEN)

    def allow_call(self) -> bool:
        """
        Determine if a call should be allowed through the circuit breaker.

        Returns:
            True if the call may proceed, False if it must be rejected
        """
        with self._lock:
            self._refresh_state()

            if self._state == CircuitBreakerState.OPEN:
                self.total_rejections += 1
                return False

            if self._state == CircuitBreakerState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.half_open_max_calls:
                    self.total_rejections += 1
                    logger.debug(
                        "Circuit breaker rejecting call - half-open trial in progress",
                        extra={"target": self.target, "in_flight": self._half_open_in_flight}
                    )
                    return False
                self._half_open_in_flight += 1

            return True

    def record_success(self) -> None:
        """Record a successful call outcome."""
        with self._lock:
            self.total_calls += 1
            self.total_successes += 1

            if self._state == CircuitBreakerState.HALF_OPEN:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)
                self._transition(CircuitBreakerState.CLOSED)
            elif self._state == CircuitBreakerState.CLOSED:
                self._window.record(True)

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        """
        Record a failed call outcome and trip the breaker if thresholds are exceeded.

        Args:
            error: The exception that ended the call, used for logging only
        """
        with self._lock:
            self.total_calls += 1
            self.total_failures += 1

            if self._state == CircuitBreakerState.HALF_OPEN:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)
                self._transition(CircuitBreakerState.OPEN)
                return

            if self._state == CircuitBreakerState.CLOSED:
                self._window.record(False)
                if self._should_trip():
                    self._transition(CircuitBreakerState.OPEN)

            logger.debug(
                "Circuit breaker recorded failure",
                extra={
                    "target": self.target,
                    "error_type": type(error).__name__ if error else None,
                    "state": self._state.value,
                }
            )

    def release(self) -> None:
        """Give back a half-open trial slot for a call that ended without an outcome."""
        with self._lock:
            if self._state == CircuitBreakerState.HALF_OPEN:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)

    def _should_trip(self) -> bool:
        successes, failures = self._window.counts()
        total = successes + failures
        if total < self.config.volume_threshold:
            return False
        return (failures / total) * 100.0 > self.config.error_threshold_percentage

    def _failure_rate(self) -> float:
        successes, failures = self._window.counts()
        total = successes + failures
        return failures / total if total else 0.0

    def _transition(self, new_state: CircuitBreakerState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self.last_state_change_time = self._clock()

        if new_state == CircuitBreakerState.OPEN:
            self._opened_at = self._clock()
            self._half_open_in_flight = 0
            self.total_trips += 1
        elif new_state == CircuitBreakerState.HALF_OPEN:
            self._half_open_in_flight = 0
        elif new_state == CircuitBreakerState.CLOSED:
            self._window.clear()
            self._half_open_in_flight = 0
            self._opened_at = None

        self._notify(old_state, new_state)

    def _notify(self, old_state: CircuitBreakerState, new_state: CircuitBreakerState) -> None:
        for listener in self._listeners:
            try:
                listener.on_state_change(self.target, old_state, new_state)
            except Exception:
                logger.exception(
                    "Circuit breaker listener failed",
                    extra={"target": self.target, "listener": type(listener).__name__}
                )

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about circuit breaker performance.

        Returns:
            Dictionary containing current state and rolling metrics
        """
        with self._lock:
            self._refresh_state()
            successes, failures = self._window.counts()
            return {
                "target": self.target,
                "state": self._state.value,
                "window_successes": successes,
                "window_failures": failures,
                "failure_rate": self._failure_rate(),
                "total_calls": self.total_calls,
                "total_successes": self.total_successes,
                "total_failures": self.total_failures,
                "total_rejections": self.total_rejections,
                "total_trips": self.total_trips,
                "cooldown_remaining_seconds": self.cooldown_remaining,
                "config": {
                    "error_threshold_percentage": self.config.error_threshold_percentage,
                    "volume_threshold": self.config.volume_threshold,
                    "reset_timeout": self.config.reset_timeout,
                },
            }

    def force_open(self) -> None:
        """Open the breaker immediately, e.g. during a known outage."""
        with self._lock:
            self._transition(CircuitBreakerState.OPEN)
            logger.warning("Circuit breaker forced open", extra={"target": self.target})

    def reset(self) -> None:
        """
        Manually reset circuit breaker to closed state.

        This is useful for administrative purposes or when you know
        the remote target has been fixed.
        """
        with self._lock:
            self._transition(CircuitBreakerState.CLOSED)
            self._window.clear()
            logger.info(
                "Circuit breaker manually reset to closed state",
                extra={"target": self.target}
            )
