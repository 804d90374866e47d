"""Observers for circuit breaker state transitions."""

import logging
from typing import Protocol

from .breaker import CircuitBreakerState

logger = logging.getLogger(__name__)


class BreakerListener(Protocol):
    def on_state_change(self, target: str, old_state: CircuitBreakerState,
                        new_state: CircuitBreakerState) -> None:
        ...


class LoggingBreakerListener:
    """Log every transition: opening at WARNING, recovery steps at INFO."""

    def on_state_change(self, target: str, old_state: CircuitBreakerState,
                        new_state: CircuitBreakerState) -> None:
        extra = {
            "target": target,
            "old_state": old_state.value,
            "new_state": new_state.value,
        }
        if new_state == CircuitBreakerState.OPEN:
            logger.warning(f"Circuit breaker opened for {target}", extra=extra)
        elif new_state == CircuitBreakerState.HALF_OPEN:
            logger.info(f"Circuit breaker half-open for {target}, allowing trial call", extra=extra)
        else:
            logger.info(f"Circuit breaker closed for {target}", extra=extra)
