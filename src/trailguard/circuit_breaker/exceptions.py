"""
Circuit breaker exceptions for trailguard.

This module defines the errors surfaced by a breaker-wrapped remote call so
callers can tell apart "not attempted", "attempted and exhausted" and
"attempted and rejected as non-retryable".
"""

from typing import Optional, Dict, Any


class CircuitBreakerError(Exception):
    """
    Base exception class for circuit breaker related errors.

    Attributes:
        target: Identity of the remote dependency (URL origin, service name or "redis")
        context: Additional context information for debugging
    """

    http_status_code = 502

    def __init__(self, message: str, target: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.target = target
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for API responses and logging.

        Returns:
            Dictionary representation of the error
        """
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "target": self.target,
            "context": self.context
        }

    def get_http_status_code(self) -> int:
        """HTTP status a collaborator should answer with for this error."""
        return self.http_status_code


class CircuitOpenError(CircuitBreakerError):
    """
    Raised when the breaker for a target is open and the call was not attempted.

    Attributes:
        cooldown_remaining: Seconds until the breaker may move to half-open
        failure_rate: Failure rate (0.0-1.0) in the rolling window when rejected
    """

    http_status_code = 503

    def __init__(self,
                 target: str,
                 cooldown_remaining: float = 0,
                 failure_rate: float = 0,
                 message: Optional[str] = None):
        super().__init__(message or f"Circuit open for target {target}", target)
        self.cooldown_remaining = cooldown_remaining
        self.failure_rate = failure_rate

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "error": "circuit_open",
            "cooldown_remaining_seconds": self.cooldown_remaining,
            "failure_rate": self.failure_rate,
            "retry_after_ms": int(self.cooldown_remaining * 1000),
        })
        return base_dict

    def get_retry_after_header(self) -> str:
        """
        Get value for HTTP Retry-After header.

        Returns:
            Whole seconds to wait before retry, at least 1
        """
        return str(max(1, int(round(self.cooldown_remaining))))


class RetriesExhaustedError(CircuitBreakerError):
    """
    Raised when every attempt of a call failed with a retryable error.

    Attributes:
        last_error: The error raised by the final attempt
        attempts: Total number of attempts made
    """

    def __init__(self, target: Optional[str], last_error: BaseException, attempts: int):
        super().__init__(
            f"Retries exhausted for target {target or '<direct>'} after {attempts} attempts: {last_error}",
            target
        )
        self.last_error = last_error
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "error": "retries_exhausted",
            "attempts": self.attempts,
            "last_error": str(self.last_error),
            "last_error_type": type(self.last_error).__name__,
        })
        return base_dict


class NonRetryableError(CircuitBreakerError):
    """
    Raised immediately when an attempt fails with an error that is not worth retrying.

    Client-error responses are not raised at all: they come back as normal
    results. This covers everything else the action may raise.
    """

    def __init__(self, target: Optional[str], last_error: BaseException):
        super().__init__(
            f"Non-retryable error for target {target or '<direct>'}: {last_error}",
            target
        )
        self.last_error = last_error

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "error": "non_retryable",
            "last_error": str(self.last_error),
            "last_error_type": type(self.last_error).__name__,
        })
        return base_dict


class CircuitBreakerTimeoutError(CircuitBreakerError):
    """
    Raised when a call exceeds the breaker's invocation timeout.

    This is different from CircuitOpenError - the call was attempted, took too
    long, and counts as a failure for the breaker.
    """

    http_status_code = 503

    def __init__(self, target: Optional[str], timeout_seconds: float):
        super().__init__(
            f"Call to target {target} timed out after {timeout_seconds}s",
            target
        )
        self.timeout_seconds = timeout_seconds

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "error": "circuit_breaker_timeout",
            "timeout_seconds": self.timeout_seconds
        })
        return base_dict


class CircuitBreakerConfigurationError(ValueError):
    """
    Raised when circuit breaker or retry configuration is invalid.

    Not a CircuitBreakerError: it never describes a remote failure.
    """

    def __init__(self, message: str, config_field: Optional[str] = None,
                 provided_value: Optional[Any] = None):
        super().__init__(message)
        self.config_field = config_field
        self.provided_value = provided_value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with configuration details."""
        return {
            "error_type": self.__class__.__name__,
            "error": "circuit_breaker_configuration_error",
            "message": str(self),
            "config_field": self.config_field,
            "provided_value": self.provided_value
        }


class UpstreamServerError(Exception):
    """
    Marker raised for a server-side failure response so the retry loop retries it.

    Attributes:
        response: The failing response object
        status_code: Its status code
    """

    def __init__(self, response: Any, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.response = response
        self.status_code = status_code
