"""Rate limiting exceptions."""

from typing import Any, Dict, Optional

from trailguard.core.exceptions import BackendUnavailableError


class RateLimitError(Exception):
    """Base exception for rate limiting errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "rate_limit_error"


class RateLimitExceededError(RateLimitError):
    """Exception raised when an actor is over its quota."""

    def __init__(self, actor: str, retry_after: int, policy: Optional[str] = None):
        super().__init__(
            f"Rate limit exceeded for {actor}, retry after {retry_after}s",
            "rate_limit_exceeded"
        )
        self.actor = actor
        self.retry_after = max(1, int(retry_after))
        self.policy = policy

    def get_retry_after_header(self) -> str:
        return str(self.retry_after)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": "Too many requests, please try again later.",
            "retry_after_seconds": self.retry_after,
        }


class RateLimitConfigurationError(RateLimitError):
    """Exception raised when rate limiting configuration is invalid."""

    def __init__(self, message: str, config_error: Optional[str] = None):
        super().__init__(message, "rate_limit_configuration_error")
        self.config_error = config_error


class RateLimitBackendError(BackendUnavailableError, RateLimitError):
    """Exception raised when the rate limit store cannot be reached."""

    def __init__(self, message: str, original_exception: Optional[BaseException] = None):
        super().__init__(message, backend="rate_limit_store", original_exception=original_exception)
        self.error_code = "rate_limit_backend_error"
