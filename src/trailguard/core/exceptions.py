"""Exceptions shared across the cache and rate limiting backends."""

from typing import Any, Dict, Optional


class BackendUnavailableError(Exception):
    """
    Raised when a shared backing store (cache or rate limit store) cannot be reached.

    Callers resolve this locally according to their failure policy rather than
    letting it reach the end user.
    """

    def __init__(self, message: str, backend: Optional[str] = None,
                 original_exception: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.original_exception = original_exception

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "backend": self.backend,
            "original_error": str(self.original_exception) if self.original_exception else None,
        }
