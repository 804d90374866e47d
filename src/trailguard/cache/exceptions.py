"""Cache backend errors. These never leave the cache client."""

from trailguard.core.exceptions import BackendUnavailableError


class CacheBackendError(BackendUnavailableError):
    """A cache operation could not be completed against Redis."""

    def __init__(self, operation: str, key: str, original_exception: BaseException):
        super().__init__(
            f"Cache {operation} failed for key {key}: {original_exception}",
            backend="redis",
            original_exception=original_exception,
        )
        self.operation = operation
        self.key = key
