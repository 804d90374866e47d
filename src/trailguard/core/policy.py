"""Shared fail-open / fail-closed policy."""

from enum import Enum


class FailurePolicy(str, Enum):
    """
    What to do when a dependency needed to make a decision is unavailable.

    OPEN: let the caller proceed (degraded mode)
    CLOSED: refuse the call
    """
    OPEN = "open"
    CLOSED = "closed"

    @classmethod
    def parse(cls, value) -> "FailurePolicy":
        """Accept an enum member or a case-insensitive string."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown failure policy: {value!r} (expected 'open' or 'closed')")

    @property
    def allows(self) -> bool:
        return self is FailurePolicy.OPEN
