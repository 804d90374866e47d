"""trailguard: resilience layer for outbound calls, caching and rate limiting."""

__version__ = "1.0.0"
