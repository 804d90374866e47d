"""Configuration management for trailguard."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings covering the outbound client, cache and rate limiting."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server configuration
    HOST: str = Field(default="127.0.0.1", description="Server host")
    PORT: int = Field(default=8000, description="Server port")
    DEBUG: bool = Field(default=False, description="Debug mode")
    ENVIRONMENT: str = Field(default="development", description="Deployment environment name")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Outbound HTTP client
    HTTP_CLIENT_TIMEOUT: float = Field(default=10.0, gt=0, description="Per-request timeout in seconds")
    HTTP_CLIENT_MAX_RETRIES: int = Field(default=2, ge=0, le=10, description="Retries after the first attempt")
    HTTP_CLIENT_RETRY_MIN_DELAY: float = Field(default=0.1, ge=0, description="First backoff delay in seconds")
    HTTP_CLIENT_RETRY_FACTOR: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")
    HTTP_CLIENT_RETRY_MAX_DELAY: Optional[float] = Field(default=None, description="Backoff delay cap in seconds")

    # Per-target circuit breakers for HTTP
    HTTP_BREAKER_ERROR_THRESHOLD_PCT: float = Field(default=50, ge=0, le=100, description="Failure percentage that opens the breaker")
    HTTP_BREAKER_TIMEOUT: Optional[float] = Field(default=5.0, description="Invocation timeout in seconds, None disables it")
    HTTP_BREAKER_RESET_TIMEOUT: float = Field(default=30.0, gt=0, description="Cool-down before half-open in seconds")
    HTTP_BREAKER_ROLLING_WINDOW: float = Field(default=10.0, gt=0, description="Rolling statistics window in seconds")
    HTTP_BREAKER_ROLLING_BUCKETS: int = Field(default=10, ge=1, description="Buckets in the rolling window")
    HTTP_BREAKER_VOLUME_THRESHOLD: int = Field(default=5, ge=1, description="Minimum calls before the error rate is evaluated")
    HTTP_BREAKER_HALF_OPEN_MAX_CALLS: int = Field(default=1, ge=1, description="Concurrent trial calls while half-open")
    UNRESOLVED_TARGET_POLICY: str = Field(default="open", pattern="^(open|closed)$", description="Handling of URLs without an origin")

    # Service registry
    SERVICE_REGISTRY_FILE: Optional[str] = Field(
        default=None,
        description="Optional YAML file with additional logical services"
    )
    ENGAGEMENT_SERVICE_URL: str = Field(default="http://engagement:4002", description="Engagement service base URL")
    PYTHON_AGENT_URL: str = Field(default="http://cyrex:8000", description="Agent service base URL")

    # Redis / cache
    REDIS_URL: Optional[str] = Field(default=None, description="Full Redis URL, overrides host/port/password")
    REDIS_HOST: str = Field(default="localhost", description="Redis host")
    REDIS_PORT: int = Field(default=6379, description="Redis port")
    REDIS_PASSWORD: Optional[str] = Field(default=None, description="Redis password")
    CACHE_DEFAULT_TTL: int = Field(default=3600, ge=1, description="Default cache entry TTL in seconds")
    CACHE_MAX_RETRIES: int = Field(default=1, ge=0, le=5, description="Retries for a cache operation")
    CACHE_BREAKER_TIMEOUT: Optional[float] = Field(default=2.0, description="Cache invocation timeout in seconds")
    CACHE_BREAKER_RESET_TIMEOUT: float = Field(default=30.0, gt=0, description="Cache breaker cool-down in seconds")
    CACHE_RECONNECT_MAX_ATTEMPTS: int = Field(default=10, ge=0, description="Backoff reconnect attempts before polling at the max delay, 0 disables reconnects")
    CACHE_RECONNECT_BASE_DELAY: float = Field(default=0.1, gt=0, description="Reconnect backoff base in seconds")
    CACHE_RECONNECT_MAX_DELAY: float = Field(default=5.0, gt=0, description="Reconnect backoff cap in seconds")

    # Rate limiting configuration
    ENABLE_RATE_LIMITING: bool = Field(default=True, description="Enable rate limiting")
    ENABLE_ENDPOINT_RATE_LIMITING: bool = Field(default=True, description="Enable per-endpoint rate limiting")
    RATE_LIMIT_BACKEND: str = Field(default="memory", pattern="^(memory|redis)$", description="Rate limiting backend")
    RATE_LIMIT_REDIS_URL: Optional[str] = Field(default=None, description="Redis URL for rate limiting backend")
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, ge=1, description="Points per window")
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=900, ge=1, description="Window duration in seconds")
    RATE_LIMIT_BURST_POINTS: int = Field(default=10, ge=1, description="Process-local burst points")
    RATE_LIMIT_BURST_SECONDS: int = Field(default=1, ge=1, description="Process-local burst window in seconds")
    RATE_LIMIT_FAILURE_POLICY: str = Field(default="open", pattern="^(open|closed)$", description="Behaviour when the store is down")
    RATE_LIMIT_EXEMPT_PATHS: list[str] = Field(default_factory=lambda: ["/api/auth"], description="Path prefixes that bypass limits")
    RATE_LIMIT_SKIP_NON_PRODUCTION: bool = Field(default=True, description="Bypass limits outside production")
    RATE_LIMIT_BLOCKED_USER_AGENTS: list[str] = Field(
        default_factory=lambda: ["bot", "crawler", "spider"],
        description="User-Agent fragments rejected before quota checks"
    )

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """True when running with ENVIRONMENT=production."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def redis_url(self) -> str:
        """Redis URL, composed from host/port/password unless REDIS_URL is set."""
        if self.REDIS_URL:
            return self.REDIS_URL
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"

    def http_breaker_config(self):
        """Create the breaker configuration used for HTTP targets."""
        from trailguard.circuit_breaker.breaker import CircuitBreakerConfig

        return CircuitBreakerConfig(
            error_threshold_percentage=self.HTTP_BREAKER_ERROR_THRESHOLD_PCT,
            reset_timeout=self.HTTP_BREAKER_RESET_TIMEOUT,
            rolling_window_seconds=self.HTTP_BREAKER_ROLLING_WINDOW,
            rolling_buckets=self.HTTP_BREAKER_ROLLING_BUCKETS,
            volume_threshold=self.HTTP_BREAKER_VOLUME_THRESHOLD,
            half_open_max_calls=self.HTTP_BREAKER_HALF_OPEN_MAX_CALLS,
        )

    def http_retry_policy(self):
        """Create the retry policy used for HTTP targets."""
        from trailguard.circuit_breaker.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self.HTTP_CLIENT_MAX_RETRIES,
            min_delay=self.HTTP_CLIENT_RETRY_MIN_DELAY,
            factor=self.HTTP_CLIENT_RETRY_FACTOR,
            max_delay=self.HTTP_CLIENT_RETRY_MAX_DELAY,
        )

    def cache_breaker_config(self):
        """Create the breaker configuration used for the cache backend."""
        from trailguard.circuit_breaker.breaker import CircuitBreakerConfig

        return CircuitBreakerConfig(
            error_threshold_percentage=self.HTTP_BREAKER_ERROR_THRESHOLD_PCT,
            reset_timeout=self.CACHE_BREAKER_RESET_TIMEOUT,
            rolling_window_seconds=self.HTTP_BREAKER_ROLLING_WINDOW,
            rolling_buckets=self.HTTP_BREAKER_ROLLING_BUCKETS,
            volume_threshold=self.HTTP_BREAKER_VOLUME_THRESHOLD,
        )

    def cache_retry_policy(self):
        """Create the retry policy used for cache operations."""
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import TimeoutError as RedisTimeoutError

        from trailguard.circuit_breaker.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self.CACHE_MAX_RETRIES,
            min_delay=0.05,
            factor=2.0,
            retry_on=(RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError),
        )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
