"""Test configuration and settings."""

import pytest
from pydantic import ValidationError

from trailguard.circuit_breaker import CircuitBreakerConfig, RetryPolicy
from trailguard.core.config import Settings
from trailguard.core.policy import FailurePolicy
from trailguard.core.service_registry import ServiceRegistry, UnknownServiceError


class TestSettings:
    """Test configuration settings."""

    def test_default_settings(self):
        """Test that default settings are loaded correctly."""
        settings = Settings()

        assert settings.HOST == "127.0.0.1"
        assert settings.PORT == 8000
        assert settings.DEBUG is False
        assert settings.LOG_LEVEL == "INFO"
        assert settings.LOG_FORMAT == "json"
        assert settings.ENVIRONMENT == "development"
        assert settings.is_production is False

    def test_settings_from_env(self, monkeypatch):
        """Test that settings can be loaded from environment variables."""
        monkeypatch.setenv("HOST", "0.0.0.0")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("ENVIRONMENT", "production")

        settings = Settings()

        assert settings.HOST == "0.0.0.0"
        assert settings.PORT == 9000
        assert settings.DEBUG is True
        assert settings.is_production is True

    def test_log_level_is_normalized(self):
        """Test that log level is validated and upper-cased."""
        assert Settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="verbose")

    def test_log_format_validation(self):
        """Test that only json and text log formats are accepted."""
        assert Settings(LOG_FORMAT="TEXT").LOG_FORMAT == "text"

        with pytest.raises(ValidationError):
            Settings(LOG_FORMAT="xml")

    def test_failure_policy_values_are_restricted(self):
        """Test that policy fields only accept open or closed."""
        with pytest.raises(ValidationError):
            Settings(RATE_LIMIT_FAILURE_POLICY="maybe")


class TestRedisUrl:
    """Test Redis URL composition."""

    def test_composed_from_host_and_port(self):
        settings = Settings(REDIS_HOST="cache", REDIS_PORT=6380)
        assert settings.redis_url == "redis://cache:6380"

    def test_includes_password(self):
        settings = Settings(REDIS_HOST="cache", REDIS_PASSWORD="s3cret")
        assert settings.redis_url == "redis://:s3cret@cache:6379"

    def test_explicit_url_wins(self):
        settings = Settings(REDIS_URL="redis://other:1234/2", REDIS_HOST="cache")
        assert settings.redis_url == "redis://other:1234/2"


class TestBuilders:
    """Test breaker and retry builders derived from settings."""

    def test_http_breaker_config_defaults(self):
        config = Settings().http_breaker_config()

        assert isinstance(config, CircuitBreakerConfig)
        assert config.error_threshold_percentage == 50
        assert config.reset_timeout == 30.0
        assert config.rolling_window_seconds == 10.0
        assert config.rolling_buckets == 10
        assert config.volume_threshold == 5
        assert config.half_open_max_calls == 1

    def test_http_retry_policy_defaults(self):
        policy = Settings().http_retry_policy()

        assert isinstance(policy, RetryPolicy)
        assert policy.max_retries == 2
        assert policy.min_delay == 0.1
        assert policy.factor == 2.0
        assert policy.max_attempts == 3

    def test_cache_retry_policy_retries_redis_errors(self):
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import ResponseError

        policy = Settings(CACHE_MAX_RETRIES=3).cache_retry_policy()

        assert policy.max_retries == 3
        assert policy.is_retryable(RedisConnectionError("down"))
        assert not policy.is_retryable(ResponseError("WRONGTYPE"))


class TestFailurePolicy:
    """Test the shared fail-open / fail-closed policy."""

    def test_parse(self):
        assert FailurePolicy.parse("open") is FailurePolicy.OPEN
        assert FailurePolicy.parse(" CLOSED ") is FailurePolicy.CLOSED
        assert FailurePolicy.parse(FailurePolicy.OPEN) is FailurePolicy.OPEN

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            FailurePolicy.parse("sometimes")

    def test_allows(self):
        assert FailurePolicy.OPEN.allows is True
        assert FailurePolicy.CLOSED.allows is False


class TestServiceRegistry:
    """Test logical service resolution."""

    def test_default_services(self):
        registry = ServiceRegistry(Settings(ENGAGEMENT_SERVICE_URL="http://engagement.local:4002/"))

        assert registry.get_service_url("engagement") == "http://engagement.local:4002"
        assert registry.get_service_url("yelp") == "https://api.yelp.com"

    def test_unknown_service(self):
        with pytest.raises(UnknownServiceError):
            ServiceRegistry(Settings()).get_service_url("nope")

    def test_yaml_file_adds_and_overrides(self, tmp_path):
        path = tmp_path / "services.yaml"
        path.write_text(
            "services:\n"
            "  trails:\n"
            "    base_url: https://trails.example/v1\n"
            "    description: Trail data\n"
            "  yelp:\n"
            "    base_url: http://yelp-mock:9000\n"
        )

        registry = ServiceRegistry(Settings(SERVICE_REGISTRY_FILE=str(path)))

        assert registry.get_service_url("trails") == "https://trails.example/v1"
        assert registry.get_service_url("yelp") == "http://yelp-mock:9000"

    def test_invalid_definition_rejected(self, tmp_path):
        path = tmp_path / "services.yaml"
        path.write_text("services:\n  bad:\n    base_url: ftp://nowhere\n")

        with pytest.raises(ValueError):
            ServiceRegistry(Settings(), config_path=path)

    def test_register(self):
        registry = ServiceRegistry(Settings())
        registry.register("weather", "https://weather.example/")

        assert registry.all()["weather"] == "https://weather.example"
        with pytest.raises(ValidationError):
            registry.register("broken", "not-a-url")
