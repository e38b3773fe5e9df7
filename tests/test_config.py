"""Unit tests for Courier configuration."""

import os
import warnings
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from courier.config import RetryPolicy, Settings


class TestRetryPolicy:
    """Tests for RetryPolicy model."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.base_delay_seconds == 60.0
        assert policy.max_delay_seconds == 43200.0
        assert policy.jitter_ratio == 0.1

    def test_max_total_delay_includes_jitter(self):
        policy = RetryPolicy(base_delay_seconds=10, max_delay_seconds=100, jitter_ratio=0.5)
        assert policy.max_total_delay_seconds == 150.0

    def test_base_must_not_exceed_max(self):
        """The cap can never be below the base delay."""
        with pytest.raises(ValidationError):
            RetryPolicy(base_delay_seconds=120, max_delay_seconds=60)

    def test_bounds(self):
        with pytest.raises(ValidationError):
            RetryPolicy(base_delay_seconds=0)
        with pytest.raises(ValidationError):
            RetryPolicy(jitter_ratio=1.5)
        with pytest.raises(ValidationError):
            RetryPolicy(jitter_ratio=-0.1)


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Default settings should be reasonable."""
        # Use _env_file=None to prevent reading from .env file
        settings = Settings(_env_file=None)
        assert settings.database_url.startswith("sqlite+aiosqlite://")
        assert settings.delivery_timeout_seconds == 10.0
        assert settings.delivery_max_attempts == 5
        assert settings.response_body_limit == 1000
        assert settings.disabled_endpoint_policy == "drain"
        assert settings.dispatcher_max_concurrent == 10
        assert settings.log_level == "INFO"
        assert isinstance(settings.retry, RetryPolicy)

    def test_log_formats(self):
        """Only valid log formats should be accepted."""
        assert Settings(_env_file=None, log_format="text").log_format == "text"
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_format="xml")

    def test_disabled_endpoint_policies(self):
        for policy in ["drain", "cancel"]:
            assert Settings(_env_file=None, disabled_endpoint_policy=policy)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, disabled_endpoint_policy="pause")

    def test_max_attempts_bounds(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, delivery_max_attempts=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, delivery_max_attempts=21)

    def test_max_concurrent_from_env(self):
        with patch.dict(os.environ, {"COURIER_DISPATCHER_MAX_CONCURRENT": "25"}):
            assert Settings(_env_file=None).dispatcher_max_concurrent == 25
        with pytest.raises(ValidationError):
            Settings(_env_file=None, dispatcher_max_concurrent=0)

    def test_lease_must_exceed_timeout(self):
        """A lease shorter than the request timeout is rejected."""
        with pytest.raises(ValidationError, match="claim_lease_seconds"):
            Settings(_env_file=None, delivery_timeout_seconds=30, claim_lease_seconds=30)

    def test_env_prefix(self):
        """Settings should use COURIER_ prefix for environment variables."""
        with patch.dict(os.environ, {"COURIER_LOG_LEVEL": "DEBUG"}):
            settings = Settings(_env_file=None)
            assert settings.log_level == "DEBUG"

    def test_env_database_url(self):
        url = "postgresql+asyncpg://courier@db/courier"
        with patch.dict(os.environ, {"COURIER_DATABASE_URL": url}):
            assert Settings(_env_file=None).database_url == url

    def test_env_nested_retry_policy(self):
        """Nested retry settings use the __ delimiter."""
        with patch.dict(os.environ, {"COURIER_RETRY__BASE_DELAY_SECONDS": "30"}):
            settings = Settings(_env_file=None)
            assert settings.retry.base_delay_seconds == 30.0
            assert settings.retry.max_delay_seconds == 43200.0

    def test_production_sqlite_warns(self):
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            Settings(env="production", _env_file=None)
            assert any("SQLite is configured in production" in str(x.message) for x in w)

    def test_production_postgres_does_not_warn(self):
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            Settings(
                env="production",
                database_url="postgresql+asyncpg://courier@db/courier",
                _env_file=None,
            )
            assert not w

    def test_env_defaults_to_development(self):
        """Environment should default to development."""
        settings = Settings(_env_file=None)
        assert settings.env == "development"
