"""Configuration management for Courier."""

import logging
import warnings
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Backoff parameters for transient delivery failures.

    The delay before retry ``n`` (1-indexed) is:
        delay = min(max_delay_seconds, base_delay_seconds * 2 ** (n - 1))
        delay += uniform(0, delay * jitter_ratio)

    With the defaults the schedule is roughly 1m, 2m, 4m, 8m, ... capped
    at 12h, each stretched by up to 10% of random jitter.

    Attributes:
        base_delay_seconds: Delay before the first retry.
        max_delay_seconds: Cap applied before jitter is added.
        jitter_ratio: Upper bound of added jitter as a fraction of the delay.
    """

    base_delay_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Delay before the first retry",
    )
    max_delay_seconds: float = Field(
        default=43200.0,
        gt=0.0,
        description="Maximum delay before jitter is applied",
    )
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Maximum jitter as a fraction of the computed delay",
    )

    @model_validator(mode="after")
    def _validate_bounds(self) -> "RetryPolicy":
        """The cap can never be below the base delay."""
        if self.base_delay_seconds > self.max_delay_seconds:
            raise ValueError(
                f"base_delay_seconds ({self.base_delay_seconds}) must not exceed "
                f"max_delay_seconds ({self.max_delay_seconds})"
            )
        return self

    @property
    def max_total_delay_seconds(self) -> float:
        """Largest delay the policy can ever produce, jitter included."""
        return self.max_delay_seconds * (1.0 + self.jitter_ratio)


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_DATABASE_URL=postgresql+asyncpg://courier@localhost/courier
        COURIER_DISPATCHER_WORKERS=8
        COURIER_RETRY__BASE_DELAY_SECONDS=30
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./courier.db",
        description="SQLAlchemy async database URL for the endpoint registry and delivery ledger",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging only)",
    )

    # Delivery
    delivery_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Timeout for a single outbound webhook request",
    )
    delivery_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum delivery attempts before a delivery is marked failed",
    )
    response_body_limit: int = Field(
        default=1000,
        ge=0,
        le=65536,
        description="Characters of the receiver's response body kept on the delivery",
    )
    error_message_limit: int = Field(
        default=1000,
        ge=64,
        le=65536,
        description="Characters of the error description kept on the delivery",
    )
    user_agent: str = Field(
        default="Courier-Webhooks/1.0",
        description="User-Agent header sent with every webhook request",
    )
    retry: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Backoff policy for transient delivery failures",
    )

    # Dispatcher
    dispatcher_workers: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Concurrent worker loops per dispatcher process",
    )
    dispatcher_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Sleep between sweeps when no due deliveries were found",
    )
    dispatcher_max_concurrent: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum concurrent outbound requests per dispatcher process",
    )
    dispatcher_batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum due deliveries a worker examines per sweep",
    )
    claim_lease_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description=(
            "How long a claimed delivery stays reserved for its worker. "
            "Must exceed delivery_timeout_seconds."
        ),
    )
    disabled_endpoint_policy: Literal["drain", "cancel"] = Field(
        default="drain",
        description=(
            "What happens to pending/retrying deliveries of a disabled endpoint: "
            "'drain' keeps delivering them, 'cancel' marks them failed on the next sweep"
        ),
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )
    cors_allow_credentials: bool = Field(
        default=False,
        description="Allow credentials in CORS requests",
    )
    cors_max_age: int = Field(
        default=600,
        ge=0,
        le=86400,
        description="Max age (seconds) for CORS preflight cache",
    )

    model_config = {
        "env_prefix": "COURIER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_lease(self) -> "Settings":
        """A claim lease shorter than the HTTP timeout would let a second
        worker re-claim a delivery whose request is still in flight."""
        if self.claim_lease_seconds <= self.delivery_timeout_seconds:
            raise ValueError(
                f"claim_lease_seconds ({self.claim_lease_seconds}) must be greater than "
                f"delivery_timeout_seconds ({self.delivery_timeout_seconds})"
            )
        return self

    @model_validator(mode="after")
    def validate_production_database(self) -> "Settings":
        """Warn when production runs on the local SQLite default."""
        if self.env == "production" and self.database_url.startswith("sqlite"):
            warnings.warn(
                "SQLite is configured in production. Multiple dispatcher processes "
                "need a shared database; set COURIER_DATABASE_URL to PostgreSQL.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning("SQLite database configured in production")
        return self


# Global settings instance
settings = Settings()
