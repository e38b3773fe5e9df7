"""Webhook endpoint registered by a tenant."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, SecretStr, field_validator

from .base import generate_id, generate_secret, mask_secret, utc_now
from .event import EVENT_TYPES, WILDCARD_EVENT


class Endpoint(BaseModel):
    """Configuration for a registered webhook endpoint.

    The secret is immutable once created; rotating it is a dedicated
    storage operation. It is held as a ``SecretStr`` so it never shows
    up in reprs or logs.

    Attributes:
        id: Unique identifier for this endpoint.
        organization_id: Tenant that owns this endpoint.
        url: HTTP(S) URL receiving event notifications.
        description: Optional human-readable description.
        secret: Shared secret for HMAC-SHA256 signatures.
        events: Event types this endpoint subscribes to ("*" for all).
        enabled: Whether new events are routed to this endpoint.
        created_at: When the endpoint was registered.
        updated_at: When the endpoint was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    organization_id: str = Field(min_length=1, description="Owning organization")
    url: HttpUrl = Field(description="Endpoint receiving events")
    description: str | None = Field(default=None, max_length=500)
    secret: SecretStr = Field(
        default_factory=lambda: SecretStr(generate_secret()),
        description="Shared secret for HMAC-SHA256 signatures",
    )
    events: list[str] = Field(min_length=1, description="Subscribed event types")
    enabled: bool = Field(default=True, description="Whether endpoint is active")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("events")
    @classmethod
    def _validate_events(cls, events: list[str]) -> list[str]:
        invalid = [e for e in events if e != WILDCARD_EVENT and e not in EVENT_TYPES]
        if invalid:
            raise ValueError(f"Invalid event types: {', '.join(invalid)}")
        # Preserve order, drop duplicates
        return list(dict.fromkeys(events))

    @field_validator("secret")
    @classmethod
    def _validate_secret(cls, secret: SecretStr) -> SecretStr:
        if len(secret.get_secret_value()) < 16:
            raise ValueError("secret must be at least 16 characters")
        return secret

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this endpoint should receive the given event type."""
        if not self.enabled:
            return False
        return WILDCARD_EVENT in self.events or event_type in self.events

    @property
    def masked_secret(self) -> str:
        """Secret suitable for display (``whsec_ab...wxyz``)."""
        return mask_secret(self.secret.get_secret_value())


__all__ = ["Endpoint"]
