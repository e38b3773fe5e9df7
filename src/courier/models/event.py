"""Event catalog and the envelope sent to webhook endpoints."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .base import utc_now

# Wildcard subscription: an endpoint listing "*" receives every event
WILDCARD_EVENT = "*"

# Sent by the test-ping operation only; endpoints cannot subscribe to it
PING_EVENT = "test.ping"

EVENT_TYPES: dict[str, str] = {
    "menu.created": "Triggered when a new menu is created",
    "menu.updated": "Triggered when a menu is updated",
    "menu.published": "Triggered when a menu is published",
    "menu.deleted": "Triggered when a menu is deleted",
    "venue.created": "Triggered when a new venue is created",
    "venue.updated": "Triggered when a venue is updated",
    "venue.deleted": "Triggered when a venue is deleted",
    "qr_code.created": "Triggered when a QR code is created",
    "qr_code.scanned": "Triggered when a QR code is scanned",
    "qr_code.deleted": "Triggered when a QR code is deleted",
    "subscription.created": "Triggered when a subscription is created",
    "subscription.updated": "Triggered when a subscription is updated",
    "subscription.canceled": "Triggered when a subscription is canceled",
    "subscription.renewed": "Triggered when a subscription is renewed",
    "organization.updated": "Triggered when organization settings are updated",
    "team.member_added": "Triggered when a team member is added",
    "team.member_removed": "Triggered when a team member is removed",
}


def is_known_event(event_type: str) -> bool:
    """Check whether an event type can be emitted."""
    return event_type in EVENT_TYPES or event_type == PING_EVENT


class EventEnvelope(BaseModel):
    """A single domain occurrence, as delivered to receivers.

    Serialized with camelCase keys:
        {"event", "organizationId", "occurredAt", "data"}

    Attributes:
        event: Event type name (e.g. "menu.published").
        organization_id: Tenant the event belongs to.
        occurred_at: When the mutation happened (UTC).
        data: Snapshot of the affected resource.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    event: str = Field(description="Event type")
    organization_id: str = Field(alias="organizationId", description="Owning organization")
    occurred_at: datetime = Field(
        default_factory=utc_now,
        alias="occurredAt",
        description="When the event occurred",
    )
    data: dict[str, Any] = Field(default_factory=dict, description="Resource snapshot")

    @field_serializer("occurred_at")
    def _serialize_occurred_at(self, value: datetime) -> str:
        # Millisecond precision with a Z suffix
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "EVENT_TYPES",
    "EventEnvelope",
    "PING_EVENT",
    "WILDCARD_EVENT",
    "is_known_event",
]
