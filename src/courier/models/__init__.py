"""Data models for Courier webhook delivery."""

from .base import DeliveryStatus, generate_id, generate_secret, mask_secret, utc_now
from .delivery import Delivery
from .endpoint import Endpoint
from .event import (
    EVENT_TYPES,
    PING_EVENT,
    WILDCARD_EVENT,
    EventEnvelope,
    is_known_event,
)

__all__ = [
    "Delivery",
    "DeliveryStatus",
    "EVENT_TYPES",
    "Endpoint",
    "EventEnvelope",
    "PING_EVENT",
    "WILDCARD_EVENT",
    "generate_id",
    "generate_secret",
    "is_known_event",
    "mask_secret",
    "utc_now",
]
