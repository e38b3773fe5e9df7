"""Webhook event delivery for Courier.

Provides event emission, HMAC-signed delivery, and exponential backoff
retry over a durable delivery ledger.

Example:
    ```python
    from courier.webhooks import EventEmitter, WebhookDispatcher

    # Record deliveries for every subscribed endpoint
    emitter = EventEmitter(storage)
    emitter.menu_published(org_id, menu)

    # Elsewhere, send what is due
    async with WebhookDispatcher(storage) as dispatcher:
        await dispatcher.sweep()
    ```
"""

from .backoff import backoff_delay, next_retry_at
from .dispatcher import (
    HEADER_ATTEMPT,
    HEADER_DELIVERY_ID,
    HEADER_EVENT,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    Outcome,
    WebhookDispatcher,
    classify_status,
)
from .emitter import EventEmitter
from .pool import DispatcherPool
from .resolver import SubscriptionResolver
from .signing import compute_signature, serialize_payload, verify_signature

__all__ = [
    "HEADER_ATTEMPT",
    "HEADER_DELIVERY_ID",
    "HEADER_EVENT",
    "HEADER_SIGNATURE",
    "HEADER_TIMESTAMP",
    "DispatcherPool",
    "EventEmitter",
    "Outcome",
    "SubscriptionResolver",
    "WebhookDispatcher",
    "backoff_delay",
    "classify_status",
    "compute_signature",
    "next_retry_at",
    "serialize_payload",
    "verify_signature",
]
