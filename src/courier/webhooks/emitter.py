"""Event emission: turning domain mutations into pending deliveries.

Mutation handlers call the emitter and move on. Emission never blocks the
caller and never raises into it: the envelope is snapshotted immediately,
the rest (subscriber resolution and the ledger insert) runs as a detached
task, and any failure is logged and dropped.

Example:
    ```python
    emitter = EventEmitter(storage)

    # Inside a request handler, after the menu was published
    emitter.menu_published(org_id, menu.model_dump())
    ```
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any

from courier.exceptions import ValidationError
from courier.logging import get_logger
from courier.models import PING_EVENT, Delivery, EventEnvelope, is_known_event, utc_now

from .resolver import SubscriptionResolver
from .signing import serialize_payload

if TYPE_CHECKING:
    from courier.models import Endpoint
    from courier.storage import CourierStorage

logger = get_logger(__name__)


class EventEmitter:
    """Creates one PENDING delivery per subscribed endpoint.

    No network I/O happens here; the dispatcher picks the deliveries up
    from the ledger.
    """

    def __init__(
        self,
        storage: CourierStorage,
        resolver: SubscriptionResolver | None = None,
        max_attempts: int = 5,
    ) -> None:
        """Initialize the emitter.

        Args:
            storage: Storage holding endpoints and the delivery ledger.
            resolver: Subscription resolver. Built from storage if None.
            max_attempts: Attempt bound written onto new deliveries.
        """
        self._storage = storage
        self._resolver = resolver or SubscriptionResolver(storage)
        self._max_attempts = max_attempts
        self._tasks: set[asyncio.Task[list[str]]] = set()

    @property
    def pending_tasks(self) -> int:
        """Number of detached emissions still running."""
        return len(self._tasks)

    def emit(self, event_type: str, organization_id: str, data: dict[str, Any]) -> None:
        """Emit an event without waiting for it to be persisted.

        The envelope (including ``occurredAt``) is captured now, so later
        mutation of ``data`` by the caller does not leak into the payload.
        Must be called from within a running event loop.

        Args:
            event_type: Event type name, e.g. "menu.published".
            organization_id: Organization the event belongs to.
            data: Snapshot of the affected resource.
        """
        try:
            payload = self._build_payload(event_type, organization_id, data)
            loop = asyncio.get_running_loop()
        except Exception:
            logger.exception(
                "Failed to emit webhook event",
                event_type=event_type,
                organization_id=organization_id,
            )
            return

        task = loop.create_task(self._persist_safely(event_type, organization_id, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def emit_and_wait(
        self,
        event_type: str,
        organization_id: str,
        data: dict[str, Any],
    ) -> list[str]:
        """Emit an event and wait until its deliveries are persisted.

        Errors are still absorbed: a failed emission returns an empty list.

        Returns:
            IDs of the created deliveries.
        """
        try:
            payload = self._build_payload(event_type, organization_id, data)
        except Exception:
            logger.exception(
                "Failed to emit webhook event",
                event_type=event_type,
                organization_id=organization_id,
            )
            return []
        return await self._persist_safely(event_type, organization_id, payload)

    async def drain(self) -> None:
        """Wait for all detached emissions to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _build_payload(self, event_type: str, organization_id: str, data: dict[str, Any]) -> bytes:
        if not is_known_event(event_type):
            raise ValidationError("event_type", f"unknown event type {event_type!r}")
        envelope = EventEnvelope(
            event=event_type,
            organization_id=organization_id,
            occurred_at=utc_now(),
            data=data,
        )
        return serialize_payload(envelope)

    async def _persist_safely(
        self,
        event_type: str,
        organization_id: str,
        payload: bytes,
    ) -> list[str]:
        try:
            return await self._persist(event_type, organization_id, payload)
        except Exception:
            logger.exception(
                "Failed to persist webhook deliveries",
                event_type=event_type,
                organization_id=organization_id,
            )
            return []

    async def _persist(self, event_type: str, organization_id: str, payload: bytes) -> list[str]:
        endpoints = await self._resolver.resolve(organization_id, event_type)
        if not endpoints:
            logger.debug(
                "No endpoints subscribed",
                event_type=event_type,
                organization_id=organization_id,
            )
            return []

        deliveries = [
            Delivery(
                endpoint_id=endpoint.id,
                event_type=event_type,
                payload=payload,
                max_attempts=self._max_attempts,
            )
            for endpoint in endpoints
        ]
        delivery_ids = await self._storage.insert_deliveries(deliveries)
        logger.info(
            "Webhook deliveries created",
            event_type=event_type,
            organization_id=organization_id,
            count=len(delivery_ids),
        )
        return delivery_ids

    async def redeliver(self, delivery: Delivery) -> Delivery:
        """Queue a fresh delivery with the exact payload of an earlier one.

        The original delivery keeps its terminal state; the copy starts
        over as PENDING with a full attempt budget.

        Args:
            delivery: Delivery to resend.

        Returns:
            The new delivery.
        """
        copy = Delivery(
            endpoint_id=delivery.endpoint_id,
            event_type=delivery.event_type,
            payload=delivery.payload,
            max_attempts=self._max_attempts,
        )
        await self._storage.insert_deliveries([copy])
        logger.info("Webhook redelivery queued", delivery_id=copy.id, original_id=delivery.id)
        return copy

    async def ping(self, endpoint: Endpoint) -> Delivery:
        """Queue a single-attempt ``test.ping`` delivery to one endpoint.

        Subscriptions and the enabled flag are ignored.

        Args:
            endpoint: Endpoint to ping.

        Returns:
            The new delivery.
        """
        payload = self._build_payload(
            PING_EVENT,
            endpoint.organization_id,
            {"message": "Test webhook delivery", "endpointId": endpoint.id},
        )
        delivery = Delivery(
            endpoint_id=endpoint.id,
            event_type=PING_EVENT,
            payload=payload,
            max_attempts=1,
        )
        await self._storage.insert_deliveries([delivery])
        return delivery

    # Convenience emitters, one per catalog entry

    def menu_created(self, organization_id: str, menu: dict[str, Any]) -> None:
        self.emit("menu.created", organization_id, {"menu": menu})

    def menu_updated(self, organization_id: str, menu: dict[str, Any]) -> None:
        self.emit("menu.updated", organization_id, {"menu": menu})

    def menu_published(self, organization_id: str, menu: dict[str, Any]) -> None:
        self.emit("menu.published", organization_id, {"menu": menu})

    def menu_deleted(self, organization_id: str, menu_id: str) -> None:
        self.emit("menu.deleted", organization_id, {"menuId": menu_id})

    def venue_created(self, organization_id: str, venue: dict[str, Any]) -> None:
        self.emit("venue.created", organization_id, {"venue": venue})

    def venue_updated(self, organization_id: str, venue: dict[str, Any]) -> None:
        self.emit("venue.updated", organization_id, {"venue": venue})

    def venue_deleted(self, organization_id: str, venue_id: str) -> None:
        self.emit("venue.deleted", organization_id, {"venueId": venue_id})

    def qr_code_created(self, organization_id: str, qr_code: dict[str, Any]) -> None:
        self.emit("qr_code.created", organization_id, {"qrCode": qr_code})

    def qr_code_scanned(
        self,
        organization_id: str,
        qr_code_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.emit("qr_code.scanned", organization_id, {"qrCodeId": qr_code_id, **(metadata or {})})

    def qr_code_deleted(self, organization_id: str, qr_code_id: str) -> None:
        self.emit("qr_code.deleted", organization_id, {"qrCodeId": qr_code_id})

    def subscription_created(self, organization_id: str, subscription: dict[str, Any]) -> None:
        self.emit("subscription.created", organization_id, {"subscription": subscription})

    def subscription_updated(self, organization_id: str, subscription: dict[str, Any]) -> None:
        self.emit("subscription.updated", organization_id, {"subscription": subscription})

    def subscription_canceled(self, organization_id: str, subscription: dict[str, Any]) -> None:
        self.emit("subscription.canceled", organization_id, {"subscription": subscription})

    def subscription_renewed(self, organization_id: str, subscription: dict[str, Any]) -> None:
        self.emit("subscription.renewed", organization_id, {"subscription": subscription})

    def organization_updated(self, organization_id: str, organization: dict[str, Any]) -> None:
        self.emit("organization.updated", organization_id, {"organization": organization})

    def team_member_added(
        self,
        organization_id: str,
        user_id: str,
        role: str,
        invited_by: str | None = None,
    ) -> None:
        self.emit(
            "team.member_added",
            organization_id,
            {"userId": user_id, "role": role, "invitedBy": invited_by},
        )

    def team_member_removed(
        self,
        organization_id: str,
        user_id: str,
        removed_by: str | None = None,
    ) -> None:
        self.emit(
            "team.member_removed",
            organization_id,
            {"userId": user_id, "removedBy": removed_by},
        )
