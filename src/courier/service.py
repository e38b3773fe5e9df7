"""Core Courier service layer.

This module provides the CourierService that wires the endpoint registry,
the delivery ledger, event emission and dispatch into one object.

Example:
    ```python
    from courier.service import CourierService

    async with CourierService.create() as courier:
        endpoint = await courier.register_endpoint(
            organization_id="org_123",
            url="https://example.com/hooks",
            events=["menu.published"],
        )

        # After a mutation
        courier.emitter.menu_published("org_123", {"id": "menu_1"})
    ```
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from courier.config import Settings
from courier.exceptions import NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import Delivery, Endpoint
from courier.storage import CourierStorage, EndpointStats
from courier.webhooks import DispatcherPool, EventEmitter, SubscriptionResolver, WebhookDispatcher

logger = get_logger(__name__)


@dataclass
class DeliveryPage:
    """One page of an endpoint's delivery history."""

    deliveries: list[Delivery]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class CourierService:
    """High-level Courier service for webhook endpoints and deliveries.

    This service provides:
    - Endpoint registry management scoped to an organization
    - Event emission via ``emitter``
    - Background dispatch via ``pool``
    - Redelivery and test pings

    Attributes:
        storage: Endpoint registry and delivery ledger.
        emitter: Event emitter used by mutation handlers.
        dispatcher: Claims, signs and sends deliveries.
        pool: Worker loops driving the dispatcher.
        settings: Configuration settings.
    """

    storage: CourierStorage
    emitter: EventEmitter
    dispatcher: WebhookDispatcher
    pool: DispatcherPool
    settings: Settings

    @classmethod
    def create(cls, settings: Settings | None = None) -> CourierService:
        """Create a CourierService with default dependencies.

        Args:
            settings: Optional settings. Uses environment if None.

        Returns:
            Configured CourierService instance.
        """
        if settings is None:
            settings = Settings()

        storage = CourierStorage(database_url=settings.database_url, echo=settings.database_echo)
        resolver = SubscriptionResolver(storage)
        dispatcher = WebhookDispatcher(
            storage,
            settings=settings,
            max_concurrent=settings.dispatcher_max_concurrent,
        )
        return cls(
            storage=storage,
            emitter=EventEmitter(
                storage,
                resolver=resolver,
                max_attempts=settings.delivery_max_attempts,
            ),
            dispatcher=dispatcher,
            pool=DispatcherPool(
                dispatcher,
                workers=settings.dispatcher_workers,
                poll_interval=settings.dispatcher_poll_interval_seconds,
            ),
            settings=settings,
        )

    async def initialize(self) -> None:
        """Initialize the service (database engine and tables)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Stop workers, flush pending emissions and release resources."""
        await self.pool.stop()
        await self.emitter.drain()
        await self.dispatcher.aclose()
        await self.storage.close()

    async def __aenter__(self) -> CourierService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # Endpoint registry

    async def register_endpoint(
        self,
        organization_id: str,
        url: str,
        events: list[str],
        description: str | None = None,
        enabled: bool = True,
        secret: str | None = None,
    ) -> Endpoint:
        """Register a new endpoint for an organization.

        Raises:
            ValidationError: If the URL, events or secret are invalid.
        """
        values: dict[str, Any] = {
            "organization_id": organization_id,
            "url": url,
            "events": events,
            "description": description,
            "enabled": enabled,
        }
        if secret is not None:
            values["secret"] = secret

        try:
            endpoint = Endpoint.model_validate(values)
        except ValueError as e:
            raise ValidationError("endpoint", str(e)) from e

        await self.storage.create_endpoint(endpoint)
        logger.info(
            "Webhook endpoint registered",
            endpoint_id=endpoint.id,
            organization_id=organization_id,
            events=endpoint.events,
        )
        return endpoint

    async def get_endpoint(self, organization_id: str, endpoint_id: str) -> Endpoint:
        """Get an organization's endpoint.

        Raises:
            NotFoundError: If the endpoint doesn't exist in this organization.
        """
        endpoint = await self.storage.get_endpoint(endpoint_id, organization_id)
        if endpoint is None:
            raise NotFoundError("Endpoint", endpoint_id)
        return endpoint

    async def list_endpoints(self, organization_id: str) -> list[tuple[Endpoint, EndpointStats]]:
        """List an organization's endpoints with their delivery counts."""
        endpoints = await self.storage.list_endpoints(organization_id, limit=None)
        return [(ep, await self.storage.get_endpoint_stats(ep.id)) for ep in endpoints]

    async def update_endpoint(
        self,
        organization_id: str,
        endpoint_id: str,
        **changes: Any,
    ) -> Endpoint:
        """Update an endpoint's url, description, events or enabled flag."""
        endpoint = await self.storage.update_endpoint(endpoint_id, organization_id, **changes)
        if endpoint is None:
            raise NotFoundError("Endpoint", endpoint_id)
        logger.info("Webhook endpoint updated", endpoint_id=endpoint_id, fields=sorted(changes))
        return endpoint

    async def rotate_secret(self, organization_id: str, endpoint_id: str) -> Endpoint:
        """Generate a new signing secret for an endpoint."""
        endpoint = await self.storage.rotate_endpoint_secret(endpoint_id, organization_id)
        if endpoint is None:
            raise NotFoundError("Endpoint", endpoint_id)
        logger.info("Webhook secret rotated", endpoint_id=endpoint_id)
        return endpoint

    async def delete_endpoint(self, organization_id: str, endpoint_id: str) -> None:
        """Delete an endpoint together with its delivery history."""
        deleted = await self.storage.delete_endpoint(endpoint_id, organization_id)
        if not deleted:
            raise NotFoundError("Endpoint", endpoint_id)
        logger.info("Webhook endpoint deleted", endpoint_id=endpoint_id)

    # Deliveries

    async def list_deliveries(
        self,
        organization_id: str,
        endpoint_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> DeliveryPage:
        """Page through an endpoint's deliveries, newest first."""
        if page < 1:
            raise ValidationError("page", "must be >= 1")
        if limit < 1:
            raise ValidationError("limit", "must be >= 1")

        await self.get_endpoint(organization_id, endpoint_id)
        deliveries = await self.storage.list_deliveries(
            endpoint_id, limit=limit, offset=(page - 1) * limit
        )
        total = await self.storage.count_deliveries(endpoint_id)
        return DeliveryPage(deliveries=deliveries, page=page, limit=limit, total=total)

    async def redeliver(
        self,
        organization_id: str,
        endpoint_id: str,
        delivery_id: str,
    ) -> Delivery:
        """Queue a finished delivery again as a new PENDING delivery.

        Raises:
            NotFoundError: If the endpoint or delivery doesn't exist.
            ValidationError: If the delivery has not finished yet.
        """
        await self.get_endpoint(organization_id, endpoint_id)
        delivery = await self.storage.get_delivery(delivery_id, endpoint_id=endpoint_id)
        if delivery is None:
            raise NotFoundError("Delivery", delivery_id)
        if not delivery.is_terminal:
            raise ValidationError("delivery_id", f"delivery is still {delivery.status.value}")
        return await self.emitter.redeliver(delivery)

    async def send_test_ping(self, organization_id: str, endpoint_id: str) -> Delivery:
        """Send a ``test.ping`` to an endpoint and wait for the single attempt.

        Returns:
            The delivery in its final state.
        """
        endpoint = await self.get_endpoint(organization_id, endpoint_id)
        delivery = await self.emitter.ping(endpoint)
        dispatched = await self.dispatcher.deliver_now(delivery.id)
        if dispatched is not None:
            return dispatched

        # Picked up by a pool worker in the meantime
        current = await self.storage.get_delivery(delivery.id)
        return current or delivery

    async def health_check(self) -> bool:
        return await self.storage.health_check()


__all__ = ["CourierService", "DeliveryPage"]
