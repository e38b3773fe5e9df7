"""Subscription resolution: which endpoints receive an event."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from courier.models import Endpoint
    from courier.storage import CourierStorage

logger = logging.getLogger(__name__)


class SubscriptionResolver:
    """Finds the enabled endpoints of an organization subscribed to an event.

    Disabling an endpoint only affects future resolutions; deliveries that
    already exist are governed by the dispatcher's disabled-endpoint policy.
    """

    def __init__(self, storage: CourierStorage) -> None:
        self._storage = storage

    async def resolve(self, organization_id: str, event_type: str) -> list[Endpoint]:
        """Get all enabled endpoints that subscribe to an event type.

        Args:
            organization_id: Organization the event belongs to.
            event_type: The event type to filter for.

        Returns:
            Matching endpoints; empty if nobody is subscribed.
        """
        endpoints = await self._storage.list_endpoints(
            organization_id=organization_id,
            enabled_only=True,
            limit=None,
        )
        matching = [ep for ep in endpoints if ep.subscribes_to(event_type)]

        logger.debug(
            "Resolved %d of %d endpoints for %s in organization %s",
            len(matching),
            len(endpoints),
            event_type,
            organization_id,
        )
        return matching
