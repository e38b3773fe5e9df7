"""SQL storage client for Courier.

This module provides the main CourierStorage class that combines
all storage operations through mixins.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage("sqlite+aiosqlite:///./courier.db") as storage:
        endpoint = await storage.create_endpoint(endpoint)
        deliveries = await storage.list_deliveries(endpoint.id)
    ```
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .base import StorageBase
from .delivery import DeliveryMixin
from .endpoint import EndpointMixin

logger = logging.getLogger(__name__)


class CourierStorage(EndpointMixin, DeliveryMixin, StorageBase):
    """Async SQL storage for webhook endpoints and the delivery ledger.

    This class combines functionality from multiple mixins:
    - EndpointMixin: create_endpoint, list_endpoints, update_endpoint,
      rotate_endpoint_secret, delete_endpoint, get_endpoint_stats
    - DeliveryMixin: insert_deliveries, list_deliveries, find_due_deliveries,
      claim_delivery, record_outcome, expire_abandoned,
      cancel_disabled_deliveries

    Attributes:
        engine: SQLAlchemy async engine.
    """

    async def __aenter__(self) -> CourierStorage:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def health_check(self) -> bool:
        """Check that the database answers a trivial query."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except SQLAlchemyError as e:
            logger.error("Database health check failed: %s", e)
            return False
