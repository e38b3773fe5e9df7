"""Storage backends for Courier.

This module provides the persistence layer for webhook endpoints and
the delivery ledger, on any SQLAlchemy async database (PostgreSQL via
asyncpg in production, SQLite via aiosqlite locally).

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage() as storage:
        due = await storage.find_due_deliveries(now)
    ```
"""

from .client import CourierStorage
from .endpoint import EndpointStats
from .tables import deliveries_table, endpoints_table, metadata

__all__ = [
    "CourierStorage",
    "EndpointStats",
    "deliveries_table",
    "endpoints_table",
    "metadata",
]
