"""Base storage class and helpers.

Contains engine lifecycle, schema creation, and row conversion.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from courier.config import settings
from courier.exceptions import ConfigurationError
from courier.models import Delivery, DeliveryStatus, Endpoint

from .tables import metadata

# Drivers the async engine can run on
SUPPORTED_DRIVERS = ("sqlite+aiosqlite", "postgresql+asyncpg")


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class StorageBase:
    """Base class for Courier storage with initialization and helpers.

    Provides:
    - Async engine initialization and lifecycle management
    - Table creation
    - Row to model conversion
    """

    def __init__(
        self,
        database_url: str | None = None,
        echo: bool | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            database_url: SQLAlchemy async URL. Defaults to settings.database_url.
            echo: Echo SQL statements. Defaults to settings.database_echo.

        Raises:
            ConfigurationError: If the URL does not use a supported async driver.
        """
        self._database_url = database_url or settings.database_url
        scheme = self._database_url.split("://", 1)[0]
        if scheme not in SUPPORTED_DRIVERS:
            raise ConfigurationError(
                f"Unsupported database URL scheme '{scheme}'; expected one of {SUPPORTED_DRIVERS}"
            )
        self._echo = settings.database_echo if echo is None else echo
        self._engine: AsyncEngine | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the async engine, raising if not initialized."""
        if self._engine is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        return self._database_url.startswith("sqlite")

    async def initialize(self) -> None:
        """Create the engine and ensure tables exist."""
        if self._engine is not None:
            return

        engine_kwargs: dict[str, Any] = {"echo": self._echo}
        if self.is_sqlite:
            # Wait on the write lock instead of failing immediately
            engine_kwargs["connect_args"] = {"timeout": 30}
        else:
            engine_kwargs["pool_pre_ping"] = True

        self._engine = create_async_engine(self._database_url, **engine_kwargs)
        if self.is_sqlite:
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    async def __aenter__(self) -> StorageBase:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    @staticmethod
    def _row_to_endpoint(row: Any) -> Endpoint:
        """Convert a webhook_endpoints row to an Endpoint."""
        return Endpoint.model_validate(
            {
                "id": row["id"],
                "organization_id": row["organization_id"],
                "url": row["url"],
                "description": row["description"],
                "secret": row["secret"],
                "events": list(row["events"] or []),
                "enabled": bool(row["enabled"]),
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
            }
        )

    @staticmethod
    def _row_to_delivery(row: Any) -> Delivery:
        """Convert a webhook_deliveries row to a Delivery."""
        return Delivery.model_validate(
            {
                "id": row["id"],
                "endpoint_id": row["endpoint_id"],
                "event_type": row["event_type"],
                "payload": bytes(row["payload"]),
                "status": DeliveryStatus(row["status"]),
                "attempts": row["attempts"],
                "max_attempts": row["max_attempts"],
                "http_status": row["http_status"],
                "response_body": row["response_body"],
                "error_message": row["error_message"],
                "next_retry_at": row["next_retry_at"],
                "completed_at": row["completed_at"],
                "created_at": row["created_at"],
                "locked_by": row["locked_by"],
                "locked_until": row["locked_until"],
            }
        )

    @staticmethod
    def _delivery_to_row(delivery: Delivery) -> dict[str, Any]:
        """Convert a Delivery to column values for insertion."""
        return {
            "id": delivery.id,
            "endpoint_id": delivery.endpoint_id,
            "event_type": delivery.event_type,
            "payload": delivery.payload,
            "status": delivery.status.value,
            "attempts": delivery.attempts,
            "max_attempts": delivery.max_attempts,
            "http_status": delivery.http_status,
            "response_body": delivery.response_body,
            "error_message": delivery.error_message,
            "next_retry_at": delivery.next_retry_at,
            "completed_at": delivery.completed_at,
            "created_at": delivery.created_at,
            "locked_by": delivery.locked_by,
            "locked_until": delivery.locked_until,
        }
