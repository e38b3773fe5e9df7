"""Endpoint registry operations for Courier.

Provides methods to store, retrieve, and manage tenant webhook endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from sqlalchemy import case, delete, func, insert, select, update

from courier.exceptions import ValidationError
from courier.models import Endpoint, generate_secret, utc_now

from .retry import storage_operation
from .tables import deliveries_table, endpoints_table

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

# Fields a tenant may change after creation. The secret is deliberately
# absent: it only changes through rotate_endpoint_secret.
UPDATABLE_FIELDS = frozenset({"url", "description", "events", "enabled"})


class EndpointStats(BaseModel):
    """Delivery counters for one endpoint."""

    model_config = ConfigDict(extra="forbid")

    total_deliveries: int = Field(default=0, ge=0)
    failed_deliveries: int = Field(default=0, ge=0)


class EndpointMixin:
    """Mixin providing endpoint registry operations for CourierStorage.

    This mixin expects the following attributes/methods from the base class:
    - engine: AsyncEngine
    - _row_to_endpoint(row) -> Endpoint
    """

    engine: AsyncEngine
    _row_to_endpoint: Any

    @storage_operation
    async def create_endpoint(self, endpoint: Endpoint) -> Endpoint:
        """Store a new endpoint.

        Args:
            endpoint: Endpoint to store.

        Returns:
            The stored endpoint.
        """
        async with self.engine.begin() as conn:
            await conn.execute(
                insert(endpoints_table).values(
                    id=endpoint.id,
                    organization_id=endpoint.organization_id,
                    url=str(endpoint.url),
                    description=endpoint.description,
                    secret=endpoint.secret.get_secret_value(),
                    events=list(endpoint.events),
                    enabled=endpoint.enabled,
                    created_at=endpoint.created_at,
                    updated_at=endpoint.updated_at,
                )
            )
        return endpoint

    @storage_operation
    async def get_endpoint(
        self,
        endpoint_id: str,
        organization_id: str | None = None,
    ) -> Endpoint | None:
        """Get an endpoint by ID.

        Args:
            endpoint_id: ID of the endpoint.
            organization_id: If given, the endpoint must belong to this organization.

        Returns:
            Endpoint or None if not found.
        """
        stmt = select(endpoints_table).where(endpoints_table.c.id == endpoint_id)
        if organization_id is not None:
            stmt = stmt.where(endpoints_table.c.organization_id == organization_id)

        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).mappings().first()

        if row is None:
            return None
        endpoint: Endpoint = self._row_to_endpoint(row)
        return endpoint

    @storage_operation
    async def list_endpoints(
        self,
        organization_id: str,
        enabled_only: bool = False,
        limit: int | None = 100,
    ) -> list[Endpoint]:
        """List endpoints for an organization, newest first.

        Args:
            organization_id: Organization to list endpoints for.
            enabled_only: If True, only return enabled endpoints.
            limit: Maximum endpoints to return. None returns all of them.

        Returns:
            List of Endpoint.
        """
        stmt = (
            select(endpoints_table)
            .where(endpoints_table.c.organization_id == organization_id)
            .order_by(endpoints_table.c.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        if enabled_only:
            stmt = stmt.where(endpoints_table.c.enabled.is_(True))

        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()

        return [self._row_to_endpoint(row) for row in rows]

    async def update_endpoint(
        self,
        endpoint_id: str,
        organization_id: str | None = None,
        **changes: Any,
    ) -> Endpoint | None:
        """Update mutable endpoint fields.

        Args:
            endpoint_id: ID of the endpoint to update.
            organization_id: If given, the endpoint must belong to this organization.
            **changes: New values for url, description, events or enabled.

        Returns:
            Updated Endpoint or None if not found.

        Raises:
            ValidationError: If a field is not updatable or a value is invalid.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise ValidationError(field, "field cannot be updated")

        current = await self.get_endpoint(endpoint_id, organization_id)
        if current is None:
            return None

        # Re-validate through the model so event names and URLs are checked
        try:
            updated = Endpoint.model_validate(
                {
                    **current.model_dump(),
                    **changes,
                    "updated_at": utc_now(),
                }
            )
        except ValueError as e:
            raise ValidationError("endpoint", str(e)) from e

        await self._write_endpoint_fields(
            endpoint_id,
            url=str(updated.url),
            description=updated.description,
            events=list(updated.events),
            enabled=updated.enabled,
            updated_at=updated.updated_at,
        )
        return updated

    async def rotate_endpoint_secret(
        self,
        endpoint_id: str,
        organization_id: str | None = None,
        new_secret: str | None = None,
    ) -> Endpoint | None:
        """Replace an endpoint's signing secret.

        Deliveries created before the rotation are signed with the new
        secret on their next attempt; receivers should accept both secrets
        for a while.

        Args:
            endpoint_id: ID of the endpoint.
            organization_id: If given, the endpoint must belong to this organization.
            new_secret: Secret to install. Generated when omitted.

        Returns:
            Updated Endpoint (with the new secret) or None if not found.
        """
        current = await self.get_endpoint(endpoint_id, organization_id)
        if current is None:
            return None

        try:
            updated = current.model_copy(
                update={
                    "secret": SecretStr(new_secret or generate_secret()),
                    "updated_at": utc_now(),
                }
            )
            Endpoint.model_validate(updated.model_dump())
        except ValueError as e:
            raise ValidationError("secret", str(e)) from e

        await self._write_endpoint_fields(
            endpoint_id,
            secret=updated.secret.get_secret_value(),
            updated_at=updated.updated_at,
        )
        return updated

    @storage_operation
    async def _write_endpoint_fields(self, endpoint_id: str, **values: Any) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(
                update(endpoints_table).where(endpoints_table.c.id == endpoint_id).values(**values)
            )

    @storage_operation
    async def delete_endpoint(
        self,
        endpoint_id: str,
        organization_id: str | None = None,
    ) -> bool:
        """Delete an endpoint and all of its deliveries.

        Both deletes run in one transaction. An HTTP call already in flight
        for one of the deliveries completes, and its outcome finds no row
        to update.

        Args:
            endpoint_id: ID of the endpoint to delete.
            organization_id: If given, the endpoint must belong to this organization.

        Returns:
            True if deleted, False if not found.
        """
        endpoint_filter = endpoints_table.c.id == endpoint_id
        if organization_id is not None:
            endpoint_filter = endpoint_filter & (
                endpoints_table.c.organization_id == organization_id
            )

        async with self.engine.begin() as conn:
            owned = select(endpoints_table.c.id).where(endpoint_filter).scalar_subquery()
            await conn.execute(
                delete(deliveries_table).where(deliveries_table.c.endpoint_id == owned)
            )
            result = await conn.execute(delete(endpoints_table).where(endpoint_filter))

        return bool(result.rowcount)

    @storage_operation
    async def get_endpoint_stats(self, endpoint_id: str) -> EndpointStats:
        """Count total and failed deliveries for an endpoint.

        Args:
            endpoint_id: ID of the endpoint.

        Returns:
            EndpointStats with delivery counts.
        """
        stmt = select(
            func.count(),
            func.sum(case((deliveries_table.c.status == "failed", 1), else_=0)),
        ).where(deliveries_table.c.endpoint_id == endpoint_id)

        async with self.engine.connect() as conn:
            total, failed = (await conn.execute(stmt)).one()

        return EndpointStats(total_deliveries=total or 0, failed_deliveries=failed or 0)
