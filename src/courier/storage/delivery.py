"""Delivery ledger operations for Courier.

The ledger is the source of truth for every delivery and the recovery log
after a crash: everything a worker needs to resume lives in these rows.

Workers coordinate exclusively through conditional updates. A claim only
succeeds if the row still has the status and attempt count the worker
observed and no live lease, so two workers racing for the same row
cannot both win.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, insert, or_, select, update

from courier.models import Delivery, DeliveryStatus

from .retry import storage_operation
from .tables import OPEN_STATUSES, deliveries_table, endpoints_table

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


def _lease_free(now: datetime) -> Any:
    return or_(
        deliveries_table.c.locked_until.is_(None),
        deliveries_table.c.locked_until <= now,
    )


class DeliveryMixin:
    """Mixin providing delivery ledger operations for CourierStorage.

    This mixin expects the following attributes/methods from the base class:
    - engine: AsyncEngine
    - _row_to_delivery(row) -> Delivery
    - _delivery_to_row(delivery) -> dict
    """

    engine: AsyncEngine
    _row_to_delivery: Any
    _delivery_to_row: Any

    @storage_operation
    async def insert_deliveries(self, deliveries: list[Delivery]) -> list[str]:
        """Insert new deliveries in a single batch.

        Args:
            deliveries: Deliveries to insert (normally all PENDING).

        Returns:
            IDs of the inserted deliveries.
        """
        if not deliveries:
            return []

        async with self.engine.begin() as conn:
            await conn.execute(
                insert(deliveries_table),
                [self._delivery_to_row(d) for d in deliveries],
            )
        return [d.id for d in deliveries]

    @storage_operation
    async def get_delivery(
        self,
        delivery_id: str,
        endpoint_id: str | None = None,
    ) -> Delivery | None:
        """Get a delivery by ID.

        Args:
            delivery_id: ID of the delivery.
            endpoint_id: If given, the delivery must target this endpoint.

        Returns:
            Delivery or None if not found.
        """
        stmt = select(deliveries_table).where(deliveries_table.c.id == delivery_id)
        if endpoint_id is not None:
            stmt = stmt.where(deliveries_table.c.endpoint_id == endpoint_id)

        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).mappings().first()

        if row is None:
            return None
        delivery: Delivery = self._row_to_delivery(row)
        return delivery

    @storage_operation
    async def list_deliveries(
        self,
        endpoint_id: str,
        status: DeliveryStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Delivery]:
        """List deliveries for an endpoint, newest first.

        Args:
            endpoint_id: Endpoint to list deliveries for.
            status: Optional status filter.
            limit: Maximum deliveries to return.
            offset: Number of deliveries to skip.

        Returns:
            List of Delivery.
        """
        stmt = (
            select(deliveries_table)
            .where(deliveries_table.c.endpoint_id == endpoint_id)
            .order_by(deliveries_table.c.created_at.desc(), deliveries_table.c.id)
            .limit(limit)
            .offset(offset)
        )
        if status is not None:
            stmt = stmt.where(deliveries_table.c.status == status.value)

        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()

        return [self._row_to_delivery(row) for row in rows]

    @storage_operation
    async def count_deliveries(
        self,
        endpoint_id: str,
        status: DeliveryStatus | None = None,
    ) -> int:
        """Count deliveries for an endpoint."""
        stmt = select(func.count()).where(deliveries_table.c.endpoint_id == endpoint_id)
        if status is not None:
            stmt = stmt.where(deliveries_table.c.status == status.value)

        async with self.engine.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    @storage_operation
    async def find_due_deliveries(self, now: datetime, limit: int = 50) -> list[Delivery]:
        """Find deliveries eligible for a claim.

        A delivery is due when it is PENDING, or RETRYING with
        ``next_retry_at <= now``, still has attempts left, and is not
        held by a live lease. The result is only a candidate list: another
        worker may claim any of these rows first.

        Args:
            now: Reference time.
            limit: Maximum candidates to return.

        Returns:
            Candidate deliveries, oldest due first.
        """
        c = deliveries_table.c
        stmt = (
            select(deliveries_table)
            .where(
                c.status.in_(OPEN_STATUSES),
                c.attempts < c.max_attempts,
                or_(
                    c.status == DeliveryStatus.PENDING.value,
                    c.next_retry_at <= now,
                ),
                _lease_free(now),
            )
            .order_by(func.coalesce(c.next_retry_at, c.created_at), c.id)
            .limit(limit)
        )

        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()

        return [self._row_to_delivery(row) for row in rows]

    @storage_operation
    async def claim_delivery(
        self,
        delivery: Delivery,
        worker_id: str,
        now: datetime,
        lease_seconds: float,
    ) -> Delivery | None:
        """Atomically claim a delivery for one worker.

        The update only matches if the row still has the status and attempt
        count observed in ``delivery``, is still due, and carries no live
        lease. The attempt counter is incremented here, before any network
        call, so a crash mid-request still consumes the attempt.

        Args:
            delivery: Delivery as observed by find_due_deliveries.
            worker_id: Identity of the claiming worker.
            now: Reference time.
            lease_seconds: How long the claim stays exclusive.

        Returns:
            The claimed delivery with updated attempt count and lease, or
            None if another worker got there first (or the row is gone).
        """
        c = deliveries_table.c
        locked_until = now + timedelta(seconds=lease_seconds)
        stmt = (
            update(deliveries_table)
            .where(
                c.id == delivery.id,
                c.status == delivery.status.value,
                c.attempts == delivery.attempts,
                c.attempts < c.max_attempts,
                or_(c.status == DeliveryStatus.PENDING.value, c.next_retry_at <= now),
                _lease_free(now),
            )
            .values(
                attempts=c.attempts + 1,
                locked_by=worker_id,
                locked_until=locked_until,
            )
        )

        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)

        if result.rowcount != 1:
            return None

        return delivery.model_copy(
            update={
                "attempts": delivery.attempts + 1,
                "locked_by": worker_id,
                "locked_until": locked_until,
            }
        )

    @storage_operation
    async def record_outcome(self, delivery: Delivery, worker_id: str) -> bool:
        """Persist the outcome of an attempt and release the claim.

        Only the worker holding the claim may write, and only while the row
        is still open. The payload column is never touched.

        Args:
            delivery: Delivery carrying the new status and response fields.
            worker_id: Worker that claimed the delivery.

        Returns:
            True if the row was updated, False if it vanished (endpoint
            deleted) or the claim was lost.
        """
        c = deliveries_table.c
        stmt = (
            update(deliveries_table)
            .where(
                c.id == delivery.id,
                c.locked_by == worker_id,
                c.status.in_(OPEN_STATUSES),
            )
            .values(
                status=delivery.status.value,
                http_status=delivery.http_status,
                response_body=delivery.response_body,
                error_message=delivery.error_message,
                next_retry_at=delivery.next_retry_at,
                completed_at=delivery.completed_at,
                locked_by=None,
                locked_until=None,
            )
        )

        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)

        return bool(result.rowcount == 1)

    @storage_operation
    async def expire_abandoned(self, now: datetime) -> int:
        """Fail open deliveries that have no attempts left and no live claim.

        This happens when a worker claimed the last attempt and died before
        recording the outcome. Without this sweep such rows would never
        reach a terminal state.

        Args:
            now: Reference time.

        Returns:
            Number of deliveries marked failed.
        """
        c = deliveries_table.c
        stmt = (
            update(deliveries_table)
            .where(
                c.status.in_(OPEN_STATUSES),
                c.attempts >= c.max_attempts,
                _lease_free(now),
            )
            .values(
                status=DeliveryStatus.FAILED.value,
                error_message="Attempts exhausted: worker did not record an outcome",
                next_retry_at=None,
                completed_at=now,
                locked_by=None,
                locked_until=None,
            )
        )

        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
        return int(result.rowcount or 0)

    @storage_operation
    async def cancel_disabled_deliveries(self, now: datetime) -> int:
        """Fail open deliveries whose endpoint has been disabled.

        Rows currently claimed are left alone; they are picked up by a
        later sweep once the claim is released or expires.

        Args:
            now: Reference time.

        Returns:
            Number of deliveries canceled.
        """
        c = deliveries_table.c
        disabled = select(endpoints_table.c.id).where(endpoints_table.c.enabled.is_(False))
        stmt = (
            update(deliveries_table)
            .where(
                and_(
                    c.status.in_(OPEN_STATUSES),
                    c.endpoint_id.in_(disabled),
                    _lease_free(now),
                )
            )
            .values(
                status=DeliveryStatus.FAILED.value,
                error_message="Endpoint disabled",
                next_retry_at=None,
                completed_at=now,
                locked_by=None,
                locked_until=None,
            )
        )

        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
        return int(result.rowcount or 0)
