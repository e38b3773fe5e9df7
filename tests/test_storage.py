"""Tests for the SQL endpoint registry and delivery ledger."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from courier.exceptions import ConfigurationError, StorageError, ValidationError
from courier.models import Delivery, DeliveryStatus
from courier.storage import CourierStorage


def _delivery(endpoint_id: str, **overrides) -> Delivery:
    values = {
        "endpoint_id": endpoint_id,
        "event_type": "menu.published",
        "payload": b'{"event":"menu.published"}',
        "max_attempts": 3,
    }
    values.update(overrides)
    return Delivery(**values)


class TestLifecycle:
    """Tests for engine lifecycle."""

    def test_engine_requires_initialize(self, settings):
        storage = CourierStorage(database_url=settings.database_url)
        with pytest.raises(RuntimeError):
            _ = storage.engine

    @pytest.mark.parametrize(
        "url", ["sqlite:///courier.db", "postgresql://localhost/courier", "courier.db"]
    )
    def test_rejects_sync_driver(self, url):
        with pytest.raises(ConfigurationError):
            CourierStorage(database_url=url)

    @pytest.mark.asyncio
    async def test_health_check(self, storage):
        assert await storage.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_when_closed(self, settings):
        storage = CourierStorage(database_url=settings.database_url)
        assert await storage.health_check() is False


class TestEndpointRegistry:
    """Tests for endpoint CRUD."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())

        loaded = await storage.get_endpoint(endpoint.id)
        assert loaded is not None
        assert loaded.id == endpoint.id
        assert str(loaded.url) == str(endpoint.url)
        assert loaded.events == ["menu.published"]
        assert loaded.secret.get_secret_value() == endpoint.secret.get_secret_value()
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_scoped_to_organization(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint(organization_id="org_a"))
        assert await storage.get_endpoint(endpoint.id, organization_id="org_b") is None
        assert await storage.get_endpoint(endpoint.id, organization_id="org_a") is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, storage):
        assert await storage.get_endpoint("whk_missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_raises_storage_error(self, storage, make_endpoint):
        endpoint = make_endpoint()
        await storage.create_endpoint(endpoint)
        with pytest.raises(StorageError):
            await storage.create_endpoint(endpoint)

    @pytest.mark.asyncio
    async def test_list_enabled_only(self, storage, make_endpoint):
        await storage.create_endpoint(make_endpoint())
        await storage.create_endpoint(make_endpoint(enabled=False))
        await storage.create_endpoint(make_endpoint(organization_id="org_other"))

        assert len(await storage.list_endpoints("org_1")) == 2
        enabled = await storage.list_endpoints("org_1", enabled_only=True)
        assert len(enabled) == 1
        assert enabled[0].enabled

    @pytest.mark.asyncio
    async def test_list_limit(self, storage, make_endpoint):
        for _ in range(4):
            await storage.create_endpoint(make_endpoint())

        assert len(await storage.list_endpoints("org_1", limit=3)) == 3
        assert len(await storage.list_endpoints("org_1", limit=None)) == 4

    @pytest.mark.asyncio
    async def test_update_fields(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())

        updated = await storage.update_endpoint(
            endpoint.id,
            events=["*"],
            enabled=False,
            description="all events",
        )
        assert updated is not None
        assert updated.events == ["*"]
        assert updated.enabled is False

        loaded = await storage.get_endpoint(endpoint.id)
        assert loaded.description == "all events"
        assert loaded.enabled is False
        assert loaded.secret.get_secret_value() == endpoint.secret.get_secret_value()

    @pytest.mark.asyncio
    async def test_update_rejects_secret(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        with pytest.raises(ValidationError):
            await storage.update_endpoint(endpoint.id, secret="whsec_new_secret_value_123")

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_events(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        with pytest.raises(ValidationError):
            await storage.update_endpoint(endpoint.id, events=["bogus.event"])

    @pytest.mark.asyncio
    async def test_update_missing(self, storage):
        assert await storage.update_endpoint("whk_missing", enabled=False) is None

    @pytest.mark.asyncio
    async def test_rotate_secret(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())

        rotated = await storage.rotate_endpoint_secret(endpoint.id)
        assert rotated is not None
        new_secret = rotated.secret.get_secret_value()
        assert new_secret != endpoint.secret.get_secret_value()
        assert new_secret.startswith("whsec_")

        loaded = await storage.get_endpoint(endpoint.id)
        assert loaded.secret.get_secret_value() == new_secret

    @pytest.mark.asyncio
    async def test_delete_cascades_deliveries(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        other = await storage.create_endpoint(make_endpoint())
        ids = await storage.insert_deliveries([_delivery(endpoint.id), _delivery(endpoint.id)])
        kept = await storage.insert_deliveries([_delivery(other.id)])

        assert await storage.delete_endpoint(endpoint.id) is True

        assert await storage.get_endpoint(endpoint.id) is None
        for delivery_id in ids:
            assert await storage.get_delivery(delivery_id) is None
        assert await storage.get_delivery(kept[0]) is not None

    @pytest.mark.asyncio
    async def test_delete_wrong_organization(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        ids = await storage.insert_deliveries([_delivery(endpoint.id)])

        assert await storage.delete_endpoint(endpoint.id, organization_id="org_other") is False
        assert await storage.get_delivery(ids[0]) is not None

    @pytest.mark.asyncio
    async def test_stats(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        now = datetime.now(UTC)
        failed = _delivery(endpoint.id, attempts=1)
        failed.mark_failed(error="HTTP 404", http_status=404, now=now)
        await storage.insert_deliveries([_delivery(endpoint.id), failed])

        stats = await storage.get_endpoint_stats(endpoint.id)
        assert stats.total_deliveries == 2
        assert stats.failed_deliveries == 1

    @pytest.mark.asyncio
    async def test_stats_empty(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        stats = await storage.get_endpoint_stats(endpoint.id)
        assert stats.total_deliveries == 0
        assert stats.failed_deliveries == 0


class TestDeliveryLedger:
    """Tests for delivery persistence and claims."""

    @pytest.mark.asyncio
    async def test_payload_bytes_round_trip(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        payload = '{"data":{"name":"Café"},"event":"menu.published"}'.encode()
        [delivery_id] = await storage.insert_deliveries([_delivery(endpoint.id, payload=payload)])

        loaded = await storage.get_delivery(delivery_id)
        assert loaded.payload == payload
        assert loaded.status == DeliveryStatus.PENDING

    @pytest.mark.asyncio
    async def test_list_and_count_paginated(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        base = datetime.now(UTC)
        deliveries = [
            _delivery(endpoint.id, created_at=base + timedelta(seconds=i)) for i in range(5)
        ]
        await storage.insert_deliveries(deliveries)

        first_page = await storage.list_deliveries(endpoint.id, limit=2, offset=0)
        second_page = await storage.list_deliveries(endpoint.id, limit=2, offset=2)
        assert [d.id for d in first_page] == [deliveries[4].id, deliveries[3].id]
        assert [d.id for d in second_page] == [deliveries[2].id, deliveries[1].id]
        assert await storage.count_deliveries(endpoint.id) == 5
        assert await storage.count_deliveries(endpoint.id, DeliveryStatus.FAILED) == 0

    @pytest.mark.asyncio
    async def test_find_due(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        now = datetime.now(UTC)

        pending = _delivery(endpoint.id)
        due_retry = _delivery(endpoint.id, attempts=1)
        due_retry.mark_retrying(next_retry_at=now - timedelta(seconds=1), error="HTTP 500")
        later_retry = _delivery(endpoint.id, attempts=1)
        later_retry.mark_retrying(next_retry_at=now + timedelta(hours=1), error="HTTP 500")
        done = _delivery(endpoint.id, attempts=1)
        done.mark_success(http_status=200, now=now)
        await storage.insert_deliveries([pending, due_retry, later_retry, done])

        due = {d.id for d in await storage.find_due_deliveries(now)}
        assert due == {pending.id, due_retry.id}

    @pytest.mark.asyncio
    async def test_claim_increments_attempts_and_leases(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        [delivery_id] = await storage.insert_deliveries([_delivery(endpoint.id)])
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)

        claimed = await storage.claim_delivery(candidate, "worker-a", now, lease_seconds=30)
        assert claimed is not None
        assert claimed.attempts == 1
        assert claimed.locked_by == "worker-a"

        loaded = await storage.get_delivery(delivery_id)
        assert loaded.attempts == 1
        assert loaded.locked_by == "worker-a"
        # Leased rows are not due
        assert await storage.find_due_deliveries(now) == []

    @pytest.mark.asyncio
    async def test_stale_candidate_cannot_be_claimed(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        await storage.insert_deliveries([_delivery(endpoint.id)])
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)

        assert await storage.claim_delivery(candidate, "worker-a", now, 30) is not None
        # Same snapshot, after the lease: attempts no longer match
        later = now + timedelta(seconds=60)
        assert await storage.claim_delivery(candidate, "worker-b", later, 30) is None

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self, storage, make_endpoint):
        """Of many workers racing for one delivery, exactly one wins."""
        endpoint = await storage.create_endpoint(make_endpoint())
        [delivery_id] = await storage.insert_deliveries([_delivery(endpoint.id)])
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)

        results = await asyncio.gather(
            *(storage.claim_delivery(candidate, f"worker-{i}", now, 30) for i in range(8))
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        loaded = await storage.get_delivery(delivery_id)
        assert loaded.attempts == 1
        assert loaded.locked_by == winners[0].locked_by

    @pytest.mark.asyncio
    async def test_record_outcome_requires_claim(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        await storage.insert_deliveries([_delivery(endpoint.id)])
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)
        claimed = await storage.claim_delivery(candidate, "worker-a", now, 30)

        claimed.mark_success(http_status=200)
        assert await storage.record_outcome(claimed, "worker-b") is False
        assert await storage.record_outcome(claimed, "worker-a") is True

        loaded = await storage.get_delivery(claimed.id)
        assert loaded.status == DeliveryStatus.SUCCESS
        assert loaded.locked_by is None
        assert loaded.completed_at is not None

    @pytest.mark.asyncio
    async def test_terminal_rows_are_not_overwritten(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        await storage.insert_deliveries([_delivery(endpoint.id)])
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)
        claimed = await storage.claim_delivery(candidate, "worker-a", now, 30)

        first = claimed.model_copy()
        first.mark_success(http_status=200)
        assert await storage.record_outcome(first, "worker-a") is True

        second = claimed.model_copy()
        second.mark_failed(error="late")
        assert await storage.record_outcome(second, "worker-a") is False
        assert (await storage.get_delivery(claimed.id)).status == DeliveryStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_record_outcome_after_delete(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        await storage.insert_deliveries([_delivery(endpoint.id)])
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)
        claimed = await storage.claim_delivery(candidate, "worker-a", now, 30)

        await storage.delete_endpoint(endpoint.id)

        claimed.mark_success(http_status=200)
        assert await storage.record_outcome(claimed, "worker-a") is False

    @pytest.mark.asyncio
    async def test_expire_abandoned(self, storage, make_endpoint):
        """A worker that died holding the last attempt leaves a row to finalize."""
        endpoint = await storage.create_endpoint(make_endpoint())
        [delivery_id] = await storage.insert_deliveries(
            [_delivery(endpoint.id, attempts=0, max_attempts=1)]
        )
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)
        await storage.claim_delivery(candidate, "worker-a", now, 30)

        # Lease still live
        assert await storage.expire_abandoned(now + timedelta(seconds=10)) == 0

        assert await storage.expire_abandoned(now + timedelta(seconds=31)) == 1
        loaded = await storage.get_delivery(delivery_id)
        assert loaded.status == DeliveryStatus.FAILED
        assert loaded.completed_at is not None

    @pytest.mark.asyncio
    async def test_crashed_worker_attempt_is_reclaimable(self, storage, make_endpoint):
        endpoint = await storage.create_endpoint(make_endpoint())
        await storage.insert_deliveries([_delivery(endpoint.id)])
        now = datetime.now(UTC)
        [candidate] = await storage.find_due_deliveries(now)
        await storage.claim_delivery(candidate, "worker-a", now, 30)

        later = now + timedelta(seconds=31)
        [again] = await storage.find_due_deliveries(later)
        assert again.attempts == 1
        reclaimed = await storage.claim_delivery(again, "worker-b", later, 30)
        assert reclaimed is not None
        assert reclaimed.attempts == 2

    @pytest.mark.asyncio
    async def test_cancel_disabled_deliveries(self, storage, make_endpoint):
        enabled = await storage.create_endpoint(make_endpoint())
        disabled = await storage.create_endpoint(make_endpoint())
        [kept_id] = await storage.insert_deliveries([_delivery(enabled.id)])
        [canceled_id] = await storage.insert_deliveries([_delivery(disabled.id)])
        await storage.update_endpoint(disabled.id, enabled=False)

        assert await storage.cancel_disabled_deliveries(datetime.now(UTC)) == 1

        canceled = await storage.get_delivery(canceled_id)
        assert canceled.status == DeliveryStatus.FAILED
        assert canceled.error_message == "Endpoint disabled"
        assert (await storage.get_delivery(kept_id)).status == DeliveryStatus.PENDING
