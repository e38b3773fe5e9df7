"""Unit tests for Courier data models."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from courier.models import (
    EVENT_TYPES,
    PING_EVENT,
    Delivery,
    DeliveryStatus,
    Endpoint,
    EventEnvelope,
    generate_id,
    generate_secret,
    is_known_event,
    mask_secret,
    utc_now,
)


class TestHelpers:
    """Tests for ID and secret helpers."""

    def test_generate_id_prefix(self):
        """IDs should carry their prefix and be unique."""
        first = generate_id("dlv")
        second = generate_id("dlv")
        assert first.startswith("dlv_")
        assert first != second

    def test_generate_secret_format(self):
        """Secrets are whsec_ plus 64 hex characters."""
        secret = generate_secret()
        assert secret.startswith("whsec_")
        assert len(secret) == len("whsec_") + 64
        int(secret[len("whsec_") :], 16)

    def test_mask_secret(self):
        """Masking keeps 8 leading and 4 trailing characters."""
        assert mask_secret("whsec_abcdefghijklmnop") == "whsec_ab...mnop"

    def test_mask_short_secret(self):
        """Short secrets are fully hidden."""
        assert mask_secret("short") == "****"

    def test_utc_now_is_aware(self):
        now = utc_now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)


class TestEventCatalog:
    """Tests for the event catalog."""

    def test_catalog_contents(self):
        assert len(EVENT_TYPES) == 17
        assert "menu.published" in EVENT_TYPES
        assert "team.member_removed" in EVENT_TYPES

    def test_ping_is_known_but_not_in_catalog(self):
        """test.ping can be emitted but not subscribed to."""
        assert is_known_event(PING_EVENT)
        assert PING_EVENT not in EVENT_TYPES

    def test_unknown_event(self):
        assert not is_known_event("menu.exploded")


class TestEventEnvelope:
    """Tests for EventEnvelope serialization."""

    def test_camel_case_aliases(self):
        """Dumps by alias produce the wire field names."""
        envelope = EventEnvelope(
            event="menu.published",
            organization_id="org_1",
            occurred_at=datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=UTC),
            data={"menu": {"id": "m1"}},
        )
        dumped = envelope.model_dump(mode="json", by_alias=True)
        assert dumped == {
            "event": "menu.published",
            "organizationId": "org_1",
            "occurredAt": "2024-05-01T12:30:15.123Z",
            "data": {"menu": {"id": "m1"}},
        }

    def test_accepts_aliases_on_input(self):
        envelope = EventEnvelope.model_validate(
            {"event": "menu.deleted", "organizationId": "org_2", "data": {}}
        )
        assert envelope.organization_id == "org_2"

    def test_envelope_is_frozen(self):
        envelope = EventEnvelope(event="menu.deleted", organization_id="org_1")
        with pytest.raises(ValidationError):
            envelope.event = "menu.created"


class TestEndpoint:
    """Tests for Endpoint model."""

    def test_defaults(self):
        """Should generate ID and secret when not given."""
        endpoint = Endpoint(
            organization_id="org_1",
            url="https://example.com/hook",
            events=["menu.created"],
        )
        assert endpoint.id.startswith("whk_")
        assert endpoint.secret.get_secret_value().startswith("whsec_")
        assert endpoint.enabled is True

    def test_secret_hidden_in_repr(self):
        endpoint = Endpoint(
            organization_id="org_1",
            url="https://example.com/hook",
            events=["menu.created"],
            secret="whsec_super_secret_value",
        )
        assert "whsec_super_secret_value" not in repr(endpoint)
        assert endpoint.masked_secret == "whsec_su...alue"

    def test_rejects_unknown_events(self):
        with pytest.raises(ValidationError):
            Endpoint(organization_id="org_1", url="https://example.com", events=["nope"])

    def test_rejects_ping_subscription(self):
        """test.ping is not subscribable."""
        with pytest.raises(ValidationError):
            Endpoint(organization_id="org_1", url="https://example.com", events=[PING_EVENT])

    def test_requires_events(self):
        with pytest.raises(ValidationError):
            Endpoint(organization_id="org_1", url="https://example.com", events=[])

    def test_rejects_invalid_url(self):
        with pytest.raises(ValidationError):
            Endpoint(organization_id="org_1", url="not a url", events=["menu.created"])

    def test_rejects_short_secret(self):
        with pytest.raises(ValidationError):
            Endpoint(
                organization_id="org_1",
                url="https://example.com",
                events=["menu.created"],
                secret="short",
            )

    def test_deduplicates_events(self):
        endpoint = Endpoint(
            organization_id="org_1",
            url="https://example.com",
            events=["menu.created", "menu.deleted", "menu.created"],
        )
        assert endpoint.events == ["menu.created", "menu.deleted"]

    def test_subscribes_to(self):
        endpoint = Endpoint(
            organization_id="org_1",
            url="https://example.com",
            events=["menu.created"],
        )
        assert endpoint.subscribes_to("menu.created")
        assert not endpoint.subscribes_to("menu.deleted")

    def test_wildcard_subscribes_to_everything(self):
        endpoint = Endpoint(organization_id="org_1", url="https://example.com", events=["*"])
        assert all(endpoint.subscribes_to(event) for event in EVENT_TYPES)

    def test_disabled_subscribes_to_nothing(self):
        endpoint = Endpoint(
            organization_id="org_1",
            url="https://example.com",
            events=["*"],
            enabled=False,
        )
        assert not endpoint.subscribes_to("menu.created")


class TestDelivery:
    """Tests for Delivery state transitions."""

    @pytest.fixture
    def delivery(self) -> Delivery:
        return Delivery(
            endpoint_id="whk_1",
            event_type="menu.published",
            payload=b'{"event":"menu.published"}',
            max_attempts=3,
        )

    def test_defaults(self, delivery):
        assert delivery.id.startswith("dlv_")
        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.attempts == 0
        assert delivery.next_retry_at is None
        assert delivery.completed_at is None
        assert delivery.attempts_remaining == 3

    def test_mark_success(self, delivery):
        delivery.attempts = 1
        delivery.mark_success(http_status=200, response_body="ok")
        assert delivery.status == DeliveryStatus.SUCCESS
        assert delivery.http_status == 200
        assert delivery.completed_at is not None
        assert delivery.is_terminal

    def test_mark_failed(self, delivery):
        delivery.attempts = 1
        delivery.mark_failed(error="HTTP 404", http_status=404)
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.error_message == "HTTP 404"
        assert delivery.next_retry_at is None
        assert delivery.completed_at is not None

    def test_mark_retrying(self, delivery):
        delivery.attempts = 1
        retry_at = datetime.now(UTC) + timedelta(minutes=1)
        delivery.mark_retrying(next_retry_at=retry_at, error="HTTP 500", http_status=500)
        assert delivery.status == DeliveryStatus.RETRYING
        assert delivery.next_retry_at == retry_at
        assert delivery.completed_at is None

    def test_retrying_clears_on_success(self, delivery):
        delivery.attempts = 1
        delivery.mark_retrying(next_retry_at=datetime.now(UTC), error="HTTP 500")
        delivery.attempts = 2
        delivery.mark_success(http_status=204)
        assert delivery.next_retry_at is None
        assert delivery.error_message is None

    def test_terminal_states_are_final(self, delivery):
        delivery.attempts = 1
        delivery.mark_success(http_status=200)
        with pytest.raises(ValueError):
            delivery.mark_failed(error="late failure")
        with pytest.raises(ValueError):
            delivery.mark_retrying(next_retry_at=datetime.now(UTC), error="late")

    def test_cannot_retry_without_attempts_left(self, delivery):
        delivery.attempts = 3
        with pytest.raises(ValueError):
            delivery.mark_retrying(next_retry_at=datetime.now(UTC), error="HTTP 500")

    def test_attempts_cannot_exceed_max(self):
        with pytest.raises(ValidationError):
            Delivery(
                endpoint_id="whk_1",
                event_type="menu.published",
                payload=b"{}",
                attempts=4,
                max_attempts=3,
            )

    def test_next_retry_at_requires_retrying(self):
        """next_retry_at is set exactly when status is retrying."""
        with pytest.raises(ValidationError):
            Delivery(
                endpoint_id="whk_1",
                event_type="menu.published",
                payload=b"{}",
                next_retry_at=datetime.now(UTC),
            )
        with pytest.raises(ValidationError):
            Delivery(
                endpoint_id="whk_1",
                event_type="menu.published",
                payload=b"{}",
                status=DeliveryStatus.RETRYING,
            )

    def test_completed_at_requires_terminal(self):
        with pytest.raises(ValidationError):
            Delivery(
                endpoint_id="whk_1",
                event_type="menu.published",
                payload=b"{}",
                status=DeliveryStatus.SUCCESS,
            )
