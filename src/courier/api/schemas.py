"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from courier.models import Delivery, DeliveryStatus, Endpoint
from courier.storage import EndpointStats


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, unhealthy).
        version: API version.
        storage_connected: Whether the database answered.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    storage_connected: bool


class EventTypeResponse(BaseModel):
    """A subscribable event type."""

    model_config = ConfigDict(extra="forbid")

    type: str
    description: str


class EventTypesResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_types: list[EventTypeResponse]


class CreateEndpointRequest(BaseModel):
    """Request body for registering a webhook endpoint.

    Attributes:
        url: HTTP(S) URL that will receive events.
        description: Optional description.
        events: Event types to subscribe to ("*" for all).
        enabled: Whether the endpoint starts enabled.
    """

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl = Field(description="Endpoint receiving events")
    description: str | None = Field(default=None, max_length=500)
    events: list[str] = Field(min_length=1, description="Event types to subscribe to")
    enabled: bool = Field(default=True)


class UpdateEndpointRequest(BaseModel):
    """Request body for updating a webhook endpoint. Omitted fields are kept."""

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl | None = None
    description: str | None = Field(default=None, max_length=500)
    events: list[str] | None = Field(default=None, min_length=1)
    enabled: bool | None = None


class EndpointStatsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_deliveries: int
    failed_deliveries: int


class EndpointResponse(BaseModel):
    """A webhook endpoint.

    The secret is masked except in responses to create and rotate-secret,
    which are the only times the full value is shown.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    organization_id: str
    url: str
    description: str | None
    secret: str
    events: list[str]
    enabled: bool
    created_at: datetime
    updated_at: datetime
    stats: EndpointStatsResponse | None = None

    @classmethod
    def from_endpoint(
        cls,
        endpoint: Endpoint,
        reveal_secret: bool = False,
        stats: EndpointStats | None = None,
    ) -> EndpointResponse:
        return cls(
            id=endpoint.id,
            organization_id=endpoint.organization_id,
            url=str(endpoint.url),
            description=endpoint.description,
            secret=(
                endpoint.secret.get_secret_value() if reveal_secret else endpoint.masked_secret
            ),
            events=list(endpoint.events),
            enabled=endpoint.enabled,
            created_at=endpoint.created_at,
            updated_at=endpoint.updated_at,
            stats=EndpointStatsResponse(**stats.model_dump()) if stats else None,
        )


class EndpointListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoints: list[EndpointResponse]


class DeliveryResponse(BaseModel):
    """A delivery record as shown to the endpoint owner."""

    model_config = ConfigDict(extra="forbid")

    id: str
    endpoint_id: str
    event_type: str
    payload: str = Field(description="Exact request body sent to the endpoint")
    status: DeliveryStatus
    attempts: int
    max_attempts: int
    http_status: int | None
    response_body: str | None
    error_message: str | None
    next_retry_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> DeliveryResponse:
        return cls(
            id=delivery.id,
            endpoint_id=delivery.endpoint_id,
            event_type=delivery.event_type,
            payload=delivery.payload.decode("utf-8"),
            status=delivery.status,
            attempts=delivery.attempts,
            max_attempts=delivery.max_attempts,
            http_status=delivery.http_status,
            response_body=delivery.response_body,
            error_message=delivery.error_message,
            next_retry_at=delivery.next_retry_at,
            completed_at=delivery.completed_at,
            created_at=delivery.created_at,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: int
    limit: int
    total: int
    total_pages: int


class DeliveryListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    pagination: Pagination


class PingResponse(BaseModel):
    """Outcome of a test ping.

    Attributes:
        success: Whether the endpoint answered 2xx.
        delivery: The ping delivery in its final state.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    delivery: DeliveryResponse
