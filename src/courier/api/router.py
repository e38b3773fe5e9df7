"""FastAPI router for Courier webhook management endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courier import __version__
from courier.models import EVENT_TYPES, DeliveryStatus
from courier.service import CourierService

from .schemas import (
    CreateEndpointRequest,
    DeliveryListResponse,
    DeliveryResponse,
    EndpointListResponse,
    EndpointResponse,
    EventTypeResponse,
    EventTypesResponse,
    HealthResponse,
    Pagination,
    PingResponse,
    UpdateEndpointRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: CourierService | None = None


def set_service(service: CourierService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> CourierService:
    """Dependency to get the CourierService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[CourierService, Depends(get_service)]

ENDPOINTS_PATH = "/organizations/{organization_id}/webhooks"


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health, including database connectivity."""
    storage_connected = False
    if _service is not None:
        try:
            storage_connected = await _service.health_check()
        except Exception:
            logger.exception("Health check failed")

    return HealthResponse(
        status="healthy" if storage_connected else "unhealthy",
        version=__version__,
        storage_connected=storage_connected,
    )


@router.get("/event-types", response_model=EventTypesResponse, tags=["webhooks"])
async def list_event_types() -> EventTypesResponse:
    """List the event types endpoints can subscribe to."""
    return EventTypesResponse(
        event_types=[
            EventTypeResponse(type=name, description=description)
            for name, description in EVENT_TYPES.items()
        ]
    )


@router.get(ENDPOINTS_PATH, response_model=EndpointListResponse, tags=["webhooks"])
async def list_endpoints(organization_id: str, service: ServiceDep) -> EndpointListResponse:
    """List an organization's endpoints with masked secrets and delivery stats."""
    rows = await service.list_endpoints(organization_id)
    return EndpointListResponse(
        endpoints=[EndpointResponse.from_endpoint(ep, stats=stats) for ep, stats in rows]
    )


@router.post(
    ENDPOINTS_PATH,
    response_model=EndpointResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_endpoint(
    organization_id: str,
    request: CreateEndpointRequest,
    service: ServiceDep,
) -> EndpointResponse:
    """Register an endpoint.

    The response carries the full signing secret; later reads only show
    a masked version.
    """
    endpoint = await service.register_endpoint(
        organization_id=organization_id,
        url=str(request.url),
        events=request.events,
        description=request.description,
        enabled=request.enabled,
    )
    return EndpointResponse.from_endpoint(endpoint, reveal_secret=True)


@router.get(ENDPOINTS_PATH + "/{endpoint_id}", response_model=EndpointResponse, tags=["webhooks"])
async def get_endpoint(
    organization_id: str,
    endpoint_id: str,
    service: ServiceDep,
) -> EndpointResponse:
    """Get one endpoint (secret masked)."""
    endpoint = await service.get_endpoint(organization_id, endpoint_id)
    return EndpointResponse.from_endpoint(endpoint)


@router.patch(
    ENDPOINTS_PATH + "/{endpoint_id}", response_model=EndpointResponse, tags=["webhooks"]
)
async def update_endpoint(
    organization_id: str,
    endpoint_id: str,
    request: UpdateEndpointRequest,
    service: ServiceDep,
) -> EndpointResponse:
    """Update url, description, events or the enabled flag.

    Disabling an endpoint stops new deliveries from being created for it.
    """
    changes = request.model_dump(exclude_unset=True)
    if "url" in changes and changes["url"] is not None:
        changes["url"] = str(changes["url"])

    endpoint = await service.update_endpoint(organization_id, endpoint_id, **changes)
    return EndpointResponse.from_endpoint(endpoint)


@router.post(
    ENDPOINTS_PATH + "/{endpoint_id}/rotate-secret",
    response_model=EndpointResponse,
    tags=["webhooks"],
)
async def rotate_secret(
    organization_id: str,
    endpoint_id: str,
    service: ServiceDep,
) -> EndpointResponse:
    """Replace the signing secret. The response shows the new secret in full."""
    endpoint = await service.rotate_secret(organization_id, endpoint_id)
    return EndpointResponse.from_endpoint(endpoint, reveal_secret=True)


@router.delete(
    ENDPOINTS_PATH + "/{endpoint_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_endpoint(
    organization_id: str,
    endpoint_id: str,
    service: ServiceDep,
) -> None:
    """Delete an endpoint and its delivery history."""
    await service.delete_endpoint(organization_id, endpoint_id)


@router.get(
    ENDPOINTS_PATH + "/{endpoint_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["deliveries"],
)
async def list_deliveries(
    organization_id: str,
    endpoint_id: str,
    service: ServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> DeliveryListResponse:
    """Page through an endpoint's deliveries, newest first."""
    result = await service.list_deliveries(organization_id, endpoint_id, page=page, limit=limit)
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.from_delivery(d) for d in result.deliveries],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.post(
    ENDPOINTS_PATH + "/{endpoint_id}/deliveries/{delivery_id}/redeliver",
    response_model=DeliveryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["deliveries"],
)
async def redeliver(
    organization_id: str,
    endpoint_id: str,
    delivery_id: str,
    service: ServiceDep,
) -> DeliveryResponse:
    """Queue a finished delivery again.

    A new delivery is created with the same payload; the original keeps
    its final status.
    """
    delivery = await service.redeliver(organization_id, endpoint_id, delivery_id)
    return DeliveryResponse.from_delivery(delivery)


@router.post(
    ENDPOINTS_PATH + "/{endpoint_id}/test",
    response_model=PingResponse,
    tags=["deliveries"],
)
async def ping_endpoint(
    organization_id: str,
    endpoint_id: str,
    service: ServiceDep,
) -> PingResponse:
    """Send a single ``test.ping`` delivery and report the outcome."""
    delivery = await service.send_test_ping(organization_id, endpoint_id)
    return PingResponse(
        success=delivery.status is DeliveryStatus.SUCCESS,
        delivery=DeliveryResponse.from_delivery(delivery),
    )
