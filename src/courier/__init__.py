"""Courier: reliable webhook delivery.

Turns domain events into signed HTTP POSTs to tenant-registered
endpoints, with a durable delivery ledger, exponential backoff and
atomic claims so several dispatcher processes can share the work.

Quick Start:
    from courier.service import CourierService

    async with CourierService.create() as courier:
        endpoint = await courier.register_endpoint(
            organization_id="org_123",
            url="https://example.com/hooks",
            events=["menu.published"],
        )

        # In a mutation handler: returns immediately, never raises
        courier.emitter.menu_published("org_123", {"id": "menu_1"})

        # In a worker process
        await courier.pool.run_until_stopped()

Delivery States:
    - pending: waiting for its first attempt
    - retrying: failed transiently, due again at next_retry_at
    - success: receiver answered 2xx (terminal)
    - failed: permanent error or attempts exhausted (terminal)
"""

__version__ = "0.1.0"

# Configuration
from .config import RetryPolicy, Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    CourierError,
    NotFoundError,
    SigningError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    EVENT_TYPES,
    Delivery,
    DeliveryStatus,
    Endpoint,
    EventEnvelope,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "RetryPolicy",
    "settings",
    # Exceptions
    "CourierError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConfigurationError",
    "SigningError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "EVENT_TYPES",
    "Delivery",
    "DeliveryStatus",
    "Endpoint",
    "EventEnvelope",
]
