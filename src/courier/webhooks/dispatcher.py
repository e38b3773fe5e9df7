"""Webhook dispatch: claim due deliveries, sign, POST, classify, record.

Implements reliable at-least-once delivery:
- Atomic claims through conditional updates on the ledger, so no two
  workers (in this or any other process) send the same delivery at once
- HMAC-SHA256 signatures over the exact stored payload bytes
- Exponential backoff with jitter for transient failures
- Immediate failure for permanent client errors

Outcome classification:
- 2xx: success
- 408, 429, 5xx, timeouts and connection errors: transient, retried
  while attempts remain
- any other status (4xx, unfollowed 3xx): permanent failure
"""

from __future__ import annotations

import asyncio
import os
import random
import socket
import time
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from courier.config import Settings
from courier.config import settings as default_settings
from courier.exceptions import SigningError
from courier.logging import get_logger
from courier.models import DeliveryStatus, utc_now

from .backoff import next_retry_at
from .signing import compute_signature

if TYPE_CHECKING:
    from collections.abc import Callable

    from structlog.stdlib import BoundLogger

    from courier.models import Delivery, Endpoint
    from courier.storage import CourierStorage

logger = get_logger(__name__)

HEADER_EVENT = "X-Courier-Event"
HEADER_DELIVERY_ID = "X-Courier-Delivery-Id"
HEADER_TIMESTAMP = "X-Courier-Timestamp"
HEADER_SIGNATURE = "X-Courier-Signature"
HEADER_ATTEMPT = "X-Courier-Attempt"

# Client errors that are worth retrying
TRANSIENT_CLIENT_STATUSES = frozenset({408, 429})


class Outcome(str, Enum):
    """Classification of a single delivery attempt."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def classify_status(status_code: int) -> Outcome:
    """Classify an HTTP response status code."""
    if 200 <= status_code < 300:
        return Outcome.SUCCESS
    if status_code in TRANSIENT_CLIENT_STATUSES or status_code >= 500:
        return Outcome.TRANSIENT
    return Outcome.PERMANENT


def default_worker_id() -> str:
    """Identity unique to this process: ``host:pid:random``."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"


class WebhookDispatcher:
    """Dispatches due deliveries from the ledger to their endpoints.

    Example:
        ```python
        async with WebhookDispatcher(storage) as dispatcher:
            # One pass over the ledger
            sent = await dispatcher.sweep()
        ```
    """

    def __init__(
        self,
        storage: CourierStorage,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        worker_id: str | None = None,
        max_concurrent: int = 10,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the webhook dispatcher.

        Args:
            storage: Storage holding endpoints and the delivery ledger.
            settings: Settings. Defaults to the global settings.
            client: HTTP client. A private client is created if None.
            worker_id: Claim identity. Defaults to host:pid:random.
            max_concurrent: Maximum concurrent HTTP requests.
            rng: Random source for retry jitter.
        """
        self._storage = storage
        self._settings = settings or default_settings
        self._timeout = self._settings.delivery_timeout_seconds
        self._client = client
        self._owns_client = client is None
        self.worker_id = worker_id or default_worker_id()
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._rng = rng

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=False)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> WebhookDispatcher:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def sweep(self, now: datetime | None = None, worker_id: str | None = None) -> int:
        """Run one pass over the ledger.

        Finalizes abandoned and (under the cancel policy) disabled
        deliveries, then claims and dispatches due ones concurrently.

        Args:
            now: Reference time for due checks. Defaults to now.
            worker_id: Claim identity for this pass. Defaults to self.worker_id.

        Returns:
            Number of deliveries this pass dispatched.
        """
        now = now or utc_now()
        worker_id = worker_id or self.worker_id

        if self._settings.disabled_endpoint_policy == "cancel":
            canceled = await self._storage.cancel_disabled_deliveries(now)
            if canceled:
                logger.info("Canceled deliveries of disabled endpoints", count=canceled)

        expired = await self._storage.expire_abandoned(now)
        if expired:
            logger.warning("Failed abandoned deliveries", count=expired)

        candidates = await self._storage.find_due_deliveries(
            now, limit=self._settings.dispatcher_batch_size
        )
        if not candidates:
            return 0

        # Claims wait for a free slot; the reference time advances with them
        # so each lease starts when its claim is actually made
        started = time.monotonic()

        def clock() -> datetime:
            return now + timedelta(seconds=time.monotonic() - started)

        results = await asyncio.gather(
            *(self._claim_and_dispatch(c, clock, worker_id) for c in candidates),
            return_exceptions=True,
        )

        dispatched = 0
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Webhook dispatch failed", error=str(result), worker_id=worker_id)
            elif result:
                dispatched += 1
        return dispatched

    async def _claim_and_dispatch(
        self,
        candidate: Delivery,
        clock: Callable[[], datetime],
        worker_id: str,
    ) -> bool:
        # Claim only once a slot is free, so the lease is not spent waiting
        async with self._semaphore:
            claimed = await self.claim(candidate, now=clock(), worker_id=worker_id)
            if claimed is None:
                return False
            await self.dispatch(claimed, worker_id=worker_id)
        return True

    async def claim(
        self,
        delivery: Delivery,
        now: datetime | None = None,
        worker_id: str | None = None,
    ) -> Delivery | None:
        """Try to claim a delivery; None means another worker owns it."""
        claimed = await self._storage.claim_delivery(
            delivery,
            worker_id=worker_id or self.worker_id,
            now=now or utc_now(),
            lease_seconds=self._settings.claim_lease_seconds,
        )
        if claimed is None:
            logger.debug("Delivery claimed elsewhere", delivery_id=delivery.id)
        return claimed

    async def dispatch(self, delivery: Delivery, worker_id: str | None = None) -> Delivery:
        """Send a claimed delivery and record the outcome.

        Args:
            delivery: Delivery returned by claim().
            worker_id: Identity that holds the claim.

        Returns:
            The delivery with its new status.
        """
        worker_id = worker_id or self.worker_id
        log = logger.bind(
            delivery_id=delivery.id,
            endpoint_id=delivery.endpoint_id,
            event_type=delivery.event_type,
            attempt=delivery.attempts,
        )

        endpoint = await self._storage.get_endpoint(delivery.endpoint_id)
        if endpoint is None:
            # Endpoint deleted: its deliveries went with it
            log.info("Endpoint gone, dropping delivery")
            return delivery

        if not endpoint.enabled and self._settings.disabled_endpoint_policy == "cancel":
            delivery.mark_failed(error="Endpoint disabled")
        else:
            await self._attempt(endpoint, delivery, log)

        recorded = await self._storage.record_outcome(delivery, worker_id)
        if not recorded:
            log.warning("Delivery outcome discarded: row deleted or claim lost")
        return delivery

    async def _attempt(self, endpoint: Endpoint, delivery: Delivery, log: BoundLogger) -> None:
        """Perform the HTTP call and apply the outcome to ``delivery``."""
        limit = self._settings.response_body_limit

        try:
            signature = compute_signature(delivery.payload, endpoint.secret.get_secret_value())
        except SigningError as e:
            delivery.mark_failed(error=e.message)
            log.error("Webhook signing failed", error=e.message)
            return

        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._settings.user_agent,
            HEADER_EVENT: delivery.event_type,
            HEADER_DELIVERY_ID: delivery.id,
            HEADER_TIMESTAMP: utc_now().isoformat(timespec="seconds"),
            HEADER_SIGNATURE: signature,
            HEADER_ATTEMPT: str(delivery.attempts),
        }

        try:
            response = await self.client.post(
                str(endpoint.url),
                content=delivery.payload,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            self._apply_transient(delivery, "Request timeout", None, None)
        except httpx.RequestError as e:
            self._apply_transient(delivery, str(e) or type(e).__name__, None, None)
        except Exception as e:
            delivery.mark_failed(error=self._truncate_error(f"Unexpected error: {e}"))
            log.exception("Webhook delivery error")
        else:
            body = response.text[:limit] if response.text else None
            outcome = classify_status(response.status_code)

            if outcome is Outcome.SUCCESS:
                delivery.mark_success(http_status=response.status_code, response_body=body)
                log.info("Webhook delivered", status_code=response.status_code)
            elif outcome is Outcome.TRANSIENT:
                self._apply_transient(
                    delivery, f"HTTP {response.status_code}", response.status_code, body
                )
            else:
                delivery.mark_failed(
                    error=self._truncate_error(f"HTTP {response.status_code}"),
                    http_status=response.status_code,
                    response_body=body,
                )
                log.warning("Webhook rejected", status_code=response.status_code)

        if delivery.status is DeliveryStatus.RETRYING:
            log.info(
                "Webhook scheduled for retry",
                error=delivery.error_message,
                next_retry_at=delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
            )
        elif delivery.status is DeliveryStatus.FAILED and delivery.attempts >= delivery.max_attempts:
            log.warning("Webhook attempts exhausted", error=delivery.error_message)

    def _apply_transient(
        self,
        delivery: Delivery,
        error: str,
        http_status: int | None,
        body: str | None,
    ) -> None:
        retry_at = next_retry_at(
            delivery.attempts,
            delivery.max_attempts,
            policy=self._settings.retry,
            rng=self._rng,
        )
        if retry_at is None:
            delivery.mark_failed(
                error=self._truncate_error(f"Max attempts exceeded: {error}"),
                http_status=http_status,
                response_body=body,
            )
        else:
            delivery.mark_retrying(
                next_retry_at=retry_at,
                error=self._truncate_error(error),
                http_status=http_status,
                response_body=body,
            )

    def _truncate_error(self, error: str) -> str:
        return error[: self._settings.error_message_limit]

    async def deliver_now(self, delivery_id: str) -> Delivery | None:
        """Claim and dispatch one delivery immediately, if it is due.

        Used for test pings and manual triggers.

        Returns:
            The dispatched delivery, or None if it doesn't exist or could
            not be claimed.
        """
        delivery = await self._storage.get_delivery(delivery_id)
        if delivery is None or delivery.is_terminal:
            return None
        claimed = await self.claim(delivery)
        if claimed is None:
            return None
        return await self.dispatch(claimed)
