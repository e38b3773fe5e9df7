"""Delivery records: the durable ledger of webhook attempts."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base import DeliveryStatus, generate_id, utc_now


class Delivery(BaseModel):
    """One event envelope on its way to one endpoint.

    The payload is captured once, at creation, and every attempt sends
    exactly these bytes. ``attempts`` is incremented when a worker claims
    the delivery, before any network I/O.

    Attributes:
        id: Unique identifier for this delivery.
        endpoint_id: Endpoint this delivery targets.
        event_type: Event type being delivered.
        payload: Exact request body (canonical JSON bytes).
        status: pending, retrying, success or failed.
        attempts: Attempts claimed so far.
        max_attempts: Upper bound on attempts.
        http_status: Last HTTP status code observed.
        response_body: Last response body (truncated).
        error_message: Last error description.
        next_retry_at: When the delivery becomes due again (retrying only).
        completed_at: When a terminal state was reached.
        created_at: When the delivery was created.
        locked_by: Worker currently holding the claim.
        locked_until: When the current claim expires.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    endpoint_id: str = Field(description="Target endpoint")
    event_type: str = Field(description="Event type")
    payload: bytes = Field(description="Exact request body")
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING)
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=5, ge=1)
    http_status: int | None = Field(default=None)
    response_body: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    next_retry_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    locked_by: str | None = Field(default=None)
    locked_until: datetime | None = Field(default=None)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Delivery":
        if self.attempts > self.max_attempts:
            raise ValueError(
                f"attempts ({self.attempts}) exceeds max_attempts ({self.max_attempts})"
            )
        if (self.next_retry_at is not None) != (self.status == DeliveryStatus.RETRYING):
            raise ValueError("next_retry_at must be set if and only if status is retrying")
        if (self.completed_at is not None) != self.status.is_terminal:
            raise ValueError("completed_at must be set if and only if status is terminal")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - self.attempts

    def _require_open(self, target: DeliveryStatus) -> None:
        if self.status.is_terminal:
            raise ValueError(
                f"Delivery {self.id} is {self.status.value}; cannot move to {target.value}"
            )

    def mark_success(
        self,
        http_status: int,
        response_body: str | None = None,
        now: datetime | None = None,
    ) -> "Delivery":
        """Mark delivery as successful (terminal)."""
        self._require_open(DeliveryStatus.SUCCESS)
        self.status = DeliveryStatus.SUCCESS
        self.http_status = http_status
        self.response_body = response_body
        self.error_message = None
        self.next_retry_at = None
        self.completed_at = now or utc_now()
        return self

    def mark_failed(
        self,
        error: str,
        http_status: int | None = None,
        response_body: str | None = None,
        now: datetime | None = None,
    ) -> "Delivery":
        """Mark delivery as failed (terminal, no more retries)."""
        self._require_open(DeliveryStatus.FAILED)
        self.status = DeliveryStatus.FAILED
        self.http_status = http_status
        self.response_body = response_body
        self.error_message = error
        self.next_retry_at = None
        self.completed_at = now or utc_now()
        return self

    def mark_retrying(
        self,
        next_retry_at: datetime,
        error: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> "Delivery":
        """Schedule another attempt."""
        self._require_open(DeliveryStatus.RETRYING)
        if self.attempts >= self.max_attempts:
            raise ValueError(f"Delivery {self.id} has no attempts left")
        self.status = DeliveryStatus.RETRYING
        self.http_status = http_status
        self.response_body = response_body
        self.error_message = error
        self.next_retry_at = next_retry_at
        return self


__all__ = ["Delivery"]
