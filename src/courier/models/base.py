"""Base helpers and shared types for Courier models."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4


class DeliveryStatus(str, Enum):
    """Lifecycle state of a delivery.

    PENDING and RETRYING are eligible for dispatch; SUCCESS and FAILED
    are terminal.
    """

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SUCCESS, DeliveryStatus.FAILED)


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def generate_secret() -> str:
    """Generate a random webhook signing secret (``whsec_`` + 64 hex chars)."""
    return f"whsec_{secrets.token_hex(32)}"


def mask_secret(secret: str) -> str:
    """Mask a secret for display, keeping only a short prefix and suffix."""
    if len(secret) <= 12:
        return "****"
    return f"{secret[:8]}...{secret[-4:]}"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)
