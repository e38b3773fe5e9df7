"""Canonical payload serialization and HMAC-SHA256 signatures.

Receivers verify a delivery by recomputing the HMAC of the raw request
body with their copy of the endpoint secret and comparing it to the
``X-Courier-Signature`` header:

    ```python
    from courier.webhooks import verify_signature

    ok = verify_signature(request.body, secret, request.headers["X-Courier-Signature"])
    ```
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any

from courier.exceptions import SigningError
from courier.models import EventEnvelope

SIGNATURE_PREFIX = "sha256="


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def serialize_payload(envelope: EventEnvelope | Mapping[str, Any]) -> bytes:
    """Serialize an envelope to canonical JSON bytes.

    Keys are sorted at every level and no insignificant whitespace is
    emitted, so the same logical event always produces the same bytes.

    Args:
        envelope: Event envelope or an already JSON-compatible mapping.

    Returns:
        UTF-8 encoded JSON.

    Raises:
        TypeError: If the data holds values that cannot be represented as JSON.
        ValueError: If the data holds NaN or infinite floats.
    """
    if isinstance(envelope, EventEnvelope):
        document: Mapping[str, Any] = envelope.model_dump(mode="json", by_alias=True)
    else:
        document = envelope

    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def compute_signature(payload: str | bytes, secret: str | bytes) -> str:
    """Compute HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Exact request body to sign.
        secret: Shared secret for HMAC.

    Returns:
        Signature in format "sha256=<hex_digest>".

    Raises:
        SigningError: If the secret is empty.
    """
    key = _to_bytes(secret)
    if not key:
        raise SigningError("Cannot sign payload with an empty secret")

    signature = hmac.new(
        key=key,
        msg=_to_bytes(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{signature}"


def verify_signature(payload: str | bytes, secret: str | bytes, signature: str) -> bool:
    """Verify HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Exact request body that was signed.
        secret: Shared secret for HMAC.
        signature: Signature to verify (format: "sha256=<hex_digest>").

    Returns:
        True if signature is valid, False otherwise.
    """
    if not secret:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "replace"))
