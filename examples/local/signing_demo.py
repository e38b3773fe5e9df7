#!/usr/bin/env python3
"""Webhook signing and retry schedule demo.

Shows what a receiver sees and how it verifies a Courier delivery:

- The exact request body (canonical JSON envelope)
- The X-Courier-Signature header (HMAC-SHA256 over that body)
- Verification on the receiving side, including a tampered body
- The backoff schedule a failing endpoint would be retried on

No external services required - runs entirely locally.
"""

import random
from datetime import UTC, datetime

from courier.config import RetryPolicy
from courier.models import EventEnvelope, generate_secret
from courier.webhooks import (
    HEADER_SIGNATURE,
    backoff_delay,
    compute_signature,
    serialize_payload,
    verify_signature,
)


def main() -> None:
    print("=" * 70)
    print("Courier Webhook Signing Demo")
    print("=" * 70)

    # =========================================================================
    # Part 1: The payload
    # =========================================================================
    print("\n1. REQUEST BODY")
    print("-" * 70)

    envelope = EventEnvelope(
        event="menu.published",
        organization_id="org_demo",
        occurred_at=datetime(2024, 5, 1, 12, 30, tzinfo=UTC),
        data={"menu": {"id": "menu_1", "name": "Lunch"}},
    )
    body = serialize_payload(envelope)
    print(f"  {body.decode()}")

    # =========================================================================
    # Part 2: Signing
    # =========================================================================
    print("\n2. SIGNATURE")
    print("-" * 70)

    secret = generate_secret()
    signature = compute_signature(body, secret)
    print(f"  secret:              {secret[:12]}...")
    print(f"  {HEADER_SIGNATURE}: {signature}")

    # =========================================================================
    # Part 3: Verification on the receiver
    # =========================================================================
    print("\n3. RECEIVER VERIFICATION")
    print("-" * 70)

    tampered = body.replace(b"Lunch", b"Dinner")
    print(f"  original body:  {verify_signature(body, secret, signature)}")
    print(f"  tampered body:  {verify_signature(tampered, secret, signature)}")
    print(f"  wrong secret:   {verify_signature(body, generate_secret(), signature)}")

    # =========================================================================
    # Part 4: Retry schedule
    # =========================================================================
    print("\n4. RETRY SCHEDULE (5 attempts, default policy)")
    print("-" * 70)

    policy = RetryPolicy()
    rng = random.Random(42)
    for attempt in range(1, 5):
        delay = backoff_delay(attempt, policy, rng)
        print(f"  after attempt {attempt}: wait {delay / 60:6.2f} min")
    print("  after attempt 5: marked failed")


if __name__ == "__main__":
    main()
