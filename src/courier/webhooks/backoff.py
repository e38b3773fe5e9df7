"""Retry scheduling: exponential backoff with jitter.

Pure functions of the attempt number; the only state is the random
source, which can be injected for reproducible schedules.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from courier.config import RetryPolicy
from courier.models import utc_now

_default_policy = RetryPolicy()


def backoff_delay(
    attempt: int,
    policy: RetryPolicy | None = None,
    rng: random.Random | None = None,
) -> float:
    """Seconds to wait after failed attempt number ``attempt``.

    Args:
        attempt: 1-indexed number of the attempt that just failed.
        policy: Backoff parameters. Defaults to RetryPolicy().
        rng: Random source for jitter. Defaults to the module RNG.

    Returns:
        Delay in seconds, never above ``policy.max_total_delay_seconds``.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    policy = policy or _default_policy
    # Clamp the exponent so huge attempt numbers cannot overflow
    exponent = min(attempt - 1, 62)
    delay = min(policy.max_delay_seconds, policy.base_delay_seconds * (2**exponent))
    jitter = (rng or random).uniform(0.0, delay * policy.jitter_ratio)
    return delay + jitter


def next_retry_at(
    attempt: int,
    max_attempts: int,
    policy: RetryPolicy | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> datetime | None:
    """When the next attempt becomes due, or None if none is allowed.

    Args:
        attempt: 1-indexed number of the attempt that just failed.
        max_attempts: Attempt bound of the delivery.
        policy: Backoff parameters.
        now: Reference time. Defaults to the current UTC time.
        rng: Random source for jitter.

    Returns:
        Due time for attempt ``attempt + 1``, or None when ``attempt``
        already reached ``max_attempts``.
    """
    if attempt >= max_attempts:
        return None
    now = now or utc_now()
    return now + timedelta(seconds=backoff_delay(attempt, policy, rng))
