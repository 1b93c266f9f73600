"""Retry eligibility and jittered backoff. All delays are in milliseconds."""

from __future__ import annotations

import asyncio
import random
from typing import Literal

Backoff = Literal["linear", "exponential"]

DEFAULT_MAX_DELAY = 30_000
JITTER = 0.2


def is_retryable(status: int | None = None) -> bool:
    """Network errors (no status), 408, 429 and 5xx are worth retrying."""
    if status is None:
        return True
    return status >= 500 or status in (408, 429)


def calculate_retry_delay(
    attempt: int,
    base_delay: float = 1000,
    backoff: Backoff = "exponential",
    max_delay: float = DEFAULT_MAX_DELAY,
) -> int:
    """Delay before retry number `attempt` (0-based), with +-20% jitter."""
    if backoff == "exponential":
        delay = base_delay * (2**attempt)
    else:
        delay = base_delay * (attempt + 1)

    jitter = delay * JITTER * (random.random() * 2 - 1)
    return round(min(delay + jitter, max_delay))


async def sleep(ms: float) -> None:
    await asyncio.sleep(max(ms, 0) / 1000)
