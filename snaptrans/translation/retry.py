"""Bounded exponential backoff with jitter.

Retry decisions read ``ApiResponse.error.retryable``; no exception is used
for control flow.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from ..models import ApiResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.2

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            multiplier=settings.multiplier,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
        )

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """``min(base * multiplier**attempt ± jitter, max_delay)`` in seconds."""
        raw = self.base_delay * self.multiplier ** attempt
        jittered = raw * (1.0 + self.jitter * (2.0 * rng() - 1.0))
        return max(0.0, min(jittered, self.max_delay))


def should_retry(response: ApiResponse, attempt: int, policy: RetryPolicy) -> bool:
    if response.success or response.error is None:
        return False
    return bool(response.error.retryable) and attempt < policy.max_retries


async def with_retry(
    operation: Callable[[], Awaitable[ApiResponse[T]]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> ApiResponse[T]:
    """Run ``operation`` until it succeeds, fails terminally or retries run out.

    The returned response carries the number of retries performed.
    """
    attempt = 0
    while True:
        response = await operation()
        response.retry_count = attempt
        if not should_retry(response, attempt, policy):
            return response
        delay = policy.delay_for(attempt, rng)
        logger.info(
            "Retrying after %s (attempt %d/%d) in %.2fs",
            response.error.error_code,
            attempt + 1,
            policy.max_retries,
            delay,
        )
        await sleep(delay)
        attempt += 1
