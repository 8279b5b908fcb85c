"""Bounded retry with exponential backoff for provider calls.

Delay before retry ``n`` is ``base_delay * 2**(n-1)`` plus up to 30% jitter.
Only TransientGatewayError is retried; anything else propagates at once.
"""

import random
import time
from typing import Callable, TypeVar

import structlog

from marketplace.gateway.port import TransientGatewayError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.3


def backoff_delay(attempt: int, base_delay: float) -> float:
    delay = base_delay * (2 ** (attempt - 1))
    return delay + random.uniform(0, delay * JITTER_RATIO)


def call_with_backoff(
    fn: Callable[[], T],
    max_attempts: int,
    base_delay: float,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """Call ``fn`` up to ``max_attempts`` times, re-raising the last transient error."""
    attempt = 1
    while True:
        try:
            return fn()
        except TransientGatewayError as exc:
            if attempt >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "Transient provider failure, retrying",
                attempt=attempt,
                max_attempts=max_attempts,
                delay=round(delay, 3),
                error=str(exc),
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            sleep(delay)
            attempt += 1
