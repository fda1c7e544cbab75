"""
Rate-limit aware retry for Esplora calls.

Public Esplora instances answer HTTP 429 when a client is too chatty.
A rate-limited call is retried with exponential backoff; any other error
is returned to the caller straight away.

Design:
- ``classify_error`` is a pure function mapping an exception to an
  ``ErrorClass``; the retry loop branches only on that value
- Backoff doubles from ``base_delay``: 1, 2, 4, 8, 16, 32 seconds
- At most ``max_attempts`` tries (1 initial + 6 retries by default)
- No jitter and no state shared between calls: the attempt counter
  lives for one logical call only
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from loguru import logger
from pydantic import ConfigDict, Field
from pydantic.dataclasses import dataclass

from esplora_sync.errors import ApiError, EsploraError

T = TypeVar("T")

HTTP_TOO_MANY_REQUESTS = 429

# 1 initial try + 6 retries
DEFAULT_MAX_ATTEMPTS = 7


class ErrorClass(Enum):
    """How the retry loop treats a failed call."""

    RATE_LIMITED = "rate_limited"  # Back off and try again
    FATAL = "fatal"  # Propagate immediately


def classify_error(error: BaseException) -> ErrorClass:
    """Classify a failed remote call."""
    if isinstance(error, ApiError) and error.status == HTTP_TOO_MANY_REQUESTS:
        return ErrorClass.RATE_LIMITED
    return ErrorClass.FATAL


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class RateLimitRetry:
    """
    Retry policy for a single remote call.

    Usage:
        retry = RateLimitRetry()
        txs = await retry(client.scripthash_txs, script, None)

    ``sleep`` is injectable so tests can observe the backoff schedule
    without waiting for it.
    """

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt starts at 0)."""
        return self.base_delay * (1 << attempt)

    async def __call__(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        attempt = 0
        while True:
            try:
                return await fn(*args)
            except EsploraError as e:
                if classify_error(e) is ErrorClass.FATAL:
                    raise
                if attempt + 1 >= self.max_attempts:
                    logger.error(f"Still rate limited after {self.max_attempts} attempts, giving up")
                    raise
                wait_for = self.delay_for(attempt)
                logger.warning(f"Hit 429, waiting for {wait_for:g}s")
                attempt += 1
                await self.sleep(wait_for)
