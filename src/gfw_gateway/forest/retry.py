"""Retry policy for idempotent upstream reads."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from gfw_gateway.config import RETRY_BASE_DELAY_SECONDS, RETRY_MAX_ATTEMPTS, RETRY_MAX_DELAY_SECONDS
from gfw_gateway.forest.errors import ErrorCode, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Surfaced to the caller as-is, retrying would hide them
NON_RETRIED_CODES = frozenset({ErrorCode.RATE_LIMIT, ErrorCode.TIMEOUT})


class RetryPolicy:
    """Exponential backoff with jitter.

    Only retriable ``UpstreamError``s are retried; anything else propagates
    on the first failure.
    """

    def __init__(
        self,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        max_delay: float = RETRY_MAX_DELAY_SECONDS,
        exponential_base: float = 2.0,
        jitter: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.sleep = sleep

    def should_retry(self, error: Exception) -> bool:
        return isinstance(error, UpstreamError) and error.retriable and error.code not in NON_RETRIED_CODES

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            jitter_amount = delay * 0.1
            delay += random.uniform(-jitter_amount, jitter_amount)
        return max(0.0, delay)

    async def run(self, operation: Callable[[], Awaitable[T]], name: Optional[str] = None) -> T:
        """Await ``operation`` until it succeeds or the policy gives up.

        Raises:
            The last error raised by ``operation``
        """
        label = name or getattr(operation, "__name__", "operation")
        attempt = 1
        while True:
            try:
                return await operation()
            except UpstreamError as e:
                if attempt >= self.max_attempts or not self.should_retry(e):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{label} failed on attempt {attempt}/{self.max_attempts} ({e.code.value}), "
                    f"retrying in {delay:.2f}s"
                )
                await self.sleep(delay)
                attempt += 1

