"""
Retry Logic for Debrid-Link Blackhole
Retries transient network failures with exponential backoff and jitter.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional, Callable, Awaitable, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another attempt: the request may not even have reached the server.
TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.5  # Random factor 0.5-1.5x


class RetryHandler:
    """
    Handle retries with exponential backoff.
    Only errors accepted by ``should_retry`` (transient network errors by
    default) are retried; anything else propagates on the first failure.
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
        should_retry: Optional[Callable[[Exception], bool]] = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails with a non-retryable
        error, or runs out of attempts; the last error is re-raised.
        """
        max_attempts = max(1, max_attempts or self.config.max_attempts)
        label = operation_id or getattr(operation, "__name__", "operation")

        for attempt in range(1, max_attempts + 1):
            try:
                result = await operation()
            except Exception as e:
                if not self.is_retryable(e, should_retry):
                    raise
                if attempt >= max_attempts:
                    logger.error(f"{label} failed after {attempt} attempts: {e}")
                    raise

                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"{label} failed (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
                continue

            if attempt > 1:
                logger.info(f"{label} succeeded on attempt {attempt}")
            return result

    @staticmethod
    def is_retryable(
        error: Exception,
        custom_check: Optional[Callable[[Exception], bool]] = None,
    ) -> bool:
        if custom_check:
            return custom_check(error)
        return isinstance(error, TRANSIENT_ERRORS)

    def calculate_delay(self, attempt: int) -> float:
        """Backoff for ``attempt`` (1-based), capped at max_delay, then jittered."""
        delay = min(
            self.config.initial_delay * self.config.exponential_base ** (attempt - 1),
            self.config.max_delay,
        )
        if self.config.jitter:
            delay *= 1.0 + (random.random() * 2 - 1) * self.config.jitter_factor
        return max(0.0, delay)
