"""Backoff retries for discovery requests.

Sitemap and robots.txt requests go to the same CDN edges as the site itself.
A reset connection or a 503 from an overloaded edge should cost one short
wait, not a whole discovery source.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from emailsleuth.core.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class TransientStatusError(Exception):
    """An HTTP status worth asking again for."""

    def __init__(self, url: str, status: int):
        super().__init__(f"HTTP {status} from {url}")
        self.url = url
        self.status = status


def raise_for_transient(url: str, status: int) -> None:
    if status in TRANSIENT_STATUSES:
        raise TransientStatusError(url, status)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry ``retry_number`` (0 for the first retry)."""
        delay = min(self.backoff_base * 2**retry_number, self.backoff_max)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


async def retry_with_backoff[T](
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Await ``fn()`` until it succeeds or the attempts run out.

    Only ``config.retryable_exceptions`` are retried; anything else escapes on
    the first attempt. The last retryable error is re-raised when the attempts
    are exhausted.

    Example:
        ```python
        async def attempt() -> bytes:
            async with session.get(url) as response:
                raise_for_transient(url, response.status)
                return await response.read()

        body = await retry_with_backoff(attempt, RetryConfig(max_attempts=2), f"robots:{url}")
        ```
    """
    config = config or RetryConfig()
    attempt = 1
    while True:
        try:
            return await fn()
        except config.retryable_exceptions as e:
            if attempt >= config.max_attempts:
                logger.bind(operation=operation_name, attempts=attempt, error=_describe(e)).warning(
                    "retry_exhausted"
                )
                raise
            delay = config.delay_for(attempt - 1)
            logger.bind(
                operation=operation_name,
                attempt=attempt,
                delay_seconds=round(delay, 2),
                error=_describe(e),
            ).debug("retry_scheduled")
            await asyncio.sleep(delay)
            attempt += 1
