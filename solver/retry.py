"""Async retry helper with exponential backoff."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from .exceptions import RetryExhausted


async def exp_retry(
    operation: Callable[[], Awaitable[Any]],
    max_retries: int = 5,
    base_delay: float = 5.0,
    max_delay: float = 300.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Run ``operation`` until it succeeds or ``max_retries`` retries fail.

    The first call is not a retry, so the operation runs at most
    ``max_retries + 1`` times. The delay before retry ``n`` (1-based) is
    ``base_delay * 2 ** (n - 1)`` capped at ``max_delay``.

    Raises:
        RetryExhausted: wrapping the last error once attempts are used up.
    """
    logger = logger or logging.getLogger(__name__)
    max_retries = max(0, int(max_retries))

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except retry_on as e:
            if attempt > max_retries:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise RetryExhausted(attempt, e) from e
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_retries + 1}): {e}; retrying in {delay:.1f}s"
            )
            await sleep(delay)
