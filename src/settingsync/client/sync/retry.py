"""Retry logic with linear backoff for network-level failures.

This module provides:
- retry_with_backoff: Retry a call on network errors, waiting attempt x base_delay
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds

# Transport failures that indicate connectivity issues (DNS, refused, reset).
# httpx.TimeoutException is a TransportError too and is not retried.
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.ProxyError,
)


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    retryable_exceptions: tuple[type[Exception], ...] = NETWORK_EXCEPTIONS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute a function, retrying on network errors with linear backoff.

    The function is attempted at most ``1 + max_retries`` times. Before
    retry ``n`` (1-based) the call waits ``n * base_delay`` seconds.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds.
        retryable_exceptions: Exception types that trigger a retry.
        sleep: Sleep function (injectable for tests).

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail.
    """
    attempt = 0
    while True:
        try:
            return func()
        except retryable_exceptions as e:
            if attempt >= max_retries:
                logger.error(f"All {max_retries} retries failed: {e}")
                raise

            attempt += 1
            delay = attempt * base_delay
            logger.warning(
                f"Attempt {attempt}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            sleep(delay)
