"""Bounded exponential-backoff retry for remote calls."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

import httpx

from backend.exceptions import PermanentApiError, RetryableTransportError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 2.0  # seconds
RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as transient (retry) or permanent (fail fast)."""
    if isinstance(exc, RetryableTransportError):
        return True
    if isinstance(exc, PermanentApiError):
        return False
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, (ConnectionError, TimeoutError))


def backoff_delay(attempt: int, initial_delay: float = DEFAULT_INITIAL_DELAY) -> float:
    """Return the wait before retry number ``attempt + 1`` (0-based attempt)."""
    return initial_delay * (2**attempt)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``operation`` with bounded exponential-backoff retry.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        label: Operation name used in log messages.
        max_attempts: Total attempts including the first one.
        initial_delay: Delay in seconds before the first retry; doubles after.
        sleep: Awaitable sleep function (injectable for tests).

    Returns:
        Result of the first successful attempt.

    Raises:
        The error itself when it is not retryable, or the last error once
        all attempts are exhausted.
    """
    if max_attempts < 1:
        msg = "max_attempts must be at least 1"
        raise ValueError(msg)

    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                logger.error("[%s] Non-retryable error: %s", label, exc)
                raise
            if attempt == max_attempts - 1:
                logger.error(
                    "[%s] Failed after %d attempts. Last error: %s", label, max_attempts, exc
                )
                raise
            delay = backoff_delay(attempt, initial_delay)
            logger.warning(
                "[%s] Retryable error (attempt %d/%d). Retrying in %.1fs: %s",
                label,
                attempt + 1,
                max_attempts,
                delay,
                exc,
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises.
    raise RuntimeError(f"[{label}] Unexpected retry loop exit")
