"""Local retry/backoff for external calls made inside a single job attempt.

This is separate from the queue-level attempt ceiling: it absorbs transient
failures (timeouts, connection resets, 429, 5xx) before a stage decides to
degrade or to let the error fail the whole job attempt.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from coachbot.errors import UpstreamError

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {408, 409, 425, 429, 500, 502, 503, 504}


class ErrorCategory(str, Enum):
    RETRYABLE_TIMEOUT = "retryable_timeout"
    RETRYABLE_NETWORK = "retryable_network"
    RETRYABLE_RATE_LIMIT = "retryable_rate_limit"
    RETRYABLE_SERVER_ERROR = "retryable_server_error"
    NON_RETRYABLE_CLIENT = "non_retryable_client"
    NON_RETRYABLE_VALIDATION = "non_retryable_validation"
    NON_RETRYABLE_UNKNOWN = "non_retryable_unknown"


RETRYABLE_CATEGORIES = {
    ErrorCategory.RETRYABLE_TIMEOUT,
    ErrorCategory.RETRYABLE_NETWORK,
    ErrorCategory.RETRYABLE_RATE_LIMIT,
    ErrorCategory.RETRYABLE_SERVER_ERROR,
}


def is_timeout_error(exc: BaseException) -> bool:
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException))


def classify_error(exc: BaseException) -> ErrorCategory:
    if is_timeout_error(exc):
        return ErrorCategory.RETRYABLE_TIMEOUT
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return ErrorCategory.RETRYABLE_NETWORK
    if isinstance(exc, UpstreamError):
        status = exc.status_code
        if status == 429:
            return ErrorCategory.RETRYABLE_RATE_LIMIT
        if status in RETRYABLE_STATUS_CODES:
            return ErrorCategory.RETRYABLE_SERVER_ERROR
        if status is not None and status >= 500:
            return ErrorCategory.RETRYABLE_SERVER_ERROR
        if status is not None and 400 <= status < 500:
            return ErrorCategory.NON_RETRYABLE_CLIENT
        return ErrorCategory.NON_RETRYABLE_UNKNOWN
    if isinstance(exc, (ValueError, TypeError)):
        return ErrorCategory.NON_RETRYABLE_VALIDATION
    return ErrorCategory.NON_RETRYABLE_UNKNOWN


def is_retryable_error(exc: BaseException) -> bool:
    return classify_error(exc) in RETRYABLE_CATEGORIES


def backoff_delay(
    attempt: int,
    base_delay_seconds: float,
    max_delay_seconds: float,
    exc: Optional[BaseException] = None,
) -> float:
    delay = base_delay_seconds * (2 ** (attempt - 1))
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        delay = max(delay, float(retry_after))
    return min(delay, max_delay_seconds)


async def with_timeout(operation: Callable[[], Awaitable[T]], timeout_seconds: float) -> T:
    return await asyncio.wait_for(operation(), timeout=timeout_seconds)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay_seconds: float,
    max_delay_seconds: float = 10.0,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``attempts`` times.

    Only errors accepted by ``should_retry`` consume retry budget; anything
    else is raised immediately. Cancellation propagates out of ``sleep``.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if attempt >= attempts or not should_retry(exc):
                raise
            wait_seconds = backoff_delay(attempt, base_delay_seconds, max_delay_seconds, exc)
            if on_retry is not None:
                on_retry(exc, attempt, wait_seconds)
            await sleep(wait_seconds)
