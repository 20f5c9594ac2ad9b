import asyncio
import errno
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar, Union

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from domain.errors import TerminalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# patched in tests
sleep = asyncio.sleep

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
RETRYABLE_ERRNO = {errno.ECONNRESET, errno.ECONNREFUSED, errno.ETIMEDOUT, errno.EHOSTUNREACH}
RETRYABLE_PHRASES = ("timeout", "timed out", "rate limit", "quota", "connection", "network")


def _status_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, TerminalError):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, ResponseHandlingException)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    status = _status_of(exc)
    if status is not None:
        return status in RETRYABLE_STATUS
    if isinstance(exc, OSError) and exc.errno in RETRYABLE_ERRNO:
        return True
    # getaddrinfo failures (ENOTFOUND)
    if isinstance(exc, OSError) and "name or service not known" in str(exc).lower():
        return True
    message = str(exc).lower()
    return any(phrase in message for phrase in RETRYABLE_PHRASES)


def backoff_delay(attempt: int, base_delay: float, max_delay: float, backoff_multiplier: float) -> float:
    return min(base_delay * backoff_multiplier ** (attempt - 1), max_delay)


async def execute_with_retry(
    operation: Callable[[], Union[Awaitable[T], T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    Retryable failures are retried after an exponential delay of
    ``min(base_delay * backoff_multiplier ** (attempt - 1), max_delay)``
    seconds. Terminal failures, and the last failure once attempts are used
    up, are re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        logger.debug("Executing %s (attempt %d/%d)", operation_name, attempt, max_attempts)
        try:
            result: Any = operation()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            retryable = is_retryable_error(exc)
            logger.warning(
                "%s failed on attempt %d/%d (retryable=%s): %s",
                operation_name, attempt, max_attempts, retryable, exc,
            )
            if not retryable:
                logger.error("%s failed with non-retryable error", operation_name)
                raise
            if attempt == max_attempts:
                logger.error("%s failed after %d attempts", operation_name, max_attempts)
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, backoff_multiplier)
            logger.info("Retrying %s in %.2fs", operation_name, delay)
            await sleep(delay)
            continue

        if attempt > 1:
            logger.info("%s succeeded on attempt %d", operation_name, attempt)
        return result

    raise RuntimeError("Unexpected retry exhaustion")
