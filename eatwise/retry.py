"""
Retry with exponential backoff for transport-level failures.

Only transport failures belong here: the caller wraps the network call itself,
never the parsing of its result, so malformed model output is not retried.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_AFTER_PADDING = 0.5  # seconds added on top of a server-provided hint


def status_code_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by an SDK/HTTP error, if any."""
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def retry_after_of(error: BaseException) -> Optional[float]:
    """Server retry-after hint in seconds, from an attribute or response headers."""
    hint = getattr(error, "retry_after", None)
    if isinstance(hint, (int, float)) and not isinstance(hint, bool):
        return float(hint)

    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        if headers.get("retry-after-ms") is not None:
            return float(headers["retry-after-ms"]) / 1000.0
        if headers.get("retry-after") is not None:
            return float(headers["retry-after"])
    except (TypeError, ValueError):
        return None
    return None


def is_retryable(error: BaseException) -> bool:
    """
    Default retry predicate.

    429 and 5xx are retried, other 4xx are not. Errors without a status
    (timeouts, connection resets, unknown shapes) are retried.
    """
    status = status_code_of(error)
    if status is None:
        return True
    if status == 429 or status >= 500:
        return True
    return not (400 <= status < 500)


def compute_wait(attempt: int, delay: float, backoff: float, error: BaseException) -> float:
    """Backoff for failed attempt ``attempt`` (0-based), stretched to honour a retry-after hint."""
    wait = delay * (backoff ** attempt)
    hint = retry_after_of(error)
    if hint is not None:
        wait = max(wait, hint + RETRY_AFTER_PADDING)
    return wait


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    retry_on: Optional[Callable[[BaseException], bool]] = None,
    label: str = "call",
) -> T:
    """
    Run ``operation`` up to ``retries`` times.

    After failed attempt n (0-based) waits ``delay * backoff**n`` seconds, or
    the server's retry-after hint plus padding when that is longer. Raises the
    last error once attempts are exhausted, or at once if ``retry_on`` rejects it.
    """
    should_retry = retry_on or is_retryable
    attempts = max(1, retries)
    last_error: Optional[BaseException] = None

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if attempt == attempts - 1 or not should_retry(e):
                break

            wait = compute_wait(attempt, delay, backoff, e)
            logger.warning(
                f"[RETRY] {label} attempt {attempt + 1}/{attempts} failed "
                f"({type(e).__name__}: {e}); retrying in {wait:.1f}s"
            )
            await asyncio.sleep(wait)

    assert last_error is not None
    logger.error(f"[RETRY] {label} giving up: {type(last_error).__name__}: {last_error}")
    raise last_error
