"""
Exponential backoff retry logic for payment provider calls.

Retries retryable ProviderErrors (429, 5xx, transport failures, timeouts)
with exponential backoff. Permanent failures are raised immediately.
Every attempt is bounded by a timeout; an attempt that times out leaves the
payment state unknown until a webhook or reconciliation confirms it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from paygate.models.enums import ErrorCode
from paygate.providers.errors import ProviderError, RateLimitError

logger = logging.getLogger("paygate.retry")

T = TypeVar("T")

MAX_RETRIES = 3
BASE_DELAY = 0.5
MAX_DELAY = 8.0


async def with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_delay: float = MAX_DELAY,
    timeout: Optional[float] = None,
    normalize_error: Optional[Callable[[BaseException], ProviderError]] = None,
    **kwargs: Any,
) -> T:
    """
    Execute an async function with exponential backoff on retryable errors.

    Args:
        func: Async callable to execute.
        max_retries: Maximum number of retry attempts after the first call.
        base_delay: First backoff delay in seconds.
        max_delay: Upper bound of any single backoff.
        timeout: Per-attempt deadline in seconds, None for no deadline.
        normalize_error: Maps any other exception to a ProviderError, usually
            the adapter's own normalize_error. Without it they propagate as-is.

    Returns:
        The result of the function call.

    Raises:
        ProviderError: On permanent failure or exhausted retries.
    """
    delay = base_delay
    last_error: Optional[ProviderError] = None

    for attempt in range(max_retries + 1):
        try:
            if timeout is None:
                return await func(*args, **kwargs)
            return await asyncio.wait_for(func(*args, **kwargs), timeout)
        except asyncio.TimeoutError as e:
            last_error = ProviderError(
                f"Provider call timed out after {timeout}s",
                code=ErrorCode.TIMEOUT,
                retryable=True,
                status_code=504,
            )
            last_error.__cause__ = e
        except ProviderError as e:
            last_error = e
            if not e.retryable:
                raise
        except Exception as e:
            if normalize_error is None:
                raise
            last_error = normalize_error(e)
            last_error.__cause__ = e
            if not last_error.retryable:
                raise last_error

        if attempt < max_retries:
            sleep_for = min(delay, max_delay)
            if isinstance(last_error, RateLimitError) and last_error.retry_after:
                sleep_for = min(last_error.retry_after, max_delay)

            logger.warning(
                "Retryable error on attempt %d/%d: %s (%s), sleeping %.1fs",
                attempt + 1,
                max_retries + 1,
                last_error.message,
                last_error.code.value,
                sleep_for,
            )
            await asyncio.sleep(sleep_for)
            delay = min(delay * 2, max_delay)

    logger.error("Exhausted %d retries for provider call: %s", max_retries, last_error)
    raise last_error or ProviderError("Unknown error after retries")
