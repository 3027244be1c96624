"""Rate-limit aware HTTP helper for the ClickFunnels API.

Retries transport errors with exponential backoff (1s, 2s, 4s, ...) and waits
for the server's ``Retry-After`` hint on HTTP 429. Any other response,
including 4xx/5xx, is returned to the caller, which owns status
interpretation.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60.0


def parse_retry_after(value: str | None, default: float = DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """Read a Retry-After header given in seconds.

    HTTP-date values and garbage fall back to ``default``.
    """
    if not value:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    return max(seconds, 0.0)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _is_rate_limited(response: httpx.Response) -> bool:
    return response.status_code == 429


def _rate_limit_aware_wait(
    base_delay: float, max_retry_after: float
) -> Callable[[RetryCallState], float]:
    """Wait ``Retry-After`` after a 429, exponential backoff after a transport error."""
    backoff = wait_exponential(multiplier=base_delay, min=0)

    def wait(retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            response = outcome.result()
            return min(parse_retry_after(response.headers.get("Retry-After")), max_retry_after)
        return backoff(retry_state)

    return wait


def _log_retry(method: str, url: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        if outcome is not None and outcome.failed:
            logger.warning(
                "%s %s transport error on attempt %d, retrying in %.1fs: %s",
                method,
                url,
                retry_state.attempt_number,
                delay,
                outcome.exception(),
            )
        else:
            logger.warning(
                "Rate limited on %s %s, waiting %.1fs before retry", method, url, delay
            )

    return before_sleep


def _give_up(method: str, url: str) -> Callable[[RetryCallState], httpx.Response]:
    """Return the last 429 as is, or re-raise the last transport error."""

    def callback(retry_state: RetryCallState) -> httpx.Response:
        outcome = retry_state.outcome
        if outcome.failed:
            logger.error(
                "%s %s failed after %d attempts: %s",
                method,
                url,
                retry_state.attempt_number,
                outcome.exception(),
            )
        return outcome.result()

    return callback


async def fetch_with_rate_limiting(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying on rate limits and transport failures.

    Args:
        client: Shared async client.
        method: HTTP method.
        url: Absolute URL or path relative to the client's base URL.
        max_retries: Total number of attempts.
        base_delay: Backoff before the second attempt; doubles per attempt.
        max_retry_after: Upper bound on a server-requested wait.
        **kwargs: Passed through to ``client.request``.

    Returns:
        The last response received. A 429 is returned if it persists through
        every attempt.

    Raises:
        httpx.TransportError: If the final attempt fails at transport level.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=_rate_limit_aware_wait(base_delay, max_retry_after),
        retry=retry_if_exception_type(httpx.TransportError) | retry_if_result(_is_rate_limited),
        before=lambda rs: logger.debug("%s %s (attempt %d)", method, url, rs.attempt_number),
        before_sleep=_log_retry(method, url),
        retry_error_callback=_give_up(method, url),
        sleep=_sleep,
    )
    return await retrying(client.request, method, url, **kwargs)
