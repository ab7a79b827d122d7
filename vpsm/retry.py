"""Bounded retry with exponential backoff and full jitter."""

import asyncio
import logging
import random
from dataclasses import dataclass

import httpx

from vpsm.domain.errors import OperationCancelled, RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """How many times to try and how long to back off between attempts (seconds)."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0


def is_retryable(exc: BaseException) -> bool:
    """Default predicate: retry network timeouts and transient transport errors.

    Cancellation and rate limiting are never retried.
    """
    if isinstance(exc, (OperationCancelled, asyncio.CancelledError, RateLimitedError)):
        return False
    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return True
    if isinstance(exc, (ConnectionError, httpx.TransportError)):
        return True
    return False


def backoff_delay(base: float, max_delay: float, attempt: int) -> float:
    """Jittered delay before the retry following *attempt* (1-based).

    The ceiling is ``base * 2**(attempt-1)`` capped at *max_delay*; the
    returned delay is uniform in ``[0, ceiling]``.
    """
    if base <= 0:
        return 0.0
    attempt = max(attempt, 1)
    delay = base * (2 ** (attempt - 1))
    if max_delay > 0:
        delay = min(delay, max_delay)
    return random.uniform(0, delay)


async def _sleep(delay: float, cancel: asyncio.Event | None):
    if cancel is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except TimeoutError:
        return
    raise OperationCancelled()


async def retry(fn, config: RetryConfig | None = None, should_retry=None, cancel: asyncio.Event | None = None):
    """Await ``fn()`` up to ``config.max_attempts`` times.

    Args:
        fn: zero-argument callable returning an awaitable.
        config: attempt budget and backoff bounds.
        should_retry: predicate deciding whether a failure is worth another
            attempt (default: :func:`is_retryable`).
        cancel: optional event; once set, no further attempt is made and
            :class:`OperationCancelled` is raised.

    Returns:
        The result of the first successful call.

    Raises:
        The last exception when the predicate says stop or the budget is spent.
    """
    config = config or RetryConfig()
    should_retry = should_retry or is_retryable
    max_attempts = max(config.max_attempts, 1)

    attempt = 1
    while True:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled()
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_attempts or not should_retry(exc):
                raise
            delay = backoff_delay(config.base_delay, config.max_delay, attempt)
            logger.debug(f"Attempt {attempt}/{max_attempts} failed ({exc}); retrying in {delay:.2f}s")
        if delay > 0:
            await _sleep(delay, cancel)
        attempt += 1
