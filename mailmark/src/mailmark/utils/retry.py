"""Bounded retry with exponential backoff for network operations.

What:
  Provide :func:`exponential_backoff` to compute delays and :func:`with_retry`
  to run a callable until it succeeds or the attempt budget is spent.

Why:
  IMAP servers drop connections and time out under load. A run should ride
  out short hiccups, but a dead server must surface as an error after a known
  number of attempts instead of hanging the archive job.

How:
  ``with_retry`` calls the operation, catches only the exception types listed
  in ``retry_on``, logs each failed attempt, sleeps for the backoff delay and
  tries again. When the budget is exhausted the last exception is re-raised
  unchanged.

Interfaces:
  :func:`exponential_backoff`, :func:`with_retry`, :data:`RETRYABLE_ERRORS`.

Invariants & Safety:
  - ``max_retries`` counts total attempts, so ``max_retries=3`` calls the
    operation at most three times.
  - Delays never exceed the configured cap.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from imapclient.exceptions import IMAPClientAbortError

from .logging import JsonLogger


T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (OSError, IMAPClientAbortError)
"""Transport failures worth retrying. Authentication errors are not included."""


def exponential_backoff(
    *,
    base: float = 1.0,
    factor: float = 2.0,
    cap: float = 30.0,
    failures: int = 0,
) -> float:
    """Return ``base * factor**failures`` clamped to ``[base, cap]``.

    Args:
      base: Delay after the first failure.
      factor: Multiplicative growth factor.
      cap: Maximum delay permitted.
      failures: Number of failures already seen, zero-indexed.

    Returns:
      Delay in seconds.
    """

    delay = base * (factor ** max(failures, 0))
    if delay < base:
        delay = base
    if delay > cap:
        delay = cap
    return delay


def with_retry(
    operation: str,
    fn: Callable[[], T],
    *,
    settings: Any,
    logger: Optional[JsonLogger] = None,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``settings.max_retries`` attempts fail.

    What:
      Runs a zero-argument callable under the retry policy described by a
      :class:`~mailmark.config.schema.NetworkSettings` instance.

    Why:
      Connect, login and fetch calls share the same policy; wrapping them in a
      helper keeps the IMAP session code free of loop bookkeeping.

    How:
      Counts attempts, logs ``retry_scheduled`` with the computed delay and
      re-raises the last exception once the budget is spent.

    Args:
      operation: Label used in log entries (``"connect"``, ``"fetch"``...).
      fn: Operation to run.
      settings: Object exposing ``max_retries``, ``initial_retry_delay`` and
        ``max_retry_delay``.
      logger: Optional structured logger.
      retry_on: Exception types that trigger another attempt.
      sleep: Injectable sleep function, replaced in tests.

    Returns:
      Whatever ``fn`` returns.

    Raises:
      Exception: The last exception raised by ``fn`` after exhaustion, or any
        exception not listed in ``retry_on`` immediately.
    """

    attempts = max(int(settings.max_retries), 1)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= attempts:
                if logger is not None:
                    logger.error(
                        "retry_exhausted",
                        operation=operation,
                        attempts=attempt,
                        error=str(exc),
                    )
                raise
            delay = exponential_backoff(
                base=settings.initial_retry_delay,
                cap=settings.max_retry_delay,
                failures=attempt - 1,
            )
            if logger is not None:
                logger.warning(
                    "retry_scheduled",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=attempts,
                    delay_seconds=delay,
                    error=str(exc),
                )
            sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
