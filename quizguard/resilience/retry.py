"""Bounded retry with deterministic exponential backoff.

``with_retry`` re-invokes a failing async operation while its error is
classified as transient, sleeping ``base_delay * backoff_multiplier **
(attempt - 1)`` seconds (capped at ``max_delay``) between attempts.  No
jitter is added, so the delay sequence is fully predictable.

The original exception object is always re-raised on exhaustion or on a
non-retryable failure; nothing here wraps or translates errors.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from pydantic import BaseModel, Field

from quizguard.core.classifier import classify_error
from quizguard.core.config import Settings
from quizguard.core.errors import ClassifiedError, ErrorCode
from quizguard.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[object]]

DEFAULT_API_RETRY_ON: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.RATE_LIMIT,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.NETWORK_ERROR,
        ErrorCode.TIMEOUT,
    }
)


def is_retryable(error: BaseException) -> bool:
    """Default retry condition: only classified transient errors are retried."""
    return isinstance(error, ClassifiedError) and error.retryable


class RetryOptions(BaseModel):
    """Retry policy for a single ``with_retry`` call.

    Attributes:
        max_attempts:       Total attempts including the first.
        base_delay:         Delay in seconds after the first failure.
        backoff_multiplier: Growth factor applied per attempt.
        max_delay:          Upper bound on any single delay, in seconds.
        retry_condition:    Overrides ``is_retryable`` when given.
        on_retry:           Observer called as ``on_retry(attempt, error)``
                            before each backoff sleep.
    """

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    retry_condition: Callable[[BaseException], bool] | None = None
    on_retry: Callable[[int, BaseException], None] | None = None

    def delay_for(self, attempt: int) -> float:
        """Return the backoff after the *attempt*-th (1-based) failure."""
        return min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)

    def should_retry(self, error: BaseException) -> bool:
        condition = self.retry_condition or is_retryable
        return bool(condition(error))


class APIRetryOptions(RetryOptions):
    """``RetryOptions`` whose retry condition is a set of error codes."""

    retry_on: frozenset[ErrorCode] = Field(default=DEFAULT_API_RETRY_ON)

    def should_retry(self, error: BaseException) -> bool:
        return isinstance(error, ClassifiedError) and error.code in self.retry_on


O = TypeVar("O", bound=RetryOptions)


def retry_options(settings: Settings, options_cls: type[O] = RetryOptions) -> O:
    """Build retry options of *options_cls* from the Settings retry defaults."""
    return options_cls(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY_SECONDS,
        backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        max_delay=settings.RETRY_MAX_DELAY_SECONDS,
    )


def _notify(options: RetryOptions, attempt: int, error: BaseException) -> None:
    if options.on_retry is None:
        return
    try:
        options.on_retry(attempt, error)
    except Exception:
        logger.exception("on_retry observer raised on attempt %d; continuing", attempt)


async def with_retry(
    operation: Operation[T],
    options: RetryOptions | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run *operation*, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine function to invoke.
        options:   Retry policy; defaults to ``RetryOptions()``.
        sleep:     Awaitable delay primitive (injectable for tests).

    Returns:
        The result of the first successful attempt.

    Raises:
        The exception from the final attempt, or from the first attempt whose
        error the retry condition rejects.  The exception object is the one
        the operation raised.
    """
    opts = options if options is not None else RetryOptions()

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= opts.max_attempts or not opts.should_retry(exc):
                raise

            delay = opts.delay_for(attempt)
            kind = exc.code.value if isinstance(exc, ClassifiedError) else type(exc).__name__
            logger.warning(
                "%s on attempt %d/%d, retrying in %.1fs",
                kind,
                attempt,
                opts.max_attempts,
                delay,
            )
            _notify(opts, attempt, exc)

        await sleep(delay)
        attempt += 1


async def with_api_retry(
    operation: Operation[T],
    options: APIRetryOptions | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """``with_retry`` that retries only the error codes in ``options.retry_on``.

    Defaults to retrying RATE_LIMIT, SERVICE_UNAVAILABLE, NETWORK_ERROR and
    TIMEOUT.
    """
    opts = options if options is not None else APIRetryOptions()
    return await with_retry(operation, opts, sleep=sleep)


async def with_circuit_breaker_and_retry(
    operation: Operation[T],
    breaker: CircuitBreaker,
    options: RetryOptions | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run a whole retry sequence as one call through *breaker*."""
    return await breaker.execute(lambda: with_retry(operation, options, sleep=sleep))


async def retry_batch(
    operations: Iterable[Operation[T]],
    options: RetryOptions | None = None,
    *,
    concurrency: int = 3,
    fail_fast: bool = False,
    sleep: Sleep = asyncio.sleep,
) -> list[T | ClassifiedError]:
    """Run *operations* under ``with_retry``, *concurrency* at a time.

    Results come back in input order.  A failed operation yields its
    ``ClassifiedError`` in place unless *fail_fast* is set, in which case
    the first failure is raised once the other operations of its chunk have
    been cancelled; later chunks never start.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    ops = list(operations)
    results: list[T | ClassifiedError] = []

    async def _run(op: Operation[T]) -> T | ClassifiedError:
        try:
            return await with_retry(op, options, sleep=sleep)
        except Exception as exc:
            error = classify_error(exc)
            if fail_fast:
                if error is exc:
                    raise
                raise error from exc
            return error

    for start in range(0, len(ops), concurrency):
        chunk = ops[start : start + concurrency]
        if not fail_fast:
            results.extend(await asyncio.gather(*(_run(op) for op in chunk)))
            continue

        # TaskGroup cancels and awaits the rest of the chunk on first failure
        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(_run(op)) for op in chunk]
        except ExceptionGroup as group:
            raise group.exceptions[0]
        results.extend(task.result() for task in tasks)

    return results
