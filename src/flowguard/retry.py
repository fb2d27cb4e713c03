from __future__ import annotations

import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.retry import retry_base

from flowguard.circuit_breaker import CircuitBreaker, CircuitOpenError
from flowguard.errors import RetryExhaustedError, TransientError
from flowguard.logging import get_logger, log_info, log_warning

T = TypeVar("T")

RetryPredicate = Callable[[BaseException, int], bool]

_logger = get_logger(__name__)
_RETRYABLE_BUILTINS: tuple[type[BaseException], ...] = (
    ConnectionResetError,
    ConnectionRefusedError,
    TimeoutError,
    socket.gaierror,
)


def is_retryable_error(error: BaseException, attempt: int) -> bool:
    """Default retry predicate: match transient failures by kind, never text."""
    _ = attempt
    if isinstance(error, CircuitOpenError | RetryExhaustedError):
        return False
    if isinstance(error, TransientError):
        return error.retryable
    return isinstance(error, _RETRYABLE_BUILTINS)


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry attempt count and backoff boundaries.

    The delay before attempt ``n + 1`` is
    ``min(base_delay * backoff_multiplier ** (n - 1) + uniform(0, jitter), max_delay)``.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Seconds before the first retry, without jitter.
        max_delay: Upper bound in seconds for any single delay.
        backoff_multiplier: Growth factor between consecutive delays.
        jitter: Upper bound in seconds of the uniform random jitter.
        should_retry: Predicate over ``(error, attempt_number)``. Defaults to
            ``is_retryable_error``.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 1.0
    should_retry: RetryPredicate | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    @classmethod
    def from_retries(cls, max_retries: int, **kwargs: object) -> RetryPolicy:
        """Build a policy from a retry count (attempts = retries + 1)."""
        return cls(max_attempts=max_retries + 1, **kwargs)  # type: ignore[arg-type]

    def predicate(self) -> RetryPredicate:
        return is_retryable_error if self.should_retry is None else self.should_retry


class _RetryIfPredicate(retry_base):
    """Adapt an ``(error, attempt)`` predicate to tenacity's retry strategy."""

    def __init__(self, predicate: RetryPredicate) -> None:
        self._predicate = predicate

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        error = outcome.exception()
        if not isinstance(error, Exception) or isinstance(error, CircuitOpenError):
            return False
        return self._predicate(error, retry_state.attempt_number)


def build_exponential_jitter_retrying(
    *,
    retry: retry_base,
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with exponential jitter backoff."""
    options: dict[str, object] = {
        "retry": retry,
        "wait": wait_exponential_jitter(
            multiplier=policy.base_delay,
            max=policy.max_delay,
            exp_base=policy.backoff_multiplier,
            jitter=policy.jitter,
        ),
        "stop": stop_after_attempt(policy.max_attempts),
        "reraise": reraise,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)  # type: ignore[arg-type]


def _build_before_sleep_logger(
    context: str | None,
) -> Callable[[RetryCallState], None]:
    def _log_before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = None if outcome is None else outcome.exception()
        delay = 0.0 if retry_state.next_action is None else retry_state.next_action.sleep
        log_info(
            _logger,
            "retry_scheduled",
            context=context,
            attempt=retry_state.attempt_number,
            delay_seconds=round(delay, 3),
            error_type=None if error is None else error.__class__.__name__,
        )

    return _log_before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    context: str | None = None,
    breaker: CircuitBreaker | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """Invoke ``operation`` until it succeeds or retrying stops.

    Before every attempt after the first, ``breaker`` (when given) is consulted
    and an open circuit stops retrying with ``CircuitOpenError``. Backoff waits
    use ``asyncio.sleep`` unless ``sleep`` is injected, so cancelling the
    calling task abandons the wait.

    Raises:
        CircuitOpenError: When ``breaker`` opened between attempts.
        RetryExhaustedError: When the last error was not retryable or attempts
            ran out. The final error is chained as ``__cause__``.
    """
    policy = RetryPolicy() if policy is None else policy
    attempts = 0

    async def _attempt() -> T:
        nonlocal attempts
        if attempts > 0 and breaker is not None:
            breaker.raise_if_open()
        attempts += 1
        return await operation()

    retrying = build_exponential_jitter_retrying(
        retry=_RetryIfPredicate(policy.predicate()),
        policy=policy,
        sleep=sleep,
        before_sleep=_build_before_sleep_logger(context),
    )
    try:
        return await retrying(_attempt)
    except CircuitOpenError:
        raise
    except Exception as exc:
        log_warning(
            _logger,
            "retry_exhausted",
            context=context,
            attempts=attempts,
            error_type=exc.__class__.__name__,
        )
        raise RetryExhaustedError(
            attempts=attempts,
            last_error=exc,
            context=context,
        ) from exc
