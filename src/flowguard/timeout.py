"""Race an async operation against a deadline."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import TypeVar

from flowguard.errors import OperationTimeoutError
from flowguard.logging import get_logger, log_warning

T = TypeVar("T")

_logger = get_logger(__name__)


def _on_abandoned_done(task: asyncio.Task[object]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        log_warning(
            _logger,
            "abandoned_operation_failed",
            task=task.get_name(),
            error_type=error.__class__.__name__,
            error=str(error),
        )


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    *,
    cancel_on_timeout: bool = True,
    context: str | None = None,
) -> T:
    """Await ``operation()`` for at most ``timeout`` seconds.

    Args:
        operation: Zero-argument callable returning the awaitable to race.
        timeout: Deadline in seconds. Must be positive.
        cancel_on_timeout: Cancel the operation when the deadline wins. When
            ``False`` the operation keeps running in the background and its
            eventual result is discarded.
        context: Optional resilience context name attached to the error.

    Raises:
        ValueError: When ``timeout`` is not positive. The operation is not
            started.
        OperationTimeoutError: When the deadline elapses first.
    """
    if timeout <= 0:
        raise ValueError("timeout must be > 0")

    task = asyncio.ensure_future(operation())
    try:
        if cancel_on_timeout:
            return await asyncio.wait_for(task, timeout=timeout)
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except TimeoutError as exc:
        if task.done() and not task.cancelled() and task.exception() is exc:
            raise
        if not task.done():
            if cancel_on_timeout:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
            else:
                task.add_done_callback(_on_abandoned_done)
        log_warning(
            _logger,
            "operation_timed_out",
            timeout=timeout,
            context=context,
            cancelled=cancel_on_timeout,
        )
        raise OperationTimeoutError(timeout, context=context) from exc
