"""Core circuit breaker implementation."""

import sys
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import ParamSpec, TypeVar

from flowguard.circuit_breaker.exceptions import CircuitOpenError
from flowguard.circuit_breaker.metrics import BreakerListener
from flowguard.circuit_breaker.state import BreakerSnapshot, CircuitState
from flowguard.errors import RetryExhaustedError
from flowguard.logging import get_logger, log_warning

T = TypeVar("T")
P = ParamSpec("P")

_logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _monotonic() -> float:
    return time.monotonic()


class _ProbeGate:
    """Allow at most one in-flight half-open probe per breaker instance."""

    def __init__(self) -> None:
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())
        self._thread_lock: threading.Lock | None = None
        if not self._gil_enabled:
            self._thread_lock = threading.Lock()
        self._held = False

    def try_acquire(self) -> bool:
        if self._thread_lock is None:
            if self._held:
                return False
            self._held = True
            return True

        with self._thread_lock:
            if self._held:
                return False
            self._held = True
            return True

    def release(self) -> None:
        if self._thread_lock is None:
            self._held = False
            return
        with self._thread_lock:
            self._held = False


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Failures inside the monitoring window that open the
            circuit.
        reset_timeout: Seconds to wait while ``OPEN`` before allowing a probe.
        monitoring_period: Width in seconds of the sliding failure window.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    monitoring_period: float = 10.0
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")
        if self.monitoring_period <= 0:
            raise ValueError("monitoring_period must be > 0")


@dataclass(slots=True)
class _BreakerState:
    status: CircuitState
    failure_times: deque[float]
    next_attempt_time: float | None = None
    last_failure_at: datetime | None = None


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    Failures are counted in a sliding window of ``monitoring_period`` seconds.
    Reaching ``failure_threshold`` inside the window opens the circuit for
    ``reset_timeout`` seconds, after which exactly one probe call is let
    through. A successful probe closes the circuit; a failed probe re-opens it
    with a fresh timeout.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Unique breaker name used for logging and metrics.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._probe_gate = _ProbeGate()
        self._state = self._fresh_state()

    def _fresh_state(self) -> _BreakerState:
        return _BreakerState(
            status=CircuitState.CLOSED,
            failure_times=deque(maxlen=self.config.failure_threshold),
        )

    @property
    def state(self) -> CircuitState:
        """Effective state; an expired ``OPEN`` circuit reads as ``HALF_OPEN``."""
        state = self._state
        if (
            state.status == CircuitState.OPEN
            and state.next_attempt_time is not None
            and _monotonic() >= state.next_attempt_time
        ):
            return CircuitState.HALF_OPEN
        return state.status

    @property
    def failure_count(self) -> int:
        self._prune(_monotonic())
        return len(self._state.failure_times)

    def snapshot(self) -> BreakerSnapshot:
        """Return a read-only view of the breaker state."""
        now = _monotonic()
        self._prune(now)
        return BreakerSnapshot(
            name=self.name,
            state=self.state,
            failure_count=len(self._state.failure_times),
            last_failure_at=self._state.last_failure_at,
            next_attempt_at=self._next_attempt_at(now),
        )

    def status(self) -> dict[str, object]:
        return self.snapshot().as_status()

    def raise_if_open(self) -> None:
        """Raise ``CircuitOpenError`` while the circuit rejects calls."""
        if self.state != CircuitState.OPEN:
            return
        next_attempt_time = self._state.next_attempt_time or _monotonic()
        raise self._rejection(max(next_attempt_time - _monotonic(), 0.0))

    def reset(self) -> None:
        """Force the breaker back to a healthy ``CLOSED`` state."""
        self._state = self._fresh_state()

    def _prune(self, now: float) -> None:
        failure_times = self._state.failure_times
        cutoff = now - self.config.monitoring_period
        while failure_times and failure_times[0] < cutoff:
            failure_times.popleft()

    def _next_attempt_at(self, now: float) -> datetime | None:
        next_attempt_time = self._state.next_attempt_time
        if self._state.status == CircuitState.CLOSED or next_attempt_time is None:
            return None
        return _utcnow() + timedelta(seconds=max(next_attempt_time - now, 0.0))

    def _open(self, now: float) -> None:
        self._state.status = CircuitState.OPEN
        self._state.next_attempt_time = now + self.config.reset_timeout

    def _record_failure(self, exc: Exception, now: float) -> None:
        weight = exc.attempts if isinstance(exc, RetryExhaustedError) else 1
        self._prune(now)
        for _ in range(max(weight, 1)):
            self._state.failure_times.append(now)
        self._state.last_failure_at = _utcnow()

    def _rejection(self, retry_after: float) -> CircuitOpenError:
        return CircuitOpenError(
            self.name,
            retry_after=retry_after,
            resume_at=_utcnow() + timedelta(seconds=retry_after),
        )

    async def _emit(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                await getattr(listener, hook)(self.name, *args)
            except Exception as exc:
                log_warning(
                    _logger,
                    "circuit_breaker_listener_failed",
                    breaker=self.name,
                    hook=hook,
                    error_type=exc.__class__.__name__,
                )

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
                ``func`` is not invoked.
            Exception: The original exception from ``func`` when it is attempted
                and fails.
        """
        now = _monotonic()
        self._prune(now)
        is_probe = False

        if self._state.status != CircuitState.CLOSED:
            next_attempt_time = self._state.next_attempt_time or now
            retry_after = next_attempt_time - now
            if retry_after > 0:
                await self._emit("on_call_rejected")
                raise self._rejection(retry_after)

            if not self._probe_gate.try_acquire():
                await self._emit("on_call_rejected")
                raise self._rejection(0.0)

            is_probe = True
            self._state.status = CircuitState.HALF_OPEN

        start = _monotonic()
        try:
            result = await func(*args, **kwargs)
        except (CircuitOpenError, *self.config.excluded_exceptions):
            if is_probe:
                self._state.status = CircuitState.OPEN
            raise
        except self.config.expected_exceptions as exc:
            now = _monotonic()
            elapsed = max(now - start, 0.0)
            self._record_failure(exc, now)
            await self._emit("on_call_failed", exc, elapsed)

            if is_probe:
                self._open(now)
                await self._emit(
                    "on_state_change", CircuitState.OPEN, CircuitState.HALF_OPEN
                )
                await self._emit(
                    "on_state_change", CircuitState.HALF_OPEN, CircuitState.OPEN
                )
            elif (
                self._state.status == CircuitState.CLOSED
                and len(self._state.failure_times) >= self.config.failure_threshold
            ):
                self._open(now)
                await self._emit(
                    "on_state_change", CircuitState.CLOSED, CircuitState.OPEN
                )
            raise
        except BaseException:
            if is_probe:
                self._state.status = CircuitState.OPEN
            raise
        else:
            elapsed = max(_monotonic() - start, 0.0)

            if is_probe:
                self.reset()
                await self._emit(
                    "on_state_change", CircuitState.OPEN, CircuitState.HALF_OPEN
                )
                await self._emit(
                    "on_state_change", CircuitState.HALF_OPEN, CircuitState.CLOSED
                )
            elif self._state.status == CircuitState.CLOSED:
                self._state.failure_times.clear()
                self._state.last_failure_at = None

            await self._emit("on_call_succeeded", elapsed)
            return result
        finally:
            if is_probe:
                self._probe_gate.release()

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a zero-argument operation through the breaker."""
        return await self.call(operation)
