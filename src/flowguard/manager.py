"""Compose timeout, retry and circuit breaking per named context."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from functools import wraps
from types import MappingProxyType
from typing import ParamSpec, TypeVar

from flowguard.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from flowguard.errors import ResilienceError
from flowguard.retry import RetryPolicy, with_retry
from flowguard.timeout import with_timeout

T = TypeVar("T")
P = ParamSpec("P")

DEFAULT_CONTEXT = "default"


@dataclass(frozen=True)
class ResilienceConfig:
    """Which layers wrap an operation and how each layer behaves.

    Attributes:
        timeout: Per-attempt deadline in seconds, or ``None`` for no deadline.
        retry: Retry policy, or ``None`` to attempt once.
        circuit_breaker: Breaker parameters for the context, or ``None`` to
            skip circuit breaking. Parameters apply when the context's breaker
            is first created.
        cancel_on_timeout: Cancel an attempt whose deadline elapsed instead of
            leaving it running in the background.
    """

    timeout: float | None = None
    retry: RetryPolicy | None = None
    circuit_breaker: CircuitBreakerConfig | None = None
    cancel_on_timeout: bool = True

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0 when provided")


def _service_config(
    *,
    timeout: float,
    max_retries: int,
    base_delay: float,
    max_delay: float,
    failure_threshold: int,
    reset_timeout: float,
) -> ResilienceConfig:
    return ResilienceConfig(
        timeout=timeout,
        retry=RetryPolicy.from_retries(
            max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
        ),
        circuit_breaker=CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
        ),
    )


DEFAULT_SERVICE_CONFIGS: Mapping[str, ResilienceConfig] = MappingProxyType(
    {
        "openai": _service_config(
            timeout=60.0,
            max_retries=3,
            base_delay=1.0,
            max_delay=10.0,
            failure_threshold=5,
            reset_timeout=60.0,
        ),
        "github": _service_config(
            timeout=30.0,
            max_retries=3,
            base_delay=1.0,
            max_delay=5.0,
            failure_threshold=5,
            reset_timeout=30.0,
        ),
        "notion": _service_config(
            timeout=30.0,
            max_retries=3,
            base_delay=1.0,
            max_delay=5.0,
            failure_threshold=5,
            reset_timeout=30.0,
        ),
        "trello": _service_config(
            timeout=15.0,
            max_retries=3,
            base_delay=0.5,
            max_delay=3.0,
            failure_threshold=3,
            reset_timeout=20.0,
        ),
        "supabase": _service_config(
            timeout=10.0,
            max_retries=2,
            base_delay=1.0,
            max_delay=10.0,
            failure_threshold=10,
            reset_timeout=60.0,
        ),
    }
)


def _attach_context(exc: BaseException, context: str) -> None:
    if isinstance(exc, ResilienceError) and exc.context is None:
        exc.context = context
    exc.add_note(f"resilience context: {context}")


class ResilienceManager:
    """Registry of breakers plus the fixed Timeout → Retry → Breaker composition.

    The manager keeps no per-operation state, so unrelated contexts execute
    concurrently without interfering with each other.
    """

    def __init__(
        self,
        *,
        registry: CircuitBreakerRegistry | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Create a manager.

        Args:
            registry: Breaker registry to use. Defaults to a private registry.
            sleep: Backoff sleep forwarded to the retry layer.
        """
        self._registry = CircuitBreakerRegistry() if registry is None else registry
        self._sleep = sleep

    @property
    def registry(self) -> CircuitBreakerRegistry:
        return self._registry

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: ResilienceConfig | None = None,
        context: str = DEFAULT_CONTEXT,
    ) -> T:
        """Run ``operation`` through the layers enabled by ``config``.

        Errors always propagate; the context name is attached to them.
        """
        config = ResilienceConfig() if config is None else config
        breaker = None
        if config.circuit_breaker is not None:
            breaker = self._registry.get_or_create(context, config.circuit_breaker)

        async def _timed() -> T:
            if config.timeout is None:
                return await operation()
            return await with_timeout(
                operation,
                config.timeout,
                cancel_on_timeout=config.cancel_on_timeout,
                context=context,
            )

        composed = _timed
        if config.retry is not None:
            policy = config.retry

            async def _retried() -> T:
                return await with_retry(
                    _timed,
                    policy,
                    context=context,
                    breaker=breaker,
                    sleep=self._sleep,
                )

            composed = _retried

        try:
            if breaker is not None:
                return await breaker.call(composed)
            return await composed()
        except Exception as exc:
            _attach_context(exc, context)
            raise

    def get_circuit_breaker(self, context: str) -> CircuitBreaker | None:
        return self._registry.get(context)

    def circuit_breaker_statuses(self) -> dict[str, dict[str, object]]:
        return self._registry.statuses()

    def reset_circuit_breaker(self, context: str) -> None:
        self._registry.reset(context)

    def reset_all(self) -> None:
        self._registry.reset_all()


def resilient(
    manager: ResilienceManager,
    context: str,
    config: ResilienceConfig | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorate an async callable so every call runs through ``manager``."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await manager.execute(
                lambda: func(*args, **kwargs),
                config,
                context,
            )

        return wrapper

    return decorator
