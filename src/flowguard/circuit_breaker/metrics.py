"""Observability hooks for circuit breakers."""

from typing import Protocol

from flowguard.circuit_breaker.state import CircuitState
from flowguard.logging import StructuredLogger, get_logger, log_info, log_warning


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        ``on_state_change(OPEN → HALF_OPEN)`` is emitted once per probe, after
        the probe settles and immediately before the transition it caused.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener(BreakerListener):
    """Listener that writes breaker transitions and rejections to structlog."""

    def __init__(self, *, logger: StructuredLogger | None = None) -> None:
        self._logger = get_logger(__name__) if logger is None else logger

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Log every state transition."""
        log_warning(
            self._logger,
            "circuit_breaker_state_changed",
            breaker=name,
            old_state=old.value,
            new_state=new.value,
        )

    async def on_call_rejected(self, name: str) -> None:
        """Log a short-circuited call."""
        log_info(self._logger, "circuit_breaker_call_rejected", breaker=name)

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """No-op for this listener."""
        _ = (name, elapsed)

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """No-op for this listener."""
        _ = (name, exc, elapsed)
