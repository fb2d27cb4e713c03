"""Framework-agnostic async circuit breaker.

This package implements the circuit breaker pattern from *Release It!* with a
sliding failure window.

Key behavior notes:
  - Breaker state lives in process memory only and is owned by the breaker
    instance; a ``CircuitBreakerRegistry`` hands out instances by name.
  - Half-open probing is intentionally conservative: at most one in-flight
    probe call is permitted per ``CircuitBreaker`` instance.
  - If an excluded exception (or a nested ``CircuitOpenError``) is raised during
    a probe, the probe is treated as if it never happened: the circuit remains
    ``OPEN`` and a later call may attempt a fresh probe.
"""

from flowguard.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from flowguard.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from flowguard.circuit_breaker.metrics import BreakerListener, LoggingBreakerListener
from flowguard.circuit_breaker.registry import CircuitBreakerRegistry
from flowguard.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "BreakerListener",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "LoggingBreakerListener",
]
