"""Named registry of circuit breakers."""

from collections.abc import Sequence

from flowguard.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from flowguard.circuit_breaker.metrics import BreakerListener


class CircuitBreakerRegistry:
    """Create breakers lazily per name and keep them for the registry lifetime."""

    def __init__(self, *, listeners: Sequence[BreakerListener] | None = None) -> None:
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._breakers: dict[str, CircuitBreaker] = {}

    def __len__(self) -> int:
        return len(self._breakers)

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def get_or_create(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it with ``config`` if new.

        ``config`` only applies on creation; an existing breaker keeps its own.
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config=config, listeners=self._listeners)
            self._breakers[name] = breaker
        return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        return self._breakers.get(name)

    def remove(self, name: str) -> None:
        self._breakers.pop(name, None)

    def names(self) -> list[str]:
        return list(self._breakers)

    def statuses(self) -> dict[str, dict[str, object]]:
        """Return the operator-facing status of every breaker by name."""
        return {name: breaker.status() for name, breaker in self._breakers.items()}

    def reset(self, name: str) -> None:
        breaker = self._breakers.get(name)
        if breaker is not None:
            breaker.reset()

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
