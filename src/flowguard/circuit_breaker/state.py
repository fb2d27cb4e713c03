"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Effective breaker state. An ``OPEN`` breaker whose reset timeout
            has elapsed reports ``HALF_OPEN``.
        failure_count: Failures recorded inside the monitoring window.
        last_failure_at: Timestamp of the last counted failure, if any.
        next_attempt_at: When an open breaker admits a probe, if open.
    """

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: datetime | None
    next_attempt_at: datetime | None

    def as_status(self) -> dict[str, object]:
        """Render the operator-facing status mapping."""
        status: dict[str, object] = {
            "state": self.state.value,
            "failures": self.failure_count,
        }
        if self.state == CircuitState.OPEN and self.next_attempt_at is not None:
            status["next_attempt_time"] = self.next_attempt_at.isoformat()
        return status
