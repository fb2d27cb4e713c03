"""Circuit breaker exceptions.

A rejected call raises ``CircuitOpenError``; failures of the protected call
itself propagate unchanged.
"""

from datetime import datetime

from flowguard.errors import ResilienceError


class CircuitBreakerError(ResilienceError):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted.
        resume_at: Wall-clock instant at which a probe may be attempted.
    """

    code = "CIRCUIT_BREAKER_OPEN"
    status_code = 503
    retryable = True

    def __init__(
        self,
        breaker_name: str,
        retry_after: float,
        resume_at: datetime,
    ) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
            resume_at: Instant the next probe window opens.
        """
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        self.resume_at = resume_at
        super().__init__(
            f"circuit_open: {breaker_name} retry_after={retry_after:g}s "
            f"resume_at={resume_at.isoformat()}",
            context=breaker_name,
        )

    def details(self) -> dict[str, object]:
        return {
            "service": self.breaker_name,
            "retryAfter": self.retry_after,
            "resumeAt": self.resume_at.isoformat(),
        }
