"""Shared error types for flowguard."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

RETRYABLE_HTTP_STATUSES = frozenset({408, 429, 500, 502, 503, 504, 507, 509})


class ErrorKind(StrEnum):
    """Closed set of transient failure kinds produced by network layers."""

    CONNECTION_RESET = "connection_reset"
    CONNECTION_REFUSED = "connection_refused"
    TIMED_OUT = "timed_out"
    DNS_FAILURE = "dns_failure"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    HTTP_STATUS = "http_status"


class TransientError(RuntimeError):
    """Dependency failure tagged with a structured kind.

    Attributes:
        kind: What went wrong on the wire.
        status_code: HTTP status for ``ErrorKind.HTTP_STATUS`` failures.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self.kind == ErrorKind.HTTP_STATUS:
            return self.status_code in RETRYABLE_HTTP_STATUSES
        return True


class ResilienceError(Exception):
    """Base exception for failures produced by the resilience layer."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, context: str | None = None) -> None:
        self.context = context
        super().__init__(message)

    def details(self) -> dict[str, object]:
        return {}

    def to_dict(self) -> dict[str, object]:
        """Serialize into the JSON error body shape."""
        payload: dict[str, object] = {
            "error": str(self),
            "code": self.code,
            "timestamp": datetime.now(UTC).isoformat(),
            "retryable": self.retryable,
        }
        if self.context is not None:
            payload["context"] = self.context
        payload.update(self.details())
        return payload


class OperationTimeoutError(ResilienceError, TimeoutError):
    """Raised when an operation does not settle before its deadline."""

    code = "TIMEOUT_ERROR"
    status_code = 504
    retryable = True

    def __init__(self, timeout: float, *, context: str | None = None) -> None:
        self.timeout = timeout
        super().__init__(f"operation timed out after {timeout:g}s", context=context)

    def details(self) -> dict[str, object]:
        return {"timeout": self.timeout}


class RetryExhaustedError(ResilienceError):
    """Raised when retrying stops without a successful attempt.

    Attributes:
        attempts: Number of attempts made, including the first one.
        last_error: The error raised by the final attempt.
    """

    code = "RETRY_EXHAUSTED"
    status_code = 502
    retryable = True

    def __init__(
        self,
        *,
        attempts: int,
        last_error: BaseException,
        context: str | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        target = f"operation '{context}'" if context else "operation"
        super().__init__(
            f"{target} failed after {attempts} attempts: {last_error}",
            context=context,
        )

    def details(self) -> dict[str, object]:
        return {"attempts": self.attempts}
