from __future__ import annotations

from datetime import datetime

import pytest

from flowguard.errors import (
    RETRYABLE_HTTP_STATUSES,
    ErrorKind,
    OperationTimeoutError,
    ResilienceError,
    RetryExhaustedError,
    TransientError,
)


@pytest.mark.parametrize("status_code", sorted(RETRYABLE_HTTP_STATUSES))
def test_retryable_http_statuses(status_code: int) -> None:
    error = TransientError("upstream", kind=ErrorKind.HTTP_STATUS, status_code=status_code)

    assert error.retryable is True


@pytest.mark.parametrize("status_code", [None, 400, 401, 404, 422, 501])
def test_other_http_statuses_are_not_retryable(status_code: int | None) -> None:
    error = TransientError("upstream", kind=ErrorKind.HTTP_STATUS, status_code=status_code)

    assert error.retryable is False


def test_network_kinds_are_always_retryable() -> None:
    for kind in ErrorKind:
        if kind is ErrorKind.HTTP_STATUS:
            continue
        assert TransientError("net", kind=kind).retryable is True


def test_resilience_error_to_dict() -> None:
    payload = ResilienceError("boom").to_dict()

    assert payload["error"] == "boom"
    assert payload["code"] == "INTERNAL_ERROR"
    assert payload["retryable"] is False
    assert "context" not in payload
    datetime.fromisoformat(str(payload["timestamp"]))


def test_timeout_error_is_a_builtin_timeout() -> None:
    error = OperationTimeoutError(2.5, context="notion")

    assert isinstance(error, TimeoutError)
    assert str(error) == "operation timed out after 2.5s"
    payload = error.to_dict()
    assert payload["code"] == "TIMEOUT_ERROR"
    assert payload["timeout"] == 2.5
    assert payload["context"] == "notion"
    assert payload["retryable"] is True


def test_retry_exhausted_message_and_details() -> None:
    cause = ConnectionResetError("reset by peer")

    error = RetryExhaustedError(attempts=4, last_error=cause, context="github")
    anonymous = RetryExhaustedError(attempts=1, last_error=cause)

    assert str(error) == "operation 'github' failed after 4 attempts: reset by peer"
    assert str(anonymous) == "operation failed after 1 attempts: reset by peer"
    assert error.to_dict()["attempts"] == 4
    assert error.status_code == 502
    assert error.code == "RETRY_EXHAUSTED"
