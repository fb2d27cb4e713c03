from __future__ import annotations

import json
import re
from datetime import UTC, datetime

from starlette.responses import JSONResponse

from flowguard.circuit_breaker import CircuitOpenError
from flowguard.errors import OperationTimeoutError, RetryExhaustedError
from flowguard.rate_limit import RateLimitDecision
from flowguard.responses import (
    RATE_LIMIT_ERROR_CODE,
    error_response,
    generate_request_id,
    rate_limit_response,
)


def _body(response: JSONResponse) -> dict[str, object]:
    return json.loads(bytes(response.body))


def test_generate_request_id_format() -> None:
    request_id = generate_request_id(lambda: 1_700_000_000.5)

    assert re.fullmatch(r"req_1700000000500_[0-9a-f]{9}", request_id)
    assert generate_request_id() != generate_request_id()


def test_rate_limit_response_shape() -> None:
    decision = RateLimitDecision(allowed=False, limit=10, remaining=0, reset=1_060.0)

    response = rate_limit_response(decision, "req_abc", now_fn=lambda: 1_000.5)
    body = _body(response)

    assert response.status_code == 429
    assert body == {
        "error": "Too many requests",
        "code": RATE_LIMIT_ERROR_CODE,
        "retryAfter": 60,
        "timestamp": datetime.fromtimestamp(1_000.5, UTC).isoformat(),
        "requestId": "req_abc",
        "retryable": True,
    }
    assert response.headers["Retry-After"] == "60"
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.headers["X-RateLimit-Reset"] == (
        datetime.fromtimestamp(1_060.0, UTC).isoformat()
    )
    assert response.headers["X-Request-ID"] == "req_abc"
    assert response.headers["X-Error-Code"] == RATE_LIMIT_ERROR_CODE
    assert response.headers["X-Retryable"] == "true"


def test_rate_limit_response_generates_request_id() -> None:
    decision = RateLimitDecision(allowed=False, limit=1, remaining=0, reset=0.0)

    response = rate_limit_response(decision)

    assert str(_body(response)["requestId"]).startswith("req_")
    assert _body(response)["retryAfter"] == 0


def test_error_response_for_open_circuit() -> None:
    exc = CircuitOpenError(
        "openai",
        retry_after=12.3,
        resume_at=datetime(2026, 1, 1, tzinfo=UTC),
    )

    response = error_response(exc, "req_1")
    body = _body(response)

    assert response.status_code == 503
    assert body["code"] == "CIRCUIT_BREAKER_OPEN"
    assert body["service"] == "openai"
    assert body["retryAfter"] == 12.3
    assert body["resumeAt"] == "2026-01-01T00:00:00+00:00"
    assert body["context"] == "openai"
    assert body["retryable"] is True
    assert body["requestId"] == "req_1"
    assert response.headers["Retry-After"] == "13"
    assert response.headers["X-Error-Code"] == "CIRCUIT_BREAKER_OPEN"


def test_error_response_for_timeout_and_exhaustion() -> None:
    timeout = error_response(OperationTimeoutError(5.0, context="github"), "req_2")
    exhausted = error_response(
        RetryExhaustedError(attempts=3, last_error=RuntimeError("x")), "req_3"
    )

    assert timeout.status_code == 504
    assert _body(timeout)["timeout"] == 5.0
    assert _body(timeout)["context"] == "github"
    assert exhausted.status_code == 502
    assert _body(exhausted)["attempts"] == 3
    assert "Retry-After" not in exhausted.headers


def test_error_response_hides_unexpected_errors() -> None:
    response = error_response(KeyError("secret-table"), "req_4")
    body = _body(response)

    assert response.status_code == 500
    assert body["error"] == "Internal server error"
    assert body["code"] == "INTERNAL_ERROR"
    assert body["retryable"] is False
    assert "secret-table" not in json.dumps(body)
    assert response.headers["X-Retryable"] == "false"
