"""HTTP responses for admission denials and resilience failures."""

from __future__ import annotations

import math
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime

from starlette.responses import JSONResponse

from flowguard import headers
from flowguard.circuit_breaker import CircuitOpenError
from flowguard.errors import ResilienceError
from flowguard.rate_limit import RateLimitDecision

RATE_LIMIT_ERROR_CODE = "RATE_LIMIT_EXCEEDED"
RATE_LIMIT_STATUS_CODE = 429
INTERNAL_ERROR_CODE = "INTERNAL_ERROR"
REQUEST_ID_PREFIX = "req_"


def generate_request_id(now_fn: Callable[[], float] = time.time) -> str:
    """Return a new request-correlation identifier."""
    return f"{REQUEST_ID_PREFIX}{int(now_fn() * 1000)}_{secrets.token_hex(5)[:9]}"


def rate_limit_response(
    decision: RateLimitDecision,
    request_id: str | None = None,
    *,
    now_fn: Callable[[], float] = time.time,
) -> JSONResponse:
    """Build the 429 response for a denied admission check."""
    now = now_fn()
    request_id = request_id or generate_request_id(now_fn)
    retry_after = headers.retry_after_seconds(decision.reset, now)
    body = {
        "error": "Too many requests",
        "code": RATE_LIMIT_ERROR_CODE,
        "retryAfter": retry_after,
        "timestamp": datetime.fromtimestamp(now, UTC).isoformat(),
        "requestId": request_id,
        "retryable": True,
    }
    response_headers = headers.error_headers(
        request_id=request_id,
        error_code=RATE_LIMIT_ERROR_CODE,
        retryable=True,
        extra_headers={
            headers.RETRY_AFTER: str(retry_after),
            **headers.rate_limit_headers(decision),
        },
    )
    return JSONResponse(
        body,
        status_code=RATE_LIMIT_STATUS_CODE,
        headers=response_headers,
    )


def error_response(exc: BaseException, request_id: str | None = None) -> JSONResponse:
    """Render an exception as a JSON error response.

    Resilience errors keep their status code, code and detail fields; anything
    else becomes a non-retryable 500.
    """
    request_id = request_id or generate_request_id()
    extra: dict[str, str] = {}
    if isinstance(exc, ResilienceError):
        body = exc.to_dict()
        status_code = exc.status_code
        code = exc.code
        retryable = exc.retryable
        if isinstance(exc, CircuitOpenError):
            extra[headers.RETRY_AFTER] = str(math.ceil(exc.retry_after))
    else:
        code = INTERNAL_ERROR_CODE
        status_code = 500
        retryable = False
        body = {
            "error": "Internal server error",
            "code": code,
            "timestamp": datetime.now(UTC).isoformat(),
            "retryable": retryable,
        }
    body["requestId"] = request_id
    return JSONResponse(
        body,
        status_code=status_code,
        headers=headers.error_headers(
            request_id=request_id,
            error_code=code,
            retryable=retryable,
            extra_headers=extra,
        ),
    )
