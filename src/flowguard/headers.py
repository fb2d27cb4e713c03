from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime

from flowguard.rate_limit import RateLimitDecision

MAX_HEADER_VALUE_LENGTH = 1024

RETRY_AFTER = "Retry-After"
RATE_LIMIT_LIMIT = "X-RateLimit-Limit"
RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
RATE_LIMIT_RESET = "X-RateLimit-Reset"
REQUEST_ID = "X-Request-ID"
ERROR_CODE = "X-Error-Code"
RETRYABLE = "X-Retryable"

RESERVED_ERROR_HEADERS = frozenset({REQUEST_ID, ERROR_CODE, RETRYABLE})


def truncate_header_value(value: str, *, limit: int = MAX_HEADER_VALUE_LENGTH) -> str:
    """Truncate a header value to the configured header size limit."""
    return value[:limit]


def retry_after_seconds(reset: float, now: float) -> int:
    """Whole seconds a client should wait until ``reset`` (epoch seconds)."""
    return max(math.ceil(reset - now), 0)


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """Return the standard rate-limit headers for one decision."""
    return {
        RATE_LIMIT_LIMIT: str(decision.limit),
        RATE_LIMIT_REMAINING: str(decision.remaining),
        RATE_LIMIT_RESET: datetime.fromtimestamp(decision.reset, UTC).isoformat(),
    }


def error_headers(
    *,
    request_id: str,
    error_code: str,
    retryable: bool,
    extra_headers: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return correlation and classification headers for an error response.

    Extra headers never override the reserved correlation headers.
    """
    headers = {
        REQUEST_ID: truncate_header_value(request_id),
        ERROR_CODE: truncate_header_value(error_code),
        RETRYABLE: "true" if retryable else "false",
    }
    if extra_headers:
        for key, value in extra_headers.items():
            if key in RESERVED_ERROR_HEADERS:
                continue
            headers[key] = truncate_header_value(value)
    return headers
