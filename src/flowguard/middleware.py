"""Starlette middleware that gates handlers behind the rate limiter."""

from __future__ import annotations

from collections.abc import Callable, Collection
from functools import partial

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from flowguard import headers
from flowguard.client_identity import TrustedProxy, get_client_identifier
from flowguard.logging import bound_request_id
from flowguard.rate_limit import RateLimitConfig, RateLimiter
from flowguard.responses import generate_request_id, rate_limit_response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Run an admission check before any handler executes.

    Denied requests receive ``rate_limit_response``; admitted responses carry
    the rate-limit headers. The request id is bound into the structlog context
    for the duration of the request and stored on ``request.state``.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        limiter: RateLimiter,
        config: RateLimitConfig,
        trusted_proxy: TrustedProxy = TrustedProxy.NONE,
        identifier_fn: Callable[[Request], str] | None = None,
        exempt_paths: Collection[str] = (),
    ) -> None:
        super().__init__(app)
        self._limiter = limiter
        self._config = config
        self._identifier_fn = identifier_fn or partial(
            get_client_identifier, trusted_proxy=trusted_proxy
        )
        self._exempt_paths = frozenset(exempt_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        request_id = headers.truncate_header_value(
            request.headers.get(headers.REQUEST_ID) or generate_request_id()
        )
        request.state.request_id = request_id
        with bound_request_id(request_id):
            decision = self._limiter.check(self._identifier_fn(request), self._config)
            request.state.rate_limit = decision
            if not decision.allowed:
                return rate_limit_response(decision, request_id)
            response = await call_next(request)

        response.headers.update(headers.rate_limit_headers(decision))
        response.headers[headers.REQUEST_ID] = request_id
        return response
