"""Derive rate-limit identifiers for inbound HTTP requests."""

from __future__ import annotations

import hashlib
import os
from collections.abc import Mapping
from enum import StrEnum

from starlette.requests import HTTPConnection

FINGERPRINT_PREFIX = "fp:"
_FINGERPRINT_HEADERS = ("user-agent", "accept-language", "accept-encoding")


class TrustedProxy(StrEnum):
    """Edge platforms whose forwarding headers cannot be set by clients."""

    VERCEL = "vercel"
    CLOUDFLARE = "cloudflare"
    NONE = "none"


_TRUSTED_HEADERS: dict[TrustedProxy, str] = {
    TrustedProxy.VERCEL: "x-vercel-forwarded-for",
    TrustedProxy.CLOUDFLARE: "cf-connecting-ip",
}


def detect_trusted_proxy(environ: Mapping[str, str] | None = None) -> TrustedProxy:
    """Infer the hosting edge from platform-set environment variables."""
    environ = os.environ if environ is None else environ
    if environ.get("VERCEL"):
        return TrustedProxy.VERCEL
    if environ.get("CF_WORKER") or environ.get("CLOUDFLARE"):
        return TrustedProxy.CLOUDFLARE
    return TrustedProxy.NONE


def request_fingerprint(headers: Mapping[str, str]) -> str:
    """Hash several request characteristics into a stable identifier."""
    combined = ":".join(headers.get(name, "") for name in _FINGERPRINT_HEADERS)
    digest = hashlib.sha256(combined.encode("utf-8")).hexdigest()
    return f"{FINGERPRINT_PREFIX}{digest[:16]}"


def get_client_identifier(
    connection: HTTPConnection,
    *,
    trusted_proxy: TrustedProxy = TrustedProxy.NONE,
) -> str:
    """Return the identifier a request is rate limited under.

    Only the header written by the configured trusted edge is honored; generic
    headers such as ``X-Forwarded-For`` are client-suppliable and ignored.
    Without a trusted address the request fingerprint is used.
    """
    header = _TRUSTED_HEADERS.get(trusted_proxy)
    if header is not None:
        value = connection.headers.get(header, "")
        address = value.split(",")[0].strip()
        if address:
            return address
    return request_fingerprint(connection.headers)
