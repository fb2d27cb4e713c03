"""Sliding-window admission control keyed by client identifier.

A denial is a regular outcome (``RateLimitDecision.allowed is False``), never an
exception. Memory use is bounded: each identifier keeps at most
``max_requests_per_identifier`` timestamps, which also caps admissions per
window when a configured limit is larger. The store keeps at most
``max_entries`` identifiers (oldest-inserted evicted first), and a periodic
sweep drops identifiers with no recent requests.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterator, Mapping
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType

from flowguard.logging import get_logger, log_info, log_warning

_logger = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitConfig:
    """Logical rate limit: at most ``limit`` requests per ``window`` seconds."""

    limit: int
    window: float = DEFAULT_WINDOW_SECONDS

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window <= 0:
            raise ValueError("window must be > 0")


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check.

    Attributes:
        allowed: Whether the request is admitted.
        limit: Configured request limit for the window.
        remaining: Requests still admissible in the current window.
        reset: Epoch seconds at which the oldest counted request leaves the
            window.
    """

    allowed: bool
    limit: int
    remaining: int
    reset: float

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset, UTC)


class UserRole(StrEnum):
    """Caller tiers with their own request allowances."""

    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


RATE_LIMIT_PRESETS: Mapping[str, RateLimitConfig] = MappingProxyType(
    {
        "strict": RateLimitConfig(limit=10),
        "moderate": RateLimitConfig(limit=30),
        "lenient": RateLimitConfig(limit=60),
    }
)

TIERED_RATE_LIMITS: Mapping[UserRole, RateLimitConfig] = MappingProxyType(
    {
        UserRole.ANONYMOUS: RateLimitConfig(limit=30),
        UserRole.AUTHENTICATED: RateLimitConfig(limit=60),
        UserRole.PREMIUM: RateLimitConfig(limit=120),
        UserRole.ENTERPRISE: RateLimitConfig(limit=300),
    }
)


def _drop_before(timestamps: deque[float], cutoff: float) -> None:
    while timestamps and timestamps[0] < cutoff:
        timestamps.popleft()


class RateLimitStore:
    """Bounded mapping of identifier to its ordered request timestamps.

    Identifiers keep their insertion position when updated, so eviction at
    capacity removes the identifiers that were first seen longest ago.
    """

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        max_requests_per_identifier: int = 1_000,
        eviction_fraction: float = 0.1,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if max_requests_per_identifier < 1:
            raise ValueError("max_requests_per_identifier must be >= 1")
        if not 0 < eviction_fraction <= 1:
            raise ValueError("eviction_fraction must be in (0, 1]")
        self.max_entries = max_entries
        self.max_requests_per_identifier = max_requests_per_identifier
        self._eviction_count = max(int(max_entries * eviction_fraction), 1)
        self._entries: dict[str, deque[float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._entries

    def items(self) -> Iterator[tuple[str, deque[float]]]:
        return iter(list(self._entries.items()))

    def get(self, identifier: str) -> deque[float] | None:
        return self._entries.get(identifier)

    def create(self, identifier: str) -> tuple[deque[float], int]:
        """Insert an empty entry, evicting the oldest identifiers at capacity.

        Returns:
            The new timestamp sequence and the number of identifiers evicted.
        """
        evicted = 0
        if len(self._entries) >= self.max_entries:
            oldest = list(itertools.islice(self._entries, self._eviction_count))
            for key in oldest:
                del self._entries[key]
            evicted = len(oldest)
        timestamps: deque[float] = deque(maxlen=self.max_requests_per_identifier)
        self._entries[identifier] = timestamps
        return timestamps, evicted

    def remove(self, identifier: str) -> None:
        self._entries.pop(identifier, None)

    def clear(self) -> None:
        self._entries.clear()

    def prune(self, cutoff: float) -> int:
        """Drop timestamps older than ``cutoff`` and empty identifiers.

        Returns:
            Number of identifiers removed.
        """
        removed = 0
        for identifier, timestamps in self.items():
            _drop_before(timestamps, cutoff)
            if not timestamps:
                del self._entries[identifier]
                removed += 1
        return removed


class RateLimiter:
    """Sliding-window rate limiter over a ``RateLimitStore``."""

    def __init__(
        self,
        store: RateLimitStore | None = None,
        *,
        cleanup_window: float = 3600.0,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Create a limiter.

        Args:
            store: Backing store. Defaults to a store with default bounds.
            cleanup_window: Retention in seconds used by ``sweep``. Must cover
                the longest window any caller checks against.
            now_fn: Clock returning epoch seconds.
        """
        if cleanup_window <= 0:
            raise ValueError("cleanup_window must be > 0")
        self.store = RateLimitStore() if store is None else store
        self.cleanup_window = cleanup_window
        self._now_fn = now_fn

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitDecision:
        """Count one request from ``identifier`` if it fits in the window."""
        now = self._now_fn()
        timestamps = self.store.get(identifier)
        if timestamps is None:
            timestamps, evicted = self.store.create(identifier)
            if evicted:
                log_warning(
                    _logger,
                    "rate_limit_store_evicted",
                    evicted=evicted,
                    max_entries=self.store.max_entries,
                )

        _drop_before(timestamps, now - config.window)
        # The per-identifier cap is a hard ceiling on admissions per window.
        ceiling = min(config.limit, self.store.max_requests_per_identifier)
        if len(timestamps) >= ceiling:
            log_info(
                _logger,
                "rate_limit_denied",
                identifier=identifier,
                limit=config.limit,
                window_seconds=config.window,
            )
            return RateLimitDecision(
                allowed=False,
                limit=config.limit,
                remaining=0,
                reset=timestamps[0] + config.window,
            )

        timestamps.append(now)
        return RateLimitDecision(
            allowed=True,
            limit=config.limit,
            remaining=ceiling - len(timestamps),
            reset=timestamps[0] + config.window,
        )

    def sweep(self) -> int:
        """Drop identifiers without requests inside the cleanup window."""
        removed = self.store.prune(self._now_fn() - self.cleanup_window)
        log_info(
            _logger,
            "rate_limit_sweep_completed",
            removed=removed,
            remaining=len(self.store),
        )
        return removed

    def stats(
        self,
        *,
        window: float = DEFAULT_WINDOW_SECONDS,
        top_n: int = 10,
    ) -> dict[str, object]:
        """Summarize recent traffic for operators."""
        cutoff = self._now_fn() - window
        total = 0
        expired = 0
        counts: list[tuple[str, int]] = []
        for identifier, timestamps in self.store.items():
            recent = sum(1 for stamp in timestamps if stamp >= cutoff)
            total += recent
            if recent == 0:
                expired += 1
            counts.append((identifier, recent))
        counts.sort(key=lambda item: item[1], reverse=True)
        return {
            "total_entries": total,
            "expired_entries": expired,
            "tracked_identifiers": len(self.store),
            "top_identifiers": [
                {"identifier": identifier, "count": count}
                for identifier, count in counts[:top_n]
            ],
        }

    def clear(self) -> None:
        self.store.clear()


class RateLimitSweeper:
    """Background task that periodically sweeps a ``RateLimiter``."""

    def __init__(
        self,
        limiter: RateLimiter,
        *,
        interval: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._limiter = limiter
        self._interval = interval
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping. Calling it while running is a no-op."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="rate_limit_sweeper")

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval)
            self._limiter.sweep()
