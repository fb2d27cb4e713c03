from __future__ import annotations

import asyncio

import pytest

import flowguard.rate_limit as rate_limit_mod
from flowguard.rate_limit import (
    RATE_LIMIT_PRESETS,
    TIERED_RATE_LIMITS,
    RateLimitConfig,
    RateLimiter,
    RateLimitStore,
    RateLimitSweeper,
    UserRole,
)
from tests.flowguard.support.fakes import FakeClock, FakeLogger

pytestmark = pytest.mark.asyncio


def _limiter(clock: FakeClock, **store_kwargs: object) -> RateLimiter:
    store = RateLimitStore(**store_kwargs)  # type: ignore[arg-type]
    return RateLimiter(store, cleanup_window=3600.0, now_fn=clock.time)


async def test_allows_up_to_limit_then_denies(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    config = RateLimitConfig(limit=10, window=60.0)

    decisions = []
    for _ in range(10):
        decisions.append(limiter.check("10.0.0.1", config))
        fake_clock.advance(1.0)
    denied = limiter.check("10.0.0.1", config)

    assert all(decision.allowed for decision in decisions)
    assert [decision.remaining for decision in decisions] == list(range(9, -1, -1))
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.limit == 10
    assert denied.reset == 1_000.0 + 60.0


async def test_denied_requests_are_not_counted(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    config = RateLimitConfig(limit=2, window=10.0)

    limiter.check("client", config)
    limiter.check("client", config)
    for _ in range(5):
        assert limiter.check("client", config).allowed is False

    timestamps = limiter.store.get("client")
    assert timestamps is not None
    assert len(timestamps) == 2


async def test_window_elapse_restores_capacity(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    config = RateLimitConfig(limit=3, window=60.0)

    for _ in range(3):
        limiter.check("client", config)
    assert limiter.check("client", config).allowed is False

    fake_clock.advance(60.5)
    decision = limiter.check("client", config)

    assert decision.allowed is True
    assert decision.remaining == 2
    assert decision.reset == fake_clock.time() + 60.0


async def test_sliding_window_frees_one_slot_at_a_time(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    config = RateLimitConfig(limit=2, window=10.0)

    limiter.check("client", config)
    fake_clock.advance(5.0)
    limiter.check("client", config)
    fake_clock.advance(5.5)

    first = limiter.check("client", config)
    second = limiter.check("client", config)

    assert first.allowed is True
    assert first.reset == 1_005.0 + 10.0
    assert second.allowed is False
    assert second.reset == 1_005.0 + 10.0
    assert second.reset_at.timestamp() == second.reset


async def test_identifiers_are_counted_independently(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    config = RateLimitConfig(limit=1)

    assert limiter.check("a", config).allowed is True
    assert limiter.check("a", config).allowed is False
    assert limiter.check("b", config).allowed is True


async def test_store_evicts_oldest_identifiers_at_capacity(
    monkeypatch: pytest.MonkeyPatch,
    fake_clock: FakeClock,
    fake_logger: FakeLogger,
) -> None:
    monkeypatch.setattr(rate_limit_mod, "_logger", fake_logger)
    limiter = _limiter(fake_clock, max_entries=10, eviction_fraction=0.2)
    config = RateLimitConfig(limit=5)

    for index in range(10):
        limiter.check(f"client-{index}", config)
    limiter.check("client-0", config)
    limiter.check("newcomer", config)

    assert len(limiter.store) == 9
    assert "client-0" not in limiter.store
    assert "client-1" not in limiter.store
    assert "client-2" in limiter.store
    assert "newcomer" in limiter.store
    assert fake_logger.events == ["rate_limit_store_evicted"]
    _, _, fields = fake_logger.calls[0]
    assert fields == {"evicted": 2, "max_entries": 10}


async def test_eviction_removes_at_least_one_identifier(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock, max_entries=3, eviction_fraction=0.1)
    config = RateLimitConfig(limit=5)

    for identifier in ("a", "b", "c", "d"):
        limiter.check(identifier, config)

    assert [identifier for identifier, _ in limiter.store.items()] == ["b", "c", "d"]


async def test_per_identifier_cap_bounds_admissions(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock, max_requests_per_identifier=10)
    config = RateLimitConfig(limit=20, window=60.0)

    decisions = [limiter.check("client", config) for _ in range(30)]

    assert sum(decision.allowed for decision in decisions) == 10
    assert all(decision.allowed for decision in decisions[:10])
    assert [decision.remaining for decision in decisions[:10]] == list(range(9, -1, -1))
    assert decisions[10].allowed is False
    assert decisions[10].limit == 20
    assert decisions[10].remaining == 0
    timestamps = limiter.store.get("client")
    assert timestamps is not None
    assert len(timestamps) == 10


async def test_cap_below_limit_still_denies_past_limit(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock, max_requests_per_identifier=20)
    config = RateLimitConfig(limit=30, window=60.0)

    allowed = sum(limiter.check("client", config).allowed for _ in range(100))

    assert allowed == 20
    fake_clock.advance(60.5)
    assert limiter.check("client", config).allowed is True


async def test_sweep_drops_idle_identifiers(fake_clock: FakeClock) -> None:
    limiter = RateLimiter(cleanup_window=120.0, now_fn=fake_clock.time)
    config = RateLimitConfig(limit=5)

    limiter.check("idle", config)
    fake_clock.advance(100.0)
    limiter.check("active", config)
    fake_clock.advance(30.0)

    assert limiter.sweep() == 1
    assert "idle" not in limiter.store
    assert "active" in limiter.store


async def test_stats_summarize_recent_traffic(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    config = RateLimitConfig(limit=100)

    limiter.check("stale", config)
    fake_clock.advance(120.0)
    for _ in range(3):
        limiter.check("busy", config)
    limiter.check("quiet", config)

    stats = limiter.stats(window=60.0, top_n=2)

    assert stats["total_entries"] == 4
    assert stats["expired_entries"] == 1
    assert stats["tracked_identifiers"] == 3
    assert stats["top_identifiers"] == [
        {"identifier": "busy", "count": 3},
        {"identifier": "quiet", "count": 1},
    ]


async def test_clear_forgets_everything(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    config = RateLimitConfig(limit=1)
    limiter.check("client", config)

    limiter.clear()

    assert len(limiter.store) == 0
    assert limiter.check("client", config).allowed is True


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"limit": 0}, "limit must be >= 1"),
        ({"limit": 1, "window": 0.0}, "window must be > 0"),
    ],
)
async def test_rate_limit_config_validation(
    kwargs: dict[str, float], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        RateLimitConfig(**kwargs)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"max_entries": 0}, "max_entries"),
        ({"max_requests_per_identifier": 0}, "max_requests_per_identifier"),
        ({"eviction_fraction": 0.0}, "eviction_fraction"),
        ({"eviction_fraction": 1.5}, "eviction_fraction"),
    ],
)
async def test_rate_limit_store_validation(
    kwargs: dict[str, float], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        RateLimitStore(**kwargs)  # type: ignore[arg-type]


async def test_presets_and_tiers() -> None:
    assert RATE_LIMIT_PRESETS["strict"].limit == 10
    assert RATE_LIMIT_PRESETS["moderate"].limit == 30
    assert RATE_LIMIT_PRESETS["lenient"].limit == 60
    assert TIERED_RATE_LIMITS[UserRole.ANONYMOUS].limit == 30
    assert TIERED_RATE_LIMITS[UserRole.ENTERPRISE].limit == 300
    assert all(config.window == 60.0 for config in TIERED_RATE_LIMITS.values())


async def test_sweeper_runs_periodically_and_stops(fake_clock: FakeClock) -> None:
    limiter = RateLimiter(cleanup_window=10.0, now_fn=fake_clock.time)
    limiter.check("idle", RateLimitConfig(limit=1))
    fake_clock.advance(20.0)
    swept = asyncio.Event()

    async def _sleep(delay: float) -> None:
        if swept.is_set():
            await asyncio.sleep(3600)
        swept.set()

    sweeper = RateLimitSweeper(limiter, interval=5.0, sleep=_sleep)
    sweeper.start()
    sweeper.start()
    assert sweeper.running is True

    await asyncio.wait_for(swept.wait(), timeout=1.0)
    await asyncio.sleep(0)
    assert "idle" not in limiter.store

    await sweeper.stop()
    await sweeper.stop()
    assert sweeper.running is False


async def test_sweeper_interval_must_be_positive() -> None:
    with pytest.raises(ValueError, match="interval must be > 0"):
        RateLimitSweeper(RateLimiter(), interval=0.0)
