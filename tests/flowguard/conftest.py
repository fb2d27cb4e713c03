from __future__ import annotations

import pytest

import flowguard.circuit_breaker.breaker as breaker_mod
from tests.flowguard.support.fakes import FakeClock, FakeLogger, RecordingSleep


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a manually advanced clock per test."""
    return FakeClock()


@pytest.fixture
def breaker_clock(
    fake_clock: FakeClock, monkeypatch: pytest.MonkeyPatch
) -> FakeClock:
    """Drive circuit breaker time from the fake clock."""
    monkeypatch.setattr(breaker_mod, "_monotonic", fake_clock.monotonic)
    monkeypatch.setattr(breaker_mod, "_utcnow", fake_clock.utcnow)
    return fake_clock


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Provide an instant sleep that records backoff delays."""
    return RecordingSleep()
