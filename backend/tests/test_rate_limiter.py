"""
Unit tests for the fixed-window upstream call budget.

Run: pytest backend/tests/test_rate_limiter.py -v
"""
from __future__ import annotations

import random

import pytest

from flagwatch.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Basic budget ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_acquire_under_ceiling_does_not_wait(clock: FakeClock) -> None:
    limiter = RateLimiter(ceiling=5, window_s=60.0, clock=clock, sleep=clock.sleep)
    for _ in range(5):
        await limiter.acquire()
    assert clock.sleeps == []
    assert limiter.budget.call_count == 5
    assert limiter.exhausted


@pytest.mark.asyncio
async def test_acquire_over_ceiling_waits_for_rest_of_window(clock: FakeClock) -> None:
    limiter = RateLimiter(ceiling=3, window_s=60.0, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        await limiter.acquire()
    clock.now += 20.0

    await limiter.acquire()

    assert clock.sleeps == [pytest.approx(40.0)]
    assert limiter.budget.call_count == 1
    assert limiter.budget.window_start == pytest.approx(clock.now)


@pytest.mark.asyncio
async def test_elapsed_window_resets_without_waiting(clock: FakeClock) -> None:
    limiter = RateLimiter(ceiling=2, window_s=60.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire()
    await limiter.acquire()
    clock.now += 60.0

    assert not limiter.exhausted
    assert limiter.budget.call_count == 2
    await limiter.acquire()

    assert clock.sleeps == []
    assert limiter.budget.call_count == 1


@pytest.mark.asyncio
async def test_reset_clears_budget(clock: FakeClock) -> None:
    limiter = RateLimiter(ceiling=2, window_s=60.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire()
    await limiter.acquire()
    limiter.reset()
    assert limiter.budget.call_count == 0
    assert not limiter.exhausted


@pytest.mark.asyncio
async def test_ceiling_hits_counts_each_exhaustion(clock: FakeClock) -> None:
    limiter = RateLimiter(ceiling=2, window_s=60.0, clock=clock, sleep=clock.sleep)
    assert limiter.ceiling_hits == 0
    for _ in range(4):
        await limiter.acquire()
    assert limiter.ceiling_hits == 2


# ── Ceiling invariant ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_never_more_than_ceiling_calls_per_window(clock: FakeClock) -> None:
    ceiling, window = 7, 60.0
    limiter = RateLimiter(ceiling=ceiling, window_s=window, clock=clock, sleep=clock.sleep)
    rng = random.Random(42)
    grants: list[tuple[float, float]] = []

    for _ in range(200):
        clock.now += rng.choice([0.0, 0.0, 0.5, 3.0, 11.0])
        await limiter.acquire()
        grants.append((clock.now, limiter.budget.window_start))
        assert limiter.budget.call_count <= ceiling

    per_window: dict[float, int] = {}
    for granted_at, window_start in grants:
        assert granted_at - window_start < window
        per_window[window_start] = per_window.get(window_start, 0) + 1
    assert max(per_window.values()) <= ceiling
