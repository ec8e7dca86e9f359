"""
Unit tests for the pass coordinator: sequential servers, truncation when the
call budget runs out, and the interval loop.
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from flagwatch.models import Flag, MonitoredServer, Player, ReconcileResult
from flagwatch.rate_limiter import RateLimiter
from flagwatch.reconciler import ServerReconciler
from flagwatch.scheduler import Scheduler

SERVER_A = MonitoredServer(slot_number=1, external_id="srv-a")
SERVER_B = MonitoredServer(slot_number=2, external_id="srv-b")
CHEATER = Flag(name="Possible Cheater")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class BudgetedFetcher:
    """Stand-in fetcher that spends one call slot per request like the real one."""

    def __init__(self, limiter: RateLimiter, online: dict[str, list[Player]], flags: dict[str, list[Flag]]) -> None:
        self._limiter = limiter
        self.online = online
        self.flags = flags
        self.listed: list[str] = []

    async def list_online_players(self, external_id: str) -> list[Player]:
        await self._limiter.acquire()
        self.listed.append(external_id)
        return list(self.online.get(external_id, []))

    async def fetch_player_flags(self, player_id: str) -> list[Flag]:
        await self._limiter.acquire()
        return list(self.flags.get(player_id, []))


@pytest.fixture
def sink() -> MagicMock:
    s = MagicMock()
    s.notify = AsyncMock(return_value=True)
    s.retract = AsyncMock(return_value=True)
    return s


def _players(prefix: str, count: int) -> list[Player]:
    return [Player(id=f"{prefix}{i}", display_name=f"{prefix}-{i}") for i in range(count)]


# ── run_pass ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_pass_reconciles_all_servers_in_order(sink: MagicMock) -> None:
    limiter = RateLimiter(ceiling=100)
    fetcher = BudgetedFetcher(
        limiter,
        online={"srv-a": _players("a", 2), "srv-b": _players("b", 2)},
        flags={"b1": [CHEATER]},
    )
    scheduler = Scheduler(
        [ServerReconciler(SERVER_A, fetcher, sink), ServerReconciler(SERVER_B, fetcher, sink)],
        limiter,
    )

    result = await scheduler.run_pass()

    assert [r.server for r in result.reconciled] == [SERVER_A, SERVER_B]
    assert result.skipped == []
    assert fetcher.listed == ["srv-a", "srv-b"]
    sink.notify.assert_awaited_once()


@pytest.mark.asyncio
async def test_exhausted_budget_skips_remaining_servers_until_next_pass(sink: MagicMock) -> None:
    clock = FakeClock()
    limiter = RateLimiter(ceiling=4, window_s=60.0, clock=clock, sleep=clock.sleep)
    fetcher = BudgetedFetcher(
        limiter,
        online={"srv-a": _players("a", 5), "srv-b": _players("b", 1)},
        flags={"b0": [CHEATER]},
    )
    reconciler_b = ServerReconciler(SERVER_B, fetcher, sink)
    scheduler = Scheduler([ServerReconciler(SERVER_A, fetcher, sink), reconciler_b], limiter)

    first = await scheduler.run_pass()

    assert [r.server for r in first.reconciled] == [SERVER_A]
    assert first.skipped == [SERVER_B]
    assert fetcher.listed == ["srv-a"]
    assert sink.notify.await_count == 0

    second = await scheduler.run_pass()

    assert SERVER_B in [r.server for r in second.reconciled]
    assert reconciler_b.flagged_ids == frozenset({"b0"})
    sink.notify.assert_awaited_once()


@pytest.mark.asyncio
async def test_listing_failure_does_not_escalate(sink: MagicMock) -> None:
    limiter = RateLimiter(ceiling=100)
    fetcher = MagicMock()
    fetcher.list_online_players = AsyncMock(return_value=[])
    fetcher.fetch_player_flags = AsyncMock(return_value=[])
    scheduler = Scheduler([ServerReconciler(SERVER_A, fetcher, sink)], limiter)

    result = await scheduler.run_pass()

    assert result.reconciled[0].skipped_empty
    assert sink.notify.await_count == 0
    assert sink.retract.await_count == 0


@pytest.mark.asyncio
async def test_unexpected_error_in_one_server_does_not_stop_pass(sink: MagicMock) -> None:
    limiter = RateLimiter(ceiling=100)
    broken = MagicMock()
    broken.server = SERVER_A
    broken.reconcile = AsyncMock(side_effect=KeyError("boom"))
    healthy = MagicMock()
    healthy.server = SERVER_B
    healthy.reconcile = AsyncMock(return_value=ReconcileResult(server=SERVER_B))

    result = await Scheduler([broken, healthy], limiter).run_pass()

    healthy.reconcile.assert_awaited_once()
    assert len(result.reconciled) == 1


# ── run_forever ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_run_forever_runs_first_pass_immediately_and_stops() -> None:
    limiter = RateLimiter(ceiling=100)
    reconciler = MagicMock()
    reconciler.server = SERVER_A
    stop = asyncio.Event()
    calls = 0

    async def reconcile():
        nonlocal calls
        calls += 1
        if calls == 2:
            stop.set()
        return ReconcileResult(server=SERVER_A)

    reconciler.reconcile = AsyncMock(side_effect=reconcile)
    scheduler = Scheduler([reconciler], limiter, interval_s=0.01)

    await asyncio.wait_for(scheduler.run_forever(stop), timeout=5.0)

    assert calls == 2
    assert scheduler.passes_completed == 2
