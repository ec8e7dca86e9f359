"""
Drives reconciliation passes across all monitored servers on a fixed interval.
Passes are sequential; a pass that uses up the call budget skips the remaining servers.
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional, Sequence

from shared.utils.logging import get_logger
from shared.utils.metrics import PASS_DURATION, SERVERS_SKIPPED

from flagwatch.models import PassResult, ReconcileResult
from flagwatch.rate_limiter import RateLimiter
from flagwatch.reconciler import ServerReconciler

logger = get_logger(__name__)

DEFAULT_INTERVAL_S = 60.0


class Scheduler:
    """Runs one pass immediately, then one pass per interval until stopped."""

    def __init__(
        self,
        reconcilers: Sequence[ServerReconciler],
        rate_limiter: RateLimiter,
        interval_s: float = DEFAULT_INTERVAL_S,
    ) -> None:
        self._reconcilers = list(reconcilers)
        self._rate_limiter = rate_limiter
        self._interval_s = interval_s
        self._pass_lock = asyncio.Lock()
        # index of the server the next pass starts with
        self._cursor = 0
        self.passes_completed = 0

    @property
    def reconcilers(self) -> list[ServerReconciler]:
        return list(self._reconcilers)

    async def run_pass(self) -> PassResult:
        """
        Reconcile every server once, in slot order.

        When the previous pass was cut short, this pass starts with the first
        server that was skipped so a busy server cannot starve the others.
        """
        async with self._pass_lock:
            start = time.perf_counter()
            reconciled: list[ReconcileResult] = []
            skipped = []

            count = len(self._reconcilers)
            order = self._reconcilers[self._cursor:] + self._reconcilers[:self._cursor]
            next_cursor = 0

            for index, reconciler in enumerate(order):
                hits_before = self._rate_limiter.ceiling_hits
                try:
                    reconciled.append(await reconciler.reconcile())
                except Exception as exc:
                    logger.exception(
                        "server_reconcile_error",
                        server=reconciler.server.slot_number,
                        error=str(exc),
                    )

                hit_ceiling = self._rate_limiter.ceiling_hits > hits_before
                if hit_ceiling or self._rate_limiter.exhausted:
                    skipped = [r.server for r in order[index + 1:]]
                    if skipped:
                        next_cursor = (self._cursor + index + 1) % count
                        SERVERS_SKIPPED.inc(len(skipped))
                        logger.warning(
                            "pass_truncated_rate_limit",
                            ceiling=self._rate_limiter.ceiling,
                            skipped=[s.slot_number for s in skipped],
                        )
                    break

            self._cursor = next_cursor
            duration = time.perf_counter() - start
            PASS_DURATION.observe(duration)
            self.passes_completed += 1
            logger.info(
                "pass_finished",
                reconciled=len(reconciled),
                skipped=len(skipped),
                duration_s=round(duration, 2),
            )
            return PassResult(reconciled=reconciled, skipped=skipped, duration_s=duration)

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        """Loop until stop is set; the interval is measured start to start."""
        stop = stop or asyncio.Event()
        logger.info(
            "scheduler_started",
            servers=[r.server.slot_number for r in self._reconcilers],
            interval_s=self._interval_s,
        )
        while not stop.is_set():
            started = time.monotonic()
            try:
                await self.run_pass()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("pass_error", error=str(exc))

            delay = max(0.0, self._interval_s - (time.monotonic() - started))
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("scheduler_stopped", passes=self.passes_completed)
