"""
Process-wide fixed-window call budget for upstream API requests.
Coarse by intent: at most `ceiling` calls per window measured from the last reset.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from shared.utils.logging import get_logger
from shared.utils.metrics import RATE_LIMIT_WAITS

logger = get_logger(__name__)

DEFAULT_CEILING = 60
DEFAULT_WINDOW_S = 60.0


@dataclass(frozen=True)
class RateBudget:
    call_count: int
    window_start: float


class RateLimiter:
    """
    Fixed-window counter shared by every outbound API call.

    Not safe for concurrent acquirers: the service drives all calls from a
    single sequential pass, so a plain counter is enough.
    """

    def __init__(
        self,
        ceiling: int = DEFAULT_CEILING,
        window_s: float = DEFAULT_WINDOW_S,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._ceiling = max(1, ceiling)
        self._window_s = window_s
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._call_count = 0
        self._window_start = self._clock()
        self._ceiling_hits = 0

    @property
    def ceiling(self) -> int:
        return self._ceiling

    @property
    def budget(self) -> RateBudget:
        return RateBudget(call_count=self._call_count, window_start=self._window_start)

    @property
    def ceiling_hits(self) -> int:
        """Number of times the budget has been used up since construction."""
        return self._ceiling_hits

    @property
    def exhausted(self) -> bool:
        """True when no slot is left in the current (not yet elapsed) window."""
        if self._clock() - self._window_start >= self._window_s:
            return False
        return self._call_count >= self._ceiling

    def reset(self, now: Optional[float] = None) -> None:
        self._call_count = 0
        self._window_start = self._clock() if now is None else now

    def _roll_window(self, now: float) -> None:
        if now - self._window_start >= self._window_s:
            self.reset(now)

    async def acquire(self) -> None:
        """Wait until a call slot is free, then consume it."""
        now = self._clock()
        self._roll_window(now)

        if self._call_count >= self._ceiling:
            wait_s = max(0.0, self._window_s - (now - self._window_start))
            RATE_LIMIT_WAITS.inc()
            logger.info(
                "rate_limit_reached",
                ceiling=self._ceiling,
                wait_s=round(wait_s, 2),
            )
            await self._sleep(wait_s)
            self.reset()

        self._call_count += 1
        if self._call_count >= self._ceiling:
            self._ceiling_hits += 1
