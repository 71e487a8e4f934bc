"""
Time source for the sync scheduler and retry backoff.

Production code uses SystemClock. Tests drive VirtualClock forward explicitly
so hourly and daily schedules run without waiting in real time.
"""

import asyncio
import heapq
import itertools
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Tuple


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class VirtualClock:
    """
    Manually advanced clock.

    ``sleep`` parks the caller until ``advance`` moves virtual time past its
    deadline. Sleepers wake in deadline order, and the event loop is drained
    after each wake so chained work (a retry after a backoff) can register its
    next sleep before time moves on.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._sleepers: List[Tuple[datetime, int, asyncio.Future]] = []
        self._counter = itertools.count()

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        deadline = self._now + timedelta(seconds=seconds)
        heapq.heappush(self._sleepers, (deadline, next(self._counter), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, f in self._sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, waking every sleeper whose deadline passes."""
        target = self._now + timedelta(seconds=seconds)
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
            await self.settle()
        self._now = target
        await self.settle()

    @staticmethod
    async def settle(rounds: int = 50) -> None:
        """Let ready tasks run until they block again."""
        for _ in range(rounds):
            await asyncio.sleep(0)
