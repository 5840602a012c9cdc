"""Clocks and pausable timers.

All playback time is read through a Clock, in milliseconds:

  RealtimeClock  follows the running event loop.
  VirtualClock   jumps straight to the next pending deadline once every
                 task on the loop has gone idle. Timing is exact and
                 instantaneous, which is what tests and headless runs want.

PlaybackTimer elapses *local* time on top of a clock. Local time is wall
time scaled by a playback rate; the timer can be paused, resumed,
fast-forwarded (expedited) and re-rated mid-wait.
"""

import asyncio
import heapq
import itertools
from typing import Callable


DEFAULT_FRAME_INTERVAL = 1000 / 60
# Slack for float drift when comparing elapsed local time.
EPSILON = 1e-9


class Clock:
    """Millisecond clock interface."""

    frame_interval: float = DEFAULT_FRAME_INTERVAL

    def now(self) -> float:
        raise NotImplementedError

    async def sleep(self, ms: float) -> None:
        raise NotImplementedError


class RealtimeClock(Clock):
    def __init__(self, frame_interval: float = DEFAULT_FRAME_INTERVAL):
        self.frame_interval = frame_interval

    def now(self) -> float:
        return asyncio.get_running_loop().time() * 1000

    async def sleep(self, ms: float) -> None:
        await asyncio.sleep(max(ms, 0) / 1000)


class VirtualClock(Clock):
    """Deterministic clock that advances only when the loop is idle.

    Sleepers register a deadline on a heap. A driver task lets the loop
    settle (yields `settle_cycles` times so ready callbacks run), then
    moves `now` to the earliest deadline and wakes every sleeper due at
    it. The driver exits when no sleeper is left and is restarted by the
    next sleep(), so an idle clock leaves no task behind.
    """

    def __init__(
        self,
        start: float = 0.0,
        frame_interval: float = DEFAULT_FRAME_INTERVAL,
        settle_cycles: int = 64,
    ):
        self._now = float(start)
        self.frame_interval = frame_interval
        self.settle_cycles = settle_cycles
        self._heap: list[tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()
        self._driver: asyncio.Task | None = None

    def now(self) -> float:
        return self._now

    async def sleep(self, ms: float) -> None:
        if ms <= 0:
            await asyncio.sleep(0)
            return
        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        heapq.heappush(self._heap, (self._now + ms, next(self._seq), fut))
        if self._driver is None or self._driver.done():
            self._driver = loop.create_task(self._drive())
        await fut

    async def _settle(self) -> None:
        for _ in range(self.settle_cycles):
            await asyncio.sleep(0)

    async def _drive(self) -> None:
        while True:
            await self._settle()
            while self._heap and self._heap[0][2].done():
                heapq.heappop(self._heap)
            if not self._heap:
                return
            deadline = self._heap[0][0]
            self._now = max(self._now, deadline)
            while self._heap and self._heap[0][0] <= deadline:
                _, _, fut = heapq.heappop(self._heap)
                if not fut.done():
                    fut.set_result(None)

    @property
    def pending(self) -> int:
        """Number of sleepers still waiting on a deadline."""
        return sum(1 for _, _, fut in self._heap if not fut.done())


_default_clock: Clock | None = None


def default_clock() -> Clock:
    """Shared RealtimeClock used when nothing supplies a clock."""
    global _default_clock
    if _default_clock is None:
        _default_clock = RealtimeClock()
    return _default_clock


class PlaybackTimer:
    """Elapses scaled local time on a clock; pausable and expeditable."""

    def __init__(self, clock: Clock, rate: float = 1.0):
        self.clock = clock
        self.rate = rate
        self.expediting = False
        self._retargeted = False
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._interrupt = asyncio.Event()
        self._elapsed = 0.0
        self._slice: tuple[float, float, float] | None = None

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    def pause(self) -> None:
        self._resumed.clear()
        self._interrupt.set()

    def resume(self) -> None:
        self._resumed.set()

    def expedite(self) -> None:
        """Make every current and future elapse() return immediately."""
        self.expediting = True
        self._interrupt.set()

    def retarget(self) -> None:
        """Cut the current elapse() short so the caller can pick a nearer goal."""
        self._retargeted = True
        self._interrupt.set()

    def set_rate(self, rate: float) -> None:
        self.rate = rate
        self._interrupt.set()

    async def wait_resumed(self) -> None:
        await self._resumed.wait()

    @property
    def elapsed(self) -> float:
        """Local time elapsed so far in the elapse() call in flight."""
        if self._slice is None:
            return self._elapsed
        started, rate, remaining = self._slice
        return self._elapsed + min((self.clock.now() - started) * rate, remaining)

    async def elapse(
        self,
        ms: float,
        on_frame: Callable[[float], None] | None = None,
    ) -> float:
        """Let `ms` of local time pass.

        While paused no time passes. When on_frame is given the wait is cut
        into frame-sized slices and on_frame(elapsed_local_ms) is called
        after each one. Returns the local time actually elapsed, which is
        less than `ms` only when the timer was expedited or retargeted.
        """
        self._elapsed = 0.0
        while ms - self._elapsed > EPSILON:
            await self._resumed.wait()
            if self.expediting or self._retargeted:
                break
            rate = self.rate
            remaining = ms - self._elapsed
            if on_frame is not None:
                remaining = min(remaining, self.clock.frame_interval * rate)
            self._interrupt.clear()
            self._slice = (self.clock.now(), rate, remaining)
            finished = await self._race(self.clock.sleep(remaining / rate))
            advanced = remaining if finished else self.elapsed - self._elapsed
            self._slice = None
            self._elapsed += advanced
            if on_frame is not None:
                on_frame(self._elapsed)
        self._retargeted = False
        return self._elapsed

    async def _race(self, sleeper) -> bool:
        """Await sleeper unless interrupted first. True if it ran to completion."""
        sleep_task = asyncio.ensure_future(sleeper)
        interrupt_task = asyncio.ensure_future(self._interrupt.wait())
        try:
            await asyncio.wait(
                {sleep_task, interrupt_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (sleep_task, interrupt_task):
                if not task.done():
                    task.cancel()
        return sleep_task.done() and not sleep_task.cancelled()
