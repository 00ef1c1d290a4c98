"""
Timer sources for the signal pipeline.

Everything that mutates pipeline state runs inside callbacks fired by one
scheduler, one at a time. ``AsyncioScheduler`` drives live runs on the event
loop; ``VirtualScheduler`` drives tests and offline replays with a manual clock.
"""
import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Callable, Optional

from signalscout.utils.logger import log

class TimerHandle:
    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self.cancelled = False

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()

class Scheduler(ABC):
    @abstractmethod
    def now(self) -> float:
        """Seconds on this scheduler's clock."""

    @abstractmethod
    def call_later(self, delay: float, fn: Callable, *args) -> TimerHandle:
        ...

    @abstractmethod
    def call_every(self, interval: float, fn: Callable, *args) -> TimerHandle:
        """Fire ``fn`` every ``interval`` seconds, first call one interval from now."""

# ------------------------------------------------------------------
class _VirtualTimer(TimerHandle):
    def __init__(self, fn: Callable, args: tuple, interval: Optional[float]):
        super().__init__()
        self.fn = fn
        self.args = args
        self.interval = interval

class VirtualScheduler(Scheduler):
    """Manual clock: nothing fires until ``advance`` moves time forward."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._heap: list = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def _push(self, when: float, timer: _VirtualTimer):
        heapq.heappush(self._heap, (when, next(self._seq), timer))

    def call_later(self, delay: float, fn: Callable, *args) -> TimerHandle:
        timer = _VirtualTimer(fn, args, None)
        self._push(self._now + max(0.0, delay), timer)
        return timer

    def call_every(self, interval: float, fn: Callable, *args) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = _VirtualTimer(fn, args, interval)
        self._push(self._now + interval, timer)
        return timer

    def advance(self, seconds: float):
        """Move the clock forward, firing due timers in time order."""
        target = self._now + seconds
        while self._heap and self._heap[0][0] <= target:
            when, _, timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            self._now = when
            if timer.interval is not None:
                self._push(when + timer.interval, timer)
            timer.fn(*timer.args)
        self._now = target

    def advance_to(self, when: float):
        """Move the clock to ``when``; a time in the past is a no-op."""
        if when > self._now:
            self.advance(when - self._now)

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.cancelled)

# ------------------------------------------------------------------
class AsyncioScheduler(Scheduler):
    """Timers on the running asyncio loop; build it from inside a coroutine."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, fn: Callable, *args) -> TimerHandle:
        h = self.loop.call_later(max(0.0, delay), fn, *args)
        return TimerHandle(h.cancel)

    def call_every(self, interval: float, fn: Callable, *args) -> TimerHandle:
        task = self.loop.create_task(self._every(interval, fn, args))
        return TimerHandle(task.cancel)

    @staticmethod
    async def _every(interval: float, fn: Callable, args: tuple):
        while True:
            await asyncio.sleep(interval)
            try:
                fn(*args)
            except Exception as e:
                log.error("Timer callback error: %s", e, exc_info=True)
