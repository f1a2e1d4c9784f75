"""Clocks that drive snake ticks, bot decisions and match delays.

Everything in the engine schedules work through ``clock.call_later(delay,
callback, *args)`` and reads time through ``clock.time()``. Two clocks exist:

  AsyncioClock: the real event loop. Used by the server.
  ManualClock:  virtual time that only moves when ``advance()`` is called.
                Used by tests and headless simulations so that two snakes
                running at different tick rates can be stepped deterministically.

Both return handles with a ``cancel()`` method; a cancelled handle never runs.
"""

import asyncio
import heapq
import itertools
from typing import Callable, Optional


class AsyncioClock:
    """Schedule callbacks on the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable, *args) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback, *args)


class ManualHandle:
    """Pending callback on a ManualClock."""

    def __init__(self, when: float, seq: int, callback: Callable, args: tuple):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def __lt__(self, other: "ManualHandle") -> bool:
        return (self.when, self.seq) < (other.when, other.seq)


class ManualClock:
    """Virtual clock. Callbacks due at the same instant run in scheduling order."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: list[ManualHandle] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable, *args) -> ManualHandle:
        handle = ManualHandle(self._now + max(0.0, delay), next(self._seq), callback, args)
        heapq.heappush(self._queue, handle)
        return handle

    def pending(self) -> int:
        """Number of callbacks that are scheduled and not cancelled."""
        return sum(1 for handle in self._queue if not handle.cancelled)

    def _run_next(self, deadline: float) -> bool:
        while self._queue and self._queue[0].cancelled:
            heapq.heappop(self._queue)
        if not self._queue or self._queue[0].when > deadline:
            return False
        handle = heapq.heappop(self._queue)
        self._now = handle.when
        handle.callback(*handle.args)
        return True

    def advance(self, seconds: float):
        """Move time forward, running every callback that falls due on the way."""
        deadline = self._now + seconds
        while self._run_next(deadline):
            pass
        self._now = deadline

    def run_until_idle(self, limit: float = 3600.0) -> float:
        """Run callbacks until nothing is scheduled or ``limit`` seconds have passed.

        Returns the virtual time at which the clock stopped.
        """
        deadline = self._now + limit
        while self._run_next(deadline):
            pass
        if self.pending():
            self._now = deadline
        return self._now
