"""Timer scheduling behind a small interface.

Analyzers, the connection pool and the execution service never call
asyncio timers directly. They receive a Scheduler, so production code runs
on the event loop clock while tests drive a ManualScheduler and
fast-forward logical time deterministically.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None] | None]


@runtime_checkable
class Scheduler(Protocol):
    """Clock plus one-shot and repeating timers."""

    def now(self) -> float:
        """Current time in seconds."""
        ...

    def every(self, interval: float, callback: TimerCallback) -> "TimerHandle":
        """Run callback every ``interval`` seconds until cancelled."""
        ...

    def call_later(self, delay: float, callback: TimerCallback) -> "TimerHandle":
        """Run callback once after ``delay`` seconds."""
        ...

    async def sleep(self, delay: float) -> None:
        ...

    def close(self) -> None:
        """Cancel every outstanding timer."""
        ...


class TimerHandle:
    """Cancellable reference to a scheduled timer."""

    def __init__(self, on_cancel: Callable[[], None] | None = None):
        self._cancelled = False
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel:
            self._on_cancel()


async def _invoke(callback: TimerCallback) -> None:
    """Run a timer callback, awaiting it when it is a coroutine."""
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Timer callback error: {e}", exc_info=True)


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop and wall clock."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._handles: set[asyncio.TimerHandle] = set()

    def now(self) -> float:
        return time.time()

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        async def _loop():
            while True:
                await asyncio.sleep(interval)
                await _invoke(callback)

        task = self._spawn(_loop())
        return TimerHandle(task.cancel)

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _fire():
            self._handles.discard(handle)
            self._spawn(_invoke(callback))

        handle = loop.call_later(delay, _fire)
        self._handles.add(handle)

        def _cancel():
            handle.cancel()
            self._handles.discard(handle)

        return TimerHandle(_cancel)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)

    def close(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


class _ManualTimer:
    __slots__ = ("due", "interval", "callback", "handle")

    def __init__(self, due: float, interval: float | None, callback: TimerCallback):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.handle = TimerHandle()


class ManualScheduler:
    """Logical-clock scheduler for deterministic tests.

    Time only moves when ``advance`` is awaited. Due timers fire in order of
    due time (then registration order); coroutine callbacks are started as
    tasks and the loop is given a chance to run them before ``advance``
    returns.

    Example:
        scheduler = ManualScheduler(start=1000.0)
        scheduler.every(5, analyzer.run_cycle)
        await scheduler.advance(15)   # fires three cycles
    """

    SETTLE_ROUNDS = 50

    def __init__(self, start: float = 0.0):
        self._now = start
        self._heap: list[tuple[float, int, _ManualTimer]] = []
        self._seq = itertools.count()
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return self._now

    def _push(self, timer: _ManualTimer) -> None:
        heapq.heappush(self._heap, (timer.due, next(self._seq), timer))

    def every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = _ManualTimer(self._now + interval, interval, callback)
        self._push(timer)
        return timer.handle

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        timer = _ManualTimer(self._now + max(0.0, delay), None, callback)
        self._push(timer)
        return timer.handle

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()

        def _wake():
            if not future.done():
                future.set_result(None)

        self.call_later(delay, _wake)
        await future

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.handle.cancelled)

    async def settle(self) -> None:
        """Yield to the loop until spawned callback tasks finish or block."""
        for _ in range(self.SETTLE_ROUNDS):
            if not any(not t.done() for t in self._tasks):
                break
            await asyncio.sleep(0)
        # One more pass lets freshly woken sleepers resume
        await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that comes due."""
        target = self._now + seconds
        await self.settle()
        while self._heap and self._heap[0][0] <= target:
            due, _, timer = heapq.heappop(self._heap)
            if timer.handle.cancelled:
                continue
            self._now = due
            if timer.interval is not None:
                timer.due = due + timer.interval
                self._push(timer)
            task = asyncio.ensure_future(_invoke(timer.callback))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            await self.settle()
        self._now = target

    def close(self) -> None:
        for _, _, timer in self._heap:
            timer.handle.cancel()
        self._heap.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
