# src/storepulse/clock.py
"""Clock and scheduler abstractions for testable timer logic.

Every suspension point in the tracker (flush debounce, consent polling,
inactivity detection, cart polling) goes through a Scheduler, and every
timestamp goes through a Clock. Production code uses SystemClock and
AsyncioScheduler. Tests inject MockClock and ManualScheduler to advance
virtual time without sleeping.

Timers return handles with cancel(); cancelling a fired or already
cancelled handle is a no-op.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


class Clock(Protocol):
    """Wall clock in integer milliseconds since the epoch.

    Millisecond wall-clock time is what gets persisted (session activity,
    consent date) and shipped (event timestamps), so it must survive reloads.
    """

    def now_ms(self) -> int:
        """Return the current time in milliseconds."""
        ...


class SystemClock:
    """Production clock backed by time.time()."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(start_ms=1_000)
        identity = IdentityManager(storage, clock, session_timeout_ms=60_000)
        first = identity.get_session_id()
        clock.advance(59_999)
        assert identity.get_session_id() == first
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._current = start_ms

    def now_ms(self) -> int:
        return self._current

    def advance(self, ms: int) -> None:
        """Advance mock time.

        Raises:
            ValueError: If ms is negative.
        """
        if ms < 0:
            raise ValueError(f"Cannot advance time by negative amount: {ms}")
        self._current += ms

    def set(self, value_ms: int) -> None:
        """Set mock time to an absolute value (may move backwards)."""
        self._current = value_ms


class TimerHandle(Protocol):
    """Cancellation token for a scheduled callback."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Cooperative scheduler: delayed callbacks plus background coroutines.

    Callbacks and coroutines all run on one execution context, so each one
    runs to completion between suspension points.
    """

    @property
    def clock(self) -> Clock: ...

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_ms. Returns a cancellable handle."""
        ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run a coroutine in the background. Exceptions are logged, not raised."""
        ...

    async def drain(self) -> None:
        """Wait until every spawned coroutine (including ones they spawn) finishes."""
        ...


class _TaskTracker:
    """Shared bookkeeping for spawned background tasks."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed",
                task=task.get_coro().__qualname__,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        # Tasks may spawn further tasks while we wait
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AsyncioScheduler(_TaskTracker):
    """Production scheduler on the running asyncio event loop."""

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__()
        self._clock = clock if clock is not None else SystemClock()

    @property
    def clock(self) -> Clock:
        return self._clock

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay_ms / 1000, callback)


class _ManualTimer:
    __slots__ = ("callback", "cancelled", "due_ms")

    def __init__(self, due_ms: int, callback: Callable[[], None]) -> None:
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(_TaskTracker):
    """Virtual-time scheduler for tests.

    Timers fire only when advance() moves the MockClock past their due time,
    in due order (ties in scheduling order). Spawned coroutines still run on
    the real event loop, so async tests await drain() after advancing.

    Example:
        scheduler = ManualScheduler(MockClock())
        fired = []
        scheduler.call_later(500, lambda: fired.append("x"))
        scheduler.advance(499)
        assert fired == []
        scheduler.advance(1)
        assert fired == ["x"]
    """

    def __init__(self, clock: MockClock | None = None) -> None:
        super().__init__()
        self._clock = clock if clock is not None else MockClock()
        self._timers: list[tuple[int, int, _ManualTimer]] = []
        self._seq = itertools.count()

    @property
    def clock(self) -> MockClock:
        return self._clock

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(self._clock.now_ms() + max(0, delay_ms), callback)
        heapq.heappush(self._timers, (timer.due_ms, next(self._seq), timer))
        return timer

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, timer in self._timers if not timer.cancelled)

    def advance(self, ms: int) -> None:
        """Advance virtual time, firing every timer that becomes due.

        Timers scheduled by callbacks during the advance fire too if they
        fall inside the window.
        """
        target = self._clock.now_ms() + ms
        while self._timers and self._timers[0][0] <= target:
            due_ms, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._clock.set(max(due_ms, self._clock.now_ms()))
            timer.cancelled = True
            timer.callback()
        self._clock.set(target)


DEFAULT_CLOCK: Clock = SystemClock()
