"""
Deferred-callback schedulers used by RateController.

A scheduler provides three capabilities:
- now(): monotonic time in seconds
- call_later(delay_s, fn, *args): run fn after at least delay_s; no handle is
  returned, scheduled callbacks cannot be cancelled
- spawn(fn, *args): run fn soon, independently of the caller

AsyncioScheduler backs these with the running event loop. ManualScheduler
keeps a virtual clock that only moves when advanced, which makes timing
behaviour deterministic in tests and simulations.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Capabilities a RateController needs from its host."""

    def now(self) -> float: ...

    def call_later(self, delay_s: float, fn: Callable[..., object], *args: Any) -> None: ...

    def spawn(self, fn: Callable[..., object], *args: Any) -> None: ...


class AsyncioScheduler:
    """
    Scheduler bound to an asyncio event loop.

    If no loop is given, the running loop is looked up on every call, so the
    scheduler can be created outside of a coroutine and used inside one.
    Spawned callables that return an awaitable have it wrapped in a task;
    task failures are logged.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay_s: float, fn: Callable[..., object], *args: Any) -> None:
        self._get_loop().call_later(max(delay_s, 0.0), fn, *args)

    def spawn(self, fn: Callable[..., object], *args: Any) -> None:
        self._get_loop().call_soon(self._run, fn, args)

    @property
    def pending_tasks(self) -> int:
        """Number of spawned coroutines still running."""
        return len(self._tasks)

    def _run(self, fn: Callable[..., object], args: tuple[Any, ...]) -> None:
        result = fn(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result, loop=self._get_loop())
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Spawned task failed",
                exc_info=(type(exc), exc, exc.__traceback__),
            )


class ManualScheduler:
    """
    Virtual-clock scheduler.

    Callbacks are kept in a heap keyed by (due time, sequence number), so
    callbacks due at the same instant run in the order they were scheduled.
    While advancing, the clock is set to each callback's due time before it
    runs; callbacks scheduled during the advance are picked up if they fall
    inside the target time.

    Usage:
        sched = ManualScheduler()
        rc = RateController(2.0, scheduler=sched)
        rc.execute(fn)
        sched.advance(2.0)  # fires the cooldown reset
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._heap: list[tuple[float, int, Callable[..., object], tuple[Any, ...]]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay_s: float, fn: Callable[..., object], *args: Any) -> None:
        due = self._now + max(delay_s, 0.0)
        heapq.heappush(self._heap, (due, next(self._seq), fn, args))

    def spawn(self, fn: Callable[..., object], *args: Any) -> None:
        self.call_later(0.0, fn, *args)

    @property
    def pending(self) -> int:
        """Number of callbacks not yet run."""
        return len(self._heap)

    def next_due(self) -> float | None:
        """Due time of the earliest pending callback, or None."""
        if not self._heap:
            return None
        return self._heap[0][0]

    def advance(self, seconds: float) -> int:
        """Move the clock forward by seconds, running due callbacks."""
        if seconds < 0:
            raise ValueError(f"seconds must be >= 0, got {seconds}")
        return self.advance_to(self._now + seconds)

    def advance_to(self, target: float) -> int:
        """
        Move the clock to target, running every callback due at or before it.

        Returns:
            Number of callbacks run.
        """
        if target < self._now:
            raise ValueError(f"cannot move clock backwards ({target} < {self._now})")

        ran = 0
        while self._heap and self._heap[0][0] <= target:
            due, _, fn, args = heapq.heappop(self._heap)
            self._now = max(self._now, due)
            fn(*args)
            ran += 1
        self._now = target
        return ran

    def run_pending(self) -> int:
        """Run callbacks already due at the current time."""
        return self.advance_to(self._now)
