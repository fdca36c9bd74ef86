"""
Call-admission controller: Debounce and sliding-window RateLimit.

Debounce:
- One execution per cooldown; calls during the cooldown are rejected
- The cooldown ends when its reset timer fires, which emits on_reset

RateLimit:
- Up to max_calls executions per rolling window of window_s seconds
- Timestamps are pruned lazily on every read/write
- Optional FIFO queue of rejected calls, replayed as window capacity frees

Timers are never cancelled. Pause, reset and cancel leave scheduled callbacks
in place; each callback re-checks controller state when it fires and becomes
a no-op if it no longer applies (a "ghost timer").
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any

from ratemanager.scheduling import AsyncioScheduler
from ratemanager.signals import Signal

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ratemanager.config import RateControllerConfig
    from ratemanager.scheduling import Scheduler

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    """Admission policy."""

    DEBOUNCE = "DEBOUNCE"
    RATE_LIMIT = "RATE_LIMIT"


_MODE_VALUES = frozenset(m.value for m in Mode)


class InvalidArgumentError(ValueError):
    """Raised when a controller is constructed with bad parameters."""


class ControllerDestroyedError(RuntimeError):
    """Raised when a destroyed controller is used."""


@dataclass(frozen=True)
class QueuedCall:
    """A rejected RateLimit call waiting for replay."""

    callback: Callable[..., object]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    enqueued_at: float = 0.0


@dataclass
class DebounceState:
    """Cooldown bookkeeping for Mode.DEBOUNCE."""

    delay_s: float
    active: bool = False
    start_time: float | None = None
    pause_remaining: float | None = None
    # Identifies the cooldown that owns the pending reset timer
    generation: int = 0

    def clear(self) -> None:
        self.active = False
        self.start_time = None
        self.pause_remaining = None
        self.generation += 1

    def time_left(self, now: float) -> float:
        if not self.active or self.start_time is None:
            return 0.0
        return max(self.delay_s - (now - self.start_time), 0.0)


@dataclass
class RateLimitState:
    """Sliding-window bookkeeping for Mode.RATE_LIMIT."""

    max_calls: int
    window_s: float
    call_timestamps: deque[float] = field(default_factory=deque)
    queue_enabled: bool = False
    queued_calls: deque[QueuedCall] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        """Remove timestamps that have aged out of the window."""
        while self.call_timestamps and now - self.call_timestamps[0] >= self.window_s:
            self.call_timestamps.popleft()

    def is_full(self) -> bool:
        return len(self.call_timestamps) >= self.max_calls

    def time_left(self, now: float) -> float:
        self.prune(now)
        if not self.is_full():
            return 0.0
        oldest = self.call_timestamps[0]
        return max(self.window_s - (now - oldest), 0.0)


@dataclass
class ControllerMetrics:
    """Counters for controller observability."""

    calls_admitted: int = 0
    calls_rejected: int = 0
    calls_queued: int = 0
    calls_replayed: int = 0
    calls_dropped: int = 0  # Queued calls discarded by reset/cancel/disable
    replay_failures: int = 0
    resets: int = 0


def _is_positive_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def _is_positive_int(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return value > 0


def _coerce_mode(mode: Mode | str | None) -> Mode:
    if mode is None:
        return Mode.DEBOUNCE
    if isinstance(mode, Mode):
        return mode
    if isinstance(mode, str) and mode.upper() in _MODE_VALUES:
        return Mode(mode.upper())
    raise InvalidArgumentError(f"Invalid mode: {mode!r}")


def _default_scheduler() -> AsyncioScheduler:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError as e:
        raise InvalidArgumentError(
            "scheduler is required outside a running event loop "
            "(pass scheduler=ManualScheduler() or construct inside a coroutine)"
        ) from e
    return AsyncioScheduler(loop)


class RateController:
    """
    Admission engine for a single guarded operation.

    Without a scheduler argument the controller binds to the running event
    loop, so it must then be constructed inside a coroutine.

    Usage:
        cd = RateController(2.0)  # 2 second debounce
        cd.on_limit_hit.connect(lambda: print("cooldown active"))
        cd.execute(print, "runs once per 2 seconds")

        rl = RateController(3, 5.0, Mode.RATE_LIMIT)  # 3 calls per 5 seconds
        rl.set_queue_enabled(True)
        rl.execute(send, payload)  # queued instead of dropped when full

    All operations must come from one thread of control. The only
    re-entries are scheduler callbacks, each of which runs to completion.
    """

    def __init__(
        self,
        primary: float,
        secondary: float | None = None,
        mode: Mode | str | None = Mode.DEBOUNCE,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] | None = None,
        name: str = "default",
    ) -> None:
        resolved = _coerce_mode(mode)

        state: DebounceState | RateLimitState
        if resolved is Mode.DEBOUNCE:
            if not _is_positive_number(primary):
                raise InvalidArgumentError(f"delay must be a positive number, got {primary!r}")
            state = DebounceState(delay_s=float(primary))
        else:
            if not _is_positive_int(primary):
                raise InvalidArgumentError(
                    f"max_calls must be a positive integer, got {primary!r}"
                )
            if not _is_positive_number(secondary):
                raise InvalidArgumentError(
                    f"window must be a positive number, got {secondary!r}"
                )
            state = RateLimitState(max_calls=int(primary), window_s=float(secondary))  # type: ignore[arg-type]

        self._mode = resolved
        self._state: DebounceState | RateLimitState | None = state
        self._scheduler: Scheduler = scheduler if scheduler is not None else _default_scheduler()
        self._clock: Callable[[], float] = clock if clock is not None else self._scheduler.now
        self._paused = False
        self._destroyed = False
        self.name = name
        self.metrics = ControllerMetrics()
        self.on_reset = Signal("on_reset")
        self.on_limit_hit = Signal("on_limit_hit")

    @classmethod
    def from_config(
        cls,
        config: RateControllerConfig,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] | None = None,
    ) -> RateController:
        """Build a controller from a validated RateControllerConfig."""
        if config.mode is Mode.DEBOUNCE:
            controller = cls(
                config.delay_s,  # type: ignore[arg-type]
                mode=Mode.DEBOUNCE,
                scheduler=scheduler,
                clock=clock,
                name=config.name,
            )
        else:
            controller = cls(
                config.max_calls,  # type: ignore[arg-type]
                config.window_s,
                Mode.RATE_LIMIT,
                scheduler=scheduler,
                clock=clock,
                name=config.name,
            )
            controller.set_queue_enabled(config.queue_enabled)
        return controller

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def mode(self) -> Mode:
        self._live_state()
        return self._mode

    @property
    def paused(self) -> bool:
        self._live_state()
        return self._paused

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def queue_enabled(self) -> bool:
        state = self._live_state()
        return isinstance(state, RateLimitState) and state.queue_enabled

    @property
    def queued_count(self) -> int:
        """Number of calls waiting for replay (always 0 in Debounce mode)."""
        state = self._live_state()
        if isinstance(state, RateLimitState):
            return len(state.queued_calls)
        return 0

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def execute(self, callback: Callable[..., object], *args: Any, **kwargs: Any) -> RateController:
        """
        Run callback now if the policy allows it.

        While paused this is a no-op. A rejected call fires on_limit_hit and,
        in RateLimit mode with queueing enabled, is queued for replay.
        Exceptions raised by callback propagate to the caller.
        """
        state = self._live_state()
        if self._paused:
            return self

        now = self._clock()

        if isinstance(state, DebounceState):
            if state.active:
                self._reject(callback)
                return self

            # Arm the timer first so a scheduling failure leaves state untouched
            generation = state.generation + 1
            self._scheduler.call_later(
                state.delay_s, partial(self._on_cooldown_elapsed, generation)
            )
            state.active = True
            state.start_time = now
            state.pause_remaining = None
            state.generation = generation
            self.metrics.calls_admitted += 1
            logger.debug("Call admitted", extra={"controller": self.name, "callback": callback})
            callback(*args, **kwargs)
            return self

        state.prune(now)
        if state.is_full():
            self._reject(callback)
            if state.queue_enabled:
                state.queued_calls.append(QueuedCall(callback, args, kwargs, now))
                self.metrics.calls_queued += 1
                logger.debug(
                    "Call queued",
                    extra={"controller": self.name, "queue_depth": len(state.queued_calls)},
                )
            return self

        self._scheduler.call_later(state.window_s, self._on_window_elapsed)
        state.call_timestamps.append(now)
        self.metrics.calls_admitted += 1
        logger.debug(
            "Call admitted",
            extra={
                "controller": self.name,
                "callback": callback,
                "calls_in_window": len(state.call_timestamps),
            },
        )
        callback(*args, **kwargs)
        return self

    def set_queue_enabled(self, enabled: bool) -> None:
        """
        Toggle queueing of rejected calls (RateLimit only).

        Disabling discards every queued call immediately.
        """
        state = self._live_state()
        if not isinstance(state, RateLimitState):
            return
        state.queue_enabled = bool(enabled)
        if not state.queue_enabled and state.queued_calls:
            self._drop_queue(state)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_time_left(self) -> float:
        """
        Seconds until the next call would be admitted.

        Returns 0 when a call would run now and math.inf while paused.
        """
        state = self._live_state()
        if self._paused:
            return math.inf
        return state.time_left(self._clock())

    def is_on_cooldown(self) -> bool:
        """
        True if a call made now would be rejected.

        Reports False while paused, even though get_time_left() is inf.
        """
        state = self._live_state()
        if self._paused:
            return False
        if isinstance(state, DebounceState):
            return state.active
        state.prune(self._clock())
        return state.is_full()

    def get_status(self) -> dict[str, str | int | float | bool]:
        """Get current controller status for observability."""
        state = self._live_state()
        status: dict[str, str | int | float | bool] = {
            "name": self.name,
            "mode": self._mode.value,
            "paused": self._paused,
            "on_cooldown": self.is_on_cooldown(),
            "time_left_s": self.get_time_left(),
        }
        if isinstance(state, DebounceState):
            status["delay_s"] = state.delay_s
        else:
            status["max_calls"] = state.max_calls
            status["window_s"] = state.window_s
            status["calls_in_window"] = len(state.call_timestamps)
            status["queue_enabled"] = state.queue_enabled
            status["queue_depth"] = len(state.queued_calls)
        return status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def pause(self) -> RateController:
        """Suspend admission. Debounce captures the remaining cooldown."""
        state = self._live_state()
        if self._paused:
            return self
        self._paused = True

        if isinstance(state, DebounceState) and state.active:
            now = self._clock()
            start = state.start_time if state.start_time is not None else now
            state.pause_remaining = max(state.delay_s - (now - start), 0.0)

        logger.debug("Controller paused", extra={"controller": self.name})
        return self

    def resume(self) -> RateController:
        """
        Resume admission.

        A Debounce cooldown interrupted by pause() continues with the time it
        had left. The timer armed before the pause still fires but no longer
        owns the cooldown, so only the new timer can end it.
        """
        state = self._live_state()
        if not self._paused:
            return self

        if (
            isinstance(state, DebounceState)
            and state.active
            and state.pause_remaining is not None
        ):
            remaining = state.pause_remaining
            generation = state.generation + 1
            self._scheduler.call_later(remaining, partial(self._on_cooldown_elapsed, generation))
            state.pause_remaining = None
            state.start_time = self._clock() - (state.delay_s - remaining)
            state.generation = generation
        self._paused = False

        logger.debug("Controller resumed", extra={"controller": self.name})
        return self

    def reset(self, drop_queued_calls: bool = True) -> RateController:
        """Clear the cooldown/window and always fire on_reset."""
        self._clear(drop_queued_calls)
        self.metrics.resets += 1
        logger.info("Controller reset", extra={"controller": self.name})
        self.on_reset.fire()
        return self

    def cancel(self, drop_queued_calls: bool = True) -> RateController:
        """Clear the cooldown/window without firing on_reset."""
        self._clear(drop_queued_calls)
        logger.info("Controller cancelled", extra={"controller": self.name})
        return self

    def destroy(self) -> None:
        """Disconnect all listeners and release state. Idempotent."""
        if self._destroyed:
            return
        self._destroyed = True
        self.on_reset.destroy()
        self.on_limit_hit.destroy()
        if isinstance(self._state, RateLimitState):
            self._state.call_timestamps.clear()
            self._state.queued_calls.clear()
        self._state = None
        self._paused = False
        logger.info("Controller destroyed", extra={"controller": self.name})

    def __enter__(self) -> RateController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()

    def __repr__(self) -> str:
        if self._destroyed:
            return f"<RateController {self.name!r} destroyed>"
        return f"<RateController {self.name!r} mode={self._mode.value} paused={self._paused}>"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _live_state(self) -> DebounceState | RateLimitState:
        if self._destroyed or self._state is None:
            raise ControllerDestroyedError(f"RateController {self.name!r} has been destroyed")
        return self._state

    def _reject(self, callback: Callable[..., object]) -> None:
        self.metrics.calls_rejected += 1
        logger.debug("Call rejected", extra={"controller": self.name, "callback": callback})
        self.on_limit_hit.fire()

    def _clear(self, drop_queued_calls: bool) -> None:
        state = self._live_state()
        if isinstance(state, DebounceState):
            state.clear()
            return
        state.call_timestamps.clear()
        if drop_queued_calls and state.queued_calls:
            self._drop_queue(state)

    def _drop_queue(self, state: RateLimitState) -> None:
        dropped = len(state.queued_calls)
        state.queued_calls.clear()
        self.metrics.calls_dropped += dropped
        logger.info(
            "Queued calls dropped",
            extra={"controller": self.name, "dropped": dropped},
        )

    def _on_cooldown_elapsed(self, generation: int) -> None:
        if self._destroyed:
            return
        state = self._state
        if not isinstance(state, DebounceState):
            return
        # Paused: the cooldown is withheld until resume() re-arms it
        if self._paused:
            return
        if not state.active or state.generation != generation:
            return
        state.active = False
        state.start_time = None
        self.on_reset.fire()

    def _on_window_elapsed(self) -> None:
        if self._destroyed or self._paused:
            return
        state = self._state
        if not isinstance(state, RateLimitState):
            return
        state.prune(self._clock())
        self.on_reset.fire()
        # A listener may have destroyed or paused the controller
        if self._destroyed:
            return
        self._drain_queue()

    def _drain_queue(self) -> None:
        state = self._state
        if not isinstance(state, RateLimitState) or not state.queue_enabled or self._paused:
            return

        now = self._clock()
        state.prune(now)
        while state.queued_calls and not state.is_full():
            queued = state.queued_calls[0]
            self._scheduler.call_later(state.window_s, self._on_window_elapsed)
            self._scheduler.spawn(self._replay, queued)
            state.queued_calls.popleft()
            state.call_timestamps.append(now)
            self.metrics.calls_replayed += 1

        if state.queued_calls:
            logger.debug(
                "Queue drain stopped at capacity",
                extra={"controller": self.name, "queue_depth": len(state.queued_calls)},
            )

    def _replay(self, queued: QueuedCall) -> object:
        try:
            result = queued.callback(*queued.args, **queued.kwargs)
        except Exception:
            self._replay_failed(queued)
            return None
        if inspect.isawaitable(result):
            return self._await_replay(queued, result)
        return result

    async def _await_replay(self, queued: QueuedCall, result: Awaitable[object]) -> object:
        try:
            return await result
        except Exception:
            self._replay_failed(queued)
            return None

    def _replay_failed(self, queued: QueuedCall) -> None:
        self.metrics.replay_failures += 1
        logger.exception(
            "Queued call failed",
            extra={"controller": self.name, "callback": queued.callback},
        )
