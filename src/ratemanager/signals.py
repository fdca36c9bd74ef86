"""
Zero-argument event channels for RateController notifications.

A Signal holds a list of listener connections. Firing calls every listener
that is still connected at the moment its turn comes, so a listener may
disconnect itself or others mid-fire. Listener failures are logged and never
reach the code that fired the signal.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class Connection:
    """Handle returned by Signal.connect()."""

    __slots__ = ("_signal", "_fn", "_once", "connected")

    def __init__(self, signal: Signal, fn: Callable[[], object], *, once: bool = False) -> None:
        self._signal = signal
        self._fn = fn
        self._once = once
        self.connected = True

    def disconnect(self) -> None:
        """Detach the listener. Safe to call more than once."""
        if not self.connected:
            return
        self.connected = False
        self._signal._remove(self)

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<Connection {self._signal.name!r} {state}>"


class Signal:
    """
    Multi-listener notification channel with no payload.

    Usage:
        sig = Signal("on_reset")
        conn = sig.connect(lambda: print("reset"))
        sig.fire()
        conn.disconnect()
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._connections: list[Connection] = []

    def connect(self, fn: Callable[[], object]) -> Connection:
        """Register a listener and return its connection handle."""
        conn = Connection(self, fn)
        self._connections.append(conn)
        return conn

    def once(self, fn: Callable[[], object]) -> Connection:
        """Register a listener that disconnects itself after its first call."""
        conn = Connection(self, fn, once=True)
        self._connections.append(conn)
        return conn

    def fire(self) -> None:
        """Call every connected listener in connection order."""
        for conn in list(self._connections):
            if not conn.connected:
                continue
            if conn._once:
                conn.disconnect()
            try:
                conn._fn()
            except Exception:
                logger.exception(
                    "Signal listener failed",
                    extra={"signal": self.name, "listener": conn._fn},
                )

    def disconnect_all(self) -> None:
        """Disconnect every listener."""
        for conn in self._connections:
            conn.connected = False
        self._connections.clear()

    def destroy(self) -> None:
        """Release all listeners. The signal stays usable but empty."""
        self.disconnect_all()

    def _remove(self, conn: Connection) -> None:
        with contextlib.suppress(ValueError):
            self._connections.remove(conn)

    def __len__(self) -> int:
        return len(self._connections)

    def __repr__(self) -> str:
        return f"<Signal {self.name!r} listeners={len(self._connections)}>"
