"""
Call-admission control: Debounce and sliding-window RateLimit.

Debounce admits one call per cooldown; RateLimit admits up to N calls per
rolling window and can queue rejected calls for replay.
"""

from __future__ import annotations

from ratemanager.config import (
    ConfigError,
    RateControllerConfig,
    build_controllers,
    load_configs,
    parse_configs,
)
from ratemanager.controller import (
    ControllerDestroyedError,
    ControllerMetrics,
    DebounceState,
    InvalidArgumentError,
    Mode,
    QueuedCall,
    RateController,
    RateLimitState,
)
from ratemanager.scheduling import AsyncioScheduler, ManualScheduler, Scheduler
from ratemanager.signals import Connection, Signal

__all__ = [
    "AsyncioScheduler",
    "ConfigError",
    "Connection",
    "ControllerDestroyedError",
    "ControllerMetrics",
    "DebounceState",
    "InvalidArgumentError",
    "ManualScheduler",
    "Mode",
    "QueuedCall",
    "RateController",
    "RateControllerConfig",
    "RateLimitState",
    "Scheduler",
    "Signal",
    "build_controllers",
    "load_configs",
    "parse_configs",
]

__version__ = "0.1.0"
