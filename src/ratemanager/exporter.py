"""
Prometheus metrics exporter for RateController instances.

Labels are limited to the controller name and its mode. Callback names,
arguments and other per-call values are never used as labels.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ratemanager.controller import RateController

LABELS = ("controller", "mode")

# ControllerMetrics field -> counter help text
_COUNTER_FIELDS: dict[str, str] = {
    "calls_admitted": "Calls admitted immediately",
    "calls_rejected": "Calls rejected by cooldown or full window",
    "calls_queued": "Rejected calls queued for replay",
    "calls_replayed": "Queued calls dispatched after capacity freed",
    "calls_dropped": "Queued calls discarded by reset, cancel or queue disable",
    "replay_failures": "Queued calls that raised during replay",
    "resets": "Manual resets",
}


class MetricsExporter:
    """
    Syncs ControllerMetrics and controller state into a CollectorRegistry.

    Usage:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update([jump_cd, remote_rl])
        # generate_latest(registry) -> bytes for /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._counters: dict[str, Counter] = {
            field: Counter(
                f"ratemanager_{field}",
                doc,
                LABELS,
                registry=self._registry,
            )
            for field, doc in _COUNTER_FIELDS.items()
        }

        self._on_cooldown = Gauge(
            "ratemanager_on_cooldown",
            "1 if the next call would be rejected, else 0",
            LABELS,
            registry=self._registry,
        )
        self._paused = Gauge(
            "ratemanager_paused",
            "1 if the controller is paused, else 0",
            LABELS,
            registry=self._registry,
        )
        self._queue_depth = Gauge(
            "ratemanager_queue_depth",
            "Calls waiting for replay",
            LABELS,
            registry=self._registry,
        )
        self._calls_in_window = Gauge(
            "ratemanager_calls_in_window",
            "Admitted calls inside the current sliding window",
            LABELS,
            registry=self._registry,
        )

        # Last seen counter values per (controller, field); counters are monotonic
        self._last_seen: dict[tuple[str, str], int] = {}

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def update(self, controllers: Iterable[RateController]) -> None:
        """
        Update metrics from each live controller.

        Destroyed controllers are skipped.
        """
        for controller in controllers:
            if controller.destroyed:
                continue
            self._update_controller(controller)

    def _update_controller(self, controller: RateController) -> None:
        labels = (controller.name, controller.mode.value)
        status = controller.get_status()

        # Gauges: set directly
        self._on_cooldown.labels(*labels).set(1 if status["on_cooldown"] else 0)
        self._paused.labels(*labels).set(1 if status["paused"] else 0)
        self._queue_depth.labels(*labels).set(int(status.get("queue_depth", 0)))
        self._calls_in_window.labels(*labels).set(int(status.get("calls_in_window", 0)))

        # Counters: increment by delta since last update
        for field, counter in self._counters.items():
            current = getattr(controller.metrics, field)
            key = (controller.name, field)
            delta = current - self._last_seen.get(key, 0)
            child = counter.labels(*labels)
            if delta > 0:
                child.inc(delta)
            self._last_seen[key] = current

    def reset_counter_tracking(self) -> None:
        """
        Reset internal counter tracking.

        Use when controllers are recreated. Does NOT reset the Prometheus
        counters themselves.
        """
        self._last_seen.clear()


# Counters are exported with _total suffix by prometheus_client
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {f"ratemanager_{field}_total" for field in _COUNTER_FIELDS}
    | {
        "ratemanager_on_cooldown",
        "ratemanager_paused",
        "ratemanager_queue_depth",
        "ratemanager_calls_in_window",
    }
)
