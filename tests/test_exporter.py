"""
Tests for Prometheus metrics exporter.

Validates:
- Every required metric name is exported
- Counters advance by delta, never double count
- Labels stay low-cardinality (controller, mode)
"""

from __future__ import annotations

import re

from prometheus_client import generate_latest
from prometheus_client.registry import CollectorRegistry

from ratemanager import ManualScheduler, Mode, RateController
from ratemanager.exporter import LABELS, REQUIRED_METRIC_NAMES, MetricsExporter


_MODES = {"jump": "DEBOUNCE", "remote": "RATE_LIMIT"}


def _sample(registry: CollectorRegistry, name: str, controller: str) -> float | None:
    return registry.get_sample_value(
        name, {"controller": controller, "mode": _MODES[controller]}
    )


def _controllers() -> tuple[RateController, RateController, ManualScheduler]:
    sched = ManualScheduler()
    jump = RateController(2.0, scheduler=sched, name="jump")
    remote = RateController(1, 1.0, Mode.RATE_LIMIT, scheduler=sched, name="remote")
    remote.set_queue_enabled(True)
    return jump, remote, sched


class TestMetricNames:
    """All required metric names appear in the output."""

    def test_required_metrics_present(self) -> None:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        jump, remote, _ = _controllers()
        exporter.update([jump, remote])

        output = generate_latest(registry).decode("utf-8")
        exported = {
            line.split("{")[0].split(" ")[0]
            for line in output.splitlines()
            if line and not line.startswith("#")
        }
        missing = REQUIRED_METRIC_NAMES - exported
        assert not missing, f"Missing metrics: {missing}"

    def test_only_expected_labels(self) -> None:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        jump, remote, _ = _controllers()
        exporter.update([jump, remote])

        output = generate_latest(registry).decode("utf-8")
        found: set[str] = set()
        for match in re.finditer(r"\{([^}]+)\}", output):
            for pair in match.group(1).split(","):
                found.add(pair.split("=")[0].strip())
        assert found == set(LABELS)


class TestUpdate:
    """Gauges and counters reflect controller state."""

    def test_counters_track_deltas(self) -> None:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        jump, remote, _ = _controllers()

        jump.execute(lambda: None)
        jump.execute(lambda: None)
        exporter.update([jump, remote])
        exporter.update([jump, remote])

        assert _sample(registry, "ratemanager_calls_admitted_total", "jump") == 1
        assert _sample(registry, "ratemanager_calls_rejected_total", "jump") == 1

        jump.reset()
        exporter.update([jump, remote])
        assert _sample(registry, "ratemanager_resets_total", "jump") == 1

    def test_queue_gauges(self) -> None:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        jump, remote, sched = _controllers()

        for _ in range(3):
            remote.execute(lambda: None)
        exporter.update([jump, remote])

        assert _sample(registry, "ratemanager_queue_depth", "remote") == 2
        assert _sample(registry, "ratemanager_calls_in_window", "remote") == 1
        assert _sample(registry, "ratemanager_on_cooldown", "remote") == 1

        sched.advance_to(1.0)
        exporter.update([jump, remote])
        assert _sample(registry, "ratemanager_queue_depth", "remote") == 1
        assert _sample(registry, "ratemanager_calls_replayed_total", "remote") == 1

    def test_paused_gauge(self) -> None:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        jump, remote, _ = _controllers()
        jump.pause()
        exporter.update([jump, remote])
        assert _sample(registry, "ratemanager_paused", "jump") == 1
        assert _sample(registry, "ratemanager_paused", "remote") == 0

    def test_destroyed_controllers_skipped(self) -> None:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        jump, remote, _ = _controllers()
        jump.destroy()
        exporter.update([jump, remote])
        assert _sample(registry, "ratemanager_paused", "jump") is None

    def test_reset_counter_tracking(self) -> None:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        jump, remote, _ = _controllers()
        jump.execute(lambda: None)
        exporter.update([jump])
        exporter.reset_counter_tracking()
        exporter.update([jump])
        # Tracking reset re-applies the full value
        assert _sample(registry, "ratemanager_calls_admitted_total", "jump") == 2
