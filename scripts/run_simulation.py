#!/usr/bin/env python3
"""Replay a call pattern against a RateController on a virtual clock.

Usage:
    python scripts/run_simulation.py --mode DEBOUNCE --delay 2 --interval 0.5 --duration 6
    python scripts/run_simulation.py --mode RATE_LIMIT --max-calls 3 --window 5 --queue \
        --interval 1 --duration 12

Outputs one JSON line per event (run, replay, limit_hit, reset) followed by a
summary line with the controller's counters.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

import orjson

from ratemanager.config import RateControllerConfig
from ratemanager.controller import Mode, RateController
from ratemanager.logging_config import setup_logging
from ratemanager.scheduling import ManualScheduler


def simulate(
    config: RateControllerConfig,
    interval_s: float,
    duration_s: float,
) -> list[dict[str, Any]]:
    """
    Call execute() every interval_s seconds from t=0 to duration_s inclusive.

    Returns:
        Event dicts in the order they happened, then a summary dict.
    """
    if interval_s <= 0:
        raise ValueError(f"interval_s must be > 0, got {interval_s}")
    if duration_s < 0:
        raise ValueError(f"duration_s must be >= 0, got {duration_s}")

    scheduler = ManualScheduler()
    controller = RateController.from_config(config, scheduler=scheduler)
    events: list[dict[str, Any]] = []
    in_execute = False

    def record(event: str, **fields: Any) -> None:
        events.append({"t": round(scheduler.now(), 6), "event": event, **fields})

    def on_call(call_id: int) -> None:
        record("run" if in_execute else "replay", call_id=call_id)

    controller.on_reset.connect(lambda: record("reset"))
    controller.on_limit_hit.connect(lambda: record("limit_hit"))

    call_id = 0
    while True:
        t = round(call_id * interval_s, 9)
        if t > duration_s:
            break
        scheduler.advance_to(t)
        in_execute = True
        try:
            controller.execute(on_call, call_id)
        finally:
            in_execute = False
        call_id += 1

    scheduler.advance_to(duration_s)

    events.append(
        {
            "t": round(scheduler.now(), 6),
            "event": "summary",
            "calls": call_id,
            "queue_depth": controller.queued_count,
            **asdict(controller.metrics),
        }
    )
    controller.destroy()
    return events


def main() -> int:
    """Run simulation."""
    parser = argparse.ArgumentParser(description="Simulate RateController admission")
    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in Mode],
        default=Mode.DEBOUNCE.value,
        help="Admission policy (default: DEBOUNCE)",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=2.0,
        help="Cooldown seconds for DEBOUNCE (default: 2)",
    )
    parser.add_argument(
        "--max-calls",
        type=int,
        default=3,
        help="Calls per window for RATE_LIMIT (default: 3)",
    )
    parser.add_argument(
        "--window",
        type=float,
        default=5.0,
        help="Window seconds for RATE_LIMIT (default: 5)",
    )
    parser.add_argument(
        "--queue",
        action="store_true",
        help="Queue rejected calls for replay (RATE_LIMIT only)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=0.5,
        help="Seconds between calls (default: 0.5)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=10.0,
        help="Simulated seconds (default: 10)",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Write JSON lines here instead of stdout",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log controller decisions to stderr",
    )

    args = parser.parse_args()

    setup_logging(level="DEBUG" if args.verbose else "WARNING", json_format=False)

    mode = Mode(args.mode)
    try:
        if mode is Mode.DEBOUNCE:
            config = RateControllerConfig(name="sim", mode=mode, delay_s=args.delay)
        else:
            config = RateControllerConfig(
                name="sim",
                mode=mode,
                max_calls=args.max_calls,
                window_s=args.window,
                queue_enabled=args.queue,
            )
        events = simulate(config, args.interval, args.duration)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    lines = b"".join(orjson.dumps(event) + b"\n" for event in events)
    if args.out is not None:
        args.out.write_bytes(lines)
        print(f"Wrote {len(events)} events to {args.out}", file=sys.stderr)
    else:
        sys.stdout.buffer.write(lines)

    return 0


if __name__ == "__main__":
    sys.exit(main())
