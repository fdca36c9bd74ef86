"""Tests for logging configuration module.

Verifies that:
1. JSON output is one valid object per line
2. Extra fields are carried through and coerced to JSON-safe values
3. Callables are rendered by qualified name
4. setup_logging installs exactly one handler
"""

from __future__ import annotations

import functools
import io
import json
import logging
import sys
from collections.abc import Iterator

import pytest

from ratemanager.logging_config import (
    MAX_SEQUENCE_ITEMS,
    JsonFormatter,
    SimpleFormatter,
    _coerce_value,
    get_logger,
    setup_logging,
)


def _record(msg: str = "Call rejected", level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="ratemanager.controller",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _handler_fn() -> None:
    pass


class TestCoerceValue:
    """Tests for extra-field coercion."""

    def test_scalars_pass_through(self) -> None:
        assert _coerce_value(3) == 3
        assert _coerce_value(1.5) == 1.5
        assert _coerce_value(True) is True
        assert _coerce_value(None) is None
        assert _coerce_value("jump") == "jump"

    def test_function_rendered_by_qualname(self) -> None:
        assert _coerce_value(_handler_fn) == f"{__name__}._handler_fn"

    def test_partial_rendered_by_wrapped_function(self) -> None:
        assert _coerce_value(functools.partial(_handler_fn)) == f"{__name__}._handler_fn"

    def test_long_sequences_summarized(self) -> None:
        value = list(range(MAX_SEQUENCE_ITEMS + 5))
        assert _coerce_value(value) == f"[list:{MAX_SEQUENCE_ITEMS + 5} items]"

    def test_short_sequences_kept(self) -> None:
        assert _coerce_value((1, 2)) == [1, 2]

    def test_nested_dict(self) -> None:
        assert _coerce_value({"a": {"b": _handler_fn}}) == {
            "a": {"b": f"{__name__}._handler_fn"}
        }

    def test_other_objects_stringified(self) -> None:
        class Thing:
            def __str__(self) -> str:
                return "thing"

        assert _coerce_value(Thing()) == "thing"


class TestJsonFormatter:
    """Tests for JSON output."""

    def test_basic_fields(self) -> None:
        out = JsonFormatter().format(_record())
        data = json.loads(out)
        assert data["level"] == "INFO"
        assert data["logger"] == "ratemanager.controller"
        assert data["msg"] == "Call rejected"
        assert "ts" in data
        assert "file" not in data

    def test_extra_fields_included(self) -> None:
        out = JsonFormatter().format(_record(controller="jump", callback=_handler_fn))
        data = json.loads(out)
        assert data["controller"] == "jump"
        assert data["callback"] == f"{__name__}._handler_fn"

    def test_location_added_for_warnings(self) -> None:
        data = json.loads(JsonFormatter().format(_record(level=logging.WARNING)))
        assert data["line"] == 10

    def test_exception_included(self) -> None:
        try:
            raise RuntimeError("replay failed")
        except RuntimeError:
            record = _record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: replay failed" in data["exc"]

    def test_infinite_time_left_serializes(self) -> None:
        out = JsonFormatter().format(_record(time_left_s=float("inf")))
        json.loads(out)


class TestSimpleFormatter:
    """Tests for human-readable output."""

    def test_format_with_extra(self) -> None:
        out = SimpleFormatter().format(_record(controller="jump", queue_depth=2))
        assert out.startswith("INFO     ratemanager.controller: Call rejected")
        assert "controller=jump" in out
        assert "queue_depth=2" in out

    def test_format_without_extra(self) -> None:
        out = SimpleFormatter().format(_record())
        assert "|" not in out


class TestSetupLogging:
    """Tests for setup_logging()."""

    @pytest.fixture(autouse=True)
    def _restore_root(self) -> Iterator[None]:
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_output(self) -> None:
        stream = io.StringIO()
        setup_logging(level=logging.DEBUG, stream=stream)
        get_logger("ratemanager.test").info("hello", extra={"controller": "jump"})

        line = stream.getvalue().strip()
        data = json.loads(line)
        assert data["msg"] == "hello"
        assert data["controller"] == "jump"

    def test_single_handler(self) -> None:
        setup_logging(stream=io.StringIO())
        setup_logging(stream=io.StringIO())
        assert len(logging.getLogger().handlers) == 1

    def test_simple_format(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=False, stream=stream)
        get_logger("ratemanager.test").warning("careful")
        assert "WARNING" in stream.getvalue()
        assert "careful" in stream.getvalue()
