"""Tests for the engine tracer decorator."""

from datetime import date
from enum import Enum

from recon_engines.tracer import TRACE_TYPE, compute_input_fingerprint, traced_engine


class Color(Enum):
    RED = "red"


class TestFingerprint:

    def test_deterministic(self):
        args = {"a": 1, "b": {"y": 2, "x": [date(2024, 1, 1), Color.RED]}}
        assert compute_input_fingerprint(("a", "b"), args) == compute_input_fingerprint(
            ("a", "b"), dict(reversed(list(args.items())))
        )

    def test_only_selected_fields(self):
        fp = compute_input_fingerprint(("a",), {"a": 1, "b": 2})
        assert fp == compute_input_fingerprint(("a",), {"a": 1, "b": 3})
        assert fp != compute_input_fingerprint(("a",), {"a": 2, "b": 2})

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("a",), {}) == compute_input_fingerprint(
            ("a",), {"a": None}
        )


class TestTracedEngine:

    def test_positional_and_keyword_arguments_fingerprint_alike(self, captured_logs):
        @traced_engine("adder", "2.1", fingerprint_fields=("x", "y"))
        def add(x, y):
            return x + y

        assert add(1, 2) == 3
        assert add(x=1, y=2) == 3

        traces = [r for r in captured_logs() if r["message"] == TRACE_TYPE]
        assert len(traces) == 2
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
        assert traces[0]["engine_version"] == "2.1"
        assert traces[0]["function"].endswith("add")
