"""Tests for clubhouse_api/middleware/json_formatter.py"""

from __future__ import annotations

import json
import logging
import sys

from clubhouse_api.middleware.json_formatter import JSONFormatter


def _record(msg: str = "hello %s", args: tuple = ("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord("clubhouse.test", logging.WARNING, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self) -> None:
        payload = json.loads(JSONFormatter().format(_record()))

        assert payload["level"] == "WARNING"
        assert payload["logger"] == "clubhouse.test"
        assert payload["message"] == "hello world"
        assert payload["timestamp"].endswith("+00:00")
        assert "trace_id" not in payload
        assert "exc_info" not in payload

    def test_single_line(self) -> None:
        output = JSONFormatter().format(_record("multi\nline", ()))
        assert "\n" not in output

    def test_trace_and_request_fields(self) -> None:
        request_data = {"method": "POST", "path": "/api/v1/join/by-code", "status_code": 200}
        payload = json.loads(
            JSONFormatter().format(_record(trace_id="abc", span_id="def", request=request_data))
        )

        assert payload["trace_id"] == "abc"
        assert payload["span_id"] == "def"
        assert payload["request"] == request_data

    def test_empty_trace_ids_are_omitted(self) -> None:
        payload = json.loads(JSONFormatter().format(_record(trace_id="", span_id="")))
        assert "trace_id" not in payload
        assert "span_id" not in payload

    def test_exception_info(self) -> None:
        try:
            raise RuntimeError("kaboom")
        except RuntimeError:
            record = logging.LogRecord(
                "clubhouse.test", logging.ERROR, __file__, 10, "failed", (), sys.exc_info()
            )

        payload = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: kaboom" in payload["exc_info"]

    def test_non_serialisable_values_fall_back_to_str(self) -> None:
        payload = json.loads(JSONFormatter().format(_record(request={"when": object()})))
        assert payload["request"]["when"].startswith("<object object")
