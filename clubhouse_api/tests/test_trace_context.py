"""Tests for clubhouse_api/middleware/trace_context.py"""

from __future__ import annotations

import logging

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from clubhouse_api.middleware.trace_context import (
    TRACE_HEADER,
    TraceContextMiddleware,
    TraceLoggingFilter,
    get_span_id,
    get_trace_id,
    parse_traceparent,
)

_VALID = "00-4bf92f3577b16e8153e785e29fc5f28c-d75597dee50b0cac-01"


class TestParseTraceparent:
    def test_valid(self) -> None:
        assert parse_traceparent(_VALID) == ("4bf92f3577b16e8153e785e29fc5f28c", "d75597dee50b0cac")

    def test_uppercase_is_accepted(self) -> None:
        assert parse_traceparent(_VALID.upper())[0] == "4bf92f3577b16e8153e785e29fc5f28c"

    @pytest.mark.parametrize(
        "header",
        [
            "",
            "garbage",
            "00-4bf92f3577b16e8153e785e29fc5f28c-d75597dee50b0cac",
            "ff-4bf92f3577b16e8153e785e29fc5f28c-d75597dee50b0cac-01",
            "00-00000000000000000000000000000000-d75597dee50b0cac-01",
            "00-4bf92f3577b16e8153e785e29fc5f28c-0000000000000000-01",
        ],
    )
    def test_invalid(self, header: str) -> None:
        assert parse_traceparent(header) == ("", "")


def _make_app() -> Starlette:
    async def _echo(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "trace_id": get_trace_id(),
                "span_id": get_span_id(),
                "parent_span_id": request.state.parent_span_id,
            }
        )

    app = Starlette(routes=[Route("/echo", _echo)])
    app.add_middleware(TraceContextMiddleware)
    return app


class TestTraceContextMiddleware:
    @pytest.mark.asyncio
    async def test_propagates_incoming_trace(self) -> None:
        async with AsyncClient(transport=ASGITransport(app=_make_app()), base_url="http://test") as client:
            resp = await client.get("/echo", headers={"traceparent": _VALID})

        body = resp.json()
        assert body["trace_id"] == "4bf92f3577b16e8153e785e29fc5f28c"
        assert body["parent_span_id"] == "d75597dee50b0cac"
        assert len(body["span_id"]) == 16
        assert body["span_id"] != "d75597dee50b0cac"
        assert resp.headers[TRACE_HEADER] == body["trace_id"]

    @pytest.mark.asyncio
    async def test_generates_trace_when_absent(self) -> None:
        async with AsyncClient(transport=ASGITransport(app=_make_app()), base_url="http://test") as client:
            first = await client.get("/echo")
            second = await client.get("/echo")

        assert len(first.json()["trace_id"]) == 32
        assert first.json()["trace_id"] != second.json()["trace_id"]
        assert first.json()["parent_span_id"] == ""


class TestTraceLoggingFilter:
    def test_injects_ids(self) -> None:
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert TraceLoggingFilter().filter(record) is True
        assert hasattr(record, "trace_id")
        assert hasattr(record, "span_id")
