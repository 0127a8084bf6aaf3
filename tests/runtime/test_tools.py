from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from typing import Any

import pytest

from turnloop.core.message import ToolCallPart, ToolResult
from turnloop.runtime.tools import (
    ToolCallFailure,
    ToolCallSuccess,
    execute_tool_calls,
    serialize_tool_error,
)
from turnloop.tracing import SpanStatus, ToolSpanResult, Tracer


async def _resolver(name: str, parameters: Mapping[str, Any]) -> ToolCallSuccess | ToolCallFailure | None:
    if name == "sum":
        return ToolCallSuccess(content=str(parameters["a"] + parameters["b"]))
    if name == "divide":
        return ToolCallFailure(type="math", message="division by zero")
    if name == "explode":
        raise RuntimeError("kaboom")
    return None


def _calls(*names: str) -> list[ToolCallPart]:
    return [
        ToolCallPart(id=f"call-{index}", name=name, parameters={"a": 1, "b": 3} if name == "sum" else {})
        for index, name in enumerate(names)
    ]


def test_results_follow_call_order_with_error_shapes() -> None:
    message = asyncio.run(execute_tool_calls(_calls("sum", "divide", "explode", "missing"), _resolver))

    assert message.content == (
        ToolResult(id="call-0", name="sum", content="4"),
        ToolResult(id="call-1", name="divide", content=serialize_tool_error("math", "division by zero"), is_error=True),
        ToolResult(id="call-2", name="explode", content=serialize_tool_error("exception", "kaboom"), is_error=True),
        ToolResult(
            id="call-3",
            name="missing",
            content=serialize_tool_error("not-found", "Tool not found: missing"),
            is_error=True,
        ),
    )


def test_error_content_is_json() -> None:
    assert json.loads(serialize_tool_error("not-found", "Tool not found: x")) == {
        "error": {"type": "not-found", "message": "Tool not found: x"}
    }


def test_missing_resolver_treats_every_call_as_not_found() -> None:
    message = asyncio.run(execute_tool_calls(_calls("sum", "sum"), None))

    assert [result.is_error for result in message.content] == [True, True]
    assert all("not-found" in result.content for result in message.content)


def test_calls_run_sequentially() -> None:
    order: list[str] = []

    async def _slow(name: str, parameters: Mapping[str, Any]) -> ToolCallSuccess:
        order.append(f"begin:{name}")
        await asyncio.sleep(0)
        order.append(f"end:{name}")
        return ToolCallSuccess(content=name)

    asyncio.run(execute_tool_calls(_calls("one", "two"), _slow))

    assert order == ["begin:one", "end:one", "begin:two", "end:two"]


def test_cancelled_error_propagates() -> None:
    async def _cancelled(name: str, parameters: Mapping[str, Any]) -> None:
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(execute_tool_calls(_calls("sum"), _cancelled))


def test_each_call_records_a_tool_span() -> None:
    tracer = Tracer()
    parent = tracer.start_span("turn-1", type="llm")

    asyncio.run(execute_tool_calls(_calls("sum", "missing"), _resolver, parent))

    children = tracer.children_of(parent.record)
    assert [(span.name, span.type, span.status) for span in children] == [
        ("tool:sum", "tool", SpanStatus.OK),
        ("tool:missing", "tool", SpanStatus.ERROR),
    ]
    assert children[0].result == ToolSpanResult(name="sum", input={"a": 1, "b": 3}, output="4")
    assert all(not span.open for span in children)
