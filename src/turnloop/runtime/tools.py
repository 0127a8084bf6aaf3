"""Resolve a turn's tool calls into a tool message."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

from turnloop.core.message import ToolCallPart, ToolMessage, ToolResult, thaw_json_structure
from turnloop.tracing import Span, SpanStatus, ToolSpanResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolCallSuccess:
    """Payload returned to the model verbatim."""

    content: str


@dataclass(frozen=True, slots=True)
class ToolCallFailure:
    """Structured tool failure reported back to the model."""

    type: str
    message: str


ToolCallOutcome = Union[ToolCallSuccess, ToolCallFailure, None]
ToolResolver = Callable[[str, Mapping[str, Any]], Awaitable[ToolCallOutcome]]


def serialize_tool_error(error_type: str, message: str) -> str:
    """Render a tool failure in the JSON shape the model receives."""

    return json.dumps({"error": {"type": error_type, "message": message}})


async def execute_tool_calls(
    calls: Sequence[ToolCallPart],
    resolver: ToolResolver | None,
    span: Span | None = None,
) -> ToolMessage:
    """Resolve ``calls`` sequentially and collect one result per call, in order.

    Tool failures never abort the loop; they become error results. Only the
    resolver boundary turns exceptions into data, and ``CancelledError`` is
    left to propagate.
    """

    results: list[ToolResult] = []
    for call in calls:
        child = span.start_span(f"tool:{call.name}", type="tool") if span is not None else None
        result = await _resolve(call, resolver)
        if result.is_error:
            LOGGER.warning("tool %s (%s) failed: %s", call.name, call.id, result.content)
        else:
            LOGGER.info("tool %s (%s) resolved", call.name, call.id)

        if child is not None:
            child.set_result(
                ToolSpanResult(
                    name=call.name,
                    input=thaw_json_structure(call.parameters),
                    output=result.content,
                )
            )
            child.end(SpanStatus.ERROR if result.is_error else SpanStatus.OK)
        results.append(result)

    return ToolMessage(content=tuple(results))


async def _resolve(call: ToolCallPart, resolver: ToolResolver | None) -> ToolResult:
    outcome: ToolCallOutcome = None
    if resolver is not None:
        try:
            outcome = await resolver(call.name, call.parameters)
        except Exception as exc:
            return _error_result(call, "exception", str(exc) or type(exc).__name__)

    if outcome is None:
        return _error_result(call, "not-found", f"Tool not found: {call.name}")
    if isinstance(outcome, ToolCallFailure):
        return _error_result(call, outcome.type, outcome.message)
    if isinstance(outcome, ToolCallSuccess):
        return ToolResult(id=call.id, name=call.name, content=outcome.content)

    return _error_result(
        call,
        "invalid-result",
        f"tool resolver returned unsupported value {type(outcome).__name__}",
    )


def _error_result(call: ToolCallPart, error_type: str, message: str) -> ToolResult:
    return ToolResult(
        id=call.id,
        name=call.name,
        content=serialize_tool_error(error_type, message),
        is_error=True,
    )
