from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from turnloop.config import RunConfig
from turnloop.core.message import (
    FinishReason,
    Message,
    ModelError,
    ModelResponse,
    TextPart,
    ToolCallPart,
    ToolMessage,
    TurnResult,
    Usage,
    UserMessage,
)
from turnloop.runtime import (
    CancellationToken,
    RunCancelled,
    RunFailure,
    RunSuccess,
    ToolCallFailure,
    generate,
)

from tests.fixtures.scripted import ScriptedAdapter


def _tool_response(*names: str) -> ModelResponse:
    return ModelResponse(
        content=tuple(ToolCallPart(id=f"call-{index}", name=name) for index, name in enumerate(names)),
        finish_reason=FinishReason.FUNCTION_CALL,
        usage=Usage(4, 1),
        model="scripted-1",
    )


def _text_response(text: str) -> ModelResponse:
    return ModelResponse(content=(TextPart(text),), finish_reason=FinishReason.STOP, usage=Usage(6, 2), model="scripted-1")


async def _failing_tool(name: str, parameters: Mapping[str, Any]) -> ToolCallFailure:
    return ToolCallFailure(type="unavailable", message=f"{name} is offline")


def test_generate_runs_tool_loop(user_prompt: list[UserMessage]) -> None:
    adapter = ScriptedAdapter(results=[_tool_response("lookup"), _text_response("Done.")])

    result = asyncio.run(generate(adapter, user_prompt, on_tool_call=_failing_tool))

    assert isinstance(result, RunSuccess)
    assert result.final.text == "Done."
    tool_message = result.messages[1]
    assert isinstance(tool_message, ToolMessage)
    assert tool_message.content[0].is_error
    assert "lookup is offline" in tool_message.content[0].content
    assert result.usage == Usage(10, 3)
    assert len(adapter.requests) == 2


def test_generate_model_error_fails_with_usage(user_prompt: list[UserMessage]) -> None:
    adapter = ScriptedAdapter(results=[ModelError(type="rate_limited", message="slow down", usage=Usage(1, 0))])

    result = asyncio.run(generate(adapter, user_prompt))

    assert isinstance(result, RunFailure)
    assert result.result == "error"
    assert result.error.source == "model"
    assert result.error.kind == "rate_limited"
    assert result.messages == ()
    assert result.usage == Usage(1, 0)


def test_generate_respects_pre_cancelled_token(user_prompt: list[UserMessage]) -> None:
    adapter = ScriptedAdapter(results=[_text_response("unused")])
    token = CancellationToken()
    token.cancel()

    result = asyncio.run(generate(adapter, user_prompt, cancel_token=token))

    assert result == RunCancelled(messages=())
    assert adapter.requests == []


def test_generate_checks_cancellation_before_tools(user_prompt: list[UserMessage]) -> None:
    token = CancellationToken()

    class _CancellingAdapter(ScriptedAdapter):
        async def generate(self, messages: Sequence[Message], /, **kwargs: Any) -> TurnResult:
            result = await super().generate(messages, **kwargs)
            token.cancel()
            return result

    adapter = _CancellingAdapter(results=[_tool_response("lookup")])
    calls: list[str] = []

    async def _resolver(name: str, parameters: Mapping[str, Any]) -> None:
        calls.append(name)

    result = asyncio.run(generate(adapter, user_prompt, on_tool_call=_resolver, cancel_token=token))

    assert isinstance(result, RunCancelled)
    assert calls == []
    assert result.usage == Usage(4, 1)


def test_generate_max_iterations(user_prompt: list[UserMessage]) -> None:
    adapter = ScriptedAdapter(results=[_tool_response("a"), _tool_response("b"), _text_response("late")])

    result = asyncio.run(generate(adapter, user_prompt, config=RunConfig(max_iterations=2)))

    assert isinstance(result, RunFailure)
    assert result.error.kind == "MaxIterations"
    assert len(result.messages) == 4
    assert result.usage == Usage(8, 2)


def test_generate_transport_errors_propagate(user_prompt: list[UserMessage]) -> None:
    adapter = ScriptedAdapter(results=[TimeoutError("no response")])

    with pytest.raises(TimeoutError):
        asyncio.run(generate(adapter, user_prompt))


def test_generate_does_not_require_streaming_support(user_prompt: list[UserMessage]) -> None:
    from tests.fixtures.scripted import OneShotAdapter

    adapter = OneShotAdapter(results=[_text_response("hi")])

    result = asyncio.run(generate(adapter, user_prompt))

    assert isinstance(result, RunSuccess)
