from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from turnloop.core.adapters.chatcompletions import ChatCompletionsAdapter, response_to_turn_result
from turnloop.core.adapters.toolbridge import ToolSpec
from turnloop.core.errors import AdapterError
from turnloop.core.message import (
    AssistantMessage,
    FinishReason,
    ModelError,
    ModelResponse,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolMessage,
    ToolResult,
    Usage,
    UserMessage,
)

from tests.fixtures import chat_fake


def _adapter(response: Any, **kwargs: Any) -> tuple[ChatCompletionsAdapter, chat_fake.FakeCompletions]:
    client, completions = chat_fake.build_client([response])
    return ChatCompletionsAdapter(client, default_model="gpt-test", **kwargs), completions


def test_generate_returns_text_and_reasoning_parts() -> None:
    adapter, completions = _adapter(chat_fake.completion_response(content="Four.", reasoning="1 + 3"))

    result = asyncio.run(adapter.generate([UserMessage(content="1 + 3?")], system="Math"))

    assert result == ModelResponse(
        content=(ThinkingPart("1 + 3"), TextPart("Four.")),
        finish_reason=FinishReason.STOP,
        usage=Usage(12, 6),
        id="chatcmpl-sync",
        model="gpt-test",
    )
    [call] = completions.calls
    assert "stream" not in call
    assert call["messages"][0] == {"role": "system", "content": "Math"}


def test_generate_awaits_async_clients() -> None:
    async def _create(**kwargs: Any) -> dict[str, Any]:
        return chat_fake.completion_response(content="async")

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=_create)))
    adapter = ChatCompletionsAdapter(client, default_model="gpt-test")

    result = asyncio.run(adapter.generate([UserMessage(content="hi")]))

    assert isinstance(result, ModelResponse)
    assert result.content == (TextPart("async"),)


def test_generate_parses_tool_calls_and_sends_tool_schema() -> None:
    response = chat_fake.completion_response(
        tool_calls=[
            {"id": "call-1", "type": "function", "function": {"name": "sum", "arguments": '{"a": 1, "b": 3}'}},
            {"id": "call-2", "type": "function", "function": {"name": "clock", "arguments": ""}},
        ],
        finish_reason="tool_calls",
    )
    adapter, completions = _adapter(response)
    spec = ToolSpec(
        name="sum",
        description="Add two numbers",
        parameters={"type": "object", "properties": {"a": {"type": "number"}, "b": {"type": "number"}}},
    )

    result = asyncio.run(adapter.generate([UserMessage(content="1 + 3?")], tools=[spec]))

    assert isinstance(result, ModelResponse)
    assert result.finish_reason is FinishReason.FUNCTION_CALL
    assert result.content == (
        ToolCallPart(id="call-1", name="sum", parameters={"a": 1, "b": 3}),
        ToolCallPart(id="call-2", name="clock"),
    )
    [call] = completions.calls
    assert call["tools"][0]["function"]["name"] == "sum"


def test_generate_maps_error_payload_to_model_error() -> None:
    adapter, _ = _adapter({"error": {"code": 429, "message": "slow down"}})

    result = asyncio.run(adapter.generate([UserMessage(content="hi")]))

    assert result == ModelError(type="429", message="slow down", usage=Usage())


def test_unusable_tool_arguments_become_model_error() -> None:
    response = chat_fake.completion_response(
        tool_calls=[{"id": "call-1", "type": "function", "function": {"name": "sum", "arguments": "not json"}}],
        finish_reason="tool_calls",
    )

    result = response_to_turn_result(response)

    assert isinstance(result, ModelError)
    assert result.type == "InvalidToolArguments"


def test_non_finite_tool_arguments_become_model_error() -> None:
    response = chat_fake.completion_response(
        tool_calls=[{"id": "call-1", "type": "function", "function": {"name": "sum", "arguments": '{"a": Infinity}'}}],
        finish_reason="tool_calls",
    )

    result = response_to_turn_result(response)

    assert isinstance(result, ModelError)
    assert result.type == "InvalidToolArguments"
    assert "non-finite" in result.message


def test_missing_choices_raise_adapter_error() -> None:
    with pytest.raises(AdapterError):
        response_to_turn_result({"id": "x", "choices": []})


def test_client_failures_are_wrapped() -> None:
    class _Failing:
        def create(self, **kwargs: Any) -> Any:
            raise TimeoutError("read timed out")

    client = SimpleNamespace(chat=SimpleNamespace(completions=_Failing()))
    adapter = ChatCompletionsAdapter(client, default_model="gpt-test")

    with pytest.raises(AdapterError) as excinfo:
        asyncio.run(adapter.generate([UserMessage(content="hi")]))

    assert isinstance(excinfo.value.__cause__, TimeoutError)


@pytest.mark.parametrize("option", ["messages", "stream", "tools"])
def test_reserved_options_are_refused(option: str) -> None:
    adapter, _ = _adapter(chat_fake.completion_response(content="x"))

    with pytest.raises(AdapterError, match=option):
        asyncio.run(adapter.generate([UserMessage(content="hi")], **{option: True}))


def test_reserved_default_params_are_refused() -> None:
    client, _ = chat_fake.build_client([])

    with pytest.raises(ValueError):
        ChatCompletionsAdapter(client, default_model="gpt-test", default_params={"stream": True})


def test_model_name_is_required() -> None:
    client, _ = chat_fake.build_client([chat_fake.completion_response(content="x")])
    adapter = ChatCompletionsAdapter(client)

    with pytest.raises(AdapterError, match="model"):
        asyncio.run(adapter.generate([UserMessage(content="hi")]))


def test_model_option_overrides_default() -> None:
    adapter, completions = _adapter(chat_fake.completion_response(content="x"))

    asyncio.run(adapter.generate([UserMessage(content="hi")], model="gpt-other"))

    assert completions.calls[0]["model"] == "gpt-other"


def test_history_with_tool_round_trip_is_mapped() -> None:
    adapter, completions = _adapter(chat_fake.completion_response(content="4"))
    history = [
        UserMessage(content="1 + 3?"),
        AssistantMessage(
            content=(
                ThinkingPart("add"),
                TextPart("Calling"),
                ToolCallPart(id="call-1", name="sum", parameters={"a": 1, "b": 3}),
            ),
            finish_reason=FinishReason.FUNCTION_CALL,
        ),
        ToolMessage(content=(ToolResult(id="call-1", name="sum", content="4"),)),
    ]

    asyncio.run(adapter.generate(history))

    assert completions.calls[0]["messages"] == [
        {"role": "user", "content": "1 + 3?"},
        {
            "role": "assistant",
            "content": "Calling",
            "tool_calls": [
                {
                    "id": "call-1",
                    "type": "function",
                    "function": {"name": "sum", "arguments": '{"a": 1, "b": 3}'},
                }
            ],
        },
        {"role": "tool", "tool_call_id": "call-1", "content": "4"},
    ]
