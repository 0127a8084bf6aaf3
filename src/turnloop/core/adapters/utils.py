"""Pure conversion helpers shared by adapter implementations."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..errors import AdapterError
from ..message import (
    AssistantMessage,
    FinishReason,
    Message,
    TextPart,
    ToolCallPart,
    ToolMessage,
    UserMessage,
)
from .toolbridge import tool_call_to_openai

_OPENAI_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.FUNCTION_CALL,
    "function_call": FinishReason.FUNCTION_CALL,
    "content_filter": FinishReason.ERROR,
}


def convert_finish_reason(reason: str | None) -> FinishReason:
    """Map a Chat Completions ``finish_reason`` onto :class:`FinishReason`."""

    if reason is None:
        return FinishReason.STOP
    return _OPENAI_FINISH_REASONS.get(reason, FinishReason.STOP)


def messages_to_openai(messages: Sequence[Message], *, system: str | None = None) -> list[dict[str, Any]]:
    """Convert canonical messages into the Chat Completions ``messages`` format.

    Tool messages expand into one ``role="tool"`` entry per result. Thinking
    parts are not replayed to the provider.
    """

    converted: list[dict[str, Any]] = []
    if system:
        converted.append({"role": "system", "content": system})

    for message in messages:
        if isinstance(message, UserMessage):
            converted.append({"role": "user", "content": _user_content(message)})
        elif isinstance(message, AssistantMessage):
            converted.append(_assistant_payload(message))
        elif isinstance(message, ToolMessage):
            for result in message.content:
                converted.append(
                    {"role": "tool", "tool_call_id": result.id, "content": result.content}
                )
        else:
            msg = f"unsupported message type {type(message).__name__}"
            raise AdapterError(msg)

    return converted


def _user_content(message: UserMessage) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    return [{"type": "text", "text": part.text} for part in message.content]


def _assistant_payload(message: AssistantMessage) -> dict[str, Any]:
    text = "".join(part.text for part in message.content if isinstance(part, TextPart))
    tool_calls = [part for part in message.content if isinstance(part, ToolCallPart)]

    payload: dict[str, Any] = {"role": "assistant", "content": text or None}
    if tool_calls:
        payload["tool_calls"] = [tool_call_to_openai(call) for call in tool_calls]
    return payload
