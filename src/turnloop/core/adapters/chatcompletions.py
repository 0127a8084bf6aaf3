"""OpenAI-compatible Chat Completions adapter with streaming normalization."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import AdapterError
from ..message import (
    AssistantPart,
    Message,
    ModelError,
    ModelResponse,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    TurnResult,
    Usage,
)
from .base import ModelAdapter
from .stream import (
    ProviderStreamIterator,
    StreamComplete,
    StreamError,
    StreamEvent,
    StreamStart,
    TextComplete,
    TextDelta,
    TextStart,
    ThinkingComplete,
    ThinkingDelta,
    ThinkingStart,
    ToolCallComplete,
    ToolCallStart,
)
from .toolbridge import ToolSpec, parse_tool_arguments, tool_specs_to_openai
from .utils import convert_finish_reason, messages_to_openai

LOGGER = logging.getLogger(__name__)

_RESERVED_OPTIONS = frozenset({"messages", "stream", "tools"})


class _VendorModel(BaseModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True)


class ChatFunctionDelta(_VendorModel):
    name: Optional[str] = None
    arguments: Optional[str] = None


class ChatToolCallDelta(_VendorModel):
    index: int
    id: Optional[str] = None
    type: Optional[str] = None
    function: Optional[ChatFunctionDelta] = None


class ChatDelta(_VendorModel):
    content: Optional[str] = None
    reasoning_content: Optional[str] = None
    reasoning: Optional[str] = None
    tool_calls: Optional[List[ChatToolCallDelta]] = None


class ChatChunkChoice(_VendorModel):
    index: int = 0
    delta: ChatDelta = Field(default_factory=ChatDelta)
    finish_reason: Optional[str] = None


class ChatUsage(_VendorModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def to_usage(self) -> Usage:
        return Usage(input_tokens=self.prompt_tokens, output_tokens=self.completion_tokens)


class ChatErrorPayload(_VendorModel):
    code: Union[int, str, None] = None
    type: Optional[str] = None
    message: str = "provider reported an error"

    @property
    def kind(self) -> str:
        if self.type:
            return self.type
        if self.code is not None:
            return str(self.code)
        return "ProviderError"


class ChatCompletionChunk(_VendorModel):
    """One server-sent event of a streaming Chat Completions response."""

    id: str = ""
    model: str = ""
    choices: List[ChatChunkChoice] = Field(default_factory=list)
    usage: Optional[ChatUsage] = None
    error: Optional[ChatErrorPayload] = None


class ChatFunctionCall(_VendorModel):
    name: str
    arguments: Union[str, dict, None] = None


class ChatToolCall(_VendorModel):
    id: str
    type: str = "function"
    function: ChatFunctionCall


class ChatResponseMessage(_VendorModel):
    content: Optional[str] = None
    reasoning_content: Optional[str] = None
    reasoning: Optional[str] = None
    tool_calls: Optional[List[ChatToolCall]] = None


class ChatResponseChoice(_VendorModel):
    message: ChatResponseMessage
    finish_reason: Optional[str] = None


class ChatCompletion(_VendorModel):
    """Non-streaming Chat Completions response."""

    id: str = ""
    model: str = ""
    choices: List[ChatResponseChoice] = Field(default_factory=list)
    usage: Optional[ChatUsage] = None
    error: Optional[ChatErrorPayload] = None


def create_chat_completion(client: Any, payload: Mapping[str, Any]) -> Any:
    """Issue a Chat Completions request using the provided client."""

    return client.chat.completions.create(**payload)


class ChatCompletionsAdapter(ModelAdapter):
    """Translate canonical messages to an OpenAI-compatible chat completion API."""

    supports_streaming = True

    def __init__(
        self,
        client: Any,
        *,
        default_model: str | None = None,
        default_params: Mapping[str, Any] | None = None,
        provider_name: str = "chatcompletions",
    ) -> None:
        self._client = client
        self._default_model = default_model
        self._default_params = dict(default_params or {})
        self._provider_name = provider_name

        if "model" in self._default_params and self._default_model is None:
            self._default_model = str(self._default_params.pop("model"))

        conflict = _RESERVED_OPTIONS.intersection(self._default_params)
        if conflict:
            joined = ", ".join(sorted(conflict))
            msg = f"default parameters cannot include reserved keys: {joined}"
            raise ValueError(msg)

    @property
    def name(self) -> str:
        return self._provider_name

    async def generate(
        self,
        messages: Sequence[Message],
        /,
        *,
        system: str | None = None,
        tools: Sequence[ToolSpec] | None = None,
        **options: Any,
    ) -> TurnResult:
        payload = self._build_payload(messages, system=system, tools=tools, options=options)

        try:
            response = create_chat_completion(self._client, payload)
            if inspect.isawaitable(response):
                response = await response
        except Exception as exc:
            msg = f"{self.name} client call failed"
            raise AdapterError(msg) from exc

        return response_to_turn_result(response)

    def stream(
        self,
        messages: Sequence[Message],
        /,
        *,
        system: str | None = None,
        tools: Sequence[ToolSpec] | None = None,
        **options: Any,
    ) -> ProviderStreamIterator:
        payload = self._build_payload(messages, system=system, tools=tools, options=options)
        payload["stream"] = True
        payload.setdefault("stream_options", {"include_usage": True})

        try:
            stream = create_chat_completion(self._client, payload)
        except Exception as exc:
            msg = f"{self.name} client call failed"
            raise AdapterError(msg) from exc

        return ProviderStreamIterator(stream, ChatCompletionsStreamNormalizer())

    def _build_payload(
        self,
        messages: Sequence[Message],
        *,
        system: str | None,
        tools: Sequence[ToolSpec] | None,
        options: Mapping[str, Any],
    ) -> dict[str, Any]:
        if not messages:
            msg = "at least one message is required"
            raise AdapterError(msg)

        request_options = dict(self._default_params)
        for key, value in options.items():
            if key in _RESERVED_OPTIONS:
                msg = f"option '{key}' is managed by the adapter"
                raise AdapterError(msg)
            request_options[key] = value

        model_name = request_options.pop("model", None) or self._default_model
        if not model_name:
            msg = "a model name must be provided"
            raise AdapterError(msg)

        payload: dict[str, Any] = {"model": str(model_name), **request_options}
        payload["messages"] = messages_to_openai(messages, system=system)
        if tools:
            payload["tools"] = tool_specs_to_openai(tools)
        return payload


def response_to_turn_result(response: Any) -> TurnResult:
    """Convert a non-streaming Chat Completions response into a turn result."""

    try:
        completion = ChatCompletion.model_validate(response)
    except ValidationError as exc:
        msg = f"malformed chat completion response: {exc.error_count()} validation error(s)"
        raise AdapterError(msg) from exc

    usage = completion.usage.to_usage() if completion.usage else Usage()
    if completion.error is not None:
        return ModelError(type=completion.error.kind, message=completion.error.message, usage=usage)
    if not completion.choices:
        msg = "chat completion response missing choices"
        raise AdapterError(msg)

    choice = completion.choices[0]
    message = choice.message
    parts: list[AssistantPart] = []

    reasoning = message.reasoning_content or message.reasoning
    if reasoning:
        parts.append(ThinkingPart(text=reasoning))
    if message.content:
        parts.append(TextPart(text=message.content))
    for call in message.tool_calls or ():
        try:
            arguments = parse_tool_arguments(call.function.arguments, name=call.function.name)
        except AdapterError as exc:
            return ModelError(type="InvalidToolArguments", message=str(exc), usage=usage)
        parts.append(ToolCallPart(id=call.id, name=call.function.name, parameters=arguments))

    return ModelResponse(
        content=tuple(parts),
        finish_reason=convert_finish_reason(choice.finish_reason),
        usage=usage,
        id=completion.id,
        model=completion.model,
    )


@dataclass
class _ToolCallBuffer:
    """Incremental metadata for a streaming tool call keyed by vendor index."""

    part_index: int
    id: str
    name: str
    arguments: str = ""


class ChatCompletionsStreamNormalizer:
    """Normalize Chat Completions chunks into canonical events.

    ``finish_reason`` arrives before the optional usage-only chunk, so the
    ``StreamComplete`` event is held back until :meth:`finalize`.
    """

    def __init__(self) -> None:
        self._started = False
        self._next_index = 0
        self._open_index = -1
        self._open_kind: str | None = None
        self._tool_buffers: dict[int, _ToolCallBuffer] = {}
        self._pending_finish: str | None = None
        self._finish_seen = False
        self._usage: Usage | None = None
        self._failed = False

    def handle(self, chunk: Any) -> List[StreamEvent]:
        if self._failed:
            return []

        try:
            parsed = ChatCompletionChunk.model_validate(chunk)
        except ValidationError as exc:
            msg = f"malformed chat completion chunk: {exc.error_count()} validation error(s)"
            raise AdapterError(msg) from exc

        events: List[StreamEvent] = []

        if parsed.usage is not None:
            self._usage = parsed.usage.to_usage()

        if parsed.error is not None:
            self._failed = True
            events.append(
                StreamError(type=parsed.error.kind, message=parsed.error.message, usage=self._usage)
            )
            return events

        if not parsed.choices:
            return events

        if not self._started:
            self._started = True
            events.append(StreamStart(id=parsed.id, model=parsed.model))

        choice = parsed.choices[0]
        delta = choice.delta

        reasoning = delta.reasoning_content or delta.reasoning
        if reasoning:
            if self._open_kind != "thinking":
                self._close_open_part(events)
                self._open_part("thinking", events)
            events.append(ThinkingDelta(index=self._open_index, text=reasoning))

        if delta.content:
            if self._open_kind != "text":
                self._close_open_part(events)
                self._open_part("text", events)
            events.append(TextDelta(index=self._open_index, text=delta.content))

        if delta.tool_calls:
            self._close_open_part(events)
            for tool_delta in delta.tool_calls:
                self._buffer_tool_call(tool_delta, events)

        if choice.finish_reason:
            self._close_open_part(events)
            self._flush_tool_calls(events)
            self._pending_finish = choice.finish_reason
            self._finish_seen = True

        return events

    def finalize(self) -> List[StreamEvent]:
        if self._failed or not self._finish_seen:
            return []
        return [
            StreamComplete(
                finish_reason=convert_finish_reason(self._pending_finish),
                usage=self._usage or Usage(),
            )
        ]

    def _open_part(self, kind: str, events: List[StreamEvent]) -> None:
        self._open_index = self._allocate_index()
        self._open_kind = kind
        if kind == "text":
            events.append(TextStart(index=self._open_index))
        else:
            events.append(ThinkingStart(index=self._open_index))

    def _close_open_part(self, events: List[StreamEvent]) -> None:
        if self._open_kind == "text":
            events.append(TextComplete(index=self._open_index))
        elif self._open_kind == "thinking":
            events.append(ThinkingComplete(index=self._open_index))
        self._open_kind = None
        self._open_index = -1

    def _buffer_tool_call(self, tool_delta: ChatToolCallDelta, events: List[StreamEvent]) -> None:
        function = tool_delta.function
        buffer = self._tool_buffers.get(tool_delta.index)
        if buffer is None:
            part_index = self._allocate_index()
            buffer = _ToolCallBuffer(
                part_index=part_index,
                id=tool_delta.id or f"tool-{part_index}",
                name=(function.name if function else None) or "",
            )
            self._tool_buffers[tool_delta.index] = buffer
            events.append(ToolCallStart(index=part_index, id=buffer.id, name=buffer.name))

        if tool_delta.id:
            buffer.id = tool_delta.id
        if function is not None:
            if function.name:
                buffer.name = function.name
            if function.arguments:
                buffer.arguments += function.arguments

    def _flush_tool_calls(self, events: List[StreamEvent]) -> None:
        for vendor_index in sorted(self._tool_buffers):
            buffer = self._tool_buffers[vendor_index]
            try:
                if not buffer.name:
                    msg = f"tool call {buffer.id} finished without a function name"
                    raise AdapterError(msg)
                arguments = parse_tool_arguments(buffer.arguments, name=buffer.name)
            except AdapterError as exc:
                LOGGER.warning("discarding tool call %s: %s", buffer.id, exc)
                self._failed = True
                events.append(
                    StreamError(type="InvalidToolArguments", message=str(exc), usage=self._usage)
                )
                break
            events.append(
                ToolCallComplete(
                    index=buffer.part_index,
                    id=buffer.id,
                    name=buffer.name,
                    arguments=arguments,
                )
            )
        self._tool_buffers.clear()

    def _allocate_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

