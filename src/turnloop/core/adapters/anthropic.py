"""Streaming normalizer for Anthropic Messages API events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import AdapterError
from ..message import FinishReason, Usage
from .stream import (
    InternalToolComplete,
    InternalToolStart,
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
from .toolbridge import parse_tool_arguments

LOGGER = logging.getLogger(__name__)

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.FUNCTION_CALL,
    "pause_turn": FinishReason.ERROR,
    "refusal": FinishReason.ERROR,
}


def convert_stop_reason(reason: str | None) -> FinishReason:
    """Map an Anthropic ``stop_reason``; reasons this module does not know end the run as errors."""

    if reason is None:
        return FinishReason.STOP
    finish_reason = _STOP_REASONS.get(reason)
    if finish_reason is None:
        LOGGER.warning("unknown anthropic stop reason %s", reason)
        return FinishReason.ERROR
    return finish_reason


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True)


class AnthropicUsage(_Event):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class AnthropicMessage(_Event):
    id: str = ""
    model: str = ""
    usage: Optional[AnthropicUsage] = None


class MessageStartEvent(_Event):
    type: Literal["message_start"]
    message: AnthropicMessage


class MessageDeltaBody(_Event):
    stop_reason: Optional[str] = None


class MessageDeltaEvent(_Event):
    type: Literal["message_delta"]
    delta: MessageDeltaBody
    usage: Optional[AnthropicUsage] = None


class MessageStopEvent(_Event):
    type: Literal["message_stop"]


class PingEvent(_Event):
    type: Literal["ping"]


class ContentBlock(_Event):
    type: str
    id: Optional[str] = None
    name: Optional[str] = None
    tool_use_id: Optional[str] = None
    content: Any = None


class ContentBlockStartEvent(_Event):
    type: Literal["content_block_start"]
    index: int
    content_block: ContentBlock


class BlockDelta(_Event):
    type: str
    text: Optional[str] = None
    thinking: Optional[str] = None
    partial_json: Optional[str] = None
    signature: Optional[str] = None


class ContentBlockDeltaEvent(_Event):
    type: Literal["content_block_delta"]
    index: int
    delta: BlockDelta


class ContentBlockStopEvent(_Event):
    type: Literal["content_block_stop"]
    index: int


class AnthropicErrorBody(_Event):
    type: str = "api_error"
    message: str = "provider reported an error"


class ErrorEvent(_Event):
    type: Literal["error"]
    error: AnthropicErrorBody


AnthropicStreamEvent = Annotated[
    Union[
        MessageStartEvent,
        MessageDeltaEvent,
        MessageStopEvent,
        PingEvent,
        ContentBlockStartEvent,
        ContentBlockDeltaEvent,
        ContentBlockStopEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(AnthropicStreamEvent)


@dataclass
class _Block:
    kind: str
    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""
    signature: str | None = None


class AnthropicStreamNormalizer:
    """Normalize Anthropic streaming events into canonical events.

    Anthropic addresses content blocks by its own ``index``; canonical indices
    are allocated separately so they stay strictly increasing even when the
    vendor skips blocks. A ``server_tool_use`` block opens an internal tool
    part and the matching ``*_tool_result`` block completes it.
    """

    def __init__(self) -> None:
        self._blocks: dict[int, _Block] = {}
        self._internal_tools: dict[str, tuple[int, str]] = {}
        self._next_index = 0
        self._input_tokens = 0
        self._output_tokens = 0
        self._failed = False

    def handle(self, chunk: Any) -> List[StreamEvent]:
        if self._failed:
            return []

        try:
            event = _EVENT_ADAPTER.validate_python(chunk, from_attributes=True)
        except ValidationError as exc:
            kind = _event_type(chunk)
            if kind is not None and not _is_known(kind):
                LOGGER.warning("ignoring anthropic event type %s", kind)
                return []
            msg = f"malformed anthropic stream event: {exc.error_count()} validation error(s)"
            raise AdapterError(msg) from exc

        if isinstance(event, MessageStartEvent):
            self._record_usage(event.message.usage)
            return [StreamStart(id=event.message.id, model=event.message.model)]
        if isinstance(event, ContentBlockStartEvent):
            return self._start_block(event)
        if isinstance(event, ContentBlockDeltaEvent):
            return self._delta(event)
        if isinstance(event, ContentBlockStopEvent):
            return self._stop_block(event.index)
        if isinstance(event, MessageDeltaEvent):
            self._record_usage(event.usage)
            if event.delta.stop_reason is None:
                return []
            return [
                StreamComplete(
                    finish_reason=convert_stop_reason(event.delta.stop_reason),
                    usage=self._usage(),
                )
            ]
        if isinstance(event, ErrorEvent):
            self._failed = True
            return [StreamError(type=event.error.type, message=event.error.message, usage=self._usage())]
        return []

    def finalize(self) -> List[StreamEvent]:
        return []

    def _start_block(self, event: ContentBlockStartEvent) -> List[StreamEvent]:
        block_type = event.content_block.type
        index = self._next_index
        if block_type == "text":
            self._blocks[event.index] = _Block("text", index)
            self._next_index += 1
            return [TextStart(index=index)]
        if block_type in {"thinking", "redacted_thinking"}:
            self._blocks[event.index] = _Block("thinking", index)
            self._next_index += 1
            return [ThinkingStart(index=index, redacted=block_type == "redacted_thinking")]
        if block_type == "tool_use":
            call_id = event.content_block.id or f"tool-{index}"
            name = event.content_block.name or ""
            self._blocks[event.index] = _Block("tool-call", index, id=call_id, name=name)
            self._next_index += 1
            return [ToolCallStart(index=index, id=call_id, name=name)]
        if block_type == "server_tool_use":
            tool_id = event.content_block.id or f"internal-{index}"
            name = event.content_block.name or "server_tool"
            self._blocks[event.index] = _Block("internal-tool", index, id=tool_id, name=name)
            self._internal_tools[tool_id] = (index, name)
            self._next_index += 1
            return [InternalToolStart(index=index, id=tool_id, name=name)]
        result_for = event.content_block.tool_use_id
        if block_type.endswith("_tool_result") and result_for is not None and result_for in self._internal_tools:
            tool_index, name = self._internal_tools.pop(result_for)
            output = _plain(event.content_block.content)
            return [InternalToolComplete(index=tool_index, id=result_for, name=name, output=output)]

        LOGGER.debug("ignoring anthropic content block type %s", block_type)
        return []

    def _delta(self, event: ContentBlockDeltaEvent) -> List[StreamEvent]:
        block = self._blocks.get(event.index)
        if block is None:
            return []

        delta = event.delta
        if delta.type == "text_delta" and delta.text:
            return [TextDelta(index=block.index, text=delta.text)]
        if delta.type == "thinking_delta" and delta.thinking:
            return [ThinkingDelta(index=block.index, text=delta.thinking)]
        if delta.type == "signature_delta":
            block.signature = (block.signature or "") + (delta.signature or "")
        elif delta.type == "input_json_delta":
            block.arguments += delta.partial_json or ""
        return []

    def _stop_block(self, vendor_index: int) -> List[StreamEvent]:
        block = self._blocks.pop(vendor_index, None)
        if block is None:
            return []
        if block.kind == "text":
            return [TextComplete(index=block.index)]
        if block.kind == "thinking":
            return [ThinkingComplete(index=block.index, signature=block.signature)]
        if block.kind == "internal-tool":
            return []

        try:
            if not block.name:
                msg = f"tool call {block.id} finished without a name"
                raise AdapterError(msg)
            arguments = parse_tool_arguments(block.arguments, name=block.name)
        except AdapterError as exc:
            self._failed = True
            return [StreamError(type="InvalidToolArguments", message=str(exc), usage=self._usage())]
        return [ToolCallComplete(index=block.index, id=block.id, name=block.name, arguments=arguments)]

    def _record_usage(self, usage: AnthropicUsage | None) -> None:
        if usage is None:
            return
        if usage.input_tokens is not None:
            self._input_tokens = usage.input_tokens
        if usage.output_tokens is not None:
            self._output_tokens = usage.output_tokens

    def _usage(self) -> Usage:
        return Usage(input_tokens=self._input_tokens, output_tokens=self._output_tokens)


_KNOWN_EVENT_TYPES = frozenset(
    {
        "message_start",
        "message_delta",
        "message_stop",
        "ping",
        "content_block_start",
        "content_block_delta",
        "content_block_stop",
        "error",
    }
)


def _is_known(kind: str) -> bool:
    return kind in _KNOWN_EVENT_TYPES


def _event_type(chunk: Any) -> str | None:
    if isinstance(chunk, dict):
        kind = chunk.get("type")
    else:
        kind = getattr(chunk, "type", None)
    return kind if isinstance(kind, str) else None


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {key: _plain(inner) for key, inner in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(inner) for inner in value]
    return value
