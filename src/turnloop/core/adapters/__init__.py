"""Adapter interfaces and provider implementations."""

from __future__ import annotations

from .anthropic import AnthropicStreamNormalizer
from .base import ModelAdapter
from .chatcompletions import ChatCompletionsAdapter, ChatCompletionsStreamNormalizer
from .stream import (
    BaseStreamIterator,
    InternalToolComplete,
    InternalToolStart,
    ProviderStreamIterator,
    StreamComplete,
    StreamError,
    StreamEvent,
    StreamNormalizer,
    StreamStart,
    TextComplete,
    TextDelta,
    TextStart,
    ThinkingComplete,
    ThinkingDelta,
    ThinkingStart,
    ToolCallComplete,
    ToolCallStart,
    replay_stream,
)
from .toolbridge import ToolSpec
from .utils import convert_finish_reason, messages_to_openai

__all__ = [
    "AnthropicStreamNormalizer",
    "BaseStreamIterator",
    "ChatCompletionsAdapter",
    "ChatCompletionsStreamNormalizer",
    "InternalToolComplete",
    "InternalToolStart",
    "ModelAdapter",
    "ProviderStreamIterator",
    "StreamComplete",
    "StreamError",
    "StreamEvent",
    "StreamNormalizer",
    "StreamStart",
    "TextComplete",
    "TextDelta",
    "TextStart",
    "ThinkingComplete",
    "ThinkingDelta",
    "ThinkingStart",
    "ToolCallComplete",
    "ToolCallStart",
    "ToolSpec",
    "convert_finish_reason",
    "messages_to_openai",
    "replay_stream",
]
