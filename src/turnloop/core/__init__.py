"""Core data structures and adapter interfaces for turnloop."""

from __future__ import annotations

from .errors import AdapterError
from .message import (
    AssistantMessage,
    FinishReason,
    InternalToolPart,
    Message,
    MessageRole,
    ModelError,
    ModelResponse,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolMessage,
    ToolResult,
    TurnResult,
    Usage,
    UserMessage,
)
from .adapters.toolbridge import ToolSpec

__all__ = [
    "AdapterError",
    "AssistantMessage",
    "FinishReason",
    "InternalToolPart",
    "Message",
    "MessageRole",
    "ModelError",
    "ModelResponse",
    "TextPart",
    "ThinkingPart",
    "ToolCallPart",
    "ToolMessage",
    "ToolResult",
    "ToolSpec",
    "TurnResult",
    "Usage",
    "UserMessage",
]
