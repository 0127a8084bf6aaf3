"""Multi-turn orchestration for generative model providers.

The package normalizes vendor streaming events into one canonical event
stream, accumulates them into assistant messages, resolves requested tool
calls, and reports each run as a success, an error, or a cancellation.
"""

from __future__ import annotations

from .config import RunConfig
from .core import (
    AdapterError,
    AssistantMessage,
    FinishReason,
    InternalToolPart,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolMessage,
    ToolResult,
    ToolSpec,
    Usage,
    UserMessage,
)
from .runtime import (
    CancellationToken,
    RunCancelled,
    RunError,
    RunFailure,
    RunSuccess,
    SessionTranscript,
    StreamHandle,
    ToolCallFailure,
    ToolCallSuccess,
    generate,
    stream,
)

__all__ = [
    "AdapterError",
    "AssistantMessage",
    "CancellationToken",
    "FinishReason",
    "InternalToolPart",
    "RunCancelled",
    "RunConfig",
    "RunError",
    "RunFailure",
    "RunSuccess",
    "SessionTranscript",
    "StreamHandle",
    "TextPart",
    "ThinkingPart",
    "ToolCallFailure",
    "ToolCallPart",
    "ToolCallSuccess",
    "ToolMessage",
    "ToolResult",
    "ToolSpec",
    "Usage",
    "UserMessage",
    "generate",
    "stream",
]

__version__ = "0.1.0"
