"""Async turn loop, part accumulation, and tool execution."""

from .accumulator import InternalToolActivity, PartAccumulator, PartCallbacks
from .loop import SessionTranscript, StreamHandle, TurnOrchestrator, generate, stream
from .results import RunCancelled, RunError, RunFailure, RunResult, RunSuccess
from .state import CancellationToken, RunState
from .tools import ToolCallFailure, ToolCallSuccess, ToolResolver, execute_tool_calls, serialize_tool_error

__all__ = [
    "CancellationToken",
    "InternalToolActivity",
    "PartAccumulator",
    "PartCallbacks",
    "RunCancelled",
    "RunError",
    "RunFailure",
    "RunResult",
    "RunState",
    "RunSuccess",
    "SessionTranscript",
    "StreamHandle",
    "ToolCallFailure",
    "ToolCallSuccess",
    "ToolResolver",
    "TurnOrchestrator",
    "execute_tool_calls",
    "generate",
    "serialize_tool_error",
    "stream",
]
