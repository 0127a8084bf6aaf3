"""Message schema shared across adapters and the runtime loop."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
import json
import math
from types import MappingProxyType
from typing import Any, ClassVar, Union


class MessageRole(str, Enum):
    """Canonical role names supported by turnloop."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Reason reported by the model for ending a turn."""

    STOP = "stop"
    LENGTH = "length"
    FUNCTION_CALL = "function_call"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Usage:
    """Token counts reported for one or more turns."""

    input_tokens: int = 0
    output_tokens: int = 0

    def __post_init__(self) -> None:
        for name in ("input_tokens", "output_tokens"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                msg = f"{name} must be an integer"
                raise TypeError(msg)
            if value < 0:
                msg = f"{name} cannot be negative"
                raise ValueError(msg)

    def __add__(self, other: Usage) -> Usage:
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True, slots=True)
class TextPart:
    """A run of assistant or user text."""

    text: str
    type: ClassVar[str] = "text"


@dataclass(frozen=True, slots=True)
class ThinkingPart:
    """A reasoning trace; ``redacted`` marks an opaque, provider-encrypted trace."""

    text: str
    redacted: bool = False
    signature: str | None = None
    type: ClassVar[str] = "thinking"


@dataclass(frozen=True, slots=True)
class ToolCallPart:
    """A tool/function invocation requested by the assistant."""

    id: str
    name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "tool-call"

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            msg = "tool call id must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.name, str) or not self.name:
            msg = "tool call name must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.parameters, Mapping):
            msg = "tool call parameters must be a mapping"
            raise TypeError(msg)

        plain_parameters = thaw_json_structure(dict(self.parameters))
        _ensure_json_compatible(plain_parameters, path="ToolCallPart.parameters")

        sanitized = json.loads(json.dumps(plain_parameters, allow_nan=False))
        object.__setattr__(self, "parameters", _freeze_json_structure(sanitized))


@dataclass(frozen=True, slots=True)
class InternalToolPart:
    """A tool the provider ran on its own side, such as web search.

    ``output`` is whatever the provider reported once the tool finished and
    stays ``None`` while it is still running.
    """

    id: str
    name: str
    output: Any = None
    type: ClassVar[str] = "internal-tool"

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            msg = "internal tool id must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.name, str) or not self.name:
            msg = "internal tool name must be a non-empty string"
            raise ValueError(msg)
        object.__setattr__(self, "output", _freeze_json_structure(self.output))


AssistantPart = Union[TextPart, ThinkingPart, ToolCallPart, InternalToolPart]


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of resolving one tool call."""

    id: str
    name: str
    content: str
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class UserMessage:
    """Input authored by the caller."""

    content: str | tuple[TextPart, ...]
    role: ClassVar[MessageRole] = MessageRole.USER

    def __post_init__(self) -> None:
        if isinstance(self.content, str):
            if not self.content:
                msg = "user message content cannot be empty"
                raise ValueError(msg)
            return
        parts = _as_tuple(self.content, "user message content")
        for part in parts:
            if not isinstance(part, TextPart):
                msg = "user message parts must be TextPart instances"
                raise TypeError(msg)
        object.__setattr__(self, "content", parts)


@dataclass(frozen=True, slots=True)
class AssistantMessage:
    """A finished (or cancelled) assistant turn."""

    content: tuple[AssistantPart, ...]
    id: str = ""
    model: str = ""
    finish_reason: FinishReason | None = None
    role: ClassVar[MessageRole] = MessageRole.ASSISTANT

    def __post_init__(self) -> None:
        parts = _as_tuple(self.content, "assistant message content")
        for part in parts:
            if not isinstance(part, (TextPart, ThinkingPart, ToolCallPart, InternalToolPart)):
                msg = f"unsupported assistant content part {type(part).__name__}"
                raise TypeError(msg)
        object.__setattr__(self, "content", parts)

    @property
    def text(self) -> str:
        """Concatenated text parts, ignoring thinking and tool parts."""

        return "".join(part.text for part in self.content if isinstance(part, TextPart))

    @property
    def tool_calls(self) -> tuple[ToolCallPart, ...]:
        return get_tool_calls(self.content)


@dataclass(frozen=True, slots=True)
class ToolMessage:
    """Results fed back to the model for the preceding tool calls."""

    content: tuple[ToolResult, ...]
    role: ClassVar[MessageRole] = MessageRole.TOOL

    def __post_init__(self) -> None:
        results = _as_tuple(self.content, "tool message content")
        if not results:
            msg = "tool message must contain at least one result"
            raise ValueError(msg)
        for result in results:
            if not isinstance(result, ToolResult):
                msg = "tool message content must contain ToolResult instances"
                raise TypeError(msg)
        object.__setattr__(self, "content", results)


Message = Union[UserMessage, AssistantMessage, ToolMessage]


@dataclass(frozen=True, slots=True)
class ModelResponse:
    """Successful outcome of a single provider exchange."""

    content: tuple[AssistantPart, ...]
    finish_reason: FinishReason
    usage: Usage = field(default_factory=Usage)
    id: str = ""
    model: str = ""

    def to_message(self) -> AssistantMessage:
        return AssistantMessage(
            content=self.content,
            id=self.id,
            model=self.model,
            finish_reason=self.finish_reason,
        )


@dataclass(frozen=True, slots=True)
class ModelError:
    """Structured error reported by a provider for a single exchange."""

    type: str
    message: str
    usage: Usage | None = None


TurnResult = Union[ModelResponse, ModelError]


def get_tool_calls(parts: Sequence[AssistantPart]) -> tuple[ToolCallPart, ...]:
    """Return the tool-call parts of an assistant message in emission order."""

    return tuple(part for part in parts if isinstance(part, ToolCallPart))


def thaw_json_structure(value: Any) -> Any:
    """Convert frozen mappings/tuples back into plain ``dict``/``list`` values."""

    if isinstance(value, Mapping):
        return {key: thaw_json_structure(inner) for key, inner in value.items()}

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [thaw_json_structure(inner) for inner in value]

    return value


def _as_tuple(value: Any, label: str) -> tuple[Any, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        msg = f"{label} must be a sequence"
        raise TypeError(msg)
    return tuple(value)


def _ensure_json_compatible(value: Any, *, path: str) -> None:
    if isinstance(value, Mapping):
        for key, inner in value.items():
            if not isinstance(key, str):
                msg = f"{path} keys must be strings"
                raise TypeError(msg)
            _ensure_json_compatible(inner, path=f"{path}.{key}")
        return

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        for index, item in enumerate(value):
            _ensure_json_compatible(item, path=f"{path}[{index}]")
        return

    if isinstance(value, (bool, type(None), str)):
        return

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            msg = f"{path} contains non-finite float values"
            raise ValueError(msg)
        return

    msg = f"{path} contains unsupported value type {type(value).__name__}"
    raise TypeError(msg)


def _freeze_json_structure(value: Any) -> Any:
    if isinstance(value, dict):
        frozen_dict = {key: _freeze_json_structure(inner) for key, inner in value.items()}
        return MappingProxyType(frozen_dict)

    if isinstance(value, list):
        return tuple(_freeze_json_structure(inner) for inner in value)

    return value
