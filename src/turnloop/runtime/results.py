"""Structured outcomes of an orchestrated run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Literal, Union

from turnloop.core.message import AssistantMessage, Message, ModelError, Usage

ErrorSource = Literal["model", "tool"]


@dataclass(frozen=True, slots=True)
class RunError:
    """Terminal error of a run.

    ``kind`` is the provider error type or one of the loop's own kinds:
    ``Length``, ``UnexpectedFinishReason``, ``MaxIterations``,
    ``IncompleteStream``.
    """

    source: ErrorSource
    kind: str
    message: str

    @classmethod
    def from_model_error(cls, error: ModelError) -> RunError:
        return cls(source="model", kind=error.type, message=error.message)


@dataclass(frozen=True, slots=True)
class RunSuccess:
    messages: tuple[Message, ...]
    final: AssistantMessage | None
    usage: Usage = field(default_factory=Usage)
    result: ClassVar[str] = "success"


@dataclass(frozen=True, slots=True)
class RunFailure:
    messages: tuple[Message, ...]
    error: RunError
    usage: Usage = field(default_factory=Usage)
    result: ClassVar[str] = "error"


@dataclass(frozen=True, slots=True)
class RunCancelled:
    """Run stopped by cooperative cancellation.

    ``partial`` holds the in-flight assistant message when cancellation landed
    mid-turn after at least one part started; ``usage`` covers completed
    turns only.
    """

    messages: tuple[Message, ...]
    partial: AssistantMessage | None = None
    usage: Usage = field(default_factory=Usage)
    result: ClassVar[str] = "cancelled"


RunResult = Union[RunSuccess, RunFailure, RunCancelled]
