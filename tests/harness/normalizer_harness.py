"""Reusable harness utilities for validating stream normalizers and adapters."""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Sequence

from turnloop.core.adapters.base import ModelAdapter
from turnloop.core.adapters.stream import (
    InternalToolComplete,
    InternalToolStart,
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
    is_terminal,
    replay_stream,
)
from turnloop.core.message import Message, UserMessage

_LABELS = {
    StreamStart: "start",
    TextStart: "text-start",
    TextDelta: "text-delta",
    TextComplete: "text-end",
    ThinkingStart: "thinking-start",
    ThinkingDelta: "thinking-delta",
    ThinkingComplete: "thinking-end",
    ToolCallStart: "tool-start",
    ToolCallComplete: "tool-end",
    InternalToolStart: "internal-tool-start",
    InternalToolComplete: "internal-tool-end",
    StreamComplete: "complete",
    StreamError: "error",
}


_PART_STARTS = (TextStart, ThinkingStart, ToolCallStart, InternalToolStart)


def normalize(normalizer: StreamNormalizer, chunks: Iterable[Any]) -> list[StreamEvent]:
    """Feed ``chunks`` through ``normalizer`` the way the stream iterator does."""

    events: list[StreamEvent] = []
    for chunk in chunks:
        events.extend(normalizer.handle(chunk))
        if any(is_terminal(event) for event in events):
            return _until_terminal(events)
    events.extend(normalizer.finalize())
    return _until_terminal(events)


def labels(events: Sequence[StreamEvent]) -> list[str]:
    """Compact event names for ordering assertions."""

    return [_LABELS[type(event)] for event in events]


def part_indices(events: Sequence[StreamEvent]) -> list[int]:
    """Indices of the part-start events in emission order."""

    return [event.index for event in events if isinstance(event, _PART_STARTS)]


async def collect_async(
    adapter: ModelAdapter,
    *,
    prompt: str | None = None,
    messages: Sequence[Message] | None = None,
    system: str | None = None,
    **options: Any,
) -> list[StreamEvent]:
    """Collect the canonical events of one streamed turn."""

    resolved = _resolve_messages(prompt=prompt, messages=messages)
    iterator = adapter.stream(resolved, system=system, **options)
    return await replay_stream(iterator)


def collect(
    adapter: ModelAdapter,
    *,
    prompt: str | None = None,
    messages: Sequence[Message] | None = None,
    system: str | None = None,
    **options: Any,
) -> list[StreamEvent]:
    """Synchronous wrapper around :func:`collect_async`."""

    return asyncio.run(collect_async(adapter, prompt=prompt, messages=messages, system=system, **options))


def _until_terminal(events: list[StreamEvent]) -> list[StreamEvent]:
    for position, event in enumerate(events):
        if is_terminal(event):
            return events[: position + 1]
    return events


def _resolve_messages(*, prompt: str | None, messages: Sequence[Message] | None) -> list[Message]:
    if prompt is not None and messages is not None:
        msg = "provide either 'prompt' or 'messages', not both"
        raise ValueError(msg)
    if prompt is None and messages is None:
        msg = "either 'prompt' or 'messages' must be provided"
        raise ValueError(msg)
    if prompt is not None:
        return [UserMessage(content=prompt)]
    return list(messages or ())


__all__ = ["collect", "collect_async", "labels", "normalize", "part_indices"]
