"""Build assistant messages from canonical stream events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from turnloop.core.adapters.stream import (
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
from turnloop.core.errors import AdapterError
from turnloop.core.message import (
    AssistantPart,
    InternalToolPart,
    ModelError,
    ModelResponse,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    TurnResult,
)

LOGGER = logging.getLogger(__name__)

PartKind = Literal["text", "thinking", "tool-call"]

PartStartCallback = Callable[[int, PartKind], None]
PartUpdateCallback = Callable[[int, PartKind, str, str], None]
PartEndCallback = Callable[[int, PartKind, Any], None]


@dataclass(frozen=True, slots=True)
class InternalToolActivity:
    """Progress of a provider-side tool, reported at its start and completion."""

    phase: Literal["start", "complete"]
    index: int
    id: str
    name: str
    output: Any = None


InternalToolCallback = Callable[[InternalToolActivity], None]


@dataclass(slots=True)
class PartCallbacks:
    """Listeners notified as parts open, grow and close."""

    on_start: list[PartStartCallback] = field(default_factory=list)
    on_update: list[PartUpdateCallback] = field(default_factory=list)
    on_end: list[PartEndCallback] = field(default_factory=list)
    on_internal_tool: list[InternalToolCallback] = field(default_factory=list)


@dataclass(slots=True)
class _OpenPart:
    kind: PartKind
    global_index: int
    slot: int
    fragments: list[str] = field(default_factory=list)
    redacted: bool = False
    call_id: str = ""
    name: str = ""

    @property
    def accumulated(self) -> str:
        return "".join(self.fragments)


class PartAccumulator:
    """Consume one turn of canonical events at a time and build its message.

    The global part index is shared by every turn of the run and is never
    reset; per-turn buffers are keyed by the adapter's local index.
    """

    def __init__(self, callbacks: PartCallbacks | None = None) -> None:
        self._callbacks = callbacks or PartCallbacks()
        self._next_global_index = 0
        self._reset_turn()

    @property
    def next_index(self) -> int:
        return self._next_global_index

    def begin_turn(self) -> None:
        """Discard per-turn state while keeping the global index."""

        if self._open:
            LOGGER.debug("discarding %d open parts from previous turn", len(self._open))
        self._reset_turn()

    def consume(self, event: StreamEvent) -> TurnResult | None:
        """Apply one event; return the turn result on a terminal event."""

        if isinstance(event, StreamStart):
            self._message_id = event.id
            self._model = event.model
            return None
        if isinstance(event, TextStart):
            self._open_part(event.index, "text")
            return None
        if isinstance(event, ThinkingStart):
            part = self._open_part(event.index, "thinking")
            part.redacted = event.redacted
            return None
        if isinstance(event, ToolCallStart):
            part = self._open_part(event.index, "tool-call")
            part.call_id = event.id
            part.name = event.name
            return None
        if isinstance(event, (TextDelta, ThinkingDelta)):
            kind: PartKind = "text" if isinstance(event, TextDelta) else "thinking"
            self._append(event.index, kind, event.text)
            return None
        if isinstance(event, TextComplete):
            self._close(event.index, "text", TextPart(text=self._require(event.index, "text").accumulated))
            return None
        if isinstance(event, ThinkingComplete):
            part = self._require(event.index, "thinking")
            self._close(
                event.index,
                "thinking",
                ThinkingPart(text=part.accumulated, redacted=part.redacted, signature=event.signature),
            )
            return None
        if isinstance(event, ToolCallComplete):
            part = self._require(event.index, "tool-call")
            call = ToolCallPart(
                id=event.id or part.call_id,
                name=event.name or part.name,
                parameters=event.arguments,
            )
            self._close(event.index, "tool-call", call)
            return None
        if isinstance(event, InternalToolStart):
            self._start_internal_tool(event)
            return None
        if isinstance(event, InternalToolComplete):
            self._complete_internal_tool(event)
            return None
        if isinstance(event, StreamComplete):
            for local_index in list(self._open):
                LOGGER.debug("closing part %s left open at completion", local_index)
                self._close_synthesized(local_index)
            return ModelResponse(
                content=self._finished_parts(),
                finish_reason=event.finish_reason,
                usage=event.usage,
                id=self._message_id,
                model=self._model,
            )
        if isinstance(event, StreamError):
            if self._open:
                LOGGER.debug("discarding %d incomplete parts after error", len(self._open))
            self._open.clear()
            return ModelError(type=event.type, message=event.message, usage=event.usage)

        msg = f"unsupported stream event type: {type(event).__name__}"
        raise AdapterError(msg)

    def interrupt(self) -> tuple[AssistantPart, ...]:
        """Close every open part with what it holds so far and return the turn's parts.

        End listeners fire for each part closed here, so every started part
        sees an end even when the turn is cut short.
        """

        for local_index in list(self._open):
            self._close_synthesized(local_index)
        return self._finished_parts()

    @property
    def message_id(self) -> str:
        return self._message_id

    @property
    def model(self) -> str:
        return self._model

    def _reset_turn(self) -> None:
        self._open: dict[int, _OpenPart] = {}
        self._seen_local: set[int] = set()
        self._slots: dict[int, AssistantPart] = {}
        self._internal: dict[int, tuple[int, int, InternalToolPart]] = {}
        self._next_slot = 0
        self._message_id = ""
        self._model = ""

    def _claim_index(self, local_index: int) -> None:
        if local_index in self._seen_local:
            msg = f"part index {local_index} was already used in this turn"
            raise AdapterError(msg)
        self._seen_local.add(local_index)

    def _start_internal_tool(self, event: InternalToolStart) -> None:
        self._claim_index(event.index)
        global_index, slot = self._next_global_index, self._next_slot
        self._next_global_index += 1
        self._next_slot += 1
        started = InternalToolPart(id=event.id, name=event.name)
        self._internal[event.index] = (global_index, slot, started)
        self._slots[slot] = started
        self._notify_internal_tool(InternalToolActivity("start", global_index, event.id, event.name))

    def _complete_internal_tool(self, event: InternalToolComplete) -> None:
        entry = self._internal.pop(event.index, None)
        if entry is None:
            msg = f"no running internal tool at index {event.index}"
            raise AdapterError(msg)
        global_index, slot, started = entry
        part = InternalToolPart(id=event.id or started.id, name=event.name or started.name, output=event.output)
        self._slots[slot] = part
        self._notify_internal_tool(
            InternalToolActivity("complete", global_index, part.id, part.name, event.output)
        )

    def _notify_internal_tool(self, activity: InternalToolActivity) -> None:
        for callback in self._callbacks.on_internal_tool:
            callback(activity)

    def _open_part(self, local_index: int, kind: PartKind) -> _OpenPart:
        self._claim_index(local_index)
        # Parallel tool calls may stay open together; text and thinking may not.
        if kind != "tool-call" and any(item.kind == kind for item in self._open.values()):
            msg = f"cannot start {kind} part {local_index} while another {kind} part is open"
            raise AdapterError(msg)

        part = _OpenPart(kind=kind, global_index=self._next_global_index, slot=self._next_slot)
        self._next_global_index += 1
        self._next_slot += 1
        self._open[local_index] = part

        for callback in self._callbacks.on_start:
            callback(part.global_index, kind)
        return part

    def _require(self, local_index: int, kind: PartKind) -> _OpenPart:
        part = self._open.get(local_index)
        if part is None:
            msg = f"no open {kind} part at index {local_index}"
            raise AdapterError(msg)
        if part.kind != kind:
            msg = f"part at index {local_index} is {part.kind}, not {kind}"
            raise AdapterError(msg)
        return part

    def _append(self, local_index: int, kind: PartKind, delta: str) -> None:
        part = self._require(local_index, kind)
        part.fragments.append(delta)
        accumulated = part.accumulated
        for callback in self._callbacks.on_update:
            callback(part.global_index, kind, delta, accumulated)

    def _close(self, local_index: int, kind: PartKind, final: AssistantPart) -> None:
        part = self._open.pop(local_index)
        self._slots[part.slot] = final
        for callback in self._callbacks.on_end:
            callback(part.global_index, kind, _end_value(final))

    def _close_synthesized(self, local_index: int) -> None:
        part = self._open[local_index]
        self._close(local_index, part.kind, self._synthesize(part))

    def _synthesize(self, part: _OpenPart) -> AssistantPart:
        if part.kind == "text":
            return TextPart(text=part.accumulated)
        if part.kind == "thinking":
            return ThinkingPart(text=part.accumulated, redacted=part.redacted)
        return ToolCallPart(id=part.call_id or f"tool-{part.global_index}", name=part.name or "unknown")

    def _finished_parts(self) -> tuple[AssistantPart, ...]:
        return tuple(self._slots[slot] for slot in sorted(self._slots))


def _end_value(part: AssistantPart) -> Any:
    if isinstance(part, (TextPart, ThinkingPart)):
        return part.text
    return part
