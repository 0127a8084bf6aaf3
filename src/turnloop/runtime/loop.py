"""Async turn loop coordinating adapters, tool execution, and transcripts."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, Callable

from turnloop.config import RunConfig
from turnloop.core.adapters import ModelAdapter
from turnloop.core.adapters.stream import StreamEvent
from turnloop.core.adapters.toolbridge import ToolSpec
from turnloop.core.errors import AdapterError
from turnloop.core.message import (
    AssistantMessage,
    AssistantPart,
    FinishReason,
    InternalToolPart,
    Message,
    ModelError,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolMessage,
    TurnResult,
    Usage,
    UserMessage,
    thaw_json_structure,
)
from turnloop.tracing import LLMSpanResult, Span, SpanStatus, TokenUsage

from .accumulator import (
    InternalToolCallback,
    PartAccumulator,
    PartCallbacks,
    PartEndCallback,
    PartStartCallback,
    PartUpdateCallback,
)
from .results import RunCancelled, RunError, RunFailure, RunResult, RunSuccess
from .state import CancellationToken, RunState
from .tools import ToolResolver, execute_tool_calls

LOGGER = logging.getLogger(__name__)

ErrorCallback = Callable[[RunError], None]


class SessionTranscript:
    """Buffer of canonical events tagged with their turn number for replay."""

    def __init__(self) -> None:
        self._entries: list[tuple[int, StreamEvent]] = []

    def record(self, turn: int, event: StreamEvent) -> None:
        self._entries.append((turn, event))

    @property
    def events(self) -> tuple[StreamEvent, ...]:
        """Return the recorded events in emission order."""

        return tuple(event for _, event in self._entries)

    @property
    def turns(self) -> tuple[int, ...]:
        """Return the distinct turn numbers seen so far."""

        return tuple(sorted({turn for turn, _ in self._entries}))

    def for_turn(self, turn: int) -> tuple[StreamEvent, ...]:
        return tuple(event for number, event in self._entries if number == turn)

    def __len__(self) -> int:
        return len(self._entries)

    async def replay(self) -> AsyncIterator[StreamEvent]:
        """Yield recorded events as an async iterator."""

        for _, event in self._entries:
            yield event


class _Cancelled:
    """Marker returned by a streamed turn interrupted by cancellation."""


_CANCELLED = _Cancelled()


class TurnOrchestrator:
    """Drive one run: request a turn, decide, execute tools, repeat.

    A run is single-use. ``streaming`` selects between pulling canonical
    events through :meth:`ModelAdapter.stream` and one-shot
    :meth:`ModelAdapter.generate` calls.
    """

    def __init__(
        self,
        adapter: ModelAdapter,
        messages: Sequence[Message],
        /,
        *,
        streaming: bool,
        tools: Sequence[ToolSpec] | None = None,
        on_tool_call: ToolResolver | None = None,
        config: RunConfig | None = None,
        tracer: Any | None = None,
        cancel_token: CancellationToken | None = None,
        callbacks: PartCallbacks | None = None,
        transcript: SessionTranscript | None = None,
        error_callbacks: Sequence[ErrorCallback] = (),
    ) -> None:
        if streaming and not adapter.supports_streaming:
            msg = f"provider '{adapter.name}' does not support streaming; use generate() instead"
            raise AdapterError(msg)

        self._adapter = adapter
        self._streaming = streaming
        self._tools = tuple(tools) if tools else None
        self._on_tool_call = on_tool_call
        self._config = config or RunConfig()
        self._tracer = tracer
        self._error_callbacks = error_callbacks
        self._started = False

        self.state = RunState.from_messages(messages)
        self.cancel_token = cancel_token or CancellationToken()
        self.accumulator = PartAccumulator(callbacks)
        self.transcript = transcript

    async def run(self) -> RunResult:
        if self._started:
            msg = "a run cannot be restarted"
            raise RuntimeError(msg)
        self._started = True

        root = self._root_span()
        last_model = ""
        while True:
            max_iterations = self._config.max_iterations
            if max_iterations is not None and self.state.iterations >= max_iterations:
                error = RunError(
                    source="model",
                    kind="MaxIterations",
                    message=f"run stopped after {max_iterations} iteration(s)",
                )
                return self._fail(error, root, model=last_model)

            if self.cancel_token.cancelled:
                LOGGER.info("run cancelled before turn %d", self.state.iterations + 1)
                return self._cancel(None, root, model=last_model)

            self.state.iterations += 1
            turn = self.state.iterations
            turn_span = root.start_span(f"turn-{turn}", type="llm") if root is not None else None
            request = [_message_payload(message) for message in self.state.history] if root is not None else []
            LOGGER.info("turn %d requesting provider=%s", turn, self._adapter.name)

            if self._streaming:
                outcome = await self._stream_turn(turn)
            else:
                outcome = await self._generate_turn()

            if isinstance(outcome, _Cancelled):
                parts = self.accumulator.interrupt()
                partial: AssistantMessage | None = None
                if parts:
                    partial = AssistantMessage(
                        content=parts,
                        id=self.accumulator.message_id,
                        model=self.accumulator.model,
                        finish_reason=FinishReason.CANCELLED,
                    )
                    self.state.add_message(partial)
                model = self.accumulator.model or last_model
                if turn_span is not None:
                    turn_span.set_result(_llm_result(model, request, parts, None, FinishReason.CANCELLED))
                _end(turn_span, SpanStatus.OK)
                LOGGER.info("turn %d cancelled mid-stream parts=%d", turn, len(parts))
                return self._cancel(partial, root, model=model)

            if outcome is None:
                _end(turn_span, SpanStatus.ERROR)
                error = RunError(
                    source="model",
                    kind="IncompleteStream",
                    message="provider stream ended without a completion event",
                )
                return self._fail(error, root, model=last_model)

            if isinstance(outcome, ModelError):
                self.state.add_usage(outcome.usage)
                if turn_span is not None:
                    turn_span.set_result(_llm_result(last_model, request, None, outcome.usage, FinishReason.ERROR))
                    turn_span.end(SpanStatus.ERROR)
                LOGGER.info("turn %d failed type=%s", turn, outcome.type)
                return self._fail(RunError.from_model_error(outcome), root, model=last_model)

            message = outcome.to_message()
            last_model = outcome.model or last_model
            self.state.add_message(message)
            self.state.add_usage(outcome.usage)
            if turn_span is not None:
                turn_span.set_result(
                    _llm_result(outcome.model, request, message.content, outcome.usage, outcome.finish_reason)
                )
            LOGGER.info(
                "turn %d finished reason=%s parts=%d",
                turn,
                outcome.finish_reason.value,
                len(message.content),
            )

            reason = outcome.finish_reason
            if reason is FinishReason.STOP or (
                reason is FinishReason.LENGTH and self._config.accept_truncated_output
            ):
                _end(turn_span, SpanStatus.OK)
                return self._succeed(message, root)

            if reason is FinishReason.LENGTH:
                _end(turn_span, SpanStatus.OK)
                error = RunError(
                    source="model",
                    kind="Length",
                    message="model output was truncated at the token limit",
                )
                return self._fail(error, root, model=last_model)

            if reason is FinishReason.FUNCTION_CALL:
                calls = message.tool_calls
                if not calls:
                    _end(turn_span, SpanStatus.OK)
                    return self._succeed(message, root)
                if self.cancel_token.cancelled:
                    _end(turn_span, SpanStatus.OK)
                    LOGGER.info("run cancelled before executing %d tool call(s)", len(calls))
                    return self._cancel(None, root, model=last_model)

                tool_message = await execute_tool_calls(calls, self._on_tool_call, turn_span)
                self.state.add_message(tool_message)
                _end(turn_span, SpanStatus.OK)
                continue

            _end(turn_span, SpanStatus.ERROR)
            error = RunError(
                source="model",
                kind="UnexpectedFinishReason",
                message=f"unexpected finish reason: {reason.value}",
            )
            return self._fail(error, root, model=last_model)

    async def _generate_turn(self) -> TurnResult:
        return await self._adapter.generate(
            tuple(self.state.history),
            system=self._config.system,
            tools=self._tools,
            **self._config.options,
        )

    async def _stream_turn(self, turn: int) -> TurnResult | _Cancelled | None:
        self.accumulator.begin_turn()
        iterator = self._adapter.stream(
            tuple(self.state.history),
            system=self._config.system,
            tools=self._tools,
            **self._config.options,
        )
        try:
            async for event in iterator:
                if self.transcript is not None:
                    self.transcript.record(turn, event)
                result = self.accumulator.consume(event)
                if result is not None:
                    return result
                if self.cancel_token.cancelled:
                    return _CANCELLED
        finally:
            await _close_iterator(iterator)
        return None

    def _root_span(self) -> Span | None:
        if self._tracer is None:
            return None
        if isinstance(self._tracer, Span):
            return self._tracer
        return self._tracer.start_span("run", type="llm")

    def _succeed(self, final: AssistantMessage, root: Span | None) -> RunSuccess:
        usage = self.state.usage
        if root is not None:
            root.set_result(_llm_result(final.model, [], final.content, usage, final.finish_reason))
            root.end(SpanStatus.OK)
        LOGGER.info("run succeeded after %d turn(s)", self.state.iterations)
        return RunSuccess(messages=self.state.snapshot(), final=final, usage=usage)

    def _fail(self, error: RunError, root: Span | None, *, model: str) -> RunFailure:
        usage = self.state.usage
        for callback in self._error_callbacks:
            callback(error)
        if root is not None:
            root.set_result(_llm_result(model, [], None, usage, FinishReason.ERROR))
            root.end(SpanStatus.ERROR)
        LOGGER.info("run failed kind=%s: %s", error.kind, error.message)
        return RunFailure(messages=self.state.snapshot(), error=error, usage=usage)

    def _cancel(self, partial: AssistantMessage | None, root: Span | None, *, model: str) -> RunCancelled:
        usage = self.state.usage
        if root is not None:
            content = partial.content if partial is not None else None
            root.set_result(_llm_result(model, [], content, usage, FinishReason.CANCELLED))
            root.end(SpanStatus.OK)
        return RunCancelled(messages=self.state.snapshot(), partial=partial, usage=usage)


class StreamHandle:
    """Consumer-facing handle for a streamed run.

    Register callbacks first, then await :attr:`final`. The run starts on the
    first access to ``final`` so every callback registered beforehand fires.
    """

    def __init__(self, orchestrator: TurnOrchestrator, callbacks: PartCallbacks, errors: list[ErrorCallback]) -> None:
        self._orchestrator = orchestrator
        self._callbacks = callbacks
        self._errors = errors
        self._task: asyncio.Task[RunResult] | None = None

    def on_part_start(self, callback: PartStartCallback) -> StreamHandle:
        self._callbacks.on_start.append(callback)
        return self

    def on_part_update(self, callback: PartUpdateCallback) -> StreamHandle:
        self._callbacks.on_update.append(callback)
        return self

    def on_part_end(self, callback: PartEndCallback) -> StreamHandle:
        self._callbacks.on_end.append(callback)
        return self

    def on_internal_tool(self, callback: InternalToolCallback) -> StreamHandle:
        self._callbacks.on_internal_tool.append(callback)
        return self

    def on_error(self, callback: ErrorCallback) -> StreamHandle:
        self._errors.append(callback)
        return self

    def cancel(self) -> None:
        """Request cooperative cancellation; repeated calls are harmless."""

        if self._task is not None and self._task.done():
            return
        self._orchestrator.cancel_token.cancel()

    @property
    def cancelled(self) -> bool:
        return self._orchestrator.cancel_token.cancelled

    @property
    def transcript(self) -> SessionTranscript | None:
        return self._orchestrator.transcript

    @property
    def final(self) -> asyncio.Task[RunResult]:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._orchestrator.run())
        return self._task


async def generate(
    adapter: ModelAdapter,
    messages: Sequence[Message],
    /,
    *,
    tools: Sequence[ToolSpec] | None = None,
    on_tool_call: ToolResolver | None = None,
    config: RunConfig | None = None,
    tracer: Any | None = None,
    cancel_token: CancellationToken | None = None,
) -> RunResult:
    """Run the tool loop with one-shot provider calls.

    ``tracer`` is either a parent :class:`~turnloop.tracing.Span` or an object
    whose ``start_span`` opens the run's root span.
    """

    orchestrator = TurnOrchestrator(
        adapter,
        messages,
        streaming=False,
        tools=tools,
        on_tool_call=on_tool_call,
        config=config,
        tracer=tracer,
        cancel_token=cancel_token,
    )
    return await orchestrator.run()


def stream(
    adapter: ModelAdapter,
    messages: Sequence[Message],
    /,
    *,
    tools: Sequence[ToolSpec] | None = None,
    on_tool_call: ToolResolver | None = None,
    config: RunConfig | None = None,
    tracer: Any | None = None,
    transcript: SessionTranscript | None = None,
) -> StreamHandle:
    """Prepare a streamed run and return its handle without starting it.

    Raises :class:`AdapterError` right away when the adapter cannot stream.
    """

    callbacks = PartCallbacks()
    errors: list[ErrorCallback] = []
    orchestrator = TurnOrchestrator(
        adapter,
        messages,
        streaming=True,
        tools=tools,
        on_tool_call=on_tool_call,
        config=config,
        tracer=tracer,
        callbacks=callbacks,
        transcript=transcript,
        error_callbacks=errors,
    )
    return StreamHandle(orchestrator, callbacks, errors)


def _end(span: Span | None, status: SpanStatus) -> None:
    if span is not None:
        span.end(status)


async def _close_iterator(iterator: Any) -> None:
    closer = getattr(iterator, "aclose", None) or getattr(iterator, "close", None)
    if closer is None:
        return
    result = closer()
    if inspect.isawaitable(result):
        await result


def _llm_result(
    model: str,
    request: list[Any],
    parts: Sequence[AssistantPart] | None,
    usage: Usage | None,
    finish_reason: FinishReason,
) -> LLMSpanResult:
    return LLMSpanResult(
        model=model,
        request=request,
        response=[_part_payload(part) for part in parts] if parts is not None else None,
        usage=TokenUsage(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens) if usage else None,
        finish_reason=finish_reason.value,
    )


def _part_payload(part: AssistantPart | TextPart) -> dict[str, Any]:
    if isinstance(part, ToolCallPart):
        return {
            "type": part.type,
            "id": part.id,
            "name": part.name,
            "parameters": thaw_json_structure(part.parameters),
        }
    if isinstance(part, InternalToolPart):
        return {"type": part.type, "id": part.id, "name": part.name, "output": thaw_json_structure(part.output)}
    if isinstance(part, ThinkingPart):
        return {"type": part.type, "text": part.text, "redacted": part.redacted}
    return {"type": part.type, "text": part.text}


def _message_payload(message: Message) -> dict[str, Any]:
    if isinstance(message, UserMessage):
        if isinstance(message.content, str):
            content: Any = message.content
        else:
            content = [_part_payload(part) for part in message.content]
        return {"role": message.role.value, "content": content}
    if isinstance(message, ToolMessage):
        return {
            "role": message.role.value,
            "content": [
                {"id": item.id, "name": item.name, "content": item.content, "is_error": item.is_error}
                for item in message.content
            ],
        }
    return {"role": message.role.value, "content": [_part_payload(part) for part in message.content]}
