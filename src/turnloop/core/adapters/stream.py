"""Canonical streaming event schema and base iterator primitives."""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Deque, List, Protocol, Union

from ..errors import AdapterError
from ..message import FinishReason, Usage

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreamStart:
    """First event of a turn identifying the provider message."""

    id: str
    model: str


@dataclass(frozen=True, slots=True)
class TextStart:
    index: int


@dataclass(frozen=True, slots=True)
class TextDelta:
    index: int
    text: str


@dataclass(frozen=True, slots=True)
class TextComplete:
    index: int


@dataclass(frozen=True, slots=True)
class ThinkingStart:
    index: int
    redacted: bool = False


@dataclass(frozen=True, slots=True)
class ThinkingDelta:
    index: int
    text: str


@dataclass(frozen=True, slots=True)
class ThinkingComplete:
    index: int
    signature: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCallStart:
    index: int
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class ToolCallComplete:
    """Tool call whose buffered arguments were parsed into a JSON object."""

    index: int
    id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class InternalToolStart:
    """A provider-side tool began running; it takes a part index of its own."""

    index: int
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class InternalToolComplete:
    index: int
    id: str
    name: str
    output: Any = None


@dataclass(frozen=True, slots=True)
class StreamComplete:
    """Terminal event carrying the finish reason and usage for the turn."""

    finish_reason: FinishReason
    usage: Usage = field(default_factory=Usage)


@dataclass(frozen=True, slots=True)
class StreamError:
    """Terminal event describing a provider or normalization failure."""

    type: str
    message: str
    usage: Usage | None = None


StreamEvent = Union[
    StreamStart,
    TextStart,
    TextDelta,
    TextComplete,
    ThinkingStart,
    ThinkingDelta,
    ThinkingComplete,
    ToolCallStart,
    ToolCallComplete,
    InternalToolStart,
    InternalToolComplete,
    StreamComplete,
    StreamError,
]


def is_terminal(event: StreamEvent) -> bool:
    """Return ``True`` for events that end a turn."""

    return isinstance(event, (StreamComplete, StreamError))


class StreamNormalizer(Protocol):
    """Per-turn state machine mapping vendor chunks to canonical events."""

    def handle(self, chunk: Any) -> List[StreamEvent]:
        """Map one vendor chunk into zero or more canonical events."""

    def finalize(self) -> List[StreamEvent]:
        """Flush deferred events once the vendor stream is exhausted."""


class BaseStreamIterator(AsyncIterator[StreamEvent], metaclass=abc.ABCMeta):
    """Shared async iterator driving provider-specific streaming adapters.

    Subclasses are responsible for sourcing raw provider chunks by
    implementing :meth:`_get_next_chunk`. Each chunk is normalized into zero
    or more :data:`StreamEvent` instances via a :class:`StreamNormalizer`.
    When the provider stream is exhausted the normalizer gets one chance to
    flush deferred events. Iteration stops after the first terminal event and
    provider resources are released exactly once.
    """

    def __init__(self, normalizer: StreamNormalizer) -> None:
        self._normalizer = normalizer
        self._buffer: Deque[StreamEvent] = deque()
        self._closed = False
        self._exhausted = False
        self._finalized = False
        self._close_lock = asyncio.Lock()

    def __aiter__(self) -> BaseStreamIterator:
        return self

    async def __anext__(self) -> StreamEvent:
        while True:
            buffered = self._pop_buffered_event()
            if buffered is not None:
                return await self._finalize_if_needed(buffered)

            if self._closed or self._finalized or self._exhausted:
                await self.close()
                raise StopAsyncIteration

            try:
                chunk = await self._get_next_chunk()
            except StopAsyncIteration:
                self._exhausted = True
                self._buffer.extend(self._normalizer.finalize())
                continue

            self._buffer.extend(self._normalizer.handle(chunk))

    async def aclose(self) -> None:
        await self.close()

    async def close(self) -> None:
        """Release provider resources and prevent additional iteration."""

        async with self._close_lock:
            if self._closed:
                return

            self._closed = True
            self._buffer.clear()
            await self._on_close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def _finalize_if_needed(self, event: StreamEvent) -> StreamEvent:
        if is_terminal(event):
            self._finalized = True
            if self._buffer:
                LOGGER.debug("dropping %d events after terminal event", len(self._buffer))
                self._buffer.clear()
            await self.close()
        return event

    def _pop_buffered_event(self) -> StreamEvent | None:
        if not self._buffer:
            return None
        return self._buffer.popleft()

    @abc.abstractmethod
    async def _get_next_chunk(self) -> Any:
        """Retrieve the next raw chunk from the provider stream."""

    async def _on_close(self) -> None:
        """Allow subclasses to dispose provider resources when closing."""


class ProviderStreamIterator(BaseStreamIterator):
    """Stream iterator that feeds an arbitrary vendor async iterable through a normalizer.

    ``stream`` may also be an awaitable resolving to the async iterable (async
    SDK clients return a coroutine from ``create(stream=True)``); it is awaited
    when the first chunk is requested.
    """

    def __init__(self, stream: Any, normalizer: StreamNormalizer) -> None:
        self._pending: Any = None
        self._stream: Any = None
        self._iterator: Any = None
        if inspect.isawaitable(stream) and not hasattr(stream, "__aiter__"):
            self._pending = stream
        else:
            self._stream = stream
            self._iterator = _coerce_async_iterator(stream)
        self._stream_closed = False
        super().__init__(normalizer)

    async def _get_next_chunk(self) -> Any:
        if self._iterator is None:
            pending, self._pending = self._pending, None
            try:
                self._stream = await pending
            except Exception as exc:
                msg = "provider client call failed"
                raise AdapterError(msg) from exc
            self._iterator = _coerce_async_iterator(self._stream)

        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            raise
        except AdapterError:
            raise
        except Exception as exc:
            msg = "provider stream raised an unexpected error"
            raise AdapterError(msg) from exc

    async def _on_close(self) -> None:
        if self._stream_closed:
            return
        self._stream_closed = True

        if self._pending is not None:
            close_pending = getattr(self._pending, "close", None)
            if callable(close_pending):
                close_pending()
            self._pending = None
            return

        for target in (self._iterator, self._stream):
            for closer_name in ("aclose", "close"):
                closer = getattr(target, closer_name, None)
                if closer is None or not callable(closer):
                    continue
                result = closer()
                if inspect.isawaitable(result):
                    await result
                return


def _coerce_async_iterator(stream: Any) -> Any:
    iterator_factory = getattr(stream, "__aiter__", None)
    if iterator_factory is None or not callable(iterator_factory):
        msg = "provider stream must support async iteration"
        raise AdapterError(msg)
    try:
        iterator = iterator_factory()
    except TypeError as exc:
        msg = "provider stream '__aiter__' must be callable without arguments"
        raise AdapterError(msg) from exc

    if not hasattr(iterator, "__anext__"):
        msg = "provider stream iterator must define '__anext__'"
        raise AdapterError(msg)
    return iterator


async def replay_stream(iterator: AsyncIterator[StreamEvent]) -> List[StreamEvent]:
    """Collect all events emitted by a stream iterator, closing it afterwards."""

    events: List[StreamEvent] = []
    try:
        async for event in iterator:
            events.append(event)
    finally:
        closer = getattr(iterator, "aclose", None) or getattr(iterator, "close", None)
        if closer is not None:
            result = closer()
            if inspect.isawaitable(result):
                await result
    return events
