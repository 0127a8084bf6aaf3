"""Adapter interface shared by provider implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, AsyncIterator

from ..errors import AdapterError
from ..message import Message, TurnResult
from .stream import StreamEvent
from .toolbridge import ToolSpec


class ModelAdapter(ABC):
    """Abstract interface for provider-specific adapters.

    Adapters receive an already-authenticated client. ``generate`` performs one
    request/response exchange; ``stream`` is optional and returns an async
    iterator of canonical events for exactly one turn.
    """

    supports_streaming: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider identifier used in logs and spans."""

    @abstractmethod
    async def generate(
        self,
        messages: Sequence[Message],
        /,
        *,
        system: str | None = None,
        tools: Sequence[ToolSpec] | None = None,
        **options: Any,
    ) -> TurnResult:
        """Generate one assistant turn from the provided conversation history."""

    def stream(
        self,
        messages: Sequence[Message],
        /,
        *,
        system: str | None = None,
        tools: Sequence[ToolSpec] | None = None,
        **options: Any,
    ) -> AsyncIterator[StreamEvent]:
        """Return an async iterator that yields canonical streaming events."""

        msg = f"provider '{self.name}' does not support streaming; use generate() instead"
        raise AdapterError(msg)
