"""State primitives tracked while orchestrating a run."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from turnloop.core.message import Message, Usage


class CancellationToken:
    """Cooperative cancellation flag checked between awaits."""

    __slots__ = ("_requested",)

    def __init__(self) -> None:
        self._requested = False

    def cancel(self) -> None:
        self._requested = True

    @property
    def cancelled(self) -> bool:
        return self._requested


@dataclass(slots=True)
class RunState:
    """Aggregated state for a single run.

    ``history`` is what the provider sees each turn: the caller's messages
    followed by everything the run produced. ``produced`` holds only the
    latter and is what results report.
    """

    history: list[Message] = field(default_factory=list)
    produced: list[Message] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    iterations: int = 0

    @classmethod
    def from_messages(cls, messages: Sequence[Message]) -> RunState:
        if not messages:
            raise ValueError("at least one message is required")
        return cls(history=list(messages))

    def add_message(self, message: Message) -> None:
        self.history.append(message)
        self.produced.append(message)

    def add_usage(self, usage: Usage | None) -> None:
        if usage is not None:
            self.usage = self.usage + usage

    def snapshot(self) -> tuple[Message, ...]:
        """Return the messages produced so far as an immutable tuple."""

        return tuple(self.produced)
