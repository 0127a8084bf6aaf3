"""Run configuration shared by the streaming and one-shot orchestrators."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping


@dataclass(slots=True)
class RunConfig:
    """Knobs controlling a single orchestrated run.

    Attributes
    ----------
    max_iterations:
        Upper bound on the number of provider turns. ``None`` means unbounded;
        the run then ends only on a terminal finish reason, an error, or
        cancellation.
    accept_truncated_output:
        When ``True`` a turn that ends with ``FinishReason.LENGTH`` is accepted
        as a successful final answer. By default truncated output is reported
        as an error so it is never silently used.
    system:
        Optional system prompt forwarded to the provider on every turn.
    options:
        Provider request options (``temperature``, ``max_tokens``, ...) passed
        through to the adapter unchanged.
    """

    max_iterations: int | None = None
    accept_truncated_output: bool = False
    system: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_iterations is not None:
            if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, int):
                raise TypeError("max_iterations must be an integer")
            if self.max_iterations < 1:
                raise ValueError("max_iterations must be at least 1")
        if not isinstance(self.accept_truncated_output, bool):
            raise TypeError("accept_truncated_output must be a boolean")
        if self.system is not None and not isinstance(self.system, str):
            raise TypeError("system must be a string when provided")
        if not isinstance(self.options, Mapping):
            raise TypeError("options must be a mapping")
        self.options = dict(self.options)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "RunConfig":
        """Build a :class:`RunConfig` from a plain mapping, rejecting unknown keys."""

        known = {item.name for item in fields(cls)}
        unknown = set(values) - known
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ValueError(f"unknown run configuration keys: {joined}")
        return cls(**dict(values))
