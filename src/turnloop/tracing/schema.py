"""Span result and span record schemas for turnloop tracing."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SpanStatus(str, Enum):
    """Terminal status of a span."""

    OK = "ok"
    ERROR = "error"


class TokenUsage(BaseModel):
    """Token counts attached to an LLM span."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    input_tokens: int = Field(0, ge=0, description="Prompt tokens consumed.")
    output_tokens: int = Field(0, ge=0, description="Completion tokens produced.")


class LLMSpanResult(BaseModel):
    """Outcome of a model exchange or of a whole run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["llm"] = "llm"
    model: str = Field("", description="Model reported by the provider, if any.")
    request: List[Any] = Field(default_factory=list, description="Messages sent to the provider.")
    response: Any = Field(None, description="Content parts returned by the provider.")
    usage: Optional[TokenUsage] = Field(None, description="Token usage for the exchange.")
    finish_reason: Optional[str] = Field(None, description="Finish reason reported for the exchange.")


class ToolSpanResult(BaseModel):
    """Outcome of a single tool call."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["tool"] = "tool"
    name: str = Field(..., description="Name of the resolved tool.")
    input: Dict[str, Any] = Field(default_factory=dict, description="Parameters passed to the tool.")
    output: Any = Field(None, description="Content returned to the model.")


SpanResult = Union[LLMSpanResult, ToolSpanResult]


class SpanRecord(BaseModel):
    """Recorded lifecycle of a single span."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    trace_id: str = Field(..., description="Identifier shared by every span of one trace.")
    span_id: str = Field(..., description="Unique identifier for the span.")
    parent_span_id: Optional[str] = Field(None, description="Identifier of the parent span, if any.")
    name: str = Field(..., description="Human-readable span name.")
    type: Optional[str] = Field(None, description="Span category such as 'llm' or 'tool'.")
    started_at: datetime = Field(..., description="Timestamp at which the span started.")
    ended_at: Optional[datetime] = Field(None, description="Timestamp at which the span ended.")
    status: Optional[SpanStatus] = Field(None, description="Terminal status, unset while open.")
    result: Optional[Union[LLMSpanResult, ToolSpanResult]] = Field(
        None, discriminator="kind", description="Typed result recorded on the span."
    )

    @property
    def open(self) -> bool:
        return self.ended_at is None


__all__ = [
    "LLMSpanResult",
    "SpanRecord",
    "SpanResult",
    "SpanStatus",
    "TokenUsage",
    "ToolSpanResult",
]
