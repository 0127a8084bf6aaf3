"""Tracing protocol, span schemas, and an in-memory recorder."""

from .recorder import RecordedSpan, Span, Tracer
from .schema import LLMSpanResult, SpanRecord, SpanResult, SpanStatus, TokenUsage, ToolSpanResult

__all__ = [
    "LLMSpanResult",
    "RecordedSpan",
    "Span",
    "SpanRecord",
    "SpanResult",
    "SpanStatus",
    "TokenUsage",
    "ToolSpanResult",
    "Tracer",
]
