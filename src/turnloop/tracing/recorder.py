"""Span protocol consumed by the runtime and an in-memory recorder."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Protocol, runtime_checkable

from .schema import SpanRecord, SpanResult, SpanStatus

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class Span(Protocol):
    """Tracing context for one span; child spans nest under it."""

    def start_span(self, name: str, *, type: str | None = None) -> "Span":
        """Open a child span."""

    def set_result(self, result: SpanResult) -> None:
        """Attach a typed result to the span."""

    def end(self, status: SpanStatus | str = SpanStatus.OK) -> None:
        """Close the span with the given status."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tracer:
    """In-memory tracer recording every span as a :class:`SpanRecord`."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._records: list[SpanRecord] = []

    @property
    def spans(self) -> tuple[SpanRecord, ...]:
        return tuple(self._records)

    def start_span(self, name: str, *, type: str | None = None) -> RecordedSpan:
        return self._open(name, type=type, trace_id=uuid.uuid4().hex, parent=None)

    def find(self, name: str) -> SpanRecord:
        for record in self._records:
            if record.name == name:
                return record
        msg = f"no span named {name!r}"
        raise KeyError(msg)

    def children_of(self, record: SpanRecord) -> tuple[SpanRecord, ...]:
        return tuple(item for item in self._records if item.parent_span_id == record.span_id)

    def _open(
        self,
        name: str,
        *,
        type: str | None,
        trace_id: str,
        parent: SpanRecord | None,
    ) -> RecordedSpan:
        record = SpanRecord(
            trace_id=trace_id,
            span_id=uuid.uuid4().hex,
            parent_span_id=parent.span_id if parent else None,
            name=name,
            type=type,
            started_at=self._clock(),
        )
        self._records.append(record)
        LOGGER.debug("span start name=%s type=%s", name, type)
        return RecordedSpan(self, record)


class RecordedSpan:
    """Span handle bound to a :class:`Tracer` record."""

    def __init__(self, tracer: Tracer, record: SpanRecord) -> None:
        self._tracer = tracer
        self.record = record

    def start_span(self, name: str, *, type: str | None = None) -> RecordedSpan:
        return self._tracer._open(name, type=type, trace_id=self.record.trace_id, parent=self.record)

    def set_result(self, result: SpanResult) -> None:
        self.record.result = result

    def end(self, status: SpanStatus | str = SpanStatus.OK) -> None:
        if not self.record.open:
            LOGGER.debug("span %s already ended", self.record.name)
            return
        self.record.status = SpanStatus(status)
        self.record.ended_at = self._tracer._clock()
        LOGGER.debug("span end name=%s status=%s", self.record.name, self.record.status.value)
