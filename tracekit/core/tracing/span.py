"""Span data model.

Provides span state and mutation:
- Span lifecycle (open, ended, then owned by the export pipeline)
- Span attributes and events
- Span status and errors
"""

from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from tracekit.core.errors import SpanAlreadyEnded
from tracekit.core.tracing.context import SpanId, TraceContext

logger = logging.getLogger(__name__)

AttributeValue = Union[str, int, float, bool]

INCOMPLETE_AT_SHUTDOWN = "tracekit.incomplete_at_shutdown"


class SpanKind(Enum):
    """Type of span."""
    INTERNAL = 0  # Default internal operation
    SERVER = 1    # Server-side handling of a synchronous request
    CLIENT = 2    # Client-side of a synchronous request


class StatusCode(Enum):
    """Span status code."""
    UNSET = 0
    OK = 1
    ERROR = 2


class SpanState(Enum):
    """Where a span is in its journey to the collector."""
    OPEN = 0
    ENDED = 1
    QUEUED = 2
    BATCHED = 3
    TRANSMITTED = 4
    DROPPED = 5


_TERMINAL_STATES = (SpanState.TRANSMITTED, SpanState.DROPPED)


@dataclass
class Status:
    """Span status."""
    code: StatusCode = StatusCode.UNSET
    description: str = ""

    @classmethod
    def ok(cls) -> "Status":
        return cls(code=StatusCode.OK)

    @classmethod
    def error(cls, description: str = "") -> "Status":
        return cls(code=StatusCode.ERROR, description=description)


@dataclass
class SpanEvent:
    """An event that occurred during a span."""
    name: str
    timestamp: float  # Unix timestamp in seconds
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)


def _coerce(value: Any) -> AttributeValue:
    if isinstance(value, (str, bool, int, float)):
        return value
    return str(value)


@dataclass(eq=False)
class Span:
    """A trace span representing a unit of work.

    A span is mutated only by the execution that started it. Once ended it
    is immutable and belongs to the export pipeline; every mutator then
    raises ``SpanAlreadyEnded``.
    """
    name: str
    context: TraceContext
    parent_id: Optional[SpanId] = None
    kind: SpanKind = SpanKind.INTERNAL
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    status: Status = field(default_factory=Status)
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    events: List[SpanEvent] = field(default_factory=list)
    resource: Dict[str, Any] = field(default_factory=dict)

    # Internal state
    _state: SpanState = field(default=SpanState.OPEN, repr=False)
    _on_end: Optional[Callable[["Span"], None]] = field(default=None, repr=False)

    @property
    def state(self) -> SpanState:
        return self._state

    @property
    def is_ended(self) -> bool:
        return self._state is not SpanState.OPEN

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def is_recording(self) -> bool:
        """Check if span still accepts mutations."""
        return not self.is_ended

    def transition(self, state: SpanState) -> None:
        """Advance the span state. Backward moves are ignored."""
        if self._state in _TERMINAL_STATES or state.value <= self._state.value:
            logger.debug(
                f"Ignoring span state change {self._state.name} -> {state.name} for {self.name}"
            )
            return
        self._state = state

    def _check_open(self) -> None:
        if self.is_ended:
            raise SpanAlreadyEnded(self.name, self.context.span_id.to_hex())

    def set_attribute(self, key: str, value: Any) -> "Span":
        """Set a single attribute."""
        self._check_open()
        self.attributes[key] = _coerce(value)
        return self

    def set_attributes(self, attributes: Dict[str, Any]) -> "Span":
        """Set multiple attributes."""
        self._check_open()
        for key, value in attributes.items():
            self.attributes[key] = _coerce(value)
        return self

    def add_event(
        self,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
        timestamp: Optional[float] = None,
    ) -> "Span":
        """Add an event to the span."""
        self._check_open()
        ts = timestamp or time.time()
        # Events stay time-ordered
        if self.events and ts < self.events[-1].timestamp:
            ts = self.events[-1].timestamp
        self.events.append(SpanEvent(
            name=name,
            timestamp=ts,
            attributes={k: _coerce(v) for k, v in (attributes or {}).items()},
        ))
        return self

    def set_status(self, code: StatusCode, description: str = "") -> "Span":
        """Set span status. The last call before ``end`` wins."""
        self._check_open()
        self.status = Status(code=code, description=description)
        return self

    def record_exception(
        self,
        exception: BaseException,
        attributes: Optional[Dict[str, Any]] = None,
        escaped: bool = False,
    ) -> "Span":
        """Record an exception as an event and mark the span as failed."""
        self._check_open()
        exc_attributes: Dict[str, Any] = {
            "exception.type": type(exception).__name__,
            "exception.message": str(exception),
            "exception.stacktrace": "".join(traceback.format_exception(
                type(exception), exception, exception.__traceback__
            )),
            "exception.escaped": escaped,
        }
        if attributes:
            exc_attributes.update(attributes)

        self.add_event("exception", exc_attributes)
        self.set_status(StatusCode.ERROR, str(exception))
        return self

    def end(self, end_time: Optional[float] = None) -> None:
        """End the span and hand it to the tracer's export queue."""
        self._check_open()
        self.end_time = max(end_time or time.time(), self.start_time)
        self._state = SpanState.ENDED
        if self._on_end is not None:
            self._on_end(self)

    @property
    def duration_ms(self) -> Optional[float]:
        """Get span duration in milliseconds."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert span to dictionary for export."""
        return {
            "name": self.name,
            "trace_id": self.context.trace_id.to_hex(),
            "span_id": self.context.span_id.to_hex(),
            "parent_span_id": self.parent_id.to_hex() if self.parent_id else None,
            "kind": self.kind.name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "status": {
                "code": self.status.code.name,
                "description": self.status.description,
            },
            "attributes": self.attributes,
            "events": [
                {
                    "name": e.name,
                    "timestamp": e.timestamp,
                    "attributes": e.attributes,
                }
                for e in self.events
            ],
            "resource": self.resource,
        }
