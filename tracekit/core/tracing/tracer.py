"""Tracer: span factory and per-execution bookkeeping."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Generator, Optional, Tuple

from tracekit.core.errors import SpanAlreadyEnded
from tracekit.core.export.pipeline import ExportPipeline
from tracekit.core.tracing.context import SpanId, TraceContext, TraceFlags, TraceId
from tracekit.core.tracing.sampler import ParentBasedSampler, Sampler
from tracekit.core.tracing.span import INCOMPLETE_AT_SHUTDOWN, Span, SpanKind, StatusCode

logger = logging.getLogger(__name__)

SDK_NAME = "tracekit-python"

_tracer_ids = itertools.count(1)


class Tracer:
    """Creates spans and hands ended ones to an export pipeline.

    Tracers are constructed explicitly and passed to whatever needs them;
    several may coexist in one process. Trace identity always travels as an
    explicit ``TraceContext`` value. Each concurrent execution (thread or
    asyncio task) additionally gets its own stack of active spans, used for
    log correlation and never shared with other executions.
    """

    def __init__(
        self,
        pipeline: ExportPipeline,
        service_name: str = "python-app",
        environment: str = "development",
        sampler: Optional[Sampler] = None,
        resource: Optional[Dict[str, Any]] = None,
    ):
        self.pipeline = pipeline
        self.service_name = service_name
        self.environment = environment
        self.sampler = sampler or ParentBasedSampler()
        self.resource = {
            "service.name": service_name,
            "deployment.environment": environment,
            "telemetry.sdk.name": SDK_NAME,
            **(resource or {}),
        }
        self._stack: ContextVar[Tuple[Span, ...]] = ContextVar(
            f"tracekit_active_spans_{next(_tracer_ids)}",
            default=(),
        )
        self._open_spans: Dict[SpanId, Span] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def start_span(
        self,
        context: Optional[TraceContext],
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        start_time: Optional[float] = None,
    ) -> Tuple[TraceContext, Span]:
        """Start a span as a child of the active span in ``context``.

        Returns the derived context (same trace, new active span) together
        with the span. A context without an active span starts a new trace.
        """
        parent = context or TraceContext.empty()
        if parent.has_active_span:
            trace_id = parent.trace_id
            parent_id: Optional[SpanId] = parent.span_id
        else:
            trace_id = TraceId.generate()
            parent_id = None

        result = self.sampler.should_sample(parent, trace_id, name, kind)
        flags = TraceFlags.SAMPLED if result.decision else TraceFlags.NOT_SAMPLED
        new_context = parent.with_span(SpanId.generate(), trace_id=trace_id, trace_flags=flags)

        span = Span(
            name=name,
            context=new_context,
            parent_id=parent_id,
            kind=kind,
            start_time=start_time or time.time(),
            resource=self.resource,
        )
        if result.attributes:
            span.set_attributes(result.attributes)
        if attributes:
            span.set_attributes(attributes)

        span._on_end = self._on_span_end
        with self._lock:
            closed = self._closed
            if not closed:
                self._open_spans[new_context.span_id] = span
        if closed:
            logger.debug(f"Tracer is shut down; span '{name}' will not be exported")

        self._stack.set(self._stack.get() + (span,))
        return new_context, span

    @contextmanager
    def start_as_current_span(
        self,
        context: Optional[TraceContext],
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        record_exception: bool = True,
    ) -> Generator[Tuple[TraceContext, Span], None, None]:
        """Start a span and guarantee it is ended on every exit path."""
        new_context, span = self.start_span(context, name, kind=kind, attributes=attributes)
        try:
            yield new_context, span
        except Exception as e:
            if span.is_recording():
                if record_exception:
                    span.record_exception(e, escaped=True)
                else:
                    span.set_status(StatusCode.ERROR, str(e))
            raise
        finally:
            if span.is_recording():
                span.end()

    def current_span(self) -> Optional[Span]:
        """Innermost span still open in the calling execution."""
        for span in reversed(self._stack.get()):
            if span.is_recording():
                return span
        return None

    def current_context(self) -> TraceContext:
        span = self.current_span()
        return span.context if span is not None else TraceContext.empty()

    def open_span_count(self) -> int:
        with self._lock:
            return len(self._open_spans)

    def _on_span_end(self, span: Span) -> None:
        with self._lock:
            tracked = self._open_spans.pop(span.context.span_id, None) is not None

        stack = self._stack.get()
        if span in stack:
            self._stack.set(tuple(s for s in stack if s is not span))

        # Spans started after shutdown are never tracked or exported
        if tracked and span.context.is_sampled():
            self.pipeline.enqueue(span)

    def force_flush(self, timeout: float = 30.0) -> bool:
        return self.pipeline.force_flush(timeout)

    def shutdown(self, timeout: float = 5.0) -> bool:
        """Stop accepting spans, flush what is queued, then release resources.

        Spans still open once the queue has been flushed are force-ended with
        status UNSET and the ``tracekit.incomplete_at_shutdown`` attribute,
        then exported best-effort within what is left of ``timeout``.
        """
        deadline = time.monotonic() + timeout
        with self._lock:
            if self._closed:
                return True
            self._closed = True

        self.pipeline.force_flush(timeout)

        with self._lock:
            incomplete = list(self._open_spans.values())
        for span in incomplete:
            try:
                span.set_attribute(INCOMPLETE_AT_SHUTDOWN, True)
                span.set_status(StatusCode.UNSET)
                span.end()
            except SpanAlreadyEnded:
                # Ended by its owner while we were flushing
                continue
        if incomplete:
            logger.warning(f"Force-ended {len(incomplete)} incomplete span(s) at shutdown")

        return self.pipeline.shutdown(max(0.0, deadline - time.monotonic()))
