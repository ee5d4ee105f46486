"""Distributed Tracing Module.

Provides distributed tracing capabilities:
- Trace context propagation
- Span management
- Sampling strategies
"""

from tracekit.core.tracing.context import (
    TraceFlags,
    TraceId,
    SpanId,
    TraceContext,
    Propagator,
    TraceContextPropagator,
    B3Propagator,
    CompositePropagator,
)
from tracekit.core.tracing.span import (
    SpanKind,
    StatusCode,
    Status,
    SpanEvent,
    SpanState,
    Span,
)
from tracekit.core.tracing.sampler import (
    SamplingResult,
    Sampler,
    AlwaysOnSampler,
    AlwaysOffSampler,
    TraceIdRatioSampler,
    ParentBasedSampler,
)
from tracekit.core.tracing.tracer import Tracer

__all__ = [
    # Context
    "TraceFlags",
    "TraceId",
    "SpanId",
    "TraceContext",
    "Propagator",
    "TraceContextPropagator",
    "B3Propagator",
    "CompositePropagator",
    # Span
    "SpanKind",
    "StatusCode",
    "Status",
    "SpanEvent",
    "SpanState",
    "Span",
    "Tracer",
    # Sampler
    "SamplingResult",
    "Sampler",
    "AlwaysOnSampler",
    "AlwaysOffSampler",
    "TraceIdRatioSampler",
    "ParentBasedSampler",
]
