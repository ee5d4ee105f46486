"""TraceKit: in-process distributed tracing SDK."""

from __future__ import annotations

from tracekit.core.config import TraceKitSettings, load_settings
from tracekit.core.errors import (
    ConfigurationError,
    PropagationDecodeError,
    ShutdownTimeout,
    SpanAlreadyEnded,
    TraceKitError,
    TransmissionError,
)
from tracekit.core.tracing import SpanKind, StatusCode, TraceContext, Tracer
from tracekit.sdk import TraceKit

__version__ = "0.1.0"

__all__ = [
    "TraceKit",
    "TraceKitSettings",
    "load_settings",
    "Tracer",
    "TraceContext",
    "SpanKind",
    "StatusCode",
    "TraceKitError",
    "ConfigurationError",
    "SpanAlreadyEnded",
    "PropagationDecodeError",
    "TransmissionError",
    "ShutdownTimeout",
]
