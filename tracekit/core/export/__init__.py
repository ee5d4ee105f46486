"""Span export: exporters and the batching pipeline."""

from tracekit.core.export.exporter import (
    ConsoleSpanExporter,
    HTTPCollectorExporter,
    InMemorySpanExporter,
    SpanExporter,
)
from tracekit.core.export.pipeline import ExportPipeline

__all__ = [
    "SpanExporter",
    "ConsoleSpanExporter",
    "InMemorySpanExporter",
    "HTTPCollectorExporter",
    "ExportPipeline",
]
