"""Prometheus metrics for the export pipeline.

All metric objects are defined at import time and shared by every pipeline
in the process. Per-pipeline counts live on the pipeline instance.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

spans_dropped_total = Counter(
    "tracekit_spans_dropped_total",
    "Spans dropped before reaching the collector",
    ["reason"],  # queue_full|retries_exhausted|shutdown_timeout|closed
)
spans_exported_total = Counter(
    "tracekit_spans_exported_total",
    "Spans accepted by the collector",
)
export_batches_total = Counter(
    "tracekit_export_batches_total",
    "Export batch attempts by outcome",
    ["result"],  # success|retry|dropped
)
export_queue_size = Gauge(
    "tracekit_export_queue_size",
    "Spans waiting in the export queue",
)
