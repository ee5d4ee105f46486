"""Structured logging configuration.

Features:
- JSON formatted logs for aggregation
- Trace correlation (trace_id / span_id of the active span)
- Error tracking
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

if TYPE_CHECKING:
    from tracekit.core.tracing.tracer import Tracer


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(
        self,
        service_name: str = "python-app",
        environment: str = "development",
        tracer: Optional["Tracer"] = None,
        include_stack_trace: bool = True,
    ):
        super().__init__()
        self.service_name = service_name
        self.environment = environment
        self.tracer = tracer
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
        }

        log_entry["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if self.tracer is not None:
            span = self.tracer.current_span()
            if span is not None:
                log_entry["trace_id"] = span.context.trace_id.to_hex()
                log_entry["span_id"] = span.context.span_id.to_hex()

        if hasattr(record, "extra_fields"):
            log_entry["extra"] = record.extra_fields

        if record.exc_info and self.include_stack_trace:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_entry, default=str)


def setup_structured_logging(
    service_name: str = "python-app",
    environment: str = "development",
    level: Union[int, str] = logging.INFO,
    json_output: bool = True,
    tracer: Optional["Tracer"] = None,
    logger_name: str = "tracekit",
) -> logging.Logger:
    """Configure structured logging for the SDK's logger hierarchy.

    Only ``logger_name`` (``tracekit`` by default) is touched, so the host
    application's own logging setup is left alone.
    """
    target = logging.getLogger(logger_name)
    target.setLevel(level)

    for handler in target.handlers[:]:
        target.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if json_output:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=service_name,
            environment=environment,
            tracer=tracer,
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    console_handler.setFormatter(formatter)
    target.addHandler(console_handler)
    return target
