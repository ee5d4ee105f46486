"""TraceKit SDK facade.

Wires settings, exporter, export pipeline and tracer together and offers the
convenience helpers instrumented applications call from their handlers.
The facade is an ordinary object owned by the process entry point; nothing
here is global.

Example:
    tk = TraceKit.from_env()
    app.add_middleware(TracingMiddleware, tracer=tk.tracer)

    @app.get("/api/users")
    def users(request: Request):
        with tk.span(get_trace_context(request), "fetchUsers") as (ctx, span):
            tk.add_int_attribute(span, "user_count", 5)
            ...
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional, Tuple, Union

from tracekit.clients.http import AsyncTracedHTTPClient, TracedHTTPClient
from tracekit.core.config import TraceKitSettings, load_settings
from tracekit.core.export.exporter import HTTPCollectorExporter, SpanExporter
from tracekit.core.export.pipeline import ExportPipeline
from tracekit.core.tracing.context import CompositePropagator, Propagator, TraceContext
from tracekit.core.tracing.sampler import sampler_for_rate
from tracekit.core.tracing.span import Span, SpanKind, StatusCode
from tracekit.core.tracing.tracer import Tracer

logger = logging.getLogger(__name__)


class TraceKit:
    """One tracing setup: settings, pipeline, tracer and helpers."""

    def __init__(
        self,
        settings: TraceKitSettings,
        exporter: Optional[SpanExporter] = None,
        propagator: Optional[Propagator] = None,
    ):
        self.settings = settings
        resource = {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
        self.exporter = exporter or HTTPCollectorExporter(
            endpoint=settings.endpoint,
            api_key=settings.api_key,
            use_ssl=settings.use_ssl,
            path=settings.traces_path,
            timeout=settings.export_timeout_s,
            resource=resource,
        )
        self.pipeline = ExportPipeline(
            self.exporter,
            max_queue_size=settings.max_queue_size,
            batch_size=settings.batch_size,
            linger_ms=settings.linger_ms,
            max_retries=settings.max_retries,
            initial_backoff_ms=settings.initial_backoff_ms,
            max_backoff_ms=settings.max_backoff_ms,
            backoff_multiplier=settings.backoff_multiplier,
        )
        self.tracer = Tracer(
            self.pipeline,
            service_name=settings.service_name,
            environment=settings.environment,
            sampler=sampler_for_rate(settings.sample_rate),
        )
        self.propagator = propagator or CompositePropagator()
        logging.getLogger("tracekit").setLevel(settings.log_level)
        logger.info(
            f"TraceKit initialized for {settings.service_name} ({settings.environment}) "
            f"exporting to {settings.collector_url}"
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> "TraceKit":
        """Build from environment variables. Raises ``ConfigurationError``."""
        return cls(load_settings(**overrides))

    # Spans

    def start_span(
        self,
        context: Optional[TraceContext],
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Tuple[TraceContext, Span]:
        return self.tracer.start_span(context, name, kind=kind, attributes=attributes)

    @contextmanager
    def span(
        self,
        context: Optional[TraceContext],
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Generator[Tuple[TraceContext, Span], None, None]:
        with self.tracer.start_as_current_span(context, name, kind=kind, attributes=attributes) as pair:
            yield pair

    # Annotation helpers

    def add_attribute(self, span: Span, key: str, value: str) -> None:
        span.set_attribute(key, str(value))

    def add_int_attribute(self, span: Span, key: str, value: int) -> None:
        span.set_attribute(key, int(value))

    def add_float_attribute(self, span: Span, key: str, value: float) -> None:
        span.set_attribute(key, float(value))

    def add_bool_attribute(self, span: Span, key: str, value: bool) -> None:
        span.set_attribute(key, bool(value))

    def add_business_attributes(self, span: Span, attributes: Dict[str, Any]) -> None:
        span.set_attributes(attributes)

    def add_event(self, span: Span, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        span.add_event(name, attributes)

    def record_error(self, span: Span, error: BaseException) -> None:
        span.record_exception(error)

    def set_success(self, span: Span) -> None:
        span.set_status(StatusCode.OK)

    def set_error(self, span: Span, description: str = "") -> None:
        span.set_status(StatusCode.ERROR, description)

    # Code monitoring

    def capture_snapshot(
        self,
        target: Optional[Union[TraceContext, Span]],
        label: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Record a ``snapshot`` event holding ``variables`` on a live span.

        ``target`` is a span, or a context whose span is still open in the
        calling execution; ``None`` means the current span. Nested mappings
        are flattened into dotted keys. Returns whether anything was recorded.
        """
        if not self.settings.enable_code_monitoring:
            return False
        span = self._snapshot_span(target)
        if span is None or not span.is_recording():
            logger.debug(f"No recording span for snapshot {label!r}")
            return False

        attributes: Dict[str, Any] = {"snapshot.label": label}
        attributes.update(_flatten(variables or {}, "snapshot"))
        span.add_event("snapshot", attributes)
        return True

    def _snapshot_span(self, target: Optional[Union[TraceContext, Span]]) -> Optional[Span]:
        if isinstance(target, Span):
            return target
        current = self.tracer.current_span()
        if current is None or target is None or not target.has_active_span:
            return current
        return current if current.context.span_id == target.span_id else None

    # Propagation and instrumentation

    def inject(self, context: TraceContext) -> Dict[str, str]:
        carrier: Dict[str, str] = {}
        self.propagator.inject(context, carrier)
        return carrier

    def extract(self, headers: Optional[Dict[str, str]]) -> TraceContext:
        return self.propagator.extract(headers)

    def instrument_app(self, app: Any, exclude_paths: Optional[List[str]] = None) -> None:
        """Install the server-span middleware on a FastAPI/Starlette app."""
        from tracekit.middleware.tracing import TracingMiddleware

        app.add_middleware(
            TracingMiddleware,
            tracer=self.tracer,
            propagator=self.propagator,
            exclude_paths=exclude_paths,
        )

    def http_client(self, **kwargs: Any) -> TracedHTTPClient:
        return TracedHTTPClient(
            self.tracer,
            propagator=self.propagator,
            service_name_mappings=self.settings.service_name_mappings,
            timeout=self.settings.export_timeout_s,
            **kwargs,
        )

    def async_http_client(self, **kwargs: Any) -> AsyncTracedHTTPClient:
        return AsyncTracedHTTPClient(
            self.tracer,
            propagator=self.propagator,
            service_name_mappings=self.settings.service_name_mappings,
            timeout=self.settings.export_timeout_s,
            **kwargs,
        )

    # Lifecycle

    def force_flush(self, timeout: float = 30.0) -> bool:
        return self.tracer.force_flush(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        ok = self.tracer.shutdown(self.settings.shutdown_timeout_s if timeout is None else timeout)
        logger.info(
            f"TraceKit shut down: exported={self.pipeline.exported_count} "
            f"dropped={self.pipeline.dropped_count}"
        )
        return ok

    def __enter__(self) -> "TraceKit":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


def _flatten(values: Dict[str, Any], prefix: str) -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in values.items():
        name = f"{prefix}.{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        else:
            flat[name] = value
    return flat
