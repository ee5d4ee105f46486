"""Server-span middleware for FastAPI / Starlette applications."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from tracekit.core.tracing.context import CompositePropagator, Propagator, TraceContext
from tracekit.core.tracing.span import SpanKind, StatusCode
from tracekit.core.tracing.tracer import Tracer

logger = logging.getLogger(__name__)


class TracingMiddleware(BaseHTTPMiddleware):
    """Wraps every request in a SERVER span.

    The inbound trace headers are extracted (falling back to a new trace),
    and the derived context is stored on ``request.state.trace_context`` so
    handlers can start child spans from it.
    """

    def __init__(
        self,
        app: Any,
        tracer: Tracer,
        propagator: Optional[Propagator] = None,
        exclude_paths: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.tracer = tracer
        self.propagator = propagator or CompositePropagator()
        self.exclude_paths = exclude_paths if exclude_paths is not None else [
            "/health",
            "/metrics",
        ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        for exclude in self.exclude_paths:
            if path == exclude or path.startswith(exclude.rstrip("/") + "/"):
                return await call_next(request)

        inbound = self.propagator.extract(request.headers)
        context, span = self.tracer.start_span(
            inbound,
            f"{request.method} {path}",
            kind=SpanKind.SERVER,
            attributes={
                "http.method": request.method,
                "http.target": path,
                "http.scheme": request.url.scheme,
            },
        )
        if request.client:
            span.set_attribute("net.peer.ip", request.client.host)
        request.state.trace_context = context
        request.state.span = span

        try:
            response = await call_next(request)
            if span.is_recording():
                span.set_attribute("http.status_code", response.status_code)
                if response.status_code >= 500:
                    span.set_status(StatusCode.ERROR, f"HTTP {response.status_code}")
                else:
                    span.set_status(StatusCode.OK)
        except Exception as e:
            logger.debug(f"{request.method} {path} raised {type(e).__name__}: {e}")
            if span.is_recording():
                span.set_attribute("http.status_code", 500)
                span.record_exception(e, escaped=True)
            raise
        finally:
            # Shutdown may have force-ended the span already
            if span.is_recording():
                span.end()

        self.propagator.inject(context, response.headers)
        return response


def get_trace_context(request: Request) -> TraceContext:
    """Trace context for the current request, or a fresh root context."""
    return getattr(request.state, "trace_context", None) or TraceContext.empty()
